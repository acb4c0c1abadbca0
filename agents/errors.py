"""Classified errors raised by the agent invocation layer.

Callers only need to know whether a failure is worth retrying; the
provider layer retries ``TransientAgentError`` itself and surfaces it once
the retry budget is spent.
"""

from __future__ import annotations

import asyncio

import httpx

_RETRYABLE_STATUS = {408, 409, 425, 429, 500, 502, 503, 504, 529}


class AgentError(Exception):
    """Base class for agent invocation failures."""

    retryable: bool = False

    def __init__(self, message: str, *, provider: str = "", attempts: int = 0) -> None:
        super().__init__(message)
        self.provider = provider
        self.attempts = attempts


class TransientAgentError(AgentError):
    """Network, timeout or rate-limit failure."""

    retryable = True


class FatalAgentError(AgentError):
    """Authentication, bad request, unknown model and the like."""

    retryable = False


def _status_code(exc: BaseException) -> int | None:
    code = getattr(exc, "status_code", None)
    if isinstance(code, int):
        return code
    response = getattr(exc, "response", None)
    code = getattr(response, "status_code", None)
    return code if isinstance(code, int) else None


def is_retryable(exc: BaseException) -> bool:
    """Decide whether *exc* is a transient failure.

    SDK errors from openai / anthropic / cohere carry a ``status_code`` and
    their connection errors wrap ``httpx`` transport errors, so both are
    checked.
    """
    if isinstance(exc, AgentError):
        return exc.retryable
    if isinstance(exc, (asyncio.TimeoutError, ConnectionError)):
        return True
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return True

    code = _status_code(exc)
    if code is not None:
        return code in _RETRYABLE_STATUS

    name = type(exc).__name__
    if name in {"APIConnectionError", "APITimeoutError", "RateLimitError"}:
        return True

    cause = exc.__cause__ or exc.__context__
    if cause is not None and cause is not exc:
        return is_retryable(cause)
    return False

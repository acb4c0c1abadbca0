"""Base agent class with provider-agnostic interface.

Every debate participant inherits from ``BaseAgent`` which provides:
- The persisted ``AgentRecord`` it was built from
- Provider-agnostic ``generate_response`` and ``stream_response``
- Automatic token tracking and a structured reply type
- Shared helpers for rendering the transcript and pulling JSON out of
  model output
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from agents.llm_provider import LLMProvider, LLMResponse, TokenCallback
from data.models import AgentRecord, AgentRole, Phase, Stance, TranscriptEntry

logger = logging.getLogger(__name__)

_JSON_FENCE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------

@dataclass
class AgentReply:
    """Structured reply produced by one agent call."""

    agent_id: str
    role: AgentRole
    content: str
    tokens_used: int
    provider: str
    model: str
    latency_ms: float
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


@dataclass
class DebateContext:
    """Snapshot of the debate visible to an agent when it is invoked."""

    topic: str
    sequence: int
    max_rounds: int
    phase: Phase
    pro_definition: str | None = None
    con_definition: str | None = None
    transcript: list[TranscriptEntry] = field(default_factory=list)

    def definition_for(self, stance: Stance) -> str:
        text = self.pro_definition if stance is Stance.PRO else self.con_definition
        if text:
            return text
        return "Supports the motion" if stance is Stance.PRO else "Opposes the motion"


def format_transcript(entries: list[TranscriptEntry], limit: int | None = None) -> str:
    """Render transcript entries as ``[Round n] LABEL: content`` lines."""
    if not entries:
        return "(no statements yet)"
    selected = entries[-limit:] if limit else entries
    return "\n".join(f"[Round {e.sequence}] {e.label}: {e.content}" for e in selected)


def extract_json(text: str) -> dict[str, Any] | None:
    """Return the first JSON object found in *text*, or ``None``.

    A fenced ```json block wins over a bare object in the body.
    """
    for pattern in (_JSON_FENCE, _JSON_OBJECT):
        match = pattern.search(text or "")
        if not match:
            continue
        candidate = match.group(1) if match.groups() else match.group(0)
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return None


# ---------------------------------------------------------------------------
# BaseAgent
# ---------------------------------------------------------------------------

class BaseAgent:
    """Provider-agnostic base class for every debate agent.

    Parameters
    ----------
    record : AgentRecord
        The persisted agent row this instance speaks for.
    provider : LLMProvider
        The LLM backend used for generation.
    temperature : float
        Default sampling temperature forwarded to the provider.
    max_tokens : int
        Max output tokens forwarded to the provider.
    system_prompt : str
        The root system prompt that defines agent behaviour.
    """

    def __init__(
        self,
        record: AgentRecord,
        provider: LLMProvider,
        *,
        temperature: float = 0.7,
        max_tokens: int = 800,
        system_prompt: str = "",
    ) -> None:
        self.record = record
        self.provider = provider
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.system_prompt = system_prompt
        self._total_tokens_used: int = 0

    @property
    def agent_id(self) -> str:
        return self.record.id

    @property
    def role(self) -> AgentRole:
        return self.record.role

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate_response(
        self,
        prompt: str,
        *,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> AgentReply:
        """Send *prompt* to the LLM and return a structured reply."""
        llm_resp = await self.provider.generate(
            self._build_messages(prompt),
            temperature=self.temperature if temperature is None else temperature,
            max_tokens=self.max_tokens,
            **kwargs,
        )
        return self._reply(llm_resp)

    async def stream_response(
        self,
        prompt: str,
        *,
        on_token: TokenCallback | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> AgentReply:
        """Like ``generate_response`` but forwards tokens to *on_token* as they arrive."""
        llm_resp = await self.provider.stream(
            self._build_messages(prompt),
            on_token=on_token,
            temperature=self.temperature if temperature is None else temperature,
            max_tokens=self.max_tokens,
            **kwargs,
        )
        return self._reply(llm_resp)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _build_messages(self, prompt: str) -> list[dict[str, str]]:
        """Assemble the full message list for the provider."""
        messages: list[dict[str, str]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": prompt})
        return messages

    def _reply(self, llm_resp: LLMResponse) -> AgentReply:
        self._total_tokens_used += llm_resp.tokens_used
        return AgentReply(
            agent_id=self.agent_id,
            role=self.role,
            content=llm_resp.text.strip(),
            tokens_used=llm_resp.tokens_used,
            provider=llm_resp.provider,
            model=llm_resp.model,
            latency_ms=llm_resp.latency_ms,
        )

    @property
    def total_tokens_used(self) -> int:
        return self._total_tokens_used

    # ------------------------------------------------------------------
    # Dunder
    # ------------------------------------------------------------------

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(id={self.agent_id!r}, "
            f"role={self.role.value!r}, provider={self.provider})"
        )

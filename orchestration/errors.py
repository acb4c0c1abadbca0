"""Errors raised by the orchestration layer.

Every error carries a stable ``code`` so clients can branch on it without
parsing messages.
"""

from __future__ import annotations

from typing import Any


class DebateError(Exception):
    """Base class for orchestration failures."""

    code = "debate_error"

    def __init__(self, message: str, *, debate_id: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.debate_id = debate_id

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class ValidationError(DebateError):
    """The debate cannot start in its current state."""

    code = "validation_error"


class CompositionError(ValidationError):
    """The roster is not two opposing debaters plus one judge."""

    code = "composition_error"


class CapacityError(DebateError):
    """Too many debates are already running."""

    code = "capacity_exceeded"


class RoundFailure(DebateError):
    """A round could not complete its speeches or scoring."""

    code = "round_failed"

    def __init__(self, message: str, *, debate_id: int | None = None, sequence: int) -> None:
        super().__init__(message, debate_id=debate_id)
        self.sequence = sequence


class DebateFailure(DebateError):
    """The debate was aborted and marked failed."""

    code = "debate_failed"


class AudienceStepFailure(DebateError):
    """One audience member's request, approval or speech failed."""

    code = "audience_step_failed"

    def __init__(self, message: str, *, debate_id: int | None = None, agent_id: str) -> None:
        super().__init__(message, debate_id=debate_id)
        self.agent_id = agent_id


class FinalizationError(DebateError):
    """The verdict could not be computed or stored."""

    code = "finalization_failed"

"""Pydantic models mirroring the SQLite schema."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class DebateStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Winner(str, Enum):
    PRO = "pro"
    CON = "con"
    DRAW = "draw"


class AgentRole(str, Enum):
    """Roles an agent can hold in a debate."""

    DEBATER = "debater"
    JUDGE = "judge"
    AUDIENCE = "audience"


class Stance(str, Enum):
    PRO = "pro"
    CON = "con"


class Phase(str, Enum):
    OPENING = "opening"
    REBUTTAL = "rebuttal"
    CLOSING = "closing"


class RequestIntent(str, Enum):
    SUPPORT_PRO = "support_pro"
    SUPPORT_CON = "support_con"

    @property
    def stance(self) -> Stance:
        return Stance.PRO if self is RequestIntent.SUPPORT_PRO else Stance.CON


class Novelty(str, Enum):
    NEW = "new"
    REINFORCEMENT = "reinforcement"


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------

class DebateRecord(BaseModel):
    """Row in the ``debates`` table."""

    id: int | None = None
    topic: str = Field(min_length=1)
    pro_definition: str | None = None
    con_definition: str | None = None
    max_rounds: int = Field(default=10, ge=1, le=20)
    judge_weight: float = Field(default=0.5, ge=0.0, le=1.0)
    audience_weight: float = 0.5
    status: DebateStatus = DebateStatus.PENDING
    winner: Winner | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @field_validator("topic")
    @classmethod
    def _topic_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("topic must not be blank")
        return value.strip()

    @model_validator(mode="after")
    def _derive_audience_weight(self) -> DebateRecord:
        self.audience_weight = round(1.0 - self.judge_weight, 6)
        return self


class AgentRecord(BaseModel):
    """Row in the ``agents`` table."""

    id: str
    debate_id: int | None = None
    role: AgentRole
    stance: Stance | None = None
    model_provider: str
    model_name: str
    style_tag: str | None = None
    audience_type: str | None = None
    config_json: str = "{}"

    @property
    def config(self) -> dict[str, Any]:
        return json.loads(self.config_json or "{}")

    @model_validator(mode="after")
    def _stance_only_for_debaters(self) -> AgentRecord:
        if self.role is AgentRole.DEBATER and self.stance is None:
            raise ValueError("debaters must declare a stance")
        if self.role is not AgentRole.DEBATER:
            self.stance = None
        return self


class RoundRecord(BaseModel):
    """Row in the ``rounds`` table."""

    id: int | None = None
    debate_id: int
    sequence: int = Field(ge=1)
    phase: Phase
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = None


class MessageRecord(BaseModel):
    """Row in the ``messages`` table."""

    id: int | None = None
    round_id: int
    agent_id: str
    content: str
    token_count: int = 0
    created_at: datetime = Field(default_factory=_utcnow)


class TranscriptEntry(BaseModel):
    """A message joined with its round and speaker, in transcript order."""

    message_id: int
    round_id: int
    sequence: int
    agent_id: str
    role: AgentRole
    stance: Stance | None = None
    audience_type: str | None = None
    content: str

    @property
    def label(self) -> str:
        if self.stance is not None:
            return self.stance.value.upper()
        return self.role.value.upper()


class ScoreRecord(BaseModel):
    """Row in the ``scores`` table."""

    round_id: int
    agent_id: str
    logic: float = Field(ge=0, le=10)
    rebuttal: float = Field(ge=0, le=10)
    clarity: float = Field(ge=0, le=10)
    evidence: float = Field(ge=0, le=10)
    comment: str | None = None

    @property
    def total(self) -> float:
        return self.logic + self.rebuttal + self.clarity + self.evidence


class RoundScoreRow(ScoreRecord):
    """A score joined with its round sequence and the debater's stance."""

    sequence: int
    stance: Stance


class AudienceRequestRecord(BaseModel):
    """Row in the ``audience_requests`` table."""

    id: int | None = None
    round_id: int
    agent_id: str
    intent: RequestIntent
    claim: str = Field(min_length=1, max_length=2000)
    novelty: Novelty = Novelty.NEW
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    status: RequestStatus = RequestStatus.PENDING
    judge_comment: str | None = None


class VoteRecord(BaseModel):
    """Row in the ``votes`` table."""

    agent_id: str
    debate_id: int
    vote: Winner
    confidence: float = Field(ge=0.0, le=1.0)
    reason: str | None = Field(default=None, max_length=500)

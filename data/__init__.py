"""Data layer – SQLite storage and Pydantic models."""

from data.models import (
    AgentRecord,
    AgentRole,
    AudienceRequestRecord,
    DebateRecord,
    DebateStatus,
    MessageRecord,
    Phase,
    RequestStatus,
    RoundRecord,
    ScoreRecord,
    Stance,
    TranscriptEntry,
    VoteRecord,
    Winner,
)
from data.database import DebateDatabase

__all__ = [
    "AgentRecord",
    "AgentRole",
    "AudienceRequestRecord",
    "DebateDatabase",
    "DebateRecord",
    "DebateStatus",
    "MessageRecord",
    "Phase",
    "RequestStatus",
    "RoundRecord",
    "ScoreRecord",
    "Stance",
    "TranscriptEntry",
    "VoteRecord",
    "Winner",
]

"""Orchestration layer – session registry, rounds, audience step and verdicts."""

from orchestration.errors import (
    AudienceStepFailure,
    CapacityError,
    CompositionError,
    DebateError,
    DebateFailure,
    FinalizationError,
    RoundFailure,
    ValidationError,
)
from orchestration.events import DebateEvent, EventBroadcaster, EventType, format_sse
from orchestration.phases import in_audience_window, phase_plan, resolve_phase
from orchestration.settings import DebateSettings, load_settings
from orchestration.audience import AudienceRequestBroker
from orchestration.rounds import Roster, RoundExecutor
from orchestration.finalizer import JudgmentFinalizer
from orchestration.registry import DebateSession, SessionRegistry

__all__ = [
    "AudienceRequestBroker",
    "AudienceStepFailure",
    "CapacityError",
    "CompositionError",
    "DebateError",
    "DebateEvent",
    "DebateFailure",
    "DebateSession",
    "DebateSettings",
    "EventBroadcaster",
    "EventType",
    "FinalizationError",
    "JudgmentFinalizer",
    "Roster",
    "RoundExecutor",
    "RoundFailure",
    "SessionRegistry",
    "ValidationError",
    "format_sse",
    "in_audience_window",
    "load_settings",
    "phase_plan",
    "resolve_phase",
]

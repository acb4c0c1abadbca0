"""Validators for debate rosters, configurations, speeches and votes."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from data.models import AgentRecord, AgentRole, Stance, TranscriptEntry, Winner

logger = logging.getLogger(__name__)

AUDIENCE_TYPES = ("rational", "pragmatic", "technical", "risk-averse", "emotional")
DEBATER_STYLES = ("rational", "aggressive", "conservative", "technical")
MAX_VOTE_REASON = 500


@dataclass
class ValidationResult:
    """Outcome of a validation check."""

    valid: bool
    issues: list[str]

    def __bool__(self) -> bool:
        return self.valid

    def describe(self) -> str:
        return "; ".join(self.issues)


class DebateValidator:
    """Validates debate setups and agent output against configurable rules."""

    def __init__(
        self,
        min_speech_length: int = 20,
        max_speech_length: int = 5000,
        require_unique_content: bool = True,
    ) -> None:
        self.min_speech_length = min_speech_length
        self.max_speech_length = max_speech_length
        self.require_unique_content = require_unique_content

    def validate_roster(self, agents: list[AgentRecord]) -> ValidationResult:
        """Exactly two debaters of opposite stance and exactly one judge."""
        issues: list[str] = []

        debaters = [a for a in agents if a.role is AgentRole.DEBATER]
        judges = [a for a in agents if a.role is AgentRole.JUDGE]

        if len(debaters) != 2:
            issues.append(f"Expected 2 debaters, found {len(debaters)}")
        elif {d.stance for d in debaters} != {Stance.PRO, Stance.CON}:
            issues.append("Debaters must hold opposite stances (one pro, one con)")
        if len(judges) != 1:
            issues.append(f"Expected 1 judge, found {len(judges)}")

        for a in agents:
            if a.role is AgentRole.AUDIENCE and a.audience_type not in (None, *AUDIENCE_TYPES):
                logger.warning("Agent %s has unknown audience type %r", a.id, a.audience_type)
            if a.role is AgentRole.DEBATER and a.style_tag not in (None, *DEBATER_STYLES):
                logger.warning("Agent %s has unknown style %r", a.id, a.style_tag)

        return ValidationResult(valid=len(issues) == 0, issues=issues)

    def validate_debate_config(
        self,
        topic: str,
        max_rounds: int,
        judge_weight: float,
    ) -> ValidationResult:
        """Validate debate configuration before it is stored."""
        issues: list[str] = []

        if not topic.strip():
            issues.append("Topic must not be empty")
        if not 1 <= max_rounds <= 20:
            issues.append("max_rounds must be between 1 and 20")
        if not 0.0 <= judge_weight <= 1.0:
            issues.append("judge_weight must be between 0 and 1")

        return ValidationResult(valid=len(issues) == 0, issues=issues)

    def validate_speech(
        self,
        agent_id: str,
        content: str,
        transcript: list[TranscriptEntry],
    ) -> ValidationResult:
        """Check a single speech. Problems are reported, never fatal."""
        issues: list[str] = []

        content_len = len(content.strip())
        if content_len == 0:
            issues.append("Speech is empty")
        elif content_len < self.min_speech_length:
            issues.append(
                f"Speech too short ({content_len} chars, minimum {self.min_speech_length})"
            )
        if content_len > self.max_speech_length:
            issues.append(
                f"Speech too long ({content_len} chars, maximum {self.max_speech_length})"
            )

        if self.require_unique_content and content_len:
            for prev in transcript:
                if prev.content.strip() == content.strip():
                    issues.append(f"Duplicate of {prev.label}'s speech from round {prev.sequence}")
                    break

        if issues:
            logger.warning("Validation failed for %s: %s", agent_id, "; ".join(issues))

        return ValidationResult(valid=len(issues) == 0, issues=issues)

    def validate_vote(
        self,
        vote: str,
        confidence: float,
        reason: str | None = None,
    ) -> ValidationResult:
        issues: list[str] = []

        if vote not in {w.value for w in Winner}:
            issues.append(f"Vote must be one of pro, con or draw, got {vote!r}")
        if not 0.0 <= confidence <= 1.0:
            issues.append("Confidence must be between 0 and 1")
        if reason is not None and len(reason) > MAX_VOTE_REASON:
            issues.append(f"Reason exceeds {MAX_VOTE_REASON} characters")

        return ValidationResult(valid=len(issues) == 0, issues=issues)

"""Judge agent – scores debater speeches and rules on audience requests."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from agents.base import BaseAgent, DebateContext, extract_json, format_transcript
from agents.llm_provider import LLMProvider
from data.models import AgentRecord, AudienceRequestRecord, Stance

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = """\
You are the impartial **Judge** of a structured debate. Your responsibilities:
1. Score each debater's speech on four dimensions (0-10):
   - logic: clarity of the claims and rigour of the reasoning
   - rebuttal: how effectively the opponent's points are answered
   - clarity: how clear and well organised the delivery is
   - evidence: how well facts, data and examples support the claims
2. Flag fouls: ad_hominem, off_topic, disruption, other.
3. Decide whether audience members may take the floor.

Be fair and brief. Always answer with the JSON object requested.
"""

FOUL_TYPES = ("ad_hominem", "off_topic", "disruption", "other")
FALLBACK_COMMENT = "Scoring output could not be parsed; default scores applied."


# ---------------------------------------------------------------------------
# Structured outputs
# ---------------------------------------------------------------------------

def _comment(value: Any) -> str:
    return str(value or "").strip()


def _clamp(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 5.0
    return max(0.0, min(10.0, number))


class JudgeScore(BaseModel):
    """One scoring decision for one speech."""

    logic: float = 5.0
    rebuttal: float = 5.0
    clarity: float = 5.0
    evidence: float = 5.0
    comment: str = ""
    fouls: list[str] = Field(default_factory=list)

    @field_validator("logic", "rebuttal", "clarity", "evidence", mode="before")
    @classmethod
    def _into_range(cls, value: Any) -> float:
        return _clamp(value)

    @field_validator("comment", mode="before")
    @classmethod
    def _comment_text(cls, value: Any) -> str:
        return _comment(value)

    @field_validator("fouls", mode="before")
    @classmethod
    def _known_fouls(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [f if f in FOUL_TYPES else "other" for f in (str(v) for v in value) if f]

    @property
    def total(self) -> float:
        return self.logic + self.rebuttal + self.clarity + self.evidence

    def comment_with_fouls(self) -> str:
        """The comment with one ``FOUL: <type>`` marker appended per foul."""
        markers = " ".join(f"FOUL: {foul}" for foul in self.fouls)
        return f"{self.comment} {markers}".strip()

    @classmethod
    def fallback(cls) -> JudgeScore:
        return cls(comment=FALLBACK_COMMENT)


class ApprovalDecision(BaseModel):
    """The judge's ruling on one audience request."""

    approved: bool = False
    comment: str = ""

    @field_validator("comment", mode="before")
    @classmethod
    def _comment_text(cls, value: Any) -> str:
        return _comment(value)


# ---------------------------------------------------------------------------
# Judge
# ---------------------------------------------------------------------------

class Judge(BaseAgent):
    """Agent that scores speeches and approves or rejects audience requests."""

    def __init__(
        self,
        record: AgentRecord,
        provider: LLMProvider,
        *,
        temperature: float = 0.3,
        max_tokens: int = 400,
        system_prompt: str = _SYSTEM_PROMPT,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            record,
            provider,
            temperature=temperature,
            max_tokens=max_tokens,
            system_prompt=system_prompt,
        )

    async def score(self, context: DebateContext, stance: Stance, content: str) -> JudgeScore:
        """Score one speech. Output that cannot be parsed yields neutral 5s."""
        reply = await self.generate_response(self._scoring_prompt(context, stance, content))
        return self.parse_score(reply.content)

    async def approve(
        self,
        context: DebateContext,
        request: AudienceRequestRecord,
        audience_type: str | None,
        round_context: str,
    ) -> ApprovalDecision:
        """Rule on an audience request. Output that cannot be parsed is a rejection."""
        prompt = self._approval_prompt(context, request, audience_type, round_context)
        reply = await self.generate_response(prompt)
        return self.parse_approval(reply.content)

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    @staticmethod
    def parse_score(text: str) -> JudgeScore:
        data = extract_json(text)
        if data is None:
            logger.warning("Judge scoring output was not JSON; using default scores")
            return JudgeScore.fallback()
        try:
            return JudgeScore.model_validate(data)
        except ValidationError as exc:
            logger.warning("Judge scoring output rejected: %s", exc)
            return JudgeScore.fallback()

    @staticmethod
    def parse_approval(text: str) -> ApprovalDecision:
        data = extract_json(text)
        if data is None:
            logger.warning("Judge approval output was not JSON; rejecting request")
            return ApprovalDecision(approved=False, comment="Approval output could not be parsed")
        try:
            decision = ApprovalDecision.model_validate(data)
        except ValidationError as exc:
            logger.warning("Judge approval output rejected: %s", exc)
            return ApprovalDecision(approved=False, comment="Approval output could not be parsed")
        return decision

    # ------------------------------------------------------------------
    # Prompts
    # ------------------------------------------------------------------

    def _scoring_prompt(self, context: DebateContext, stance: Stance, content: str) -> str:
        return (
            f"Motion: '{context.topic}'\n"
            f"Round {context.sequence}/{context.max_rounds} ({context.phase.value})\n"
            f"Speaker: {stance.value.upper()}\n\n"
            f"Speech:\n{content}\n\n"
            f"Score the speech. Each dimension is an integer from 0 to 10, the comment "
            f"is at most 50 words, fouls is a list drawn from {list(FOUL_TYPES)}.\n"
            f"Answer with JSON only:\n"
            f"```json\n"
            f'{{"logic": 7, "rebuttal": 6, "clarity": 8, "evidence": 5, '
            f'"comment": "...", "fouls": []}}\n'
            f"```"
        )

    def _approval_prompt(
        self,
        context: DebateContext,
        request: AudienceRequestRecord,
        audience_type: str | None,
        round_context: str,
    ) -> str:
        return (
            f"Motion: '{context.topic}'\n"
            f"Round {context.sequence}/{context.max_rounds}\n\n"
            f"An audience member asks to speak:\n"
            f"- request id: {request.id}\n"
            f"- audience type: {audience_type or 'unknown'}\n"
            f"- supports: {request.intent.value}\n"
            f"- claim: {request.claim}\n"
            f"- novelty: {request.novelty.value}\n"
            f"- confidence: {request.confidence}\n\n"
            f"This round so far:\n{round_context}\n\n"
            f"Approve only if the claim is relevant, adds something new or reinforces "
            f"an existing argument, and improves the debate at this point.\n"
            f"Answer with JSON only:\n"
            f"```json\n"
            f'{{"approved": true, "comment": "..."}}\n'
            f"```"
        )


def round_context_summary(context: DebateContext, pro_content: str, con_content: str) -> str:
    """Short description of the round handed to the judge when ruling on requests."""
    recent = format_transcript(context.transcript, limit=4)
    return (
        f"Phase: {context.phase.value}\n"
        f"PRO said: {pro_content[:300]}\n"
        f"CON said: {con_content[:300]}\n"
        f"Recent statements:\n{recent}"
    )

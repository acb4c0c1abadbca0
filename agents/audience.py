"""Audience agent – asks for the floor, speaks when allowed, votes at the end."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from agents.base import AgentReply, BaseAgent, DebateContext, extract_json, format_transcript
from agents.llm_provider import LLMProvider, TokenCallback
from data.models import AgentRecord, AudienceRequestRecord, Stance, TranscriptEntry, Winner

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = """\
You are a member of the **Audience** watching a structured debate. You may
occasionally ask for the floor to add a point, and you vote for the more
convincing side once the debate is over. Stay on the motion, keep it short
and always answer with the JSON object requested when one is asked for.
"""

AUDIENCE_TYPE_DESCRIPTIONS: dict[str, str] = {
    "rational": "Rational: you value rigorous logic and well-structured arguments.",
    "pragmatic": "Pragmatic: you care about feasibility, cost and real-world impact.",
    "technical": "Technical: you judge claims on technical detail and scientific grounding.",
    "risk-averse": "Risk-averse: you are alert to risks, side effects and downsides.",
    "emotional": "Emotional: you respond to values, empathy and persuasive delivery.",
}

VOTE_FALLBACK_REASON = "Vote output could not be parsed; decided by judge scores."


# ---------------------------------------------------------------------------
# Structured outputs
# ---------------------------------------------------------------------------

class SpeakRequest(BaseModel):
    """What an audience member answers when offered the floor."""

    wants_to_speak: bool = False
    content: str = ""
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)

    @field_validator("content", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return str(value or "").strip()[:2000]

    @field_validator("confidence", mode="before")
    @classmethod
    def _usable_confidence(cls, value: Any) -> float | None:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
        return number if 0.0 <= number <= 1.0 else None


class VoteDecision(BaseModel):
    """One audience member's final vote."""

    vote: Winner
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    reason: str = Field(default="", max_length=500)

    @field_validator("vote", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("reason", mode="before")
    @classmethod
    def _trim_reason(cls, value: Any) -> str:
        return str(value or "")[:500]

    @classmethod
    def from_scores(cls, pro_total: float, con_total: float) -> VoteDecision:
        """Fallback vote for the side the judge scored higher."""
        diff = abs(pro_total - con_total)
        top = max(pro_total, con_total)
        confidence = 1 - (diff / top) * 0.5 if top > 0 else 0.5
        return cls(
            vote=Winner.PRO if pro_total >= con_total else Winner.CON,
            confidence=max(0.5, min(1.0, confidence)),
            reason=VOTE_FALLBACK_REASON,
        )


# ---------------------------------------------------------------------------
# AudienceMember
# ---------------------------------------------------------------------------

class AudienceMember(BaseAgent):
    """Agent representing one audience perspective (``audience_type``)."""

    def __init__(
        self,
        record: AgentRecord,
        provider: LLMProvider,
        *,
        temperature: float = 0.7,
        speech_temperature: float = 0.8,
        vote_temperature: float = 0.5,
        max_tokens: int = 500,
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
        self.speech_temperature = speech_temperature
        self.vote_temperature = vote_temperature

    @property
    def audience_type(self) -> str:
        return self.record.audience_type or "rational"

    @property
    def perspective(self) -> str:
        return AUDIENCE_TYPE_DESCRIPTIONS.get(
            self.audience_type, AUDIENCE_TYPE_DESCRIPTIONS["rational"]
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def request_to_speak(self, context: DebateContext) -> SpeakRequest:
        """Ask whether this member wants the floor. Unparsable output means no."""
        reply = await self.generate_response(self._request_prompt(context))
        return self.parse_request(reply.content)

    async def speak(
        self,
        context: DebateContext,
        request: AudienceRequestRecord,
        *,
        on_token: TokenCallback | None = None,
    ) -> AgentReply:
        """Deliver the approved intervention, streaming tokens to *on_token*."""
        return await self.stream_response(
            self._speech_prompt(context, request),
            on_token=on_token,
            temperature=self.speech_temperature,
        )

    async def vote(
        self,
        context: DebateContext,
        pro_total: float,
        con_total: float,
    ) -> VoteDecision:
        """Cast the final vote. Unparsable output follows the judge's scores."""
        reply = await self.generate_response(
            self._vote_prompt(context, pro_total, con_total),
            temperature=self.vote_temperature,
        )
        return self.parse_vote(reply.content, pro_total, con_total)

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    @staticmethod
    def parse_request(text: str) -> SpeakRequest:
        data = extract_json(text)
        if data is None:
            return SpeakRequest()
        try:
            return SpeakRequest.model_validate(data)
        except ValidationError as exc:
            logger.warning("Audience request output rejected: %s", exc)
            return SpeakRequest()

    @staticmethod
    def parse_vote(text: str, pro_total: float, con_total: float) -> VoteDecision:
        data = extract_json(text)
        if data is not None:
            try:
                return VoteDecision.model_validate(data)
            except ValidationError as exc:
                logger.warning("Audience vote output rejected: %s", exc)
        return VoteDecision.from_scores(pro_total, con_total)

    # ------------------------------------------------------------------
    # Prompts
    # ------------------------------------------------------------------

    def _request_prompt(self, context: DebateContext) -> str:
        return (
            f"Motion: '{context.topic}'\n"
            f"Your perspective: {self.perspective}\n"
            f"Round {context.sequence}/{context.max_rounds}\n"
            f"PRO position: {context.definition_for(Stance.PRO)}\n"
            f"CON position: {context.definition_for(Stance.CON)}\n\n"
            f"Recent statements:\n{format_transcript(context.transcript, limit=6)}\n\n"
            f"Do you want to add a question or point (at most 50 words)? Speaking is "
            f"optional; do not repeat what has already been said.\n"
            f"Answer with JSON only:\n"
            f"```json\n"
            f'{{"wants_to_speak": true, "content": "..."}}\n'
            f"```"
        )

    def _speech_prompt(self, context: DebateContext, request: AudienceRequestRecord) -> str:
        side = "PRO" if request.intent.stance is Stance.PRO else "CON"
        return (
            f"Motion: '{context.topic}'\n"
            f"Your perspective: {self.perspective}\n"
            f"The judge has given you the floor to support the {side} side.\n"
            f"Your point: {request.claim}\n\n"
            f"Recent statements:\n{format_transcript(context.transcript, limit=6)}\n\n"
            f"Make your point in at most 120 words."
        )

    def _vote_prompt(self, context: DebateContext, pro_total: float, con_total: float) -> str:
        pro_args, con_args = summarize_arguments(context.transcript)
        return (
            f"The debate on '{context.topic}' is over.\n"
            f"Your perspective: {self.perspective}\n"
            f"PRO position: {context.definition_for(Stance.PRO)}\n"
            f"CON position: {context.definition_for(Stance.CON)}\n\n"
            f"PRO arguments:\n{pro_args}\n\n"
            f"CON arguments:\n{con_args}\n\n"
            f"Judge totals: PRO {pro_total:g}, CON {con_total:g}\n\n"
            f"Which side was more convincing from your perspective? Give a reason "
            f"in at most 30 words.\n"
            f"Answer with JSON only:\n"
            f"```json\n"
            f'{{"vote": "pro", "confidence": 0.8, "reason": "..."}}\n'
            f"```\n"
            f'vote is one of "pro", "con" or "draw".'
        )


def summarize_arguments(entries: list[TranscriptEntry]) -> tuple[str, str]:
    """Concatenate debater speeches per side for the voting prompt."""
    pro = "\n".join(e.content for e in entries if e.stance is Stance.PRO)
    con = "\n".join(e.content for e in entries if e.stance is Stance.CON)
    return pro or "(no PRO statements)", con or "(no CON statements)"

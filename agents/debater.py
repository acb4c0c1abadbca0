"""Debater agent – argues one side of the motion, phase by phase."""

from __future__ import annotations

from typing import Any

from agents.base import AgentReply, BaseAgent, DebateContext, format_transcript
from agents.llm_provider import LLMProvider, TokenCallback
from data.models import AgentRecord, Phase, Stance

_SYSTEM_PROMPT = """\
You are a skilled competitive **Debater**. Your responsibilities:
1. Argue consistently for the side you have been assigned.
2. Support every claim with facts, data, examples or explicit reasoning.
3. Engage directly with what your opponent has actually said.
4. Never repeat a point you have already made.

Keep each speech between 200 and 300 words.
"""

STYLE_DESCRIPTIONS: dict[str, str] = {
    "rational": (
        "Rational and logical: build tight chains of reasoning, make causal links "
        "explicit and avoid emotional language."
    ),
    "aggressive": (
        "Aggressive: go straight for the holes in your opponent's case, using sharp "
        "contrasts and rhetorical questions."
    ),
    "conservative": (
        "Conservative: hold your ground, defend your position steadily and counter "
        "from a secure footing."
    ),
    "technical": (
        "Technical: lean on domain terminology, technical data and concrete case "
        "studies."
    ),
}

_PHASE_GUIDANCE: dict[Phase, str] = {
    Phase.OPENING: (
        "This is the OPENING phase. State your core position clearly and present "
        "two or three main arguments, each backed by reasoning and a concrete example."
    ),
    Phase.REBUTTAL: (
        "This is the REBUTTAL phase.\n"
        "1. Rebut your opponent's points with reasons and evidence.\n"
        "2. Strengthen and extend your own arguments.\n"
        "3. Quote your opponent's earlier statements where useful.\n"
        "4. Do not repeat what has already been said."
    ),
    Phase.CLOSING: (
        "This is the CLOSING phase.\n"
        "1. Summarise your core arguments.\n"
        "2. Emphasise your strongest evidence.\n"
        "3. Answer your opponent's most forceful attack.\n"
        "4. Finish with a convincing final statement."
    ),
}


class Debater(BaseAgent):
    """Agent that argues for a fixed stance in a style given by ``style_tag``."""

    def __init__(
        self,
        record: AgentRecord,
        provider: LLMProvider,
        *,
        temperature: float = 0.7,
        max_tokens: int = 800,
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

    @property
    def stance(self) -> Stance:
        assert self.record.stance is not None
        return self.record.stance

    @property
    def style_description(self) -> str:
        return STYLE_DESCRIPTIONS.get(self.record.style_tag or "", STYLE_DESCRIPTIONS["rational"])

    async def speak(
        self, context: DebateContext, *, on_token: TokenCallback | None = None
    ) -> AgentReply:
        """Deliver this round's speech, streaming tokens to *on_token*."""
        return await self.stream_response(self.build_prompt(context), on_token=on_token)

    def build_prompt(self, context: DebateContext) -> str:
        side = "PRO (for the motion)" if self.stance is Stance.PRO else "CON (against the motion)"
        return (
            f"Motion: '{context.topic}'\n"
            f"Your side: {side}\n"
            f"Round {context.sequence}/{context.max_rounds}, phase: {context.phase.value}\n\n"
            f"Position definitions:\n"
            f"- PRO: {context.definition_for(Stance.PRO)}\n"
            f"- CON: {context.definition_for(Stance.CON)}\n\n"
            f"Transcript so far:\n{format_transcript(context.transcript)}\n\n"
            f"{_PHASE_GUIDANCE[context.phase]}\n\n"
            f"Your style: {self.style_description}\n\n"
            f"Your speech:"
        )

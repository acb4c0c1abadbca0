"""RoundExecutor – runs one debate round from first token to ``round_end``.

A round is strictly sequential: pro speech, con speech, judge scoring,
then the optional audience step. Any failure before the audience step
aborts the round with a ``RoundFailure``; nothing from the judge is stored
for a round that did not score both sides.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from agents.audience import AudienceMember
from agents.base import AgentReply, BaseAgent, DebateContext
from agents.debater import Debater
from agents.judge import Judge, JudgeScore
from data.database import DebateDatabase
from data.models import (
    AgentRole,
    DebateRecord,
    MessageRecord,
    RoundRecord,
    ScoreRecord,
    Stance,
    TranscriptEntry,
)
from evaluation.validators import DebateValidator
from orchestration.audience import AudienceOutcome, AudienceRequestBroker
from orchestration.errors import CompositionError, RoundFailure
from orchestration.events import EventBroadcaster, EventType, relay_speech
from orchestration.phases import in_audience_window, resolve_phase
from orchestration.settings import DebateSettings

logger = logging.getLogger(__name__)


@dataclass
class Roster:
    """The built agents of one debate, by role."""

    pro: Debater
    con: Debater
    judge: Judge
    audience: list[AudienceMember] = field(default_factory=list)

    @classmethod
    def from_agents(cls, agents: list[BaseAgent]) -> Roster:
        debaters = {a.stance: a for a in agents if isinstance(a, Debater)}
        judges = [a for a in agents if isinstance(a, Judge)]
        if set(debaters) != {Stance.PRO, Stance.CON} or len(judges) != 1:
            raise CompositionError("Roster needs one pro debater, one con debater and one judge")
        return cls(
            pro=debaters[Stance.PRO],
            con=debaters[Stance.CON],
            judge=judges[0],
            audience=[a for a in agents if isinstance(a, AudienceMember)],
        )

    def debater(self, stance: Stance) -> Debater:
        return self.pro if stance is Stance.PRO else self.con


@dataclass
class RoundResult:
    """Everything a completed round produced."""

    round: RoundRecord
    speeches: dict[Stance, AgentReply]
    scores: dict[Stance, JudgeScore]
    transcript: list[TranscriptEntry] = field(default_factory=list)
    audience: AudienceOutcome | None = None


class RoundExecutor:
    """Runs single rounds of a debate.

    Parameters
    ----------
    db : DebateDatabase
        Store for rounds, messages and scores.
    broadcaster : EventBroadcaster
        Sink for round, speech and score events.
    settings : DebateSettings
        Supplies the audience window.
    broker : AudienceRequestBroker | None
        Audience step; built from the other arguments when omitted.
    """

    def __init__(
        self,
        db: DebateDatabase,
        broadcaster: EventBroadcaster,
        settings: DebateSettings,
        *,
        broker: AudienceRequestBroker | None = None,
        validator: DebateValidator | None = None,
    ) -> None:
        self.db = db
        self.broadcaster = broadcaster
        self.settings = settings
        self.broker = broker or AudienceRequestBroker(db, broadcaster, settings)
        self.validator = validator or DebateValidator()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run_round(self, debate: DebateRecord, roster: Roster, sequence: int) -> RoundResult:
        """Execute round *sequence* of *debate*. Raises ``RoundFailure``."""
        assert debate.id is not None
        try:
            result = await self._speeches_and_scores(debate, roster, sequence)
        except RoundFailure:
            raise
        except Exception as exc:
            raise RoundFailure(
                f"Round {sequence} failed: {exc}", debate_id=debate.id, sequence=sequence
            ) from exc

        rnd = result.round
        assert rnd.id is not None
        if roster.audience and in_audience_window(sequence, self.settings.audience_window):
            context = self._context(debate, sequence, result.transcript)
            try:
                result.audience = await self.broker.run(
                    debate.id,
                    rnd,
                    context,
                    roster.judge,
                    roster.audience,
                    pro_content=result.speeches[Stance.PRO].content,
                    con_content=result.speeches[Stance.CON].content,
                )
            except Exception:  # noqa: BLE001
                logger.warning(
                    "Debate #%d round %d: audience step failed", debate.id, sequence, exc_info=True
                )

        try:
            await self.db.complete_round(rnd.id)
        except Exception as exc:
            raise RoundFailure(
                f"Round {sequence} could not be completed: {exc}",
                debate_id=debate.id,
                sequence=sequence,
            ) from exc
        self.broadcaster.emit(
            debate.id, EventType.ROUND_END, {"round_id": rnd.id, "sequence": sequence}
        )
        logger.info("Debate #%d: round %d/%d complete", debate.id, sequence, debate.max_rounds)
        return result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _speeches_and_scores(
        self, debate: DebateRecord, roster: Roster, sequence: int
    ) -> RoundResult:
        assert debate.id is not None
        phase = resolve_phase(sequence, debate.max_rounds)
        rnd = await self.db.create_round(
            RoundRecord(debate_id=debate.id, sequence=sequence, phase=phase)
        )
        assert rnd.id is not None
        self.broadcaster.emit(
            debate.id,
            EventType.ROUND_START,
            {"round_id": rnd.id, "sequence": sequence, "phase": phase.value},
        )
        logger.info(
            "Debate #%d: round %d/%d (%s) started", debate.id, sequence, debate.max_rounds, phase.value
        )

        transcript = await self.db.get_transcript(debate.id)
        speeches: dict[Stance, AgentReply] = {}
        for stance in (Stance.PRO, Stance.CON):
            debater = roster.debater(stance)
            context = self._context(debate, sequence, transcript)
            reply = await relay_speech(
                self.broadcaster,
                debate.id,
                agent_id=debater.agent_id,
                role=AgentRole.DEBATER.value,
                stance=stance.value,
                speak=lambda on_token, d=debater, c=context: d.speak(c, on_token=on_token),
            )
            self.validator.validate_speech(debater.agent_id, reply.content, transcript)
            message_id = await self.db.save_message(
                MessageRecord(
                    round_id=rnd.id,
                    agent_id=debater.agent_id,
                    content=reply.content,
                    token_count=reply.tokens_used,
                )
            )
            speeches[stance] = reply
            transcript = [
                *transcript,
                TranscriptEntry(
                    message_id=message_id,
                    round_id=rnd.id,
                    sequence=sequence,
                    agent_id=debater.agent_id,
                    role=AgentRole.DEBATER,
                    stance=stance,
                    content=reply.content,
                ),
            ]

        context = self._context(debate, sequence, transcript)
        scores: dict[Stance, JudgeScore] = {}
        for stance in (Stance.PRO, Stance.CON):
            scores[stance] = await roster.judge.score(context, stance, speeches[stance].content)

        await self.db.save_scores(
            [
                ScoreRecord(
                    round_id=rnd.id,
                    agent_id=roster.debater(stance).agent_id,
                    logic=score.logic,
                    rebuttal=score.rebuttal,
                    clarity=score.clarity,
                    evidence=score.evidence,
                    comment=score.comment_with_fouls(),
                )
                for stance, score in scores.items()
            ]
        )
        self.broadcaster.emit(
            debate.id,
            EventType.SCORE_UPDATE,
            {
                "round_id": rnd.id,
                "scores": {
                    "pro": scores[Stance.PRO].total,
                    "con": scores[Stance.CON].total,
                },
            },
        )
        return RoundResult(round=rnd, speeches=speeches, scores=scores, transcript=transcript)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _context(
        debate: DebateRecord, sequence: int, transcript: list[TranscriptEntry]
    ) -> DebateContext:
        return DebateContext(
            topic=debate.topic,
            sequence=sequence,
            max_rounds=debate.max_rounds,
            phase=resolve_phase(sequence, debate.max_rounds),
            pro_definition=debate.pro_definition,
            con_definition=debate.con_definition,
            transcript=transcript,
        )


"""JudgmentFinalizer – turns the scored rounds into the stored verdict."""

from __future__ import annotations

import asyncio
import logging

from agents.audience import AudienceMember
from agents.base import DebateContext
from data.database import DebateDatabase
from data.models import DebateRecord, Stance, VoteRecord
from evaluation.judgment import Verdict, compute_verdict
from orchestration.errors import FinalizationError
from orchestration.events import EventBroadcaster, EventType
from orchestration.phases import resolve_phase
from orchestration.settings import DebateSettings

logger = logging.getLogger(__name__)


class JudgmentFinalizer:
    """Computes, persists and announces the verdict of a finished debate.

    Parameters
    ----------
    db : DebateDatabase
        Source of the per-round scores and target for winner and votes.
    broadcaster : EventBroadcaster
        Receives ``debate_end`` and tears the channel down after a grace delay.
    settings : DebateSettings
        Supplies the draw threshold, grace delay and the voting switch.
    """

    def __init__(
        self,
        db: DebateDatabase,
        broadcaster: EventBroadcaster,
        settings: DebateSettings,
    ) -> None:
        self.db = db
        self.broadcaster = broadcaster
        self.settings = settings

    async def finalize(
        self,
        debate: DebateRecord,
        audience: list[AudienceMember] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> Verdict | None:
        """Store winner and completion time, then emit ``debate_end``.

        Returns ``None`` without storing or announcing anything when the
        debate was stopped (``cancel_event`` set, or no longer running in the
        store). Raises ``FinalizationError``; in that case no winner is stored.
        """
        assert debate.id is not None
        try:
            totals = await self.db.get_stance_totals(debate.id)
            verdict = compute_verdict(
                debate.id, totals, debate.judge_weight, self.settings.draw_threshold
            )
            if audience and self.settings.audience_voting:
                await self.cast_votes(debate, audience, totals)
            if cancel_event is not None and cancel_event.is_set():
                stored = False
            else:
                stored = await self.db.mark_completed(debate.id, verdict.winner)
        except Exception as exc:
            raise FinalizationError(
                f"Could not finalize debate #{debate.id}: {exc}", debate_id=debate.id
            ) from exc

        if not stored:
            logger.info("Debate #%d was stopped before its verdict was stored", debate.id)
            return None

        self.broadcaster.emit(debate.id, EventType.DEBATE_END, verdict.to_dict())
        logger.info(
            "Debate #%d finished: %s (pro %.1f, con %.1f)",
            debate.id,
            verdict.winner.value,
            verdict.final_scores["pro"],
            verdict.final_scores["con"],
        )
        self.broadcaster.schedule_teardown(debate.id, self.settings.teardown_grace)
        return verdict

    async def cast_votes(
        self,
        debate: DebateRecord,
        audience: list[AudienceMember],
        totals: dict[Stance, float],
    ) -> list[VoteRecord]:
        """Collect one vote per audience member; a failed vote is skipped."""
        assert debate.id is not None
        transcript = await self.db.get_transcript(debate.id)
        context = DebateContext(
            topic=debate.topic,
            sequence=debate.max_rounds,
            max_rounds=debate.max_rounds,
            phase=resolve_phase(debate.max_rounds, debate.max_rounds),
            pro_definition=debate.pro_definition,
            con_definition=debate.con_definition,
            transcript=transcript,
        )
        results = await asyncio.gather(
            *(self._vote(debate.id, m, context, totals) for m in audience)
        )
        votes = [v for v in results if v is not None]
        logger.info("Debate #%d: %d/%d audience votes cast", debate.id, len(votes), len(audience))
        return votes

    async def _vote(
        self,
        debate_id: int,
        member: AudienceMember,
        context: DebateContext,
        totals: dict[Stance, float],
    ) -> VoteRecord | None:
        try:
            decision = await member.vote(context, totals[Stance.PRO], totals[Stance.CON])
            record = VoteRecord(
                agent_id=member.agent_id,
                debate_id=debate_id,
                vote=decision.vote,
                confidence=decision.confidence,
                reason=decision.reason or None,
            )
            await self.db.save_vote(record)
        except Exception:  # noqa: BLE001
            logger.warning(
                "Debate #%d: vote from %s failed", debate_id, member.agent_id, exc_info=True
            )
            return None
        return record

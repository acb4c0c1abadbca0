"""Audience participation inside a round.

Members are asked whether they want the floor, the judge rules on every
request in submission order, and approved members speak one after another
with the same streaming contract as the debaters. A failure at any step
for one member is logged and confined to that member.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from agents.audience import AudienceMember, SpeakRequest
from agents.base import AgentReply, DebateContext
from agents.judge import Judge, round_context_summary
from data.database import DebateDatabase
from data.models import (
    AudienceRequestRecord,
    MessageRecord,
    Novelty,
    RequestStatus,
    RoundRecord,
)
from evaluation.classifiers import IntentClassifier, infer_intent
from orchestration.errors import AudienceStepFailure
from orchestration.events import EventBroadcaster, EventType, relay_speech
from orchestration.settings import DebateSettings

logger = logging.getLogger(__name__)

APPROVAL_FAILED_COMMENT = "Approval failed"


@dataclass
class AudienceOutcome:
    """What happened during one round's audience step."""

    requests: list[AudienceRequestRecord] = field(default_factory=list)
    approved: list[AudienceRequestRecord] = field(default_factory=list)
    speeches: list[AgentReply] = field(default_factory=list)
    failures: list[AudienceStepFailure] = field(default_factory=list)


class AudienceRequestBroker:
    """Collects speak requests, obtains judge approval and runs the speeches.

    Parameters
    ----------
    db : DebateDatabase
        Store for requests and the resulting messages.
    broadcaster : EventBroadcaster
        Sink for ``audience_*`` and speech events.
    settings : DebateSettings
        Supplies the default request confidence.
    classify_intent : IntentClassifier
        Maps request text to the side it supports.
    """

    def __init__(
        self,
        db: DebateDatabase,
        broadcaster: EventBroadcaster,
        settings: DebateSettings,
        *,
        classify_intent: IntentClassifier = infer_intent,
    ) -> None:
        self.db = db
        self.broadcaster = broadcaster
        self.settings = settings
        self.classify_intent = classify_intent

    async def run(
        self,
        debate_id: int,
        round_rec: RoundRecord,
        context: DebateContext,
        judge: Judge,
        audience: list[AudienceMember],
        *,
        pro_content: str,
        con_content: str,
    ) -> AudienceOutcome:
        outcome = AudienceOutcome()
        if not audience:
            return outcome
        assert round_rec.id is not None
        members = {m.agent_id: m for m in audience}

        # 1. requests, gathered concurrently and stored in roster order
        answers = await asyncio.gather(
            *(self._ask(debate_id, m, context, outcome) for m in audience)
        )
        for member, answer in zip(audience, answers):
            if answer is None or not answer.wants_to_speak or not answer.content:
                continue
            try:
                request = await self.db.create_audience_request(
                    AudienceRequestRecord(
                        round_id=round_rec.id,
                        agent_id=member.agent_id,
                        intent=self.classify_intent(answer.content),
                        claim=answer.content,
                        novelty=Novelty.NEW,
                        confidence=(
                            answer.confidence
                            if answer.confidence is not None
                            else self.settings.default_request_confidence
                        ),
                    )
                )
            except Exception as exc:  # noqa: BLE001
                self._isolate(debate_id, member.agent_id, "request", exc, outcome)
                continue
            outcome.requests.append(request)

        if not outcome.requests:
            return outcome

        self.broadcaster.emit(
            debate_id,
            EventType.AUDIENCE_REQUESTS,
            {"round_id": round_rec.id, "requests_count": len(outcome.requests)},
        )

        # 2. approvals, in submission order
        round_context = round_context_summary(context, pro_content, con_content)
        for request in outcome.requests:
            member = members[request.agent_id]
            if await self._rule(debate_id, judge, member, request, context, round_context, outcome):
                outcome.approved.append(request)

        # 3. approved speeches, one at a time
        for request in outcome.approved:
            member = members[request.agent_id]
            reply = await self._speak(debate_id, round_rec, member, request, context, outcome)
            if reply is not None:
                outcome.speeches.append(reply)

        logger.info(
            "Debate #%d round %d: %d audience requests, %d approved, %d spoke",
            debate_id,
            round_rec.sequence,
            len(outcome.requests),
            len(outcome.approved),
            len(outcome.speeches),
        )
        return outcome

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _ask(
        self,
        debate_id: int,
        member: AudienceMember,
        context: DebateContext,
        outcome: AudienceOutcome,
    ) -> SpeakRequest | None:
        try:
            return await member.request_to_speak(context)
        except Exception as exc:  # noqa: BLE001
            self._isolate(debate_id, member.agent_id, "request", exc, outcome)
            return None

    async def _rule(
        self,
        debate_id: int,
        judge: Judge,
        member: AudienceMember,
        request: AudienceRequestRecord,
        context: DebateContext,
        round_context: str,
        outcome: AudienceOutcome,
    ) -> bool:
        assert request.id is not None
        try:
            decision = await judge.approve(context, request, member.audience_type, round_context)
            if decision.approved:
                await self.db.approve_audience_request(request.id, decision.comment)
            else:
                await self.db.reject_audience_request(request.id, decision.comment)
            approved, comment = decision.approved, decision.comment
        except Exception as exc:  # noqa: BLE001
            self._isolate(debate_id, member.agent_id, "approval", exc, outcome)
            approved, comment = False, APPROVAL_FAILED_COMMENT
            try:
                await self.db.reject_audience_request(request.id, comment)
            except Exception as db_exc:  # noqa: BLE001
                self._isolate(debate_id, member.agent_id, "approval", db_exc, outcome)

        request.status = RequestStatus.APPROVED if approved else RequestStatus.REJECTED
        request.judge_comment = comment
        self.broadcaster.emit(
            debate_id,
            EventType.AUDIENCE_APPROVAL,
            {
                "request_id": request.id,
                "agent_id": member.agent_id,
                "approved": approved,
                "comment": comment,
            },
        )
        return approved

    async def _speak(
        self,
        debate_id: int,
        round_rec: RoundRecord,
        member: AudienceMember,
        request: AudienceRequestRecord,
        context: DebateContext,
        outcome: AudienceOutcome,
    ) -> AgentReply | None:
        assert round_rec.id is not None
        try:
            reply = await relay_speech(
                self.broadcaster,
                debate_id,
                agent_id=member.agent_id,
                role=member.role.value,
                stance=request.intent.stance.value,
                speak=lambda on_token: member.speak(context, request, on_token=on_token),
            )
            await self.db.save_message(
                MessageRecord(
                    round_id=round_rec.id,
                    agent_id=member.agent_id,
                    content=reply.content,
                    token_count=reply.tokens_used,
                )
            )
        except Exception as exc:  # noqa: BLE001
            self._isolate(debate_id, member.agent_id, "speech", exc, outcome)
            return None

        self.broadcaster.emit(
            debate_id,
            EventType.AUDIENCE_SPEECH,
            {
                "agent_id": member.agent_id,
                "audience_type": member.audience_type,
                "content": reply.content,
            },
        )
        return reply

    def _isolate(
        self,
        debate_id: int,
        agent_id: str,
        step: str,
        exc: Exception,
        outcome: AudienceOutcome,
    ) -> None:
        failure = AudienceStepFailure(
            f"Audience {step} failed for {agent_id}: {exc}",
            debate_id=debate_id,
            agent_id=agent_id,
        )
        outcome.failures.append(failure)
        logger.warning("Debate #%d: %s", debate_id, failure.message)

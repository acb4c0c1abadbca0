"""Tests for the AudienceRequestBroker: ordering, approval and isolation."""

from __future__ import annotations

import json

import pytest

from agents.base import DebateContext
from data.models import Phase, RequestIntent, RequestStatus, RoundRecord
from orchestration.audience import APPROVAL_FAILED_COMMENT, AudienceRequestBroker
from orchestration.rounds import Roster
from orchestration.settings import DebateSettings
from tests.conftest import EventRecorder, MockProvider, audience_responder, judge_responder


async def _prepare(test_db, seed_debate, agent_factory, settings, audience_types):
    debate_id = await seed_debate(max_rounds=4, audience_types=audience_types)
    debate = await test_db.get_debate(debate_id)
    rnd = await test_db.create_round(RoundRecord(debate_id=debate_id, sequence=3, phase=Phase.REBUTTAL))
    records = await test_db.get_agents(debate_id)
    roster = Roster.from_agents([agent_factory(r, settings) for r in records])
    context = DebateContext(
        topic=debate.topic,
        sequence=3,
        max_rounds=4,
        phase=Phase.REBUTTAL,
    )
    return debate_id, rnd, roster, context


async def _run(broker, debate_id, rnd, roster, context):
    return await broker.run(
        debate_id,
        rnd,
        context,
        roster.judge,
        roster.audience,
        pro_content="PRO said something about data.",
        con_content="CON replied with theory.",
    )


def _fails_on(marker: str, base):
    def respond(messages):
        if marker in messages[-1]["content"]:
            raise RuntimeError(f"failed on {marker!r}")
        return base(messages)

    return respond


class TestBroker:
    @pytest.mark.asyncio
    async def test_requests_approved_and_spoken(
        self, test_db, seed_debate, agent_factory, settings, broadcaster
    ):
        debate_id, rnd, roster, context = await _prepare(
            test_db, seed_debate, agent_factory, settings, ("rational", "emotional")
        )
        rec = EventRecorder()
        broadcaster.subscribe(debate_id, rec)

        outcome = await _run(AudienceRequestBroker(test_db, broadcaster, settings), debate_id, rnd, roster, context)

        assert [r.agent_id for r in outcome.requests] == [f"d{debate_id}-aud1", f"d{debate_id}-aud2"]
        assert len(outcome.approved) == 2
        assert len(outcome.speeches) == 2
        assert outcome.failures == []

        stored = await test_db.get_audience_requests(debate_id)
        assert [r.status for r in stored] == [RequestStatus.APPROVED, RequestStatus.APPROVED]
        assert all(r.intent is RequestIntent.SUPPORT_PRO for r in stored)
        assert all(r.confidence == settings.default_request_confidence for r in stored)

        types = [t for t in rec.types if t != "token"]
        assert types[0] == "audience_requests"
        assert rec.of("audience_requests")[0].data == {"round_id": rnd.id, "requests_count": 2}
        assert types.count("audience_approval") == 2
        assert types.count("audience_speech") == 2
        speech = rec.of("audience_speech")[0].data
        assert speech["audience_type"] == "rational"
        starts = rec.of("agent_start")
        assert starts[0].data["role"] == "audience"
        assert starts[0].data["stance"] == "pro"

        transcript = await test_db.get_transcript(debate_id)
        assert len(transcript) == 2

    @pytest.mark.asyncio
    async def test_default_confidence_from_settings(
        self, test_db, seed_debate, agent_factory, broadcaster
    ):
        settings = DebateSettings(
            inter_round_delay=0.0, teardown_grace=0.0, default_request_confidence=0.6
        )
        debate_id, rnd, roster, context = await _prepare(
            test_db, seed_debate, agent_factory, settings, ("rational",)
        )
        await _run(AudienceRequestBroker(test_db, broadcaster, settings), debate_id, rnd, roster, context)
        stored = await test_db.get_audience_requests(debate_id)
        assert stored[0].confidence == 0.6

    @pytest.mark.asyncio
    async def test_out_of_range_confidence_uses_default(
        self, test_db, seed_debate, agent_factory, settings, providers, broadcaster
    ):
        debate_id = await seed_debate(max_rounds=4, audience_types=("technical",))
        base = audience_responder()

        def overconfident(messages):
            if "Do you want to add" in messages[-1]["content"]:
                return json.dumps(
                    {"wants_to_speak": True, "content": "Pro is right on costs.", "confidence": 1.5}
                )
            return base(messages)

        providers[f"d{debate_id}-aud1"] = MockProvider(responder=overconfident)
        rnd = await test_db.create_round(RoundRecord(debate_id=debate_id, sequence=3, phase=Phase.REBUTTAL))
        records = await test_db.get_agents(debate_id)
        roster = Roster.from_agents([agent_factory(r, settings) for r in records])
        context = DebateContext(topic="t", sequence=3, max_rounds=4, phase=Phase.REBUTTAL)

        outcome = await _run(
            AudienceRequestBroker(test_db, broadcaster, settings), debate_id, rnd, roster, context
        )

        assert len(outcome.requests) == 1
        stored = await test_db.get_audience_requests(debate_id)
        assert stored[0].claim == "Pro is right on costs."
        assert stored[0].confidence == settings.default_request_confidence

    @pytest.mark.asyncio
    async def test_members_who_pass_create_no_request(
        self, test_db, seed_debate, agent_factory, settings, providers, broadcaster
    ):
        debate_id = await seed_debate(max_rounds=4, audience_types=("rational", "pragmatic"))
        providers[f"d{debate_id}-aud1"] = MockProvider(
            responder=audience_responder(wants_to_speak=False)
        )
        providers[f"d{debate_id}-aud2"] = MockProvider(responses=["no thanks"])
        rnd = await test_db.create_round(RoundRecord(debate_id=debate_id, sequence=3, phase=Phase.REBUTTAL))
        records = await test_db.get_agents(debate_id)
        roster = Roster.from_agents([agent_factory(r, settings) for r in records])
        context = DebateContext(topic="t", sequence=3, max_rounds=4, phase=Phase.REBUTTAL)
        rec = EventRecorder()
        broadcaster.subscribe(debate_id, rec)

        outcome = await _run(AudienceRequestBroker(test_db, broadcaster, settings), debate_id, rnd, roster, context)

        assert outcome.requests == []
        assert rec.events == []
        assert providers[f"d{debate_id}-judge"].call_log == []

    @pytest.mark.asyncio
    async def test_rejected_request_does_not_speak(
        self, test_db, seed_debate, agent_factory, settings, providers, broadcaster
    ):
        debate_id = await seed_debate(max_rounds=4, audience_types=("rational",))
        providers[f"d{debate_id}-judge"] = MockProvider(responder=judge_responder(approve=False))
        rnd = await test_db.create_round(RoundRecord(debate_id=debate_id, sequence=3, phase=Phase.REBUTTAL))
        records = await test_db.get_agents(debate_id)
        roster = Roster.from_agents([agent_factory(r, settings) for r in records])
        context = DebateContext(topic="t", sequence=3, max_rounds=4, phase=Phase.REBUTTAL)
        rec = EventRecorder()
        broadcaster.subscribe(debate_id, rec)

        outcome = await _run(AudienceRequestBroker(test_db, broadcaster, settings), debate_id, rnd, roster, context)

        assert outcome.approved == []
        assert outcome.speeches == []
        stored = await test_db.get_audience_requests(debate_id)
        assert stored[0].status is RequestStatus.REJECTED
        assert stored[0].judge_comment == "Repetitive"
        assert "audience_speech" not in rec.types
        assert rec.of("audience_approval")[0].data["approved"] is False


class TestIsolation:
    @pytest.mark.asyncio
    async def test_request_failure_is_confined(
        self, test_db, seed_debate, agent_factory, settings, providers, broadcaster
    ):
        debate_id = await seed_debate(max_rounds=4, audience_types=("rational", "technical"))
        providers[f"d{debate_id}-aud1"] = MockProvider(failures=[ValueError("garbled")])
        rnd = await test_db.create_round(RoundRecord(debate_id=debate_id, sequence=3, phase=Phase.REBUTTAL))
        records = await test_db.get_agents(debate_id)
        roster = Roster.from_agents([agent_factory(r, settings) for r in records])
        context = DebateContext(topic="t", sequence=3, max_rounds=4, phase=Phase.REBUTTAL)

        outcome = await _run(AudienceRequestBroker(test_db, broadcaster, settings), debate_id, rnd, roster, context)

        assert len(outcome.failures) == 1
        assert outcome.failures[0].agent_id == f"d{debate_id}-aud1"
        assert outcome.failures[0].code == "audience_step_failed"
        assert [r.agent_id for r in outcome.requests] == [f"d{debate_id}-aud2"]
        assert len(outcome.speeches) == 1

    @pytest.mark.asyncio
    async def test_approval_failure_rejects_request(
        self, test_db, seed_debate, agent_factory, settings, providers, broadcaster
    ):
        debate_id = await seed_debate(max_rounds=4, audience_types=("rational",))
        providers[f"d{debate_id}-judge"] = MockProvider(
            responder=_fails_on("asks to speak", judge_responder())
        )
        rnd = await test_db.create_round(RoundRecord(debate_id=debate_id, sequence=3, phase=Phase.REBUTTAL))
        records = await test_db.get_agents(debate_id)
        roster = Roster.from_agents([agent_factory(r, settings) for r in records])
        context = DebateContext(topic="t", sequence=3, max_rounds=4, phase=Phase.REBUTTAL)
        rec = EventRecorder()
        broadcaster.subscribe(debate_id, rec)

        outcome = await _run(AudienceRequestBroker(test_db, broadcaster, settings), debate_id, rnd, roster, context)

        assert outcome.approved == []
        assert len(outcome.failures) == 1
        stored = await test_db.get_audience_requests(debate_id)
        assert stored[0].status is RequestStatus.REJECTED
        assert stored[0].judge_comment == APPROVAL_FAILED_COMMENT
        approval = rec.of("audience_approval")[0].data
        assert approval["approved"] is False
        assert approval["comment"] == APPROVAL_FAILED_COMMENT

    @pytest.mark.asyncio
    async def test_speech_failure_is_confined(
        self, test_db, seed_debate, agent_factory, settings, providers, broadcaster
    ):
        debate_id = await seed_debate(max_rounds=4, audience_types=("rational", "emotional"))
        providers[f"d{debate_id}-aud1"] = MockProvider(
            responder=_fails_on("given you the floor", audience_responder())
        )
        rnd = await test_db.create_round(RoundRecord(debate_id=debate_id, sequence=3, phase=Phase.REBUTTAL))
        records = await test_db.get_agents(debate_id)
        roster = Roster.from_agents([agent_factory(r, settings) for r in records])
        context = DebateContext(topic="t", sequence=3, max_rounds=4, phase=Phase.REBUTTAL)
        rec = EventRecorder()
        broadcaster.subscribe(debate_id, rec)

        outcome = await _run(AudienceRequestBroker(test_db, broadcaster, settings), debate_id, rnd, roster, context)

        assert len(outcome.approved) == 2
        assert len(outcome.speeches) == 1
        assert [f.agent_id for f in outcome.failures] == [f"d{debate_id}-aud1"]
        speeches = rec.of("audience_speech")
        assert [s.data["agent_id"] for s in speeches] == [f"d{debate_id}-aud2"]
        assert "error" not in rec.types

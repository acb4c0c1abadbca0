"""Tests for the JudgmentFinalizer."""

from __future__ import annotations

import asyncio

import pytest

from data.models import AgentRole, DebateStatus, Phase, RoundRecord, ScoreRecord, Winner
from orchestration.errors import FinalizationError
from orchestration.finalizer import JudgmentFinalizer
from orchestration.settings import DebateSettings
from tests.conftest import EventRecorder, MockProvider


async def _running(db, seed_debate, **kwargs):
    debate_id = await seed_debate(**kwargs)
    await db.mark_started(debate_id)
    return debate_id


async def _score_round(db, debate_id, sequence, pro, con):
    rnd = await db.create_round(
        RoundRecord(debate_id=debate_id, sequence=sequence, phase=Phase.OPENING)
    )
    await db.save_scores(
        [
            ScoreRecord(
                round_id=rnd.id,
                agent_id=f"d{debate_id}-pro",
                logic=pro[0],
                rebuttal=pro[1],
                clarity=pro[2],
                evidence=pro[3],
            ),
            ScoreRecord(
                round_id=rnd.id,
                agent_id=f"d{debate_id}-con",
                logic=con[0],
                rebuttal=con[1],
                clarity=con[2],
                evidence=con[3],
            ),
        ]
    )
    await db.complete_round(rnd.id)
    return rnd


async def _audience(test_db, agent_factory, settings, debate_id):
    records = await test_db.get_agents(debate_id)
    return [
        agent_factory(r, settings) for r in records if r.role is AgentRole.AUDIENCE
    ]


class TestVerdict:
    @pytest.mark.asyncio
    async def test_pro_wins_on_weighted_totals(
        self, test_db, seed_debate, settings, broadcaster
    ):
        debate_id = await _running(test_db, seed_debate, judge_weight=0.5)
        await _score_round(test_db, debate_id, 1, (8, 8, 8, 8), (6, 6, 6, 6))
        await _score_round(test_db, debate_id, 2, (7, 7, 7, 7), (7, 7, 7, 7))
        rec = EventRecorder()
        broadcaster.subscribe(debate_id, rec)

        debate = await test_db.get_debate(debate_id)
        verdict = await JudgmentFinalizer(test_db, broadcaster, settings).finalize(debate)

        assert verdict.winner is Winner.PRO
        assert verdict.judge_scores == {"pro": 60.0, "con": 52.0}
        assert verdict.final_scores == {"pro": 30.0, "con": 26.0}

        stored = await test_db.get_debate(debate_id)
        assert stored.status is DebateStatus.COMPLETED
        assert stored.winner is Winner.PRO
        assert stored.completed_at is not None

        assert rec.types == ["debate_end"]
        assert rec.events[0].data == verdict.to_dict()
        assert broadcaster.subscriber_count(debate_id) == 0

    @pytest.mark.asyncio
    async def test_equal_totals_draw(self, test_db, seed_debate, settings, broadcaster):
        debate_id = await _running(test_db, seed_debate)
        await _score_round(test_db, debate_id, 1, (7, 6, 7, 6), (6, 7, 6, 7))

        debate = await test_db.get_debate(debate_id)
        verdict = await JudgmentFinalizer(test_db, broadcaster, settings).finalize(debate)

        assert verdict.winner is Winner.DRAW
        assert (await test_db.get_debate(debate_id)).winner is Winner.DRAW

    @pytest.mark.asyncio
    async def test_gap_below_threshold_is_draw(
        self, test_db, seed_debate, settings, broadcaster
    ):
        debate_id = await _running(test_db, seed_debate, judge_weight=0.5)
        await _score_round(test_db, debate_id, 1, (7, 7, 7, 7.1), (7, 7, 7, 7))

        debate = await test_db.get_debate(debate_id)
        verdict = await JudgmentFinalizer(test_db, broadcaster, settings).finalize(debate)

        assert verdict.winner is Winner.DRAW

    @pytest.mark.asyncio
    async def test_zero_judge_weight_is_draw(
        self, test_db, seed_debate, settings, broadcaster
    ):
        debate_id = await _running(test_db, seed_debate, judge_weight=0.0)
        await _score_round(test_db, debate_id, 1, (9, 9, 9, 9), (2, 2, 2, 2))

        debate = await test_db.get_debate(debate_id)
        verdict = await JudgmentFinalizer(test_db, broadcaster, settings).finalize(debate)

        assert verdict.winner is Winner.DRAW
        assert verdict.final_scores == {"pro": 0.0, "con": 0.0}
        assert verdict.judge_scores == {"pro": 36.0, "con": 8.0}

    @pytest.mark.asyncio
    async def test_storage_failure_raises(
        self, test_db, seed_debate, settings, broadcaster, monkeypatch
    ):
        debate_id = await _running(test_db, seed_debate)
        await _score_round(test_db, debate_id, 1, (8, 8, 8, 8), (6, 6, 6, 6))
        rec = EventRecorder()
        broadcaster.subscribe(debate_id, rec)

        async def broken(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(test_db, "mark_completed", broken)
        debate = await test_db.get_debate(debate_id)

        with pytest.raises(FinalizationError) as excinfo:
            await JudgmentFinalizer(test_db, broadcaster, settings).finalize(debate)

        assert excinfo.value.code == "finalization_failed"
        stored = await test_db.get_debate(debate_id)
        assert stored.winner is None
        assert rec.events == []

    @pytest.mark.asyncio
    async def test_cancelled_debate_stores_nothing(
        self, test_db, seed_debate, settings, broadcaster
    ):
        debate_id = await _running(test_db, seed_debate)
        await _score_round(test_db, debate_id, 1, (8, 8, 8, 8), (6, 6, 6, 6))
        rec = EventRecorder()
        broadcaster.subscribe(debate_id, rec)
        cancel = asyncio.Event()
        cancel.set()

        debate = await test_db.get_debate(debate_id)
        verdict = await JudgmentFinalizer(test_db, broadcaster, settings).finalize(
            debate, cancel_event=cancel
        )

        assert verdict is None
        stored = await test_db.get_debate(debate_id)
        assert stored.status is DebateStatus.RUNNING
        assert stored.winner is None
        assert rec.events == []

    @pytest.mark.asyncio
    async def test_failed_debate_is_not_completed(
        self, test_db, seed_debate, settings, broadcaster
    ):
        debate_id = await _running(test_db, seed_debate)
        await _score_round(test_db, debate_id, 1, (8, 8, 8, 8), (6, 6, 6, 6))
        await test_db.update_debate_status(debate_id, DebateStatus.FAILED)
        rec = EventRecorder()
        broadcaster.subscribe(debate_id, rec)

        debate = await test_db.get_debate(debate_id)
        verdict = await JudgmentFinalizer(test_db, broadcaster, settings).finalize(debate)

        assert verdict is None
        stored = await test_db.get_debate(debate_id)
        assert stored.status is DebateStatus.FAILED
        assert stored.winner is None
        assert "debate_end" not in rec.types


class TestVotes:
    @pytest.mark.asyncio
    async def test_votes_are_stored(
        self, test_db, seed_debate, agent_factory, settings, broadcaster
    ):
        debate_id = await _running(test_db, seed_debate, audience_types=("rational", "technical"))
        await _score_round(test_db, debate_id, 1, (8, 8, 8, 8), (6, 6, 6, 6))
        audience = await _audience(test_db, agent_factory, settings, debate_id)

        debate = await test_db.get_debate(debate_id)
        verdict = await JudgmentFinalizer(test_db, broadcaster, settings).finalize(
            debate, audience
        )

        votes = await test_db.get_votes(debate_id)
        assert len(votes) == 2
        assert all(v.vote is Winner.PRO and v.confidence == 0.7 for v in votes)
        # audience votes do not change the verdict
        assert verdict.final_scores == {"pro": 16.0, "con": 12.0}

    @pytest.mark.asyncio
    async def test_voting_switched_off(
        self, test_db, seed_debate, agent_factory, providers, broadcaster
    ):
        settings = DebateSettings(inter_round_delay=0.0, teardown_grace=0.0, audience_voting=False)
        debate_id = await _running(test_db, seed_debate, audience_types=("rational",))
        await _score_round(test_db, debate_id, 1, (8, 8, 8, 8), (6, 6, 6, 6))
        audience = await _audience(test_db, agent_factory, settings, debate_id)

        debate = await test_db.get_debate(debate_id)
        await JudgmentFinalizer(test_db, broadcaster, settings).finalize(debate, audience)

        assert await test_db.get_votes(debate_id) == []
        assert providers[f"d{debate_id}-aud1"].call_log == []

    @pytest.mark.asyncio
    async def test_unparsable_vote_follows_judge(
        self, test_db, seed_debate, agent_factory, settings, providers, broadcaster
    ):
        debate_id = await _running(test_db, seed_debate, audience_types=("emotional",))
        providers[f"d{debate_id}-aud1"] = MockProvider(responses=["CON, obviously."])
        await _score_round(test_db, debate_id, 1, (5, 5, 5, 5), (8, 8, 8, 8))
        audience = await _audience(test_db, agent_factory, settings, debate_id)

        debate = await test_db.get_debate(debate_id)
        await JudgmentFinalizer(test_db, broadcaster, settings).finalize(debate, audience)

        votes = await test_db.get_votes(debate_id)
        assert votes[0].vote is Winner.CON
        assert 0.5 <= votes[0].confidence <= 1.0

    @pytest.mark.asyncio
    async def test_failed_vote_is_skipped(
        self, test_db, seed_debate, agent_factory, settings, providers, broadcaster
    ):
        debate_id = await _running(test_db, seed_debate, audience_types=("rational", "pragmatic"))
        providers[f"d{debate_id}-aud2"] = MockProvider(failures=[RuntimeError("quota")])
        await _score_round(test_db, debate_id, 1, (8, 8, 8, 8), (6, 6, 6, 6))
        audience = await _audience(test_db, agent_factory, settings, debate_id)

        debate = await test_db.get_debate(debate_id)
        verdict = await JudgmentFinalizer(test_db, broadcaster, settings).finalize(
            debate, audience
        )

        votes = await test_db.get_votes(debate_id)
        assert [v.agent_id for v in votes] == [f"d{debate_id}-aud1"]
        assert verdict.winner is Winner.PRO

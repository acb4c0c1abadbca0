"""Tests for the async database layer."""

from __future__ import annotations

import sqlite3

import pytest

from data.database import DebateDatabase
from data.models import (
    AudienceRequestRecord,
    DebateRecord,
    DebateStatus,
    MessageRecord,
    Phase,
    RequestIntent,
    RequestStatus,
    RoundRecord,
    ScoreRecord,
    Stance,
    VoteRecord,
    Winner,
)


async def _round(db: DebateDatabase, debate_id: int, sequence: int = 1) -> RoundRecord:
    return await db.create_round(
        RoundRecord(debate_id=debate_id, sequence=sequence, phase=Phase.OPENING)
    )


class TestDebates:
    @pytest.mark.asyncio
    async def test_create_and_get(self, test_db: DebateDatabase):
        debate_id = await test_db.create_debate(
            DebateRecord(topic="  Is AI beneficial?  ", max_rounds=3, judge_weight=0.7)
        )
        debate = await test_db.get_debate(debate_id)
        assert debate is not None
        assert debate.topic == "Is AI beneficial?"
        assert debate.max_rounds == 3
        assert debate.judge_weight == 0.7
        assert debate.audience_weight == pytest.approx(0.3)
        assert debate.status is DebateStatus.PENDING
        assert debate.winner is None

    @pytest.mark.asyncio
    async def test_get_missing(self, test_db: DebateDatabase):
        assert await test_db.get_debate(999) is None

    @pytest.mark.asyncio
    async def test_list_newest_first(self, test_db: DebateDatabase):
        first = await test_db.create_debate(DebateRecord(topic="first"))
        second = await test_db.create_debate(DebateRecord(topic="second"))
        debates = await test_db.list_debates()
        assert [d.id for d in debates] == [second, first]

    @pytest.mark.asyncio
    async def test_lifecycle_timestamps(self, test_db: DebateDatabase):
        debate_id = await test_db.create_debate(DebateRecord(topic="t"))
        await test_db.mark_started(debate_id)
        running = await test_db.get_debate(debate_id)
        assert running.status is DebateStatus.RUNNING
        assert running.started_at is not None

        assert await test_db.mark_completed(debate_id, Winner.CON)
        done = await test_db.get_debate(debate_id)
        assert done.status is DebateStatus.COMPLETED
        assert done.winner is Winner.CON
        assert done.completed_at is not None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [DebateStatus.PENDING, DebateStatus.FAILED])
    async def test_only_running_debate_completes(self, test_db: DebateDatabase, status):
        debate_id = await test_db.create_debate(DebateRecord(topic="t"))
        await test_db.update_debate_status(debate_id, status)

        assert not await test_db.mark_completed(debate_id, Winner.PRO)

        debate = await test_db.get_debate(debate_id)
        assert debate.status is status
        assert debate.winner is None
        assert debate.completed_at is None

    @pytest.mark.asyncio
    async def test_update_status(self, test_db: DebateDatabase):
        debate_id = await test_db.create_debate(DebateRecord(topic="t"))
        await test_db.update_debate_status(debate_id, "failed")
        assert (await test_db.get_debate(debate_id)).status is DebateStatus.FAILED


class TestRoundsAndMessages:
    @pytest.mark.asyncio
    async def test_sequence_is_unique_per_debate(self, test_db, seed_debate):
        debate_id = await seed_debate()
        await _round(test_db, debate_id, 1)
        with pytest.raises(sqlite3.IntegrityError):
            await _round(test_db, debate_id, 1)

    @pytest.mark.asyncio
    async def test_transcript_order_and_speakers(self, test_db, seed_debate):
        debate_id = await seed_debate(audience_types=("rational",))
        r1 = await _round(test_db, debate_id, 1)
        r2 = await _round(test_db, debate_id, 2)
        for round_rec, agent, text in [
            (r1, "pro", "pro one"),
            (r1, "con", "con one"),
            (r2, "pro", "pro two"),
            (r2, "aud1", "audience aside"),
        ]:
            await test_db.save_message(
                MessageRecord(round_id=round_rec.id, agent_id=f"d{debate_id}-{agent}", content=text)
            )

        transcript = await test_db.get_transcript(debate_id)
        assert [e.content for e in transcript] == ["pro one", "con one", "pro two", "audience aside"]
        assert [e.label for e in transcript] == ["PRO", "CON", "PRO", "AUDIENCE"]
        assert transcript[3].audience_type == "rational"
        assert [e.sequence for e in transcript] == [1, 1, 2, 2]
        assert len(await test_db.get_messages(debate_id)) == 4


class TestScores:
    @pytest.mark.asyncio
    async def test_stance_totals(self, test_db, seed_debate):
        debate_id = await seed_debate()
        for seq, (pro, con) in enumerate([(8, 6), (7, 9)], start=1):
            rnd = await _round(test_db, debate_id, seq)
            await test_db.save_scores(
                [
                    ScoreRecord(round_id=rnd.id, agent_id=f"d{debate_id}-pro",
                                logic=pro, rebuttal=pro, clarity=pro, evidence=pro),
                    ScoreRecord(round_id=rnd.id, agent_id=f"d{debate_id}-con",
                                logic=con, rebuttal=con, clarity=con, evidence=con),
                ]
            )

        totals = await test_db.get_stance_totals(debate_id)
        assert totals == {Stance.PRO: 60.0, Stance.CON: 60.0}
        rows = await test_db.get_round_scores(debate_id)
        assert [(r.sequence, r.stance) for r in rows] == [
            (1, Stance.PRO), (1, Stance.CON), (2, Stance.PRO), (2, Stance.CON)
        ]

    @pytest.mark.asyncio
    async def test_totals_without_scores(self, test_db, seed_debate):
        debate_id = await seed_debate()
        assert await test_db.get_stance_totals(debate_id) == {Stance.PRO: 0.0, Stance.CON: 0.0}

    @pytest.mark.asyncio
    async def test_one_score_per_agent_per_round(self, test_db, seed_debate):
        debate_id = await seed_debate()
        rnd = await _round(test_db, debate_id)
        score = ScoreRecord(round_id=rnd.id, agent_id=f"d{debate_id}-pro",
                            logic=5, rebuttal=5, clarity=5, evidence=5)
        await test_db.save_scores([score])
        with pytest.raises(sqlite3.IntegrityError):
            await test_db.save_scores([score])


class TestAudienceAndVotes:
    @pytest.mark.asyncio
    async def test_request_resolution(self, test_db, seed_debate):
        debate_id = await seed_debate(audience_types=("technical",))
        rnd = await _round(test_db, debate_id, 3)
        request = await test_db.create_audience_request(
            AudienceRequestRecord(
                round_id=rnd.id,
                agent_id=f"d{debate_id}-aud1",
                intent=RequestIntent.SUPPORT_CON,
                claim="What about maintenance costs?",
            )
        )
        assert request.id is not None
        assert request.status is RequestStatus.PENDING

        await test_db.approve_audience_request(request.id, "Good question")
        stored = (await test_db.get_audience_requests(debate_id))[0]
        assert stored.status is RequestStatus.APPROVED
        assert stored.judge_comment == "Good question"
        assert stored.confidence == 0.8

    @pytest.mark.asyncio
    async def test_vote_upsert(self, test_db, seed_debate):
        debate_id = await seed_debate(audience_types=("emotional",))
        agent_id = f"d{debate_id}-aud1"
        await test_db.save_vote(VoteRecord(agent_id=agent_id, debate_id=debate_id,
                                           vote=Winner.PRO, confidence=0.6))
        await test_db.save_vote(VoteRecord(agent_id=agent_id, debate_id=debate_id,
                                           vote=Winner.CON, confidence=0.9, reason="changed"))
        votes = await test_db.get_votes(debate_id)
        assert len(votes) == 1
        assert votes[0].vote is Winner.CON
        assert votes[0].reason == "changed"


class TestCascades:
    async def _populate(self, db: DebateDatabase, debate_id: int) -> None:
        rnd = await _round(db, debate_id, 3)
        await db.save_message(
            MessageRecord(round_id=rnd.id, agent_id=f"d{debate_id}-pro", content="speech", token_count=12)
        )
        await db.save_scores(
            [ScoreRecord(round_id=rnd.id, agent_id=f"d{debate_id}-pro",
                         logic=5, rebuttal=5, clarity=5, evidence=5)]
        )
        await db.create_audience_request(
            AudienceRequestRecord(round_id=rnd.id, agent_id=f"d{debate_id}-aud1",
                                  intent=RequestIntent.SUPPORT_PRO, claim="I agree with pro")
        )
        await db.save_vote(VoteRecord(agent_id=f"d{debate_id}-aud1", debate_id=debate_id,
                                      vote=Winner.PRO, confidence=0.5))

    @pytest.mark.asyncio
    async def test_stats(self, test_db, seed_debate):
        debate_id = await seed_debate(audience_types=("rational",))
        await self._populate(test_db, debate_id)
        stats = await test_db.get_debate_stats(debate_id)
        assert stats == {
            "rounds": 1,
            "messages": 1,
            "scores": 1,
            "audience_requests": 1,
            "votes": 1,
            "total_tokens": 12,
        }

    @pytest.mark.asyncio
    async def test_reset_progress_keeps_debate_and_roster(self, test_db, seed_debate):
        debate_id = await seed_debate(audience_types=("rational",))
        await self._populate(test_db, debate_id)
        await test_db.mark_started(debate_id)
        await test_db.mark_completed(debate_id, Winner.PRO)

        removed = await test_db.reset_debate_progress(debate_id)

        assert removed == 1
        stats = await test_db.get_debate_stats(debate_id)
        assert stats == {
            "rounds": 0,
            "messages": 0,
            "scores": 0,
            "audience_requests": 0,
            "votes": 0,
            "total_tokens": 0,
        }
        debate = await test_db.get_debate(debate_id)
        assert debate.winner is None
        assert len(await test_db.get_agents(debate_id)) == 4

    @pytest.mark.asyncio
    async def test_delete_cascades(self, test_db, seed_debate):
        debate_id = await seed_debate(audience_types=("rational",))
        await self._populate(test_db, debate_id)

        await test_db.delete_debate(debate_id)

        assert await test_db.get_debate(debate_id) is None
        assert await test_db.get_agents(debate_id) == []
        assert (await test_db.get_debate_stats(debate_id))["rounds"] == 0
        assert await test_db.get_votes(debate_id) == []

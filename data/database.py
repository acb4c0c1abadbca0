"""Async SQLite database layer using aiosqlite.

Handles schema creation and CRUD for debates, agents, rounds, messages,
scores, audience requests and votes, plus the aggregate queries used by
the orchestrator, the judgment finalizer and the voting aggregator.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

from data.models import (
    AgentRecord,
    AudienceRequestRecord,
    DebateRecord,
    DebateStatus,
    MessageRecord,
    RequestStatus,
    RoundRecord,
    RoundScoreRow,
    ScoreRecord,
    Stance,
    TranscriptEntry,
    VoteRecord,
    Winner,
)

logger = logging.getLogger(__name__)

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS debates (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    topic           TEXT    NOT NULL,
    pro_definition  TEXT,
    con_definition  TEXT,
    max_rounds      INTEGER NOT NULL DEFAULT 10,
    judge_weight    REAL    NOT NULL DEFAULT 0.5,
    audience_weight REAL    NOT NULL DEFAULT 0.5,
    status          TEXT    NOT NULL DEFAULT 'pending',
    winner          TEXT,
    created_at      TEXT    NOT NULL,
    started_at      TEXT,
    completed_at    TEXT,
    CHECK (max_rounds BETWEEN 1 AND 20),
    CHECK (judge_weight BETWEEN 0 AND 1),
    CHECK (status IN ('pending', 'running', 'completed', 'failed'))
);

CREATE TABLE IF NOT EXISTS agents (
    id             TEXT    PRIMARY KEY,
    debate_id      INTEGER NOT NULL REFERENCES debates(id) ON DELETE CASCADE,
    role           TEXT    NOT NULL,
    stance         TEXT,
    model_provider TEXT    NOT NULL,
    model_name     TEXT    NOT NULL,
    style_tag      TEXT,
    audience_type  TEXT,
    config         TEXT    NOT NULL DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS rounds (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    debate_id    INTEGER NOT NULL REFERENCES debates(id) ON DELETE CASCADE,
    sequence     INTEGER NOT NULL,
    phase        TEXT    NOT NULL,
    started_at   TEXT    NOT NULL,
    completed_at TEXT,
    UNIQUE (debate_id, sequence)
);

CREATE TABLE IF NOT EXISTS messages (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    round_id    INTEGER NOT NULL REFERENCES rounds(id) ON DELETE CASCADE,
    agent_id    TEXT    NOT NULL REFERENCES agents(id) ON DELETE CASCADE,
    content     TEXT    NOT NULL,
    token_count INTEGER NOT NULL DEFAULT 0,
    created_at  TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS scores (
    round_id INTEGER NOT NULL REFERENCES rounds(id) ON DELETE CASCADE,
    agent_id TEXT    NOT NULL REFERENCES agents(id) ON DELETE CASCADE,
    logic    REAL    NOT NULL,
    rebuttal REAL    NOT NULL,
    clarity  REAL    NOT NULL,
    evidence REAL    NOT NULL,
    comment  TEXT,
    UNIQUE (round_id, agent_id),
    CHECK (logic BETWEEN 0 AND 10),
    CHECK (rebuttal BETWEEN 0 AND 10),
    CHECK (clarity BETWEEN 0 AND 10),
    CHECK (evidence BETWEEN 0 AND 10)
);

CREATE TABLE IF NOT EXISTS audience_requests (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    round_id      INTEGER NOT NULL REFERENCES rounds(id) ON DELETE CASCADE,
    agent_id      TEXT    NOT NULL REFERENCES agents(id) ON DELETE CASCADE,
    intent        TEXT    NOT NULL,
    claim         TEXT    NOT NULL,
    novelty       TEXT    NOT NULL,
    confidence    REAL    NOT NULL,
    status        TEXT    NOT NULL DEFAULT 'pending',
    judge_comment TEXT,
    CHECK (confidence BETWEEN 0 AND 1),
    CHECK (intent IN ('support_pro', 'support_con')),
    CHECK (novelty IN ('new', 'reinforcement')),
    CHECK (status IN ('pending', 'approved', 'rejected'))
);

CREATE TABLE IF NOT EXISTS votes (
    agent_id   TEXT    NOT NULL REFERENCES agents(id) ON DELETE CASCADE,
    debate_id  INTEGER NOT NULL REFERENCES debates(id) ON DELETE CASCADE,
    vote       TEXT    NOT NULL,
    confidence REAL    NOT NULL,
    reason     TEXT,
    UNIQUE (agent_id, debate_id),
    CHECK (confidence BETWEEN 0 AND 1),
    CHECK (vote IN ('pro', 'con', 'draw'))
);

CREATE INDEX IF NOT EXISTS idx_debates_status ON debates(status);
CREATE INDEX IF NOT EXISTS idx_agents_debate ON agents(debate_id);
CREATE INDEX IF NOT EXISTS idx_rounds_debate ON rounds(debate_id);
CREATE INDEX IF NOT EXISTS idx_messages_round ON messages(round_id);
CREATE INDEX IF NOT EXISTS idx_messages_created ON messages(created_at);
CREATE INDEX IF NOT EXISTS idx_votes_debate ON votes(debate_id);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _debate_from_row(r: aiosqlite.Row) -> DebateRecord:
    return DebateRecord(
        id=r["id"],
        topic=r["topic"],
        pro_definition=r["pro_definition"],
        con_definition=r["con_definition"],
        max_rounds=r["max_rounds"],
        judge_weight=r["judge_weight"],
        status=r["status"],
        winner=r["winner"],
        created_at=r["created_at"],
        started_at=r["started_at"],
        completed_at=r["completed_at"],
    )


def _agent_from_row(r: aiosqlite.Row) -> AgentRecord:
    return AgentRecord(
        id=r["id"],
        debate_id=r["debate_id"],
        role=r["role"],
        stance=r["stance"],
        model_provider=r["model_provider"],
        model_name=r["model_name"],
        style_tag=r["style_tag"],
        audience_type=r["audience_type"],
        config_json=r["config"],
    )


def _request_from_row(r: aiosqlite.Row) -> AudienceRequestRecord:
    return AudienceRequestRecord(
        id=r["id"],
        round_id=r["round_id"],
        agent_id=r["agent_id"],
        intent=r["intent"],
        claim=r["claim"],
        novelty=r["novelty"],
        confidence=r["confidence"],
        status=r["status"],
        judge_comment=r["judge_comment"],
    )


class DebateDatabase:
    """Async wrapper around an SQLite database for debate persistence."""

    def __init__(self, db_path: str | Path = "data/debates.db") -> None:
        self.db_path = Path(db_path)
        self._conn: aiosqlite.Connection | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open connection and ensure schema exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(str(self.db_path))
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA foreign_keys = ON")
        await self._conn.executescript(_SCHEMA)
        await self._conn.commit()
        logger.info("Database connected: %s", self.db_path)

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    # ------------------------------------------------------------------
    # Debates
    # ------------------------------------------------------------------

    async def create_debate(self, record: DebateRecord) -> int:
        """Insert a new debate and return its id."""
        cur = await self.conn.execute(
            "INSERT INTO debates (topic, pro_definition, con_definition, max_rounds, "
            "judge_weight, audience_weight, status, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                record.topic,
                record.pro_definition,
                record.con_definition,
                record.max_rounds,
                record.judge_weight,
                record.audience_weight,
                record.status.value,
                record.created_at.isoformat(),
            ),
        )
        await self.conn.commit()
        return cur.lastrowid  # type: ignore[return-value]

    async def get_debate(self, debate_id: int) -> DebateRecord | None:
        cur = await self.conn.execute("SELECT * FROM debates WHERE id = ?", (debate_id,))
        row = await cur.fetchone()
        return _debate_from_row(row) if row is not None else None

    async def list_debates(self, limit: int = 20) -> list[DebateRecord]:
        cur = await self.conn.execute(
            "SELECT * FROM debates ORDER BY id DESC LIMIT ?", (limit,)
        )
        rows = await cur.fetchall()
        return [_debate_from_row(r) for r in rows]

    async def update_debate_status(self, debate_id: int, status: DebateStatus | str) -> None:
        await self.conn.execute(
            "UPDATE debates SET status = ? WHERE id = ?",
            (DebateStatus(status).value, debate_id),
        )
        await self.conn.commit()

    async def mark_started(self, debate_id: int) -> None:
        await self.conn.execute(
            "UPDATE debates SET status = 'running', started_at = ?, winner = NULL, "
            "completed_at = NULL WHERE id = ?",
            (_now(), debate_id),
        )
        await self.conn.commit()

    async def mark_completed(self, debate_id: int, winner: Winner | str) -> bool:
        """Persist the verdict: winner, completed_at and status in one statement.

        Only a debate that is still running is updated. Returns whether the
        verdict was stored.
        """
        cur = await self.conn.execute(
            "UPDATE debates SET status = 'completed', winner = ?, completed_at = ? "
            "WHERE id = ? AND status = 'running'",
            (Winner(winner).value, _now(), debate_id),
        )
        await self.conn.commit()
        return cur.rowcount > 0

    async def delete_debate(self, debate_id: int) -> None:
        await self.conn.execute("DELETE FROM debates WHERE id = ?", (debate_id,))
        await self.conn.commit()

    async def reset_debate_progress(self, debate_id: int) -> int:
        """Remove every round (and, by cascade, its messages, scores and
        audience requests) plus any votes left by an earlier attempt.

        Returns the number of rounds removed.
        """
        cur = await self.conn.execute(
            "SELECT COUNT(*) AS cnt FROM rounds WHERE debate_id = ?", (debate_id,)
        )
        row = await cur.fetchone()
        removed = row["cnt"] if row else 0
        await self.conn.execute("DELETE FROM rounds WHERE debate_id = ?", (debate_id,))
        await self.conn.execute("DELETE FROM votes WHERE debate_id = ?", (debate_id,))
        await self.conn.execute(
            "UPDATE debates SET winner = NULL, completed_at = NULL WHERE id = ?",
            (debate_id,),
        )
        await self.conn.commit()
        return removed

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    async def save_agent(self, record: AgentRecord) -> str:
        await self.conn.execute(
            "INSERT INTO agents (id, debate_id, role, stance, model_provider, model_name, "
            "style_tag, audience_type, config) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                record.id,
                record.debate_id,
                record.role.value,
                record.stance.value if record.stance else None,
                record.model_provider,
                record.model_name,
                record.style_tag,
                record.audience_type,
                record.config_json,
            ),
        )
        await self.conn.commit()
        return record.id

    async def get_agents(self, debate_id: int) -> list[AgentRecord]:
        cur = await self.conn.execute(
            "SELECT * FROM agents WHERE debate_id = ? ORDER BY rowid", (debate_id,)
        )
        rows = await cur.fetchall()
        return [_agent_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Rounds
    # ------------------------------------------------------------------

    async def create_round(self, record: RoundRecord) -> RoundRecord:
        cur = await self.conn.execute(
            "INSERT INTO rounds (debate_id, sequence, phase, started_at) VALUES (?, ?, ?, ?)",
            (
                record.debate_id,
                record.sequence,
                record.phase.value,
                record.started_at.isoformat(),
            ),
        )
        await self.conn.commit()
        return record.model_copy(update={"id": cur.lastrowid})

    async def complete_round(self, round_id: int) -> None:
        await self.conn.execute(
            "UPDATE rounds SET completed_at = ? WHERE id = ?", (_now(), round_id)
        )
        await self.conn.commit()

    async def get_rounds(self, debate_id: int) -> list[RoundRecord]:
        cur = await self.conn.execute(
            "SELECT * FROM rounds WHERE debate_id = ? ORDER BY sequence", (debate_id,)
        )
        rows = await cur.fetchall()
        return [
            RoundRecord(
                id=r["id"],
                debate_id=r["debate_id"],
                sequence=r["sequence"],
                phase=r["phase"],
                started_at=r["started_at"],
                completed_at=r["completed_at"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def save_message(self, record: MessageRecord) -> int:
        cur = await self.conn.execute(
            "INSERT INTO messages (round_id, agent_id, content, token_count, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (
                record.round_id,
                record.agent_id,
                record.content,
                record.token_count,
                record.created_at.isoformat(),
            ),
        )
        await self.conn.commit()
        return cur.lastrowid  # type: ignore[return-value]

    async def get_messages(self, debate_id: int) -> list[MessageRecord]:
        cur = await self.conn.execute(
            "SELECT m.* FROM messages m JOIN rounds r ON r.id = m.round_id "
            "WHERE r.debate_id = ? ORDER BY m.created_at, m.id",
            (debate_id,),
        )
        rows = await cur.fetchall()
        return [
            MessageRecord(
                id=r["id"],
                round_id=r["round_id"],
                agent_id=r["agent_id"],
                content=r["content"],
                token_count=r["token_count"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    async def get_transcript(self, debate_id: int) -> list[TranscriptEntry]:
        """All messages of a debate with speaker details, in canonical order."""
        cur = await self.conn.execute(
            "SELECT m.id AS message_id, m.round_id, r.sequence, m.agent_id, a.role, "
            "a.stance, a.audience_type, m.content "
            "FROM messages m "
            "JOIN rounds r ON r.id = m.round_id "
            "JOIN agents a ON a.id = m.agent_id "
            "WHERE r.debate_id = ? ORDER BY m.created_at, m.id",
            (debate_id,),
        )
        rows = await cur.fetchall()
        return [
            TranscriptEntry(
                message_id=r["message_id"],
                round_id=r["round_id"],
                sequence=r["sequence"],
                agent_id=r["agent_id"],
                role=r["role"],
                stance=r["stance"],
                audience_type=r["audience_type"],
                content=r["content"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Scores
    # ------------------------------------------------------------------

    async def save_scores(self, records: list[ScoreRecord]) -> None:
        """Insert several score rows in one transaction."""
        await self.conn.executemany(
            "INSERT INTO scores (round_id, agent_id, logic, rebuttal, clarity, evidence, "
            "comment) VALUES (?, ?, ?, ?, ?, ?, ?)",
            [
                (s.round_id, s.agent_id, s.logic, s.rebuttal, s.clarity, s.evidence, s.comment)
                for s in records
            ],
        )
        await self.conn.commit()

    async def get_scores(self, round_id: int) -> list[ScoreRecord]:
        cur = await self.conn.execute(
            "SELECT * FROM scores WHERE round_id = ? ORDER BY rowid", (round_id,)
        )
        rows = await cur.fetchall()
        return [
            ScoreRecord(
                round_id=r["round_id"],
                agent_id=r["agent_id"],
                logic=r["logic"],
                rebuttal=r["rebuttal"],
                clarity=r["clarity"],
                evidence=r["evidence"],
                comment=r["comment"],
            )
            for r in rows
        ]

    async def get_round_scores(self, debate_id: int) -> list[RoundScoreRow]:
        """Every debater score of a debate, ordered by round sequence."""
        cur = await self.conn.execute(
            "SELECT s.*, r.sequence, a.stance FROM scores s "
            "JOIN rounds r ON r.id = s.round_id "
            "JOIN agents a ON a.id = s.agent_id "
            "WHERE r.debate_id = ? AND a.role = 'debater' "
            "ORDER BY r.sequence, a.stance DESC",
            (debate_id,),
        )
        rows = await cur.fetchall()
        return [
            RoundScoreRow(
                round_id=r["round_id"],
                agent_id=r["agent_id"],
                logic=r["logic"],
                rebuttal=r["rebuttal"],
                clarity=r["clarity"],
                evidence=r["evidence"],
                comment=r["comment"],
                sequence=r["sequence"],
                stance=r["stance"],
            )
            for r in rows
        ]

    async def get_stance_totals(self, debate_id: int) -> dict[Stance, float]:
        """Sum of logic+rebuttal+clarity+evidence per debater stance."""
        cur = await self.conn.execute(
            "SELECT a.stance AS stance, "
            "SUM(s.logic + s.rebuttal + s.clarity + s.evidence) AS total "
            "FROM scores s "
            "JOIN rounds r ON r.id = s.round_id "
            "JOIN agents a ON a.id = s.agent_id "
            "WHERE r.debate_id = ? AND a.role = 'debater' GROUP BY a.stance",
            (debate_id,),
        )
        rows = await cur.fetchall()
        totals = {Stance.PRO: 0.0, Stance.CON: 0.0}
        for r in rows:
            totals[Stance(r["stance"])] = float(r["total"] or 0.0)
        return totals

    # ------------------------------------------------------------------
    # Audience requests
    # ------------------------------------------------------------------

    async def create_audience_request(
        self, record: AudienceRequestRecord
    ) -> AudienceRequestRecord:
        cur = await self.conn.execute(
            "INSERT INTO audience_requests (round_id, agent_id, intent, claim, novelty, "
            "confidence, status) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                record.round_id,
                record.agent_id,
                record.intent.value,
                record.claim,
                record.novelty.value,
                record.confidence,
                record.status.value,
            ),
        )
        await self.conn.commit()
        return record.model_copy(update={"id": cur.lastrowid})

    async def resolve_audience_request(
        self, request_id: int, status: RequestStatus, comment: str | None
    ) -> None:
        await self.conn.execute(
            "UPDATE audience_requests SET status = ?, judge_comment = ? WHERE id = ?",
            (status.value, comment, request_id),
        )
        await self.conn.commit()

    async def approve_audience_request(self, request_id: int, comment: str | None) -> None:
        await self.resolve_audience_request(request_id, RequestStatus.APPROVED, comment)

    async def reject_audience_request(self, request_id: int, comment: str | None) -> None:
        await self.resolve_audience_request(request_id, RequestStatus.REJECTED, comment)

    async def get_audience_requests(self, debate_id: int) -> list[AudienceRequestRecord]:
        cur = await self.conn.execute(
            "SELECT q.* FROM audience_requests q JOIN rounds r ON r.id = q.round_id "
            "WHERE r.debate_id = ? ORDER BY q.id",
            (debate_id,),
        )
        rows = await cur.fetchall()
        return [_request_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Votes
    # ------------------------------------------------------------------

    async def save_vote(self, record: VoteRecord) -> None:
        """Insert or replace the single vote an audience member may cast."""
        await self.conn.execute(
            "INSERT INTO votes (agent_id, debate_id, vote, confidence, reason) "
            "VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT (agent_id, debate_id) DO UPDATE SET "
            "vote = excluded.vote, confidence = excluded.confidence, reason = excluded.reason",
            (
                record.agent_id,
                record.debate_id,
                record.vote.value,
                record.confidence,
                record.reason,
            ),
        )
        await self.conn.commit()

    async def get_votes(self, debate_id: int) -> list[VoteRecord]:
        cur = await self.conn.execute(
            "SELECT * FROM votes WHERE debate_id = ? ORDER BY rowid", (debate_id,)
        )
        rows = await cur.fetchall()
        return [
            VoteRecord(
                agent_id=r["agent_id"],
                debate_id=r["debate_id"],
                vote=r["vote"],
                confidence=r["confidence"],
                reason=r["reason"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Aggregate helpers
    # ------------------------------------------------------------------

    async def get_debate_stats(self, debate_id: int) -> dict[str, Any]:
        """Return row counts for a debate, used by the CLI and tests."""
        counts: dict[str, Any] = {}
        queries = {
            "rounds": "SELECT COUNT(*) AS cnt FROM rounds WHERE debate_id = ?",
            "messages": (
                "SELECT COUNT(*) AS cnt FROM messages m JOIN rounds r ON r.id = m.round_id "
                "WHERE r.debate_id = ?"
            ),
            "scores": (
                "SELECT COUNT(*) AS cnt FROM scores s JOIN rounds r ON r.id = s.round_id "
                "WHERE r.debate_id = ?"
            ),
            "audience_requests": (
                "SELECT COUNT(*) AS cnt FROM audience_requests q "
                "JOIN rounds r ON r.id = q.round_id WHERE r.debate_id = ?"
            ),
            "votes": "SELECT COUNT(*) AS cnt FROM votes WHERE debate_id = ?",
        }
        for name, sql in queries.items():
            cur = await self.conn.execute(sql, (debate_id,))
            row = await cur.fetchone()
            counts[name] = row["cnt"] if row else 0

        tok_cur = await self.conn.execute(
            "SELECT SUM(m.token_count) AS total FROM messages m "
            "JOIN rounds r ON r.id = m.round_id WHERE r.debate_id = ?",
            (debate_id,),
        )
        tok_row = await tok_cur.fetchone()
        counts["total_tokens"] = (tok_row["total"] or 0) if tok_row else 0
        return counts

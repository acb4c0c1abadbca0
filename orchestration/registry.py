"""SessionRegistry – admission control and lifecycle of running debates.

``start`` validates the debate, reserves a slot and launches the round loop
as a background task, all under one lock so concurrent callers cannot both
pass the capacity check. ``stop`` is idempotent and terminal: the loop
notices the cancellation at the next round boundary and the debate ends
up ``failed``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from agents.base import BaseAgent
from agents.factory import build_agent
from data.database import DebateDatabase
from data.models import AgentRecord, DebateRecord, DebateStatus
from evaluation.validators import DebateValidator
from orchestration.errors import (
    CapacityError,
    CompositionError,
    DebateError,
    DebateFailure,
    ValidationError,
)
from orchestration.events import EventBroadcaster, EventType
from orchestration.finalizer import JudgmentFinalizer
from orchestration.rounds import Roster, RoundExecutor
from orchestration.settings import DebateSettings

logger = logging.getLogger(__name__)

AgentFactory = Callable[[AgentRecord, DebateSettings], BaseAgent]


class SessionStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class DebateSession:
    """Bookkeeping for one admitted debate."""

    debate_id: int
    total_rounds: int
    status: SessionStatus = SessionStatus.RUNNING
    current_round: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task[None] | None = None

    @property
    def stopped(self) -> bool:
        return self.cancel_event.is_set()


class SessionRegistry:
    """Owns every running debate in this process.

    Parameters
    ----------
    db : DebateDatabase
        Connected store.
    broadcaster : EventBroadcaster | None
        Event sink shared with subscribers; a private one is created if omitted.
    settings : DebateSettings | None
        Capacity, delays and thresholds; defaults when omitted.
    agent_factory : AgentFactory
        Builds a role agent from a persisted agent row.
    """

    def __init__(
        self,
        db: DebateDatabase,
        broadcaster: EventBroadcaster | None = None,
        settings: DebateSettings | None = None,
        *,
        agent_factory: AgentFactory = build_agent,
        executor: RoundExecutor | None = None,
        finalizer: JudgmentFinalizer | None = None,
        validator: DebateValidator | None = None,
    ) -> None:
        self.db = db
        self.broadcaster = broadcaster or EventBroadcaster()
        self.settings = settings or DebateSettings()
        self.agent_factory = agent_factory
        self.validator = validator or DebateValidator()
        self.executor = executor or RoundExecutor(
            db, self.broadcaster, self.settings, validator=self.validator
        )
        self.finalizer = finalizer or JudgmentFinalizer(db, self.broadcaster, self.settings)

        self._sessions: dict[int, DebateSession] = {}
        self._tasks: dict[int, asyncio.Task[None]] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(self, debate_id: int) -> DebateSession:
        """Admit *debate_id* and launch its round loop.

        Raises ``ValidationError``, ``CompositionError`` or ``CapacityError``
        before anything is written.
        """
        async with self._lock:
            debate = await self._check_startable(debate_id)
            roster = await self._assemble(debate)

            if len(self._sessions) >= self.settings.max_concurrent_debates:
                raise CapacityError(
                    f"{len(self._sessions)} debates already running "
                    f"(limit {self.settings.max_concurrent_debates})",
                    debate_id=debate_id,
                )

            session = DebateSession(debate_id=debate_id, total_rounds=debate.max_rounds)
            self._sessions[debate_id] = session
            try:
                removed = await self.db.reset_debate_progress(debate_id)
                await self.db.mark_started(debate_id)
            except Exception:
                del self._sessions[debate_id]
                raise
            if removed:
                logger.info("Debate #%d: removed %d rounds from an earlier attempt", debate_id, removed)

            self.broadcaster.cancel_teardown(debate_id)
            self.broadcaster.emit(
                debate_id,
                EventType.DEBATE_START,
                {"debate_id": debate_id, "topic": debate.topic, "max_rounds": debate.max_rounds},
            )
            session.task = asyncio.create_task(
                self._run(session, debate, roster), name=f"debate-{debate_id}"
            )
            self._tasks[debate_id] = session.task
            logger.info(
                "Debate #%d admitted (%d/%d running)",
                debate_id,
                len(self._sessions),
                self.settings.max_concurrent_debates,
            )
            return session

    async def stop(self, debate_id: int) -> bool:
        """Stop *debate_id*. Returns whether a live session was stopped.

        Safe to call repeatedly; a debate still marked running is marked
        failed.
        """
        async with self._lock:
            session = self._sessions.get(debate_id)
            stopped = False
            if session is not None and not session.stopped:
                session.status = SessionStatus.STOPPED
                session.cancel_event.set()
                del self._sessions[debate_id]
                self.broadcaster.emit(
                    debate_id, EventType.DEBATE_STOPPED, {"debate_id": debate_id}
                )
                self.broadcaster.schedule_teardown(debate_id, self.settings.teardown_grace)
                logger.info("Debate #%d stopped at round %d", debate_id, session.current_round)
                stopped = True

            debate = await self.db.get_debate(debate_id)
            if debate is not None and debate.status is DebateStatus.RUNNING:
                await self.db.update_debate_status(debate_id, DebateStatus.FAILED)
            return stopped

    def is_running(self, debate_id: int) -> bool:
        return debate_id in self._sessions

    def get_session(self, debate_id: int) -> DebateSession | None:
        return self._sessions.get(debate_id)

    @property
    def running_count(self) -> int:
        return len(self._sessions)

    async def join(self, debate_id: int, timeout: float | None = None) -> None:
        """Wait until the round loop of *debate_id* has exited."""
        task = self._tasks.get(debate_id)
        if task is not None:
            await asyncio.wait([task], timeout=timeout)

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Stop every session and wait for the loops to exit."""
        for debate_id in list(self._sessions):
            await self.stop(debate_id)
        pending = [t for t in self._tasks.values() if not t.done()]
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=timeout)
            for task in still_running:
                task.cancel()
        self.broadcaster.clear_all()

    # ------------------------------------------------------------------
    # Admission checks
    # ------------------------------------------------------------------

    async def _check_startable(self, debate_id: int) -> DebateRecord:
        debate = await self.db.get_debate(debate_id)
        if debate is None:
            raise ValidationError(f"Debate #{debate_id} not found", debate_id=debate_id)
        if debate_id in self._sessions or debate.status is DebateStatus.RUNNING:
            raise ValidationError(f"Debate #{debate_id} is already running", debate_id=debate_id)
        if debate.status is DebateStatus.COMPLETED:
            raise ValidationError(f"Debate #{debate_id} is already completed", debate_id=debate_id)
        previous = self._tasks.get(debate_id)
        if previous is not None and not previous.done():
            raise ValidationError(
                f"Debate #{debate_id} is still finishing its last round", debate_id=debate_id
            )
        return debate

    async def _assemble(self, debate: DebateRecord) -> Roster:
        assert debate.id is not None
        records = await self.db.get_agents(debate.id)
        check = self.validator.validate_roster(records)
        if not check:
            raise CompositionError(check.describe(), debate_id=debate.id)
        try:
            agents = [self.agent_factory(r, self.settings) for r in records]
        except ValueError as exc:
            raise ValidationError(
                f"Could not build agents for debate #{debate.id}: {exc}", debate_id=debate.id
            ) from exc
        return Roster.from_agents(agents)

    # ------------------------------------------------------------------
    # Round loop
    # ------------------------------------------------------------------

    async def _run(self, session: DebateSession, debate: DebateRecord, roster: Roster) -> None:
        try:
            for sequence in range(1, debate.max_rounds + 1):
                if session.stopped:
                    return
                session.current_round = sequence
                await self.executor.run_round(debate, roster, sequence)
                if sequence < debate.max_rounds:
                    await self._pause(session)

            if session.stopped:
                return
            verdict = await self.finalizer.finalize(
                debate, roster.audience, cancel_event=session.cancel_event
            )
            if verdict is not None:
                session.status = SessionStatus.COMPLETED
        except Exception as exc:  # noqa: BLE001
            await self._fail(session, exc)
        finally:
            self._release(session)

    async def _pause(self, session: DebateSession) -> None:
        delay = self.settings.inter_round_delay
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(session.cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _fail(self, session: DebateSession, exc: Exception) -> None:
        debate_id = session.debate_id
        if session.stopped:
            logger.warning("Debate #%d: error after stop ignored: %s", debate_id, exc)
            return

        session.status = SessionStatus.FAILED
        failure = DebateFailure(f"Debate #{debate_id} failed: {exc}", debate_id=debate_id)
        logger.exception(
            "Debate #%d failed [%s]",
            debate_id,
            exc.code if isinstance(exc, DebateError) else type(exc).__name__,
            exc_info=exc,
        )
        try:
            await self.db.update_debate_status(debate_id, DebateStatus.FAILED)
        except Exception:  # noqa: BLE001
            logger.exception("Debate #%d: could not mark as failed", debate_id)
        self.broadcaster.emit(debate_id, EventType.ERROR, {"error": failure.message, "code": failure.code})
        self.broadcaster.schedule_teardown(debate_id, self.settings.teardown_grace)

    def _release(self, session: DebateSession) -> None:
        if self._sessions.get(session.debate_id) is session:
            del self._sessions[session.debate_id]
        if self._tasks.get(session.debate_id) is session.task:
            del self._tasks[session.debate_id]

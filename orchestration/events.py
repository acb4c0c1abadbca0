"""Per-debate publish/subscribe fan-out of progress events.

Delivery is best effort: ``broadcast`` never waits on a subscriber and a
listener that raises is logged and skipped. Clients that miss events are
expected to re-read persisted state rather than ask for a replay.

Event types and their payloads::

    debate_start      {debate_id, topic, max_rounds}
    round_start       {round_id, sequence, phase}
    agent_start       {agent_id, role, stance?}
    token             {token}
    agent_end         {agent_id, content}
    audience_requests {round_id, requests_count}
    audience_approval {request_id, agent_id, approved, comment}
    audience_speech   {agent_id, audience_type, content}
    score_update      {round_id, scores: {pro, con}}
    round_end         {round_id, sequence}
    debate_end        {debate_id, winner, final_scores, judge_scores}
    debate_stopped    {debate_id}
    error             {error}
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EventType(str, Enum):
    DEBATE_START = "debate_start"
    ROUND_START = "round_start"
    AGENT_START = "agent_start"
    TOKEN = "token"
    AGENT_END = "agent_end"
    AUDIENCE_REQUESTS = "audience_requests"
    AUDIENCE_APPROVAL = "audience_approval"
    AUDIENCE_SPEECH = "audience_speech"
    SCORE_UPDATE = "score_update"
    ROUND_END = "round_end"
    DEBATE_END = "debate_end"
    DEBATE_STOPPED = "debate_stopped"
    ERROR = "error"


TERMINAL_EVENTS = frozenset({EventType.DEBATE_END, EventType.DEBATE_STOPPED, EventType.ERROR})


@dataclass(frozen=True)
class DebateEvent:
    """One event as delivered to subscribers."""

    type: EventType
    data: dict[str, Any]
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "data": self.data, "timestamp": self.timestamp}


Listener = Callable[[DebateEvent], None]


def format_sse(event: DebateEvent) -> str:
    """Frame *event* for a ``text/event-stream`` response."""
    return f"data: {json.dumps(event.to_dict(), default=str)}\n\n"


class EventBroadcaster:
    """Fan events for each debate out to that debate's subscribers."""

    def __init__(self) -> None:
        self._listeners: dict[int, list[Listener]] = {}
        self._closers: dict[int, list[Callable[[], None]]] = {}
        self._teardowns: dict[int, asyncio.TimerHandle] = {}

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(
        self,
        debate_id: int,
        listener: Listener,
        *,
        on_close: Callable[[], None] | None = None,
    ) -> Callable[[], None]:
        """Register *listener* and return a function that removes it.

        *on_close* runs once if the debate's channel is torn down while the
        listener is still registered.
        """
        self._listeners.setdefault(debate_id, []).append(listener)
        if on_close is not None:
            self._closers.setdefault(debate_id, []).append(on_close)

        def unsubscribe() -> None:
            listeners = self._listeners.get(debate_id)
            if listeners and listener in listeners:
                listeners.remove(listener)
                if not listeners:
                    del self._listeners[debate_id]
            closers = self._closers.get(debate_id)
            if on_close is not None and closers and on_close in closers:
                closers.remove(on_close)
                if not closers:
                    del self._closers[debate_id]

        return unsubscribe

    async def stream(self, debate_id: int, *, max_queue: int = 256) -> AsyncIterator[DebateEvent]:
        """Iterate over a debate's events until a terminal one or teardown.

        Events arriving while the buffer is full are dropped.
        """
        queue: asyncio.Queue[DebateEvent | None] = asyncio.Queue(maxsize=max_queue)

        def push(event: DebateEvent) -> None:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Debate #%d: stream buffer full, dropped %s", debate_id, event.type.value)

        def close() -> None:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(None)

        unsubscribe = self.subscribe(debate_id, push, on_close=close)
        try:
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield event
                if event.is_terminal:
                    return
        finally:
            unsubscribe()

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def broadcast(self, debate_id: int, event: DebateEvent) -> None:
        """Deliver *event* to every current subscriber of *debate_id*."""
        for listener in list(self._listeners.get(debate_id, ())):
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                logger.warning(
                    "Debate #%d: listener failed on %s", debate_id, event.type.value, exc_info=True
                )

    def emit(self, debate_id: int, event_type: EventType, data: dict[str, Any]) -> DebateEvent:
        event = DebateEvent(type=event_type, data=data)
        self.broadcast(debate_id, event)
        return event

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def schedule_teardown(self, debate_id: int, delay: float) -> None:
        """Clear the debate's channel after *delay* seconds."""
        self.cancel_teardown(debate_id)
        if delay <= 0:
            self.clear_debate(debate_id)
            return
        loop = asyncio.get_running_loop()
        self._teardowns[debate_id] = loop.call_later(delay, self.clear_debate, debate_id)

    def cancel_teardown(self, debate_id: int) -> None:
        handle = self._teardowns.pop(debate_id, None)
        if handle is not None:
            handle.cancel()

    def clear_debate(self, debate_id: int) -> None:
        """Drop every subscriber of *debate_id*, closing open streams."""
        self._teardowns.pop(debate_id, None)
        self._listeners.pop(debate_id, None)
        for close in self._closers.pop(debate_id, []):
            try:
                close()
            except Exception:  # noqa: BLE001
                logger.warning("Debate #%d: stream close failed", debate_id, exc_info=True)

    def clear_all(self) -> None:
        for debate_id in list(self._teardowns):
            self.cancel_teardown(debate_id)
        for debate_id in list(self._listeners) + list(self._closers):
            self.clear_debate(debate_id)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def subscriber_count(self, debate_id: int) -> int:
        return len(self._listeners.get(debate_id, ()))

    @property
    def active_debates(self) -> int:
        return len(self._listeners)


async def relay_speech(
    broadcaster: EventBroadcaster,
    debate_id: int,
    *,
    agent_id: str,
    role: str,
    stance: str | None,
    speak: Callable[[Callable[[str], None]], Awaitable[T]],
) -> T:
    """Run one streamed speech, framing its tokens with agent_start/agent_end.

    *speak* receives the token callback and returns the finished reply; it
    must expose ``content``. Nothing is emitted after a failure so the
    caller decides how to report it.
    """
    start: dict[str, Any] = {"agent_id": agent_id, "role": role}
    if stance is not None:
        start["stance"] = stance
    broadcaster.emit(debate_id, EventType.AGENT_START, start)

    def on_token(token: str) -> None:
        broadcaster.emit(debate_id, EventType.TOKEN, {"token": token})

    reply = await speak(on_token)
    broadcaster.emit(
        debate_id,
        EventType.AGENT_END,
        {"agent_id": agent_id, "content": getattr(reply, "content", "")},
    )
    return reply

"""Shared fixtures for the test suite.

Provides a MockProvider that simulates LLM responses without network calls,
role-aware scripted responders, a temporary database and helpers that seed
a debate with a full roster.
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest
import pytest_asyncio

from agents.base import BaseAgent
from agents.factory import build_agent
from agents.llm_provider import LLMProvider
from data.database import DebateDatabase
from data.models import AgentRecord, AgentRole, DebateRecord, Stance
from orchestration.events import DebateEvent, EventBroadcaster
from orchestration.registry import SessionRegistry
from orchestration.settings import DebateSettings

Responder = Callable[[list[dict[str, str]]], str]


# ---------------------------------------------------------------------------
# Mock LLM provider
# ---------------------------------------------------------------------------

class MockProvider(LLMProvider):
    """Deterministic mock provider for testing – no network calls.

    ``responses`` cycle in order; a ``responder`` instead computes the reply
    from the messages. ``failures`` are raised, one per call, before any
    response is produced. Streaming yields the reply word by word.
    """

    name = "mock"

    def __init__(
        self,
        model: str = "mock-v1",
        responses: list[str] | None = None,
        *,
        responder: Responder | None = None,
        failures: list[BaseException] | None = None,
        **kwargs: Any,
    ) -> None:
        # Bypass API-key validation
        self.model = model
        self.base_url = None
        self.timeout = kwargs.get("timeout", 30)
        self.max_retries = kwargs.get("max_retries", 1)
        self.initial_delay = 0.0
        self.max_delay = 0.0
        self.backoff_multiplier = 1.0
        self.api_key = "mock-key"

        self._responses = responses or [
            "This is a mock response about the debate topic. "
            "It contains evidence: studies show 75% effectiveness. "
            "For example, recent research demonstrates clear results."
        ]
        self._responder = responder
        self._failures = list(failures or [])
        self._call_count = 0
        self.call_log: list[dict[str, Any]] = []

    async def _call_api(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
        **kwargs: Any,
    ) -> dict[str, Any]:
        self.call_log.append(
            {"messages": messages, "temperature": temperature, "max_tokens": max_tokens}
        )
        if self._failures:
            raise self._failures.pop(0)
        if self._responder is not None:
            text = self._responder(messages)
        else:
            text = self._responses[self._call_count % len(self._responses)]
        self._call_count += 1
        return {"text": text, "tokens_used": len(text.split()) * 2, "raw": {}}

    async def _stream_api(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
        **kwargs: Any,
    ) -> AsyncIterator[str]:
        response = await self._call_api(
            messages, temperature=temperature, max_tokens=max_tokens, **kwargs
        )
        for token in re.findall(r"\S+\s*", response["text"]):
            yield token


class GatedProvider(MockProvider):
    """Holds every call until ``gate`` is set."""

    def __init__(self, gate: asyncio.Event, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.gate = gate

    async def _call_api(self, messages: list[dict[str, str]], **kwargs: Any) -> dict[str, Any]:
        await self.gate.wait()
        return await super()._call_api(messages, **kwargs)


class BrokenStreamProvider(MockProvider):
    """Streams a few tokens and then fails mid-speech."""

    def __init__(self, *, tokens_before_failure: int = 2, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.tokens_before_failure = tokens_before_failure

    async def _stream_api(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
        **kwargs: Any,
    ) -> AsyncIterator[str]:
        self.call_log.append({"messages": messages, "temperature": temperature})
        for n in range(self.tokens_before_failure):
            yield f"token{n} "
        raise ConnectionError("stream dropped")


# ---------------------------------------------------------------------------
# Role-aware responders
# ---------------------------------------------------------------------------

def _prompt(messages: list[dict[str, str]]) -> str:
    return messages[-1]["content"]


def judge_responder(
    pro: tuple[float, float, float, float] = (8, 7, 8, 7),
    con: tuple[float, float, float, float] = (6, 6, 6, 6),
    *,
    approve: bool = True,
    fouls: dict[str, list[str]] | None = None,
) -> Responder:
    """Scores per side and a fixed approval ruling, as fenced JSON."""
    fouls = fouls or {}

    def respond(messages: list[dict[str, str]]) -> str:
        prompt = _prompt(messages)
        if "asks to speak" in prompt:
            ruling = {"approved": approve, "comment": "Relevant" if approve else "Repetitive"}
            return f"```json\n{json.dumps(ruling)}\n```"
        side = "pro" if "Speaker: PRO" in prompt else "con"
        logic, rebuttal, clarity, evidence = pro if side == "pro" else con
        payload = {
            "logic": logic,
            "rebuttal": rebuttal,
            "clarity": clarity,
            "evidence": evidence,
            "comment": f"{side} comment",
            "fouls": fouls.get(side, []),
        }
        return f"```json\n{json.dumps(payload)}\n```"

    return respond


def debater_responder(label: str) -> Responder:
    """Distinct speeches per call so no two transcript entries repeat."""
    count = {"n": 0}

    def respond(messages: list[dict[str, str]]) -> str:
        count["n"] += 1
        return (
            f"{label} argument {count['n']}: the data and a case study show why "
            f"this position holds, and the costs are manageable."
        )

    return respond


def audience_responder(
    *,
    wants_to_speak: bool = True,
    claim: str = "I support the motion; the pro side is right about the evidence.",
    vote: str = "pro",
) -> Responder:
    def respond(messages: list[dict[str, str]]) -> str:
        prompt = _prompt(messages)
        if "Do you want to add" in prompt:
            return json.dumps({"wants_to_speak": wants_to_speak, "content": claim})
        if "Which side was more convincing" in prompt:
            return json.dumps({"vote": vote, "confidence": 0.7, "reason": "More convincing"})
        return f"Speaking as the audience: {claim}"

    return respond


def default_provider_for(record: AgentRecord) -> MockProvider:
    if record.role is AgentRole.JUDGE:
        return MockProvider(responder=judge_responder())
    if record.role is AgentRole.AUDIENCE:
        return MockProvider(responder=audience_responder())
    assert record.stance is not None
    return MockProvider(responder=debater_responder(record.stance.value.upper()))


# ---------------------------------------------------------------------------
# Event capture
# ---------------------------------------------------------------------------

class EventRecorder:
    """Collects every event broadcast for one debate."""

    def __init__(self) -> None:
        self.events: list[DebateEvent] = []

    def __call__(self, event: DebateEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [e.type.value for e in self.events]

    def of(self, event_type: str) -> list[DebateEvent]:
        return [e for e in self.events if e.type.value == event_type]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_provider() -> MockProvider:
    return MockProvider()


@pytest.fixture
def settings() -> DebateSettings:
    """Settings with every delay switched off."""
    return DebateSettings(
        max_concurrent_debates=2,
        inter_round_delay=0.0,
        teardown_grace=0.0,
        audience_window=(3, 6),
    )


@pytest.fixture
def providers() -> dict[str, MockProvider]:
    """Per-agent provider overrides, keyed by agent id."""
    return {}


@pytest.fixture
def agent_factory(
    providers: dict[str, MockProvider],
) -> Callable[[AgentRecord, DebateSettings], BaseAgent]:
    def factory(record: AgentRecord, settings: DebateSettings) -> BaseAgent:
        provider = providers.get(record.id) or default_provider_for(record)
        providers.setdefault(record.id, provider)
        return build_agent(record, settings, provider=provider)

    return factory


@pytest.fixture
def broadcaster() -> EventBroadcaster:
    return EventBroadcaster()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest_asyncio.fixture
async def test_db(tmp_path) -> DebateDatabase:
    """Temporary SQLite database for testing."""
    db = DebateDatabase(db_path=tmp_path / "test_debates.db")
    await db.connect()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def registry(test_db, broadcaster, settings, agent_factory) -> SessionRegistry:
    reg = SessionRegistry(test_db, broadcaster, settings, agent_factory=agent_factory)
    yield reg
    await reg.shutdown()


def roster_records(
    debate_id: int,
    *,
    audience_types: tuple[str, ...] = (),
    with_judge: bool = True,
    con_stance: Stance = Stance.CON,
) -> list[AgentRecord]:
    """Agent rows for a standard roster; ids are ``d<id>-<role>``."""
    records = [
        AgentRecord(
            id=f"d{debate_id}-pro",
            debate_id=debate_id,
            role=AgentRole.DEBATER,
            stance=Stance.PRO,
            model_provider="mock",
            model_name="mock-v1",
            style_tag="rational",
        ),
        AgentRecord(
            id=f"d{debate_id}-con",
            debate_id=debate_id,
            role=AgentRole.DEBATER,
            stance=con_stance,
            model_provider="mock",
            model_name="mock-v1",
            style_tag="aggressive",
        ),
    ]
    if with_judge:
        records.append(
            AgentRecord(
                id=f"d{debate_id}-judge",
                debate_id=debate_id,
                role=AgentRole.JUDGE,
                model_provider="mock",
                model_name="mock-v1",
            )
        )
    for n, audience_type in enumerate(audience_types, start=1):
        records.append(
            AgentRecord(
                id=f"d{debate_id}-aud{n}",
                debate_id=debate_id,
                role=AgentRole.AUDIENCE,
                model_provider="mock",
                model_name="mock-v1",
                audience_type=audience_type,
            )
        )
    return records


@pytest.fixture
def seed_debate(test_db: DebateDatabase):
    """Return a coroutine function that stores a debate and its roster."""

    async def seed(
        *,
        topic: str = "Should AI development be regulated?",
        max_rounds: int = 4,
        judge_weight: float = 0.5,
        audience_types: tuple[str, ...] = (),
        with_judge: bool = True,
        con_stance: Stance = Stance.CON,
    ) -> int:
        debate_id = await test_db.create_debate(
            DebateRecord(topic=topic, max_rounds=max_rounds, judge_weight=judge_weight)
        )
        for record in roster_records(
            debate_id,
            audience_types=audience_types,
            with_judge=with_judge,
            con_stance=con_stance,
        ):
            await test_db.save_agent(record)
        return debate_id

    return seed

"""Build role agents from persisted agent rows."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from agents.audience import AudienceMember
from agents.base import BaseAgent
from agents.debater import Debater
from agents.judge import Judge
from agents.llm_provider import LLMProvider, create_provider
from data.models import AgentRecord, AgentRole

if TYPE_CHECKING:
    from orchestration.settings import DebateSettings

logger = logging.getLogger(__name__)


def build_provider(record: AgentRecord, settings: DebateSettings) -> LLMProvider:
    """Instantiate the LLM backend for *record*.

    Resolution order for every value: the agent's own config blob, then the
    ``api.<provider>`` section, then the provider class default.
    """
    agent_cfg = record.config
    provider_cfg = settings.provider(record.model_provider)
    retry = settings.retry

    kwargs: dict[str, Any] = {
        "api_key": agent_cfg.get("api_key"),
        "api_key_env": agent_cfg.get("api_key_env") or provider_cfg.api_key_env,
        "base_url": agent_cfg.get("base_url") or provider_cfg.base_url,
        "timeout": retry.timeout,
        "max_retries": retry.max_retries,
        "initial_delay": retry.initial_delay,
        "max_delay": retry.max_delay,
        "backoff_multiplier": retry.backoff_multiplier,
    }
    model = record.model_name or provider_cfg.model
    if model:
        kwargs["model"] = model
    if kwargs["api_key_env"] is None:
        # provider class default env var
        del kwargs["api_key_env"]
    return create_provider(record.model_provider, **kwargs)


def build_agent(
    record: AgentRecord,
    settings: DebateSettings,
    provider: LLMProvider | None = None,
) -> BaseAgent:
    """Return the role agent for *record*.

    Raises ``ValueError`` when the provider is unknown or has no API key.
    """
    provider = provider or build_provider(record, settings)
    temps = settings.temperatures
    max_tokens = int(record.config.get("max_tokens", 800))

    if record.role is AgentRole.DEBATER:
        agent: BaseAgent = Debater(
            record, provider, temperature=temps.debater, max_tokens=max_tokens
        )
    elif record.role is AgentRole.JUDGE:
        agent = Judge(record, provider, temperature=temps.judge)
    else:
        agent = AudienceMember(
            record,
            provider,
            temperature=temps.audience_request,
            speech_temperature=temps.audience_speech,
            vote_temperature=temps.audience_vote,
        )
    logger.debug("Built %r", agent)
    return agent

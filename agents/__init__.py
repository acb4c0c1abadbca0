"""Debate engine - agent definitions and LLM backends."""

from agents.base import AgentReply, BaseAgent, DebateContext
from agents.debater import Debater
from agents.judge import Judge
from agents.audience import AudienceMember
from agents.factory import build_agent, build_provider
from agents.errors import AgentError, FatalAgentError, TransientAgentError
from agents.llm_provider import (
    LLMProvider,
    OpenAIProvider,
    AnthropicProvider,
    CohereProvider,
    OpenRouterProvider,
    create_provider,
    register_provider,
)

__all__ = [
    "AgentReply",
    "BaseAgent",
    "DebateContext",
    "Debater",
    "Judge",
    "AudienceMember",
    "build_agent",
    "build_provider",
    "AgentError",
    "FatalAgentError",
    "TransientAgentError",
    "LLMProvider",
    "OpenAIProvider",
    "AnthropicProvider",
    "CohereProvider",
    "OpenRouterProvider",
    "create_provider",
    "register_provider",
]

"""
AI provider orchestration package.

Routes natural-language queries to interchangeable upstream chat-completion
backends (free and paid), isolating failing providers with circuit
breakers, adapting timeouts from observed latency, deduplicating repeat
queries through a response cache and normalizing replies into AIResponse.
"""
from figbud.services.ai.orchestration import AIOrchestrator, get_ai_orchestrator
from figbud.services.ai.schema import AIResponse, AllProvidersExhausted

__all__ = [
    "AIOrchestrator",
    "AIResponse",
    "AllProvidersExhausted",
    "get_ai_orchestrator",
]

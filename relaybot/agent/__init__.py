"""Agent core module."""

from relaybot.agent.engine import CompletionEngine, CompletionResult
from relaybot.agent.keys import KeyPoolManager
from relaybot.agent.memory import ContextStore
from relaybot.agent.personas import PersonaResolver

__all__ = ["CompletionEngine", "CompletionResult", "KeyPoolManager", "ContextStore", "PersonaResolver"]

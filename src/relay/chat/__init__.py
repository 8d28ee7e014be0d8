"""Chat turn orchestration and session state."""

from .orchestrator import EmptyConversationError, Turn, TurnOrchestrator, TurnState
from .session import ChatSession, SessionRegistry, TurnInProgressError

__all__ = [
    "ChatSession",
    "EmptyConversationError",
    "SessionRegistry",
    "Turn",
    "TurnInProgressError",
    "TurnOrchestrator",
    "TurnState",
]

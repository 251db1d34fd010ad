from .engine import BizzyEngine, TurnRequest, TurnState
from .persistence import PersistOutcome, TurnPersister, TurnRecord
from .prompt_composer import build_context_message, compose_messages, format_history

__all__ = [
    "BizzyEngine",
    "PersistOutcome",
    "TurnPersister",
    "TurnRecord",
    "TurnRequest",
    "TurnState",
    "build_context_message",
    "compose_messages",
    "format_history",
]

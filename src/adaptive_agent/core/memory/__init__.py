"""In-memory session and learning stores."""

from adaptive_agent.core.memory.learning_store import LearningStore
from adaptive_agent.core.memory.session_memory import SessionMemory

__all__ = ["LearningStore", "SessionMemory"]

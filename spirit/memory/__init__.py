"""Memory — the agent's local persistence."""
from spirit.memory.store import BrainStore, Database

__all__ = ["BrainStore", "Database"]

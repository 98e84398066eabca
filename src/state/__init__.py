"""
Persisted client state.

The account's vote history is serialized to JSON, encrypted with Fernet and
kept in a file on the client machine so ballots survive restarts without
being readable at rest. Nothing is stored server-side.
"""

from .local_store import HistoryConflictError, LocalVoteHistoryStore
from .models import VoteHistory

__all__ = ["HistoryConflictError", "LocalVoteHistoryStore", "VoteHistory"]

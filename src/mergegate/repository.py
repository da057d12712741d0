"""
Abstract repository protocol for ChangeProposal persistence.

The repository is the id -> proposal registry owned by the surrounding
service. Implement this protocol to plug in any storage backend
(DynamoDB, Postgres, SQLite, Redis, in-memory, etc.).

Saves are optimistic: every accepted event appends exactly one history
record, so a proposal with N records may only overwrite a stored copy
with N - 1, and a proposal with no records may only be written once.
"""

import threading
from typing import Optional, Protocol, runtime_checkable

from mergegate.errors import ConcurrentModification
from mergegate.states import ChangeProposal


def expected_stored_history(proposal: ChangeProposal) -> Optional[int]:
    """History length the stored copy must have for a save to apply (None: must not exist)."""
    if not proposal.history:
        return None
    return len(proposal.history) - 1


@runtime_checkable
class Repository(Protocol):
    """
    Storage interface for ChangeProposals.

    mergegate ships with an in-memory implementation for testing and a
    DynamoDB adapter as an optional extra.
    """

    def save(self, proposal: ChangeProposal) -> ChangeProposal:
        """Persist a proposal. Raises ConcurrentModification if the stored copy moved on."""
        ...

    def get(self, proposal_id: str) -> Optional[ChangeProposal]:
        """Retrieve a proposal by ID. Returns None if not found."""
        ...

    def delete(self, proposal_id: str) -> bool:
        """Delete a proposal by ID. Returns True if deleted."""
        ...

    def list_by_state(self, state: str, limit: int = 100) -> list[ChangeProposal]:
        """List proposals in a given state."""
        ...


class MemoryRepository:
    """
    In-memory repository for testing and prototyping.

    Stores serialized copies, so callers never share a live object with
    the store. Not for production use.
    """

    def __init__(self) -> None:
        self._store: dict[str, dict] = {}
        self._lock = threading.Lock()

    def save(self, proposal: ChangeProposal) -> ChangeProposal:
        data = proposal.to_dict()
        expected = expected_stored_history(proposal)
        with self._lock:
            stored = self._store.get(proposal.proposal_id)
            if expected is None and stored is not None:
                raise ConcurrentModification(proposal.proposal_id)
            if expected is not None and (stored is None or len(stored["history"]) != expected):
                raise ConcurrentModification(proposal.proposal_id, expected)
            self._store[proposal.proposal_id] = data
        return proposal

    def get(self, proposal_id: str) -> Optional[ChangeProposal]:
        with self._lock:
            data = self._store.get(proposal_id)
        if data is None:
            return None
        return ChangeProposal.from_dict(data)

    def delete(self, proposal_id: str) -> bool:
        with self._lock:
            return self._store.pop(proposal_id, None) is not None

    def list_by_state(self, state: str, limit: int = 100) -> list[ChangeProposal]:
        with self._lock:
            matches = [data for data in self._store.values() if data.get("state") == state]
        return [ChangeProposal.from_dict(data) for data in matches[:limit]]

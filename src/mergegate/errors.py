"""
Errors raised by the merge-request lifecycle engine.

InvalidTransition is the only engine-level failure. ProposalNotFound
belongs to the registry layer (a lookup miss, not a lifecycle error).
"""

from typing import Any, Iterable, Optional


class MergegateError(Exception):
    """Base class for all mergegate errors."""


class InvalidTransition(MergegateError):
    """
    The requested event has no row for the proposal's current state.

    Also raised when a (kind, qualifier) pair does not resolve to a known
    event. The proposal is never mutated when this is raised, so callers
    may retry with a corrected event or re-read the current state.
    """

    def __init__(
        self,
        event: Any,
        state: Optional[Any] = None,
        allowed: Optional[Iterable[Any]] = None,
        reason: Optional[str] = None,
    ) -> None:
        self.event = event
        self.state = state
        self.allowed = list(allowed or [])
        self.reason = reason
        super().__init__(self._format())

    def _format(self) -> str:
        event = getattr(self.event, "value", self.event)
        if self.state is None:
            return f"Invalid event: {event!r}" + (f" ({self.reason})" if self.reason else "")

        state = getattr(self.state, "value", self.state)
        allowed_str = ", ".join(getattr(e, "value", str(e)) for e in self.allowed) or "none (terminal)"
        return f"Invalid transition: {state} --{event}--> ?. Allowed from {state}: {allowed_str}"


class ProposalNotFound(MergegateError, KeyError):
    """No proposal is registered under the given id."""

    def __init__(self, proposal_id: str) -> None:
        self.proposal_id = proposal_id
        super().__init__(proposal_id)

    def __str__(self) -> str:
        return f"Proposal not found: {self.proposal_id}"


class ConcurrentModification(MergegateError):
    """
    The stored proposal changed between load and save.

    Raised by repositories when another writer got there first. Nothing
    was written; reload the proposal and re-apply the event.
    ``expected_history`` is None when a new proposal's id was already taken.
    """

    def __init__(self, proposal_id: str, expected_history: Optional[int] = None) -> None:
        self.proposal_id = proposal_id
        self.expected_history = expected_history
        if expected_history is None:
            message = f"Concurrent modification of {proposal_id}: already stored"
        else:
            message = f"Concurrent modification of {proposal_id}: stored history is not {expected_history} record(s)"
        super().__init__(message)

"""
Core state machine for the merge-request lifecycle.

Defines states, events, the transition table, and the records that track
a change proposal from review approval through test run to merge.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field

from mergegate.errors import InvalidTransition


class ProposalState(str, Enum):
    """States in the merge-request lifecycle."""

    INIT = "init"
    APPROVED = "approved"
    RUNNING = "running"
    SUCCESS = "success"
    MERGED = "merged"
    FAILED = "failed"


class ProposalEvent(str, Enum):
    """
    Events that drive a proposal through the lifecycle.

    Compound events (a signal plus the condition it must arrive with) are
    single members, so a revocation can never be applied without its
    source change, nor a push failure without its target change.
    """

    REVIEW_APPROVED = "review_approved"
    REVIEW_REVOKED_SOURCE_CHANGED = "review_revoked+source_changed"
    START = "start"
    CONFLICT_DETECTED = "conflict_detected"
    EXECUTION_SUCCEEDED = "execution_succeeded"
    EXECUTION_FAILED = "execution_failed"
    TARGET_CHANGED = "target_changed"
    PUSH_SUCCEEDED = "push_succeeded"
    PUSH_FAILED_TARGET_CHANGED = "push_failed+target_changed"
    RERUN = "rerun"
    RETRY = "retry"

    @classmethod
    def resolve(
        cls,
        kind: Union["ProposalEvent", str],
        qualifier: Optional[str] = None,
    ) -> "ProposalEvent":
        """
        Resolve an event kind and optional qualifier to a single event.

        ``resolve("review_revoked", "source_changed")`` and
        ``resolve("review_revoked+source_changed")`` give the same member.
        A bare ``review_revoked`` or ``push_failed``, an unexpected
        qualifier, or an unknown kind raises InvalidTransition.
        """
        if isinstance(kind, cls) and qualifier is None:
            return kind

        name = kind.value if isinstance(kind, cls) else str(kind)
        if qualifier:
            name = f"{name}+{qualifier}"

        try:
            return cls(name)
        except ValueError:
            raise InvalidTransition(name, reason="unknown event or qualifier") from None


TRANSITIONS: dict[ProposalState, dict[ProposalEvent, ProposalState]] = {
    ProposalState.INIT: {
        ProposalEvent.REVIEW_APPROVED: ProposalState.APPROVED,
    },
    ProposalState.APPROVED: {
        ProposalEvent.REVIEW_REVOKED_SOURCE_CHANGED: ProposalState.INIT,
        ProposalEvent.START: ProposalState.RUNNING,
        ProposalEvent.CONFLICT_DETECTED: ProposalState.FAILED,
    },
    ProposalState.RUNNING: {
        ProposalEvent.EXECUTION_SUCCEEDED: ProposalState.SUCCESS,
        ProposalEvent.EXECUTION_FAILED: ProposalState.FAILED,
        ProposalEvent.REVIEW_REVOKED_SOURCE_CHANGED: ProposalState.INIT,
        ProposalEvent.TARGET_CHANGED: ProposalState.APPROVED,
    },
    ProposalState.SUCCESS: {
        ProposalEvent.PUSH_SUCCEEDED: ProposalState.MERGED,
        ProposalEvent.PUSH_FAILED_TARGET_CHANGED: ProposalState.APPROVED,
        ProposalEvent.REVIEW_REVOKED_SOURCE_CHANGED: ProposalState.INIT,
    },
    ProposalState.FAILED: {
        ProposalEvent.REVIEW_REVOKED_SOURCE_CHANGED: ProposalState.INIT,
        ProposalEvent.RERUN: ProposalState.RUNNING,
        ProposalEvent.RETRY: ProposalState.APPROVED,
    },
    ProposalState.MERGED: {},
}


def allowed_events(state: ProposalState) -> list[ProposalEvent]:
    """Events that have a row for the given state, in table order."""
    return list(TRANSITIONS.get(state, {}))


def next_state(state: ProposalState, event: ProposalEvent) -> ProposalState:
    """Pure table lookup. Raises InvalidTransition when no row matches."""
    try:
        return TRANSITIONS[state][event]
    except KeyError:
        raise InvalidTransition(event, state=state, allowed=allowed_events(state)) from None


def _now() -> str:
    """UTC timestamp in ISO 8601 format."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class Approval(BaseModel):
    """Who approved a proposal, when, and at what priority."""

    priority: int = Field(default=0, ge=0, description="Queue priority (higher merges first)")
    time: datetime = Field(..., description="When the approval was given")
    username: str = Field(..., description="Reviewer who approved")

    def sort_key(self) -> tuple:
        """Ascending key: highest priority, then earliest approval, then username."""
        return (-self.priority, self.time, self.username)


class ProposalTransition(BaseModel):
    """Audit record of a single applied transition."""

    from_state: ProposalState = Field(..., description="State before the event")
    event: ProposalEvent = Field(..., description="Event that was applied")
    to_state: ProposalState = Field(..., description="State after the event")
    timestamp: str = Field(default_factory=_now, description="When the transition occurred (ISO 8601)")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Additional context")


class ChangeProposal(BaseModel):
    """
    Tracks a single change proposal through the merge-request lifecycle.

    The proposal id is owned by the hosting system; this record only
    references it. State changes happen exclusively through apply_event,
    which appends one history entry per accepted event.
    """

    proposal_id: str = Field(..., description="Identifier assigned by the hosting system")
    state: ProposalState = Field(default=ProposalState.INIT, description="Current state")
    source_branch: Optional[str] = Field(default=None, description="Branch holding the proposed change")
    target_branch: Optional[str] = Field(default=None, description="Branch the change merges into")
    approval: Optional[Approval] = Field(default=None, description="Current review approval")
    history: list[ProposalTransition] = Field(default_factory=list, description="Transition history")
    created_at: str = Field(default_factory=_now, description="Creation timestamp")
    updated_at: str = Field(default_factory=_now, description="Last update timestamp")
    merged_at: Optional[str] = Field(default=None, description="When the proposal reached MERGED")

    @property
    def is_merged(self) -> bool:
        return self.state == ProposalState.MERGED

    def can_apply(self, event: ProposalEvent) -> bool:
        """Check if the event has a row for the current state."""
        return event in TRANSITIONS.get(self.state, {})

    def apply_event(
        self,
        event: ProposalEvent,
        metadata: Optional[dict[str, Any]] = None,
        approval: Optional[Approval] = None,
    ) -> ProposalState:
        """
        Apply an event and return the new state.

        Raises InvalidTransition, leaving the proposal untouched, if the
        event has no row for the current state.
        """
        target = next_state(self.state, event)

        self.history.append(
            ProposalTransition(
                from_state=self.state,
                event=event,
                to_state=target,
                metadata=metadata or {},
            )
        )

        self.state = target
        self.updated_at = _now()

        if event == ProposalEvent.REVIEW_APPROVED and approval is not None:
            self.approval = approval
        elif target == ProposalState.INIT:
            self.approval = None

        if target == ProposalState.MERGED:
            self.merged_at = self.updated_at

        return target

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict (for storage adapters)."""
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChangeProposal":
        """Deserialize from a plain dict."""
        return cls.model_validate(data)


def create_proposal(
    proposal_id: str,
    source_branch: Optional[str] = None,
    target_branch: Optional[str] = None,
) -> ChangeProposal:
    """
    Create a new ChangeProposal in the INIT state.

    Args:
        proposal_id: Identifier assigned by the hosting system
        source_branch: Branch holding the proposed change
        target_branch: Branch the change merges into

    Returns:
        A new ChangeProposal with an empty history.
    """
    return ChangeProposal(
        proposal_id=proposal_id,
        source_branch=source_branch,
        target_branch=target_branch,
    )

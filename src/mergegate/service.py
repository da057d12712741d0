"""
LifecycleService — storage-agnostic lifecycle engine.

Handles event resolution, validation, persistence, and transition history.
Bring your own Repository implementation.
"""

import logging
import threading
import weakref
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from mergegate.errors import ConcurrentModification, InvalidTransition, MergegateError, ProposalNotFound
from mergegate.repository import Repository
from mergegate.states import (
    Approval,
    ChangeProposal,
    ProposalEvent,
    ProposalState,
    ProposalTransition,
    allowed_events,
    create_proposal,
)

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    """Result of an event application attempt."""

    success: bool
    proposal: Optional[ChangeProposal]
    error: Optional[MergegateError] = None
    previous_state: Optional[ProposalState] = None
    new_state: Optional[ProposalState] = None


# Type alias for transition hooks
TransitionHook = Callable[[ChangeProposal, ProposalState, ProposalState, ProposalEvent], None]


class LifecycleService:
    """
    Service for applying lifecycle events to stored ChangeProposals.

    Every proposal id gets its own lock, so at most one transition is in
    flight per proposal while different proposals proceed in parallel.

    Hooks fire after each successful transition. They are the seam for
    external actors: an execution runner watching for RUNNING, a push
    actor watching for SUCCESS, a canceller watching for demotions.

    Example:
        from mergegate import LifecycleService, ProposalEvent
        from mergegate.repository import MemoryRepository

        service = LifecycleService(repository=MemoryRepository())
        service.create("mr-42", target_branch="main")

        result = service.apply_event("mr-42", ProposalEvent.REVIEW_APPROVED)
        result = service.apply_event("mr-42", "review_revoked", qualifier="source_changed")
    """

    def __init__(
        self,
        repository: Repository,
        hooks: Optional[list[TransitionHook]] = None,
    ) -> None:
        self._repository = repository
        self._hooks: list[TransitionHook] = hooks or []
        # Entries vanish once no caller holds the lock
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    @property
    def repository(self) -> Repository:
        return self._repository

    def add_hook(self, hook: TransitionHook) -> None:
        """Register a hook that fires after each successful transition."""
        self._hooks.append(hook)

    def _lock_for(self, proposal_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(proposal_id)
            if lock is None:
                lock = self._locks[proposal_id] = threading.Lock()
            return lock

    def create(
        self,
        proposal_id: str,
        source_branch: Optional[str] = None,
        target_branch: Optional[str] = None,
    ) -> ChangeProposal:
        """Create and persist a new proposal in INIT. Raises ValueError on a duplicate id."""
        with self._lock_for(proposal_id):
            if self._repository.get(proposal_id) is not None:
                raise ValueError(f"Proposal already exists: {proposal_id}")

            proposal = create_proposal(
                proposal_id=proposal_id,
                source_branch=source_branch,
                target_branch=target_branch,
            )
            try:
                self._repository.save(proposal)
            except ConcurrentModification as e:
                raise ValueError(f"Proposal already exists: {proposal_id}") from e

        logger.info(f"[mergegate] {proposal_id}: created in {proposal.state.value}")
        return proposal

    def apply_event(
        self,
        proposal_id: str,
        event: Union[ProposalEvent, str],
        qualifier: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        approval: Optional[Approval] = None,
    ) -> TransitionResult:
        """
        Apply an event to a stored proposal.

        1. Loads the proposal from the repository
        2. Resolves the event (and qualifier) to a single ProposalEvent
        3. Validates it against the transition table
        4. Records the transition in history and persists the proposal
        5. Fires any registered hooks

        Args:
            proposal_id: The proposal identifier
            event: Event to apply, as a member or its string value
            qualifier: Condition paired with the event, e.g. "source_changed"
            metadata: Optional context stored on the history record
            approval: Approval details, kept when the event is review_approved

        Returns:
            TransitionResult; on failure ``error`` is an InvalidTransition,
            ProposalNotFound or ConcurrentModification and the stored
            proposal is unchanged.
        """
        with self._lock_for(proposal_id):
            proposal = self._repository.get(proposal_id)

            if proposal is None:
                return TransitionResult(
                    success=False,
                    proposal=None,
                    error=ProposalNotFound(proposal_id),
                )

            previous_state = proposal.state

            try:
                resolved = ProposalEvent.resolve(event, qualifier)
                new_state = proposal.apply_event(resolved, metadata=metadata, approval=approval)
            except InvalidTransition as e:
                error = e
                if e.state is None:
                    # Unresolvable event: report it against the current state
                    error = InvalidTransition(e.event, state=previous_state, allowed=allowed_events(previous_state))
                logger.warning(f"[mergegate] {proposal_id}: {error}")
                return TransitionResult(
                    success=False,
                    proposal=proposal,
                    error=error,
                    previous_state=previous_state,
                )

            try:
                self._repository.save(proposal)
            except ConcurrentModification as e:
                # Another writer applied an event first; nothing was stored
                logger.warning(f"[mergegate] {proposal_id}: {e}")
                return TransitionResult(
                    success=False,
                    proposal=self._repository.get(proposal_id),
                    error=e,
                    previous_state=previous_state,
                )

        logger.info(f"[mergegate] {proposal_id}: {previous_state.value} → {new_state.value} ({resolved.value})")

        for hook in self._hooks:
            try:
                hook(proposal, previous_state, new_state, resolved)
            except Exception as e:
                logger.warning(f"[mergegate] Hook error: {e}")

        return TransitionResult(
            success=True,
            proposal=proposal,
            previous_state=previous_state,
            new_state=new_state,
        )

    def get(self, proposal_id: str) -> Optional[ChangeProposal]:
        """Get a proposal by ID."""
        return self._repository.get(proposal_id)

    def _require(self, proposal_id: str) -> ChangeProposal:
        proposal = self._repository.get(proposal_id)
        if proposal is None:
            raise ProposalNotFound(proposal_id)
        return proposal

    def get_state(self, proposal_id: str) -> ProposalState:
        """Current state of a proposal. Raises ProposalNotFound."""
        return self._require(proposal_id).state

    def get_history(self, proposal_id: str) -> list[ProposalTransition]:
        """Transition records of a proposal, oldest first. Raises ProposalNotFound."""
        return list(self._require(proposal_id).history)

"""mergegate — A typed state machine for the review → test → merge lifecycle of merge requests."""

from mergegate.errors import (
    MergegateError,
    InvalidTransition,
    ProposalNotFound,
    ConcurrentModification,
)
from mergegate.states import (
    ProposalState,
    ProposalEvent,
    ProposalTransition,
    ChangeProposal,
    Approval,
    TRANSITIONS,
    allowed_events,
    next_state,
    create_proposal,
)
from mergegate.service import (
    LifecycleService,
    TransitionResult,
)
from mergegate.dispatcher import EventDispatcher
from mergegate.repository import Repository
from mergegate.config import Settings

__version__ = "0.1.0"

__all__ = [
    # Errors
    "MergegateError",
    "InvalidTransition",
    "ProposalNotFound",
    "ConcurrentModification",
    # State machine
    "ProposalState",
    "ProposalEvent",
    "ProposalTransition",
    "ChangeProposal",
    "Approval",
    "TRANSITIONS",
    "allowed_events",
    "next_state",
    "create_proposal",
    # Service
    "LifecycleService",
    "TransitionResult",
    "EventDispatcher",
    # Repository protocol
    "Repository",
    "Settings",
]

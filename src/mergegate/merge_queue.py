"""
Merge queue for one target branch.

Proposals sharing a target branch are tested and merged one at a time.
The queue decides what an external actor should do next; it never
changes proposal state itself.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from mergegate.states import ChangeProposal, ProposalState

logger = logging.getLogger(__name__)


class ActionKind(str, Enum):
    PUSH = "push"
    WAIT = "wait"
    START = "start"
    IDLE = "idle"


@dataclass
class QueueAction:
    """What to do next for a target branch."""

    kind: ActionKind
    proposal: Optional[ChangeProposal] = None


def _approval_key(proposal: ChangeProposal) -> tuple:
    # Unapproved proposals sort after every approved one
    if proposal.approval is None:
        return (1, proposal.proposal_id)
    return (0, proposal.approval.sort_key(), proposal.proposal_id)


class MergeQueue:
    """
    Proposals for one target branch, bucketed by state.

    next_action() mirrors the order an operator would work in: push a
    tested proposal first, otherwise let a running test finish, otherwise
    start testing the best approved proposal.
    """

    def __init__(self, target_branch: str) -> None:
        self.target_branch = target_branch
        self._buckets: dict[ProposalState, list[ChangeProposal]] = {state: [] for state in ProposalState}

    def push(self, proposal: ChangeProposal) -> None:
        """File a proposal under its current state."""
        if proposal.target_branch != self.target_branch:
            raise ValueError(
                f"Proposal {proposal.proposal_id} targets {proposal.target_branch!r}, "
                f"not {self.target_branch!r}"
            )
        self._buckets[proposal.state].append(proposal)

    def extend(self, proposals: list[ChangeProposal]) -> None:
        for proposal in proposals:
            self.push(proposal)

    def counts(self) -> dict[str, int]:
        return {state.value: len(items) for state, items in self._buckets.items()}

    def best(self, state: ProposalState) -> Optional[ChangeProposal]:
        """Highest-ranked proposal in a state, or None."""
        items = self._buckets[state]
        if not items:
            return None
        return min(items, key=_approval_key)

    def next_action(self) -> QueueAction:
        logger.info(f"[mergegate] queue {self.target_branch}: {self.counts()}")

        candidate = self.best(ProposalState.SUCCESS)
        if candidate is not None:
            return QueueAction(ActionKind.PUSH, candidate)

        running = self._buckets[ProposalState.RUNNING]
        if running:
            return QueueAction(ActionKind.WAIT, min(running, key=_approval_key))

        candidate = self.best(ProposalState.APPROVED)
        if candidate is not None:
            return QueueAction(ActionKind.START, candidate)

        return QueueAction(ActionKind.IDLE)


def build_queues(proposals: list[ChangeProposal]) -> dict[str, MergeQueue]:
    """Group proposals into one MergeQueue per target branch, skipping untargeted ones."""
    queues: dict[str, MergeQueue] = {}
    for proposal in proposals:
        if proposal.target_branch is None:
            logger.warning(f"[mergegate] {proposal.proposal_id}: no target branch, not queued")
            continue
        queue = queues.get(proposal.target_branch)
        if queue is None:
            queue = queues[proposal.target_branch] = MergeQueue(proposal.target_branch)
        queue.push(proposal)
    return queues

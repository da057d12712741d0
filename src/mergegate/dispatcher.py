"""
Ordered, per-proposal event dispatch.

Events for one proposal are applied strictly in arrival order, one at a
time. Events for different proposals are independent.
"""

import logging
import threading
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from mergegate.service import LifecycleService, TransitionResult
from mergegate.states import Approval, ProposalEvent

logger = logging.getLogger(__name__)


@dataclass
class QueuedEvent:
    """An event waiting for its turn on a proposal."""

    event: Union[ProposalEvent, str]
    qualifier: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    approval: Optional[Approval] = None
    future: Future = field(default_factory=Future)


class EventDispatcher:
    """
    Serializes events per proposal on top of a LifecycleService.

    submit() appends the event to the proposal's FIFO and returns a Future
    for its TransitionResult. The first submitting thread that finds the
    proposal idle drains its queue; threads arriving meanwhile only enqueue
    and return. A rejected event resolves its future with a failed result
    and the events queued behind it still run. Cancelling a queued future
    withdraws its event; it is skipped and never applied.

    Usage:
        dispatcher = EventDispatcher(service)
        future = dispatcher.submit("mr-42", ProposalEvent.START)
        result = future.result()
    """

    def __init__(self, service: LifecycleService) -> None:
        self._service = service
        self._queues: dict[str, deque[QueuedEvent]] = {}
        self._guard = threading.Lock()

    @property
    def service(self) -> LifecycleService:
        return self._service

    def pending(self, proposal_id: str) -> int:
        """Number of events queued or in flight for a proposal."""
        with self._guard:
            queue = self._queues.get(proposal_id)
            return len(queue) if queue else 0

    def submit(
        self,
        proposal_id: str,
        event: Union[ProposalEvent, str],
        qualifier: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        approval: Optional[Approval] = None,
    ) -> "Future[TransitionResult]":
        """Queue an event for a proposal and return a Future for its result."""
        item = QueuedEvent(event=event, qualifier=qualifier, metadata=metadata, approval=approval)

        with self._guard:
            queue = self._queues.get(proposal_id)
            if queue is not None:
                # Another thread is draining this proposal
                queue.append(item)
                logger.debug(f"[mergegate] {proposal_id}: queued behind {len(queue) - 1} event(s)")
                return item.future
            self._queues[proposal_id] = deque([item])

        self._drain(proposal_id)
        return item.future

    def dispatch(
        self,
        proposal_id: str,
        event: Union[ProposalEvent, str],
        qualifier: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        approval: Optional[Approval] = None,
    ) -> TransitionResult:
        """Submit an event and wait for its result."""
        return self.submit(proposal_id, event, qualifier, metadata, approval).result()

    def _drain(self, proposal_id: str) -> None:
        while True:
            with self._guard:
                queue = self._queues[proposal_id]
                if not queue:
                    del self._queues[proposal_id]
                    return
                item = queue[0]

            # Claims the future; a cancelled one is dropped without being applied
            if not item.future.set_running_or_notify_cancel():
                logger.debug(f"[mergegate] {proposal_id}: skipped cancelled {getattr(item.event, 'value', item.event)}")
                self._finish(queue)
                continue

            try:
                result = self._service.apply_event(
                    proposal_id,
                    item.event,
                    qualifier=item.qualifier,
                    metadata=item.metadata,
                    approval=item.approval,
                )
            except Exception as e:
                logger.error(f"[mergegate] {proposal_id}: dispatch failed: {e}")
                self._finish(queue)
                item.future.set_exception(e)
            else:
                self._finish(queue)
                item.future.set_result(result)

    def _finish(self, queue: deque) -> None:
        with self._guard:
            queue.popleft()

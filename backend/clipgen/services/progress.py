"""
Progress notification boundary.

The orchestrator calls ProgressSink.emit() on every job state change. Delivery
is best-effort: emit never blocks and never raises into the pipeline.

ProgressBroadcaster fans events out to in-process subscribers (one bounded
queue per WebSocket connection). A slow subscriber loses events instead of
stalling the pipeline.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

EVENT_PROGRESS = "generation:progress"
EVENT_COMPLETED = "generation:completed"
EVENT_FAILED = "generation:failed"


class ProgressSink(ABC):
    """Fire-and-forget receiver of job events."""

    @abstractmethod
    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        """Publish an event. Must not block or raise."""
        pass


@dataclass
class Subscription:
    """One listener; account_id None means every account."""
    queue: asyncio.Queue
    account_id: Optional[str] = None
    job_ids: List[str] = field(default_factory=list)

    def wants(self, payload: Dict[str, Any]) -> bool:
        if self.account_id and payload.get("accountId") != self.account_id:
            return False
        if self.job_ids and payload.get("jobId") not in self.job_ids:
            return False
        return True


class ProgressBroadcaster(ProgressSink):
    """In-process pub/sub for job events."""

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscriptions: List[Subscription] = []

    def subscribe(self, account_id: Optional[str] = None, job_ids: Optional[List[str]] = None) -> Subscription:
        """Register a listener. Call unsubscribe() when the connection closes."""
        subscription = Subscription(
            queue=asyncio.Queue(maxsize=self.queue_size),
            account_id=account_id,
            job_ids=list(job_ids or []),
        )
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        message = {"event": event, **payload}
        for subscription in list(self._subscriptions):
            if not subscription.wants(payload):
                continue
            try:
                subscription.queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.debug(f"Dropping {event} for slow subscriber")

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import deque
from typing import Deque, Dict, Iterator, List, Optional

from .models import JobEvent

logger = logging.getLogger(__name__)

_END = object()


class _Channel:
    def __init__(self, job_id: str, replay_depth: int):
        self.job_id = job_id
        self.lock = threading.Lock()
        self.buffer: Deque[JobEvent] = deque(maxlen=replay_depth)
        self.subscribers: List[queue.SimpleQueue] = []
        self.observers = 0
        self.closed = False
        self.closed_at: Optional[float] = None
        # False until a publisher opens or publishes to the channel.
        self.owned = False


class Subscription:
    """
    Lazy view over one job's event channel. Iterating yields buffered events
    first, then live events in publish order, and stops once the channel is
    completed. Closing the subscription only detaches this observer.
    """

    def __init__(self, bus: "JobEventBus", job_id: str, inbox: queue.SimpleQueue):
        self.bus = bus
        self.job_id = job_id
        self._inbox = inbox
        self.finished = False
        self._closed = False

    def next_event(self, timeout: Optional[float] = None) -> Optional[JobEvent]:
        """
        Return the next event, or None when the timeout elapses or the stream has ended.
        Check `finished` to tell the two apart.
        """
        if self.finished:
            return None
        try:
            item = self._inbox.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _END:
            self.finished = True
            return None
        return item

    def __iter__(self) -> Iterator[JobEvent]:
        while not self.finished:
            event = self.next_event()
            if event is not None:
                yield event

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.bus.unsubscribe(self.job_id, self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class JobChannel:
    """
    Handle bound to a single job id.
    """

    def __init__(self, bus: "JobEventBus", job_id: str):
        self.bus = bus
        self.job_id = job_id

    def publish(self, event: JobEvent) -> None:
        self.bus.publish(self.job_id, event)

    def subscribe(self) -> Subscription:
        return self.bus.subscribe(self.job_id)

    def complete(self) -> None:
        self.bus.complete(self.job_id)


class JobEventBus:
    """
    In-process publish/subscribe registry keyed by job id.

    Each channel keeps the last `replay_depth` events so an observer that
    attaches late still sees the latest status. Channel lifetime belongs to
    the publisher: observers detaching never close a channel, only
    `complete` does. Completed channels stay readable for
    `closed_channel_ttl` seconds and are purged lazily afterwards.
    A channel that only observers ever touched (no open, no publish) is
    dropped when its last observer detaches.
    """

    def __init__(self, replay_depth: int = 1, closed_channel_ttl: float = 300.0):
        if replay_depth < 0:
            raise ValueError("replay_depth must be >= 0")
        self.replay_depth = replay_depth
        self.closed_channel_ttl = closed_channel_ttl
        self._channels: Dict[str, _Channel] = {}
        self._registry_lock = threading.Lock()

    def open(self, job_id: str) -> JobChannel:
        self._get_or_create(job_id, claim=True)
        return JobChannel(self, job_id)

    def subscribe(self, job_id: str) -> Subscription:
        inbox: queue.SimpleQueue = queue.SimpleQueue()
        with self._registry_lock:
            channel = self._get_or_create_locked(job_id)
            with channel.lock:
                for event in channel.buffer:
                    inbox.put(event)
                if channel.closed:
                    inbox.put(_END)
                else:
                    channel.subscribers.append(inbox)
                channel.observers += 1
                observers = channel.observers
        logger.info("Observer attached to job %s. Total observers: %s", job_id, observers)
        return Subscription(self, job_id, inbox)

    def publish(self, job_id: str, event: JobEvent) -> None:
        channel = self._get_or_create(job_id, claim=True)
        with channel.lock:
            if channel.closed:
                logger.warning("Dropping event '%s' for completed job %s", event.type.value, job_id)
                return
            channel.buffer.append(event)
            for inbox in channel.subscribers:
                inbox.put(event)
            listeners = len(channel.subscribers)
        logger.info("Published event '%s' to job %s (%s listeners)", event.type.value, job_id, listeners)

    def unsubscribe(self, job_id: str, subscription: Subscription) -> None:
        # Lock order is registry then channel, as in subscribe.
        with self._registry_lock:
            channel = self._channels.get(job_id)
            if channel is None:
                return
            with channel.lock:
                channel.subscribers = [inbox for inbox in channel.subscribers if inbox is not subscription._inbox]
                channel.observers = max(0, channel.observers - 1)
                observers = channel.observers
                abandoned = not channel.owned and not channel.closed and not channel.buffer and observers == 0
            if abandoned:
                # Nobody ever published here; only the observers kept it alive.
                del self._channels[job_id]
        # An owned channel stays open: the job owns its lifetime, not the observers.
        logger.info("Observer detached from job %s. Total observers: %s", job_id, observers)
        if abandoned:
            logger.debug("Dropped unclaimed event channel for job %s", job_id)

    def complete(self, job_id: str) -> None:
        with self._registry_lock:
            channel = self._channels.get(job_id)
        if channel is None:
            return
        with channel.lock:
            if channel.closed:
                return
            channel.closed = True
            channel.closed_at = time.monotonic()
            for inbox in channel.subscribers:
                inbox.put(_END)
            channel.subscribers = []
        logger.info("Completed event stream for job %s", job_id)

    def is_open(self, job_id: str) -> bool:
        with self._registry_lock:
            channel = self._channels.get(job_id)
        return bool(channel and not channel.closed)

    def has_channel(self, job_id: str) -> bool:
        with self._registry_lock:
            return job_id in self._channels

    def observer_count(self, job_id: str) -> int:
        with self._registry_lock:
            channel = self._channels.get(job_id)
        return channel.observers if channel else 0

    def purge_expired(self) -> int:
        with self._registry_lock:
            return self._purge_locked(time.monotonic())

    def _get_or_create(self, job_id: str, claim: bool = False) -> _Channel:
        with self._registry_lock:
            channel = self._get_or_create_locked(job_id)
            if claim:
                channel.owned = True
            return channel

    def _get_or_create_locked(self, job_id: str) -> _Channel:
        self._purge_locked(time.monotonic())
        channel = self._channels.get(job_id)
        if channel is None:
            channel = _Channel(job_id, self.replay_depth)
            self._channels[job_id] = channel
            logger.info("Created event channel for job %s", job_id)
        return channel

    def _purge_locked(self, now: float) -> int:
        expired = [
            job_id
            for job_id, channel in self._channels.items()
            if channel.closed and channel.closed_at is not None and now - channel.closed_at >= self.closed_channel_ttl
        ]
        for job_id in expired:
            del self._channels[job_id]
        if expired:
            logger.debug("Purged %s completed event channels", len(expired))
        return len(expired)

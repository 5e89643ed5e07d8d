# -*- coding: utf-8 -*-
"""
Per-job progress publish/subscribe.

The channel owns the job table. Every subscriber gets its own queue, so a
slow reader never reorders or drops another reader's events. A job is
forgotten once it is terminal and its subscribers are closed. Pending jobs
that nobody subscribed to are dropped on the next open, subscribe or start.
"""
import json
import queue
import logging
import threading
from enum import Enum
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass(frozen=True)
class ProgressEvent:
    kind: str # 'init' | 'progress' | 'complete' | 'error'
    current: int
    total: int
    file_name: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {'type': self.kind, 'current': self.current, 'total': self.total}
        if self.file_name is not None:
            payload['fileName'] = self.file_name
        if self.message is not None:
            payload['message'] = self.message
        return payload

    def to_sse(self) -> str:
        return f"event: {self.kind}\ndata: {json.dumps(self.to_dict())}\n\n"


@dataclass
class Job:
    id: str
    total: int = 0
    current: int = 0
    status: JobStatus = JobStatus.PENDING


_CLOSED = object()


class Subscription:
    """A single subscriber's view of one job. Iterating blocks until the next event."""

    def __init__(self, channel: "ProgressChannel", job_id: str):
        self.job_id = job_id
        self._channel = channel
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _deliver(self, event: ProgressEvent):
        if not self._closed:
            self._queue.put(event)

    def _end(self):
        if not self._closed:
            self._closed = True
            self._queue.put(_CLOSED)

    def get(self, timeout: Optional[float] = None) -> Optional[ProgressEvent]:
        """Next event, or None once the stream has ended. Raises queue.Empty on timeout."""
        item = self._queue.get(timeout=timeout)
        if item is _CLOSED:
            self._queue.put(_CLOSED)
            return None
        return item

    def __iter__(self) -> Iterator[ProgressEvent]:
        while True:
            event = self.get()
            if event is None:
                return
            yield event

    def close(self):
        self._channel._unsubscribe(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class ProgressChannel:
    def __init__(self):
        self._lock = threading.RLock()
        self._jobs: Dict[str, Job] = {}
        self._subscribers: Dict[str, List[Subscription]] = {}

    def _get_or_create(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            job = Job(id=job_id)
            self._jobs[job_id] = job
            self._subscribers[job_id] = []
        return job

    def _broadcast(self, job_id: str, event: ProgressEvent):
        for subscription in self._subscribers.get(job_id, []):
            subscription._deliver(event)

    def _sweep(self, keep: str):
        # A pending job without subscribers carries no state.
        stale = [job_id for job_id, job in self._jobs.items()
                 if job_id != keep and job.status == JobStatus.PENDING and not self._subscribers.get(job_id)]
        for job_id in stale:
            self._forget(job_id)

    def _forget(self, job_id: str):
        for subscription in self._subscribers.pop(job_id, []):
            subscription._end()
        self._jobs.pop(job_id, None)

    def open(self, job_id: str) -> Job:
        """Creates the job if needed and returns a snapshot of its state."""
        with self._lock:
            self._sweep(job_id)
            return replace(self._get_or_create(job_id))

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job is not None else None

    def __contains__(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._jobs

    def subscribe(self, job_id: str) -> Subscription:
        with self._lock:
            self._sweep(job_id)
            job = self._get_or_create(job_id)
            subscription = Subscription(self, job_id)
            self._subscribers[job_id].append(subscription)
            subscription._deliver(ProgressEvent('init', job.current, job.total))
            return subscription

    def _unsubscribe(self, subscription: Subscription):
        with self._lock:
            subscribers = self._subscribers.get(subscription.job_id)
            if subscribers is not None and subscription in subscribers:
                subscribers.remove(subscription)
            subscription._end()
            job = self._jobs.get(subscription.job_id)
            # Running jobs stay: their publisher still reports into them.
            if job is not None and not self._subscribers.get(job.id) and job.status != JobStatus.RUNNING:
                self._forget(job.id)

    def start(self, job_id: str, total: int):
        with self._lock:
            self._sweep(job_id)
            job = self._get_or_create(job_id)
            job.total = total
            job.current = 0
            job.status = JobStatus.RUNNING
            self._broadcast(job_id, ProgressEvent('init', job.current, job.total))
        logger.debug(f"  -> Debug: Job {job_id} started with {total} item(s).")

    def report(self, job_id: str, current: int, total: int, file_name: Optional[str] = None):
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status.terminal:
                return
            job.current = max(job.current, current)
            job.total = total
            self._broadcast(job_id, ProgressEvent('progress', job.current, job.total, file_name=file_name))

    def complete(self, job_id: str):
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status.terminal:
                return
            job.status = JobStatus.COMPLETED
            self._broadcast(job_id, ProgressEvent('complete', job.current, job.total))
            self._forget(job_id)
        logger.debug(f"  -> Debug: Job {job_id} completed.")

    def fail(self, job_id: str, message: str):
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status.terminal:
                return
            job.status = JobStatus.FAILED
            self._broadcast(job_id, ProgressEvent('error', job.current, job.total, message=message))
            self._forget(job_id)
        logger.debug(f"  -> Debug: Job {job_id} failed: {message}")


default_channel = ProgressChannel()

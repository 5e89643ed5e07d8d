# -*- coding: utf-8 -*-
import logging
import threading
import concurrent.futures
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional, Sequence

from framekit.archive import ArchiveWriter
from framekit.errors import BatchFailedError
from framekit.progress import JobStatus, ProgressChannel

logger = logging.getLogger(__name__)

ProcessFn = Callable[[bytes, float, str], bytes]


@dataclass(frozen=True)
class BatchTask:
    source: bytes
    y: float
    output_name: str
    file_name: str


class FairGate:
    """
    Counting gate that wakes waiters in arrival order.

    release() hands the slot straight to the oldest waiter, so a newcomer can
    never overtake a task that is already waiting.
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError(f"Gate limit must be >= 1, got {limit}.")
        self.limit = limit
        self._lock = threading.Lock()
        self._active = 0
        self._waiters: Deque[threading.Event] = deque()

    @property
    def active(self) -> int:
        with self._lock:
            return self._active

    def acquire(self):
        with self._lock:
            if self._active < self.limit and not self._waiters:
                self._active += 1
                return
            turn = threading.Event()
            self._waiters.append(turn)
        turn.wait()

    def release(self):
        with self._lock:
            if self._waiters:
                self._waiters.popleft().set()
            elif self._active > 0:
                self._active -= 1

    def __enter__(self) -> "FairGate":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()


class JobRunner:
    """
    Runs conversion tasks with at most `concurrency` in flight.

    Successful outputs go to the archive and bump the job's progress. The first
    failure stops dispatching; tasks already running finish but their output
    is dropped, and run() raises BatchFailedError for the first failing file.
    """

    def __init__(self, process: ProcessFn, archive: ArchiveWriter, channel: ProgressChannel,
                 job_id: str, concurrency: int = 2):
        self._process = process
        self._archive = archive
        self._channel = channel
        self.job_id = job_id
        self.concurrency = max(1, concurrency)
        self._gate = FairGate(self.concurrency)
        self._lock = threading.Lock()
        self._failure: Optional[BatchFailedError] = None
        self._completed = 0
        self._total = 0
        self.status = JobStatus.PENDING

    @property
    def completed(self) -> int:
        return self._completed

    @property
    def failure(self) -> Optional[BatchFailedError]:
        return self._failure

    def _record_failure(self, task: BatchTask, error: BaseException):
        with self._lock:
            if self._failure is None:
                failure = BatchFailedError(task.file_name, error)
                failure.__cause__ = error
                self._failure = failure
                self.status = JobStatus.FAILED
                logger.error(f"  -> Error: {task.file_name}: {error}")
            else:
                logger.debug(f"  -> Debug: {task.file_name}: Additional failure after abort ignored: {error}")

    def _run_task(self, task: BatchTask):
        try:
            output = self._process(task.source, task.y, task.file_name)
            with self._lock:
                if self._failure is not None:
                    logger.debug(f"  -> Debug: {task.file_name}: Output discarded, batch already failed.")
                    return
                self._archive.append(task.output_name, output)
                self._completed += 1
                self._channel.report(self.job_id, self._completed, self._total, task.file_name)
        except Exception as e:
            self._record_failure(task, e)
        finally:
            self._gate.release()

    def run(self, tasks: Sequence[BatchTask]) -> List[str]:
        """Returns the archive entry names written, in completion order."""
        if self.status != JobStatus.PENDING:
            raise RuntimeError(f"JobRunner for job {self.job_id} has already run.")
        self._total = len(tasks)

        with concurrent.futures.ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="convert") as executor:
            for task in tasks:
                self._gate.acquire()
                if self._failure is not None:
                    self._gate.release()
                    break
                if self.status == JobStatus.PENDING:
                    self.status = JobStatus.RUNNING
                executor.submit(self._run_task, task)

        if self._failure is not None:
            raise self._failure

        self.status = JobStatus.COMPLETED
        return self._archive.names

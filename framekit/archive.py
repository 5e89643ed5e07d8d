# -*- coding: utf-8 -*-
import queue
import logging
import zipfile
import threading
from typing import Iterator, List, Optional

from framekit.errors import ArchiveClosedError, ArchiveError, DuplicateEntryError, StreamingFailureError

logger = logging.getLogger(__name__)

# Fixed timestamp so identical inputs give identical archives.
ZIP_ENTRY_DATE_TIME = (1980, 1, 1, 0, 0, 0)

_EOF = object()


class ChunkPipe:
    """
    Bounded in-memory byte stream between an archive producer and a consumer.

    write() blocks while max_chunks chunks are waiting, so a slow consumer
    suspends the producers instead of letting memory grow. The consumer
    iterates the pipe and calls cancel() if it goes away.
    """

    def __init__(self, max_chunks: int = 16, poll_interval: float = 0.05):
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=max(1, max_chunks))
        self._poll_interval = poll_interval
        self._cancelled = threading.Event()
        self._aborted = threading.Event()
        self._abort_reason: Optional[BaseException] = None
        self._closed = False
        self.bytes_written = 0

    def _put(self, item: object):
        while True:
            if self._cancelled.is_set():
                raise StreamingFailureError("Downstream consumer closed the stream.")
            try:
                self._queue.put(item, timeout=self._poll_interval)
                return
            except queue.Full:
                continue

    def write(self, data) -> int:
        if self._closed or self._aborted.is_set():
            raise StreamingFailureError("Write to a closed stream.")
        chunk = bytes(data)
        if chunk:
            self._put(chunk)
            self.bytes_written += len(chunk)
        return len(data)

    def flush(self):
        pass

    def close(self):
        if self._closed:
            return
        self._closed = True
        if not self._aborted.is_set():
            self._put(_EOF)

    def abort(self, reason: Optional[BaseException] = None):
        """Terminates the stream without an end marker; the consumer sees a StreamingFailureError."""
        self._abort_reason = reason
        self._aborted.set()
        self._closed = True

    def cancel(self):
        """Called by the consumer; any blocked or later write fails."""
        self._cancelled.set()

    def __iter__(self) -> Iterator[bytes]:
        while True:
            if self._aborted.is_set():
                raise StreamingFailureError(f"Stream aborted: {self._abort_reason}") from self._abort_reason
            try:
                item = self._queue.get(timeout=self._poll_interval)
            except queue.Empty:
                continue
            if item is _EOF:
                return
            yield item  # type: ignore[misc]

    def read_all(self) -> bytes:
        return b''.join(self)


class ArchiveWriter:
    """
    Streams a ZIP archive to `sink` as entries arrive.

    append() is safe for concurrent callers; entries are written in append
    order. The central directory is written only by finalize().
    """

    def __init__(self, sink, expected: Optional[int] = None, compresslevel: int = 9, close_sink: bool = True):
        self._sink = sink
        self._expected = expected
        self._close_sink = close_sink
        self._compresslevel = compresslevel
        self._lock = threading.Lock()
        self._names: List[str] = []
        self._used = set()
        self._closed = False
        try:
            self._zip = zipfile.ZipFile(sink, mode='w', compression=zipfile.ZIP_DEFLATED, compresslevel=compresslevel)
        except OSError as e:
            raise StreamingFailureError(f"Could not open archive stream: {e}") from e

    @property
    def names(self) -> List[str]:
        with self._lock:
            return list(self._names)

    @property
    def closed(self) -> bool:
        return self._closed

    def append(self, name: str, data: bytes):
        with self._lock:
            if self._closed:
                raise ArchiveClosedError(f"Archive is closed; cannot append '{name}'.", file_name=name)
            if name in self._used:
                raise DuplicateEntryError(f"Duplicate archive entry name '{name}'.", file_name=name)
            info = zipfile.ZipInfo(name, date_time=ZIP_ENTRY_DATE_TIME)
            info.compress_type = zipfile.ZIP_DEFLATED
            info.external_attr = 0o644 << 16
            try:
                self._zip.writestr(info, data, compresslevel=self._compresslevel)
            except (OSError, ValueError) as e:
                raise StreamingFailureError(f"Archive sink failed while writing '{name}': {e}", file_name=name) from e
            self._used.add(name)
            self._names.append(name)
            logger.debug(f"  -> Debug: Archived '{name}' ({len(data)} bytes).")

    def finalize(self):
        with self._lock:
            if self._closed:
                raise ArchiveClosedError("Archive is already closed.")
            if self._expected is not None and len(self._names) != self._expected:
                raise ArchiveError(f"Archive has {len(self._names)} of {self._expected} expected entries.")
            self._closed = True
            try:
                self._zip.close()
                if self._close_sink:
                    self._sink.close()
            except (OSError, ValueError) as e:
                raise StreamingFailureError(f"Archive sink failed while finalizing: {e}") from e

    def abort(self, reason: Optional[BaseException] = None):
        """Closes without writing the trailer. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            # ZipFile.close() (also run on garbage collection) would write the
            # central directory; dropping its handle keeps the archive unfinalized.
            self._zip.fp = None
            if hasattr(self._sink, 'abort'):
                self._sink.abort(reason)
            elif self._close_sink:
                try:
                    self._sink.close()
                except OSError as e:
                    logger.warning(f"  -> Warning: Could not close archive sink after abort: {e}")
            logger.debug(f"  -> Debug: Archive aborted after {len(self._names)} entries ({reason}).")

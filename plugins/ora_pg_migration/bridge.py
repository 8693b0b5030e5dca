"""
Streaming Bridge Module

A bounded, closeable byte channel between exactly one producer (the thread
that fetches and encodes Oracle rows) and one consumer (psycopg2's
copy_expert reading COPY data).

Encoded records are packed into blocks of roughly block_size bytes and put
on a bounded queue. When the queue is full the producer blocks until COPY
catches up, so peak memory is about capacity * block_size regardless of
chunk size.

Shutdown signals:
- close(): producer finished; consumer sees end-of-stream after the last block
- abort(exc): producer failed; consumer's next read raises BridgeAborted
- cancel(): consumer failed; a producer blocked on a full queue is released
  and its next write raises BridgeAborted

Usage:
    bridge = StreamingBridge(capacity=16)
    # producer thread
    for row in cursor:
        bridge.write(encoder.encode(row))
    bridge.close()
    # consumer thread
    pg_cursor.copy_expert(copy_sql, bridge.reader())
"""

from io import RawIOBase
from typing import Optional
import logging
import queue
import threading

from ora_pg_migration.errors import BridgeAborted

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 16
DEFAULT_BLOCK_SIZE = 64 * 1024


class StreamingBridge:
    """Bounded producer/consumer byte channel with close and abort signals."""

    # Sentinel value to signal end of data
    _DONE = object()
    # Sentinel value to wake a waiting consumer after abort()
    _ABORTED = object()

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        block_size: int = DEFAULT_BLOCK_SIZE,
        poll_interval: float = 0.5,
    ):
        """
        Initialize the bridge.

        Args:
            capacity: Maximum number of blocks buffered (backpressure)
            block_size: Target size of each queued block in bytes
            poll_interval: Seconds between shutdown checks while blocked
        """
        if capacity < 1:
            raise ValueError(f"Bridge capacity must be at least 1 (got {capacity})")
        if block_size < 1:
            raise ValueError(f"Bridge block size must be at least 1 (got {block_size})")

        self.capacity = capacity
        self.block_size = block_size
        self._poll_interval = poll_interval
        self._queue: queue.Queue = queue.Queue(maxsize=capacity)
        self._pending = bytearray()

        self.cancel_event = threading.Event()
        self.abort_event = threading.Event()
        self.error: Optional[BaseException] = None
        self._error_lock = threading.Lock()
        self._closed = False
        self._finished = False

        self.records_written = 0
        self.bytes_written = 0

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def write(self, record: str) -> None:
        """
        Append one encoded record. Blocks while the queue is full.

        Raises:
            BridgeAborted: If the bridge was closed, aborted or cancelled
        """
        if self._closed:
            raise BridgeAborted("write after the bridge was closed")
        if self.cancel_event.is_set():
            raise BridgeAborted("consumer cancelled the stream")

        data = record.encode('utf-8')
        self._pending += data
        self.records_written += 1
        self.bytes_written += len(data)

        if len(self._pending) >= self.block_size:
            self._flush()

    def close(self) -> None:
        """Flush buffered data and signal end-of-stream."""
        if self._closed:
            return
        self._flush()
        self._closed = True
        self._put(self._DONE)

    def abort(self, error: BaseException) -> None:
        """Signal a producer failure; never blocks."""
        with self._error_lock:
            if self.error is None:
                self.error = error
        self._closed = True
        self._pending.clear()
        self.abort_event.set()
        try:
            self._queue.put_nowait(self._ABORTED)
        except queue.Full:
            # Consumer is not waiting on an empty queue; it checks abort_event per read
            pass

    def _flush(self) -> None:
        if not self._pending:
            return
        block = bytes(self._pending)
        self._pending.clear()
        self._put(block)

    def _put(self, item) -> None:
        while True:
            if self.cancel_event.is_set():
                raise BridgeAborted("consumer cancelled the stream")
            try:
                self._queue.put(item, timeout=self._poll_interval)
                return
            except queue.Full:
                continue

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Stop the producer; called when the consumer gives up."""
        self.cancel_event.set()
        # Drain so a producer blocked in put() wakes up immediately
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break

    def get_block(self) -> Optional[bytes]:
        """
        Take the next block, blocking while the queue is empty.

        Returns:
            The next block of bytes, or None at end-of-stream

        Raises:
            BridgeAborted: If the producer aborted or the stream was cancelled
        """
        while True:
            if self.abort_event.is_set():
                raise BridgeAborted(f"producer aborted the stream: {self.error}", self.error)
            if self.cancel_event.is_set():
                raise BridgeAborted("stream was cancelled")
            if self._finished:
                return None
            try:
                item = self._queue.get(timeout=self._poll_interval)
            except queue.Empty:
                continue

            if item is self._DONE:
                self._finished = True
                return None
            if item is self._ABORTED:
                continue
            return item

    def reader(self) -> '_BridgeReader':
        """File-like view of the consumer side, for cursor.copy_expert()."""
        return _BridgeReader(self)

    @property
    def failed(self) -> bool:
        return self.abort_event.is_set()


class _BridgeReader(RawIOBase):
    """Read-only stream over a StreamingBridge."""

    def __init__(self, bridge: StreamingBridge):
        self._bridge = bridge
        self._buffer = b''
        self._eof = False
        self.bytes_read = 0

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        """Read up to size bytes; blocks until data, end-of-stream or abort."""
        # A short read is fine for COPY, so only wait when nothing is buffered
        while not self._eof and (size < 0 or not self._buffer):
            block = self._bridge.get_block()
            if block is None:
                self._eof = True
                break
            self._buffer += block

        if size < 0 or len(self._buffer) <= size:
            data = self._buffer
            self._buffer = b''
        else:
            data = self._buffer[:size]
            self._buffer = self._buffer[size:]

        self.bytes_read += len(data)
        return data

    def readline(self, size: int = -1) -> bytes:
        while not self._eof and b'\n' not in self._buffer:
            block = self._bridge.get_block()
            if block is None:
                self._eof = True
                break
            self._buffer += block

        end = self._buffer.find(b'\n') + 1 or len(self._buffer)
        if 0 <= size < end:
            end = size
        line = self._buffer[:end]
        self._buffer = self._buffer[end:]
        self.bytes_read += len(line)
        return line

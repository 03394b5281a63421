"""Double buffer shared between one writer and one reader."""

from __future__ import annotations

import threading

_RULE = "=========================================="


class DataBuffer:
    """Two equally sized buffers that swap once both sides are done.

    The writer fills :meth:`write_buffer` and calls :meth:`done_writing`;
    the reader consumes :meth:`read_buffer` and calls :meth:`done_reading`.
    When both have signalled, the buffers rotate and waiting threads are
    woken up.
    """

    def __init__(self, size: int) -> None:
        if size < 0:
            raise ValueError(f"buffer size must not be negative, got {size}")
        self._size = size
        self._buffers = ([0] * size, [0] * size)
        self._write_index = 0
        self._write_done = False
        self._read_done = True
        self._write_count = 0
        self._read_count = 0
        self._cond = threading.Condition()

    def write_buffer(self) -> list:
        """Return the buffer the writer currently owns."""
        with self._cond:
            return self._buffers[self._write_index]

    def read_buffer(self) -> list:
        """Return the buffer the reader currently owns."""
        with self._cond:
            return self._buffers[1 - self._write_index]

    def size(self) -> int:
        """Return the number of elements in each buffer."""
        return self._size

    def done_writing(self) -> None:
        """Mark the write buffer as filled and rotate if the reader is done."""
        with self._cond:
            self._write_count += 1
            self._write_done = True
            self._try_to_rotate()

    def done_reading(self) -> None:
        """Mark the read buffer as consumed and rotate if the writer is done."""
        with self._cond:
            self._read_count += 1
            self._read_done = True
            self._try_to_rotate()

    def is_read_ready(self) -> bool:
        """True while the read buffer holds data not yet consumed."""
        with self._cond:
            return not self._read_done

    def is_write_ready(self) -> bool:
        """True while the write buffer may still be filled."""
        with self._cond:
            return not self._write_done

    def wait_until_read_ready(self, timeout: float | None = None) -> bool:
        """Block until the read buffer is ready; return False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: not self._read_done, timeout)

    def wait_until_write_ready(self, timeout: float | None = None) -> bool:
        """Block until the write buffer is ready; return False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: not self._write_done, timeout)

    def report(self) -> str:
        """Return a summary of the operations performed on the buffer."""
        with self._cond:
            lines = [
                "",
                "DataBuffer report:",
                _RULE,
                f"Number of write operations: {self._write_count}",
                f"Number of read operations:  {self._read_count}",
                f"Buffer[0] size:             {len(self._buffers[0])}",
                f"Buffer[1] size:             {len(self._buffers[1])}",
                _RULE,
                "",
            ]
        return "\n".join(lines) + "\n"

    def _try_to_rotate(self) -> None:
        if self._write_done and self._read_done:
            self._write_index = 1 - self._write_index
            self._write_done = False
            self._read_done = False
            self._cond.notify_all()
"""
Protocol / diagnostic-text demultiplexer.

The device prints diagnostic lines of the form ``[LOG] text\\n`` on the
same wire as its binary replies. Bytes returned from this module are
protocol bytes only; confirmed log lines are handed to a callback.

A ``[`` only starts a log line if the next five bytes are ``LOG] ``.
Anything else is ordinary data: the bytes consumed while checking are
queued and served back in their original order.
"""

import logging
import time
from collections import deque
from typing import Callable, Optional

from .transport import SerialTransport

logger = logging.getLogger(__name__)
device_logger = logging.getLogger("uart_bootloader.device")

LOG_MARKER = 0x5B  # '['
LOG_HEADER = b"LOG] "


class LogDemultiplexer:
    """
    Single logical byte source for the command layer.

    Args:
        transport: Open serial transport
        on_log: Called with each decoded log line (already stripped)
        header_timeout: Time allowed for the 5 header bytes after '['
        line_timeout: Time allowed for the rest of a confirmed log line
    """

    def __init__(
        self,
        transport: SerialTransport,
        on_log: Optional[Callable[[str], None]] = None,
        header_timeout: float = 0.05,
        line_timeout: float = 1.0,
    ):
        self.transport = transport
        self.on_log = on_log
        self.header_timeout = header_timeout
        self.line_timeout = line_timeout
        self._rx_queue: deque = deque()

    @property
    def pending(self) -> int:
        """Number of classified protocol bytes waiting in the queue."""
        return len(self._rx_queue)

    def clear(self) -> None:
        self._rx_queue.clear()

    def read_byte(self, timeout: float) -> Optional[int]:
        """
        Return the next protocol byte, or None if none arrived in time.

        Log lines seen along the way are published and skipped.
        """
        deadline = time.monotonic() + timeout
        while True:
            if self._rx_queue:
                return self._rx_queue.popleft()

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None

            raw = self.transport.read(1, timeout=remaining)
            if not raw:
                continue

            byte = raw[0]
            if byte != LOG_MARKER:
                return byte

            header = self._read_header()
            if header == LOG_HEADER:
                self._consume_log_line()
                continue

            # False positive: restore everything in arrival order
            self._rx_queue.append(byte)
            self._rx_queue.extend(header)
            return self._rx_queue.popleft()

    def read_bytes(self, count: int, timeout: float) -> bytes:
        """
        Collect up to ``count`` protocol bytes within ``timeout`` seconds.

        A timeout returns whatever was collected; callers compare the
        length against ``count``.
        """
        out = bytearray()
        deadline = time.monotonic() + timeout
        while len(out) < count:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            byte = self.read_byte(remaining)
            if byte is None:
                break
            out.append(byte)
        return bytes(out)

    def _read_header(self) -> bytes:
        header = bytearray()
        deadline = time.monotonic() + self.header_timeout
        while len(header) < len(LOG_HEADER):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            header.extend(self.transport.read(len(LOG_HEADER) - len(header), timeout=remaining))
        return bytes(header)

    def _consume_log_line(self) -> None:
        raw = self.transport.read_line(timeout=self.line_timeout)
        if not raw.endswith(b"\n"):
            logger.debug(f"Log line not terminated within {self.line_timeout}s")
        text = raw.decode("utf-8", errors="replace").strip()
        device_logger.info(text)
        if self.on_log:
            self.on_log(text)

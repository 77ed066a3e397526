"""
Progress and log fan-out.

Publishing never blocks the protocol engine: events go onto an unbounded
queue and a single dispatcher thread hands them to subscribers in the
order they were published.
"""

import logging
import queue
import threading
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
TextCallback = Callable[[str], None]

_STOP = object()


class TelemetryEmitter:
    """
    Fan-out of progress, device log lines and monitor text.

    Example:
        telemetry = TelemetryEmitter(on_log=print)
        telemetry.publish_log("hello")
        telemetry.flush()
    """

    def __init__(
        self,
        on_progress: Optional[ProgressCallback] = None,
        on_log: Optional[TextCallback] = None,
        on_monitor: Optional[TextCallback] = None,
    ):
        self._progress: List[ProgressCallback] = []
        self._log: List[TextCallback] = []
        self._monitor: List[TextCallback] = []
        self._subscribers_lock = threading.Lock()
        self._queue: "queue.Queue" = queue.Queue()
        self._closed = False

        if on_progress:
            self.subscribe_progress(on_progress)
        if on_log:
            self.subscribe_log(on_log)
        if on_monitor:
            self.subscribe_monitor(on_monitor)

        self._thread = threading.Thread(
            target=self._dispatch_loop, name="telemetry-dispatch", daemon=True
        )
        self._thread.start()

    def subscribe_progress(self, callback: ProgressCallback) -> None:
        with self._subscribers_lock:
            self._progress.append(callback)

    def subscribe_log(self, callback: TextCallback) -> None:
        with self._subscribers_lock:
            self._log.append(callback)

    def subscribe_monitor(self, callback: TextCallback) -> None:
        with self._subscribers_lock:
            self._monitor.append(callback)

    def unsubscribe(self, callback: Callable) -> None:
        """Remove a callback from every channel it is registered on."""
        with self._subscribers_lock:
            for subscribers in (self._progress, self._log, self._monitor):
                while callback in subscribers:
                    subscribers.remove(callback)

    def publish_progress(self, written: int, total: int) -> None:
        self._put("progress", (written, total))

    def publish_log(self, text: str) -> None:
        self._put("log", (text,))

    def publish_monitor(self, text: str) -> None:
        self._put("monitor", (text,))

    def _put(self, kind: str, args: Tuple) -> None:
        if self._closed:
            logger.debug(f"Dropping {kind} event after close")
            return
        self._queue.put_nowait((kind, args))

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until every event published so far has been delivered.

        Returns:
            True if the queue drained within the timeout
        """
        if self._closed:
            return not self._thread.is_alive()
        done = threading.Event()
        self._queue.put_nowait(("barrier", (done,)))
        return done.wait(timeout)

    def close(self, timeout: float = 1.0) -> None:
        """Deliver pending events, then stop the dispatcher."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_STOP)
        self._thread.join(timeout)

    def _dispatch_loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            kind, args = item
            if kind == "barrier":
                args[0].set()
                continue

            with self._subscribers_lock:
                if kind == "progress":
                    subscribers = list(self._progress)
                elif kind == "log":
                    subscribers = list(self._log)
                else:
                    subscribers = list(self._monitor)

            for callback in subscribers:
                try:
                    callback(*args)
                except Exception:
                    logger.exception(f"Telemetry subscriber failed on {kind} event")

"""
Bootloader engine: the caller-facing API.

Owns the single serial connection and serializes every operation on it.
Blocking operations have ``*_async`` twins that run on one background
worker and return futures. A passive monitor thread drains device text
whenever no command holds the connection.

Operations return OperationResult; protocol exceptions never escape
except from connect().
"""

import codecs
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Optional, Tuple

import serial.tools.list_ports

from .config import DEFAULT_TIMINGS, ProtocolTimings
from .core.pipeline import WriteJob, verify_image, write_image
from .core.results import OperationResult
from .core.telemetry import ProgressCallback, TelemetryEmitter, TextCallback
from .models import DEFAULT_FLASH_REGION, FlashRegion
from .protocol.commands import MAX_BLOCK_SIZE, BootloaderProtocol
from .protocol.transport import (
    BootloaderError,
    Connection,
    SerialTransport,
    TransportFault,
)

logger = logging.getLogger(__name__)


class BootloaderEngine:
    """
    Host-side driver for the UART bootloader.

    Example:
        with BootloaderEngine(on_progress=show_progress, on_log=print) as engine:
            engine.connect("/dev/ttyUSB0", 115200)
            if engine.erase_application():
                engine.write_firmware(Path("app.bin").read_bytes())
            engine.jump_to_application()
    """

    def __init__(
        self,
        timings: ProtocolTimings = DEFAULT_TIMINGS,
        region: FlashRegion = DEFAULT_FLASH_REGION,
        on_progress: Optional[ProgressCallback] = None,
        on_log: Optional[TextCallback] = None,
        on_monitor: Optional[TextCallback] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.timings = timings
        self.region = region
        self.sleep = sleep
        self.telemetry = TelemetryEmitter(
            on_progress=on_progress, on_log=on_log, on_monitor=on_monitor
        )
        self.transport = SerialTransport(timeout=timings.serial_timeout)
        self.protocol = BootloaderProtocol(
            self.transport, timings=timings, on_log=self._on_device_log, sleep=sleep
        )

        self._lock = threading.RLock()
        self._abort = threading.Event()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="bootloader")
        self._captured_logs: Optional[List[str]] = None
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        self._monitor_thread: Optional[threading.Thread] = None
        self._monitor_stop = threading.Event()

    def __enter__(self) -> "BootloaderEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # Connection

    @staticmethod
    def list_ports() -> List[Tuple[str, str]]:
        """Return (device, description) for every serial port pyserial sees."""
        return [
            (port.device, port.description or "-")
            for port in sorted(serial.tools.list_ports.comports(), key=lambda p: p.device)
        ]

    @property
    def is_connected(self) -> bool:
        return self.transport.is_connected

    @property
    def connection(self) -> Optional[Connection]:
        return self.transport.connection

    def connect(self, port: str, baudrate: int) -> Connection:
        """
        Open the port, replacing any existing connection.

        Raises:
            BootloaderConnectionError: If the port cannot be opened
        """
        with self._lock:
            connection = self.transport.connect(port, baudrate)
            self.protocol.demux.clear()
            self._decoder.reset()
        logger.info(f"Connected to {port} @ {baudrate} baud")
        return connection

    def disconnect(self) -> None:
        self.stop_monitor()
        with self._lock:
            if self.transport.is_connected:
                logger.info(f"Disconnected from {self.transport.connection.port}")
            self.transport.disconnect()

    def close(self) -> None:
        """Stop background work, close the port and the telemetry dispatcher."""
        self._abort.set()
        self._executor.shutdown(wait=True, cancel_futures=True)
        self.disconnect()
        self.telemetry.close()

    # Operation plumbing

    def _on_device_log(self, text: str) -> None:
        self.telemetry.publish_log(text)
        if self._captured_logs is not None:
            self._captured_logs.append(text)

    def _execute(
        self,
        operation: str,
        action: Callable[[OperationResult], None],
    ) -> OperationResult:
        """
        Run ``action`` with exclusive use of the connection.

        ``action`` fills in a success result; any BootloaderError or
        ValueError it raises becomes a failure result instead.
        """
        start = time.monotonic()
        with self._lock:
            if not self.transport.is_connected:
                return OperationResult.failure(operation, "Not connected")

            port = self.transport.connection.port
            result = OperationResult.success(operation, port=port)
            self._captured_logs = result.logs
            try:
                action(result)
            except TransportFault as e:
                logger.error(f"{operation} failed, connection closed: {e}")
                result.add_error(str(e))
                result.metadata["disconnected"] = True
            except (BootloaderError, ValueError) as e:
                logger.error(f"{operation} failed: {e}")
                result.add_error(str(e))
            finally:
                self._captured_logs = None

        result.elapsed = time.monotonic() - start
        return result

    # Operations

    def erase_application(self) -> OperationResult:
        """Erase the application region (no retry)."""
        def action(result: OperationResult) -> None:
            result.region = self.region.describe()
            self.protocol.erase()

        return self._execute("erase", action)

    def write_firmware(self, image: bytes) -> OperationResult:
        """
        Write ``image`` at the application start, publishing progress.

        The image must already be erased on the device.
        """
        self._abort.clear()
        return self._write_firmware(image)

    def _write_firmware(self, image: bytes) -> OperationResult:
        def action(result: OperationResult) -> None:
            job = WriteJob(image, region=self.region, chunk_size=self.timings.chunk_size)
            result.region = f"0x{self.region.app_start:08X}-0x{job.end_address:08X}"
            result.metadata["blocks"] = len(job.blocks)
            if job.total_bytes != len(job.image):
                result.add_warning("Image padded with 0xFF to an even length")
            try:
                result.bytes_len = write_image(
                    self.protocol,
                    job,
                    timings=self.timings,
                    progress_cb=self.telemetry.publish_progress,
                    abort=self._abort,
                    sleep=self.sleep,
                )
            finally:
                self._abort.clear()

        return self._execute("write_firmware", action)

    def verify_firmware(self, image: bytes) -> OperationResult:
        """Read the image region back and compare it with ``image``."""
        def action(result: OperationResult) -> None:
            job = WriteJob(image, region=self.region, chunk_size=self.timings.chunk_size)
            result.region = f"0x{self.region.app_start:08X}-0x{job.end_address:08X}"
            verify_image(self.protocol, job)
            result.bytes_len = job.total_bytes

        return self._execute("verify_firmware", action)

    def read_memory(self, address: int, length: int) -> OperationResult:
        """
        Read ``length`` bytes at ``address`` into ``result.data``.

        Lengths above one Read-Block request are split into sequential
        reads of ``timings.chunk_size`` bytes.
        """
        def action(result: OperationResult) -> None:
            if length <= 0:
                raise ValueError(f"Read length must be positive, got {length}")
            result.region = f"0x{address:08X}-0x{address + length:08X}"
            if not self.region.contains(address, length):
                result.add_warning(
                    f"Range {result.region} is not entirely inside flash "
                    f"0x{self.region.flash_start:08X}-0x{self.region.flash_end:08X}"
                )
            step = length if length <= MAX_BLOCK_SIZE else self.timings.chunk_size
            data = bytearray()
            for offset in range(0, length, step):
                data += self.protocol.read_block(address + offset, min(step, length - offset))
            result.data = bytes(data)
            result.bytes_len = len(data)

        return self._execute("read_memory", action)

    def jump_to_application(self) -> OperationResult:
        return self._execute("jump_to_application", lambda result: self.protocol.jump_to_application())

    def jump_to_bootloader(self) -> OperationResult:
        return self._execute("jump_to_bootloader", lambda result: self.protocol.jump_to_bootloader())

    def flash(
        self,
        image: bytes,
        erase: bool = True,
        verify: bool = False,
        jump: bool = True,
    ) -> OperationResult:
        """
        Full update: erase, write, optional verify, then start the app.

        Stops at the first failing step.
        """
        self._abort.clear()
        return self._flash(image, erase, verify, jump)

    def _flash(self, image: bytes, erase: bool, verify: bool, jump: bool) -> OperationResult:
        start = time.monotonic()
        steps = []
        if erase:
            steps.append(("erase", self.erase_application))
        steps.append(("write", lambda: self._write_firmware(image)))
        if verify:
            steps.append(("verify", lambda: self.verify_firmware(image)))

        result = OperationResult.success("flash", bytes_len=len(image))
        with self._lock:
            for name, step in steps:
                result.absorb(name, step())
                if not result.ok:
                    break
            else:
                write_time = result.metadata.get("write_time") or 0
                if write_time:
                    result.metadata["bytes_per_sec"] = int(len(image) / write_time)
                if jump:
                    self.sleep(self.timings.jump_delay)
                    result.absorb("jump", self.jump_to_application())

        result.elapsed = time.monotonic() - start
        return result

    def abort(self) -> None:
        """Stop the running write job after its current block."""
        logger.info("Abort requested")
        self._abort.set()

    # Background variants

    def erase_async(self) -> "Future[OperationResult]":
        return self._executor.submit(self.erase_application)

    def write_firmware_async(self, image: bytes) -> "Future[OperationResult]":
        self._abort.clear()
        return self._executor.submit(self._write_firmware, image)

    def read_memory_async(self, address: int, length: int) -> "Future[OperationResult]":
        return self._executor.submit(self.read_memory, address, length)

    def flash_async(
        self,
        image: bytes,
        erase: bool = True,
        verify: bool = False,
        jump: bool = True,
    ) -> "Future[OperationResult]":
        self._abort.clear()
        return self._executor.submit(self._flash, image, erase, verify, jump)

    # Passive monitoring

    def read_available_text(self) -> Optional[str]:
        """
        Drain whatever text the device has already sent, without waiting.

        Returns None when nothing is buffered, the port is closed, or a
        command currently owns the connection.

        Raises:
            TransportFault: If the port failed (the connection is closed)
        """
        if not self._lock.acquire(blocking=False):
            return None
        try:
            if not self.transport.is_connected:
                return None
            return self._drain_text()
        finally:
            self._lock.release()

    def _drain_text(self) -> Optional[str]:
        # Caller holds self._lock
        text = self._decoder.decode(self.transport.read_available())
        return text or None

    @property
    def monitor_running(self) -> bool:
        return self._monitor_thread is not None and self._monitor_thread.is_alive()

    def start_monitor(self) -> bool:
        """Start publishing drained text on the monitor channel."""
        if self.monitor_running:
            return True
        if not self.transport.is_connected:
            return False
        self._monitor_stop.clear()
        self._monitor_thread = threading.Thread(
            target=self._monitor_loop, name="bootloader-monitor", daemon=True
        )
        self._monitor_thread.start()
        logger.info("Monitor started")
        return True

    def stop_monitor(self, timeout: float = 1.0) -> None:
        if self._monitor_thread is None:
            return
        self._monitor_stop.set()
        if self._monitor_thread is not threading.current_thread():
            self._monitor_thread.join(timeout)
        self._monitor_thread = None
        logger.info("Monitor stopped")

    def _monitor_loop(self) -> None:
        interval = self.timings.monitor_interval
        while not self._monitor_stop.is_set():
            if not self._lock.acquire(timeout=0.05):
                continue
            try:
                if not self.transport.is_connected:
                    break
                text = self._drain_text()
            except TransportFault as e:
                logger.warning(f"Monitor stopped: {e}")
                break
            finally:
                self._lock.release()
            if text:
                self.telemetry.publish_monitor(text)
            self._monitor_stop.wait(interval)

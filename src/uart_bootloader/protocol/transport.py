"""
Serial Transport Layer

Owns the exclusive serial connection to the bootloader.

This module provides:
- Port open/close with connection bookkeeping
- Bounded-timeout reads (never block past the timeout)
- Raw writes
- Fault detection: an I/O error tears the connection down so later
  calls fail fast instead of hanging on a dead port
"""

import logging
from dataclasses import dataclass
from typing import Optional

import serial

logger = logging.getLogger(__name__)


class BootloaderError(Exception):
    """Base exception for all bootloader host errors"""
    pass


class BootloaderConnectionError(BootloaderError):
    """Port could not be opened (missing, busy, no permission)"""
    pass


class TransportFault(BootloaderError):
    """I/O failure on an open connection, or no connection present"""
    pass


@dataclass(frozen=True)
class Connection:
    """Parameters of the live serial connection."""
    port: str
    baudrate: int
    timeout: float


class SerialTransport:
    """
    Low-level serial transport for the UART bootloader.

    Example:
        transport = SerialTransport()
        transport.connect("/dev/ttyUSB0", 115200)
        transport.write(b"\\x56")
        ack = transport.read(1, timeout=10.0)
        transport.disconnect()
    """

    def __init__(self, timeout: float = 1.0):
        """
        Args:
            timeout: Default read/write timeout in seconds
        """
        self.timeout = timeout
        self.connection: Optional[Connection] = None
        self._ser = None

    @property
    def is_connected(self) -> bool:
        return self._ser is not None and self._ser.is_open

    def connect(self, port: str, baudrate: int) -> Connection:
        """
        Open the serial port (or pyserial URL such as loop://).

        Any previously open connection is closed first.

        Raises:
            BootloaderConnectionError: If the port cannot be opened
        """
        if self._ser is not None:
            self.disconnect()

        try:
            self._ser = serial.serial_for_url(
                port,
                baudrate=baudrate,
                bytesize=8,
                parity="N",
                stopbits=1,
                timeout=self.timeout,
                write_timeout=self.timeout,
            )
            self._ser.reset_input_buffer()
        except (serial.SerialException, OSError, ValueError) as e:
            self._ser = None
            self.connection = None
            raise BootloaderConnectionError(f"Cannot open port {port}: {e}") from e

        self.connection = Connection(port=port, baudrate=baudrate, timeout=self.timeout)
        logger.debug(f"Opened {port} at {baudrate} bps (timeout={self.timeout}s)")
        return self.connection

    def disconnect(self) -> None:
        """Close the serial port. Safe to call when already closed."""
        ser, port = self._ser, self.connection.port if self.connection else "?"
        self._ser = None
        self.connection = None
        if ser is None:
            return
        try:
            if ser.is_open:
                ser.close()
            logger.debug(f"Closed {port}")
        except (serial.SerialException, OSError) as e:
            logger.debug(f"Error while closing {port}: {e}")

    def _teardown(self, reason: Exception) -> TransportFault:
        """Drop the connection after an I/O failure."""
        port = self.connection.port if self.connection else "?"
        logger.error(f"Connection to {port} lost: {reason}")
        self.disconnect()
        return TransportFault(f"Connection to {port} lost: {reason}")

    def _require_port(self):
        if self._ser is None or not self._ser.is_open:
            raise TransportFault("Serial port not open")
        return self._ser

    def write(self, data: bytes) -> None:
        """
        Send raw bytes. Delivery is not confirmed at this layer.

        Raises:
            TransportFault: If not connected or the write fails
        """
        ser = self._require_port()
        try:
            ser.write(data)
        except (serial.SerialException, OSError) as e:
            raise self._teardown(e) from e
        logger.debug(f">>> {data.hex().upper()}")

    def read(self, size: int, timeout: Optional[float] = None) -> bytes:
        """
        Read up to ``size`` bytes, waiting at most ``timeout`` seconds.

        Returns fewer bytes (possibly none) on timeout.

        Raises:
            TransportFault: If not connected or the read fails
        """
        ser = self._require_port()
        try:
            ser.timeout = self.timeout if timeout is None else max(timeout, 0.0)
            data = ser.read(size)
        except (serial.SerialException, OSError) as e:
            raise self._teardown(e) from e
        if data:
            logger.debug(f"<<< {data.hex().upper()}")
        return data

    def read_line(self, timeout: Optional[float] = None) -> bytes:
        """Read up to and including the next newline, or until timeout."""
        ser = self._require_port()
        try:
            ser.timeout = self.timeout if timeout is None else max(timeout, 0.0)
            data = ser.read_until(b"\n")
        except (serial.SerialException, OSError) as e:
            raise self._teardown(e) from e
        return data

    @property
    def in_waiting(self) -> int:
        ser = self._require_port()
        try:
            return ser.in_waiting
        except (serial.SerialException, OSError) as e:
            raise self._teardown(e) from e

    def read_available(self) -> bytes:
        """Return whatever is already buffered without waiting."""
        pending = self.in_waiting
        if not pending:
            return b""
        return self.read(pending, timeout=0)

    def discard_input(self) -> None:
        """Drop anything sitting in the OS receive buffer."""
        ser = self._require_port()
        try:
            ser.reset_input_buffer()
        except (serial.SerialException, OSError) as e:
            raise self._teardown(e) from e

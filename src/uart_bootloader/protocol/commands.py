"""
Bootloader command protocol.

Each command is a fixed sequence of ACK-gated phases:

    ERASE   56                       -> ACK (slow, full erase)
    WRITE   57 | addr LE32 | len | data...
            ACK after cmd, addr, len, and after the data
    READ    59 | addr LE32 (paced) | len
            ACK after cmd, addr, len; then len raw bytes
    GO      55                       (no reply, device branches to app)
    BOOT    54                       (no reply, device resets to bootloader)

Every attempt starts by discarding input so a late byte from an earlier
failed attempt is never taken as this attempt's ACK.
"""

import logging
import struct
import time
from enum import Enum
from typing import Callable, Optional

from .demux import LogDemultiplexer
from .transport import BootloaderError, SerialTransport
from ..config import DEFAULT_TIMINGS, ProtocolTimings

logger = logging.getLogger(__name__)

CMD_JUMP_TO_BOOTLOADER = 0x54
CMD_GO = 0x55
CMD_ERASE_APP = 0x56
CMD_WRITE_MEM = 0x57
CMD_READ_MEM = 0x59

ACK = 0x06
NACK = 0x15

MAX_BLOCK_SIZE = 0xFF


class ProtocolError(BootloaderError):
    """Device did not complete a command phase"""
    pass


class ProtocolTimeout(ProtocolError):
    """No (or not enough) response within the phase timeout"""
    pass


class ProtocolNack(ProtocolError):
    """Device explicitly rejected a phase"""
    pass


class UnexpectedResponse(ProtocolError):
    """Device answered a phase with something other than ACK/NACK"""
    pass


class LengthMismatch(ProtocolError):
    """Read returned fewer bytes than requested"""

    def __init__(self, message: str, expected: int = 0, received: bytes = b""):
        super().__init__(message)
        self.expected = expected
        self.received = received


class Phase(Enum):
    """Command phases, used for error reporting."""
    COMMAND = "command"
    ADDRESS = "address"
    LENGTH = "length"
    DATA = "data"


def encode_address(address: int) -> bytes:
    """32-bit little-endian address field."""
    if not 0 <= address <= 0xFFFFFFFF:
        raise ValueError(f"Address out of 32-bit range: 0x{address:X}")
    return struct.pack("<I", address)


class BootloaderProtocol:
    """
    Command state machine on top of the demultiplexed byte stream.

    Example:
        protocol = BootloaderProtocol(transport, on_log=print)
        protocol.erase()
        protocol.write_block(0x08008000, firmware[:128])
        data = protocol.read_block(0x08008000, 16)
    """

    def __init__(
        self,
        transport: SerialTransport,
        timings: ProtocolTimings = DEFAULT_TIMINGS,
        on_log: Optional[Callable[[str], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.transport = transport
        self.timings = timings
        self.sleep = sleep
        self.demux = LogDemultiplexer(
            transport,
            on_log=on_log,
            header_timeout=timings.log_header_timeout,
            line_timeout=timings.log_line_timeout,
        )

    def _begin(self) -> None:
        self.transport.discard_input()
        self.demux.clear()

    def _expect_ack(self, phase: Phase, timeout: float, what: str) -> None:
        resp = self.demux.read_bytes(1, timeout)
        if not resp:
            raise ProtocolTimeout(f"No ACK for {what} ({phase.value} phase) within {timeout}s")
        if resp[0] == NACK:
            raise ProtocolNack(f"NACK for {what} ({phase.value} phase)")
        if resp[0] != ACK:
            raise UnexpectedResponse(
                f"Unexpected reply 0x{resp[0]:02X} for {what} ({phase.value} phase)"
            )

    def erase(self) -> None:
        """
        Erase the whole application region.

        Raises:
            ProtocolError: Unless the device ACKs within the erase timeout
        """
        self._begin()
        logger.info("Erasing application region...")
        self.transport.write(bytes([CMD_ERASE_APP]))
        self._expect_ack(Phase.COMMAND, self.timings.erase_timeout, "erase")
        logger.info("Erase acknowledged")

    def write_block(self, address: int, data: bytes) -> None:
        """
        Write one block. Returns only after the final ACK.

        Raises:
            ValueError: If the block is empty or longer than 255 bytes
            ProtocolError: If any phase is not ACKed (caller retries)
        """
        if not 0 < len(data) <= MAX_BLOCK_SIZE:
            raise ValueError(f"Block size must be 1..{MAX_BLOCK_SIZE}, got {len(data)}")
        addr_bytes = encode_address(address)
        what = f"write at 0x{address:08X}"

        self._begin()
        self.transport.write(bytes([CMD_WRITE_MEM]))
        self._expect_ack(Phase.COMMAND, self.timings.ack_timeout, what)

        self.transport.write(addr_bytes)
        self._expect_ack(Phase.ADDRESS, self.timings.ack_timeout, what)

        self.transport.write(bytes([len(data)]))
        self._expect_ack(Phase.LENGTH, self.timings.ack_timeout, what)

        # One byte per write; line time alone paces the device
        delay = self.timings.write_byte_delay
        for byte in data:
            self.transport.write(bytes([byte]))
            if delay:
                self.sleep(delay)

        self._expect_ack(Phase.DATA, self.timings.write_ack_timeout, what)
        logger.debug(f"Write block at 0x{address:08X}: {len(data)} bytes")

    def read_block(self, address: int, length: int) -> bytes:
        """
        Read ``length`` bytes starting at ``address``, verbatim.

        Raises:
            ValueError: If length is not 1..255
            ProtocolError: If a phase fails
            LengthMismatch: If fewer than ``length`` bytes arrive
        """
        if not 0 < length <= MAX_BLOCK_SIZE:
            raise ValueError(f"Read length must be 1..{MAX_BLOCK_SIZE}, got {length}")
        addr_bytes = encode_address(address)
        what = f"read at 0x{address:08X}"

        self._begin()
        self.transport.write(bytes([CMD_READ_MEM]))
        self._expect_ack(Phase.COMMAND, self.timings.ack_timeout, what)

        for byte in addr_bytes:
            self.transport.write(bytes([byte]))
            self.sleep(self.timings.read_byte_delay)
        self._expect_ack(Phase.ADDRESS, self.timings.ack_timeout, what)

        self.transport.write(bytes([length]))
        self._expect_ack(Phase.LENGTH, self.timings.ack_timeout, what)

        data = self.demux.read_bytes(length, self.timings.ack_timeout)
        if len(data) != length:
            raise LengthMismatch(
                f"Incomplete data at 0x{address:08X}: expected {length} bytes, got {len(data)}",
                expected=length,
                received=data,
            )
        logger.debug(f"Read block at 0x{address:08X}: {len(data)} bytes")
        return data

    def jump_to_application(self) -> None:
        """Fire-and-forget; the device leaves the bootloader."""
        self.transport.write(bytes([CMD_GO]))
        logger.info("Jump to application sent")

    def jump_to_bootloader(self) -> None:
        """Fire-and-forget; the application resets into the bootloader."""
        self.transport.write(bytes([CMD_JUMP_TO_BOOTLOADER]))
        logger.info("Jump to bootloader sent")

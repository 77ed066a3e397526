"""Bootloader wire layer: serial transport, log demultiplexing, commands."""

from .transport import (
    SerialTransport,
    Connection,
    BootloaderError,
    BootloaderConnectionError,
    TransportFault,
)
from .demux import LogDemultiplexer, LOG_MARKER, LOG_HEADER
from .commands import (
    BootloaderProtocol,
    Phase,
    ProtocolError,
    ProtocolTimeout,
    ProtocolNack,
    UnexpectedResponse,
    LengthMismatch,
    encode_address,
    ACK,
    NACK,
    CMD_ERASE_APP,
    CMD_WRITE_MEM,
    CMD_READ_MEM,
    CMD_GO,
    CMD_JUMP_TO_BOOTLOADER,
    MAX_BLOCK_SIZE,
)

__all__ = [
    # Transport
    "SerialTransport",
    "Connection",
    "BootloaderError",
    "BootloaderConnectionError",
    "TransportFault",
    # Demultiplexer
    "LogDemultiplexer",
    "LOG_MARKER",
    "LOG_HEADER",
    # Commands
    "BootloaderProtocol",
    "Phase",
    "ProtocolError",
    "ProtocolTimeout",
    "ProtocolNack",
    "UnexpectedResponse",
    "LengthMismatch",
    "encode_address",
    "ACK",
    "NACK",
    "CMD_ERASE_APP",
    "CMD_WRITE_MEM",
    "CMD_READ_MEM",
    "CMD_GO",
    "CMD_JUMP_TO_BOOTLOADER",
    "MAX_BLOCK_SIZE",
]

"""
UART Bootloader Host - erase, program and inspect MCU flash over a serial line

Protocol engine, chunked firmware writer and command-line front end.
"""

__version__ = "0.1.0"

from uart_bootloader.engine import BootloaderEngine
from uart_bootloader.protocol import (
    BootloaderProtocol,
    SerialTransport,
    BootloaderError,
)
from uart_bootloader.core.results import OperationResult
from uart_bootloader.config import ProtocolTimings

__all__ = [
    "BootloaderEngine",
    "BootloaderProtocol",
    "SerialTransport",
    "BootloaderError",
    "OperationResult",
    "ProtocolTimings",
    "__version__",
]

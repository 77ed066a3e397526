"""
Core module for the UART bootloader host.

This module provides the single source of truth for:
- Write gating / confirmation (safety.py)
- Address and length parsing (parsing.py)
- Result objects (results.py)
- The chunked write / verify pipeline (pipeline.py)
- Progress and log fan-out (telemetry.py)

Front ends should call into this module rather than implementing their
own logic.
"""

from .safety import (
    SafetyContext,
    require_write_permission,
    create_cli_safety_context,
    WritePermissionError,
    CONFIRMATION_TOKEN,
)
from .parsing import parse_int, parse_address, parse_length, parse_baudrate
from .results import OperationResult
from .telemetry import TelemetryEmitter
from .pipeline import (
    WriteJob,
    WriteBlock,
    pad_image,
    write_image,
    verify_image,
    PipelineError,
    ImageTooLarge,
    BlockWriteError,
    WriteAborted,
    VerifyMismatch,
)

__all__ = [
    # Safety
    "SafetyContext",
    "require_write_permission",
    "create_cli_safety_context",
    "WritePermissionError",
    "CONFIRMATION_TOKEN",
    # Parsing
    "parse_int",
    "parse_address",
    "parse_length",
    "parse_baudrate",
    # Results
    "OperationResult",
    # Telemetry
    "TelemetryEmitter",
    # Pipeline
    "WriteJob",
    "WriteBlock",
    "pad_image",
    "write_image",
    "verify_image",
    "PipelineError",
    "ImageTooLarge",
    "BlockWriteError",
    "WriteAborted",
    "VerifyMismatch",
]

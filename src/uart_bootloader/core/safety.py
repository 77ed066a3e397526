"""
Write gating for destructive bootloader operations.

Erase and flash change what the device boots. Front ends call
require_write_permission() before starting either one.
"""

import sys
from dataclasses import dataclass, field
from typing import Optional, List, Callable

# Confirmation token required for non-interactive writes
CONFIRMATION_TOKEN = "WRITE"


class WritePermissionError(Exception):
    """
    Raised when a write operation is not permitted.

    Attributes:
        reason: Human-readable explanation of why write was denied
        details: Additional context (port, region, etc.)
    """
    def __init__(self, reason: str, details: Optional[dict] = None):
        self.reason = reason
        self.details = details or {}
        super().__init__(reason)


@dataclass
class SafetyContext:
    """
    Everything needed to decide whether a write may proceed.

    Attributes:
        write_enabled: Whether the --write flag was provided
        confirmation_token: For non-interactive mode, must match CONFIRMATION_TOKEN
        interactive: Whether the front end can prompt for confirmation
        port: Target serial port
        simulate: Dry run; nothing is sent to the device
    """
    write_enabled: bool = False
    confirmation_token: Optional[str] = None
    interactive: bool = True
    port: str = ""
    simulate: bool = False
    warnings: List[str] = field(default_factory=list)

    prompt_confirmation: Optional[Callable[[str], str]] = None
    show_details: Optional[Callable[[dict], None]] = None

    def to_details_dict(
        self,
        operation: str = "",
        target_region: str = "",
        bytes_length: int = 0,
    ) -> dict:
        details = {
            "operation": operation,
            "port": self.port or "Unknown",
            "target_region": target_region,
            "bytes_length": bytes_length,
        }
        if self.warnings:
            details["warnings"] = self.warnings
        return details


def require_write_permission(
    ctx: SafetyContext,
    operation: str,
    target_region: str = "",
    bytes_length: int = 0,
) -> None:
    """
    Enforce write permission rules.

    Rules enforced:
    1. Simulation is always allowed
    2. Write must be explicitly enabled
    3. A confirmation token, when given, must match
    4. Otherwise an interactive prompt must return the token

    Raises:
        WritePermissionError: If write is not permitted
    """
    details = ctx.to_details_dict(operation, target_region, bytes_length)

    if ctx.simulate:
        return

    if not ctx.write_enabled:
        raise WritePermissionError(
            f"{operation} requires explicit permission. Use --write flag.",
            details=details,
        )

    if ctx.confirmation_token is not None:
        if ctx.confirmation_token.strip().upper() != CONFIRMATION_TOKEN:
            raise WritePermissionError(
                f"Confirmation token mismatch. Expected '{CONFIRMATION_TOKEN}'.",
                details=details,
            )
        return

    if not ctx.interactive:
        raise WritePermissionError(
            "Non-interactive mode requires confirmation_token.",
            details=details,
        )

    if ctx.show_details:
        ctx.show_details(details)

    if not ctx.prompt_confirmation:
        raise WritePermissionError(
            "Interactive confirmation required but no prompt handler set. "
            "Provide confirmation_token for non-interactive mode.",
            details=details,
        )

    user_input = ctx.prompt_confirmation(
        f"Type '{CONFIRMATION_TOKEN}' to proceed, or anything else to abort"
    )
    if user_input.strip().upper() != CONFIRMATION_TOKEN:
        raise WritePermissionError(
            "Confirmation failed. Write aborted by user.",
            details=details,
        )


def create_cli_safety_context(
    write_flag: bool,
    port: str = "",
    simulate: bool = False,
    confirmation_token: Optional[str] = None,
    prompt_confirmation: Optional[Callable[[str], str]] = None,
    show_details: Optional[Callable[[dict], None]] = None,
) -> SafetyContext:
    """
    Create a SafetyContext configured for CLI usage.

    Interactive prompting is used only on a TTY without a token.
    """
    interactive = sys.stdin.isatty() and confirmation_token is None

    return SafetyContext(
        write_enabled=write_flag,
        confirmation_token=confirmation_token,
        interactive=interactive,
        port=port,
        simulate=simulate,
        prompt_confirmation=prompt_confirmation,
        show_details=show_details,
    )

"""
Centralized parsing helpers for addresses, lengths and baud rates.

The CLI wraps these and converts ValueError into usage errors.
"""

from typing import Optional


def parse_int(value: Optional[str], label: str = "value") -> Optional[int]:
    """
    Parse an integer from string, supporting multiple formats.

    Accepts:
        - Decimal: "4096"
        - Hex with 0x prefix: "0x1000" or "0X1000"
        - Hex with h suffix: "1000h" or "1000H"
        - Underscores as separators: "0x0800_8000"
        - None or empty for "not given"

    Raises:
        ValueError: If value cannot be parsed.
    """
    if value is None:
        return None

    value = value.strip().replace("_", "")
    if not value:
        return None

    try:
        if value.lower().startswith("0x"):
            return int(value, 16)
        if value.lower().endswith("h"):
            return int(value[:-1], 16)
        return int(value)
    except ValueError:
        raise ValueError(
            f"Invalid {label} '{value}'. Use decimal (4096), hex (0x1000), or suffix (1000h)."
        )


def parse_address(value: str) -> int:
    """Parse a 32-bit flash address."""
    address = parse_int(value, "address")
    if address is None:
        raise ValueError("Address is required")
    if not 0 <= address <= 0xFFFFFFFF:
        raise ValueError(f"Address 0x{address:X} does not fit in 32 bits")
    return address


def parse_length(value: str) -> int:
    """Parse a positive byte count."""
    length = parse_int(value, "length")
    if length is None or length <= 0:
        raise ValueError(f"Length must be a positive number, got '{value}'")
    return length


def parse_baudrate(value: int) -> int:
    """
    Validate a baud rate.

    Non-standard rates are accepted (USB adapters often support them) as
    long as they are positive.
    """
    if value <= 0:
        raise ValueError(f"Invalid baud rate {value}")
    return value

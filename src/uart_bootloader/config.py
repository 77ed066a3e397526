"""
Configuration for the bootloader host.

Two layers:
- ProtocolTimings: timing, pacing and retry constants used by the engine
- UserSettings: last-used port/baud/file, persisted as JSON for the CLI
"""

import json
import logging
import os
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

SETTINGS_ENV_VAR = "UART_BOOTLOADER_SETTINGS"
DEFAULT_BAUDRATE = 115200


@dataclass(frozen=True)
class ProtocolTimings:
    """
    Timing, pacing and retry parameters (seconds unless noted).

    The device receive buffer is small. Write payloads rely on line time
    for pacing (write_byte_delay 0), read addresses are paced explicitly
    (read_byte_delay). Tune these, do not remove them.
    """
    ack_timeout: float = 1.0
    write_ack_timeout: float = 2.0
    erase_timeout: float = 10.0
    log_header_timeout: float = 0.05
    log_line_timeout: float = 1.0
    read_byte_delay: float = 0.001
    write_byte_delay: float = 0.0
    chunk_delay: float = 0.005
    retry_delay: float = 0.1
    retry_count: int = 3
    chunk_size: int = 128
    serial_timeout: float = 1.0
    jump_delay: float = 0.5
    monitor_interval: float = 0.01

    def __post_init__(self):
        if self.retry_count < 1:
            raise ValueError("retry_count must be >= 1")
        # Length travels as one byte and flash writes are half-word aligned
        if not 2 <= self.chunk_size <= 255 or self.chunk_size % 2:
            raise ValueError("chunk_size must be an even value between 2 and 254")
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, float) and value < 0:
                raise ValueError(f"{f.name} must not be negative")


DEFAULT_TIMINGS = ProtocolTimings()


def default_settings_path() -> Path:
    """Settings file location, overridable through UART_BOOTLOADER_SETTINGS."""
    override = os.environ.get(SETTINGS_ENV_VAR)
    if override:
        return Path(override)
    return Path.home() / ".config" / "uart-bootloader" / "settings.json"


@dataclass
class UserSettings:
    """Last-used connection parameters, remembered between CLI runs."""
    last_port: Optional[str] = None
    last_baudrate: int = DEFAULT_BAUDRATE
    last_file: Optional[str] = None

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "UserSettings":
        """Load settings; a missing or unreadable file yields defaults."""
        path = path or default_settings_path()
        if not path.exists():
            return cls()
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable settings file {path}: {e}")
            return cls()
        if not isinstance(raw, dict):
            return cls()

        known = {f.name for f in fields(cls)}
        settings = cls(**{k: v for k, v in raw.items() if k in known})
        if not isinstance(settings.last_baudrate, int) or settings.last_baudrate <= 0:
            settings.last_baudrate = DEFAULT_BAUDRATE
        return settings

    def save(self, path: Optional[Path] = None) -> None:
        """Write settings as indented JSON, creating the directory."""
        path = path or default_settings_path()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(asdict(self), indent=2), encoding="utf-8")
        except OSError as e:
            logger.warning(f"Could not save settings to {path}: {e}")

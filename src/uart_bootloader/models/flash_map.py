"""
Flash memory map of the target microcontroller.

The bootloader occupies the start of flash; applications are linked to
run from the first address after the reserved bootloader region.
"""

from dataclasses import dataclass

FLASH_START = 0x08000000
FLASH_SIZE = 128 * 1024
BOOTLOADER_SIZE = 0x8000


@dataclass(frozen=True)
class FlashRegion:
    """Addressable flash window and the application area inside it."""
    flash_start: int = FLASH_START
    flash_size: int = FLASH_SIZE
    bootloader_size: int = BOOTLOADER_SIZE

    def __post_init__(self):
        if self.bootloader_size < 0 or self.bootloader_size >= self.flash_size:
            raise ValueError("bootloader_size must leave room for an application")

    @property
    def flash_end(self) -> int:
        """Return end address (exclusive)."""
        return self.flash_start + self.flash_size

    @property
    def app_start(self) -> int:
        return self.flash_start + self.bootloader_size

    @property
    def app_size(self) -> int:
        """Bytes available to the application image."""
        return self.flash_end - self.app_start

    def contains(self, address: int, length: int = 1) -> bool:
        """True if [address, address + length) lies inside flash."""
        return self.flash_start <= address and address + length <= self.flash_end

    def with_app_start(self, app_start: int) -> "FlashRegion":
        """Copy of this region with a different application start."""
        if not self.flash_start <= app_start < self.flash_end:
            raise ValueError(
                f"Application start 0x{app_start:08X} outside flash "
                f"0x{self.flash_start:08X}-0x{self.flash_end:08X}"
            )
        return FlashRegion(
            flash_start=self.flash_start,
            flash_size=self.flash_size,
            bootloader_size=app_start - self.flash_start,
        )

    def describe(self) -> str:
        return f"0x{self.app_start:08X}-0x{self.flash_end:08X} ({self.app_size:,} bytes)"


DEFAULT_FLASH_REGION = FlashRegion()

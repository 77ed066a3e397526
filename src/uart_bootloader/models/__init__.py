"""
Target memory layout.

Provides the flash map used to place application images.
"""

from .flash_map import (
    FlashRegion,
    DEFAULT_FLASH_REGION,
    FLASH_START,
    FLASH_SIZE,
    BOOTLOADER_SIZE,
)

__all__ = [
    "FlashRegion",
    "DEFAULT_FLASH_REGION",
    "FLASH_START",
    "FLASH_SIZE",
    "BOOTLOADER_SIZE",
]

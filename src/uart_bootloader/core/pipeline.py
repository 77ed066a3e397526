"""
Chunked firmware write pipeline.

Pads the image to half-word alignment, splits it into blocks placed at
increasing addresses from the application start, and drives Write-Block
per block with bounded retry. The first block that exhausts its retries
fails the whole job.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ..config import DEFAULT_TIMINGS, ProtocolTimings
from ..models import DEFAULT_FLASH_REGION, FlashRegion
from ..protocol.commands import BootloaderProtocol, ProtocolError
from ..protocol.transport import BootloaderError

logger = logging.getLogger(__name__)

PAD_BYTE = 0xFF


class PipelineError(BootloaderError):
    """Base exception for write/verify jobs"""
    pass


class ImageTooLarge(PipelineError):
    """Padded image does not fit the application region"""
    pass


class BlockWriteError(PipelineError):
    """A block could not be written within the retry budget"""

    def __init__(self, message: str, address: int, attempts: int):
        super().__init__(message)
        self.address = address
        self.attempts = attempts


class WriteAborted(PipelineError):
    """Job stopped by the abort flag"""
    pass


class VerifyMismatch(PipelineError):
    """Read-back differs from the image"""

    def __init__(self, message: str, address: int):
        super().__init__(message)
        self.address = address


@dataclass(frozen=True)
class WriteBlock:
    index: int
    address: int
    data: bytes


@dataclass
class WriteJob:
    """
    Firmware image prepared for block-wise writing.

    Attributes:
        image: Image as supplied by the caller
        padded: Image padded to an even length
        blocks: Consecutive blocks covering ``padded``
    """
    image: bytes
    region: FlashRegion = DEFAULT_FLASH_REGION
    chunk_size: int = 128
    padded: bytes = field(init=False)
    blocks: List[WriteBlock] = field(init=False)

    def __post_init__(self):
        self.image = bytes(self.image)
        if not self.image:
            raise ValueError("Firmware image is empty")
        self.padded = pad_image(self.image)
        if len(self.padded) > self.region.app_size:
            raise ImageTooLarge(
                f"Firmware too large: {len(self.padded):,} bytes "
                f"(limit {self.region.app_size:,} bytes from 0x{self.region.app_start:08X})"
            )
        self.blocks = [
            WriteBlock(index=i, address=self.region.app_start + offset, data=self.padded[offset:offset + self.chunk_size])
            for i, offset in enumerate(range(0, len(self.padded), self.chunk_size))
        ]

    @property
    def total_bytes(self) -> int:
        return len(self.padded)

    @property
    def end_address(self) -> int:
        """Return end address (exclusive)."""
        return self.region.app_start + len(self.padded)


def pad_image(image: bytes) -> bytes:
    """Append one 0xFF byte to odd-length images (flash writes half-words)."""
    if len(image) % 2:
        return bytes(image) + bytes([PAD_BYTE])
    return bytes(image)


def write_image(
    protocol: BootloaderProtocol,
    job: WriteJob,
    timings: ProtocolTimings = DEFAULT_TIMINGS,
    progress_cb: Optional[Callable[[int, int], None]] = None,
    abort: Optional[threading.Event] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """
    Write every block of ``job`` in address order.

    Returns:
        Number of bytes written (the padded image length)

    Raises:
        BlockWriteError: A block failed ``timings.retry_count`` times
        WriteAborted: ``abort`` was set between blocks
        TransportFault: The connection dropped (never retried)
    """
    total = job.total_bytes
    written = 0
    logger.info(
        f"Writing {total:,} bytes in {len(job.blocks)} blocks "
        f"to 0x{job.region.app_start:08X}"
    )

    for block in job.blocks:
        if abort is not None and abort.is_set():
            raise WriteAborted(
                f"Write aborted before block {block.index} at 0x{block.address:08X} "
                f"({written:,}/{total:,} bytes written)"
            )

        for attempt in range(1, timings.retry_count + 1):
            try:
                protocol.write_block(block.address, block.data)
                break
            except ProtocolError as exc:
                if attempt >= timings.retry_count:
                    raise BlockWriteError(
                        f"Write failed at 0x{block.address:08X}, len={len(block.data)} "
                        f"after {attempt} attempts: {exc}",
                        address=block.address,
                        attempts=attempt,
                    ) from exc
                logger.warning(f"Retry {attempt}/{timings.retry_count - 1} at 0x{block.address:08X}: {exc}")
                sleep(timings.retry_delay)

        written += len(block.data)
        if progress_cb:
            progress_cb(written, total)
        if timings.chunk_delay:
            sleep(timings.chunk_delay)

    logger.info(f"Write complete: {written:,} bytes")
    return written


def verify_image(
    protocol: BootloaderProtocol,
    job: WriteJob,
    progress_cb: Optional[Callable[[int, int], None]] = None,
) -> None:
    """
    Read the padded image back block by block and compare.

    Raises:
        VerifyMismatch: At the first differing byte
        ProtocolError: If a read fails
    """
    total = job.total_bytes
    checked = 0
    for block in job.blocks:
        readback = protocol.read_block(block.address, len(block.data))
        if readback != block.data:
            offset = next(i for i, (a, b) in enumerate(zip(readback, block.data)) if a != b)
            address = block.address + offset
            raise VerifyMismatch(
                f"Verify mismatch at 0x{address:08X}: "
                f"expected 0x{block.data[offset]:02X}, read 0x{readback[offset]:02X}",
                address=address,
            )
        checked += len(block.data)
        if progress_cb:
            progress_cb(checked, total)
    logger.info(f"Verify complete: {checked:,} bytes match")

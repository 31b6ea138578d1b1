"""
Parameter flash collaborators.

FlashStorage is the interface the parameter store persists through
(protect / erase / write, plus read for start-up loading). RamFlash
simulates an on-chip flash page in memory; FileFlash keeps the same page
in an image file so the CLI can persist between runs.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path

log = logging.getLogger(__name__)

ERASED_BYTE = 0xFF
FLASH_PAGE_SIZE = 2048       # erase granularity (bytes)
FLASH_WRITE_ALIGN = 4        # program granularity (bytes)
DEFAULT_FLASH_SIZE = 2 * FLASH_PAGE_SIZE


class FlashError(Exception):
    """Storage fault: protected region, unerased target, bad alignment or range."""


def is_chunk_empty(data: bytes) -> bool:
    """Check if chunk is all 0xFF (erased flash state)."""
    return all(b == ERASED_BYTE for b in data)


class FlashStorage(ABC):
    """Storage the parameter table is persisted to."""

    @abstractmethod
    def protect(self, enable: bool) -> None:
        """Enable or disable write protection on the parameter region."""

    @abstractmethod
    def erase(self, region: int, size: int) -> None:
        """Erase at least `size` bytes starting at `region` (whole pages)."""

    @abstractmethod
    def write(self, region: int, size: int, data: bytes) -> None:
        """Program `size` bytes of `data` into an erased `region`."""

    @abstractmethod
    def read(self, region: int, size: int) -> bytes:
        ...


class RamFlash(FlashStorage):
    """
    In-memory flash with page erase, word programming and write protection.

    Every interface call is appended to `calls` as a tuple, e.g.
    ("protect", False), ("erase", 0, 2048), ("write", 0, 968).
    """

    def __init__(self, size: int = DEFAULT_FLASH_SIZE,
                 page_size: int = FLASH_PAGE_SIZE,
                 write_align: int = FLASH_WRITE_ALIGN):
        if size % page_size:
            raise ValueError(f"Flash size {size} is not a multiple of page size {page_size}")
        self.size = size
        self.page_size = page_size
        self.write_align = write_align
        self.protected = True
        self.calls: list[tuple] = []
        self._mem = bytearray([ERASED_BYTE]) * size

    def _check_range(self, region: int, size: int) -> None:
        if region < 0 or size < 0 or region + size > self.size:
            raise FlashError(f"Range 0x{region:X}+{size} outside flash (0x{self.size:X} bytes)")

    def _check_unprotected(self, op: str) -> None:
        if self.protected:
            raise FlashError(f"{op} rejected: flash is write protected")

    def protect(self, enable: bool) -> None:
        self.calls.append(("protect", bool(enable)))
        self.protected = bool(enable)
        log.debug("Flash protection %s", "enabled" if enable else "disabled")

    def erase(self, region: int, size: int) -> None:
        self.calls.append(("erase", region, size))
        self._check_unprotected("Erase")
        self._check_range(region, size)

        # Whole pages containing [region, region + size)
        start = (region // self.page_size) * self.page_size
        end = -(-(region + size) // self.page_size) * self.page_size
        end = min(end, self.size)
        self._mem[start:end] = bytes([ERASED_BYTE]) * (end - start)
        log.debug("Erased 0x%X-0x%X", start, end)
        self._flush()

    def write(self, region: int, size: int, data: bytes) -> None:
        self.calls.append(("write", region, size))
        self._check_unprotected("Write")
        self._check_range(region, size)
        if region % self.write_align or size % self.write_align:
            raise FlashError(f"Write 0x{region:X}+{size} not aligned to {self.write_align} bytes")
        if len(data) < size:
            raise FlashError(f"Write of {size} bytes given only {len(data)} bytes of data")
        if not is_chunk_empty(self._mem[region:region + size]):
            raise FlashError(f"Write target 0x{region:X}+{size} is not erased")

        self._mem[region:region + size] = data[:size]
        log.debug("Wrote %d bytes at 0x%X", size, region)
        self._flush()

    def read(self, region: int, size: int) -> bytes:
        self._check_range(region, size)
        return bytes(self._mem[region:region + size])

    def _flush(self) -> None:
        pass


class FileFlash(RamFlash):
    """
    Flash image file. A missing or short image reads as erased flash;
    the file is rewritten after every erase and write.
    """

    def __init__(self, path, size: int = DEFAULT_FLASH_SIZE,
                 page_size: int = FLASH_PAGE_SIZE,
                 write_align: int = FLASH_WRITE_ALIGN):
        super().__init__(size, page_size, write_align)
        self.path = Path(path)
        if self.path.exists():
            raw = self.path.read_bytes()
            if len(raw) > size:
                raise FlashError(f"Image {self.path} is {len(raw)} bytes, flash is {size}")
            self._mem[:len(raw)] = raw
            log.info("Flash image loaded from %s", self.path)
        else:
            log.info("Flash image %s not found, starting erased", self.path)

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(bytes(self._mem))

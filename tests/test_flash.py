"""
Tests for the simulated and file-backed parameter flash.
"""
import pytest

from esc_params.storage.flash import (
    FLASH_PAGE_SIZE,
    FileFlash,
    FlashError,
    RamFlash,
    is_chunk_empty,
)


def _unprotected(flash):
    flash.protect(False)
    return flash


class TestRamFlash:

    def test_starts_erased_and_protected(self):
        flash = RamFlash()
        assert flash.protected
        assert is_chunk_empty(flash.read(0, flash.size))

    def test_size_must_be_whole_pages(self):
        with pytest.raises(ValueError):
            RamFlash(size=FLASH_PAGE_SIZE + 1)

    def test_write_protected(self):
        flash = RamFlash()
        with pytest.raises(FlashError):
            flash.write(0, 4, b"\x00" * 4)
        with pytest.raises(FlashError):
            flash.erase(0, 4)

    def test_write_requires_erased_target(self):
        flash = _unprotected(RamFlash())
        flash.write(0, 4, b"\x01\x02\x03\x04")
        with pytest.raises(FlashError):
            flash.write(0, 4, b"\x05\x06\x07\x08")
        assert flash.read(0, 4) == b"\x01\x02\x03\x04"

    def test_write_alignment(self):
        flash = _unprotected(RamFlash())
        with pytest.raises(FlashError):
            flash.write(0, 6, b"\x00" * 6)
        with pytest.raises(FlashError):
            flash.write(2, 4, b"\x00" * 4)

    def test_write_short_data(self):
        flash = _unprotected(RamFlash())
        with pytest.raises(FlashError):
            flash.write(0, 8, b"\x00" * 4)

    def test_out_of_range(self):
        flash = _unprotected(RamFlash(size=FLASH_PAGE_SIZE))
        with pytest.raises(FlashError):
            flash.write(FLASH_PAGE_SIZE - 4, 8, b"\x00" * 8)
        with pytest.raises(FlashError):
            flash.erase(0, FLASH_PAGE_SIZE + 1)
        with pytest.raises(FlashError):
            flash.read(-1, 4)

    def test_erase_covers_whole_page(self):
        flash = _unprotected(RamFlash(size=2 * FLASH_PAGE_SIZE))
        flash.write(0, 4, b"\x00" * 4)
        flash.write(FLASH_PAGE_SIZE - 4, 4, b"\x00" * 4)
        flash.write(FLASH_PAGE_SIZE, 4, b"\x00" * 4)
        flash.erase(8, 16)
        assert is_chunk_empty(flash.read(0, FLASH_PAGE_SIZE))
        assert flash.read(FLASH_PAGE_SIZE, 4) == b"\x00" * 4

    def test_records_calls(self):
        flash = RamFlash()
        flash.protect(False)
        flash.erase(0, 2048)
        flash.write(0, 4, b"abcd")
        flash.protect(True)
        assert flash.calls == [
            ("protect", False), ("erase", 0, 2048), ("write", 0, 4), ("protect", True),
        ]


class TestFileFlash:

    def test_missing_image_reads_erased(self, tmp_path):
        flash = FileFlash(tmp_path / "esc.bin")
        assert is_chunk_empty(flash.read(0, flash.size))
        assert not (tmp_path / "esc.bin").exists()

    def test_persists_between_instances(self, tmp_path):
        path = tmp_path / "img" / "esc.bin"
        flash = _unprotected(FileFlash(path))
        flash.erase(0, FLASH_PAGE_SIZE)
        flash.write(0, 4, b"\x11\x22\x33\x44")
        flash.protect(True)

        again = FileFlash(path)
        assert again.read(0, 4) == b"\x11\x22\x33\x44"
        assert again.protected
        assert path.stat().st_size == again.size

    def test_short_image_padded_with_erased_bytes(self, tmp_path):
        path = tmp_path / "esc.bin"
        path.write_bytes(b"\x00" * 10)
        flash = FileFlash(path)
        assert flash.read(0, 10) == b"\x00" * 10
        assert is_chunk_empty(flash.read(10, 100))

    def test_oversized_image(self, tmp_path):
        path = tmp_path / "esc.bin"
        path.write_bytes(b"\x00" * (FLASH_PAGE_SIZE + 1))
        with pytest.raises(FlashError):
            FileFlash(path, size=FLASH_PAGE_SIZE)

"""A disk image file accessed in 512-byte sectors."""

from __future__ import annotations

import errno
import os
from dataclasses import dataclass
from typing import BinaryIO

from .errors import IopError

SECTOR_SIZE = 512


@dataclass(frozen=True)
class AtaDevInfo:
    """Result of probing an ATA device."""

    exists: bool
    has_packet: bool
    total_sectors: int
    security_status: int


class AtaDisk:
    """Device 0 backed by an image file; other devices do not exist."""

    def __init__(self, path: str | os.PathLike = "hdd.img") -> None:
        self.path = os.fspath(path)
        self._handle: BinaryIO | None = None
        self._length = 0

    def open(self) -> None:
        """Open the image and measure its length in sectors."""
        if self._handle is not None:
            return
        handle = open(self.path, "r+b")
        try:
            size = handle.seek(0, os.SEEK_END)
        except OSError:
            handle.close()
            raise
        self._handle = handle
        self._length = max(0, (size - (SECTOR_SIZE - 1)) // SECTOR_SIZE)

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def __enter__(self) -> "AtaDisk":
        self.open()
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _file(self) -> BinaryIO:
        if self._handle is None:
            self.open()
        assert self._handle is not None
        return self._handle

    def devinfo(self, device: int) -> AtaDevInfo:
        self._file()
        if device == 0:
            return AtaDevInfo(True, False, self._length, 0)
        return AtaDevInfo(False, False, 0, 0)

    def _seek(self, device: int, lba: int) -> BinaryIO:
        handle = self._file()
        if device != 0:
            raise IopError(errno.ENODEV, f"invalid device {device}")
        if lba < 0:
            raise IopError(errno.EINVAL, f"invalid sector {lba}")
        handle.seek(lba * SECTOR_SIZE, os.SEEK_SET)
        return handle

    def read_sectors(self, device: int, lba: int, nsectors: int) -> bytes:
        """Read ``nsectors`` sectors starting at ``lba``."""
        handle = self._seek(device, lba)
        wanted = nsectors * SECTOR_SIZE
        data = handle.read(wanted)
        if len(data) != wanted:
            raise IopError(errno.EIO, f"{self.path}: short read")
        return data

    def write_sectors(self, device: int, lba: int, data: bytes) -> None:
        """Write whole sectors starting at ``lba``."""
        if len(data) % SECTOR_SIZE:
            raise ValueError("data must be a whole number of sectors")
        handle = self._seek(device, lba)
        written = handle.write(data)
        if written != len(data):
            raise IopError(errno.EIO, f"{self.path}: short write")
        handle.flush()
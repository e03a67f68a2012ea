"""Filesystem driver exposing an HDLoader game partition as one block stream."""

from __future__ import annotations

import errno
from collections.abc import Iterator
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any

from .atad import SECTOR_SIZE
from .constants import DeviceType, HddIoctl, IoDirection, MountFlag, OpenFlag, SeekWhence, ChstatMask
from .errors import IopError
from .hdlinfo import (
    CD_SECTOR_SIZE,
    GAME_TITLE_LEN,
    HDL_FS_MAGIC,
    HDL_GAME_DATA_OFFSET,
    HDL_INFO_MAGIC,
    MAX_PART_SPECS,
    DevctlCode,
    FormatArgs,
    HdlGameInfo,
    PartSpec,
)
from .iomanx import Device, DeviceOps, IoManager, OpenFile
from .semaphores import SemaphoreTable
from .structs import HddTransfer, IoxDirent, IoxStat

DEVICE_NAME = "hdl"
DEVICE_DESCRIPTION = "HDLoader filesystem driver"
MAX_AVAILABLE_FDS = 2

_MAIN_RESERVED = 0x2000  # 4 MiB reserved area at the start of the main partition
_SUB_RESERVED = 4  # sub-partitions reserve 2 sectors, rounded up to a disc sector
_MAX_SLICE_SECTORS = 0x200000  # a slice of 4 GiB or more overflows the size field
_IMAGE_START = 0x2000
_HDD_PER_CD = CD_SECTOR_SIZE // SECTOR_SIZE
_U32 = 0xFFFFFFFF

_FIXED_FIELDS = ChstatMask.MODE | ChstatMask.SIZE | ChstatMask.CT | ChstatMask.AT | ChstatMask.MT


def _reserved_sectors(part: int) -> int:
    return _MAIN_RESERVED if part == 0 else _SUB_RESERVED


def _clip(text: str, limit: int) -> str:
    raw = text.encode("utf-8", "surrogateescape")[:limit]
    return raw.decode("utf-8", "surrogateescape")


@dataclass
class _Mount:
    """State of one mounted game partition."""

    sema_id: int
    mount_fd: int = -1
    num_partitions: int = 0
    current_part: int = 0
    relative_sector: int = 0  # relative to the start of the current partition
    offset: int = 0  # current position in disk sectors
    size: int = 0  # total size of all linked partitions in disk sectors
    part_specs: list[PartSpec] = field(default_factory=list)

    @property
    def mounted(self) -> bool:
        return self.mount_fd >= 0


class HdlFilesystem(DeviceOps):
    """Reads and writes a game image spread over a partition and its subs."""

    def __init__(self, manager: IoManager, semaphores: SemaphoreTable | None = None) -> None:
        self.manager = manager
        self.semaphores = semaphores if semaphores is not None else SemaphoreTable()
        self._mounts: list[_Mount] = []

    # Helpers ---------------------------------------------------------------

    def _slot(self, unit: int) -> _Mount:
        if not 0 <= unit < len(self._mounts):
            raise IopError(errno.ENODEV, f"no unit {unit}")
        return self._mounts[unit]

    def _mounted(self, unit: int) -> _Mount:
        mount = self._slot(unit)
        if not mount.mounted:
            raise IopError(errno.ENODEV, f"unit {unit} is not mounted")
        return mount

    def _read_info(self, mount: _Mount) -> HdlGameInfo:
        try:
            self.manager.lseek(mount.mount_fd, HDL_GAME_DATA_OFFSET, SeekWhence.SET)
            data = self.manager.read(mount.mount_fd, HdlGameInfo.SIZE)
        except IopError as exc:
            raise IopError(errno.EIO, "cannot read game record") from exc
        if len(data) != HdlGameInfo.SIZE:
            raise IopError(errno.EIO, "short read of game record")
        return HdlGameInfo.unpack(data)

    def _write_info(self, mount: _Mount, info: HdlGameInfo) -> None:
        data = info.pack()
        try:
            self.manager.lseek(mount.mount_fd, HDL_GAME_DATA_OFFSET, SeekWhence.SET)
            written = self.manager.write(mount.mount_fd, data)
        except IopError as exc:
            raise IopError(errno.EIO, "cannot write game record") from exc
        if written != len(data):
            raise IopError(errno.EIO, "short write of game record")

    def _load(self, unit: int) -> HdlGameInfo:
        mount = self._mounted(unit)
        with self.semaphores.hold(mount.sema_id):
            return self._read_info(mount)

    def _unmount(self, unit: int) -> None:
        mount = self._mounted(unit)
        with self.semaphores.hold(mount.sema_id):
            with suppress(IopError):
                self.manager.ioctl2(mount.mount_fd, HddIoctl.FLUSH)
            with suppress(IopError):
                self.manager.close(mount.mount_fd)
            mount.mount_fd = -1

    def _transfer(self, file: OpenFile, size: int, direction: IoDirection, data: bytes | None = None) -> bytearray:
        if size < 0 or size % SECTOR_SIZE:
            raise IopError(errno.EINVAL, f"transfer size {size} is not a whole number of sectors")
        mount = file.privdata
        if not isinstance(mount, _Mount):
            raise IopError(errno.EBADF, "file is not bound to a mount")

        buffer = bytearray(size) if data is None else bytearray(data)
        position = 0
        remaining = size // SECTOR_SIZE
        with self.semaphores.hold(mount.sema_id):
            while remaining > 0:
                specs = mount.part_specs
                left = specs[mount.current_part].part_size // SECTOR_SIZE - mount.relative_sector
                if left < 1:
                    mount.current_part += 1
                    mount.relative_sector = 0
                    if mount.current_part >= len(specs):
                        raise IopError(errno.EIO, "end of game image")
                    left = specs[mount.current_part].part_size // SECTOR_SIZE
                    if left < 1:
                        raise IopError(errno.EIO, "end of game image")

                count = min(remaining, left)
                end = position + count * SECTOR_SIZE
                chunk = buffer[position:end]
                request = HddTransfer(
                    sub=mount.current_part,
                    sector=_reserved_sectors(mount.current_part) + mount.relative_sector,
                    size=count,
                    mode=direction,
                    buffer=chunk,
                )
                self.manager.ioctl2(mount.mount_fd, HddIoctl.TRANSFER, request)
                if direction == IoDirection.READ:
                    buffer[position:end] = chunk

                mount.offset += count
                remaining -= count
                position = end
                mount.relative_sector += count
        return buffer

    # Driver operations -----------------------------------------------------

    def init(self, device: Device) -> None:
        self._mounts = [_Mount(sema_id=self.semaphores.create()) for _ in range(MAX_AVAILABLE_FDS)]

    def deinit(self, device: Device) -> None:
        for unit, mount in enumerate(self._mounts):
            if mount.mounted:
                self._unmount(unit)
            self.semaphores.delete(mount.sema_id)
        self._mounts = []

    def format(self, file: OpenFile, path: str, blockdev: str, arg: FormatArgs) -> int:
        """Write a game record laying the image out over the partition and its subs."""
        fd = self.manager.open(blockdev, OpenFlag.WRONLY, 0o644)
        try:
            self.manager.lseek(fd, HDL_GAME_DATA_OFFSET, SeekWhence.SET)
            info = HdlGameInfo(
                magic=HDL_INFO_MAGIC,
                version=1,
                gamename=_clip(arg.game_title, GAME_TITLE_LEN),
                hdl_compat_flags=0,
                ops2l_compat_flags=arg.compat_flags,
                dma_type=arg.tr_type,
                dma_mode=arg.tr_mode,
                startup=arg.startup_path,
                layer1_start=arg.layer1_start,
                disc_type=arg.disc_type,
                part_specs=[PartSpec() for _ in range(MAX_PART_SPECS)],
            )
            info.num_partitions = self.manager.ioctl2(fd, HddIoctl.NSUB) + 1
            if info.num_partitions > MAX_PART_SPECS:
                raise IopError(errno.EINVAL, "too many sub-partitions")

            sector_number = 0
            for part in range(info.num_partitions):
                start_sector = self.manager.ioctl2(fd, HddIoctl.GETPARTSTART, part)
                reserved = _reserved_sectors(part)
                spec = info.part_specs[part]
                spec.part_offset = sector_number
                spec.data_start = start_sector + reserved
                in_part = (self.manager.ioctl2(fd, HddIoctl.GETSIZE, part) - reserved) // _HDD_PER_CD
                in_part = max(0, min(in_part, arg.num_sectors - sector_number))
                if in_part >= _MAX_SLICE_SECTORS:
                    raise IopError(errno.EINVAL, f"partition slice {part} is too big")
                spec.part_size = in_part * CD_SECTOR_SIZE
                sector_number += in_part

            if sector_number < arg.num_sectors:
                raise IopError(errno.ENOMEM, "partition is too small to contain the game")

            data = info.pack()
            if self.manager.write(fd, data) != len(data):
                raise IopError(errno.EIO, "short write of game record")
        finally:
            self.manager.close(fd)
        return 0

    def open(self, file: OpenFile, path: str, flags: int, mode: int) -> int:
        file.privdata = self._mounted(file.unit)
        return file.unit

    def close(self, file: OpenFile) -> int:
        """Release the handle's binding to its mount; the mount stays in place."""
        file.privdata = None
        return 0

    def read(self, file: OpenFile, size: int) -> bytes:
        if not file.mode & OpenFlag.RDONLY:
            raise IopError(errno.EINVAL, "file not open for reading")
        return bytes(self._transfer(file, size, IoDirection.READ))

    def write(self, file: OpenFile, data: bytes) -> int:
        if not file.mode & OpenFlag.WRONLY:
            raise IopError(errno.EROFS, "file not open for writing")
        self._transfer(file, len(data), IoDirection.WRITE, data)
        return len(data)

    def lseek(self, file: OpenFile, offset: int, whence: int) -> int:
        """Move to ``offset`` in disc sectors and return the new position."""
        mount = self._mounted(file.unit)
        with self.semaphores.hold(mount.sema_id):
            for part, spec in enumerate(mount.part_specs[: mount.num_partitions]):
                if spec.part_offset <= offset < spec.part_offset + spec.sectors:
                    if whence == SeekWhence.SET:
                        mount.offset = offset * _HDD_PER_CD
                    elif whence == SeekWhence.CUR:
                        mount.offset += offset * _HDD_PER_CD
                    elif whence == SeekWhence.END:
                        mount.offset = mount.size - offset * _HDD_PER_CD
                    mount.relative_sector = mount.offset - spec.part_offset * _HDD_PER_CD
                    mount.current_part = part
                    return mount.offset // _HDD_PER_CD
        raise IopError(errno.EINVAL, f"offset {offset} is outside the game image")

    def dopen(self, file: OpenFile, path: str) -> int:
        """Open the (always empty) directory listing of the filesystem."""
        entries: list[IoxDirent] = []
        file.privdata = iter(entries)
        return 0

    def dclose(self, file: OpenFile) -> int:
        """Discard the directory listing state."""
        file.privdata = None
        return 0

    def dread(self, file: OpenFile) -> IoxDirent | None:
        """Return the next directory entry; the filesystem lists none."""
        listing = file.privdata
        if not isinstance(listing, Iterator):
            return None
        return next(listing, None)

    def getstat(self, file: OpenFile, path: str) -> IoxStat:
        info = self._load(file.unit)
        return IoxStat(
            attr=info.attr & _U32,
            size=info.game_size & _U32,
            private_0=((info.disc_type << 16) | (info.num_partitions & _U32)) & _U32,
            private_1=info.layer1_start,
            private_5=_IMAGE_START,
        )

    def chstat(self, file: OpenFile, path: str, stat: IoxStat, mask: int) -> int:
        """Change the transfer flags and disc fields; other fields are fixed."""
        mount = self._mounted(file.unit)
        with self.semaphores.hold(mount.sema_id):
            info = self._read_info(mount)
            if mask & _FIXED_FIELDS:
                raise IopError(errno.EINVAL, "mode, size and times cannot be changed")
            if mask & ChstatMask.ATTR:
                info.attr = stat.attr
            if mask & ChstatMask.PRVT:
                info.disc_type = (stat.private_0 >> 16) & 0xFFFF
                info.layer1_start = stat.private_1
            self._write_info(mount, info)
        return 0

    def mount(self, file: OpenFile, mountpoint: str, blockdev: str, flags: int, arg: Any = None) -> int:
        mount = self._slot(file.unit)
        stat = self.manager.getstat(blockdev)
        if stat.mode != HDL_FS_MAGIC:
            raise IopError(errno.EMFILE, f"{blockdev} is not an HDLoader partition")
        with self.semaphores.hold(mount.sema_id):
            access = OpenFlag.RDWR if flags == MountFlag.RDWR else OpenFlag.RDONLY
            fd = self.manager.open(blockdev, access, 0o644)
            mount.mount_fd = fd
            try:
                info = self._read_info(mount)
                num_partitions = self.manager.ioctl2(fd, HddIoctl.NSUB) + 1
                size = sum(self.manager.ioctl2(fd, HddIoctl.GETSIZE, part) for part in range(num_partitions))
            except IopError:
                with suppress(IopError):
                    self.manager.close(fd)
                mount.mount_fd = -1
                raise
            mount.num_partitions = num_partitions
            mount.size = size
            mount.offset = mount.current_part = mount.relative_sector = 0
            mount.part_specs = list(info.part_specs)
        return file.unit

    def umount(self, file: OpenFile, mountpoint: str) -> int:
        self._unmount(file.unit)
        return 0

    def devctl(self, file: OpenFile, path: str, cmd: int, arg: Any, buflen: int) -> Any:
        """Get the startup path or title, or set the title."""
        mount = self._mounted(file.unit)
        if cmd == DevctlCode.GET_STARTUP_PATH:
            if buflen < 1:
                raise IopError(errno.EINVAL, "buffer too small")
            return _clip(self._load(file.unit).startup, buflen - 1)
        if cmd == DevctlCode.GET_TITLE:
            if buflen < 1:
                raise IopError(errno.EINVAL, "buffer too small")
            return _clip(self._load(file.unit).gamename, min(buflen, GAME_TITLE_LEN) - 1)
        if cmd == DevctlCode.SET_TITLE:
            raw = arg.encode("utf-8", "surrogateescape") if isinstance(arg, str) else bytes(arg)
            if len(raw) >= GAME_TITLE_LEN:
                raise IopError(errno.EINVAL, "title too long")
            with self.semaphores.hold(mount.sema_id):
                info = self._read_info(mount)
                info.gamename = raw.split(b"\0", 1)[0].decode("utf-8", "surrogateescape")
                self._write_info(mount, info)
            return 0
        raise IopError(errno.EINVAL, f"unknown devctl command {cmd:#x}")


def start(manager: IoManager) -> HdlFilesystem:
    """Register the filesystem with ``manager``, replacing an earlier instance."""
    with suppress(IopError):
        manager.del_drv(DEVICE_NAME)
    filesystem = HdlFilesystem(manager)
    manager.add_drv(
        Device(
            name=DEVICE_NAME,
            type=DeviceType.FS | DeviceType.FSEXT,
            ops=filesystem,
            version=1,
            desc=DEVICE_DESCRIPTION,
        )
    )
    return filesystem
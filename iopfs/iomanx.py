"""Device registry and file-descriptor layer that dispatches calls to drivers."""

from __future__ import annotations

import dataclasses
import errno
import threading
from dataclasses import dataclass
from typing import Any

from .constants import (
    S_IFDIR,
    S_IFLNK,
    S_IFREG,
    S_IRGRP,
    S_IROTH,
    S_IRUSR,
    S_IWGRP,
    S_IWOTH,
    S_IWUSR,
    S_IXGRP,
    S_IXOTH,
    S_IXUSR,
    DeviceType,
    OpenFlag,
    SeekWhence,
    s_isdir,
    s_islnk,
    s_isreg,
)
from .errors import IopError
from .structs import IoxDirent, IoxStat

MAX_DEVICES = 32
MAX_FILES = 32

# Status reported when a device lacks the extended operations.
EUNSUP = 48

_TYPE_MASK = 0xF0000000

# Legacy (non-extended) file mode bits.
SO_IFMT = 0x0038
SO_IFLNK = 0x0008
SO_IFREG = 0x0010
SO_IFDIR = 0x0020
SO_IROTH = 0x0004
SO_IWOTH = 0x0002
SO_IXOTH = 0x0001

_READ_BITS = S_IRUSR | S_IRGRP | S_IROTH
_WRITE_BITS = S_IWUSR | S_IWGRP | S_IWOTH
_EXEC_BITS = S_IXUSR | S_IXGRP | S_IXOTH


def mode_to_modex(mode: int) -> int:
    """Convert a legacy file mode to the extended format."""
    modex = 0
    kind = mode & SO_IFMT
    if kind == SO_IFLNK:
        modex |= S_IFLNK
    if kind == SO_IFREG:
        modex |= S_IFREG
    if kind == SO_IFDIR:
        modex |= S_IFDIR
    if mode & SO_IROTH:
        modex |= _READ_BITS
    if mode & SO_IWOTH:
        modex |= _WRITE_BITS
    if mode & SO_IXOTH:
        modex |= _EXEC_BITS
    return modex


def modex_to_mode(modex: int) -> int:
    """Convert an extended file mode to the legacy format."""
    mode = 0
    if s_islnk(modex):
        mode |= SO_IFLNK
    if s_isreg(modex):
        mode |= SO_IFREG
    if s_isdir(modex):
        mode |= SO_IFDIR
    if modex & _READ_BITS:
        mode |= SO_IROTH
    if modex & _WRITE_BITS:
        mode |= SO_IWOTH
    if modex & _EXEC_BITS:
        mode |= SO_IXOTH
    return mode


@dataclass
class OpenFile:
    """State of one file handle, shared between the manager and a driver."""

    mode: int = 0
    unit: int = 0
    device: "Device | None" = None
    privdata: Any = None


@dataclass
class Device:
    """A registered device driver."""

    name: str
    type: int
    ops: "DeviceOps"
    version: int = 1
    desc: str = ""

    @property
    def extended(self) -> bool:
        """True if the driver supports the extended operations."""
        return (self.type & _TYPE_MASK) == DeviceType.FSEXT


def _unsupported(file: "OpenFile | None", operation: str) -> IopError:
    """Build the EIO error for an operation the driver does not provide."""
    device = file.device if file is not None else None
    if device is not None:
        where = f"device {device.name!r} unit {file.unit}"
    else:
        where = "device"
    return IopError(errno.EIO, f"{operation} not provided by {where}")


class DeviceOps:
    """Driver operations; any operation a driver does not provide fails with EIO."""

    def init(self, device: Device) -> None:
        return None

    def deinit(self, device: Device) -> None:
        return None

    def format(self, file: OpenFile, path: str, blockdev: str, arg: Any) -> Any:
        raise _unsupported(file, "format")

    def open(self, file: OpenFile, path: str, flags: int, mode: int) -> Any:
        raise _unsupported(file, "open")

    def close(self, file: OpenFile) -> Any:
        raise _unsupported(file, "close")

    def read(self, file: OpenFile, size: int) -> bytes:
        raise _unsupported(file, "read")

    def write(self, file: OpenFile, data: bytes) -> int:
        raise _unsupported(file, "write")

    def lseek(self, file: OpenFile, offset: int, whence: int) -> int:
        raise _unsupported(file, "lseek")

    def ioctl(self, file: OpenFile, cmd: int, arg: Any) -> Any:
        raise _unsupported(file, f"ioctl {cmd:#x}")

    def remove(self, file: OpenFile, path: str) -> Any:
        raise _unsupported(file, f"remove of {path!r}")

    def mkdir(self, file: OpenFile, path: str, mode: int) -> Any:
        raise _unsupported(file, f"mkdir of {path!r}")

    def rmdir(self, file: OpenFile, path: str) -> Any:
        raise _unsupported(file, f"rmdir of {path!r}")

    def dopen(self, file: OpenFile, path: str) -> Any:
        raise _unsupported(file, f"dopen of {path!r}")

    def dclose(self, file: OpenFile) -> Any:
        raise _unsupported(file, "dclose")

    def dread(self, file: OpenFile) -> IoxDirent | None:
        raise _unsupported(file, "dread")

    def getstat(self, file: OpenFile, path: str) -> IoxStat:
        raise _unsupported(file, "getstat")

    def chstat(self, file: OpenFile, path: str, stat: IoxStat, mask: int) -> Any:
        raise _unsupported(file, "chstat")

    def rename(self, file: OpenFile, old: str, new: str) -> Any:
        raise _unsupported(file, "rename")

    def chdir(self, file: OpenFile, path: str) -> Any:
        raise _unsupported(file, "chdir")

    def sync(self, file: OpenFile, path: str, flag: int) -> Any:
        raise _unsupported(file, "sync")

    def mount(self, file: OpenFile, mountpoint: str, blockdev: str, flags: int, arg: Any) -> Any:
        raise _unsupported(file, "mount")

    def umount(self, file: OpenFile, mountpoint: str) -> Any:
        raise _unsupported(file, "umount")

    def lseek64(self, file: OpenFile, offset: int, whence: int) -> int:
        raise _unsupported(file, "lseek64")

    def devctl(self, file: OpenFile, path: str, cmd: int, arg: Any, buflen: int) -> Any:
        raise _unsupported(file, f"devctl {cmd:#x}")

    def symlink(self, file: OpenFile, old: str, new: str) -> Any:
        raise _unsupported(file, "symlink")

    def readlink(self, file: OpenFile, path: str, buflen: int) -> Any:
        raise _unsupported(file, "readlink")

    def ioctl2(self, file: OpenFile, cmd: int, arg: Any, buflen: int) -> Any:
        raise _unsupported(file, f"ioctl2 {cmd:#x}")


def _require_extended(device: Device) -> None:
    if not device.extended:
        raise IopError(EUNSUP, "operation not supported by device")


def _check_whence(whence: int) -> None:
    if not SeekWhence.SET <= whence <= SeekWhence.END:
        raise IopError(errno.EINVAL, f"invalid seek origin {whence}")


class IoManager:
    """Routes path- and descriptor-based calls to registered drivers."""

    def __init__(self) -> None:
        self._devices: list[Device | None] = [None] * MAX_DEVICES
        self._files: list[OpenFile | None] = [None] * MAX_FILES
        self._lock = threading.Lock()

    # Registry -------------------------------------------------------------

    def devices(self) -> list[Device]:
        """Return the registered devices in slot order."""
        return [dev for dev in self._devices if dev is not None]

    def add_drv(self, device: Device) -> None:
        """Register a driver and run its init operation."""
        with self._lock:
            try:
                slot = self._devices.index(None)
            except ValueError:
                raise IopError(errno.ENOSPC, "device table full") from None
            self._devices[slot] = device
        try:
            device.ops.init(device)
        except BaseException:
            self._devices[slot] = None
            raise

    def del_drv(self, name: str) -> None:
        """Run the named driver's deinit operation and unregister it."""
        for slot, dev in enumerate(self._devices):
            if dev is not None and dev.name == name:
                dev.ops.deinit(dev)
                self._devices[slot] = None
                return
        raise IopError(errno.ENODEV, f"no device named {name!r}")

    # Helpers --------------------------------------------------------------

    def _find_device(self, name: str) -> tuple[Device, int, str]:
        path = name.lstrip(" ")
        prefix, sep, filename = path.partition(":")
        if not sep:
            raise IopError(errno.ENODEV, f"no device in {name!r}")
        base = prefix.rstrip("0123456789")
        digits = prefix[len(base):]
        unit = int(digits) if digits else 0
        for dev in self._devices:
            if dev is not None and dev.name == base:
                return dev, unit, filename
        raise IopError(errno.ENODEV, f"unknown device {base!r}")

    def _scratch(self, name: str) -> tuple[OpenFile, str]:
        device, unit, filename = self._find_device(name)
        return OpenFile(unit=unit, device=device), filename

    def _get_file(self, fd: int) -> OpenFile:
        if 0 <= fd < MAX_FILES:
            f = self._files[fd]
            if f is not None and f.device is not None:
                return f
        raise IopError(errno.EBADF, f"bad file descriptor {fd}")

    def _new_file(self) -> tuple[int, OpenFile]:
        with self._lock:
            for fd, slot in enumerate(self._files):
                if slot is None:
                    f = OpenFile()
                    self._files[fd] = f
                    return fd, f
        raise IopError(errno.EMFILE, "too many open files")

    def _open_common(self, name: str, mode_bits: int, call) -> int:
        fd, f = self._new_file()
        try:
            device, unit, filename = self._find_device(name)
            f.device, f.unit, f.mode = device, unit, mode_bits
            call(device.ops, f, filename)
        except BaseException:
            self._files[fd] = None
            raise
        return fd

    # Descriptor calls ------------------------------------------------------

    def open(self, name: str, flags: int, mode: int = 0) -> int:
        """Open a file and return its descriptor."""
        return self._open_common(
            name, flags, lambda ops, f, filename: ops.open(f, filename, flags, mode)
        )

    def close(self, fd: int) -> None:
        """Close a file or directory descriptor."""
        f = self._get_file(fd)
        try:
            if f.mode & OpenFlag.DIROPEN:
                f.device.ops.dclose(f)
            else:
                f.device.ops.close(f)
        finally:
            f.mode = 0
            f.device = None
            self._files[fd] = None

    def read(self, fd: int, size: int) -> bytes:
        f = self._get_file(fd)
        if not f.mode & OpenFlag.RDONLY:
            raise IopError(errno.EBADF, "file not open for reading")
        return f.device.ops.read(f, size)

    def write(self, fd: int, data: bytes) -> int:
        f = self._get_file(fd)
        if not f.mode & OpenFlag.WRONLY:
            raise IopError(errno.EBADF, "file not open for writing")
        return f.device.ops.write(f, data)

    def lseek(self, fd: int, offset: int, whence: int) -> int:
        f = self._get_file(fd)
        _check_whence(whence)
        return f.device.ops.lseek(f, offset, whence)

    def ioctl(self, fd: int, cmd: int, arg: Any = None) -> Any:
        f = self._get_file(fd)
        return f.device.ops.ioctl(f, cmd, arg)

    def dopen(self, name: str) -> int:
        """Open a directory and return its descriptor."""
        return self._open_common(
            name, OpenFlag.DIROPEN, lambda ops, f, filename: ops.dopen(f, filename)
        )

    def dread(self, fd: int) -> IoxDirent | None:
        """Return the next directory entry, or None at the end."""
        f = self._get_file(fd)
        if not f.mode & OpenFlag.DIROPEN:
            raise IopError(errno.EBADF, "not a directory descriptor")
        return f.device.ops.dread(f)

    def lseek64(self, fd: int, offset: int, whence: int) -> int:
        f = self._get_file(fd)
        _check_whence(whence)
        _require_extended(f.device)
        return f.device.ops.lseek64(f, offset, whence)

    def ioctl2(self, fd: int, cmd: int, arg: Any = None, buflen: int = 0) -> Any:
        f = self._get_file(fd)
        return f.device.ops.ioctl2(f, cmd, arg, buflen)

    # Path calls ------------------------------------------------------------

    def remove(self, name: str) -> Any:
        file, filename = self._scratch(name)
        return file.device.ops.remove(file, filename)

    def mkdir(self, name: str, mode: int) -> Any:
        file, filename = self._scratch(name)
        return file.device.ops.mkdir(file, filename, mode)

    def rmdir(self, name: str) -> Any:
        file, filename = self._scratch(name)
        return file.device.ops.rmdir(file, filename)

    def chdir(self, name: str) -> Any:
        file, filename = self._scratch(name)
        _require_extended(file.device)
        return file.device.ops.chdir(file, filename)

    def sync(self, dev: str, flag: int) -> Any:
        file, filename = self._scratch(dev)
        _require_extended(file.device)
        return file.device.ops.sync(file, filename, flag)

    def getstat(self, name: str) -> IoxStat:
        """Return the status of a file, with the mode in extended format."""
        file, filename = self._scratch(name)
        stat = file.device.ops.getstat(file, filename)
        if not file.device.extended:
            stat = dataclasses.replace(stat, mode=mode_to_modex(stat.mode))
        return stat

    def chstat(self, name: str, stat: IoxStat, mask: int) -> Any:
        """Change the fields of a file's status selected by ``mask``."""
        file, filename = self._scratch(name)
        if not file.device.extended:
            stat = dataclasses.replace(stat, mode=modex_to_mode(stat.mode))
        return file.device.ops.chstat(file, filename, stat, mask)

    def format(self, dev: str, blockdev: str = "", arg: Any = None) -> Any:
        file, filename = self._scratch(dev)
        return file.device.ops.format(file, filename, blockdev, arg)

    def _link_common(self, old: str, new: str, is_rename: bool) -> Any:
        file, filename = self._scratch(old)
        new_filename = new
        if ":" in new:
            try:
                new_device, new_unit, new_filename = self._find_device(new)
            except IopError:
                raise IopError(errno.ENXIO, "cannot link across devices") from None
            if new_unit != file.unit or new_device is not file.device:
                raise IopError(errno.ENXIO, "cannot link across devices")
        _require_extended(file.device)
        if is_rename:
            return file.device.ops.rename(file, filename, new_filename)
        return file.device.ops.symlink(file, filename, new_filename)

    def rename(self, old: str, new: str) -> Any:
        return self._link_common(old, new, True)

    def symlink(self, old: str, new: str) -> Any:
        return self._link_common(old, new, False)

    def mount(self, fsname: str, devname: str, flag: int = 0, arg: Any = None) -> Any:
        file, filename = self._scratch(fsname)
        _require_extended(file.device)
        return file.device.ops.mount(file, filename, devname, flag, arg)

    def umount(self, fsname: str) -> Any:
        file, filename = self._scratch(fsname)
        _require_extended(file.device)
        return file.device.ops.umount(file, filename)

    def devctl(self, name: str, cmd: int, arg: Any = None, buflen: int = 0) -> Any:
        file, filename = self._scratch(name)
        _require_extended(file.device)
        return file.device.ops.devctl(file, filename, cmd, arg, buflen)

    def readlink(self, name: str, buflen: int) -> Any:
        file, filename = self._scratch(name)
        _require_extended(file.device)
        return file.device.ops.readlink(file, filename, buflen)
# iopfs

`iopfs` is a small I/O manager with pluggable device drivers. It also holds a
driver for the HDLoader game filesystem, which reads and writes a game image
laid out across a partition and its linked sub-partitions.

## What is in it

- `iopfs.iomanx` has the `IoManager`. It keeps a table of up to 32 registered
  devices and up to 32 open files. It resolves names of the form
  `device[unit]:path` (for example `hdl0:`) to a registered `Device` and a unit
  number, then calls that device's `DeviceOps`. Every `DeviceOps` operation a
  driver does not override raises `IopError` with `EIO`. Calls that need the
  extended operations (`chdir`, `sync`, `mount`, `umount`, `devctl`,
  `readlink`, `rename`, `symlink`, `lseek64`) fail with error code 48 unless
  the device's type includes `DeviceType.FSEXT`. The module also converts file
  modes between the legacy and extended formats with `mode_to_modex` and
  `modex_to_mode`; `getstat` and `chstat` apply that conversion for devices
  without `FSEXT`.
- `iopfs.hdlfs` has `HdlFilesystem`, the HDLoader filesystem driver, with two
  units (`hdl0:` and `hdl1:`). `start(manager)` registers it under the name
  `hdl` (replacing an earlier registration) and returns the driver.
- `iopfs.hdlinfo` describes the 1024-byte on-disk game record
  (`HdlGameInfo` and `PartSpec`), the arguments for formatting a partition
  (`FormatArgs`) and the device-control codes (`DevctlCode`).
- `iopfs.atad` has `AtaDisk`, which gives 512-byte sector access to a disk
  image file as device 0.
- `iopfs.semaphores` has `SemaphoreTable`, a fixed-capacity table of
  semaphores addressed by integer id, each created with a count of one.
  `hold(semid)` is a context manager that waits and signals around a block.
- `iopfs.structs` packs and unpacks the binary records `IoxStat`, `IoxDirent`
  and `Ps2DateTime`, and defines `HddTransfer`, the argument of a sector
  transfer request.
- `iopfs.constants` holds the open flags, seek origins, chstat masks, mount
  flags, device types and ioctl/devctl command numbers, plus the `s_islnk`,
  `s_isreg` and `s_isdir` mode tests.
- `iopfs.errors` has `IopError`. Its `errno` attribute is the positive errno
  value; its `code()` method returns the negative status code.

## Installing

```
pip install .
```

To run the tests as well:

```
pip install .[test]
pytest
```

## Examples

Sector access to a disk image:

```python
from iopfs.atad import AtaDisk

with AtaDisk("hdd.img") as disk:
    info = disk.devinfo(0)
    print(info.total_sectors)
    first = disk.read_sectors(0, 0, 1)  # 512 bytes
```

A driver is a `DeviceOps` subclass registered with an `IoManager`:

```python
from iopfs.constants import DeviceType, OpenFlag
from iopfs.iomanx import Device, DeviceOps, IoManager


class MemoryOps(DeviceOps):
    def __init__(self):
        self.files = {}

    def open(self, file, path, flags, mode):
        file.privdata = self.files.setdefault(path, bytearray())
        return 0

    def close(self, file):
        return 0

    def write(self, file, data):
        file.privdata.extend(data)
        return len(data)

    def read(self, file, size):
        return bytes(file.privdata[:size])


manager = IoManager()
manager.add_drv(Device("mem", DeviceType.FS | DeviceType.FSEXT, MemoryOps()))
fd = manager.open("mem:notes", OpenFlag.RDWR)
manager.write(fd, b"hello")
print(manager.read(fd, 5))  # b'hello'
manager.close(fd)
```

Failures raise `IopError`:

```python
from iopfs.errors import IopError

try:
    manager.open("nosuch:file", OpenFlag.RDONLY)
except IopError as exc:
    print(exc.errno, exc.code())  # 19 -19 (ENODEV)
```

The HDLoader driver is registered with `start`:

```python
from iopfs.hdlfs import start
from iopfs.hdlinfo import DevctlCode

start(manager)
print([device.name for device in manager.devices()])  # ['mem', 'hdl']
```

Once a block device that answers the partition commands (see below) is
registered with the same manager, an HDLoader partition can be mounted and
used. Seek offsets are in 2048-byte disc sectors; reads and writes must be a
whole number of 512-byte sectors.

```python
manager.mount("hdl0:", "hdd0:PP.GAME", 0, None)
stat = manager.getstat("hdl0:")          # stat.size is the image size in disc sectors
title = manager.devctl("hdl0:", DevctlCode.GET_TITLE, None, 160)
fd = manager.open("hdl0:", OpenFlag.RDONLY, 0)
manager.lseek(fd, 16, 0)
sector = manager.read(fd, 2048)
manager.close(fd)
manager.umount("hdl0:")
```

## What it does not do

The package has no partition driver of its own. `HdlFilesystem` works only on
top of a block device, registered by the caller, that:

- reports mode `0x1337` from `getstat` for an HDLoader partition;
- supports `open`, `lseek`, `read`, `write` and `close` of the partition's
  game record at offset `0x100000`;
- answers `ioctl2` with `HddIoctl.NSUB`, `HddIoctl.GETSIZE`,
  `HddIoctl.GETPARTSTART` and `HddIoctl.FLUSH`, and carries out
  `HddIoctl.TRANSFER` requests given as `HddTransfer` records (filling the
  `buffer` in place for reads).

`AtaDisk` is not wired into the manager as a device, and the package has no
command-line tool.
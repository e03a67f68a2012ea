import errno
from dataclasses import dataclass

import pytest

from iopfs.constants import (
    APA_TYPE_PFS,
    ChstatMask,
    DeviceType,
    HddIoctl,
    IoDirection,
    MountFlag,
    OpenFlag,
    SeekWhence,
)
from iopfs.errors import IopError
from iopfs.hdlfs import DEVICE_NAME, start
from iopfs.hdlinfo import (
    CD_SECTOR_SIZE,
    HDL_FS_MAGIC,
    HDL_GAME_DATA_OFFSET,
    HDL_INFO_MAGIC,
    DevctlCode,
    FormatArgs,
    HdlGameInfo,
    PartSpec,
)
from iopfs.iomanx import Device, DeviceOps, IoManager, OpenFile
from iopfs.structs import IoxStat

SECTOR = 512
MAIN_RESERVED = 0x2000
SUB_RESERVED = 4
SLICE_CD_SECTORS = 2
SLICE_HDD_SECTORS = SLICE_CD_SECTORS * CD_SECTOR_SIZE // SECTOR
MAIN_SECTORS = MAIN_RESERVED + SLICE_HDD_SECTORS
SUB_SECTORS = SUB_RESERVED + SLICE_HDD_SECTORS
OTHER_SECTORS = 16

GAME = "PP.GAME"
OTHER = "+OPL"

ARGS = FormatArgs(
    num_sectors=2 * SLICE_CD_SECTORS,
    game_title="Sample Game",
    startup_path="SLUS_000.00",
    compat_flags=0x05,
    disc_type=0x14,
    tr_type=0x40,
    tr_mode=0x02,
    layer1_start=0,
)


@dataclass
class _Handle:
    name: str
    pos: int = 0


class FakeHdd(DeviceOps):
    def __init__(self):
        self.partitions = {
            GAME: [(0, MAIN_SECTORS), (MAIN_SECTORS, SUB_SECTORS)],
            OTHER: [(MAIN_SECTORS + SUB_SECTORS, OTHER_SECTORS)],
        }
        self.kinds = {GAME: HDL_FS_MAGIC, OTHER: APA_TYPE_PFS}
        self.disk = bytearray((MAIN_SECTORS + SUB_SECTORS + OTHER_SECTORS) * SECTOR)
        self.flushes = 0

    def region(self, sub, sector, count):
        start = (self.partitions[GAME][sub][0] + sector) * SECTOR
        return start, start + count * SECTOR

    def getstat(self, file, path):
        if path not in self.kinds:
            raise IopError(errno.ENOENT)
        return IoxStat(mode=self.kinds[path])

    def open(self, file, path, flags, mode):
        if path not in self.partitions:
            raise IopError(errno.ENOENT)
        file.privdata = _Handle(path)
        return 0

    def close(self, file):
        return 0

    def lseek(self, file, offset, whence):
        file.privdata.pos = offset
        return offset

    def read(self, file, size):
        handle = file.privdata
        base = self.partitions[handle.name][0][0] * SECTOR + handle.pos
        data = bytes(self.disk[base : base + size])
        handle.pos += len(data)
        return data

    def write(self, file, data):
        handle = file.privdata
        base = self.partitions[handle.name][0][0] * SECTOR + handle.pos
        self.disk[base : base + len(data)] = data
        handle.pos += len(data)
        return len(data)

    def ioctl2(self, file, cmd, arg, buflen):
        parts = self.partitions[file.privdata.name]
        if cmd == HddIoctl.NSUB:
            return len(parts) - 1
        if cmd == HddIoctl.GETSIZE:
            return parts[arg][1]
        if cmd == HddIoctl.GETPARTSTART:
            return parts[arg][0]
        if cmd == HddIoctl.FLUSH:
            self.flushes += 1
            return 0
        if cmd == HddIoctl.TRANSFER:
            start, length = parts[arg.sub]
            if arg.sector + arg.size > length:
                raise IopError(errno.EINVAL)
            base = (start + arg.sector) * SECTOR
            end = base + arg.size * SECTOR
            if arg.mode == IoDirection.READ:
                arg.buffer[:] = self.disk[base:end]
            else:
                self.disk[base:end] = arg.buffer
            return 0
        raise IopError(errno.EINVAL)


@pytest.fixture
def env():
    manager = IoManager()
    hdd = FakeHdd()
    manager.add_drv(Device(name="hdd", type=DeviceType.FS | DeviceType.FSEXT, ops=hdd))
    fs = start(manager)
    return manager, hdd, fs


@pytest.fixture
def mounted(env):
    manager, hdd, fs = env
    manager.format("hdl0:", f"hdd0:{GAME}", ARGS)
    assert manager.mount("hdl0:", f"hdd0:{GAME}", MountFlag.RDWR) == 0
    return manager, hdd, fs


def _errno_of(excinfo):
    return excinfo.value.errno


def test_start_registers_extended_device(env):
    manager, _, fs = env
    device = next(dev for dev in manager.devices() if dev.name == DEVICE_NAME)
    assert device.ops is fs
    assert device.extended


def test_format_writes_game_record(env):
    manager, hdd, _ = env
    assert manager.format("hdl0:", f"hdd0:{GAME}", ARGS) == 0
    raw = hdd.disk[HDL_GAME_DATA_OFFSET : HDL_GAME_DATA_OFFSET + HdlGameInfo.SIZE]
    info = HdlGameInfo.unpack(bytes(raw))
    assert info.magic == HDL_INFO_MAGIC
    assert info.version == 1
    assert info.num_partitions == 2
    assert info.gamename == ARGS.game_title
    assert info.startup == ARGS.startup_path
    assert info.ops2l_compat_flags == ARGS.compat_flags
    assert info.hdl_compat_flags == 0
    assert info.dma_type == ARGS.tr_type
    assert info.dma_mode == ARGS.tr_mode
    assert info.disc_type == ARGS.disc_type
    slice_bytes = SLICE_CD_SECTORS * CD_SECTOR_SIZE
    assert info.part_specs[0] == PartSpec(0, MAIN_RESERVED, slice_bytes)
    assert info.part_specs[1] == PartSpec(SLICE_CD_SECTORS, MAIN_SECTORS + SUB_RESERVED, slice_bytes)


def test_format_too_small_partition(env):
    manager, hdd, _ = env
    big = FormatArgs(num_sectors=ARGS.num_sectors + 1, game_title="Big")
    with pytest.raises(IopError) as excinfo:
        manager.format("hdl0:", f"hdd0:{GAME}", big)
    assert _errno_of(excinfo) == errno.ENOMEM
    header = hdd.disk[HDL_GAME_DATA_OFFSET : HDL_GAME_DATA_OFFSET + HdlGameInfo.SIZE]
    assert header == bytes(HdlGameInfo.SIZE)


def test_open_before_mount_fails(env):
    manager, _, _ = env
    with pytest.raises(IopError) as excinfo:
        manager.open("hdl0:", OpenFlag.RDONLY)
    assert _errno_of(excinfo) == errno.ENODEV


def test_mount_rejects_other_partition_types(env):
    manager, _, _ = env
    with pytest.raises(IopError) as excinfo:
        manager.mount("hdl0:", f"hdd0:{OTHER}", MountFlag.RDWR)
    assert _errno_of(excinfo) == errno.EMFILE


def test_mount_rejects_unit_out_of_range(env):
    manager, _, _ = env
    manager.format("hdl0:", f"hdd0:{GAME}", ARGS)
    with pytest.raises(IopError) as excinfo:
        manager.mount("hdl2:", f"hdd0:{GAME}", MountFlag.RDWR)
    assert _errno_of(excinfo) == errno.ENODEV


def test_read_spans_partitions(mounted):
    manager, hdd, _ = mounted
    start0, end0 = hdd.region(0, MAIN_RESERVED, SLICE_HDD_SECTORS)
    start1, end1 = hdd.region(1, SUB_RESERVED, SLICE_HDD_SECTORS)
    hdd.disk[start0:end0] = b"A" * (end0 - start0)
    hdd.disk[start1:end1] = b"B" * (end1 - start1)
    fd = manager.open("hdl0:", OpenFlag.RDONLY)
    data = manager.read(fd, 2 * SLICE_HDD_SECTORS * SECTOR)
    assert data == bytes(hdd.disk[start0:end0]) + bytes(hdd.disk[start1:end1])
    manager.close(fd)


def test_write_then_read_round_trip(mounted):
    manager, hdd, _ = mounted
    payload = bytes(i % 251 for i in range(2 * SLICE_HDD_SECTORS * SECTOR))
    fd = manager.open("hdl0:", OpenFlag.RDWR)
    assert manager.write(fd, payload) == len(payload)
    half = len(payload) // 2
    start0, end0 = hdd.region(0, MAIN_RESERVED, SLICE_HDD_SECTORS)
    start1, end1 = hdd.region(1, SUB_RESERVED, SLICE_HDD_SECTORS)
    assert bytes(hdd.disk[start0:end0]) == payload[:half]
    assert bytes(hdd.disk[start1:end1]) == payload[half:]
    assert manager.lseek(fd, 0, SeekWhence.SET) == 0
    assert manager.read(fd, len(payload)) == payload


def test_lseek_into_second_partition(mounted):
    manager, _, _ = mounted
    payload = bytes(i % 241 for i in range(2 * SLICE_HDD_SECTORS * SECTOR))
    fd = manager.open("hdl0:", OpenFlag.RDWR)
    manager.write(fd, payload)
    last = 2 * SLICE_CD_SECTORS - 1
    assert manager.lseek(fd, last, SeekWhence.SET) == last
    assert manager.read(fd, CD_SECTOR_SIZE) == payload[last * CD_SECTOR_SIZE :]


def test_lseek_outside_image(mounted):
    manager, _, _ = mounted
    fd = manager.open("hdl0:", OpenFlag.RDONLY)
    with pytest.raises(IopError) as excinfo:
        manager.lseek(fd, 2 * SLICE_CD_SECTORS, SeekWhence.SET)
    assert _errno_of(excinfo) == errno.EINVAL


def test_read_past_end_of_image(mounted):
    manager, _, _ = mounted
    fd = manager.open("hdl0:", OpenFlag.RDONLY)
    manager.read(fd, 2 * SLICE_HDD_SECTORS * SECTOR)
    with pytest.raises(IopError) as excinfo:
        manager.read(fd, SECTOR)
    assert _errno_of(excinfo) == errno.EIO


def test_read_size_must_be_whole_sectors(mounted):
    manager, _, _ = mounted
    fd = manager.open("hdl0:", OpenFlag.RDONLY)
    with pytest.raises(IopError) as excinfo:
        manager.read(fd, 100)
    assert _errno_of(excinfo) == errno.EINVAL


def test_driver_checks_access_mode(mounted):
    _, _, fs = mounted
    with pytest.raises(IopError) as excinfo:
        fs.write(OpenFile(mode=OpenFlag.RDONLY, unit=0), bytes(SECTOR))
    assert _errno_of(excinfo) == errno.EROFS
    with pytest.raises(IopError) as excinfo:
        fs.read(OpenFile(mode=OpenFlag.WRONLY, unit=0), SECTOR)
    assert _errno_of(excinfo) == errno.EINVAL


def test_getstat_reports_game(mounted):
    manager, _, _ = mounted
    stat = manager.getstat("hdl0:")
    assert stat.size == ARGS.num_sectors
    assert stat.private_5 == 0x2000
    assert stat.private_0 >> 16 == ARGS.disc_type
    assert stat.private_0 & 0xFFFF == 2
    assert stat.private_1 == ARGS.layer1_start
    assert stat.attr >> 24 == ARGS.tr_mode
    assert (stat.attr >> 16) & 0xFF == ARGS.tr_type
    assert (stat.attr >> 8) & 0xFF == ARGS.compat_flags


def test_chstat_updates_attr_and_private(mounted):
    manager, _, _ = mounted
    change = IoxStat(attr=0x01020304, private_0=0x00120000, private_1=777)
    assert manager.chstat("hdl0:", change, ChstatMask.ATTR | ChstatMask.PRVT) == 0
    stat = manager.getstat("hdl0:")
    assert stat.attr == 0x01020304
    assert stat.private_0 >> 16 == 0x12
    assert stat.private_1 == 777


def test_chstat_rejects_fixed_fields(mounted):
    manager, _, _ = mounted
    with pytest.raises(IopError) as excinfo:
        manager.chstat("hdl0:", IoxStat(size=1), ChstatMask.SIZE)
    assert _errno_of(excinfo) == errno.EINVAL


def test_chstat_on_read_only_mount_fails(env):
    manager, _, _ = env
    manager.format("hdl0:", f"hdd0:{GAME}", ARGS)
    manager.mount("hdl0:", f"hdd0:{GAME}", MountFlag.RDONLY)
    with pytest.raises(IopError) as excinfo:
        manager.chstat("hdl0:", IoxStat(attr=1), ChstatMask.ATTR)
    assert _errno_of(excinfo) == errno.EIO


def test_devctl_titles_and_startup(mounted):
    manager, _, _ = mounted
    assert manager.devctl("hdl0:", DevctlCode.GET_TITLE, None, 160) == ARGS.game_title
    assert manager.devctl("hdl0:", DevctlCode.GET_TITLE, None, 7) == ARGS.game_title[:6]
    assert manager.devctl("hdl0:", DevctlCode.GET_STARTUP_PATH, None, 60) == ARGS.startup_path
    assert manager.devctl("hdl0:", DevctlCode.SET_TITLE, "New Title", 0) == 0
    assert manager.devctl("hdl0:", DevctlCode.GET_TITLE, None, 160) == "New Title"


def test_devctl_errors(mounted):
    manager, _, _ = mounted
    with pytest.raises(IopError) as excinfo:
        manager.devctl("hdl0:", DevctlCode.SET_TITLE, "x" * 160, 0)
    assert _errno_of(excinfo) == errno.EINVAL
    with pytest.raises(IopError) as excinfo:
        manager.devctl("hdl0:", 0x1234, None, 0)
    assert _errno_of(excinfo) == errno.EINVAL
    with pytest.raises(IopError) as excinfo:
        manager.devctl("hdl1:", DevctlCode.GET_TITLE, None, 160)
    assert _errno_of(excinfo) == errno.ENODEV


def test_directory_calls_are_empty(mounted):
    manager, _, _ = mounted
    fd = manager.dopen("hdl0:")
    assert manager.dread(fd) is None


def test_umount_flushes_and_releases(mounted):
    manager, hdd, _ = mounted
    assert manager.umount("hdl0:") == 0
    assert hdd.flushes == 1
    with pytest.raises(IopError) as excinfo:
        manager.open("hdl0:", OpenFlag.RDONLY)
    assert _errno_of(excinfo) == errno.ENODEV
    with pytest.raises(IopError) as excinfo:
        manager.umount("hdl0:")
    assert _errno_of(excinfo) == errno.ENODEV


def test_removing_driver_unmounts(mounted):
    manager, hdd, _ = mounted
    manager.del_drv(DEVICE_NAME)
    assert hdd.flushes == 1
    assert [dev.name for dev in manager.devices()] == ["hdd"]


def test_start_replaces_previous_instance(mounted):
    manager, hdd, old = mounted
    new = start(manager)
    assert hdd.flushes == 1
    names = [dev.name for dev in manager.devices()]
    assert names.count(DEVICE_NAME) == 1
    assert new is not old
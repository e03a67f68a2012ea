import pytest

from iopfs import constants as c


def test_rdwr_is_read_and_write():
    rdwr = c.OpenFlag(0x0003)
    assert rdwr == c.OpenFlag.RDWR
    assert rdwr == c.OpenFlag.RDONLY | c.OpenFlag.WRONLY
    assert rdwr & c.OpenFlag.RDONLY
    assert rdwr & c.OpenFlag.WRONLY


def test_pinned_command_codes():
    assert c.HddIoctl(0x6803) == c.HddIoctl.NSUB
    assert c.HddIoctl(0x6832) == c.HddIoctl.TRANSFER
    assert c.HddIoctl(0x6836) == c.HddIoctl.GETPARTSTART
    assert c.HddDevctl(0x4801) == c.HddDevctl.MAXSECTOR
    assert c.PfsIoctl(0x7032) == c.PfsIoctl.INVINODE
    assert c.PfsDevctl(0xFF) == c.PfsDevctl.SHOWBITMAP


def test_seek_whence_values():
    assert [c.SeekWhence(i) for i in range(3)] == list(c.SeekWhence)
    assert [int(w) for w in c.SeekWhence] == [0, 1, 2]


def test_device_type_fsext_in_high_nibble():
    fsext = c.DeviceType(0x10000000)
    assert fsext == c.DeviceType.FSEXT
    assert fsext & 0xF0000000 == c.DeviceType.FSEXT
    combined = c.DeviceType.FS | c.DeviceType.FSEXT
    assert combined & 0xF0000000 == c.DeviceType.FSEXT


def test_chstat_mask_bits_are_distinct():
    combined = 0
    for member in c.ChstatMask:
        assert c.ChstatMask(int(member)) == member
        assert combined & member == 0
        combined |= member
    assert combined == 0x7F


@pytest.mark.parametrize(
    "mode, lnk, reg, dir_",
    [
        (c.S_IFLNK | c.S_IRWXU, True, False, False),
        (c.S_IFREG | c.S_IRUSR, False, True, False),
        (c.S_IFDIR | c.S_IRWXO, False, False, True),
        (c.S_IRWXU, False, False, False),
    ],
)
def test_mode_predicates(mode, lnk, reg, dir_):
    assert c.s_islnk(mode) is lnk
    assert c.s_isreg(mode) is reg
    assert c.s_isdir(mode) is dir_


def test_io_direction_and_mount_flag():
    assert c.IoDirection(1) is c.IoDirection.WRITE
    assert c.MountFlag(0) is c.MountFlag.RDWR
    assert c.APA_TYPE_HDL == 0x1337
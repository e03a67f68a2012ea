"""Flags, command codes and file-mode helpers shared by the I/O layers."""

from enum import IntEnum, IntFlag


class OpenFlag(IntFlag):
    """Flags accepted by ``open``."""

    RDONLY = 0x0001
    WRONLY = 0x0002
    RDWR = 0x0003
    DIROPEN = 0x0008
    NBLOCK = 0x0010
    APPEND = 0x0100
    CREAT = 0x0200
    TRUNC = 0x0400
    EXCL = 0x0800
    NOWAIT = 0x8000


class SeekWhence(IntEnum):
    """Origin for seek operations."""

    SET = 0
    CUR = 1
    END = 2


class ChstatMask(IntFlag):
    """Fields selected for change by ``chstat``."""

    MODE = 0x0001
    ATTR = 0x0002
    SIZE = 0x0004
    CT = 0x0008
    AT = 0x0010
    MT = 0x0020
    PRVT = 0x0040


class MountFlag(IntEnum):
    """Access mode for a filesystem mount."""

    RDWR = 0x00
    RDONLY = 0x01


class DeviceType(IntFlag):
    """Device driver type bits."""

    CHAR = 0x01
    CONS = 0x02
    BLOCK = 0x04
    RAW = 0x08
    FS = 0x10
    FSEXT = 0x10000000


class HddIoctl(IntEnum):
    """IOCTL2 commands understood by the partition driver."""

    ADDSUB = 0x6801
    DELSUB = 0x6802
    NSUB = 0x6803
    FLUSH = 0x6804
    TRANSFER = 0x6832
    GETSIZE = 0x6833
    SETPARTERROR = 0x6834
    GETPARTERROR = 0x6835
    GETPARTSTART = 0x6836


class HddDevctl(IntEnum):
    """DEVCTL commands understood by the partition driver."""

    MAXSECTOR = 0x4801
    TOTALSECTOR = 0x4802
    IDLE = 0x4803
    FLUSH = 0x4804
    SWAPTMP = 0x4805
    DEV9OFF = 0x4806
    STATUS = 0x4807
    FORMATVER = 0x4808
    SMARTSTAT = 0x4809
    FREESECTOR = 0x480A
    IDLEIMM = 0x480B
    GETTIME = 0x6832
    SETOSDMBR = 0x6833
    GETSECTORERROR = 0x6834
    GETERRORPARTNAME = 0x6835
    READSECTOR = 0x6836
    WRITESECTOR = 0x6837
    SCEIDENTIFY = 0x6838


class PfsIoctl(IntEnum):
    """IOCTL2 commands of the PFS filesystem."""

    ALLOC = 0x7001
    FREE = 0x7002
    ATTRADD = 0x7003
    ATTRDEL = 0x7004
    ATTRLOOKUP = 0x7005
    ATTRREAD = 0x7006
    INVINODE = 0x7032


class PfsDevctl(IntEnum):
    """DEVCTL commands of the PFS filesystem."""

    ZONESZ = 0x5001
    ZONEFREE = 0x5002
    CLOSEALL = 0x5003
    GETFSCKSTAT = 0x5004
    CLRFSCKSTAT = 0x5005
    SETUID = 0x5032
    SETGID = 0x5033
    SHOWBITMAP = 0xFF


class IoDirection(IntEnum):
    """Direction of a sector transfer."""

    READ = 0
    WRITE = 1


# File mode bits (extended format).
S_IFMT = 0xF000
S_IFLNK = 0x4000
S_IFREG = 0x2000
S_IFDIR = 0x1000

S_ISUID = 0x0800
S_ISGID = 0x0400
S_ISVTX = 0x0200

S_IRWXU = 0x01C0
S_IRUSR = 0x0100
S_IWUSR = 0x0080
S_IXUSR = 0x0040

S_IRWXG = 0x0038
S_IRGRP = 0x0020
S_IWGRP = 0x0010
S_IXGRP = 0x0008

S_IRWXO = 0x0007
S_IROTH = 0x0004
S_IWOTH = 0x0002
S_IXOTH = 0x0001

# Partition types as reported in the mode field.
APA_TYPE_FREE = 0x0000
APA_TYPE_MBR = 0x0001
APA_TYPE_EXT2SWAP = 0x0082
APA_TYPE_EXT2 = 0x0083
APA_TYPE_REISER = 0x0088
APA_TYPE_PFS = 0x0100
APA_TYPE_CFS = 0x0101
APA_TYPE_HDL = 0x1337

APA_IDMAX = 32
APA_MAXSUB = 64
APA_PASSMAX = 8
APA_FLAG_SUB = 0x0001


def s_islnk(mode: int) -> bool:
    """Return True if the mode describes a symbolic link."""
    return (mode & S_IFMT) == S_IFLNK


def s_isreg(mode: int) -> bool:
    """Return True if the mode describes a regular file."""
    return (mode & S_IFMT) == S_IFREG


def s_isdir(mode: int) -> bool:
    """Return True if the mode describes a directory."""
    return (mode & S_IFMT) == S_IFDIR
"""Binary records exchanged between the I/O manager and drivers."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import ClassVar

from .constants import IoDirection


def _pack(fmt: struct.Struct, *values) -> bytes:
    try:
        return fmt.pack(*values)
    except struct.error as exc:
        raise ValueError(str(exc)) from exc


def _unpack(fmt: struct.Struct, data: bytes) -> tuple:
    if len(data) < fmt.size:
        raise ValueError(f"need {fmt.size} bytes, got {len(data)}")
    return fmt.unpack_from(data)


@dataclass
class Ps2DateTime:
    """Date/time descriptor used in on-disk partition headers."""

    unused: int = 0
    sec: int = 0
    min: int = 0
    hour: int = 0
    day: int = 0
    month: int = 0
    year: int = 0

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("<6BH")
    SIZE: ClassVar[int] = _FORMAT.size

    def pack(self) -> bytes:
        return _pack(
            self._FORMAT,
            self.unused, self.sec, self.min, self.hour, self.day, self.month, self.year,
        )

    @classmethod
    def unpack(cls, data: bytes) -> "Ps2DateTime":
        return cls(*_unpack(cls._FORMAT, data))


_EMPTY_TIME = bytes(8)


@dataclass
class IoxStat:
    """File status as returned by getstat and dread."""

    mode: int = 0
    attr: int = 0
    size: int = 0
    ctime: bytes = _EMPTY_TIME
    atime: bytes = _EMPTY_TIME
    mtime: bytes = _EMPTY_TIME
    hisize: int = 0
    private_0: int = 0
    private_1: int = 0
    private_2: int = 0
    private_3: int = 0
    private_4: int = 0
    private_5: int = 0

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("<3I8s8s8s7I")
    SIZE: ClassVar[int] = _FORMAT.size

    def __post_init__(self) -> None:
        for name in ("ctime", "atime", "mtime"):
            value = bytes(getattr(self, name))
            if len(value) != 8:
                raise ValueError(f"{name} must be 8 bytes")
            setattr(self, name, value)

    def pack(self) -> bytes:
        return _pack(
            self._FORMAT,
            self.mode, self.attr, self.size,
            self.ctime, self.atime, self.mtime,
            self.hisize,
            self.private_0, self.private_1, self.private_2,
            self.private_3, self.private_4, self.private_5,
        )

    @classmethod
    def unpack(cls, data: bytes) -> "IoxStat":
        return cls(*_unpack(cls._FORMAT, data))


_NAME_LEN = 256


@dataclass
class IoxDirent:
    """Directory entry: a status record, a name and a trailing word."""

    stat: IoxStat = field(default_factory=IoxStat)
    name: str = ""
    unknown: int = 0

    _TAIL: ClassVar[struct.Struct] = struct.Struct(f"<{_NAME_LEN}sI")
    SIZE: ClassVar[int] = IoxStat.SIZE + _TAIL.size

    def pack(self) -> bytes:
        raw_name = self.name.encode("utf-8", "surrogateescape")
        if len(raw_name) > _NAME_LEN:
            raise ValueError(f"name longer than {_NAME_LEN} bytes")
        return self.stat.pack() + _pack(self._TAIL, raw_name, self.unknown)

    @classmethod
    def unpack(cls, data: bytes) -> "IoxDirent":
        if len(data) < cls.SIZE:
            raise ValueError(f"need {cls.SIZE} bytes, got {len(data)}")
        stat = IoxStat.unpack(data[: IoxStat.SIZE])
        raw_name, unknown = cls._TAIL.unpack_from(data, IoxStat.SIZE)
        name = raw_name.split(b"\0", 1)[0].decode("utf-8", "surrogateescape")
        return cls(stat=stat, name=name, unknown=unknown)


@dataclass
class HddTransfer:
    """Argument of the partition driver's sector transfer command."""

    sub: int
    sector: int
    size: int
    mode: IoDirection
    buffer: bytearray | None = None

    def __post_init__(self) -> None:
        self.mode = IoDirection(self.mode)
        for name in ("sub", "sector", "size"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")
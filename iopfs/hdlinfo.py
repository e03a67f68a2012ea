"""On-disk game record stored in HDLoader game partitions."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import ClassVar

HDL_FS_MAGIC = 0x1337
HDL_INFO_MAGIC = 0xDEADFEED
HDL_GAME_DATA_OFFSET = 0x100000

GAME_TITLE_LEN = 160
STARTUP_PATH_LEN = 60
MAX_PART_SPECS = 65

CD_SECTOR_SIZE = 2048


def _pack(fmt: struct.Struct, *values) -> bytes:
    try:
        return fmt.pack(*values)
    except struct.error as exc:
        raise ValueError(str(exc)) from exc


def _encode(text: str, limit: int, what: str) -> bytes:
    raw = text.encode("utf-8", "surrogateescape")
    if len(raw) > limit:
        raise ValueError(f"{what} longer than {limit} bytes")
    return raw


def _decode(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("utf-8", "surrogateescape")


class DevctlCode(IntEnum):
    """DEVCTL commands understood by the HDLoader filesystem."""

    GET_STARTUP_PATH = 0x1000
    GET_TITLE = 0x1001
    SET_TITLE = 0x1002


@dataclass
class PartSpec:
    """Placement of one slice of the game image."""

    part_offset: int = 0  # in 2048-byte disc sectors
    data_start: int = 0  # in 512-byte disk sectors
    part_size: int = 0  # in bytes

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("<3I")
    SIZE: ClassVar[int] = _FORMAT.size

    @property
    def sectors(self) -> int:
        """Number of whole disc sectors held by this slice."""
        return self.part_size // CD_SECTOR_SIZE

    def pack(self) -> bytes:
        return _pack(self._FORMAT, self.part_offset, self.data_start, self.part_size)

    @classmethod
    def unpack(cls, data: bytes, offset: int = 0) -> "PartSpec":
        return cls(*cls._FORMAT.unpack_from(data, offset))


@dataclass
class HdlGameInfo:
    """The 1024-byte game record kept at a fixed offset in the partition."""

    magic: int = HDL_INFO_MAGIC
    reserved: int = 0
    version: int = 1
    gamename: str = ""
    hdl_compat_flags: int = 0
    ops2l_compat_flags: int = 0
    dma_type: int = 0
    dma_mode: int = 0
    startup: str = ""
    layer1_start: int = 0
    disc_type: int = 0
    num_partitions: int = 0
    part_specs: list[PartSpec] = field(default_factory=list)

    _HEAD: ClassVar[struct.Struct] = struct.Struct(
        f"<IHH{GAME_TITLE_LEN}s4B{STARTUP_PATH_LEN}sIIi"
    )
    SIZE: ClassVar[int] = _HEAD.size + MAX_PART_SPECS * PartSpec.SIZE

    @property
    def partitions(self) -> list[PartSpec]:
        """The slices actually in use."""
        count = max(0, min(self.num_partitions, MAX_PART_SPECS))
        return self.part_specs[:count]

    @property
    def game_size(self) -> int:
        """Total size of the game image in disc sectors."""
        return sum(spec.sectors for spec in self.partitions)

    @property
    def attr(self) -> int:
        """Transfer mode and compatibility flags combined into one word."""
        return (
            (self.dma_mode << 24)
            | (self.dma_type << 16)
            | (self.ops2l_compat_flags << 8)
            | self.hdl_compat_flags
        )

    @attr.setter
    def attr(self, value: int) -> None:
        self.dma_mode = (value >> 24) & 0xFF
        self.dma_type = (value >> 16) & 0xFF
        self.ops2l_compat_flags = (value >> 8) & 0xFF
        self.hdl_compat_flags = value & 0xFF

    def pack(self) -> bytes:
        if len(self.part_specs) > MAX_PART_SPECS:
            raise ValueError(f"more than {MAX_PART_SPECS} partition specs")
        head = _pack(
            self._HEAD,
            self.magic,
            self.reserved,
            self.version,
            _encode(self.gamename, GAME_TITLE_LEN, "game title"),
            self.hdl_compat_flags,
            self.ops2l_compat_flags,
            self.dma_type,
            self.dma_mode,
            _encode(self.startup, STARTUP_PATH_LEN, "startup path"),
            self.layer1_start,
            self.disc_type,
            self.num_partitions,
        )
        specs = list(self.part_specs)
        specs.extend(PartSpec() for _ in range(MAX_PART_SPECS - len(specs)))
        return head + b"".join(spec.pack() for spec in specs)

    @classmethod
    def unpack(cls, data: bytes) -> "HdlGameInfo":
        if len(data) < cls.SIZE:
            raise ValueError(f"need {cls.SIZE} bytes, got {len(data)}")
        (
            magic, reserved, version, gamename,
            hdl_compat, ops2l_compat, dma_type, dma_mode,
            startup, layer1_start, disc_type, num_partitions,
        ) = cls._HEAD.unpack_from(data)
        specs = [
            PartSpec.unpack(data, cls._HEAD.size + index * PartSpec.SIZE)
            for index in range(MAX_PART_SPECS)
        ]
        return cls(
            magic=magic,
            reserved=reserved,
            version=version,
            gamename=_decode(gamename),
            hdl_compat_flags=hdl_compat,
            ops2l_compat_flags=ops2l_compat,
            dma_type=dma_type,
            dma_mode=dma_mode,
            startup=_decode(startup),
            layer1_start=layer1_start,
            disc_type=disc_type,
            num_partitions=num_partitions,
            part_specs=specs,
        )


@dataclass
class FormatArgs:
    """Arguments describing a game image when formatting a partition."""

    num_sectors: int
    game_title: str = ""
    startup_path: str = ""  # without the ";1" suffix
    compat_flags: int = 0
    disc_type: int = 0
    tr_type: int = 0
    tr_mode: int = 0
    layer1_start: int = 0

    def __post_init__(self) -> None:
        _encode(self.game_title, GAME_TITLE_LEN, "game title")
        _encode(self.startup_path, STARTUP_PATH_LEN, "startup path")
        for name in ("compat_flags", "disc_type", "tr_type", "tr_mode"):
            if not 0 <= getattr(self, name) <= 0xFF:
                raise ValueError(f"{name} must fit in one byte")
        for name in ("num_sectors", "layer1_start"):
            if not 0 <= getattr(self, name) <= 0xFFFFFFFF:
                raise ValueError(f"{name} must fit in 32 bits")
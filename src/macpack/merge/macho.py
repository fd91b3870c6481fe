"""Mach-O and fat (universal) header structures."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from macpack.architectures import architecture_for_cpu

FAT_MAGIC = 0xCAFEBABE
FAT_MAGIC_64 = 0xCAFEBABF
MH_MAGIC = 0xFEEDFACE
MH_MAGIC_64 = 0xFEEDFACF

FAT_HEADER = struct.Struct(">II")
FAT_ARCH = struct.Struct(">iiIII")
MACH_HEADER_PREFIX = struct.Struct("<Iii")

MAX_FAT_ARCHS = 20
UINT32_MAX = 0xFFFFFFFF


@dataclass(frozen=True, slots=True)
class FatArch:
    """One entry of the fat architecture table."""

    cputype: int
    cpusubtype: int
    offset: int
    size: int
    align: int

    @property
    def architecture(self) -> str:
        spec = architecture_for_cpu(self.cputype, self.cpusubtype)
        if spec is None:
            return f"cputype={self.cputype:#x},cpusubtype={self.cpusubtype:#x}"
        return spec.name

    def pack(self) -> bytes:
        return FAT_ARCH.pack(self.cputype, self.cpusubtype, self.offset, self.size, self.align)


@dataclass(frozen=True, slots=True)
class ThinHeader:
    """CPU identity read from a single-architecture Mach-O header."""

    cputype: int
    cpusubtype: int
    is_64bit: bool


@dataclass(frozen=True, slots=True)
class BinaryDescription:
    """What a file on disk looks like to the loader."""

    path: Path
    kind: str
    architectures: tuple[str, ...]
    fat_archs: tuple[FatArch, ...] = ()


def align_up(value: int, align_exp: int) -> int:
    """Round ``value`` up to the next multiple of ``2 ** align_exp``."""

    boundary = 1 << align_exp
    return (value + boundary - 1) & ~(boundary - 1)


def read_magic(head: bytes) -> int | None:
    if len(head) < 4:
        return None
    return struct.unpack(">I", head[:4])[0]


def is_fat_magic(head: bytes) -> bool:
    return read_magic(head) in {FAT_MAGIC, FAT_MAGIC_64}


def parse_thin_header(head: bytes) -> ThinHeader | None:
    """Parse cputype/cpusubtype from a Mach-O header, either byte order."""

    if len(head) < MACH_HEADER_PREFIX.size:
        return None
    for byte_order in ("<", ">"):
        magic, cputype, cpusubtype = struct.unpack(f"{byte_order}Iii", head[: MACH_HEADER_PREFIX.size])
        if magic in {MH_MAGIC, MH_MAGIC_64}:
            return ThinHeader(cputype=cputype, cpusubtype=cpusubtype, is_64bit=magic == MH_MAGIC_64)
    return None


def build_fat_header(archs: Sequence[FatArch]) -> bytes:
    """Serialize the fat header and architecture table."""

    payload = bytearray(FAT_HEADER.pack(FAT_MAGIC, len(archs)))
    for arch in archs:
        payload += arch.pack()
    return bytes(payload)


def fat_table_size(count: int) -> int:
    return FAT_HEADER.size + FAT_ARCH.size * count


def parse_fat_table(data: bytes) -> tuple[FatArch, ...]:
    """Parse the architecture table of a 32-bit fat header."""

    if len(data) < FAT_HEADER.size:
        raise ValueError("file too short for a fat header")
    magic, count = FAT_HEADER.unpack_from(data, 0)
    if magic == FAT_MAGIC_64:
        raise ValueError("64-bit fat headers are not supported")
    if magic != FAT_MAGIC:
        raise ValueError(f"not a fat binary (magic {magic:#010x})")
    # 0xCAFEBABE is shared with Java class files; those carry a version number here.
    if count == 0 or count > MAX_FAT_ARCHS:
        raise ValueError(f"implausible fat architecture count: {count}")
    if len(data) < fat_table_size(count):
        raise ValueError("truncated fat architecture table")
    return tuple(
        FatArch(*FAT_ARCH.unpack_from(data, FAT_HEADER.size + index * FAT_ARCH.size))
        for index in range(count)
    )


def read_fat_table(path: Path) -> tuple[FatArch, ...]:
    """Read the fat architecture table from a file on disk."""

    with path.open("rb") as handle:
        head = handle.read(FAT_HEADER.size)
        if len(head) < FAT_HEADER.size:
            raise ValueError(f"{path} is too short for a fat header")
        _, count = FAT_HEADER.unpack(head)
        rest = handle.read(FAT_ARCH.size * min(count, MAX_FAT_ARCHS))
    return parse_fat_table(head + rest)


def describe_binary(path: Path) -> BinaryDescription:
    """Classify a file as fat, thin Mach-O, or something else."""

    with path.open("rb") as handle:
        head = handle.read(FAT_HEADER.size + FAT_ARCH.size * MAX_FAT_ARCHS)

    if is_fat_magic(head):
        archs = parse_fat_table(head)
        return BinaryDescription(
            path=path,
            kind="fat",
            architectures=tuple(arch.architecture for arch in archs),
            fat_archs=archs,
        )

    thin = parse_thin_header(head)
    if thin is not None:
        spec = architecture_for_cpu(thin.cputype, thin.cpusubtype)
        name = spec.name if spec is not None else f"cputype={thin.cputype:#x}"
        return BinaryDescription(path=path, kind="thin", architectures=(name,))

    return BinaryDescription(path=path, kind="unknown", architectures=())

"""Universal binary merge stage."""

from macpack.merge.macho import (
    FAT_MAGIC,
    BinaryDescription,
    FatArch,
    build_fat_header,
    describe_binary,
    parse_fat_table,
    read_fat_table,
)
from macpack.merge.merger import MergeBackend, MergedExecutable, merge_executables

__all__ = [
    "FAT_MAGIC",
    "BinaryDescription",
    "FatArch",
    "build_fat_header",
    "describe_binary",
    "parse_fat_table",
    "read_fat_table",
    "MergeBackend",
    "MergedExecutable",
    "merge_executables",
]

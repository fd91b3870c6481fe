"""Shared utility helpers."""

from macpack.utils.paths import atomic_temp_path, ensure_directories, remove_path, write_json_atomically
from macpack.utils.time_utils import now_utc

__all__ = [
    "atomic_temp_path",
    "ensure_directories",
    "remove_path",
    "write_json_atomically",
    "now_utc",
]

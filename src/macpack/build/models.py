"""Typed models for per-architecture build outputs."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping


@dataclass(frozen=True, slots=True)
class BuildArtifact:
    """Compiler output for one architecture target."""

    architecture: str
    path: Path

    @property
    def exists(self) -> bool:
        return self.path.is_file()


@dataclass(frozen=True, slots=True)
class BuildCommand:
    """Fully rendered toolchain invocation for one target."""

    architecture: str
    argv: tuple[str, ...]
    cwd: Path
    env: Mapping[str, str]
    expected_output: Path


BuildRunner = Callable[[BuildCommand, threading.Event], None]
"""Runs one build command; raises on failure and stops early when the event is set."""

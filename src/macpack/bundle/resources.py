"""Match and copy static resources into the bundle."""

from __future__ import annotations

import glob
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterable, Sequence

from macpack.errors import AssemblyFailure, ResourceNotFound

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ResourceGroup:
    """Glob patterns whose matches land in one directory under ``Contents/``."""

    patterns: tuple[str, ...]
    destination: str = "Resources"


@dataclass(frozen=True, slots=True)
class ResourceCopy:
    """One planned copy: a source file and its path relative to ``Contents/``."""

    source: Path
    destination: PurePosixPath


def match_pattern(source_root: Path, pattern: str) -> list[Path]:
    """Return files matched by ``pattern`` under ``source_root``, sorted."""

    matches = glob.glob(pattern, root_dir=source_root, recursive=True)
    files = [source_root / match for match in matches]
    return sorted(path for path in files if path.is_file())


def resolve_resources(
    source_root: Path,
    groups: Iterable[ResourceGroup],
    *,
    logger: logging.Logger | None = None,
) -> list[ResourceCopy]:
    """Expand every pattern up front; a pattern without matches is fatal."""

    effective_logger = logger or LOGGER
    plan: list[ResourceCopy] = []
    planned: dict[PurePosixPath, Path] = {}
    for group in groups:
        for pattern in group.patterns:
            matches = match_pattern(source_root, pattern)
            if not matches:
                effective_logger.error("resources.no_match pattern=%s source_root=%s", pattern, source_root)
                raise ResourceNotFound(pattern)
            for source in matches:
                destination = PurePosixPath(group.destination) / source.name
                previous = planned.get(destination)
                if previous is not None:
                    if previous.resolve() == source.resolve():
                        continue
                    raise AssemblyFailure(
                        "resolve_resources",
                        source,
                        f"{previous} is also copied to Contents/{destination}",
                    )
                planned[destination] = source
                plan.append(ResourceCopy(source=source, destination=destination))
            effective_logger.info("resources.matched pattern=%s files=%s", pattern, len(matches))
    return plan


def copy_resources(
    plan: Sequence[ResourceCopy],
    contents_dir: Path,
    *,
    logger: logging.Logger | None = None,
) -> list[Path]:
    """Copy planned resources below ``contents_dir``, keeping file names."""

    effective_logger = logger or LOGGER
    copied: list[Path] = []
    for item in plan:
        target = contents_dir / item.destination
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(item.source, target)
        except OSError as exc:
            raise AssemblyFailure("copy_resources", item.source, exc) from exc
        copied.append(target)
    effective_logger.info("resources.copied count=%s contents=%s", len(copied), contents_dir)
    return copied

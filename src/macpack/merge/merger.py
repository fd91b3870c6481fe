"""Combine per-architecture executables into one universal binary."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Sequence

from macpack.architectures import CPU_SUBTYPE_MASK, ArchitectureSpec, get_architecture
from macpack.build.models import BuildArtifact
from macpack.errors import MergeFailure, MissingArtifact
from macpack.merge.macho import (
    FatArch,
    UINT32_MAX,
    align_up,
    build_fat_header,
    fat_table_size,
    is_fat_magic,
    parse_thin_header,
    read_fat_table,
)
from macpack.utils.paths import atomic_temp_path

LOGGER = logging.getLogger(__name__)

MergeBackend = Literal["native", "lipo"]
EXECUTABLE_MODE = 0o755
_COPY_CHUNK = 1024 * 1024


@dataclass(frozen=True, slots=True)
class MergedExecutable:
    """The universal binary produced by the merge stage."""

    path: Path
    architectures: tuple[str, ...]
    fat_archs: tuple[FatArch, ...]

    def architecture_table(self) -> bytes:
        """Return the serialized fat header; identical inputs give identical bytes."""

        return build_fat_header(self.fat_archs)


@dataclass(frozen=True, slots=True)
class _MergeInput:
    artifact: BuildArtifact
    spec: ArchitectureSpec
    cputype: int
    cpusubtype: int
    size: int


def _inspect_input(artifact: BuildArtifact) -> _MergeInput:
    spec = get_architecture(artifact.architecture)
    if not artifact.exists:
        raise MissingArtifact(spec.name, artifact.path)

    try:
        with artifact.path.open("rb") as handle:
            head = handle.read(32)
        size = artifact.path.stat().st_size
    except OSError as exc:
        raise MergeFailure(f"could not read {artifact.path}: {exc}") from exc
    if is_fat_magic(head):
        raise MergeFailure(f"{artifact.path} is already a universal binary")

    cputype, cpusubtype = spec.cputype, spec.cpusubtype
    thin = parse_thin_header(head)
    if thin is not None:
        masked_subtype = thin.cpusubtype & ~CPU_SUBTYPE_MASK & 0xFFFFFFFF
        if thin.cputype != spec.cputype or masked_subtype != spec.cpusubtype:
            raise MergeFailure(
                f"{artifact.path} was declared as {spec.name} but its Mach-O header has "
                f"cputype {thin.cputype:#x} cpusubtype {masked_subtype:#x}"
            )
        cputype, cpusubtype = thin.cputype, thin.cpusubtype

    if size == 0:
        raise MergeFailure(f"{artifact.path} is empty")
    return _MergeInput(artifact=artifact, spec=spec, cputype=cputype, cpusubtype=cpusubtype, size=size)


def _validate_inputs(artifacts: Sequence[BuildArtifact]) -> list[_MergeInput]:
    if not artifacts:
        raise MergeFailure("no build artifacts to merge")

    # Every input is checked before anything is written.
    inputs = [_inspect_input(artifact) for artifact in artifacts]
    # One slice per distinct (cputype, cpusubtype); capability bits do not count.
    seen: dict[tuple[int, int], str] = {}
    for item in inputs:
        key = (item.cputype, item.cpusubtype & ~CPU_SUBTYPE_MASK & 0xFFFFFFFF)
        if key in seen:
            raise MergeFailure(
                f"architecture {item.spec.name} supplied more than once (same slice as {seen[key]})"
            )
        seen[key] = item.spec.name
    return inputs


def _plan_fat_layout(inputs: Sequence[_MergeInput]) -> list[tuple[FatArch, _MergeInput]]:
    """Order the inputs like ``lipo`` does and assign aligned offsets."""

    ordered = sorted(inputs, key=lambda item: (item.spec.align, item.cputype, item.cpusubtype))
    offset = fat_table_size(len(ordered))
    layout: list[tuple[FatArch, _MergeInput]] = []
    for item in ordered:
        offset = align_up(offset, item.spec.align)
        if offset > UINT32_MAX or item.size > UINT32_MAX or offset + item.size > UINT32_MAX:
            raise MergeFailure("merged binary exceeds the 4 GiB limit of the fat format")
        layout.append(
            (
                FatArch(
                    cputype=item.cputype,
                    cpusubtype=item.cpusubtype,
                    offset=offset,
                    size=item.size,
                    align=item.spec.align,
                ),
                item,
            )
        )
        offset += item.size
    return layout


def _write_native(layout: Sequence[tuple[FatArch, _MergeInput]], output_path: Path) -> None:
    temp_path = atomic_temp_path(output_path)
    try:
        with temp_path.open("wb") as out:
            out.write(build_fat_header([arch for arch, _ in layout]))
            for arch, item in layout:
                out.write(b"\x00" * (arch.offset - out.tell()))
                with item.artifact.path.open("rb") as source:
                    shutil.copyfileobj(source, out, _COPY_CHUNK)
        os.chmod(temp_path, EXECUTABLE_MODE)
        os.replace(temp_path, output_path)
    finally:
        if temp_path.exists():
            temp_path.unlink()


def _write_with_lipo(inputs: Sequence[_MergeInput], output_path: Path) -> None:
    command = ["lipo", "-create", *[str(item.artifact.path) for item in inputs], "-output", str(output_path)]
    try:
        subprocess.run(command, check=True, text=True, capture_output=True)
    except FileNotFoundError as exc:
        raise MergeFailure("lipo not found; use the native merge backend on this platform") from exc
    except subprocess.CalledProcessError as exc:
        raise MergeFailure(f"lipo failed with exit code {exc.returncode}: {exc.stderr.strip()}") from exc
    os.chmod(output_path, EXECUTABLE_MODE)


def merge_executables(
    artifacts: Sequence[BuildArtifact],
    output_path: Path,
    *,
    backend: MergeBackend = "native",
    logger: logging.Logger | None = None,
) -> MergedExecutable:
    """Write one fat binary containing a slice per artifact."""

    effective_logger = logger or LOGGER
    inputs = _validate_inputs(artifacts)

    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        if backend == "native":
            layout = _plan_fat_layout(inputs)
            _write_native(layout, output_path)
            fat_archs = tuple(arch for arch, _ in layout)
        elif backend == "lipo":
            _write_with_lipo(inputs, output_path)
            fat_archs = read_fat_table(output_path)
        else:
            raise MergeFailure(f"unknown merge backend: {backend}")
        size = output_path.stat().st_size
    except OSError as exc:
        raise MergeFailure(f"could not write {output_path}: {exc}") from exc
    except ValueError as exc:
        raise MergeFailure(f"unreadable merge output {output_path}: {exc}") from exc

    merged = MergedExecutable(
        path=output_path,
        architectures=tuple(arch.architecture for arch in fat_archs),
        fat_archs=fat_archs,
    )
    effective_logger.info(
        "merge.done backend=%s output=%s architectures=%s bytes=%s",
        backend,
        output_path,
        ",".join(merged.architectures),
        size,
    )
    return merged

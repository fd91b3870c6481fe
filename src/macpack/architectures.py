"""Architecture registry and per-run architecture targets."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from macpack.errors import ConfigurationError, UnsupportedArchitecture

CPU_ARCH_ABI64 = 0x01000000
CPU_TYPE_X86 = 7
CPU_TYPE_ARM = 12
CPU_TYPE_X86_64 = CPU_TYPE_X86 | CPU_ARCH_ABI64
CPU_TYPE_ARM64 = CPU_TYPE_ARM | CPU_ARCH_ABI64

# High byte of cpusubtype carries capability flags (e.g. CPU_SUBTYPE_LIB64).
CPU_SUBTYPE_MASK = 0xFF000000


@dataclass(frozen=True, slots=True)
class ArchitectureSpec:
    """Loader-visible identity of one architecture."""

    name: str
    cputype: int
    cpusubtype: int
    align: int
    triple: str


ARCHITECTURES: dict[str, ArchitectureSpec] = {
    "i386": ArchitectureSpec("i386", CPU_TYPE_X86, 3, 12, "i686-apple-darwin"),
    "x86_64": ArchitectureSpec("x86_64", CPU_TYPE_X86_64, 3, 12, "x86_64-apple-darwin"),
    "arm64": ArchitectureSpec("arm64", CPU_TYPE_ARM64, 0, 14, "aarch64-apple-darwin"),
    "arm64e": ArchitectureSpec("arm64e", CPU_TYPE_ARM64, 2, 14, "arm64e-apple-darwin"),
}

ARCHITECTURE_ALIASES: dict[str, str] = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "x86-64": "x86_64",
    "aarch64": "arm64",
    "i686": "i386",
    "x86": "i386",
}


def normalize_architecture_name(name: str) -> str:
    """Map aliases such as ``amd64`` or ``aarch64`` onto canonical names."""

    key = name.strip().lower()
    return ARCHITECTURE_ALIASES.get(key, key)


def get_architecture(name: str) -> ArchitectureSpec:
    """Return the registry entry for ``name`` or raise UnsupportedArchitecture."""

    try:
        return ARCHITECTURES[normalize_architecture_name(name)]
    except KeyError:
        raise UnsupportedArchitecture(name) from None


def architecture_for_cpu(cputype: int, cpusubtype: int) -> ArchitectureSpec | None:
    """Reverse lookup used when reading an existing fat table."""

    masked = cpusubtype & ~CPU_SUBTYPE_MASK & 0xFFFFFFFF
    for spec in ARCHITECTURES.values():
        if spec.cputype == cputype and spec.cpusubtype == masked:
            return spec
    return None


@dataclass(frozen=True, slots=True)
class ArchitectureTarget:
    """One architecture the bundle must support, with its artifact location."""

    architecture: str
    triple: str
    artifact_path: Path


def canonical_architecture_list(names: Iterable[str]) -> list[str]:
    """Normalize, validate and de-duplicate-check an architecture list."""

    canonical: list[str] = []
    for raw in names:
        name = normalize_architecture_name(raw)
        if name not in ARCHITECTURES:
            supported = ", ".join(sorted(ARCHITECTURES))
            raise ConfigurationError(f"unknown architecture {raw!r}; supported: {supported}")
        if name in canonical:
            raise ConfigurationError(f"architecture {name!r} listed more than once")
        canonical.append(name)
    if not canonical:
        raise ConfigurationError("at least one architecture is required")
    return canonical


def resolve_targets(
    names: Iterable[str],
    *,
    artifact_template: str,
    target_dir: Path,
    binary_name: str,
    profile: str = "release",
    triples: dict[str, str] | None = None,
) -> list[ArchitectureTarget]:
    """Build the ordered target list from configured architecture names."""

    overrides = triples or {}
    targets: list[ArchitectureTarget] = []
    for name in canonical_architecture_list(names):
        triple = overrides.get(name, ARCHITECTURES[name].triple)
        rendered = artifact_template.format(
            arch=name,
            triple=triple,
            target_dir=target_dir,
            binary=binary_name,
            profile=profile,
        )
        artifact_path = Path(rendered)
        if not artifact_path.is_absolute():
            artifact_path = target_dir / artifact_path
        targets.append(ArchitectureTarget(architecture=name, triple=triple, artifact_path=artifact_path))
    return targets

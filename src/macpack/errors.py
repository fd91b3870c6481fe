"""Exception taxonomy for the packaging pipeline.

Every stage raises one of these and lets it propagate; the CLI maps the
``exit_code`` of the failure to the process exit status.
"""

from __future__ import annotations

from pathlib import Path

EXIT_CONFIG = 2
EXIT_BUILD = 3
EXIT_MERGE = 4
EXIT_ASSEMBLY = 5


class PackagingError(Exception):
    """Base class for pipeline failures."""

    stage = "package"
    exit_code = 1


class ConfigurationError(PackagingError, ValueError):
    """Raised when settings or CLI overrides fail validation."""

    stage = "config"
    exit_code = EXIT_CONFIG


class BuildFailure(PackagingError):
    """Raised when the toolchain does not produce an artifact for one architecture."""

    stage = "build"
    exit_code = EXIT_BUILD

    def __init__(self, architecture: str, cause: BaseException | str) -> None:
        self.architecture = architecture
        self.cause = cause
        super().__init__(f"build failed for {architecture}: {cause}")


class MergeError(PackagingError):
    """Base class for merge-stage input problems."""

    stage = "merge"
    exit_code = EXIT_MERGE


class MissingArtifact(MergeError):
    """Raised when a declared architecture has no artifact on disk."""

    def __init__(self, architecture: str, path: Path | None = None) -> None:
        self.architecture = architecture
        self.path = path
        where = f" at {path}" if path is not None else ""
        super().__init__(f"missing build artifact for {architecture}{where}")


class UnsupportedArchitecture(MergeError):
    """Raised for an architecture the fat binary format does not know."""

    def __init__(self, architecture: str) -> None:
        self.architecture = architecture
        super().__init__(f"unsupported architecture: {architecture!r}")


class MergeFailure(MergeError):
    """Raised when the inputs cannot be combined into one fat binary."""


class AssemblyError(PackagingError):
    """Base class for bundle assembly failures."""

    stage = "assembly"
    exit_code = EXIT_ASSEMBLY


class ResourceNotFound(AssemblyError):
    """Raised when a resource pattern matches no files."""

    def __init__(self, pattern: str) -> None:
        self.pattern = pattern
        super().__init__(f"resource pattern matched no files: {pattern}")


class AssemblyFailure(AssemblyError):
    """Raised when a filesystem step of bundle assembly fails."""

    def __init__(self, step: str, path: Path, cause: BaseException | str) -> None:
        self.step = step
        self.path = path
        self.cause = cause
        super().__init__(f"assembly step {step!r} failed for {path}: {cause}")

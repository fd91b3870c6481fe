"""Per-architecture build stage."""

from macpack.build.invoker import (
    BuildCancelled,
    build_artifacts,
    collect_artifacts,
    render_build_command,
    run_build_command,
)
from macpack.build.models import BuildArtifact, BuildCommand, BuildRunner

__all__ = [
    "BuildArtifact",
    "BuildCommand",
    "BuildRunner",
    "BuildCancelled",
    "build_artifacts",
    "collect_artifacts",
    "render_build_command",
    "run_build_command",
]

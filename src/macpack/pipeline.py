"""End-to-end packaging: build per architecture, merge, assemble the bundle."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from uuid import uuid4

from macpack.architectures import ArchitectureTarget, resolve_targets
from macpack.build.invoker import build_artifacts, collect_artifacts
from macpack.build.models import BuildArtifact, BuildRunner
from macpack.bundle.assembler import Bundle, assemble_bundle
from macpack.bundle.descriptor import BundleDescriptor
from macpack.bundle.resources import ResourceGroup
from macpack.config import AppSettings
from macpack.errors import PackagingError
from macpack.merge.merger import MergedExecutable, merge_executables
from macpack.utils.paths import write_json_atomically
from macpack.utils.time_utils import now_utc

LOGGER = logging.getLogger(__name__)

UNIVERSAL_DIR_NAME = "universal"
RUNS_DIR_NAME = "runs"


@dataclass(frozen=True, slots=True)
class PackageRunOptions:
    """Runtime options for one packaging run."""

    output: Path | None = None
    skip_build: bool = False
    parallel: bool | None = None


@dataclass(frozen=True, slots=True)
class PackageRunResult:
    """Return object for a successful packaging run."""

    run_id: str
    bundle: Bundle
    merged: MergedExecutable
    artifacts: tuple[BuildArtifact, ...]
    summary: dict[str, Any]
    summary_path: Path


def resolve_bundle_path(settings: AppSettings, output: Path | None = None) -> Path:
    """Return the bundle directory for this run."""

    if output is None:
        return settings.paths.output_root / settings.bundle.bundle_dir_name
    return output if output.is_absolute() else output.resolve()


def targets_from_settings(settings: AppSettings) -> list[ArchitectureTarget]:
    """Resolve configured architectures to targets with artifact locations."""

    return resolve_targets(
        settings.build.architectures,
        artifact_template=settings.build.artifact_template,
        target_dir=settings.paths.target_dir,
        binary_name=settings.build.binary_name,
        profile=settings.build.profile,
        triples=settings.build.triples,
    )


def resource_groups_from_settings(settings: AppSettings) -> list[ResourceGroup]:
    return [
        ResourceGroup(patterns=tuple(group.patterns), destination=group.destination)
        for group in settings.resources
    ]


def merged_output_path(settings: AppSettings) -> Path:
    return settings.paths.build_root / UNIVERSAL_DIR_NAME / settings.bundle.executable_name


def run_package_pipeline(
    settings: AppSettings,
    *,
    options: PackageRunOptions | None = None,
    runner: BuildRunner | None = None,
    logger: logging.Logger | None = None,
) -> PackageRunResult:
    """Run build -> merge -> assemble and write a run summary.

    Each stage must finish before the next starts; the first failure is
    logged and re-raised unchanged.
    """

    effective_logger = logger or LOGGER
    run_options = options or PackageRunOptions()

    run_id = f"package-{uuid4().hex[:12]}"
    started_ts = now_utc()
    started_mono = time.monotonic()

    bundle_path = resolve_bundle_path(settings, run_options.output)
    if bundle_path.suffix != ".app":
        effective_logger.warning("package.output_without_app_suffix path=%s", bundle_path)

    effective_logger.info(
        "package.start run_id=%s bundle=%s identifier=%s version=%s architectures=%s",
        run_id,
        bundle_path,
        settings.bundle.identifier,
        settings.bundle.version,
        ",".join(settings.build.architectures),
    )

    try:
        targets = targets_from_settings(settings)
        descriptor = BundleDescriptor.from_config(settings.bundle)

        if run_options.skip_build:
            artifacts = collect_artifacts(targets)
            effective_logger.info("package.build_skipped artifacts=%s", len(artifacts))
        else:
            artifacts = build_artifacts(
                targets,
                settings.build,
                source_root=settings.paths.source_root,
                target_dir=settings.paths.target_dir,
                runner=runner,
                parallel=run_options.parallel,
                logger=effective_logger,
            )

        merged = merge_executables(
            artifacts,
            merged_output_path(settings),
            backend=settings.build.merge_backend,
            logger=effective_logger,
        )
        bundle = assemble_bundle(
            merged,
            descriptor,
            resource_groups_from_settings(settings),
            bundle_path,
            source_root=settings.paths.source_root,
            descriptor_format=settings.bundle.descriptor_format,
            logger=effective_logger,
        )
    except PackagingError as exc:
        effective_logger.error("package.failed run_id=%s stage=%s error=%s", run_id, exc.stage, exc)
        raise

    summary: dict[str, Any] = {
        "run_id": run_id,
        "started_ts": started_ts.isoformat(),
        "finished_ts": now_utc().isoformat(),
        "duration_sec": round(time.monotonic() - started_mono, 3),
        "bundle_path": str(bundle.root),
        "identifier": descriptor.identifier,
        "version": descriptor.version,
        "executable_name": descriptor.executable_name,
        "build_skipped": run_options.skip_build,
        "artifacts": {artifact.architecture: str(artifact.path) for artifact in artifacts},
        "merged_path": str(merged.path),
        "merge_backend": settings.build.merge_backend,
        "fat_archs": [
            {
                "architecture": arch.architecture,
                "cputype": arch.cputype,
                "cpusubtype": arch.cpusubtype,
                "offset": arch.offset,
                "size": arch.size,
                "align": arch.align,
            }
            for arch in merged.fat_archs
        ],
        "bundle_files": list(bundle.files),
    }
    summary_path = write_json_atomically(
        summary,
        settings.paths.build_root / RUNS_DIR_NAME / f"{run_id}.json",
    )
    effective_logger.info("package.done run_id=%s bundle=%s summary=%s", run_id, bundle.root, summary_path)

    return PackageRunResult(
        run_id=run_id,
        bundle=bundle,
        merged=merged,
        artifacts=tuple(artifacts),
        summary=summary,
        summary_path=summary_path,
    )

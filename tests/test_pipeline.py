from __future__ import annotations

import json
import plistlib
import threading
from pathlib import Path
from typing import Callable

import pytest

from macpack.build.models import BuildCommand
from macpack.config import AppSettings
from macpack.errors import MissingArtifact, ResourceNotFound
from macpack.merge.macho import describe_binary
from macpack.pipeline import PackageRunOptions, resolve_bundle_path, run_package_pipeline


def test_end_to_end_bundle(
    settings: AppSettings,
    project_dir: Path,
    fake_runner: Callable[[BuildCommand, threading.Event], None],
) -> None:
    result = run_package_pipeline(settings, runner=fake_runner)

    bundle_root = project_dir / "dist" / "Clicker.app"
    assert result.bundle.root == bundle_root.resolve()
    macos_files = sorted(p.name for p in (bundle_root / "Contents" / "MacOS").iterdir() if p.is_file())
    assert macos_files == ["clicker"]

    description = describe_binary(bundle_root / "Contents" / "MacOS" / "clicker")
    assert description.kind == "fat"
    assert sorted(description.architectures) == ["arm64", "x86_64"]

    info = plistlib.loads((bundle_root / "Contents" / "Info.plist").read_bytes())
    assert info["CFBundleExecutable"] == "clicker"
    assert info["CFBundleIconFile"] == "icon.icns"
    assert info["CFBundleIdentifier"] == "org.example.clicker"
    assert (bundle_root / "Contents" / "Resources" / "icon.icns").is_file()
    assert (bundle_root / "Contents" / "MacOS" / "assets" / "sprite1.png").is_file()

    summary = json.loads(result.summary_path.read_text(encoding="utf-8"))
    assert summary["run_id"] == result.run_id
    assert [entry["architecture"] for entry in summary["fat_archs"]] == ["x86_64", "arm64"]


def test_identical_runs_produce_identical_tables(
    settings: AppSettings,
    built_artifacts: dict[str, Path],
) -> None:
    options = PackageRunOptions(skip_build=True)

    first = run_package_pipeline(settings, options=options)
    first_bytes = first.bundle.executable_path.read_bytes()
    second = run_package_pipeline(settings, options=options)

    assert first.merged.architecture_table() == second.merged.architecture_table()
    assert second.bundle.executable_path.read_bytes() == first_bytes
    assert first.run_id != second.run_id


@pytest.mark.parametrize("missing", ["x86_64", "arm64"])
def test_skip_build_requires_every_artifact(
    settings: AppSettings,
    built_artifacts: dict[str, Path],
    project_dir: Path,
    missing: str,
) -> None:
    built_artifacts[missing].unlink()

    with pytest.raises(MissingArtifact) as excinfo:
        run_package_pipeline(settings, options=PackageRunOptions(skip_build=True))

    assert excinfo.value.architecture == missing
    assert not (project_dir / "dist").exists()


def test_missing_resource_aborts_before_bundling(
    settings: AppSettings,
    built_artifacts: dict[str, Path],
    project_dir: Path,
) -> None:
    (project_dir / "assets" / "sprite1.png").unlink()

    with pytest.raises(ResourceNotFound):
        run_package_pipeline(settings, options=PackageRunOptions(skip_build=True))

    assert not (project_dir / "dist").exists()


def test_explicit_output_path(settings: AppSettings, built_artifacts: dict[str, Path], tmp_path: Path) -> None:
    output = tmp_path / "elsewhere" / "Clicker.app"

    result = run_package_pipeline(settings, options=PackageRunOptions(output=output, skip_build=True))

    assert resolve_bundle_path(settings, output) == output
    assert result.bundle.root == output
    assert (output / "Contents" / "Info.plist").is_file()

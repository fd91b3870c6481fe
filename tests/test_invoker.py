from __future__ import annotations

import subprocess
import threading
import time
from pathlib import Path
from typing import Callable

import pytest

from macpack.architectures import ArchitectureTarget, resolve_targets
from macpack.build.invoker import (
    BuildCancelled,
    build_artifacts,
    collect_artifacts,
    render_build_command,
    run_build_command,
)
from macpack.build.models import BuildCommand
from macpack.config import BuildConfig
from macpack.errors import BuildFailure


@pytest.fixture
def build_config() -> BuildConfig:
    return BuildConfig(
        architectures=["x86_64", "arm64"],
        binary_name="clicker-bin",
        env={"OPENSSL_STATIC": "1"},
        target_env={"aarch64": {"RUSTFLAGS": "-C target-cpu=apple-m1"}},
        deployment_target="11.0",
    )


@pytest.fixture
def targets(tmp_path: Path, build_config: BuildConfig) -> list[ArchitectureTarget]:
    return resolve_targets(
        build_config.architectures,
        artifact_template=build_config.artifact_template,
        target_dir=tmp_path / "target",
        binary_name=build_config.binary_name,
    )


def test_render_build_command(tmp_path: Path, build_config: BuildConfig, targets: list[ArchitectureTarget]) -> None:
    command = render_build_command(targets[1], build_config, source_root=tmp_path, target_dir=tmp_path / "target")

    assert command.argv == (
        "cargo",
        "build",
        "--release",
        "--target",
        "aarch64-apple-darwin",
        "--target-dir",
        str(tmp_path / "target"),
    )
    assert command.cwd == tmp_path
    assert command.env["OPENSSL_STATIC"] == "1"
    assert command.env["RUSTFLAGS"] == "-C target-cpu=apple-m1"
    assert command.env["MACOSX_DEPLOYMENT_TARGET"] == "11.0"
    assert command.expected_output == tmp_path / "target" / "aarch64-apple-darwin" / "release" / "clicker-bin"


@pytest.mark.parametrize("parallel", [True, False])
def test_builds_every_target_in_order(
    tmp_path: Path,
    build_config: BuildConfig,
    targets: list[ArchitectureTarget],
    fake_runner: Callable[[BuildCommand, threading.Event], None],
    parallel: bool,
) -> None:
    artifacts = build_artifacts(
        targets,
        build_config,
        source_root=tmp_path,
        target_dir=tmp_path / "target",
        runner=fake_runner,
        parallel=parallel,
    )

    assert [artifact.architecture for artifact in artifacts] == ["x86_64", "arm64"]
    assert all(artifact.exists for artifact in artifacts)


def test_runner_error_becomes_build_failure(
    tmp_path: Path, build_config: BuildConfig, targets: list[ArchitectureTarget]
) -> None:
    def failing(command: BuildCommand, cancel_event: threading.Event) -> None:
        raise subprocess.CalledProcessError(101, list(command.argv))

    with pytest.raises(BuildFailure) as excinfo:
        build_artifacts(
            targets,
            build_config,
            source_root=tmp_path,
            target_dir=tmp_path / "target",
            runner=failing,
            parallel=False,
        )

    assert excinfo.value.architecture == "x86_64"
    assert isinstance(excinfo.value.cause, subprocess.CalledProcessError)


def test_missing_output_is_a_build_failure(
    tmp_path: Path, build_config: BuildConfig, targets: list[ArchitectureTarget]
) -> None:
    def silent(command: BuildCommand, cancel_event: threading.Event) -> None:
        return None

    with pytest.raises(BuildFailure, match="expected output not produced"):
        build_artifacts(
            targets,
            build_config,
            source_root=tmp_path,
            target_dir=tmp_path / "target",
            runner=silent,
            parallel=False,
        )


def test_failure_cancels_the_other_build(
    tmp_path: Path, build_config: BuildConfig, targets: list[ArchitectureTarget]
) -> None:
    x86_started = threading.Event()
    observed: dict[str, bool] = {}

    def runner(command: BuildCommand, cancel_event: threading.Event) -> None:
        if command.architecture == "arm64":
            x86_started.wait(timeout=5)
            raise subprocess.CalledProcessError(1, list(command.argv))
        x86_started.set()
        observed["cancelled"] = cancel_event.wait(timeout=5)
        raise BuildCancelled(command.architecture)

    started = time.monotonic()
    with pytest.raises(BuildFailure) as excinfo:
        build_artifacts(
            targets,
            build_config,
            source_root=tmp_path,
            target_dir=tmp_path / "target",
            runner=runner,
            parallel=True,
        )

    assert excinfo.value.architecture == "arm64"
    assert observed == {"cancelled": True}
    assert time.monotonic() - started < 5


def test_missing_toolchain_is_a_build_failure(
    tmp_path: Path, build_config: BuildConfig, targets: list[ArchitectureTarget]
) -> None:
    config = build_config.model_copy(update={"command": ["macpack-no-such-toolchain", "{triple}"]})

    with pytest.raises(BuildFailure) as excinfo:
        build_artifacts(targets, config, source_root=tmp_path, target_dir=tmp_path / "target", parallel=False)

    assert isinstance(excinfo.value.cause, FileNotFoundError)


def test_run_build_command_reports_exit_status(tmp_path: Path) -> None:
    command = BuildCommand("x86_64", ("sh", "-c", "exit 3"), tmp_path, {"PATH": "/usr/bin:/bin"}, tmp_path / "out")

    with pytest.raises(subprocess.CalledProcessError) as excinfo:
        run_build_command(command, threading.Event())

    assert excinfo.value.returncode == 3


def test_run_build_command_terminates_on_cancel(tmp_path: Path) -> None:
    command = BuildCommand("arm64", ("sleep", "30"), tmp_path, {"PATH": "/usr/bin:/bin"}, tmp_path / "out")
    cancel_event = threading.Event()
    cancel_event.set()

    started = time.monotonic()
    with pytest.raises(BuildCancelled):
        run_build_command(command, cancel_event)

    assert time.monotonic() - started < 10


def test_collect_artifacts_does_not_build(targets: list[ArchitectureTarget]) -> None:
    artifacts = collect_artifacts(targets)

    assert [artifact.path for artifact in artifacts] == [target.artifact_path for target in targets]
    assert not any(artifact.exists for artifact in artifacts)

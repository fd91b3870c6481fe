"""Invoke the application toolchain once per architecture target."""

from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import TYPE_CHECKING, Sequence

from macpack.architectures import ArchitectureTarget
from macpack.build.models import BuildArtifact, BuildCommand, BuildRunner
from macpack.errors import BuildFailure

if TYPE_CHECKING:
    from macpack.config import BuildConfig

LOGGER = logging.getLogger(__name__)

_POLL_SECONDS = 0.2
_TERMINATE_GRACE_SECONDS = 10.0


class BuildCancelled(Exception):
    """Raised inside a build worker once another architecture has failed."""

    def __init__(self, architecture: str) -> None:
        self.architecture = architecture
        super().__init__(f"build for {architecture} cancelled")


def render_build_command(
    target: ArchitectureTarget,
    build_config: BuildConfig,
    *,
    source_root: Path,
    target_dir: Path,
) -> BuildCommand:
    """Fill the command template and environment for one target."""

    fields = {
        "arch": target.architecture,
        "triple": target.triple,
        "target_dir": str(target_dir),
        "binary": build_config.binary_name,
        "profile": build_config.profile,
    }
    argv = tuple(part.format(**fields) for part in build_config.command)

    env = dict(os.environ)
    env.update(build_config.env)
    env.update(build_config.target_env.get(target.architecture, {}))
    if build_config.deployment_target:
        env["MACOSX_DEPLOYMENT_TARGET"] = build_config.deployment_target

    return BuildCommand(
        architecture=target.architecture,
        argv=argv,
        cwd=source_root,
        env=env,
        expected_output=target.artifact_path,
    )


def run_build_command(command: BuildCommand, cancel_event: threading.Event) -> None:
    """Run the toolchain as a child process, terminating it on cancellation."""

    process = subprocess.Popen(list(command.argv), cwd=command.cwd, env=dict(command.env))
    while True:
        try:
            returncode = process.wait(timeout=_POLL_SECONDS)
            break
        except subprocess.TimeoutExpired:
            if not cancel_event.is_set():
                continue
            process.terminate()
            try:
                process.wait(timeout=_TERMINATE_GRACE_SECONDS)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()
            raise BuildCancelled(command.architecture) from None
    if returncode != 0:
        raise subprocess.CalledProcessError(returncode, list(command.argv))


def _build_one(
    command: BuildCommand,
    runner: BuildRunner,
    cancel_event: threading.Event,
    logger: logging.Logger,
) -> BuildArtifact:
    if cancel_event.is_set():
        raise BuildCancelled(command.architecture)

    logger.info("build.start arch=%s argv=%s", command.architecture, " ".join(command.argv))
    started_mono = time.monotonic()
    try:
        runner(command, cancel_event)
    except (BuildCancelled, BuildFailure):
        raise
    except Exception as exc:
        raise BuildFailure(command.architecture, exc) from exc

    if not command.expected_output.is_file():
        raise BuildFailure(command.architecture, f"expected output not produced: {command.expected_output}")

    logger.info(
        "build.done arch=%s artifact=%s seconds=%.2f",
        command.architecture,
        command.expected_output,
        time.monotonic() - started_mono,
    )
    return BuildArtifact(architecture=command.architecture, path=command.expected_output)


def _build_sequential(
    commands: Sequence[BuildCommand],
    runner: BuildRunner,
    logger: logging.Logger,
) -> list[BuildArtifact]:
    cancel_event = threading.Event()
    return [_build_one(command, runner, cancel_event, logger) for command in commands]


def _build_parallel(
    commands: Sequence[BuildCommand],
    runner: BuildRunner,
    logger: logging.Logger,
) -> list[BuildArtifact]:
    cancel_event = threading.Event()
    executor = ThreadPoolExecutor(max_workers=len(commands), thread_name_prefix="macpack-build")
    futures: list[Future[BuildArtifact]] = []
    try:
        for command in commands:
            futures.append(executor.submit(_build_one, command, runner, cancel_event, logger))
        done, _ = wait(futures, return_when=FIRST_EXCEPTION)
        for future in futures:
            if future in done and future.exception() is not None:
                cancel_event.set()
                error = future.exception()
                logger.error("build.abort reason=%s", error)
                raise error  # type: ignore[misc]
    finally:
        # Joins the workers; a still-running build sees the event and terminates.
        cancel_event.set()
        executor.shutdown(wait=True, cancel_futures=True)
    return [future.result() for future in futures]


def build_artifacts(
    targets: Sequence[ArchitectureTarget],
    build_config: BuildConfig,
    *,
    source_root: Path,
    target_dir: Path,
    runner: BuildRunner | None = None,
    parallel: bool | None = None,
    logger: logging.Logger | None = None,
) -> list[BuildArtifact]:
    """Build every target and return the artifacts in target order.

    All builds must succeed; the first failure aborts the run and any other
    build still in flight is cancelled.
    """

    effective_logger = logger or LOGGER
    effective_runner = runner or run_build_command
    run_parallel = build_config.parallel if parallel is None else parallel

    commands = [
        render_build_command(target, build_config, source_root=source_root, target_dir=target_dir)
        for target in targets
    ]
    if not commands:
        return []

    effective_logger.info(
        "build.plan architectures=%s parallel=%s",
        ",".join(command.architecture for command in commands),
        run_parallel,
    )
    if run_parallel and len(commands) > 1:
        return _build_parallel(commands, effective_runner, effective_logger)
    return _build_sequential(commands, effective_runner, effective_logger)


def collect_artifacts(targets: Sequence[ArchitectureTarget]) -> list[BuildArtifact]:
    """Describe already-built outputs without running the toolchain."""

    return [BuildArtifact(architecture=target.architecture, path=target.artifact_path) for target in targets]

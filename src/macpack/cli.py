"""Typer CLI entrypoint for macpack."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import typer
import yaml

from macpack.architectures import get_architecture
from macpack.build.models import BuildArtifact
from macpack.bundle.descriptor import DESCRIPTOR_FORMATS, BundleDescriptor, render_descriptor
from macpack.config import AppSettings, apply_overrides, load_settings
from macpack.errors import EXIT_CONFIG, ConfigurationError, PackagingError
from macpack.logging_utils import LOG_FILE_NAME, configure_logging, level_from_flags
from macpack.merge.macho import describe_binary
from macpack.merge.merger import merge_executables
from macpack.pipeline import PackageRunOptions, run_package_pipeline

app = typer.Typer(
    add_completion=False,
    help="Build, merge and bundle a universal macOS application.",
    no_args_is_help=True,
)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    help="Optional settings YAML path.",
    exists=False,
    file_okay=True,
    dir_okay=False,
    readable=True,
)


@contextmanager
def _exit_on_failure() -> Iterator[None]:
    """Turn pipeline failures into a one-line message and a per-stage exit code."""

    try:
        yield
    except PackagingError as exc:
        typer.echo(f"error [{exc.stage}]: {exc}", err=True)
        raise typer.Exit(code=exc.exit_code) from exc


def _load_and_optionally_configure_logger(
    config_file: Path | None,
    configure: bool,
    *,
    verbose: bool = False,
    quiet: bool = False,
) -> tuple[AppSettings, logging.Logger]:
    settings = load_settings(config_file=config_file)
    if configure:
        log_file = settings.paths.logs_root / LOG_FILE_NAME
        try:
            logger = configure_logging(log_file, level=level_from_flags(verbose=verbose, quiet=quiet))
        except OSError as exc:
            raise ConfigurationError(f"cannot open log file {log_file}: {exc}") from exc
    else:
        logger = logging.getLogger("macpack")
    return settings, logger


def _split_architectures(values: list[str] | None) -> list[str] | None:
    if not values:
        return None
    names = [part.strip() for value in values for part in value.split(",") if part.strip()]
    return names or None


def _parse_merge_input(value: str) -> BuildArtifact:
    arch, sep, path = value.partition("=")
    if not sep or not arch.strip() or not path.strip():
        raise typer.BadParameter(f"expected ARCH=PATH, got {value!r}")
    return BuildArtifact(architecture=arch.strip(), path=Path(path.strip()))


@app.command("show-config")
def show_config(config_file: Path | None = CONFIG_FILE_OPTION) -> None:
    """Print the effective configuration after env overrides."""

    with _exit_on_failure():
        settings, _ = _load_and_optionally_configure_logger(config_file, configure=False)
    typer.echo(yaml.safe_dump(settings.as_dict(), sort_keys=False))


@app.command("package")
def package(
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Bundle directory to create (default: <output_root>/<name>.app).",
        file_okay=False,
    ),
    arch: list[str] | None = typer.Option(
        None,
        "--arch",
        "-a",
        help="Architecture to include; repeat or comma-separate (default from settings).",
    ),
    version: str | None = typer.Option(None, "--version", help="Bundle version string."),
    identifier: str | None = typer.Option(None, "--identifier", help="Reverse-DNS bundle identifier."),
    no_build: bool = typer.Option(
        False,
        "--no-build",
        help="Skip the toolchain and merge artifacts that already exist.",
    ),
    sequential: bool = typer.Option(
        False,
        "--sequential",
        help="Build architectures one after another instead of concurrently.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only log warnings and errors to the console."),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Compile for every architecture, merge into one executable, and assemble the bundle."""

    with _exit_on_failure():
        settings, logger = _load_and_optionally_configure_logger(
            config_file,
            configure=True,
            verbose=verbose,
            quiet=quiet,
        )
        settings = apply_overrides(
            settings,
            version=version,
            identifier=identifier,
            architectures=_split_architectures(arch),
        )
        options = PackageRunOptions(
            output=output,
            skip_build=no_build,
            parallel=False if sequential else None,
        )
        result = run_package_pipeline(settings, options=options, logger=logger)

    typer.echo(f"run_id: {result.run_id}")
    typer.echo(f"bundle_path: {result.bundle.root}")
    typer.echo(f"executable: {result.bundle.executable_path}")
    typer.echo(f"architectures: {','.join(result.merged.architectures)}")
    typer.echo(f"identifier: {result.summary['identifier']}")
    typer.echo(f"version: {result.summary['version']}")
    typer.echo(f"summary_path: {result.summary_path}")


@app.command("merge")
def merge(
    inputs: list[str] = typer.Argument(..., help="Per-architecture executables as ARCH=PATH."),
    output: Path = typer.Option(..., "--output", "-o", help="Path of the universal executable to write."),
    backend: str = typer.Option("native", "--backend", help="Merge backend: native or lipo."),
) -> None:
    """Merge already-built executables into one universal binary."""

    if backend not in {"native", "lipo"}:
        raise typer.BadParameter("backend must be one of: native, lipo")
    artifacts = [_parse_merge_input(value) for value in inputs]
    with _exit_on_failure():
        merged = merge_executables(artifacts, output, backend=backend)  # type: ignore[arg-type]

    typer.echo(f"output: {merged.path}")
    for fat_arch in merged.fat_archs:
        typer.echo(f"{fat_arch.architecture}: offset={fat_arch.offset} size={fat_arch.size} align=2^{fat_arch.align}")


@app.command("inspect")
def inspect_binary(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Executable to inspect."),
) -> None:
    """Show which architectures a binary contains."""

    try:
        description = describe_binary(path)
    except ValueError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=EXIT_CONFIG) from exc

    typer.echo(f"kind: {description.kind}")
    typer.echo(f"architectures: {','.join(description.architectures) or '-'}")
    for fat_arch in description.fat_archs:
        typer.echo(
            f"{fat_arch.architecture}: cputype={fat_arch.cputype:#x} cpusubtype={fat_arch.cpusubtype:#x} "
            f"offset={fat_arch.offset} size={fat_arch.size} align=2^{fat_arch.align}"
        )


@app.command("render-descriptor")
def render_descriptor_cmd(
    fmt: str | None = typer.Option(None, "--format", help="xml or openstep (default from settings)."),
    version: str | None = typer.Option(None, "--version", help="Bundle version string."),
    identifier: str | None = typer.Option(None, "--identifier", help="Reverse-DNS bundle identifier."),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Print the Info.plist the bundle would receive."""

    if fmt is not None and fmt not in DESCRIPTOR_FORMATS:
        raise typer.BadParameter(f"format must be one of: {', '.join(DESCRIPTOR_FORMATS)}")
    with _exit_on_failure():
        settings, _ = _load_and_optionally_configure_logger(config_file, configure=False)
        settings = apply_overrides(settings, version=version, identifier=identifier)
    descriptor = BundleDescriptor.from_config(settings.bundle)
    typer.echo(render_descriptor(descriptor, fmt or settings.bundle.descriptor_format), nl=False)


@app.command("list-architectures")
def list_architectures(
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """List the configured architectures and their compiler targets."""

    with _exit_on_failure():
        settings, _ = _load_and_optionally_configure_logger(config_file, configure=False)
    for name in settings.build.architectures:
        spec = get_architecture(name)
        triple = settings.build.triples.get(name, spec.triple)
        typer.echo(f"{spec.name}: target={triple} cputype={spec.cputype:#x} cpusubtype={spec.cpusubtype}")


def main() -> None:
    """CLI script entrypoint."""

    app()


if __name__ == "__main__":
    main()

"""Assemble the ``.app`` directory tree around a merged executable."""

from __future__ import annotations

import logging
import os
import shutil
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterator, Sequence

from macpack.bundle.descriptor import (
    DESCRIPTOR_FILE_NAME,
    PKGINFO_FILE_NAME,
    BundleDescriptor,
    DescriptorFormat,
    render_descriptor,
    render_pkginfo,
)
from macpack.bundle.resources import ResourceGroup, copy_resources, resolve_resources
from macpack.errors import AssemblyFailure
from macpack.merge.merger import EXECUTABLE_MODE, MergedExecutable
from macpack.utils.paths import atomic_temp_path, ensure_directories, remove_path

LOGGER = logging.getLogger(__name__)

RESOURCES_DIR_NAME = "Resources"


@dataclass(frozen=True, slots=True)
class BundleLayout:
    """Fixed directory layout of a macOS application bundle."""

    root: Path

    @classmethod
    def for_root(cls, root: Path) -> "BundleLayout":
        return cls(root=root)

    @property
    def contents(self) -> Path:
        return self.root / "Contents"

    @property
    def macos_dir(self) -> Path:
        return self.contents / "MacOS"

    @property
    def resources_dir(self) -> Path:
        return self.contents / RESOURCES_DIR_NAME

    @property
    def descriptor_path(self) -> Path:
        return self.contents / DESCRIPTOR_FILE_NAME

    @property
    def pkginfo_path(self) -> Path:
        return self.contents / PKGINFO_FILE_NAME

    def executable_path(self, executable_name: str) -> Path:
        return self.macos_dir / executable_name

    def icon_path(self, icon_file: str) -> Path:
        return self.resources_dir / icon_file


@dataclass(frozen=True, slots=True)
class Bundle:
    """A finished bundle on disk."""

    root: Path
    executable_path: Path
    descriptor_path: Path
    icon_path: Path
    files: tuple[str, ...]


@contextmanager
def _assembly_step(step: str, path: Path) -> Iterator[None]:
    try:
        yield
    except OSError as exc:
        raise AssemblyFailure(step, path, exc) from exc


@contextmanager
def staged_bundle(bundle_path: Path, *, logger: logging.Logger | None = None) -> Iterator[Path]:
    """Yield a staging directory that replaces ``bundle_path`` only on success.

    On failure the staging tree is deleted and any existing bundle is left
    untouched. On success the previous bundle is moved aside, the staging tree
    is renamed into place and the old tree is removed.
    """

    effective_logger = logger or LOGGER
    with _assembly_step("prepare_output", bundle_path.parent):
        bundle_path.parent.mkdir(parents=True, exist_ok=True)
    staging = atomic_temp_path(bundle_path, suffix="staging")
    with _assembly_step("prepare_output", staging):
        staging.mkdir()

    try:
        yield staging
    except BaseException:
        shutil.rmtree(staging, ignore_errors=True)
        effective_logger.warning("assemble.staging_discarded path=%s", staging)
        raise

    previous = atomic_temp_path(bundle_path, suffix="previous")
    had_previous = bundle_path.exists() or bundle_path.is_symlink()
    try:
        if had_previous:
            os.replace(bundle_path, previous)
        os.replace(staging, bundle_path)
    except OSError as exc:
        if had_previous and previous.exists() and not bundle_path.exists():
            os.replace(previous, bundle_path)
        shutil.rmtree(staging, ignore_errors=True)
        raise AssemblyFailure("replace_existing", bundle_path, exc) from exc

    if had_previous:
        with _assembly_step("remove_existing", previous):
            remove_path(previous)
        effective_logger.info("assemble.replaced_existing path=%s", bundle_path)


def _list_files(root: Path) -> tuple[str, ...]:
    return tuple(sorted(path.relative_to(root).as_posix() for path in root.rglob("*") if path.is_file()))


def assemble_bundle(
    merged: MergedExecutable,
    descriptor: BundleDescriptor,
    resource_groups: Sequence[ResourceGroup],
    bundle_path: Path,
    *,
    source_root: Path,
    descriptor_format: DescriptorFormat = "xml",
    logger: logging.Logger | None = None,
) -> Bundle:
    """Create the complete bundle at ``bundle_path`` from scratch."""

    effective_logger = logger or LOGGER

    # Nothing is written until every resource pattern has matched.
    plan = resolve_resources(source_root, resource_groups, logger=effective_logger)
    icon_destination = PurePosixPath(RESOURCES_DIR_NAME) / descriptor.icon_file
    if not any(item.destination == icon_destination for item in plan):
        raise AssemblyFailure(
            "verify_icon",
            Path(icon_destination),
            f"icon {descriptor.icon_file!r} is not among the copied resources",
        )
    if not merged.path.is_file():
        raise AssemblyFailure("copy_executable", merged.path, "merged executable does not exist")

    descriptor_text = render_descriptor(descriptor, descriptor_format)

    with staged_bundle(bundle_path, logger=effective_logger) as staging:
        layout = BundleLayout.for_root(staging)
        with _assembly_step("create_skeleton", layout.contents):
            ensure_directories([layout.macos_dir, layout.resources_dir])

        copy_resources(plan, layout.contents, logger=effective_logger)

        executable = layout.executable_path(descriptor.executable_name)
        with _assembly_step("copy_executable", executable):
            shutil.copy2(merged.path, executable)
            os.chmod(executable, EXECUTABLE_MODE)

        with _assembly_step("write_descriptor", layout.descriptor_path):
            layout.descriptor_path.write_text(descriptor_text, encoding="utf-8")
            layout.pkginfo_path.write_bytes(render_pkginfo(descriptor))

    final_layout = BundleLayout.for_root(bundle_path)
    verify_bundle(bundle_path, descriptor)
    bundle = Bundle(
        root=bundle_path,
        executable_path=final_layout.executable_path(descriptor.executable_name),
        descriptor_path=final_layout.descriptor_path,
        icon_path=final_layout.icon_path(descriptor.icon_file),
        files=_list_files(bundle_path),
    )
    effective_logger.info(
        "assemble.done bundle=%s files=%s executable=%s",
        bundle.root,
        len(bundle.files),
        bundle.executable_path.name,
    )
    return bundle


def verify_bundle(bundle_path: Path, descriptor: BundleDescriptor) -> None:
    """Check that executable, descriptor and icon are all present together."""

    layout = BundleLayout.for_root(bundle_path)
    required = (
        ("verify_descriptor", layout.descriptor_path),
        ("verify_executable", layout.executable_path(descriptor.executable_name)),
        ("verify_icon", layout.icon_path(descriptor.icon_file)),
    )
    for step, path in required:
        if not path.is_file():
            raise AssemblyFailure(step, path, "missing from bundle")
    if not os.access(layout.executable_path(descriptor.executable_name), os.X_OK):
        raise AssemblyFailure("verify_executable", layout.executable_path(descriptor.executable_name), "not executable")

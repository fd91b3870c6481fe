"""Shared fixtures: thin Mach-O stand-ins and a throwaway project tree."""

from __future__ import annotations

import copy
import os
import struct
import threading
from pathlib import Path
from typing import Any, Callable

import pytest
import yaml

from macpack.architectures import get_architecture
from macpack.build.models import BuildCommand
from macpack.config import AppSettings, load_settings

MH_MAGIC_64 = 0xFEEDFACF
MH_EXECUTE = 2

BASE_SETTINGS: dict[str, Any] = {
    "paths": {
        "source_root": ".",
        "target_dir": "./target",
        "build_root": "./build",
        "output_root": "./dist",
        "logs_root": "./logs",
    },
    "bundle": {
        "name": "Clicker",
        "identifier": "org.example.clicker",
        "version": "1.0.0",
        "signature": "wdld",
        "executable_name": "clicker",
        "icon_file": "icon.icns",
    },
    "build": {
        "architectures": ["x86_64", "arm64"],
        "binary_name": "clicker-bin",
        "parallel": True,
    },
    "resources": [
        {"patterns": ["assets/*.png"], "destination": "MacOS/assets"},
        {"patterns": ["assets/icon.icns"], "destination": "Resources"},
    ],
}


def write_thin_macho(path: Path, arch: str, payload: bytes | None = None) -> Path:
    """Write a minimal 64-bit Mach-O header followed by a recognizable body."""

    spec = get_architecture(arch)
    header = struct.pack("<IiiIIIII", MH_MAGIC_64, spec.cputype, spec.cpusubtype, MH_EXECUTE, 0, 0, 0, 0)
    body = payload if payload is not None else f"code for {spec.name}\n".encode("ascii") * 64
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(header + body)
    return path


def _deep_update(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_update(merged[key], value)
        else:
            merged[key] = value
    return merged


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in list(os.environ):
        if name.startswith("MACPACK_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    assets = root / "assets"
    assets.mkdir(parents=True)
    (assets / "icon.icns").write_bytes(b"icns\x00\x00\x00\x08")
    (assets / "sprite1.png").write_bytes(b"\x89PNG\r\n\x1a\nsprite1")
    (root / "configs").mkdir()
    (root / "configs" / "settings.yaml").write_text(yaml.safe_dump(BASE_SETTINGS, sort_keys=False), encoding="utf-8")
    return root


@pytest.fixture
def write_settings(project_dir: Path) -> Callable[..., Path]:
    """Rewrite the project's settings file with nested overrides."""

    def _write(updates: dict[str, Any] | None = None) -> Path:
        payload = _deep_update(BASE_SETTINGS, updates or {})
        settings_file = project_dir / "configs" / "settings.yaml"
        settings_file.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
        return settings_file

    return _write


@pytest.fixture
def settings(project_dir: Path) -> AppSettings:
    return load_settings(config_file=project_dir / "configs" / "settings.yaml")


@pytest.fixture
def built_artifacts(project_dir: Path) -> dict[str, Path]:
    """Place per-architecture outputs where the default artifact template expects them."""

    target_dir = project_dir / "target"
    return {
        "x86_64": write_thin_macho(target_dir / "x86_64-apple-darwin" / "release" / "clicker-bin", "x86_64"),
        "arm64": write_thin_macho(target_dir / "aarch64-apple-darwin" / "release" / "clicker-bin", "arm64"),
    }


@pytest.fixture
def fake_runner() -> Callable[[BuildCommand, threading.Event], None]:
    """A toolchain stand-in that writes a thin binary to the expected output."""

    def _run(command: BuildCommand, cancel_event: threading.Event) -> None:
        write_thin_macho(command.expected_output, command.architecture)

    return _run


@pytest.fixture
def macho_factory() -> Callable[..., Path]:
    return write_thin_macho

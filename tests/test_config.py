from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from macpack.config import AppSettings, apply_overrides, load_settings
from macpack.errors import ConfigurationError


def test_paths_resolve_against_project_root(settings: AppSettings, project_dir: Path) -> None:
    assert settings.paths.source_root == project_dir.resolve()
    assert settings.paths.target_dir == (project_dir / "target").resolve()
    assert settings.bundle.bundle_dir_name == "Clicker.app"
    assert settings.build.architectures == ["x86_64", "arm64"]


def test_architecture_aliases_are_normalized(write_settings: Callable[..., Path]) -> None:
    settings = load_settings(write_settings({"build": {"architectures": ["amd64", "aarch64"]}}))

    assert settings.build.architectures == ["x86_64", "arm64"]


@pytest.mark.parametrize(
    "updates",
    [
        {"bundle": {"identifier": ""}},
        {"bundle": {"identifier": "clicker"}},
        {"bundle": {"executable_name": ""}},
        {"bundle": {"executable_name": "bin/clicker"}},
        {"bundle": {"signature": "toolong"}},
        {"bundle": {"extra_keys": {"CFBundleExecutable": "other"}}},
        {"build": {"architectures": ["x86_64", "mips"]}},
        {"build": {"architectures": []}},
        {"resources": [{"patterns": ["assets/*.png"], "destination": "../outside"}]},
    ],
)
def test_malformed_configuration_is_rejected_at_load_time(
    write_settings: Callable[..., Path], updates: dict[str, object]
) -> None:
    with pytest.raises(ConfigurationError):
        load_settings(write_settings(updates))


def test_environment_overrides_yaml(
    monkeypatch: pytest.MonkeyPatch, write_settings: Callable[..., Path]
) -> None:
    monkeypatch.setenv("MACPACK_BUNDLE__VERSION", "2.3.4")

    settings = load_settings(write_settings())

    assert settings.bundle.version == "2.3.4"


def test_settings_file_from_environment(monkeypatch: pytest.MonkeyPatch, project_dir: Path) -> None:
    monkeypatch.setenv("MACPACK_SETTINGS_FILE", str(project_dir / "configs" / "settings.yaml"))

    settings = load_settings()

    assert settings.bundle.identifier == "org.example.clicker"


def test_cli_overrides_are_validated(settings: AppSettings) -> None:
    updated = apply_overrides(settings, version="1.2.0", identifier="com.acme.clicker", architectures=["arm64"])

    assert updated.bundle.version == "1.2.0"
    assert updated.bundle.identifier == "com.acme.clicker"
    assert updated.build.architectures == ["arm64"]
    assert settings.bundle.version == "1.0.0"

    with pytest.raises(ConfigurationError):
        apply_overrides(settings, identifier="not a domain")


def test_unparseable_settings_file_is_a_configuration_error(project_dir: Path) -> None:
    settings_file = project_dir / "configs" / "settings.yaml"
    settings_file.write_text("bundle: {name: Clicker\n  identifier: [unclosed\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="could not read settings file"):
        load_settings(settings_file)

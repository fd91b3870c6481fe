"""Configuration models and loading logic."""

from __future__ import annotations

import os
import re
from pathlib import Path, PurePosixPath
from typing import Any, ClassVar, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from macpack.architectures import canonical_architecture_list, normalize_architecture_name
from macpack.bundle.descriptor import REQUIRED_DESCRIPTOR_KEYS
from macpack.errors import ConfigurationError

DEFAULT_SETTINGS_FILE = Path("configs/settings.yaml")
SETTINGS_FILE_ENV = "MACPACK_SETTINGS_FILE"

DEFAULT_BUILD_COMMAND: tuple[str, ...] = (
    "cargo",
    "build",
    "--release",
    "--target",
    "{triple}",
    "--target-dir",
    "{target_dir}",
)
DEFAULT_ARTIFACT_TEMPLATE = "{target_dir}/{triple}/{profile}/{binary}"

_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)+$")


class ProjectConfig(BaseModel):
    """Project metadata settings."""

    name: str = "macpack"
    env: str = "dev"


class PathsConfig(BaseModel):
    """Filesystem locations used by each pipeline stage."""

    source_root: Path = Path(".")
    target_dir: Path = Path("./target")
    build_root: Path = Path("./build")
    output_root: Path = Path("./dist")
    logs_root: Path = Path("./logs")

    def resolved(self, project_root: Path) -> "PathsConfig":
        """Return a copy with project-relative paths resolved to absolute paths."""

        updates: dict[str, Path] = {}
        for field_name in type(self).model_fields:
            value = getattr(self, field_name)
            updates[field_name] = value if value.is_absolute() else (project_root / value).resolve()
        return self.model_copy(update=updates)


class BundleConfig(BaseModel):
    """Identity of the application bundle written into Info.plist."""

    name: str = Field(default="Clicker", min_length=1)
    display_name: str | None = None
    identifier: str = "org.example.clicker"
    version: str = Field(default="1.0.0", min_length=1)
    short_version: str | None = None
    info_dictionary_version: str = "6.0"
    package_type: str = Field(default="APPL", min_length=4, max_length=4)
    signature: str = Field(default="????", min_length=4, max_length=4)
    executable_name: str = Field(default="clicker", min_length=1)
    icon_file: str = Field(default="Clicker.icns", min_length=1)
    minimum_system_version: str | None = None
    extra_keys: dict[str, str | bool | int | float] = Field(default_factory=dict)
    descriptor_format: Literal["xml", "openstep"] = "xml"

    @field_validator("identifier")
    @classmethod
    def _check_identifier(cls, value: str) -> str:
        value = value.strip()
        if not _IDENTIFIER_RE.match(value):
            raise ValueError("identifier must be a reverse-DNS string such as org.example.app")
        return value

    @field_validator("executable_name", "icon_file")
    @classmethod
    def _check_plain_file_name(cls, value: str) -> str:
        if "/" in value or value in {".", ".."}:
            raise ValueError("must be a plain file name without directories")
        return value

    @field_validator("package_type", "signature")
    @classmethod
    def _check_four_char_code(cls, value: str) -> str:
        if not value.isascii():
            raise ValueError("four-character codes must be ASCII")
        return value

    @field_validator("extra_keys")
    @classmethod
    def _check_extra_keys(cls, value: dict[str, Any]) -> dict[str, Any]:
        clashes = sorted(set(value) & set(REQUIRED_DESCRIPTOR_KEYS))
        if clashes:
            raise ValueError(f"extra_keys may not override required keys: {', '.join(clashes)}")
        return value

    @property
    def bundle_dir_name(self) -> str:
        return f"{self.name}.app"


class BuildConfig(BaseModel):
    """Toolchain invocation settings for the per-architecture builds."""

    architectures: list[str] = Field(default_factory=lambda: ["x86_64", "arm64"], min_length=1)
    binary_name: str = Field(default="clicker", min_length=1)
    command: list[str] = Field(default_factory=lambda: list(DEFAULT_BUILD_COMMAND), min_length=1)
    artifact_template: str = DEFAULT_ARTIFACT_TEMPLATE
    profile: str = "release"
    parallel: bool = True
    env: dict[str, str] = Field(default_factory=dict)
    target_env: dict[str, dict[str, str]] = Field(default_factory=dict)
    triples: dict[str, str] = Field(default_factory=dict)
    deployment_target: str | None = None
    merge_backend: Literal["native", "lipo"] = "native"

    @field_validator("architectures")
    @classmethod
    def _check_architectures(cls, value: list[str]) -> list[str]:
        return canonical_architecture_list(value)

    @field_validator("target_env", "triples")
    @classmethod
    def _normalize_arch_keys(cls, value: dict[str, Any]) -> dict[str, Any]:
        return {normalize_architecture_name(key): item for key, item in value.items()}


class ResourceGroupConfig(BaseModel):
    """Glob patterns copied to one directory under ``Contents/``."""

    patterns: list[str] = Field(min_length=1)
    destination: str = "Resources"

    @field_validator("destination")
    @classmethod
    def _check_destination(cls, value: str) -> str:
        path = PurePosixPath(value)
        if path.is_absolute() or ".." in path.parts:
            raise ValueError("destination must be relative to Contents/ and stay inside it")
        return value


class AppSettings(BaseSettings):
    """Top-level application settings."""

    _yaml_file_override: ClassVar[Path | None] = None

    project: ProjectConfig = Field(default_factory=ProjectConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    bundle: BundleConfig = Field(default_factory=BundleConfig)
    build: BuildConfig = Field(default_factory=BuildConfig)
    resources: list[ResourceGroupConfig] = Field(default_factory=list)

    model_config = SettingsConfigDict(
        env_prefix="MACPACK_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Use YAML defaults while allowing env vars to override values."""

        yaml_file = resolve_settings_file(cls._yaml_file_override)
        yaml_settings = YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file)
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            yaml_settings,
            file_secret_settings,
        )

    def as_dict(self) -> dict[str, object]:
        """Return settings as a standard nested dictionary."""

        return self.model_dump(mode="json")


def find_project_root(start: Path | None = None) -> Path:
    """Locate the project root by traversing upward for config markers."""

    current = (start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / "configs/settings.yaml").exists():
            return candidate
    return current


def resolve_settings_file(override: Path | None = None) -> Path:
    """Resolve settings file from explicit override, env var, or default."""

    chosen = override
    if chosen is None:
        env_value = os.getenv(SETTINGS_FILE_ENV)
        if env_value:
            chosen = Path(env_value)
    if chosen is None:
        chosen = DEFAULT_SETTINGS_FILE

    if not chosen.is_absolute():
        chosen = (find_project_root() / chosen).resolve()
    return chosen


def load_settings(config_file: Path | None = None) -> AppSettings:
    """Load settings with YAML defaults and environment variable overrides."""

    settings_file = resolve_settings_file(config_file)
    project_root = settings_file.parent.parent.resolve()
    AppSettings._yaml_file_override = settings_file
    try:
        settings = AppSettings()
    except ValidationError as exc:
        raise ConfigurationError(f"invalid settings in {settings_file}:\n{exc}") from exc
    except (yaml.YAMLError, OSError) as exc:
        raise ConfigurationError(f"could not read settings file {settings_file}: {exc}") from exc
    finally:
        AppSettings._yaml_file_override = None
    resolved_paths = settings.paths.resolved(project_root=project_root)
    return settings.model_copy(update={"paths": resolved_paths})


def apply_overrides(
    settings: AppSettings,
    *,
    version: str | None = None,
    identifier: str | None = None,
    architectures: list[str] | None = None,
) -> AppSettings:
    """Return settings with CLI overrides applied and re-validated."""

    bundle_updates: dict[str, Any] = {}
    if version is not None:
        bundle_updates["version"] = version
    if identifier is not None:
        bundle_updates["identifier"] = identifier

    try:
        bundle = BundleConfig.model_validate({**settings.bundle.model_dump(), **bundle_updates})
        build = settings.build
        if architectures:
            build = BuildConfig.model_validate({**settings.build.model_dump(), "architectures": architectures})
    except ValidationError as exc:
        raise ConfigurationError(f"invalid override:\n{exc}") from exc
    return settings.model_copy(update={"bundle": bundle, "build": build})

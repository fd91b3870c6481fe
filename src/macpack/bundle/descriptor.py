"""Render the bundle's Info.plist descriptor.

Rendering is pure: values are validated when settings are loaded, so the
functions here only map a ``BundleDescriptor`` onto text.
"""

from __future__ import annotations

import plistlib
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from macpack.config import BundleConfig

DescriptorFormat = Literal["xml", "openstep"]
DESCRIPTOR_FORMATS: tuple[DescriptorFormat, ...] = ("xml", "openstep")

DESCRIPTOR_FILE_NAME = "Info.plist"
PKGINFO_FILE_NAME = "PkgInfo"

REQUIRED_DESCRIPTOR_KEYS: tuple[str, ...] = (
    "CFBundleName",
    "CFBundleDisplayName",
    "CFBundleIdentifier",
    "CFBundleVersion",
    "CFBundleShortVersionString",
    "CFBundleInfoDictionaryVersion",
    "CFBundlePackageType",
    "CFBundleSignature",
    "CFBundleExecutable",
    "CFBundleIconFile",
)

_OPENSTEP_BARE_RE = re.compile(r"^[A-Za-z0-9_]+$")


@dataclass(frozen=True, slots=True)
class BundleDescriptor:
    """Identity record of one bundle."""

    name: str
    display_name: str
    identifier: str
    version: str
    short_version: str
    info_dictionary_version: str
    package_type: str
    signature: str
    executable_name: str
    icon_file: str
    minimum_system_version: str | None = None
    extra_keys: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_config(cls, bundle: "BundleConfig") -> "BundleDescriptor":
        return cls(
            name=bundle.name,
            display_name=bundle.display_name or bundle.name,
            identifier=bundle.identifier,
            version=bundle.version,
            short_version=bundle.short_version or bundle.version,
            info_dictionary_version=bundle.info_dictionary_version,
            package_type=bundle.package_type,
            signature=bundle.signature,
            executable_name=bundle.executable_name,
            icon_file=bundle.icon_file,
            minimum_system_version=bundle.minimum_system_version,
            extra_keys=dict(bundle.extra_keys),
        )

    def as_plist_dict(self) -> dict[str, Any]:
        """Return descriptor keys in their canonical order."""

        values: dict[str, Any] = {
            "CFBundleName": self.name,
            "CFBundleDisplayName": self.display_name,
            "CFBundleIdentifier": self.identifier,
            "CFBundleVersion": self.version,
            "CFBundleShortVersionString": self.short_version,
            "CFBundleInfoDictionaryVersion": self.info_dictionary_version,
            "CFBundlePackageType": self.package_type,
            "CFBundleSignature": self.signature,
            "CFBundleExecutable": self.executable_name,
            "CFBundleIconFile": self.icon_file,
        }
        if self.minimum_system_version:
            values["LSMinimumSystemVersion"] = self.minimum_system_version
        for key in sorted(self.extra_keys):
            values.setdefault(key, self.extra_keys[key])
        return values


def _openstep_value(value: Any) -> str:
    if isinstance(value, bool):
        return "YES" if value else "NO"
    text = str(value)
    if _OPENSTEP_BARE_RE.match(text):
        return text
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _render_openstep(values: dict[str, Any]) -> str:
    lines = ["{"]
    for key, value in values.items():
        lines.append(f"   {key} = {_openstep_value(value)};")
    lines.append("}")
    return "\n".join(lines) + "\n"


def render_descriptor(descriptor: BundleDescriptor, fmt: DescriptorFormat = "xml") -> str:
    """Serialize the descriptor as an XML or OpenStep-style property list."""

    values = descriptor.as_plist_dict()
    if fmt == "xml":
        return plistlib.dumps(values, fmt=plistlib.FMT_XML, sort_keys=True).decode("utf-8")
    if fmt == "openstep":
        return _render_openstep(values)
    raise ValueError(f"Unsupported descriptor format: {fmt}")


def render_pkginfo(descriptor: BundleDescriptor) -> bytes:
    """Return the eight-byte PkgInfo payload (package type + signature)."""

    return f"{descriptor.package_type}{descriptor.signature}".encode("ascii")

"""Bundle assembly stage: layout, descriptor and resources."""

from macpack.bundle.assembler import Bundle, BundleLayout, assemble_bundle, staged_bundle, verify_bundle
from macpack.bundle.descriptor import (
    DESCRIPTOR_FILE_NAME,
    DESCRIPTOR_FORMATS,
    REQUIRED_DESCRIPTOR_KEYS,
    BundleDescriptor,
    DescriptorFormat,
    render_descriptor,
    render_pkginfo,
)
from macpack.bundle.resources import ResourceCopy, ResourceGroup, copy_resources, resolve_resources

__all__ = [
    "Bundle",
    "BundleLayout",
    "assemble_bundle",
    "staged_bundle",
    "verify_bundle",
    "DESCRIPTOR_FILE_NAME",
    "DESCRIPTOR_FORMATS",
    "REQUIRED_DESCRIPTOR_KEYS",
    "BundleDescriptor",
    "DescriptorFormat",
    "render_descriptor",
    "render_pkginfo",
    "ResourceCopy",
    "ResourceGroup",
    "copy_resources",
    "resolve_resources",
]

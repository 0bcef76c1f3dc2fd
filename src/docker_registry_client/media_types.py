"""
Registry media types and constants.

Single source of truth for the manifest and layer media types the client
recognizes.
"""
from __future__ import annotations

# Docker distribution manifests
MEDIATYPE_MANIFEST_V1 = "application/vnd.docker.distribution.manifest.v1+json"
MEDIATYPE_MANIFEST_V1_SIGNED = "application/vnd.docker.distribution.manifest.v1+prettyjws"
MEDIATYPE_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
MEDIATYPE_MANIFEST_LIST_V2 = "application/vnd.docker.distribution.manifest.list.v2+json"

# OCI image-spec manifests
MEDIATYPE_OCI_MANIFEST_V1 = "application/vnd.oci.image.manifest.v1+json"
MEDIATYPE_OCI_MANIFEST_INDEX_V1 = "application/vnd.oci.image.index.v1+json"

# Blob types
MEDIATYPE_CONTAINER_IMAGE_V1 = "application/vnd.docker.container.image.v1+json"
MEDIATYPE_IMAGE_ROOTFS_DIFF = "application/vnd.docker.image.rootfs.diff.tar.gzip"
MEDIATYPE_OCI_IMAGE_CONFIG_V1 = "application/vnd.oci.image.config.v1+json"
MEDIATYPE_OCI_IMAGE_LAYER_GZIP = "application/vnd.oci.image.layer.v1.tar+gzip"
MEDIATYPE_OCTET_STREAM = "application/octet-stream"

# Manifest types whose payload is a list of sub-manifests
LIST_MEDIA_TYPES = (MEDIATYPE_MANIFEST_LIST_V2, MEDIATYPE_OCI_MANIFEST_INDEX_V1)


def manifest_media_type_for_schema(schema_version: int) -> str:
    """Docker manifest media type for a bare schema version (1 or 2)."""
    return f"application/vnd.docker.distribution.manifest.v{schema_version}+json"


__all__ = [
    "MEDIATYPE_MANIFEST_V1",
    "MEDIATYPE_MANIFEST_V1_SIGNED",
    "MEDIATYPE_MANIFEST_V2",
    "MEDIATYPE_MANIFEST_LIST_V2",
    "MEDIATYPE_OCI_MANIFEST_V1",
    "MEDIATYPE_OCI_MANIFEST_INDEX_V1",
    "MEDIATYPE_CONTAINER_IMAGE_V1",
    "MEDIATYPE_IMAGE_ROOTFS_DIFF",
    "MEDIATYPE_OCI_IMAGE_CONFIG_V1",
    "MEDIATYPE_OCI_IMAGE_LAYER_GZIP",
    "MEDIATYPE_OCTET_STREAM",
    "LIST_MEDIA_TYPES",
    "manifest_media_type_for_schema",
]

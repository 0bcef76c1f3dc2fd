"""
Data models for registry responses.

These Pydantic models give typed access to manifests and tag lists while
keeping unknown, registry-specific fields (``extra="allow"``).
"""
from __future__ import annotations

from typing import Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import InvalidContentError
from .media_types import (
    LIST_MEDIA_TYPES,
    MEDIATYPE_MANIFEST_LIST_V2,
    MEDIATYPE_MANIFEST_V1,
    MEDIATYPE_MANIFEST_V1_SIGNED,
    MEDIATYPE_MANIFEST_V2,
    MEDIATYPE_OCI_MANIFEST_INDEX_V1,
    MEDIATYPE_OCI_MANIFEST_V1,
)

__all__ = [
    "Platform",
    "Descriptor",
    "ManifestV2",
    "ManifestV2List",
    "ManifestOCI",
    "ManifestOCIIndex",
    "Manifest",
    "TagList",
    "parse_manifest",
    "manifest_entries",
]


class _RegistryModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    def to_json_dict(self) -> Dict[str, Any]:
        """Dump using the registry's JSON field names."""
        return self.model_dump(by_alias=True, exclude_none=True)


class Platform(_RegistryModel):
    """Platform a sub-manifest of a list/index targets."""
    architecture: str
    os: str
    os_version: Optional[str] = Field(default=None, alias="os.version")
    os_features: Optional[List[str]] = Field(default=None, alias="os.features")
    variant: Optional[str] = None
    features: Optional[List[str]] = None


class Descriptor(_RegistryModel):
    """Reference to a blob or sub-manifest by media type, size and digest."""
    media_type: str = Field(..., alias="mediaType")
    size: int
    digest: str
    urls: Optional[List[str]] = None
    annotations: Optional[Dict[str, str]] = None
    platform: Optional[Platform] = None


class ManifestV2(_RegistryModel):
    """Docker image manifest, schema version 2."""
    schema_version: Literal[2] = Field(..., alias="schemaVersion")
    media_type: Literal["application/vnd.docker.distribution.manifest.v2+json"] = Field(
        default=MEDIATYPE_MANIFEST_V2, alias="mediaType"
    )
    config: Descriptor
    layers: List[Descriptor]


class ManifestV2List(_RegistryModel):
    """Docker manifest list (multi-platform)."""
    schema_version: Literal[2] = Field(..., alias="schemaVersion")
    media_type: Literal["application/vnd.docker.distribution.manifest.list.v2+json"] = Field(
        default=MEDIATYPE_MANIFEST_LIST_V2, alias="mediaType"
    )
    manifests: List[Descriptor]


class ManifestOCI(_RegistryModel):
    """OCI image manifest."""
    schema_version: Literal[2] = Field(..., alias="schemaVersion")
    media_type: Optional[Literal["application/vnd.oci.image.manifest.v1+json"]] = Field(
        default=None, alias="mediaType"
    )
    config: Descriptor
    layers: List[Descriptor]
    annotations: Optional[Dict[str, str]] = None


class ManifestOCIIndex(_RegistryModel):
    """OCI image index (multi-platform)."""
    schema_version: Literal[2] = Field(..., alias="schemaVersion")
    media_type: Optional[Literal["application/vnd.oci.image.index.v1+json"]] = Field(
        default=None, alias="mediaType"
    )
    manifests: List[Descriptor]
    annotations: Optional[Dict[str, str]] = None


Manifest = Union[ManifestV2, ManifestV2List, ManifestOCI, ManifestOCIIndex]

_MANIFEST_MODELS = {
    MEDIATYPE_MANIFEST_V2: ManifestV2,
    MEDIATYPE_MANIFEST_LIST_V2: ManifestV2List,
    MEDIATYPE_OCI_MANIFEST_V1: ManifestOCI,
    MEDIATYPE_OCI_MANIFEST_INDEX_V1: ManifestOCIIndex,
}


class TagList(_RegistryModel):
    """
    Response of ``GET /v2/<name>/tags/list``.

    Registries may add their own fields (GCR adds ``child`` and
    ``manifest``); they are kept as extra attributes.
    """
    name: str
    tags: List[str] = Field(default_factory=list)

    @field_validator("tags", mode="before")
    @classmethod
    def _null_tags(cls, value: Any) -> Any:
        # distribution returns "tags": null for a repository with no tags
        return [] if value is None else value


def _strip_params(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    return content_type.split(";", 1)[0].strip()


def _media_type_for(obj: Mapping[str, Any], content_type: Optional[str]) -> str:
    media_type = obj.get("mediaType")
    if media_type:
        if media_type not in _MANIFEST_MODELS:
            raise InvalidContentError(
                f"Unsupported manifest media type: {media_type}. "
                f"Expected one of: {', '.join(_MANIFEST_MODELS)}"
            )
        return media_type

    header_type = _strip_params(content_type)
    if header_type in _MANIFEST_MODELS:
        return header_type

    # OCI manifests may omit mediaType; fall back to their shape
    if "manifests" in obj:
        return MEDIATYPE_OCI_MANIFEST_INDEX_V1
    return MEDIATYPE_OCI_MANIFEST_V1


def parse_manifest(obj: Any, content_type: Optional[str] = None, *, context: str = "") -> Manifest:
    """
    Build a typed manifest from parsed JSON.

    Dispatches on the body's ``mediaType`` (then the response Content-Type,
    then the document shape) and enforces that a list/index has at least
    one sub-manifest and any other manifest has at least one layer.

    Args:
        obj: Parsed JSON body
        content_type: Response Content-Type header
        context: Human-readable name for error messages ("alpine:latest")

    Returns:
        One of ManifestV2, ManifestV2List, ManifestOCI, ManifestOCIIndex

    Raises:
        InvalidContentError: For schemaVersion 1, unknown media types,
            malformed documents and empty layer/manifest lists
    """
    where = f" in {context} manifest" if context else ""
    if not isinstance(obj, Mapping):
        raise InvalidContentError(f"manifest is not a JSON object{where}")

    if obj.get("schemaVersion") == 1 or _strip_params(content_type) in (
        MEDIATYPE_MANIFEST_V1,
        MEDIATYPE_MANIFEST_V1_SIGNED,
    ):
        raise InvalidContentError("schemaVersion 1 manifests are not supported")

    media_type = _media_type_for(obj, content_type)
    entries = obj.get("manifests") if media_type in LIST_MEDIA_TYPES else obj.get("layers")
    if not entries:
        raise InvalidContentError(f"no layers or manifests{where}")

    model = _MANIFEST_MODELS[media_type]
    try:
        return model.model_validate(obj)
    except ValidationError as e:
        raise InvalidContentError(f"invalid {media_type} manifest{where}: {e}") from None


def manifest_entries(manifest: Manifest) -> List[Descriptor]:
    """Layers of an image manifest, or sub-manifests of a list/index."""
    if isinstance(manifest, (ManifestV2List, ManifestOCIIndex)):
        return manifest.manifests
    if isinstance(manifest, (ManifestV2, ManifestOCI)):
        return manifest.layers
    raise TypeError(f"not a manifest: {type(manifest).__name__}")

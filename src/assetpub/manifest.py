"""
Asset manifest loading and selection.

A manifest lists assets to publish. Each asset has one source and one or
more named destinations; every (asset, destination) pair becomes one
manifest entry.

Example ``assets.json``::

    {
      "version": "1.0",
      "files": {
        "abc123": {
          "source": {"path": "asset.abc123", "packaging": "zip"},
          "destinations": {
            "current_account-current_region": {
              "bucketName": "assets-${AWS::AccountId}-${AWS::Region}",
              "objectKey": "abc123.zip",
              "assumeRoleArn": "arn:${AWS::Partition}:iam::${AWS::AccountId}:role/publish"
            }
          }
        }
      },
      "dockerImages": {}
    }
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, Dict, List, Optional, Sequence, Union

import structlog
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as SchemaError
from pydantic.alias_generators import to_camel

from assetpub.core.errors import ConfigurationError, ValidationError

logger = structlog.get_logger()

DEFAULT_FILENAME = "assets.json"


class _ManifestModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class FileAssetPackaging(str, Enum):
    """How a file asset source is packaged before upload."""

    FILE = "file"
    ZIP_DIRECTORY = "zip"


class FileSource(_ManifestModel):
    path: Optional[str] = None
    packaging: FileAssetPackaging = FileAssetPackaging.FILE
    executable: Optional[List[str]] = None


class AwsDestination(_ManifestModel):
    """Credential context shared by every destination kind."""

    region: Optional[str] = None
    assume_role_arn: Optional[str] = None
    assume_role_external_id: Optional[str] = None
    assume_role_additional_options: Optional[Dict[str, Any]] = None


class FileDestination(AwsDestination):
    bucket_name: str
    object_key: str


class DockerCacheOption(_ManifestModel):
    type: str
    params: Optional[Dict[str, str]] = None


class DockerImageSource(_ManifestModel):
    directory: Optional[str] = None
    docker_file: Optional[str] = None
    docker_build_target: Optional[str] = None
    docker_build_args: Optional[Dict[str, str]] = None
    docker_build_secrets: Optional[Dict[str, str]] = None
    docker_build_ssh: Optional[str] = None
    network_mode: Optional[str] = None
    platform: Optional[str] = None
    docker_outputs: Optional[List[str]] = None
    cache_from: Optional[List[DockerCacheOption]] = None
    cache_to: Optional[DockerCacheOption] = None
    cache_disabled: Optional[bool] = None
    executable: Optional[List[str]] = None


class DockerImageDestination(AwsDestination):
    repository_name: str
    image_tag: str


class _FileAsset(_ManifestModel):
    source: FileSource
    destinations: Dict[str, FileDestination] = {}


class _DockerImageAsset(_ManifestModel):
    source: DockerImageSource
    destinations: Dict[str, DockerImageDestination] = {}


class _ManifestDocument(_ManifestModel):
    version: str = ""
    files: Dict[str, _FileAsset] = {}
    docker_images: Dict[str, _DockerImageAsset] = {}


@dataclass(frozen=True)
class DestinationIdentifier:
    """Identifies one destination of one asset."""

    asset_id: str
    destination_id: str = ""

    def __str__(self) -> str:
        if self.destination_id:
            return f"{self.asset_id}:{self.destination_id}"
        return self.asset_id


@dataclass(frozen=True)
class FileManifestEntry:
    id: DestinationIdentifier
    source: FileSource
    destination: FileDestination
    type: ClassVar[str] = "file"


@dataclass(frozen=True)
class DockerImageManifestEntry:
    id: DestinationIdentifier
    source: DockerImageSource
    destination: DockerImageDestination
    type: ClassVar[str] = "container-image"


ManifestEntry = Union[FileManifestEntry, DockerImageManifestEntry]


@dataclass(frozen=True)
class DestinationPattern:
    """Selects entries by asset id and/or destination id (``None`` matches all)."""

    asset_id: Optional[str] = None
    destination_id: Optional[str] = None

    @classmethod
    def parse(cls, text: str) -> "DestinationPattern":
        parts = text.split(":")
        if len(parts) == 1:
            return cls(parts[0] or None)
        if len(parts) == 2:
            return cls(parts[0] or None, parts[1] or None)
        raise ValidationError(
            f"Asset identifier must contain at most 2 ':'-separated parts, got '{text}'"
        )

    def matches(self, identifier: DestinationIdentifier) -> bool:
        if self.asset_id is not None and self.asset_id != identifier.asset_id:
            return False
        if self.destination_id is not None and self.destination_id != identifier.destination_id:
            return False
        return True

    def __str__(self) -> str:
        return f"{self.asset_id or '*'}:{self.destination_id or '*'}"


@dataclass
class AssetManifest:
    """Pre-parsed asset manifest; relative sources resolve against ``directory``."""

    directory: Path
    entries: List[ManifestEntry] = field(default_factory=list)

    @classmethod
    def from_path(cls, path: str | Path) -> "AssetManifest":
        """Load a manifest file, or ``assets.json`` inside a directory."""
        p = Path(path)
        if p.is_dir():
            return cls.from_file(p / DEFAULT_FILENAME)
        return cls.from_file(p)

    @classmethod
    def from_file(cls, file_name: str | Path) -> "AssetManifest":
        path = Path(file_name)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise ConfigurationError(f"Manifest file not found: {path}") from exc
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Manifest file {path} is not valid JSON: {exc}") from exc

        try:
            document = _ManifestDocument.model_validate(raw)
        except SchemaError as exc:
            raise ConfigurationError(
                f"Invalid asset manifest {path}",
                {"errors": exc.error_count()},
            ) from exc

        manifest = cls(directory=path.parent.resolve(), entries=_entries_from(document))
        logger.debug(
            "manifest_loaded",
            path=str(path),
            version=document.version,
            entries=len(manifest.entries),
        )
        return manifest

    def select(self, patterns: Sequence[DestinationPattern]) -> "AssetManifest":
        """Keep only entries matching any pattern; an empty selection keeps all."""
        if not patterns:
            return self

        unmatched = [p for p in patterns if not any(p.matches(e.id) for e in self.entries)]
        if unmatched:
            raise ValidationError(
                "Could not find the following assets: "
                + ", ".join(str(p) for p in unmatched)
            )

        selected = [e for e in self.entries if any(p.matches(e.id) for p in patterns)]
        return AssetManifest(directory=self.directory, entries=selected)

    def list(self) -> List[str]:
        """Describe every entry, one line each."""
        return [describe_entry(entry) for entry in self.entries]


def describe_entry(entry: ManifestEntry) -> str:
    if isinstance(entry, FileManifestEntry):
        source = entry.source.path or " ".join(entry.source.executable or [])
        if entry.source.packaging is FileAssetPackaging.ZIP_DIRECTORY:
            source = f"{source} (zip)"
        target = f"s3://{entry.destination.bucket_name}/{entry.destination.object_key}"
    else:
        source = entry.source.directory or " ".join(entry.source.executable or [])
        target = f"{entry.destination.repository_name}:{entry.destination.image_tag}"

    region = entry.destination.region or "<default region>"
    return f"{entry.id} {entry.type} {source} => {target} ({region})"


def _entries_from(document: _ManifestDocument) -> List[ManifestEntry]:
    entries: List[ManifestEntry] = []
    for asset_id, file_asset in document.files.items():
        for dest_id, file_dest in file_asset.destinations.items():
            entries.append(
                FileManifestEntry(
                    id=DestinationIdentifier(asset_id, dest_id),
                    source=file_asset.source,
                    destination=file_dest,
                )
            )
    for asset_id, image_asset in document.docker_images.items():
        for dest_id, image_dest in image_asset.destinations.items():
            entries.append(
                DockerImageManifestEntry(
                    id=DestinationIdentifier(asset_id, dest_id),
                    source=image_asset.source,
                    destination=image_dest,
                )
            )
    return entries

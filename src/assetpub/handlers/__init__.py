"""Per-asset-kind handlers and handler construction."""

from assetpub.core.errors import ValidationError
from assetpub.handlers.base import AssetHandler, HandlerHost, HandlerOptions, PublishOptions
from assetpub.handlers.buckets import (
    BucketEncryption,
    BucketEncryptionType,
    BucketInformation,
    BucketOwnership,
)
from assetpub.handlers.container_images import ContainerImageAssetHandler, ContainerImageBuilder
from assetpub.handlers.files import EMPTY_ZIP_FILE_SIZE, FileAssetHandler
from assetpub.manifest import (
    AssetManifest,
    DockerImageManifestEntry,
    FileManifestEntry,
    ManifestEntry,
)


def make_asset_handler(
    manifest: AssetManifest,
    entry: ManifestEntry,
    host: HandlerHost,
    options: HandlerOptions = HandlerOptions(),
) -> AssetHandler:
    """Create the handler for ``entry`` based on its kind."""
    if isinstance(entry, FileManifestEntry):
        return FileAssetHandler(manifest.directory, entry, host, options)
    if isinstance(entry, DockerImageManifestEntry):
        return ContainerImageAssetHandler(manifest.directory, entry, host, options)
    raise ValidationError(f"Unrecognized asset type: '{entry!r}'")


__all__ = [
    "AssetHandler",
    "BucketEncryption",
    "BucketEncryptionType",
    "BucketInformation",
    "BucketOwnership",
    "ContainerImageAssetHandler",
    "ContainerImageBuilder",
    "EMPTY_ZIP_FILE_SIZE",
    "FileAssetHandler",
    "HandlerHost",
    "HandlerOptions",
    "PublishOptions",
    "make_asset_handler",
]

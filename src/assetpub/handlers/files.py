"""S3 file asset handler."""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from assetpub.archive import zip_directory
from assetpub.aws import S3Client
from assetpub.core.errors import CrossAccountBucketError, ProviderError, ValidationError
from assetpub.handlers.base import HandlerHost, HandlerOptions, PublishOptions
from assetpub.handlers.buckets import BucketEncryptionType, BucketOwnership
from assetpub.manifest import FileAssetPackaging, FileManifestEntry
from assetpub.placeholders import destination_to_client_options, replace_aws_placeholders
from assetpub.progress import EventType
from assetpub.shell import render_command_line, shell

logger = structlog.get_logger()

# An empty zip archive is exactly this large; objects this size or smaller
# are treated as broken uploads and published again.
EMPTY_ZIP_FILE_SIZE = 22


@dataclass(frozen=True)
class PackagedFile:
    path: Path
    content_type: str


class FileAssetHandler:
    def __init__(
        self,
        work_dir: Path,
        entry: FileManifestEntry,
        host: HandlerHost,
        options: HandlerOptions = HandlerOptions(),
    ) -> None:
        self._work_dir = Path(work_dir)
        self._entry = entry
        self._host = host
        self._options = options
        self._file_cache_root = self._work_dir / ".cache"
        self._packaged: Optional[PackagedFile] = None

    async def build(self) -> None:
        await self._package()

    async def is_published(self) -> bool:
        try:
            destination = await replace_aws_placeholders(self._entry.destination, self._host.aws)
            s3_url = f"s3://{destination.bucket_name}/{destination.object_key}"
            s3 = await self._host.aws.s3_client(
                replace(destination_to_client_options(destination), quiet=True)
            )
            self._host.emit_message(EventType.CHECK, f"Check {s3_url}")

            if await object_exists(s3, destination.bucket_name, destination.object_key):
                self._host.emit_message(EventType.FOUND, f"Found {s3_url}")
                return True
        except Exception as exc:
            self._host.emit_message(EventType.DEBUG, str(exc))
        return False

    async def publish(self, options: PublishOptions = PublishOptions()) -> None:
        destination = await replace_aws_placeholders(self._entry.destination, self._host.aws)
        bucket = destination.bucket_name
        s3_url = f"s3://{bucket}/{destination.object_key}"

        client_options = destination_to_client_options(destination)
        s3 = await self._host.aws.s3_client(client_options)
        self._host.emit_message(EventType.CHECK, f"Check {s3_url}")

        async def account() -> str:
            return (await self._host.aws.discover_target_account(client_options)).account_id

        bucket_info = self._host.bucket_info
        expected_account = None if options.allow_cross_account else await account()
        ownership = await bucket_info.bucket_ownership(s3, bucket, expected_account)
        if ownership is BucketOwnership.DOES_NOT_EXIST:
            raise ProviderError(f"No bucket named '{bucket}'. Is account {await account()} bootstrapped?")
        if ownership is BucketOwnership.NO_ACCESS:
            raise ProviderError(f"Bucket named '{bucket}' exists, but we don't have access to it.")
        if ownership is BucketOwnership.SOMEONE_ELSES_AND_HAVE_ACCESS and not options.allow_cross_account:
            raise CrossAccountBucketError(
                f"Unexpected bucket owner: bucket {bucket} is expected in account "
                f"{expected_account} but resides in a different AWS account. Refusing to "
                "publish across accounts; audit the account if this move was not intentional.",
                {"bucket": bucket, "expected_account": expected_account},
            )

        if await object_exists(s3, bucket, destination.object_key):
            self._host.emit_message(EventType.FOUND, f"Found {s3_url}")
            return

        # Organizations may deny uploads that lack the bucket's encryption headers
        encryption = await bucket_info.bucket_encryption(s3, bucket)
        if encryption.type is BucketEncryptionType.DOES_NOT_EXIST:
            self._host.emit_message(
                EventType.DEBUG, f"No bucket named '{bucket}'. Is account {await account()} bootstrapped?"
            )
        elif encryption.type is BucketEncryptionType.ACCESS_DENIED:
            self._host.emit_message(
                EventType.DEBUG,
                f"Could not read encryption settings of bucket '{bucket}': uploading with default settings.",
            )

        self._host.raise_if_aborted()
        packaged = await self._package()

        self._host.emit_message(EventType.UPLOAD, f"Upload {s3_url}")
        extra_args: Dict[str, Any] = {
            "ContentType": packaged.content_type,
            "ChecksumAlgorithm": "SHA256",
            **encryption.upload_args(),
        }
        await s3.upload(bucket, destination.object_key, packaged.path, extra_args=extra_args)
        logger.info("file_asset_uploaded", asset=str(self._entry.id), url=s3_url)

    async def _package(self) -> PackagedFile:
        if self._packaged is None:
            if self._entry.source.executable:
                self._packaged = await self._package_with_executable(self._entry.source.executable)
            else:
                self._packaged = await self._package_source()
        return self._packaged

    async def _package_source(self) -> PackagedFile:
        source = self._entry.source
        if not source.path:
            raise ValidationError(
                f"'path' is expected in the File asset source, got: {source.model_dump_json()}"
            )

        full_path = (self._work_dir / source.path).resolve()

        if source.packaging is FileAssetPackaging.ZIP_DIRECTORY:
            self._file_cache_root.mkdir(parents=True, exist_ok=True)
            packaged_path = self._file_cache_root / f"{self._entry.id.asset_id}.zip"

            if packaged_path.exists():
                self._host.emit_message(EventType.CACHED, f"From cache {packaged_path}")
                return PackagedFile(packaged_path, "application/zip")

            self._host.emit_message(EventType.BUILD, f"Zip {full_path} -> {packaged_path}")
            await zip_directory(
                full_path, packaged_path, lambda m: self._host.emit_message(EventType.DEBUG, m)
            )
            return PackagedFile(packaged_path, "application/zip")

        content_type = mimetypes.guess_type(full_path.name)[0] or "application/octet-stream"
        return PackagedFile(full_path, content_type)

    async def _package_with_executable(self, executable: list[str]) -> PackagedFile:
        self._host.emit_message(
            EventType.BUILD,
            f"Building asset source using command: '{render_command_line(executable)}'",
        )
        output = await shell(
            executable,
            event_publisher=self._host.emit_message,
            output_destination="ignore",
            cwd=self._work_dir,
        )
        packaged_path = output.strip()
        if not packaged_path:
            raise ProviderError(
                f"Command '{render_command_line(executable)}' did not print the packaged file path"
            )
        return PackagedFile(self._work_dir / packaged_path, "application/zip")


async def object_exists(s3: S3Client, bucket: str, key: str) -> bool:
    """Whether ``key`` exists in ``bucket`` with a usable (non-empty) body.

    Uses ListObjectsV2 rather than HeadObject: a HEAD on a missing key
    creates a negative cache entry that makes the following GET-after-PUT
    eventually consistent. Keys are listed in binary order, so with
    ``Prefix=key`` the key itself is always the first result if present.
    """
    response = await s3.list_objects_v2(bucket, prefix=key, max_keys=1)
    for obj in response.get("Contents") or []:
        if obj.get("Key") == key and (obj.get("Size") is None or obj["Size"] > EMPTY_ZIP_FILE_SIZE):
            return True
    return False

"""Bucket ownership and default-encryption probes, cached per publishing session."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import structlog
from botocore.exceptions import ClientError

from assetpub.aws import S3Client, error_code
from assetpub.cache import AsyncMemo

logger = structlog.get_logger()

_ACCESS_DENIED_CODES = ("AccessDenied", "AllAccessDisabled")


class BucketOwnership(Enum):
    DOES_NOT_EXIST = "does_not_exist"
    MINE = "mine"
    NO_ACCESS = "no_access"
    SOMEONE_ELSES_AND_HAVE_ACCESS = "someone_elses_and_have_access"


class BucketEncryptionType(str, Enum):
    NONE = "no_encryption"
    AES256 = "aes256"
    KMS = "kms"
    ACCESS_DENIED = "access_denied"
    DOES_NOT_EXIST = "does_not_exist"


@dataclass(frozen=True)
class BucketEncryption:
    type: BucketEncryptionType
    kms_key_id: Optional[str] = None

    def upload_args(self) -> dict[str, str]:
        """Server-side encryption parameters to send with an upload."""
        if self.type is BucketEncryptionType.AES256:
            return {"ServerSideEncryption": "AES256"}
        if self.type is BucketEncryptionType.KMS:
            # Without the key id S3 falls back to the AWS managed key
            args = {"ServerSideEncryption": "aws:kms"}
            if self.kms_key_id:
                args["SSEKMSKeyId"] = self.kms_key_id
            return args
        return {}


class BucketInformation:
    """Remembers bucket probes so N assets in one bucket cost one probe."""

    def __init__(self) -> None:
        self._ownerships: AsyncMemo[Tuple[str, Optional[str]], BucketOwnership] = AsyncMemo(
            "bucket_ownership"
        )
        self._encryptions: AsyncMemo[str, BucketEncryption] = AsyncMemo("bucket_encryption")

    async def bucket_ownership(
        self, s3: S3Client, bucket: str, expected_account: str | None = None
    ) -> BucketOwnership:
        return await self._ownerships.get_or_compute(
            (bucket, expected_account),
            lambda: self._resolve_ownership(s3, bucket, expected_account),
        )

    async def bucket_encryption(self, s3: S3Client, bucket: str) -> BucketEncryption:
        return await self._encryptions.get_or_compute(
            bucket, lambda: self._probe_encryption(s3, bucket)
        )

    async def _resolve_ownership(
        self, s3: S3Client, bucket: str, expected_account: str | None
    ) -> BucketOwnership:
        ownership = await self._probe_ownership(s3, bucket)
        if ownership is BucketOwnership.MINE and expected_account:
            # Readable without an owner constraint but not with one: the
            # bucket exists in another account that granted us access.
            scoped = await self._probe_ownership(s3, bucket, expected_account)
            if scoped is BucketOwnership.NO_ACCESS:
                ownership = BucketOwnership.SOMEONE_ELSES_AND_HAVE_ACCESS

        logger.debug("bucket_ownership_resolved", bucket=bucket, ownership=ownership.value)
        return ownership

    async def _probe_ownership(
        self, s3: S3Client, bucket: str, expected_account: str | None = None
    ) -> BucketOwnership:
        try:
            await s3.get_bucket_location(bucket, expected_bucket_owner=expected_account)
            return BucketOwnership.MINE
        except ClientError as exc:
            code = error_code(exc)
            if code == "NoSuchBucket":
                return BucketOwnership.DOES_NOT_EXIST
            if code in _ACCESS_DENIED_CODES:
                return BucketOwnership.NO_ACCESS
            raise

    async def _probe_encryption(self, s3: S3Client, bucket: str) -> BucketEncryption:
        try:
            response = await s3.get_bucket_encryption(bucket)
        except ClientError as exc:
            code = error_code(exc)
            if code == "NoSuchBucket":
                return BucketEncryption(BucketEncryptionType.DOES_NOT_EXIST)
            if code == "ServerSideEncryptionConfigurationNotFoundError":
                return BucketEncryption(BucketEncryptionType.NONE)
            if code in _ACCESS_DENIED_CODES:
                return BucketEncryption(BucketEncryptionType.ACCESS_DENIED)
            raise

        rules = (response.get("ServerSideEncryptionConfiguration") or {}).get("Rules") or []
        apply = (rules[0].get("ApplyServerSideEncryptionByDefault") or {}) if rules else {}
        algorithm = apply.get("SSEAlgorithm")
        if algorithm == "AES256":
            encryption = BucketEncryption(BucketEncryptionType.AES256)
        elif algorithm == "aws:kms":
            encryption = BucketEncryption(BucketEncryptionType.KMS, apply.get("KMSMasterKeyID"))
        else:
            encryption = BucketEncryption(BucketEncryptionType.NONE)

        logger.debug("bucket_encryption_resolved", bucket=bucket, encryption=encryption.type.value)
        return encryption

"""
AWS access for asset publishing.

The publishing core only depends on the ``AwsClient`` protocol and the narrow
client protocols below. ``DefaultAwsClient`` implements them on top of
aioboto3, opening a short-lived client per call the same way the rest of the
codebase talks to AWS.
"""

from __future__ import annotations

import getpass
import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import aioboto3
import structlog
from botocore.config import Config
from botocore.exceptions import ClientError

from assetpub.cache import AsyncMemo
from assetpub.core.errors import ProviderError

logger = structlog.get_logger()

USER_AGENT = "assetpub"

_BOTO_CONFIG = Config(user_agent_extra=USER_AGENT)


@dataclass(frozen=True)
class Account:
    """An AWS account; the partition is needed whenever ARNs are formed."""

    account_id: str
    partition: str


@dataclass(frozen=True)
class ClientOptions:
    region: Optional[str] = None
    assume_role_arn: Optional[str] = None
    assume_role_external_id: Optional[str] = None
    assume_role_additional_options: Optional[Dict[str, Any]] = None
    quiet: bool = False


class S3Client(Protocol):
    async def get_bucket_location(
        self, bucket: str, *, expected_bucket_owner: str | None = None
    ) -> Dict[str, Any]:
        ...

    async def get_bucket_encryption(self, bucket: str) -> Dict[str, Any]:
        ...

    async def list_objects_v2(self, bucket: str, *, prefix: str, max_keys: int) -> Dict[str, Any]:
        ...

    async def upload(
        self, bucket: str, key: str, file_path: Path, *, extra_args: Dict[str, Any]
    ) -> None:
        ...


class EcrClient(Protocol):
    async def describe_images(self, repository_name: str, image_tag: str) -> Dict[str, Any]:
        ...

    async def describe_repositories(self, repository_names: List[str]) -> Dict[str, Any]:
        ...

    async def get_authorization_token(self) -> Dict[str, Any]:
        ...


class SecretsManagerClient(Protocol):
    async def get_secret_value(self, secret_id: str) -> Dict[str, Any]:
        ...


class AwsClient(Protocol):
    """AWS operations required by asset publishing."""

    async def discover_partition(self) -> str:
        ...

    async def discover_default_region(self) -> str:
        ...

    async def discover_current_account(self) -> Account:
        ...

    async def discover_target_account(self, options: ClientOptions) -> Account:
        ...

    async def s3_client(self, options: ClientOptions) -> S3Client:
        ...

    async def ecr_client(self, options: ClientOptions) -> EcrClient:
        ...

    async def secrets_manager_client(self, options: ClientOptions) -> SecretsManagerClient:
        ...


def error_code(exc: BaseException) -> str | None:
    """Return the AWS error code of a botocore ``ClientError``, if any."""
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code")
    return None


class _AioS3Client:
    def __init__(self, session: aioboto3.Session, region: str | None) -> None:
        self._session = session
        self._region = region

    def _client(self) -> Any:
        return self._session.client("s3", region_name=self._region, config=_BOTO_CONFIG)

    async def get_bucket_location(
        self, bucket: str, *, expected_bucket_owner: str | None = None
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"Bucket": bucket}
        if expected_bucket_owner:
            params["ExpectedBucketOwner"] = expected_bucket_owner
        async with self._client() as client:
            return await client.get_bucket_location(**params)

    async def get_bucket_encryption(self, bucket: str) -> Dict[str, Any]:
        async with self._client() as client:
            return await client.get_bucket_encryption(Bucket=bucket)

    async def list_objects_v2(self, bucket: str, *, prefix: str, max_keys: int) -> Dict[str, Any]:
        async with self._client() as client:
            return await client.list_objects_v2(Bucket=bucket, Prefix=prefix, MaxKeys=max_keys)

    async def upload(
        self, bucket: str, key: str, file_path: Path, *, extra_args: Dict[str, Any]
    ) -> None:
        # upload_fileobj switches to multipart for large bodies
        async with self._client() as client:
            with open(file_path, "rb") as body:
                await client.upload_fileobj(body, bucket, key, ExtraArgs=extra_args)


class _AioEcrClient:
    def __init__(self, session: aioboto3.Session, region: str | None) -> None:
        self._session = session
        self._region = region

    def _client(self) -> Any:
        return self._session.client("ecr", region_name=self._region, config=_BOTO_CONFIG)

    async def describe_images(self, repository_name: str, image_tag: str) -> Dict[str, Any]:
        async with self._client() as client:
            return await client.describe_images(
                repositoryName=repository_name,
                imageIds=[{"imageTag": image_tag}],
            )

    async def describe_repositories(self, repository_names: List[str]) -> Dict[str, Any]:
        async with self._client() as client:
            return await client.describe_repositories(repositoryNames=repository_names)

    async def get_authorization_token(self) -> Dict[str, Any]:
        async with self._client() as client:
            return await client.get_authorization_token()


class _AioSecretsManagerClient:
    def __init__(self, session: aioboto3.Session, region: str | None) -> None:
        self._session = session
        self._region = region

    async def get_secret_value(self, secret_id: str) -> Dict[str, Any]:
        async with self._session.client(
            "secretsmanager", region_name=self._region, config=_BOTO_CONFIG
        ) as client:
            return await client.get_secret_value(SecretId=secret_id)


class DefaultAwsClient:
    """AWS client using the default credential chain (optionally a named profile).

    The current account is looked up once per client instance and reused;
    assumed-role sessions are reused per role for the same lifetime.
    """

    def __init__(self, profile: str | None = None, *, default_region: str = "us-east-1") -> None:
        self._profile = profile
        self._default_region = default_region
        self._session = aioboto3.Session(profile_name=profile)
        self._current_account: AsyncMemo[str, Account] = AsyncMemo("current_account")
        self._assumed_sessions: AsyncMemo[str, aioboto3.Session] = AsyncMemo("assumed_sessions")

    async def s3_client(self, options: ClientOptions) -> S3Client:
        session = await self._session_for(options)
        self._log_client("s3", options)
        return _AioS3Client(session, options.region)

    async def ecr_client(self, options: ClientOptions) -> EcrClient:
        session = await self._session_for(options)
        self._log_client("ecr", options)
        return _AioEcrClient(session, options.region)

    async def secrets_manager_client(self, options: ClientOptions) -> SecretsManagerClient:
        session = await self._session_for(options)
        self._log_client("secretsmanager", options)
        return _AioSecretsManagerClient(session, options.region)

    async def discover_partition(self) -> str:
        return (await self.discover_current_account()).partition

    async def discover_default_region(self) -> str:
        return self._session.region_name or self._default_region

    async def discover_current_account(self) -> Account:
        return await self._current_account.get_or_compute(
            "current", lambda: self._get_account(self._session, None)
        )

    async def discover_target_account(self, options: ClientOptions) -> Account:
        session = await self._session_for(options)
        return await self._get_account(session, options.region)

    async def _get_account(self, session: aioboto3.Session, region: str | None) -> Account:
        async with session.client("sts", region_name=region, config=_BOTO_CONFIG) as sts:
            response = await sts.get_caller_identity()

        account_id = response.get("Account")
        arn = response.get("Arn")
        if not account_id or not arn:
            raise ProviderError(f"Unrecognized response from STS: '{response}'")
        account = Account(account_id=account_id, partition=arn.split(":")[1])
        logger.debug("account_discovered", account_id=account.account_id, partition=account.partition)
        return account

    async def _session_for(self, options: ClientOptions) -> aioboto3.Session:
        if not options.assume_role_arn:
            return self._session

        key = json.dumps(
            [
                options.assume_role_arn,
                options.assume_role_external_id,
                options.assume_role_additional_options,
            ],
            sort_keys=True,
            default=str,
        )
        return await self._assumed_sessions.get_or_compute(key, lambda: self._assume_role(options))

    async def _assume_role(self, options: ClientOptions) -> aioboto3.Session:
        params = assume_role_params(options)
        async with self._session.client(
            "sts", region_name=options.region, config=_BOTO_CONFIG
        ) as sts:
            response = await sts.assume_role(**params)

        credentials = response["Credentials"]
        logger.debug("role_assumed", role_arn=options.assume_role_arn)
        return aioboto3.Session(
            aws_access_key_id=credentials["AccessKeyId"],
            aws_secret_access_key=credentials["SecretAccessKey"],
            aws_session_token=credentials["SessionToken"],
            region_name=self._session.region_name,
        )

    def _log_client(self, service: str, options: ClientOptions) -> None:
        if not options.quiet:
            logger.debug(
                "aws_client_created",
                service=service,
                region=options.region,
                assume_role_arn=options.assume_role_arn,
            )


def assume_role_params(options: ClientOptions) -> Dict[str, Any]:
    """Build STS AssumeRole parameters; session tags are marked transitive."""
    params: Dict[str, Any] = {
        "RoleArn": options.assume_role_arn,
        "RoleSessionName": f"{USER_AGENT}-{safe_username()}",
    }
    if options.assume_role_external_id:
        params["ExternalId"] = options.assume_role_external_id

    additional = dict(options.assume_role_additional_options or {})
    tags = additional.get("Tags")
    if tags:
        params["TransitiveTagKeys"] = [t["Key"] for t in tags]
    params.update(additional)
    return params


def safe_username() -> str:
    """Return the username with characters invalid for a RoleSessionName replaced."""
    try:
        return re.sub(r"[^\w+=,.@-]", "@", getpass.getuser())
    except (OSError, KeyError):
        return "noname"

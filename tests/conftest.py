"""Root test configuration."""

import base64
import json
import logging
from pathlib import Path
from typing import Any, Callable, Optional

import pytest
import structlog
from botocore.exceptions import ClientError

from assetpub.aws import Account, ClientOptions
from assetpub.config import get_settings
from assetpub.core.errors import ProcessFailedError
from assetpub.docker import DockerFactory
from assetpub.docker_credentials import clear_credentials_config_cache
from assetpub.handlers import HandlerHost
from assetpub.progress import EventType, ProgressEvent

ACCOUNT = "123456789012"
OTHER_ACCOUNT = "999999999999"
REGION = "us-east-1"


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Keep tests away from the user's environment and credential files."""
    for name in ("ASSETPUB_PROFILE", "ASSETPUB_DOCKER_COMMAND", "ASSETPUB_PUBLISH_CONCURRENCY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ASSETPUB_DOCKER_CREDS_FILE", str(tmp_path / "no-docker-creds.json"))
    get_settings.cache_clear()
    clear_credentials_config_cache()
    yield
    get_settings.cache_clear()
    clear_credentials_config_cache()


def client_error(code: str, operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": f"{code} raised"}}, operation)


class FakeS3:
    """In-memory S3 with just enough behaviour for the file handler."""

    def __init__(self) -> None:
        self.buckets: dict[str, dict[str, Any]] = {}
        self.objects: dict[tuple[str, str], int] = {}
        self.uploads: list[dict[str, Any]] = []
        self.calls: list[tuple[Any, ...]] = []

    def add_bucket(
        self,
        name: str,
        *,
        owner: str = ACCOUNT,
        encryption: Optional[dict[str, str]] = None,
        encryption_error: Optional[str] = None,
    ) -> None:
        self.buckets[name] = {
            "owner": owner,
            "encryption": encryption,
            "encryption_error": encryption_error,
        }

    def count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)

    async def get_bucket_location(self, bucket: str, *, expected_bucket_owner: Optional[str] = None):
        self.calls.append(("get_bucket_location", bucket, expected_bucket_owner))
        info = self.buckets.get(bucket)
        if info is None:
            raise client_error("NoSuchBucket", "GetBucketLocation")
        if expected_bucket_owner and expected_bucket_owner != info["owner"]:
            raise client_error("AccessDenied", "GetBucketLocation")
        return {"LocationConstraint": None}

    async def get_bucket_encryption(self, bucket: str):
        self.calls.append(("get_bucket_encryption", bucket))
        info = self.buckets.get(bucket)
        if info is None:
            raise client_error("NoSuchBucket", "GetBucketEncryption")
        if info["encryption_error"]:
            raise client_error(info["encryption_error"], "GetBucketEncryption")
        if info["encryption"] is None:
            raise client_error("ServerSideEncryptionConfigurationNotFoundError", "GetBucketEncryption")
        return {
            "ServerSideEncryptionConfiguration": {
                "Rules": [{"ApplyServerSideEncryptionByDefault": info["encryption"]}]
            }
        }

    async def list_objects_v2(self, bucket: str, *, prefix: str, max_keys: int):
        self.calls.append(("list_objects_v2", bucket, prefix))
        keys = sorted(k for (b, k) in self.objects if b == bucket and k.startswith(prefix))
        contents = [{"Key": k, "Size": self.objects[(bucket, k)]} for k in keys[:max_keys]]
        return {"Contents": contents} if contents else {"KeyCount": 0}

    async def upload(self, bucket: str, key: str, file_path: Path, *, extra_args: dict[str, Any]):
        self.calls.append(("upload", bucket, key))
        body = Path(file_path).read_bytes()
        self.uploads.append({"bucket": bucket, "key": key, "body": body, "extra_args": extra_args})
        self.objects[(bucket, key)] = len(body)


class FakeEcr:
    def __init__(self, account: str = ACCOUNT, region: str = REGION) -> None:
        self.account = account
        self.region = region
        self.repositories: dict[str, set[str]] = {}
        self.calls: list[tuple[Any, ...]] = []

    @property
    def registry(self) -> str:
        return f"{self.account}.dkr.ecr.{self.region}.amazonaws.com"

    def add_repository(self, name: str, tags: tuple[str, ...] = ()) -> str:
        self.repositories[name] = set(tags)
        return f"{self.registry}/{name}"

    async def describe_repositories(self, repository_names: list[str]):
        self.calls.append(("describe_repositories", tuple(repository_names)))
        name = repository_names[0]
        if name not in self.repositories:
            raise client_error("RepositoryNotFoundException", "DescribeRepositories")
        return {"repositories": [{"repositoryName": name, "repositoryUri": f"{self.registry}/{name}"}]}

    async def describe_images(self, repository_name: str, image_tag: str):
        self.calls.append(("describe_images", repository_name, image_tag))
        if image_tag not in self.repositories.get(repository_name, set()):
            raise client_error("ImageNotFoundException", "DescribeImages")
        return {"imageDetails": [{"imageTags": [image_tag]}]}

    async def get_authorization_token(self):
        self.calls.append(("get_authorization_token",))
        token = base64.b64encode(b"AWS:ecr-password").decode("ascii")
        return {
            "authorizationData": [
                {"authorizationToken": token, "proxyEndpoint": f"https://{self.registry}"}
            ]
        }


class FakeSecretsManager:
    def __init__(self) -> None:
        self.secrets: dict[str, str] = {}
        self.calls: list[str] = []

    async def get_secret_value(self, secret_id: str):
        self.calls.append(secret_id)
        return {"SecretString": self.secrets[secret_id]} if secret_id in self.secrets else {}


class FakeAws:
    """AwsClient double recording identity lookups and client options."""

    def __init__(
        self,
        account_id: str = ACCOUNT,
        partition: str = "aws",
        region: str = REGION,
        target_accounts: Optional[dict[str, str]] = None,
    ) -> None:
        self.account_id = account_id
        self.partition = partition
        self.region = region
        self.target_accounts = target_accounts or {}
        self.s3 = FakeS3()
        self.ecr = FakeEcr(account_id, region)
        self.secrets = FakeSecretsManager()
        self.client_options: list[ClientOptions] = []
        self.current_account_lookups = 0
        self.target_account_lookups: list[ClientOptions] = []

    async def discover_partition(self) -> str:
        return self.partition

    async def discover_default_region(self) -> str:
        return self.region

    async def discover_current_account(self) -> Account:
        self.current_account_lookups += 1
        return Account(self.account_id, self.partition)

    async def discover_target_account(self, options: ClientOptions) -> Account:
        self.target_account_lookups.append(options)
        account_id = self.target_accounts.get(options.assume_role_arn or "", self.account_id)
        return Account(account_id, self.partition)

    async def s3_client(self, options: ClientOptions) -> FakeS3:
        self.client_options.append(options)
        return self.s3

    async def ecr_client(self, options: ClientOptions) -> FakeEcr:
        self.client_options.append(options)
        return self.ecr

    async def secrets_manager_client(self, options: ClientOptions) -> FakeSecretsManager:
        self.client_options.append(options)
        return self.secrets


class RecordingListener:
    """Progress listener keeping every event; optionally aborts on a condition."""

    def __init__(self, abort_when: Optional[Callable[[EventType, ProgressEvent], bool]] = None) -> None:
        self.events: list[ProgressEvent] = []
        self._abort_when = abort_when

    def on_publish_event(self, event_type: EventType, event: ProgressEvent) -> None:
        self.events.append(event)
        if self._abort_when is not None and self._abort_when(event_type, event):
            event.abort()

    @property
    def types(self) -> list[EventType]:
        return [e.type for e in self.events]

    @property
    def messages(self) -> list[str]:
        return [e.message for e in self.events]

    def of_type(self, event_type: EventType) -> list[str]:
        return [e.message for e in self.events if e.type is event_type]


class FakeShell:
    """Stands in for ``assetpub.shell.shell`` and records every command."""

    def __init__(self) -> None:
        self.commands: list[list[str]] = []
        self.calls: list[dict[str, Any]] = []
        self.local_images: set[str] = set()
        self.outputs: dict[str, str] = {}

    async def __call__(
        self,
        command,
        *,
        event_publisher,
        output_destination="stdio",
        cwd=None,
        env=None,
        input=None,
    ) -> str:
        command = list(command)
        self.commands.append(command)
        self.calls.append({"command": command, "cwd": cwd, "env": env, "input": input})
        event_publisher(EventType.DEBUG, " ".join(command))

        if command[1:2] == ["inspect"] and command[2] not in self.local_images:
            raise ProcessFailedError(f"No such image: {command[2]}", exit_code=1)
        if command[1:2] == ["build"]:
            self.local_images.add(command[command.index("--tag") + 1])
        return self.outputs.get(command[0], "")

    def subcommands(self) -> list[str]:
        return [c[1] for c in self.commands if c[0] == "docker"]


@pytest.fixture
def fake_aws() -> FakeAws:
    return FakeAws()


@pytest.fixture
def fake_shell(monkeypatch) -> FakeShell:
    fake = FakeShell()
    monkeypatch.setattr("assetpub.docker.shell", fake)
    monkeypatch.setattr("assetpub.handlers.container_images.shell", fake)
    monkeypatch.setattr("assetpub.handlers.files.shell", fake)
    return fake


@pytest.fixture
def docker_factory(fake_aws) -> DockerFactory:
    return DockerFactory(fake_aws, command="docker", credentials_loader=lambda: None)


@pytest.fixture
def host_factory(fake_aws, docker_factory):
    """Build a HandlerHost whose events land in the returned list."""

    def _make(aborted: Callable[[], bool] = lambda: False):
        events: list[tuple[EventType, str]] = []
        host = HandlerHost(
            aws=fake_aws,
            emit_message=lambda t, m: events.append((t, m)),
            is_aborted=aborted,
            docker_factory=docker_factory,
        )
        return host, events

    return _make


@pytest.fixture
def write_manifest(tmp_path):
    """Write an assets.json document into a directory and return the directory."""

    def _write(document: dict[str, Any], directory: Optional[Path] = None) -> Path:
        target = directory or tmp_path
        target.mkdir(parents=True, exist_ok=True)
        (target / "assets.json").write_text(json.dumps(document), encoding="utf-8")
        return target

    return _write

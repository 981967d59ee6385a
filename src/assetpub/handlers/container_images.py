"""ECR container image asset handler."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog
from botocore.exceptions import ClientError

from assetpub.aws import EcrClient, error_code
from assetpub.cache import AsyncMemo
from assetpub.core.errors import ConfigurationError, ProviderError, ValidationError
from assetpub.docker import Docker, DockerBuildOptions
from assetpub.handlers.base import HandlerHost, HandlerOptions, PublishOptions
from assetpub.manifest import DockerImageManifestEntry
from assetpub.placeholders import destination_to_client_options, replace_aws_placeholders
from assetpub.progress import EventType
from assetpub.shell import render_command_line, shell

logger = structlog.get_logger()


@dataclass(frozen=True)
class _ContainerImageAssetInit:
    ecr: EcrClient
    repo_uri: str
    image_uri: str
    destination_already_exists: bool


class ContainerImageAssetHandler:
    def __init__(
        self,
        work_dir: Path,
        entry: DockerImageManifestEntry,
        host: HandlerHost,
        options: HandlerOptions = HandlerOptions(),
    ) -> None:
        self._work_dir = Path(work_dir)
        self._entry = entry
        self._host = host
        self._options = options
        self._init: AsyncMemo[str, _ContainerImageAssetInit] = AsyncMemo("container_image_init")

    async def build(self) -> None:
        init = await self._init_once()
        if init.destination_already_exists:
            return

        self._host.raise_if_aborted()
        docker = await self._host.docker_factory.for_build(
            init.repo_uri,
            init.ecr,
            event_publisher=self._host.emit_message,
            output_destination=self._options.subprocess_output_destination,
        )

        builder = ContainerImageBuilder(docker, self._work_dir, self._entry, self._host, self._options)
        local_tag = await builder.build()

        self._host.raise_if_aborted()
        await docker.tag(local_tag, init.image_uri)

    async def is_published(self) -> bool:
        try:
            init = await self._init_once()
            return init.destination_already_exists
        except Exception as exc:
            self._host.emit_message(EventType.DEBUG, str(exc))
        return False

    async def publish(self, options: PublishOptions = PublishOptions()) -> None:
        init = await self._init_once()
        if init.destination_already_exists:
            return

        self._host.raise_if_aborted()
        docker = await self._host.docker_factory.for_ecr_push(
            init.repo_uri,
            init.ecr,
            event_publisher=self._host.emit_message,
            output_destination=self._options.subprocess_output_destination,
        )

        self._host.raise_if_aborted()
        self._host.emit_message(EventType.UPLOAD, f"Push {init.image_uri}")
        await docker.push(init.image_uri)
        logger.info("container_image_pushed", asset=str(self._entry.id), image_uri=init.image_uri)

    async def _init_once(self) -> _ContainerImageAssetInit:
        return await self._init.get_or_compute(str(self._entry.id), self._initialize)

    async def _initialize(self) -> _ContainerImageAssetInit:
        destination = await replace_aws_placeholders(self._entry.destination, self._host.aws)
        client_options = destination_to_client_options(destination)
        ecr = await self._host.aws.ecr_client(client_options)

        repo_uri = await repository_uri(ecr, destination.repository_name)
        if not repo_uri:
            account = (await self._host.aws.discover_target_account(client_options)).account_id
            raise ConfigurationError(
                f"No ECR repository named '{destination.repository_name}' in account "
                f"{account}. Is this account bootstrapped?"
            )

        image_uri = f"{repo_uri}:{destination.image_tag}"
        self._host.emit_message(EventType.CHECK, f"Check {image_uri}")

        exists = await image_exists(ecr, destination.repository_name, destination.image_tag)
        if exists:
            self._host.emit_message(EventType.FOUND, f"Found {image_uri}")

        return _ContainerImageAssetInit(
            ecr=ecr,
            repo_uri=repo_uri,
            image_uri=image_uri,
            destination_already_exists=exists,
        )


class ContainerImageBuilder:
    """Produces a local image for an entry, either with docker or an external command."""

    def __init__(
        self,
        docker: Docker,
        work_dir: Path,
        entry: DockerImageManifestEntry,
        host: HandlerHost,
        options: HandlerOptions = HandlerOptions(),
    ) -> None:
        self._docker = docker
        self._work_dir = work_dir
        self._entry = entry
        self._host = host
        self._options = options

    async def build(self) -> str:
        """Build the image and return the local reference to tag and push."""
        source = self._entry.source
        if source.executable:
            return await self._build_external(source.executable)
        return await self._build_directory()

    async def _build_directory(self) -> str:
        source = self._entry.source
        local_tag = f"cdkasset-{self._entry.id.asset_id.lower()}"

        if await self._docker.exists(local_tag):
            self._host.emit_message(EventType.CACHED, f"Cached {local_tag}")
            return local_tag

        if not source.directory:
            raise ValidationError(
                "'directory' is expected in the DockerImage asset source, got: "
                f"{source.model_dump_json()}"
            )

        full_path = (self._work_dir / source.directory).resolve()
        if not full_path.exists():
            raise ValidationError(f"Cannot find image directory at {full_path}")

        self._host.raise_if_aborted()
        self._host.emit_message(EventType.BUILD, f"Building Docker image at {full_path}")
        await self._docker.build(
            DockerBuildOptions(
                directory=str(full_path),
                tag=local_tag,
                build_args=source.docker_build_args,
                build_secrets=source.docker_build_secrets,
                build_ssh=source.docker_build_ssh,
                target=source.docker_build_target,
                file=source.docker_file,
                network_mode=source.network_mode,
                platform=source.platform,
                outputs=source.docker_outputs,
                cache_from=source.cache_from,
                cache_to=source.cache_to,
                cache_disabled=bool(source.cache_disabled),
            )
        )
        return local_tag

    async def _build_external(self, executable: list[str]) -> str:
        command = render_command_line(executable)
        self._host.raise_if_aborted()
        self._host.emit_message(EventType.BUILD, f"Building Docker image using command '{command}'")

        output = await shell(
            executable,
            event_publisher=self._host.emit_message,
            output_destination="ignore",
            cwd=self._work_dir,
        )
        image = output.strip()
        if not image:
            raise ProviderError(f"Command '{command}' did not print an image reference")
        return image


async def repository_uri(ecr: EcrClient, repository_name: str) -> Optional[str]:
    """Return the URI of ``repository_name``, or None when it does not exist."""
    try:
        response = await ecr.describe_repositories([repository_name])
    except ClientError as exc:
        if error_code(exc) == "RepositoryNotFoundException":
            return None
        raise
    repositories = response.get("repositories") or []
    return repositories[0].get("repositoryUri") if repositories else None


async def image_exists(ecr: EcrClient, repository_name: str, image_tag: str) -> bool:
    try:
        await ecr.describe_images(repository_name, image_tag)
        return True
    except ClientError as exc:
        if error_code(exc) == "ImageNotFoundException":
            return False
        raise

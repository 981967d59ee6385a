"""Docker CLI backend used to build and push container image assets."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import structlog

from assetpub.aws import AwsClient, EcrClient
from assetpub.cache import AsyncMemo
from assetpub.config import get_settings
from assetpub.core.errors import ProcessFailedError
from assetpub.docker_credentials import (
    DockerCredentialsConfig,
    DockerLoginCredentials,
    credentials_config,
    fetch_docker_login_credentials,
    obtain_ecr_credentials,
)
from assetpub.manifest import DockerCacheOption
from assetpub.shell import EventPublisher, SubprocessOutputDestination, shell

logger = structlog.get_logger()

# "docker inspect" exit codes meaning the image is absent (1) or the daemon
# rejected the reference (125)
_IMAGE_MISSING_EXIT_CODES = (1, 125)


@dataclass(frozen=True)
class DockerBuildOptions:
    directory: str
    tag: str
    build_args: Optional[Dict[str, str]] = None
    build_secrets: Optional[Dict[str, str]] = None
    build_ssh: Optional[str] = None
    target: Optional[str] = None
    file: Optional[str] = None
    network_mode: Optional[str] = None
    platform: Optional[str] = None
    outputs: Optional[List[str]] = None
    cache_from: Optional[List[DockerCacheOption]] = None
    cache_to: Optional[DockerCacheOption] = None
    cache_disabled: bool = False


def cache_option_to_flag(option: DockerCacheOption) -> str:
    """Render a cache option as ``type=<type>[,key=value...]``."""
    flag = f"type={option.type}"
    for key, value in (option.params or {}).items():
        flag += f",{key}={value}"
    return flag


def build_arguments(options: DockerBuildOptions) -> List[str]:
    args: List[str] = ["build"]
    for key, value in (options.build_args or {}).items():
        args += ["--build-arg", f"{key}={value}"]
    for key, value in (options.build_secrets or {}).items():
        args += ["--secret", f"id={key},{value}"]
    if options.build_ssh:
        args += ["--ssh", options.build_ssh]
    args += ["--tag", options.tag]
    if options.target:
        args += ["--target", options.target]
    if options.file:
        args += ["--file", options.file]
    if options.network_mode:
        args += ["--network", options.network_mode]
    if options.platform:
        args += ["--platform", options.platform]
    for output in options.outputs or []:
        args.append(f"--output={output}")
    for cache in options.cache_from or []:
        args += ["--cache-from", cache_option_to_flag(cache)]
    if options.cache_to:
        args += ["--cache-to", cache_option_to_flag(options.cache_to)]
    if options.cache_disabled:
        args.append("--no-cache")
    args.append(".")
    return args


class Docker:
    """Thin async wrapper around the docker command line."""

    def __init__(
        self,
        event_publisher: EventPublisher,
        output_destination: SubprocessOutputDestination = "stdio",
        command: str = "docker",
    ) -> None:
        self._event_publisher = event_publisher
        self._output_destination = output_destination
        self._command = command

    async def exists(self, tag: str) -> bool:
        """Whether an image with ``tag`` is present in the local daemon."""
        try:
            await self._execute(["inspect", tag], output_destination="ignore")
            return True
        except ProcessFailedError as exc:
            if exc.process_exit_code in _IMAGE_MISSING_EXIT_CODES:
                return False
            raise

    async def build(self, options: DockerBuildOptions) -> None:
        await self._execute(
            build_arguments(options),
            cwd=options.directory,
            env={"BUILDX_NO_DEFAULT_ATTESTATIONS": "1"},
        )

    async def login(self, ecr: EcrClient) -> None:
        """Log in to the ECR registry ``ecr`` points at."""
        credentials = await obtain_ecr_credentials(ecr)
        await self.login_with(
            DockerLoginCredentials(username=credentials.username, secret=credentials.password),
            credentials.endpoint,
        )

    async def login_with(self, credentials: DockerLoginCredentials, endpoint: str) -> None:
        # Password is passed on stdin so it never shows up in the process list
        await self._execute(
            ["login", "--username", credentials.username, "--password-stdin", endpoint],
            input=credentials.secret,
            output_destination="ignore",
        )
        logger.debug("docker_logged_in", endpoint=endpoint)

    async def tag(self, source_tag: str, target_tag: str) -> None:
        await self._execute(["tag", source_tag, target_tag])

    async def push(self, tag: str) -> None:
        await self._execute(["push", tag])

    async def _execute(
        self,
        args: Sequence[str],
        *,
        cwd: str | Path | None = None,
        env: Optional[Dict[str, str]] = None,
        input: str | None = None,
        output_destination: SubprocessOutputDestination | None = None,
    ) -> str:
        return await shell(
            [self._command, *args],
            event_publisher=self._event_publisher,
            output_destination=output_destination or self._output_destination,
            cwd=cwd,
            env=env,
            input=input,
        )


class DockerFactory:
    """Hands out logged-in ``Docker`` instances.

    Logins are remembered per registry domain for the lifetime of the
    factory, so a publishing run with many images for the same registry
    logs in once. When a registry credentials file is configured, every
    domain it lists is logged into once before the first build.
    """

    def __init__(
        self,
        aws: AwsClient | None = None,
        *,
        command: str | None = None,
        credentials_loader: Callable[[], Optional[DockerCredentialsConfig]] = credentials_config,
    ) -> None:
        self._aws = aws
        self._command = command or get_settings().docker_command
        self._credentials_loader = credentials_loader
        self._logins: AsyncMemo[str, None] = AsyncMemo("docker_logins")

    async def for_build(
        self,
        repo_uri: str,
        ecr: EcrClient,
        *,
        event_publisher: EventPublisher,
        output_destination: SubprocessOutputDestination = "stdio",
    ) -> Docker:
        docker = Docker(event_publisher, output_destination, self._command)
        await self._login_configured_domains(docker)
        await self._login_once(docker, repo_uri, ecr)
        return docker

    async def for_ecr_push(
        self,
        repo_uri: str,
        ecr: EcrClient,
        *,
        event_publisher: EventPublisher,
        output_destination: SubprocessOutputDestination = "stdio",
    ) -> Docker:
        docker = Docker(event_publisher, output_destination, self._command)
        await self._login_once(docker, repo_uri, ecr)
        return docker

    async def _login_once(self, docker: Docker, repo_uri: str, ecr: EcrClient) -> None:
        domain = repo_uri.split("/")[0]
        await self._logins.get_or_compute(domain, lambda: docker.login(ecr))

    async def _login_configured_domains(self, docker: Docker) -> None:
        config = self._credentials_loader()
        if config is None or self._aws is None:
            return

        aws = self._aws
        for domain in config.domain_credentials:

            async def login(domain: str = domain) -> None:
                credentials = await fetch_docker_login_credentials(aws, config, domain)
                await docker.login_with(credentials, domain)

            await self._logins.get_or_compute(domain, login)

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Protocol

from assetpub.aws import AwsClient
from assetpub.core.errors import PublishAbortedError
from assetpub.docker import DockerFactory
from assetpub.handlers.buckets import BucketInformation
from assetpub.progress import EventEmitter
from assetpub.shell import SubprocessOutputDestination


@dataclass(frozen=True)
class PublishOptions:
    """Options for publishing an asset."""

    allow_cross_account: bool = True
    """Allow publishing to a bucket owned by an account other than the target account."""


@dataclass(frozen=True)
class HandlerOptions:
    subprocess_output_destination: SubprocessOutputDestination = "stdio"


class AssetHandler(Protocol):
    """Builds and publishes a single manifest entry."""

    async def build(self) -> None:
        ...

    async def publish(self, options: PublishOptions = PublishOptions()) -> None:
        ...

    async def is_published(self) -> bool:
        ...


@dataclass
class HandlerHost:
    """Services shared by every handler of one publishing session.

    The bucket and registry-login caches live here, so their lifetime is the
    lifetime of the session that owns the host.
    """

    aws: AwsClient
    emit_message: EventEmitter
    is_aborted: Callable[[], bool]
    docker_factory: DockerFactory
    bucket_info: BucketInformation = field(default_factory=BucketInformation)

    @property
    def aborted(self) -> bool:
        return self.is_aborted()

    def raise_if_aborted(self) -> None:
        if self.is_aborted():
            raise PublishAbortedError()

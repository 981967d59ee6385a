"""
Asset publishing orchestrator.

Walks the entries of a manifest and drives each one through its handler's
build and publish steps, serially or with bounded parallelism. Failures are
isolated per asset and reported at the end; progress goes to an optional
listener which may cancel the run cooperatively.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List

import structlog

from assetpub.aws import AwsClient
from assetpub.config import get_settings
from assetpub.core.errors import PublishAbortedError, PublishFailedError
from assetpub.docker import DockerFactory
from assetpub.handlers import (
    AssetHandler,
    HandlerHost,
    HandlerOptions,
    PublishOptions,
    make_asset_handler,
)
from assetpub.limiter import ConcurrencyLimiter
from assetpub.manifest import AssetManifest, DestinationIdentifier, ManifestEntry
from assetpub.progress import EventType, ProgressChannel, PublishProgressListener, current_asset
from assetpub.shell import SubprocessOutputDestination

logger = structlog.get_logger()


@dataclass(frozen=True)
class FailedAsset:
    asset: ManifestEntry
    error: BaseException


class AssetPublishing:
    """Publish the entries of an asset manifest."""

    def __init__(
        self,
        manifest: AssetManifest,
        *,
        aws: AwsClient,
        progress_listener: PublishProgressListener | None = None,
        throw_on_error: bool = True,
        publish_in_parallel: bool = False,
        build_assets: bool = True,
        publish_assets: bool = True,
        subprocess_output_destination: SubprocessOutputDestination = "stdio",
        docker_factory: DockerFactory | None = None,
        concurrency: int | None = None,
    ) -> None:
        self._manifest = manifest
        self._entries: List[ManifestEntry] = list(manifest.entries)
        self._throw_on_error = throw_on_error
        self._publish_in_parallel = publish_in_parallel
        self._build_assets = build_assets
        self._publish_assets = publish_assets
        if concurrency is None:
            concurrency = get_settings().publish_concurrency
        if concurrency < 1:
            raise ValueError(f"concurrency must be a positive integer, got {concurrency}")
        self._concurrency = concurrency
        self._handler_options = HandlerOptions(subprocess_output_destination=subprocess_output_destination)

        self.total_operations = len(self._entries)
        self.completed_operations = 0
        self._failures: List[FailedAsset] = []
        self._handlers: Dict[DestinationIdentifier, AssetHandler] = {}

        self._channel = ProgressChannel(
            progress_listener, percent_complete=lambda: self.percent_complete
        )
        self._host = HandlerHost(
            aws=aws,
            emit_message=self._channel.emit,
            is_aborted=lambda: self._channel.aborted,
            docker_factory=docker_factory or DockerFactory(aws),
        )

    @property
    def failures(self) -> List[FailedAsset]:
        return list(self._failures)

    @property
    def has_failures(self) -> bool:
        return bool(self._failures)

    @property
    def message(self) -> str:
        """The most recently emitted progress message."""
        return self._channel.message

    @property
    def percent_complete(self) -> int:
        if self.total_operations == 0:
            return 100
        return self.completed_operations * 100 // self.total_operations

    @property
    def aborted(self) -> bool:
        return self._channel.aborted

    @property
    def host(self) -> HandlerHost:
        return self._host

    def abort(self) -> None:
        """Stop starting new work; running handlers stop at their next checkpoint."""
        self._channel.abort()

    async def publish(self, options: PublishOptions = PublishOptions()) -> None:
        """Build and publish every entry of the manifest.

        Raises PublishFailedError afterwards when any entry failed and
        ``throw_on_error`` is set.
        """
        logger.info(
            "publish_started",
            entries=self.total_operations,
            parallel=self._publish_in_parallel,
        )

        if self._publish_in_parallel:
            await self._publish_parallel(options)
        else:
            for entry in self._entries:
                if not await self._publish_asset(entry, options):
                    break

        logger.info(
            "publish_finished",
            completed=self.completed_operations,
            failed=len(self._failures),
            aborted=self.aborted,
        )
        if self._throw_on_error and self._failures:
            raise PublishFailedError(self._failures)

    async def build_entry(self, entry: ManifestEntry) -> bool:
        """Build a single entry. Returns False when publishing should stop."""
        return await self._run_phase(
            entry, f"Building {entry.id}", f"Built {entry.id}", lambda h: h.build()
        )

    async def publish_entry(
        self, entry: ManifestEntry, options: PublishOptions = PublishOptions()
    ) -> bool:
        """Publish a single entry. Returns False when publishing should stop."""
        return await self._run_phase(
            entry, f"Publishing {entry.id}", f"Published {entry.id}", lambda h: h.publish(options)
        )

    async def is_entry_published(self, entry: ManifestEntry) -> bool:
        return await self._asset_handler(entry).is_published()

    async def _publish_parallel(self, options: PublishOptions) -> None:
        limiter = ConcurrencyLimiter(self._concurrency)

        # Entries still queued after an abort return early without emitting start
        await asyncio.gather(
            *(
                limiter.submit(lambda e=entry: self._publish_asset(e, options))
                for entry in self._entries
            )
        )

    async def _publish_asset(self, entry: ManifestEntry, options: PublishOptions) -> bool:
        async def build_and_publish(handler: AssetHandler) -> None:
            if self._build_assets:
                await handler.build()
            if self._publish_assets:
                self._host.raise_if_aborted()
                await handler.publish(options)

        return await self._run_phase(
            entry, f"Publishing {entry.id}", f"Published {entry.id}", build_and_publish
        )

    async def _run_phase(
        self,
        entry: ManifestEntry,
        start_message: str,
        success_message: str,
        action: Callable[[AssetHandler], Awaitable[None]],
    ) -> bool:
        if self.aborted:
            return False

        token = current_asset.set(entry)
        try:
            with structlog.contextvars.bound_contextvars(asset=str(entry.id)):
                try:
                    if self._channel.emit(EventType.START, start_message):
                        return False

                    await action(self._asset_handler(entry))

                    if self.aborted:
                        raise PublishAbortedError()
                except Exception as exc:
                    self.completed_operations += 1
                    logger.warning("asset_failed", error_type=type(exc).__name__, error=str(exc))
                    stop = self._channel.emit(EventType.FAIL, str(exc))
                    self._failures.append(FailedAsset(asset=entry, error=exc))
                    return not stop

                self.completed_operations += 1
                return not self._channel.emit(EventType.SUCCESS, success_message)
        finally:
            current_asset.reset(token)

    def _asset_handler(self, entry: ManifestEntry) -> AssetHandler:
        handler = self._handlers.get(entry.id)
        if handler is None:
            handler = make_asset_handler(self._manifest, entry, self._host, self._handler_options)
            self._handlers[entry.id] = handler
        return handler

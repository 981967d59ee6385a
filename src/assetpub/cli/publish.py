"""
Publish command.

Loads a manifest, optionally narrows it to the requested assets and
publishes everything with console progress reporting.
"""

from __future__ import annotations

import argparse
import asyncio
from typing import Sequence

from assetpub.aws import DefaultAwsClient
from assetpub.cli.ux import LogLevel, error, log, success
from assetpub.config import get_settings
from assetpub.core.errors import ExitCode
from assetpub.handlers import PublishOptions
from assetpub.logging import bind_context
from assetpub.manifest import AssetManifest, DestinationPattern
from assetpub.progress import EventType, ProgressEvent
from assetpub.publishing import AssetPublishing

EVENT_TO_LEVEL: dict[EventType, LogLevel] = {
    EventType.BUILD: "verbose",
    EventType.CACHED: "verbose",
    EventType.CHECK: "verbose",
    EventType.DEBUG: "verbose",
    EventType.FAIL: "error",
    EventType.FOUND: "verbose",
    EventType.START: "info",
    EventType.SUCCESS: "info",
    EventType.UPLOAD: "verbose",
    EventType.SHELL_OPEN: "verbose",
    EventType.SHELL_DATA: "verbose",
    EventType.SHELL_CLOSE: "verbose",
}


class ConsoleProgress:
    """Progress listener printing ``[pct%] type: message`` lines."""

    def on_publish_event(self, event_type: EventType, event: ProgressEvent) -> None:
        log(
            EVENT_TO_LEVEL[event_type],
            f"[{event.percent_complete}%] {event_type.value}: {event.message}",
        )


def publish_command(
    path: str,
    assets: Sequence[str] | None = None,
    profile: str | None = None,
    parallel: bool = False,
    allow_cross_account: bool = True,
) -> int:
    """Publish the assets of the manifest at ``path``."""
    settings = get_settings()
    command_logger = bind_context(command="publish", manifest=path)

    manifest = AssetManifest.from_path(path)
    log("verbose", f"Loaded manifest from {path}: {len(manifest.entries)} assets found")

    if assets:
        manifest = manifest.select([DestinationPattern.parse(a) for a in assets])
        log("verbose", f"Applied selection: {len(manifest.entries)} assets selected.")

    publishing = AssetPublishing(
        manifest,
        aws=DefaultAwsClient(profile or settings.profile, default_region=settings.default_region),
        progress_listener=ConsoleProgress(),
        throw_on_error=False,
        publish_in_parallel=parallel,
        concurrency=settings.publish_concurrency,
    )
    asyncio.run(publishing.publish(PublishOptions(allow_cross_account=allow_cross_account)))
    command_logger.info(
        "publish_command_finished",
        assets=len(manifest.entries),
        failures=len(publishing.failures),
    )

    if publishing.has_failures:
        for failure in publishing.failures:
            error(f"Failure: {failure.asset.id}: {failure.error}")
        return ExitCode.FAILURES

    success(f"Published {len(manifest.entries)} assets")
    return ExitCode.SUCCESS


def register_publish_parser(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("publish", help="Publish assets in the given manifest")
    parser.add_argument(
        "assets",
        nargs="*",
        metavar="ASSET",
        help='Assets to publish (format: "ASSET[:DEST]"), default all',
    )
    parser.add_argument("--profile", help="Profile to use from AWS credentials file")
    parser.add_argument(
        "--parallel",
        action="store_true",
        help="Publish assets concurrently (bounded by ASSETPUB_PUBLISH_CONCURRENCY)",
    )
    parser.add_argument(
        "--no-cross-account",
        dest="allow_cross_account",
        action="store_false",
        help="Refuse to publish to buckets owned by another account",
    )


def handle_publish_command(args: argparse.Namespace) -> int:
    return publish_command(
        path=args.path,
        assets=args.assets,
        profile=args.profile,
        parallel=args.parallel,
        allow_cross_account=args.allow_cross_account,
    )

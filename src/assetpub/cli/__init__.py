"""
CLI for assetpub.
"""

from __future__ import annotations

import argparse
import logging
from typing import Sequence

from assetpub.cli.ls import handle_ls_command, list_command, register_ls_parser
from assetpub.cli.publish import (
    ConsoleProgress,
    handle_publish_command,
    publish_command,
    register_publish_parser,
)
from assetpub.cli.ux import set_log_threshold
from assetpub.config import get_settings
from assetpub.core.errors import main_with_error_handling
from assetpub.logging import configure_logging
from assetpub.manifest import DEFAULT_FILENAME


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="assetpub", description="Publish file and container image assets to AWS"
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase logging verbosity (-vv also enables debug logs)",
    )
    parser.add_argument(
        "-p",
        "--path",
        default=".",
        help=(
            "The path (file or directory) to load the assets from. If a directory, "
            f"the file '{DEFAULT_FILENAME}' will be loaded from it."
        ),
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    register_ls_parser(subparsers)
    register_publish_parser(subparsers)
    return parser


@main_with_error_handling()
def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.verbose:
        set_log_threshold("verbose")
    level = logging.DEBUG if args.verbose > 1 else get_settings().log_level.upper()
    configure_logging(level)

    if args.command == "ls":
        return handle_ls_command(args)
    return handle_publish_command(args)


__all__ = [
    "ConsoleProgress",
    "build_parser",
    "list_command",
    "main",
    "publish_command",
]

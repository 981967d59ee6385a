"""List command."""

from __future__ import annotations

import argparse

from assetpub.cli.ux import log, out
from assetpub.core.errors import ExitCode
from assetpub.manifest import AssetManifest


def list_command(path: str) -> int:
    """Print one line per manifest entry to stdout."""
    manifest = AssetManifest.from_path(path)
    log("verbose", f"Loaded manifest from {path}: {len(manifest.entries)} assets found")

    for line in manifest.list():
        out.print(line, markup=False)
    return ExitCode.SUCCESS


def register_ls_parser(subparsers: argparse._SubParsersAction) -> None:
    subparsers.add_parser("ls", help="List assets from the given manifest")


def handle_ls_command(args: argparse.Namespace) -> int:
    return list_command(path=args.path)

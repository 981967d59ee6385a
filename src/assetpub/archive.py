"""Deterministic zip packaging of asset directories."""

from __future__ import annotations

import asyncio
import os
import secrets
import stat
import zipfile
from pathlib import Path
from typing import Callable, List

import structlog

logger = structlog.get_logger()

# Fixed timestamp so identical contents produce identical archives
_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


async def zip_directory(
    directory: str | Path,
    output_file: str | Path,
    log: Callable[[str], None] = lambda _msg: None,
) -> None:
    """Zip every file below ``directory`` into ``output_file``.

    Entries are sorted and timestamps fixed. Symlinks are followed. The
    archive is written next to the destination and renamed into place, so
    a concurrent reader never sees a partially written zip.
    """
    output = Path(output_file)
    temp = output.with_name(f"{output.name}.{secrets.token_hex(4)}._tmp")
    try:
        count = await asyncio.to_thread(_write_zip, Path(directory), temp)
        os.replace(temp, output)
    except BaseException:
        temp.unlink(missing_ok=True)
        raise

    log(f"Zipped {count} files from {directory} into {output}")
    logger.debug("directory_zipped", directory=str(directory), output=str(output), files=count)


def _collect_files(root: Path) -> List[Path]:
    files: List[Path] = []
    for dirpath, _dirnames, filenames in os.walk(root, followlinks=True):
        for name in filenames:
            files.append(Path(dirpath) / name)
    return sorted(files, key=lambda p: p.relative_to(root).as_posix())


def _write_zip(root: Path, target: Path) -> int:
    files = _collect_files(root)
    with zipfile.ZipFile(target, "w", zipfile.ZIP_DEFLATED) as archive:
        for path in files:
            info = zipfile.ZipInfo(path.relative_to(root).as_posix(), date_time=_ZIP_EPOCH)
            info.compress_type = zipfile.ZIP_DEFLATED
            mode = path.stat().st_mode
            info.external_attr = (stat.S_IFREG | stat.S_IMODE(mode)) << 16
            archive.writestr(info, path.read_bytes())
    return len(files)

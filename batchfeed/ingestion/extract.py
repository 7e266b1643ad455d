"""
Batch extraction: unpack a zip archive into a scratch directory tree.

Relative paths and subdirectories are preserved and Unix permission bits
stored in the archive are applied. Nothing is cleaned up on failure; the
run's scratch teardown reclaims partial output.
"""

import os
import shutil
import zipfile
import zlib
from pathlib import Path
from typing import List, Tuple

from batchfeed.shared.observability import get_logger

from .errors import ExtractError

logger = get_logger(__name__)


def _entry_mode(info: zipfile.ZipInfo) -> int:
    """Unix permission bits of an entry, 0 when the archive does not carry them."""
    return (info.external_attr >> 16) & 0o777


def _safe_target(dest: Path, name: str) -> Path:
    target = (dest / name).resolve()
    if not target.is_relative_to(dest):
        raise ExtractError(f"Archive entry escapes extraction directory: {name!r}")
    return target


def extract_archive(archive_path, dest_dir) -> List[Path]:
    """
    Extract every entry of ``archive_path`` under ``dest_dir``.

    Args:
        archive_path: Local zip file
        dest_dir: Destination directory, created if missing

    Returns:
        Paths of the extracted files (directories excluded), in archive order

    Raises:
        ExtractError: If the archive is malformed or an entry cannot be written
    """
    archive_path = Path(archive_path)
    dest = Path(dest_dir)
    extracted: List[Path] = []
    dir_modes: List[Tuple[Path, int]] = []

    try:
        dest.mkdir(parents=True, exist_ok=True)
        dest = dest.resolve()
        with zipfile.ZipFile(archive_path) as archive:
            for info in archive.infolist():
                target = _safe_target(dest, info.filename)
                mode = _entry_mode(info)

                if info.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    if mode:
                        dir_modes.append((target, mode))
                    continue

                target.parent.mkdir(parents=True, exist_ok=True)
                with archive.open(info) as src, open(target, "wb") as out:
                    shutil.copyfileobj(src, out)
                if mode:
                    os.chmod(target, mode)
                extracted.append(target)

        # Directory modes last so restrictive bits do not block file writes
        for path, mode in reversed(dir_modes):
            os.chmod(path, mode)
    except ExtractError:
        raise
    except (
        zipfile.BadZipFile,
        zipfile.LargeZipFile,
        EOFError,
        zlib.error,
        # encrypted entries and unsupported compression or flags
        RuntimeError,
        NotImplementedError,
    ) as e:
        raise ExtractError(f"Malformed archive {archive_path}: {e}") from e
    except OSError as e:
        raise ExtractError(f"Could not extract {archive_path}: {e}") from e

    logger.info(
        "Archive extracted",
        archive=str(archive_path),
        dest=str(dest),
        files=len(extracted),
    )
    return extracted

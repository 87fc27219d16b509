"""Discover the files to upload.

Basic Usage:
    from kodo_cli.files import collect_files

    files = collect_files(Path("photos"))   # every regular file, recursively
    files = collect_files(Path("a.jpg"))    # [Path("a.jpg")]
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from kodo_cli.errors import EmptyDirectoryError, EnumerationError, SourceNotFoundError

logger = logging.getLogger(__name__)


def _walk(directory: Path, ancestors: set[str], files: list[Path]) -> None:
    """Append every regular file under directory to files, depth first.

    ancestors holds the real paths of the directories currently being
    descended; a symlink leading back into one of them is not followed.
    The same directory reached through two different paths is walked twice.
    """
    real = os.path.realpath(directory)
    if real in ancestors:
        logger.debug("Skipping symlink loop at %s (-> %s)", directory, real)
        return

    try:
        entries = sorted(directory.iterdir(), key=lambda p: p.name)
    except OSError as err:
        raise EnumerationError(str(directory), err.strerror or str(err)) from err

    ancestors.add(real)
    try:
        for entry in entries:
            if entry.is_dir():
                _walk(entry, ancestors, files)
            elif entry.is_file():
                files.append(entry)
            else:
                logger.debug("Skipping non-regular entry %s", entry)
    finally:
        ancestors.discard(real)


def collect_files(root: Path) -> list[Path]:
    """Collect all regular files reachable from root.

    Hidden files are included. Symlinks are followed, with a guard against
    directory cycles. Directory entries are visited in name order.

    Args:
        root: A file or directory.

    Returns:
        [root] for a file; otherwise every regular file under the directory.

    Raises:
        SourceNotFoundError: If root does not exist.
        EnumerationError: If a directory in the tree cannot be listed.
        EmptyDirectoryError: If a directory root contains no regular files.
    """
    if not root.exists():
        raise SourceNotFoundError(str(root))

    if not root.is_dir():
        return [root]

    files: list[Path] = []
    _walk(root, set(), files)

    if not files:
        raise EmptyDirectoryError(str(root))

    logger.debug("Collected %d file(s) under %s", len(files), root)
    return files

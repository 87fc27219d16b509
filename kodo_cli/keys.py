"""Object key derivation and download links.

Key derivation is deterministic: the same inputs always give the same key.

Directory uploads namespace keys under the source directory's own name, so
uploading a renamed copy of a tree never collides with an earlier upload:

    >>> directory_key(Path("Photos/sub/B.jpg"), Path("Photos"), "/Backups/")
    'backups/photos/sub/b.jpg'
    >>> directory_key(Path("photos/a.jpg"), Path("photos"))
    'uploads/photos/a.jpg'
"""

from __future__ import annotations

import re
from pathlib import Path

from kodo_cli.constants import DEFAULT_KEY_NAMESPACE

_REPEATED_SEPARATORS = re.compile(r"/{2,}")


def normalize_key(key: str, *, lowercase: bool = True) -> str:
    """Collapse repeated "/" separators and optionally lower-case the key.

    Idempotent: normalizing an already normalized key returns it unchanged.
    """
    key = _REPEATED_SEPARATORS.sub("/", key)
    return key.lower() if lowercase else key


def single_file_key(path: Path, object_name: str | None = None) -> str:
    """Key for a single-file upload.

    An explicit object name is used verbatim; otherwise the file lands
    under ``uploads/<basename>``.
    """
    if object_name:
        return object_name
    return f"{DEFAULT_KEY_NAMESPACE}/{path.name}"


def directory_key(
    path: Path,
    root: Path,
    prefix: str | None = None,
    *,
    lowercase: bool = True,
) -> str:
    """Key for a file discovered under a directory root.

    Args:
        path: The file, as yielded by the enumerator (inside root).
        root: The directory being uploaded.
        prefix: Optional destination prefix; leading and trailing "/" are dropped.
        lowercase: Lower-case the resulting key.

    Returns:
        ``<prefix>/<root name>/<relative path>`` when a prefix is given,
        otherwise ``uploads/<path>`` with the path as given on the command line.
    """
    if prefix:
        dest = prefix.removeprefix("/").removesuffix("/")
        relative = path.relative_to(root).as_posix()
        root_name = root.name or root.resolve().name
        key = f"{dest}/{root_name}/{relative}"
    else:
        key = f"{DEFAULT_KEY_NAMESPACE}/{path.as_posix()}"
    return normalize_key(key, lowercase=lowercase)


def build_download_url(domain_name: str | None, key: str) -> str | None:
    """Download URL for an uploaded object, or None without a domain.

    A domain that already carries a scheme is used as-is; bare host names
    get ``https://``.
    """
    if not domain_name:
        return None
    domain_name = domain_name.rstrip("/")
    if domain_name.startswith("http"):
        return f"{domain_name}/{key}"
    return f"https://{domain_name}/{key}"

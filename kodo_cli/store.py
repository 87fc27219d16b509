"""Object-storage client for Qiniu Kodo (and other S3-compatible stores).

Kodo exposes an S3-compatible API, so uploads go through obstore's S3Store.
obstore performs multipart uploads (part size, per-file part concurrency)
and request-level retries; nothing above this module retries.

Basic Usage:
    from kodo_cli.store import KodoClient

    client = KodoClient.from_config(config)
    with open("a.jpg", "rb") as fh:
        client.upload("uploads/a.jpg", fh, size=1024)

A KodoClient is safe to share between threads: obstore stores are
internally synchronized, so batch workers all use the same instance.
"""

from __future__ import annotations

import logging
import time
from typing import IO, TYPE_CHECKING, Protocol

import obstore as obs
from obstore.store import LocalStore, MemoryStore, S3Store

from kodo_cli.constants import KODO_REGIONS, KODO_S3_ENDPOINT
from kodo_cli.errors import InvalidRegionError, UploadRequestError

if TYPE_CHECKING:
    from kodo_cli.config import UploadConfig

logger = logging.getLogger(__name__)

# Type alias for the stores a KodoClient can wrap
ObjectStore = S3Store | LocalStore | MemoryStore


class ObjectStoreClient(Protocol):
    """What the batch orchestrator needs from an object store.

    upload() either completes the named object or raises. Implementations
    must tolerate concurrent calls from several threads on one instance.
    """

    def upload(
        self,
        object_key: str,
        content: IO[bytes],
        size: int,
        part_size: int | None = None,
        worker_hint: int | None = None,
    ) -> None: ...


# =============================================================================
# Region Resolution
# =============================================================================


def resolve_region(region: str) -> tuple[str, str]:
    """Map a Kodo region code to (s3_region, endpoint).

    Accepts Kodo codes (z0, z1, z2, na0, as0, cn-east-2) as well as the
    S3 region names they map to (cn-east-1, ...).

    Raises:
        InvalidRegionError: If the region is unknown.
    """
    code = region.strip().lower()
    if code in KODO_REGIONS:
        s3_region = KODO_REGIONS[code]
    elif code in KODO_REGIONS.values():
        s3_region = code
    else:
        raise InvalidRegionError(region, sorted(KODO_REGIONS))
    return s3_region, KODO_S3_ENDPOINT.format(region=s3_region)


# =============================================================================
# Credential Checking
# =============================================================================


def check_credentials(access_key: str | None, secret_key: str | None) -> tuple[bool, str]:
    """Check that both Kodo keys are available.

    Returns:
        Tuple of (credentials_found, hint_message)
    """
    if access_key and secret_key:
        return True, ""

    missing = [
        name
        for name, value in (("access key", access_key), ("secret key", secret_key))
        if not value
    ]
    hints = []
    hints.append(f"Kodo {' and '.join(missing)} not found. To configure credentials:")
    hints.append("")
    hints.append("Option 1: Set environment variables")
    hints.append("  export QINIU_ACCESS_KEY=your_access_key")
    hints.append("  export QINIU_SECRET_KEY=your_secret_key")
    hints.append("")
    hints.append("Option 2: Pass them on the command line")
    hints.append("  kodo upload --access-key ... --secret-key ... PATH")
    hints.append("")
    hints.append("Option 3: Store them in the settings file")
    hints.append("  kodo config set access_key your_access_key")
    hints.append("  kodo config set secret_key your_secret_key")

    return False, "\n".join(hints)


# =============================================================================
# Client
# =============================================================================


class KodoClient:
    """Uploads objects to one bucket through an obstore store."""

    def __init__(self, store: ObjectStore) -> None:
        self.store = store

    @classmethod
    def from_config(cls, config: UploadConfig) -> KodoClient:
        """Build an S3Store for the configured bucket, region and credentials.

        An explicit endpoint replaces the region's Kodo endpoint, which also
        makes the client usable against other S3-compatible services.
        """
        config.require("access_key", "secret_key", "bucket_name")
        s3_region, endpoint = resolve_region(config.region)
        if config.endpoint:
            endpoint = config.endpoint

        logger.debug(
            "Creating S3 store for bucket %s (region %s, endpoint %s)",
            config.bucket_name,
            s3_region,
            endpoint,
        )
        store = S3Store(
            config.bucket_name,  # type: ignore[arg-type]
            region=s3_region,
            endpoint=endpoint,
            access_key_id=config.access_key,
            secret_access_key=config.secret_key,
        )
        return cls(store)

    def upload(
        self,
        object_key: str,
        content: IO[bytes],
        size: int,
        part_size: int | None = None,
        worker_hint: int | None = None,
    ) -> None:
        """Upload content as object_key.

        Args:
            object_key: Remote key.
            content: Binary stream positioned at the start of the data.
            size: Content length in bytes (used for logging).
            part_size: Multipart part size in bytes; obstore's default when None.
            worker_hint: Concurrent part uploads for this object.

        Raises:
            UploadRequestError: If obstore aborts the request with a panic.
        """
        kwargs: dict[str, int] = {}
        if part_size is not None:
            kwargs["chunk_size"] = part_size
        if worker_hint is not None:
            kwargs["max_concurrency"] = worker_hint

        start_time = time.time()
        try:
            obs.put(self.store, object_key, content, **kwargs)
        except (Exception, KeyboardInterrupt, SystemExit, GeneratorExit):
            raise
        except BaseException as err:
            # Panics in obstore's native code surface as pyo3 PanicException
            raise UploadRequestError(object_key, str(err) or type(err).__name__) from err
        elapsed = time.time() - start_time

        size_mb = size / (1024 * 1024)
        speed_mbps = size_mb / elapsed if elapsed > 0 else 0
        logger.debug(
            "Uploaded %s (%.2f MB, %.2f MB/s)", object_key, size_mb, speed_mbps
        )

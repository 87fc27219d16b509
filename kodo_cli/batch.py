"""Concurrent batch uploads.

A directory upload runs as follows:

1. The file list (from kodo_cli.files) becomes a list of UploadTask, one per
   file, each carrying its derived object key.
2. split_into_chunks() cuts the list into at most ``max_workers`` contiguous
   chunks.
3. Each chunk goes to its own ChunkWorker, run on a ThreadPoolExecutor.
   A worker uploads its files one at a time, in order. A failing file
   becomes a failure outcome; the worker moves on to the next file.
4. run_batch() waits for every worker, sums their tallies and records any
   worker that crashed, without losing the results of the others.

Outcomes are handed to an ``on_outcome`` callback as soon as they are
produced, so reporting happens while the batch is still running. Callbacks
are invoked from worker threads.

Basic Usage:
    from kodo_cli.batch import build_tasks, run_batch

    tasks = build_tasks(files, root, prefix="backups")
    result = run_batch(client, tasks, max_workers=30, on_outcome=print)
    print(result.success_count, result.failure_count)
"""

from __future__ import annotations

import logging
import math
import os
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, TypeVar

from kodo_cli.constants import BATCH_WORKER_HINT, DEFAULT_MAX_WORKERS
from kodo_cli.errors import UnreadableSourceError, WorkerCrashedError
from kodo_cli.keys import build_download_url, directory_key
from kodo_cli.store import ObjectStoreClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

OutcomeCallback = Callable[["UploadOutcome"], None]

# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class UploadTask:
    """One file to upload and the key it will be stored under."""

    local_path: Path
    remote_key: str


@dataclass(frozen=True)
class UploadOutcome:
    """Result of one upload attempt.

    Attributes:
        local_path: The uploaded file.
        remote_key: Its object key.
        error: Failure reason, or None on success.
        download_url: Download link when a domain is configured and the upload succeeded.
        size: File size in bytes (0 if it could not be read).
    """

    local_path: Path
    remote_key: str
    error: str | None = None
    download_url: str | None = None
    size: int = 0

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, object]:
        return {
            "local_path": str(self.local_path),
            "remote_key": self.remote_key,
            "success": self.succeeded,
            "error": self.error,
            "download_url": self.download_url,
            "size": self.size,
        }


@dataclass(frozen=True)
class ChunkTally:
    """Counters of one finished worker."""

    success_count: int = 0
    failure_count: int = 0


@dataclass(frozen=True)
class WorkerCrash:
    """A worker that stopped before finishing its chunk.

    Attributes:
        chunk_index: Position of the chunk in the partition.
        reason: Text of the exception that escaped the worker.
        unprocessed: Tasks of the chunk that were never attempted.
    """

    chunk_index: int
    reason: str
    unprocessed: list[UploadTask] = field(default_factory=list)

    def to_error(self) -> WorkerCrashedError:
        return WorkerCrashedError(self.chunk_index, self.reason, len(self.unprocessed))


@dataclass
class BatchResult:
    """Aggregate result of a batch.

    Tasks left unprocessed by a crashed worker count as failures, so
    success_count + failure_count always equals the number of tasks.

    Attributes:
        success_count: Files uploaded.
        failure_count: Files that failed or were never attempted.
        outcomes: Per-file outcomes, grouped by chunk in chunk order.
        crashes: Workers that terminated abnormally.
        elapsed_seconds: Wall-clock duration of the batch.
    """

    success_count: int
    failure_count: int
    outcomes: list[UploadOutcome] = field(default_factory=list)
    crashes: list[WorkerCrash] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def success(self) -> bool:
        """True if every file was uploaded."""
        return self.failure_count == 0

    @property
    def total(self) -> int:
        return self.success_count + self.failure_count

    def to_dict(self) -> dict[str, object]:
        return {
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "elapsed_seconds": round(self.elapsed_seconds, 2),
            "outcomes": [o.to_dict() for o in self.outcomes],
            "crashes": [c.to_error().to_dict() for c in self.crashes],
        }


# =============================================================================
# Planning
# =============================================================================


def split_into_chunks(items: Sequence[T], max_chunks: int) -> list[list[T]]:
    """Split items into at most max_chunks contiguous chunks.

    Every chunk holds ceil(len(items) / max_chunks) items except possibly
    the last, which holds the remainder. Concatenating the chunks gives
    back the original sequence. With fewer items than max_chunks, each
    item gets its own chunk.

    Args:
        items: Sequence to split.
        max_chunks: Upper bound on the number of chunks (>= 1).

    Returns:
        List of chunks; empty if items is empty.

    Raises:
        ValueError: If max_chunks is less than 1.
    """
    if max_chunks < 1:
        raise ValueError(f"max_chunks must be at least 1, got {max_chunks}")
    if not items:
        return []

    chunk_size = math.ceil(len(items) / max_chunks)
    return [list(items[i : i + chunk_size]) for i in range(0, len(items), chunk_size)]


def build_tasks(
    files: Sequence[Path],
    root: Path,
    prefix: str | None = None,
    *,
    lowercase: bool = True,
) -> list[UploadTask]:
    """Pair every file found under root with its directory-mode object key."""
    return [
        UploadTask(
            local_path=path,
            remote_key=directory_key(path, root, prefix, lowercase=lowercase),
        )
        for path in files
    ]


def _describe_error(err: BaseException) -> str:
    return str(err) or type(err).__name__


def _file_size(fh: IO[bytes]) -> int:
    """Size in bytes of an open file, read from its descriptor."""
    return os.fstat(fh.fileno()).st_size


# =============================================================================
# Worker
# =============================================================================


class ChunkWorker:
    """Uploads the tasks of one chunk, sequentially and in order.

    Failures of individual files never stop the worker. Its counters and
    outcome list belong to it alone; run_batch reads them only after the
    worker has finished.
    """

    def __init__(
        self,
        client: ObjectStoreClient,
        chunk: Sequence[UploadTask],
        chunk_index: int = 0,
        *,
        part_size: int | None = None,
        domain_name: str | None = None,
        on_outcome: OutcomeCallback | None = None,
    ) -> None:
        self.client = client
        self.chunk = list(chunk)
        self.chunk_index = chunk_index
        self.part_size = part_size
        self.domain_name = domain_name
        self.on_outcome = on_outcome
        self.outcomes: list[UploadOutcome] = []
        self.success_count = 0
        self.failure_count = 0

    def _upload_one(self, task: UploadTask) -> UploadOutcome:
        size = 0
        try:
            with task.local_path.open("rb") as fh:
                size = _file_size(fh)
                self.client.upload(
                    task.remote_key,
                    fh,
                    size,
                    part_size=self.part_size,
                    worker_hint=BATCH_WORKER_HINT,
                )
        except Exception as err:
            logger.debug("Upload of %s failed: %r", task.local_path, err)
            return UploadOutcome(
                local_path=task.local_path,
                remote_key=task.remote_key,
                error=_describe_error(err),
                size=size,
            )
        return UploadOutcome(
            local_path=task.local_path,
            remote_key=task.remote_key,
            download_url=build_download_url(self.domain_name, task.remote_key),
            size=size,
        )

    def run(self) -> ChunkTally:
        """Upload every task of the chunk and return the local tally."""
        logger.debug("Chunk %d: %d file(s)", self.chunk_index, len(self.chunk))
        for task in self.chunk:
            outcome = self._upload_one(task)
            self.outcomes.append(outcome)
            if outcome.succeeded:
                self.success_count += 1
            else:
                self.failure_count += 1
            if self.on_outcome is not None:
                self.on_outcome(outcome)
        return ChunkTally(self.success_count, self.failure_count)

    @property
    def unprocessed(self) -> list[UploadTask]:
        """Tasks not yet attempted."""
        return self.chunk[len(self.outcomes) :]


# =============================================================================
# Aggregation
# =============================================================================


def run_batch(
    client: ObjectStoreClient,
    tasks: Sequence[UploadTask],
    *,
    max_workers: int = DEFAULT_MAX_WORKERS,
    part_size: int | None = None,
    domain_name: str | None = None,
    on_outcome: OutcomeCallback | None = None,
) -> BatchResult:
    """Upload tasks concurrently, one worker per chunk, and aggregate results.

    Args:
        client: Shared object-store client (used by all workers at once).
        tasks: Tasks to upload.
        max_workers: Maximum number of chunks, and so of concurrent workers.
        part_size: Multipart part size passed to every upload.
        domain_name: Download domain for success outcomes.
        on_outcome: Called from worker threads with each outcome.

    Returns:
        BatchResult covering every task.
    """
    start_time = time.time()
    chunks = split_into_chunks(tasks, max_workers)
    workers = [
        ChunkWorker(
            client,
            chunk,
            index,
            part_size=part_size,
            domain_name=domain_name,
            on_outcome=on_outcome,
        )
        for index, chunk in enumerate(chunks)
    ]
    logger.debug("Dispatching %d task(s) over %d worker(s)", len(tasks), len(workers))

    success_count = 0
    failure_count = 0
    crashes: list[WorkerCrash] = []

    if workers:
        with ThreadPoolExecutor(max_workers=len(workers)) as executor:
            future_to_worker: dict[Future[ChunkTally], ChunkWorker] = {
                executor.submit(worker.run): worker for worker in workers
            }
            for future in as_completed(future_to_worker):
                worker = future_to_worker[future]
                exc = future.exception()
                if exc is None:
                    tally = future.result()
                    success_count += tally.success_count
                    failure_count += tally.failure_count
                    continue

                # Outcomes recorded before the crash still count
                unprocessed = worker.unprocessed
                logger.error("Worker for chunk %d crashed: %r", worker.chunk_index, exc)
                crashes.append(
                    WorkerCrash(worker.chunk_index, _describe_error(exc), unprocessed)
                )
                success_count += worker.success_count
                failure_count += worker.failure_count + len(unprocessed)

    crashes.sort(key=lambda c: c.chunk_index)
    outcomes = [outcome for worker in workers for outcome in worker.outcomes]

    return BatchResult(
        success_count=success_count,
        failure_count=failure_count,
        outcomes=outcomes,
        crashes=crashes,
        elapsed_seconds=time.time() - start_time,
    )


# =============================================================================
# Single File
# =============================================================================


def upload_single_file(
    client: ObjectStoreClient,
    path: Path,
    remote_key: str,
    *,
    part_size: int | None = None,
    threads: int | None = None,
    domain_name: str | None = None,
) -> UploadOutcome:
    """Upload one file outside of a batch.

    Unlike batch mode, a file that cannot be opened is fatal here. Upload
    errors are still returned as a failure outcome.

    Args:
        client: Object-store client.
        path: File to upload.
        remote_key: Object key.
        part_size: Multipart part size in bytes.
        threads: Concurrent part uploads for this file.
        domain_name: Download domain.

    Raises:
        UnreadableSourceError: If the file cannot be opened.
    """
    try:
        fh = path.open("rb")
    except OSError as err:
        raise UnreadableSourceError(str(path), err.strerror or str(err)) from err

    with fh:
        try:
            size = _file_size(fh)
        except OSError as err:
            raise UnreadableSourceError(str(path), err.strerror or str(err)) from err
        try:
            client.upload(remote_key, fh, size, part_size=part_size, worker_hint=threads)
        except Exception as err:
            logger.debug("Upload of %s failed: %r", path, err)
            return UploadOutcome(path, remote_key, error=_describe_error(err), size=size)

    return UploadOutcome(
        path,
        remote_key,
        download_url=build_download_url(domain_name, remote_key),
        size=size,
    )


# =============================================================================
# Exit Policy
# =============================================================================


def exit_code_for(
    success_count: int,
    failure_count: int,
    policy: str = "never",
    *,
    crashed: bool = False,
) -> int:
    """Process exit code for a finished upload.

    Args:
        success_count: Files uploaded.
        failure_count: Files not uploaded.
        policy: "never" (always 0), "all" (1 when nothing was uploaded and
            something failed) or "any" (1 on any failure).
        crashed: A worker crashed; always exits 1.
    """
    if crashed:
        return 1
    if policy == "any" and failure_count > 0:
        return 1
    if policy == "all" and failure_count > 0 and success_count == 0:
        return 1
    return 0

"""kodo CLI - Upload files and directory trees to Qiniu Kodo object storage."""

from kodo_cli.batch import BatchResult, UploadOutcome, UploadTask, run_batch, split_into_chunks
from kodo_cli.cli import cli
from kodo_cli.files import collect_files
from kodo_cli.store import KodoClient

__all__ = [
    "BatchResult",
    "KodoClient",
    "UploadOutcome",
    "UploadTask",
    "cli",
    "collect_files",
    "run_batch",
    "split_into_chunks",
]

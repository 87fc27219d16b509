"""Shared constants for the kodo CLI."""

from __future__ import annotations

# Upper bound on concurrent chunk workers for a directory upload
DEFAULT_MAX_WORKERS: int = 30

# Key namespace used when no object name / destination prefix is given
DEFAULT_KEY_NAMESPACE: str = "uploads"

# Default Kodo region (East China - Zhejiang)
DEFAULT_REGION: str = "z0"

# Per-file sub-parallelism inside a directory batch; batch parallelism
# already comes from the chunk count
BATCH_WORKER_HINT: int = 1

# Multipart part size bounds accepted by the CLI (bytes)
MIN_PART_SIZE: int = 1024 * 1024
MAX_PART_SIZE: int = 1024 * 1024 * 1024

# Kodo region code -> S3-compatible region name
# https://developer.qiniu.com/kodo/4088/s3-access-domainname
KODO_REGIONS: dict[str, str] = {
    "z0": "cn-east-1",
    "cn-east-2": "cn-east-2",
    "z1": "cn-north-1",
    "z2": "cn-south-1",
    "na0": "us-north-1",
    "as0": "ap-southeast-1",
}

# S3 endpoint template for Kodo regions
KODO_S3_ENDPOINT: str = "https://s3.{region}.qiniucs.com"

# Number of planned uploads listed in dry-run output before summarizing
DRY_RUN_PREVIEW_LIMIT: int = 10

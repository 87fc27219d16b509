"""Structured error codes for kodo.

All errors follow the format KODO-{category}{number}:
- KODO-CFG*: Configuration errors
- KODO-SRC*: Upload source errors (missing path, unreadable tree, empty directory)
- KODO-BAT*: Batch orchestration errors
"""

from __future__ import annotations

from typing import Any


class KodoError(Exception):
    """Base class for all kodo errors.

    All errors have:
    - code: Structured error code (e.g., KODO-SRC001)
    - message: Human-readable error message
    """

    code: str = "KODO-000"

    # Reserved attribute names that cannot be overwritten by context
    _RESERVED_ATTRS = frozenset({"code", "message", "context", "args"})

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize a kodo error.

        Args:
            message: Human-readable error message.
            **context: Additional context stored as error attributes.
                Reserved keys (code, message, context, args) are ignored.
        """
        self.message = message
        self.context = context
        for key, value in context.items():
            if key not in self._RESERVED_ATTRS:
                setattr(self, key, value)
        super().__init__(f"[{self.code}] {message}")

    def to_dict(self) -> dict[str, Any]:
        """Convert error to JSON-serializable dict."""
        return {
            "code": self.code,
            "message": self.message,
            "context": self.context,
        }


# Configuration Errors (KODO-CFG*)
class ConfigError(KodoError):
    """Base class for configuration-related errors."""

    code = "KODO-CFG000"


class ConfigParseError(ConfigError):
    """Raised when the settings file cannot be parsed.

    Error code: KODO-CFG001
    """

    code = "KODO-CFG001"

    def __init__(self, path: str, parse_error: str) -> None:
        super().__init__(
            f"Failed to parse config file {path}: {parse_error}",
            path=path,
            parse_error=parse_error,
        )


class ConfigInvalidStructureError(ConfigError):
    """Raised when the settings file is valid YAML but not a mapping.

    Error code: KODO-CFG002
    """

    code = "KODO-CFG002"

    def __init__(self, path: str, detail: str) -> None:
        super().__init__(
            f"Invalid config structure in {path}: {detail}",
            path=path,
            detail=detail,
        )


class MissingSettingError(ConfigError):
    """Raised when a required setting has no value at any level.

    Error code: KODO-CFG003
    """

    code = "KODO-CFG003"

    def __init__(self, key: str, hint: str = "") -> None:
        message = f"Missing required setting '{key}'"
        if hint:
            message = f"{message} ({hint})"
        super().__init__(message, key=key)


class InvalidSettingError(ConfigError):
    """Raised when a setting value cannot be coerced or is out of range.

    Error code: KODO-CFG004
    """

    code = "KODO-CFG004"

    def __init__(self, key: str, value: Any, reason: str) -> None:
        super().__init__(
            f"Invalid value {value!r} for setting '{key}': {reason}",
            key=key,
            value=value,
            reason=reason,
        )


class InvalidRegionError(ConfigError):
    """Raised when a region code is neither a Kodo region nor an S3 region name.

    Error code: KODO-CFG005
    """

    code = "KODO-CFG005"

    def __init__(self, region: str, known: list[str]) -> None:
        super().__init__(
            f"Unknown region '{region}' (expected one of: {', '.join(known)})",
            region=region,
        )


# Source Errors (KODO-SRC*)
class SourceError(KodoError):
    """Base class for errors about the local upload source."""

    code = "KODO-SRC000"


class SourceNotFoundError(SourceError):
    """Raised when the upload path does not exist.

    Error code: KODO-SRC001
    """

    code = "KODO-SRC001"

    def __init__(self, path: str) -> None:
        super().__init__(f"Source path not found: {path}", path=path)


class EnumerationError(SourceError):
    """Raised when a directory in the source tree cannot be listed.

    Error code: KODO-SRC002

    Enumeration failures abort the whole batch: the file set must be
    complete before it is partitioned.
    """

    code = "KODO-SRC002"

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Cannot read directory {path}: {reason}", path=path, reason=reason)


class EmptyDirectoryError(SourceError):
    """Raised when a directory source contains no regular files.

    Error code: KODO-SRC003
    """

    code = "KODO-SRC003"

    def __init__(self, path: str) -> None:
        super().__init__(f"Directory contains no files: {path}", path=path)


class UnreadableSourceError(SourceError):
    """Raised when a single-file source cannot be opened.

    Error code: KODO-SRC004
    """

    code = "KODO-SRC004"

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Cannot read {path}: {reason}", path=path, reason=reason)


# Batch Errors (KODO-BAT*)
class BatchError(KodoError):
    """Base class for batch orchestration errors."""

    code = "KODO-BAT000"


class WorkerCrashedError(BatchError):
    """Describes a chunk worker that terminated abnormally.

    Error code: KODO-BAT001

    Distinct from per-file failures: a crash means the worker stopped
    before finishing its chunk, so some of its files were never attempted.
    """

    code = "KODO-BAT001"

    def __init__(self, chunk_index: int, reason: str, unprocessed: int) -> None:
        super().__init__(
            f"Worker for chunk {chunk_index} crashed with {unprocessed} file(s) "
            f"not attempted: {reason}",
            chunk_index=chunk_index,
            reason=reason,
            unprocessed=unprocessed,
        )


# Store Errors (KODO-STO*)
class StoreError(KodoError):
    """Base class for errors raised while talking to the object store."""

    code = "KODO-STO000"


class UploadRequestError(StoreError):
    """Raised when the object-store library aborts an upload request.

    Error code: KODO-STO001

    Wraps failures that do not arrive as ordinary exceptions (for example a
    panic inside obstore's native code) so a worker records them as a
    failed file instead of stopping.
    """

    code = "KODO-STO001"

    def __init__(self, object_key: str, reason: str) -> None:
        super().__init__(
            f"Upload of {object_key} aborted: {reason}",
            object_key=object_key,
            reason=reason,
        )

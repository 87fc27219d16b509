"""JSON envelope printed by `kodo --format json`.

Every command prints exactly one envelope:

    {
        "success": true,
        "command": "upload",
        "data": {"mode": "directory", "success_count": 2, "failure_count": 0, ...}
    }

When the command fails, or an upload batch has failed files, success is
false and an "errors" array is added. Partial results stay in "data", so a
batch with failures still reports its counts and per-file outcomes:

    {
        "success": false,
        "command": "upload",
        "data": {"success_count": 1, "failure_count": 1, ...},
        "errors": [
            {"type": "UploadFailed", "message": "photos/b.jpg: permission denied"}
        ]
    }
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from kodo_cli.batch import UploadOutcome, WorkerCrash

UPLOAD_FAILED = "UploadFailed"


@dataclass
class ErrorDetail:
    """One entry of the errors array.

    code is set for KodoError subclasses (e.g. "KODO-SRC003") and omitted
    from the JSON otherwise.
    """

    type: str
    message: str
    code: str | None = None

    def to_dict(self) -> dict[str, str]:
        entry = {"type": self.type, "message": self.message}
        if self.code is not None:
            entry["code"] = self.code
        return entry


@dataclass
class OutputEnvelope:
    """The single JSON document a command prints."""

    success: bool
    command: str
    data: dict[str, Any]
    errors: list[ErrorDetail] | None = None

    def to_dict(self) -> dict[str, Any]:
        document: dict[str, Any] = {
            "success": self.success,
            "command": self.command,
            "data": self.data,
        }
        if self.errors is not None:
            document["errors"] = [e.to_dict() for e in self.errors]
        return document

    def to_json(self, *, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)


def success_envelope(command: str, data: dict[str, Any]) -> OutputEnvelope:
    return OutputEnvelope(success=True, command=command, data=data)


def error_envelope(
    command: str,
    errors: list[ErrorDetail],
    *,
    data: dict[str, Any] | None = None,
) -> OutputEnvelope:
    """Envelope for a failed command; data carries any partial results."""
    return OutputEnvelope(success=False, command=command, data=data or {}, errors=errors)


def error_detail_from(exc: Exception) -> ErrorDetail:
    """ErrorDetail for an exception, keeping the KODO code when there is one.

    The message is the bare message, without the "[KODO-...]" prefix that
    str() adds to KodoError instances.
    """
    return ErrorDetail(
        type=type(exc).__name__,
        message=getattr(exc, "message", None) or str(exc),
        code=getattr(exc, "code", None),
    )


def upload_failure_details(
    outcomes: Iterable[UploadOutcome],
    crashes: Iterable[WorkerCrash] = (),
) -> list[ErrorDetail]:
    """One entry per failed file, then one per crashed worker."""
    details = [
        ErrorDetail(type=UPLOAD_FAILED, message=f"{o.local_path}: {o.error}")
        for o in outcomes
        if not o.succeeded
    ]
    details.extend(error_detail_from(crash.to_error()) for crash in crashes)
    return details

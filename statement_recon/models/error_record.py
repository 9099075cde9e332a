from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the import error log.

One record per rejected row (or per file-level failure, with row=-1). The
JSON Lines shape is fixed by statement_recon/logging/error_log_schema.json;
no extra keys may be emitted.
"""

__all__ = [
    "ErrorRecord",
    "FILE_LEVEL_ROW",
]

FILE_LEVEL_ROW = -1


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        source: File name or "<sms>" for the message path
        row: 1-based data row number, -1 for file-level errors
        field: Logical field key, or None when the error is not field specific
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Human readable cause
    """
    timestamp: str
    source: str
    row: int
    field: str | None
    error_type: str
    message: str

    @staticmethod
    def create(
        source: str,
        row: int,
        error_type: str,
        message: str,
        field: str | None = None,
    ) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            source=source,
            row=row,
            field=field,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)

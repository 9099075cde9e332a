from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from ..models.error_record import FILE_LEVEL_ROW, ErrorRecord
from ..models.fields import field_label
from ..models.processed import ProcessedRow

"""Error log buffering.

Rejected rows and file-level failures are buffered as ErrorRecords and
written as JSON Lines to ``logs/errors-YYYYMMDD-HHMMSS.log`` (UTC) on
flush. The file is only created when there is something to write.
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
    "SCHEMA_PATH",
    "VALIDATION_ERROR",
    "DECODE_ERROR",
    "MESSAGE_PARSE_ERROR",
    "COMMIT_ERROR",
]

LOGS_DIR = Path("./logs")
SCHEMA_PATH = Path(__file__).with_name("error_log_schema.json")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"

VALIDATION_ERROR = "VALIDATION_ERROR"
DECODE_ERROR = "DECODE_ERROR"
MESSAGE_PARSE_ERROR = "MESSAGE_PARSE_ERROR"
COMMIT_ERROR = "COMMIT_ERROR"


class ErrorLogBuffer:
    """In-memory buffer for error records. Flush appends JSON Lines.

    Not thread safe; one buffer per import session.
    """

    def __init__(self, logs_dir: Path | None = None) -> None:
        self.logs_dir = logs_dir or LOGS_DIR
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self.logs_dir / f"errors-{stamp}.log"
        return self._file_path

    @property
    def records(self) -> list[ErrorRecord]:
        return list(self._records)

    def append(self, record: ErrorRecord) -> None:
        self._records.append(record)

    def record_file_error(self, source: str, error_type: str, message: str) -> None:
        self.append(ErrorRecord.create(source, FILE_LEVEL_ROW, error_type, message))

    def record_rejected_rows(self, source: str, rows: Iterable[ProcessedRow]) -> int:
        """One record per invalid cell of every rejected row; returns the row count."""
        count = 0
        for row in rows:
            if row.is_valid:
                continue
            count += 1
            for key, cell in row.cells.items():
                # only cells that produced a row error
                if cell.valid or f"{field_label(key)}: {cell.reason}" not in row.errors:
                    continue
                self.append(
                    ErrorRecord.create(
                        source,
                        row.index + 1,
                        VALIDATION_ERROR,
                        cell.reason or "invalid value",
                        field=key,
                    )
                )
        return count

    def __len__(self) -> int:
        return len(self._records)

    def flush(self) -> Path | None:
        if not self._records:
            return None
        fp = self.file_path
        fp.parent.mkdir(parents=True, exist_ok=True)
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp

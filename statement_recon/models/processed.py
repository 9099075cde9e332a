from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

"""Row processing models.

ProcessedCell is the outcome of applying one mask to one raw cell. A
ProcessedRow carries one cell per logical field plus the assembled record;
the record is always filled for preview purposes but must not be trusted
while ``errors`` is non-empty.
"""

__all__ = [
    "RawRow",
    "FieldSpec",
    "ProcessedCell",
    "ProcessedRow",
    "ProcessedBatch",
]

T = TypeVar("T")

# Column header -> cell text (None when the cell is absent)
RawRow = dict[str, "str | None"]


@dataclass(frozen=True)
class FieldSpec:
    """Which column a logical field reads from and which mask validates it.

    Rebuilt for every processing pass from the current column mapping; two
    specs with different keys never share the same non-null ``column_key``.
    """
    key: str
    mask_id: str
    column_key: str | None
    required: bool = True


@dataclass(frozen=True)
class ProcessedCell:
    value: Any  # normalized value when valid, otherwise the raw input
    valid: bool
    reason: str | None = None


@dataclass(frozen=True)
class ProcessedRow(Generic[T]):
    index: int  # 0-based position in the source row set
    record: T
    cells: dict[str, ProcessedCell]
    errors: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class ProcessedBatch(Generic[T]):
    """All processed rows of one pass, in source order."""
    rows: list[ProcessedRow[T]]

    @property
    def valid_rows(self) -> list[ProcessedRow[T]]:
        return [r for r in self.rows if r.is_valid]

    @property
    def invalid_rows(self) -> list[ProcessedRow[T]]:
        return [r for r in self.rows if not r.is_valid]

    def records(self) -> list[T]:
        """Records of the importable rows only."""
        return [r.record for r in self.rows if r.is_valid]

    def __len__(self) -> int:
        return len(self.rows)

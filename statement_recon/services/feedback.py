from __future__ import annotations

from collections import Counter
from collections.abc import Sequence

from ..models.feedback import FeedbackReport
from ..models.processed import ProcessedRow
from ..models.statement import StatementRow

"""Duplicate & feedback analyzer.

Read-only diagnostics over the full processed set (valid and invalid rows
alike) so the operator sees whole-file problems before committing. Re-run it
whenever the mapping or the masks change.

The auto-match count is a structural heuristic only (>= 3 non-empty
reference segments); it does not look anything up.
"""

__all__ = [
    "AUTO_MATCH_MIN_SEGMENTS",
    "reference_segments",
    "analyze",
]

AUTO_MATCH_MIN_SEGMENTS = 3


def reference_segments(reference: str | None) -> list[str]:
    if not reference:
        return []
    return [s for s in reference.split(".") if s]


def analyze(processed_rows: Sequence[ProcessedRow[StatementRow]]) -> FeedbackReport:
    txn_counter: Counter[str] = Counter()
    missing_reference = 0
    auto_match = 0
    invalid_msisdn = 0
    invalid_date = 0

    for row in processed_rows:
        record = row.record
        if record.txn_id:
            txn_counter[record.txn_id] += 1

        if not record.reference:
            missing_reference += 1
        elif len(reference_segments(record.reference)) >= AUTO_MATCH_MIN_SEGMENTS:
            auto_match += 1

        msisdn_cell = row.cells.get("msisdn")
        if msisdn_cell is not None and not msisdn_cell.valid:
            invalid_msisdn += 1

        date_cell = row.cells.get("occurred_at")
        if date_cell is not None and not date_cell.valid:
            invalid_date += 1

    duplicate_ids = frozenset(txn for txn, count in txn_counter.items() if count > 1)
    duplicate_rows = sum(txn_counter[txn] for txn in duplicate_ids)

    return FeedbackReport(
        total=len(processed_rows),
        duplicate_txn_ids=duplicate_ids,
        duplicate_row_count=duplicate_rows,
        missing_reference_count=missing_reference,
        auto_match_count=auto_match,
        invalid_msisdn_count=invalid_msisdn,
        invalid_date_count=invalid_date,
    )

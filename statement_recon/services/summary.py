from __future__ import annotations

from ..models.feedback import FeedbackReport
from ..models.statement import ImportResult

"""Summary line rendering.

Formats (one line each, keys always present and in this order):

    SUMMARY rows={n} valid={v} rejected={r} inserted={i} duplicates={d} posted={p} unallocated={u} elapsed_sec={s}
    FEEDBACK total={n} duplicate_ids={k} duplicate_rows={m} missing_reference={x} auto_match={a} invalid_msisdn={b} invalid_date={c}

``preview`` renders the SUMMARY line with a None ImportResult, in which case
the import counters are all 0.
"""

__all__ = [
    "format_elapsed",
    "render_summary_line",
    "render_feedback_line",
]


def format_elapsed(seconds: float) -> str:
    """Render seconds without scientific notation or a needless fraction."""
    if seconds <= 0:
        return "0"
    if seconds == int(seconds):
        return str(int(seconds))
    if seconds < 0.01:
        return f"{seconds:.6f}".rstrip("0").rstrip(".")
    return f"{seconds:.3f}".rstrip("0").rstrip(".")


def render_summary_line(
    total_rows: int,
    valid_rows: int,
    result: ImportResult | None,
    elapsed_seconds: float,
) -> str:
    """Render the SUMMARY line for one import run.

    Examples:
        >>> render_summary_line(3, 2, ImportResult(2, 0, 1, 1), 0.5)
        'SUMMARY rows=3 valid=2 rejected=1 inserted=2 duplicates=0 posted=1 unallocated=1 elapsed_sec=0.5'
    """
    result = result or ImportResult(inserted=0, duplicates=0, posted=0, unallocated=0)
    return (
        f"SUMMARY rows={total_rows} "
        f"valid={valid_rows} "
        f"rejected={total_rows - valid_rows} "
        f"inserted={result.inserted} "
        f"duplicates={result.duplicates} "
        f"posted={result.posted} "
        f"unallocated={result.unallocated} "
        f"elapsed_sec={format_elapsed(elapsed_seconds)}"
    )


def render_feedback_line(report: FeedbackReport) -> str:
    return (
        f"FEEDBACK total={report.total} "
        f"duplicate_ids={len(report.duplicate_txn_ids)} "
        f"duplicate_rows={report.duplicate_row_count} "
        f"missing_reference={report.missing_reference_count} "
        f"auto_match={report.auto_match_count} "
        f"invalid_msisdn={report.invalid_msisdn_count} "
        f"invalid_date={report.invalid_date_count}"
    )

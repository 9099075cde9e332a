from __future__ import annotations

import re

import pytest

from statement_recon.models.feedback import FeedbackReport
from statement_recon.models.statement import ImportResult
from statement_recon.services.summary import format_elapsed, render_feedback_line, render_summary_line

SUMMARY_PATTERN = re.compile(
    r"^SUMMARY rows=(\d+) valid=(\d+) rejected=(\d+) inserted=(\d+) duplicates=(\d+) "
    r"posted=(\d+) unallocated=(\d+) elapsed_sec=(\d+(?:\.\d+)?)$"
)


def test_render_summary_line_import():
    line = render_summary_line(5, 4, ImportResult(inserted=3, duplicates=1, posted=1, unallocated=2), 2.0)
    m = SUMMARY_PATTERN.match(line)
    assert m, line
    assert m.groups() == ("5", "4", "1", "3", "1", "1", "2", "2")


def test_render_summary_line_preview_has_zero_import_counts():
    line = render_summary_line(2, 2, None, 0.0)
    assert line == "SUMMARY rows=2 valid=2 rejected=0 inserted=0 duplicates=0 posted=0 unallocated=0 elapsed_sec=0"


@pytest.mark.parametrize(
    "seconds, expected",
    [(0, "0"), (3.0, "3"), (0.5, "0.5"), (1.23456, "1.235"), (0.000123, "0.000123"), (-1, "0")],
)
def test_format_elapsed(seconds, expected):
    assert format_elapsed(seconds) == expected


def test_render_feedback_line():
    report = FeedbackReport(
        total=6,
        duplicate_txn_ids=frozenset({"A", "B"}),
        duplicate_row_count=5,
        missing_reference_count=1,
        auto_match_count=2,
        invalid_msisdn_count=0,
        invalid_date_count=3,
    )
    assert render_feedback_line(report) == (
        "FEEDBACK total=6 duplicate_ids=2 duplicate_rows=5 missing_reference=1 "
        "auto_match=2 invalid_msisdn=0 invalid_date=3"
    )

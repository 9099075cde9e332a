from __future__ import annotations

from statement_recon.mapping.column_mapper import ColumnMapping
from statement_recon.services.feedback import analyze, reference_segments
from statement_recon.services.row_processor import process_rows


def _process(rows):
    specs = ColumnMapping.identity().to_field_specs()
    return process_rows(specs, rows).rows


def _row(txn_id, msisdn="0788123456", reference=None, occurred_at="2024-09-01", amount="5000"):
    return {
        "occurred_at": occurred_at,
        "txn_id": txn_id,
        "msisdn": msisdn,
        "amount": amount,
        "reference": reference,
    }


def test_duplicate_txn_ids_counted_across_rows():
    report = analyze(_process([_row("TXN1"), _row("TXN1", msisdn="0788123457", amount="3000")]))
    assert report.total == 2
    assert report.duplicate_txn_ids == frozenset({"TXN1"})
    assert report.duplicate_row_count == 2
    assert report.has_duplicates


def test_duplicate_symmetry():
    rows = [_row("A"), _row("B"), _row("A"), _row("C"), _row("B"), _row("A")]
    forward = analyze(_process(rows))
    backward = analyze(_process(list(reversed(rows))))
    assert forward.duplicate_txn_ids == backward.duplicate_txn_ids == frozenset({"A", "B"})
    assert forward.duplicate_row_count == backward.duplicate_row_count == 5


def test_invalid_rows_still_count_for_duplicates():
    # second row has a bad phone but carries the same txn id
    report = analyze(_process([_row("TX1"), _row("TX1", msisdn="123")]))
    assert report.duplicate_row_count == 2
    assert report.invalid_msisdn_count == 1


def test_blank_txn_ids_are_not_duplicates():
    report = analyze(_process([_row(""), _row("")]))
    assert report.duplicate_row_count == 0


def test_reference_feedback():
    report = analyze(
        _process(
            [
                _row("T1", reference="KIGALI.SACCOX.IKIMINA1.M001"),
                _row("T2", reference="KIGALI.SACCOX.IKIMINA1"),
                _row("T3", reference="free text"),
                _row("T4", reference=None),
                _row("T5", reference="   "),
            ]
        )
    )
    assert report.auto_match_count == 2
    assert report.missing_reference_count == 2


def test_invalid_date_and_phone_counts():
    report = analyze(_process([_row("T1", occurred_at="31/02/2024"), _row("T2", msisdn="x")]))
    assert report.invalid_date_count == 1
    assert report.invalid_msisdn_count == 1


def test_reference_segments_ignores_empty_parts():
    assert reference_segments("A..B.C") == ["A", "B", "C"]
    assert reference_segments(None) == []

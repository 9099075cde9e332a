from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from decimal import Decimal, InvalidOperation
from typing import Any, TypeVar

from ..mapping.column_mapper import MappingError
from ..masks.registry import apply_mask
from ..models.fields import field_label
from ..models.processed import FieldSpec, ProcessedBatch, ProcessedCell, ProcessedRow
from ..models.statement import StatementRow
from .progress import ProgressTracker

"""Row processor.

Applies the selected mask to every mapped cell of a raw row and assembles a
typed record. Validation failures never raise: they are reported per cell
(``reason``) and aggregated into ``ProcessedRow.errors`` in field
declaration order.

Optional fields: an invalid cell only becomes a row error when the raw
value was present. Absence of an optional value is never an error.
"""

__all__ = [
    "validate_field_specs",
    "process_row",
    "process_rows",
    "assemble_statement_row",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_absent(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_field_specs(field_specs: Sequence[FieldSpec]) -> None:
    """Enforce the one-to-one column rule for a processing pass.

    Raises:
        MappingError: duplicate field keys, or two fields sharing a column
    """
    keys: set[str] = set()
    columns: dict[str, str] = {}
    for spec in field_specs:
        if spec.key in keys:
            raise MappingError(f"field '{spec.key}' is specified twice")
        keys.add(spec.key)
        if spec.column_key is None:
            continue
        owner = columns.get(spec.column_key)
        if owner is not None:
            raise MappingError(
                f"column '{spec.column_key}' is mapped to both '{owner}' and '{spec.key}'"
            )
        columns[spec.column_key] = spec.key


def process_row(
    field_specs: Sequence[FieldSpec],
    raw_row: Mapping[str, Any],
    assemble: Callable[[dict[str, ProcessedCell]], T],
    index: int = 0,
) -> ProcessedRow[T]:
    """Validate one raw row and build its record.

    ``assemble`` always runs, even for failing rows, so that previews can
    show what was read; the record is only trustworthy when ``errors`` is
    empty.
    """
    cells: dict[str, ProcessedCell] = {}
    errors: list[str] = []
    for spec in field_specs:
        raw_value = raw_row.get(spec.column_key) if spec.column_key else None
        cell = apply_mask(spec.mask_id, raw_value)
        cells[spec.key] = cell
        if cell.valid:
            continue
        # optional + absent -> not an error; optional + present but malformed -> error
        if spec.required or not _is_absent(raw_value):
            errors.append(f"{field_label(spec.key)}: {cell.reason}")
    return ProcessedRow(index=index, record=assemble(cells), cells=cells, errors=errors)


def _text(cell: ProcessedCell | None) -> str:
    if cell is None or cell.value is None:
        return ""
    return str(cell.value)


def _coerce_amount(value: Any) -> Decimal:
    """Lenient numeric coercion for previews; 0 when the value is not numeric."""
    if isinstance(value, Decimal):
        return value
    if value is None or isinstance(value, bool):
        return Decimal(0)
    try:
        amount = Decimal(str(value).replace(",", "").strip())
    except InvalidOperation:
        return Decimal(0)
    return amount if amount.is_finite() else Decimal(0)


def assemble_statement_row(cells: dict[str, ProcessedCell]) -> StatementRow:
    reference = cells.get("reference")
    reference_value = reference.value if reference is not None else None
    return StatementRow(
        occurred_at=_text(cells.get("occurred_at")),
        txn_id=_text(cells.get("txn_id")),
        msisdn=_text(cells.get("msisdn")),
        amount=_coerce_amount(cells["amount"].value if "amount" in cells else None),
        reference=None if reference_value in (None, "") else str(reference_value),
    )


def process_rows(
    field_specs: Sequence[FieldSpec],
    rows: Iterable[Mapping[str, Any]],
    assemble: Callable[[dict[str, ProcessedCell]], Any] = assemble_statement_row,
    show_progress: bool = False,
) -> ProcessedBatch[Any]:
    """Process every raw row of a batch.

    Raises:
        MappingError: when the specs break the one-to-one column rule
    """
    validate_field_specs(field_specs)
    rows_list = list(rows)
    processed: list[ProcessedRow[Any]] = []
    invalid = 0
    tracker = ProgressTracker(len(rows_list), description="Processing rows", unit="row", enabled=show_progress)
    with tracker:
        for index, raw in enumerate(rows_list):
            row = process_row(field_specs, raw, assemble, index=index)
            processed.append(row)
            if row.errors:
                invalid += 1
                tracker.set_postfix(invalid=invalid)
            tracker.advance()
    batch = ProcessedBatch(rows=processed)
    logger.debug(
        "processed rows=%d valid=%d invalid=%d",
        len(batch),
        len(batch.valid_rows),
        len(batch.invalid_rows),
    )
    return batch

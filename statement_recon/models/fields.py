from __future__ import annotations

from dataclasses import dataclass

"""Logical statement fields.

Every import session maps raw columns onto this fixed set of logical fields.
Declaration order matters: it is the order in which cells are validated and
in which per-row error messages are reported.
"""

__all__ = [
    "StatementField",
    "STATEMENT_FIELDS",
    "REQUIRED_FIELDS",
    "OPTIONAL_FIELDS",
    "FIELD_KEYS",
    "field_label",
]


@dataclass(frozen=True)
class StatementField:
    key: str
    label: str
    hint: str
    required: bool = True


REQUIRED_FIELDS: tuple[StatementField, ...] = (
    StatementField("occurred_at", "Occurred at", "ISO date or 2024-09-01 08:53"),
    StatementField("txn_id", "Transaction ID", "Unique statement reference"),
    StatementField("msisdn", "MSISDN", "07########"),
    StatementField("amount", "Amount", "Positive number"),
)

OPTIONAL_FIELDS: tuple[StatementField, ...] = (
    StatementField("reference", "Reference", "DISTRICT.SACCO.IKIMINA(.MEMBER)", required=False),
)

STATEMENT_FIELDS: tuple[StatementField, ...] = REQUIRED_FIELDS + OPTIONAL_FIELDS

FIELD_KEYS: tuple[str, ...] = tuple(f.key for f in STATEMENT_FIELDS)

_LABELS = {f.key: f.label for f in STATEMENT_FIELDS}


def field_label(key: str) -> str:
    return _LABELS.get(key, key)

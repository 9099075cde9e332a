from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence

from ..masks.registry import DEFAULT_STATEMENT_MASKS
from ..models.fields import STATEMENT_FIELDS, StatementField
from ..models.processed import FieldSpec

"""Column mapper.

Proposes which detected header feeds which logical field, and keeps the
mapping one-to-one while the operator overrides it.

Heuristics are an ordered list of (predicate, field) pairs evaluated once per
header, in header order. First match wins per field and a header already
claimed by an earlier field is never reassigned by a later rule. Operators
rely on these defaults being predictable, so do not reorder the rules.
"""

__all__ = [
    "MappingError",
    "MAPPING_RULES",
    "auto_map",
    "ColumnMapping",
]


class MappingError(Exception):
    """Raised for unknown fields or a mapping that breaks the one-to-one rule."""


def _contains(*needles: str) -> Callable[[str], bool]:
    return lambda header: any(n in header for n in needles)


MAPPING_RULES: tuple[tuple[Callable[[str], bool], str], ...] = (
    (_contains("date", "occur"), "occurred_at"),
    (_contains("txn", "id"), "txn_id"),
    (_contains("msisdn", "phone"), "msisdn"),
    (_contains("amount", "amt"), "amount"),
    (_contains("reference", "ref"), "reference"),
)


def auto_map(headers: Iterable[str]) -> dict[str, str]:
    """Map logical fields to headers using case-insensitive substring rules.

    Returns:
        Partial mapping field key -> header (unmatched fields are absent)
    """
    mapping: dict[str, str] = {}
    for header in headers:
        lower = header.lower()
        for predicate, field_key in MAPPING_RULES:
            if field_key in mapping:
                continue
            if predicate(lower):
                mapping[field_key] = header
                break  # header claimed
    return mapping


class ColumnMapping:
    """Mutable field -> column assignment that is always one-to-one."""

    def __init__(
        self,
        assignments: Mapping[str, str | None] | None = None,
        fields: Sequence[StatementField] = STATEMENT_FIELDS,
    ) -> None:
        self._fields = {f.key: f for f in fields}
        self._order = [f.key for f in fields]
        self._assignments: dict[str, str] = {}
        for field_key, column in (assignments or {}).items():
            self.set_mapping(field_key, column)

    @classmethod
    def from_headers(cls, headers: Iterable[str]) -> ColumnMapping:
        return cls(auto_map(headers))

    @classmethod
    def identity(cls) -> ColumnMapping:
        """Every field reads the column of the same name (message path)."""
        return cls({f.key: f.key for f in STATEMENT_FIELDS})

    def set_mapping(self, field_key: str, column: str | None) -> None:
        """Assign ``column`` to ``field_key``.

        Any other field currently pointing at the same column is cleared
        first. ``None`` or "" unassigns the field.
        """
        if field_key not in self._fields:
            raise MappingError(f"unknown field: {field_key}")
        if not column:
            self._assignments.pop(field_key, None)
            return
        for other in [k for k, c in self._assignments.items() if c == column and k != field_key]:
            del self._assignments[other]
        self._assignments[field_key] = column

    def get(self, field_key: str) -> str | None:
        return self._assignments.get(field_key)

    def as_dict(self) -> dict[str, str]:
        return {k: self._assignments[k] for k in self._order if k in self._assignments}

    def missing_required(self) -> list[str]:
        return [k for k in self._order if self._fields[k].required and not self._assignments.get(k)]

    @property
    def is_complete(self) -> bool:
        return not self.missing_required()

    def to_field_specs(self, masks: Mapping[str, str] | None = None) -> list[FieldSpec]:
        """FieldSpecs in field declaration order (required fields first)."""
        masks = masks or {}
        return [
            FieldSpec(
                key=key,
                mask_id=masks.get(key) or DEFAULT_STATEMENT_MASKS[key],
                column_key=self._assignments.get(key),
                required=self._fields[key].required,
            )
            for key in self._order
        ]

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ColumnMapping):
            return self.as_dict() == other.as_dict()
        if isinstance(other, Mapping):
            return self.as_dict() == dict(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"ColumnMapping({self.as_dict()!r})"

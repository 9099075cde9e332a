from __future__ import annotations

from dataclasses import dataclass, field

"""Pre-import diagnostics shown to the operator before commit."""

__all__ = [
    "FeedbackReport",
]


@dataclass(frozen=True)
class FeedbackReport:
    total: int
    duplicate_txn_ids: frozenset[str] = field(default_factory=frozenset)
    duplicate_row_count: int = 0  # every row sharing a duplicated id, not just the extras
    missing_reference_count: int = 0
    auto_match_count: int = 0  # references with >= 3 non-empty segments
    invalid_msisdn_count: int = 0
    invalid_date_count: int = 0

    @property
    def has_duplicates(self) -> bool:
        return bool(self.duplicate_txn_ids)

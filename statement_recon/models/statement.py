from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

"""Statement and payment domain models.

StatementRow is the canonical record produced by the row processor. It is
never mutated after creation; it is either accepted into an import batch or
discarded. PaymentRecord is the persisted shape handed to the storage layer,
keyed by (sacco_id, txn_id).
"""

__all__ = [
    "StatementRow",
    "PaymentStatus",
    "PaymentRecord",
    "Allocation",
    "ImportResult",
    "PAYMENT_COLUMNS",
]


@dataclass(frozen=True)
class StatementRow:
    occurred_at: str  # ISO-8601 timestamp
    txn_id: str  # unique within a statement
    msisdn: str  # +250XXXXXXXXX
    amount: Decimal  # > 0 when the row is valid
    reference: str | None = None  # DISTRICT.SACCO.IKIMINA[.MEMBER]


class PaymentStatus(Enum):
    """Initial status of a persisted payment.

    UNALLOCATED -> POSTED is performed later by the allocation workflow; this
    engine only creates records in one of the two states.
    """
    UNALLOCATED = "UNALLOCATED"
    POSTED = "POSTED"


@dataclass(frozen=True)
class Allocation:
    """Where a payment reference points to.

    A reference that only resolves to a group leaves ``member_id`` empty; such
    a payment stays UNALLOCATED but keeps the group for manual follow-up.
    """
    ikimina_id: str
    member_id: str | None = None

    @property
    def is_complete(self) -> bool:
        return self.member_id is not None


# Column order used for INSERT statements
PAYMENT_COLUMNS: tuple[str, ...] = (
    "sacco_id",
    "txn_id",
    "amount",
    "msisdn",
    "occurred_at",
    "reference",
    "status",
    "ikimina_id",
    "member_id",
)


@dataclass(frozen=True)
class PaymentRecord:
    sacco_id: str
    txn_id: str
    amount: Decimal
    msisdn: str
    occurred_at: str
    reference: str | None
    status: PaymentStatus
    ikimina_id: str | None = None
    member_id: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.sacco_id, self.txn_id)

    def as_row(self) -> list[Any]:
        """Values in PAYMENT_COLUMNS order."""
        return [
            self.sacco_id,
            self.txn_id,
            self.amount,
            self.msisdn,
            self.occurred_at,
            self.reference,
            self.status.value,
            self.ikimina_id,
            self.member_id,
        ]


@dataclass(frozen=True)
class ImportResult:
    """Outcome of one commit call.

    Invariants: inserted == posted + unallocated and
    inserted + duplicates == number of submitted rows.
    """
    inserted: int
    duplicates: int
    posted: int
    unallocated: int

    @property
    def submitted(self) -> int:
        return self.inserted + self.duplicates

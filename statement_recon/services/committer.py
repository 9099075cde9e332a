from __future__ import annotations

import logging
from collections.abc import Iterable

from ..db.repository import PaymentRepository, StorageError
from ..db.resolver import NullReferenceResolver, ReferenceResolutionError, ReferenceResolver
from ..models.statement import (
    Allocation,
    ImportResult,
    PaymentRecord,
    PaymentStatus,
    StatementRow,
)

"""Import committer.

Persists validated statement rows as payment records in one batch and
reports what happened to every submitted row:

- duplicates: repeated txn_id inside the batch, or already stored for the
  SACCO (storage conflict). Counted, never raised.
- posted: reference resolved down to a member
- unallocated: anything else; still inserted so the money stays visible for
  manual reconciliation

Only the empty-batch precondition and storage/transport failures abort the
call, and in both cases nothing is persisted.
"""

__all__ = [
    "CommitError",
    "EmptyBatchError",
    "build_payment",
    "commit_statement",
]

logger = logging.getLogger(__name__)


class CommitError(Exception):
    """Batch-fatal commit failure; no rows were inserted."""


class EmptyBatchError(CommitError):
    """Raised when a commit is attempted with no rows."""


def build_payment(
    row: StatementRow,
    sacco_id: str,
    ikimina_id: str | None,
    resolver: ReferenceResolver,
) -> PaymentRecord:
    allocation: Allocation | None = None
    if row.reference:
        try:
            allocation = resolver.resolve(sacco_id, row.reference)
        except ReferenceResolutionError as e:
            logger.warning("txn_id=%s reference=%s unresolved: %s", row.txn_id, row.reference, e)

    if allocation is not None and allocation.is_complete:
        status = PaymentStatus.POSTED
    else:
        status = PaymentStatus.UNALLOCATED

    return PaymentRecord(
        sacco_id=sacco_id,
        txn_id=row.txn_id,
        amount=row.amount,
        msisdn=row.msisdn,
        occurred_at=row.occurred_at,
        reference=row.reference,
        status=status,
        ikimina_id=allocation.ikimina_id if allocation is not None else ikimina_id,
        member_id=allocation.member_id if allocation is not None else None,
    )


def commit_statement(
    repository: PaymentRepository,
    sacco_id: str,
    rows: Iterable[StatementRow],
    ikimina_id: str | None = None,
    resolver: ReferenceResolver | None = None,
) -> ImportResult:
    """Commit validated rows for one SACCO.

    Args:
        repository: payment storage
        sacco_id: tenant the payments belong to
        rows: rows that passed validation (not re-validated here)
        ikimina_id: group the import was started from, kept on unallocated payments
        resolver: reference matcher; NullReferenceResolver when omitted

    Returns:
        ImportResult with inserted == posted + unallocated and
        inserted + duplicates == len(rows)

    Raises:
        EmptyBatchError: ``rows`` is empty
        CommitError: storage failure, nothing inserted
    """
    rows_list = list(rows)
    if not rows_list:
        raise EmptyBatchError("no rows to import")
    resolver = resolver or NullReferenceResolver()

    duplicates = 0
    seen: set[str] = set()
    records: list[PaymentRecord] = []
    try:
        for row in rows_list:
            if row.txn_id in seen:
                duplicates += 1
                logger.debug("txn_id=%s repeated within batch, skipped", row.txn_id)
                continue
            seen.add(row.txn_id)
            records.append(build_payment(row, sacco_id, ikimina_id, resolver))
        inserted_ids = repository.insert_payments(records)
    except StorageError as e:
        raise CommitError(f"statement import failed: {e}") from e

    posted = 0
    unallocated = 0
    for record in records:
        if record.txn_id not in inserted_ids:
            duplicates += 1
            continue
        if record.status is PaymentStatus.POSTED:
            posted += 1
        else:
            unallocated += 1

    result = ImportResult(
        inserted=posted + unallocated,
        duplicates=duplicates,
        posted=posted,
        unallocated=unallocated,
    )
    logger.info(
        "sacco=%s inserted=%d duplicates=%d posted=%d unallocated=%d",
        sacco_id,
        result.inserted,
        result.duplicates,
        result.posted,
        result.unallocated,
    )
    return result

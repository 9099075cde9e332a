from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from typing import Any, Protocol

from ..models.statement import PAYMENT_COLUMNS, PaymentRecord
from .batch_insert import BatchInsertError, BatchMetrics, batch_insert

"""Payment repositories.

The committer talks to storage only through PaymentRepository. The storage
unique key (sacco_id, txn_id) is the enforcement point for idempotent
re-imports: a conflicting row is skipped, never raised. Anything else that
goes wrong is a StorageError and the whole batch is rolled back.
"""

__all__ = [
    "StorageError",
    "PaymentRepository",
    "PostgresPaymentRepository",
    "InMemoryPaymentRepository",
]

logger = logging.getLogger(__name__)

CONFLICT_KEY: tuple[str, str] = ("sacco_id", "txn_id")


class StorageError(Exception):
    """Transport / storage failure; batch-fatal."""


class PaymentRepository(Protocol):
    def insert_payments(self, records: Sequence[PaymentRecord]) -> set[str]:
        """Insert all records atomically, skipping (sacco_id, txn_id) conflicts.

        Returns:
            txn_ids of the records that were actually inserted

        Raises:
            StorageError: nothing was persisted
        """
        ...


class PostgresPaymentRepository:
    """psycopg2 backed repository; one explicit transaction per batch."""

    def __init__(self, cursor: Any, table: str = "payments", page_size: int = 500) -> None:
        self.cursor = cursor
        self.table = table
        self.page_size = page_size

    def _log_metrics(self, metrics: BatchMetrics) -> None:
        logger.debug(
            "table=%s batch_size=%d elapsed_sec=%.4f",
            self.table,
            metrics.batch_size,
            metrics.elapsed_seconds,
        )

    def _rollback(self) -> None:
        try:
            self.cursor.execute("ROLLBACK")
        except Exception as e:
            # the insert error is re-raised by the caller
            logger.warning("rollback failed: %s", e)

    def insert_payments(self, records: Sequence[PaymentRecord]) -> set[str]:
        if not records:
            return set()
        try:
            self.cursor.execute("BEGIN")
        except Exception as e:
            raise StorageError(f"failed to begin transaction: {e}") from e
        try:
            result = batch_insert(
                self.cursor,
                table=self.table,
                columns=PAYMENT_COLUMNS,
                rows=[r.as_row() for r in records],
                returning=("txn_id",),
                conflict_columns=CONFLICT_KEY,
                page_size=self.page_size,
                metrics_callback=self._log_metrics,
            )
            self.cursor.execute("COMMIT")
        except BatchInsertError as e:
            self._rollback()
            raise StorageError(f"payment insert failed: {e}") from e
        except Exception as e:
            self._rollback()
            raise StorageError(f"commit failed: {e}") from e
        return {row[0] for row in result.returned_values or []}


class InMemoryPaymentRepository:
    """Process-local payment store (mock mode and tests).

    Insert-or-skip is done under a lock so concurrent imports for the same
    SACCO cannot both insert the same txn_id.
    """

    def __init__(self) -> None:
        self._payments: dict[tuple[str, str], PaymentRecord] = {}
        self._lock = threading.Lock()

    def insert_payments(self, records: Sequence[PaymentRecord]) -> set[str]:
        inserted: set[str] = set()
        with self._lock:
            staged: dict[tuple[str, str], PaymentRecord] = {}
            for record in records:
                if record.key in self._payments or record.key in staged:
                    continue
                staged[record.key] = record
                inserted.add(record.txn_id)
            self._payments.update(staged)
        return inserted

    def payments(self, sacco_id: str | None = None) -> list[PaymentRecord]:
        with self._lock:
            return [p for p in self._payments.values() if sacco_id is None or p.sacco_id == sacco_id]

    def get(self, sacco_id: str, txn_id: str) -> PaymentRecord | None:
        return self._payments.get((sacco_id, txn_id))

    def __len__(self) -> int:
        return len(self._payments)

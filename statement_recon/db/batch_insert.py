from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from psycopg2.extras import execute_values

"""DB batch insert.

Batched INSERT through psycopg2.extras.execute_values. Conflicts on a
unique key can be skipped (ON CONFLICT ... DO NOTHING); combined with
RETURNING this tells the caller exactly which rows were new.
"""

__all__ = [
    "BatchInsertError",
    "BatchMetrics",
    "InsertResult",
    "batch_insert",
]


class BatchInsertError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Timing of a single execute_values call."""
    batch_size: int
    elapsed_seconds: float
    start_time: float  # time.time()
    end_time: float


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int
    returned_values: list[tuple[Any, ...]] | None = None


def _quote(identifier: str) -> str:
    return ".".join(f'"{part}"' for part in identifier.split("."))


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    returning: Sequence[str] | None = None,
    conflict_columns: Sequence[str] | None = None,
    page_size: int = 500,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> InsertResult:
    """Perform a batched INSERT.

    Parameters
    ----------
    cursor: psycopg2 cursor (transaction handled by the caller)
    table: target table, optionally schema qualified
    columns: insert columns, in row value order
    rows: row value sequences
    returning: columns to return for inserted rows (skipped rows return nothing)
    conflict_columns: unique key; conflicting rows are skipped instead of failing
    page_size: execute_values page size
    metrics_callback: receives BatchMetrics; not called for empty ``rows``

    Returns
    -------
    InsertResult. Without ``returning`` the row count is the submitted count,
    because psycopg2 only reports the rowcount of the last page.
    """
    rows_list = [list(r) for r in rows]
    if not rows_list:
        return InsertResult(inserted_rows=0, returned_values=[] if returning else None)

    cols_sql = ",".join(_quote(c) for c in columns)
    sql = f"INSERT INTO {_quote(table)} ({cols_sql}) VALUES %s"
    if conflict_columns:
        sql += f" ON CONFLICT ({','.join(_quote(c) for c in conflict_columns)}) DO NOTHING"
    if returning:
        sql += f" RETURNING {','.join(_quote(c) for c in returning)}"

    start_time = time.time()
    try:
        returned = execute_values(cursor, sql, rows_list, page_size=page_size, fetch=bool(returning))
    except Exception as e:
        raise BatchInsertError(str(e)) from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(
                BatchMetrics(
                    batch_size=len(rows_list),
                    elapsed_seconds=end_time - start_time,
                    start_time=start_time,
                    end_time=end_time,
                )
            )

    if returning:
        returned_values = [tuple(r) for r in (returned or [])]
        return InsertResult(inserted_rows=len(returned_values), returned_values=returned_values)
    return InsertResult(inserted_rows=len(rows_list), returned_values=None)

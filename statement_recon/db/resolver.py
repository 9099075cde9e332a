from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import psycopg2

from ..models.statement import Allocation
from ..services.feedback import reference_segments
from .repository import StorageError

"""Reference resolvers.

Turn a reference token ``DISTRICT.SACCO.IKIMINA[.MEMBER]`` into an
Allocation. Segment 3 is the ikimina (group) code, segment 4 the member
code. Only a member-level match makes a payment POSTED; a group-only match
keeps the group on an UNALLOCATED payment.

ReferenceResolutionError is a per-row failure (the row just stays
unallocated); StorageError is a transport failure and aborts the commit.
"""

__all__ = [
    "ReferenceResolutionError",
    "ReferenceResolver",
    "NullReferenceResolver",
    "IkiminaEntry",
    "RegistryReferenceResolver",
    "PostgresReferenceResolver",
]

logger = logging.getLogger(__name__)


class ReferenceResolutionError(Exception):
    """A single reference could not be resolved."""


class ReferenceResolver(Protocol):
    def resolve(self, sacco_id: str, reference: str) -> Allocation | None:
        ...


def _codes(reference: str) -> tuple[str | None, str | None]:
    """(ikimina_code, member_code) from a reference, upper-cased."""
    segments = [s.strip().upper() for s in reference_segments(reference)]
    if len(segments) < 3:
        return None, None
    return segments[2], (segments[3] if len(segments) >= 4 else None)


class NullReferenceResolver:
    """Resolves nothing; every payment is imported as UNALLOCATED."""

    def resolve(self, sacco_id: str, reference: str) -> Allocation | None:
        return None


@dataclass(frozen=True)
class IkiminaEntry:
    id: str
    code: str
    sacco_id: str
    members: Mapping[str, str] = field(default_factory=dict)  # member_code -> member_id


class RegistryReferenceResolver:
    """Resolves references against an in-memory registry of groups."""

    def __init__(self, entries: Iterable[IkiminaEntry]) -> None:
        self._by_code: dict[tuple[str, str], IkiminaEntry] = {}
        for entry in entries:
            self._by_code[(entry.sacco_id, entry.code.upper())] = entry

    def resolve(self, sacco_id: str, reference: str) -> Allocation | None:
        ikimina_code, member_code = _codes(reference)
        if ikimina_code is None:
            return None
        entry = self._by_code.get((sacco_id, ikimina_code))
        if entry is None:
            return None
        members = {k.upper(): v for k, v in entry.members.items()}
        member_id = members.get(member_code) if member_code else None
        return Allocation(ikimina_id=entry.id, member_id=member_id)


class PostgresReferenceResolver:
    """Looks up active groups and members; results are cached per instance."""

    IKIMINA_SQL = (
        "SELECT id FROM ibimina WHERE sacco_id = %s AND upper(code) = %s AND status = 'ACTIVE'"
    )
    MEMBER_SQL = (
        "SELECT id FROM ikimina_members "
        "WHERE ikimina_id = %s AND upper(member_code) = %s AND status = 'ACTIVE'"
    )

    def __init__(self, cursor: Any) -> None:
        self.cursor = cursor
        self._ikimina_cache: dict[tuple[str, str], str | None] = {}
        self._member_cache: dict[tuple[str, str], str | None] = {}

    def _fetch_id(self, sql: str, params: tuple[Any, ...]) -> str | None:
        try:
            self.cursor.execute(sql, params)
            rows = self.cursor.fetchall()
        except psycopg2.Error as e:
            raise StorageError(f"reference lookup failed: {e}") from e
        if len(rows) > 1:
            raise ReferenceResolutionError(f"ambiguous code {params[1]!r}: {len(rows)} matches")
        return str(rows[0][0]) if rows else None

    def resolve(self, sacco_id: str, reference: str) -> Allocation | None:
        ikimina_code, member_code = _codes(reference)
        if ikimina_code is None:
            return None
        key = (sacco_id, ikimina_code)
        if key not in self._ikimina_cache:
            self._ikimina_cache[key] = self._fetch_id(self.IKIMINA_SQL, key)
        ikimina_id = self._ikimina_cache[key]
        if ikimina_id is None:
            return None
        member_id = None
        if member_code:
            member_key = (ikimina_id, member_code)
            if member_key not in self._member_cache:
                self._member_cache[member_key] = self._fetch_id(self.MEMBER_SQL, member_key)
            member_id = self._member_cache[member_key]
        return Allocation(ikimina_id=ikimina_id, member_id=member_id)

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from decimal import Decimal
from pathlib import Path
from typing import Any

from ..config.loader import ImportConfig, LimitsConfig
from ..db.repository import PaymentRepository
from ..db.resolver import ReferenceResolver
from ..logging.error_log import COMMIT_ERROR, ErrorLogBuffer
from ..mapping.column_mapper import ColumnMapping, MappingError
from ..masks.registry import UnknownMaskError, get_mask_options, masks_for_variant
from ..models.feedback import FeedbackReport
from ..models.fields import FIELD_KEYS
from ..models.processed import ProcessedBatch, RawRow
from ..models.statement import ImportResult, StatementRow
from ..tabular.reader import TabularData, parse_tabular, read_tabular_file
from .committer import CommitError, EmptyBatchError, commit_statement
from .feedback import analyze
from .row_processor import process_rows

"""Statement import session.

Holds the state of one import (row set, column mapping, mask selection) and
runs the pipeline stages in order:

    load_file / load_path / load_messages -> set_mapping / set_mask
    -> process -> feedback -> commit

The processed batch is cached and invalidated whenever the rows, mapping or
masks change, so feedback and commit always see the current selection.
"""

__all__ = [
    "MappingIncompleteError",
    "MessageParseError",
    "MESSAGE_SOURCE",
    "MESSAGE_KEY_ALIASES",
    "MessageParser",
    "message_to_raw_row",
    "StatementImportSession",
]

logger = logging.getLogger(__name__)

MESSAGE_SOURCE = "<sms>"

# parser output key -> logical field
MESSAGE_KEY_ALIASES: dict[str, str] = {
    "occurred_at": "occurred_at",
    "occurredAt": "occurred_at",
    "timestamp": "occurred_at",
    "txn_id": "txn_id",
    "txnId": "txn_id",
    "msisdn": "msisdn",
    "phone": "msisdn",
    "amount": "amount",
    "reference": "reference",
    "ref": "reference",
}

# One message line in, parsed fields out. Raise or return None when the
# line cannot be parsed.
MessageParser = Callable[[str], "Mapping[str, Any] | None"]


class MappingIncompleteError(MappingError):
    """A required field has no column assigned."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"required fields are not mapped: {', '.join(missing)}")


class MessageParseError(Exception):
    """A message line could not be parsed; nothing was loaded."""

    def __init__(self, message: str, line_number: int | None = None):
        self.line_number = line_number
        super().__init__(message)


def _message_cell(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


def message_to_raw_row(parsed: Mapping[str, Any]) -> RawRow:
    """Normalize parser output keys onto the logical field names."""
    row: RawRow = {}
    for key, value in parsed.items():
        field_key = MESSAGE_KEY_ALIASES.get(key)
        if field_key is None or field_key in row:
            continue
        row[field_key] = _message_cell(value)
    return row


class StatementImportSession:
    """One statement import from raw input to committed payments."""

    def __init__(
        self,
        variant: str = "generic",
        mask_overrides: Mapping[str, str] | None = None,
        configured_variants: Mapping[str, Mapping[str, str]] | None = None,
        limits: LimitsConfig | None = None,
        null_sentinels: Iterable[str] = (),
        error_log: ErrorLogBuffer | None = None,
        source_name: str = "<memory>",
    ) -> None:
        self.variant = variant
        self.masks = masks_for_variant(variant, mask_overrides, configured_variants)
        self.limits = limits or LimitsConfig()
        self.null_sentinels = tuple(null_sentinels)
        self.error_log = error_log if error_log is not None else ErrorLogBuffer()
        self.source_name = source_name
        self.headers: list[str] = []
        self.rows: list[RawRow] = []
        self.mapping = ColumnMapping()
        self._batch: ProcessedBatch[StatementRow] | None = None
        self._logged_batch: ProcessedBatch[StatementRow] | None = None

    @classmethod
    def from_config(
        cls,
        config: ImportConfig,
        variant: str | None = None,
        mask_overrides: Mapping[str, str] | None = None,
        error_log: ErrorLogBuffer | None = None,
    ) -> StatementImportSession:
        return cls(
            variant=variant or config.default_variant,
            mask_overrides=mask_overrides,
            configured_variants=config.variants,
            limits=config.limits,
            null_sentinels=config.null_sentinels,
            error_log=error_log,
        )

    # -- loading -------------------------------------------------------

    def _accept(self, data: TabularData, source_name: str) -> TabularData:
        self.headers = list(data.headers)
        self.rows = list(data.rows)
        self.mapping = ColumnMapping.from_headers(self.headers)
        self.source_name = source_name
        self._batch = None
        logger.info(
            "loaded source=%s format=%s rows=%d headers=%s",
            source_name,
            data.file_format,
            len(self.rows),
            self.headers,
        )
        if not self.mapping.is_complete:
            logger.debug("auto mapping incomplete, missing=%s", self.mapping.missing_required())
        return data

    def load_file(
        self,
        data: bytes,
        file_name: str | None = None,
        file_format: str | None = None,
        sheet_name: str | None = None,
        should_abort: Callable[[], bool] | None = None,
    ) -> TabularData:
        """Decode a statement file and propose a column mapping.

        Raises:
            DecodeError: fatal decode problem; the session keeps its previous rows
        """
        decoded = parse_tabular(
            data,
            file_name=file_name,
            file_format=file_format,
            limits=self.limits,
            sheet_name=sheet_name,
            null_sentinels=self.null_sentinels,
            should_abort=should_abort,
        )
        return self._accept(decoded, file_name or self.source_name)

    def load_path(self, path: Path, sheet_name: str | None = None) -> TabularData:
        decoded = read_tabular_file(
            path,
            limits=self.limits,
            sheet_name=sheet_name,
            null_sentinels=self.null_sentinels,
        )
        return self._accept(decoded, path.name)

    def load_messages(self, lines: Iterable[str], parser: MessageParser) -> int:
        """Load pre-parsed SMS messages as a row set with the identity mapping.

        Blank lines are dropped. Every remaining line must parse; the first
        failure aborts the whole load and the session keeps its previous rows.

        Returns:
            number of rows loaded

        Raises:
            MessageParseError: a line failed to parse, or no line was given
        """
        rows: list[RawRow] = []
        for line_number, line in enumerate(lines, start=1):
            text = line.strip()
            if not text:
                continue
            try:
                parsed = parser(text)
            except Exception as e:
                raise MessageParseError(f"line {line_number}: {e}", line_number) from e
            if not parsed:
                raise MessageParseError(f"line {line_number}: message not recognised", line_number)
            rows.append(message_to_raw_row(parsed))
        if not rows:
            raise MessageParseError("no messages to parse")

        self.headers = list(FIELD_KEYS)
        self.rows = rows
        self.mapping = ColumnMapping.identity()
        self.source_name = MESSAGE_SOURCE
        self._batch = None
        logger.info("loaded source=%s rows=%d", MESSAGE_SOURCE, len(rows))
        return len(rows)

    # -- selection -----------------------------------------------------

    def set_mapping(self, field_key: str, column: str | None) -> None:
        if column and column not in self.headers:
            raise MappingError(f"unknown column: {column}")
        self.mapping.set_mapping(field_key, column)
        self._batch = None

    def set_mask(self, field_key: str, mask_id: str) -> None:
        """Select a mask for a field.

        Raises:
            UnknownMaskError: unknown field, or a mask not offered for it
        """
        if mask_id not in {m.id for m in get_mask_options(field_key)}:
            raise UnknownMaskError(f"mask '{mask_id}' is not available for field '{field_key}'")
        self.masks[field_key] = mask_id
        self._batch = None

    # -- stages --------------------------------------------------------

    def process(self, show_progress: bool = False) -> ProcessedBatch[StatementRow]:
        """Validate every loaded row under the current mapping and masks.

        Raises:
            MappingIncompleteError: a required field is not mapped
        """
        missing = self.mapping.missing_required()
        if missing:
            raise MappingIncompleteError(missing)
        if self._batch is None:
            specs = self.mapping.to_field_specs(self.masks)
            self._batch = process_rows(specs, self.rows, show_progress=show_progress)
        return self._batch

    def feedback(self) -> FeedbackReport:
        return analyze(self.process().rows)

    def record_rejections(self) -> int:
        """Buffer one error record per invalid cell of every rejected row.

        Records are written once per processed batch; later calls only
        return the rejected-row count.
        """
        batch = self.process()
        if self._logged_batch is batch:
            return len(batch.invalid_rows)
        self._logged_batch = batch
        return self.error_log.record_rejected_rows(self.source_name, batch.invalid_rows)

    def commit(
        self,
        repository: PaymentRepository,
        sacco_id: str,
        ikimina_id: str | None = None,
        resolver: ReferenceResolver | None = None,
    ) -> ImportResult:
        """Persist the valid rows; rejected rows go to the error log.

        Raises:
            EmptyBatchError: no row passed validation
            CommitError: storage failure (also recorded in the error log)
        """
        batch = self.process()
        rejected = self.record_rejections()
        if rejected:
            logger.warning("source=%s rejected_rows=%d", self.source_name, rejected)
        try:
            return commit_statement(
                repository,
                sacco_id,
                batch.records(),
                ikimina_id=ikimina_id,
                resolver=resolver,
            )
        except EmptyBatchError:
            raise
        except CommitError as e:
            self.error_log.record_file_error(self.source_name, COMMIT_ERROR, str(e))
            raise

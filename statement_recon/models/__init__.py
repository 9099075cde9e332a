"""Domain models for the statement import & reconciliation engine."""

from .error_record import ErrorRecord
from .feedback import FeedbackReport
from .fields import OPTIONAL_FIELDS, REQUIRED_FIELDS, STATEMENT_FIELDS, StatementField
from .processed import FieldSpec, ProcessedBatch, ProcessedCell, ProcessedRow, RawRow
from .statement import (
    Allocation,
    ImportResult,
    PaymentRecord,
    PaymentStatus,
    StatementRow,
)

__all__ = [
    # Fields
    "StatementField",
    "STATEMENT_FIELDS",
    "REQUIRED_FIELDS",
    "OPTIONAL_FIELDS",
    # Processing models
    "RawRow",
    "FieldSpec",
    "ProcessedCell",
    "ProcessedRow",
    "ProcessedBatch",
    "FeedbackReport",
    # Statement / payment models
    "StatementRow",
    "PaymentStatus",
    "PaymentRecord",
    "Allocation",
    "ImportResult",
    "ErrorRecord",
]

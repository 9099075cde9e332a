from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from dateutil import parser as dateutil_parser

from ..models.processed import ProcessedCell

"""Field mask registry.

A mask is a named, pure validation + normalization rule for one logical
field. Masks never raise on bad input: they return an invalid ProcessedCell
with a human readable reason so that the caller can keep processing the rest
of the row and the batch.

Absent vs malformed: masks for required fields report absence as invalid;
masks for the optional reference field treat absence as a valid ``None`` and
only flag values that are present but malformed.

Every mask is idempotent on its own output: applying it to a normalized
value returns the same value with valid=True.
"""

__all__ = [
    "MaskDefinition",
    "UnknownMaskError",
    "DEFAULT_STATEMENT_MASKS",
    "VARIANT_MASKS",
    "get_mask",
    "get_mask_options",
    "apply_mask",
    "masks_for_variant",
]


class UnknownMaskError(KeyError):
    """Raised for a mask id, field or variant the registry does not know."""

    def __str__(self) -> str:  # KeyError quotes its argument by default
        return str(self.args[0]) if self.args else ""


@dataclass(frozen=True)
class MaskDefinition:
    id: str
    label: str
    validate: Callable[[Any], ProcessedCell]


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _required(value: Any) -> ProcessedCell:
    return ProcessedCell(value=value, valid=False, reason="value is required")


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

# 01/09/2024, 1-9-24, 01.09.2024 08:53, 01/09/2024 08:53:10
_NUMERIC_DATE = re.compile(
    r"^(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{4}|\d{2})"
    r"(?:[ T,]+(\d{1,2}):(\d{2})(?::(\d{2}))?)?$"
)
_HAS_MONTH_NAME = re.compile(r"[A-Za-z]{3}")
_HAS_YEAR = re.compile(r"\d{4}")


def _parse_iso(text: str) -> datetime | None:
    candidate = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return datetime.fromisoformat(candidate)
    except ValueError:
        return None


def _parse_numeric(text: str, day_first: bool) -> datetime | None:
    m = _NUMERIC_DATE.match(text)
    if not m:
        return None
    first, second, year_text, hour, minute, second_of_minute = m.groups()
    day, month = (int(first), int(second)) if day_first else (int(second), int(first))
    year = int(year_text)
    if len(year_text) == 2:
        year += 2000
    return datetime(
        year,
        month,
        day,
        int(hour or 0),
        int(minute or 0),
        int(second_of_minute or 0),
    )


# a date part missing from the text is filled from the default, so the two
# parses disagree
_DEFAULT_A = datetime(2000, 1, 1)
_DEFAULT_B = datetime(2004, 2, 2)


def _parse_named_month(text: str, day_first: bool) -> datetime | None:
    try:
        a = dateutil_parser.parse(text, dayfirst=day_first, default=_DEFAULT_A)
        b = dateutil_parser.parse(text, dayfirst=day_first, default=_DEFAULT_B)
    except (ValueError, OverflowError):
        return None
    if a != b:
        return None
    return a


def _date_mask(day_first: bool | None) -> Callable[[Any], ProcessedCell]:
    """Build a date validator.

    ``day_first=None`` accepts ISO-8601 only; otherwise ambiguous numeric and
    named-month dates are read with the given day/month order.
    """

    def validate(value: Any) -> ProcessedCell:
        if _is_blank(value):
            return _required(value)
        if isinstance(value, datetime):
            return ProcessedCell(value=value.isoformat(), valid=True)
        if isinstance(value, date):
            return ProcessedCell(value=datetime(value.year, value.month, value.day).isoformat(), valid=True)
        text = str(value).strip()
        parsed = _parse_iso(text)
        if parsed is None and day_first is not None:
            try:
                parsed = _parse_numeric(text, day_first)
            except ValueError:
                return ProcessedCell(value=value, valid=False, reason=f"not a calendar date: {text}")
            if parsed is None and _HAS_MONTH_NAME.search(text) and _HAS_YEAR.search(text):
                parsed = _parse_named_month(text, day_first)
        if parsed is None:
            if day_first is None:
                reason = f"expected an ISO-8601 date (YYYY-MM-DD), got '{text}'"
            else:
                order = "DD/MM/YYYY" if day_first else "MM/DD/YYYY"
                reason = f"unrecognised date '{text}' (expected ISO-8601 or {order})"
            return ProcessedCell(value=value, valid=False, reason=reason)
        return ProcessedCell(value=parsed.isoformat(), valid=True)

    return validate


# ---------------------------------------------------------------------------
# Phone numbers
# ---------------------------------------------------------------------------

_PHONE_NOISE = re.compile(r"[\s\-().]")
# MTN 078/079, Airtel 072/073; with or without 0 / 250 / +250 prefix
_RW_MOBILE = re.compile(r"^(?:\+?250|0)?(7[2389]\d{7})$")
_E164 = re.compile(r"^\+([1-9]\d{7,14})$")


def _clean_phone(value: Any) -> str:
    text = _PHONE_NOISE.sub("", str(value).strip())
    if text.startswith("00"):
        text = "+" + text[2:]
    return text


def _rw_msisdn(value: Any) -> ProcessedCell:
    if _is_blank(value):
        return _required(value)
    text = _clean_phone(value)
    if text.startswith("+2500"):
        text = "+250" + text[5:]
    m = _RW_MOBILE.match(text)
    if not m:
        return ProcessedCell(
            value=value,
            valid=False,
            reason=f"'{value}' is not a Rwandan mobile number (07XXXXXXXX)",
        )
    return ProcessedCell(value=f"+250{m.group(1)}", valid=True)


def _e164(value: Any) -> ProcessedCell:
    if _is_blank(value):
        return _required(value)
    text = _clean_phone(value)
    m = _E164.match(text)
    if not m:
        return ProcessedCell(value=value, valid=False, reason=f"'{value}' is not an E.164 number (+XXXXXXXXXXX)")
    return ProcessedCell(value=f"+{m.group(1)}", valid=True)


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------

_CURRENCY = re.compile(r"^(?:RWF|FRW)\s*|\s*(?:RWF|FRW)$", re.IGNORECASE)
_PLAIN_NUMBER = re.compile(r"^[+-]?\d+(?:\.\d+)?$")


def _amount_mask(thousands: str, decimal_point: str) -> Callable[[Any], ProcessedCell]:
    def validate(value: Any) -> ProcessedCell:
        if _is_blank(value):
            return _required(value)
        if isinstance(value, bool):
            return ProcessedCell(value=value, valid=False, reason="amount must be a number")
        if isinstance(value, (int, float, Decimal)):
            try:
                amount = Decimal(str(value))
            except InvalidOperation:
                return ProcessedCell(value=value, valid=False, reason="amount must be a number")
        else:
            text = _CURRENCY.sub("", str(value).strip())
            text = text.replace(" ", "").replace("\u00a0", "")
            for sep in thousands:
                text = text.replace(sep, "")
            text = text.replace(decimal_point, ".")
            if not _PLAIN_NUMBER.match(text):
                return ProcessedCell(value=value, valid=False, reason=f"'{value}' is not a number")
            amount = Decimal(text)
        if not amount.is_finite():
            return ProcessedCell(value=value, valid=False, reason="amount must be a finite number")
        if amount <= 0:
            return ProcessedCell(value=value, valid=False, reason=f"amount must be greater than zero, got {value}")
        return ProcessedCell(value=amount, valid=True)

    return validate


# ---------------------------------------------------------------------------
# Free text / references
# ---------------------------------------------------------------------------

_SEGMENT = re.compile(r"^[A-Z0-9_-]+$")


def _trimmed_code(upper: bool) -> Callable[[Any], ProcessedCell]:
    def validate(value: Any) -> ProcessedCell:
        if _is_blank(value):
            return _required(value)
        text = str(value).strip()
        return ProcessedCell(value=text.upper() if upper else text, valid=True)

    return validate


def _optional_text(value: Any) -> ProcessedCell:
    if _is_blank(value):
        return ProcessedCell(value=None, valid=True)
    return ProcessedCell(value=str(value).strip(), valid=True)


def _reference_grammar(value: Any) -> ProcessedCell:
    if _is_blank(value):
        return ProcessedCell(value=None, valid=True)
    text = str(value).strip().upper()
    segments = text.split(".")
    if not 3 <= len(segments) <= 4 or not all(_SEGMENT.match(s) for s in segments):
        return ProcessedCell(
            value=value,
            valid=False,
            reason=f"reference '{value}' is malformed (expected DISTRICT.SACCO.IKIMINA[.MEMBER])",
        )
    return ProcessedCell(value=text, valid=True)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

FIELD_MASKS: dict[str, tuple[MaskDefinition, ...]] = {
    "occurred_at": (
        MaskDefinition("iso", "ISO-8601 (YYYY-MM-DD)", _date_mask(None)),
        MaskDefinition("day-first", "Day first (DD/MM/YYYY)", _date_mask(True)),
        MaskDefinition("month-first", "Month first (MM/DD/YYYY)", _date_mask(False)),
    ),
    "txn_id": (
        MaskDefinition("trim", "Trimmed text", _trimmed_code(upper=False)),
        MaskDefinition("uppercase", "Trimmed, upper case", _trimmed_code(upper=True)),
    ),
    "msisdn": (
        MaskDefinition("rw-msisdn", "Rwanda mobile (07XXXXXXXX)", _rw_msisdn),
        MaskDefinition("e164", "International (+XXXXXXXXXXX)", _e164),
    ),
    "amount": (
        MaskDefinition("decimal", "1,234.56", _amount_mask(thousands=",", decimal_point=".")),
        MaskDefinition("decimal-comma", "1.234,56", _amount_mask(thousands=". ", decimal_point=",")),
    ),
    "reference": (
        MaskDefinition("optional-text", "Optional text", _optional_text),
        MaskDefinition("reference-grammar", "DISTRICT.SACCO.IKIMINA(.MEMBER)", _reference_grammar),
    ),
}

_MASKS_BY_ID: dict[str, MaskDefinition] = {
    mask.id: mask for options in FIELD_MASKS.values() for mask in options
}

# First option of each field
DEFAULT_STATEMENT_MASKS: dict[str, str] = {
    key: options[0].id for key, options in FIELD_MASKS.items()
}

# Per statement source; mobile-money exports write dates day first
VARIANT_MASKS: dict[str, dict[str, str]] = {
    "generic": {},
    "momo": {"occurred_at": "day-first"},
}


def get_mask_options(field_key: str) -> list[MaskDefinition]:
    """Masks available for a field, default first."""
    try:
        return list(FIELD_MASKS[field_key])
    except KeyError:
        raise UnknownMaskError(f"unknown field: {field_key}") from None


def get_mask(mask_id: str) -> MaskDefinition:
    try:
        return _MASKS_BY_ID[mask_id]
    except KeyError:
        raise UnknownMaskError(f"unknown mask: {mask_id}") from None


def apply_mask(mask_id: str, raw_value: Any) -> ProcessedCell:
    return get_mask(mask_id).validate(raw_value)


def masks_for_variant(
    variant: str,
    overrides: Mapping[str, str] | None = None,
    configured: Mapping[str, Mapping[str, str]] | None = None,
) -> dict[str, str]:
    """Resolve the mask selection for a statement source variant.

    Resolution order: built-in defaults, built-in variant, configured variant
    (from import.yml), then explicit overrides.

    Raises:
        UnknownMaskError: unknown variant, or a mask not offered for its field
    """
    known = {**VARIANT_MASKS, **(configured or {})}
    if variant not in known:
        raise UnknownMaskError(f"unknown statement variant: {variant}")
    masks = dict(DEFAULT_STATEMENT_MASKS)
    masks.update(VARIANT_MASKS.get(variant, {}))
    masks.update((configured or {}).get(variant, {}))
    masks.update(overrides or {})
    for field_key, mask_id in masks.items():
        if mask_id not in {m.id for m in get_mask_options(field_key)}:
            raise UnknownMaskError(f"mask '{mask_id}' is not available for field '{field_key}'")
    return masks

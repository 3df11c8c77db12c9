"""Conversion between in-memory expense records and expense collection rows."""
import logging
import math
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Union

from bson.decimal128 import Decimal128
from pydantic import ValidationError as PydanticValidationError

from models.expense import Expense, ExpenseDraft
from utils.errors import ValidationError

logger = logging.getLogger(__name__)

# Stored field names. 'date' holds the time the expense was recorded,
# 'billing_date' the date printed on the receipt.
ID_FIELD = "_id"
RECORDED_AT_FIELD = "date"
BILLING_DATE_FIELD = "billing_date"
CREATED_AT_FIELD = "created_at"
UPDATED_AT_FIELD = "updated_at"

Row = Dict[str, Any]


def format_calendar_date(value: Union[date, datetime, None]) -> Optional[str]:
    """date or datetime -> 'YYYY-MM-DD'; None stays None."""
    if value is None:
        return None
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def coerce_total(value: Any) -> float:
    """Stored totals may be text, Decimal or Decimal128. A bad total is an error, never zero."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"Invalid stored total: {value!r}", constraint="total")
    if isinstance(value, Decimal128):
        value = value.to_decimal()
    try:
        total = float(Decimal(str(value).strip()))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"Invalid stored total: {value!r}", constraint="total") from e
    if not math.isfinite(total) or total < 0:
        raise ValidationError(f"Invalid stored total: {value!r}", constraint="total")
    return total


def to_store_row(record: Union[Expense, ExpenseDraft]) -> Row:
    """
    Maps a draft or expense to a stored row. An absent billing date is stored
    as None rather than omitted.
    """
    row: Row = {
        "total": record.total,
        "currency": record.currency,
        "category": record.category,
        "vendor": record.vendor,
        BILLING_DATE_FIELD: format_calendar_date(record.billing_date),
    }
    if isinstance(record, Expense):
        row[ID_FIELD] = record.id
        row[RECORDED_AT_FIELD] = _format_timestamp(record.recorded_at)
        row[CREATED_AT_FIELD] = _format_timestamp(record.created_at)
        row[UPDATED_AT_FIELD] = _format_timestamp(record.updated_at)
    return row


def from_store_row(row: Row) -> Expense:
    """Maps a stored row back to an Expense. Raises ValidationError for rows that cannot be represented."""
    raw_id = row.get(ID_FIELD, row.get("id"))
    if raw_id is None:
        raise ValidationError("Stored row has no id.", constraint="id")

    billing_date = row.get(BILLING_DATE_FIELD)
    if isinstance(billing_date, datetime):
        billing_date = billing_date.date()

    try:
        return Expense(
            id=str(raw_id),
            total=coerce_total(row.get("total")),
            currency=row.get("currency"),
            category=row.get("category"),
            vendor=row.get("vendor"),
            billing_date=billing_date,
            recorded_at=row.get(RECORDED_AT_FIELD),
            created_at=row.get(CREATED_AT_FIELD),
            updated_at=row.get(UPDATED_AT_FIELD),
        )
    except PydanticValidationError as e:
        logger.error(f"Stored row {raw_id} failed validation: {e}")
        raise ValidationError(f"Stored expense {raw_id} is invalid: {e.errors()[0].get('msg', 'invalid field')}") from e

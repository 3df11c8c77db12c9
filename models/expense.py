"""Pydantic models for expense data"""
import math
from pydantic import BaseModel, Field, field_validator
from datetime import date, datetime
from typing import Any, Dict, Optional

EXPENSE_CATEGORIES = (
    "Food",
    "Travel",
    "Shopping",
    "Entertainment",
    "Utilities",
    "Healthcare",
    "Education",
    "Other",
)
DEFAULT_CATEGORY = "Other"

_CATEGORY_LOOKUP = {name.lower(): name for name in EXPENSE_CATEGORIES}


class ExpenseDraft(BaseModel):
    """
    An expense before it has been given a persistent identifier.
    Produced by manual entry or by normalizing a model reply.
    """
    total: float = Field(..., ge=0)
    currency: str = Field(..., pattern=r"^[A-Z]{3}$")
    category: str = DEFAULT_CATEGORY
    vendor: str = Field(..., min_length=1)
    billing_date: Optional[date] = Field(default=None, alias="billingDate")

    class Config:
        populate_by_name = True
        from_attributes = True

    @field_validator("total", mode="before")
    @classmethod
    def _reject_bool_total(cls, value: Any) -> Any:
        # JSON true/false would otherwise be read as 1.0 / 0.0
        if isinstance(value, bool):
            raise ValueError("total must be a number, not a boolean")
        return value

    @field_validator("total")
    @classmethod
    def _finite_total(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("total must be a finite number")
        return value

    @field_validator("currency", mode="before")
    @classmethod
    def _upper_currency(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("category", mode="before")
    @classmethod
    def _canonical_category(cls, value: Any) -> Any:
        if value is None:
            return DEFAULT_CATEGORY
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return DEFAULT_CATEGORY
            # Known categories come back in canonical casing, anything else is kept as typed
            return _CATEGORY_LOOKUP.get(value.lower(), value)
        return value

    @field_validator("vendor", mode="before")
    @classmethod
    def _strip_vendor(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("billing_date", mode="before")
    @classmethod
    def _parse_billing_date(cls, value: Any) -> Any:
        """
        Accepts an ISO date, or an ISO datetime whose time of day is dropped.
        Numbers are rejected rather than read as timestamps.
        """
        if value is None:
            return None
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if not isinstance(value, str):
            raise ValueError(f"billingDate must be a string or null, got {type(value).__name__}")
        value = value.strip()
        if not value or value.lower() == "null":
            return None
        try:
            return date.fromisoformat(value)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        except ValueError as e:
            raise ValueError(f"billingDate is not an ISO date: {value!r}") from e

    def draft_fields(self) -> Dict[str, Any]:
        """The user-editable fields, keyed by attribute name."""
        return {name: getattr(self, name) for name in ExpenseDraft.model_fields}


class Expense(ExpenseDraft):
    """
    A persisted or listed expense record.
    `recorded_at` is when it entered the system, unrelated to the receipt's billing date.
    """
    id: str
    recorded_at: datetime = Field(..., alias="recordedAt")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    def to_draft(self) -> ExpenseDraft:
        return ExpenseDraft(**self.draft_fields())


class ParseFailure(BaseModel):
    """A model reply that could not be turned into an ExpenseDraft."""
    reason: str
    raw_text: str


class ImagePayload(BaseModel):
    """Base64 image data and its MIME type, sent inline with the model call."""
    data: str
    mime_type: str

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"

    def to_input_image(self) -> Dict[str, str]:
        """Content part for the OpenAI Responses API."""
        return {"type": "input_image", "image_url": self.data_url, "detail": "auto"}

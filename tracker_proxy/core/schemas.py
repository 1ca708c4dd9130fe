from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .categories import FIXED_CATEGORIES, normalize_category

CENTS = Decimal("0.01")


class ParsedTransaction(BaseModel):
    # Matches the Numeric(12, 2) ledger column; gt=0 is checked after rounding.
    amount: Decimal = Field(
        ..., gt=0, max_digits=12, decimal_places=2, description="Positive amount, two decimal places."
    )
    type: Literal["credit", "debit"] = Field(..., description="credit or debit.")
    category: str = Field(..., description="One of the fixed categories.")
    merchant: Optional[str] = Field(None, description="Store or company name.")
    description: str = Field("", description="Brief description.")
    transaction_date: date = Field(..., description="Transaction date YYYY-MM-DD.")

    @field_validator("amount", mode="before")
    @classmethod
    def _quantize_amount(cls, value):
        try:
            amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
            if not amount.is_finite():
                raise ValueError(f"amount must be a finite number, got {value!r}")
            return amount.quantize(CENTS, rounding=ROUND_HALF_UP)
        except InvalidOperation as exc:
            raise ValueError(f"amount is not a usable number: {value!r}") from exc

    @field_validator("type", mode="before")
    @classmethod
    def _lower_type(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("category", mode="before")
    @classmethod
    def _known_category(cls, value):
        category = normalize_category(value)
        if category is None:
            raise ValueError(f"category must be one of {FIXED_CATEGORIES}, got {value!r}")
        return category

    @field_validator("merchant", mode="before")
    @classmethod
    def _blank_merchant(cls, value):
        if value is None:
            return None
        cleaned = " ".join(str(value).strip().split())
        return cleaned or None

    @field_validator("description", mode="before")
    @classmethod
    def _text_description(cls, value):
        if value is None:
            return ""
        return " ".join(str(value).strip().split())


class Email(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    subject: str = ""
    sender: str = Field("", alias="from")
    snippet: str = ""
    body: str = ""


class ImportRequest(BaseModel):
    emails: list[Email] = Field(default_factory=list)


class ParseTextRequest(BaseModel):
    text: str


class ChatRequest(BaseModel):
    message: str


class ChatResponse(BaseModel):
    reply: str

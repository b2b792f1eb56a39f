import re
from datetime import datetime, time
from enum import Enum, IntEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from sms_ledger.domain.timefmt import as_local_naive


class Direction(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class ClassificationMethod(str, Enum):
    PATTERN = "pattern"
    ENSEMBLE = "ensemble"
    EXTERNAL = "external"
    FALLBACK = "fallback"


class CategoryId(IntEnum):
    FOOD = 1
    TRANSPORT = 2
    SHOPPING = 3
    ENTERTAINMENT = 4
    HEALTHCARE = 5
    UTILITIES = 6
    EDUCATION = 7
    FINANCIAL_SERVICES = 8
    INCOME = 9
    OTHER = 10


class Category(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: CategoryId
    name: str


class ExternalAnalysis(BaseModel):
    """Single-message analysis returned by the language model.

    Every field has a default so partial responses still validate.
    """
    model_config = ConfigDict(extra="ignore")

    transaction_type: str = "debit"
    amount: float = 0.0
    date: Optional[str] = None
    time: Optional[str] = None
    bank_name: Optional[str] = None
    recipient_or_sender: Optional[str] = None
    account_number: Optional[str] = None
    available_balance: Optional[float] = None
    category: str = "Others"
    subcategory: Optional[str] = None
    merchant_name: Optional[str] = None
    transaction_method: Optional[str] = None
    location: Optional[str] = None
    reference_number: Optional[str] = None
    description: str = "Transaction"
    confidence_score: float = 0.8
    anomaly_flags: list[str] = Field(default_factory=list)
    insights: Optional[str] = None

    @field_validator("transaction_type", "category", "description", mode="before")
    @classmethod
    def _null_to_default(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return cls.model_fields[info.field_name].default
        return value

    @field_validator("amount", "confidence_score", mode="before")
    @classmethod
    def _null_number(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return cls.model_fields[info.field_name].default
        return value

    @field_validator("anomaly_flags", mode="before")
    @classmethod
    def _coerce_flags(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @property
    def direction(self) -> Direction:
        if self.transaction_type.strip().lower() in {"credit", "income", "credited"}:
            return Direction.INCOME
        return Direction.EXPENSE


class ClassificationResult(BaseModel):
    category_id: CategoryId = CategoryId.OTHER
    direction: Direction
    confidence: float = Field(ge=0.0, le=1.0)
    method: ClassificationMethod
    merchant: Optional[str] = None
    description: str = "Transaction"
    subcategory: Optional[str] = None
    details: Optional[ExternalAnalysis] = None


class ParsedMessage(BaseModel):
    """Fields pulled out of a raw message before classification."""
    raw_text: str
    normalized_text: str
    sender: str = ""
    received_at: datetime
    amount: Optional[float] = None
    account_fragment: Optional[str] = None
    bank_name: Optional[str] = None
    available_balance: Optional[float] = None
    merchant_hint: Optional[str] = None

    @field_validator("received_at")
    @classmethod
    def _local_received_at(cls, value: datetime) -> datetime:
        return as_local_naive(value)


class IncomingMessage(BaseModel):
    """A raw notification as received from the device."""
    message: str
    sender: str = ""
    timestamp: Optional[datetime] = None

    @field_validator("timestamp")
    @classmethod
    def _local_timestamp(cls, value: Optional[datetime]) -> Optional[datetime]:
        return None if value is None else as_local_naive(value)


_DIGITS = re.compile(r"\d")


def mask_account(value: str | None) -> str | None:
    """Reduce an account reference to its last four digits (``XX1234``)."""
    if not value:
        return None
    digits = "".join(_DIGITS.findall(value))
    if not digits:
        return None
    return f"XX{digits[-4:]}"


class Transaction(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    id: Optional[int] = None
    user_id: int = 1
    amount: float = Field(gt=0)
    direction: Direction
    occurred_at: datetime
    time_of_day: Optional[time] = None
    category_id: CategoryId = CategoryId.OTHER
    subcategory: Optional[str] = None
    merchant_name: Optional[str] = None
    description: str = "Transaction"
    bank_name: Optional[str] = None
    account_fragment: Optional[str] = None
    source_text: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    anomaly_tags: list[str] = Field(default_factory=list)
    model_insight: Optional[str] = None
    counterparty: Optional[str] = None
    available_balance: Optional[float] = None
    payment_method: Optional[str] = None
    location: Optional[str] = None
    reference_number: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    # Stored timestamps are compared as ISO strings, so all of them are naive local time
    @field_validator("occurred_at", "created_at", "updated_at")
    @classmethod
    def _local_times(cls, value: datetime) -> datetime:
        return as_local_naive(value)

    @field_validator("account_fragment", mode="before")
    @classmethod
    def _mask_fragment(cls, value: Any) -> Any:
        if value is None:
            return None
        return mask_account(str(value))

    @field_validator("category_id", mode="before")
    @classmethod
    def _default_category(cls, value: Any) -> Any:
        return CategoryId.OTHER if value is None else value

    @property
    def is_expense(self) -> bool:
        return self.direction == Direction.EXPENSE

    def to_record(self) -> dict[str, Any]:
        """Flatten into a storage row (no nested values)."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "amount": self.amount,
            "direction": self.direction.value,
            "occurred_at": self.occurred_at.isoformat(),
            "time_of_day": self.time_of_day.isoformat() if self.time_of_day else None,
            "category_id": int(self.category_id),
            "subcategory": self.subcategory,
            "merchant_name": self.merchant_name,
            "description": self.description,
            "bank_name": self.bank_name,
            "account_fragment": self.account_fragment,
            "source_text": self.source_text,
            "confidence": self.confidence,
            "anomaly_tags": ",".join(self.anomaly_tags),
            "model_insight": self.model_insight,
            "counterparty": self.counterparty,
            "available_balance": self.available_balance,
            "payment_method": self.payment_method,
            "location": self.location,
            "reference_number": self.reference_number,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Transaction":
        data = dict(record)
        tags = data.get("anomaly_tags")
        if isinstance(tags, str):
            data["anomaly_tags"] = [tag for tag in tags.split(",") if tag]
        elif tags is None:
            data["anomaly_tags"] = []
        return cls.model_validate(data)

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationInfo, field_validator


class SpendingTrend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"
    UNKNOWN = "unknown"


class AnomalyType(str, Enum):
    UNUSUAL_AMOUNT = "unusual_amount"
    UNUSUAL_FREQUENCY = "unusual_frequency"
    UNUSUAL_TIME = "unusual_time"
    UNUSUAL_MERCHANT = "unusual_merchant"


class RecommendationType(str, Enum):
    BUDGETING = "budgeting"
    SAVING = "saving"
    INVESTMENT = "investment"
    OPTIMIZATION = "optimization"
    CASHFLOW = "cashflow"
    SPENDING = "spending"


class RecommendationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SpendingAnomaly(BaseModel):
    id: str
    type: AnomalyType
    description: str
    severity: float = Field(ge=0.0, le=1.0)
    amount: float
    merchant: Optional[str] = None
    category: Optional[str] = None
    transaction_id: Optional[int] = None
    detected_at: datetime = Field(default_factory=datetime.now)
    metadata: dict[str, Any] = Field(default_factory=dict)


class FinancialRecommendation(BaseModel):
    id: str
    type: RecommendationType
    title: str
    description: str
    priority: RecommendationPriority
    potential_savings: Optional[float] = None
    categories: list[str] = Field(default_factory=list)
    is_actionable: bool = True
    created_at: datetime = Field(default_factory=datetime.now)


class MonthlyPrediction(BaseModel):
    predicted_amount: float = 0.0
    confidence: float = 0.0
    trend: SpendingTrend = SpendingTrend.UNKNOWN
    slope: float = 0.0
    data_points: int = 0


class TimePatterns(BaseModel):
    hourly: dict[int, float] = Field(default_factory=dict)
    weekday: dict[str, float] = Field(default_factory=dict)
    weekly: dict[str, float] = Field(default_factory=dict)
    peak_hour: Optional[int] = None
    peak_day: Optional[str] = None


class SpendingInsights(BaseModel):
    total_income: float
    total_expenses: float
    net_amount: float
    average_daily: float
    average_weekly: float
    average_monthly: float
    category_breakdown: dict[str, float] = Field(default_factory=dict)
    monthly_trends: dict[str, float] = Field(default_factory=dict)
    overall_trend: SpendingTrend = SpendingTrend.UNKNOWN
    top_categories: list[str] = Field(default_factory=list)
    top_merchants: list[str] = Field(default_factory=list)
    compared_to_last_month: Optional[float] = None
    compared_to_last_week: Optional[float] = None
    recommendations: list[FinancialRecommendation] = Field(default_factory=list)
    anomalies: list[SpendingAnomaly] = Field(default_factory=list)
    time_patterns: Optional[TimePatterns] = None
    generated_at: datetime = Field(default_factory=datetime.now)
    is_demo: bool = False


class UpdateKind(str, Enum):
    ANOMALY_DETECTED = "anomaly_detected"
    BUDGET_ALERT = "budget_alert"
    PATTERN_RECOGNIZED = "pattern_recognized"


class AnalyticsUpdate(BaseModel):
    kind: UpdateKind
    transaction_id: Optional[int] = None
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.now)


class InsightsSummary(BaseModel):
    """Batch insight report returned by the language model."""
    financial_health_score: float = 0.7
    spending_patterns: dict[str, Any] = Field(default_factory=dict)
    anomalies_detected: list[dict[str, Any]] = Field(default_factory=list)
    budget_insights: dict[str, Any] = Field(default_factory=dict)
    recommendations: list[dict[str, Any]] = Field(default_factory=list)
    trends: dict[str, Any] = Field(default_factory=dict)
    merchant_insights: dict[str, Any] = Field(default_factory=dict)

    @field_validator(
        "spending_patterns",
        "anomalies_detected",
        "budget_insights",
        "recommendations",
        "trends",
        "merchant_insights",
        mode="before",
    )
    @classmethod
    def _null_to_empty(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)
        return value

    @field_validator("financial_health_score", mode="before")
    @classmethod
    def _null_score(cls, value: Any) -> Any:
        return 0.7 if value is None else value

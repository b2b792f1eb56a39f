import re
import statistics
from collections import defaultdict
from collections.abc import Iterable, Sequence

from sms_ledger.analytics.models import (
    AnomalyType,
    FinancialRecommendation,
    MonthlyPrediction,
    RecommendationPriority,
    RecommendationType,
    SpendingAnomaly,
    SpendingTrend,
)
from sms_ledger.domain.categories import budget_for, category_name
from sms_ledger.models import Direction, Transaction

TREND_THRESHOLD_PERCENT = 5.0
PREDICTION_SLOPE_THRESHOLD = 100.0
MIN_PREDICTION_POINTS = 3
MIN_ANOMALY_SAMPLES = 10
ANOMALY_SIGMA = 2.5
BUDGET_SAVINGS_RATE = 0.15

_SLUG = re.compile(r"[^a-z0-9]+")


def slugify(value: str) -> str:
    return _SLUG.sub("_", value.lower()).strip("_") or "none"


def anomaly_id(transaction: Transaction, kind: AnomalyType, fallback: int = 0) -> str:
    source = transaction.id if transaction.id is not None else f"new{fallback}"
    return f"anomaly_{source}_{kind.value}"


def recommendation_id(kind: RecommendationType, subject: str) -> str:
    return f"rec_{kind.value}_{slugify(subject)}"


def expenses(transactions: Iterable[Transaction]) -> list[Transaction]:
    return [tx for tx in transactions if tx.direction == Direction.EXPENSE]


def mean(values: Sequence[float]) -> float:
    return statistics.fmean(values) if values else 0.0


def population_std(values: Sequence[float]) -> float:
    return statistics.pstdev(values) if values else 0.0


def median(values: Sequence[float]) -> float:
    return statistics.median(values) if values else 0.0


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def percent_change(previous: float, current: float) -> float | None:
    if previous == 0:
        return None
    return (current - previous) / previous * 100.0


def total_by_direction(transactions: Iterable[Transaction]) -> dict[Direction, float]:
    totals = {Direction.INCOME: 0.0, Direction.EXPENSE: 0.0}
    for tx in transactions:
        totals[tx.direction] += tx.amount
    return totals


def category_breakdown(transactions: Iterable[Transaction]) -> dict[str, float]:
    """Expense totals by category name, largest first."""
    totals: dict[str, float] = defaultdict(float)
    for tx in expenses(transactions):
        totals[category_name(tx.category_id)] += tx.amount
    return dict(sorted(totals.items(), key=lambda item: item[1], reverse=True))


def monthly_trends(transactions: Iterable[Transaction]) -> dict[str, float]:
    """Expense totals keyed ``YYYY-MM`` in chronological order."""
    totals: dict[str, float] = defaultdict(float)
    for tx in expenses(transactions):
        totals[tx.occurred_at.strftime("%Y-%m")] += tx.amount
    return dict(sorted(totals.items()))


def top_categories(breakdown: dict[str, float], count: int = 3) -> list[str]:
    return [name for name, _ in sorted(breakdown.items(), key=lambda item: item[1], reverse=True)[:count]]


def top_merchants(transactions: Iterable[Transaction], count: int = 5) -> list[str]:
    totals: dict[str, float] = defaultdict(float)
    for tx in expenses(transactions):
        if tx.merchant_name:
            totals[tx.merchant_name] += tx.amount
    return [name for name, _ in sorted(totals.items(), key=lambda item: item[1], reverse=True)[:count]]


def classify_trend(series: Sequence[float]) -> SpendingTrend:
    """Compare the two most recent points of a monthly series."""
    if len(series) < 2:
        return SpendingTrend.UNKNOWN
    previous, latest = series[-2], series[-1]
    if previous == 0:
        return SpendingTrend.INCREASING if latest > 0 else SpendingTrend.STABLE

    change = (latest - previous) / previous * 100.0
    if change > TREND_THRESHOLD_PERCENT:
        return SpendingTrend.INCREASING
    if change < -TREND_THRESHOLD_PERCENT:
        return SpendingTrend.DECREASING
    return SpendingTrend.STABLE


def linear_slope(series: Sequence[float]) -> float:
    """Ordinary least-squares slope over x = 0..n-1."""
    n = len(series)
    x_mean = (n - 1) / 2
    y_mean = mean(series)
    numerator = sum((x - x_mean) * (y - y_mean) for x, y in enumerate(series))
    denominator = sum((x - x_mean) ** 2 for x in range(n))
    return numerator / denominator if denominator else 0.0


def predict_next_period(series: Sequence[float]) -> MonthlyPrediction:
    if len(series) < MIN_PREDICTION_POINTS:
        return MonthlyPrediction(data_points=len(series))

    slope = linear_slope(series)
    avg = mean(series)
    variance = population_std(series) ** 2
    # A zero mean has no meaningful dispersion ratio; take the floor
    confidence = clamp(1 - variance / avg, 0.5, 0.95) if avg > 0 else 0.5

    if slope > PREDICTION_SLOPE_THRESHOLD:
        trend = SpendingTrend.INCREASING
    elif slope < -PREDICTION_SLOPE_THRESHOLD:
        trend = SpendingTrend.DECREASING
    else:
        trend = SpendingTrend.STABLE

    return MonthlyPrediction(
        predicted_amount=max(0.0, series[-1] + slope),
        confidence=confidence,
        trend=trend,
        slope=slope,
        data_points=len(series),
    )


def amount_threshold(amounts: Sequence[float]) -> tuple[float, float, float] | None:
    """(mean, std, threshold) for the amount rule, or None when not applicable."""
    if len(amounts) < MIN_ANOMALY_SAMPLES:
        return None
    avg = mean(amounts)
    std = population_std(amounts)
    if std == 0:
        return None
    return avg, std, avg + ANOMALY_SIGMA * std


def amount_severity(amount: float, avg: float, std: float) -> float:
    return clamp((amount - avg) / std / 3, 0.0, 1.0)


def detect_amount_anomalies(transactions: Iterable[Transaction]) -> list[SpendingAnomaly]:
    spent = expenses(transactions)
    stats = amount_threshold([tx.amount for tx in spent])
    if stats is None:
        return []

    avg, std, threshold = stats
    anomalies = []
    for index, tx in enumerate(spent):
        if tx.amount <= threshold:
            continue
        anomalies.append(SpendingAnomaly(
            id=anomaly_id(tx, AnomalyType.UNUSUAL_AMOUNT, index),
            type=AnomalyType.UNUSUAL_AMOUNT,
            description=f"Unusually large expense of {tx.amount:.2f}",
            severity=amount_severity(tx.amount, avg, std),
            amount=tx.amount,
            merchant=tx.merchant_name,
            category=category_name(tx.category_id),
            transaction_id=tx.id,
            metadata={
                "mean": round(avg, 2),
                "std_dev": round(std, 2),
                "threshold": round(threshold, 2),
            },
        ))
    return anomalies


def budget_recommendations(
    breakdown: dict[str, float], budgets: dict[str, float] | None = None
) -> list[FinancialRecommendation]:
    recommendations = []
    for name, spent in breakdown.items():
        budget = budget_for(name, budgets)
        if spent <= budget:
            continue
        savings = round(spent * BUDGET_SAVINGS_RATE, 2)
        recommendations.append(FinancialRecommendation(
            id=recommendation_id(RecommendationType.BUDGETING, name),
            type=RecommendationType.BUDGETING,
            title=f"Reduce {name} spending",
            description=(
                f"You spent {spent:.2f} on {name}, above the {budget:.2f} budget. "
                f"Cutting it by 15% would save {savings:.2f}."
            ),
            priority=RecommendationPriority.HIGH,
            potential_savings=savings,
            categories=[name],
        ))
    return recommendations

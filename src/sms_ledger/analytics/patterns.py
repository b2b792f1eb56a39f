from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timedelta

from rapidfuzz import fuzz, process

from sms_ledger.analytics.models import (
    AnomalyType,
    FinancialRecommendation,
    RecommendationPriority,
    RecommendationType,
    SpendingAnomaly,
    TimePatterns,
)
from sms_ledger.analytics.stats import (
    anomaly_id,
    clamp,
    expenses,
    median,
    monthly_trends,
    percent_change,
    recommendation_id,
)
from sms_ledger.domain.categories import category_name
from sms_ledger.models import Transaction

MERCHANT_MATCH_SCORE = 85
MIN_MERCHANT_HISTORY = 5
LATE_NIGHT_HOURS = range(0, 5)
FREQUENCY_MULTIPLIER = 3
MIN_FREQUENCY_WEEKS = 4
TARGET_SAVINGS_RATE = 0.2

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


def iso_week(moment: datetime | date) -> str:
    year, week, _ = moment.isocalendar()
    return f"{year}-W{week:02d}"


def match_merchant(name: str, known: Sequence[str], score_cutoff: int = MERCHANT_MATCH_SCORE) -> str | None:
    """Closest known merchant name by token-sort ratio, if close enough."""
    if not name or not known:
        return None
    match = process.extractOne(name, known, scorer=fuzz.token_sort_ratio, score_cutoff=score_cutoff)
    return match[0] if match else None


def _chronological(transactions: Iterable[Transaction]) -> list[Transaction]:
    return sorted(transactions, key=lambda tx: tx.occurred_at)


def _canonical_merchants(transactions: Sequence[Transaction]) -> dict[int, str]:
    """Index -> canonical merchant name, merging near-identical spellings."""
    canonical: list[str] = []
    resolved: dict[int, str] = {}
    for index, tx in enumerate(transactions):
        if not tx.merchant_name:
            continue
        match = match_merchant(tx.merchant_name, canonical)
        if match is None:
            canonical.append(tx.merchant_name)
            match = tx.merchant_name
        resolved[index] = match
    return resolved


def analyze_time_patterns(transactions: Iterable[Transaction]) -> TimePatterns:
    hourly: dict[int, float] = defaultdict(float)
    weekday: dict[str, float] = defaultdict(float)
    weekly: dict[str, float] = defaultdict(float)

    for tx in expenses(transactions):
        hourly[tx.occurred_at.hour] += tx.amount
        weekday[WEEKDAYS[tx.occurred_at.weekday()]] += tx.amount
        weekly[iso_week(tx.occurred_at)] += tx.amount

    return TimePatterns(
        hourly=dict(sorted(hourly.items())),
        weekday={day: weekday[day] for day in WEEKDAYS if day in weekday},
        weekly=dict(sorted(weekly.items())),
        peak_hour=max(hourly, key=hourly.get) if hourly else None,
        peak_day=max(weekday, key=weekday.get) if weekday else None,
    )


def detect_merchant_anomalies(transactions: Iterable[Transaction]) -> list[SpendingAnomaly]:
    """Above-median expenses at a merchant not seen before in the history."""
    spent = _chronological(expenses(transactions))
    typical = median([tx.amount for tx in spent])
    anomalies = []
    seen: list[str] = []

    for index, tx in enumerate(spent):
        if not tx.merchant_name:
            continue
        known = match_merchant(tx.merchant_name, seen)
        if known is None:
            if index >= MIN_MERCHANT_HISTORY and typical > 0 and tx.amount > typical:
                anomalies.append(SpendingAnomaly(
                    id=anomaly_id(tx, AnomalyType.UNUSUAL_MERCHANT, index),
                    type=AnomalyType.UNUSUAL_MERCHANT,
                    description=f"First expense at {tx.merchant_name} ({tx.amount:.2f})",
                    severity=clamp((tx.amount / typical - 1) / 4, 0.1, 1.0),
                    amount=tx.amount,
                    merchant=tx.merchant_name,
                    category=category_name(tx.category_id),
                    transaction_id=tx.id,
                    metadata={"median_amount": round(typical, 2)},
                ))
            seen.append(tx.merchant_name)
    return anomalies


def detect_time_anomalies(transactions: Iterable[Transaction]) -> list[SpendingAnomaly]:
    """Expenses made between midnight and 5 AM."""
    spent = expenses(transactions)
    typical = median([tx.amount for tx in spent])
    anomalies = []
    for index, tx in enumerate(spent):
        hour = tx.occurred_at.hour
        if hour not in LATE_NIGHT_HOURS:
            continue
        severity = 0.6 if typical and tx.amount > typical else 0.3
        anomalies.append(SpendingAnomaly(
            id=anomaly_id(tx, AnomalyType.UNUSUAL_TIME, index),
            type=AnomalyType.UNUSUAL_TIME,
            description=f"Late-night expense at {tx.occurred_at:%H:%M}",
            severity=severity,
            amount=tx.amount,
            merchant=tx.merchant_name,
            category=category_name(tx.category_id),
            transaction_id=tx.id,
            metadata={"hour": hour},
        ))
    return anomalies


def _weeks_between(first: date, last: date) -> list[str]:
    weeks = []
    cursor = first - timedelta(days=first.weekday())
    while cursor <= last:
        weeks.append(iso_week(cursor))
        cursor += timedelta(days=7)
    return weeks


def detect_frequency_anomalies(transactions: Iterable[Transaction]) -> list[SpendingAnomaly]:
    """Merchants visited far more often in the latest week than their weekly median."""
    spent = _chronological(expenses(transactions))
    if not spent:
        return []

    weeks = _weeks_between(spent[0].occurred_at.date(), spent[-1].occurred_at.date())
    if len(weeks) < MIN_FREQUENCY_WEEKS + 1:
        return []
    history_weeks, latest_week = weeks[:-1], weeks[-1]

    merchants = _canonical_merchants(spent)
    counts: dict[str, Counter] = defaultdict(Counter)
    latest: dict[str, Transaction] = {}
    latest_spend: dict[str, float] = defaultdict(float)
    for index, merchant in merchants.items():
        tx = spent[index]
        week = iso_week(tx.occurred_at)
        counts[merchant][week] += 1
        if week == latest_week:
            latest[merchant] = tx
            latest_spend[merchant] += tx.amount

    anomalies = []
    for merchant, tx in latest.items():
        current = counts[merchant][latest_week]
        usual = median([counts[merchant][week] for week in history_weeks])
        if current < FREQUENCY_MULTIPLIER * max(usual, 1):
            continue
        anomalies.append(SpendingAnomaly(
            id=anomaly_id(tx, AnomalyType.UNUSUAL_FREQUENCY),
            type=AnomalyType.UNUSUAL_FREQUENCY,
            description=f"{current} expenses at {merchant} this week",
            severity=clamp(current / (2 * FREQUENCY_MULTIPLIER * max(usual, 1)), 0.0, 1.0),
            amount=latest_spend[merchant],
            merchant=merchant,
            category=category_name(tx.category_id),
            transaction_id=tx.id,
            metadata={"usual_frequency": usual, "current_frequency": current},
        ))
    return anomalies


def period_deltas(transactions: Sequence[Transaction]) -> tuple[float | None, float | None]:
    """Percent change of expenses: latest month vs previous, latest 7 days vs the 7 before."""
    spent = expenses(transactions)
    if not spent:
        return None, None

    series = list(monthly_trends(spent).values())
    month_delta = percent_change(series[-2], series[-1]) if len(series) >= 2 else None

    end = max(tx.occurred_at for tx in spent)
    recent_start = end - timedelta(days=7)
    previous_start = end - timedelta(days=14)
    recent = sum(tx.amount for tx in spent if recent_start < tx.occurred_at <= end)
    previous = sum(tx.amount for tx in spent if previous_start < tx.occurred_at <= recent_start)
    week_delta = percent_change(previous, recent)

    def rounded(value: float | None) -> float | None:
        return None if value is None else round(value, 1)

    return rounded(month_delta), rounded(week_delta)


def saving_recommendations(total_income: float, total_expenses: float) -> list[FinancialRecommendation]:
    if total_income <= 0 and total_expenses <= 0:
        return []

    net = total_income - total_expenses
    if net <= 0:
        return [FinancialRecommendation(
            id=recommendation_id(RecommendationType.CASHFLOW, "negative_net"),
            type=RecommendationType.CASHFLOW,
            title="Spending exceeds income",
            description=f"Expenses of {total_expenses:.2f} exceed income of {total_income:.2f}.",
            priority=RecommendationPriority.CRITICAL,
            potential_savings=round(-net, 2),
        )]

    rate = net / total_income
    if rate >= TARGET_SAVINGS_RATE:
        return []
    target = round(total_income * TARGET_SAVINGS_RATE - net, 2)
    return [FinancialRecommendation(
        id=recommendation_id(RecommendationType.SAVING, "savings_rate"),
        type=RecommendationType.SAVING,
        title="Raise your savings rate",
        description=f"You are saving {rate:.0%} of income. Reaching 20% means saving {target:.2f} more.",
        priority=RecommendationPriority.MEDIUM,
        potential_savings=target,
    )]

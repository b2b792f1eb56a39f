from collections import Counter, defaultdict, deque
from datetime import datetime

from sms_ledger.analytics import patterns, stats
from sms_ledger.analytics.demo import demo_insights
from sms_ledger.analytics.events import EventChannel
from sms_ledger.analytics.models import (
    AnalyticsUpdate,
    InsightsSummary,
    MonthlyPrediction,
    SpendingInsights,
    UpdateKind,
)
from sms_ledger.classifiers.llm import ExternalAnalysisAdapter
from sms_ledger.domain.categories import budget_for, category_name
from sms_ledger.domain.timefmt import format_duration
from sms_ledger.logger import get_logger
from sms_ledger.models import Direction, Transaction
from sms_ledger.storage.repository import TransactionRepository

logger = get_logger(__name__)

BUDGET_ALERT_THRESHOLDS = (0.75, 0.9)
RECURRING_MERCHANT_COUNT = 3
DEFAULT_WINDOW_SIZE = 200


class AnalyticsEngine:
    """Batch insights over stored transactions plus live per-transaction checks."""

    def __init__(
        self,
        repository: TransactionRepository,
        events: EventChannel | None = None,
        external: ExternalAnalysisAdapter | None = None,
        budgets: dict[str, float] | None = None,
        window_size: int = DEFAULT_WINDOW_SIZE,
    ):
        self.repository = repository
        self.events = events or EventChannel()
        self.external = external
        self.budgets = budgets
        self._recent_expenses: deque[Transaction] = deque(maxlen=window_size)
        self._month_spend: dict[tuple[str, str], float] = defaultdict(float)
        self._merchant_counts: Counter = Counter()

    async def warm_up(self) -> None:
        """Seed the live window from storage so checks survive a restart."""
        recent = await self.repository.fetch(limit=self._recent_expenses.maxlen, newest_first=True)
        for tx in reversed(recent):
            if tx.is_expense:
                self._remember(tx)
        logger.info(f"[ANALYTICS] Live window seeded with {len(self._recent_expenses)} expenses")

    def reset(self) -> None:
        self._recent_expenses.clear()
        self._month_spend.clear()
        self._merchant_counts.clear()

    async def generate_insights(self, start: datetime | None = None, end: datetime | None = None) -> SpendingInsights:
        started = datetime.now()
        transactions = await self.repository.fetch(start=start, end=end, newest_first=False)
        if not transactions:
            logger.info("[ANALYTICS] No transactions in range, serving demo insights")
            return demo_insights()

        totals = stats.total_by_direction(transactions)
        income = totals[Direction.INCOME]
        spent = totals[Direction.EXPENSE]
        breakdown = stats.category_breakdown(transactions)
        monthly = stats.monthly_trends(transactions)

        first = min(tx.occurred_at for tx in transactions)
        last = max(tx.occurred_at for tx in transactions)
        days = max(1, (last.date() - first.date()).days + 1)
        daily = spent / days

        month_delta, week_delta = patterns.period_deltas(transactions)
        anomalies = (
            stats.detect_amount_anomalies(transactions)
            + patterns.detect_frequency_anomalies(transactions)
            + patterns.detect_time_anomalies(transactions)
            + patterns.detect_merchant_anomalies(transactions)
        )
        recommendations = (
            stats.budget_recommendations(breakdown, self.budgets)
            + patterns.saving_recommendations(income, spent)
        )

        insights = SpendingInsights(
            total_income=income,
            total_expenses=spent,
            net_amount=income - spent,
            average_daily=round(daily, 2),
            average_weekly=round(daily * 7, 2),
            average_monthly=round(stats.mean(list(monthly.values())), 2),
            category_breakdown=breakdown,
            monthly_trends=monthly,
            overall_trend=stats.classify_trend(list(monthly.values())),
            top_categories=stats.top_categories(breakdown),
            top_merchants=stats.top_merchants(transactions),
            compared_to_last_month=month_delta,
            compared_to_last_week=week_delta,
            recommendations=recommendations,
            anomalies=anomalies,
            time_patterns=patterns.analyze_time_patterns(transactions),
        )
        logger.info(
            f"[ANALYTICS] Insights over {len(transactions)} transactions: "
            f"{len(anomalies)} anomalies, {len(recommendations)} recommendations "
            f"in {format_duration((datetime.now() - started).total_seconds())}"
        )
        return insights

    async def predict_next_month(self, start: datetime | None = None, end: datetime | None = None) -> MonthlyPrediction:
        transactions = await self.repository.fetch(start=start, end=end, newest_first=False)
        return stats.predict_next_period(list(stats.monthly_trends(transactions).values()))

    async def generate_llm_insights(self, limit: int = 100) -> InsightsSummary | None:
        if self.external is None:
            logger.debug("[ANALYTICS] External model not configured, skipping model insights")
            return None
        transactions = await self.repository.fetch(limit=limit)
        if not transactions:
            return None
        return await self.external.analyze_batch(transactions)

    def _remember(self, tx: Transaction) -> None:
        self._recent_expenses.append(tx)
        self._month_spend[(tx.occurred_at.strftime("%Y-%m"), category_name(tx.category_id))] += tx.amount
        if tx.merchant_name:
            known = patterns.match_merchant(tx.merchant_name, list(self._merchant_counts))
            self._merchant_counts[known or tx.merchant_name] += 1

    def _check_amount(self, tx: Transaction) -> AnalyticsUpdate | None:
        threshold = stats.amount_threshold([item.amount for item in self._recent_expenses])
        if threshold is None:
            return None
        avg, std, limit = threshold
        if tx.amount <= limit:
            return None
        return AnalyticsUpdate(
            kind=UpdateKind.ANOMALY_DETECTED,
            transaction_id=tx.id,
            payload={
                "amount": tx.amount,
                "merchant": tx.merchant_name,
                "category": category_name(tx.category_id),
                "anomaly_score": stats.amount_severity(tx.amount, avg, std),
                "threshold": round(limit, 2),
            },
        )

    def _check_budget(self, tx: Transaction, previous: float) -> AnalyticsUpdate | None:
        name = category_name(tx.category_id)
        budget = budget_for(name, self.budgets)
        if budget <= 0:
            return None
        current = previous + tx.amount
        crossed = [
            threshold for threshold in BUDGET_ALERT_THRESHOLDS
            if previous < budget * threshold <= current
        ]
        if not crossed:
            return None
        return AnalyticsUpdate(
            kind=UpdateKind.BUDGET_ALERT,
            transaction_id=tx.id,
            payload={
                "category": name,
                "budget": budget,
                "spent": round(current, 2),
                "threshold": max(crossed),
                "usage": round(current / budget, 4),
            },
        )

    def _check_pattern(self, tx: Transaction) -> AnalyticsUpdate | None:
        if not tx.merchant_name:
            return None
        known = patterns.match_merchant(tx.merchant_name, list(self._merchant_counts)) or tx.merchant_name
        occurrences = self._merchant_counts[known] + 1
        if occurrences != RECURRING_MERCHANT_COUNT:
            return None
        return AnalyticsUpdate(
            kind=UpdateKind.PATTERN_RECOGNIZED,
            transaction_id=tx.id,
            payload={"pattern": "recurring_merchant", "merchant": known, "occurrences": occurrences},
        )

    def add_transaction(self, tx: Transaction) -> list[AnalyticsUpdate]:
        """Evaluate a newly stored transaction and publish any resulting updates."""
        if not tx.is_expense:
            return []

        key = (tx.occurred_at.strftime("%Y-%m"), category_name(tx.category_id))
        checks = (
            self._check_amount(tx),
            self._check_budget(tx, self._month_spend[key]),
            self._check_pattern(tx),
        )
        self._remember(tx)

        updates = [update for update in checks if update is not None]
        for update in updates:
            logger.info(f"[ANALYTICS] {update.kind.value} for transaction {tx.id}")
            self.events.publish(update)
        return updates

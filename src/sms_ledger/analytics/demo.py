from datetime import datetime, timedelta

from sms_ledger.analytics.models import (
    AnomalyType,
    FinancialRecommendation,
    RecommendationPriority,
    RecommendationType,
    SpendingAnomaly,
    SpendingInsights,
    SpendingTrend,
)


def demo_insights(now: datetime | None = None) -> SpendingInsights:
    """Fixed illustrative snapshot served while no transactions exist."""
    now = now or datetime.now()
    return SpendingInsights(
        total_expenses=45230.50,
        total_income=75000.00,
        net_amount=29769.50,
        average_daily=1507.68,
        average_weekly=10553.76,
        average_monthly=45230.50,
        category_breakdown={
            "Food & Dining": 12450.30,
            "Transport": 8920.75,
            "Shopping": 7650.20,
            "Entertainment": 5430.80,
            "Healthcare": 4200.60,
            "Utilities": 3890.45,
            "Education": 2687.40,
        },
        monthly_trends={
            "Jan": 42150.30,
            "Feb": 43890.75,
            "Mar": 45230.50,
        },
        overall_trend=SpendingTrend.INCREASING,
        top_categories=["Food & Dining", "Transport", "Shopping"],
        top_merchants=["Swiggy", "Uber", "Amazon", "BigBasket", "Zomato"],
        compared_to_last_month=3.1,
        compared_to_last_week=-2.5,
        recommendations=[
            FinancialRecommendation(
                id="demo_1",
                type=RecommendationType.SAVING,
                title="Optimize Food Spending",
                description=(
                    "You spent 12,450 on dining this month. Cooking at home 2-3 more times "
                    "a week would save about 3,000."
                ),
                priority=RecommendationPriority.HIGH,
                potential_savings=3000.0,
                categories=["Food & Dining"],
                created_at=now,
            ),
            FinancialRecommendation(
                id="demo_2",
                type=RecommendationType.OPTIMIZATION,
                title="Smart Transportation",
                description="Transport costs are 8,920. Metro or bus for short trips would save about 1,500 a month.",
                priority=RecommendationPriority.MEDIUM,
                potential_savings=1500.0,
                categories=["Transport"],
                created_at=now,
            ),
            FinancialRecommendation(
                id="demo_3",
                type=RecommendationType.INVESTMENT,
                title="Put Savings to Work",
                description="Your savings rate is healthy. Consider investing 10,000 in mutual funds.",
                priority=RecommendationPriority.MEDIUM,
                potential_savings=0.0,
                categories=["Financial Services"],
                created_at=now,
            ),
        ],
        anomalies=[
            SpendingAnomaly(
                id="demo_anomaly_1",
                type=AnomalyType.UNUSUAL_AMOUNT,
                description="Large shopping expense detected",
                severity=0.8,
                amount=4500.0,
                merchant="Amazon",
                category="Shopping",
                detected_at=now - timedelta(days=2),
                metadata={"usual_amount": 1200.0, "threshold_exceeded_by": 3300.0, "confidence": 0.85},
            ),
            SpendingAnomaly(
                id="demo_anomaly_2",
                type=AnomalyType.UNUSUAL_FREQUENCY,
                description="Frequent food orders this week",
                severity=0.6,
                amount=850.0,
                merchant="Swiggy",
                category="Food & Dining",
                detected_at=now - timedelta(hours=6),
                metadata={"usual_frequency": 3, "current_frequency": 8, "confidence": 0.72},
            ),
        ],
        generated_at=now,
        is_demo=True,
    )

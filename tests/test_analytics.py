from datetime import datetime, timedelta

import pytest
from conftest import make_tx

from sms_ledger.analytics import patterns, stats
from sms_ledger.analytics.models import AnomalyType, RecommendationPriority, RecommendationType, SpendingTrend
from sms_ledger.models import CategoryId, Direction

START = datetime(2024, 1, 1, 12, 0)


def _series(amounts: list[float]) -> list:
    return [make_tx(amount, occurred_at=START + timedelta(hours=i), tx_id=i + 1) for i, amount in enumerate(amounts)]


@pytest.mark.parametrize(
    ("series", "expected"),
    [
        ([1000.0, 1200.0], SpendingTrend.INCREASING),
        ([1200.0, 1000.0], SpendingTrend.DECREASING),
        ([1000.0, 1010.0], SpendingTrend.STABLE),
        ([1000.0], SpendingTrend.UNKNOWN),
        ([], SpendingTrend.UNKNOWN),
    ],
)
def test_classify_trend(series: list[float], expected: SpendingTrend) -> None:
    assert stats.classify_trend(series) == expected


def test_prediction_increasing() -> None:
    prediction = stats.predict_next_period([1000.0, 1200.0, 1400.0])

    assert prediction.slope == pytest.approx(200.0)
    assert prediction.predicted_amount == pytest.approx(1600.0)
    assert prediction.trend == SpendingTrend.INCREASING
    assert prediction.confidence == 0.5
    assert prediction.data_points == 3


def test_prediction_flat_series() -> None:
    prediction = stats.predict_next_period([1000.0, 1000.0, 1000.0])

    assert prediction.trend == SpendingTrend.STABLE
    assert prediction.confidence == 0.95
    assert prediction.predicted_amount == pytest.approx(1000.0)


def test_prediction_needs_three_points() -> None:
    prediction = stats.predict_next_period([1000.0, 2000.0])

    assert prediction.trend == SpendingTrend.UNKNOWN
    assert prediction.confidence == 0.0
    assert prediction.data_points == 2


def test_amount_anomaly_beyond_two_and_a_half_sigma() -> None:
    amounts = [900.0 if i % 2 else 1100.0 for i in range(100)]

    flagged = stats.detect_amount_anomalies(_series(amounts + [1500.0]))
    assert [anomaly.amount for anomaly in flagged] == [1500.0]
    assert flagged[0].type == AnomalyType.UNUSUAL_AMOUNT
    assert 0.0 < flagged[0].severity <= 1.0
    assert flagged[0].id == "anomaly_101_unusual_amount"

    assert stats.detect_amount_anomalies(_series(amounts + [1050.0])) == []


def test_amount_anomaly_single_outlier() -> None:
    flagged = stats.detect_amount_anomalies(_series([200.0] * 15 + [5000.0]))

    assert len(flagged) == 1
    assert flagged[0].amount == 5000.0
    assert flagged[0].metadata["mean"] == 500.0


def test_amount_anomaly_needs_samples_and_spread() -> None:
    assert stats.detect_amount_anomalies(_series([100.0] * 8 + [9000.0])) == []
    assert stats.detect_amount_anomalies(_series([100.0] * 20)) == []


def test_income_is_excluded_from_expense_aggregates() -> None:
    transactions = [
        make_tx(300.0, category_id=CategoryId.FOOD),
        make_tx(200.0, category_id=CategoryId.TRANSPORT, occurred_at=datetime(2024, 2, 5)),
        make_tx(5000.0, direction=Direction.INCOME, category_id=CategoryId.INCOME),
    ]

    assert stats.total_by_direction(transactions) == {Direction.INCOME: 5000.0, Direction.EXPENSE: 500.0}
    assert stats.category_breakdown(transactions) == {"Food & Dining": 300.0, "Transport": 200.0}
    assert list(stats.monthly_trends(transactions)) == ["2024-02", "2024-03"]


def test_budget_recommendations() -> None:
    breakdown = {"Food & Dining": 1000.0, "Transport": 100.0, "Pets": 150.0}

    recommendations = stats.budget_recommendations(breakdown)

    assert [rec.id for rec in recommendations] == ["rec_budgeting_food_dining", "rec_budgeting_pets"]
    assert recommendations[0].potential_savings == 150.0
    assert recommendations[0].priority == RecommendationPriority.HIGH
    assert recommendations[0].categories == ["Food & Dining"]


def test_custom_budgets() -> None:
    assert stats.budget_recommendations({"Food & Dining": 1000.0}, {"Food & Dining": 2000.0}) == []


def test_time_anomalies() -> None:
    transactions = [
        make_tx(100.0, occurred_at=datetime(2024, 3, 1, 2, 30), tx_id=1),
        make_tx(100.0, occurred_at=datetime(2024, 3, 1, 10, 0), tx_id=2),
        make_tx(900.0, occurred_at=datetime(2024, 3, 2, 4, 59), tx_id=3),
    ]

    flagged = patterns.detect_time_anomalies(transactions)

    assert [(anomaly.transaction_id, anomaly.severity) for anomaly in flagged] == [(1, 0.3), (3, 0.6)]


def test_merchant_anomalies() -> None:
    transactions = [
        make_tx(200.0, occurred_at=START + timedelta(days=i), merchant="Swiggy", tx_id=i + 1) for i in range(6)
    ]
    transactions.append(make_tx(5000.0, occurred_at=START + timedelta(days=7), merchant="Croma Electronics", tx_id=7))
    transactions.append(make_tx(150.0, occurred_at=START + timedelta(days=8), merchant="Zomato", tx_id=8))

    flagged = patterns.detect_merchant_anomalies(transactions)

    assert [anomaly.merchant for anomaly in flagged] == ["Croma Electronics"]
    assert flagged[0].severity == 1.0


def test_match_merchant_fuzzy() -> None:
    assert patterns.match_merchant("Amazon Pay India", ["Amazon Pay India Pvt"]) == "Amazon Pay India Pvt"
    assert patterns.match_merchant("Swiggy", ["Uber"]) is None
    assert patterns.match_merchant("Swiggy", []) is None


def _weekly_visits(latest_count: int) -> list:
    monday = datetime(2024, 1, 1, 12, 0)
    transactions = [make_tx(150.0, occurred_at=monday + timedelta(weeks=w), merchant="Swiggy") for w in range(5)]
    latest = monday + timedelta(weeks=5)
    transactions += [
        make_tx(150.0, occurred_at=latest + timedelta(days=d), merchant="Swiggy") for d in range(latest_count)
    ]
    return transactions


def test_frequency_anomalies() -> None:
    flagged = patterns.detect_frequency_anomalies(_weekly_visits(4))

    assert len(flagged) == 1
    assert flagged[0].type == AnomalyType.UNUSUAL_FREQUENCY
    assert flagged[0].amount == 600.0
    assert flagged[0].metadata == {"usual_frequency": 1, "current_frequency": 4}

    assert patterns.detect_frequency_anomalies(_weekly_visits(2)) == []


def test_frequency_needs_history() -> None:
    transactions = [make_tx(100.0, occurred_at=START + timedelta(days=d), merchant="Uber") for d in range(6)]
    assert patterns.detect_frequency_anomalies(transactions) == []


def test_period_deltas() -> None:
    transactions = [
        make_tx(1000.0, occurred_at=datetime(2024, 1, 15)),
        make_tx(250.0, occurred_at=datetime(2024, 2, 10)),
        make_tx(500.0, occurred_at=datetime(2024, 2, 20)),
    ]

    assert patterns.period_deltas(transactions) == (-25.0, 100.0)
    assert patterns.period_deltas([]) == (None, None)


def test_saving_recommendations() -> None:
    deficit = patterns.saving_recommendations(1000.0, 1200.0)
    assert deficit[0].type == RecommendationType.CASHFLOW
    assert deficit[0].priority == RecommendationPriority.CRITICAL

    low_rate = patterns.saving_recommendations(1000.0, 900.0)
    assert low_rate[0].type == RecommendationType.SAVING
    assert low_rate[0].potential_savings == 100.0

    assert patterns.saving_recommendations(1000.0, 500.0) == []


def test_time_patterns() -> None:
    transactions = [
        make_tx(100.0, occurred_at=datetime(2024, 3, 4, 9, 0)),
        make_tx(400.0, occurred_at=datetime(2024, 3, 5, 20, 0)),
        make_tx(50.0, occurred_at=datetime(2024, 3, 5, 20, 30)),
    ]

    result = patterns.analyze_time_patterns(transactions)

    assert result.peak_hour == 20
    assert result.peak_day == "Tuesday"
    assert result.hourly == {9: 100.0, 20: 450.0}


def test_summary_helpers_handle_empty_input() -> None:
    assert stats.mean([]) == 0.0
    assert stats.population_std([]) == 0.0
    assert stats.median([]) == 0.0

    assert stats.mean([100.0, 200.0, 600.0]) == 300.0
    assert stats.population_std([900.0, 1100.0]) == 100.0
    assert stats.median([5.0, 1.0, 4.0, 2.0]) == 3.0

"""
Tests for scoring.py - per-business reliability scores and analytics.
"""

from datetime import datetime, timedelta

import pytest

from reliabilitynet.database import Event
from reliabilitynet.errors import InvalidEvent, RecordNotFound
from reliabilitynet.scoring import (
    ScoredEvent,
    business_scores,
    calculate_full_analytics,
    calculate_percentile,
    calculate_score,
    calculate_trend,
    recency_label,
    risk_level,
    score_customer,
    score_label,
)

NOW = datetime(2026, 6, 15, 12, 0, 0)


def ago(days):
    return NOW - timedelta(days=days)


class TestScore:
    """Test the 0-100 reliability score."""

    def test_empty_history(self):
        assert calculate_score([]) == 100

    def test_one_severe_event(self):
        assert calculate_score([ScoredEvent(5)]) == 70

    def test_two_severe_events(self):
        assert calculate_score([ScoredEvent(5), ScoredEvent(5)]) == 40

    def test_clamped_at_zero(self):
        assert calculate_score([ScoredEvent(1)] * 150) == 0

    def test_mixed_weights(self):
        events = [ScoredEvent(s) for s in (1, 2, 3, 4)]
        assert calculate_score(events) == 100 - 1 - 2 - 12 - 24

    def test_invalid_severity(self):
        with pytest.raises(InvalidEvent):
            calculate_score([ScoredEvent(7)])


class TestBands:
    """Test label and risk-level boundaries."""

    @pytest.mark.parametrize("score,label", [
        (100, "Excellent"),
        (90, "Excellent"),
        (89, "Good"),
        (75, "Good"),
        (74, "Fair"),
        (60, "Fair"),
        (59, "Poor"),
        (40, "Poor"),
        (39, "High Risk"),
        (0, "High Risk"),
    ])
    def test_label(self, score, label):
        assert score_label(score) == label

    @pytest.mark.parametrize("score,level", [
        (100, "Low"),
        (75, "Low"),
        (74, "Medium"),
        (50, "Medium"),
        (49, "High"),
    ])
    def test_risk_level(self, score, level):
        assert risk_level(score) == level


class TestTrend:
    """Test the 30/60-day trend comparison."""

    def test_improving(self):
        events = [ScoredEvent(1, ago(5)), ScoredEvent(5, ago(45))]
        assert calculate_trend(events, NOW) == "Improving"

    def test_declining(self):
        events = [ScoredEvent(5, ago(5)), ScoredEvent(1, ago(45))]
        assert calculate_trend(events, NOW) == "Declining"

    def test_stable_within_delta(self):
        events = [ScoredEvent(3, ago(5)), ScoredEvent(3, ago(45))]
        assert calculate_trend(events, NOW) == "Stable"

    def test_single_recent_severe_event(self):
        """Test that a recent incident with nothing older is Declining."""
        assert calculate_trend([ScoredEvent(5, ago(5))], NOW) == "Declining"

    def test_single_recent_positive_event(self):
        assert calculate_trend([ScoredEvent(1, ago(5))], NOW) == "Stable"

    def test_only_older_events(self):
        assert calculate_trend([ScoredEvent(4, ago(40))], NOW) == "Improving"

    def test_new_customer(self):
        assert calculate_trend([], NOW) == "New"
        assert calculate_trend([ScoredEvent(4, ago(200))], NOW) == "New"

    def test_old_history_is_stable(self):
        events = [ScoredEvent(4, ago(200)), ScoredEvent(1, ago(300))]
        assert calculate_trend(events, NOW) == "Stable"


class TestRecency:
    """Test recency buckets."""

    @pytest.mark.parametrize("days,label", [
        (0, "This week"),
        (6, "This week"),
        (7, "This month"),
        (29, "This month"),
        (30, "Last 3 months"),
        (120, "Last 6 months"),
        (200, "This year"),
        (400, "Over a year ago"),
    ])
    def test_buckets(self, days, label):
        assert recency_label(ago(days), NOW) == label

    def test_none(self):
        assert recency_label(None, NOW) is None


class TestFullAnalytics:
    """Test the combined analytics view."""

    def test_analytics(self):
        events = [
            ScoredEvent(5, ago(5), "late_payment"),
            ScoredEvent(1, ago(45), "on_time"),
            ScoredEvent(4, ago(50), "late_payment"),
        ]
        result = calculate_full_analytics(events, created_at=ago(200), now=NOW)

        assert result.score == 45
        assert result.label == "Poor"
        assert result.risk_level == "High"
        assert result.trend == "Declining"
        assert result.total_events == 3
        assert result.negative_events == 2
        assert result.positive_events == 1
        assert result.last_incident == "This week"
        assert result.first_seen == "This year"
        assert result.top_event_type == "late_payment"

    def test_no_events(self):
        result = calculate_full_analytics([], created_at=ago(1), now=NOW)
        assert result.score == 100
        assert result.label == "Excellent"
        assert result.trend == "New"
        assert result.last_incident is None
        assert result.top_event_type is None


class TestPercentile:
    def test_share_at_or_below(self):
        assert calculate_percentile(70, [100, 70, 40, 10]) == 75

    def test_top_score(self):
        assert calculate_percentile(100, [100, 70]) == 100

    def test_empty(self):
        assert calculate_percentile(50, []) == 100


class TestScoreCustomer:
    """Test scoring against stored events."""

    def _event(self, db_session, customer, business, severity, days=1, note_type=None):
        db_session.add(Event(
            customer_id=customer.id,
            business_id=business.id,
            severity=severity,
            note_type=note_type,
            created_at=ago(days),
        ))
        db_session.commit()

    def test_scores_own_events(self, db_session, business, make_customer):
        customer = make_customer(business, created_at=ago(10))
        self._event(db_session, customer, business, 5, days=3, note_type="no_show")

        result = score_customer(db_session, business.id, customer.id, now=NOW)
        assert result.score == 70
        assert result.top_event_type == "no_show"

    def test_ignores_other_business_events(self, db_session, business, other_business, make_customer):
        customer = make_customer(business)
        self._event(db_session, customer, other_business, 5)

        result = score_customer(db_session, business.id, customer.id, now=NOW)
        assert result.score == 100
        assert result.total_events == 0

    def test_customer_of_other_business(self, db_session, business, other_business, make_customer):
        customer = make_customer(business)
        with pytest.raises(RecordNotFound):
            score_customer(db_session, other_business.id, customer.id)

    def test_missing_customer(self, db_session, business):
        with pytest.raises(RecordNotFound):
            score_customer(db_session, business.id, "nope")

    def test_business_scores(self, db_session, business, make_customer):
        make_customer(business, full_name="Clean Customer")
        risky = make_customer(business, full_name="Risky Customer")
        self._event(db_session, risky, business, 5)
        self._event(db_session, risky, business, 4)

        scores = sorted(business_scores(db_session, business.id))
        assert scores == [46, 100]

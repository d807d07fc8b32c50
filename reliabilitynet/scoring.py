"""
Business-private reliability scoring.

Scores are recomputed from a customer's full event list on every read and
never stored. Nothing here reads or writes NetworkIdentity.
"""

from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import (
    HIGHEST_RISK_LEVEL,
    LABEL_THRESHOLDS,
    LOWEST_LABEL,
    MAX_SCORE,
    MIN_SCORE,
    NEGATIVE_SEVERITY_MIN,
    OLDEST_RECENCY_LABEL,
    RECENCY_BUCKETS,
    RISK_LEVEL_THRESHOLDS,
    TREND_DELTA,
    TREND_OLDER_DAYS,
    TREND_RECENT_DAYS,
)
from .database import Customer, Event
from .errors import RecordNotFound
from .reputation import event_weight, is_negative, validate_severity

TREND_NEW = "New"
TREND_STABLE = "Stable"
TREND_IMPROVING = "Improving"
TREND_DECLINING = "Declining"

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class ScoredEvent:
    severity: int
    created_at: Optional[datetime] = None
    event_type: Optional[str] = None


@dataclass(frozen=True)
class CustomerAnalytics:
    score: int
    label: str
    risk_level: str
    trend: str
    total_events: int
    negative_events: int
    positive_events: int
    last_incident: Optional[str]
    first_seen: Optional[str]
    top_event_type: Optional[str]


def calculate_score(events: Iterable[ScoredEvent]) -> int:
    """
    Reliability score from 0 to 100.

    Starts at 100 and subtracts each event's penalty: severity x6 at 4 and
    above, x4 at 3, x1 below. An empty history scores 100.
    """
    penalty = sum(event_weight(validate_severity(e.severity)) for e in events)
    return max(MIN_SCORE, min(MAX_SCORE, MAX_SCORE - penalty))


def score_label(score: int) -> str:
    for threshold, label in LABEL_THRESHOLDS:
        if score >= threshold:
            return label
    return LOWEST_LABEL


def risk_level(score: int) -> str:
    for threshold, level in RISK_LEVEL_THRESHOLDS:
        if score >= threshold:
            return level
    return HIGHEST_RISK_LEVEL


def _days_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds() / SECONDS_PER_DAY


def _mean(values: List[int]) -> float:
    return sum(values) / len(values)


def calculate_trend(events: Sequence[ScoredEvent], now: Optional[datetime] = None) -> str:
    """
    Compare mean severity of the last 30 days with the 30 days before that.

    Higher severity is worse, so a rising mean is Declining. Events without
    a timestamp or older than 60 days only count toward the total.
    """
    now = now or datetime.now()
    recent: List[int] = []
    older: List[int] = []
    for event in events:
        if event.created_at is None:
            continue
        age = _days_between(event.created_at, now)
        if age <= TREND_RECENT_DAYS:
            recent.append(event.severity)
        elif age <= TREND_OLDER_DAYS:
            older.append(event.severity)

    if recent and older:
        diff = _mean(recent) - _mean(older)
        if diff > TREND_DELTA:
            return TREND_DECLINING
        if diff < -TREND_DELTA:
            return TREND_IMPROVING
        return TREND_STABLE
    if older:
        return TREND_IMPROVING
    if recent:
        return TREND_DECLINING if _mean(recent) >= NEGATIVE_SEVERITY_MIN else TREND_STABLE
    if len(events) < 2:
        return TREND_NEW
    return TREND_STABLE


def recency_label(when: Optional[datetime], now: Optional[datetime] = None) -> Optional[str]:
    """Bucket a timestamp as This week / This month / ... / Over a year ago."""
    if when is None:
        return None
    days = _days_between(when, now or datetime.now())
    for limit, label in RECENCY_BUCKETS:
        if days < limit:
            return label
    return OLDEST_RECENCY_LABEL


def calculate_full_analytics(
    events: Sequence[ScoredEvent],
    created_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> CustomerAnalytics:
    """Every derived view of one customer's history, from one pass over the events."""
    now = now or datetime.now()
    score = calculate_score(events)

    negatives = [e for e in events if is_negative(e.severity)]
    incident_times = [e.created_at for e in negatives if e.created_at is not None]
    types = Counter(e.event_type for e in events if e.event_type)

    return CustomerAnalytics(
        score=score,
        label=score_label(score),
        risk_level=risk_level(score),
        trend=calculate_trend(events, now),
        total_events=len(events),
        negative_events=len(negatives),
        positive_events=len(events) - len(negatives),
        last_incident=recency_label(max(incident_times), now) if incident_times else None,
        first_seen=recency_label(created_at, now),
        top_event_type=types.most_common(1)[0][0] if types else None,
    )


def calculate_percentile(score: int, all_scores: Sequence[int]) -> int:
    """Share of the business's customers (0-100) scoring at or below this score."""
    if not all_scores:
        return 100
    at_or_below = sum(1 for s in all_scores if s <= score)
    return round(at_or_below * 100 / len(all_scores))


def load_events(session: Session, business_id: str, customer_id: str) -> List[ScoredEvent]:
    stmt = (
        select(Event)
        .where(Event.business_id == business_id, Event.customer_id == customer_id)
        .order_by(Event.created_at)
    )
    return [
        ScoredEvent(severity=e.severity, created_at=e.created_at, event_type=e.note_type)
        for e in session.execute(stmt).scalars()
    ]


def score_customer(
    session: Session,
    business_id: str,
    customer_id: str,
    now: Optional[datetime] = None,
) -> CustomerAnalytics:
    """
    Score one of a business's customers from that business's events only.

    Raises:
        RecordNotFound: If the customer does not exist or belongs to another business
    """
    customer = session.get(Customer, customer_id)
    if customer is None or customer.business_id != business_id:
        raise RecordNotFound(f"Customer not found: {customer_id}")
    events = load_events(session, business_id, customer_id)
    return calculate_full_analytics(events, created_at=customer.created_at, now=now)


def business_scores(session: Session, business_id: str) -> List[int]:
    """Scores of every customer of a business, for percentile ranking."""
    by_customer = {
        c: [] for c in session.execute(
            select(Customer.id).where(Customer.business_id == business_id)
        ).scalars()
    }
    stmt = select(Event.customer_id, Event.severity).where(Event.business_id == business_id)
    for customer_id, severity in session.execute(stmt):
        if customer_id in by_customer:
            by_customer[customer_id].append(ScoredEvent(severity=severity))
    return [calculate_score(events) for events in by_customer.values()]

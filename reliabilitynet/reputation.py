"""
Cross-business reputation for NetworkIdentity records.

weighted_score and risk_tier are denormalized for read speed. They only ever
change together, through apply_event(), and risk_tier is always the pure
function risk_tier_for(weighted_score).
"""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

from sqlalchemy import case, update
from sqlalchemy.orm import Session

from .config import (
    MAX_SEVERITY,
    MIN_SEVERITY,
    MINOR_MULTIPLIER,
    MODERATE_MULTIPLIER,
    NEGATIVE_SEVERITY_MIN,
    POSITIVE_DECAY,
    RISK_TIER_CRITICAL_MIN,
    RISK_TIER_HIGH_MIN,
    RISK_TIER_MEDIUM_MIN,
    SEVERE_MULTIPLIER,
    SEVERE_SEVERITY_MIN,
)
from .database import NetworkIdentity
from .errors import InvalidEvent, RecordNotFound
from .logger import get_logger

logger = get_logger()


class RiskTier(str, Enum):
    UNKNOWN = "unknown"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)


_TIER_ORDER = [RiskTier.UNKNOWN, RiskTier.LOW, RiskTier.MEDIUM, RiskTier.HIGH, RiskTier.CRITICAL]

# Highest cutoff first; anything above zero but under the last cutoff is LOW.
RISK_TIER_CUTOFFS = (
    (RISK_TIER_CRITICAL_MIN, RiskTier.CRITICAL),
    (RISK_TIER_HIGH_MIN, RiskTier.HIGH),
    (RISK_TIER_MEDIUM_MIN, RiskTier.MEDIUM),
)


def validate_severity(severity) -> int:
    """Return severity as int, raising InvalidEvent unless it is an integer 1..5."""
    if isinstance(severity, bool) or not isinstance(severity, int):
        raise InvalidEvent(f"Severity must be an integer, got {severity!r}")
    if not MIN_SEVERITY <= severity <= MAX_SEVERITY:
        raise InvalidEvent(f"Severity must be between {MIN_SEVERITY} and {MAX_SEVERITY}, got {severity}")
    return severity


def is_negative(severity: int) -> bool:
    return severity >= NEGATIVE_SEVERITY_MIN


def event_weight(severity: int) -> int:
    """Penalty points for one event; the same weights drive per-business scores."""
    if severity >= SEVERE_SEVERITY_MIN:
        return severity * SEVERE_MULTIPLIER
    if severity >= NEGATIVE_SEVERITY_MIN:
        return severity * MODERATE_MULTIPLIER
    return severity * MINOR_MULTIPLIER


def risk_tier_for(weighted_score: int) -> RiskTier:
    for cutoff, tier in RISK_TIER_CUTOFFS:
        if weighted_score >= cutoff:
            return tier
    if weighted_score > 0:
        return RiskTier.LOW
    return RiskTier.UNKNOWN


def risk_tier_expression(score_expr):
    """SQL CASE equivalent of risk_tier_for() over a score expression."""
    whens = [(score_expr >= cutoff, tier.value) for cutoff, tier in RISK_TIER_CUTOFFS]
    whens.append((score_expr > 0, RiskTier.LOW.value))
    return case(*whens, else_=RiskTier.UNKNOWN.value)


@dataclass(frozen=True)
class ReputationState:
    """Counters a NetworkIdentity carries, detached from the store."""

    weighted_score: int = 0
    total_incidents: int = 0
    total_positive_events: int = 0

    @property
    def risk_tier(self) -> RiskTier:
        return risk_tier_for(self.weighted_score)


def apply_severity(state: ReputationState, severity: int) -> ReputationState:
    """Fold one event into a reputation state."""
    severity = validate_severity(severity)
    if is_negative(severity):
        return replace(
            state,
            weighted_score=state.weighted_score + event_weight(severity),
            total_incidents=state.total_incidents + 1,
        )
    return replace(
        state,
        weighted_score=max(0, state.weighted_score - POSITIVE_DECAY),
        total_positive_events=state.total_positive_events + 1,
    )


def fold_severities(severities: Iterable[int]) -> ReputationState:
    """Recompute reputation from a full history, oldest event first."""
    state = ReputationState()
    for severity in severities:
        state = apply_severity(state, severity)
    return state


class ReputationAggregator:
    """Applies event severities to NetworkIdentity rows inside a caller's session."""

    def __init__(self, session: Session):
        self.session = session

    def apply_event(
        self,
        identity_id: str,
        severity: int,
        now: Optional[datetime] = None,
    ) -> NetworkIdentity:
        """
        Fold one event into an identity's shared statistics.

        Runs as a single UPDATE computed from the row's current values, so
        concurrent writers cannot lose each other's increments. Does not
        commit.

        Raises:
            InvalidEvent: If severity is not an integer 1..5
            RecordNotFound: If the identity does not exist
        """
        severity = validate_severity(severity)
        now = now or datetime.now()
        score = NetworkIdentity.weighted_score

        if is_negative(severity):
            new_score = score + event_weight(severity)
            values = {
                "weighted_score": new_score,
                "total_incidents": NetworkIdentity.total_incidents + 1,
                "last_incident_at": now,
                "clean_streak_months": 0,
            }
        else:
            # clean_streak_months belongs to the monthly streak job, not here
            new_score = case((score > POSITIVE_DECAY, score - POSITIVE_DECAY), else_=0)
            values = {
                "weighted_score": new_score,
                "total_positive_events": NetworkIdentity.total_positive_events + 1,
            }
        values["risk_tier"] = risk_tier_expression(new_score)

        stmt = (
            update(NetworkIdentity)
            .where(NetworkIdentity.id == identity_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if result.rowcount == 0:
            raise RecordNotFound(f"Network identity not found: {identity_id}")

        identity = self.session.get(NetworkIdentity, identity_id, populate_existing=True)
        logger.debug(
            "Applied event to network identity",
            identity_id=identity_id,
            severity=severity,
            weighted_score=identity.weighted_score,
            risk_tier=identity.risk_tier,
        )
        return identity

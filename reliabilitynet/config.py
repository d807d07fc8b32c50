"""
Configuration for reliabilitynet.

Heuristic constants are kept here so tests can pin them explicitly. Changing
any of them changes scores and tiers already stored in the network, so they
must stay in step with existing data.

Runtime settings (database URL, logging) load from environment variables,
optionally seeded from a .env file by env.load_env().
"""

import os
from functools import lru_cache
from pathlib import Path

# ============================================================================
# Contact hashing
# ============================================================================

PHONE_MIN_DIGITS = 10
"""Phones with fewer digits after stripping are treated as absent."""

HASH_ALGORITHM = "sha256"
"""Digest used for every join key. Never change: hashes are stored forever."""

# ============================================================================
# Severity and penalty weights (shared by scoring and reputation)
# ============================================================================

MIN_SEVERITY = 1
MAX_SEVERITY = 5

NEGATIVE_SEVERITY_MIN = 3
"""Severity at or above this is an incident; below is positive/neutral."""

SEVERE_SEVERITY_MIN = 4

SEVERE_MULTIPLIER = 6
MODERATE_MULTIPLIER = 4
MINOR_MULTIPLIER = 1

POSITIVE_DECAY = 1
"""Weighted score removed from a network identity by each positive event."""

# ============================================================================
# Network risk tiers (weighted_score cutoffs, highest first)
# ============================================================================

RISK_TIER_CRITICAL_MIN = 50
RISK_TIER_HIGH_MIN = 30
RISK_TIER_MEDIUM_MIN = 15

# ============================================================================
# Per-business score bands
# ============================================================================

MAX_SCORE = 100
MIN_SCORE = 0

LABEL_THRESHOLDS = (
    (90, "Excellent"),
    (75, "Good"),
    (60, "Fair"),
    (40, "Poor"),
)
LOWEST_LABEL = "High Risk"

RISK_LEVEL_THRESHOLDS = (
    (75, "Low"),
    (50, "Medium"),
)
HIGHEST_RISK_LEVEL = "High"

TREND_RECENT_DAYS = 30
TREND_OLDER_DAYS = 60
TREND_DELTA = 0.5

RECENCY_BUCKETS = (
    (7, "This week"),
    (30, "This month"),
    (90, "Last 3 months"),
    (180, "Last 6 months"),
    (365, "This year"),
)
OLDEST_RECENCY_LABEL = "Over a year ago"

# ============================================================================
# Address similarity
# ============================================================================

EXACT_STREET_SCORE = 0.8
CITY_MATCH_BONUS = 0.1
ZIP_MATCH_BONUS = 0.1

STREET_NAME_JACCARD_MIN = 0.5
STREET_NUMBER_BASE_SCORE = 0.5
STREET_NAME_WEIGHT = 0.3

CHARACTER_OVERLAP_WEIGHT = 0.5

SAME_LOCATION_THRESHOLD = 0.3
"""Bulk linking treats two addresses as one location above this score."""

MIN_ADDRESS_HASH_LENGTH = 5

# ============================================================================
# Identity links
# ============================================================================

ADDRESS_LINK_CONFIDENCE = 0.95
AUTO_GENERATED_LINK_CONFIDENCE = 1.0
MANUAL_ADDRESS_LINK_CONFIDENCE = 0.9
MANUAL_NAME_LINK_CONFIDENCE = 0.7

RESIDENTIAL_CLASS_MARKER = "resid"

# ============================================================================
# Batch jobs
# ============================================================================

DEFAULT_BATCH_LIMIT = 1000
MAX_BATCH_ERRORS = 10

# ============================================================================
# Property record search
# ============================================================================

ADDRESS_SEARCH_LIMIT = 20
OWNER_SEARCH_LIMIT = 30
PROPERTY_MATCH_LIMIT = 10


class Settings:
    """Runtime settings read from the environment."""

    def __init__(self):
        self.DATABASE_URL = os.getenv(
            "RELIABILITYNET_DATABASE_URL", "sqlite:///data/network.db"
        )
        self.LOG_LEVEL = os.getenv("RELIABILITYNET_LOG_LEVEL", "INFO")
        self.LOG_DIR = Path(os.getenv("RELIABILITYNET_LOG_DIR", "logs"))
        self.BATCH_LIMIT = int(
            os.getenv("RELIABILITYNET_BATCH_LIMIT", str(DEFAULT_BATCH_LIMIT))
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings()

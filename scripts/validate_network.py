#!/usr/bin/env python3
"""
Check that every network identity's stored risk tier matches its weighted score.

Usage:
    python scripts/validate_network.py --db data/network.db
    python scripts/validate_network.py --db data/network.db --fix
"""

import argparse
from pathlib import Path
import sys

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from reliabilitynet.database import IdentityLink, NetworkIdentity, get_session
from reliabilitynet.reputation import risk_tier_for


def validate(db: str, fix: bool = False) -> bool:
    """
    Recompute tiers from weighted_score and report rows that disagree.

    Returns True if the network is consistent (or was fixed), False otherwise.
    """
    print(f"Querying database at {db}...")
    session = get_session(db)
    try:
        identities = list(session.execute(select(NetworkIdentity)).scalars())
        print(f"  {len(identities)} network identities")

        tier_mismatches = []
        negative_scores = []
        keyless = []

        for identity in identities:
            expected = risk_tier_for(identity.weighted_score).value
            if identity.risk_tier != expected:
                tier_mismatches.append((identity, expected))
            if identity.weighted_score < 0:
                negative_scores.append(identity.id)
            if not (identity.phone_hash or identity.email_hash or identity.address_hash):
                keyless.append(identity.id)

        known_ids = {identity.id for identity in identities}
        orphan_links = [
            link.id for link in session.execute(select(IdentityLink)).scalars()
            if link.identity_id not in known_ids
        ]

        if tier_mismatches:
            print(f"\n❌ TIER MISMATCHES: {len(tier_mismatches)} identities")
            for identity, expected in tier_mismatches[:5]:
                print(f"   - {identity.id}: score={identity.weighted_score} "
                      f"stored='{identity.risk_tier}' expected='{expected}'")
            if len(tier_mismatches) > 5:
                print(f"   ... and {len(tier_mismatches) - 5} more")

        if negative_scores:
            print(f"\n❌ NEGATIVE SCORES: {len(negative_scores)} identities")
        if keyless:
            print(f"\n❌ NO KEYS: {len(keyless)} identities without any hash")
        if orphan_links:
            print(f"\n❌ ORPHAN LINKS: {len(orphan_links)} links to missing identities")

        if fix and tier_mismatches:
            for identity, expected in tier_mismatches:
                identity.risk_tier = expected
            session.commit()
            print(f"\n🔧 Rewrote risk tier on {len(tier_mismatches)} identities")
            tier_mismatches = []

        if not (tier_mismatches or negative_scores or keyless or orphan_links):
            print("✅ Network validated successfully!")
            print("   - Every risk tier matches its weighted score")
            print("   - Every identity holds at least one key")
            return True
        return False
    finally:
        session.close()


def main():
    parser = argparse.ArgumentParser(description="Validate network identity consistency")
    parser.add_argument("--db", default="data/network.db",
                        help="Path to SQLite database file or database URL")
    parser.add_argument("--fix", action="store_true",
                        help="Rewrite mismatched risk tiers from weighted_score")

    args = parser.parse_args()

    if "://" not in args.db and not Path(args.db).exists():
        print(f"❌ Database file not found: {args.db}")
        sys.exit(1)

    success = validate(args.db, fix=args.fix)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()

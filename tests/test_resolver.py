"""
Tests for resolver.py - find-or-create identity resolution.
"""

import pytest

from reliabilitynet.database import IdentitySighting, NetworkIdentity
from reliabilitynet.errors import NoIdentifiableContact
from reliabilitynet.hashing import ContactHashes, hash_address, hash_contact
from reliabilitynet.logger import get_logger
from reliabilitynet.reputation import RiskTier
from reliabilitynet.resolver import SOURCE_MERGED, SOURCE_PROPERTY, IdentityResolver, SyncBatch

PHONE = "(555) 123-4567"
EMAIL = "jane@example.com"


@pytest.fixture
def resolver(db_session):
    return IdentityResolver(db_session)


class TestResolve:
    """Test basic resolution behaviour."""

    def test_creates_identity(self, db_session, resolver):
        result = resolver.resolve_hashes(hash_contact(phone=PHONE))
        db_session.commit()

        assert result.created
        assert result.risk_tier == RiskTier.UNKNOWN
        assert result.total_incidents == 0
        identity = db_session.get(NetworkIdentity, result.identity_id)
        assert identity.phone_last_four == "4567"
        assert identity.seen_by_business_count == 1
        assert identity.source == "network"

    def test_idempotent(self, db_session, resolver):
        """Test that the same phone resolves to the same identity."""
        first = resolver.resolve_hashes(hash_contact(phone=PHONE))
        second = resolver.resolve_hashes(hash_contact(phone="555.123.4567"))
        db_session.commit()

        assert first.identity_id == second.identity_id
        assert not second.created
        assert db_session.query(NetworkIdentity).count() == 1

    def test_resolve_returns_id(self, resolver):
        hashes = hash_contact(phone=PHONE)
        identity_id = resolver.resolve(phone_hash=hashes.phone_hash)
        assert identity_id == resolver.resolve(phone_hash=hashes.phone_hash)

    def test_email_merged_then_resolvable(self, db_session, resolver):
        """Test that an email seen with a known phone later resolves alone."""
        first = resolver.resolve_hashes(hash_contact(phone=PHONE))
        resolver.resolve_hashes(hash_contact(phone=PHONE, email=EMAIL))
        by_email = resolver.resolve_hashes(hash_contact(email=EMAIL))
        db_session.commit()

        assert by_email.identity_id == first.identity_id
        identity = db_session.get(NetworkIdentity, first.identity_id)
        assert identity.email_hash == hash_contact(email=EMAIL).email_hash
        assert identity.email_domain == "example.com"
        assert db_session.query(NetworkIdentity).count() == 1

    def test_phone_takes_priority(self, db_session, resolver):
        by_phone = resolver.resolve_hashes(hash_contact(phone=PHONE))
        resolver.resolve_hashes(hash_contact(email=EMAIL))
        result = resolver.resolve_hashes(hash_contact(phone=PHONE, email=EMAIL))
        assert result.identity_id == by_phone.identity_id

    def test_no_keys(self, resolver):
        with pytest.raises(NoIdentifiableContact):
            resolver.resolve_hashes(ContactHashes())

    def test_does_not_commit(self, db_session, resolver):
        resolver.resolve_hashes(hash_contact(phone=PHONE))
        db_session.rollback()
        assert db_session.query(NetworkIdentity).count() == 0

    def test_metrics(self, resolver):
        resolver.resolve_hashes(hash_contact(phone=PHONE))
        resolver.resolve_hashes(hash_contact(phone=PHONE))
        metrics = get_logger().get_metrics()
        assert metrics["identities_created"] == 1
        assert metrics["identities_matched"] == 1


class TestConcurrency:
    """Test handling of duplicate-key races."""

    def test_lost_create_race_adopts_winner(self, db_session, resolver, monkeypatch):
        """Test that a writer whose lookup missed a concurrent insert re-reads the winner."""
        winner = resolver.resolve_hashes(hash_contact(phone=PHONE))
        db_session.commit()

        real_find = resolver.find
        calls = []

        def stale_find(hashes):
            calls.append(hashes)
            if len(calls) == 1:
                return None
            return real_find(hashes)

        monkeypatch.setattr(resolver, "find", stale_find)
        result = resolver.resolve_hashes(hash_contact(phone=PHONE))
        db_session.commit()

        assert result.identity_id == winner.identity_id
        assert not result.created
        assert len(calls) == 2
        assert db_session.query(NetworkIdentity).count() == 1

    def test_key_owned_by_other_identity_is_not_merged(self, db_session, resolver):
        """Test that a conflicting merge leaves both identities intact."""
        by_phone = resolver.resolve_hashes(hash_contact(phone=PHONE))
        by_email = resolver.resolve_hashes(hash_contact(email=EMAIL))
        db_session.commit()

        result = resolver.resolve_hashes(hash_contact(phone=PHONE, email=EMAIL))
        db_session.commit()

        assert result.identity_id == by_phone.identity_id
        phone_row = db_session.get(NetworkIdentity, by_phone.identity_id, populate_existing=True)
        email_row = db_session.get(NetworkIdentity, by_email.identity_id, populate_existing=True)
        assert phone_row.email_hash is None
        assert email_row.email_hash == hash_contact(email=EMAIL).email_hash
        assert db_session.query(NetworkIdentity).count() == 2


class TestSeenCount:
    """Test seen_by_business_count bookkeeping."""

    def test_counted_once_per_batch(self, db_session, resolver):
        batch = SyncBatch(business_id="biz-1")
        first = resolver.resolve_hashes(hash_contact(phone=PHONE), batch=batch)
        resolver.resolve_hashes(hash_contact(phone=PHONE), batch=batch)
        resolver.resolve_hashes(hash_contact(phone=PHONE, email=EMAIL), batch=batch)
        db_session.commit()

        identity = db_session.get(NetworkIdentity, first.identity_id)
        assert identity.seen_by_business_count == 1

    def test_second_business_increments(self, db_session, resolver):
        first = resolver.resolve_hashes(hash_contact(phone=PHONE), batch=SyncBatch(business_id="biz-1"))
        resolver.resolve_hashes(hash_contact(phone=PHONE), batch=SyncBatch(business_id="biz-2"))
        db_session.commit()

        identity = db_session.get(NetworkIdentity, first.identity_id)
        assert identity.seen_by_business_count == 2

    def test_repeat_run_for_same_business(self, db_session, resolver):
        """Test that a fresh batch for a business that already counted does not count again."""
        first = resolver.resolve_hashes(hash_contact(phone=PHONE), batch=SyncBatch(business_id="biz-1"))
        db_session.commit()
        resolver.resolve_hashes(hash_contact(phone=PHONE), batch=SyncBatch(business_id="biz-2"))
        db_session.commit()
        resolver.resolve_hashes(hash_contact(phone=PHONE), batch=SyncBatch(business_id="biz-2"))
        db_session.commit()

        identity = db_session.get(NetworkIdentity, first.identity_id, populate_existing=True)
        assert identity.seen_by_business_count == 2
        assert db_session.query(IdentitySighting).count() == 2

    def test_rolled_back_claim_can_be_retried(self, db_session, resolver):
        first = resolver.resolve_hashes(hash_contact(phone=PHONE))
        db_session.commit()
        resolver.resolve_hashes(hash_contact(phone=PHONE), batch=SyncBatch(business_id="biz-1"))
        db_session.rollback()

        resolver.resolve_hashes(hash_contact(phone=PHONE), batch=SyncBatch(business_id="biz-1"))
        db_session.commit()

        identity = db_session.get(NetworkIdentity, first.identity_id, populate_existing=True)
        assert identity.seen_by_business_count == 2

    def test_no_batch_no_increment(self, db_session, resolver):
        first = resolver.resolve_hashes(hash_contact(phone=PHONE))
        resolver.resolve_hashes(hash_contact(phone=PHONE))
        identity = db_session.get(NetworkIdentity, first.identity_id)
        assert identity.seen_by_business_count == 1

    def test_resync_batch_does_not_count(self, db_session, resolver):
        first = resolver.resolve_hashes(hash_contact(phone=PHONE))
        resolver.resolve_hashes(hash_contact(phone=PHONE), batch=SyncBatch(count_seen=False))
        identity = db_session.get(NetworkIdentity, first.identity_id)
        assert identity.seen_by_business_count == 1


class TestPropertySource:
    """Test identities created from property data."""

    def test_property_identity_becomes_merged(self, db_session, resolver):
        address_hash, partial = hash_address("12 Elm St, Media, PA 19063")
        hashes = ContactHashes(address_hash=address_hash, address_partial=partial)

        created = resolver.resolve_hashes(hashes, source=SOURCE_PROPERTY)
        identity = db_session.get(NetworkIdentity, created.identity_id)
        assert identity.source == SOURCE_PROPERTY
        assert identity.seen_by_business_count == 0
        assert identity.address_partial == "ELM ST, MEDIA"

        matched = resolver.resolve_hashes(hashes, batch=SyncBatch(business_id="biz-1"))
        db_session.commit()

        assert matched.identity_id == created.identity_id
        identity = db_session.get(NetworkIdentity, created.identity_id)
        assert identity.source == SOURCE_MERGED
        assert identity.seen_by_business_count == 1

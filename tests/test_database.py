"""
Tests for database.py - schema, constraints and insert_or_ignore.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from reliabilitynet.database import (
    Business,
    Event,
    IdentityLink,
    IdentitySighting,
    NetworkIdentity,
    PropertyRecord,
    database_url,
    get_session,
    init_database,
    insert_or_ignore,
)


class TestDatabaseInit:
    """Test database initialization."""

    def test_init_creates_database_file(self, tmp_path):
        """Test that init_database creates the database file."""
        db_path = tmp_path / "test.db"
        assert not db_path.exists()

        init_database(db_path)

        assert db_path.exists()

    def test_init_creates_tables(self, tmp_path):
        """Test that init_database creates every table."""
        db_path = tmp_path / "test.db"
        init_database(db_path)

        session = get_session(db_path)
        # Should not raise error if tables exist
        assert session.query(NetworkIdentity).count() == 0
        assert session.query(IdentityLink).count() == 0
        assert session.query(Business).count() == 0
        session.close()

    def test_init_creates_parent_directories(self, tmp_path):
        """Test that init_database creates parent directories if missing."""
        db_path = tmp_path / "nested" / "dir" / "test.db"
        assert not db_path.parent.exists()

        init_database(db_path)

        assert db_path.exists()

    def test_init_is_repeatable(self, tmp_path):
        db_path = tmp_path / "test.db"
        init_database(db_path)
        init_database(db_path)
        assert db_path.exists()

    def test_database_url(self, tmp_path):
        assert database_url("postgresql://u@h/db") == "postgresql://u@h/db"
        assert database_url(tmp_path / "x.db") == f"sqlite:///{tmp_path / 'x.db'}"


class TestConstraints:
    """Test uniqueness and range constraints."""

    def test_duplicate_phone_hash_fails(self, db_session):
        """Test that two identities cannot share a phone hash."""
        db_session.add(NetworkIdentity(phone_hash="p" * 64))
        db_session.commit()

        db_session.add(NetworkIdentity(phone_hash="p" * 64))
        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_duplicate_email_hash_fails(self, db_session):
        db_session.add(NetworkIdentity(email_hash="e" * 64))
        db_session.commit()

        db_session.add(NetworkIdentity(email_hash="e" * 64))
        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_duplicate_address_hash_fails(self, db_session):
        db_session.add(NetworkIdentity(address_hash="a" * 64))
        db_session.commit()

        db_session.add(NetworkIdentity(address_hash="a" * 64))
        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_many_identities_without_hashes(self, db_session):
        """NULL keys do not collide."""
        db_session.add(NetworkIdentity(phone_hash="p" * 64))
        db_session.add(NetworkIdentity(email_hash="e" * 64))
        db_session.commit()
        assert db_session.query(NetworkIdentity).count() == 2

    def test_one_link_per_property(self, db_session):
        prop = PropertyRecord(address_full="1 Elm St")
        first = NetworkIdentity(address_hash="a" * 64)
        second = NetworkIdentity(address_hash="b" * 64)
        db_session.add_all([prop, first, second])
        db_session.commit()

        db_session.add(IdentityLink(
            property_record_id=prop.id, identity_id=first.id,
            match_type="address", match_confidence=0.95,
        ))
        db_session.commit()

        db_session.add(IdentityLink(
            property_record_id=prop.id, identity_id=second.id,
            match_type="address", match_confidence=0.95,
        ))
        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_one_sighting_per_business_and_identity(self, db_session, business):
        identity = NetworkIdentity(phone_hash="p" * 64)
        db_session.add(identity)
        db_session.commit()

        values = {"business_id": business.id, "identity_id": identity.id}
        assert insert_or_ignore(db_session, IdentitySighting, values) is not None
        assert insert_or_ignore(db_session, IdentitySighting, values) is None
        db_session.commit()
        assert db_session.query(IdentitySighting).count() == 1

    def test_severity_range(self, db_session, business, make_customer):
        customer = make_customer(business)
        db_session.add(Event(customer_id=customer.id, business_id=business.id, severity=6))
        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_identity_defaults(self, db_session):
        identity = NetworkIdentity(phone_hash="p" * 64)
        db_session.add(identity)
        db_session.commit()

        assert identity.weighted_score == 0
        assert identity.risk_tier == "unknown"
        assert identity.source == "network"
        assert identity.first_seen_at is not None


class TestInsertOrIgnore:
    """Test the atomic create primitive."""

    def test_inserts_and_returns_id(self, db_session):
        new_id = insert_or_ignore(db_session, NetworkIdentity, {"phone_hash": "p" * 64})
        db_session.commit()

        assert new_id is not None
        assert db_session.get(NetworkIdentity, new_id).phone_hash == "p" * 64

    def test_conflict_returns_none(self, db_session):
        insert_or_ignore(db_session, NetworkIdentity, {"phone_hash": "p" * 64})
        second = insert_or_ignore(db_session, NetworkIdentity, {"phone_hash": "p" * 64})
        db_session.commit()

        assert second is None
        assert db_session.query(NetworkIdentity).count() == 1

    def test_conflict_keeps_transaction_usable(self, db_session):
        insert_or_ignore(db_session, NetworkIdentity, {"email_hash": "e" * 64})
        insert_or_ignore(db_session, NetworkIdentity, {"email_hash": "e" * 64})
        insert_or_ignore(db_session, NetworkIdentity, {"email_hash": "f" * 64})
        db_session.commit()
        assert db_session.query(NetworkIdentity).count() == 2

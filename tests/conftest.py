"""
Pytest configuration and shared fixtures.
"""

from datetime import datetime

import pytest

from reliabilitynet.database import Business, Customer, PropertyRecord, init_database, session_factory
from reliabilitynet.logger import get_logger


@pytest.fixture(autouse=True)
def clean_metrics():
    """Start every test with zeroed sync counters."""
    get_logger().reset_metrics()
    yield
    get_logger().reset_metrics()


@pytest.fixture
def db_path(tmp_path):
    """Create a temporary database and return its path."""
    path = tmp_path / "network.db"
    init_database(path)
    return path


@pytest.fixture
def sessions(db_path):
    """Session factory bound to the temporary database."""
    factory = session_factory(db_path)
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture
def db_session(sessions):
    session = sessions()
    yield session
    session.close()


@pytest.fixture
def business(db_session):
    """An opted-in business with no customers yet."""
    biz = Business(name="Lakeside Cleaning")
    db_session.add(biz)
    db_session.commit()
    return biz


@pytest.fixture
def other_business(db_session):
    biz = Business(name="Hilltop Movers")
    db_session.add(biz)
    db_session.commit()
    return biz


@pytest.fixture
def make_customer(db_session):
    """Factory for customers of a given business."""
    def _make(business, full_name="Jane Doe", phone=None, email=None, address=None, created_at=None):
        customer = Customer(
            business_id=business.id,
            full_name=full_name,
            phone=phone,
            email=email,
            address=address,
            created_at=created_at or datetime.now(),
        )
        db_session.add(customer)
        db_session.commit()
        return customer
    return _make


@pytest.fixture
def make_property(db_session):
    """Factory for property records."""
    def _make(
        address_full,
        owner_name="SMITH, JOHN",
        property_class="Residential",
        county="Chester",
        municipality="Springfield",
    ):
        prop = PropertyRecord(
            address_full=address_full,
            owner_name=owner_name,
            property_class=property_class,
            county=county,
            municipality=municipality,
        )
        db_session.add(prop)
        db_session.commit()
        return prop
    return _make

"""
Batch jobs that seed and reconcile the identity network.

- Business sync: fold one business's customers into the network once.
- Full resync: re-run the hasher and resolver over every customer.
- Property bootstrap: build address-only identities from residential
  property records and link them.
- Owner import: copy property owners into one business's customer list.

Rows are processed one at a time with a commit per row. A failing row is
rolled back, counted and described in a capped error list; the batch keeps
going. Every job can be re-run without creating duplicates.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import exists, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .address import normalize_address, same_location
from .config import (
    ADDRESS_LINK_CONFIDENCE,
    AUTO_GENERATED_LINK_CONFIDENCE,
    DEFAULT_BATCH_LIMIT,
    MANUAL_ADDRESS_LINK_CONFIDENCE,
    MANUAL_NAME_LINK_CONFIDENCE,
    MAX_BATCH_ERRORS,
    RESIDENTIAL_CLASS_MARKER,
)
from .database import Business, Customer, IdentityLink, NetworkIdentity, PropertyRecord, insert_or_ignore
from .errors import MalformedAddress, NoIdentifiableContact, RecordNotFound, ReliabilityNetError
from .hashing import ContactHashes, hash_address, hash_contact
from .logger import get_logger, short_hash
from .names import is_business_entity
from .resolver import SOURCE_MERGED, SOURCE_PROPERTY, IdentityResolver, SyncBatch
from .schema import validate_property

logger = get_logger()

MATCH_ADDRESS = "address"
MATCH_AUTO_GENERATED = "auto_generated"
MATCH_NAME = "name"

MANUAL_CONFIDENCE = {
    MATCH_ADDRESS: MANUAL_ADDRESS_LINK_CONFIDENCE,
    MATCH_NAME: MANUAL_NAME_LINK_CONFIDENCE,
}


def _add_error(errors: List[str], message: str) -> None:
    if len(errors) < MAX_BATCH_ERRORS:
        errors.append(message)


@dataclass
class SyncReport:
    synced: int = 0
    skipped: int = 0
    total: int = 0
    already_synced: bool = False
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class BootstrapReport:
    """
    created + linked + skipped == total.

    ``linked`` counts properties joined to an identity that already held the
    address. They get a new link but no new identity, so they are neither
    created nor skipped.
    """

    created: int = 0
    linked: int = 0
    skipped: int = 0
    total: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ImportReport:
    imported: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {**asdict(self), "success": self.success}


# ---------------------------------------------------------------------------
# Customer sync
# ---------------------------------------------------------------------------

def _sync_customers(
    session: Session,
    rows: List[Tuple[str, Optional[str], Optional[str]]],
    batch: Optional[SyncBatch],
    report: SyncReport,
) -> None:
    resolver = IdentityResolver(session)
    for customer_id, phone, email in rows:
        report.total += 1
        try:
            hashes = hash_contact(phone=phone, email=email)
            resolver.resolve_hashes(hashes, batch=batch)
            session.commit()
        except NoIdentifiableContact:
            report.skipped += 1
            logger.record_row_skipped()
            continue
        except (SQLAlchemyError, ReliabilityNetError) as e:
            session.rollback()
            report.skipped += 1
            logger.record_row_failure(e.__class__.__name__)
            _add_error(report.errors, f"Customer {customer_id}: {e.__class__.__name__}")
            logger.warning("Customer sync failed", customer_id=customer_id, error=e.__class__.__name__)
            continue
        report.synced += 1
        logger.record_row_synced()


def _customer_rows(session: Session, business_id: Optional[str], limit: Optional[int]):
    stmt = select(Customer.id, Customer.phone, Customer.email).order_by(Customer.created_at, Customer.id)
    if business_id is not None:
        stmt = stmt.where(Customer.business_id == business_id)
    if limit is not None:
        stmt = stmt.limit(limit)
    return [tuple(row) for row in session.execute(stmt)]


def sync_business_customers(
    session: Session,
    business_id: str,
    limit: Optional[int] = None,
) -> SyncReport:
    """
    Fold every customer of one business into the network, once.

    Each identity gains one seen_by_business_count per business, however
    many of its customers map to it and however many runs reach it: the
    claim is stored as an IdentitySighting. The business is flagged
    network_synced only when every customer was processed without a store
    failure, so an interrupted run can simply be repeated.

    Raises:
        RecordNotFound: If the business does not exist
    """
    business = session.get(Business, business_id)
    if business is None:
        raise RecordNotFound(f"Business not found: {business_id}")
    if business.network_synced:
        return SyncReport(already_synced=True)

    customer_count = session.execute(
        select(func.count()).select_from(Customer).where(Customer.business_id == business_id)
    ).scalar_one()

    report = SyncReport()
    rows = _customer_rows(session, business_id, limit)
    _sync_customers(session, rows, SyncBatch(business_id=business_id), report)

    failed = bool(report.errors)
    if report.total >= customer_count and not failed:
        business = session.get(Business, business_id)
        business.network_synced = True
        session.commit()

    logger.info(
        "Business network sync finished",
        business_id=business_id,
        synced=report.synced,
        skipped=report.skipped,
        total=report.total,
    )
    return report


def resync_all_customers(
    session: Session,
    business_id: Optional[str] = None,
    limit: Optional[int] = None,
) -> SyncReport:
    """
    Re-run hashing and resolution for customers of one or all businesses.

    Merges newly supplied keys and refreshes last_seen_at; never changes
    seen_by_business_count for identities that already exist.
    """
    report = SyncReport()
    rows = _customer_rows(session, business_id, limit)
    _sync_customers(session, rows, SyncBatch(business_id=business_id, count_seen=False), report)
    logger.info(
        "Full customer resync finished",
        business_id=business_id,
        synced=report.synced,
        skipped=report.skipped,
        total=report.total,
    )
    return report


# ---------------------------------------------------------------------------
# Property bootstrap
# ---------------------------------------------------------------------------

def _is_residential(prop: PropertyRecord) -> bool:
    return bool(prop.property_class) and RESIDENTIAL_CLASS_MARKER in prop.property_class.lower()


def _link_property(session: Session, resolver: IdentityResolver, prop: PropertyRecord) -> str:
    """
    Resolve a property's address to an identity and link the two.

    Returns:
        "created" for a new identity, "linked" for an existing one,
        "existing" if the property already had a link
    """
    if session.execute(
        select(IdentityLink.id).where(IdentityLink.property_record_id == prop.id)
    ).first() is not None:
        return "existing"

    address_hash, partial = hash_address(prop.address_full)
    if address_hash is None:
        raise NoIdentifiableContact(f"Property {prop.id} has no usable address")

    resolution = resolver.resolve_hashes(
        ContactHashes(address_hash=address_hash, address_partial=partial),
        source=SOURCE_PROPERTY,
    )
    if resolution.created:
        match_type, confidence = MATCH_AUTO_GENERATED, AUTO_GENERATED_LINK_CONFIDENCE
    else:
        match_type, confidence = MATCH_ADDRESS, ADDRESS_LINK_CONFIDENCE

    link_id = insert_or_ignore(session, IdentityLink, {
        "property_record_id": prop.id,
        "identity_id": resolution.identity_id,
        "match_type": match_type,
        "match_confidence": confidence,
    })
    if link_id is None:
        return "existing"

    logger.record_link_created()
    logger.debug(
        "Linked property to identity",
        property_id=prop.id,
        identity_id=resolution.identity_id,
        address_hash=short_hash(address_hash),
        match_type=match_type,
    )
    return "created" if resolution.created else "linked"


def bootstrap_from_properties(
    session: Session,
    limit: int = DEFAULT_BATCH_LIMIT,
    county: Optional[str] = None,
    municipality: Optional[str] = None,
) -> BootstrapReport:
    """
    Create address-only identities from residential property records.

    Only properties without a link are fetched, at most ``limit`` of them.
    Business-owned and address-less properties are skipped. An address
    already held by an identity gets an "address" link at 0.95 confidence;
    otherwise a new identity is created and linked as "auto_generated" at 1.0.
    """
    stmt = (
        select(PropertyRecord)
        .where(func.lower(PropertyRecord.property_class).contains(RESIDENTIAL_CLASS_MARKER))
        .where(~exists().where(IdentityLink.property_record_id == PropertyRecord.id))
    )
    if county:
        stmt = stmt.where(PropertyRecord.county == county)
    if municipality:
        stmt = stmt.where(PropertyRecord.municipality == municipality)
    stmt = stmt.order_by(PropertyRecord.id).limit(limit)

    properties = list(session.execute(stmt).scalars())
    report = BootstrapReport(total=len(properties))
    resolver = IdentityResolver(session)

    for prop in properties:
        problems = validate_property({"id": prop.id, "owner_name": prop.owner_name})
        if problems:
            report.skipped += 1
            logger.record_row_skipped()
            _add_error(report.errors, f"Property {prop.id}: {problems[0]}")
            continue
        if prop.owner_name and is_business_entity(prop.owner_name):
            report.skipped += 1
            logger.record_row_skipped()
            continue
        try:
            outcome = _link_property(session, resolver, prop)
            session.commit()
        except NoIdentifiableContact:
            session.rollback()
            report.skipped += 1
            logger.record_row_skipped()
            continue
        except (SQLAlchemyError, ReliabilityNetError) as e:
            session.rollback()
            report.skipped += 1
            logger.record_row_failure(e.__class__.__name__)
            _add_error(report.errors, f"Property {prop.id}: {e.__class__.__name__}")
            logger.warning("Property bootstrap failed", property_id=prop.id, error=e.__class__.__name__)
            continue

        if outcome == "existing":
            report.skipped += 1
            logger.record_row_skipped()
            continue
        if outcome == "created":
            report.created += 1
        else:
            report.linked += 1
        logger.record_row_synced()

    logger.info(
        "Property bootstrap finished",
        county=county,
        municipality=municipality,
        created=report.created,
        linked=report.linked,
        skipped=report.skipped,
        total=report.total,
    )
    return report


def create_identity_from_property(session: Session, property_id: str) -> str:
    """
    Build (or find) the identity for one residential property and link it.

    Returns:
        The linked identity id

    Raises:
        RecordNotFound: If the property does not exist
        NoIdentifiableContact: If the property is non-residential, business-owned or has no address
    """
    prop = session.get(PropertyRecord, property_id)
    if prop is None:
        raise RecordNotFound(f"Property not found: {property_id}")
    if prop.property_class and not _is_residential(prop):
        raise NoIdentifiableContact("Only residential properties can become identities")
    if prop.owner_name and is_business_entity(prop.owner_name):
        raise NoIdentifiableContact("Business-owned properties cannot become identities")

    _link_property(session, IdentityResolver(session), prop)
    session.commit()
    return session.execute(
        select(IdentityLink.identity_id).where(IdentityLink.property_record_id == property_id)
    ).scalar_one()


def link_identity_to_property(
    session: Session,
    identity_id: str,
    property_id: str,
    match_type: str = MATCH_ADDRESS,
) -> IdentityLink:
    """
    Point a property's single link at a chosen identity (manual match).

    Raises:
        ValueError: If match_type is not "address" or "name"
        RecordNotFound: If the identity or property does not exist
    """
    if match_type not in MANUAL_CONFIDENCE:
        raise ValueError(f"Unsupported match type: {match_type}")
    if session.get(PropertyRecord, property_id) is None:
        raise RecordNotFound(f"Property not found: {property_id}")
    identity = session.get(NetworkIdentity, identity_id)
    if identity is None:
        raise RecordNotFound(f"Network identity not found: {identity_id}")

    confidence = MANUAL_CONFIDENCE[match_type]
    values = {
        "property_record_id": property_id,
        "identity_id": identity_id,
        "match_type": match_type,
        "match_confidence": confidence,
    }
    if insert_or_ignore(session, IdentityLink, values) is None:
        link = session.execute(
            select(IdentityLink).where(IdentityLink.property_record_id == property_id)
        ).scalar_one()
        link.identity_id = identity_id
        link.match_type = match_type
        link.match_confidence = confidence
        link.updated_at = datetime.now()

    if identity.source == SOURCE_PROPERTY:
        identity.source = SOURCE_MERGED

    session.commit()
    return session.execute(
        select(IdentityLink).where(IdentityLink.property_record_id == property_id)
    ).scalar_one()


# ---------------------------------------------------------------------------
# Owner import
# ---------------------------------------------------------------------------

def _customer_exists(session: Session, business_id: str, name: str, address: str) -> bool:
    """Check the store, right before inserting, for the same owner or location."""
    name_key = name.strip().lower()
    address_key = address.strip().lower()

    exact = select(Customer.id).where(
        Customer.business_id == business_id,
        (func.lower(func.trim(Customer.address)) == address_key)
        | (func.lower(func.trim(Customer.full_name)) == name_key),
    )
    if session.execute(exact.limit(1)).first() is not None:
        return True

    try:
        street_number = normalize_address(address).street_number
    except MalformedAddress:
        return False
    if not street_number:
        return False

    nearby = select(Customer.address).where(
        Customer.business_id == business_id,
        Customer.address.like(f"{street_number} %"),
    )
    return any(
        same_location(existing, address)
        for existing in session.execute(nearby).scalars()
        if existing
    )


def import_property_owners(
    session: Session,
    business_id: str,
    limit: int = DEFAULT_BATCH_LIMIT,
) -> ImportReport:
    """
    Import property owners as customers of one business.

    Owners are de-duplicated by address within the run and against the
    business's existing customers (same name, same address or same
    location) at insert time. Stops importing once the business reaches its
    customer_count_limit; the remaining owners are counted as skipped.

    Raises:
        RecordNotFound: If the business does not exist
    """
    business = session.get(Business, business_id)
    if business is None:
        raise RecordNotFound(f"Business not found: {business_id}")
    count_limit = business.customer_count_limit

    stmt = (
        select(PropertyRecord)
        .where(PropertyRecord.owner_name.is_not(None), PropertyRecord.address_full.is_not(None))
        .order_by(PropertyRecord.id)
        .limit(limit)
    )
    owners = list(session.execute(stmt).scalars())

    report = ImportReport()
    seen_addresses = set()
    limit_reported = False

    for prop in owners:
        address_key = prop.address_full.strip().lower()
        if address_key in seen_addresses:
            report.skipped += 1
            continue
        seen_addresses.add(address_key)

        if count_limit is not None:
            current = session.execute(
                select(func.count()).select_from(Customer).where(Customer.business_id == business_id)
            ).scalar_one()
            if current >= count_limit:
                report.skipped += 1
                if not limit_reported:
                    _add_error(report.errors, f"Customer limit of {count_limit} reached")
                    limit_reported = True
                continue

        try:
            if _customer_exists(session, business_id, prop.owner_name, prop.address_full):
                report.skipped += 1
                continue
            session.add(Customer(
                business_id=business_id,
                full_name=prop.owner_name,
                address=prop.address_full,
                city=prop.municipality,
                county=prop.county,
            ))
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            report.skipped += 1
            _add_error(report.errors, f"Failed to import {prop.owner_name}: {e.__class__.__name__}")
            continue
        report.imported += 1

    logger.info(
        "Property owner import finished",
        business_id=business_id,
        imported=report.imported,
        skipped=report.skipped,
    )
    return report

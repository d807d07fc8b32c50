"""
Service facade over the identity network.

Each public method is one unit of work: it opens a session, commits on
success and is retried as a whole on transient store errors. Nothing it
returns carries raw contact details, only identity ids, counters and the
safe hints stored beside the hashes. Property records are public roll data
and are returned as they are stored.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from .address import address_similarity, looks_like_address, normalize_address, searchable_street
from .config import ADDRESS_SEARCH_LIMIT, OWNER_SEARCH_LIMIT, PROPERTY_MATCH_LIMIT
from .database import IdentityLink, NetworkIdentity, PropertyRecord
from .errors import MalformedAddress, NoIdentifiableContact, RecordNotFound
from .hashing import ContactHashes, hash_address, hash_contact, hash_email, hash_phone
from .logger import get_logger, short_hash
from .names import looks_like_name, name_similarity, parse_name
from .normalize import normalize_phone
from .reputation import ReputationAggregator, RiskTier, validate_severity
from .resolver import IdentityResolver, ResolvedIdentity
from .retry import retry_transient

logger = get_logger()

LOOKUP_KINDS = ("phone", "email", "address")
PROPERTY_SEARCH_KINDS = ("address", "name")
SEARCH_KINDS = LOOKUP_KINDS + ("name",)

_PHONE_QUERY = re.compile(r"[\d\s\-().+]+")
_LIKE_SPECIAL = re.compile(r"([\\%_])")


@dataclass(frozen=True)
class NetworkProfile:
    """What any business may see about a network identity."""

    identity_id: str
    risk_tier: RiskTier
    weighted_score: int
    total_incidents: int
    total_positive_events: int
    clean_streak_months: int
    seen_by_business_count: int
    first_seen_at: Optional[datetime]
    last_seen_at: Optional[datetime]
    last_incident_at: Optional[datetime]
    phone_last_four: Optional[str] = None
    email_domain: Optional[str] = None
    address_partial: Optional[str] = None

    @classmethod
    def from_identity(cls, identity: NetworkIdentity) -> "NetworkProfile":
        return cls(
            identity_id=identity.id,
            risk_tier=RiskTier(identity.risk_tier),
            weighted_score=identity.weighted_score,
            total_incidents=identity.total_incidents,
            total_positive_events=identity.total_positive_events,
            clean_streak_months=identity.clean_streak_months,
            seen_by_business_count=identity.seen_by_business_count,
            first_seen_at=identity.first_seen_at,
            last_seen_at=identity.last_seen_at,
            last_incident_at=identity.last_incident_at,
            phone_last_four=identity.phone_last_four,
            email_domain=identity.email_domain,
            address_partial=identity.address_partial,
        )


@dataclass(frozen=True)
class PropertySummary:
    """One property-roll row as shown in search results."""

    property_id: str
    address_full: Optional[str]
    owner_name: Optional[str]
    owner_name_secondary: Optional[str] = None
    municipality: Optional[str] = None
    county: Optional[str] = None
    property_class: Optional[str] = None

    @classmethod
    def from_record(cls, record: PropertyRecord) -> "PropertySummary":
        return cls(
            property_id=record.id,
            address_full=record.address_full,
            owner_name=record.owner_name,
            owner_name_secondary=record.owner_name_secondary,
            municipality=record.municipality,
            county=record.county,
            property_class=record.property_class,
        )


@dataclass(frozen=True)
class SearchResult:
    """Identity profile (phone, email, address) and property records (address, name)."""

    profile: Optional[NetworkProfile] = None
    properties: Tuple[PropertySummary, ...] = ()


def classify_query(text: str) -> str:
    """
    Guess what a free-text search is: "email", "phone", "address", "name" or "unknown".
    """
    trimmed = (text or "").strip()
    if not trimmed:
        return "unknown"
    if "@" in trimmed:
        return "email"
    if _PHONE_QUERY.fullmatch(trimmed) and normalize_phone(trimmed):
        return "phone"
    if looks_like_address(trimmed):
        return "address"
    if looks_like_name(trimmed):
        return "name"
    return "unknown"


def _like_term(text: str) -> str:
    return _LIKE_SPECIAL.sub(r"\\\1", text)


def _properties_like(session: Session, column, pattern: str, limit: int) -> List[PropertyRecord]:
    stmt = (
        select(PropertyRecord)
        .where(func.upper(column).like(pattern, escape="\\"))
        .order_by(PropertyRecord.id)
        .limit(limit)
    )
    return list(session.execute(stmt).scalars())


def _search_by_address(session: Session, value: str, limit: int) -> List[PropertyRecord]:
    """
    Property records for a typed address, tried loosest-last: the text as
    typed, then street number and normalized street name, then the street
    name alone. Results are ranked by address similarity.
    """
    term = " ".join(value.upper().split())
    if not term:
        return []
    column = PropertyRecord.address_full

    found = _properties_like(session, column, f"%{_like_term(term)}%", limit)
    if not found:
        try:
            normalized = normalize_address(value)
        except MalformedAddress:
            return []
        name = _like_term(normalized.street_name or "")
        if normalized.street_number and name:
            number = _like_term(normalized.street_number)
            found = _properties_like(session, column, f"%{number}%{name}%", limit)
        if not found and name:
            found = _properties_like(session, column, f"%{name}%", limit)

    return sorted(found, key=lambda p: address_similarity(value, p.address_full or ""), reverse=True)


def _roll_order(name: str) -> str:
    """Put a typed "JANE DOE" in roll order, "DOE, JANE". Names with a comma are kept."""
    if "," in name:
        return name
    parts = name.split()
    if len(parts) < 2:
        return name
    return f"{parts[-1]}, {' '.join(parts[:-1])}"


def _search_by_owner(session: Session, value: str, limit: int) -> List[PropertyRecord]:
    """
    Property records whose owner matches a typed name. Rolls list owners
    surname first, so "Jane Doe" also tries "DOE, JANE", then the surname as
    a prefix, then the given name anywhere. Ranked by name similarity.
    """
    term = " ".join(value.upper().split())
    if not term.replace(",", ""):
        return []
    column = PropertyRecord.owner_name
    roll_form = _roll_order(term)
    parsed = parse_name(roll_form)

    found = _properties_like(session, column, f"%{_like_term(term)}%", limit)
    if not found and roll_form != term:
        found = _properties_like(session, column, f"%{_like_term(roll_form)}%", limit)
    if not found:
        found = _properties_like(session, column, f"{_like_term(parsed.last_name or term)}%", limit)
    if not found and parsed.first_name:
        found = _properties_like(session, column, f"%{_like_term(parsed.first_name)}%", limit)

    return sorted(found, key=lambda p: name_similarity(roll_form, p.owner_name or ""), reverse=True)


class NetworkService:
    """Resolve contacts and record events against the shared network."""

    def __init__(self, sessions: sessionmaker):
        self.sessions = sessions

    @retry_transient()
    def resolve(
        self,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        address: Optional[str] = None,
    ) -> ResolvedIdentity:
        """
        Find or create the identity for a contact.

        Raises:
            NoIdentifiableContact: If no contact detail is usable
            StoreUnavailable: If the store keeps failing
        """
        hashes = hash_contact(phone=phone, email=email, address=address)
        with self.sessions() as session:
            resolved = IdentityResolver(session).resolve_hashes(hashes)
            session.commit()
        return resolved

    @retry_transient()
    def apply_event(self, identity_id: str, severity: int) -> NetworkProfile:
        """
        Raises:
            InvalidEvent: If severity is not an integer 1..5
            RecordNotFound: If the identity does not exist
        """
        with self.sessions() as session:
            identity = ReputationAggregator(session).apply_event(identity_id, severity)
            profile = NetworkProfile.from_identity(identity)
            session.commit()
        return profile

    @retry_transient()
    def record_event(
        self,
        phone: Optional[str],
        email: Optional[str],
        severity: int,
        address: Optional[str] = None,
    ) -> Optional[NetworkProfile]:
        """
        Resolve a customer's contact and fold one event into its identity.

        Returns None, and writes nothing, when the customer has no usable
        contact detail; the event still counts toward the business's own
        score.
        """
        severity = validate_severity(severity)
        try:
            hashes = hash_contact(phone=phone, email=email, address=address)
        except NoIdentifiableContact:
            logger.debug("Event not shared, no identifiable contact", severity=severity)
            return None

        with self.sessions() as session:
            resolved = IdentityResolver(session).resolve_hashes(hashes)
            identity = ReputationAggregator(session).apply_event(resolved.identity_id, severity)
            profile = NetworkProfile.from_identity(identity)
            session.commit()

        logger.info(
            "Recorded network event",
            identity_id=profile.identity_id,
            severity=severity,
            risk_tier=profile.risk_tier.value,
        )
        return profile

    def _find_profile(self, session: Session, kind: str, value: str) -> Optional[NetworkProfile]:
        if kind == "phone":
            key, _ = hash_phone(value)
            hashes = ContactHashes(phone_hash=key)
        elif kind == "email":
            key, _ = hash_email(value)
            hashes = ContactHashes(email_hash=key)
        elif kind == "address":
            key, _ = hash_address(value)
            hashes = ContactHashes(address_hash=key)
        else:
            raise ValueError(f"Unsupported lookup kind: {kind} (expected one of {', '.join(LOOKUP_KINDS)})")

        if key is None:
            return None

        identity = IdentityResolver(session).find(hashes)
        if identity is None:
            logger.debug("Network lookup missed", kind=kind, key=short_hash(key))
            return None
        return NetworkProfile.from_identity(identity)

    @staticmethod
    def _find_properties(session: Session, kind: str, value: str) -> Tuple[PropertySummary, ...]:
        if kind == "address":
            records = _search_by_address(session, value, ADDRESS_SEARCH_LIMIT)
        elif kind == "name":
            records = _search_by_owner(session, value, OWNER_SEARCH_LIMIT)
        else:
            raise ValueError(
                f"Unsupported property search kind: {kind} (expected one of {', '.join(PROPERTY_SEARCH_KINDS)})"
            )
        return tuple(PropertySummary.from_record(r) for r in records)

    @retry_transient()
    def lookup(self, kind: str, value: str) -> Optional[NetworkProfile]:
        """
        Read-only search by one contact detail. Never creates an identity.

        Raises:
            ValueError: If kind is not phone, email or address
        """
        with self.sessions() as session:
            return self._find_profile(session, kind, value)

    @retry_transient()
    def search_properties(self, kind: str, value: str) -> Tuple[PropertySummary, ...]:
        """
        Property records by street address ("address") or owner name ("name"),
        best match first.

        Raises:
            ValueError: If kind is not address or name
        """
        with self.sessions() as session:
            return self._find_properties(session, kind, value)

    @retry_transient()
    def find_property_matches(self, address: str, limit: int = PROPERTY_MATCH_LIMIT) -> Tuple[PropertySummary, ...]:
        """
        Property records on the same street as a customer's address, for
        manual linking. Unparseable addresses match nothing.
        """
        try:
            street = searchable_street(address)
        except MalformedAddress:
            return ()
        if not street:
            return ()
        with self.sessions() as session:
            records = _properties_like(session, PropertyRecord.address_full, f"%{_like_term(street)}%", limit)
            return tuple(PropertySummary.from_record(r) for r in records)

    @retry_transient()
    def linked_property(self, identity_id: str) -> Optional[PropertySummary]:
        """The property record linked to an identity with the highest match confidence."""
        with self.sessions() as session:
            stmt = (
                select(PropertyRecord)
                .join(IdentityLink, IdentityLink.property_record_id == PropertyRecord.id)
                .where(IdentityLink.identity_id == identity_id)
                .order_by(IdentityLink.match_confidence.desc(), IdentityLink.created_at)
                .limit(1)
            )
            record = session.execute(stmt).scalars().first()
            return PropertySummary.from_record(record) if record is not None else None

    @retry_transient()
    def search(self, kind: str, value: str) -> SearchResult:
        """
        Combined read-only search. Phone, email and address queries consult
        the identity hashes; address and name queries also search property
        records.

        Raises:
            ValueError: If kind is not phone, email, address or name
        """
        if kind not in SEARCH_KINDS:
            raise ValueError(f"Unsupported search kind: {kind} (expected one of {', '.join(SEARCH_KINDS)})")
        with self.sessions() as session:
            profile = self._find_profile(session, kind, value) if kind in LOOKUP_KINDS else None
            properties = self._find_properties(session, kind, value) if kind in PROPERTY_SEARCH_KINDS else ()
        return SearchResult(profile=profile, properties=properties)

    @retry_transient()
    def profile(self, identity_id: str) -> NetworkProfile:
        with self.sessions() as session:
            identity = session.get(NetworkIdentity, identity_id)
            if identity is None:
                raise RecordNotFound(f"Network identity not found: {identity_id}")
            return NetworkProfile.from_identity(identity)

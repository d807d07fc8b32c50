"""
Find-or-create resolution of hashed contact keys to NetworkIdentity rows.

Lookup order is phone, then email, then address. Creation is an
insert-or-ignore against the unique hash columns; a writer that loses the
race re-reads and adopts the winning row. Keys a caller brings that the
matched identity does not hold yet are merged in, unless another identity
already owns them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Set

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .database import IdentitySighting, NetworkIdentity, insert_or_ignore
from .errors import DuplicateKeyConflict, NoIdentifiableContact, StoreUnavailable
from .hashing import ContactHashes
from .logger import get_logger, short_hash
from .reputation import RiskTier

logger = get_logger()

SOURCE_NETWORK = "network"
SOURCE_PROPERTY = "property_enrichment"
SOURCE_MERGED = "merged"

# Safe-to-store hint that travels with each hash column
KEY_METADATA = {
    "phone_hash": "phone_last_four",
    "email_hash": "email_domain",
    "address_hash": "address_partial",
}

MAX_CREATE_ATTEMPTS = 2


@dataclass
class SyncBatch:
    """
    Seen-count bookkeeping for one sync run.

    With a business_id, each (business, identity) pair is claimed once in
    the store, so an identity gains one seen_by_business_count per business
    no matter how many runs or customers lead to it. Without one, claims
    last only for the run.
    """

    business_id: Optional[str] = None
    count_seen: bool = True
    counted: Set[str] = field(default_factory=set)

    def record(self, session: Session, identity_id: str) -> bool:
        """Claim the pair. True when this business had not counted the identity yet."""
        if self.business_id is None:
            if identity_id in self.counted:
                return False
            self.counted.add(identity_id)
            return True
        values = {"business_id": self.business_id, "identity_id": identity_id}
        return insert_or_ignore(session, IdentitySighting, values) is not None

    def claim(self, session: Session, identity_id: str) -> bool:
        """True when this run should bump the identity's seen count."""
        return self.count_seen and self.record(session, identity_id)


@dataclass(frozen=True)
class ResolvedIdentity:
    """Pseudonymous view of a resolved identity. Safe to return to any business."""

    identity_id: str
    risk_tier: RiskTier
    total_incidents: int
    last_incident_at: Optional[datetime]
    created: bool = False

    @classmethod
    def from_identity(cls, identity: NetworkIdentity, created: bool = False) -> "ResolvedIdentity":
        return cls(
            identity_id=identity.id,
            risk_tier=RiskTier(identity.risk_tier),
            total_incidents=identity.total_incidents,
            last_incident_at=identity.last_incident_at,
            created=created,
        )


class IdentityResolver:
    """Resolves contact hashes to identities inside a caller's session. Never commits."""

    def __init__(self, session: Session):
        self.session = session

    def find(self, hashes: ContactHashes) -> Optional[NetworkIdentity]:
        for column, value in hashes.key_columns().items():
            stmt = select(NetworkIdentity).where(getattr(NetworkIdentity, column) == value)
            identity = self.session.execute(stmt).scalar_one_or_none()
            if identity is not None:
                return identity
        return None

    def resolve(
        self,
        phone_hash: Optional[str] = None,
        email_hash: Optional[str] = None,
        address_hash: Optional[str] = None,
        batch: Optional[SyncBatch] = None,
    ) -> str:
        """Resolve bare hashes to an identity id (find-or-create)."""
        hashes = ContactHashes(
            phone_hash=phone_hash,
            email_hash=email_hash,
            address_hash=address_hash,
        )
        return self.resolve_hashes(hashes, batch=batch).identity_id

    def resolve_hashes(
        self,
        hashes: ContactHashes,
        batch: Optional[SyncBatch] = None,
        source: str = SOURCE_NETWORK,
        now: Optional[datetime] = None,
    ) -> ResolvedIdentity:
        """
        Find the identity holding any of the given keys, or create one.

        Args:
            hashes: Hashed keys and their metadata
            batch: Sync run this call belongs to, for seen-count bookkeeping
            source: Origin recorded on newly created identities
            now: Timestamp for first/last seen (defaults to now)

        Returns:
            ResolvedIdentity for the matched or created row

        Raises:
            NoIdentifiableContact: If no key is present
            StoreUnavailable: If the store neither accepts nor exposes a row
        """
        if hashes.is_empty:
            raise NoIdentifiableContact("Resolution needs a phone, email or address hash")

        now = now or datetime.now()
        identity = self.find(hashes)
        created = False

        attempts = 0
        while identity is None:
            attempts += 1
            if attempts > MAX_CREATE_ATTEMPTS:
                raise StoreUnavailable("Identity could not be created or re-read")
            new_id = self._create(hashes, source, now)
            if new_id is not None:
                created = True
                identity = self.session.get(NetworkIdentity, new_id)
                break
            logger.info(
                "Identity create conflicted, re-reading winner",
                phone_hash=short_hash(hashes.phone_hash),
                email_hash=short_hash(hashes.email_hash),
            )
            identity = self.find(hashes)

        if created:
            logger.record_identity_created()
            if batch is not None and source == SOURCE_NETWORK:
                batch.record(self.session, identity.id)
        else:
            logger.record_identity_matched()
            self._merge(identity, hashes, source, now)
            if batch is not None and batch.claim(self.session, identity.id):
                self._increment_seen(identity)

        return ResolvedIdentity.from_identity(identity, created=created)

    def _create(self, hashes: ContactHashes, source: str, now: datetime) -> Optional[str]:
        values = hashes.column_values()
        values.update(
            source=source,
            risk_tier=RiskTier.UNKNOWN.value,
            weighted_score=0,
            total_incidents=0,
            total_positive_events=0,
            clean_streak_months=0,
            seen_by_business_count=1 if source == SOURCE_NETWORK else 0,
            first_seen_at=now,
            last_seen_at=now,
        )
        return insert_or_ignore(self.session, NetworkIdentity, values)

    def _merge(self, identity: NetworkIdentity, hashes: ContactHashes, source: str, now: datetime) -> None:
        identity.last_seen_at = now
        if identity.source == SOURCE_PROPERTY and source == SOURCE_NETWORK:
            identity.source = SOURCE_MERGED
        self.session.flush()

        for column, value in hashes.key_columns().items():
            if getattr(identity, column) is not None:
                continue
            metadata_column = KEY_METADATA[column]
            try:
                self._assign_key(identity, column, value, metadata_column, getattr(hashes, metadata_column))
            except DuplicateKeyConflict as conflict:
                # Another identity owns this key; both stay as they are.
                logger.warning(
                    "Key already held by another identity, not merged",
                    identity_id=identity.id,
                    column=conflict.column,
                    value=short_hash(value),
                )

    def _assign_key(self, identity, column, value, metadata_column, metadata_value) -> None:
        try:
            with self.session.begin_nested():
                setattr(identity, column, value)
                setattr(identity, metadata_column, metadata_value)
        except IntegrityError as e:
            raise DuplicateKeyConflict(column) from e

    def _increment_seen(self, identity: NetworkIdentity) -> None:
        stmt = (
            update(NetworkIdentity)
            .where(NetworkIdentity.id == identity.id)
            .values(seen_by_business_count=NetworkIdentity.seen_by_business_count + 1)
            .execution_options(synchronize_session=False)
        )
        self.session.execute(stmt)
        self.session.refresh(identity)

"""
One-way hashing of contact details into network join keys.

The same normalized value must hash identically at every call site, forever:
hashes are stored as unique keys on NetworkIdentity. Only non-reversible
hints (last four phone digits, email domain, street name without number) are
kept next to them.
"""

import hashlib
from dataclasses import dataclass
from typing import Optional

from .address import normalize_address, partial_address
from .config import HASH_ALGORITHM, MIN_ADDRESS_HASH_LENGTH
from .errors import MalformedAddress, NoIdentifiableContact
from .normalize import email_domain, normalize_email, normalize_phone


def hash_value(value: str) -> str:
    """Hex digest of a normalized value."""
    return hashlib.new(HASH_ALGORITHM, value.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class ContactHashes:
    """Hashed keys plus the metadata that is safe to store beside them."""

    phone_hash: Optional[str] = None
    phone_last_four: Optional[str] = None
    email_hash: Optional[str] = None
    email_domain: Optional[str] = None
    address_hash: Optional[str] = None
    address_partial: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.phone_hash or self.email_hash or self.address_hash)

    def key_columns(self) -> dict:
        """Non-empty unique key columns in lookup priority order."""
        keys = {}
        if self.phone_hash:
            keys["phone_hash"] = self.phone_hash
        if self.email_hash:
            keys["email_hash"] = self.email_hash
        if self.address_hash:
            keys["address_hash"] = self.address_hash
        return keys

    def column_values(self) -> dict:
        """Every populated column, keys and metadata."""
        return {k: v for k, v in vars(self).items() if v is not None}


def hash_phone(phone: Optional[str]):
    """Return (phone_hash, last_four), or (None, None) when the phone is unusable."""
    normalized = normalize_phone(phone)
    if normalized is None:
        return None, None
    return hash_value(normalized), normalized[-4:]


def hash_email(email: Optional[str]):
    """Return (email_hash, domain), or (None, None) when the email is unusable."""
    normalized = normalize_email(email)
    if normalized is None:
        return None, None
    return hash_value(normalized), email_domain(normalized)


def hash_address(address: Optional[str]):
    """
    Hash the alphanumeric form of a normalized address, unit included.

    Returns:
        (address_hash, address_partial), or (None, None) when the address is
        missing or too short to identify a location
    """
    if not address:
        return None, None
    try:
        compact = normalize_address(address).hash_key
    except MalformedAddress:
        return None, None
    if len(compact) < MIN_ADDRESS_HASH_LENGTH:
        return None, None
    return hash_value(compact), partial_address(address)


def hash_contact(
    phone: Optional[str] = None,
    email: Optional[str] = None,
    address: Optional[str] = None,
) -> ContactHashes:
    """
    Normalize and hash whatever contact details are usable.

    Args:
        phone: Raw phone, any formatting
        email: Raw email
        address: Raw postal address (optional third key)

    Returns:
        ContactHashes with at least one key set

    Raises:
        NoIdentifiableContact: If no value survives normalization
    """
    phone_hash, last_four = hash_phone(phone)
    email_hash, domain = hash_email(email)
    address_hash, partial = hash_address(address)

    hashes = ContactHashes(
        phone_hash=phone_hash,
        phone_last_four=last_four,
        email_hash=email_hash,
        email_domain=domain,
        address_hash=address_hash,
        address_partial=partial,
    )
    if hashes.is_empty:
        raise NoIdentifiableContact("No usable phone, email or address")
    return hashes

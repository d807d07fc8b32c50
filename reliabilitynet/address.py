"""
Address normalization and matching for property data and network linking.

Free-text postal addresses are parsed best-effort into street / unit / city /
state / zip parts with USPS-style abbreviations, so two spellings of the same
location compare equal. A missing street number or city only lowers the
achievable match score; the only hard failure is text with nothing in it.
"""

import re
from dataclasses import dataclass
from typing import Optional

from .config import (
    CHARACTER_OVERLAP_WEIGHT,
    CITY_MATCH_BONUS,
    EXACT_STREET_SCORE,
    SAME_LOCATION_THRESHOLD,
    STREET_NAME_JACCARD_MIN,
    STREET_NAME_WEIGHT,
    STREET_NUMBER_BASE_SCORE,
    ZIP_MATCH_BONUS,
)
from .errors import MalformedAddress

STREET_ABBREVIATIONS = {
    "STREET": "ST",
    "AVENUE": "AVE",
    "BOULEVARD": "BLVD",
    "DRIVE": "DR",
    "LANE": "LN",
    "ROAD": "RD",
    "COURT": "CT",
    "CIRCLE": "CIR",
    "PLACE": "PL",
    "TERRACE": "TER",
    "HIGHWAY": "HWY",
    "PARKWAY": "PKWY",
    "EXPRESSWAY": "EXPY",
    "FREEWAY": "FWY",
    "TRAIL": "TRL",
    "WAY": "WAY",
    "ALLEY": "ALY",
    "CROSSING": "XING",
    "POINT": "PT",
    "SQUARE": "SQ",
    "LOOP": "LOOP",
    "RUN": "RUN",
    "PATH": "PATH",
    "PIKE": "PIKE",
    "RIDGE": "RDG",
    "HOLLOW": "HOLW",
    "HEIGHTS": "HTS",
    "HILL": "HL",
    "HILLS": "HLS",
    "VALLEY": "VLY",
    "VIEW": "VW",
    "VILLAGE": "VLG",
    "ESTATES": "EST",
    "EXTENSION": "EXT",
    "GARDENS": "GDNS",
    "GROVE": "GRV",
    "MANOR": "MNR",
    "MEADOWS": "MDWS",
    "PARK": "PARK",
    "SPRINGS": "SPGS",
    "STATION": "STA",
}

DIRECTION_ABBREVIATIONS = {
    "NORTH": "N",
    "SOUTH": "S",
    "EAST": "E",
    "WEST": "W",
    "NORTHEAST": "NE",
    "NORTHWEST": "NW",
    "SOUTHEAST": "SE",
    "SOUTHWEST": "SW",
}

STATE_ABBREVIATIONS = frozenset({
    "AL", "AK", "AZ", "AR", "CA", "CO", "CT", "DE", "DC", "FL", "GA", "HI",
    "ID", "IL", "IN", "IA", "KS", "KY", "LA", "ME", "MD", "MA", "MI", "MN",
    "MS", "MO", "MT", "NE", "NV", "NH", "NJ", "NM", "NY", "NC", "ND", "OH",
    "OK", "OR", "PA", "RI", "SC", "SD", "TN", "TX", "UT", "VT", "VA", "WA",
    "WV", "WI", "WY",
})

_WORD_REPLACEMENTS = {**STREET_ABBREVIATIONS, **DIRECTION_ABBREVIATIONS}
_WORD_PATTERN = re.compile(
    r"\b(" + "|".join(sorted(_WORD_REPLACEMENTS, key=len, reverse=True)) + r")\b"
)

_UNIT_KEYWORD = r"(?:APT|APARTMENT|UNIT|STE|SUITE|FL|FLOOR|RM|ROOM)(?=[\s.#\d])"
_UNIT_PATTERNS = (
    re.compile(r"\s+" + _UNIT_KEYWORD + r"\s*\.?\s*#?\s*[\w-]+$"),
    re.compile(r"\s*#\s*[\w-]+$"),
)
_UNIT_SEGMENT = re.compile(r"^(?:" + _UNIT_KEYWORD + r"|#)\s*\.?\s*#?\s*[\w-]+$")
_UNIT_PARTS = re.compile(r"^(" + _UNIT_KEYWORD + r"|#)?\s*\.?\s*#?\s*([\w-]+)$")
# "FL 33101" at the end of a line is Florida plus a zip, not a floor
_FLORIDA_ZIP = re.compile(r"^FL\s+\d{5}(?:-\d{4})?$")

UNIT_DESIGNATORS = {
    "APT": "UNIT",
    "APARTMENT": "UNIT",
    "UNIT": "UNIT",
    "#": "UNIT",
    "STE": "STE",
    "SUITE": "STE",
    "FL": "FL",
    "FLOOR": "FL",
    "RM": "RM",
    "ROOM": "RM",
}

_STATE_ZIP = re.compile(r"^([A-Z]{2})\s*(\d{5}(?:-\d{4})?)?$")
_CITY_STATE_ZIP = re.compile(r"^(.+?)\s+([A-Z]{2})\s+(\d{5}(?:-\d{4})?)$")
_STREET_NUMBER = re.compile(r"^(\d+(?:-\d+)?[A-Z]?)\s+(.+)$")
_PUNCTUATION = re.compile(r"[^\w\s-]")
_SPACES = re.compile(r"\s+")
_NON_ALNUM = re.compile(r"[^A-Z0-9]")

_STREET_TYPE_QUERY = re.compile(
    r"\b(" + "|".join(sorted(set(STREET_ABBREVIATIONS) | set(STREET_ABBREVIATIONS.values()),
                             key=len, reverse=True)) + r")\b",
    re.IGNORECASE,
)
_ZIP_QUERY = re.compile(r"\b\d{5}(-\d{4})?\b")
_STATES_ALT = "|".join(sorted(STATE_ABBREVIATIONS))
_STATE_AFTER_COMMA = re.compile(r",\s*(" + _STATES_ALT + r")\s*(\d{5}(-\d{4})?)?$", re.IGNORECASE)
_STATE_UPPER_SUFFIX = re.compile(r"\s(" + _STATES_ALT + r")\s*(\d{5}(-\d{4})?)?$")


@dataclass(frozen=True)
class NormalizedAddress:
    """Structured, comparable form of a free-text address."""

    original: str
    normalized: str
    street: str
    unit: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    street_number: Optional[str] = None
    street_name: Optional[str] = None

    @property
    def compact(self) -> str:
        """Uppercase alphanumerics of the full normalized form."""
        return _NON_ALNUM.sub("", self.normalized)

    @property
    def hash_key(self) -> str:
        """
        Alphanumerics identifying one dwelling: street, canonical unit, city,
        state and zip. Equal to ``compact`` when there is no unit.
        """
        parts = (self.street, canonical_unit(self.unit), self.city, self.state, self.zip)
        return _NON_ALNUM.sub("", "".join(p for p in parts if p))


def _clean(text: str) -> str:
    return _SPACES.sub(" ", _PUNCTUATION.sub(" ", text)).strip()


def _abbreviate(street: str) -> str:
    return _WORD_PATTERN.sub(lambda m: _WORD_REPLACEMENTS[m.group(1)], street)


def _is_unit(text: str) -> bool:
    return not _FLORIDA_ZIP.match(text.strip())


def _extract_unit(street: str):
    unit = None
    for pattern in _UNIT_PATTERNS:
        match = pattern.search(street)
        if match and _is_unit(match.group(0)):
            unit = match.group(0).strip()
            street = street[: match.start()]
    return street.strip(), unit


def canonical_unit(unit: Optional[str]) -> Optional[str]:
    """
    Reduce a unit designator to one spelling, e.g. "Apt. #2b" -> "UNIT 2B".

    APT, APARTMENT, UNIT and a bare "#" all name a dwelling unit and compare
    equal; suite, floor and room keep their own designator.
    """
    if not unit:
        return None
    match = _UNIT_PARTS.match(unit.strip().upper())
    if not match:
        return _clean(unit.upper()) or None
    designator = UNIT_DESIGNATORS.get(match.group(1) or "#", "UNIT")
    return f"{designator} {match.group(2)}"


def normalize_address(address: str) -> NormalizedAddress:
    """
    Normalize an address string for consistent matching.

    Args:
        address: Raw address such as "123 Main Street Apt 4, Springfield, PA 19000"

    Returns:
        NormalizedAddress with whatever parts could be recognised

    Raises:
        MalformedAddress: If the text contains no letters or digits
    """
    if address is None or not _NON_ALNUM.sub("", address.upper()):
        raise MalformedAddress("Address has no usable characters")

    parts = [p.strip() for p in address.upper().split(",")]
    street, unit = _extract_unit(parts[0])

    rest = parts[1:]
    if rest and _UNIT_SEGMENT.match(rest[0]) and _is_unit(rest[0]):
        unit = unit or rest[0]
        rest = rest[1:]

    city: Optional[str] = rest[0] if len(rest) >= 1 and rest[0] else None
    state: Optional[str] = None
    zip_code: Optional[str] = None

    if len(rest) >= 2 and rest[1]:
        state_zip = _STATE_ZIP.match(rest[1])
        if state_zip:
            state = state_zip.group(1)
            zip_code = state_zip.group(2)
        else:
            state = rest[1]

    if city:
        city_zip = _CITY_STATE_ZIP.match(city)
        if city_zip:
            city, state, zip_code = city_zip.group(1), city_zip.group(2), city_zip.group(3)
        city = _clean(city) or None

    street = _abbreviate(_clean(street))

    number_match = _STREET_NUMBER.match(street)
    street_number = number_match.group(1) if number_match else None
    street_name = number_match.group(2) if number_match else (street or None)

    normalized_parts = [street] if street else []
    if city:
        normalized_parts.append(city)
    if state:
        normalized_parts.append(f"{state} {zip_code}" if zip_code else state)

    return NormalizedAddress(
        original=address,
        normalized=", ".join(normalized_parts),
        street=street,
        unit=unit,
        city=city,
        state=state,
        zip=zip_code,
        street_number=street_number,
        street_name=street_name,
    )


def searchable_street(address: str) -> str:
    """Street portion only, for partial matching."""
    return normalize_address(address).street


def _jaccard(left: set, right: set) -> float:
    union = left | right
    if not union:
        return 0.0
    return len(left & right) / len(union)


def address_similarity(addr1: str, addr2: str) -> float:
    """
    Calculate similarity score between two addresses (0-1).

    Rules are tried in order and the first that applies wins:
    identical normalized street, same street number with overlapping street
    name words, then character overlap of the whole normalized address.
    Unparseable input scores 0.
    """
    try:
        n1 = normalize_address(addr1)
        n2 = normalize_address(addr2)
    except MalformedAddress:
        return 0.0

    if n1.street and n1.street == n2.street:
        score = EXACT_STREET_SCORE
        if n1.city and n2.city and n1.city == n2.city:
            score += CITY_MATCH_BONUS
        if n1.zip and n2.zip and n1.zip == n2.zip:
            score += ZIP_MATCH_BONUS
        return min(round(score, 6), 1.0)

    if n1.street_number and n1.street_number == n2.street_number:
        if n1.street_name and n2.street_name:
            words = _jaccard(set(n1.street_name.split()), set(n2.street_name.split()))
            if words >= STREET_NAME_JACCARD_MIN:
                return STREET_NUMBER_BASE_SCORE + words * STREET_NAME_WEIGHT

    return _jaccard(set(n1.compact), set(n2.compact)) * CHARACTER_OVERLAP_WEIGHT


def same_location(addr1: str, addr2: str) -> bool:
    """True when two addresses should be treated as one location in bulk linking."""
    if not addr1 or not addr2:
        return False
    if addr1.strip().lower() == addr2.strip().lower():
        return True
    return address_similarity(addr1, addr2) > SAME_LOCATION_THRESHOLD


def looks_like_address(query: str) -> bool:
    """
    Check if a query string looks like an address (vs a name or phone).
    """
    trimmed = query.strip()
    if not trimmed:
        return False

    if trimmed[0].isdigit():
        return True

    if _STREET_TYPE_QUERY.search(trimmed):
        return True

    if _ZIP_QUERY.search(trimmed):
        return True

    if _STATE_AFTER_COMMA.search(trimmed) or _STATE_UPPER_SUFFIX.search(trimmed):
        return True

    return False


def partial_address(address: str) -> Optional[str]:
    """Street name and city without the house number, safe to show across businesses."""
    try:
        normalized = normalize_address(address)
    except MalformedAddress:
        return None
    parts = [p for p in (normalized.street_name, normalized.city) if p]
    return ", ".join(parts) or None


def format_address_for_display(
    address_full: Optional[str] = None,
    street: Optional[str] = None,
    city: Optional[str] = None,
    state: Optional[str] = None,
    zip_code: Optional[str] = None,
) -> str:
    """Title-case a stored address, keeping short abbreviations upper case."""
    if address_full:
        return " ".join(
            word if len(word) <= 2 else word[0] + word[1:].lower()
            for word in address_full.split(" ")
        )

    parts = [p for p in (street, city) if p]
    if state:
        parts.append(f"{state} {zip_code}" if zip_code else state)
    return ", ".join(parts)

"""
Owner-name parsing for property records.

Property rolls write names as "SMITH, JOHN E", "SMITH JOHN & JANE" or
"ACME HOLDINGS LLC". Bulk jobs only build identities for individuals, so the
business-entity check is the part everything else depends on.
"""

import re
from dataclasses import dataclass
from typing import Optional

NAME_SUFFIXES = ("JR", "SR", "II", "III", "IV", "V", "ESQ", "MD", "PHD", "DDS")

BUSINESS_INDICATORS = (
    "LLC", "L.L.C.", "INC", "INCORPORATED", "CORP", "CORPORATION", "LP", "L.P.",
    "LLP", "L.L.P.", "TRUST", "ESTATE", "PARTNERSHIP", "ASSOCIATES", "HOLDINGS",
    "PROPERTIES", "INVESTMENTS", "VENTURES", "ENTERPRISES", "COMPANY", "CO",
    "GROUP", "FUND", "FOUNDATION", "ASSOCIATION", "BANK", "SAVINGS",
    "CREDIT UNION", "MORTGAGE", "REALTY", "REAL ESTATE", "DEVELOPMENT",
    "BUILDERS", "CONSTRUCTION", "MANAGEMENT", "SERVICES",
)

# Dotted forms end in "." so a trailing \b would never match after them.
_BUSINESS_PATTERN = re.compile(
    r"(?<![A-Z0-9])(" + "|".join(re.escape(i) for i in BUSINESS_INDICATORS) + r")(?![A-Z0-9])",
    re.IGNORECASE,
)
_SUFFIX_PATTERNS = tuple((s, re.compile(rf"\b{s}\b\.?")) for s in NAME_SUFFIXES)
_STREET_WORDS = re.compile(r"\b(ST|AVE|BLVD|DR|LN|RD|CT|STREET|AVENUE)\b", re.IGNORECASE)
_NAME_WORD = re.compile(r"^[A-Za-z.,'-]+$")


@dataclass(frozen=True)
class ParsedName:
    original: str
    normalized: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    middle_initial: Optional[str] = None
    suffix: Optional[str] = None
    is_business_entity: bool = False
    secondary_name: Optional[str] = None


def is_business_entity(name: str) -> bool:
    """Check if a name appears to be a business entity rather than an individual."""
    if not name:
        return False
    return _BUSINESS_PATTERN.search(name.upper()) is not None


def _initial(word: str) -> Optional[str]:
    if len(word) == 1 or (len(word) == 2 and word.endswith(".")):
        return word.replace(".", "")
    return None


def _parse_simple(name: str) -> dict:
    working = name.upper().strip()

    suffix = None
    for candidate, pattern in _SUFFIX_PATTERNS:
        if pattern.search(working):
            suffix = candidate
            working = pattern.sub("", working).strip()

    first_name = last_name = middle_initial = None

    if "," in working:
        last_part, _, first_part = working.partition(",")
        last_part = " ".join(last_part.replace(".", " ").split())
        first_words = first_part.replace(".", " ").split()
        last_name = last_part or None
        if first_words:
            first_name = first_words[0]
            if len(first_words) > 1:
                middle_initial = _initial(first_words[1])
    else:
        words = working.replace(".", " ").split()
        # Property rolls use "LAST FIRST MIDDLE" when there is no comma
        if len(words) == 1:
            last_name = words[0]
        elif len(words) >= 2:
            last_name, first_name = words[0], words[1]
            if len(words) >= 3:
                middle_initial = _initial(words[2])

    normalized = " ".join(p for p in (first_name, last_name, suffix) if p)
    return {
        "normalized": normalized,
        "first_name": first_name,
        "last_name": last_name,
        "middle_initial": middle_initial,
        "suffix": suffix,
    }


def parse_name(name: str) -> ParsedName:
    """
    Parse and normalize a name from property-record format.

    Handles "SMITH, JOHN", "SMITH JOHN", "SMITH, JOHN E", "SMITH JR, JOHN"
    and "SMITH JOHN & JANE" (secondary owner shares the last name).
    """
    upper = name.upper().strip()

    if is_business_entity(upper):
        return ParsedName(original=name, normalized=upper, is_business_entity=True)

    secondary = None
    primary, amp, second_part = upper.partition("&")
    if amp:
        upper = primary.strip()
        second_part = second_part.strip()
        if second_part and "," not in second_part and " " not in second_part:
            main_last = _parse_simple(upper)["last_name"]
            secondary = f"{second_part} {main_last}" if main_last else second_part
        else:
            secondary = second_part or None

    parsed = _parse_simple(upper)
    return ParsedName(original=name, secondary_name=secondary, **parsed)


def name_similarity(name1: str, name2: str) -> float:
    """Score two owner names 0-1: last name counts most, then first name, then suffix."""
    p1 = parse_name(name1)
    p2 = parse_name(name2)

    if p1.is_business_entity != p2.is_business_entity:
        return 0.0
    if p1.is_business_entity:
        return 1.0 if p1.normalized == p2.normalized else 0.0

    score = 0.0
    if p1.last_name and p2.last_name:
        if p1.last_name == p2.last_name:
            score += 0.5
        elif p1.last_name.startswith(p2.last_name) or p2.last_name.startswith(p1.last_name):
            score += 0.3

    if p1.first_name and p2.first_name:
        if p1.first_name == p2.first_name:
            score += 0.4
        elif p1.first_name.startswith(p2.first_name) or p2.first_name.startswith(p1.first_name):
            score += 0.2
        elif p1.first_name[0] == p2.first_name[0]:
            score += 0.1

    if p1.suffix and p1.suffix == p2.suffix:
        score += 0.1

    return min(round(score, 6), 1.0)


def looks_like_name(query: str) -> bool:
    """Check if a query string looks like a person's name (vs address, phone or email)."""
    trimmed = query.strip()
    if not trimmed or trimmed[0].isdigit() or "@" in trimmed:
        return False
    if re.fullmatch(r"[\d\s\-().+]+", trimmed):
        return False
    if _STREET_WORDS.search(trimmed):
        return False
    if re.search(r"\b\d{5}(-\d{4})?\b", trimmed):
        return False

    words = trimmed.split()
    return 1 <= len(words) <= 4 and all(_NAME_WORD.match(w) for w in words)


def format_name_for_display(name: Optional[str]) -> str:
    if not name:
        return "Unknown"
    return " ".join(
        word.upper() if word.upper() in NAME_SUFFIXES else word[:1].upper() + word[1:].lower()
        for word in name.split(" ")
    )

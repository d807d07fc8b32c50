from typing import Any, Dict, List

from .config import MAX_SEVERITY, MIN_SEVERITY

OPTIONAL_CUSTOMER_FIELDS = ["phone", "email", "address", "city", "state", "county"]
OPTIONAL_EVENT_FIELDS = ["note_type", "note_text"]
OPTIONAL_PROPERTY_FIELDS = [
    "owner_name",
    "owner_name_secondary",
    "address_full",
    "property_class",
    "municipality",
    "county",
]


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def _check_optional_strings(data: Dict[str, Any], fields: List[str], errors: List[str]) -> None:
    for f in fields:
        if data.get(f) is not None and not isinstance(data[f], str):
            errors.append(f"Field '{f}' must be a string if provided")


def validate_customer(data: Dict[str, Any]) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.
    Contact fields are optional; a customer without any is scored but never synced.
    """
    errors: List[str] = []
    if "full_name" not in data:
        errors.append("Missing required field: full_name")
    elif not _is_non_empty_str(data["full_name"]):
        errors.append("Field 'full_name' must be a non-empty string")
    _check_optional_strings(data, OPTIONAL_CUSTOMER_FIELDS, errors)
    return errors


def validate_event(data: Dict[str, Any]) -> List[str]:
    errors: List[str] = []
    severity = data.get("severity")
    if "severity" not in data:
        errors.append("Missing required field: severity")
    elif isinstance(severity, bool) or not isinstance(severity, int):
        errors.append("Field 'severity' must be an integer")
    elif not MIN_SEVERITY <= severity <= MAX_SEVERITY:
        errors.append(f"Field 'severity' must be between {MIN_SEVERITY} and {MAX_SEVERITY}")
    _check_optional_strings(data, OPTIONAL_EVENT_FIELDS, errors)
    return errors


def validate_property(data: Dict[str, Any]) -> List[str]:
    errors: List[str] = []
    if not _is_non_empty_str(data.get("id")):
        errors.append("Field 'id' must be a non-empty string")
    _check_optional_strings(data, OPTIONAL_PROPERTY_FIELDS, errors)
    return errors

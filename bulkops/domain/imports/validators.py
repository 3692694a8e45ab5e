"""
Per-entity validation rules for bulk mutations and imports.

Each rule set inspects one canonical record and returns a ``ValidationResult``
with a human-readable error list; records are never mutated. Once a record
passes, ``build_validated_row`` turns it into the typed row for its entity so
numeric strings from CSV files are stored as numbers.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict

from bulkops.domain.bulk.models import EntityType
from bulkops.utils.serialization import is_absent


# Preset regex patterns for the formats the rule sets check
PRESET_PATTERNS = {
    "email": r"^[^\s@]+@[^\s@]+\.[^\s@]+$",
    "phone": r"^\+?[\d\s\-\.\(\)]+$",  # Digit count is enforced separately
}

PRESET_DESCRIPTIONS = {
    "email": "Email address (local@domain)",
    "phone": "Phone number (10+ digits, optional separators and leading +)",
}

PHONE_MIN_DIGITS = 10


def get_preset_pattern(preset_name: str) -> Optional[str]:
    return PRESET_PATTERNS.get(preset_name)


def validate_with_preset(
    value: Any,
    preset_name: str,
    allow_null: bool = True
) -> Tuple[bool, Optional[str]]:
    """
    Validate a value against a preset pattern.

    Args:
        value: Value to validate
        preset_name: Name of the preset validator
        allow_null: Whether to allow null/empty values

    Returns:
        Tuple of (is_valid, error_message)
    """
    if _is_blank(value):
        if allow_null:
            return True, None
        return False, "Value is required"

    pattern = get_preset_pattern(preset_name)
    if pattern is None:
        return False, f"Unknown preset validator: {preset_name}"

    str_val = str(value).strip()
    if not re.match(pattern, str_val):
        description = PRESET_DESCRIPTIONS.get(preset_name)
        return False, f"Value '{str_val}' does not match {description or preset_name} format"

    if preset_name == "phone" and sum(ch.isdigit() for ch in str_val) < PHONE_MIN_DIGITS:
        return False, f"Value '{str_val}' has fewer than {PHONE_MIN_DIGITS} digits"

    return True, None


def matches_preset(value: Any, preset_name: str) -> bool:
    """True when ``value`` is blank or fits the preset; rule sets report their own message."""
    is_valid, _ = validate_with_preset(value, preset_name)
    return is_valid


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)


def _is_blank(value: Any) -> bool:
    if is_absent(value):
        return True
    return isinstance(value, str) and not value.strip()


def _as_number(value: Any) -> Optional[Union[int, float]]:
    """Parse a numeric cell; ints stay ints. Returns None when not numeric."""
    if isinstance(value, bool) or _is_blank(value):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _as_integer(value: Any) -> Optional[int]:
    number = _as_number(value)
    if number is None:
        return None
    if isinstance(number, float):
        return int(number) if number.is_integer() else None
    return number


def validate_customer_record(record: Dict[str, Any], partial: bool = False) -> ValidationResult:
    errors: List[str] = []

    email = record.get("email")
    if _is_blank(email):
        if not partial:
            errors.append("Email is required")
    elif not matches_preset(email, "email"):
        errors.append("Invalid email format")

    if _is_blank(record.get("name")) and not partial:
        errors.append("Name is required")

    phone = record.get("phone")
    if not _is_blank(phone) and not matches_preset(phone, "phone"):
        errors.append("Invalid phone format")

    return ValidationResult(is_valid=not errors, errors=errors)


def validate_service_record(record: Dict[str, Any], partial: bool = False) -> ValidationResult:
    errors: List[str] = []

    if _is_blank(record.get("name")) and not partial:
        errors.append("Service name is required")

    price = record.get("price")
    if _is_blank(price):
        if not partial:
            errors.append("Valid price is required")
    elif _as_number(price) is None:
        errors.append("Valid price is required")

    duration = record.get("duration")
    if _is_blank(duration):
        if not partial:
            errors.append("Valid duration is required")
    elif _as_integer(duration) is None:
        errors.append("Valid duration is required")

    return ValidationResult(is_valid=not errors, errors=errors)


def validate_equipment_record(record: Dict[str, Any], partial: bool = False) -> ValidationResult:
    errors: List[str] = []

    if _is_blank(record.get("name")) and not partial:
        errors.append("Equipment name is required")
    if _is_blank(record.get("type")) and not partial:
        errors.append("Equipment type is required")

    quantity = record.get("quantity")
    if not _is_blank(quantity) and _as_number(quantity) is None:
        errors.append("Valid quantity is required")

    return ValidationResult(is_valid=not errors, errors=errors)


RULE_SETS: Dict[EntityType, Callable[..., ValidationResult]] = {
    EntityType.CUSTOMERS: validate_customer_record,
    EntityType.SERVICES: validate_service_record,
    EntityType.EQUIPMENT: validate_equipment_record,
}


def validate_record(entity_type: EntityType, record: Dict[str, Any], partial: bool = False) -> ValidationResult:
    """Run the rule set for ``entity_type``; entities without rules always pass."""
    rules = RULE_SETS.get(entity_type)
    if rules is None:
        return ValidationResult(is_valid=True)
    return rules(record, partial=partial)


class ValidatedRow(BaseModel):
    """A record that passed validation; unknown fields are carried through."""
    model_config = ConfigDict(extra="allow")


class ValidatedCustomerRow(ValidatedRow):
    email: str
    name: str
    phone: Optional[str] = None


class ValidatedServiceRow(ValidatedRow):
    name: str
    price: Union[int, float]
    duration: int


class ValidatedEquipmentRow(ValidatedRow):
    name: str
    type: str
    quantity: Optional[Union[int, float]] = None


def _coerce_text(value: Any) -> str:
    return str(value).strip()


# field -> converter, applied only to fields present on the record
_FIELD_COERCIONS: Dict[EntityType, Dict[str, Callable[[Any], Any]]] = {
    EntityType.CUSTOMERS: {"email": _coerce_text, "name": _coerce_text, "phone": _coerce_text},
    EntityType.SERVICES: {"name": _coerce_text, "price": _as_number, "duration": _as_integer},
    EntityType.EQUIPMENT: {"name": _coerce_text, "type": _coerce_text, "quantity": _as_number},
}

_ROW_MODELS = {
    EntityType.CUSTOMERS: ValidatedCustomerRow,
    EntityType.SERVICES: ValidatedServiceRow,
    EntityType.EQUIPMENT: ValidatedEquipmentRow,
}


def coerce_fields(entity_type: EntityType, record: Dict[str, Any]) -> Dict[str, Any]:
    """Convert the typed fields present on ``record``; other fields are untouched."""
    coerced = dict(record)
    for field_name, convert in _FIELD_COERCIONS.get(entity_type, {}).items():
        if field_name in coerced and not _is_blank(coerced[field_name]):
            coerced[field_name] = convert(coerced[field_name])
    return coerced


def build_validated_row(entity_type: EntityType, record: Dict[str, Any]) -> ValidatedRow:
    """Construct the typed row for a record that already passed ``validate_record``."""
    model = _ROW_MODELS.get(entity_type, ValidatedRow)
    return model.model_validate(coerce_fields(entity_type, record))

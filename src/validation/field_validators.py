"""
Field Validators - reusable checks for form fields

Provides synchronous validation functions for:
- Required values
- CNPJ and CEP digit counts
- E-mail and phone format
- Numeric entries (pt-BR decimal comma accepted)
- Minimum length (passwords)
- Catalog choices
- Entry/exit ordering

Every validator returns ``(is_valid, error_message)``. Messages are the
user-facing Portuguese strings shown inline next to the field.
"""

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional, Tuple

import logging

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

ValidationOutcome = Tuple[bool, Optional[str]]


def _blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _digits(value: Any) -> str:
    return re.sub(r"[^0-9]", "", "" if value is None else str(value))


# =============================================================================
# Presence
# =============================================================================

def validate_required(
    value: Any,
    label: str,
    message: Optional[str] = None,
    zero_is_empty: bool = False,
) -> ValidationOutcome:
    """
    Validate that a value was filled in.

    Args:
        value: Canonical field value
        label: Field label for the default message
        message: Custom message (gender agreement varies per label)
        zero_is_empty: Treat ``0`` as "nothing selected" (id selectors)

    Examples:
        >>> validate_required("ACME", "Nome")
        (True, None)
        >>> validate_required("  ", "Nome")
        (False, 'Nome é obrigatório')
        >>> validate_required(0, "Cliente", zero_is_empty=True)
        (False, 'Cliente é obrigatório')
    """
    missing = _blank(value) or (zero_is_empty and str(value).strip() in ("0", "0.0"))
    if missing:
        return False, message or f"{label} é obrigatório"
    return True, None


# =============================================================================
# Brazilian identifiers
# =============================================================================

def validate_tax_id(value: Any) -> ValidationOutcome:
    """
    Validate a CNPJ digit count (14 digits, formatting ignored).

    Only the length is checked; check digits are not verified.
    """
    if len(_digits(value)) != 14:
        return False, "CNPJ inválido"
    return True, None


def validate_postal_code(value: Any, length: int = 8) -> ValidationOutcome:
    """Validate a CEP digit count."""
    if len(_digits(value)) != length:
        return False, "CEP inválido"
    return True, None


# =============================================================================
# Contact data
# =============================================================================

def validate_email(value: Any) -> ValidationOutcome:
    """
    Validate e-mail format.

    Examples:
        >>> validate_email("ana@empresa.com.br")
        (True, None)
        >>> validate_email("ana@empresa")
        (False, 'E-mail inválido')
    """
    if not EMAIL_PATTERN.match(str(value or "").strip()):
        return False, "E-mail inválido"
    return True, None


def validate_phone(value: Any) -> ValidationOutcome:
    """Validate a Brazilian phone: area code plus 8 or 9 digits."""
    if len(_digits(value)) not in (10, 11):
        return False, "Telefone inválido"
    return True, None


def validate_min_length(value: Any, minimum: int, label: str) -> ValidationOutcome:
    if len(str(value or "")) < minimum:
        return False, f"{label} deve ter pelo menos {minimum} caracteres"
    return True, None


def parse_number(value: Any) -> Optional[Decimal]:
    """
    Read a typed number, accepting the pt-BR decimal comma.

    Examples:
        >>> parse_number("100,5")
        Decimal('100.5')
        >>> parse_number("cem") is None
        True
    """
    if isinstance(value, bool) or _blank(value):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    try:
        number = Decimal(str(value).strip().replace(",", "."))
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


def validate_number(value: Any, label: str, allow_negative: bool = False) -> ValidationOutcome:
    """Validate a numeric entry such as an odometer reading."""
    number = parse_number(value)
    if number is None:
        return False, f"{label} deve ser um número"
    if number < 0 and not allow_negative:
        return False, f"{label} não pode ser negativo"
    return True, None


def validate_choice(value: Any, options: Iterable[Any], label: str) -> ValidationOutcome:
    """Validate that a value is one of a catalog's options."""
    if value not in tuple(options):
        return False, f"Opção inválida para {label}: {value}"
    return True, None


# =============================================================================
# Cross-field
# =============================================================================

def validate_ordering(
    entry: Optional[datetime],
    exit_: Optional[datetime],
    message: str = "A data/hora de saída deve ser posterior à entrada",
) -> ValidationOutcome:
    """
    Validate that an exit timestamp is not before its entry.

    Missing endpoints are not an ordering problem; presence is checked
    separately by :func:`validate_required`.
    """
    if entry is None or exit_ is None:
        return True, None
    if entry > exit_:
        return False, message
    return True, None

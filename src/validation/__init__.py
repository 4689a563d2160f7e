"""Field validation module."""

from .field_validators import (
    ValidationOutcome,
    parse_number,
    validate_choice,
    validate_email,
    validate_min_length,
    validate_number,
    validate_phone,
    validate_ordering,
    validate_postal_code,
    validate_required,
    validate_tax_id,
)

__all__ = [
    'ValidationOutcome',
    'validate_required',
    'validate_tax_id',
    'validate_postal_code',
    'validate_email',
    'parse_number',
    'validate_number',
    'validate_phone',
    'validate_min_length',
    'validate_choice',
    'validate_ordering',
]

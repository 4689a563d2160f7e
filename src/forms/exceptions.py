"""Exceptions raised by the form engine."""

from __future__ import annotations

from typing import Optional


class FormEngineError(Exception):
    """Base class for form engine errors."""


class ConfigurationError(FormEngineError):
    """
    Raised when a form definition is invalid.

    These are programmer errors (a rule chain, an unknown mask kind, a step
    naming an undeclared field) and surface when the definition or engine
    is constructed, never while the user is typing.
    """


class UnknownFieldError(FormEngineError, KeyError):
    """Raised when a field name is not declared by the form."""

    def __init__(self, field_name: str, form_name: Optional[str] = None):
        self.field_name = field_name
        self.form_name = form_name
        where = f" in form '{form_name}'" if form_name else ""
        super().__init__(f"Unknown field '{field_name}'{where}")

    def __str__(self) -> str:
        return self.args[0]


class LookupNotFound(FormEngineError):
    """Raised by a lookup service when the key has no match."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"No match for lookup key '{key}'")

"""Mask codec.

Bidirectional formatting for structured text fields. Each mask kind has a
:class:`MaskSpec` made of two pure functions: ``parse`` turns whatever the
user typed into the canonical value stored in form state, ``format`` turns a
canonical value back into the display string. Display strings are derived on
every render and are never stored.

Digit masks (tax id, postal code, phone) never reject a keystroke: non-digits
are dropped and overlong input is truncated, leaving it to validation to
complain about incomplete values. Duration is the exception: an edit that is
not a syntactically valid (partial) duration is refused outright.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from .exceptions import ConfigurationError

TAX_ID_DIGITS = 14
POSTAL_CODE_DIGITS = 8
PHONE_DIGITS = 11

_NON_DIGITS = re.compile(r"\D")
_DURATION_PATTERN = re.compile(r"^([0-9]{1,2}):([0-9]{1,2})(?::([0-9]{1,2}))?$")


class MaskKind(str, Enum):
    """Masked field kinds."""
    TAX_ID = "tax_id"            # CNPJ: XX.XXX.XXX/XXXX-XX
    POSTAL_CODE = "postal_code"  # CEP: XXXXX-XXX
    CURRENCY = "currency"        # pt-BR money, typed as cents
    DURATION = "duration"        # H:M[:S], parse-only
    PHONE = "phone"              # (XX) XXXXX-XXXX / (XX) XXXX-XXXX


@dataclass(frozen=True)
class MaskResult:
    """Outcome of running one keystroke through a mask."""
    display: str
    canonical: Any
    accepted: bool = True


class MaskRejected(ValueError):
    """Raised by a parse function when the input must not be applied."""


@dataclass(frozen=True)
class MaskSpec:
    """Pure format/parse pair for one mask kind."""
    kind: MaskKind
    parse: Callable[[str], Any]
    format: Callable[[Any], str]


def only_digits(value: Any) -> str:
    """Strip every non-digit character."""
    if value is None:
        return ""
    return _NON_DIGITS.sub("", str(value))


def _group_digits(digits: str, groups: Sequence[int], separators: Sequence[str]) -> str:
    """
    Insert separators between digit groups, rendering only what was typed.

    ``separators[i]`` goes between group ``i`` and group ``i + 1`` and is only
    emitted once at least one digit of group ``i + 1`` exists.
    """
    parts = []
    start = 0
    for index, size in enumerate(groups):
        chunk = digits[start:start + size]
        if not chunk:
            break
        if index > 0:
            parts.append(separators[index - 1])
        parts.append(chunk)
        start += size
    return "".join(parts)


# =============================================================================
# Tax id (CNPJ)
# =============================================================================

def parse_tax_id(raw: str) -> str:
    return only_digits(raw)[:TAX_ID_DIGITS]


def format_tax_id(canonical: Any) -> str:
    digits = only_digits(canonical)[:TAX_ID_DIGITS]
    return _group_digits(digits, (2, 3, 3, 4, 2), (".", ".", "/", "-"))


# =============================================================================
# Postal code (CEP)
# =============================================================================

def parse_postal_code(raw: str) -> str:
    return only_digits(raw)[:POSTAL_CODE_DIGITS]


def format_postal_code(canonical: Any) -> str:
    digits = only_digits(canonical)[:POSTAL_CODE_DIGITS]
    return _group_digits(digits, (5, 3), ("-",))


# =============================================================================
# Phone
# =============================================================================

def parse_phone(raw: str) -> str:
    return only_digits(raw)[:PHONE_DIGITS]


def format_phone(canonical: Any) -> str:
    digits = only_digits(canonical)[:PHONE_DIGITS]
    if len(digits) <= 2:
        return digits
    area, number = digits[:2], digits[2:]
    # mobile numbers carry an extra leading 9 after the area code
    head = 5 if len(digits) > 10 else 4
    if len(number) > head:
        return f"({area}) {number[:head]}-{number[head:]}"
    return f"({area}) {number}"


# =============================================================================
# Currency
# =============================================================================

def format_money(value: Decimal) -> str:
    """Render a Decimal with pt-BR separators: ``1.500,75``."""
    quantized = value.quantize(Decimal("0.01"))
    sign = "-" if quantized < 0 else ""
    integer, _, cents = f"{abs(quantized):.2f}".partition(".")
    grouped = f"{int(integer):,}".replace(",", ".")
    return f"{sign}{grouped},{cents}"


def parse_currency(raw: str) -> Optional[Decimal]:
    """
    Read the accumulated keystrokes as a number of cents.

    The full digit string is re-parsed on every keystroke, so any prefix the
    user has typed is always a valid amount.
    """
    digits = only_digits(raw)
    if not digits:
        return None
    return Decimal(int(digits)) / Decimal(100)


def format_currency(canonical: Any) -> str:
    if canonical is None or canonical == "":
        return ""
    try:
        amount = canonical if isinstance(canonical, Decimal) else Decimal(str(canonical))
    except InvalidOperation:
        return ""
    return format_money(amount)


# =============================================================================
# Duration
# =============================================================================

def parse_duration(raw: str) -> Optional[str]:
    value = (raw or "").strip()
    if not value:
        return None
    if not _DURATION_PATTERN.match(value):
        raise MaskRejected(f"Not a duration: {raw!r}")
    return value


def format_duration(canonical: Any) -> str:
    return "" if canonical is None else str(canonical)


def split_duration(value: Any) -> Optional[Tuple[int, int, int]]:
    """Return ``(hours, minutes, seconds)`` for a duration string, if valid."""
    if not isinstance(value, str):
        return None
    match = _DURATION_PATTERN.match(value.strip())
    if not match:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours), int(minutes), int(seconds or 0)


DEFAULT_MASKS: Dict[MaskKind, MaskSpec] = {
    MaskKind.TAX_ID: MaskSpec(MaskKind.TAX_ID, parse_tax_id, format_tax_id),
    MaskKind.POSTAL_CODE: MaskSpec(MaskKind.POSTAL_CODE, parse_postal_code, format_postal_code),
    MaskKind.CURRENCY: MaskSpec(MaskKind.CURRENCY, parse_currency, format_currency),
    MaskKind.DURATION: MaskSpec(MaskKind.DURATION, parse_duration, format_duration),
    MaskKind.PHONE: MaskSpec(MaskKind.PHONE, parse_phone, format_phone),
}


class MaskCodec:
    """Dispatches format/parse calls to the spec registered for a mask kind."""

    def __init__(self, specs: Optional[Dict[MaskKind, MaskSpec]] = None):
        self._specs: Dict[MaskKind, MaskSpec] = dict(DEFAULT_MASKS if specs is None else specs)

    def spec_for(self, kind: Any) -> MaskSpec:
        try:
            return self._specs[MaskKind(kind)]
        except (KeyError, ValueError):
            raise ConfigurationError(f"Unknown mask kind: {kind!r}") from None

    def supports(self, kind: Any) -> bool:
        try:
            self.spec_for(kind)
        except ConfigurationError:
            return False
        return True

    def apply(self, kind: Any, raw_input: Any) -> MaskResult:
        """
        Run one raw input through the mask.

        Returns:
            MaskResult with the display string and canonical value, or with
            ``accepted=False`` when the mask refuses the edit.
        """
        spec = self.spec_for(kind)
        try:
            canonical = spec.parse("" if raw_input is None else str(raw_input))
        except MaskRejected:
            return MaskResult(display=str(raw_input), canonical=None, accepted=False)
        return MaskResult(display=spec.format(canonical), canonical=canonical)

    def format(self, kind: Any, canonical: Any) -> str:
        """Render a stored canonical value for display."""
        return self.spec_for(kind).format(canonical)


_default_codec: Optional[MaskCodec] = None


def get_mask_codec() -> MaskCodec:
    """Get the shared, read-only default codec."""
    global _default_codec
    if _default_codec is None:
        _default_codec = MaskCodec()
    return _default_codec

"""Form state snapshots.

A :class:`FormState` is an immutable mapping of declared field names to
canonical values. The engine never mutates a snapshot; every change or
merge produces a new one, so rule evaluation and derived recomputation
always read a consistent picture of the form.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Iterator, Mapping, Optional, Union

from .exceptions import UnknownFieldError

FieldValue = Union[str, int, float, Decimal, bool, None]
FieldErrors = Dict[str, str]


def field_key(field_name: Union[str, Enum]) -> str:
    """Normalize a field-name enum member (or plain string) to its string key."""
    if isinstance(field_name, Enum):
        return str(field_name.value)
    return field_name


def is_empty(value: Any) -> bool:
    """Treat ``None`` and blank strings as "not filled in"."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


class FormState(Mapping[str, FieldValue]):
    """Immutable snapshot of every declared field's canonical value."""

    __slots__ = ("_fields", "_values", "_form_name")

    def __init__(
        self,
        fields: Iterable[Union[str, Enum]],
        values: Optional[Mapping[Any, FieldValue]] = None,
        form_name: Optional[str] = None,
    ):
        self._form_name = form_name
        self._fields: FrozenSet[str] = frozenset(field_key(f) for f in fields)

        data: Dict[str, FieldValue] = {name: None for name in self._fields}
        for name, value in (values or {}).items():
            data[self._check(name)] = value
        self._values = MappingProxyType(data)

    def _check(self, field_name: Union[str, Enum]) -> str:
        key = field_key(field_name)
        if key not in self._fields:
            raise UnknownFieldError(key, self._form_name)
        return key

    def __getitem__(self, field_name: Union[str, Enum]) -> FieldValue:
        return self._values[self._check(field_name)]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        filled = {k: v for k, v in self._values.items() if v is not None}
        return f"FormState({self._form_name or ''}{filled!r})"

    @property
    def fields(self) -> FrozenSet[str]:
        return self._fields

    @property
    def form_name(self) -> Optional[str]:
        return self._form_name

    def declares(self, field_name: Union[str, Enum]) -> bool:
        return field_key(field_name) in self._fields

    def is_empty(self, field_name: Union[str, Enum]) -> bool:
        return is_empty(self[field_name])

    def with_values(self, changes: Mapping[Any, FieldValue]) -> "FormState":
        """Return a new snapshot with ``changes`` applied."""
        if not changes:
            return self
        data = dict(self._values)
        for name, value in changes.items():
            data[self._check(name)] = value
        return FormState(self._fields, data, self._form_name)

    def with_value(self, field_name: Union[str, Enum], value: FieldValue) -> "FormState":
        return self.with_values({field_name: value})

    def as_dict(self) -> Dict[str, FieldValue]:
        return dict(self._values)

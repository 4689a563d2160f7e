"""
Derived Field Calculator.

Recomputes fields whose values come from other fields:

- IntervalDuration: elapsed time between an entry and an exit timestamp,
  rendered ``HH:MM:00``. A misordered pair freezes the last good duration
  and flags the exit field instead of computing.
- DistanceTotal: odometer difference, recomputed on every change with no
  validation gate (negative totals are shown as they are).
- TravelCost: distance times a per-km rate plus toll.

Derivations only run when one of their inputs changed, so a manual edit to a
derived field (the duration) is kept until an input changes again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from validation.field_validators import parse_number

from .exceptions import ConfigurationError
from .state import FieldValue, FormState, field_key, is_empty

logger = logging.getLogger(__name__)

ORDERING_MESSAGE = "A data/hora de saída deve ser posterior à entrada"


@dataclass
class DerivedUpdate:
    """Changes one derivation wants applied."""
    values: Dict[str, FieldValue] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    resolved: Set[str] = field(default_factory=set)


@dataclass(frozen=True)
class DerivedOutcome:
    """Result of a recompute pass."""
    state: FormState
    errors: Dict[str, str]
    resolved: FrozenSet[str]
    recomputed: FrozenSet[str]


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Read a datetime or an ISO ``YYYY-MM-DDTHH:MM`` string.

    Timestamps are compared as wall-clock times; a UTC offset is dropped.
    """
    if isinstance(value, datetime):
        parsed = value
    elif is_empty(value):
        return None
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip())
        except ValueError:
            return None
    return parsed.replace(tzinfo=None)


def to_decimal(value: Any) -> Optional[Decimal]:
    return parse_number(value)


def format_elapsed(entry: datetime, exit_: datetime) -> str:
    """Whole minutes between two timestamps as ``HH:MM:00``."""
    minutes = int((exit_ - entry).total_seconds() // 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours:02d}:{minutes:02d}:00"


class Derivation:
    """Base class: a computation from ``inputs`` into ``outputs``."""

    name: str = "derivation"

    @property
    def inputs(self) -> FrozenSet[str]:
        raise NotImplementedError

    @property
    def outputs(self) -> FrozenSet[str]:
        raise NotImplementedError

    def compute(self, state: FormState) -> DerivedUpdate:
        raise NotImplementedError


@dataclass(frozen=True)
class IntervalDuration(Derivation):
    """Duration between an entry and an exit timestamp."""
    entry: str
    exit: str
    duration: str
    message: str = ORDERING_MESSAGE
    name: str = "interval_duration"

    @property
    def inputs(self) -> FrozenSet[str]:
        return frozenset({field_key(self.entry), field_key(self.exit)})

    @property
    def outputs(self) -> FrozenSet[str]:
        return frozenset({field_key(self.duration)})

    def compute(self, state: FormState) -> DerivedUpdate:
        update = DerivedUpdate()
        entry = parse_timestamp(state[self.entry])
        exit_ = parse_timestamp(state[self.exit])
        exit_key = field_key(self.exit)

        if entry is None or exit_ is None:
            return update

        if entry > exit_:
            # keep the last good duration; only flag the exit field
            update.errors[exit_key] = self.message
            return update

        update.resolved.add(exit_key)
        update.values[field_key(self.duration)] = format_elapsed(entry, exit_)
        return update


@dataclass(frozen=True)
class DistanceTotal(Derivation):
    """Kilometres travelled: return odometer reading minus outbound reading."""
    outbound: str
    inbound: str
    total: str
    name: str = "distance_total"

    @property
    def inputs(self) -> FrozenSet[str]:
        return frozenset({field_key(self.outbound), field_key(self.inbound)})

    @property
    def outputs(self) -> FrozenSet[str]:
        return frozenset({field_key(self.total)})

    def compute(self, state: FormState) -> DerivedUpdate:
        outbound = to_decimal(state[self.outbound])
        inbound = to_decimal(state[self.inbound])
        total = None if outbound is None or inbound is None else inbound - outbound
        return DerivedUpdate(values={field_key(self.total): total})


@dataclass(frozen=True)
class TravelCost(Derivation):
    """Distance times rate, plus toll (a missing toll counts as zero)."""
    distance: str
    toll: str
    cost: str
    rate: Decimal
    name: str = "travel_cost"

    @property
    def inputs(self) -> FrozenSet[str]:
        return frozenset({field_key(self.distance), field_key(self.toll)})

    @property
    def outputs(self) -> FrozenSet[str]:
        return frozenset({field_key(self.cost)})

    def compute(self, state: FormState) -> DerivedUpdate:
        distance = to_decimal(state[self.distance])
        if distance is None:
            return DerivedUpdate(values={field_key(self.cost): None})
        toll = to_decimal(state[self.toll]) or Decimal("0")
        cost = (distance * Decimal(self.rate) + toll).quantize(Decimal("0.01"))
        return DerivedUpdate(values={field_key(self.cost): cost})


class DerivedFieldCalculator:
    """
    Runs derivations in declaration order.

    A derivation may read the output of an earlier one (travel cost reads
    the distance total); reading a later one is a configuration error.
    """

    def __init__(
        self,
        derivations: Sequence[Derivation],
        fields: Optional[Iterable[Any]] = None,
        form_name: Optional[str] = None,
    ):
        self._derivations: List[Derivation] = list(derivations)
        self._fields = frozenset(field_key(f) for f in fields) if fields is not None else None
        self._form_name = form_name
        self._validate()

    @property
    def derivations(self) -> Tuple[Derivation, ...]:
        return tuple(self._derivations)

    def derived_fields(self) -> FrozenSet[str]:
        return frozenset().union(*(d.outputs for d in self._derivations))

    def input_fields(self) -> FrozenSet[str]:
        return frozenset().union(*(d.inputs for d in self._derivations))

    def _validate(self) -> None:
        where = f" in form '{self._form_name}'" if self._form_name else ""
        produced: Dict[str, str] = {}
        for position, derivation in enumerate(self._derivations):
            if self._fields is not None:
                unknown = (derivation.inputs | derivation.outputs) - self._fields
                if unknown:
                    raise ConfigurationError(
                        f"Derivation '{derivation.name}' references undeclared fields{where}: "
                        f"{sorted(unknown)}"
                    )
            for output in derivation.outputs:
                if output in produced:
                    raise ConfigurationError(
                        f"Field '{output}' is derived by both '{produced[output]}' "
                        f"and '{derivation.name}'{where}"
                    )
                if output in derivation.inputs:
                    raise ConfigurationError(
                        f"Derivation '{derivation.name}' reads its own output '{output}'{where}"
                    )
                produced[output] = derivation.name
            later = self._derivations[position + 1:]
            for other in later:
                if derivation.inputs & other.outputs:
                    raise ConfigurationError(
                        f"Derivation '{derivation.name}' reads the output of later "
                        f"derivation '{other.name}'{where}"
                    )

    def recompute(self, state: FormState, changed: Iterable[Any]) -> DerivedOutcome:
        """
        Recompute every derivation touched by ``changed``.

        Args:
            state: Snapshot after the triggering change was applied
            changed: Fields whose value changed in this interaction

        Returns:
            DerivedOutcome with the new state, ordering errors to attach and
            fields whose ordering error is resolved.
        """
        dirty = {field_key(f) for f in changed}
        errors: Dict[str, str] = {}
        resolved: Set[str] = set()
        recomputed: Set[str] = set()

        for derivation in self._derivations:
            if not derivation.inputs & dirty:
                continue
            update = derivation.compute(state)
            changes = {k: v for k, v in update.values.items() if state[k] != v}
            if changes:
                state = state.with_values(changes)
                dirty.update(changes)
                recomputed.update(changes)
            errors.update(update.errors)
            resolved.update(update.resolved)

        if recomputed:
            logger.debug(f"Recomputed derived fields: {sorted(recomputed)}")

        return DerivedOutcome(
            state=state,
            errors=errors,
            resolved=frozenset(resolved - set(errors)),
            recomputed=frozenset(recomputed),
        )

    def recompute_all(self, state: FormState) -> DerivedOutcome:
        return self.recompute(state, self.input_fields())

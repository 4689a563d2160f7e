"""
Conditional Rule Evaluator.

Decides which fields are enabled, required or cleared from the values of
their sibling fields. Rules are declarative and evaluated on every state
change:

- When a rule's predicate holds, its affected fields are enabled and its
  ``required`` subset becomes mandatory.
- When it does not hold, the affected fields are disabled, cleared, or both,
  depending on the rule's :class:`InactivePolicy`.

Every predicate reads the incoming snapshot, never a partially updated one,
so the result does not depend on rule order. Rules may not chain: a field
that a rule governs can be neither another rule's trigger nor a field any
predicate reads. Violations raise :class:`ConfigurationError` when the
evaluator is built.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)

from .exceptions import ConfigurationError
from .state import FormState, field_key, is_empty

logger = logging.getLogger(__name__)

Predicate = Callable[[FormState], bool]
Condition = Mapping[str, Any]


class InactivePolicy(str, Enum):
    """What happens to affected fields while a rule's predicate is false."""
    CLEAR = "clear"      # value reset to None, field stays editable
    DISABLE = "disable"  # field locked, value kept but never submitted
    BOTH = "both"        # locked and reset

    @property
    def clears(self) -> bool:
        return self in (InactivePolicy.CLEAR, InactivePolicy.BOTH)

    @property
    def disables(self) -> bool:
        return self in (InactivePolicy.DISABLE, InactivePolicy.BOTH)


# =============================================================================
# Declarative conditions
# =============================================================================

def compile_condition(condition: Condition) -> Predicate:
    """
    Compile a declarative condition into a predicate.

    Supported shapes::

        {"field": "ds_contrato", "equals": "Básico com Suporte"}
        {"field": "fl_deslocamento", "not_equals": "R"}
        {"field": "ds_uf", "in": ["SP", "RJ"]}
        {"field": "ds_site", "answered": True}
        {"and": [...]}, {"or": [...]}, {"not": {...}}
    """
    if "field" in condition:
        name = field_key(condition["field"])

        if "equals" in condition:
            expected = condition["equals"]
            return lambda state: state.get(name) == expected

        if "not_equals" in condition:
            unexpected = condition["not_equals"]
            return lambda state: state.get(name) != unexpected

        if "in" in condition:
            options = tuple(condition["in"])
            return lambda state: state.get(name) in options

        if condition.get("answered"):
            return lambda state: not is_empty(state.get(name))

        raise ConfigurationError(f"Condition on '{name}' has no comparison: {dict(condition)!r}")

    if "and" in condition:
        parts = [compile_condition(c) for c in condition["and"]]
        return lambda state: all(p(state) for p in parts)

    if "or" in condition:
        parts = [compile_condition(c) for c in condition["or"]]
        return lambda state: any(p(state) for p in parts)

    if "not" in condition:
        inner = compile_condition(condition["not"])
        return lambda state: not inner(state)

    raise ConfigurationError(f"Unsupported condition: {dict(condition)!r}")


def condition_fields(condition: Condition) -> Set[str]:
    """Collect every field name a declarative condition reads."""
    names: Set[str] = set()
    if "field" in condition:
        names.add(field_key(condition["field"]))
    for key in ("and", "or"):
        for part in condition.get(key, ()):
            names |= condition_fields(part)
    if "not" in condition:
        names |= condition_fields(condition["not"])
    return names


# =============================================================================
# Rules
# =============================================================================

@dataclass(frozen=True)
class DependencyRule:
    """
    A trigger field gating a set of affected fields.

    Attributes:
        name: Identifier used in logs and configuration errors.
        trigger: Field whose value drives the rule.
        predicate: Callable over the form state, or a declarative condition.
        affected: Fields enabled while the predicate holds.
        on_inactive: Policy applied to ``affected`` while it does not hold.
        required: Subset of ``affected`` that is mandatory while active.
    """
    name: str
    trigger: str
    predicate: Union[Predicate, Condition]
    affected: Tuple[str, ...]
    on_inactive: InactivePolicy = InactivePolicy.BOTH
    required: Tuple[str, ...] = ()
    reads: FrozenSet[str] = field(init=False)
    _check: Predicate = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        trigger = field_key(self.trigger)
        affected = tuple(field_key(f) for f in self.affected)
        required = tuple(field_key(f) for f in self.required)

        if callable(self.predicate):
            check = self.predicate
            reads = {trigger}
        else:
            check = compile_condition(self.predicate)
            reads = condition_fields(self.predicate) | {trigger}

        object.__setattr__(self, "trigger", trigger)
        object.__setattr__(self, "affected", affected)
        object.__setattr__(self, "required", required)
        object.__setattr__(self, "on_inactive", InactivePolicy(self.on_inactive))
        object.__setattr__(self, "reads", frozenset(reads))
        object.__setattr__(self, "_check", check)

        if not affected:
            raise ConfigurationError(f"Rule '{self.name}' affects no fields")
        stray = set(required) - set(affected)
        if stray:
            raise ConfigurationError(
                f"Rule '{self.name}' requires fields it does not govern: {sorted(stray)}"
            )

    def is_active(self, state: FormState) -> bool:
        return bool(self._check(state))


@dataclass(frozen=True)
class RuleEvaluation:
    """Result of evaluating every rule against one snapshot."""
    state: FormState
    enabled: FrozenSet[str]
    required: FrozenSet[str]
    cleared: FrozenSet[str] = frozenset()

    def is_enabled(self, field_name: Any) -> bool:
        return field_key(field_name) in self.enabled

    def is_required(self, field_name: Any) -> bool:
        return field_key(field_name) in self.required


class RuleEvaluator:
    """
    Evaluates a fixed set of dependency rules.

    The rule set is validated once at construction; ``evaluate`` is then a
    pure function of the snapshot it receives and is idempotent.
    """

    def __init__(
        self,
        rules: Sequence[DependencyRule],
        fields: Optional[Iterable[Any]] = None,
        form_name: Optional[str] = None,
    ):
        self._rules: List[DependencyRule] = list(rules)
        self._form_name = form_name
        self._fields: Optional[FrozenSet[str]] = (
            frozenset(field_key(f) for f in fields) if fields is not None else None
        )
        self._governed: Dict[str, DependencyRule] = {}
        self._validate()

    @property
    def rules(self) -> Tuple[DependencyRule, ...]:
        return tuple(self._rules)

    def governed_fields(self) -> FrozenSet[str]:
        return frozenset(self._governed)

    def rule_for(self, field_name: Any) -> Optional[DependencyRule]:
        return self._governed.get(field_key(field_name))

    def _validate(self) -> None:
        """Reject rule sets that could chain, cycle or conflict."""
        where = f" in form '{self._form_name}'" if self._form_name else ""
        names: Set[str] = set()

        for rule in self._rules:
            if rule.name in names:
                raise ConfigurationError(f"Duplicate rule name '{rule.name}'{where}")
            names.add(rule.name)

            if self._fields is not None:
                unknown = (set(rule.affected) | rule.reads) - self._fields
                if unknown:
                    raise ConfigurationError(
                        f"Rule '{rule.name}' references undeclared fields{where}: {sorted(unknown)}"
                    )

            for affected in rule.affected:
                other = self._governed.get(affected)
                if other is not None:
                    raise ConfigurationError(
                        f"Field '{affected}' is governed by both '{other.name}' "
                        f"and '{rule.name}'{where}"
                    )
                self._governed[affected] = rule

        for rule in self._rules:
            chained = rule.reads & set(self._governed)
            if chained:
                culprit = sorted(chained)[0]
                raise ConfigurationError(
                    f"Dependency cycle{where}: rule '{rule.name}' reads '{culprit}', "
                    f"which rule '{self._governed[culprit].name}' governs"
                )

    def evaluate(self, state: FormState) -> RuleEvaluation:
        """
        Evaluate every rule against ``state``.

        Returns:
            RuleEvaluation with the enabled/required field sets and the state
            after inactive rules cleared their fields.
        """
        enabled: Set[str] = set(state.fields)
        required: Set[str] = set()
        clears: Dict[str, None] = {}

        for rule in self._rules:
            if rule.is_active(state):
                required.update(rule.required)
                continue

            policy = rule.on_inactive
            if policy.disables:
                enabled.difference_update(rule.affected)
            if policy.clears:
                for name in rule.affected:
                    if state[name] is not None:
                        clears[name] = None

        if clears:
            logger.debug(f"Rules cleared fields: {sorted(clears)}")

        return RuleEvaluation(
            state=state.with_values(clears),
            enabled=frozenset(enabled),
            required=frozenset(required),
            cleared=frozenset(clears),
        )

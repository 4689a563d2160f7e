"""
Form definitions.

A :class:`FormDefinition` is the static description of one form: its
fields, masks, option catalogs, dependency rules, derived fields, lookups,
wizard steps and the pydantic model the final payload must satisfy. It is
validated once when built; a broken definition raises
:class:`ConfigurationError` before any session starts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Type

from pydantic import BaseModel, ValidationError

from validation.field_validators import ValidationOutcome, validate_choice, validate_required

from .derived import Derivation, DerivedFieldCalculator, to_decimal
from .enrichment import EnrichmentRequest
from .exceptions import ConfigurationError, UnknownFieldError
from .masks import MaskCodec, MaskKind, get_mask_codec
from .rules import DependencyRule, RuleEvaluation, RuleEvaluator
from .state import FieldErrors, FieldValue, FormState, field_key
from .wizard import WizardStep

logger = logging.getLogger(__name__)

FieldCheck = Callable[[Any], ValidationOutcome]


class FormMode(str, Enum):
    """Whether a form creates a record or edits an existing one."""
    CREATE = "create"
    EDIT = "edit"


@dataclass(frozen=True)
class FieldSpec:
    """
    Declaration of one form field.

    Attributes:
        name: Field key (a member of the form's field enum or its value).
        label: Human label used in messages.
        mask: Mask kind applied to raw input, if any.
        required: Always mandatory (rule-required fields are added at runtime).
        required_message: Message when missing; defaults to "<label> é obrigatório".
        catalog: Name of the option catalog restricting the value.
        checks: Extra validators run on non-empty values, first failure wins.
        zero_is_empty: ``0`` means "nothing selected" (id selectors).
        read_only: Shown but never edited by the user (derived totals).
    """
    name: str
    label: str
    mask: Optional[MaskKind] = None
    required: bool = False
    required_message: Optional[str] = None
    catalog: Optional[str] = None
    checks: Tuple[FieldCheck, ...] = ()
    zero_is_empty: bool = False
    read_only: bool = False

    def __post_init__(self):
        object.__setattr__(self, "name", field_key(self.name))
        if self.mask is not None:
            try:
                object.__setattr__(self, "mask", MaskKind(self.mask))
            except ValueError:
                raise ConfigurationError(
                    f"Unknown mask kind {self.mask!r} on field '{self.name}'"
                ) from None

    def is_missing(self, value: FieldValue) -> bool:
        present, _ = validate_required(value, self.label, zero_is_empty=self.zero_is_empty)
        return not present

    def validate(self, value: FieldValue, required: bool, catalogs: Mapping[str, Sequence[Any]]) -> Optional[str]:
        """Return the first error message for ``value``, or None."""
        present, message = validate_required(
            value, self.label, self.required_message, zero_is_empty=self.zero_is_empty
        )
        if not present:
            return message if (required or self.required) else None

        if self.catalog is not None:
            ok, message = validate_choice(value, catalogs[self.catalog], self.label)
            if not ok:
                return message

        for check in self.checks:
            ok, message = check(value)
            if not ok:
                return message
        return None


@dataclass
class FormDefinition:
    """Static description of a form, validated on construction."""
    name: str
    fields: Sequence[FieldSpec]
    steps: Sequence[WizardStep]
    payload_model: Type[BaseModel]
    rules: Sequence[DependencyRule] = ()
    derivations: Sequence[Derivation] = ()
    enrichments: Sequence[EnrichmentRequest] = ()
    catalogs: Mapping[str, Sequence[Any]] = field(default_factory=dict)
    initial_values: Mapping[str, FieldValue] = field(default_factory=dict)
    codec: MaskCodec = field(default_factory=get_mask_codec)

    def __post_init__(self):
        self._specs: Dict[str, FieldSpec] = {}
        for spec in self.fields:
            if spec.name in self._specs:
                raise ConfigurationError(f"Field '{spec.name}' declared twice in form '{self.name}'")
            self._specs[spec.name] = spec

        self._validate_fields()
        self._validate_steps()

        self.evaluator = RuleEvaluator(self.rules, fields=self._specs, form_name=self.name)
        self.calculator = DerivedFieldCalculator(
            self.derivations, fields=self._specs, form_name=self.name
        )

        triggers = [r.trigger_field for r in self.enrichments]
        for trigger in triggers:
            if trigger not in self._specs:
                raise ConfigurationError(
                    f"Lookup trigger '{trigger}' is not declared in form '{self.name}'"
                )
        if len(set(triggers)) != len(triggers):
            raise ConfigurationError(f"Two lookups share a trigger field in form '{self.name}'")

        # fails fast on undeclared initial keys
        self.initial_values = dict(self.blank_state().with_values(self.initial_values))
        logger.debug(
            f"Form '{self.name}' defined: {len(self._specs)} fields, "
            f"{len(self.steps)} steps, {len(self.rules)} rules"
        )

    def _validate_fields(self) -> None:
        for spec in self._specs.values():
            if spec.mask is not None:
                self.codec.spec_for(spec.mask)
            if spec.catalog is not None and spec.catalog not in self.catalogs:
                raise ConfigurationError(
                    f"Field '{spec.name}' uses unknown catalog '{spec.catalog}' in form '{self.name}'"
                )

    def _validate_steps(self) -> None:
        if not self.steps:
            raise ConfigurationError(f"Form '{self.name}' has no steps")
        owner: Dict[str, str] = {}
        for step in self.steps:
            for name in step.fields:
                if name not in self._specs:
                    raise ConfigurationError(
                        f"Step '{step.id}' names undeclared field '{name}' in form '{self.name}'"
                    )
                if name in owner:
                    raise ConfigurationError(
                        f"Field '{name}' belongs to steps '{owner[name]}' and '{step.id}'"
                    )
                owner[name] = step.id

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(self._specs)

    def spec(self, field_name: Any) -> FieldSpec:
        name = field_key(field_name)
        try:
            return self._specs[name]
        except KeyError:
            raise UnknownFieldError(name, self.name) from None

    def declares(self, field_name: Any) -> bool:
        return field_key(field_name) in self._specs

    def blank_state(self) -> FormState:
        return FormState(self._specs, form_name=self.name)

    def initial_state(self) -> FormState:
        return FormState(self._specs, self.initial_values, form_name=self.name)

    def options(self, field_name: Any) -> Tuple[Any, ...]:
        """Catalog options of a field (empty when it has none)."""
        spec = self.spec(field_name)
        if spec.catalog is None:
            return ()
        return tuple(self.catalogs[spec.catalog])

    # =========================================================================
    # Validation and payload
    # =========================================================================

    def validate_step(
        self,
        step: WizardStep,
        state: FormState,
        evaluation: RuleEvaluation,
    ) -> FieldErrors:
        """
        Validate one step's enabled fields, then run the step's own check.

        Disabled fields are skipped entirely; their values are never
        submitted so they cannot be wrong.
        """
        errors: FieldErrors = {}
        for name in step.fields:
            if not evaluation.is_enabled(name):
                continue
            message = self._specs[name].validate(
                state[name], evaluation.is_required(name), self.catalogs
            )
            if message:
                errors[name] = message

        if step.validate is not None:
            for name, message in step.validate(state).items():
                if evaluation.is_enabled(name):
                    errors.setdefault(name, message)
        return errors

    def build_payload(
        self,
        state: FormState,
        evaluation: RuleEvaluation,
    ) -> Tuple[Optional[Dict[str, Any]], FieldErrors]:
        """
        Assemble the submission payload from enabled fields.

        Returns:
            Tuple of (payload, errors); payload is None when the model
            rejects the values.
        """
        values = {
            name: value
            for name, value in state.items()
            if evaluation.is_enabled(name) and not self._specs[name].is_missing(value)
        }
        try:
            model = self.payload_model.model_validate(values)
        except ValidationError as e:
            return None, self._schema_errors(e)
        return model.model_dump(exclude_unset=True), {}

    def _schema_errors(self, error: ValidationError) -> FieldErrors:
        errors: FieldErrors = {}
        fallback = self.steps[-1].fields[0] if self.steps[-1].fields else self.field_names[0]
        for item in error.errors():
            loc = item.get("loc") or ()
            if loc and str(loc[0]) in self._specs:
                name = str(loc[0])
                errors.setdefault(name, f"{self._specs[name].label} inválido")
            else:
                errors.setdefault(fallback, "Dados inválidos")
        logger.debug(f"Payload for '{self.name}' rejected: {error.errors()}")
        return errors


def single_step(step_id: str, fields: Sequence[Any], **kwargs) -> List[WizardStep]:
    """Steps list for a one-page form."""
    return [WizardStep(id=step_id, fields=tuple(fields), **kwargs)]


def canonical_record(
    fields: Sequence[FieldSpec],
    record: Mapping[str, Any],
    codec: Optional[MaskCodec] = None,
) -> Dict[str, FieldValue]:
    """
    Turn a stored record into initial form values.

    Keys the form does not declare (ids, timestamps) are dropped. Masked
    values are unmasked; stored amounts are already numbers, so currency is
    read as a decimal rather than as typed cents.
    """
    codec = codec or get_mask_codec()
    specs = {spec.name: spec for spec in fields}
    values: Dict[str, FieldValue] = {}
    for key, value in record.items():
        spec = specs.get(key)
        if spec is None:
            continue
        if value is None or spec.mask is None:
            values[spec.name] = value
        elif spec.mask is MaskKind.CURRENCY:
            values[spec.name] = to_decimal(value)
        elif spec.mask is MaskKind.DURATION:
            values[spec.name] = str(value)
        else:
            values[spec.name] = codec.apply(spec.mask, value).canonical
    return values

"""
Form Engine.

One :class:`FormEngine` drives one form session and is the only object the
rendering layer talks to. Each interaction runs synchronously to completion:

    change(field, raw)
      -> mask (display/canonical)
      -> new FormState snapshot
      -> dependency rules (enable / require / clear)
      -> derived fields (duration, distance, cost) and ordering errors
      -> lookup trigger, if the canonical trigger value changed

The only asynchronous work is the debounced lookup and the final submit.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Iterable, Mapping, Optional, Sequence

from config.settings import FormEngineSettings, get_settings

from .enrichment import EnrichmentAdapter, LookupState, MergePolicy, merge_partial
from .exceptions import FormEngineError
from .masks import MaskKind
from .rules import RuleEvaluation
from .schema import FormDefinition
from .state import FieldErrors, FieldValue, FormState, field_key
from .wizard import (
    StepChanged,
    SubmissionStatus,
    SubmitOutcome,
    SubmitService,
    Wizard,
    WizardStep,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeResult:
    """What a single field edit did."""
    field: str
    applied: bool
    display: str
    value: FieldValue = None


class FormEngine:
    """
    Composition root for one form session.

    Args:
        definition: The form being filled in
        submit: Async submission service, called once per accepted submit
        settings: Engine settings (defaults to cached settings)
    """

    def __init__(
        self,
        definition: FormDefinition,
        submit: SubmitService,
        settings: Optional[FormEngineSettings] = None,
    ):
        self.definition = definition
        self.settings = settings or get_settings()
        self._codec = definition.codec
        self._evaluator = definition.evaluator
        self._calculator = definition.calculator
        self._errors: FieldErrors = {}
        self._closed = False

        self._wizard = Wizard(definition.steps, submit, validator=self._validate_step)
        self._adapters: Dict[str, EnrichmentAdapter] = {
            request.trigger_field: EnrichmentAdapter(request, self._merge)
            for request in definition.enrichments
        }

        # initial pass so defaults already satisfy the rules and derived fields
        self._state: FormState = definition.initial_state()
        self._evaluation: RuleEvaluation = self._evaluator.evaluate(self._state)
        self._settle(self._state, self._calculator.input_fields())
        logger.debug(f"Session started for form '{definition.name}'")

    # =========================================================================
    # Read side
    # =========================================================================

    @property
    def state(self) -> FormState:
        return self._state

    @property
    def errors(self) -> FieldErrors:
        return dict(self._errors)

    @property
    def enabled(self) -> FrozenSet[str]:
        return self._evaluation.enabled

    @property
    def required(self) -> FrozenSet[str]:
        """Fields currently mandatory, static or rule-driven."""
        static = {spec.name for spec in self.definition.fields if spec.required}
        return frozenset(static | self._evaluation.required) & self._evaluation.enabled

    def is_enabled(self, field_name: Any) -> bool:
        return self._evaluation.is_enabled(self.definition.spec(field_name).name)

    def is_required(self, field_name: Any) -> bool:
        return self.definition.spec(field_name).name in self.required

    def value(self, field_name: Any) -> FieldValue:
        return self._state[field_name]

    def error(self, field_name: Any) -> Optional[str]:
        return self._errors.get(self.definition.spec(field_name).name)

    def display(self, field_name: Any, with_symbol: bool = False) -> str:
        """Render a field's canonical value the way the input shows it."""
        spec = self.definition.spec(field_name)
        value = self._state[spec.name]
        if spec.mask is None:
            return "" if value is None else str(value)
        text = self._codec.format(spec.mask, value)
        if with_symbol and spec.mask is MaskKind.CURRENCY and text:
            return f"{self.settings.currency_symbol} {text}"
        return text

    def options(self, field_name: Any) -> Sequence[Any]:
        return self.definition.options(field_name)

    def lookup_state(self, trigger_field: Any) -> LookupState:
        adapter = self._adapters.get(field_key(trigger_field))
        return adapter.state if adapter else LookupState()

    @property
    def lookup_busy(self) -> bool:
        return any(adapter.state.busy for adapter in self._adapters.values())

    @property
    def current_step(self) -> WizardStep:
        return self._wizard.current_step

    @property
    def is_terminal(self) -> bool:
        return self._wizard.is_terminal

    @property
    def submission_status(self) -> SubmissionStatus:
        return self._wizard.status

    @property
    def notification(self) -> Optional[str]:
        """Global, non-field message (submission failures)."""
        return self._wizard.notification

    @property
    def closed(self) -> bool:
        return self._closed

    def progress(self) -> Dict[str, Any]:
        return self._wizard.get_progress()

    def on_step_changed(self, listener: Callable[[StepChanged], None]) -> None:
        self._wizard.on_step_changed(listener)

    def export_state(self) -> Dict[str, Any]:
        """Export the session for the rendering layer or for debugging."""
        return {
            "form": self.definition.name,
            "current_step": self.current_step.id,
            "values": self._state.as_dict(),
            "display": {name: self.display(name) for name in self.definition.field_names},
            "errors": self.errors,
            "enabled": sorted(self.enabled),
            "required": sorted(self.required),
            "lookups": {
                name: adapter.state.status.value for name, adapter in self._adapters.items()
            },
            "submission_status": self.submission_status.value,
            "notification": self.notification,
        }

    # =========================================================================
    # Write side
    # =========================================================================

    def _ensure_open(self) -> None:
        if self._closed:
            raise FormEngineError(f"Form session '{self.definition.name}' is closed")

    def change(self, field_name: Any, raw_value: Any) -> ChangeResult:
        """
        Apply one user edit.

        Raises:
            UnknownFieldError: If the form does not declare ``field_name``
            FormEngineError: If the session is closed
        """
        self._ensure_open()
        spec = self.definition.spec(field_name)
        name = spec.name

        if spec.read_only or not self._evaluation.is_enabled(name):
            logger.debug(f"Ignoring edit to locked field '{name}'")
            return ChangeResult(name, applied=False, display=self.display(name), value=self._state[name])

        if spec.mask is not None:
            masked = self._codec.apply(spec.mask, raw_value)
            if not masked.accepted:
                logger.debug(f"Mask {spec.mask.value} rejected input for '{name}'")
                return ChangeResult(name, applied=False, display=self.display(name), value=self._state[name])
            value = masked.canonical
        else:
            value = raw_value

        previous = self._state[name]
        self._errors.pop(name, None)
        # settle even when unchanged so cross-field errors are re-derived
        self._settle(self._state.with_value(name, value), {name})

        adapter = self._adapters.get(name)
        if adapter is not None and value != previous:
            adapter.on_trigger_change(value)

        return ChangeResult(name, applied=True, display=self.display(name), value=self._state[name])

    def update(self, changes: Mapping[Any, Any]) -> Dict[str, ChangeResult]:
        """Apply several edits in order, as if typed one after another."""
        return {field_key(name): self.change(name, raw) for name, raw in changes.items()}

    def _settle(self, state: FormState, changed: Iterable[str]) -> None:
        """Run rules and derived fields over a new snapshot and adopt it."""
        evaluation = self._evaluator.evaluate(state)
        outcome = self._calculator.recompute(evaluation.state, set(changed) | evaluation.cleared)
        final = self._evaluator.evaluate(outcome.state)

        self._state = final.state
        self._evaluation = final

        for name in outcome.resolved:
            self._errors.pop(name, None)
        self._errors.update(outcome.errors)
        for name in [n for n in self._errors if not final.is_enabled(n)]:
            del self._errors[name]

    def _merge(self, partial: Mapping[str, FieldValue], policy: MergePolicy) -> Sequence[str]:
        """Write a lookup result into the form; returns the fields written."""
        if self._closed:
            return ()

        accepted: Dict[str, FieldValue] = {}
        for name, value in partial.items():
            if not self.definition.declares(name) or not self._evaluation.is_enabled(name):
                continue
            spec = self.definition.spec(name)
            if spec.mask is not None and value is not None:
                masked = self._codec.apply(spec.mask, value)
                if not masked.accepted:
                    continue
                value = masked.canonical
            accepted[spec.name] = value

        state, written = merge_partial(self._state, accepted, policy)
        if not written:
            return ()

        for name in written:
            self._errors.pop(name, None)
        self._settle(state, written)
        logger.info(f"Lookup filled {list(written)} in form '{self.definition.name}'")
        return written

    async def wait_for_lookups(self) -> None:
        """Wait until every scheduled lookup has settled."""
        await asyncio.gather(*(adapter.wait() for adapter in self._adapters.values()))

    # =========================================================================
    # Wizard
    # =========================================================================

    def _validate_step(self, step: WizardStep, state: FormState) -> FieldErrors:
        return self.definition.validate_step(step, state, self._evaluator.evaluate(state))

    def next_step(self) -> bool:
        """
        Validate the current step and advance.

        Returns:
            True if the wizard moved forward
        """
        self._ensure_open()
        if self._wizard.is_terminal:
            return False
        transition = self._wizard.advance(self._state)
        self._errors = dict(transition.errors)
        return transition.moved

    def previous_step(self) -> bool:
        """Go back one step without validating."""
        self._ensure_open()
        return self._wizard.back().moved

    async def submit(self) -> SubmitOutcome:
        """
        Submit from the terminal step.

        Anywhere else this is a no-op that never reaches the submission
        service. A successful submit ends the session.
        """
        self._ensure_open()
        evaluation = self._evaluation
        outcome = await self._wizard.submit(
            self._state,
            lambda state: self.definition.build_payload(state, evaluation),
        )
        if outcome.validated:
            self._errors = dict(outcome.errors)
        if self._wizard.status is SubmissionStatus.SUCCEEDED:
            self.close()
        return outcome

    def close(self) -> None:
        """End the session; pending lookups are cancelled and never applied."""
        if self._closed:
            return
        for adapter in self._adapters.values():
            adapter.close()
        self._closed = True
        logger.debug(f"Session closed for form '{self.definition.name}'")


"""Wizard Orchestrator.

Sequences the steps of a multi-step form:

- ``advance`` moves forward only when the current step validates.
- ``back`` moves backward unconditionally and never validates.
- ``submit`` is only reachable from the last step; anywhere else it is a
  no-op and the submission service is never called.

Validation is step-scoped: only the current step's fields are checked, so
errors for steps the user has not reached never appear.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from .exceptions import ConfigurationError
from .state import FieldErrors, FormState, field_key

logger = logging.getLogger(__name__)


class Direction(str, Enum):
    """Direction of a step transition."""
    FORWARD = "forward"
    BACKWARD = "backward"


class SubmissionStatus(str, Enum):
    """Status of the final submission."""
    IDLE = "idle"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class SubmitOutcomeKind(str, Enum):
    """What happened when submit was invoked."""
    NOT_TERMINAL = "not_terminal"  # not on the last step; nothing sent
    IN_PROGRESS = "in_progress"    # a submission is already running; ignored
    INVALID = "invalid"            # validation or payload schema failed
    SUBMITTED = "submitted"
    FAILED = "failed"              # the service reported an error


@dataclass
class SubmitResult:
    """Answer of the submission service."""
    ok: bool
    reason: Optional[str] = None
    data: Any = None

    @classmethod
    def success(cls, data: Any = None) -> "SubmitResult":
        return cls(ok=True, data=data)

    @classmethod
    def error(cls, reason: str) -> "SubmitResult":
        return cls(ok=False, reason=reason)


SubmitService = Callable[[Dict[str, Any]], Awaitable[Optional[SubmitResult]]]
StepValidator = Callable[[FormState], FieldErrors]
PayloadBuilder = Callable[[FormState], Tuple[Optional[Dict[str, Any]], FieldErrors]]


@dataclass
class WizardStep:
    """A step of the wizard and the fields it owns."""
    id: str
    fields: Tuple[str, ...]
    validate: Optional[StepValidator] = None
    title: Optional[str] = None

    def __post_init__(self):
        self.fields = tuple(field_key(f) for f in self.fields)


@dataclass(frozen=True)
class StepChanged:
    """Event emitted on every step transition."""
    previous: str
    current: str
    index: int
    direction: Direction


@dataclass
class StepTransition:
    """Result of an advance/back request."""
    moved: bool
    step: str
    errors: FieldErrors = field(default_factory=dict)


@dataclass
class SubmitOutcome:
    """Result of a submit request."""
    kind: SubmitOutcomeKind
    errors: FieldErrors = field(default_factory=dict)
    payload: Optional[Dict[str, Any]] = None
    notification: Optional[str] = None
    result: Optional[SubmitResult] = None

    @property
    def validated(self) -> bool:
        """True when a validation pass ran and its errors should replace the form's."""
        return self.kind not in (SubmitOutcomeKind.NOT_TERMINAL, SubmitOutcomeKind.IN_PROGRESS)


class Wizard:
    """
    Step state machine for one form session.

    Args:
        steps: Ordered steps; the last one is terminal
        submit: Async submission service
        validator: Validates a step against a snapshot; defaults to the
            step's own ``validate``
    """

    def __init__(
        self,
        steps: Sequence[WizardStep],
        submit: SubmitService,
        validator: Optional[Callable[[WizardStep, FormState], FieldErrors]] = None,
    ):
        if not steps:
            raise ConfigurationError("A wizard needs at least one step")
        ids = [s.id for s in steps]
        if len(set(ids)) != len(ids):
            raise ConfigurationError(f"Duplicate step ids: {ids}")

        self._steps: List[WizardStep] = list(steps)
        self._submit = submit
        self._validator = validator or self._own_validation
        self._index = 0
        self._completed: List[str] = []
        self._listeners: List[Callable[[StepChanged], None]] = []
        self.status = SubmissionStatus.IDLE
        self.notification: Optional[str] = None

    @staticmethod
    def _own_validation(step: WizardStep, state: FormState) -> FieldErrors:
        return step.validate(state) if step.validate else {}

    # =========================================================================
    # Navigation
    # =========================================================================

    @property
    def steps(self) -> Tuple[WizardStep, ...]:
        return tuple(self._steps)

    @property
    def current_step(self) -> WizardStep:
        return self._steps[self._index]

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def is_terminal(self) -> bool:
        return self._index == len(self._steps) - 1

    def step_of(self, field_name: Any) -> Optional[WizardStep]:
        name = field_key(field_name)
        for step in self._steps:
            if name in step.fields:
                return step
        return None

    def on_step_changed(self, listener: Callable[[StepChanged], None]) -> None:
        """Register a listener (typically the UI resetting scroll and focus)."""
        self._listeners.append(listener)

    def _emit(self, previous: WizardStep, direction: Direction) -> None:
        event = StepChanged(
            previous=previous.id,
            current=self.current_step.id,
            index=self._index,
            direction=direction,
        )
        logger.info(f"Step changed: {event.previous} -> {event.current}")
        for listener in self._listeners:
            listener(event)

    def validate_current(self, state: FormState) -> FieldErrors:
        """Validate the current step, keeping only errors on its own fields."""
        step = self.current_step
        errors = self._validator(step, state)
        return {name: message for name, message in errors.items() if name in step.fields}

    def advance(self, state: FormState) -> StepTransition:
        """Move to the next step if the current one validates."""
        step = self.current_step
        if self.is_terminal:
            return StepTransition(moved=False, step=step.id)

        errors = self.validate_current(state)
        if errors:
            logger.debug(f"Step '{step.id}' blocked by {sorted(errors)}")
            return StepTransition(moved=False, step=step.id, errors=errors)

        if step.id not in self._completed:
            self._completed.append(step.id)
        self._index += 1
        self._emit(step, Direction.FORWARD)
        return StepTransition(moved=True, step=self.current_step.id)

    def back(self) -> StepTransition:
        """Move to the previous step; never validates."""
        step = self.current_step
        if self._index == 0:
            return StepTransition(moved=False, step=step.id)
        self._index -= 1
        self._emit(step, Direction.BACKWARD)
        return StepTransition(moved=True, step=self.current_step.id)

    def get_progress(self) -> Dict[str, Any]:
        """Get wizard progress."""
        total = len(self._steps)
        return {
            "total_steps": total,
            "current_step": self.current_step.id,
            "current_index": self._index,
            "completed_steps": list(self._completed),
            "percentage_complete": (self._index + 1) / total * 100,
            "steps": [
                {
                    "id": s.id,
                    "title": s.title,
                    "is_complete": s.id in self._completed,
                    "is_current": i == self._index,
                }
                for i, s in enumerate(self._steps)
            ],
        }

    # =========================================================================
    # Submission
    # =========================================================================

    async def submit(self, state: FormState, build_payload: PayloadBuilder) -> SubmitOutcome:
        """
        Validate the terminal step, assemble the payload and submit it once.

        Returns:
            SubmitOutcome describing what happened; the service is only
            called for ``SUBMITTED``/``FAILED`` outcomes.
        """
        if not self.is_terminal:
            logger.warning(
                f"Submit ignored on step '{self.current_step.id}' "
                f"({self._index + 1} of {len(self._steps)})"
            )
            return SubmitOutcome(SubmitOutcomeKind.NOT_TERMINAL)

        if self.status is SubmissionStatus.SUBMITTING:
            return SubmitOutcome(SubmitOutcomeKind.IN_PROGRESS)

        errors = self.validate_current(state)
        if errors:
            return SubmitOutcome(SubmitOutcomeKind.INVALID, errors=errors)

        payload, errors = build_payload(state)
        if errors or payload is None:
            return SubmitOutcome(SubmitOutcomeKind.INVALID, errors=errors)

        self.status = SubmissionStatus.SUBMITTING
        self.notification = None
        try:
            result = await self._submit(payload)
        except asyncio.CancelledError:
            # caller gave up (timeout, closed view); allow a retry
            self.status = SubmissionStatus.FAILED
            self.notification = "Envio interrompido; tente novamente"
            logger.warning(f"Submission cancelled on step '{self.current_step.id}'")
            raise
        except Exception as e:
            logger.error(f"Submission service raised: {e}")
            result = SubmitResult.error(str(e) or e.__class__.__name__)

        if result is None:
            result = SubmitResult.success()

        if result.ok:
            self.status = SubmissionStatus.SUCCEEDED
            if self.current_step.id not in self._completed:
                self._completed.append(self.current_step.id)
            logger.info(f"Form submitted from step '{self.current_step.id}'")
            return SubmitOutcome(SubmitOutcomeKind.SUBMITTED, payload=payload, result=result)

        self.status = SubmissionStatus.FAILED
        self.notification = result.reason or "Submission failed"
        logger.warning(f"Submission rejected: {self.notification}")
        return SubmitOutcome(
            SubmitOutcomeKind.FAILED,
            payload=payload,
            notification=self.notification,
            result=result,
        )

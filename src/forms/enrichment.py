"""
Async Enrichment Adapter.

Autofills several fields from one external lookup keyed by a trigger field
(the postal code filling street, district, city and state).

Lifecycle of a lookup:

1. The trigger changes. Any pending or in-flight lookup for the field is
   superseded at once (latest wins, nothing is queued or coalesced).
2. If the normalized key has the expected length, a new ticket is issued and
   a task sleeps through the debounce window before calling the service.
3. When the service answers, the result is merged only if the ticket is
   still current. A stale response is dropped even when it arrives after a
   newer one, because the check is on ticket identity rather than on a
   shared "last value".

Failures and not-found answers are recorded in :class:`LookupState`, a
transient side channel. They never become field errors and never block
submission.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence, Tuple

from .exceptions import LookupNotFound
from .masks import only_digits
from .state import FieldValue, FormState, field_key, is_empty

logger = logging.getLogger(__name__)

LookupService = Callable[[str], Awaitable[Optional[Mapping[str, Any]]]]


class MergePolicy(str, Enum):
    """How lookup results are written into the form."""
    FILL_EMPTY_ONLY = "fill_empty_only"  # never overwrite what the user typed
    OVERWRITE = "overwrite"


class LookupStatus(str, Enum):
    """Lookup status reported to the UI."""
    IDLE = "idle"
    PENDING = "pending"        # waiting out the debounce window
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass(frozen=True)
class LookupState:
    """Transient status of a trigger field's lookup."""
    status: LookupStatus = LookupStatus.IDLE
    key: Optional[str] = None
    message: Optional[str] = None
    filled: Tuple[str, ...] = ()

    @property
    def busy(self) -> bool:
        return self.status in (LookupStatus.PENDING, LookupStatus.IN_FLIGHT)


@dataclass(frozen=True)
class EnrichmentRequest:
    """
    Declares one lookup-driven autofill.

    Attributes:
        trigger_field: Field whose value is the lookup key.
        fetch: Async lookup service; returns a partial mapping or None.
        key_length: Normalized key length that makes the trigger complete.
        debounce_ms: Quiet period before the lookup fires.
        merge_policy: How results are written into the form.
        field_map: Result key -> form field, for services with their own names.
        normalize: Turns the raw trigger value into the lookup key.
    """
    trigger_field: str
    fetch: LookupService
    key_length: int
    debounce_ms: int = 400
    merge_policy: MergePolicy = MergePolicy.FILL_EMPTY_ONLY
    field_map: Mapping[str, str] = field(default_factory=dict)
    normalize: Callable[[Any], str] = only_digits

    def __post_init__(self):
        object.__setattr__(self, "trigger_field", field_key(self.trigger_field))
        object.__setattr__(
            self, "field_map", {k: field_key(v) for k, v in self.field_map.items()}
        )
        object.__setattr__(self, "merge_policy", MergePolicy(self.merge_policy))

    def map_result(self, result: Mapping[str, Any]) -> dict:
        """Rename service keys to form fields; unmapped keys pass through."""
        return {self.field_map.get(key, key): value for key, value in result.items()}


@dataclass(frozen=True, eq=False)
class LookupTicket:
    """Identity token of one lookup; compared with ``is``."""
    key: str
    serial: int


def merge_partial(
    state: FormState,
    partial: Mapping[str, FieldValue],
    policy: MergePolicy = MergePolicy.FILL_EMPTY_ONLY,
) -> Tuple[FormState, Tuple[str, ...]]:
    """
    Merge a lookup result into ``state``.

    Empty incoming values never overwrite anything. With
    ``FILL_EMPTY_ONLY`` a field the user already filled is left alone.
    Keys the form does not declare are ignored.

    Returns:
        Tuple of (new_state, fields_written)
    """
    changes = {}
    for name, value in partial.items():
        if not state.declares(name):
            logger.debug(f"Ignoring undeclared lookup field '{name}'")
            continue
        if is_empty(value):
            continue
        if policy is MergePolicy.FILL_EMPTY_ONLY and not state.is_empty(name):
            continue
        if state[name] != value:
            changes[field_key(name)] = value
    return state.with_values(changes), tuple(changes)


class EnrichmentAdapter:
    """
    Debounced, cancellable lookup for a single trigger field.

    ``on_trigger_change`` is synchronous and must be called from inside the
    running event loop; the lookup itself runs as a task on that loop.
    """

    def __init__(
        self,
        request: EnrichmentRequest,
        merge: Callable[[Mapping[str, FieldValue], MergePolicy], Sequence[str]],
    ):
        self.request = request
        self._merge = merge
        self._serial = itertools.count(1)
        self._current: Optional[LookupTicket] = None
        self._task: Optional[asyncio.Task] = None
        self._state = LookupState()

    @property
    def state(self) -> LookupState:
        return self._state

    @property
    def trigger_field(self) -> str:
        return self.request.trigger_field

    def is_current(self, ticket: LookupTicket) -> bool:
        return self._current is ticket

    def on_trigger_change(self, raw_value: Any) -> Optional[LookupTicket]:
        """
        React to a new trigger value.

        Returns:
            The ticket of the scheduled lookup, or None when the key is not
            complete yet.
        """
        key = self.request.normalize(raw_value)
        self._supersede()

        if len(key) != self.request.key_length:
            self._state = LookupState()
            return None

        ticket = LookupTicket(key=key, serial=next(self._serial))
        self._current = ticket
        self._state = LookupState(LookupStatus.PENDING, key=key)

        loop = asyncio.get_running_loop()
        self._task = loop.create_task(
            self._run(ticket), name=f"lookup:{self.trigger_field}:{ticket.serial}"
        )
        logger.debug(f"Lookup #{ticket.serial} scheduled for {self.trigger_field}={key}")
        return ticket

    def _supersede(self) -> None:
        if self._current is not None:
            logger.debug(f"Lookup #{self._current.serial} superseded")
        self._current = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self, ticket: LookupTicket) -> None:
        delay = self.request.debounce_ms / 1000.0
        if delay > 0:
            await asyncio.sleep(delay)
        if not self.is_current(ticket):
            return

        self._state = LookupState(LookupStatus.IN_FLIGHT, key=ticket.key)
        try:
            result = await self.request.fetch(ticket.key)
        except LookupNotFound:
            result = None
        except Exception as e:
            if self.is_current(ticket):
                logger.warning(f"Lookup for {self.trigger_field}={ticket.key} failed: {e}")
                self._state = LookupState(LookupStatus.FAILED, key=ticket.key, message=str(e))
                self._current = None
            return

        if not self.is_current(ticket):
            logger.debug(f"Discarding result of superseded lookup #{ticket.serial}")
            return
        self._current = None

        if not result:
            logger.info(f"Lookup for {self.trigger_field}={ticket.key} found nothing")
            self._state = LookupState(LookupStatus.NOT_FOUND, key=ticket.key)
            return

        written = self._merge(self.request.map_result(result), self.request.merge_policy)
        self._state = LookupState(LookupStatus.SUCCEEDED, key=ticket.key, filled=tuple(written))
        logger.debug(f"Lookup #{ticket.serial} filled {list(written)}")

    async def wait(self) -> None:
        """Wait for the current lookup, if any, to settle."""
        while self._task is not None and not self._task.done():
            task = self._task
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise

    def close(self) -> None:
        """Retire the adapter; a pending lookup will never be applied."""
        self._supersede()
        self._state = LookupState()

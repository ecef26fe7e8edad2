"""Error taxonomy shared by the resolver, the stores and the scheduling engine.

Every error carries a stable machine-readable ``kind``, a human-readable
message and a ``context`` dict naming the operation, step and identifiers
involved. Routes turn these into HTTP responses; other callers (the chat
layer) can branch on ``kind`` directly.
"""

from typing import Any


class SchedulingError(Exception):
    """Base class for all scheduling failures."""

    kind = "scheduling_error"
    retryable = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.context:
            payload["context"] = {key: _jsonable(value) for key, value in self.context.items()}
        if self.retryable:
            payload["retryable"] = True
        return payload


class InvalidInput(SchedulingError):
    """Malformed request; rejected before any store access."""

    kind = "invalid_input"


class InvalidTimeFormat(InvalidInput):
    kind = "invalid_time_format"


class InvalidZone(InvalidInput):
    kind = "invalid_zone"


class InvalidRange(InvalidInput):
    kind = "invalid_range"


class NotFound(SchedulingError):
    kind = "not_found"


class SlotUnavailable(SchedulingError):
    """The compare-and-set on a slot was lost; re-list and pick another slot."""

    kind = "slot_unavailable"


class InvalidTransition(SchedulingError):
    """The requested change is not allowed from the record's current state."""

    kind = "invalid_transition"


class UpstreamTimeout(SchedulingError):
    kind = "upstream_timeout"
    retryable = True


class StoreUnavailable(SchedulingError):
    kind = "store_unavailable"


class PartialFailure(SchedulingError):
    """A multi-step operation stopped after some steps had been committed.

    ``step`` is the step that failed, ``completed_steps`` the ones already
    committed and ``state`` describes what the records look like now, so the
    caller can decide whether to compensate.
    """

    kind = "partial_failure"

    def __init__(
        self,
        message: str,
        *,
        step: str,
        completed_steps: list[str],
        state: dict[str, Any],
        cause: SchedulingError | None = None,
        **context: Any,
    ) -> None:
        super().__init__(message, **context)
        self.step = step
        self.completed_steps = list(completed_steps)
        self.state = state
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["step"] = self.step
        payload["completed_steps"] = self.completed_steps
        payload["state"] = {key: _jsonable(value) for key, value in self.state.items()}
        if self.cause is not None:
            payload["cause"] = self.cause.to_dict()
        return payload


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    return str(value)

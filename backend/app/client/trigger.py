from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional, Protocol

from backend.app.client.http import DecisionConflictError, DuplicateServiceUnavailableError
from backend.app.models import UserDecision
from backend.app.repository import RepositoryUnavailableError
from backend.app.store import AlreadyDecidedError

logger = logging.getLogger("duplicate_guard.trigger")

DEFAULT_DEBOUNCE_SECONDS = 0.5

MIN_FIELD_LENGTHS = {
    "name": 2,
    "email": 5,
    "company": 2,
    "phone": 7,
}

RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    RepositoryUnavailableError,
    DuplicateServiceUnavailableError,
)
CONFLICT_ERRORS: tuple[type[Exception], ...] = (AlreadyDecidedError, DecisionConflictError)


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class ThreadingScheduler:
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer


class SubmissionBlockedError(Exception):
    def __init__(self, reason: str) -> None:
        super().__init__(f"submission blocked: {reason}")
        self.reason = reason


def meets_minimum_data(values: dict[str, Any]) -> bool:
    for field, minimum in MIN_FIELD_LENGTHS.items():
        value = values.get(field)
        if isinstance(value, str) and len(value.strip()) >= minimum:
            return True
    return False


class DuplicateCheckTrigger:
    """Debounced duplicate check bound to a form, gating its submission.

    ``check_fn`` receives the candidate field values and returns an object with
    ``has_warning`` and ``warning_id``. ``decide_fn`` receives
    ``(warning_id, decision, reason)``.
    """

    def __init__(
        self,
        check_fn: Callable[[dict[str, Any]], Any],
        *,
        decide_fn: Optional[Callable[[str, UserDecision, Optional[str]], Any]] = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        scheduler: Optional[Scheduler] = None,
        is_editing: bool = False,
    ) -> None:
        self.check_fn = check_fn
        self.decide_fn = decide_fn
        self.debounce_seconds = debounce_seconds
        self.scheduler = scheduler or ThreadingScheduler()
        self.is_editing = is_editing
        self._condition = threading.Condition()
        self._values: dict[str, Any] = {}
        self._generation = 0
        self._pending: Optional[TimerHandle] = None
        self._in_flight: Optional[int] = None
        self._result: Any = None
        self._decision: Optional[UserDecision] = None
        self.last_error: Optional[Exception] = None

    @property
    def values(self) -> dict[str, Any]:
        with self._condition:
            return dict(self._values)

    @property
    def result(self) -> Any:
        with self._condition:
            return self._result

    @property
    def decision(self) -> Optional[UserDecision]:
        with self._condition:
            return self._decision

    @property
    def check_in_flight(self) -> bool:
        with self._condition:
            return self._in_flight is not None

    @property
    def check_pending(self) -> bool:
        with self._condition:
            return self._pending is not None

    def update_fields(self, **values: Any) -> None:
        with self._condition:
            for field, value in values.items():
                if value is None:
                    self._values.pop(field, None)
                else:
                    self._values[field] = value
            self._generation += 1
            self._result = None
            self._decision = None
            self.last_error = None
            if self._pending:
                self._pending.cancel()
                self._pending = None
            if self.is_editing or not meets_minimum_data(self._values):
                return
            generation = self._generation
            self._pending = self.scheduler.call_later(
                self.debounce_seconds, lambda: self._run_check(generation)
            )

    def flush(self) -> None:
        with self._condition:
            if not self._pending:
                return
            self._pending.cancel()
            self._pending = None
            generation = self._generation
        self._run_check(generation)

    def wait_for_check(self, timeout: Optional[float] = None) -> bool:
        with self._condition:
            return self._condition.wait_for(lambda: self._in_flight is None, timeout=timeout)

    def can_submit(self) -> bool:
        with self._condition:
            return self._blocked_reason() is None

    def submit(self, persist_fn: Callable[[dict[str, Any]], Any], timeout: Optional[float] = None):
        self.flush()
        if not self.wait_for_check(timeout):
            raise SubmissionBlockedError("check_in_flight")
        with self._condition:
            reason = self._blocked_reason()
            if reason:
                raise SubmissionBlockedError(reason)
            values = dict(self._values)
        return persist_fn(values)

    def decide(self, decision: UserDecision, reason: Optional[str] = None) -> None:
        if not self.decide_fn:
            raise RuntimeError("no decision callable configured")
        with self._condition:
            warning = self._result
            generation = self._generation
        if not warning or not warning.has_warning or not warning.warning_id:
            raise SubmissionBlockedError("no_warning")
        try:
            self.decide_fn(warning.warning_id, decision, reason)
        except CONFLICT_ERRORS:
            logger.info("duplicate_decision_already_recorded warning_id=%s", warning.warning_id)
        with self._condition:
            if generation == self._generation:
                self._decision = decision

    def _blocked_reason(self) -> Optional[str]:
        if self.is_editing:
            return None
        if self._pending or self._in_flight is not None:
            return "check_in_flight"
        if not self._result or not self._result.has_warning:
            return None
        if self._decision == UserDecision.PROCEEDED:
            return None
        if self._decision == UserDecision.CANCELLED:
            return "cancelled"
        return "pending_warning"

    def _run_check(self, generation: int) -> None:
        with self._condition:
            if generation != self._generation:
                return
            self._pending = None
            self._in_flight = generation
            candidate = dict(self._values)

        result: Any = None
        error: Optional[Exception] = None
        try:
            result = self.check_fn(candidate)
        except RETRYABLE_ERRORS as exc:
            logger.warning("duplicate_check_unavailable generation=%s error=%s", generation, exc)
            error = exc
        except Exception as exc:
            # Runs on a timer thread; nothing above us would see the error.
            logger.exception("duplicate_check_failed generation=%s", generation)
            error = exc
        finally:
            with self._condition:
                if self._in_flight == generation:
                    self._in_flight = None
                if generation == self._generation:
                    self._result = result
                    self.last_error = error
                else:
                    logger.debug("duplicate_check_superseded generation=%s", generation)
                self._condition.notify_all()

"""Serialized browser quota governor.

Every headless browser session in the deployment is admitted by a
``BrowserQuotaActor``. The actor owns the counters for one logical name and
applies commands strictly one at a time on a dedicated worker thread, so
concurrent callers (HTTP requests, scheduler ticks, CLI runs) can never
interleave a read-modify-write. Every command reads the counters from the
store and writes them back in one step, so a restarted service picks up
where it left off and actors in other processes sharing the SQL store see
each other's grants.

Commands and payload keys match the HTTP protocol served by the backend:

``acquire``      ``{reserveSeconds, maxConcurrent, maxDailySeconds}``
``release``      ``{}``
``addSeconds``   ``{seconds}``
``status``       ``{}``
"""

from __future__ import annotations

import logging
import math
import queue
import threading
from concurrent.futures import Future
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from worknuggets import config
from worknuggets.models import BrowserQuotaState

logger = logging.getLogger(__name__)

COMMANDS = ("acquire", "release", "addSeconds", "status")

REASON_CONCURRENCY = "concurrency_limit"
REASON_DAILY_BUDGET = "daily_budget_exhausted"

# Defaults applied when a payload omits a numeric argument
DEFAULT_RESERVE_SECONDS = 0
DEFAULT_MAX_CONCURRENT = 3
DEFAULT_MAX_DAILY_SECONDS = 600
DEFAULT_ADD_SECONDS = 0


class QuotaCommandError(ValueError):
    """Unknown command or malformed payload."""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def day_key_for(moment: datetime) -> str:
    """UTC calendar date of ``moment`` as ``YYYY-MM-DD``."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.date().isoformat()


@dataclass(frozen=True)
class QuotaState:
    running: int = 0
    daily_seconds: int = 0
    day_key: str = ""


class QuotaStoreConflictError(RuntimeError):
    """Another writer kept changing the quota row between read and write."""


Transition = Callable[[QuotaState], tuple[QuotaState, dict[str, Any]]]


class QuotaStateStore(Protocol):
    def load(self, name: str) -> Optional[QuotaState]: ...

    def save(self, name: str, state: QuotaState) -> None: ...

    def apply(
        self, name: str, transition: Transition
    ) -> tuple[QuotaState, dict[str, Any]]: ...


class InMemoryQuotaStateStore:
    """Process-local store; state is lost on restart."""

    def __init__(self):
        self._states: dict[str, QuotaState] = {}
        self._lock = threading.RLock()

    def load(self, name: str) -> Optional[QuotaState]:
        with self._lock:
            return self._states.get(name)

    def save(self, name: str, state: QuotaState) -> None:
        with self._lock:
            self._states[name] = state

    def apply(
        self, name: str, transition: Transition
    ) -> tuple[QuotaState, dict[str, Any]]:
        """Read, transform and write ``name`` while holding the store lock."""
        with self._lock:
            current = self._states.get(name)
            new_state, response = transition(current or QuotaState())
            if current is None or new_state != current:
                self.save(name, new_state)
            return new_state, response


class _StaleQuotaRow(Exception):
    pass


def _row_to_state(row: BrowserQuotaState) -> QuotaState:
    return QuotaState(
        running=int(row.running or 0),
        daily_seconds=int(row.daily_seconds or 0),
        day_key=row.day_key or "",
    )


class SqlQuotaStateStore:
    """Persist quota counters in the ``browser_quota`` table.

    Several processes may run an actor for the same name against one
    database. :meth:`apply` therefore re-reads the row for every command and
    writes it back with a compare-and-swap on ``version``; a lost race is
    re-run against the fresh row. On PostgreSQL the read also takes a row
    lock, so conflicts only happen on the first insert.
    """

    def __init__(self, db_manager, max_attempts: int = 5):
        self.db = db_manager
        self.max_attempts = max_attempts

    def load(self, name: str) -> Optional[QuotaState]:
        with self.db.get_session() as session:
            row = session.get(BrowserQuotaState, name)
            if row is None:
                return None
            return _row_to_state(row)

    def save(self, name: str, state: QuotaState) -> None:
        with self.db.get_session() as session:
            row = session.get(BrowserQuotaState, name)
            if row is None:
                row = BrowserQuotaState(name=name, version=0)
                session.add(row)
            row.running = state.running
            row.daily_seconds = state.daily_seconds
            row.day_key = state.day_key
            row.version = (row.version or 0) + 1

    def apply(
        self, name: str, transition: Transition
    ) -> tuple[QuotaState, dict[str, Any]]:
        for attempt in range(1, self.max_attempts + 1):
            try:
                with self.db.get_session() as session:
                    return self._apply_once(session, name, transition)
            except (_StaleQuotaRow, IntegrityError):
                logger.info(
                    "Quota row %s changed concurrently (attempt %d/%d)",
                    name,
                    attempt,
                    self.max_attempts,
                )
        raise QuotaStoreConflictError(
            f"quota {name} kept changing after {self.max_attempts} attempts"
        )

    def _apply_once(
        self, session, name: str, transition: Transition
    ) -> tuple[QuotaState, dict[str, Any]]:
        row = session.execute(
            select(BrowserQuotaState)
            .where(BrowserQuotaState.name == name)
            .with_for_update()
        ).scalar_one_or_none()
        current = _row_to_state(row) if row is not None else QuotaState()
        new_state, response = transition(current)

        if row is None:
            session.add(
                BrowserQuotaState(
                    name=name,
                    running=new_state.running,
                    daily_seconds=new_state.daily_seconds,
                    day_key=new_state.day_key,
                    version=1,
                )
            )
            session.flush()
        elif new_state != current:
            result = session.execute(
                update(BrowserQuotaState)
                .where(
                    BrowserQuotaState.name == name,
                    BrowserQuotaState.version == row.version,
                )
                .values(
                    running=new_state.running,
                    daily_seconds=new_state.daily_seconds,
                    day_key=new_state.day_key,
                    version=row.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise _StaleQuotaRow(name)
        return new_state, response


def _numeric_arg(payload: Mapping[str, Any], key: str, default: int) -> int:
    value = payload.get(key)
    # Falsy values (missing, null, 0, "") fall back to the default
    if not value:
        return default
    if isinstance(value, bool):
        raise QuotaCommandError(f"{key} must be a number")
    try:
        number = math.ceil(float(value))
    except (TypeError, ValueError, OverflowError) as exc:
        raise QuotaCommandError(f"{key} must be a number") from exc
    if number < 0:
        raise QuotaCommandError(f"{key} must not be negative")
    return number


def apply_command(
    state: QuotaState, command: str, payload: Mapping[str, Any], today: str
) -> tuple[QuotaState, dict[str, Any]]:
    """Pure transition function: return the new state and the response body.

    The day rollover is applied first for every command, including
    ``status``.
    """
    if state.day_key != today:
        if state.day_key:
            logger.info(
                "Quota day rollover %s -> %s (daily_seconds %d reset)",
                state.day_key,
                today,
                state.daily_seconds,
            )
        state = replace(state, daily_seconds=0, day_key=today)

    if command == "acquire":
        reserve = _numeric_arg(payload, "reserveSeconds", DEFAULT_RESERVE_SECONDS)
        max_concurrent = _numeric_arg(payload, "maxConcurrent", DEFAULT_MAX_CONCURRENT)
        max_daily = _numeric_arg(payload, "maxDailySeconds", DEFAULT_MAX_DAILY_SECONDS)

        if state.running >= max_concurrent:
            return state, {
                "ok": False,
                "reason": REASON_CONCURRENCY,
                "running": state.running,
                "dailySeconds": state.daily_seconds,
            }
        if state.daily_seconds + reserve > max_daily:
            return state, {
                "ok": False,
                "reason": REASON_DAILY_BUDGET,
                "running": state.running,
                "dailySeconds": state.daily_seconds,
            }

        state = replace(
            state,
            running=state.running + 1,
            daily_seconds=state.daily_seconds + reserve,
        )
        return state, {
            "ok": True,
            "running": state.running,
            "dailySeconds": state.daily_seconds,
        }

    if command == "release":
        state = replace(state, running=max(0, state.running - 1))
        return state, {"ok": True, "running": state.running}

    if command == "addSeconds":
        seconds = _numeric_arg(payload, "seconds", DEFAULT_ADD_SECONDS)
        state = replace(state, daily_seconds=state.daily_seconds + seconds)
        return state, {"ok": True, "dailySeconds": state.daily_seconds}

    if command == "status":
        return state, {
            "running": state.running,
            "dailySeconds": state.daily_seconds,
            "dayKey": state.day_key,
        }

    raise QuotaCommandError(f"Unknown command: {command}")


_STOP = object()


class BrowserQuotaActor:
    """In-process serializer for one named quota.

    Commands are queued and executed in arrival order by one worker thread;
    callers block on a ``Future`` for the response.
    """

    def __init__(
        self,
        name: str,
        store: QuotaStateStore | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.name = name
        self.store: QuotaStateStore = store or InMemoryQuotaStateStore()
        self._clock = clock
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._start_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._start_lock:
            if self.is_running:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._worker, name=f"browser-quota-{self.name}", daemon=True
            )
            self._thread.start()
            logger.info("Browser quota actor %s started", self.name)

    def shutdown(self, wait: bool = True, timeout: float = 5.0) -> None:
        if self._thread is None:
            return
        self._stop_event.set()
        self._queue.put(_STOP)
        if wait:
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Browser quota actor %s stopped", self.name)

    def submit(self, command: str, payload: Mapping[str, Any] | None = None) -> Future:
        """Queue a command and return a future for its response."""
        if command not in COMMANDS:
            raise QuotaCommandError(f"Unknown command: {command}")
        self.start()
        future: Future = Future()
        self._queue.put((command, dict(payload or {}), future))
        return future

    def handle_command(
        self,
        command: str,
        payload: Mapping[str, Any] | None = None,
        timeout: float | None = 30.0,
    ) -> dict[str, Any]:
        return self.submit(command, payload).result(timeout=timeout)

    def acquire(
        self,
        reserve_seconds: int = DEFAULT_RESERVE_SECONDS,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        max_daily_seconds: int = DEFAULT_MAX_DAILY_SECONDS,
    ) -> dict[str, Any]:
        return self.handle_command(
            "acquire",
            {
                "reserveSeconds": reserve_seconds,
                "maxConcurrent": max_concurrent,
                "maxDailySeconds": max_daily_seconds,
            },
        )

    def release(self) -> dict[str, Any]:
        return self.handle_command("release")

    def add_seconds(self, seconds: int) -> dict[str, Any]:
        return self.handle_command("addSeconds", {"seconds": seconds})

    def status(self) -> dict[str, Any]:
        return self.handle_command("status")

    def _worker(self) -> None:
        while not self._stop_event.is_set():
            try:
                item = self._queue.get(timeout=1.0)
            except queue.Empty:
                continue
            try:
                if item is _STOP:
                    break
                command, payload, future = item
                if not future.set_running_or_notify_cancel():
                    continue
                try:
                    future.set_result(self._execute(command, payload))
                except Exception as exc:
                    future.set_exception(exc)
            finally:
                self._queue.task_done()

    def _execute(self, command: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        today = day_key_for(self._clock())
        try:
            _, response = self.store.apply(
                self.name,
                lambda current: apply_command(current, command, payload, today),
            )
        except SQLAlchemyError:
            logger.exception("Failed to persist quota state for %s", self.name)
            raise

        logger.debug("quota %s %s -> %s", self.name, command, response)
        return response


_ACTORS: dict[str, BrowserQuotaActor] = {}
_REGISTRY_LOCK = threading.Lock()
_DEFAULT_STORE: Optional[QuotaStateStore] = None


def configure_quota_store(store: QuotaStateStore | None) -> None:
    """Set the store used for actors created by :func:`get_quota_actor`."""
    global _DEFAULT_STORE
    _DEFAULT_STORE = store


def _default_store() -> QuotaStateStore:
    global _DEFAULT_STORE
    if _DEFAULT_STORE is None:
        from worknuggets.models.database import DatabaseManager

        _DEFAULT_STORE = SqlQuotaStateStore(DatabaseManager(config.DATABASE_URL))
    return _DEFAULT_STORE


def get_quota_actor(name: str | None = None) -> BrowserQuotaActor:
    """Return the process-wide actor for ``name``, creating it on first use."""
    name = name or config.QUOTA_INSTANCE_NAME
    with _REGISTRY_LOCK:
        actor = _ACTORS.get(name)
        if actor is None:
            actor = BrowserQuotaActor(name, store=_default_store())
            _ACTORS[name] = actor
        actor.start()
        return actor


def shutdown_quota_actors() -> None:
    """Stop every registered actor and clear the registry."""
    with _REGISTRY_LOCK:
        actors = list(_ACTORS.values())
        _ACTORS.clear()
    for actor in actors:
        actor.shutdown(wait=True)

"""Tests for the serialized browser quota governor."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from worknuggets.models.database import DatabaseManager
from worknuggets.services.browser_quota import (
    BrowserQuotaActor,
    InMemoryQuotaStateStore,
    QuotaCommandError,
    QuotaState,
    QuotaStoreConflictError,
    SqlQuotaStateStore,
    apply_command,
    get_quota_actor,
)

pytestmark = pytest.mark.unit

TODAY = "2026-03-14"


@pytest.fixture
def actor(fake_clock):
    actor = BrowserQuotaActor("TEST", store=InMemoryQuotaStateStore(), clock=fake_clock)
    yield actor
    actor.shutdown()


def test_acquire_grants_and_reserves(actor):
    response = actor.acquire(reserve_seconds=30, max_concurrent=3, max_daily_seconds=600)

    assert response == {"ok": True, "running": 1, "dailySeconds": 30}
    assert actor.status() == {"running": 1, "dailySeconds": 30, "dayKey": TODAY}


def test_never_grants_at_max_concurrency(actor):
    for _ in range(3):
        assert actor.acquire(0, 3, 600)["ok"] is True

    denied = actor.acquire(0, 3, 600)

    assert denied["ok"] is False
    assert denied["reason"] == "concurrency_limit"
    assert denied["running"] == 3
    assert actor.status()["running"] == 3


def test_n_grants_without_release_counts_n(actor):
    for _ in range(5):
        actor.acquire(1, 10, 600)
    assert actor.status()["running"] == 5


def test_extra_releases_keep_running_at_zero(actor):
    actor.acquire(0, 3, 600)
    for _ in range(4):
        response = actor.release()
    assert response == {"ok": True, "running": 0}
    assert actor.status()["running"] == 0


@pytest.mark.parametrize(
    "used,reserve,max_daily,granted",
    [
        (570, 30, 600, True),   # exactly at the budget is allowed
        (571, 30, 600, False),
        (600, 0, 600, True),
        (600, 1, 600, False),
        (0, 601, 600, False),
    ],
)
def test_daily_budget_denies_iff_over(used, reserve, max_daily, granted):
    state = QuotaState(running=0, daily_seconds=used, day_key=TODAY)
    payload = {"reserveSeconds": reserve, "maxConcurrent": 3, "maxDailySeconds": max_daily}

    new_state, response = apply_command(state, "acquire", payload, TODAY)

    assert response["ok"] is granted
    if granted:
        assert new_state.daily_seconds == used + reserve
    else:
        assert response["reason"] == "daily_budget_exhausted"
        assert response["dailySeconds"] == used
        assert new_state == state


def test_concurrency_checked_before_budget():
    state = QuotaState(running=3, daily_seconds=600, day_key=TODAY)
    _, response = apply_command(state, "acquire", {"reserveSeconds": 30}, TODAY)
    assert response["reason"] == "concurrency_limit"


def test_add_seconds_accumulates_on_top_of_reservation(actor):
    actor.acquire(30, 3, 600)
    assert actor.add_seconds(42) == {"ok": True, "dailySeconds": 72}


def test_add_seconds_overshoot_is_accepted(actor):
    actor.acquire(30, 3, 600)
    assert actor.add_seconds(1000)["dailySeconds"] == 1030


def test_missing_arguments_use_defaults():
    state = QuotaState(running=2, daily_seconds=0, day_key=TODAY)

    _, granted = apply_command(state, "acquire", {}, TODAY)
    assert granted["ok"] is True
    assert granted["dailySeconds"] == 0

    _, denied = apply_command(QuotaState(3, 0, TODAY), "acquire", {}, TODAY)
    assert denied["reason"] == "concurrency_limit"

    _, budget = apply_command(QuotaState(0, 600, TODAY), "acquire", {"reserveSeconds": 1}, TODAY)
    assert budget["reason"] == "daily_budget_exhausted"

    _, added = apply_command(QuotaState(0, 10, TODAY), "addSeconds", {}, TODAY)
    assert added["dailySeconds"] == 10


def test_day_rollover_resets_on_first_operation_of_new_day(actor, fake_clock):
    actor.acquire(30, 3, 600)
    actor.add_seconds(500)
    assert actor.status()["dailySeconds"] == 530

    fake_clock.advance(days=1)

    response = actor.acquire(30, 3, 600)
    assert response["ok"] is True
    assert response["dailySeconds"] == 30
    # running is not reset by the rollover
    assert response["running"] == 2
    assert actor.status()["dayKey"] == "2026-03-15"


def test_status_applies_and_persists_rollover(fake_clock):
    store = InMemoryQuotaStateStore()
    store.save("TEST", QuotaState(running=1, daily_seconds=400, day_key="2026-03-13"))
    actor = BrowserQuotaActor("TEST", store=store, clock=fake_clock)
    try:
        assert actor.status() == {"running": 1, "dailySeconds": 0, "dayKey": TODAY}
    finally:
        actor.shutdown()

    assert store.load("TEST") == QuotaState(running=1, daily_seconds=0, day_key=TODAY)


def test_rollover_uses_utc_date(fake_clock):
    from datetime import datetime, timedelta, timezone

    # 23:30 in UTC-5 is already the next day in UTC
    fake_clock.moment = datetime(2026, 3, 14, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
    actor = BrowserQuotaActor("TZ", clock=fake_clock)
    try:
        assert actor.status()["dayKey"] == "2026-03-15"
    finally:
        actor.shutdown()


def test_unknown_command_rejected(actor):
    with pytest.raises(QuotaCommandError):
        actor.handle_command("reset")


def test_non_numeric_argument_rejected(actor):
    with pytest.raises(QuotaCommandError):
        actor.handle_command("acquire", {"reserveSeconds": "lots"})
    assert actor.status()["running"] == 0


@pytest.mark.parametrize(
    "command,payload",
    [
        ("addSeconds", {"seconds": -5000}),
        ("acquire", {"reserveSeconds": -30}),
        ("acquire", {"maxConcurrent": -1}),
        ("acquire", {"maxDailySeconds": "-600"}),
    ],
)
def test_negative_arguments_rejected(actor, command, payload):
    with pytest.raises(QuotaCommandError):
        actor.handle_command(command, payload)
    assert actor.status() == {"running": 0, "dailySeconds": 0, "dayKey": TODAY}


@pytest.mark.parametrize("value", [1e999, "inf", "nan", 10**400])
def test_unrepresentable_numbers_rejected(actor, value):
    with pytest.raises(QuotaCommandError):
        actor.handle_command("addSeconds", {"seconds": value})
    assert actor.status()["dailySeconds"] == 0


def test_fractional_seconds_round_up(actor):
    assert actor.add_seconds(2.5)["dailySeconds"] == 3
    assert actor.handle_command("addSeconds", {"seconds": "0.1"})["dailySeconds"] == 4


def test_concurrent_callers_never_exceed_limit(actor):
    with ThreadPoolExecutor(max_workers=16) as pool:
        responses = list(pool.map(lambda _: actor.acquire(0, 3, 600), range(50)))

    granted = [r for r in responses if r["ok"]]
    assert len(granted) == 3
    assert actor.status()["running"] == 3


def test_sql_store_persists_across_actor_restarts(db_manager, fake_clock):
    store = SqlQuotaStateStore(db_manager)
    first = BrowserQuotaActor("GLOBAL", store=store, clock=fake_clock)
    first.acquire(30, 3, 600)
    first.add_seconds(12)
    first.shutdown()

    second = BrowserQuotaActor("GLOBAL", store=SqlQuotaStateStore(db_manager), clock=fake_clock)
    try:
        assert second.status() == {"running": 1, "dailySeconds": 42, "dayKey": TODAY}
    finally:
        second.shutdown()


def test_sql_store_keeps_names_separate(db_manager):
    store = SqlQuotaStateStore(db_manager)
    store.save("A", QuotaState(1, 10, TODAY))
    store.save("B", QuotaState(2, 20, TODAY))

    assert store.load("A") == QuotaState(1, 10, TODAY)
    assert store.load("B") == QuotaState(2, 20, TODAY)
    assert store.load("C") is None


def test_actors_sharing_one_database_see_each_other(tmp_path, fake_clock):
    url = f"sqlite:///{tmp_path / 'shared.db'}"
    with DatabaseManager(url) as db_a, DatabaseManager(url) as db_b:
        a = BrowserQuotaActor("GLOBAL", store=SqlQuotaStateStore(db_a), clock=fake_clock)
        b = BrowserQuotaActor("GLOBAL", store=SqlQuotaStateStore(db_b), clock=fake_clock)
        try:
            b.status()
            assert a.acquire(30, 1, 600)["ok"] is True

            denied = b.acquire(30, 1, 600)
            assert denied == {
                "ok": False,
                "reason": "concurrency_limit",
                "running": 1,
                "dailySeconds": 30,
            }

            a.add_seconds(10)
            b.add_seconds(5)
            assert b.release() == {"ok": True, "running": 0}
            assert a.status() == {"running": 0, "dailySeconds": 45, "dayKey": TODAY}
        finally:
            a.shutdown()
            b.shutdown()


def test_sql_store_reapplies_after_concurrent_write(db_manager, tmp_path):
    store = SqlQuotaStateStore(db_manager)
    store.save("GLOBAL", QuotaState(0, 0, TODAY))
    seen = []

    with DatabaseManager(f"sqlite:///{tmp_path / 'pipeline.db'}") as other_db:
        other = SqlQuotaStateStore(other_db)

        def transition(current):
            seen.append(current)
            if len(seen) == 1:
                # another process grants two slots between our read and write
                other.save("GLOBAL", QuotaState(2, 50, TODAY))
            return apply_command(current, "acquire", {"reserveSeconds": 10}, TODAY)

        _, response = store.apply("GLOBAL", transition)

    assert seen == [QuotaState(0, 0, TODAY), QuotaState(2, 50, TODAY)]
    assert response == {"ok": True, "running": 3, "dailySeconds": 60}
    assert store.load("GLOBAL") == QuotaState(3, 60, TODAY)


def test_sql_store_gives_up_when_row_keeps_changing(db_manager, tmp_path):
    store = SqlQuotaStateStore(db_manager, max_attempts=3)
    store.save("GLOBAL", QuotaState(0, 0, TODAY))
    calls = []

    with DatabaseManager(f"sqlite:///{tmp_path / 'pipeline.db'}") as other_db:
        other = SqlQuotaStateStore(other_db)

        def transition(current):
            calls.append(current)
            other.save("GLOBAL", QuotaState(len(calls), 0, TODAY))
            return apply_command(current, "release", {}, TODAY)

        with pytest.raises(QuotaStoreConflictError):
            store.apply("GLOBAL", transition)

    assert len(calls) == 3
    assert store.load("GLOBAL") == QuotaState(3, 0, TODAY)


def test_failed_persist_does_not_change_state(fake_clock):
    class FlakyStore(InMemoryQuotaStateStore):
        fail = False

        def save(self, name, state):
            if self.fail:
                raise RuntimeError("disk full")
            super().save(name, state)

    store = FlakyStore()
    actor = BrowserQuotaActor("FLAKY", store=store, clock=fake_clock)
    try:
        actor.acquire(10, 3, 600)
        store.fail = True
        with pytest.raises(RuntimeError):
            actor.acquire(10, 3, 600)
        store.fail = False
        assert actor.status()["running"] == 1
    finally:
        actor.shutdown()


def test_registry_returns_same_actor_per_name():
    from worknuggets.services.browser_quota import configure_quota_store

    configure_quota_store(InMemoryQuotaStateStore())

    assert get_quota_actor("GLOBAL") is get_quota_actor("GLOBAL")
    assert get_quota_actor("GLOBAL") is not get_quota_actor("OTHER")

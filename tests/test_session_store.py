from __future__ import annotations

import asyncio

import pytest

from assistant_chat.session_store import SessionStore, SessionSweeper


def test_history_ends_with_appended_turn(clock):
    store = SessionStore(clock=clock)
    store.append("u1", "user", "hi")
    store.append("u1", "assistant", "hello")

    last = store.history("u1")[-1]
    assert (last.role, last.content) == ("assistant", "hello")


def test_get_or_create_is_lazy_and_stable(clock):
    store = SessionStore(clock=clock)
    assert "u1" not in store

    session = store.get_or_create("u1")
    assert store.get_or_create("u1") is session
    assert session.turns == []
    assert session.created_at == clock.now


def test_history_without_session_does_not_create_one(clock):
    store = SessionStore(clock=clock)
    assert store.history("ghost") == []
    assert len(store) == 0


def test_history_limit_returns_most_recent(clock):
    store = SessionStore(clock=clock)
    for i in range(5):
        store.append("u1", "user", f"m{i}")

    assert [t.content for t in store.history("u1", limit=2)] == ["m3", "m4"]
    assert len(store.history("u1", limit=10)) == 5


def test_history_returns_copy(clock):
    store = SessionStore(clock=clock)
    store.append("u1", "user", "hi")
    turns = store.history("u1")
    turns.clear()
    assert len(store.history("u1")) == 1


def test_last_activity_is_non_decreasing(clock):
    store = SessionStore(clock=clock)
    store.append("u1", "user", "a")
    first = store.get_or_create("u1").last_activity

    clock.advance(-50)  # wall clock stepped backwards
    store.append("u1", "user", "b")
    second = store.get_or_create("u1").last_activity

    clock.advance(100)
    store.append("u1", "user", "c")
    third = store.get_or_create("u1").last_activity

    assert first <= second <= third
    timestamps = [t.timestamp for t in store.history("u1")]
    assert timestamps == sorted(timestamps)


def test_trim_keeps_last_twenty_non_system_and_all_system(clock):
    store = SessionStore(clock=clock)
    store.append("u1", "system", "context-0")
    for i in range(30):
        store.append("u1", "user" if i % 2 == 0 else "assistant", f"m{i}")
        if i == 10:
            store.append("u1", "system", "context-1")

    turns = store.history("u1")
    non_system = [t for t in turns if t.role != "system"]
    system = [t for t in turns if t.role == "system"]

    assert [t.content for t in non_system] == [f"m{i}" for i in range(10, 30)]
    assert [t.content for t in system] == ["context-0", "context-1"]
    # system turns come first after a trim
    assert turns[:2] == system


def test_no_trim_at_exact_cap(clock):
    store = SessionStore(max_non_system_turns=3, clock=clock)
    store.append("u1", "user", "a")
    store.append("u1", "system", "s")
    store.append("u1", "user", "b")
    store.append("u1", "user", "c")

    assert [t.content for t in store.history("u1")] == ["a", "s", "b", "c"]


def test_append_rejects_unknown_role(clock):
    store = SessionStore(clock=clock)
    with pytest.raises(ValueError):
        store.append("u1", "tool", "x")


def test_clear_empties_history(clock):
    store = SessionStore(clock=clock)
    store.append("u1", "user", "hi")
    store.clear("u1")
    assert store.history("u1") == []


def test_clear_missing_session_is_noop(clock):
    store = SessionStore(clock=clock)
    store.clear("nobody")
    assert len(store) == 0


def test_sweep_idle_removes_only_stale_sessions(clock):
    store = SessionStore(clock=clock)
    store.append("old", "user", "hi")
    clock.advance(100)
    store.append("fresh", "user", "hi")
    clock.advance(50)

    removed = store.sweep_idle(120)

    assert removed == 1
    assert "old" not in store
    assert [t.content for t in store.history("fresh")] == ["hi"]


def test_sweep_idle_boundary_is_exclusive(clock):
    store = SessionStore(clock=clock)
    store.append("u1", "user", "hi")
    clock.advance(60)
    assert store.sweep_idle(60) == 0
    clock.advance(1)
    assert store.sweep_idle(60) == 1


def test_active_sessions_reports_counts(clock):
    store = SessionStore(clock=clock)
    store.append("u1", "user", "a")
    store.append("u1", "assistant", "b")

    [summary] = store.active_sessions()
    assert summary["user_id"] == "u1"
    assert summary["turn_count"] == 2


def test_sweeper_runs_periodically(clock):
    store = SessionStore(clock=clock)
    store.append("u1", "user", "hi")
    clock.advance(10)

    async def scenario():
        sweeper = SessionSweeper(store, max_age_seconds=5, interval_seconds=0.01)
        sweeper.start()
        assert sweeper.running
        await asyncio.sleep(0.05)
        await sweeper.stop()
        assert not sweeper.running

    asyncio.run(scenario())
    assert len(store) == 0


def test_sweeper_rejects_non_positive_interval(clock):
    with pytest.raises(ValueError):
        SessionSweeper(SessionStore(clock=clock), interval_seconds=0)

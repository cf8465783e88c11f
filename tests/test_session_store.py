"""Tests for SessionStore lifecycle, slot writes and expiry."""

from __future__ import annotations

import asyncio

import pytest

from services.session_store import SessionStore


def test_get_or_create_returns_same_session(store: SessionStore, clock) -> None:
    first = store.get_or_create("7", "42")
    second = store.get_or_create("7", "99")

    assert first is second
    assert first.chat_id == "42"
    assert first.start_time == clock.now
    assert len(store) == 1
    assert "7" in store


def test_new_session_is_empty(store: SessionStore) -> None:
    session = store.get_or_create("7", "42")

    assert session.slots == [None] * 9
    assert session.extracted_texts == [None] * 9
    assert session.is_empty()


@pytest.mark.asyncio
class TestSlotWrites:
    async def test_last_capture_per_digit_wins(self, store, releaser, artifacts) -> None:
        session = store.get_or_create("7", "42")
        sequence = [(3, artifacts[1]), (5, artifacts[2]), (3, artifacts[3]), (1, artifacts[4]), (3, artifacts[5])]
        for digit, artifact in sequence:
            await store.assign_slot(session, digit, artifact)

        assert session.slots[2] == artifacts[5]
        assert session.slots[4] == artifacts[2]
        assert session.slots[0] == artifacts[4]
        # each overwritten artifact released exactly once
        assert releaser.released == [artifacts[1], artifacts[3]]

    async def test_assign_rejects_out_of_range_slot(self, store, artifacts) -> None:
        session = store.get_or_create("7", "42")
        with pytest.raises(ValueError):
            await store.assign_slot(session, 0, artifacts[1])
        with pytest.raises(ValueError):
            await store.assign_slot(session, 10, artifacts[1])

    async def test_overwrite_still_happens_when_release_fails(self, store, releaser, artifacts) -> None:
        session = store.get_or_create("7", "42")
        await store.assign_slot(session, 2, artifacts[1])
        releaser.fail_for.add(artifacts[1])

        await store.assign_slot(session, 2, artifacts[2])

        assert session.slots[1] == artifacts[2]

    async def test_release_slot_clears_and_returns_artifact(self, store, releaser, artifacts) -> None:
        session = store.get_or_create("7", "42")
        await store.assign_slot(session, 4, artifacts[4])

        released = await store.release_slot(session, 4)

        assert released == artifacts[4]
        assert session.slots[3] is None
        assert await store.release_slot(session, 4) is None
        assert releaser.released == [artifacts[4]]


@pytest.mark.asyncio
class TestReset:
    async def test_reset_clears_contents_and_keeps_identity(self, store, clock, releaser, artifacts) -> None:
        session = store.get_or_create("7", "42")
        await store.assign_slot(session, 1, artifacts[1])
        session.extracted_texts[0] = "hello"
        clock.advance(120)

        await store.reset(session)

        assert store.get("7") is session
        assert session.slots == [None] * 9
        assert session.extracted_texts == [None] * 9
        assert session.start_time == clock.now
        assert releaser.released == [artifacts[1]]


@pytest.mark.asyncio
class TestSweep:
    async def test_expired_session_releases_all_artifacts_then_disappears(self, store, clock, releaser, artifacts) -> None:
        session = store.get_or_create("7", "42")
        await store.assign_slot(session, 1, artifacts[1])
        await store.assign_slot(session, 3, artifacts[3])
        clock.advance(45 * 60 + 1)

        released = await store.sweep_expired()

        assert released == [artifacts[1], artifacts[3]]
        assert sorted(releaser.released) == sorted([artifacts[1], artifacts[3]])
        assert store.get("7") is None

    async def test_fresh_session_survives_sweep(self, store, clock, artifacts) -> None:
        session = store.get_or_create("7", "42")
        await store.assign_slot(session, 1, artifacts[1])
        clock.advance(45 * 60)

        assert await store.sweep_expired() == []
        assert store.get("7") is session

    async def test_explicit_now_and_timeout(self, store, clock) -> None:
        store.get_or_create("7", "42")

        assert await store.sweep_expired(now=clock.now + 11, timeout_seconds=10) == []
        assert store.get("7") is None

    async def test_release_failure_does_not_abort_other_sessions(self, store, clock, releaser, artifacts) -> None:
        first = store.get_or_create("1", "42")
        second = store.get_or_create("2", "42")
        await store.assign_slot(first, 1, artifacts[1])
        await store.assign_slot(second, 2, artifacts[2])
        releaser.fail_for.add(artifacts[1])
        clock.advance(45 * 60 + 1)

        released = await store.sweep_expired()

        assert released == [artifacts[2]]
        assert store.get("1") is None
        assert store.get("2") is None

    async def test_busy_session_is_deferred(self, store, clock, releaser, artifacts) -> None:
        session = store.get_or_create("7", "42")
        await store.assign_slot(session, 1, artifacts[1])
        clock.advance(45 * 60 + 1)

        async with store.running(session):
            assert await store.sweep_expired() == []
            assert store.get("7") is session
            assert session.slots[0] == artifacts[1]

        assert session.busy is False
        assert await store.sweep_expired() == [artifacts[1]]

    async def test_locked_session_is_deferred(self, store, clock, artifacts) -> None:
        session = store.get_or_create("7", "42")
        await store.assign_slot(session, 1, artifacts[1])
        clock.advance(45 * 60 + 1)

        async with store.lock_for("7"):
            assert await store.sweep_expired() == []
        assert store.get("7") is session

        assert await store.sweep_expired() == [artifacts[1]]
        assert store.get("7") is None

    async def test_sweep_defers_to_a_batch_queued_on_the_lock(self, store, clock, artifacts) -> None:
        session = store.get_or_create("7", "42")
        await store.assign_slot(session, 1, artifacts[1])
        clock.advance(45 * 60 + 1)

        async def batch() -> None:
            async with store.lock_for("7"):
                async with store.running(session):
                    await store.reset(session)

        async with store.lock_for("7"):
            waiting = asyncio.create_task(batch())
            await asyncio.sleep(0)

        assert await store.sweep_expired() == []
        await waiting

        assert store.get("7") is session
        assert session.is_empty()
        assert session.start_time == clock.now

    async def test_purged_session_leaves_no_lock_behind(self, store, clock) -> None:
        store.get_or_create("7", "42")
        async with store.lock_for("7"):
            assert store.is_locked("7")
        clock.advance(45 * 60 + 1)

        await store.sweep_expired()

        assert store.get("7") is None
        assert not store.is_locked("7")
        assert store._locks == {}


@pytest.mark.asyncio
async def test_lock_for_is_per_user(store: SessionStore) -> None:
    order = []

    async def hold(user_id: str, label: str) -> None:
        async with store.lock_for(user_id):
            order.append(f"{label}-in")
            await asyncio.sleep(0.01)
            order.append(f"{label}-out")

    await asyncio.gather(hold("1", "a"), hold("1", "b"), hold("2", "c"))

    assert order.index("a-out") < order.index("b-in")
    assert order.index("c-in") < order.index("a-out")
    assert store._locks == {}


@pytest.mark.asyncio
async def test_snapshot_lists_occupied_slots(store, clock, artifacts) -> None:
    session = store.get_or_create("7", "42")
    await store.assign_slot(session, 5, artifacts[5])
    await store.assign_slot(session, 2, artifacts[2])
    clock.advance(30)

    snapshot = store.snapshot()

    assert snapshot == [
        {"user_id": "7", "chat_id": "42", "occupied_slots": [2, 5], "age_seconds": 30.0, "busy": False}
    ]

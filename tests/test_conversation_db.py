import asyncio
from datetime import timedelta

import pytest

from clinic_reminders.database.conversation_db import (
    InMemoryConversationStore, SQLiteConversationStore, create_conversation_store,
)
from clinic_reminders.models.conversation import ConversationRecord


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryConversationStore(default_country_code="353")
    return SQLiteConversationStore(str(tmp_path / "reminders.db"), default_country_code="353")


def make_record(event_id="evt1", created_at=None):
    kwargs = dict(event_id=event_id, patient_name="John Smith",
                  appointment_time="2026-10-20T15:00:00+01:00", original_phone="0871234567")
    if created_at is not None:
        kwargs["created_at"] = created_at
    return ConversationRecord(**kwargs)


def test_put_and_get_across_phone_formats(any_store):
    async def scenario():
        stored = await any_store.put("+353871234567", make_record())
        assert stored.normalized_phone == "353871234567"
        for phone in ("353871234567", "+353 87 123 4567", "0871234567", "+3530871234567"):
            found = await any_store.get(phone)
            assert found is not None
            assert found.event_id == "evt1"
            assert found.patient_name == "John Smith"

    asyncio.run(scenario())


def test_new_reminder_replaces_previous_record(any_store):
    async def scenario():
        await any_store.put("+353871234567", make_record("old"))
        await any_store.put("0871234567", make_record("new"))
        assert (await any_store.get("353871234567")).event_id == "new"
        assert await any_store.count() == 1

    asyncio.run(scenario())


def test_delete(any_store):
    async def scenario():
        await any_store.put("+353871234567", make_record())
        assert await any_store.delete("353871234567") is True
        assert await any_store.get("+353871234567") is None
        # deleting again is a no-op
        assert await any_store.delete("353871234567") is False

    asyncio.run(scenario())


def test_get_unknown_phone(any_store):
    assert asyncio.run(any_store.get("+15550001111")) is None
    assert asyncio.run(any_store.get("")) is None


def test_put_rejects_unusable_phone(any_store):
    with pytest.raises(ValueError):
        asyncio.run(any_store.put("n/a", make_record()))


def test_evict_older_than(any_store, now):
    async def scenario():
        await any_store.put("+353871111111", make_record("stale", created_at=now - timedelta(days=8)))
        await any_store.put("+353872222222", make_record("recent", created_at=now - timedelta(days=6)))
        removed = await any_store.evict_older_than(timedelta(days=7), now=now)
        assert removed == 1
        assert await any_store.get("+353871111111") is None
        assert (await any_store.get("+353872222222")).event_id == "recent"

    asyncio.run(scenario())


def test_sqlite_store_survives_reopen(tmp_path):
    db_path = str(tmp_path / "reminders.db")
    first = SQLiteConversationStore(db_path, default_country_code="353")
    asyncio.run(first.put("+353871234567", make_record()))

    reopened = SQLiteConversationStore(db_path, default_country_code="353")
    record = asyncio.run(reopened.get("0871234567"))
    assert record.event_id == "evt1"
    assert record.created_at.tzinfo is not None


def test_factory(tmp_path):
    assert isinstance(create_conversation_store("memory"), InMemoryConversationStore)
    sqlite_store = create_conversation_store("sqlite", db_path=str(tmp_path / "x.db"))
    assert isinstance(sqlite_store, SQLiteConversationStore)
    with pytest.raises(ValueError):
        create_conversation_store("redis")


def test_miss_and_count_do_not_load_every_record(any_store, monkeypatch):
    asyncio.run(any_store.put("+353871234567", make_record()))
    asyncio.run(any_store.put("+353879999999", make_record("evt2")))

    async def no_full_scan():
        raise AssertionError("full table read")

    monkeypatch.setattr(any_store, "_all", no_full_scan)

    assert asyncio.run(any_store.get("+353861111111")) is None
    assert asyncio.run(any_store.count()) == 2

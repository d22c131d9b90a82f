import asyncio
from datetime import timedelta

from clinic_reminders.agents.janitor import Janitor
from clinic_reminders.models.conversation import ConversationRecord


def test_sweep_removes_stale_conversations_and_links(store, link_store, now):
    def record(event_id, age):
        return ConversationRecord(event_id=event_id, patient_name="P",
                                  appointment_time=(now - age).isoformat(),
                                  original_phone="087", created_at=now - age)

    asyncio.run(store.put("+353871111111", record("stale", timedelta(days=8))))
    asyncio.run(store.put("+353872222222", record("fresh", timedelta(days=6))))
    asyncio.run(link_store.create_link("stale", "P", (now - timedelta(days=9)).isoformat()))
    asyncio.run(link_store.create_link("soon", "Q", (now + timedelta(days=1)).isoformat()))

    removed = asyncio.run(Janitor(store, link_store, retention_days=7).sweep(now))

    assert removed == {"conversations_removed": 1, "links_removed": 1}
    remaining = asyncio.run(store.all())
    assert [r.event_id for r in remaining] == ["fresh"]


def test_sweep_survives_store_errors(link_store, now):
    class BrokenStore:
        async def evict_older_than(self, duration, now=None):
            raise RuntimeError("disk full")

    removed = asyncio.run(Janitor(BrokenStore(), link_store, retention_days=7).sweep(now))

    assert removed == {"conversations_removed": 0, "links_removed": 0}


def test_sweep_without_link_store(store, now):
    assert asyncio.run(Janitor(store, retention_days=7).sweep(now))["links_removed"] == 0

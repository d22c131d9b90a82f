"""
Conversation state: which appointment each phone number is expected to reply about.

Two interchangeable backends share one contract:
  - InMemoryConversationStore: process memory. A restart drops pending
    conversations; acceptable for ephemeral/serverless deployments.
  - SQLiteConversationStore: durable, survives restarts.
"""
import asyncio
import os
import sqlite3
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from ..models.conversation import ConversationRecord
from ..utils.config import config
from ..utils.phone import normalize, mask_phone

logger = logging.getLogger(__name__)


class ConversationStore:
    """Keyed by normalized phone number. Subclasses implement the _-prefixed hooks."""

    def __init__(self, default_country_code: Optional[str] = None):
        self.default_country_code = (
            config.DEFAULT_COUNTRY_PREFIX if default_country_code is None else default_country_code
        )

    def key(self, phone: str) -> str:
        return normalize(phone, self.default_country_code)

    async def put(self, phone: str, record: ConversationRecord) -> ConversationRecord:
        key = self.key(phone)
        if not key:
            raise ValueError(f"Cannot store a conversation for unusable phone {phone!r}")
        stored = record.model_copy(update={"normalized_phone": key})
        await self._put(key, stored)
        logger.info(f"Stored conversation for {mask_phone(phone)} (event {stored.event_id})")
        return stored

    async def get(self, phone: str) -> Optional[ConversationRecord]:
        key = self.key(phone)
        record = await self._get(key) if key else None
        if record is None:
            # a miss for a number we just reminded means the store is not shared/durable
            logger.info(f"No conversation found for {mask_phone(phone)} ({await self.count()} active)")
        else:
            logger.info(f"Found conversation for {mask_phone(phone)} (event {record.event_id})")
        return record

    async def delete(self, phone: str) -> bool:
        key = self.key(phone)
        removed = await self._delete(key) if key else False
        if removed:
            logger.info(f"Cleared conversation for {mask_phone(phone)}")
        return removed

    async def evict_older_than(self, duration: timedelta, now: Optional[datetime] = None) -> int:
        cutoff = (now or datetime.now(timezone.utc)) - duration
        removed = await self._evict_before(cutoff)
        if removed:
            logger.info(f"Evicted {removed} conversation(s) created before {cutoff.isoformat()}")
        return removed

    async def all(self) -> List[ConversationRecord]:
        return await self._all()

    async def count(self) -> int:
        return await self._count()

    async def _put(self, key: str, record: ConversationRecord) -> None:
        raise NotImplementedError

    async def _get(self, key: str) -> Optional[ConversationRecord]:
        raise NotImplementedError

    async def _delete(self, key: str) -> bool:
        raise NotImplementedError

    async def _evict_before(self, cutoff: datetime) -> int:
        raise NotImplementedError

    async def _all(self) -> List[ConversationRecord]:
        raise NotImplementedError

    async def _count(self) -> int:
        raise NotImplementedError


class InMemoryConversationStore(ConversationStore):
    def __init__(self, default_country_code: Optional[str] = None):
        super().__init__(default_country_code)
        self._records: Dict[str, ConversationRecord] = {}

    async def _put(self, key, record):
        self._records[key] = record

    async def _get(self, key):
        return self._records.get(key)

    async def _delete(self, key):
        return self._records.pop(key, None) is not None

    async def _evict_before(self, cutoff):
        stale = [k for k, r in self._records.items() if r.created_at < cutoff]
        for k in stale:
            del self._records[k]
        return len(stale)

    async def _all(self):
        return list(self._records.values())

    async def _count(self):
        return len(self._records)


class SQLiteConversationStore(ConversationStore):
    def __init__(self, db_path: str = None, default_country_code: Optional[str] = None):
        super().__init__(default_country_code)
        self.db_path = db_path or config.DB_PATH
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
        self._init_db()

    def _connect(self):
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        """Initialize conversations table"""
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS conversations (
                    normalized_phone TEXT PRIMARY KEY,
                    event_id TEXT NOT NULL,
                    patient_name TEXT NOT NULL,
                    appointment_time TEXT NOT NULL,
                    original_phone TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def _put_sync(self, key, record):
        conn = self._connect()
        try:
            conn.execute("""
                INSERT OR REPLACE INTO conversations
                (normalized_phone, event_id, patient_name, appointment_time, original_phone, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                key, record.event_id, record.patient_name, record.appointment_time,
                record.original_phone, record.created_at.astimezone(timezone.utc).isoformat()
            ))
            conn.commit()
        finally:
            conn.close()

    def _get_sync(self, key):
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM conversations WHERE normalized_phone = ?", (key,)
            ).fetchone()
        finally:
            conn.close()
        return ConversationRecord.from_row(row) if row else None

    def _delete_sync(self, key):
        conn = self._connect()
        try:
            cursor = conn.execute("DELETE FROM conversations WHERE normalized_phone = ?", (key,))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def _evict_sync(self, cutoff):
        conn = self._connect()
        try:
            # created_at is stored as UTC ISO text, so string order is time order
            cursor = conn.execute(
                "DELETE FROM conversations WHERE created_at < ?",
                (cutoff.astimezone(timezone.utc).isoformat(),)
            )
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()

    def _all_sync(self):
        conn = self._connect()
        try:
            rows = conn.execute("SELECT * FROM conversations ORDER BY created_at").fetchall()
        finally:
            conn.close()
        return [ConversationRecord.from_row(r) for r in rows]

    def _count_sync(self):
        conn = self._connect()
        try:
            return conn.execute("SELECT COUNT(*) FROM conversations").fetchone()[0]
        finally:
            conn.close()

    async def _put(self, key, record):
        await asyncio.to_thread(self._put_sync, key, record)

    async def _get(self, key):
        return await asyncio.to_thread(self._get_sync, key)

    async def _delete(self, key):
        return await asyncio.to_thread(self._delete_sync, key)

    async def _evict_before(self, cutoff):
        return await asyncio.to_thread(self._evict_sync, cutoff)

    async def _all(self):
        return await asyncio.to_thread(self._all_sync)

    async def _count(self):
        return await asyncio.to_thread(self._count_sync)


def create_conversation_store(kind: str = None, db_path: str = None,
                              default_country_code: Optional[str] = None) -> ConversationStore:
    kind = (kind or config.CONVERSATION_STORE).lower()
    if kind == "memory":
        logger.info("Using in-memory conversation state (lost on restart)")
        return InMemoryConversationStore(default_country_code)
    if kind == "sqlite":
        return SQLiteConversationStore(db_path, default_country_code)
    raise ValueError(f"Unknown conversation store: {kind}")

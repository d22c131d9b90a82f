import asyncio
import json
import os
import secrets
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from filelock import FileLock

from ..models.conversation import ActionLink
from ..utils.config import config
from ..utils.date_utils import parse_event_time

logger = logging.getLogger(__name__)


class ActionLinkError(Exception):
    """Unknown or already used action token"""


class ActionLinkStore:
    """One-time appointment action tokens, kept in a JSON file under a file lock"""

    def __init__(self, path: str = None):
        self.path = path or config.LINKS_PATH
        links_dir = os.path.dirname(self.path)
        if links_dir:
            os.makedirs(links_dir, exist_ok=True)
        self._lock = FileLock(self.path + ".lock", timeout=30)

    def _load(self) -> Dict[str, dict]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _save(self, links: Dict[str, dict]) -> None:
        tmp = self.path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(links, f, indent=2, ensure_ascii=False)
        os.replace(tmp, self.path)

    def _create_sync(self, event_id, patient_name, appointment_time) -> ActionLink:
        link = ActionLink(
            token=secrets.token_hex(32),
            event_id=event_id,
            patient_name=patient_name,
            appointment_time=appointment_time,
        )
        with self._lock:
            links = self._load()
            links[link.token] = link.to_dict()
            self._save(links)
        return link

    def _get_sync(self, token) -> Optional[ActionLink]:
        with self._lock:
            data = self._load().get(token)
        return ActionLink(**data) if data else None

    def _mark_used_sync(self, token, action) -> ActionLink:
        with self._lock:
            links = self._load()
            data = links.get(token)
            if not data:
                raise ActionLinkError("Invalid or expired link")
            if data.get("used"):
                raise ActionLinkError("This link has already been used")
            data.update({
                "used": True,
                "action": action,
                "action_at": datetime.now(timezone.utc).isoformat(),
            })
            self._save(links)
        return ActionLink(**data)

    def _release_sync(self, token) -> None:
        with self._lock:
            links = self._load()
            data = links.get(token)
            if not data:
                return
            data.update({"used": False, "action": None, "action_at": None})
            self._save(links)

    def _cleanup_sync(self, max_age, now) -> int:
        cutoff = now - max_age
        with self._lock:
            links = self._load()
            stale = []
            for token, data in links.items():
                try:
                    appointment_at = parse_event_time(data["appointment_time"])
                except (KeyError, ValueError) as e:
                    logger.warning(f"Dropping unreadable action link: {e}")
                    stale.append(token)
                    continue
                if appointment_at < cutoff:
                    stale.append(token)
            for token in stale:
                del links[token]
            if stale:
                self._save(links)
        return len(stale)

    async def create_link(self, event_id: str, patient_name: str, appointment_time: str) -> ActionLink:
        link = await asyncio.to_thread(self._create_sync, event_id, patient_name, appointment_time)
        logger.info(f"Created action link for event {event_id}")
        return link

    async def get(self, token: str) -> Optional[ActionLink]:
        return await asyncio.to_thread(self._get_sync, token)

    async def mark_used(self, token: str, action: str) -> ActionLink:
        return await asyncio.to_thread(self._mark_used_sync, token, action)

    async def release(self, token: str) -> None:
        """Undo a claim whose action could not be carried out, so the link works again"""
        await asyncio.to_thread(self._release_sync, token)
        logger.info("Released action link claim after a failed action")

    async def cleanup(self, max_age: timedelta, now: Optional[datetime] = None) -> int:
        """Remove links whose appointment is more than max_age in the past"""
        removed = await asyncio.to_thread(self._cleanup_sync, max_age, now or datetime.now(timezone.utc))
        if removed:
            logger.info(f"Removed {removed} expired action link(s)")
        return removed

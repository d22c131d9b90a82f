import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from ..database.conversation_db import ConversationStore
from ..database.link_db import ActionLinkStore
from ..utils.config import config
from ..utils.date_utils import utc_now

logger = logging.getLogger(__name__)


class Janitor:
    """Drops conversations nobody answered and action links for past appointments"""

    def __init__(self, store: ConversationStore, link_store: Optional[ActionLinkStore] = None,
                 retention_days: Optional[int] = None):
        self.store = store
        self.link_store = link_store
        self.retention = timedelta(days=config.RETENTION_DAYS if retention_days is None else retention_days)

    async def sweep(self, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or utc_now()
        removed = {"conversations_removed": 0, "links_removed": 0}

        try:
            removed["conversations_removed"] = await self.store.evict_older_than(self.retention, now)
        except Exception as e:
            logger.error(f"Error evicting stale conversations: {e}")

        if self.link_store is not None:
            try:
                removed["links_removed"] = await self.link_store.cleanup(self.retention, now)
            except Exception as e:
                logger.error(f"Error cleaning up action links: {e}")

        logger.info(f"Cleanup done: {removed}")
        return removed

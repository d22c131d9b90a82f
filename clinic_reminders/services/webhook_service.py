"""
Inbound WhatsApp webhook: subscription verification and message dispatch.

Nothing raised while handling a delivery reaches the transport; the provider
retries on non-2xx responses and a broken handler would be flooded.
"""
import asyncio
import logging
import weakref
from typing import Any, Dict, List, Optional, Tuple

from ..agents.intent_agent import Intent, IntentClassifier, default_classifier
from ..agents.reply_agent import ReplyHandler, ReplyTransitionError
from ..database.conversation_db import ConversationStore
from ..services.notification_service import Notifier
from ..utils.config import config
from ..utils.phone import mask_phone

logger = logging.getLogger(__name__)

WHATSAPP_OBJECT = "whatsapp_business_account"


def extract_messages(payload: Dict[str, Any]) -> List[Tuple[str, str, Optional[str]]]:
    """(sender, text, message_id) for every text or button message in a delivery.

    Status callbacks and other message types yield nothing.
    """
    if not isinstance(payload, dict) or payload.get("object") != WHATSAPP_OBJECT:
        return []
    try:
        value = payload["entry"][0]["changes"][0]["value"]
    except (KeyError, IndexError, TypeError):
        return []

    messages = []
    for message in value.get("messages") or []:
        msg_type = message.get("type")
        if msg_type == "text":
            text = (message.get("text") or {}).get("body")
        elif msg_type == "button":
            button = message.get("button") or {}
            text = button.get("text") or button.get("payload")
        else:
            logger.info(f"Ignoring non-text message type: {msg_type}")
            continue

        sender = message.get("from")
        if sender and text:
            messages.append((sender, text, message.get("id")))
    return messages


class WebhookService:
    def __init__(self, store: ConversationStore, reply_handler: ReplyHandler, notifier: Notifier,
                 classifier: Optional[IntentClassifier] = None, verify_token: Optional[str] = None):
        self.store = store
        self.reply_handler = reply_handler
        self.notifier = notifier
        self.classifier = classifier or default_classifier
        self.verify_token = config.WHATSAPP_VERIFY_TOKEN if verify_token is None else verify_token
        # per-phone locks live only while someone holds or waits on them
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._background_tasks = set()

    def verify(self, mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> Optional[str]:
        """Echo the challenge when the subscription request carries our token"""
        if mode == "subscribe" and self.verify_token and token == self.verify_token:
            logger.info("Webhook verified")
            return challenge
        logger.warning("Webhook verification failed")
        return None

    async def handle_delivery(self, payload: Dict[str, Any]) -> int:
        """Process one webhook POST. Returns the number of messages handled."""
        handled = 0
        try:
            messages = extract_messages(payload)
        except Exception as e:
            logger.error(f"Unreadable webhook payload: {e}")
            return 0

        for sender, text, message_id in messages:
            try:
                await self.handle_inbound_text(sender, text, message_id)
                handled += 1
            except Exception as e:
                logger.exception(f"Error processing message from {mask_phone(sender)}: {e}")
        return handled

    async def handle_inbound_text(self, sender: str, text: str, message_id: Optional[str] = None) -> str:
        """Dispatch one patient message. Returns what happened, for logs and tests."""
        if message_id:
            self._mark_read_in_background(message_id)

        key = self.store.key(sender)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock

        async with lock:
            # re-read inside the lock; a duplicate delivery may have just settled it
            record = await self.store.get(sender)
            if record is None:
                logger.warning(f"Message from unknown sender {mask_phone(sender)} dropped")
                return "unknown_sender"

            intent = self.classifier.classify(text)
            logger.info(f"Reply from {mask_phone(sender)} for event {record.event_id}: {intent.value}")
            try:
                marker = await self.reply_handler.handle(sender, record, intent)
            except ReplyTransitionError as e:
                logger.error(f"Reply transition failed, conversation kept for retry: {e}")
                return "failed"
            if marker is None and intent != Intent.UNKNOWN:
                return "already_settled"
            return intent.value

    def _mark_read_in_background(self, message_id: str) -> None:
        task = asyncio.create_task(self.notifier.mark_read(message_id))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

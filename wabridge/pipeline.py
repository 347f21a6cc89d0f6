"""
Ingestion pipeline: raw provider events in, canonical records out.

Every accepted message is written to the store before it is published, so a
subscriber never sees a record that is not durably stored.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from wabridge.bus import EventBus
from wabridge.events import MessagingProvider, RawChat, RawContact, RawMessage, RevokeEvent
from wabridge.metrics import record_ingestion, record_media_download
from wabridge.schemas import (
    ChatRecord,
    ContactRecord,
    EventEnvelope,
    MessageRecord,
    normalize_message_type,
)
from wabridge.storage import Store

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    chats_synced: int = 0
    chats_failed: int = 0
    contacts_synced: int = 0
    contacts_failed: int = 0


# =============================================================================
# Mapping
# =============================================================================

def map_message(raw: RawMessage) -> MessageRecord:
    """Map a raw provider message onto the canonical shape (without media)."""
    return MessageRecord(
        id=raw.id,
        chat_id=raw.from_,
        sender_id=raw.author or raw.from_,
        text=raw.body,
        timestamp=raw.timestamp * 1000,
        is_group=raw.is_group,
        from_me=raw.from_me,
        type=normalize_message_type(raw.type),
        has_media=raw.has_media,
        caption=raw.caption or None,
    )


def map_chat(raw) -> ChatRecord:
    if not isinstance(raw, RawChat):
        raw = RawChat.model_validate(raw)
    return ChatRecord(
        id=raw.id,
        name=raw.name,
        is_group=raw.is_group,
        unread_count=max(raw.unread_count, 0),
        last_message_id=raw.last_message_id,
    )


def map_contact(raw) -> ContactRecord:
    if not isinstance(raw, RawContact):
        raw = RawContact.model_validate(raw)
    # Saved name, then the name the contact chose, then the bare number
    return ContactRecord(
        id=raw.id,
        name=raw.name or raw.pushname or raw.user,
        number=raw.number,
        is_business=raw.is_business,
    )


class IngestionPipeline:
    def __init__(self, provider: MessagingProvider, store: Store, bus: EventBus):
        self._provider = provider
        self._store = store
        self._bus = bus

    async def ingest_message(self, raw: RawMessage) -> Optional[MessageRecord]:
        """
        Normalize, persist and publish one inbound message.

        Returns:
            The stored record, or None if it could not be persisted (in
            which case nothing is published).
        """
        logger.debug(f"New message {raw.id} from {raw.from_}")
        record = map_message(raw)

        if raw.has_media:
            record = await self._attach_media(record, raw)

        stored = await asyncio.to_thread(self._store.upsert_message, record)
        if not stored:
            record_ingestion("store_error")
            logger.error(f"Message {record.id} not stored, skipping publish")
            return None

        record_ingestion("stored")
        await self._bus.publish(EventEnvelope.new_message(record))
        return record

    async def _attach_media(self, record: MessageRecord, raw: RawMessage) -> MessageRecord:
        try:
            media = await self._provider.download_media(raw.id)
        except Exception as e:
            record_media_download("failed")
            logger.warning(f"Media download failed for message {raw.id}: {e}")
            return record

        if media is None or not media.data:
            record_media_download("failed")
            logger.warning(f"Media download returned nothing for message {raw.id}")
            return record

        record_media_download("ok")
        return record.model_copy(update={
            "media_url": media.data,
            "mime_type": media.mimetype or raw.mimetype,
        })

    def handle_revoke(self, event: RevokeEvent) -> None:
        # Deleted messages stay in the store
        logger.info(f"Message revoked: {event.message_id}")

    async def sync_all(self) -> SyncResult:
        """
        Fetch every chat and contact from the provider and upsert them.

        A record that fails to map or persist is logged and skipped. Nothing
        here is published to subscribers.
        """
        logger.info("Syncing all chats and contacts")
        result = SyncResult()

        try:
            chats = await self._provider.get_chats()
        except Exception as e:
            logger.error(f"Error fetching chats: {e}")
            chats = []

        for raw in chats:
            try:
                record = map_chat(raw)
            except Exception as e:
                logger.error(f"Error mapping chat {getattr(raw, 'id', '?')}: {e}")
                result.chats_failed += 1
                continue
            if await asyncio.to_thread(self._store.upsert_chat, record):
                result.chats_synced += 1
            else:
                result.chats_failed += 1
        logger.info(f"Synced {result.chats_synced} chats ({result.chats_failed} failed)")

        try:
            contacts = await self._provider.get_contacts()
        except Exception as e:
            logger.error(f"Error fetching contacts: {e}")
            contacts = []

        for raw in contacts:
            try:
                record = map_contact(raw)
            except Exception as e:
                logger.error(f"Error mapping contact {getattr(raw, 'id', '?')}: {e}")
                result.contacts_failed += 1
                continue
            if await asyncio.to_thread(self._store.upsert_contact, record):
                result.contacts_synced += 1
            else:
                result.contacts_failed += 1
        logger.info(f"Synced {result.contacts_synced} contacts ({result.contacts_failed} failed)")

        return result

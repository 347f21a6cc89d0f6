"""
Tests for the IngestionPipeline.

Tests cover:
- Mapping raw provider messages onto canonical records
- Media fetch success and failure
- Write-before-publish ordering
- Bulk sync of chats and contacts with partial failures
- Revoke events leave the store untouched
"""

import asyncio

import pytest

from wabridge.bus import EventBus
from wabridge.events import RawChat, RawContact, RevokeEvent
from wabridge.pipeline import IngestionPipeline, map_contact, map_message
from wabridge.schemas import EventType
from wabridge.storage import Store
from tests.fakes import raw_message


class Recorder:
    """Bus subscriber that remembers what it received and what the store held at that moment."""

    def __init__(self, store):
        self.store = store
        self.envelopes = []
        self.stored_at_delivery = []

    async def __call__(self, envelope):
        self.envelopes.append(envelope)
        message_id = envelope.payload.get("id")
        if message_id is not None:
            self.stored_at_delivery.append(self.store.get_message(message_id) is not None)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def pipeline(provider, store, bus):
    return IngestionPipeline(provider, store, bus)


@pytest.fixture
def recorder(store, bus):
    rec = Recorder(store)
    bus.subscribe(rec)
    return rec


def ingest(pipeline, bus, *messages):
    """Ingest messages in one event loop and wait until subscribers received them."""
    async def scenario():
        results = [await pipeline.ingest_message(message) for message in messages]
        await bus.drain()
        await bus.close()
        return results

    return asyncio.run(scenario())


class TestMapping:
    """Test raw-to-canonical mapping."""

    def test_map_message(self):
        record = map_message(raw_message(
            "m1", chat_id="group@g.us", timestamp=1700000000,
            author="alice@c.us", isGroupMsg=True, fromMe=True,
        ))

        assert record.id == "m1"
        assert record.chat_id == "group@g.us"
        assert record.sender_id == "alice@c.us"
        assert record.timestamp == 1700000000000
        assert record.is_group is True
        assert record.from_me is True
        assert record.type == "text"
        assert record.media_url is None

    def test_sender_defaults_to_chat(self):
        record = map_message(raw_message("m1", chat_id="bob@c.us"))
        assert record.sender_id == "bob@c.us"

    @pytest.mark.parametrize("provider_type,expected", [
        ("chat", "text"),
        ("image", "image"),
        ("video", "video"),
        ("sticker", "sticker"),
        ("ptt", "other"),
    ])
    def test_message_types(self, provider_type, expected):
        assert map_message(raw_message(type=provider_type)).type == expected

    def test_contact_name_fallback(self):
        saved = map_contact(RawContact(id="1@c.us", user="1", name="Saved", pushname="Push", number="1"))
        pushed = map_contact(RawContact(id="2@c.us", user="2", pushname="Push", number="2"))
        bare = map_contact(RawContact(id="3@c.us", user="3", number="3"))

        assert saved.name == "Saved"
        assert pushed.name == "Push"
        assert bare.name == "3"


class TestIngestMessage:
    """Test single message ingestion."""

    def test_message_is_stored_and_published(self, pipeline, bus, store, recorder):
        [record] = ingest(pipeline, bus, raw_message("m1", body="Hi"))

        assert record is not None
        assert store.get_message("m1").text == "Hi"
        assert len(recorder.envelopes) == 1
        envelope = recorder.envelopes[0]
        assert envelope.type == EventType.NEW_MESSAGE.value
        assert envelope.payload["id"] == "m1"
        assert envelope.payload["chatId"] == "123@c.us"
        assert envelope.payload["timestamp"] == 1700000000000

    def test_published_only_after_persisted(self, pipeline, bus, recorder):
        ingest(pipeline, bus, raw_message("m1"), raw_message("m2"))

        assert recorder.stored_at_delivery == [True, True]

    def test_reingest_overwrites(self, pipeline, store):
        async def scenario():
            await pipeline.ingest_message(raw_message("m1", body="first"))
            await pipeline.ingest_message(raw_message("m1", body="edited"))

        asyncio.run(scenario())
        messages = store.get_messages_by_chat("123@c.us")
        assert [m.text for m in messages] == ["edited"]

    def test_media_success_fills_fields(self, pipeline, provider, store, media_payload):
        provider.media["img"] = media_payload

        asyncio.run(pipeline.ingest_message(raw_message("img", type="image", hasMedia=True, caption="look")))

        stored = store.get_message("img")
        assert stored.has_media is True
        assert stored.media_url == media_payload.data
        assert stored.mime_type == "image/jpeg"
        assert stored.caption == "look"

    def test_media_failure_still_persists(self, pipeline, bus, store, recorder):
        ingest(pipeline, bus, raw_message("img", type="image", hasMedia=True, body=None))

        stored = store.get_message("img")
        assert stored is not None
        assert stored.has_media is True
        assert stored.media_url is None
        assert stored.mime_type is None
        assert len(recorder.envelopes) == 1

    def test_store_failure_skips_publish(self, provider, bus, tmp_path):
        unopened = Store(f"sqlite:///{tmp_path / 'unopened.db'}")
        rec = Recorder(unopened)
        bus.subscribe(rec)
        pipeline = IngestionPipeline(provider, unopened, bus)

        [result] = ingest(pipeline, bus, raw_message("m1"))

        assert result is None
        assert rec.envelopes == []

    def test_revoke_is_a_no_op(self, pipeline, store):
        asyncio.run(pipeline.ingest_message(raw_message("m1")))

        pipeline.handle_revoke(RevokeEvent(message_id="m1"))

        assert store.get_message("m1") is not None


class TestSyncAll:
    """Test the bulk sync run when the session becomes ready."""

    def test_sync_stores_chats_and_contacts(self, pipeline, provider, bus, store, recorder):
        provider.chats = [
            RawChat(id="a@c.us", name="Alice", unreadCount=2, lastMessageId="X1"),
            RawChat(id="g@g.us", name="Group", isGroup=True),
        ]
        provider.contacts = [
            RawContact(id="a@c.us", user="a", name="Alice", number="111"),
            RawContact(id="b@c.us", user="b", pushname="Bobby", number="222", isBusiness=True),
        ]

        async def scenario():
            synced = await pipeline.sync_all()
            await bus.drain()
            return synced

        result = asyncio.run(scenario())

        assert result.chats_synced == 2
        assert result.contacts_synced == 2
        chats = {c.id: c for c in store.get_chats()}
        assert chats["a@c.us"].unread_count == 2
        assert chats["a@c.us"].last_message_id == "X1"
        assert chats["g@g.us"].is_group is True
        assert [c.name for c in store.get_contacts()] == ["Alice", "Bobby"]
        # Bulk sync is never broadcast
        assert recorder.envelopes == []

    def test_bad_record_is_skipped(self, pipeline, provider, store):
        provider.chats = [
            {"id": "broken@c.us"},
            RawChat(id="ok@c.us", name="Fine"),
        ]
        provider.contacts = [
            {"id": "broken@c.us", "user": "broken"},
            RawContact(id="ok@c.us", user="ok", number="1"),
        ]

        result = asyncio.run(pipeline.sync_all())

        assert result.chats_synced == 1
        assert result.chats_failed == 1
        assert result.contacts_synced == 1
        assert result.contacts_failed == 1
        assert [c.id for c in store.get_chats()] == ["ok@c.us"]
        assert [c.id for c in store.get_contacts()] == ["ok@c.us"]

    def test_provider_error_does_not_raise(self, pipeline, provider):
        async def broken():
            raise RuntimeError("page crashed")

        provider.get_chats = broken

        result = asyncio.run(pipeline.sync_all())
        assert result.chats_synced == 0

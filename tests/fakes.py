"""Test doubles and builders shared by the test modules."""

import time

from wabridge.events import RawMessage


class FakeProvider:
    """In-memory stand-in for the WhatsApp Web client."""

    def __init__(self, session_data_path=None):
        self.session_data_path = session_data_path
        self.sink = None
        self.initialize_calls = 0
        self.destroyed = False
        self.sent = []
        self.chats = []
        self.contacts = []
        self.media = {}
        self.send_error = None
        self.initialize_error = None

    def set_event_sink(self, sink):
        self.sink = sink

    async def initialize(self):
        self.initialize_calls += 1
        if self.initialize_error is not None:
            raise self.initialize_error

    async def send_message(self, chat_id, text):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((chat_id, text))
        return f"sent-{len(self.sent)}"

    async def get_chats(self):
        return list(self.chats)

    async def get_contacts(self):
        return list(self.contacts)

    async def download_media(self, message_id):
        if message_id in self.media:
            return self.media[message_id]
        raise ConnectionError(f"media for {message_id} expired")

    async def destroy(self):
        self.destroyed = True


def raw_message(message_id="m1", chat_id="123@c.us", timestamp=1700000000, body="Hello", **extra) -> RawMessage:
    """Build a raw provider message with sensible defaults."""
    data = {
        "id": message_id,
        "from": chat_id,
        "body": body,
        "timestamp": timestamp,
        "type": "chat",
    }
    data.update(extra)
    return RawMessage.model_validate(data)


def wait_for(predicate, timeout=2.0):
    """Poll until predicate() is true; used where the app loop runs in another thread."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()

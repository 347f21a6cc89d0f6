"""
Composition of the bridge components.

Each component is built exactly once here and handed to its dependents.
Provider events are queued and handled one at a time, each to completion
(persist, then publish) before the next one starts.
"""

import asyncio
import importlib
import logging
from typing import Any, Optional

from pydantic import ValidationError

from wabridge.bus import EventBus
from wabridge.config import Settings
from wabridge.errors import ClientNotReadyError, SendFailedError
from wabridge.events import MessageEvent, MessagingProvider, RevokeEvent, parse_provider_event
from wabridge.metrics import record_send
from wabridge.pipeline import IngestionPipeline
from wabridge.schemas import EventEnvelope
from wabridge.session import SessionManager
from wabridge.storage import Store

logger = logging.getLogger(__name__)


def load_provider(factory_path: str, session_data_path: str) -> MessagingProvider:
    """
    Build a provider from a "package.module:callable" import path.

    The callable receives the directory the provider keeps its session
    files in as ``session_data_path``.

    Raises:
        ValueError: if the path is malformed
    """
    module_name, sep, attr = factory_path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"PROVIDER_FACTORY must look like 'module:callable', got {factory_path!r}")
    module = importlib.import_module(module_name)
    factory = getattr(module, attr)
    return factory(session_data_path=session_data_path)


class Bridge:
    def __init__(
        self,
        settings: Settings,
        provider: MessagingProvider,
        store: Optional[Store] = None,
    ):
        self.settings = settings
        self.provider = provider
        self.store = store or Store(settings.DATABASE_URL)
        self.bus = EventBus(max_pending=settings.SUBSCRIBER_QUEUE_SIZE)
        self.session = SessionManager(
            provider,
            reconnect_delay=settings.RECONNECT_DELAY_SECONDS,
        )
        self.pipeline = IngestionPipeline(provider, self.store, self.bus)

        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

        self.session.on_ready(self.pipeline.sync_all)
        self.session.on_ready(self._announce_ready)
        provider.set_event_sink(self.submit)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """
        Open the store, start the event worker and bring the provider up.

        Raises:
            StoreOpenError: the store could not be opened (fatal)
        """
        self.store.open()
        self._worker = asyncio.create_task(self._run())
        await self.session.start()
        logger.info("Waiting for WhatsApp client to be ready and authenticated")

    async def stop(self) -> None:
        logger.info("Shutting down WhatsApp bridge")
        await self.session.shutdown()
        if self._worker is not None:
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
            self._worker = None
        await self.bus.close()
        self.store.close()

    # =========================================================================
    # Provider Events
    # =========================================================================

    async def submit(self, event: Any) -> None:
        """Event sink handed to the provider. Invalid payloads are logged and dropped."""
        try:
            parsed = parse_provider_event(event)
        except ValidationError as e:
            logger.error(f"Dropping invalid provider event: {e}")
            return
        await self._queue.put(parsed)

    async def join(self) -> None:
        """Wait until every queued event has been handled."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.dispatch(event)
            except Exception:
                logger.exception(f"Error handling provider event {event.kind}")
            finally:
                self._queue.task_done()

    async def dispatch(self, event) -> None:
        if isinstance(event, MessageEvent):
            await self.pipeline.ingest_message(event.message)
        elif isinstance(event, RevokeEvent):
            self.pipeline.handle_revoke(event)
        else:
            await self.session.handle_event(event)

    async def _announce_ready(self) -> None:
        await self.bus.publish(EventEnvelope.ready())

    # =========================================================================
    # Outbound
    # =========================================================================

    async def send_message(self, chat_id: str, text: str) -> str:
        """
        Send a text message through the provider.

        Returns:
            The provider message id

        Raises:
            ClientNotReadyError: the session is not ready, nothing was sent
            SendFailedError: the provider failed the send
        """
        if not self.session.is_ready():
            record_send("not_ready")
            logger.warning("WhatsApp client not ready to send message")
            raise ClientNotReadyError("WhatsApp client not ready.")

        try:
            message_id = await self.provider.send_message(chat_id, text)
        except Exception as e:
            record_send("failed")
            logger.error(f"Error sending message to {chat_id}: {e}")
            raise SendFailedError(str(e)) from e

        if not message_id:
            record_send("failed")
            logger.error(f"Provider returned no message id for send to {chat_id}")
            raise SendFailedError("Provider returned no message id")

        record_send("sent")
        logger.info(f"Message sent to {chat_id}: {message_id}")
        return message_id

import logging
import os
import threading
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker, declarative_base

from wabridge.errors import StoreOpenError
from wabridge.schemas import ChatRecord, ContactRecord, MessageRecord

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()

DEFAULT_PAGE_LIMIT = 100
DEFAULT_PAGE_OFFSET = 0


class Store:
    """
    Durable keyed persistence for messages, chats and contacts.

    Writes are serialized through an internal lock (one writer at a time),
    reads run concurrently. Every method is blocking; async callers should
    run them with asyncio.to_thread.
    """

    def __init__(self, database_url: str):
        self.database_url = database_url
        # check_same_thread=False is required for SQLite to be shared by
        # FastAPI's threadpool and the ingestion worker threads
        self.engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=False,
        )
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self._write_lock = threading.Lock()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def open(self) -> None:
        """
        Create the database file and all tables.
        Called once during application startup; failure is fatal.
        """
        logger.debug(f"Opening store at {self.database_url}")
        try:
            # Register models with Base.metadata
            from wabridge import models  # noqa: F401

            self._ensure_sqlite_directory()
            Base.metadata.create_all(bind=self.engine)
            logger.info("Store opened successfully")
        except Exception as e:
            logger.critical(f"Failed to open store: {e}")
            raise StoreOpenError(str(e)) from e

    def close(self) -> None:
        self.engine.dispose()

    def _ensure_sqlite_directory(self) -> None:
        url = make_url(self.database_url)
        if url.get_backend_name() != "sqlite":
            return
        path = url.database
        if not path or path == ":memory:":
            return
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)

    # =========================================================================
    # Writes
    # =========================================================================

    def _upsert(self, row, kind: str) -> bool:
        """Insert or replace a row keyed by its primary key. Never raises."""
        with self._write_lock:
            db = self.SessionLocal()
            try:
                db.merge(row)
                db.commit()
                logger.debug(f"{kind} saved: {row.id}")
                return True
            except Exception as e:
                db.rollback()
                logger.error(f"Error saving {kind.lower()} {row.id}: {e}")
                return False
            finally:
                db.close()

    def upsert_message(self, record: MessageRecord) -> bool:
        """
        Save or update a message (last write wins).

        Returns:
            True if the message is durably stored, False on error.
        """
        from wabridge.models import Message

        return self._upsert(
            Message(
                id=record.id,
                chat_id=record.chat_id,
                sender_id=record.sender_id,
                text=record.text,
                timestamp=record.timestamp,
                is_group=record.is_group,
                from_me=record.from_me,
                type=str(getattr(record.type, "value", record.type)),
                has_media=record.has_media,
                media_url=record.media_url,
                mime_type=record.mime_type,
                caption=record.caption,
            ),
            "Message",
        )

    def upsert_chat(self, record: ChatRecord) -> bool:
        from wabridge.models import Chat

        return self._upsert(
            Chat(
                id=record.id,
                name=record.name,
                is_group=record.is_group,
                unread_count=record.unread_count,
                last_message_id=record.last_message_id,
            ),
            "Chat",
        )

    def upsert_contact(self, record: ContactRecord) -> bool:
        from wabridge.models import Contact

        return self._upsert(
            Contact(
                id=record.id,
                name=record.name,
                number=record.number,
                is_business=record.is_business,
            ),
            "Contact",
        )

    # =========================================================================
    # Reads
    # =========================================================================

    def get_message(self, message_id: str) -> Optional[MessageRecord]:
        """
        Look up a single message by id.

        Read helper for callers that need to confirm a message is durable,
        e.g. before acting on a NEW_MESSAGE envelope.

        Returns:
            The stored record, or None if it is missing or the read failed
        """
        from wabridge.models import Message

        try:
            with self.SessionLocal() as db:
                row = db.query(Message).filter(Message.id == message_id).first()
                return _message_from_row(row) if row is not None else None
        except Exception as e:
            logger.error(f"Error getting message {message_id}: {e}")
            return None

    def get_messages_by_chat(
        self,
        chat_id: str,
        limit: int = DEFAULT_PAGE_LIMIT,
        offset: int = DEFAULT_PAGE_OFFSET,
    ) -> list[MessageRecord]:
        """
        Retrieve one page of a chat's messages, most recent first.

        Args:
            chat_id: Chat to read
            limit: Maximum number of messages to return
            offset: Number of messages to skip

        Returns:
            Messages ordered by timestamp DESC, id DESC. Empty on error.
        """
        from wabridge.models import Message

        logger.debug(f"Querying messages: chat={chat_id}, limit={limit}, offset={offset}")
        try:
            with self.SessionLocal() as db:
                rows = (
                    db.query(Message)
                    .filter(Message.chat_id == chat_id)
                    .order_by(Message.timestamp.desc(), Message.id.desc())
                    .offset(offset)
                    .limit(limit)
                    .all()
                )
                return [_message_from_row(row) for row in rows]
        except Exception as e:
            logger.error(f"Error getting messages for chat {chat_id}: {e}")
            return []

    def get_chats(self) -> list[ChatRecord]:
        """
        Retrieve all chats.

        Ordered by lastMessageId DESC. The id is opaque, so this is not a
        true recency order.
        """
        from wabridge.models import Chat

        try:
            with self.SessionLocal() as db:
                rows = db.query(Chat).order_by(Chat.last_message_id.desc()).all()
                return [
                    ChatRecord(
                        id=row.id,
                        name=row.name,
                        is_group=row.is_group,
                        unread_count=row.unread_count,
                        last_message_id=row.last_message_id,
                    )
                    for row in rows
                ]
        except Exception as e:
            logger.error(f"Error getting chats: {e}")
            return []

    def get_contacts(self) -> list[ContactRecord]:
        """Retrieve all contacts ordered by name ASC."""
        from wabridge.models import Contact

        try:
            with self.SessionLocal() as db:
                rows = db.query(Contact).order_by(Contact.name.asc()).all()
                return [
                    ContactRecord(
                        id=row.id,
                        name=row.name,
                        number=row.number,
                        is_business=row.is_business,
                    )
                    for row in rows
                ]
        except Exception as e:
            logger.error(f"Error getting contacts: {e}")
            return []


def _message_from_row(row) -> MessageRecord:
    return MessageRecord(
        id=row.id,
        chat_id=row.chat_id,
        sender_id=row.sender_id,
        text=row.text,
        timestamp=row.timestamp,
        is_group=row.is_group,
        from_me=row.from_me,
        type=row.type,
        has_media=row.has_media,
        media_url=row.media_url,
        mime_type=row.mime_type,
        caption=row.caption,
    )

"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
Column names are camelCase to match the persisted schema consumers read
directly; Python attributes stay snake_case.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Integer, String, Text, func

from wabridge.storage import Base


class Message(Base):
    """
    A single WhatsApp message.

    Table: messages
    Primary Key: id (provider message id, re-ingestion replaces the row)
    """
    __tablename__ = "messages"

    id = Column(String, primary_key=True)
    chat_id = Column("chatId", String, nullable=False, index=True)
    sender_id = Column("senderId", String, nullable=False)
    text = Column(Text, nullable=True)
    timestamp = Column(BigInteger, nullable=False, index=True)  # epoch millis
    is_group = Column("isGroup", Boolean, nullable=False, default=False)
    from_me = Column("fromMe", Boolean, nullable=False, default=False)
    type = Column(String, nullable=False)
    has_media = Column("hasMedia", Boolean, nullable=False, default=False)
    media_url = Column("mediaUrl", Text, nullable=True)
    mime_type = Column("mimeType", String, nullable=True)
    caption = Column(Text, nullable=True)
    created_at = Column("createdAt", DateTime, server_default=func.current_timestamp())


class Chat(Base):
    """
    A conversation, either one-to-one or a group.

    Table: chats
    """
    __tablename__ = "chats"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    is_group = Column("isGroup", Boolean, nullable=False, default=False)
    unread_count = Column("unreadCount", Integer, nullable=False, default=0)
    last_message_id = Column("lastMessageId", String, nullable=True)
    created_at = Column("createdAt", DateTime, server_default=func.current_timestamp())


class Contact(Base):
    """
    An address book entry.

    Table: contacts
    """
    __tablename__ = "contacts"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=True, index=True)
    number = Column(String, nullable=False)
    is_business = Column("isBusiness", Boolean, nullable=False, default=False)
    created_at = Column("createdAt", DateTime, server_default=func.current_timestamp())

"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import BigInteger, Column, Index, String, Text

from oa_console.storage import Base


class Message(Base):
    """
    SQLAlchemy model for chat messages, inbound and outbound.

    Table: messages
    Primary Key: id (platform message id for inbound, generated for outbound;
    the uniqueness constraint is what makes ingestion idempotent)
    """
    __tablename__ = "messages"

    id = Column(String, primary_key=True)
    odna = Column(String, nullable=False, index=True)
    direction = Column(String, nullable=False)
    type = Column(String, nullable=False)
    text = Column(Text, nullable=False, default="")
    image_url = Column(Text, nullable=True)  # URL as of write time
    image_object = Column(Text, nullable=True)  # object name when the image is in our bucket
    timestamp = Column(BigInteger, nullable=False, index=True)  # ms since epoch
    webhook_event_id = Column(String, nullable=True)
    created_at = Column(String, nullable=False)  # Server time ISO-8601

    __table_args__ = (
        Index("ix_messages_odna_timestamp", "odna", "timestamp"),
    )

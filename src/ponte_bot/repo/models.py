
"""Modelos SQLAlchemy: mapa conversa→tópico e filtros de palavras."""
from __future__ import annotations
from datetime import datetime, timezone
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import String, Text, BigInteger, TIMESTAMP

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class Base(DeclarativeBase):
    """Base declarativa."""
    pass

class TopicMappingRow(Base):
    __tablename__ = "topic_mappings"
    conversation_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    topic_id: Mapped[int] = mapped_column(BigInteger, unique=True)
    topic_name: Mapped[str | None] = mapped_column(String(255))
    avatar_url: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utcnow)
    last_activity: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utcnow)

class BridgeFilter(Base):
    __tablename__ = "bridge_filters"
    word: Mapped[str] = mapped_column(String(64), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utcnow)

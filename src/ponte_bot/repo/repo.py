
"""Repositório: mapa de tópicos (conversa → tópico do fórum) e filtros.

Funções síncronas; o código assíncrono as chama via `asyncio.to_thread`.
"""
from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List
from sqlalchemy import delete, select
from kink import di
from ..repo.models import BridgeFilter, TopicMappingRow, utcnow
from ..core.logging import get_logger

log = get_logger()

def _as_dict(row: TopicMappingRow) -> Dict[str, Any]:
    return {
        "conversation_id": row.conversation_id,
        "topic_id": row.topic_id,
        "topic_name": row.topic_name,
        "avatar_url": row.avatar_url,
        "created_at": row.created_at,
        "last_activity": row.last_activity,
    }

def list_topic_mappings() -> List[Dict[str, Any]]:
    Session = di["session_factory"]
    with Session() as s:
        return [_as_dict(r) for r in s.scalars(select(TopicMappingRow))]

def upsert_topic_mapping(conversation_id: str, topic_id: int, topic_name: str | None = None,
                         avatar_url: str | None = None) -> None:
    """Grava (ou substitui) o tópico da conversa. Um tópico pertence a uma única conversa."""
    Session = di["session_factory"]
    with Session() as s, s.begin():
        s.execute(delete(TopicMappingRow).where(
            TopicMappingRow.topic_id == topic_id, TopicMappingRow.conversation_id != conversation_id,
        ))
        row = s.get(TopicMappingRow, conversation_id)
        if row is None:
            row = TopicMappingRow(conversation_id=conversation_id, topic_id=topic_id)
            s.add(row)
        else:
            row.created_at = utcnow()
        row.topic_id = topic_id
        row.topic_name = topic_name
        row.avatar_url = avatar_url
        row.last_activity = utcnow()
    log.info("topic_mapping_saved", conversation_id=conversation_id, topic_id=topic_id)

def delete_topic_mapping(conversation_id: str, expected_topic_id: int | None = None) -> bool:
    """Remove o mapeamento; com `expected_topic_id`, só remove se ainda apontar para ele."""
    Session = di["session_factory"]
    with Session() as s, s.begin():
        row = s.get(TopicMappingRow, conversation_id)
        if row is None or (expected_topic_id is not None and row.topic_id != expected_topic_id):
            return False
        s.delete(row)
    log.info("topic_mapping_deleted", conversation_id=conversation_id, topic_id=expected_topic_id)
    return True

def rekey_topic_mapping(old_conversation_id: str, new_conversation_id: str) -> bool:
    """Move o mapeamento para outra chave (ex.: LID → PN). Falha se a chave nova já existe."""
    Session = di["session_factory"]
    with Session() as s, s.begin():
        row = s.get(TopicMappingRow, old_conversation_id)
        if row is None or s.get(TopicMappingRow, new_conversation_id) is not None:
            return False
        data = _as_dict(row)
        s.delete(row)
        s.flush()
        data["conversation_id"] = new_conversation_id
        s.add(TopicMappingRow(**data))
    log.info("topic_mapping_rekeyed", old=old_conversation_id, new=new_conversation_id)
    return True

def update_topic_mapping(conversation_id: str, **fields: Any) -> bool:
    """Atualiza colunas avulsas (`topic_name`, `avatar_url`, `last_activity`)."""
    allowed = {"topic_name", "avatar_url", "last_activity"}
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"campos não suportados: {sorted(unknown)}")
    Session = di["session_factory"]
    with Session() as s, s.begin():
        row = s.get(TopicMappingRow, conversation_id)
        if row is None:
            return False
        for name, value in fields.items():
            setattr(row, name, value)
    return True

def touch_topic_mapping(conversation_id: str, when: datetime | None = None) -> bool:
    return update_topic_mapping(conversation_id, last_activity=when or utcnow())

# ---------- Filtros ----------
def list_filters() -> List[str]:
    Session = di["session_factory"]
    with Session() as s:
        return list(s.scalars(select(BridgeFilter.word).order_by(BridgeFilter.word)))

def add_filter(word: str) -> bool:
    Session = di["session_factory"]
    with Session() as s, s.begin():
        if s.get(BridgeFilter, word) is not None:
            return False
        s.add(BridgeFilter(word=word))
    log.info("filter_added", word=word)
    return True

def remove_filter(word: str) -> bool:
    Session = di["session_factory"]
    with Session() as s, s.begin():
        row = s.get(BridgeFilter, word)
        if row is None:
            return False
        s.delete(row)
    log.info("filter_removed", word=word)
    return True

def clear_filters() -> int:
    Session = di["session_factory"]
    with Session() as s, s.begin():
        count = s.execute(delete(BridgeFilter)).rowcount or 0
    log.info("filters_cleared", count=count)
    return count


"""Mapa conversa do WhatsApp → tópico do fórum, espelhado em memória.

A memória é a fonte de verdade durante a execução (mutada de forma síncrona, no loop);
o banco é atualizado em seguida via `asyncio.to_thread`. Falha do banco é logada e não
desfaz a memória: o próximo `save`/`touch` regrava.
"""
from __future__ import annotations
import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Iterator, Optional
from sqlalchemy.exc import SQLAlchemyError
from ...core.logging import get_logger
from ...repo import repo
from ...repo.models import utcnow

log = get_logger()

@dataclass(frozen=True)
class TopicMapping:
    conversation_id: str
    topic_id: int
    topic_name: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    last_activity: datetime = field(default_factory=utcnow)

class TopicMap:
    def __init__(self, persistent: bool = True):
        self.persistent = persistent
        self._by_conversation: Dict[str, TopicMapping] = {}
        self._by_topic: Dict[int, str] = {}

    def __len__(self) -> int:
        return len(self._by_conversation)

    def __contains__(self, conversation_id: str) -> bool:
        return conversation_id in self._by_conversation

    def __iter__(self) -> Iterator[TopicMapping]:
        return iter(list(self._by_conversation.values()))

    async def load(self) -> int:
        if not self.persistent:
            return 0
        rows = await asyncio.to_thread(repo.list_topic_mappings)
        self._by_conversation.clear()
        self._by_topic.clear()
        for row in rows:
            self._put(TopicMapping(**row))
        log.info("topic_map_loaded", count=len(rows))
        return len(rows)

    def get(self, conversation_id: str) -> Optional[TopicMapping]:
        return self._by_conversation.get(conversation_id)

    def topic_id(self, conversation_id: str) -> Optional[int]:
        m = self._by_conversation.get(conversation_id)
        return m.topic_id if m else None

    def find_by_topic(self, topic_id: int | None) -> Optional[str]:
        return self._by_topic.get(topic_id) if topic_id is not None else None

    def _put(self, mapping: TopicMapping) -> None:
        previous = self._by_conversation.get(mapping.conversation_id)
        if previous is not None and self._by_topic.get(previous.topic_id) == mapping.conversation_id:
            del self._by_topic[previous.topic_id]
        stale = self._by_topic.get(mapping.topic_id)
        if stale is not None and stale != mapping.conversation_id:
            self._by_conversation.pop(stale, None)
        self._by_conversation[mapping.conversation_id] = mapping
        self._by_topic[mapping.topic_id] = mapping.conversation_id

    def _drop(self, conversation_id: str) -> Optional[TopicMapping]:
        mapping = self._by_conversation.pop(conversation_id, None)
        if mapping is not None and self._by_topic.get(mapping.topic_id) == conversation_id:
            del self._by_topic[mapping.topic_id]
        return mapping

    async def _write(self, fn, *args, **kwargs) -> bool:
        if not self.persistent:
            return True
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except SQLAlchemyError as e:
            log.error("topic_map_persist_failed", op=fn.__name__, error=repr(e))
            return False

    async def save(self, conversation_id: str, topic_id: int, topic_name: str | None = None,
                   avatar_url: str | None = None) -> TopicMapping:
        mapping = TopicMapping(conversation_id, topic_id, topic_name, avatar_url)
        self._put(mapping)
        await self._write(repo.upsert_topic_mapping, conversation_id, topic_id, topic_name, avatar_url)
        return mapping

    async def purge(self, conversation_id: str, expected_topic_id: int | None = None) -> bool:
        """Compare-and-delete: com `expected_topic_id`, só apaga se o mapeamento ainda for aquele.

        Evita que dois relays que viram o mesmo tópico sumir apaguem o tópico novo um do outro.
        """
        current = self._by_conversation.get(conversation_id)
        if current is None or (expected_topic_id is not None and current.topic_id != expected_topic_id):
            return False
        self._drop(conversation_id)
        log.warning("topic_mapping_purged", conversation_id=conversation_id, topic_id=current.topic_id)
        await self._write(repo.delete_topic_mapping, conversation_id, current.topic_id)
        return True

    async def rekey(self, old_conversation_id: str, new_conversation_id: str) -> Optional[TopicMapping]:
        """Move o tópico de uma chave para outra. Não sobrescreve chave já mapeada."""
        current = self._by_conversation.get(old_conversation_id)
        if current is None or new_conversation_id in self._by_conversation:
            return None
        self._drop(old_conversation_id)
        moved = replace(current, conversation_id=new_conversation_id)
        self._put(moved)
        await self._write(repo.rekey_topic_mapping, old_conversation_id, new_conversation_id)
        return moved

    async def update_avatar(self, conversation_id: str, avatar_url: str | None) -> bool:
        return await self._update(conversation_id, avatar_url=avatar_url)

    async def update_name(self, conversation_id: str, topic_name: str) -> bool:
        return await self._update(conversation_id, topic_name=topic_name)

    async def touch(self, conversation_id: str) -> bool:
        return await self._update(conversation_id, last_activity=utcnow())

    async def _update(self, conversation_id: str, **fields) -> bool:
        current = self._by_conversation.get(conversation_id)
        if current is None:
            return False
        self._put(replace(current, **fields))
        await self._write(repo.update_topic_mapping, conversation_id, **fields)
        return True

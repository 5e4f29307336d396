
"""Entidades do Store: Contact, Chat, StoredMessage e GroupMetadata.

Regra de merge única para todas: campo posterior não-nulo vence; dicionários
(`message`, `update`) são mesclados raso, chave a chave.
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional, TypeVar
from pydantic import BaseModel, ConfigDict, Field
from ..core.jid import is_lid, is_pn, phone_of
from ..ports.interfaces import MessageKey

E = TypeVar("E", bound="Entity")

class Entity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    def merged(self: E, update: E) -> E:
        data = self.model_dump()
        for name, value in update.model_dump(exclude_unset=True).items():
            if value is None:
                continue
            if isinstance(value, dict) and isinstance(data.get(name), dict):
                data[name] = {**data[name], **{k: v for k, v in value.items() if v is not None}}
            else:
                data[name] = value
        return type(self).model_validate(data)

def _usable_name(value: Optional[str], phone: Optional[str]) -> bool:
    """Nome "de verdade": não é o próprio número, não começa com '+', tem mais de 2 chars."""
    if not value:
        return False
    value = value.strip()
    return value != phone and not value.startswith("+") and len(value) > 2

class Contact(Entity):
    id: str
    alt_id: Optional[str] = None
    name: Optional[str] = None
    notify: Optional[str] = None
    verified_name: Optional[str] = None
    img_url: Optional[str] = None
    status: Optional[str] = None

    @property
    def pn(self) -> Optional[str]:
        for jid in (self.id, self.alt_id):
            if jid and is_pn(jid):
                return jid
        return None

    @property
    def lid(self) -> Optional[str]:
        for jid in (self.id, self.alt_id):
            if jid and is_lid(jid):
                return jid
        return None

    @property
    def canonical_id(self) -> str:
        return self.pn or self.id

    @property
    def phone(self) -> Optional[str]:
        return phone_of(self.pn) if self.pn else None

    def best_name(self) -> Optional[str]:
        for candidate in (self.name, self.notify, self.verified_name):
            if _usable_name(candidate, self.phone):
                return candidate.strip()
        return None

class Chat(Entity):
    id: str
    name: Optional[str] = None
    addressing_mode: Optional[str] = None
    conversation_timestamp: Optional[int] = None
    unread_count: Optional[int] = None

class StoredMessage(Entity):
    key: MessageKey
    message: Dict[str, Any] = Field(default_factory=dict)
    push_name: Optional[str] = None
    timestamp: Optional[int] = None
    status: Optional[int] = None
    update: Dict[str, Any] = Field(default_factory=dict)

    @property
    def conversation_id(self) -> str:
        return self.key.remote_jid

class GroupMetadata(Entity):
    id: str
    subject: Optional[str] = None
    owner: Optional[str] = None
    desc: Optional[str] = None
    creation: Optional[int] = None
    addressing_mode: Optional[str] = None
    participants: List[Dict[str, Any]] = Field(default_factory=list)

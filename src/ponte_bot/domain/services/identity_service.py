
"""Resolução de identidade: qualquer endereço (PN ou LID) → endereço canônico.

Regra única, aplicada em todo lugar: PN preferido. Ordem de consulta:
1. registro de Contact (se já conhece o PN da pessoa);
2. tabela PN↔LID do Store;
3. mapeamento da sessão do transporte (o que for achado é gravado de volta no Store).
LID sem PN conhecido não é erro: volta o próprio endereço com `resolved=False`.
Grupos e difusões nunca passam pela resolução.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
from ...core.jid import is_broadcast, is_group, is_lid, is_pn, normalize_jid, phone_of
from ...core.logging import get_logger
from ...ports.interfaces import MessageKey, WhatsAppPort
from .entity_store import EntityStore

log = get_logger()

@dataclass(frozen=True)
class Resolution:
    address: str
    original: str
    resolved: bool

    @property
    def changed(self) -> bool:
        return self.address != self.original

class IdentityResolver:
    def __init__(self, store: EntityStore, transport: Optional[WhatsAppPort] = None):
        self.store = store
        self.transport = transport

    def resolve(self, address: str | None) -> Resolution:
        original = address or ""
        jid = normalize_jid(address)
        if not jid:
            return Resolution(original, original, False)
        if is_group(jid) or is_broadcast(jid) or not (is_pn(jid) or is_lid(jid)):
            return Resolution(jid, original, True)
        contact = self.store.get_contact(jid)
        if contact is not None and contact.pn:
            return Resolution(contact.pn, original, True)
        if is_pn(jid):
            return Resolution(jid, original, True)
        pn = self.store.get_pn_for_lid(jid) or self._from_transport(jid)
        if pn:
            return Resolution(pn, original, True)
        log.debug("identity_unresolved", address=jid)
        return Resolution(jid, original, False)

    def resolve_chat(self, jid: str | None) -> Resolution:
        """Chave da conversa. Id de grupo volta intacto."""
        return self.resolve(jid)

    def resolve_sender(self, key: MessageKey) -> Resolution:
        """Autor da mensagem: em grupo é o participante, nunca o id do grupo."""
        if is_group(key.remote_jid) or is_broadcast(key.remote_jid):
            return self.resolve(key.participant or key.participant_alt)
        return self.resolve(key.remote_jid)

    def _from_transport(self, lid: str) -> Optional[str]:
        if self.transport is None:
            return None
        try:
            pn = normalize_jid(self.transport.lookup_pn_for_lid(lid))
        except Exception as e:
            log.debug("transport_lid_lookup_failed", lid=lid, error=repr(e))
            return None
        if pn and is_pn(pn):
            self.store.store_mapping(pn, lid)
            log.info("lid_resolved_by_transport", lid=lid, pn=pn)
            return pn
        return None

    # ---------- Nomes ----------
    def contact_name(self, address: str | None) -> Optional[str]:
        """Nome salvo/push name utilizável, ou None."""
        res = self.resolve(address)
        for jid in (res.address, res.original):
            contact = self.store.get_contact(jid)
            if contact is not None and contact.best_name():
                return contact.best_name()
        return None

    def group_subject(self, jid: str) -> Optional[str]:
        meta = self.store.get_group_metadata(jid)
        if meta is not None and meta.subject:
            return meta.subject
        chat = self.store.get_chat(jid)
        return chat.name if chat is not None and chat.name else None

    def display_name(self, address: str | None) -> str:
        """Nome para tópico: nome do contato/grupo; senão +telefone (PN); senão o endereço cru."""
        res = self.resolve(address)
        if is_group(res.address):
            return self.group_subject(res.address) or res.address
        name = self.contact_name(res.address)
        if name:
            return name
        if is_pn(res.address):
            return f"+{phone_of(res.address)}"
        return res.address

    def sender_label(self, address: str | None) -> str:
        """Rótulo curto do autor em grupos: nome, senão o número (ou o LID cru)."""
        res = self.resolve(address)
        return self.contact_name(res.address) or phone_of(res.address)


"""Store de entidades do WhatsApp: contatos, chats, mensagens, grupos e a tabela PN↔LID.

Tudo roda no loop asyncio (disciplina de thread única): as operações são síncronas e
atômicas em relação às demais tasks. Só o I/O do snapshot sai do loop (`asyncio.to_thread`).

Notificações publicadas em `events`:
- `mapping.changed`: dict {pn: lid} só com os pares efetivamente gravados nesta chamada.
- `contacts.changed`: lista de Contact já mesclados.
"""
from __future__ import annotations
import asyncio, json, os, time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
from pydantic import ValidationError
from ...core.cache import BoundedCache
from ...core.events import EventHub
from ...core.jid import is_lid, is_pn, normalize_jid
from ...core.logging import get_logger
from ...ports.interfaces import MessageKey, MessageUpdate, WhatsAppMessage
from ..entities import Chat, Contact, GroupMetadata, StoredMessage

log = get_logger()

SNAPSHOT_VERSION = 1

class EntityStore:
    def __init__(self, file_path: str | os.PathLike | None = None, *, max_messages_per_chat: int = 1000,
                 events: EventHub | None = None):
        self.file_path = Path(file_path) if file_path else None
        self.max_messages_per_chat = max_messages_per_chat
        self.events = events or EventHub("store")
        self._reset()
        self._saved_revision = 0

    def _reset(self) -> None:
        self.contacts: Dict[str, Contact] = {}
        self._contact_alias: Dict[str, str] = {}
        self.chats: Dict[str, Chat] = {}
        self.groups: Dict[str, GroupMetadata] = {}
        self._messages: Dict[str, BoundedCache[StoredMessage]] = {}
        self._pn_to_lid: Dict[str, str] = {}
        self._lid_to_pn: Dict[str, str] = {}
        self._revision = 0

    def _touch(self) -> None:
        self._revision += 1

    @property
    def dirty(self) -> bool:
        return self._revision != self._saved_revision

    # ---------- PN ↔ LID ----------
    def store_mapping(self, pn: str | None, lid: str | None) -> bool:
        """Grava o par nos dois sentidos. Retorna True se algo mudou (e notifica)."""
        pair = self._write_pair(pn, lid)
        if pair is None:
            return False
        self.events.publish_nowait("mapping.changed", {pair[0]: pair[1]})
        return True

    def store_mappings(self, mappings: Dict[str, str] | None) -> Dict[str, str]:
        """Grava vários pares {pn: lid}; uma única notificação com os pares novos."""
        written: Dict[str, str] = {}
        for pn, lid in (mappings or {}).items():
            pair = self._write_pair(pn, lid)
            if pair is not None:
                written[pair[0]] = pair[1]
        if written:
            log.info("lid_mappings_stored", count=len(written))
            self.events.publish_nowait("mapping.changed", dict(written))
        return written

    def _write_pair(self, pn: str | None, lid: str | None) -> tuple[str, str] | None:
        pn, lid = normalize_jid(pn), normalize_jid(lid)
        if not pn or not lid:
            log.warning("lid_mapping_invalid", pn=pn, lid=lid)
            return None
        if is_lid(pn) and is_pn(lid):
            pn, lid = lid, pn
        if not is_pn(pn) or not is_lid(lid):
            log.warning("lid_mapping_invalid", pn=pn, lid=lid)
            return None
        if self._pn_to_lid.get(pn) == lid and self._lid_to_pn.get(lid) == pn:
            return None
        # remove entradas reversas que ficariam órfãs
        old_lid = self._pn_to_lid.get(pn)
        if old_lid is not None and self._lid_to_pn.get(old_lid) == pn:
            del self._lid_to_pn[old_lid]
        old_pn = self._lid_to_pn.get(lid)
        if old_pn is not None and self._pn_to_lid.get(old_pn) == lid:
            del self._pn_to_lid[old_pn]
        self._pn_to_lid[pn] = lid
        self._lid_to_pn[lid] = pn
        self._touch()
        log.debug("lid_mapping_stored", pn=pn, lid=lid)
        return pn, lid

    def get_lid_for_pn(self, pn: str | None) -> Optional[str]:
        return self._pn_to_lid.get(normalize_jid(pn)) if pn else None

    def get_pn_for_lid(self, lid: str | None) -> Optional[str]:
        return self._lid_to_pn.get(normalize_jid(lid)) if lid else None

    def all_mappings(self) -> Dict[str, str]:
        return dict(self._pn_to_lid)

    def clear_mappings(self) -> None:
        self._pn_to_lid.clear()
        self._lid_to_pn.clear()
        self._touch()
        log.info("lid_mappings_cleared")

    def learn_from_key(self, key: MessageKey) -> None:
        """Chaves trazem o id alternativo (`remoteJidAlt`/`participantAlt`) quando o servidor sabe."""
        for jid, alt in ((key.remote_jid, key.remote_jid_alt), (key.participant, key.participant_alt)):
            if jid and alt:
                self.store_mapping(jid, alt)

    # ---------- Contatos ----------
    def upsert_contact(self, contact: Contact) -> Optional[Contact]:
        if not contact.id:
            return None
        contact = contact.model_copy(update={"id": normalize_jid(contact.id), "alt_id": normalize_jid(contact.alt_id)})
        prior_key = self._contact_alias.get(contact.id, contact.id)
        existing = self.contacts.pop(prior_key, None)
        merged = _unify(existing, contact)
        # a mesma pessoa pode ter sido gravada antes sob o outro id
        for other in (merged.id, merged.alt_id):
            if other and other != prior_key and other in self.contacts:
                merged = _unify(self.contacts.pop(other), merged)
        key = merged.canonical_id
        self.contacts[key] = merged
        for alias in (merged.id, merged.alt_id):
            if alias and alias != key:
                self._contact_alias[alias] = key
        if merged.pn and merged.lid:
            self.store_mapping(merged.pn, merged.lid)
        self._touch()
        return merged

    def upsert_contacts(self, contacts: Iterable[Contact]) -> List[Contact]:
        changed = [c for c in (self.upsert_contact(x) for x in contacts) if c is not None]
        if changed:
            self.events.publish_nowait("contacts.changed", changed)
        return changed

    def update_contacts(self, updates: Iterable[Contact]) -> List[Contact]:
        """Como `upsert_contacts`, mas só para contatos já conhecidos."""
        known = [u for u in updates if u.id and self.get_contact(u.id) is not None]
        return self.upsert_contacts(known)

    def get_contact(self, jid: str | None) -> Optional[Contact]:
        jid = normalize_jid(jid)
        if not jid:
            return None
        return self.contacts.get(jid) or self.contacts.get(self._contact_alias.get(jid, ""))

    # ---------- Chats ----------
    def upsert_chat(self, chat: Chat) -> Optional[Chat]:
        if not chat.id:
            return None
        existing = self.chats.get(chat.id)
        merged = existing.merged(chat) if existing else chat
        self.chats[chat.id] = merged
        self._touch()
        return merged

    def update_chats(self, updates: Iterable[Chat]) -> List[Chat]:
        return [c for c in (self.upsert_chat(u) for u in updates if u.id in self.chats) if c is not None]

    def get_chat(self, jid: str) -> Optional[Chat]:
        return self.chats.get(jid)

    # ---------- Mensagens ----------
    def upsert_message(self, msg: StoredMessage | WhatsAppMessage) -> Optional[StoredMessage]:
        if isinstance(msg, WhatsAppMessage):
            msg = StoredMessage.model_validate(msg.model_dump())
        cid, mid = msg.key.remote_jid, msg.key.id
        if not cid or not mid:
            log.debug("message_without_key_dropped")
            return None
        self.learn_from_key(msg.key)
        bucket = self._messages.get(cid)
        if bucket is None:
            bucket = self._messages[cid] = BoundedCache(max_size=self.max_messages_per_chat)
        bucket.set(mid, msg.model_copy(deep=True))
        if msg.timestamp:
            self.upsert_chat(Chat(id=cid, conversation_timestamp=msg.timestamp))
        self._touch()
        return msg

    def update_message(self, update: MessageUpdate) -> bool:
        """Mescla reações/status/votos numa mensagem existente. Desconhecida → ignora."""
        bucket = self._messages.get(update.key.remote_jid)
        current = bucket.get(update.key.id) if bucket else None
        if current is None:
            return False
        fields = dict(update.update)
        status = fields.pop("status", None)
        patch = StoredMessage(key=current.key, update=fields, status=status if isinstance(status, int) else None)
        bucket.set(update.key.id, current.merged(patch))
        self._touch()
        return True

    def load_message(self, conversation_id: str, message_id: str) -> Optional[StoredMessage]:
        """Cópia defensiva: mutar o retorno não afeta o cache."""
        bucket = self._messages.get(conversation_id)
        msg = bucket.get(message_id) if bucket else None
        return msg.model_copy(deep=True) if msg is not None else None

    def get_messages(self, conversation_id: str) -> List[StoredMessage]:
        bucket = self._messages.get(conversation_id)
        return [m.model_copy(deep=True) for _, m in bucket.items()] if bucket else []

    # ---------- Grupos ----------
    def set_group_metadata(self, meta: GroupMetadata) -> None:
        if not meta.id:
            return
        self.groups[meta.id] = meta
        if meta.subject:
            self.upsert_chat(Chat(id=meta.id, name=meta.subject, addressing_mode=meta.addressing_mode))
        self._touch()

    def update_group_metadata(self, updates: Iterable[GroupMetadata]) -> None:
        for upd in updates:
            current = self.groups.get(upd.id)
            if current is not None:
                self.set_group_metadata(current.merged(upd))

    def get_group_metadata(self, jid: str) -> Optional[GroupMetadata]:
        return self.groups.get(jid)

    # ---------- Eventos do transporte ----------
    def bind(self, hub: EventHub) -> None:
        """Assina os eventos (já normalizados) do transporte do WhatsApp."""
        hub.subscribe("contacts.upsert", self.upsert_contacts)
        hub.subscribe("contacts.update", self.update_contacts)
        hub.subscribe("chats.upsert", lambda chats: [self.upsert_chat(c) for c in chats])
        hub.subscribe("chats.update", self.update_chats)
        hub.subscribe("messages.upsert", lambda msgs: [self.upsert_message(m) for m in msgs])
        hub.subscribe("messages.update", lambda updates: [self.update_message(u) for u in updates])
        hub.subscribe("groups.upsert", lambda groups: [self.set_group_metadata(g) for g in groups])
        hub.subscribe("groups.update", self.update_group_metadata)
        hub.subscribe("mapping.update", self.store_mappings)
        log.info("store_bound", hub=hub.name)

    # ---------- Persistência ----------
    def stats(self) -> Dict[str, int]:
        return {
            "contacts": len(self.contacts),
            "chats": len(self.chats),
            "groups": len(self.groups),
            "messages": sum(len(b) for b in self._messages.values()),
            "lid_mappings": len(self._pn_to_lid),
        }

    def snapshot(self) -> Dict[str, Any]:
        """Estado completo serializável; chaves fixas, sobrescrita idempotente."""
        return {
            "version": SNAPSHOT_VERSION,
            "saved_at": int(time.time()),
            "contacts": {k: c.model_dump(mode="json") for k, c in self.contacts.items()},
            "chats": {k: c.model_dump(mode="json") for k, c in self.chats.items()},
            "groups": {k: g.model_dump(mode="json") for k, g in self.groups.items()},
            "messages": {
                cid: {mid: m.model_dump(mode="json") for mid, m in bucket.items()}
                for cid, bucket in self._messages.items()
            },
            "lid_mapping": dict(self._pn_to_lid),
        }

    def load_snapshot(self, state: Dict[str, Any]) -> None:
        """Substitui o estado. Entradas inválidas são descartadas uma a uma."""
        self._reset()
        for raw in _section(state, "contacts").values():
            contact = _validate(Contact, raw)
            if contact is not None:
                key = contact.canonical_id
                self.contacts[key] = contact
                for alias in (contact.id, contact.alt_id):
                    if alias and alias != key:
                        self._contact_alias[alias] = key
        for raw in _section(state, "chats").values():
            chat = _validate(Chat, raw)
            if chat is not None:
                self.chats[chat.id] = chat
        for raw in _section(state, "groups").values():
            meta = _validate(GroupMetadata, raw)
            if meta is not None:
                self.groups[meta.id] = meta
        for cid, msgs in _section(state, "messages").items():
            bucket = self._messages[cid] = BoundedCache(max_size=self.max_messages_per_chat)
            for mid, raw in (msgs if isinstance(msgs, dict) else {}).items():
                msg = _validate(StoredMessage, raw)
                if msg is not None:
                    bucket.set(mid, msg)
        for pn, lid in _section(state, "lid_mapping").items():
            self._write_pair(pn, lid)
        self._saved_revision = self._revision

    async def persist(self) -> bool:
        """Grava o snapshot (substituição atômica). Falha é logada e devolve False."""
        if self.file_path is None:
            return False
        revision = self._revision
        try:
            state = self.snapshot()
            await asyncio.to_thread(_write_json_atomic, self.file_path, state)
        except (OSError, TypeError, ValueError) as e:
            log.error("store_persist_failed", path=str(self.file_path), error=repr(e))
            return False
        self._saved_revision = revision
        log.debug("store_persisted", path=str(self.file_path), **self.stats())
        return True

    async def restore(self) -> bool:
        """Reidrata do arquivo. Arquivo ausente ou corrompido → Store vazio, utilizável."""
        if self.file_path is None:
            return False
        try:
            state = await asyncio.to_thread(_read_json, self.file_path)
        except FileNotFoundError:
            log.info("store_file_missing", path=str(self.file_path))
            return False
        except (OSError, ValueError) as e:
            log.error("store_restore_failed", path=str(self.file_path), error=repr(e))
            self._reset()
            return False
        if not isinstance(state, dict):
            log.error("store_restore_failed", path=str(self.file_path), error="snapshot is not an object")
            self._reset()
            return False
        try:
            self.load_snapshot(state)
        except (AttributeError, TypeError, ValueError) as e:
            log.error("store_restore_failed", path=str(self.file_path), error=repr(e))
            self._reset()
            return False
        log.info("store_restored", path=str(self.file_path), **self.stats())
        return True

def _unify(older: Optional[Contact], newer: Contact) -> Contact:
    """Merge de contatos mantendo PN em `id` e LID em `alt_id` quando ambos são conhecidos."""
    merged = older.merged(newer) if older else newer
    pn = newer.pn or (older.pn if older else None)
    lid = newer.lid or (older.lid if older else None)
    ids = [j for j in (pn, lid) if j]
    if not ids:
        return merged
    return merged.model_copy(update={"id": ids[0], "alt_id": ids[1] if len(ids) > 1 else None})

def _validate(model, raw):
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        log.warning("store_entry_skipped", model=model.__name__, error=str(e).splitlines()[0])
        return None

def _section(state: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = state.get(name)
    if not isinstance(value, dict):
        if value:
            log.warning("store_section_ignored", section=name, type=type(value).__name__)
        return {}
    return value

def _read_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)

def _write_json_atomic(path: Path, state: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    with tmp.open("w", encoding="utf-8") as fh:
        json.dump(state, fh, ensure_ascii=False)
    os.replace(tmp, path)

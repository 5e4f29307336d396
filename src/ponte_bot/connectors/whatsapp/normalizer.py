
"""Normalização dos eventos crus da sessão do WhatsApp (formato Baileys) em DTOs.

A biblioteca de transporte entrega dicts camelCase; aqui viram `WhatsAppMessage`,
`Contact`, `Chat`, `GroupMetadata`, `MessageUpdate`, `CallEvent` e pares {pn: lid}.
Payload malformado é descartado com log de debug, sem derrubar o lote.
"""
from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional, Tuple
from pydantic import ValidationError
from ...core.events import EventHub
from ...core.jid import is_lid, is_pn, normalize_jid
from ...core.logging import get_logger, set_trace_id
from ...domain.entities import Chat, Contact, GroupMetadata
from ...ports.interfaces import CallEvent, ContentKind, MessageKey, MessageUpdate, WhatsAppMessage

log = get_logger()

_WRAPPERS = ("ephemeralMessage", "viewOnceMessage", "viewOnceMessageV2", "viewOnceMessageV2Extension",
             "documentWithCaptionMessage", "editedMessage")

def _int(value: Any) -> Optional[int]:
    """Timestamps chegam como int, str ou Long serializado ({"low": ..., "high": ...})."""
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("low")
    try:
        return int(value)
    except (TypeError, ValueError):
        return None

def unwrap(message: Dict[str, Any] | None) -> Dict[str, Any]:
    """Remove envelopes (temporária, visualização única...) até o conteúdo real."""
    message = message or {}
    for _ in range(4):
        for name in _WRAPPERS:
            inner = (message.get(name) or {}).get("message")
            if inner:
                message = inner
                break
        else:
            return message
    return message

def _has(m: Dict[str, Any], name: str) -> bool:
    # nós de mídia podem vir vazios ({}) e ainda assim definem o tipo
    return isinstance(m.get(name), dict)

def content_kind(message: Dict[str, Any] | None) -> ContentKind:
    m = unwrap(message)
    video = m["videoMessage"] if _has(m, "videoMessage") else None
    audio = m["audioMessage"] if _has(m, "audioMessage") else None
    if _has(m, "ptvMessage") or (video is not None and video.get("ptv")):
        return ContentKind.VIDEO_NOTE
    if _has(m, "imageMessage"):
        return ContentKind.IMAGE
    if video is not None:
        return ContentKind.ANIMATION if video.get("gifPlayback") else ContentKind.VIDEO
    if audio is not None:
        return ContentKind.VOICE if audio.get("ptt") else ContentKind.AUDIO
    if _has(m, "documentMessage"):
        return ContentKind.DOCUMENT
    if _has(m, "stickerMessage"):
        return ContentKind.STICKER
    if _has(m, "locationMessage") or _has(m, "liveLocationMessage"):
        return ContentKind.LOCATION
    if _has(m, "contactMessage"):
        return ContentKind.CONTACT
    if m.get("conversation") or m.get("extendedTextMessage"):
        return ContentKind.TEXT
    return ContentKind.UNKNOWN

_MEDIA_NODES = {
    ContentKind.IMAGE: ("imageMessage",),
    ContentKind.VIDEO: ("videoMessage",),
    ContentKind.ANIMATION: ("videoMessage",),
    ContentKind.VIDEO_NOTE: ("ptvMessage", "videoMessage"),
    ContentKind.VOICE: ("audioMessage",),
    ContentKind.AUDIO: ("audioMessage",),
    ContentKind.DOCUMENT: ("documentMessage",),
    ContentKind.STICKER: ("stickerMessage",),
    ContentKind.LOCATION: ("locationMessage", "liveLocationMessage"),
    ContentKind.CONTACT: ("contactMessage",),
}

def content_node(message: Dict[str, Any] | None, kind: ContentKind) -> Dict[str, Any]:
    m = unwrap(message)
    for name in _MEDIA_NODES.get(kind, ()):
        if _has(m, name):
            return m[name]
    return {}

def extract_text(message: Dict[str, Any] | None) -> Optional[str]:
    """Texto ou legenda da mensagem."""
    m = unwrap(message)
    if m.get("conversation"):
        return m["conversation"]
    ext = m.get("extendedTextMessage") or {}
    if ext.get("text"):
        return ext["text"]
    for name in ("imageMessage", "videoMessage", "documentMessage", "ptvMessage"):
        caption = (m.get(name) or {}).get("caption")
        if caption:
            return caption
    return None

def parse_key(raw: Dict[str, Any]) -> MessageKey:
    return MessageKey(
        remote_jid=normalize_jid(raw["remoteJid"]),
        id=raw["id"],
        from_me=bool(raw.get("fromMe")),
        participant=normalize_jid(raw.get("participant")) or None,
        remote_jid_alt=normalize_jid(raw.get("remoteJidAlt")) or None,
        participant_alt=normalize_jid(raw.get("participantAlt")) or None,
    )

def parse_message(raw: Dict[str, Any]) -> WhatsAppMessage:
    return WhatsAppMessage(
        key=parse_key(raw["key"]),
        message=raw.get("message") or {},
        push_name=raw.get("pushName"),
        timestamp=_int(raw.get("messageTimestamp")),
    )

def parse_contact(raw: Dict[str, Any]) -> Contact:
    jid = normalize_jid(raw["id"])
    alt = None
    if is_pn(jid):
        alt = raw.get("lid")
    elif is_lid(jid):
        alt = raw.get("phoneNumber") or raw.get("jid")
    return Contact(
        id=jid,
        alt_id=normalize_jid(alt) or None,
        name=raw.get("name"),
        notify=raw.get("notify"),
        verified_name=raw.get("verifiedName"),
        img_url=raw.get("imgUrl") if raw.get("imgUrl") not in ("changed", "removed") else None,
        status=raw.get("status"),
    )

def parse_chat(raw: Dict[str, Any]) -> Chat:
    return Chat(
        id=normalize_jid(raw["id"]),
        name=raw.get("name") or raw.get("subject"),
        addressing_mode=raw.get("addressingMode"),
        conversation_timestamp=_int(raw.get("conversationTimestamp")),
        unread_count=_int(raw.get("unreadCount")),
    )

def parse_group(raw: Dict[str, Any]) -> GroupMetadata:
    return GroupMetadata(
        id=raw["id"],
        subject=raw.get("subject"),
        owner=raw.get("owner"),
        desc=raw.get("desc"),
        creation=_int(raw.get("creation")),
        addressing_mode=raw.get("addressingMode"),
        participants=list(raw.get("participants") or []),
    )

def parse_update(raw: Dict[str, Any]) -> MessageUpdate:
    return MessageUpdate(key=parse_key(raw["key"]), update=dict(raw.get("update") or {}))

def parse_call(raw: Dict[str, Any]) -> CallEvent:
    return CallEvent(
        id=str(raw["id"]),
        from_jid=normalize_jid(raw["from"]),
        status=raw.get("status"),
        is_video=bool(raw.get("isVideo")),
        is_group=bool(raw.get("isGroup")),
        timestamp=_int(raw.get("date")),
    )

def parse_mappings(raw: Any) -> Dict[str, str]:
    """Aceita {pn: lid}, {"pn": ..., "lid": ...} ou lista desses; orienta cada par."""
    items: List[Tuple[Any, Any]] = []
    if isinstance(raw, dict) and ("pn" in raw or "lid" in raw):
        items.append((raw.get("pn"), raw.get("lid")))
    elif isinstance(raw, dict):
        items.extend(raw.items())
    elif isinstance(raw, list):
        for entry in raw:
            if isinstance(entry, dict):
                items.extend(parse_mappings(entry).items())
    out: Dict[str, str] = {}
    for a, b in items:
        a, b = normalize_jid(a), normalize_jid(b)
        if is_lid(a) and is_pn(b):
            a, b = b, a
        if is_pn(a) and is_lid(b):
            out[a] = b
    return out

def _each(parser: Callable[[Dict[str, Any]], Any]) -> Callable[[Any], list]:
    def parse_all(raw: Any) -> list:
        items = raw if isinstance(raw, list) else [raw]
        out = []
        for item in items:
            try:
                out.append(parser(item))
            except (KeyError, TypeError, ValidationError) as e:
                log.debug("transport_item_malformed", parser=parser.__name__, error=repr(e))
        return out
    return parse_all

def _messages(raw: Any) -> list:
    # messages.upsert chega como {"messages": [...], "type": "notify"}
    if isinstance(raw, dict) and "messages" in raw:
        raw = raw["messages"]
    return _each(parse_message)(raw)

PARSERS: Dict[str, Callable[[Any], Any]] = {
    "contacts.upsert": _each(parse_contact),
    "contacts.update": _each(parse_contact),
    "chats.upsert": _each(parse_chat),
    "chats.update": _each(parse_chat),
    "messages.upsert": _messages,
    "messages.update": _each(parse_update),
    "groups.upsert": _each(parse_group),
    "groups.update": _each(parse_group),
    "mapping.update": parse_mappings,
    "call": _each(parse_call),
}

ALIASES = {"lid-mapping.update": "mapping.update"}

class WhatsAppEventSource:
    """Ponte entre o emissor de eventos do transporte e o hub da aplicação."""

    def __init__(self, hub: EventHub):
        self.hub = hub

    async def feed(self, kind: str, raw: Any) -> int:
        """Normaliza e publica. Retorna quantos assinantes falharam."""
        kind = ALIASES.get(kind, kind)
        parser = PARSERS.get(kind)
        if parser is None:
            log.debug("transport_event_ignored", kind=kind)
            return 0
        set_trace_id()
        payload = parser(raw)
        if not payload:
            log.debug("transport_event_empty", kind=kind)
            return 0
        return await self.hub.publish(kind, payload)

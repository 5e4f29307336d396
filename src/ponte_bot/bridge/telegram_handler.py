
"""Caminho inverso: mensagem num tópico do fórum → conversa do WhatsApp.

Feedback na própria mensagem do Telegram: 👍 enviado, ❌ falhou, 🚫 bloqueado por filtro.
"""
from __future__ import annotations
import re
from typing import Any, Dict, Optional
from ..core.errors import MediaTranscodeError, PlatformError
from ..core.jid import CALL_JID, STATUS_JID
from ..core.logging import get_logger, set_trace_id
from ..domain.services.filter_service import FilterService
from ..ports.interfaces import ContentKind, SendResult, TelegramInbound
from .synchronizer import BridgeSynchronizer

log = get_logger()

SPOILER_PREFIX = "🫥 "

REACT_OK = "👍"
REACT_FAILED = "❌"
REACT_BLOCKED = "🚫"

def build_vcard(phone: str, first_name: str | None, last_name: str | None = None) -> str:
    full = " ".join(p for p in (first_name, last_name) if p) or phone
    digits = re.sub(r"\D", "", phone)
    return "\n".join([
        "BEGIN:VCARD",
        "VERSION:3.0",
        f"FN:{full}",
        f"TEL;type=CELL;type=VOICE;waid={digits}:+{digits}",
        "END:VCARD",
    ])

class TelegramRelay:
    """Repassa mensagens dos tópicos para o WhatsApp usando os componentes do sincronizador."""

    def __init__(self, bridge: BridgeSynchronizer, filters: FilterService | None = None):
        self.bridge = bridge
        self.s = bridge.s
        self.telegram = bridge.telegram
        self.whatsapp = bridge.whatsapp
        self.filters = filters

    async def handle(self, msg: TelegramInbound | None) -> bool:
        if msg is None or msg.from_bot or msg.chat_id != self.s.telegram_chat_id:
            return False
        if msg.topic_id is None or not msg.is_topic_message:
            log.debug("telegram_message_outside_topic", message_id=msg.message_id)
            return False
        set_trace_id()
        cid = self.bridge.topics.find_by_topic(msg.topic_id)
        if cid is None or cid == CALL_JID:
            log.debug("telegram_topic_unmapped", topic_id=msg.topic_id)
            return False

        text = msg.text or msg.caption
        blocked = self.filters.match(text) if self.filters is not None else None
        if blocked:
            log.info("telegram_message_filtered", conversation_id=cid, word=blocked)
            await self._react(msg.message_id, REACT_BLOCKED)
            return False

        quoted: Optional[Dict[str, Any]] = None
        if cid == STATUS_JID:
            original = self.bridge.status_replies.get(msg.reply_to_message_id) if msg.reply_to_message_id else None
            if original is None:
                log.debug("status_reply_without_original", message_id=msg.message_id)
                return False
            target = self.bridge.resolver.resolve(original.key.participant or original.key.participant_alt).address
            quoted = {"key": original.key.to_wire(), "message": original.message}
        else:
            target = self.bridge.resolver.resolve_chat(cid).address

        try:
            content = await self._build_content(msg)
        except (PlatformError, MediaTranscodeError) as e:
            log.warning("telegram_content_failed", conversation_id=cid, kind=_kind(msg), error=str(e))
            await self._react(msg.message_id, REACT_FAILED)
            return False
        if content is None:
            return False
        return await self._send(cid, target, msg, content, quoted)

    async def _send(self, cid: str, target: str, msg: TelegramInbound, content: Dict[str, Any],
                    quoted: Optional[Dict[str, Any]]) -> bool:
        await self._presence(target, "composing")
        try:
            result = await self.whatsapp.send_message(target, content, quoted=quoted)
        except Exception as e:
            result = SendResult(ok=False, error_detail=repr(e))
        await self._presence(target, "paused")
        if not result.ok:
            log.warning("whatsapp_send_failed", conversation_id=cid, kind=_kind(msg), error=result.error_detail)
            await self._react(msg.message_id, REACT_FAILED)
            return False
        await self._react(msg.message_id, REACT_OK)
        if result.key is not None and self.bridge.receipts is not None and self.s.feature_read_receipts:
            self.bridge.receipts.enqueue(cid, result.key)
        log.info("telegram_relayed", conversation_id=cid, kind=_kind(msg))
        return True

    async def _build_content(self, msg: TelegramInbound) -> Optional[Dict[str, Any]]:
        kind = msg.media_kind
        caption = msg.caption
        if caption and msg.has_spoiler:
            caption = SPOILER_PREFIX + caption
        if kind is None:
            if not msg.text:
                return None
            return {"text": (SPOILER_PREFIX + msg.text) if msg.has_spoiler else msg.text}
        if kind is ContentKind.LOCATION:
            return {"location": {"degreesLatitude": msg.latitude, "degreesLongitude": msg.longitude}}
        if kind is ContentKind.CONTACT:
            name = " ".join(p for p in (msg.contact_first_name, msg.contact_last_name) if p) or msg.contact_phone
            vcard = build_vcard(msg.contact_phone or "", msg.contact_first_name, msg.contact_last_name)
            return {"contacts": {"displayName": name, "contacts": [{"vcard": vcard}]}}

        data = await self.telegram.download_file(msg.file_id)
        if kind is ContentKind.STICKER:
            return await self._sticker_content(msg, data)
        content: Dict[str, Any]
        if kind is ContentKind.IMAGE:
            content = {"image": data, "caption": caption}
        elif kind is ContentKind.VIDEO:
            content = {"video": data, "caption": caption}
        elif kind is ContentKind.ANIMATION:
            content = {"video": data, "caption": caption, "gifPlayback": True}
        elif kind is ContentKind.VIDEO_NOTE:
            content = {"video": data, "ptv": True}
        elif kind is ContentKind.VOICE:
            content = {"audio": data, "ptt": True, "mimetype": msg.mime_type or "audio/ogg; codecs=opus"}
        elif kind is ContentKind.AUDIO:
            content = {"audio": data, "mimetype": msg.mime_type or "audio/mpeg"}
        else:
            content = {
                "document": data,
                "fileName": msg.file_name or "document",
                "mimetype": msg.mime_type or "application/octet-stream",
                "caption": caption,
            }
        return {k: v for k, v in content.items() if v is not None}

    async def _sticker_content(self, msg: TelegramInbound, data: bytes) -> Optional[Dict[str, Any]]:
        if not msg.sticker_animated:
            return {"sticker": data}
        try:
            return {"sticker": await self.bridge.media.animated_sticker_to_webp(data)}
        except MediaTranscodeError as e:
            log.warning("sticker_convert_failed", topic_id=msg.topic_id, error=str(e))
        await self._react(msg.message_id, REACT_FAILED)
        try:
            png = await self.bridge.media.sticker_to_png(data)
            await self.telegram.send_photo(msg.topic_id, png, caption="⚠️ Sticker could not be forwarded")
        except (MediaTranscodeError, PlatformError) as e:
            log.debug("sticker_echo_failed", topic_id=msg.topic_id, error=str(e))
        return None

    async def _react(self, message_id: int, emoji: str) -> None:
        try:
            await self.telegram.set_reaction(message_id, emoji)
        except PlatformError as e:
            log.debug("telegram_reaction_failed", message_id=message_id, error=str(e))

    async def _presence(self, jid: str, presence: str) -> None:
        if not self.s.feature_presence_updates:
            return
        try:
            await self.whatsapp.send_presence(jid, presence)
        except Exception as e:
            log.debug("presence_failed", jid=jid, error=repr(e))

def _kind(msg: TelegramInbound) -> str:
    return msg.media_kind.value if msg.media_kind else ContentKind.TEXT.value

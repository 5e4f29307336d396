
"""Adapter do Bot API do Telegram (python-telegram-bot) preso ao supergrupo-fórum.

Traduz erros da biblioteca para a taxonomia da ponte:
- BadRequest "message thread not found" (e variantes) → TopicNotFoundError;
- qualquer outro TelegramError (rede, timeout, flood) → PlatformError.
"""
from __future__ import annotations
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar
import httpx
from kink import di
from telegram import Bot, Message, Update
from telegram.error import BadRequest, TelegramError
from ...core.errors import PlatformError, TopicNotFoundError
from ...core.logging import get_logger
from ...core.settings import Settings
from ...ports.interfaces import ContentKind, TelegramInbound

log = get_logger()

T = TypeVar("T")

_THREAD_MISSING = ("thread not found", "topic_deleted", "topic not found", "topic_id_invalid")

def is_thread_missing(error: BaseException) -> bool:
    text = str(error).lower()
    return any(marker in text for marker in _THREAD_MISSING)

class TelegramBotAdapter:
    """Implementa `TelegramPort` sobre `telegram.Bot`."""

    def __init__(self, settings: Settings | None = None, bot: Bot | None = None):
        self.s = settings or di[Settings]
        self.chat_id = self.s.telegram_chat_id
        self.bot = bot or Bot(token=self.s.telegram_bot_token)

    async def initialize(self) -> None:
        await self.bot.initialize()
        log.info("telegram_bot_ready", chat_id=self.chat_id)

    async def close(self) -> None:
        await self.bot.shutdown()

    async def _call(self, op: str, topic_id: int | None, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await fn()
        except BadRequest as e:
            if topic_id is not None and is_thread_missing(e):
                log.warning("telegram_topic_missing", op=op, topic_id=topic_id)
                raise TopicNotFoundError(topic_id, str(e)) from e
            raise PlatformError(f"{op}: {e}") from e
        except TelegramError as e:
            raise PlatformError(f"{op}: {e}") from e

    # ---------- Tópicos ----------
    async def create_topic(self, name: str, icon_color: int | None = None) -> int:
        topic = await self._call("create_topic", None, lambda: self.bot.create_forum_topic(
            chat_id=self.chat_id, name=name[:128], icon_color=icon_color,
        ))
        log.info("telegram_topic_created", name=name, topic_id=topic.message_thread_id)
        return topic.message_thread_id

    async def edit_topic(self, topic_id: int, name: str) -> None:
        await self._call("edit_topic", topic_id, lambda: self.bot.edit_forum_topic(
            chat_id=self.chat_id, message_thread_id=topic_id, name=name[:128],
        ))

    async def topic_exists(self, topic_id: int) -> bool:
        """Sonda o tópico com uma ação de chat (invisível para os membros)."""
        try:
            await self._call("topic_exists", topic_id, lambda: self.bot.send_chat_action(
                chat_id=self.chat_id, action="typing", message_thread_id=topic_id,
            ))
        except TopicNotFoundError:
            return False
        return True

    # ---------- Envio ----------
    async def send_text(self, topic_id: int, text: str, parse_mode: str | None = None) -> int:
        msg = await self._call("send_text", topic_id, lambda: self.bot.send_message(
            chat_id=self.chat_id, text=text, message_thread_id=topic_id, parse_mode=parse_mode,
        ))
        return msg.message_id

    async def send_photo(self, topic_id: int, photo: bytes | str, caption: str | None = None) -> int:
        msg = await self._call("send_photo", topic_id, lambda: self.bot.send_photo(
            chat_id=self.chat_id, photo=photo, caption=caption, message_thread_id=topic_id,
        ))
        return msg.message_id

    async def send_video(self, topic_id: int, video: bytes, caption: str | None = None) -> int:
        msg = await self._call("send_video", topic_id, lambda: self.bot.send_video(
            chat_id=self.chat_id, video=video, caption=caption, message_thread_id=topic_id,
        ))
        return msg.message_id

    async def send_animation(self, topic_id: int, animation: bytes, caption: str | None = None) -> int:
        msg = await self._call("send_animation", topic_id, lambda: self.bot.send_animation(
            chat_id=self.chat_id, animation=animation, caption=caption, message_thread_id=topic_id,
        ))
        return msg.message_id

    async def send_video_note(self, topic_id: int, video_note: bytes) -> int:
        msg = await self._call("send_video_note", topic_id, lambda: self.bot.send_video_note(
            chat_id=self.chat_id, video_note=video_note, message_thread_id=topic_id,
        ))
        return msg.message_id

    async def send_voice(self, topic_id: int, voice: bytes, caption: str | None = None) -> int:
        msg = await self._call("send_voice", topic_id, lambda: self.bot.send_voice(
            chat_id=self.chat_id, voice=voice, caption=caption, message_thread_id=topic_id,
        ))
        return msg.message_id

    async def send_audio(self, topic_id: int, audio: bytes, caption: str | None = None, title: str | None = None) -> int:
        msg = await self._call("send_audio", topic_id, lambda: self.bot.send_audio(
            chat_id=self.chat_id, audio=audio, caption=caption, title=title, message_thread_id=topic_id,
        ))
        return msg.message_id

    async def send_document(self, topic_id: int, document: bytes, filename: str, caption: str | None = None) -> int:
        msg = await self._call("send_document", topic_id, lambda: self.bot.send_document(
            chat_id=self.chat_id, document=document, filename=filename, caption=caption,
            message_thread_id=topic_id,
        ))
        return msg.message_id

    async def send_sticker(self, topic_id: int, sticker: bytes) -> int:
        msg = await self._call("send_sticker", topic_id, lambda: self.bot.send_sticker(
            chat_id=self.chat_id, sticker=sticker, message_thread_id=topic_id,
        ))
        return msg.message_id

    async def send_location(self, topic_id: int, latitude: float, longitude: float) -> int:
        msg = await self._call("send_location", topic_id, lambda: self.bot.send_location(
            chat_id=self.chat_id, latitude=latitude, longitude=longitude, message_thread_id=topic_id,
        ))
        return msg.message_id

    async def send_contact(self, topic_id: int, phone_number: str, first_name: str, last_name: str | None = None) -> int:
        msg = await self._call("send_contact", topic_id, lambda: self.bot.send_contact(
            chat_id=self.chat_id, phone_number=phone_number, first_name=first_name, last_name=last_name,
            message_thread_id=topic_id,
        ))
        return msg.message_id

    async def pin_message(self, message_id: int) -> None:
        await self._call("pin_message", None, lambda: self.bot.pin_chat_message(
            chat_id=self.chat_id, message_id=message_id, disable_notification=True,
        ))

    async def set_reaction(self, message_id: int, emoji: str) -> None:
        await self._call("set_reaction", None, lambda: self.bot.set_message_reaction(
            chat_id=self.chat_id, message_id=message_id, reaction=emoji,
        ))

    async def download_file(self, file_id: str) -> bytes:
        tg_file = await self._call("get_file", None, lambda: self.bot.get_file(file_id))
        url = tg_file.file_path or ""
        if not url.startswith("http"):
            url = f"https://api.telegram.org/file/bot{self.s.telegram_bot_token}/{url}"
        try:
            async with httpx.AsyncClient(timeout=self.s.http_timeout_s) as cli:
                r = await cli.get(url)
                r.raise_for_status()
                return r.content
        except httpx.HTTPError as e:
            raise PlatformError(f"download_file: {e}") from e

    # ---------- Entrada ----------
    def parse_update(self, update: Update | Dict[str, Any]) -> Optional[TelegramInbound]:
        if isinstance(update, dict):
            update = Update.de_json(update, self.bot)
        msg = update.message if update is not None else None
        if msg is None:
            return None
        return parse_message(msg)

def parse_message(msg: Message) -> Optional[TelegramInbound]:
    """Converte `telegram.Message` em TelegramInbound. Mensagens de serviço → None."""
    if msg.forum_topic_created or msg.forum_topic_edited or msg.pinned_message:
        return None
    data: Dict[str, Any] = {
        "message_id": msg.message_id,
        "chat_id": msg.chat.id,
        "chat_type": msg.chat.type,
        "topic_id": msg.message_thread_id,
        "is_topic_message": bool(msg.is_topic_message),
        "from_bot": bool(msg.from_user and msg.from_user.is_bot),
        "text": msg.text,
        "caption": msg.caption,
        "has_spoiler": bool(msg.has_media_spoiler) or any(e.type == "spoiler" for e in (msg.entities or ())),
        "reply_to_message_id": msg.reply_to_message.message_id if msg.reply_to_message else None,
    }
    if msg.photo:
        data.update(media_kind=ContentKind.IMAGE, file_id=msg.photo[-1].file_id)
    elif msg.video:
        data.update(media_kind=ContentKind.VIDEO, file_id=msg.video.file_id, mime_type=msg.video.mime_type)
    elif msg.animation:
        data.update(media_kind=ContentKind.ANIMATION, file_id=msg.animation.file_id, mime_type=msg.animation.mime_type)
    elif msg.video_note:
        data.update(media_kind=ContentKind.VIDEO_NOTE, file_id=msg.video_note.file_id)
    elif msg.voice:
        data.update(media_kind=ContentKind.VOICE, file_id=msg.voice.file_id, mime_type=msg.voice.mime_type)
    elif msg.audio:
        data.update(media_kind=ContentKind.AUDIO, file_id=msg.audio.file_id, file_name=msg.audio.file_name,
                    mime_type=msg.audio.mime_type)
    elif msg.document:
        data.update(media_kind=ContentKind.DOCUMENT, file_id=msg.document.file_id, file_name=msg.document.file_name,
                    mime_type=msg.document.mime_type)
    elif msg.sticker:
        data.update(media_kind=ContentKind.STICKER, file_id=msg.sticker.file_id,
                    sticker_animated=bool(msg.sticker.is_animated or msg.sticker.is_video))
    elif msg.location:
        data.update(media_kind=ContentKind.LOCATION, latitude=msg.location.latitude, longitude=msg.location.longitude)
    elif msg.contact:
        data.update(media_kind=ContentKind.CONTACT, contact_phone=msg.contact.phone_number,
                    contact_first_name=msg.contact.first_name, contact_last_name=msg.contact.last_name)
    elif not msg.text:
        return None
    return TelegramInbound(**data)

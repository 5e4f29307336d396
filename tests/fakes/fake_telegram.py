
"""Fake do TelegramPort: fórum em memória com registro de chamadas."""
from __future__ import annotations
import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from ponte_bot.core.errors import PlatformError, TopicNotFoundError


@dataclass
class SentItem:
    """Um envio registrado num tópico."""
    message_id: int
    topic_id: int
    kind: str
    payload: Any = None
    caption: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


class FakeTelegram:
    """
    Fórum falso: tópicos vivos em `topics`, envios em `sent`.

    `delete_topic(id)` simula o tópico apagado pelo usuário: envios para ele passam
    a levantar TopicNotFoundError. `fail_next[op]` injeta uma exceção na próxima chamada.
    """

    def __init__(self, create_delay: float = 0.0):
        self.create_delay = create_delay
        self.topics: Dict[int, str] = {}
        self.created: List[str] = []
        self.renamed: List[tuple[int, str]] = []
        self.sent: List[SentItem] = []
        self.pinned: List[int] = []
        self.reactions: Dict[int, List[str]] = {}
        self.files: Dict[str, bytes] = {}
        self.fail_next: Dict[str, Exception] = {}
        self._next_topic = 100
        self._next_message = 1000

    def delete_topic(self, topic_id: int) -> None:
        self.topics.pop(topic_id, None)

    def sent_to(self, topic_id: int) -> List[SentItem]:
        return [s for s in self.sent if s.topic_id == topic_id]

    def _maybe_fail(self, op: str) -> None:
        exc = self.fail_next.pop(op, None)
        if exc is not None:
            raise exc

    def _check(self, topic_id: int) -> None:
        if topic_id not in self.topics:
            raise TopicNotFoundError(topic_id, "Bad Request: message thread not found")

    def _record(self, topic_id: int, kind: str, payload: Any = None, caption: str | None = None, **extra) -> int:
        self._maybe_fail(kind)
        self._check(topic_id)
        self._next_message += 1
        self.sent.append(SentItem(self._next_message, topic_id, kind, payload, caption, extra))
        return self._next_message

    # ---------- Tópicos ----------
    async def create_topic(self, name: str, icon_color: int | None = None) -> int:
        if self.create_delay:
            await asyncio.sleep(self.create_delay)
        self._maybe_fail("create_topic")
        self._next_topic += 1
        self.topics[self._next_topic] = name
        self.created.append(name)
        return self._next_topic

    async def edit_topic(self, topic_id: int, name: str) -> None:
        self._maybe_fail("edit_topic")
        self._check(topic_id)
        self.topics[topic_id] = name
        self.renamed.append((topic_id, name))

    async def topic_exists(self, topic_id: int) -> bool:
        return topic_id in self.topics

    # ---------- Envio ----------
    async def send_text(self, topic_id: int, text: str, parse_mode: str | None = None) -> int:
        return self._record(topic_id, "text", text, parse_mode=parse_mode)

    async def send_photo(self, topic_id: int, photo: bytes | str, caption: str | None = None) -> int:
        return self._record(topic_id, "photo", photo, caption)

    async def send_video(self, topic_id: int, video: bytes, caption: str | None = None) -> int:
        return self._record(topic_id, "video", video, caption)

    async def send_animation(self, topic_id: int, animation: bytes, caption: str | None = None) -> int:
        return self._record(topic_id, "animation", animation, caption)

    async def send_video_note(self, topic_id: int, video_note: bytes) -> int:
        return self._record(topic_id, "video_note", video_note)

    async def send_voice(self, topic_id: int, voice: bytes, caption: str | None = None) -> int:
        return self._record(topic_id, "voice", voice, caption)

    async def send_audio(self, topic_id: int, audio: bytes, caption: str | None = None, title: str | None = None) -> int:
        return self._record(topic_id, "audio", audio, caption, title=title)

    async def send_document(self, topic_id: int, document: bytes, filename: str, caption: str | None = None) -> int:
        return self._record(topic_id, "document", document, caption, filename=filename)

    async def send_sticker(self, topic_id: int, sticker: bytes) -> int:
        return self._record(topic_id, "sticker", sticker)

    async def send_location(self, topic_id: int, latitude: float, longitude: float) -> int:
        return self._record(topic_id, "location", (latitude, longitude))

    async def send_contact(self, topic_id: int, phone_number: str, first_name: str, last_name: str | None = None) -> int:
        return self._record(topic_id, "contact", phone_number, first_name=first_name, last_name=last_name)

    async def pin_message(self, message_id: int) -> None:
        self.pinned.append(message_id)

    async def set_reaction(self, message_id: int, emoji: str) -> None:
        self._maybe_fail("set_reaction")
        self.reactions.setdefault(message_id, []).append(emoji)

    async def download_file(self, file_id: str) -> bytes:
        self._maybe_fail("download_file")
        if file_id not in self.files:
            raise PlatformError(f"download_file: unknown file {file_id}")
        return self.files[file_id]

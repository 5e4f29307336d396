
"""Portas hexagonais (interfaces) e DTOs das duas plataformas."""
from __future__ import annotations
from enum import Enum
from typing import Any, Protocol
from pydantic import BaseModel, Field

class MessageKey(BaseModel):
    """Chave de mensagem do WhatsApp: {remoteJid, id, participant, alt-ids}."""
    remote_jid: str
    id: str
    from_me: bool = False
    participant: str | None = None
    remote_jid_alt: str | None = None
    participant_alt: str | None = None

    def to_wire(self) -> dict:
        """Formato camelCase esperado pela biblioteca de transporte."""
        out: dict[str, Any] = {"remoteJid": self.remote_jid, "id": self.id, "fromMe": self.from_me}
        if self.participant:
            out["participant"] = self.participant
        return out

class WhatsAppMessage(BaseModel):
    """Mensagem decodificada entregue pela sessão do WhatsApp."""
    key: MessageKey
    message: dict[str, Any] = Field(default_factory=dict)
    push_name: str | None = None
    timestamp: int | None = None

class MessageUpdate(BaseModel):
    """Atualização parcial (reação, status de entrega, votos de enquete) de uma mensagem já vista."""
    key: MessageKey
    update: dict[str, Any] = Field(default_factory=dict)

class CallEvent(BaseModel):
    id: str
    from_jid: str
    status: str | None = None
    is_video: bool = False
    is_group: bool = False
    timestamp: int | None = None

class ContentKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    ANIMATION = "animation"
    VIDEO_NOTE = "video_note"
    VOICE = "voice"
    AUDIO = "audio"
    DOCUMENT = "document"
    STICKER = "sticker"
    LOCATION = "location"
    CONTACT = "contact"
    UNKNOWN = "unknown"

class SendResult(BaseModel):
    """Resultado padronizado de envio pelo transporte do WhatsApp."""
    ok: bool
    key: MessageKey | None = None
    error_detail: str | None = None

class GroupInfo(BaseModel):
    id: str
    subject: str | None = None
    participants: list[dict[str, Any]] = Field(default_factory=list)
    creation: int | None = None
    addressing_mode: str | None = None

class TelegramInbound(BaseModel):
    """Mensagem do Telegram normalizada (update `message`)."""
    message_id: int
    chat_id: int
    chat_type: str = "supergroup"
    topic_id: int | None = None
    is_topic_message: bool = False
    from_bot: bool = False
    text: str | None = None
    caption: str | None = None
    has_spoiler: bool = False
    media_kind: ContentKind | None = None
    file_id: str | None = None
    file_name: str | None = None
    mime_type: str | None = None
    sticker_animated: bool = False
    latitude: float | None = None
    longitude: float | None = None
    contact_phone: str | None = None
    contact_first_name: str | None = None
    contact_last_name: str | None = None
    reply_to_message_id: int | None = None

class WhatsAppPort(Protocol):
    """Sessão do WhatsApp (biblioteca de transporte externa)."""
    async def send_message(self, jid: str, content: dict[str, Any], quoted: dict[str, Any] | None = None) -> SendResult: ...
    async def group_metadata(self, jid: str) -> GroupInfo: ...
    async def profile_picture_url(self, jid: str) -> str | None: ...
    async def read_messages(self, keys: list[MessageKey]) -> None: ...
    async def download_media(self, msg: WhatsAppMessage) -> bytes: ...
    async def fetch_status(self, jid: str) -> str | None: ...
    async def send_presence(self, jid: str, presence: str) -> None: ...
    def lookup_pn_for_lid(self, lid: str) -> str | None: ...

class TelegramPort(Protocol):
    """Bot do Telegram preso ao supergrupo-fórum configurado."""
    async def create_topic(self, name: str, icon_color: int | None = None) -> int: ...
    async def edit_topic(self, topic_id: int, name: str) -> None: ...
    async def topic_exists(self, topic_id: int) -> bool: ...
    async def send_text(self, topic_id: int, text: str, parse_mode: str | None = None) -> int: ...
    async def send_photo(self, topic_id: int, photo: bytes | str, caption: str | None = None) -> int: ...
    async def send_video(self, topic_id: int, video: bytes, caption: str | None = None) -> int: ...
    async def send_animation(self, topic_id: int, animation: bytes, caption: str | None = None) -> int: ...
    async def send_video_note(self, topic_id: int, video_note: bytes) -> int: ...
    async def send_voice(self, topic_id: int, voice: bytes, caption: str | None = None) -> int: ...
    async def send_audio(self, topic_id: int, audio: bytes, caption: str | None = None, title: str | None = None) -> int: ...
    async def send_document(self, topic_id: int, document: bytes, filename: str, caption: str | None = None) -> int: ...
    async def send_sticker(self, topic_id: int, sticker: bytes) -> int: ...
    async def send_location(self, topic_id: int, latitude: float, longitude: float) -> int: ...
    async def send_contact(self, topic_id: int, phone_number: str, first_name: str, last_name: str | None = None) -> int: ...
    async def pin_message(self, message_id: int) -> None: ...
    async def set_reaction(self, message_id: int, emoji: str) -> None: ...
    async def download_file(self, file_id: str) -> bytes: ...

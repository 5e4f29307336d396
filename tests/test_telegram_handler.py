
"""Testes do caminho Telegram → WhatsApp."""
from __future__ import annotations
import pytest
from ponte_bot.bridge.telegram_handler import TelegramRelay, build_vcard
from ponte_bot.core.jid import STATUS_JID
from ponte_bot.domain.services.filter_service import FilterService
from ponte_bot.ports.interfaces import ContentKind, MessageKey, TelegramInbound, WhatsAppMessage

PN = "5511999990000@s.whatsapp.net"
LID = "123456789012345@lid"


@pytest.fixture
def filters() -> FilterService:
    return FilterService()


@pytest.fixture
def relay(bridge, filters) -> TelegramRelay:
    return TelegramRelay(bridge, filters)


@pytest.fixture
async def topic_id(bridge) -> int:
    return await bridge.get_or_create_topic(PN)


@pytest.fixture
def inbound(settings, topic_id):
    def make(**fields) -> TelegramInbound:
        data = {"message_id": 7, "chat_id": settings.telegram_chat_id, "topic_id": topic_id, "is_topic_message": True}
        data.update(fields)
        return TelegramInbound(**data)
    return make


class TestText:
    async def test_text_is_sent_and_acknowledged(self, relay, inbound, whatsapp, telegram, bridge):
        assert await relay.handle(inbound(text="olá")) is True
        assert whatsapp.sent == [{"jid": PN, "content": {"text": "olá"}, "quoted": None}]
        assert telegram.reactions[7] == ["👍"]
        assert bridge.receipts.pending(PN) == 1

    async def test_lid_conversation_sends_to_pn(self, relay, bridge, store, settings, whatsapp):
        lid_topic = await bridge.get_or_create_topic(LID)
        store.store_mapping(PN, LID)
        msg = TelegramInbound(message_id=8, chat_id=settings.telegram_chat_id, topic_id=lid_topic,
                              is_topic_message=True, text="oi")
        assert await relay.handle(msg) is True
        assert whatsapp.sent[-1]["jid"] == PN

    async def test_spoiler_gets_prefix(self, relay, inbound, whatsapp):
        await relay.handle(inbound(text="segredo", has_spoiler=True))
        assert whatsapp.sent[-1]["content"] == {"text": "🫥 segredo"}

    async def test_filtered_text_is_blocked(self, relay, inbound, filters, whatsapp, telegram):
        await filters.add("spam")
        assert await relay.handle(inbound(text="Spam aqui")) is False
        assert whatsapp.sent == []
        assert telegram.reactions[7] == ["🚫"]

    async def test_send_failure_reacts_with_cross(self, relay, inbound, whatsapp, telegram):
        whatsapp.send_ok = False
        assert await relay.handle(inbound(text="olá")) is False
        assert telegram.reactions[7] == ["❌"]

    async def test_presence_around_send(self, relay, inbound, whatsapp, settings):
        settings.feature_presence_updates = True
        await relay.handle(inbound(text="olá"))
        assert whatsapp.presences == [(PN, "composing"), (PN, "paused")]


class TestIgnored:
    async def test_bot_messages(self, relay, inbound, whatsapp):
        assert await relay.handle(inbound(text="eco", from_bot=True)) is False
        assert whatsapp.sent == []

    async def test_other_chat(self, relay, inbound):
        assert await relay.handle(inbound(text="oi", chat_id=-100999)) is False

    async def test_unmapped_topic(self, relay, inbound):
        assert await relay.handle(inbound(text="oi", topic_id=99999)) is False

    async def test_general_topic(self, relay, inbound):
        assert await relay.handle(inbound(text="oi", topic_id=None, is_topic_message=False)) is False


class TestMedia:
    async def test_photo_with_caption(self, relay, inbound, telegram, whatsapp):
        telegram.files["F1"] = b"jpg"
        await relay.handle(inbound(media_kind=ContentKind.IMAGE, file_id="F1", caption="legenda"))
        assert whatsapp.sent[-1]["content"] == {"image": b"jpg", "caption": "legenda"}

    async def test_animation_plays_as_gif(self, relay, inbound, telegram, whatsapp):
        telegram.files["F1"] = b"mp4"
        await relay.handle(inbound(media_kind=ContentKind.ANIMATION, file_id="F1"))
        assert whatsapp.sent[-1]["content"] == {"video": b"mp4", "gifPlayback": True}

    async def test_voice_is_ptt(self, relay, inbound, telegram, whatsapp):
        telegram.files["F1"] = b"ogg"
        await relay.handle(inbound(media_kind=ContentKind.VOICE, file_id="F1"))
        content = whatsapp.sent[-1]["content"]
        assert content["ptt"] is True and content["audio"] == b"ogg"

    async def test_video_note_is_ptv(self, relay, inbound, telegram, whatsapp):
        telegram.files["F1"] = b"mp4"
        await relay.handle(inbound(media_kind=ContentKind.VIDEO_NOTE, file_id="F1"))
        assert whatsapp.sent[-1]["content"] == {"video": b"mp4", "ptv": True}

    async def test_document_keeps_name(self, relay, inbound, telegram, whatsapp):
        telegram.files["F1"] = b"%PDF"
        await relay.handle(inbound(media_kind=ContentKind.DOCUMENT, file_id="F1", file_name="nota.pdf",
                                   mime_type="application/pdf"))
        content = whatsapp.sent[-1]["content"]
        assert content["fileName"] == "nota.pdf" and content["mimetype"] == "application/pdf"

    async def test_download_failure_reacts_with_cross(self, relay, inbound, telegram, whatsapp):
        assert await relay.handle(inbound(media_kind=ContentKind.IMAGE, file_id="missing")) is False
        assert whatsapp.sent == []
        assert telegram.reactions[7] == ["❌"]

    async def test_static_sticker_passthrough(self, relay, inbound, telegram, whatsapp):
        telegram.files["F1"] = b"webp"
        await relay.handle(inbound(media_kind=ContentKind.STICKER, file_id="F1"))
        assert whatsapp.sent[-1]["content"] == {"sticker": b"webp"}

    async def test_animated_sticker_converted(self, relay, inbound, telegram, whatsapp):
        telegram.files["F1"] = b"webm"
        await relay.handle(inbound(media_kind=ContentKind.STICKER, file_id="F1", sticker_animated=True))
        assert whatsapp.sent[-1]["content"] == {"sticker": b"webp:webm"}

    async def test_animated_sticker_failure_echoes_png(self, relay, inbound, telegram, whatsapp, media, topic_id):
        """Conversão falhou: ❌ na mensagem e a figurinha volta ao tópico como PNG."""
        media.fail = True
        telegram.files["F1"] = b"webm"
        assert await relay.handle(inbound(media_kind=ContentKind.STICKER, file_id="F1", sticker_animated=True)) is False
        assert whatsapp.sent == []
        assert telegram.reactions[7] == ["❌"]
        echo = telegram.sent_to(topic_id)[-1]
        assert echo.kind == "photo" and echo.payload == b"png:webm"


class TestLocationAndContact:
    async def test_location(self, relay, inbound, whatsapp):
        await relay.handle(inbound(media_kind=ContentKind.LOCATION, latitude=-23.5, longitude=-46.6))
        assert whatsapp.sent[-1]["content"] == {"location": {"degreesLatitude": -23.5, "degreesLongitude": -46.6}}

    async def test_contact_card(self, relay, inbound, whatsapp):
        await relay.handle(inbound(media_kind=ContentKind.CONTACT, contact_phone="+55 11 77777-0000",
                                   contact_first_name="João", contact_last_name="Silva"))
        content = whatsapp.sent[-1]["content"]["contacts"]
        assert content["displayName"] == "João Silva"
        assert "waid=5511777770000:+5511777770000" in content["contacts"][0]["vcard"]

    def test_vcard_shape(self):
        card = build_vcard("+55 (11) 7777-0000", "Ana")
        assert card.splitlines() == [
            "BEGIN:VCARD",
            "VERSION:3.0",
            "FN:Ana",
            "TEL;type=CELL;type=VOICE;waid=551177770000:+551177770000",
            "END:VCARD",
        ]


class TestStatusReplies:
    async def test_reply_quotes_the_status(self, relay, bridge, telegram, whatsapp, settings):
        status = WhatsAppMessage(key=MessageKey(remote_jid=STATUS_JID, id="ST1", participant=PN),
                                 message={"conversation": "bom dia"})
        await bridge.sync_message(status)
        status_topic = bridge.topics.topic_id(STATUS_JID)
        posted = telegram.sent_to(status_topic)[-1]
        reply = TelegramInbound(message_id=9, chat_id=settings.telegram_chat_id, topic_id=status_topic,
                                is_topic_message=True, text="que legal", reply_to_message_id=posted.message_id)
        assert await relay.handle(reply) is True
        sent = whatsapp.sent[-1]
        assert sent["jid"] == PN
        assert sent["quoted"]["key"]["id"] == "ST1"

    async def test_status_topic_without_reply_is_ignored(self, relay, bridge, settings, whatsapp):
        status_topic = await bridge.get_or_create_topic(STATUS_JID)
        msg = TelegramInbound(message_id=9, chat_id=settings.telegram_chat_id, topic_id=status_topic,
                              is_topic_message=True, text="solto")
        assert await relay.handle(msg) is False
        assert whatsapp.sent == []

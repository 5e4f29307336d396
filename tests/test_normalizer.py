
"""Testes da normalização dos eventos do transporte do WhatsApp."""
from __future__ import annotations
from ponte_bot.connectors.whatsapp.normalizer import (
    WhatsAppEventSource, content_kind, extract_text, parse_contact, parse_mappings, parse_message,
)
from ponte_bot.core.events import EventHub
from ponte_bot.domain.services.entity_store import EntityStore
from ponte_bot.ports.interfaces import ContentKind

PN = "5511999990000@s.whatsapp.net"
LID = "123456789012345@lid"


class TestContent:
    def test_kinds(self):
        assert content_kind({"conversation": "oi"}) is ContentKind.TEXT
        assert content_kind({"videoMessage": {"gifPlayback": True}}) is ContentKind.ANIMATION
        assert content_kind({"videoMessage": {"ptv": True}}) is ContentKind.VIDEO_NOTE
        assert content_kind({"ptvMessage": {}}) is ContentKind.VIDEO_NOTE
        assert content_kind({"imageMessage": {}}) is ContentKind.IMAGE
        assert content_kind({"documentMessage": {}}) is ContentKind.DOCUMENT
        assert content_kind({"audioMessage": {"ptt": True}}) is ContentKind.VOICE
        assert content_kind({"audioMessage": {"seconds": 3}}) is ContentKind.AUDIO
        assert content_kind({"reactionMessage": {"text": "👍"}}) is ContentKind.UNKNOWN

    def test_wrappers_are_unwrapped(self):
        message = {"ephemeralMessage": {"message": {"viewOnceMessageV2": {"message": {"imageMessage": {"caption": "x"}}}}}}
        assert content_kind(message) is ContentKind.IMAGE
        assert extract_text(message) == "x"

    def test_extended_text(self):
        assert extract_text({"extendedTextMessage": {"text": "link"}}) == "link"


class TestParsers:
    def test_message_key_with_alt_ids(self):
        msg = parse_message({
            "key": {"remoteJid": "5511999990000:3@s.whatsapp.net", "id": "A1", "fromMe": False,
                    "remoteJidAlt": LID},
            "message": {"conversation": "oi"},
            "pushName": "Ana",
            "messageTimestamp": {"low": 1700000000, "high": 0},
        })
        assert msg.key.remote_jid == PN and msg.key.remote_jid_alt == LID
        assert msg.timestamp == 1700000000 and msg.push_name == "Ana"

    def test_contact_by_lid_with_phone(self):
        contact = parse_contact({"id": LID, "phoneNumber": PN, "notify": "Ana", "imgUrl": "changed"})
        assert contact.pn == PN and contact.lid == LID
        assert contact.img_url is None

    def test_mappings_in_any_shape(self):
        assert parse_mappings({PN: LID}) == {PN: LID}
        assert parse_mappings({"lid": LID, "pn": PN}) == {PN: LID}
        assert parse_mappings([{"pn": LID, "lid": PN}]) == {PN: LID}
        assert parse_mappings({PN: "120363@g.us"}) == {}


class TestEventSource:
    async def test_feed_publishes_to_store(self):
        hub = EventHub("wa")
        store = EntityStore(None)
        store.bind(hub)
        source = WhatsAppEventSource(hub)
        await source.feed("messages.upsert", {"type": "notify", "messages": [
            {"key": {"remoteJid": PN, "id": "A1"}, "message": {"conversation": "oi"}},
            {"key": {"id": "sem remoteJid"}},
        ]})
        await source.feed("lid-mapping.update", {"pn": PN, "lid": LID})
        assert store.load_message(PN, "A1").message == {"conversation": "oi"}
        assert store.get_pn_for_lid(LID) == PN

    async def test_unknown_event_is_ignored(self):
        assert await WhatsAppEventSource(EventHub("wa")).feed("presence.update", {}) == 0

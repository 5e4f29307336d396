
"""Testes da resolução de identidade (PN preferido) e dos nomes de exibição."""
from __future__ import annotations
from ponte_bot.domain.entities import Chat, Contact, GroupMetadata
from ponte_bot.domain.services.identity_service import IdentityResolver
from ponte_bot.ports.interfaces import MessageKey

PN = "5511999990000@s.whatsapp.net"
LID = "123456789012345@lid"
GROUP = "120363012345@g.us"


class TestResolve:
    def test_pn_is_already_canonical(self, resolver):
        res = resolver.resolve(PN)
        assert res.address == PN and res.resolved and not res.changed

    def test_device_suffix_is_stripped(self, resolver):
        assert resolver.resolve("5511999990000:12@s.whatsapp.net").address == PN

    def test_lid_resolved_through_store_mapping(self, resolver, store):
        store.store_mapping(PN, LID)
        res = resolver.resolve(LID)
        assert res.address == PN and res.changed

    def test_lid_resolved_through_contact_record(self, resolver, store):
        store.upsert_contact(Contact(id=LID, alt_id=PN, name="Ana"))
        assert resolver.resolve(LID).address == PN

    def test_transport_lookup_is_written_back(self, resolver, store, whatsapp):
        """O que a sessão do transporte sabe vai para o Store."""
        whatsapp.lid_to_pn[LID] = PN
        assert resolver.resolve(LID).address == PN
        assert store.get_pn_for_lid(LID) == PN
        resolver.resolve(LID)
        assert whatsapp.lookups == 1

    def test_unresolved_lid_returns_original(self, resolver):
        res = resolver.resolve(LID)
        assert res.address == LID
        assert res.resolved is False

    def test_groups_pass_through(self, resolver, store):
        store.store_mapping(PN, LID)
        assert resolver.resolve(GROUP).address == GROUP
        assert resolver.resolve("status@broadcast").address == "status@broadcast"

    def test_group_sender_is_the_participant(self, resolver, store):
        store.store_mapping(PN, LID)
        key = MessageKey(remote_jid=GROUP, id="A1", participant=LID)
        assert resolver.resolve_sender(key).address == PN
        assert resolver.resolve_chat(key.remote_jid).address == GROUP


class TestNames:
    def test_contact_name_preferred(self, resolver, store):
        store.upsert_contact(Contact(id=PN, notify="Ana"))
        assert resolver.display_name(PN) == "Ana"

    def test_phone_fallback_for_pn(self, resolver):
        assert resolver.display_name(PN) == "+5511999990000"

    def test_raw_address_fallback_for_unresolved_lid(self, resolver):
        assert resolver.display_name(LID) == LID

    def test_name_that_is_the_phone_is_ignored(self, resolver, store):
        store.upsert_contact(Contact(id=PN, notify="+55 11 99999-0000"))
        assert resolver.display_name(PN) == "+5511999990000"

    def test_group_subject_then_chat_name(self, resolver, store):
        store.upsert_chat(Chat(id=GROUP, name="Amigos"))
        assert resolver.display_name(GROUP) == "Amigos"
        store.set_group_metadata(GroupMetadata(id=GROUP, subject="Família"))
        assert resolver.display_name(GROUP) == "Família"

    def test_sender_label_falls_back_to_number(self, resolver):
        assert resolver.sender_label(PN) == "5511999990000"

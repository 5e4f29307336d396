
"""Sincronizador WhatsApp → Telegram: ciclo de vida dos tópicos e repasse de conteúdo.

Estados por conversa: sem tópico → criando → mapeado; "tópico não encontrado" num
repasse purga o mapeamento (compare-and-delete) e recria, repetindo o MESMO envio uma
única vez. Criação é single-flight por conversa e nunca é cancelada no meio.
Repasses da mesma conversa seguem a ordem de chegada (trava por conversa).
"""
from __future__ import annotations
import re
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar
from kink import di
from ..connectors.whatsapp.normalizer import content_kind, content_node, extract_text
from ..core.cache import BoundedCache
from ..core.coalesce import KeyedLock, SingleFlight
from ..core.errors import BridgeError, MediaTranscodeError, PlatformError, TopicCreationError, TopicNotFoundError
from ..core.jid import CALL_JID, STATUS_JID, is_broadcast, is_group, is_lid, is_pn, is_user, phone_of
from ..core.logging import get_logger
from ..core.settings import Settings
from ..core.templates import TextTemplates
from ..domain.entities import Contact, GroupMetadata, StoredMessage
from ..domain.services.entity_store import EntityStore
from ..domain.services.identity_service import IdentityResolver, Resolution
from ..domain.services.media_service import MediaService
from ..domain.services.topic_map import TopicMap, TopicMapping
from ..ports.interfaces import CallEvent, ContentKind, TelegramPort, WhatsAppMessage, WhatsAppPort
from ..tasks.read_receipts import ReadReceiptBatcher

log = get_logger()

T = TypeVar("T")

ICON_DEFAULT = 0x7ABA3C
ICON_GROUP = 0x6FB9F0
ICON_STATUS = 0xFF6B35
ICON_CALL = 0xFF4757

SPECIAL_TOPICS = {
    STATUS_JID: ("📊 Status Updates", ICON_STATUS),
    CALL_JID: ("📞 Call Logs", ICON_CALL),
}

MEDIA_KINDS = {
    ContentKind.IMAGE, ContentKind.VIDEO, ContentKind.ANIMATION, ContentKind.VIDEO_NOTE,
    ContentKind.VOICE, ContentKind.AUDIO, ContentKind.DOCUMENT, ContentKind.STICKER,
}

_VCARD_TEL = re.compile(r"^TEL[^:\n]*:(.+)$", re.MULTILINE)

class BridgeSynchronizer:
    def __init__(self, telegram: TelegramPort, whatsapp: WhatsAppPort, store: EntityStore,
                 resolver: IdentityResolver, topics: TopicMap, *, settings: Settings | None = None,
                 media: MediaService | None = None, receipts: ReadReceiptBatcher | None = None,
                 templates: TextTemplates | None = None):
        self.s = settings or di[Settings]
        self.telegram = telegram
        self.whatsapp = whatsapp
        self.store = store
        self.resolver = resolver
        self.topics = topics
        self.media = media or MediaService(
            self.s.ffmpeg_bin, self.s.temp_dir, video_note_size=self.s.video_note_size,
            video_note_max_s=self.s.video_note_max_s, sticker_size=self.s.sticker_size,
        )
        self.receipts = receipts
        self.templates = templates or TextTemplates()
        self._creations: SingleFlight[int] = SingleFlight("topic_create")
        self._locks = KeyedLock()
        self._calls_seen: BoundedCache[bool] = BoundedCache(max_size=1000, ttl_s=30)
        self.status_replies: BoundedCache[StoredMessage] = BoundedCache(max_size=5000)

    # ---------- Tópicos ----------
    async def get_or_create_topic(self, conversation_id: str, origin: WhatsAppMessage | None = None) -> int:
        """Tópico da conversa: cache → criação em voo de outro chamador → nova criação."""
        mapping = await self._lookup(conversation_id)
        if mapping is not None:
            return mapping.topic_id
        alias = self._alias(conversation_id)
        if alias and self._creations.in_flight(alias):
            # a mesma pessoa já está ganhando tópico pela outra chave
            try:
                await self._creations.wait(alias)
            except BridgeError as e:
                log.warning("alias_topic_create_failed", conversation_id=conversation_id, alias=alias, error=str(e))
            mapping = await self._lookup(conversation_id) or self.topics.get(alias)
            if mapping is not None:
                return mapping.topic_id
        return await self._creations.do(conversation_id, lambda: self._create_topic(conversation_id, origin))

    def _alias(self, conversation_id: str) -> Optional[str]:
        if is_pn(conversation_id):
            return self.store.get_lid_for_pn(conversation_id)
        if is_lid(conversation_id):
            return self.store.get_pn_for_lid(conversation_id)
        return None

    async def _lookup(self, conversation_id: str) -> Optional[TopicMapping]:
        mapping = self.topics.get(conversation_id)
        if mapping is None and is_pn(conversation_id):
            # tópico criado enquanto a conversa só era conhecida pelo LID
            lid = self.store.get_lid_for_pn(conversation_id)
            if lid and self.topics.get(lid) is not None:
                mapping = await self.reconcile_identity(conversation_id, lid)
        return mapping

    async def _create_topic(self, conversation_id: str, origin: WhatsAppMessage | None) -> int:
        existing = self.topics.get(conversation_id)
        if existing is not None:
            return existing.topic_id
        name, icon = await self._topic_style(conversation_id)
        try:
            topic_id = await self.telegram.create_topic(name, icon_color=icon)
        except PlatformError as e:
            log.error("topic_create_failed", conversation_id=conversation_id, error=str(e))
            raise TopicCreationError(conversation_id, str(e)) from e
        special = conversation_id in SPECIAL_TOPICS
        avatar_url = None if special else await self._profile_picture(conversation_id)
        await self.topics.save(conversation_id, topic_id, name, avatar_url)
        log.info("topic_created", conversation_id=conversation_id, topic_id=topic_id, name=name)
        if not special and self.s.feature_welcome_message:
            await self._send_welcome(conversation_id, topic_id, avatar_url, origin)
        canonical = self.resolver.resolve_chat(conversation_id).address
        if canonical != conversation_id and is_pn(canonical):
            await self.reconcile_identity(canonical, conversation_id)
        return topic_id

    async def _topic_style(self, conversation_id: str) -> tuple[str, int]:
        if conversation_id in SPECIAL_TOPICS:
            return SPECIAL_TOPICS[conversation_id]
        if is_group(conversation_id):
            meta = await self._group_meta(conversation_id)
            return (meta.subject if meta and meta.subject else conversation_id), ICON_GROUP
        return self.resolver.display_name(conversation_id), ICON_DEFAULT

    async def relay(self, conversation_id: str, send: Callable[[int], Awaitable[T]],
                    origin: WhatsAppMessage | None = None) -> T:
        """Envia para o tópico da conversa; tópico sumido → purga, recria e repete uma vez."""
        topic_id = await self.get_or_create_topic(conversation_id, origin)
        try:
            return await send(topic_id)
        except TopicNotFoundError:
            log.warning("topic_missing_recreating", conversation_id=conversation_id, topic_id=topic_id)
            await self.topics.purge(conversation_id, expected_topic_id=topic_id)
            topic_id = await self.get_or_create_topic(conversation_id, origin)
            return await send(topic_id)

    async def reconcile_identity(self, pn: str, lid: str) -> Optional[TopicMapping]:
        """Mesma pessoa sob PN e LID: o tópico fica na chave PN, nunca dois tópicos vivos."""
        lid_map = self.topics.get(lid)
        pn_map = self.topics.get(pn)
        if lid_map is None:
            return pn_map
        if pn_map is None:
            moved = await self.topics.rekey(lid, pn)
            if moved is None:
                return self.topics.get(pn)
            log.info("topic_rekeyed", old=lid, new=pn, topic_id=moved.topic_id)
            await self.refresh_topic_name(pn)
            return self.topics.get(pn)
        await self.topics.purge(lid, expected_topic_id=lid_map.topic_id)
        log.warning("topic_alias_dropped", conversation_id=pn, alias=lid, topic_id=lid_map.topic_id)
        return pn_map

    async def refresh_topic_name(self, conversation_id: str) -> bool:
        mapping = self.topics.get(conversation_id)
        if mapping is None or conversation_id in SPECIAL_TOPICS:
            return False
        name = self.resolver.display_name(conversation_id)
        if not name or name == mapping.topic_name:
            return False
        try:
            await self.telegram.edit_topic(mapping.topic_id, name)
        except TopicNotFoundError:
            await self.topics.purge(conversation_id, expected_topic_id=mapping.topic_id)
            return False
        except PlatformError as e:
            log.warning("topic_rename_failed", conversation_id=conversation_id, error=str(e))
            return False
        await self.topics.update_name(conversation_id, name)
        log.info("topic_renamed", conversation_id=conversation_id, topic_id=mapping.topic_id, name=name)
        return True

    async def refresh_all_topic_names(self) -> int:
        renamed = 0
        for mapping in self.topics:
            renamed += await self.refresh_topic_name(mapping.conversation_id)
        return renamed

    async def recreate_missing_topics(self) -> List[str]:
        """Manutenção: sonda cada tópico mapeado e recria os apagados fora da ponte."""
        recreated: List[str] = []
        for mapping in self.topics:
            try:
                exists = await self.telegram.topic_exists(mapping.topic_id)
            except PlatformError as e:
                log.warning("topic_probe_failed", conversation_id=mapping.conversation_id, error=str(e))
                continue
            if exists:
                continue
            await self.topics.purge(mapping.conversation_id, expected_topic_id=mapping.topic_id)
            try:
                await self.get_or_create_topic(mapping.conversation_id)
            except TopicCreationError:
                continue
            recreated.append(mapping.conversation_id)
        if recreated:
            log.info("topics_recreated", count=len(recreated))
        return recreated

    # ---------- Boas-vindas e foto ----------
    async def _send_welcome(self, conversation_id: str, topic_id: int, avatar_url: str | None,
                            origin: WhatsAppMessage | None) -> None:
        try:
            if is_group(conversation_id):
                meta = await self._group_meta(conversation_id)
                text = self.templates.welcome_group(
                    jid=conversation_id,
                    subject=meta.subject if meta else None,
                    participants=len(meta.participants) if meta else None,
                    creation=meta.creation if meta else None,
                )
            else:
                contact = self.store.get_contact(conversation_id)
                text = self.templates.welcome_contact(
                    name=self.resolver.display_name(conversation_id),
                    phone=phone_of(conversation_id),
                    handle=(origin.push_name if origin else None) or (contact.notify if contact else None),
                    jid=conversation_id,
                    status=await self._fetch_status(conversation_id),
                )
            message_id = await self.telegram.send_text(topic_id, text, parse_mode="Markdown")
            await self.telegram.pin_message(message_id)
            if avatar_url:
                await self.telegram.send_photo(topic_id, avatar_url, caption="📸 Profile Picture")
        except PlatformError as e:
            log.warning("welcome_failed", conversation_id=conversation_id, topic_id=topic_id, error=str(e))

    async def sync_avatar(self, conversation_id: str) -> bool:
        """Envia a foto de perfil ao tópico quando a URL mudou."""
        mapping = self.topics.get(conversation_id)
        if mapping is None or not self.s.feature_profile_pic_sync:
            return False
        url = await self._profile_picture(conversation_id)
        if not url or url == mapping.avatar_url:
            return False
        await self.relay(conversation_id, lambda t: self.telegram.send_photo(t, url, caption="📸 Profile picture updated"))
        await self.topics.update_avatar(conversation_id, url)
        log.info("avatar_updated", conversation_id=conversation_id)
        return True

    async def _profile_picture(self, jid: str) -> Optional[str]:
        if not self.s.feature_profile_pic_sync:
            return None
        try:
            return await self.whatsapp.profile_picture_url(jid)
        except Exception as e:
            log.debug("profile_picture_unavailable", jid=jid, error=repr(e))
            return None

    async def _fetch_status(self, jid: str) -> Optional[str]:
        try:
            return await self.whatsapp.fetch_status(jid)
        except Exception as e:
            log.debug("status_unavailable", jid=jid, error=repr(e))
            return None

    async def _group_meta(self, jid: str) -> Optional[GroupMetadata]:
        meta = self.store.get_group_metadata(jid)
        if meta is not None and meta.subject:
            return meta
        try:
            info = await self.whatsapp.group_metadata(jid)
        except Exception as e:
            log.debug("group_metadata_unavailable", jid=jid, error=repr(e))
            return meta
        meta = GroupMetadata.model_validate(info.model_dump())
        self.store.set_group_metadata(meta)
        return meta

    # ---------- Mensagens ----------
    async def on_messages(self, messages: Iterable[WhatsAppMessage]) -> None:
        for msg in messages:
            try:
                await self.sync_message(msg)
            except BridgeError as e:
                log.error("sync_message_failed", conversation_id=msg.key.remote_jid, message_id=msg.key.id, error=str(e))
            except Exception:
                log.exception("sync_message_crashed", conversation_id=msg.key.remote_jid, message_id=msg.key.id)

    async def sync_message(self, msg: WhatsAppMessage) -> bool:
        key = msg.key
        cid = self.resolver.resolve_chat(key.remote_jid).address
        if cid == STATUS_JID:
            return await self.sync_status(msg)
        if is_broadcast(cid):
            log.debug("broadcast_ignored", conversation_id=cid)
            return False
        kind = content_kind(msg.message)
        text = extract_text(msg.message)
        if kind is ContentKind.UNKNOWN and not text:
            log.debug("message_empty_dropped", conversation_id=cid, message_id=key.id)
            return False
        sender: Optional[Resolution] = None
        if key.from_me:
            if not self.s.feature_outgoing_messages or await self._lookup(cid) is None:
                return False
        else:
            sender = self.resolver.resolve_sender(key)
            self._learn_push_name(sender, msg.push_name)
        async with self._locks.hold(cid):
            await self._relay_content(cid, msg, kind, text, sender, outgoing=key.from_me)
            await self.topics.touch(cid)
        if not key.from_me and self.receipts is not None and self.s.feature_read_receipts:
            self.receipts.enqueue(cid, key)
        return True

    def _learn_push_name(self, sender: Resolution, push_name: str | None) -> None:
        if not push_name or not is_user(sender.address):
            return
        known = self.store.get_contact(sender.address)
        if known is not None and known.notify == push_name:
            return
        alt = sender.original if sender.changed else None
        self.store.upsert_contacts([Contact(id=sender.address, alt_id=alt, notify=push_name)])

    def _caption(self, cid: str, sender: Optional[Resolution], text: str | None, outgoing: bool) -> Optional[str]:
        if outgoing:
            return f"📤 You: {text}" if text else None
        if is_group(cid) and sender is not None and sender.address and sender.address != cid:
            label = f"👤 {self.resolver.sender_label(sender.address)}:"
            return f"{label}\n{text}" if text else label
        return text

    async def _relay_content(self, cid: str, msg: WhatsAppMessage, kind: ContentKind, text: str | None,
                             sender: Optional[Resolution], outgoing: bool) -> None:
        caption = self._caption(cid, sender, text, outgoing)
        if kind in MEDIA_KINDS:
            if outgoing and not caption:
                caption = "📤 You sent media"
            await self._relay_media(cid, msg, kind, caption)
        elif kind is ContentKind.LOCATION:
            await self._relay_location(cid, msg, "📤 You shared location" if outgoing else caption)
        elif kind is ContentKind.CONTACT:
            await self._relay_contact(cid, msg, outgoing, caption)
        elif caption:
            await self.relay(cid, lambda t: self.telegram.send_text(t, caption), msg)

    async def _relay_media(self, cid: str, msg: WhatsAppMessage, kind: ContentKind, caption: str | None) -> Optional[int]:
        try:
            data = await self.whatsapp.download_media(msg)
        except Exception as e:
            log.warning("media_download_failed", conversation_id=cid, kind=kind.value, error=repr(e))
            data = b""
        if not data:
            return await self._relay_fallback(cid, kind, caption, msg)
        if kind is ContentKind.VIDEO_NOTE:
            data = await self.media.to_video_note(data)
        send = self._media_sender(kind, data, content_node(msg.message, kind), caption, msg.key.id)
        try:
            return await self.relay(cid, send, msg)
        except TopicNotFoundError:
            raise
        except (PlatformError, MediaTranscodeError) as e:
            log.warning("media_relay_failed", conversation_id=cid, kind=kind.value, error=str(e))
            return await self._relay_fallback(cid, kind, caption, msg)

    def _media_sender(self, kind: ContentKind, data: bytes, node: Dict, caption: str | None,
                      message_id: str) -> Callable[[int], Awaitable[int]]:
        tg = self.telegram

        async def send(topic_id: int) -> int:
            if kind is ContentKind.IMAGE:
                return await tg.send_photo(topic_id, data, caption)
            if kind is ContentKind.VIDEO:
                return await tg.send_video(topic_id, data, caption)
            if kind is ContentKind.ANIMATION:
                return await tg.send_animation(topic_id, data, caption)
            if kind is ContentKind.VOICE:
                return await tg.send_voice(topic_id, data, caption)
            if kind is ContentKind.AUDIO:
                return await tg.send_audio(topic_id, data, caption, title=node.get("title") or "Audio")
            if kind is ContentKind.DOCUMENT:
                filename = node.get("fileName") or f"document_{message_id}"
                return await tg.send_document(topic_id, data, filename, caption)
            if kind is ContentKind.VIDEO_NOTE:
                sent = await tg.send_video_note(topic_id, data)
            else:
                try:
                    sent = await tg.send_sticker(topic_id, data)
                except TopicNotFoundError:
                    raise
                except PlatformError as e:
                    log.info("sticker_rejected_sending_png", error=str(e))
                    png = await self.media.sticker_to_png(data)
                    return await tg.send_photo(topic_id, png, caption or "Sticker")
            if caption:
                await tg.send_text(topic_id, caption)
            return sent

        return send

    async def _relay_fallback(self, cid: str, kind: ContentKind, caption: str | None,
                              origin: WhatsAppMessage | None) -> int:
        notice = f"⚠️ {kind.value.replace('_', ' ')} could not be forwarded"
        text = f"{caption}\n\n{notice}" if caption else notice
        return await self.relay(cid, lambda t: self.telegram.send_text(t, text), origin)

    async def _relay_location(self, cid: str, msg: WhatsAppMessage, caption: str | None) -> None:
        node = content_node(msg.message, ContentKind.LOCATION)
        try:
            lat, lng = float(node["degreesLatitude"]), float(node["degreesLongitude"])
        except (KeyError, TypeError, ValueError):
            log.debug("location_malformed", conversation_id=cid, message_id=msg.key.id)
            await self._relay_fallback(cid, ContentKind.LOCATION, caption, msg)
            return

        async def send(topic_id: int) -> int:
            sent = await self.telegram.send_location(topic_id, lat, lng)
            if caption:
                await self.telegram.send_text(topic_id, caption)
            return sent

        await self.relay(cid, send, msg)

    async def _relay_contact(self, cid: str, msg: WhatsAppMessage, outgoing: bool, caption: str | None) -> None:
        node = content_node(msg.message, ContentKind.CONTACT)
        display = node.get("displayName") or "Unknown Contact"
        found = _VCARD_TEL.search(node.get("vcard") or "")
        phone = found.group(1).strip() if found else ""
        label = f"📤 You shared contact: {display}" if outgoing else (caption if caption != display else None)
        if not phone:
            text = label or f"📇 Contact: {display}"
            await self.relay(cid, lambda t: self.telegram.send_text(t, text), msg)
            return

        async def send(topic_id: int) -> int:
            sent = await self.telegram.send_contact(topic_id, phone, display)
            if label:
                await self.telegram.send_text(topic_id, label)
            return sent

        await self.relay(cid, send, msg)

    # ---------- Status e chamadas ----------
    async def sync_status(self, msg: WhatsAppMessage) -> bool:
        if not self.s.feature_status_sync:
            return False
        author = self.resolver.resolve(msg.key.participant or msg.key.participant_alt)
        if not author.address:
            log.debug("status_without_author", message_id=msg.key.id)
            return False
        kind = content_kind(msg.message)
        caption = self.templates.status_caption(
            name=self.resolver.display_name(author.address),
            phone=phone_of(author.address),
            text=extract_text(msg.message),
        )
        async with self._locks.hold(STATUS_JID):
            if kind in MEDIA_KINDS:
                sent = await self._relay_media(STATUS_JID, msg, kind, caption)
            else:
                sent = await self.relay(STATUS_JID, lambda t: self.telegram.send_text(t, caption), msg)
        if sent is not None:
            self.status_replies.set(sent, StoredMessage(key=msg.key, message=msg.message))
        return True

    async def on_calls(self, calls: Iterable[CallEvent]) -> None:
        for call in calls:
            try:
                await self.handle_call(call)
            except BridgeError as e:
                log.error("call_notification_failed", caller=call.from_jid, error=str(e))
            except Exception:
                log.exception("call_notification_crashed", caller=call.from_jid, call_id=call.id)

    async def handle_call(self, call: CallEvent) -> bool:
        """Um aviso por chamada: eventos repetidos (oferta, toque, fim) em 30 s são ignorados."""
        if not self.s.feature_call_logs:
            return False
        dedup_key = f"{call.from_jid}_{call.id}"
        if dedup_key in self._calls_seen:
            return False
        self._calls_seen.set(dedup_key, True)
        caller = self.resolver.resolve(call.from_jid)
        text = self.templates.call_notice(
            caller=self.resolver.display_name(caller.address),
            phone=phone_of(caller.address),
            status=call.status,
        )
        async with self._locks.hold(CALL_JID):
            await self.relay(CALL_JID, lambda t: self.telegram.send_text(t, text, parse_mode="Markdown"))
        log.info("call_notified", caller=caller.address)
        return True

    # ---------- Notificações do Store ----------
    async def on_mapping_changed(self, pairs: Dict[str, str]) -> None:
        for pn, lid in pairs.items():
            await self.reconcile_identity(pn, lid)

    async def on_contacts_changed(self, contacts: Iterable[Contact]) -> None:
        for contact in contacts:
            if contact.pn and contact.lid:
                await self.reconcile_identity(contact.pn, contact.lid)
            await self.refresh_topic_name(self.resolver.resolve(contact.id).address)

    async def on_contacts_update(self, contacts: Iterable[Contact]) -> None:
        for contact in contacts:
            cid = self.resolver.resolve(contact.id).address
            if self.topics.get(cid) is not None:
                await self.sync_avatar(cid)

    async def on_groups_changed(self, groups: Iterable[GroupMetadata]) -> None:
        for group in groups:
            if group.subject:
                await self.refresh_topic_name(group.id)


"""Fixtures compartilhadas: banco SQLite em tmp_path, fakes das duas plataformas e a ponte montada."""
from __future__ import annotations
import pytest
from kink import di
from fakes.fake_media import FakeMedia
from fakes.fake_telegram import FakeTelegram
from fakes.fake_whatsapp import FakeWhatsApp
from ponte_bot.bridge.synchronizer import BridgeSynchronizer
from ponte_bot.core.db import create_session_factory
from ponte_bot.core.settings import Settings
from ponte_bot.domain.services.entity_store import EntityStore
from ponte_bot.domain.services.identity_service import IdentityResolver
from ponte_bot.domain.services.topic_map import TopicMap
from ponte_bot.repo.models import Base
from ponte_bot.tasks.read_receipts import ReadReceiptBatcher

CHAT_ID = -1001234567890


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        telegram_bot_token="123456:TEST",
        telegram_chat_id=CHAT_ID,
        database_url=f"sqlite:///{tmp_path / 'ponte.db'}",
        store_file_path=str(tmp_path / "store.json"),
        temp_dir=str(tmp_path / "temp"),
        read_receipt_delay_ms=20,
        feature_status_sync=True,
    )


@pytest.fixture(autouse=True)
def session_factory(settings):
    factory = create_session_factory(settings.database_url)
    Base.metadata.create_all(factory.kw["bind"])
    di["session_factory"] = factory
    di[Settings] = settings
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture
def telegram() -> FakeTelegram:
    return FakeTelegram()


@pytest.fixture
def whatsapp() -> FakeWhatsApp:
    return FakeWhatsApp()


@pytest.fixture
def media() -> FakeMedia:
    return FakeMedia()


@pytest.fixture
def store() -> EntityStore:
    return EntityStore(None)


@pytest.fixture
def resolver(store, whatsapp) -> IdentityResolver:
    return IdentityResolver(store, whatsapp)


@pytest.fixture
def topics() -> TopicMap:
    return TopicMap()


@pytest.fixture
async def receipts(whatsapp, settings):
    batcher = ReadReceiptBatcher(whatsapp, delay_ms=settings.read_receipt_delay_ms)
    yield batcher
    await batcher.close()


@pytest.fixture
def bridge(telegram, whatsapp, store, resolver, topics, settings, media, receipts) -> BridgeSynchronizer:
    return BridgeSynchronizer(
        telegram, whatsapp, store, resolver, topics,
        settings=settings, media=media, receipts=receipts,
    )

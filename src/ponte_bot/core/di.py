
"""Bootstrap do container de DI (kink) da ponte WhatsApp ⇄ Telegram."""
from kink import di
from .settings import Settings
from .logging import configure_logging, get_logger
from .db import create_session_factory
from .events import EventHub
from .templates import TextTemplates
from ..connectors.telegram.bot_adapter import TelegramBotAdapter
from ..domain.services.entity_store import EntityStore
from ..domain.services.filter_service import FilterService
from ..domain.services.media_service import MediaService
from ..domain.services.topic_map import TopicMap

def bootstrap_di() -> None:
    settings = Settings()
    configure_logging(settings.log_level)
    di[Settings] = settings
    di["logger"] = get_logger()
    di["session_factory"] = create_session_factory(settings.database_url)
    hub = EventHub("whatsapp")
    di[EventHub] = hub
    di[EntityStore] = EntityStore(
        settings.store_file_path, max_messages_per_chat=settings.store_max_messages_per_chat, events=hub,
    )
    di[TopicMap] = TopicMap()
    di[FilterService] = FilterService()
    di[MediaService] = MediaService(
        settings.ffmpeg_bin, settings.temp_dir, video_note_size=settings.video_note_size,
        video_note_max_s=settings.video_note_max_s, sticker_size=settings.sticker_size,
    )
    di[TextTemplates] = TextTemplates()
    di[TelegramBotAdapter] = TelegramBotAdapter(settings)

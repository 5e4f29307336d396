
"""Configurações Pydantic Settings da ponte WhatsApp ⇄ Telegram."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    """Configurações da aplicação. Carrega de env e .env.

    Token do bot e id do grupo-fórum devem vir via env. Nunca hardcode.
    """
    model_config = SettingsConfigDict(env_file=".env", env_prefix="PB_", case_sensitive=False)

    # Telegram
    telegram_bot_token: str = Field(..., description="Token do bot (@BotFather)")
    telegram_chat_id: int = Field(..., description="Id do supergrupo com tópicos (ex: -1001234567890)")

    # DB (mapa de tópicos, filtros)
    database_url: str = Field(default="sqlite:///ponte.db", description="URL SQLAlchemy, ex: postgresql+psycopg://user:pass@db:5432/ponte")

    # Store de entidades (snapshot JSON)
    store_file_path: str = Field(default="whatsapp-store.json")
    store_autosave_s: float = Field(default=30.0)
    store_max_messages_per_chat: int = Field(default=1000)

    # Confirmação de leitura
    read_receipt_delay_ms: int = Field(default=2000)

    # Mídia
    temp_dir: str = Field(default="temp")
    ffmpeg_bin: str = Field(default="ffmpeg")
    video_note_size: int = Field(default=240)
    video_note_max_s: int = Field(default=60)
    sticker_size: int = Field(default=512)
    http_timeout_s: int = Field(default=30)

    # Logs
    log_level: int = Field(default=20)

    # Recursos
    feature_read_receipts: bool = Field(default=True)
    feature_welcome_message: bool = Field(default=True)
    feature_profile_pic_sync: bool = Field(default=True)
    feature_outgoing_messages: bool = Field(default=True)
    feature_status_sync: bool = Field(default=False)
    feature_call_logs: bool = Field(default=True)
    feature_presence_updates: bool = Field(default=False)

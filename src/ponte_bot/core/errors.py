
"""Taxonomia de erros da ponte.

- TopicNotFoundError: tópico apagado fora da ponte (recuperável: purga + recria + 1 retry).
- PlatformError: falha transitória de rede/timeout/API; o chamador decide o backoff.
- TopicCreationError: createForumTopic falhou; a conversa volta a "sem tópico".
- MediaTranscodeError: ffmpeg/conversão falhou; usa-se a próxima representação.

Falhas de persistência (snapshot ou banco) não viram exceção: são logadas e o chamador segue.
"""
from __future__ import annotations


class BridgeError(Exception):
    """Erro base da ponte."""


class PlatformError(BridgeError):
    """Erro genérico de plataforma (rede, timeout, API)."""


class TopicNotFoundError(PlatformError):
    """O Telegram reportou que o tópico (message_thread_id) não existe mais."""

    def __init__(self, topic_id: int | None, detail: str = "message thread not found"):
        super().__init__(f"topic {topic_id}: {detail}")
        self.topic_id = topic_id


class TopicCreationError(BridgeError):
    """Falha ao criar tópico para uma conversa."""

    def __init__(self, conversation_id: str, detail: str = ""):
        super().__init__(f"could not create topic for {conversation_id}: {detail}")
        self.conversation_id = conversation_id


class MediaTranscodeError(BridgeError):
    """Conversão de mídia falhou."""

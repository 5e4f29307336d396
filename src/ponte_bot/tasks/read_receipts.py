
"""Agrupador de confirmações de leitura por conversa.

O primeiro `enqueue` de uma conversa arma um timer de `delay_ms`; tudo que chegar
nessa janela sai numa única chamada `read_messages`. Falha é logada e descartada:
confirmação é melhor-esforço.
"""
from __future__ import annotations
import asyncio
from typing import Dict, List
from ..core.logging import get_logger
from ..ports.interfaces import MessageKey, WhatsAppPort

log = get_logger()

class ReadReceiptBatcher:
    def __init__(self, transport: WhatsAppPort, delay_ms: int = 2000):
        self.transport = transport
        self.delay_ms = delay_ms
        self._pending: Dict[str, List[MessageKey]] = {}
        self._timers: Dict[str, asyncio.Task] = {}
        self._closed = False

    def pending(self, conversation_id: str) -> int:
        return len(self._pending.get(conversation_id, ()))

    def enqueue(self, conversation_id: str, key: MessageKey) -> None:
        if self._closed:
            log.debug("read_receipt_after_close", conversation_id=conversation_id)
            return
        self._pending.setdefault(conversation_id, []).append(key)
        if conversation_id not in self._timers:
            self._timers[conversation_id] = asyncio.get_running_loop().create_task(self._flush_later(conversation_id))

    async def _flush_later(self, conversation_id: str) -> None:
        await asyncio.sleep(self.delay_ms / 1000)
        self._timers.pop(conversation_id, None)
        await self._flush(conversation_id)

    async def _flush(self, conversation_id: str) -> int:
        keys = self._pending.pop(conversation_id, [])
        if not keys:
            return 0
        try:
            await self.transport.read_messages(keys)
        except Exception as e:
            log.warning("read_receipts_failed", conversation_id=conversation_id, count=len(keys), error=repr(e))
            return 0
        log.debug("read_receipts_sent", conversation_id=conversation_id, count=len(keys))
        return len(keys)

    async def flush_all(self) -> int:
        """Descarrega tudo agora, sem esperar os timers."""
        timers, self._timers = self._timers, {}
        for task in timers.values():
            task.cancel()
        sent = 0
        for conversation_id in list(self._pending):
            sent += await self._flush(conversation_id)
        return sent

    async def close(self) -> int:
        self._closed = True
        return await self.flush_all()

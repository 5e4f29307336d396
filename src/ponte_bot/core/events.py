
"""Hub de eventos: listas explícitas de assinantes por tipo de evento.

Cada assinante roda isolado: exceção de um é logada e não impede os demais.
Assinantes podem ser funções síncronas ou corrotinas.
"""
from __future__ import annotations
import asyncio, inspect
from collections import defaultdict
from typing import Any, Awaitable, Callable, Union
from .logging import get_logger

log = get_logger()

Subscriber = Callable[[Any], Union[None, Awaitable[None]]]


class EventHub:
    """Fan-out de eventos por nome (`contacts.upsert`, `mapping.update`, ...)."""

    def __init__(self, name: str = "hub"):
        self.name = name
        self._subscribers: dict[str, list[Subscriber]] = defaultdict(list)
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, kind: str, fn: Subscriber) -> Callable[[], None]:
        """Registra assinante; retorna função que cancela a assinatura."""
        self._subscribers[kind].append(fn)

        def _unsubscribe() -> None:
            try:
                self._subscribers[kind].remove(fn)
            except ValueError:
                pass

        return _unsubscribe

    def subscribers(self, kind: str) -> list[Subscriber]:
        return list(self._subscribers.get(kind, ()))

    async def publish(self, kind: str, payload: Any) -> int:
        """Entrega `payload` a todos os assinantes de `kind`, em ordem de registro.

        :return: quantos assinantes falharam.
        """
        failures = 0
        for fn in self.subscribers(kind):
            try:
                result = fn(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                failures += 1
                log.exception("event_subscriber_failed", hub=self.name, kind=kind, subscriber=_name(fn))
        return failures

    def publish_nowait(self, kind: str, payload: Any) -> int:
        """Versão para chamadores síncronos: assinantes corrotina viram tasks no loop corrente."""
        failures = 0
        for fn in self.subscribers(kind):
            try:
                result = fn(payload)
            except Exception:
                failures += 1
                log.exception("event_subscriber_failed", hub=self.name, kind=kind, subscriber=_name(fn))
                continue
            if not inspect.isawaitable(result):
                continue
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                if inspect.iscoroutine(result):
                    result.close()
                log.warning("event_subscriber_skipped_no_loop", hub=self.name, kind=kind, subscriber=_name(fn))
                continue
            task = loop.create_task(result)
            self._pending.add(task)
            task.add_done_callback(lambda t, k=kind: self._task_done(k, t))
        return failures

    async def drain(self) -> None:
        """Aguarda tasks disparadas por `publish_nowait` (útil no shutdown e em testes)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _task_done(self, kind: str, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("event_subscriber_failed", hub=self.name, kind=kind, error=repr(exc))


def _name(fn) -> str:
    return getattr(fn, "__qualname__", repr(fn))


"""Coalescência de requisições por chave (single-flight) e travas por chave.

- SingleFlight: N chamadas concorrentes para a mesma chave compartilham UMA execução.
  A execução roda como task própria: se quem chamou for cancelado, ela termina mesmo assim
  e o resultado fica para o próximo gatilho. A chave sai da tabela ao concluir (sucesso ou erro).
- KeyedLock: asyncio.Lock por chave (FIFO), descartado quando ninguém mais o usa.
"""
from __future__ import annotations
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Dict, Generic, Hashable, TypeVar
from .logging import get_logger

log = get_logger()

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Deduplica chamadas em voo por chave."""

    def __init__(self, name: str = "singleflight"):
        self.name = name
        self._inflight: Dict[Hashable, asyncio.Task] = {}

    def in_flight(self, key: Hashable) -> bool:
        return key in self._inflight

    def __len__(self) -> int:
        return len(self._inflight)

    async def do(self, key: Hashable, fn: Callable[[], Awaitable[T]]) -> T:
        """Executa `fn` uma única vez por chave enquanto houver chamada pendente.

        :return: o mesmo resultado (ou a mesma exceção) para todos os chamadores.
        """
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._release(k, t))
        else:
            log.debug("singleflight_joined", flight=self.name, key=str(key))
        return await asyncio.shield(task)

    async def wait(self, key: Hashable) -> bool:
        """Aguarda a execução em voo da chave, sem iniciar outra.

        :return: False se não havia nada em voo. Erros da execução chegam ao chamador.
        """
        task = self._inflight.get(key)
        if task is None:
            return False
        await asyncio.shield(task)
        return True

    def _release(self, key: Hashable, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # marca a exceção como recuperada mesmo que nenhum chamador reste
            task.exception()


class KeyedLock:
    """Trava assíncrona por chave com limpeza automática."""

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]



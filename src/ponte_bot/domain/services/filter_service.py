
"""Filtros Telegram → WhatsApp: texto que começa com uma palavra filtrada não é enviado."""
from __future__ import annotations
import asyncio
from typing import List, Optional, Set
from ...core.logging import get_logger
from ...repo import repo

log = get_logger()

class FilterService:
    def __init__(self, persistent: bool = True):
        self.persistent = persistent
        self._words: Set[str] = set()

    async def load(self) -> int:
        if self.persistent:
            self._words = {w.lower() for w in await asyncio.to_thread(repo.list_filters)}
        log.info("filters_loaded", count=len(self._words))
        return len(self._words)

    def words(self) -> List[str]:
        return sorted(self._words)

    def match(self, text: str | None) -> Optional[str]:
        """Palavra que bloqueia `text` (comparação sem caixa, pelo início), ou None."""
        if not text:
            return None
        lowered = text.strip().lower()
        for word in sorted(self._words):
            if lowered.startswith(word):
                return word
        return None

    async def add(self, word: str) -> bool:
        word = (word or "").strip().lower()
        if not word:
            raise ValueError("filtro vazio")
        if word in self._words:
            return False
        self._words.add(word)
        if self.persistent:
            await asyncio.to_thread(repo.add_filter, word)
        return True

    async def remove(self, word: str) -> bool:
        word = (word or "").strip().lower()
        if word not in self._words:
            return False
        self._words.discard(word)
        if self.persistent:
            await asyncio.to_thread(repo.remove_filter, word)
        return True

    async def clear(self) -> None:
        self._words.clear()
        if self.persistent:
            await asyncio.to_thread(repo.clear_filters)

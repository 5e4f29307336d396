
"""Gravação periódica do snapshot do Store."""
from __future__ import annotations
import asyncio
from ..core.logging import get_logger
from ..domain.services.entity_store import EntityStore

log = get_logger()

async def save_once(store: EntityStore) -> bool:
    """Grava se houve mudança desde o último snapshot. Retorna True se gravou."""
    if not store.dirty:
        return False
    return await store.persist()

async def run_autosave(store: EntityStore, interval_s: float = 30.0) -> None:
    """Loop até ser cancelado; no cancelamento faz uma última gravação."""
    log.info("autosave_started", interval_s=interval_s)
    try:
        while True:
            await asyncio.sleep(interval_s)
            await save_once(store)
    finally:
        saved = await save_once(store)
        log.info("autosave_stopped", final_save=saved)


"""Liga Store, sincronizador e relay ao hub de eventos.

Ordem importa: o Store assina primeiro, assim o sincronizador de cada evento já
enxerga os contatos/mapeamentos que chegaram no mesmo lote.
"""
from __future__ import annotations
from typing import Any, Callable, List
from telegram import Update
from ..connectors.telegram.bot_adapter import TelegramBotAdapter
from ..core.events import EventHub
from ..core.logging import get_logger
from ..domain.services.entity_store import EntityStore
from .synchronizer import BridgeSynchronizer
from .telegram_handler import TelegramRelay

log = get_logger()

def wire(hub: EventHub, store: EntityStore, bridge: BridgeSynchronizer) -> List[Callable[[], None]]:
    """Assina tudo e devolve as funções de cancelamento."""
    store.bind(hub)
    unsubscribe = [
        hub.subscribe("messages.upsert", bridge.on_messages),
        hub.subscribe("call", bridge.on_calls),
        hub.subscribe("contacts.update", bridge.on_contacts_update),
        hub.subscribe("groups.update", bridge.on_groups_changed),
        store.events.subscribe("contacts.changed", bridge.on_contacts_changed),
        store.events.subscribe("mapping.changed", bridge.on_mapping_changed),
    ]
    log.info("bridge_wired", hub=hub.name, subscriptions=len(unsubscribe))
    return unsubscribe

def telegram_update_handler(adapter: TelegramBotAdapter, relay: TelegramRelay) -> Callable[[Any, Any], Any]:
    """Callback no formato `(update, context)` do python-telegram-bot."""

    async def on_update(update: Update, _context: Any = None) -> bool:
        return await relay.handle(adapter.parse_update(update))

    return on_update

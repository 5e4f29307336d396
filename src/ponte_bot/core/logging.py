
"""Infra de logging JSON usando structlog, com trace_id contextual."""
from __future__ import annotations
import structlog
import sys
from uuid import uuid4
from contextvars import ContextVar

trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="-")

_configured = False

def set_trace_id(value: str | None = None) -> str:
    """Define trace_id no contexto atual e retorna o valor definido."""
    tid = value or uuid4().hex
    trace_id_ctx.set(tid)
    return tid

def configure_logging(level: int = 20) -> None:
    """Configura structlog (JSON, nível mínimo, trace_id). Pode ser chamado de novo para trocar o nível."""
    global _configured
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            lambda _, __, ev: {**ev, "trace_id": trace_id_ctx.get()},
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=False,
    )
    _configured = True

def get_logger(**initial) -> structlog.stdlib.BoundLogger:
    """Cria logger JSON com trace_id injetado automaticamente."""
    if not _configured:
        configure_logging()
    return structlog.get_logger(**initial)

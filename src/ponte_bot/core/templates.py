
"""Textos fixos enviados aos tópicos (boas-vindas, chamadas, status) renderizados com Jinja2.

Boas-vindas e chamadas saem em Markdown (modo legado do Telegram); valores vindos do
WhatsApp passam por `md_escape` antes de entrar no template.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional
from jinja2 import Environment, BaseLoader, StrictUndefined

_MD_SPECIAL = ("_", "*", "`", "[")

def md_escape(value: Any) -> str:
    text = "" if value is None else str(value)
    for ch in _MD_SPECIAL:
        text = text.replace(ch, "\\" + ch)
    return text

WELCOME_CONTACT = """
👤 *Contact Information*

📝 *Name:* {{ name | md }}
📱 *Phone:* +{{ phone }}
🖐️ *Handle:* {{ handle | md }}
{% if status %}📝 *Status:* {{ status | md }}
{% endif %}
🆔 *WhatsApp ID:* `{{ jid }}`
📅 *First Contact:* {{ first_contact }}

💬 Messages with this contact will appear here
"""

WELCOME_GROUP = """
🏷️ *Group Information*

📝 *Name:* {{ subject | md }}
👥 *Participants:* {{ participants }}
🆔 *Group ID:* `{{ jid }}`
{% if created %}📅 *Created:* {{ created }}
{% endif %}

💬 Messages from this group will appear here
"""

WELCOME_GROUP_MINIMAL = """
🏷️ *Group Chat*

💬 Messages from this group will appear here
"""

CALL_NOTICE = """
📞 *Incoming Call*

👤 *From:* {{ caller | md }}
📱 *Number:* +{{ phone }}
⏰ *Time:* {{ when }}
📋 *Status:* {{ status | md }}
"""

# texto puro: também vira legenda de mídia, que sai sem parse_mode
STATUS_CAPTION = """
{% if text %}💭 "{{ text }}"

{% endif %}📱 {{ name }} (+{{ phone }})
"""

@dataclass
class TextTemplates:
    """Renderizador dos textos do bridge. Datas formatadas com `date_format`."""
    date_format: str = "%Y-%m-%d"
    datetime_format: str = "%Y-%m-%d %H:%M:%S"
    env: Environment = field(default_factory=lambda: Environment(
        loader=BaseLoader(),
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=False,
    ))

    def __post_init__(self) -> None:
        self.env.filters["md"] = md_escape

    def _render(self, source: str, **ctx: Any) -> str:
        return self.env.from_string(source).render(**ctx).strip()

    def welcome_contact(self, *, name: str, phone: str, handle: str | None, jid: str,
                        status: str | None = None, now: Optional[datetime] = None) -> str:
        return self._render(
            WELCOME_CONTACT,
            name=name,
            phone=phone,
            handle=handle or "Unknown",
            status=status,
            jid=jid,
            first_contact=(now or datetime.now()).strftime(self.date_format),
        )

    def welcome_group(self, *, jid: str, subject: str | None = None, participants: int | None = None,
                      creation: int | None = None) -> str:
        """Sem metadados do grupo (`subject` ausente) cai na versão mínima."""
        if not subject:
            return self._render(WELCOME_GROUP_MINIMAL)
        created = datetime.fromtimestamp(creation).strftime(self.date_format) if creation else None
        return self._render(
            WELCOME_GROUP,
            subject=subject,
            participants=participants or 0,
            jid=jid,
            created=created,
        )

    def call_notice(self, *, caller: str, phone: str, status: str | None = None,
                    now: Optional[datetime] = None) -> str:
        return self._render(
            CALL_NOTICE,
            caller=caller,
            phone=phone,
            when=(now or datetime.now()).strftime(self.datetime_format),
            status=status or "Incoming",
        )

    def status_caption(self, *, name: str, phone: str, text: str | None = None) -> str:
        return self._render(STATUS_CAPTION, name=name, phone=phone, text=text)

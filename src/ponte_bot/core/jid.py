
"""Helpers de endereço (JID) do WhatsApp.

Formatos:
- PN:  5511999999999@s.whatsapp.net (ou @c.us)
- LID: 123456789012345@lid (ou @hosted.lid)
- grupo: 1203630...@g.us; difusões: status@broadcast, call@broadcast
"""
from __future__ import annotations

PN_SERVERS = ("s.whatsapp.net", "c.us", "hosted")
LID_SERVERS = ("lid", "hosted.lid")

STATUS_JID = "status@broadcast"
CALL_JID = "call@broadcast"


def split_jid(jid: str | None) -> tuple[str, str]:
    """Retorna (user, server); server vazio quando não há '@'."""
    if not jid:
        return "", ""
    user, sep, server = jid.rpartition("@")
    if not sep:
        return jid, ""
    return user, server


def normalize_jid(jid: str | None) -> str | None:
    """Remove sufixo de dispositivo/sessão (`5511...:23@s.whatsapp.net` → `5511...@s.whatsapp.net`)."""
    if not jid:
        return jid
    user, server = split_jid(jid)
    if not server:
        return jid
    user = user.split(":", 1)[0]
    return f"{user}@{server}"


def is_pn(jid: str | None) -> bool:
    return split_jid(jid)[1] in PN_SERVERS


def is_lid(jid: str | None) -> bool:
    return split_jid(jid)[1] in LID_SERVERS


def is_group(jid: str | None) -> bool:
    return split_jid(jid)[1] == "g.us"


def is_broadcast(jid: str | None) -> bool:
    return split_jid(jid)[1] in ("broadcast", "newsletter")


def is_user(jid: str | None) -> bool:
    """True para endereços 1:1 (PN/LID); falso para grupo, difusão etc."""
    return is_pn(jid) or is_lid(jid)


def phone_of(jid: str | None) -> str:
    """Parte de usuário do JID (número de telefone quando PN)."""
    return split_jid(normalize_jid(jid))[0]

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from storefront.shared.utils import normalize_text


@dataclass(frozen=True)
class TgUser:
    id: int
    first_name: str = "User"
    last_name: str | None = None
    username: str | None = None


@dataclass(frozen=True)
class Command:
    name: str
    chat_id: int
    user: TgUser | None = None
    args: str = ""


@dataclass(frozen=True)
class TextMessage:
    text: str
    chat_id: int
    user: TgUser | None = None


@dataclass(frozen=True)
class NonTextMessage:
    """Photo, sticker, shared contact etc. Only meaningful while a flow awaits input."""
    chat_id: int
    user: TgUser | None = None
    contact_phone: str | None = None


@dataclass(frozen=True)
class CallbackQuery:
    data: str
    chat_id: int
    message_id: int | None = None
    user: TgUser | None = None
    callback_id: str | None = field(default=None, compare=False)


Event = Union[Command, TextMessage, NonTextMessage, CallbackQuery]


def _user(raw: dict[str, Any] | None) -> TgUser | None:
    if not raw or raw.get("id") is None:
        return None
    return TgUser(
        id=int(raw["id"]),
        first_name=str(raw.get("first_name") or "User"),
        last_name=raw.get("last_name") or None,
        username=raw.get("username") or None,
    )


def parse_command(text: str) -> tuple[str, str] | None:
    """'/start@shop_bot payload' -> ('start', 'payload')"""
    if not text.startswith("/"):
        return None
    head, _, rest = text[1:].partition(" ")
    name = head.split("@", 1)[0].lower()
    if not name:
        return None
    return name, rest.strip()


def event_from_update(data: dict[str, Any]) -> Event | None:
    """
    Raw Telegram update dict -> Event.
    Non-text messages => NonTextMessage; channel posts etc. => None (ignored).
    """
    cb = data.get("callback_query")
    if cb:
        msg = cb.get("message") or {}
        chat = msg.get("chat") or {}
        user = _user(cb.get("from"))
        chat_id = chat.get("id")
        if chat_id is None:
            if user is None:
                return None
            chat_id = user.id
        mid = msg.get("message_id")
        return CallbackQuery(
            data=str(cb.get("data") or "").strip(),
            chat_id=int(chat_id),
            message_id=int(mid) if mid is not None else None,
            user=user,
            callback_id=cb.get("id"),
        )

    msg = data.get("message") or data.get("edited_message")
    if not msg:
        return None

    chat = msg.get("chat") or {}
    if chat.get("id") is None:
        return None
    chat_id = int(chat["id"])
    user = _user(msg.get("from"))

    text = normalize_text(msg.get("text"))
    if not text:
        contact = msg.get("contact") or {}
        phone = str(contact.get("phone_number") or "").strip() or None
        return NonTextMessage(chat_id=chat_id, user=user, contact_phone=phone)

    cmd = parse_command(text)
    if cmd:
        return Command(name=cmd[0], chat_id=chat_id, user=user, args=cmd[1])
    return TextMessage(text=text, chat_id=chat_id, user=user)

from __future__ import annotations

import html
import logging
from decimal import Decimal, InvalidOperation
from typing import Any
from urllib.parse import urljoin

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError
from aiogram.types import Message

log = logging.getLogger(__name__)

HTML_PARSE_MODE = "HTML"


# ---------- text ----------

def h(value: Any) -> str:
    """HTML-escape anything that goes into a parse_mode=HTML message."""
    return html.escape(str(value if value is not None else ""), quote=True)


def normalize_text(s: str | None) -> str:
    s = (s or "").strip()
    # iOS emoji variants
    s = s.replace("\ufe0f", "").replace("\u200d", "")
    return " ".join(s.split())


def to_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value if value is not None else 0))
    except (InvalidOperation, ValueError):
        return Decimal(0)


def fmt_money(value: Any) -> str:
    d = to_decimal(value)
    if d == d.to_integral_value():
        return f"{int(d):,} ₽".replace(",", " ")
    return f"{d.quantize(Decimal('0.01')):,} ₽".replace(",", " ")


def absolute_url(base_url: str, url: str | None) -> str | None:
    url = (url or "").strip()
    if not url:
        return None
    low = url.lower()
    if low.startswith("http://") or low.startswith("https://"):
        return url
    return urljoin(base_url.rstrip("/") + "/", url.lstrip("/"))


def kb(rows: list[list[tuple[str, str]]]) -> dict:
    return {"inline_keyboard": [[{"text": t, "callback_data": d} for (t, d) in row] for row in rows]}


def kb_url(rows: list[list[tuple[str, str]]]) -> dict:
    """
    rows: [[(title, url)], ...]
    """
    return {"inline_keyboard": [[{"text": t, "url": u} for (t, u) in row] for row in rows]}


# ---------- transport (errors are logged and swallowed) ----------

async def send_message(
    bot: Bot,
    chat_id: int,
    text: str,
    reply_markup: dict | Any | None = None,
    disable_web_page_preview: bool = True,
) -> Message | None:
    try:
        return await bot.send_message(
            chat_id=chat_id,
            text=text,
            parse_mode=HTML_PARSE_MODE,
            reply_markup=reply_markup,
            disable_web_page_preview=disable_web_page_preview,
        )
    except TelegramAPIError as e:
        log.warning("send_message failed chat=%s err=%s", chat_id, e)
        return None


async def edit_message(
    bot: Bot,
    chat_id: int,
    message_id: int,
    text: str,
    reply_markup: dict | None = None,
) -> bool:
    try:
        await bot.edit_message_text(
            text=text,
            chat_id=chat_id,
            message_id=message_id,
            parse_mode=HTML_PARSE_MODE,
            reply_markup=reply_markup,
            disable_web_page_preview=True,
        )
        return True
    except TelegramAPIError as e:
        # "message is not modified" / photo message without text etc.
        log.debug("edit_message failed chat=%s mid=%s err=%s", chat_id, message_id, e)
        return False


async def edit_or_send(
    bot: Bot,
    chat_id: int,
    message_id: int | None,
    text: str,
    reply_markup: dict | None = None,
) -> None:
    if message_id and await edit_message(bot, chat_id, message_id, text, reply_markup):
        return
    await send_message(bot, chat_id, text, reply_markup)


async def send_photo(
    bot: Bot,
    chat_id: int,
    photo: str,
    caption: str = "",
    reply_markup: dict | None = None,
) -> Message | None:
    try:
        return await bot.send_photo(
            chat_id=chat_id,
            photo=photo,
            caption=caption,
            parse_mode=HTML_PARSE_MODE,
            reply_markup=reply_markup,
        )
    except TelegramAPIError as e:
        log.warning("send_photo failed chat=%s err=%s", chat_id, e)
        return None


async def answer_callback(bot: Bot, callback_query_id: str, text: str = "", show_alert: bool = False) -> None:
    try:
        await bot.answer_callback_query(callback_query_id, text=text or None, show_alert=show_alert)
    except TelegramAPIError as e:
        log.debug("answer_callback failed id=%s err=%s", callback_query_id, e)

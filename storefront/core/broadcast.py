# storefront/core/broadcast.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Iterable

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError

from storefront.config import settings
from storefront.shared.utils import HTML_PARSE_MODE, kb_url

log = logging.getLogger(__name__)


@dataclass
class BroadcastStats:
    total: int = 0
    sent: int = 0
    failed: int = 0


def _buttons_markup(buttons: list[dict[str, Any]] | None) -> dict | None:
    rows = [[(str(b["text"]), str(b["url"]))] for b in (buttons or []) if b.get("text") and b.get("url")]
    return kb_url(rows) if rows else None


async def broadcast(
    bot: Bot,
    chat_ids: Iterable[int | str],
    text: str,
    *,
    image_url: str | None = None,
    buttons: list[dict[str, Any]] | None = None,
    delay_ms: int | None = None,
) -> BroadcastStats:
    """
    Sequential fan-out with a fixed pause between sends (Telegram allows ~30 msg/sec).
    A failed recipient only bumps `failed`; the loop always runs to the end.
    """
    delay = (settings.BROADCAST_DELAY_MS if delay_ms is None else delay_ms) / 1000.0
    markup = _buttons_markup(buttons)
    stats = BroadcastStats()

    targets = list(chat_ids)
    stats.total = len(targets)

    for i, chat_id in enumerate(targets):
        if i > 0 and delay > 0:
            await asyncio.sleep(delay)
        try:
            if image_url:
                await bot.send_photo(
                    chat_id=chat_id,
                    photo=image_url,
                    caption=text,
                    parse_mode=HTML_PARSE_MODE,
                    reply_markup=markup,
                )
            else:
                await bot.send_message(
                    chat_id=chat_id,
                    text=text,
                    parse_mode=HTML_PARSE_MODE,
                    reply_markup=markup,
                )
            stats.sent += 1
        except TelegramAPIError as e:
            stats.failed += 1
            log.warning("broadcast send failed chat=%s err=%s", chat_id, e)

    log.info("broadcast done total=%s sent=%s failed=%s", stats.total, stats.sent, stats.failed)
    return stats

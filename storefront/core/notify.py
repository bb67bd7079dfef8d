# storefront/core/notify.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError

from storefront.api.client import ApiError
from storefront.shared.utils import HTML_PARSE_MODE

log = logging.getLogger(__name__)

AdminChatResolver = Callable[[], Awaitable[int | None]]


class AdminNotifier:
    """
    Best-effort side channel to the tenant admin chat.

    `notify()` never blocks the caller and never raises: the send runs as a
    detached task, failures only land in the log. `notify_now()` is the awaited
    variant (used by `notify()` itself and in tests).
    """

    def __init__(self, bot: Bot, resolve_admin_chat: AdminChatResolver) -> None:
        self._bot = bot
        self._resolve = resolve_admin_chat
        self._tasks: set[asyncio.Task] = set()

    def notify(self, text: str, reply_markup: dict | None = None) -> asyncio.Task:
        task = asyncio.create_task(self.notify_now(text, reply_markup))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def notify_now(self, text: str, reply_markup: dict | None = None) -> bool:
        try:
            chat_id = await self._resolve()
        except ApiError as e:
            log.warning("admin notify skipped: cannot resolve admin chat err=%s", e)
            return False

        if not chat_id:
            log.info("admin notify skipped: adminTelegramId not configured")
            return False

        try:
            await self._bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode=HTML_PARSE_MODE,
                reply_markup=reply_markup,
                disable_web_page_preview=True,
            )
            return True
        except TelegramAPIError as e:
            log.warning("admin notify failed chat=%s err=%s", chat_id, e)
        except Exception as e:
            log.exception("admin notify crashed chat=%s err=%s", chat_id, e)
        return False

    async def drain(self) -> None:
        """Wait for in-flight notifications (shutdown / tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def parse_admin_chat_id(bot_info: dict[str, Any]) -> int | None:
    raw = str(bot_info.get("adminTelegramId") or "").strip()
    if raw.lstrip("-").isdigit():
        return int(raw)
    return None

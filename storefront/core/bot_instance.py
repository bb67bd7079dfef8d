# storefront/core/bot_instance.py
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from aiogram import Bot, Dispatcher
from aiogram.client.session.middlewares.base import BaseRequestMiddleware
from aiogram.exceptions import TelegramUnauthorizedError
from aiogram.types import CallbackQuery, Message

from storefront.api.client import ShopApi
from storefront.config import settings
from storefront.core.notify import AdminNotifier, parse_admin_chat_id
from storefront.core.sessions import SessionStore
from storefront.shop.catalog import CatalogFacade
from storefront.shop.checkout import CheckoutMachine
from storefront.shop.router import MessageRouter
from storefront.shop.support import SupportFlow

log = logging.getLogger(__name__)

ALLOWED_UPDATES = ["message", "edited_message", "callback_query"]
ADMIN_CHAT_TTL_SEC = 300


def _dump(obj: Message | CallbackQuery) -> dict[str, Any]:
    # aiogram models -> plain Bot API dicts ("from", not "from_user")
    return obj.model_dump(mode="json", by_alias=True, exclude_none=True)


class UnauthorizedWatch(BaseRequestMiddleware):
    """
    Session middleware: the first 401 from any Bot API call (getUpdates
    included, which the polling loop otherwise retries forever) reports the
    token as revoked. The error itself is re-raised untouched.
    """

    def __init__(self, on_revoked) -> None:
        self._on_revoked = on_revoked

    async def __call__(self, make_request, bot, method):
        try:
            return await make_request(bot, method)
        except TelegramUnauthorizedError:
            self._on_revoked()
            raise


class BotInstance:
    """
    One tenant bot: one long-polling connection + its own sessions.

    Sessions never leave the instance: stop() drops them, so a restart
    (stop + new instance) loses in-flight checkouts of that tenant only.
    """

    def __init__(
        self,
        *,
        bot_id: str,
        token: str,
        api: ShopApi,
        name: str = "",
        base_url: str | None = None,
    ) -> None:
        self.bot_id = str(bot_id)
        self.name = name
        self._token = token
        self.api = api
        self.base_url = base_url or settings.public_base_url

        self.sessions = SessionStore(
            max_entries=settings.SESSION_MAX_ENTRIES,
            idle_ttl=settings.SESSION_IDLE_TTL_SEC,
        )

        self.bot: Bot | None = None
        self.router: MessageRouter | None = None
        self.notifier: AdminNotifier | None = None
        self._dp: Dispatcher | None = None
        self._task: asyncio.Task | None = None
        self._stopped = False
        self.revoked = False
        self._halt_task: asyncio.Task | None = None

        self._admin_chat: int | None = None
        self._admin_chat_ts = 0.0

    def __repr__(self) -> str:
        return f"<BotInstance {self.bot_id} {self.name!r}>"

    @property
    def alive(self) -> bool:
        if self._stopped or self.revoked:
            return False
        return self._task is not None and not self._task.done()

    async def admin_chat(self) -> int | None:
        """adminTelegramId from GET /bots/:id, cached for a few minutes. Raises ApiError."""
        now = time.monotonic()
        if self._admin_chat_ts and now - self._admin_chat_ts < ADMIN_CHAT_TTL_SEC:
            return self._admin_chat
        info = await self.api.get_bot(self.bot_id)
        self._admin_chat = parse_admin_chat_id(info)
        self._admin_chat_ts = now
        return self._admin_chat

    def build(self, bot: Bot) -> MessageRouter:
        """Wire façade / checkout / support / router around a transport."""
        self.bot = bot
        self.notifier = AdminNotifier(bot, self.admin_chat)
        facade = CatalogFacade(
            bot=bot,
            bot_id=self.bot_id,
            api=self.api,
            base_url=self.base_url,
            page_size=settings.CATALOG_PAGE_SIZE,
        )
        checkout = CheckoutMachine(
            bot=bot,
            bot_id=self.bot_id,
            sessions=self.sessions,
            facade=facade,
            notifier=self.notifier,
        )
        support = SupportFlow(
            bot=bot,
            bot_id=self.bot_id,
            sessions=self.sessions,
            facade=facade,
            notifier=self.notifier,
            admin_chat=self.admin_chat,
        )
        self.router = MessageRouter(
            bot=bot,
            bot_id=self.bot_id,
            sessions=self.sessions,
            facade=facade,
            checkout=checkout,
            support=support,
        )
        return self.router

    async def start(self) -> None:
        """
        Validate token, drop webhook, start long polling in the background.
        Raises on a malformed/revoked token; the caller decides what to do.
        """
        if self._stopped:
            raise RuntimeError(f"bot {self.bot_id} already stopped")

        bot = Bot(token=self._token)  # TokenValidationError on malformed token
        try:
            me = await bot.get_me()
            await bot.delete_webhook(drop_pending_updates=False)
        except BaseException:
            # CancelledError included: a start timeout must not leak the session
            await bot.session.close()
            raise

        bot.session.middleware(UnauthorizedWatch(self._on_revoked))
        self.build(bot)

        dp = Dispatcher()
        dp.message.register(self._on_message)
        dp.edited_message.register(self._on_edited_message)
        dp.callback_query.register(self._on_callback_query)
        self._dp = dp

        self._task = asyncio.create_task(
            dp.start_polling(
                bot,
                handle_signals=False,
                close_bot_session=False,
                allowed_updates=ALLOWED_UPDATES,
            ),
            name=f"bot-polling:{self.bot_id}",
        )
        self._task.add_done_callback(self._on_polling_done)
        log.info("bot started id=%s username=@%s", self.bot_id, me.username)

    def _on_polling_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        err = task.exception()
        if err is not None:
            log.error("bot polling crashed id=%s err=%r", self.bot_id, err)
        elif not self._stopped:
            log.warning("bot polling exited id=%s", self.bot_id)

    def _on_revoked(self) -> None:
        if self.revoked or self._stopped:
            return
        self.revoked = True
        log.warning("bot token rejected by Telegram id=%s, polling will be stopped", self.bot_id)
        if self._dp is not None:
            self._halt_task = asyncio.create_task(self._halt_polling())

    async def _halt_polling(self) -> None:
        try:
            await self._dp.stop_polling()
        except RuntimeError:
            pass

    async def _on_message(self, message: Message) -> None:
        await self.router.handle_update({"message": _dump(message)})

    async def _on_edited_message(self, message: Message) -> None:
        await self.router.handle_update({"edited_message": _dump(message)})

    async def _on_callback_query(self, query: CallbackQuery) -> None:
        await self.router.handle_update({"callback_query": _dump(query)})

    async def stop(self) -> None:
        """Idempotent; never raises."""
        if self._stopped:
            return
        self._stopped = True

        if self._dp is not None:
            try:
                await self._dp.stop_polling()
            except RuntimeError:
                # polling already finished / never started
                pass

        task = self._task
        if task is not None and not task.done():
            done, _ = await asyncio.wait({task}, timeout=2)
            if not done:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

        if self.notifier is not None:
            await self.notifier.drain()

        if self.bot is not None:
            try:
                await self.bot.session.close()
            except Exception as e:
                log.warning("bot session close failed id=%s err=%s", self.bot_id, e)

        self.sessions.drop_all()
        log.info("bot stopped id=%s", self.bot_id)

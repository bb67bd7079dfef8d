# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from aiogram import Bot

from storefront.api.client import ApiError
from storefront.core.notify import AdminNotifier
from storefront.core.sessions import (
    AwaitingSupportMessage,
    AwaitingSupportReply,
    SessionStore,
)
from storefront.shared.utils import h, send_message
from storefront.shop.catalog import CatalogFacade
from storefront.shop.events import TgUser
from storefront.shop.ui.inline_kb import support_reply_kb

log = logging.getLogger(__name__)

ASK_MESSAGE = "💬 Напишите ваш вопрос, и мы обязательно ответим!\n\n<i>/cancel — отменить</i>"
EMPTY_MESSAGE = "❌ Сообщение пустое. Напишите ваш вопрос или /cancel для отмены."
SENT = "✅ Сообщение отправлено в поддержку. Мы ответим вам здесь."
ASK_REPLY = "✍️ Напишите ответ клиенту (тикет <code>{ticket}</code>) или /cancel для отмены."
EMPTY_REPLY = "❌ Ответ пустой. Напишите текст ответа или /cancel для отмены."
NO_ACCESS = "⛔ Нет доступа"


class SupportFlow:
    """
    Customer: /support -> AwaitingSupportMessage -> ticket + admin ping -> Idle
    Admin:    support_reply_<ticket> -> AwaitingSupportReply(ticket) -> reply delivered -> Idle

    The reply target lives in the admin chat's session, so a second "reply"
    before the first is sent replaces the target ticket.
    """

    def __init__(
        self,
        *,
        bot: Bot,
        bot_id: str,
        sessions: SessionStore,
        facade: CatalogFacade,
        notifier: AdminNotifier,
        admin_chat: Callable[[], Awaitable[int | None]],
    ) -> None:
        self.bot = bot
        self.bot_id = bot_id
        self.sessions = sessions
        self.facade = facade
        self.api = facade.api
        self.notifier = notifier
        self.admin_chat = admin_chat

    async def start(self, chat_id: int) -> None:
        self.sessions.set(self.bot_id, chat_id, AwaitingSupportMessage())
        await send_message(self.bot, chat_id, ASK_MESSAGE)

    async def reprompt(self, chat_id: int, state: Any) -> None:
        if isinstance(state, AwaitingSupportReply):
            await send_message(self.bot, chat_id, ASK_REPLY.format(ticket=h(state.ticket_id)))
        else:
            await send_message(self.bot, chat_id, ASK_MESSAGE)

    async def on_customer_message(self, chat_id: int, user: TgUser | None, text: str) -> None:
        text = (text or "").strip()
        if not text:
            await send_message(self.bot, chat_id, EMPTY_MESSAGE)
            return

        try:
            customer = await self.facade.resolve_customer(chat_id, user)
            ticket = await self.api.create_support_ticket(self.bot_id, str(customer["id"]), text)
        except ApiError as e:
            self.sessions.clear(self.bot_id, chat_id)
            await self.facade.fail(chat_id, e, "create_support_ticket")
            return

        self.sessions.clear(self.bot_id, chat_id)
        await send_message(self.bot, chat_id, SENT)

        ticket_id = str(ticket.get("id") or "")
        if ticket_id:
            self.notifier.notify(ticket_notification_text(ticket_id, customer, text), reply_markup=support_reply_kb(ticket_id))

    async def begin_reply(self, chat_id: int, ticket_id: str) -> None:
        try:
            admin_chat = await self.admin_chat()
        except ApiError as e:
            await self.facade.fail(chat_id, e, "resolve admin chat")
            return

        if not admin_chat or int(admin_chat) != int(chat_id):
            await send_message(self.bot, chat_id, NO_ACCESS)
            return

        self.sessions.set(self.bot_id, chat_id, AwaitingSupportReply(ticket_id=ticket_id))
        await send_message(self.bot, chat_id, ASK_REPLY.format(ticket=h(ticket_id)))

    async def on_admin_reply(self, chat_id: int, state: AwaitingSupportReply, text: str) -> None:
        text = (text or "").strip()
        if not text:
            await send_message(self.bot, chat_id, EMPTY_REPLY)
            return

        try:
            await self.api.add_support_message(
                state.ticket_id,
                sender_type="admin",
                sender_id=str(chat_id),
                text=text,
            )
            ticket = await self.api.get_support_ticket(state.ticket_id)
        except ApiError as e:
            self.sessions.clear(self.bot_id, chat_id)
            await self.facade.fail(chat_id, e, "support reply")
            return

        self.sessions.clear(self.bot_id, chat_id)

        customer_tg = str((ticket.get("customer") or {}).get("telegramId") or "")
        if not customer_tg.lstrip("-").isdigit():
            log.warning("bot=%s ticket=%s has no customer telegramId", self.bot_id, state.ticket_id)
            await send_message(self.bot, chat_id, "⚠️ Ответ сохранён, но клиенту его доставить не удалось.")
            return

        delivered = await send_message(self.bot, int(customer_tg), f"💬 <b>Ответ поддержки:</b>\n\n{h(text)}")
        if delivered is None:
            await send_message(self.bot, chat_id, "⚠️ Ответ сохранён, но клиенту его доставить не удалось.")
            return
        await send_message(self.bot, chat_id, "✅ Ответ отправлен клиенту.")


def ticket_notification_text(ticket_id: str, customer: dict[str, Any], message: str) -> str:
    first = h(customer.get("firstName") or "")
    last = h(customer.get("lastName") or "")
    full = f"{first} {last}".strip() or "—"
    username = f" (@{h(customer['username'])})" if customer.get("username") else ""
    return (
        f"🆘 <b>Новое обращение в поддержку</b>\n\n"
        f"👤 {full}{username}\n"
        f"🎫 Тикет: <code>{h(ticket_id)}</code>\n\n"
        f"{h(message)}"
    )

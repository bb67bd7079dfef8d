from __future__ import annotations

import logging
import re
from decimal import Decimal
from typing import Any

from aiogram import Bot

from storefront.api.client import ApiError
from storefront.core.notify import AdminNotifier
from storefront.core.sessions import (
    AwaitingAddress,
    AwaitingPaymentMethod,
    AwaitingPhone,
    SessionStore,
)
from storefront.shared.utils import fmt_money, h, send_message
from storefront.shop.catalog import CatalogFacade, cart_total
from storefront.shop.events import TgUser
from storefront.shop.ui.inline_kb import PAYMENT_METHODS, payment_kb

log = logging.getLogger(__name__)

_PHONE_RE = re.compile(r"^\+?[\d\s\-()]{5,20}$")

ASK_PHONE = "📱 Введите номер телефона для связи (например, +79990000000):"
BAD_PHONE = "❌ Не похоже на номер телефона. Введите номер ещё раз или /cancel для отмены."
ASK_ADDRESS = "📍 Введите адрес доставки:"
BAD_ADDRESS = "❌ Адрес не может быть пустым. Введите адрес доставки или /cancel для отмены."
ASK_PAYMENT = "💳 Выберите способ оплаты:"
EMPTY_CART = "🛒 Ваша корзина пуста — нечего оформлять."
ORDER_FAILED = "❌ Не удалось оформить заказ. Попробуйте ещё раз позже."


def normalize_phone(text: str) -> str | None:
    s = (text or "").strip()
    if not s or not _PHONE_RE.match(s):
        return None
    if sum(ch.isdigit() for ch in s) < 5:
        return None
    return s


def order_items_payload(lines: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "productId": x["productId"],
            "productName": x["name"],
            "price": float(x["price"]),
            "quantity": int(x["quantity"]),
            "imageUrl": x.get("imageUrl"),
        }
        for x in lines
    ]


def order_notification_text(
    *,
    order: dict[str, Any],
    customer: dict[str, Any],
    lines: list[dict[str, Any]],
    address: str,
    phone: str,
    payment: str,
    total: Decimal,
) -> str:
    """New-order message for the tenant admin. Every interpolated value is escaped."""
    first = h(customer.get("firstName") or "")
    last = h(customer.get("lastName") or "")
    full = f"{first} {last}".strip() or "—"
    username = f"@{h(customer['username'])}" if customer.get("username") else "не указан"
    tg_id = h(customer.get("telegramId") or "")

    products = "\n".join(
        f"• {h(x['name'])} - {h(x.get('article') or 'N/A')} - {int(x['quantity'])} шт." for x in lines
    )

    return (
        f"🔔 <b>Новый заказ #{h(order.get('orderNumber') or order.get('id') or '')}</b>\n\n"
        f"👤 <b>Покупатель:</b>\n"
        f'<a href="tg://user?id={tg_id}">{full}</a>\n'
        f"Username: {username}\n\n"
        f"📦 <b>Товары:</b>\n{products}\n\n"
        f"📍 <b>Адрес доставки:</b> {h(address)}\n"
        f"📱 <b>Телефон:</b> {h(phone)}\n"
        f"💳 <b>Способ оплаты:</b> {h(payment)}\n\n"
        f"💰 <b>Итого:</b> {fmt_money(order.get('total') or total)}"
    )


class CheckoutMachine:
    """
    Idle -> AwaitingPhone -> AwaitingAddress(phone) -> AwaitingPaymentMethod(phone, address) -> Idle

    Invalid input re-prompts and keeps the state. Any backend failure on the
    way to the order drops the session back to Idle.
    """

    def __init__(
        self,
        *,
        bot: Bot,
        bot_id: str,
        sessions: SessionStore,
        facade: CatalogFacade,
        notifier: AdminNotifier,
    ) -> None:
        self.bot = bot
        self.bot_id = bot_id
        self.sessions = sessions
        self.facade = facade
        self.api = facade.api
        self.notifier = notifier

    async def start(self, chat_id: int, user: TgUser | None) -> None:
        try:
            customer = await self.facade.resolve_customer(chat_id, user)
            lines = await self.facade.fetch_cart_lines(str(customer["id"]))
        except ApiError as e:
            await self.facade.fail(chat_id, e, "checkout start")
            return

        if not lines:
            await send_message(self.bot, chat_id, EMPTY_CART)
            return

        self.sessions.set(self.bot_id, chat_id, AwaitingPhone())
        await send_message(self.bot, chat_id, f"{ASK_PHONE}\n\n<i>/cancel — отменить оформление</i>")

    async def reprompt(self, chat_id: int, state: Any) -> None:
        if isinstance(state, AwaitingPhone):
            await send_message(self.bot, chat_id, BAD_PHONE)
        elif isinstance(state, AwaitingAddress):
            await send_message(self.bot, chat_id, BAD_ADDRESS)
        elif isinstance(state, AwaitingPaymentMethod):
            await send_message(self.bot, chat_id, ASK_PAYMENT, reply_markup=payment_kb())

    async def on_text(self, chat_id: int, state: Any, text: str) -> None:
        if isinstance(state, AwaitingPhone):
            phone = normalize_phone(text)
            if not phone:
                await self.reprompt(chat_id, state)
                return
            self.sessions.set(self.bot_id, chat_id, AwaitingAddress(phone=phone))
            await send_message(self.bot, chat_id, ASK_ADDRESS)
            return

        if isinstance(state, AwaitingAddress):
            address = (text or "").strip()
            if not address:
                await self.reprompt(chat_id, state)
                return
            self.sessions.set(self.bot_id, chat_id, AwaitingPaymentMethod(phone=state.phone, address=address))
            await send_message(self.bot, chat_id, ASK_PAYMENT, reply_markup=payment_kb())
            return

        # AwaitingPaymentMethod expects a button, not text
        await self.reprompt(chat_id, state)

    async def on_payment(self, chat_id: int, user: TgUser | None, state: AwaitingPaymentMethod, method_key: str) -> None:
        payment = PAYMENT_METHODS.get(method_key)
        if not payment:
            await self.reprompt(chat_id, state)
            return
        await self.submit(chat_id, user, phone=state.phone, address=state.address, payment=payment)

    async def submit(self, chat_id: int, user: TgUser | None, *, phone: str, address: str, payment: str) -> None:
        """
        Strict order: phone -> fresh cart -> total -> order -> clear cart.
        The cart is cleared only after the order is accepted.
        """
        try:
            customer = await self.facade.resolve_customer(chat_id, user)
            customer_id = str(customer["id"])

            # (a)
            await self.api.update_customer_phone(customer_id, phone)

            # (b) authoritative contents, cart may have changed since checkout started
            lines = await self.facade.fetch_cart_lines(customer_id)
            if not lines:
                self.sessions.clear(self.bot_id, chat_id)
                await send_message(self.bot, chat_id, EMPTY_CART)
                return

            # (c)
            total = cart_total(lines)

            # (d)
            order = await self.api.create_order(
                self.bot_id,
                customer_id=customer_id,
                items=order_items_payload(lines),
                payment_method=payment,
                delivery_address=address,
                total=total,
            )
        except ApiError as e:
            log.warning("bot=%s chat=%s order submit failed: %s", self.bot_id, chat_id, e)
            self.sessions.clear(self.bot_id, chat_id)
            await send_message(self.bot, chat_id, ORDER_FAILED)
            return

        # (e) order is already stored; a failed clear must not look like a failed order
        try:
            await self.api.clear_cart(customer_id)
        except ApiError as e:
            log.warning("bot=%s chat=%s cart clear after order failed: %s", self.bot_id, chat_id, e)

        order = order or {}
        number = order.get("orderNumber") or order.get("id") or ""

        # (f)
        await send_message(
            self.bot,
            chat_id,
            f"✅ <b>Заказ #{h(number)} оформлен!</b>\n\n"
            f"📍 Адрес: {h(address)}\n"
            f"💳 Оплата: {h(payment)}\n"
            f"💰 Сумма: {fmt_money(order.get('total') or total)}\n\n"
            f"Спасибо за покупку! 🎉",
        )

        # (g) best-effort
        self.notifier.notify(
            order_notification_text(
                order=order,
                customer=customer,
                lines=lines,
                address=address,
                phone=phone,
                payment=payment,
                total=total,
            )
        )

        # (h)
        self.sessions.clear(self.bot_id, chat_id)

from __future__ import annotations

import logging
from typing import Any

from aiogram import Bot

from storefront.core.sessions import (
    AwaitingAddress,
    AwaitingPaymentMethod,
    AwaitingPhone,
    AwaitingSupportMessage,
    AwaitingSupportReply,
    BrowsingCategory,
    SessionStore,
    is_awaiting,
)
from storefront.shared.utils import answer_callback, send_message
from storefront.shop.catalog import CatalogFacade
from storefront.shop.checkout import CheckoutMachine
from storefront.shop.events import (
    CallbackQuery,
    Command,
    Event,
    NonTextMessage,
    TextMessage,
    event_from_update,
)
from storefront.shop.support import SupportFlow
from storefront.shop.ui.inline_kb import (
    CB_ADD_TO_CART,
    CB_BACK_TO_CATALOG,
    CB_CART_CLEAR,
    CB_CART_DEC,
    CB_CART_INC,
    CB_CART_SHOW,
    CB_CATEGORY,
    CB_CATPAGE,
    CB_CHECKOUT,
    CB_NOOP,
    CB_PAYMENT,
    CB_PRODUCT,
    CB_SUPPORT_REPLY,
)
from storefront.shop.ui.user_kb import (
    ACTION_CART,
    ACTION_CATALOG,
    ACTION_ORDERS,
    ACTION_SUPPORT,
    menu_action,
    text_block_for,
)

log = logging.getLogger(__name__)

CANCELLED = "❌ Действие отменено."
NOTHING_TO_CANCEL = "Нечего отменять 🙂"
HINT = "Выберите действие в меню 👇 или отправьте /start"
HELP = (
    "<b>Команды</b>\n\n"
    "/catalog — каталог\n"
    "/cart — корзина\n"
    "/orders — мои заказы\n"
    "/support — написать в поддержку\n"
    "/cancel — отменить текущее действие"
)
CHECKOUT_EXPIRED = "⌛️ Оформление не начато или уже завершено. Откройте корзину, чтобы оформить заказ."


def parse_catpage(payload: str) -> tuple[str, int] | None:
    """catpage_<categoryId>_<page> -> (categoryId, page); garbage -> None"""
    rest = payload[len(CB_CATPAGE):]
    cid, sep, raw_page = rest.rpartition("_")
    if not sep or not cid:
        return None
    try:
        return cid, int(raw_page)
    except ValueError:
        return None


class MessageRouter:
    """
    One per Bot Instance. Priority:
      1) /cancel always wins
      2) Awaiting* state gets the input (or a re-prompt)
      3) commands / menu buttons
      4) callback prefixes; unknown payloads are ignored
    Callback queries are answered in `finally`, whatever happened.
    """

    def __init__(
        self,
        *,
        bot: Bot,
        bot_id: str,
        sessions: SessionStore,
        facade: CatalogFacade,
        checkout: CheckoutMachine,
        support: SupportFlow,
    ) -> None:
        self.bot = bot
        self.bot_id = bot_id
        self.sessions = sessions
        self.facade = facade
        self.checkout = checkout
        self.support = support

    async def handle_update(self, data: dict[str, Any]) -> bool:
        event = event_from_update(data)
        if event is None:
            return False
        await self.handle(event)
        return True

    async def handle(self, event: Event) -> None:
        if isinstance(event, CallbackQuery):
            try:
                await self._on_callback(event)
            except Exception as e:
                log.exception("bot=%s chat=%s callback %r failed: %s", self.bot_id, event.chat_id, event.data, e)
            finally:
                if event.callback_id:
                    await answer_callback(self.bot, event.callback_id)
            return

        try:
            await self._on_message(event)
        except Exception as e:
            log.exception("bot=%s chat=%s message failed: %s", self.bot_id, event.chat_id, e)

    # ---------- messages ----------

    async def _on_message(self, event: Command | TextMessage | NonTextMessage) -> None:
        chat_id = event.chat_id

        if isinstance(event, Command) and event.name == "cancel":
            await self.cancel(chat_id)
            return

        state = self.sessions.get(self.bot_id, chat_id).flow_state

        if is_awaiting(state):
            if isinstance(event, Command):
                # commands are never valid phone/address/ticket text
                await self._reprompt(chat_id, state)
                return
            if isinstance(event, NonTextMessage):
                await self._on_awaited_non_text(event, state)
                return
            await self._on_awaited_text(event, state)
            return

        if isinstance(event, NonTextMessage):
            log.debug("bot=%s chat=%s non-text message ignored", self.bot_id, chat_id)
            return

        if isinstance(event, Command):
            await self._on_command(event)
            return

        action = menu_action(event.text)
        if action:
            await self._run_action(action, event)
            return

        block = text_block_for(event.text, await self.facade.load_text_blocks())
        if block:
            await self.facade.show_text_block(chat_id, block)
            return

        await send_message(self.bot, chat_id, HINT)

    async def cancel(self, chat_id: int) -> None:
        state = self.sessions.get(self.bot_id, chat_id).flow_state
        self.sessions.clear(self.bot_id, chat_id)
        await send_message(self.bot, chat_id, CANCELLED if is_awaiting(state) else NOTHING_TO_CANCEL)

    async def _on_command(self, event: Command) -> None:
        name = event.name
        if name == "start":
            self.sessions.clear(self.bot_id, event.chat_id)
            await self.facade.send_welcome(event.chat_id)
        elif name == "help":
            await send_message(self.bot, event.chat_id, HELP)
        elif name in (ACTION_CATALOG, ACTION_CART, ACTION_ORDERS, ACTION_SUPPORT):
            await self._run_action(name, event)
        else:
            await send_message(self.bot, event.chat_id, HINT)

    async def _run_action(self, action: str, event: Command | TextMessage) -> None:
        if action == ACTION_CATALOG:
            await self.facade.show_categories(event.chat_id)
        elif action == ACTION_CART:
            await self.facade.show_cart(event.chat_id, event.user)
        elif action == ACTION_ORDERS:
            await self.facade.show_orders(event.chat_id, event.user)
        elif action == ACTION_SUPPORT:
            await self.support.start(event.chat_id)

    async def _on_awaited_text(self, event: TextMessage, state: Any) -> None:
        if isinstance(state, (AwaitingPhone, AwaitingAddress, AwaitingPaymentMethod)):
            await self.checkout.on_text(event.chat_id, state, event.text)
        elif isinstance(state, AwaitingSupportMessage):
            await self.support.on_customer_message(event.chat_id, event.user, event.text)
        elif isinstance(state, AwaitingSupportReply):
            await self.support.on_admin_reply(event.chat_id, state, event.text)

    async def _on_awaited_non_text(self, event: NonTextMessage, state: Any) -> None:
        # a shared contact is a valid phone answer; anything else re-asks
        if isinstance(state, AwaitingPhone) and event.contact_phone:
            await self.checkout.on_text(event.chat_id, state, event.contact_phone)
            return
        await self._reprompt(event.chat_id, state)

    async def _reprompt(self, chat_id: int, state: Any) -> None:
        if isinstance(state, (AwaitingPhone, AwaitingAddress, AwaitingPaymentMethod)):
            await self.checkout.reprompt(chat_id, state)
        elif isinstance(state, (AwaitingSupportMessage, AwaitingSupportReply)):
            await self.support.reprompt(chat_id, state)

    # ---------- callbacks ----------

    async def _on_callback(self, event: CallbackQuery) -> None:
        data = event.data
        chat_id = event.chat_id

        if not data or data == CB_NOOP:
            return

        session = self.sessions.get(self.bot_id, chat_id)
        state = session.flow_state

        # admin may (re)target a reply from any state
        if data.startswith(CB_SUPPORT_REPLY):
            ticket_id = data[len(CB_SUPPORT_REPLY):]
            if ticket_id:
                await self.support.begin_reply(chat_id, ticket_id)
            return

        if data.startswith(CB_PAYMENT):
            if isinstance(state, AwaitingPaymentMethod):
                await self.checkout.on_payment(chat_id, event.user, state, data[len(CB_PAYMENT):])
            elif is_awaiting(state):
                await self._reprompt(chat_id, state)
            else:
                await send_message(self.bot, chat_id, CHECKOUT_EXPIRED)
            return

        if is_awaiting(state):
            if _is_known_callback(data):
                await self._reprompt(chat_id, state)
            return

        if data == CB_BACK_TO_CATALOG:
            await self.facade.show_categories(chat_id, event.message_id)
            return

        if data.startswith(CB_CATPAGE):
            parsed = parse_catpage(data)
            if parsed is None:
                log.info("bot=%s bad catpage payload %r", self.bot_id, data)
                return
            category_id, page = parsed
            if await self.facade.show_category_page(chat_id, category_id, page, event.message_id):
                self.sessions.set(self.bot_id, chat_id, BrowsingCategory(category_id=category_id))
            return

        if data.startswith(CB_CATEGORY):
            category_id = data[len(CB_CATEGORY):]
            if not category_id:
                return
            if await self.facade.show_category_page(chat_id, category_id, 0, event.message_id):
                self.sessions.set(self.bot_id, chat_id, BrowsingCategory(category_id=category_id))
            return

        if data.startswith(CB_PRODUCT):
            product_id = data[len(CB_PRODUCT):]
            if product_id:
                await self.facade.show_product(chat_id, product_id, back_category_id=session.last_viewed_category_id)
            return

        if data.startswith(CB_ADD_TO_CART):
            product_id = data[len(CB_ADD_TO_CART):]
            if product_id:
                await self.facade.add_to_cart(chat_id, event.user, product_id)
            return

        if data == CB_CART_SHOW:
            await self.facade.show_cart(chat_id, event.user)
            return

        if data.startswith(CB_CART_INC) or data.startswith(CB_CART_DEC):
            delta = 1 if data.startswith(CB_CART_INC) else -1
            product_id = data[len(CB_CART_INC):]
            if product_id:
                await self.facade.change_quantity(chat_id, event.user, product_id, delta, event.message_id)
            return

        if data == CB_CART_CLEAR:
            await self.facade.clear_cart(chat_id, event.user, event.message_id)
            return

        if data == CB_CHECKOUT:
            await self.checkout.start(chat_id, event.user)
            return

        log.debug("bot=%s ignored callback %r", self.bot_id, data)


def _is_known_callback(data: str) -> bool:
    exact = (CB_BACK_TO_CATALOG, CB_CART_SHOW, CB_CART_CLEAR, CB_CHECKOUT)
    prefixes = (CB_CATPAGE, CB_CATEGORY, CB_PRODUCT, CB_ADD_TO_CART, CB_CART_INC, CB_CART_DEC)
    return data in exact or data.startswith(prefixes)

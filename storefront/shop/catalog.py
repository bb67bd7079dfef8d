from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from aiogram import Bot

from storefront.api.client import ApiError, ShopApi
from storefront.shared.utils import (
    absolute_url,
    edit_or_send,
    fmt_money,
    h,
    send_message,
    send_photo,
    to_decimal,
)
from storefront.shop.events import TgUser
from storefront.shop.ui.inline_kb import (
    added_to_cart_kb,
    cart_kb,
    categories_kb,
    clamp_page,
    page_count,
    product_card_kb,
    products_page_kb,
)
from storefront.shop.ui.user_kb import DEFAULT_MENU, main_menu_kb

log = logging.getLogger(__name__)

TRY_AGAIN_TEXT = "⚠️ Что-то пошло не так. Попробуйте ещё раз чуть позже."
DEFAULT_WELCOME = "Добро пожаловать в наш магазин! 🛍️"
ORDERS_SHOWN = 5


def cart_lines(cart: dict[str, Any] | None) -> list[dict[str, Any]]:
    """
    Backend cart ({items: [{productId, quantity, product: {...}}]}) -> flat lines:
    {productId, name, article, price: Decimal, quantity, imageUrl}
    """
    lines: list[dict[str, Any]] = []
    for it in (cart or {}).get("items") or []:
        product = it.get("product") or {}
        qty = int(it.get("quantity") or 0)
        if qty <= 0:
            continue
        images = product.get("images") or []
        lines.append(
            {
                "productId": str(it.get("productId") or product.get("id")),
                "name": str(product.get("name") or "Товар"),
                "article": product.get("article"),
                "price": to_decimal(product.get("price")),
                "quantity": qty,
                "imageUrl": images[0].get("url") if images else None,
            }
        )
    return lines


def cart_total(lines: list[dict[str, Any]]) -> Decimal:
    return sum((to_decimal(x["price"]) * int(x["quantity"]) for x in lines), Decimal(0))


def render_cart_text(lines: list[dict[str, Any]]) -> str:
    if not lines:
        return "🛒 Ваша корзина пуста"
    out = ["🛒 <b>Ваша корзина:</b>\n"]
    for x in lines:
        line_total = to_decimal(x["price"]) * int(x["quantity"])
        out.append(f"• {h(x['name'])} ×{x['quantity']} — {fmt_money(line_total)}")
    out.append(f"\n💰 <b>Итого: {fmt_money(cart_total(lines))}</b>")
    return "\n".join(out)


class CatalogFacade:
    """
    Backend reads/writes -> chat renderings for one tenant bot.

    Every public method swallows ApiError: it is logged and the chat gets
    TRY_AGAIN_TEXT. Methods return False in that case so callers can decide
    whether to touch session state.
    """

    def __init__(
        self,
        *,
        bot: Bot,
        bot_id: str,
        api: ShopApi,
        base_url: str,
        page_size: int = 8,
    ) -> None:
        self.bot = bot
        self.bot_id = bot_id
        self.api = api
        self.base_url = base_url
        self.page_size = page_size

    async def fail(self, chat_id: int, err: Exception, what: str) -> None:
        log.warning("bot=%s chat=%s %s failed: %s", self.bot_id, chat_id, what, err)
        await send_message(self.bot, chat_id, TRY_AGAIN_TEXT)

    # ---------- customer ----------

    async def resolve_customer(self, chat_id: int, user: TgUser | None) -> dict[str, Any]:
        """Get-or-create by Telegram id (idempotent on the backend). Raises ApiError."""
        u = user or TgUser(id=int(chat_id))
        return await self.api.get_or_create_customer(
            self.bot_id,
            telegram_id=u.id,
            first_name=u.first_name,
            username=u.username,
            last_name=u.last_name,
        )

    async def fetch_cart_lines(self, customer_id: str) -> list[dict[str, Any]]:
        return cart_lines(await self.api.get_cart(customer_id))

    # ---------- menu / welcome ----------

    async def load_text_blocks(self) -> list[dict[str, Any]]:
        try:
            return await self.api.list_text_blocks(self.bot_id)
        except ApiError as e:
            log.warning("bot=%s text blocks unavailable: %s", self.bot_id, e)
            return []

    async def send_welcome(self, chat_id: int) -> bool:
        try:
            text = await self.api.get_template(self.bot_id, "welcome") or DEFAULT_WELCOME
            menu = await self.api.get_menu(self.bot_id) or DEFAULT_MENU
        except ApiError as e:
            log.warning("bot=%s welcome fallback: %s", self.bot_id, e)
            await send_message(self.bot, chat_id, "Добро пожаловать! 🛍️", reply_markup=main_menu_kb(DEFAULT_MENU))
            return False

        blocks = await self.load_text_blocks()
        await send_message(self.bot, chat_id, h(text), reply_markup=main_menu_kb(menu, blocks))
        return True

    async def show_text_block(self, chat_id: int, block: dict[str, Any]) -> None:
        title = h(block.get("title") or "")
        emoji = h(block.get("emoji") or "")
        head = f"{emoji} <b>{title}</b>" if emoji else f"<b>{title}</b>"
        await send_message(self.bot, chat_id, f"{head}\n\n{h(block.get('content') or '')}")

    # ---------- catalog ----------

    async def show_categories(self, chat_id: int, message_id: int | None = None) -> bool:
        try:
            categories = await self.api.list_categories(self.bot_id)
        except ApiError as e:
            await self.fail(chat_id, e, "list_categories")
            return False

        if not categories:
            await edit_or_send(self.bot, chat_id, message_id, "Категории пока не добавлены")
            return True

        await edit_or_send(self.bot, chat_id, message_id, "📂 Выберите категорию:", categories_kb(categories))
        return True

    async def show_category_page(
        self,
        chat_id: int,
        category_id: str,
        page: int = 0,
        message_id: int | None = None,
    ) -> bool:
        try:
            products = await self.api.list_products(self.bot_id, category_id)
        except ApiError as e:
            await self.fail(chat_id, e, "list_products")
            return False

        if not products:
            await edit_or_send(
                self.bot,
                chat_id,
                message_id,
                "В этой категории пока нет товаров",
                products_page_kb([], category_id=category_id, page=0, per_page=self.page_size),
            )
            return True

        page = clamp_page(page, len(products), self.page_size)
        pages = page_count(len(products), self.page_size)
        text = f"🛍 Товары ({len(products)})"
        if pages > 1:
            text += f" — страница {page + 1} из {pages}"
        markup = products_page_kb(products, category_id=category_id, page=page, per_page=self.page_size)
        await edit_or_send(self.bot, chat_id, message_id, text, markup)
        return True

    async def show_product(self, chat_id: int, product_id: str, *, back_category_id: str | None) -> bool:
        try:
            p = await self.api.get_product(product_id)
        except ApiError as e:
            await self.fail(chat_id, e, "get_product")
            return False

        if not p:
            await send_message(self.bot, chat_id, "Товар не найден")
            return True

        back = back_category_id or (str(p["categoryId"]) if p.get("categoryId") else None)
        text = f"<b>{h(p.get('name'))}</b>"
        desc = (p.get("description") or "").strip()
        if desc:
            text += f"\n\n{h(desc)}"
        if p.get("article"):
            text += f"\n\nАртикул: <code>{h(p['article'])}</code>"
        text += f"\n\n💰 Цена: {fmt_money(p.get('price'))}"

        markup = product_card_kb(str(p.get("id") or product_id), back_category_id=back)

        images = sorted(p.get("images") or [], key=lambda x: int(x.get("order") or 0))
        photo = absolute_url(self.base_url, images[0].get("url")) if images else None
        if photo and len(text) <= 1024:
            sent = await send_photo(self.bot, chat_id, photo, caption=text, reply_markup=markup)
            if sent is not None:
                return True
            # bad/unreachable image url => text card instead
        await send_message(self.bot, chat_id, text, reply_markup=markup)
        return True

    # ---------- cart ----------

    async def add_to_cart(self, chat_id: int, user: TgUser | None, product_id: str) -> bool:
        try:
            customer = await self.resolve_customer(chat_id, user)
            await self.api.add_to_cart(self.bot_id, str(customer["id"]), product_id, 1)
        except ApiError as e:
            await self.fail(chat_id, e, "add_to_cart")
            return False
        await send_message(self.bot, chat_id, "✅ Товар добавлен в корзину!", reply_markup=added_to_cart_kb())
        return True

    async def show_cart(self, chat_id: int, user: TgUser | None, message_id: int | None = None) -> bool:
        try:
            customer = await self.resolve_customer(chat_id, user)
            lines = await self.fetch_cart_lines(str(customer["id"]))
        except ApiError as e:
            await self.fail(chat_id, e, "get_cart")
            return False

        markup = cart_kb(lines) if lines else None
        await edit_or_send(self.bot, chat_id, message_id, render_cart_text(lines), markup)
        return True

    async def change_quantity(
        self,
        chat_id: int,
        user: TgUser | None,
        product_id: str,
        delta: int,
        message_id: int | None = None,
    ) -> bool:
        try:
            customer = await self.resolve_customer(chat_id, user)
            cid = str(customer["id"])
            lines = await self.fetch_cart_lines(cid)
            current = next((x for x in lines if x["productId"] == product_id), None)
            if current is not None:
                await self.api.update_cart_item(cid, product_id, int(current["quantity"]) + int(delta))
        except ApiError as e:
            await self.fail(chat_id, e, "update_cart_item")
            return False
        return await self.show_cart(chat_id, user, message_id)

    async def clear_cart(self, chat_id: int, user: TgUser | None, message_id: int | None = None) -> bool:
        try:
            customer = await self.resolve_customer(chat_id, user)
            await self.api.clear_cart(str(customer["id"]))
        except ApiError as e:
            await self.fail(chat_id, e, "clear_cart")
            return False
        await edit_or_send(self.bot, chat_id, message_id, "🧹 Корзина очищена")
        return True

    # ---------- orders ----------

    async def show_orders(self, chat_id: int, user: TgUser | None) -> bool:
        try:
            customer = await self.resolve_customer(chat_id, user)
            orders = await self.api.get_orders(self.bot_id, str(customer["id"]))
        except ApiError as e:
            await self.fail(chat_id, e, "get_orders")
            return False

        if not orders:
            await send_message(self.bot, chat_id, "У вас пока нет заказов")
            return True

        blocks = ["📦 <b>Ваши заказы</b>"]
        for o in orders[:ORDERS_SHOWN]:
            status = (o.get("status") or {}).get("name") or "—"
            blocks.append(
                f"Заказ <b>#{h(o.get('orderNumber'))}</b>\n"
                f"Статус: {h(status)}\n"
                f"Сумма: {fmt_money(o.get('total'))}"
            )
        await send_message(self.bot, chat_id, "\n\n".join(blocks))
        return True


from decimal import Decimal
from unittest.mock import Mock

import pytest
from aiogram.exceptions import TelegramBadRequest

from helpers import BOT_ID, CUSTOMER_CHAT, callback_update, cart_payload, sent_texts
from storefront.api.client import ApiError
from storefront.core.sessions import IDLE, BrowsingCategory
from storefront.shop.catalog import TRY_AGAIN_TEXT, cart_lines, cart_total, render_cart_text
from storefront.shop.ui.inline_kb import cart_kb, clamp_page, page_count, products_page_kb

PRODUCTS = [{"id": f"p{i}", "name": f"Product {i}"} for i in range(17)]


def nav_row(markup):
    # second to last row; the last one is "back to categories"
    return [(b["text"], b["callback_data"]) for b in markup["inline_keyboard"][-2]]


def product_ids(markup):
    return [
        b["callback_data"][len("product_"):]
        for row in markup["inline_keyboard"]
        for b in row
        if b["callback_data"].startswith("product_")
    ]


class TestPagination:
    def test_page_count(self):
        assert page_count(17, 8) == 3
        assert page_count(16, 8) == 2
        assert page_count(0, 8) == 1

    def test_clamp(self):
        assert clamp_page(99, 17, 8) == 2
        assert clamp_page(-3, 17, 8) == 0

    def test_first_page_has_only_next(self):
        markup = products_page_kb(PRODUCTS, category_id="c1", page=0)

        assert nav_row(markup) == [("1/3", "noop"), ("▶️", "catpage_c1_1")]
        assert product_ids(markup) == [f"p{i}" for i in range(8)]

    def test_middle_page_has_both(self):
        markup = products_page_kb(PRODUCTS, category_id="c1", page=1)

        assert nav_row(markup) == [("◀️", "catpage_c1_0"), ("2/3", "noop"), ("▶️", "catpage_c1_2")]

    def test_last_page_has_only_prev(self):
        markup = products_page_kb(PRODUCTS, category_id="c1", page=2)

        assert nav_row(markup) == [("◀️", "catpage_c1_1"), ("3/3", "noop")]
        assert product_ids(markup) == ["p16"]

    def test_single_page_has_no_nav(self):
        markup = products_page_kb(PRODUCTS[:3], category_id="c1", page=0)

        rows = markup["inline_keyboard"]
        assert rows[-1] == [{"text": "⬅️ К категориям", "callback_data": "back_to_catalog"}]
        assert all(b["callback_data"] != "noop" for row in rows for b in row)

    def test_two_products_per_row(self):
        markup = products_page_kb(PRODUCTS[:3], category_id="c1", page=0)

        assert [len(r) for r in markup["inline_keyboard"][:-1]] == [2, 1]


class TestCategoryPages:
    async def test_out_of_range_page_is_clamped(self, router, sessions, api, bot):
        api.list_products.return_value = PRODUCTS

        await router.handle_update(callback_update("catpage_c1_99"))

        markup = bot.edit_message_text.await_args.kwargs["reply_markup"]
        assert product_ids(markup) == ["p16"]
        assert sessions.get(BOT_ID, CUSTOMER_CHAT).flow_state == BrowsingCategory(category_id="c1")

    @pytest.mark.parametrize("payload", ["catpage_c1", "catpage_c1_two", "catpage_"])
    async def test_garbage_page_ignored(self, router, api, bot, payload):
        await router.handle_update(callback_update(payload))

        api.list_products.assert_not_awaited()
        bot.send_message.assert_not_awaited()
        bot.answer_callback_query.assert_awaited_once()

    async def test_edit_failure_falls_back_to_new_message(self, router, api, bot):
        api.list_products.return_value = PRODUCTS
        bot.edit_message_text.side_effect = TelegramBadRequest(method=Mock(), message="message is not modified")

        await router.handle_update(callback_update("catpage_c1_1"))

        bot.send_message.assert_awaited_once()

    async def test_backend_failure_keeps_state(self, router, sessions, api, bot):
        api.list_products.side_effect = ApiError("down", status=502, path="/bots/bot-1/products")

        await router.handle_update(callback_update("category_c1"))

        assert sessions.get(BOT_ID, CUSTOMER_CHAT).flow_state == IDLE
        assert sent_texts(bot) == [TRY_AGAIN_TEXT]


class TestProductCard:
    async def test_photo_with_relative_url(self, router, api, bot):
        api.get_product.return_value = {
            "id": "p1",
            "name": "Tea",
            "price": 150,
            "images": [{"url": "/uploads/b.jpg", "order": 1}, {"url": "/uploads/a.jpg", "order": 0}],
        }

        await router.handle_update(callback_update("product_p1"))

        assert bot.send_photo.await_args.kwargs["photo"] == "http://shop.test/uploads/a.jpg"
        bot.send_message.assert_not_awaited()

    async def test_photo_failure_falls_back_to_text(self, router, api, bot):
        api.get_product.return_value = {"id": "p1", "name": "Tea", "price": 150, "images": [{"url": "/x.jpg"}]}
        bot.send_photo.side_effect = TelegramBadRequest(method=Mock(), message="wrong file identifier")

        await router.handle_update(callback_update("product_p1"))

        assert "Tea" in sent_texts(bot)[0]


class TestCart:
    async def test_add_to_cart(self, router, api):
        await router.handle_update(callback_update("add_to_cart_p1"))

        api.add_to_cart.assert_awaited_once_with(BOT_ID, "cust-1", "p1", 1)

    async def test_show_cart(self, router, api, bot):
        api.get_cart.return_value = cart_payload(("p1", "Tea", 100, 2), ("p2", "Cup", "49.90", 1))

        await router.handle_update(callback_update("cart_show"))

        text = sent_texts(bot)[0]
        assert "Tea ×2" in text
        assert "249.90 ₽" in text

    def test_cart_lines_skip_empty_rows(self):
        lines = cart_lines(cart_payload(("p1", "Tea", 100, 0), ("p2", "Cup", 10, 3)))

        assert [x["productId"] for x in lines] == ["p2"]
        assert cart_total(lines) == Decimal(30)

    def test_empty_cart_text(self):
        assert render_cart_text([]) == "🛒 Ваша корзина пуста"

    def test_cart_keyboard(self):
        markup = cart_kb(cart_lines(cart_payload(("p1", "Tea", 100, 2))))

        first, last = markup["inline_keyboard"][0], markup["inline_keyboard"][-1]
        assert [b["callback_data"] for b in first] == ["cart_dec_p1", "noop", "cart_inc_p1"]
        assert [b["callback_data"] for b in last] == ["cart_clear", "checkout"]

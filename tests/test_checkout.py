from decimal import Decimal

import pytest

from helpers import ADMIN_CHAT, BOT_ID, CUSTOMER_CHAT, callback_update, cart_payload, sent_texts, text_update
from storefront.api.client import ApiError
from storefront.core.sessions import IDLE, AwaitingAddress, AwaitingPaymentMethod, AwaitingPhone
from storefront.shop.checkout import (
    BAD_PHONE,
    EMPTY_CART,
    ORDER_FAILED,
    normalize_phone,
    order_items_payload,
    order_notification_text,
)


def state_of(sessions):
    return sessions.get(BOT_ID, CUSTOMER_CHAT).flow_state


@pytest.fixture
def filled_cart(api):
    api.get_cart.return_value = cart_payload(("p1", "Tea", 100, 2))
    api.create_order.return_value = {"id": "o1", "orderNumber": "1001", "total": 200}
    return api


class TestCheckoutStart:
    async def test_empty_cart_stays_idle(self, router, sessions, bot):
        await router.handle_update(callback_update("checkout"))

        assert state_of(sessions) == IDLE
        assert sent_texts(bot) == [EMPTY_CART]

    async def test_non_empty_cart_asks_phone(self, router, sessions, filled_cart):
        await router.handle_update(callback_update("checkout"))

        assert state_of(sessions) == AwaitingPhone()

    async def test_backend_down_stays_idle(self, router, sessions, api):
        api.get_cart.side_effect = ApiError("down", status=503, path="/carts/cust-1")

        await router.handle_update(callback_update("checkout"))

        assert state_of(sessions) == IDLE


class TestCheckoutFlow:
    async def test_happy_path(self, router, sessions, api, bot, instance, filled_cart):
        await router.handle_update(callback_update("checkout"))
        await router.handle_update(text_update("+79990000000"))
        assert state_of(sessions) == AwaitingAddress(phone="+79990000000")

        await router.handle_update(text_update("Moscow, st. 1"))
        assert state_of(sessions) == AwaitingPaymentMethod(phone="+79990000000", address="Moscow, st. 1")

        await router.handle_update(callback_update("payment_cash"))
        await instance.notifier.drain()

        api.update_customer_phone.assert_awaited_once_with("cust-1", "+79990000000")
        api.create_order.assert_awaited_once()
        kwargs = api.create_order.await_args.kwargs
        assert kwargs["total"] == Decimal(200)
        assert kwargs["payment_method"] == "Наличные при получении"
        assert kwargs["delivery_address"] == "Moscow, st. 1"
        assert kwargs["items"] == [
            {"productId": "p1", "productName": "Tea", "price": 100.0, "quantity": 2, "imageUrl": None}
        ]
        api.clear_cart.assert_awaited_once_with("cust-1")
        assert state_of(sessions) == IDLE

        customer_msgs = sent_texts(bot, CUSTOMER_CHAT)
        assert "#1001" in customer_msgs[-1]
        admin_msgs = sent_texts(bot, ADMIN_CHAT)
        assert len(admin_msgs) == 1
        assert "Новый заказ #1001" in admin_msgs[0]

    async def test_cart_cleared_only_after_order(self, router, sessions, api, filled_cart):
        sessions.set(BOT_ID, CUSTOMER_CHAT, AwaitingPaymentMethod(phone="+79990000000", address="Moscow"))

        await router.handle_update(callback_update("payment_bank"))

        names = [c[0] for c in api.mock_calls]
        assert names.index("update_customer_phone") < names.index("create_order") < names.index("clear_cart")

    async def test_invalid_phone_reprompts(self, router, sessions, bot):
        sessions.set(BOT_ID, CUSTOMER_CHAT, AwaitingPhone())

        await router.handle_update(text_update("call me maybe"))

        assert state_of(sessions) == AwaitingPhone()
        assert sent_texts(bot) == [BAD_PHONE]

    async def test_text_instead_of_payment_button_reprompts(self, router, sessions, api, bot):
        state = AwaitingPaymentMethod(phone="+79990000000", address="Moscow")
        sessions.set(BOT_ID, CUSTOMER_CHAT, state)

        await router.handle_update(text_update("cash please"))

        assert state_of(sessions) == state
        api.create_order.assert_not_awaited()
        assert bot.send_message.await_args.kwargs["reply_markup"] is not None

    async def test_unknown_payment_method_reprompts(self, router, sessions, api):
        state = AwaitingPaymentMethod(phone="+79990000000", address="Moscow")
        sessions.set(BOT_ID, CUSTOMER_CHAT, state)

        await router.handle_update(callback_update("payment_bitcoin"))

        assert state_of(sessions) == state
        api.create_order.assert_not_awaited()

    async def test_order_failure_keeps_cart(self, router, sessions, api, bot, filled_cart):
        api.create_order.side_effect = ApiError("boom", status=500, path="/orders/bots/bot-1")
        sessions.set(BOT_ID, CUSTOMER_CHAT, AwaitingPaymentMethod(phone="+79990000000", address="Moscow"))

        await router.handle_update(callback_update("payment_cash"))

        assert state_of(sessions) == IDLE
        api.clear_cart.assert_not_awaited()
        assert sent_texts(bot)[-1] == ORDER_FAILED

    async def test_cart_emptied_meanwhile(self, router, sessions, api, bot):
        sessions.set(BOT_ID, CUSTOMER_CHAT, AwaitingPaymentMethod(phone="+79990000000", address="Moscow"))

        await router.handle_update(callback_update("payment_cash"))

        api.create_order.assert_not_awaited()
        assert state_of(sessions) == IDLE
        assert sent_texts(bot) == [EMPTY_CART]

    async def test_cart_clear_failure_still_confirms(self, router, sessions, api, bot, filled_cart):
        api.clear_cart.side_effect = ApiError("boom", status=500, path="/carts/cust-1")
        sessions.set(BOT_ID, CUSTOMER_CHAT, AwaitingPaymentMethod(phone="+79990000000", address="Moscow"))

        await router.handle_update(callback_update("payment_cash"))

        assert state_of(sessions) == IDLE
        assert "#1001" in sent_texts(bot, CUSTOMER_CHAT)[-1]

    async def test_admin_notification_failure_does_not_break_order(
        self, router, sessions, api, bot, instance, filled_cart
    ):
        api.get_bot.side_effect = ApiError("down", status=503, path="/bots/bot-1")
        sessions.set(BOT_ID, CUSTOMER_CHAT, AwaitingPaymentMethod(phone="+79990000000", address="Moscow"))

        await router.handle_update(callback_update("payment_cash"))
        await instance.notifier.drain()

        api.create_order.assert_awaited_once()
        assert state_of(sessions) == IDLE
        assert sent_texts(bot, ADMIN_CHAT) == []


class TestPhone:
    @pytest.mark.parametrize("raw", ["+79990000000", "8 (999) 000-00-00", "12345"])
    def test_valid(self, raw):
        assert normalize_phone(raw) == raw

    @pytest.mark.parametrize("raw", ["", "abc", "+7", "1234", "+7999000000000000000000"])
    def test_invalid(self, raw):
        assert normalize_phone(raw) is None


class TestNotificationText:
    def test_user_supplied_values_are_escaped(self):
        lines = [{"productId": "p1", "name": "<i>Tea</i>", "article": "A&B", "price": Decimal(100), "quantity": 2}]

        text = order_notification_text(
            order={"orderNumber": "1001"},
            customer={"firstName": "<script>", "username": "x<y", "telegramId": "42"},
            lines=lines,
            address="<b>Moscow</b>",
            phone="+7999",
            payment="Наличные при получении",
            total=Decimal(200),
        )

        assert "<script>" not in text
        assert "&lt;script&gt;" in text
        assert "&lt;i&gt;Tea&lt;/i&gt; - A&amp;B - 2 шт." in text
        assert "&lt;b&gt;Moscow&lt;/b&gt;" in text
        assert 'href="tg://user?id=42"' in text
        assert "200 ₽" in text

    def test_items_payload(self):
        lines = [{"productId": "p1", "name": "Tea", "price": Decimal("9.50"), "quantity": 3, "imageUrl": "/u/1.jpg"}]

        assert order_items_payload(lines) == [
            {"productId": "p1", "productName": "Tea", "price": 9.5, "quantity": 3, "imageUrl": "/u/1.jpg"}
        ]

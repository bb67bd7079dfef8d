from unittest.mock import AsyncMock

import pytest

from helpers import ADMIN_CHAT, BOT_ID, CUSTOMER_CHAT, cart_payload
from storefront.api.client import ShopApi
from storefront.core.bot_instance import BotInstance


@pytest.fixture
def bot():
    """Mock aiogram Bot."""
    return AsyncMock()


@pytest.fixture
def api():
    api = AsyncMock(spec=ShopApi)
    api.get_or_create_customer.return_value = {
        "id": "cust-1",
        "telegramId": str(CUSTOMER_CHAT),
        "firstName": "Ann",
        "username": "ann",
    }
    api.get_bot.return_value = {"id": BOT_ID, "adminTelegramId": str(ADMIN_CHAT)}
    api.get_cart.return_value = cart_payload()
    api.list_text_blocks.return_value = []
    api.list_categories.return_value = [{"id": "c1", "name": "Tea"}]
    api.list_products.return_value = []
    return api


@pytest.fixture
def instance(api, bot):
    inst = BotInstance(bot_id=BOT_ID, token="123:abc", api=api, base_url="http://shop.test")
    inst.build(bot)
    return inst


@pytest.fixture
def router(instance):
    return instance.router


@pytest.fixture
def sessions(instance):
    return instance.sessions

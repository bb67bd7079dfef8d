from unittest.mock import AsyncMock, Mock, patch

from aiogram.exceptions import TelegramAPIError, TelegramForbiddenError

from storefront.core.broadcast import broadcast


def blocked():
    return TelegramForbiddenError(method=Mock(), message="Forbidden: bot was blocked by the user")


class TestBroadcast:
    async def test_sends_to_everyone(self):
        bot = AsyncMock()

        stats = await broadcast(bot, [1, 2, 3], "Sale!", delay_ms=0)

        assert (stats.total, stats.sent, stats.failed) == (3, 3, 0)
        assert [c.kwargs["chat_id"] for c in bot.send_message.await_args_list] == [1, 2, 3]

    async def test_failed_recipient_does_not_stop_the_loop(self):
        bot = AsyncMock()
        bot.send_message.side_effect = [None, blocked(), None, TelegramAPIError(method=Mock(), message="x")]

        stats = await broadcast(bot, [1, 2, 3, 4], "Sale!", delay_ms=0)

        assert (stats.total, stats.sent, stats.failed) == (4, 2, 2)
        assert bot.send_message.await_count == 4

    async def test_pause_between_sends(self):
        bot = AsyncMock()

        with patch("storefront.core.broadcast.asyncio.sleep", new=AsyncMock()) as sleep:
            await broadcast(bot, [1, 2, 3], "Sale!", delay_ms=35)

        assert sleep.await_count == 2
        sleep.assert_awaited_with(0.035)

    async def test_photo_with_url_buttons(self):
        bot = AsyncMock()

        await broadcast(
            bot,
            [7],
            "New collection",
            image_url="https://cdn.test/a.jpg",
            buttons=[{"text": "Open", "url": "https://shop.test"}, {"text": "", "url": "https://x"}],
            delay_ms=0,
        )

        bot.send_message.assert_not_awaited()
        kwargs = bot.send_photo.await_args.kwargs
        assert kwargs["photo"] == "https://cdn.test/a.jpg"
        assert kwargs["caption"] == "New collection"
        assert kwargs["reply_markup"] == {"inline_keyboard": [[{"text": "Open", "url": "https://shop.test"}]]}

    async def test_empty_audience(self):
        bot = AsyncMock()

        stats = await broadcast(bot, [], "Sale!")

        assert stats.total == 0
        bot.send_message.assert_not_awaited()

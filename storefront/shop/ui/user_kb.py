from __future__ import annotations

from typing import Any

from aiogram.types import KeyboardButton, ReplyKeyboardMarkup

from storefront.shared.utils import normalize_text

ACTION_CATALOG = "catalog"
ACTION_CART = "cart"
ACTION_ORDERS = "orders"
ACTION_SUPPORT = "support"

# fallback when /bots/:id/menu is unreachable
DEFAULT_MENU: list[list[dict[str, str]]] = [
    [{"text": "Каталог", "emoji": "📂"}, {"text": "Корзина", "emoji": "🛒"}],
    [{"text": "Мои заказы", "emoji": "📦"}, {"text": "Поддержка", "emoji": "💬"}],
]

# menu label (lowercase, no emoji) -> router action
MENU_ACTIONS: dict[str, str] = {
    "каталог": ACTION_CATALOG,
    "корзина": ACTION_CART,
    "мои заказы": ACTION_ORDERS,
    "заказы": ACTION_ORDERS,
    "поддержка": ACTION_SUPPORT,
}


def button_label(button: dict[str, Any]) -> str:
    text = str(button.get("text") or "").strip()
    emoji = str(button.get("emoji") or "").strip()
    return f"{emoji} {text}" if emoji else text


def _strip_emoji_prefix(text: str) -> str:
    """'📂 Каталог' -> 'каталог'. Drops leading non-alphanumeric tokens."""
    parts = normalize_text(text).split(" ")
    while parts and not any(ch.isalnum() for ch in parts[0]):
        parts.pop(0)
    return " ".join(parts).lower()


def menu_action(text: str) -> str | None:
    return MENU_ACTIONS.get(_strip_emoji_prefix(text))


def main_menu_kb(menu: list[list[dict[str, Any]]], text_blocks: list[dict[str, Any]] | None = None) -> ReplyKeyboardMarkup:
    rows: list[list[KeyboardButton]] = []
    for row in menu or DEFAULT_MENU:
        buttons = [KeyboardButton(text=button_label(b)) for b in row if b.get("text")]
        if buttons:
            rows.append(buttons)

    # text blocks (about / delivery / ...) two per row under the main menu
    blocks = [b for b in (text_blocks or []) if b.get("title")]
    for i in range(0, len(blocks), 2):
        rows.append([KeyboardButton(text=button_label({"text": b["title"], "emoji": b.get("emoji")})) for b in blocks[i:i + 2]])

    return ReplyKeyboardMarkup(keyboard=rows, resize_keyboard=True)


def text_block_for(text: str, text_blocks: list[dict[str, Any]]) -> dict[str, Any] | None:
    wanted = _strip_emoji_prefix(text)
    if not wanted:
        return None
    for b in text_blocks:
        title = str(b.get("title") or "")
        if not title:
            continue
        # some emoji (ℹ️) survive prefix stripping, so match the full button label too
        label = button_label({"text": title, "emoji": b.get("emoji")})
        if wanted in (_strip_emoji_prefix(title), _strip_emoji_prefix(label)):
            return b
    return None

from __future__ import annotations

import math
from typing import Any

from storefront.shared.utils import kb

CB_CATEGORY = "category_"
CB_CATPAGE = "catpage_"
CB_PRODUCT = "product_"
CB_ADD_TO_CART = "add_to_cart_"
CB_CHECKOUT = "checkout"
CB_PAYMENT = "payment_"
CB_SUPPORT_REPLY = "support_reply_"
CB_BACK_TO_CATALOG = "back_to_catalog"
CB_NOOP = "noop"
CB_CART_INC = "cart_inc_"
CB_CART_DEC = "cart_dec_"
CB_CART_CLEAR = "cart_clear"
CB_CART_SHOW = "cart_show"

PAYMENT_CASH = "cash"
PAYMENT_BANK = "bank"

PAYMENT_METHODS: dict[str, str] = {
    PAYMENT_CASH: "Наличные при получении",
    PAYMENT_BANK: "Банковский перевод",
}


def _title(name: str, limit: int = 30) -> str:
    name = (name or "").strip()
    if len(name) > limit:
        return name[: limit - 1] + "…"
    return name


def categories_kb(categories: list[dict[str, Any]]) -> dict:
    rows: list[list[tuple[str, str]]] = []
    for c in categories:
        name = str(c.get("name") or "")
        emoji = str(c.get("emoji") or "").strip()
        text = f"{emoji} {name}" if emoji else name
        rows.append([(_title(text), f"{CB_CATEGORY}{c['id']}")])
    return kb(rows)


def page_count(total: int, per_page: int) -> int:
    return max(1, math.ceil(total / per_page)) if per_page > 0 else 1


def clamp_page(page: int, total: int, per_page: int) -> int:
    return min(max(0, int(page)), page_count(total, per_page) - 1)


def products_page_kb(
    products: list[dict[str, Any]],
    *,
    category_id: str,
    page: int,
    per_page: int = 8,
    columns: int = 2,
) -> dict:
    """
    One page of product buttons, `columns` per row, then the nav row:
    [◀️] [page/total] [▶️]. Arrows only where there is somewhere to go,
    the page label is inert (`noop`).
    """
    page = clamp_page(page, len(products), per_page)
    pages = page_count(len(products), per_page)
    chunk = products[page * per_page:(page + 1) * per_page]

    rows: list[list[tuple[str, str]]] = []
    row: list[tuple[str, str]] = []
    for p in chunk:
        row.append((_title(str(p.get("name") or "")), f"{CB_PRODUCT}{p['id']}"))
        if len(row) == columns:
            rows.append(row)
            row = []
    if row:
        rows.append(row)

    if pages > 1:
        nav: list[tuple[str, str]] = []
        if page > 0:
            nav.append(("◀️", f"{CB_CATPAGE}{category_id}_{page - 1}"))
        nav.append((f"{page + 1}/{pages}", CB_NOOP))
        if page < pages - 1:
            nav.append(("▶️", f"{CB_CATPAGE}{category_id}_{page + 1}"))
        rows.append(nav)

    rows.append([("⬅️ К категориям", CB_BACK_TO_CATALOG)])
    return kb(rows)


def product_card_kb(product_id: str, *, back_category_id: str | None) -> dict:
    rows: list[list[tuple[str, str]]] = [[("🛒 Добавить в корзину", f"{CB_ADD_TO_CART}{product_id}")]]
    if back_category_id:
        rows.append([("⬅️ Назад", f"{CB_CATEGORY}{back_category_id}")])
    else:
        rows.append([("⬅️ К категориям", CB_BACK_TO_CATALOG)])
    return kb(rows)


def cart_kb(items: list[dict[str, Any]]) -> dict:
    rows: list[list[tuple[str, str]]] = []
    for it in items:
        pid = str(it["productId"])
        qty = int(it.get("quantity") or 0)
        rows.append([
            ("➖", f"{CB_CART_DEC}{pid}"),
            (f"{_title(str(it.get('name') or ''), 18)} ×{qty}", CB_NOOP),
            ("➕", f"{CB_CART_INC}{pid}"),
        ])
    rows.append([("🧹 Очистить", CB_CART_CLEAR), ("✅ Оформить заказ", CB_CHECKOUT)])
    return kb(rows)


def added_to_cart_kb() -> dict:
    return kb([[("🛒 Корзина", CB_CART_SHOW), ("⬅️ К каталогу", CB_BACK_TO_CATALOG)]])


def payment_kb() -> dict:
    return kb([
        [("💵 " + PAYMENT_METHODS[PAYMENT_CASH], f"{CB_PAYMENT}{PAYMENT_CASH}")],
        [("🏦 " + PAYMENT_METHODS[PAYMENT_BANK], f"{CB_PAYMENT}{PAYMENT_BANK}")],
    ])


def support_reply_kb(ticket_id: str) -> dict:
    return kb([[("✉️ Ответить", f"{CB_SUPPORT_REPLY}{ticket_id}")]])

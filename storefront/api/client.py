# storefront/api/client.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

import httpx

log = logging.getLogger(__name__)


class ApiError(Exception):
    """Backend call failed: network error, non-2xx status or `success: false`."""

    def __init__(self, message: str, *, status: int | None = None, path: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.path = path

    def __str__(self) -> str:
        base = super().__str__()
        if self.status is not None:
            return f"{base} (status={self.status} path={self.path})"
        return f"{base} (path={self.path})"


class ShopApi:
    """
    Thin async client for the public (bot-facing) backend routes.

    All responses are `{"success": true, "data": ...}` except `/bots/active`,
    which returns a bare list. `_request` unwraps `data` when present.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/",
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        try:
            res = await self._client.request(method, path, params=params, json=json)
        except httpx.HTTPError as e:
            raise ApiError(f"{method} failed: {e.__class__.__name__}", path=path) from e

        log.debug("api %s %s -> %s", method, path, res.status_code)
        if res.status_code >= 400:
            detail = ""
            try:
                body = res.json()
                if isinstance(body, dict):
                    detail = str(body.get("error") or body.get("message") or "")
            except ValueError:
                pass
            raise ApiError(f"{method} returned {res.status_code} {detail}".strip(), status=res.status_code, path=path)

        if not res.content:
            return None

        try:
            body = res.json()
        except ValueError as e:
            raise ApiError(f"{method} returned non-JSON body", status=res.status_code, path=path) from e

        if isinstance(body, dict):
            if body.get("success") is False:
                raise ApiError(str(body.get("error") or "success=false"), status=res.status_code, path=path)
            if "data" in body:
                return body["data"]
        return body

    # ---------- bots ----------

    async def list_active_bots(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/bots/active")
        return list(data or [])

    async def get_bot(self, bot_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/bots/{bot_id}") or {}

    async def get_template(self, bot_id: str, key: str = "welcome") -> str | None:
        data = await self._request("GET", f"/bots/{bot_id}/templates", params={"key": key})
        if isinstance(data, dict):
            text = data.get("text")
            return str(text) if text else None
        return None

    async def get_menu(self, bot_id: str) -> list[list[dict[str, Any]]]:
        data = await self._request("GET", f"/bots/{bot_id}/menu")
        if isinstance(data, dict):
            return list(data.get("buttons") or [])
        return []

    async def list_text_blocks(self, bot_id: str) -> list[dict[str, Any]]:
        return list(await self._request("GET", f"/bots/{bot_id}/text-blocks") or [])

    # ---------- catalog ----------

    async def list_categories(self, bot_id: str) -> list[dict[str, Any]]:
        return list(await self._request("GET", f"/bots/{bot_id}/categories") or [])

    async def list_products(self, bot_id: str, category_id: str | None = None) -> list[dict[str, Any]]:
        params = {"categoryId": category_id} if category_id else None
        return list(await self._request("GET", f"/bots/{bot_id}/products", params=params) or [])

    async def get_product(self, product_id: str) -> dict[str, Any] | None:
        return await self._request("GET", f"/products/{product_id}")

    # ---------- customers ----------

    async def get_or_create_customer(
        self,
        bot_id: str,
        *,
        telegram_id: int,
        first_name: str,
        username: str | None = None,
        last_name: str | None = None,
    ) -> dict[str, Any]:
        payload = {
            "telegramId": int(telegram_id),
            "username": username,
            "firstName": first_name or "User",
            "lastName": last_name,
        }
        return await self._request("POST", f"/customers/bots/{bot_id}/telegram", json=payload)

    async def update_customer_phone(self, customer_id: str, phone: str) -> dict[str, Any]:
        return await self._request("PATCH", f"/customers/{customer_id}", json={"phone": phone})

    # ---------- cart ----------

    async def get_cart(self, customer_id: str) -> dict[str, Any] | None:
        return await self._request("GET", f"/carts/{customer_id}")

    async def add_to_cart(self, bot_id: str, customer_id: str, product_id: str, quantity: int = 1) -> None:
        payload = {"botId": bot_id, "customerId": customer_id, "productId": product_id, "quantity": int(quantity)}
        await self._request("POST", "/carts", json=payload)

    async def update_cart_item(self, customer_id: str, product_id: str, quantity: int) -> None:
        # quantity <= 0 => backend deletes the line
        await self._request("PUT", f"/carts/{customer_id}/items/{product_id}", json={"quantity": int(quantity)})

    async def clear_cart(self, customer_id: str) -> None:
        await self._request("DELETE", f"/carts/{customer_id}")

    # ---------- orders ----------

    async def create_order(
        self,
        bot_id: str,
        *,
        customer_id: str,
        items: list[dict[str, Any]],
        payment_method: str,
        delivery_address: str,
        customer_comment: str | None = None,
        total: Decimal | None = None,
    ) -> dict[str, Any]:
        payload = {
            "customerId": customer_id,
            "items": items,
            "paymentMethod": payment_method,
            "deliveryAddress": delivery_address,
            "customerComment": customer_comment,
        }
        if total is not None:
            # informational; the backend recomputes its own total
            payload["total"] = float(total)
        return await self._request("POST", f"/orders/bots/{bot_id}", json=payload)

    async def get_orders(self, bot_id: str, customer_id: str) -> list[dict[str, Any]]:
        data = await self._request("GET", f"/bots/{bot_id}/orders", params={"customerId": customer_id})
        return list(data or [])

    # ---------- support ----------

    async def create_support_ticket(self, bot_id: str, customer_id: str, message: str) -> dict[str, Any]:
        return await self._request("POST", f"/support/bots/{bot_id}", json={"customerId": customer_id, "message": message})

    async def get_support_ticket(self, ticket_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/support/tickets/{ticket_id}")

    async def add_support_message(self, ticket_id: str, *, sender_type: str, sender_id: str, text: str) -> dict[str, Any]:
        payload = {"senderType": sender_type, "senderId": sender_id, "text": text}
        return await self._request("POST", f"/support/tickets/{ticket_id}/messages", json=payload)

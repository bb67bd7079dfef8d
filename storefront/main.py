# storefront/main.py
from __future__ import annotations

import asyncio
import logging
import secrets

from fastapi import FastAPI, Header, HTTPException
from pydantic import BaseModel, Field

from storefront.api.client import ShopApi
from storefront.config import settings
from storefront.core.bot_instance import BotInstance
from storefront.core.broadcast import broadcast
from storefront.core.fleet import FleetManager

log = logging.getLogger(__name__)

app = FastAPI()

_API: ShopApi | None = None
_FLEET: FleetManager | None = None
_FLEET_STOP = asyncio.Event()
_FLEET_TASK: asyncio.Task | None = None


class BroadcastButton(BaseModel):
    text: str
    url: str


class BroadcastIn(BaseModel):
    chat_ids: list[int] = Field(alias="chatIds")
    text: str
    image_url: str | None = Field(default=None, alias="imageUrl")
    buttons: list[BroadcastButton] = []


@app.on_event("startup")
async def on_startup():
    global _API, _FLEET, _FLEET_TASK
    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # polling bodies are noisy
    logging.getLogger("aiogram.event").setLevel(logging.WARNING)

    _API = ShopApi(settings.API_URL, timeout=settings.API_TIMEOUT_SEC)
    _FLEET = FleetManager(_API)

    _FLEET_STOP.clear()
    _FLEET_TASK = asyncio.create_task(_FLEET.run(_FLEET_STOP), name="fleet-manager")
    log.info("storefront runtime started api=%s interval=%ss", settings.API_URL, settings.FLEET_POLL_INTERVAL_SEC)


@app.on_event("shutdown")
async def on_shutdown():
    global _FLEET_TASK
    _FLEET_STOP.set()

    if _FLEET_TASK is not None:
        try:
            await asyncio.wait_for(_FLEET_TASK, timeout=settings.BOT_STOP_TIMEOUT_SEC + 5)
        except asyncio.TimeoutError:
            log.warning("fleet manager did not stop in time")
            _FLEET_TASK.cancel()
        _FLEET_TASK = None

    if _API is not None:
        await _API.aclose()


@app.get("/")
async def root():
    return {"ok": True, "service": "storefront"}


@app.get("/fleet")
async def fleet_status():
    if _FLEET is None:
        return {"ok": True, "bots": []}
    bots = []
    for bot_id, inst in _FLEET.instances.items():
        item = {"id": bot_id, "alive": inst.alive}
        if isinstance(inst, BotInstance):
            item["name"] = inst.name
            item["sessions"] = len(inst.sessions)
        bots.append(item)
    return {"ok": True, "bots": bots}


@app.post("/fleet/{bot_id}/broadcast")
async def fleet_broadcast(bot_id: str, body: BroadcastIn, x_broadcast_secret: str = Header(default="")):
    if not settings.BROADCAST_SECRET:
        raise HTTPException(status_code=403, detail="broadcast disabled")
    if not secrets.compare_digest(x_broadcast_secret, settings.BROADCAST_SECRET):
        raise HTTPException(status_code=403, detail="bad secret")

    inst = _FLEET.instances.get(bot_id) if _FLEET else None
    if not isinstance(inst, BotInstance) or inst.bot is None or not inst.alive:
        raise HTTPException(status_code=404, detail="bot not running")

    stats = await broadcast(
        inst.bot,
        body.chat_ids,
        body.text,
        image_url=body.image_url,
        buttons=[b.model_dump() for b in body.buttons],
    )
    return {"ok": True, "total": stats.total, "sent": stats.sent, "failed": stats.failed}


def run() -> None:
    import uvicorn

    uvicorn.run("storefront.main:app", host="0.0.0.0", port=settings.PORT)


if __name__ == "__main__":
    run()

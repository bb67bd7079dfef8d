# storefront/core/fleet.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from storefront.api.client import ApiError, ShopApi
from storefront.config import settings
from storefront.core.bot_instance import BotInstance

log = logging.getLogger(__name__)


class Instance(Protocol):
    bot_id: str

    @property
    def alive(self) -> bool: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


@dataclass(frozen=True)
class BotSpec:
    bot_id: str
    token: str = field(repr=False)
    name: str = ""
    is_active: bool = True

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> "BotSpec":
        return cls(
            bot_id=str(raw.get("id") or "").strip(),
            token=str(raw.get("token") or "").strip(),
            name=str(raw.get("name") or ""),
            is_active=raw.get("isActive") is not False,
        )


@dataclass
class ReconcileResult:
    started: list[str] = field(default_factory=list)
    stopped: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.started or self.stopped)


InstanceFactory = Callable[[BotSpec], Instance]


class FleetManager:
    """
    Keeps `instances` (bot_id -> running instance) in line with GET /bots/active.

    Only presence of the bot id and a non-empty token matter: a running bot
    whose name changed is not restarted. One bad token never blocks the rest.
    """

    def __init__(
        self,
        api: ShopApi,
        *,
        factory: InstanceFactory | None = None,
        poll_interval: float | None = None,
        start_timeout: float | None = None,
        stop_timeout: float | None = None,
    ) -> None:
        self.api = api
        self.factory = factory or self._default_factory
        self.poll_interval = settings.FLEET_POLL_INTERVAL_SEC if poll_interval is None else poll_interval
        self.start_timeout = settings.BOT_START_TIMEOUT_SEC if start_timeout is None else start_timeout
        self.stop_timeout = settings.BOT_STOP_TIMEOUT_SEC if stop_timeout is None else stop_timeout
        self.instances: dict[str, Instance] = {}
        self._lock = asyncio.Lock()

    def _default_factory(self, spec: BotSpec) -> Instance:
        return BotInstance(bot_id=spec.bot_id, token=spec.token, name=spec.name, api=self.api)

    async def fetch_desired(self) -> list[BotSpec]:
        raw = await self.api.list_active_bots()
        specs: list[BotSpec] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            spec = BotSpec.from_api(item)
            if spec.bot_id and spec.is_active:
                specs.append(spec)
        return specs

    async def reconcile(self) -> ReconcileResult | None:
        """One pass. None => desired state unavailable, nothing touched."""
        async with self._lock:
            try:
                desired = await self.fetch_desired()
            except ApiError as e:
                log.warning("fleet: desired state fetch failed, skip cycle: %s", e)
                return None
            return await self._apply(desired)

    async def _apply(self, desired: list[BotSpec]) -> ReconcileResult:
        result = ReconcileResult()
        desired_ids = {d.bot_id for d in desired}

        # 1) stop: gone from desired state, or polling died
        gone = [bid for bid, inst in self.instances.items() if bid not in desired_ids or not inst.alive]
        doomed = [self.instances.pop(bid) for bid in gone]
        if doomed:
            await asyncio.gather(*(self._stop_one(inst) for inst in doomed))
            result.stopped.extend(gone)

        # 2) start: new ids with a token
        for spec in desired:
            if spec.bot_id in self.instances:
                continue
            if not spec.token:
                log.warning("fleet: bot %s (%s) has no token, skipped", spec.bot_id, spec.name)
                result.skipped.append(spec.bot_id)
                continue

            inst = self.factory(spec)
            try:
                await asyncio.wait_for(inst.start(), timeout=self.start_timeout)
            except Exception as e:
                log.warning("fleet: bot %s failed to start: %r", spec.bot_id, e)
                result.failed.append(spec.bot_id)
                await self._stop_one(inst)
                continue

            self.instances[spec.bot_id] = inst
            result.started.append(spec.bot_id)

        if result.changed or result.failed:
            log.info(
                "fleet: running=%s started=%s stopped=%s skipped=%s failed=%s",
                len(self.instances),
                result.started,
                result.stopped,
                result.skipped,
                result.failed,
            )
        return result

    async def _stop_one(self, inst: Instance) -> None:
        try:
            await asyncio.wait_for(inst.stop(), timeout=self.stop_timeout)
        except asyncio.TimeoutError:
            log.warning("fleet: bot %s stop timed out after %ss", inst.bot_id, self.stop_timeout)
        except Exception as e:
            log.exception("fleet: bot %s stop failed: %s", inst.bot_id, e)

    async def run(self, stop_event: asyncio.Event) -> None:
        """Reconcile now, then every `poll_interval` seconds until `stop_event`."""
        log.info("fleet manager started interval=%ss", self.poll_interval)
        while not stop_event.is_set():
            try:
                await self.reconcile()
            except Exception as e:
                log.exception("fleet reconcile crashed: %s", e)

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

        await self.shutdown()
        log.info("fleet manager stopped")

    async def shutdown(self) -> None:
        async with self._lock:
            doomed = list(self.instances.values())
            self.instances.clear()
            if doomed:
                await asyncio.gather(*(self._stop_one(inst) for inst in doomed))

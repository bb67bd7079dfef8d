# storefront/core/sessions.py
from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Union


# ---------- flow states ----------

@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class BrowsingCategory:
    category_id: str


@dataclass(frozen=True)
class AwaitingPhone:
    pass


@dataclass(frozen=True)
class AwaitingAddress:
    phone: str


@dataclass(frozen=True)
class AwaitingPaymentMethod:
    phone: str
    address: str


@dataclass(frozen=True)
class AwaitingSupportMessage:
    pass


@dataclass(frozen=True)
class AwaitingSupportReply:
    ticket_id: str


FlowState = Union[
    Idle,
    BrowsingCategory,
    AwaitingPhone,
    AwaitingAddress,
    AwaitingPaymentMethod,
    AwaitingSupportMessage,
    AwaitingSupportReply,
]

AWAITING_STATES = (
    AwaitingPhone,
    AwaitingAddress,
    AwaitingPaymentMethod,
    AwaitingSupportMessage,
    AwaitingSupportReply,
)

IDLE = Idle()


def is_awaiting(state: FlowState) -> bool:
    return isinstance(state, AWAITING_STATES)


@dataclass
class Session:
    chat_id: int
    flow_state: FlowState = IDLE
    last_viewed_category_id: str | None = None
    touched_at: float = field(default_factory=time.monotonic)


# ---------- store ----------

class SessionStore:
    """
    In-memory sessions keyed by (bot_instance_id, chat_id).

    LRU bounded: when over `max_entries`, the oldest idle sessions go first,
    then the oldest of any kind. Idle sessions older than `idle_ttl` seconds
    are swept whenever a session is cleared (flow finished or cancelled).
    No persistence: a restart loses in-flight checkouts.
    """

    def __init__(self, *, max_entries: int = 10_000, idle_ttl: float = 3600.0, clock=time.monotonic) -> None:
        self._items: OrderedDict[tuple[str, int], Session] = OrderedDict()
        self._max = max(1, int(max_entries))
        self._idle_ttl = float(idle_ttl)
        self._clock = clock

    def __len__(self) -> int:
        return len(self._items)

    def get(self, bot_instance_id: str, chat_id: int) -> Session:
        key = (bot_instance_id, int(chat_id))
        s = self._items.get(key)
        if s is None:
            s = Session(chat_id=int(chat_id), touched_at=self._clock())
            self._items[key] = s
            self._shrink(keep=key)
        else:
            s.touched_at = self._clock()
            self._items.move_to_end(key)
        return s

    def set(self, bot_instance_id: str, chat_id: int, flow_state: FlowState) -> Session:
        s = self.get(bot_instance_id, chat_id)
        s.flow_state = flow_state
        if isinstance(flow_state, BrowsingCategory):
            s.last_viewed_category_id = flow_state.category_id
        return s

    def clear(self, bot_instance_id: str, chat_id: int) -> Session:
        s = self.get(bot_instance_id, chat_id)
        s.flow_state = IDLE
        self.evict_idle()
        return s

    def drop_all(self) -> None:
        self._items.clear()

    def evict_idle(self, now: float | None = None) -> int:
        now = self._clock() if now is None else now
        stale = [
            k for k, s in self._items.items()
            if isinstance(s.flow_state, (Idle, BrowsingCategory)) and now - s.touched_at > self._idle_ttl
        ]
        for k in stale:
            del self._items[k]
        return len(stale)

    def _shrink(self, keep: tuple[str, int]) -> None:
        if len(self._items) <= self._max:
            return
        # idle first (oldest first), then anything
        for k in [k for k, s in self._items.items() if k != keep and not is_awaiting(s.flow_state)]:
            if len(self._items) <= self._max:
                return
            del self._items[k]
        while len(self._items) > self._max:
            oldest = next(iter(self._items))
            if oldest == keep:
                return
            del self._items[oldest]

"""
events.py - Ledger event records and the in-process event log.

The payloads mirror the contract's events. They are enough for a read
model to rebuild every drop's remaining amount from the stream alone:
remaining(drop) = DropPublished.total - sum(Claimed.amount for that drop).
"""
import logging
import threading
from dataclasses import asdict, dataclass
from typing import Callable, Union

log = logging.getLogger("drops.events")


@dataclass(frozen=True)
class PaymentRecorded:
    group: str
    payer: str
    amount: int
    name: str = "PaymentRecorded"


@dataclass(frozen=True)
class DropPublished:
    root: str
    cutoff_block: int
    total: int
    drop_index: int
    name: str = "DropPublished"


@dataclass(frozen=True)
class Claimed:
    drop_index: int
    recipient: str
    amount: int
    used_fallback: bool
    name: str = "Claimed"


Event = Union[PaymentRecorded, DropPublished, Claimed]


def event_to_dict(event: Event) -> dict:
    return asdict(event)


class EventLog:
    """Append-only event list with synchronous subscribers."""

    def __init__(self):
        self._lock = threading.Lock()
        self._events: list[Event] = []
        self._subscribers: list[Callable[[Event], None]] = []

    def subscribe(self, handler: Callable[[Event], None]):
        with self._lock:
            self._subscribers.append(handler)

    def emit(self, event: Event):
        with self._lock:
            self._events.append(event)
            subscribers = list(self._subscribers)
        log.debug("event %s", event)
        for handler in subscribers:
            handler(event)

    def all(self) -> list[Event]:
        with self._lock:
            return list(self._events)

    def of_type(self, kind: type) -> list:
        return [e for e in self.all() if isinstance(e, kind)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

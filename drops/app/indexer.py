"""
indexer.py - Read model rebuilt purely from ledger events.

Mirrors what the external indexing service does with the contract's events:
  DropPublished   -> new drop record, remaining = total
  Claimed         -> remaining -= amount, claim record keyed by (drop, recipient)
  PaymentRecorded -> group record keyed by keccak(group), payment appended

It never reads ledger state, so it doubles as a check that the event
payloads are sufficient on their own.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Optional

from web3 import Web3

from .balance_tree import normalise_recipient
from .events import Claimed, DropPublished, Event, PaymentRecorded

log = logging.getLogger("drops.indexer")


@dataclass
class IndexedDrop:
    index: int
    root: str
    cutoff_block: int
    total: int
    remaining: int


@dataclass(frozen=True)
class IndexedClaim:
    drop_index: int
    recipient: str
    amount: int
    used_fallback: bool


@dataclass
class IndexedGroup:
    group_id: str
    name: str
    payments: list = field(default_factory=list)

    @property
    def total_paid(self) -> int:
        return sum(p.amount for p in self.payments)


def group_id(name: str) -> str:
    return "0x" + bytes(Web3.keccak(text=name)).hex()


class DropIndex:
    def __init__(self):
        self._lock = threading.Lock()
        self._drops: dict[int, IndexedDrop] = {}
        self._claims: dict[tuple, IndexedClaim] = {}
        self._groups: dict[str, IndexedGroup] = {}

    def handle(self, event: Event):
        if isinstance(event, DropPublished):
            self._on_drop(event)
        elif isinstance(event, Claimed):
            self._on_claim(event)
        elif isinstance(event, PaymentRecorded):
            self._on_payment(event)

    def _on_drop(self, event: DropPublished):
        with self._lock:
            self._drops[event.drop_index] = IndexedDrop(
                event.drop_index, event.root, event.cutoff_block, event.total, event.total)

    def _on_claim(self, event: Claimed):
        with self._lock:
            drop = self._drops.get(event.drop_index)
            if drop is None:
                log.warning("claim for unknown drop %d ignored", event.drop_index)
                return
            if drop.remaining < event.amount:
                log.warning("claim amount %d more than drop %d remaining %d",
                            event.amount, event.drop_index, drop.remaining)
                return
            drop.remaining -= event.amount
            self._claims[(event.drop_index, event.recipient)] = IndexedClaim(
                event.drop_index, event.recipient, event.amount, event.used_fallback)

    def _on_payment(self, event: PaymentRecorded):
        gid = group_id(event.group)
        with self._lock:
            group = self._groups.get(gid)
            if group is None:
                group = self._groups[gid] = IndexedGroup(gid, event.group)
            group.payments.append(event)

    #  Queries

    def drop(self, index: int) -> Optional[IndexedDrop]:
        with self._lock:
            return self._drops.get(index)

    def claims_for(self, recipient: str) -> list[IndexedClaim]:
        recipient = normalise_recipient(recipient)
        with self._lock:
            return sorted((c for c in self._claims.values() if c.recipient == recipient),
                          key=lambda c: c.drop_index)

    def group(self, name: str) -> Optional[IndexedGroup]:
        with self._lock:
            return self._groups.get(group_id(name))

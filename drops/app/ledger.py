"""
ledger.py - Drop ledger state machine.

State:
  drops                ordered, append-only list of published drops
  unclaimed_liability  sum of published totals not yet paid out
  pool_balance         value paid in minus value paid out

Per drop: nonexistent -> published -> partially claimed ... -> fully claimed.
"Fully claimed" is not tracked; it is just remaining == 0.

Claim ordering (check -> mark -> pay):
  1. Under the lock: validate, then mark the recipient claimed and move the
     amount out of liability and the pool.
  2. Lock released: dispatch the payout. A re-entrant claim for the same
     (drop, recipient) made from inside the transfer sees AlreadyClaimedError.
  3. If both payout paths fail, the commit from step 1 is undone under the
     lock and DispatchFailureError is raised. Any other error from the
     dispatcher is re-raised after the same undo. No funds are lost and the claim
     can be retried.

Every rejection is raised during validation, before anything is written.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Optional, Protocol, Sequence

from .balance_tree import check_amount, leaf_for, normalise_recipient
from .errors import (
    AlreadyClaimedError, ArrayLengthMismatchError, DispatchFailureError,
    DropBlockPassedError, DropExhaustedError, DropNotFoundError,
    DropTooLargeError, InvalidProofError, ZeroValueError,
)
from .events import Claimed, DropPublished, EventLog, PaymentRecorded
from .merkle import HASH_LEN, to_bytes, verify
from .payout import PayoutDispatcher, PayoutOutcome

log = logging.getLogger("drops.ledger")


class BlockClock(Protocol):
    @property
    def number(self) -> int: ...


@dataclass
class Drop:
    index: int
    root: bytes
    cutoff_block: int
    total_amount: int
    claimed_recipients: set = field(default_factory=set)
    claimed_amount: int = 0

    @property
    def remaining(self) -> int:
        return self.total_amount - self.claimed_amount

    def snapshot(self) -> "Drop":
        return Drop(self.index, self.root, self.cutoff_block, self.total_amount,
                    set(self.claimed_recipients), self.claimed_amount)


@dataclass(frozen=True)
class PaymentRecord:
    group: str
    payer: str
    amount: int


@dataclass(frozen=True)
class _ClaimRequest:
    drop_index: int
    recipient: str
    amount: int
    proof: tuple


def _parse_root(root) -> bytes:
    raw = to_bytes(root)
    if len(raw) != HASH_LEN:
        raise ValueError(f"root must be {HASH_LEN} bytes, got {len(raw)}")
    return raw


def _parse_proof(proof) -> tuple:
    try:
        elements = tuple(to_bytes(p) for p in proof)
    except (TypeError, ValueError) as exc:
        raise InvalidProofError(f"malformed proof element: {exc}") from exc
    if any(len(e) != HASH_LEN for e in elements):
        raise InvalidProofError("proof element is not 32 bytes")
    return elements


class DropLedger:
    def __init__(self, dispatcher: PayoutDispatcher, clock: BlockClock,
                 events: Optional[EventLog] = None):
        self._dispatcher = dispatcher
        self._clock = clock
        self.events = events if events is not None else EventLog()
        self._lock = threading.RLock()
        self._drops: list[Drop] = []
        self._payments: list[PaymentRecord] = []
        self._unclaimed = 0
        self._pool = 0

    #  Payments

    def pay(self, group: str, payer: str, amount: int) -> PaymentRecord:
        amount = check_amount(amount)
        if amount == 0:
            raise ZeroValueError()
        record = PaymentRecord(group=group, payer=normalise_recipient(payer), amount=amount)
        with self._lock:
            self._payments.append(record)
            self._pool += amount
            self.events.emit(PaymentRecorded(record.group, record.payer, amount))
        log.info("payment group=%s payer=%s amount=%d", group, record.payer, amount)
        return record

    #  Drops

    def publish(self, root, cutoff_block: int, total: int) -> int:
        """Append a new drop and return its index."""
        root = _parse_root(root)
        total = check_amount(total)
        with self._lock:
            now = self._clock.number
            if cutoff_block <= now:
                raise DropBlockPassedError(f"cutoff={cutoff_block} current={now}")
            if self._unclaimed + total > self._pool:
                raise DropTooLargeError(
                    f"unclaimed={self._unclaimed} total={total} pool={self._pool}")
            index = len(self._drops)
            self._drops.append(Drop(index, root, cutoff_block, total))
            self._unclaimed += total
            self.events.emit(DropPublished("0x" + root.hex(), cutoff_block, total, index))
        log.info("drop %d published root=%s cutoff=%d total=%d",
                 index, root.hex()[:16], cutoff_block, total)
        return index

    #  Claims

    def claim(self, drop_index: int, recipient: str, amount: int, proof) -> PayoutOutcome:
        return self._run([(drop_index, recipient, amount, proof)])[0]

    def multi_claim(self, drop_indices: Sequence[int], recipients: Sequence[str],
                    amounts: Sequence[int], proofs: Sequence) -> list[PayoutOutcome]:
        """All tuples validate or none are applied."""
        lengths = {len(drop_indices), len(recipients), len(amounts), len(proofs)}
        if len(lengths) != 1:
            raise ArrayLengthMismatchError(
                f"drops={len(drop_indices)} recipients={len(recipients)} "
                f"amounts={len(amounts)} proofs={len(proofs)}")
        return self._run(list(zip(drop_indices, recipients, amounts, proofs)))

    def _run(self, tuples: list) -> list[PayoutOutcome]:
        requests = [
            _ClaimRequest(d, normalise_recipient(r), check_amount(a), tuple(p))
            for d, r, a, p in tuples
        ]
        with self._lock:
            self._validate(requests)
            for req in requests:
                self._mark(req)

        outcomes: list[PayoutOutcome] = []
        for i, req in enumerate(requests):
            try:
                outcome = self._dispatcher.payout(req.recipient, req.amount)
            except DispatchFailureError as exc:
                self._rollback(requests[i:])
                log.error("claim rolled back drop=%d recipient=%s: %s",
                          req.drop_index, req.recipient, exc.detail)
                raise DispatchFailureError(exc.detail, completed=outcomes) from exc
            except Exception:
                self._rollback(requests[i:])
                log.exception("claim rolled back drop=%d recipient=%s",
                              req.drop_index, req.recipient)
                raise
            outcomes.append(outcome)
            self.events.emit(Claimed(req.drop_index, req.recipient, req.amount,
                                     outcome.used_fallback))
            log.info("claim drop=%d recipient=%s amount=%d fallback=%s",
                     req.drop_index, req.recipient, req.amount, outcome.used_fallback)
        return outcomes

    def _validate(self, requests: list[_ClaimRequest]):
        """Check requests in order as if each earlier one had been applied."""
        pending: set = set()
        spent: dict[int, int] = {}
        for req in requests:
            if not 0 <= req.drop_index < len(self._drops):
                raise DropNotFoundError(f"drop={req.drop_index}")
            drop = self._drops[req.drop_index]
            key = (req.drop_index, req.recipient)
            if req.recipient in drop.claimed_recipients or key in pending:
                raise AlreadyClaimedError(f"drop={req.drop_index} recipient={req.recipient}")
            leaf = leaf_for(req.recipient, req.amount)
            if not verify(_parse_proof(req.proof), drop.root, leaf):
                raise InvalidProofError(f"drop={req.drop_index} recipient={req.recipient}")
            used = spent.get(req.drop_index, 0) + req.amount
            if used > drop.remaining:
                raise DropExhaustedError(
                    f"drop={req.drop_index} amount={req.amount} remaining={drop.remaining}")
            pending.add(key)
            spent[req.drop_index] = used

    def _mark(self, req: _ClaimRequest):
        drop = self._drops[req.drop_index]
        drop.claimed_recipients.add(req.recipient)
        drop.claimed_amount += req.amount
        self._unclaimed -= req.amount
        self._pool -= req.amount

    def _rollback(self, requests: list[_ClaimRequest]):
        with self._lock:
            for req in requests:
                self._unmark(req)

    def _unmark(self, req: _ClaimRequest):
        drop = self._drops[req.drop_index]
        drop.claimed_recipients.discard(req.recipient)
        drop.claimed_amount -= req.amount
        self._unclaimed += req.amount
        self._pool += req.amount

    #  Queries

    def is_claimed(self, drop_index: int, recipient: str) -> bool:
        try:
            recipient = normalise_recipient(recipient)
        except ValueError:
            return False
        with self._lock:
            if not 0 <= drop_index < len(self._drops):
                return False
            return recipient in self._drops[drop_index].claimed_recipients

    def drop(self, drop_index: int) -> Drop:
        with self._lock:
            if not 0 <= drop_index < len(self._drops):
                raise DropNotFoundError(f"drop={drop_index}")
            return self._drops[drop_index].snapshot()

    def drops(self) -> list[Drop]:
        with self._lock:
            return [d.snapshot() for d in self._drops]

    def drop_count(self) -> int:
        with self._lock:
            return len(self._drops)

    def drop_root(self, drop_index: int) -> bytes:
        return self.drop(drop_index).root

    def drop_cutoff(self, drop_index: int) -> int:
        return self.drop(drop_index).cutoff_block

    def drop_total(self, drop_index: int) -> int:
        return self.drop(drop_index).total_amount

    def drop_remaining(self, drop_index: int) -> int:
        return self.drop(drop_index).remaining

    def unclaimed_liability(self) -> int:
        with self._lock:
            return self._unclaimed

    def pool_balance(self) -> int:
        with self._lock:
            return self._pool

    def payments(self) -> list[PaymentRecord]:
        with self._lock:
            return list(self._payments)

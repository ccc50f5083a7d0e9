"""
payout.py - Payout dispatcher.

Pays a validated claim to its recipient. The direct (native value) transfer
is tried first; if the recipient refuses it or burns through the gas
stipend, the same amount is sent through the wrapped-asset path instead.
Either path counts as a paid claim. Only when both fail does the dispatcher
raise, and the ledger then rolls the claim back.

Transfer backends implement send(recipient, amount) -> TransferResult and
live in chain/.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from .errors import DispatchFailureError, DropsError, TransferError

log = logging.getLogger("drops.payout")


class TransferResult:
    __slots__ = ("tx_hash", "error")

    def __init__(self, tx_hash: Optional[str] = None, error: Optional[str] = None):
        self.tx_hash = tx_hash
        self.error = error

    @property
    def success(self) -> bool:
        return self.error is None and self.tx_hash is not None

    def __repr__(self) -> str:
        return f"TransferResult(tx_hash={self.tx_hash!r}, error={self.error!r})"


class Transfer(Protocol):
    def send(self, recipient: str, amount: int) -> TransferResult: ...


@dataclass(frozen=True)
class PayoutOutcome:
    recipient: str
    amount: int
    used_fallback: bool
    tx_hash: Optional[str] = None


def _attempt(transfer: Transfer, recipient: str, amount: int) -> TransferResult:
    try:
        return transfer.send(recipient, amount)
    except (TransferError, DropsError) as exc:
        # a recipient re-entering the ledger during send() counts as a refusal
        return TransferResult(error=str(exc))


class PayoutDispatcher:
    def __init__(self, direct: Transfer, fallback: Transfer):
        self._direct = direct
        self._fallback = fallback

    def payout(self, recipient: str, amount: int) -> PayoutOutcome:
        direct = _attempt(self._direct, recipient, amount)
        if direct.success:
            log.info("paid %s amount=%d tx=%s", recipient, amount, direct.tx_hash)
            return PayoutOutcome(recipient, amount, used_fallback=False, tx_hash=direct.tx_hash)

        log.warning("direct transfer to %s failed (%s), using wrapped fallback",
                    recipient, direct.error)
        wrapped = _attempt(self._fallback, recipient, amount)
        if wrapped.success:
            log.info("paid %s amount=%d wrapped tx=%s", recipient, amount, wrapped.tx_hash)
            return PayoutOutcome(recipient, amount, used_fallback=True, tx_hash=wrapped.tx_hash)

        log.error("payout to %s failed on both paths: direct=%s wrapped=%s",
                  recipient, direct.error, wrapped.error)
        raise DispatchFailureError(
            f"recipient={recipient} direct={direct.error} wrapped={wrapped.error}"
        )

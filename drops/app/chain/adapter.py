"""
chain/adapter.py - Chain backend selection.

The ledger and dispatcher only need three things from the chain:
  - a block clock (current block number)
  - a direct value transfer
  - a wrapped-asset transfer used as fallback

Swapping backends only requires changing the CHAIN_BACKEND env var.

  stub  - in-memory chain for tests, demos and experiments
  web3  - an EVM node reached over JSON-RPC (see web3_backend.py)
"""
import logging
import os
import threading
import uuid

from ..errors import TransferError
from ..payout import PayoutDispatcher, TransferResult

log = logging.getLogger("drops.chain")

BACKEND = os.getenv("CHAIN_BACKEND", "stub")  # stub | web3


#  Stub backend

class StubChain:
    """In-memory chain: native and wrapped balances plus a block counter.

    `refusing` recipients reject native value (like a contract without a
    payable fallback). `blocked` recipients also reject the wrapped asset.
    """

    def __init__(self, start_block: int = 1):
        self._lock = threading.Lock()
        self._block = start_block
        self.native: dict[str, int] = {}
        self.wrapped: dict[str, int] = {}
        self.refusing: set[str] = set()
        self.blocked: set[str] = set()
        self.transfers: list[dict] = []

    @property
    def number(self) -> int:
        with self._lock:
            return self._block

    def mine(self, blocks: int = 1) -> int:
        with self._lock:
            self._block += blocks
            return self._block

    def _record(self, kind: str, recipient: str, amount: int) -> str:
        tx_hash = "0xstub" + uuid.uuid4().hex + uuid.uuid4().hex[:26]
        with self._lock:
            self.transfers.append({"kind": kind, "recipient": recipient,
                                   "amount": amount, "tx_hash": tx_hash,
                                   "block": self._block})
        return tx_hash

    def send_native(self, recipient: str, amount: int) -> TransferResult:
        if recipient in self.refusing:
            return TransferResult(error="recipient rejected native transfer")
        with self._lock:
            self.native[recipient] = self.native.get(recipient, 0) + amount
        return TransferResult(tx_hash=self._record("native", recipient, amount))

    def send_wrapped(self, recipient: str, amount: int) -> TransferResult:
        if recipient in self.blocked:
            raise TransferError("wrapped transfer blocked")
        with self._lock:
            self.wrapped[recipient] = self.wrapped.get(recipient, 0) + amount
        return TransferResult(tx_hash=self._record("wrapped", recipient, amount))


class NativeTransfer:
    def __init__(self, chain):
        self._chain = chain

    def send(self, recipient: str, amount: int) -> TransferResult:
        return self._chain.send_native(recipient, amount)


class WrappedTransfer:
    def __init__(self, chain):
        self._chain = chain

    def send(self, recipient: str, amount: int) -> TransferResult:
        return self._chain.send_wrapped(recipient, amount)


def make_dispatcher(chain) -> PayoutDispatcher:
    return PayoutDispatcher(direct=NativeTransfer(chain), fallback=WrappedTransfer(chain))


def get_chain():
    """Return the chain object for the configured backend."""
    if BACKEND == "web3":
        from .web3_backend import Web3Chain
        return Web3Chain.from_env()
    log.info("chain backend=stub")
    return StubChain()

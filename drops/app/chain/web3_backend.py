"""
chain/web3_backend.py - EVM backend using web3.py.

Pays claims from the operator account:
  direct   - plain value transfer with a bounded gas limit, so a recipient
             contract that reverts or burns gas fails fast
  fallback - WETH deposit() followed by transfer(recipient, amount)

Environment variables:
  CHAIN_RPC              - JSON-RPC endpoint (default: http://localhost:8545)
  OPERATOR_PRIVATE_KEY   - hex private key of the paying account
  WETH_ADDRESS           - wrapped native token contract
  DIRECT_TRANSFER_GAS    - gas limit for the direct transfer (default: 30000)
  RECEIPT_TIMEOUT_S      - seconds to wait for each receipt (default: 30)
"""
import logging
import os
from typing import Optional

from web3 import Web3
from web3.middleware import geth_poa_middleware

from ..payout import TransferResult

log = logging.getLogger("drops.chain.web3")

CHAIN_RPC = os.getenv("CHAIN_RPC", "http://localhost:8545")
OPERATOR_PRIVATE_KEY = os.getenv("OPERATOR_PRIVATE_KEY", "")
WETH_ADDRESS = os.getenv("WETH_ADDRESS", "")
DIRECT_TRANSFER_GAS = int(os.getenv("DIRECT_TRANSFER_GAS", "30000"))
RECEIPT_TIMEOUT_S = int(os.getenv("RECEIPT_TIMEOUT_S", "30"))

WETH_ABI = [
    {"name": "deposit", "type": "function", "stateMutability": "payable",
     "inputs": [], "outputs": []},
    {"name": "transfer", "type": "function", "stateMutability": "nonpayable",
     "inputs": [{"name": "dst", "type": "address"}, {"name": "wad", "type": "uint256"}],
     "outputs": [{"name": "", "type": "bool"}]},
]


def _get_raw_tx(signed) -> bytes:
    # web3.py differs across versions: rawTransaction vs raw_transaction
    raw = getattr(signed, "rawTransaction", None)
    if raw is None:
        raw = getattr(signed, "raw_transaction", None)
    if raw is None:
        raise RuntimeError("SignedTransaction missing raw tx bytes (rawTransaction/raw_transaction)")
    return raw


class Web3Chain:
    def __init__(self, w3: Web3, private_key: str, weth_address: str,
                 direct_gas: int = DIRECT_TRANSFER_GAS):
        self._w3 = w3
        self._account = w3.eth.account.from_key(private_key)
        self._weth = w3.eth.contract(address=Web3.to_checksum_address(weth_address), abi=WETH_ABI)
        self._direct_gas = direct_gas

    @classmethod
    def from_env(cls) -> "Web3Chain":
        if not OPERATOR_PRIVATE_KEY or not WETH_ADDRESS:
            raise RuntimeError("OPERATOR_PRIVATE_KEY and WETH_ADDRESS must be set for CHAIN_BACKEND=web3")
        w3 = Web3(Web3.HTTPProvider(CHAIN_RPC))
        w3.middleware_onion.inject(geth_poa_middleware, layer=0)
        log.info("web3 chain connected: rpc=%s weth=%s", CHAIN_RPC, WETH_ADDRESS)
        return cls(w3, OPERATOR_PRIVATE_KEY, WETH_ADDRESS)

    @property
    def number(self) -> int:
        return self._w3.eth.block_number

    def _base_tx(self) -> dict:
        return {
            "from": self._account.address,
            "nonce": self._w3.eth.get_transaction_count(self._account.address),
            "gasPrice": self._w3.eth.gas_price,
            "chainId": self._w3.eth.chain_id,
        }

    def _submit(self, tx: dict) -> tuple[str, Optional[str]]:
        """Sign, send and wait. Returns (tx_hash, error)."""
        signed = self._account.sign_transaction(tx)
        tx_hash = self._w3.eth.send_raw_transaction(_get_raw_tx(signed))
        receipt = self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=RECEIPT_TIMEOUT_S)
        status = int(receipt.status) if hasattr(receipt, "status") else int(receipt.get("status", 0))
        if status != 1:
            return tx_hash.hex(), f"tx reverted: {tx_hash.hex()}"
        return tx_hash.hex(), None

    def send_native(self, recipient: str, amount: int) -> TransferResult:
        try:
            tx = {**self._base_tx(), "to": recipient, "value": amount, "gas": self._direct_gas}
            tx_hash, error = self._submit(tx)
        except Exception as exc:
            log.warning("native transfer to %s failed: %s", recipient, exc)
            return TransferResult(error=str(exc))
        if error:
            log.warning("native transfer to %s reverted tx=%s", recipient, tx_hash)
            return TransferResult(error=error)
        return TransferResult(tx_hash=tx_hash)

    def send_wrapped(self, recipient: str, amount: int) -> TransferResult:
        try:
            deposit = self._weth.functions.deposit().build_transaction(
                {**self._base_tx(), "value": amount})
            _, error = self._submit(deposit)
            if error:
                return TransferResult(error=f"weth deposit failed: {error}")
            transfer = self._weth.functions.transfer(recipient, amount).build_transaction(
                self._base_tx())
            tx_hash, error = self._submit(transfer)
        except Exception as exc:
            log.error("wrapped transfer to %s failed: %s", recipient, exc)
            return TransferResult(error=str(exc))
        if error:
            # operator now holds the deposited WETH; it is not lost
            log.error("weth transfer to %s reverted tx=%s", recipient, tx_hash)
            return TransferResult(error=error)
        return TransferResult(tx_hash=tx_hash)

"""
balance_tree.py - Leaf encoding for balance-based Merkle trees.

Leaf = keccak256(abi.encodePacked(address recipient, uint256 amount))

This must match the contract's leaf computation bit for bit, otherwise no
proof generated here will ever verify on-chain. The packed encoding is
20 address bytes followed by the 32-byte big-endian amount.

Recipients are normalised to EIP-55 checksum form so that two spellings of
the same address produce the same leaf and the same claimed-set key.
"""
from dataclasses import dataclass

from web3 import Web3

MAX_UINT256 = 2 ** 256 - 1


def normalise_recipient(recipient: str) -> str:
    """Return the checksum form of an address, or raise ValueError."""
    if not isinstance(recipient, str) or not Web3.is_address(recipient):
        raise ValueError(f"not a valid address: {recipient!r}")
    return Web3.to_checksum_address(recipient)


def check_amount(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError(f"amount must be an integer, got {type(amount).__name__}")
    if amount < 0 or amount > MAX_UINT256:
        raise ValueError(f"amount out of uint256 range: {amount}")
    return amount


@dataclass(frozen=True)
class Balance:
    recipient: str
    amount: int

    def __post_init__(self):
        object.__setattr__(self, "recipient", normalise_recipient(self.recipient))
        object.__setattr__(self, "amount", check_amount(self.amount))


def to_leaf(balance: Balance) -> bytes:
    """Return the 32-byte leaf for a balance."""
    digest = Web3.solidity_keccak(
        ["address", "uint256"], [balance.recipient, balance.amount]
    )
    return bytes(digest)


def to_hex_leaf(balance: Balance) -> str:
    """Return the leaf as 64 hex chars, no 0x prefix."""
    return to_leaf(balance).hex()


def leaf_for(recipient: str, amount: int) -> bytes:
    return to_leaf(Balance(recipient, amount))

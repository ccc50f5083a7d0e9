"""
Unit tests for leaf encoding.

The leaf must equal keccak256(abi.encodePacked(address, uint256)).
"""
import pytest
from web3 import Web3

from drops.app.balance_tree import Balance, leaf_for, to_hex_leaf, to_leaf

from conftest import A, B


def test_leaf_matches_packed_encoding():
    amount = 1000
    packed = bytes.fromhex(A[2:]) + amount.to_bytes(32, "big")
    assert to_leaf(Balance(A, amount)) == bytes(Web3.keccak(packed))


def test_leaf_is_32_bytes_and_hex_has_no_prefix():
    leaf = to_hex_leaf(Balance(A, 1))
    assert len(leaf) == 64
    assert not leaf.startswith("0x")
    assert bytes.fromhex(leaf) == to_leaf(Balance(A, 1))


def test_address_case_does_not_change_leaf():
    assert leaf_for(A.lower(), 5) == leaf_for(A, 5)
    assert Balance(A.lower(), 5).recipient == A


def test_equal_amounts_different_recipients_differ():
    assert leaf_for(A, 5) != leaf_for(B, 5)


def test_different_amounts_differ():
    assert leaf_for(A, 5) != leaf_for(A, 6)


@pytest.mark.parametrize("recipient", ["", "0x1234", "not-an-address", None])
def test_invalid_recipient_rejected(recipient):
    with pytest.raises(ValueError):
        Balance(recipient, 1)


@pytest.mark.parametrize("amount", [-1, 2 ** 256, 1.5, True, "10"])
def test_invalid_amount_rejected(amount):
    with pytest.raises(ValueError):
        Balance(A, amount)

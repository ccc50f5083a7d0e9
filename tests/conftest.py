"""
Shared fixtures: a stub chain, a ledger wired to it, and the four-recipient
scenario (A=1000, B=2000, C=3000, D=4000; total 10000).
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from web3 import Web3

from drops.app.balance_tree import Balance
from drops.app.chain.adapter import StubChain, make_dispatcher
from drops.app.distribution import build_distribution
from drops.app.ledger import DropLedger


def address(n: int) -> str:
    return Web3.to_checksum_address("0x%040x" % (0xA0000 + n))


A, B, C, D, E, OPERATOR = (address(i) for i in range(1, 7))

SCENARIO = [Balance(A, 1000), Balance(B, 2000), Balance(C, 3000), Balance(D, 4000)]


@pytest.fixture
def chain():
    return StubChain(start_block=10)


@pytest.fixture
def ledger(chain):
    return DropLedger(make_dispatcher(chain), clock=chain)


@pytest.fixture
def dist():
    return build_distribution(SCENARIO)


@pytest.fixture
def funded(ledger, chain, dist):
    """Ledger with 10000 paid in and the scenario published as drop 0."""
    ledger.pay("split", OPERATOR, 10_000)
    ledger.publish(dist.merkle_root, chain.number + 100, dist.token_total)
    return ledger

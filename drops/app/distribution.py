"""
distribution.py - Balance list -> publishable drop.

Output format (one JSON document per drop):

  {
    "merkleRoot": "0x...",
    "tokenTotal": 10000,
    "claims": {
      "0xRecipient": {"amount": 1000, "leaf": "...", "proof": ["0x...", ...]}
    }
  }

The operator publishes merkleRoot and tokenTotal; recipients take their
amount and proof from `claims`.
"""
import csv
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from .balance_tree import Balance, normalise_recipient, to_hex_leaf, to_leaf
from .merkle import MerkleTree, get_hex_proof, get_hex_root, make_merkle_tree

log = logging.getLogger("drops.distribution")


@dataclass(frozen=True)
class Distribution:
    tree: MerkleTree
    balances: tuple
    merkle_root: str
    token_total: int
    claims: dict

    def claim_for(self, recipient: str) -> dict:
        return self.claims[normalise_recipient(recipient)]

    def to_dict(self) -> dict:
        return {
            "merkleRoot": self.merkle_root,
            "tokenTotal": self.token_total,
            "claims": self.claims,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


def build_distribution(balances: Iterable[Balance]) -> Distribution:
    """Build the tree and per-recipient proofs. One amount per recipient."""
    by_recipient: dict[str, Balance] = {}
    for b in balances:
        seen = by_recipient.get(b.recipient)
        if seen is not None and seen.amount != b.amount:
            raise ValueError(
                f"recipient {b.recipient} listed with two amounts: {seen.amount} and {b.amount}")
        by_recipient[b.recipient] = b

    unique = tuple(by_recipient.values())
    tree = make_merkle_tree(to_leaf(b) for b in unique)
    claims = {}
    for b in sorted(unique, key=lambda b: b.recipient.lower()):
        leaf = to_hex_leaf(b)
        claims[b.recipient] = {
            "amount": b.amount,
            "leaf": leaf,
            "proof": get_hex_proof(tree, leaf),
        }
    total = sum(b.amount for b in unique)
    log.info("distribution built: %d recipients total=%d root=%s",
             len(unique), total, get_hex_root(tree)[:18])
    return Distribution(tree=tree, balances=unique, merkle_root=get_hex_root(tree),
                        token_total=total, claims=claims)


def load_balances(path) -> list[Balance]:
    """Read `recipient,amount` CSV or a JSON list of {recipient, amount}."""
    path = Path(path)
    if path.suffix.lower() == ".json":
        rows = json.loads(path.read_text())
    else:
        with open(path, newline="") as f:
            rows = list(csv.DictReader(f))
    return [Balance(r["recipient"].strip(), int(r["amount"])) for r in rows]

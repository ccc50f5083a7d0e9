"""
merkle.py - Binary Merkle tree over Keccak-256 balance leaves.

The Merkle root summarises N balance leaves into one 32-byte value that is
published on-chain with each drop. Any recipient can later prove its leaf
is part of the drop with O(log N) sibling hashes.

Canonical tree:
  Leaves are de-duplicated and sorted before building -> the same set of
  balances always produces the same root, regardless of input order.

Hashing:
  Leaf:   keccak256(abi.encodePacked(address, uint256))  - see balance_tree.py
  Node:   keccak256(min(left,right) + max(left,right))    - sorted pair
  Odd:    the last node of an odd layer is paired with itself

Storage:
  The tree is kept as a tuple of layers (layer 0 = sorted leaves, last
  layer = root) plus the position of each leaf in layer 0. A proof is the
  sibling of the leaf's position in every layer below the root.
"""
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from web3 import Web3

from .errors import EmptyTreeError, LeafNotInTreeError

HASH_LEN = 32


def hash_fn(data: bytes) -> bytes:
    return bytes(Web3.keccak(data))


def _hash_pair(a: bytes, b: bytes) -> bytes:
    lo, hi = (a, b) if a <= b else (b, a)
    return hash_fn(lo + hi)


def to_bytes(value) -> bytes:
    """Accept raw bytes or hex with/without 0x; return raw bytes."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if not isinstance(value, str):
        raise TypeError(f"expected bytes or hex string, got {type(value).__name__}")
    s = value.strip().lower()
    if s.startswith("0x"):
        s = s[2:]
    return bytes.fromhex(s)


def _to_hex(value: bytes) -> str:
    return "0x" + value.hex()


@dataclass(frozen=True)
class MerkleTree:
    layers: tuple
    positions: dict = field(repr=False)

    @property
    def root(self) -> bytes:
        return self.layers[-1][0]

    @property
    def leaves(self) -> tuple:
        return self.layers[0]

    def __len__(self) -> int:
        return len(self.layers[0])

    def __contains__(self, leaf) -> bool:
        return bytes(leaf) in self.positions


def _next_layer(layer: Sequence[bytes]) -> tuple:
    nxt = []
    for i in range(0, len(layer), 2):
        left = layer[i]
        right = layer[i + 1] if i + 1 < len(layer) else left
        nxt.append(_hash_pair(left, right))
    return tuple(nxt)


def make_merkle_tree(leaves: Iterable[bytes]) -> MerkleTree:
    """Build a tree from 32-byte leaves. Duplicates are dropped, order is ignored."""
    unique = set()
    for leaf in leaves:
        leaf = bytes(leaf)
        if len(leaf) != HASH_LEN:
            raise ValueError(f"leaf must be {HASH_LEN} bytes, got {len(leaf)}")
        unique.add(leaf)
    if not unique:
        raise EmptyTreeError()

    layer = tuple(sorted(unique))
    layers = [layer]
    while len(layer) > 1:
        layer = _next_layer(layer)
        layers.append(layer)

    positions = {leaf: i for i, leaf in enumerate(layers[0])}
    return MerkleTree(layers=tuple(layers), positions=positions)


def get_root(tree: MerkleTree) -> bytes:
    return tree.root


def get_hex_root(tree: MerkleTree) -> str:
    return _to_hex(get_root(tree))


def get_proof(tree: MerkleTree, leaf: bytes) -> list[bytes]:
    """Return the sibling hashes from `leaf` up to (excluding) the root."""
    idx = tree.positions.get(bytes(leaf))
    if idx is None:
        raise LeafNotInTreeError(bytes(leaf).hex())
    proof = []
    for layer in tree.layers[:-1]:
        sibling = idx ^ 1
        if sibling >= len(layer):
            sibling = idx  # odd layer: paired with itself
        proof.append(layer[sibling])
        idx //= 2
    return proof


def get_hex_proof(tree: MerkleTree, leaf: str) -> list[str]:
    return [_to_hex(p) for p in get_proof(tree, to_bytes(leaf))]


def verify(proof: Sequence[bytes], root: bytes, leaf: bytes) -> bool:
    """Fold the proof over the leaf and compare with the root."""
    current = bytes(leaf)
    for element in proof:
        element = bytes(element)
        if len(element) != HASH_LEN:
            return False
        current = _hash_pair(current, element)
    return current == bytes(root)


def verify_hex(proof: Sequence[str], root: str, leaf: str) -> bool:
    try:
        return verify([to_bytes(p) for p in proof], to_bytes(root), to_bytes(leaf))
    except (TypeError, ValueError):
        return False


def tree_to_dict(tree: MerkleTree) -> dict:
    return {
        "root": get_hex_root(tree),
        "layers": [[_to_hex(h) for h in layer] for layer in tree.layers],
    }


def tree_from_dict(data: dict) -> MerkleTree:
    """Rebuild from the leaf layer and check the stored root still matches."""
    leaves = [to_bytes(h) for h in data["layers"][0]]
    tree = make_merkle_tree(leaves)
    if "root" in data and get_hex_root(tree) != data["root"].lower():
        raise ValueError(f"root mismatch: stored={data['root']} rebuilt={get_hex_root(tree)}")
    return tree

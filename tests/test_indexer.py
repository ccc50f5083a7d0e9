"""
Unit tests for the event-driven read model.

The index never touches ledger state, so matching the ledger here shows the
event payloads are enough to rebuild remaining amounts per drop.
"""
from drops.app.events import Claimed, DropPublished, PaymentRecorded
from drops.app.indexer import DropIndex, group_id

from conftest import A, B, C, OPERATOR


def _claim(ledger, dist, recipient):
    c = dist.claim_for(recipient)
    return ledger.claim(0, recipient, c["amount"], c["proof"])


def test_index_follows_ledger(ledger, chain, dist):
    index = DropIndex()
    ledger.events.subscribe(index.handle)
    ledger.pay("split", OPERATOR, 10_000)
    ledger.publish(dist.merkle_root, chain.number + 5, 10_000)
    chain.refusing.add(B)
    _claim(ledger, dist, A)
    _claim(ledger, dist, B)

    drop = index.drop(0)
    assert drop.root == dist.merkle_root
    assert drop.total == 10_000
    assert drop.remaining == ledger.drop_remaining(0) == 7_000
    assert [c.used_fallback for c in index.claims_for(B)] == [True]
    assert index.claims_for(C) == []
    assert index.group("split").total_paid == 10_000


def test_claims_for_accepts_any_address_case(ledger, chain, dist):
    index = DropIndex()
    ledger.events.subscribe(index.handle)
    ledger.pay("split", OPERATOR, 10_000)
    ledger.publish(dist.merkle_root, chain.number + 5, 10_000)
    _claim(ledger, dist, A)
    assert len(index.claims_for(A.lower())) == 1


def test_claim_for_unknown_drop_ignored():
    index = DropIndex()
    index.handle(Claimed(3, A, 10, False))
    assert index.drop(3) is None
    assert index.claims_for(A) == []


def test_claim_over_remaining_ignored():
    index = DropIndex()
    index.handle(DropPublished("0x" + "11" * 32, 100, 50, 0))
    index.handle(Claimed(0, A, 60, False))
    assert index.drop(0).remaining == 50
    assert index.claims_for(A) == []


def test_groups_keyed_by_keccak_of_name():
    index = DropIndex()
    index.handle(PaymentRecorded("split", OPERATOR, 5))
    index.handle(PaymentRecorded("split", OPERATOR, 7))
    group = index.group("split")
    assert group.group_id == group_id("split")
    assert group.group_id.startswith("0x") and len(group.group_id) == 66
    assert group.total_paid == 12
    assert index.group("other") is None

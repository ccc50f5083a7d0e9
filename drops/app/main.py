"""
main.py - Drops service REST API.

Architecture position: this process owns the drop ledger.
  payers -> POST /payments -> pool
  operator -> POST /trees (balances -> root + proofs) -> POST /drops (publish)
  recipients -> POST /claims -> proof check -> mark claimed -> payout

Role enforcement: payments, trees and drops require OPERATOR.
Claims require CLAIMANT or OPERATOR. Reads are open to every role that
holds the matching read_* permission.
"""
import logging
import os
import threading
import time
from typing import Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .balance_tree import Balance, normalise_recipient
from .chain.adapter import BACKEND, get_chain, make_dispatcher
from .distribution import Distribution, build_distribution
from .errors import DispatchFailureError, DropNotFoundError, DropsError, EmptyTreeError
from .events import event_to_dict
from .indexer import DropIndex
from .ledger import DropLedger
from .metrics import collector
from .roles import PERMISSIONS, require
from .schemas import (
    API_VERSION, BatchClaimIn, ClaimIn, ClaimOut, ClaimProofOut, DropIn, DropOut,
    LiabilityOut, MetricsSummary, PaymentIn, PaymentOut, TreeIn, TreeOut,
)

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
log = logging.getLogger("drops.api")

ERROR_STATUS = {
    "drop_not_found": 404,
    "leaf_not_in_tree": 404,
    "already_claimed": 409,
    "empty_tree": 422,
    "dispatch_failure": 502,
}


class Service:
    """Ledger, its read model and the cache of built trees, wired together."""

    def __init__(self, chain):
        self.chain = chain
        self.ledger = DropLedger(make_dispatcher(chain), clock=chain)
        self.index = DropIndex()
        self.ledger.events.subscribe(self.index.handle)
        self._trees: dict[str, Distribution] = {}
        self._lock = threading.Lock()

    def remember(self, dist: Distribution):
        with self._lock:
            self._trees[dist.merkle_root] = dist

    def tree(self, root: str) -> Optional[Distribution]:
        root = root.lower()
        if not root.startswith("0x"):
            root = "0x" + root
        with self._lock:
            return self._trees.get(root)


_service: Optional[Service] = None


def get_service() -> Service:
    global _service
    if _service is None:
        _service = Service(get_chain())
    return _service


app = FastAPI(
    title="Drops",
    description=(
        "Merkle-tree payment drops.\n\n"
        "**Flow**: payments -> pool -> balance tree -> published drop -> claims\n\n"
        "**Roles** (X-Role header): `operator` | `claimant` | `auditor`"
    ),
    version=API_VERSION,
)

app.add_middleware(CORSMiddleware, allow_origins=["*"],
                   allow_methods=["*"], allow_headers=["*"])


@app.exception_handler(DropsError)
async def drops_error_handler(request: Request, exc: DropsError):
    status = ERROR_STATUS.get(exc.code, 400)
    body = exc.to_dict()
    if isinstance(exc, DispatchFailureError):
        body["completed"] = [_claim_out_dict(o) for o in exc.completed]
    return JSONResponse(status_code=status, content=body)


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=422, content={"error": "invalid_input", "reason": str(exc)})


def _timed(operation: str, fn, *args):
    t0 = time.monotonic()
    try:
        result = fn(*args)
    except Exception as exc:
        collector.record(operation, (time.monotonic() - t0) * 1000, False, type(exc).__name__)
        raise
    collector.record(operation, (time.monotonic() - t0) * 1000, True)
    return result


def _claim_out_dict(outcome, drop_index: Optional[int] = None) -> dict:
    return {
        "drop_index": drop_index,
        "recipient": outcome.recipient,
        "amount": outcome.amount,
        "used_fallback": outcome.used_fallback,
        "tx_hash": outcome.tx_hash,
    }


def _drop_out(drop) -> DropOut:
    return DropOut(index=drop.index, root="0x" + drop.root.hex(),
                   cutoff_block=drop.cutoff_block, total=drop.total_amount,
                   remaining=drop.remaining, claimed_count=len(drop.claimed_recipients))


#  System endpoints

@app.get("/health", tags=["system"])
def health(svc: Service = Depends(get_service)):
    return {
        "status": "ok",
        "api_version": API_VERSION,
        "chain_backend": BACKEND,
        "block": svc.chain.number,
    }


@app.get("/roles", tags=["system"])
def list_roles():
    return {r.value: sorted(p) for r, p in PERMISSIONS.items()}


@app.get("/metrics", tags=["system"], response_model=MetricsSummary,
         dependencies=[Depends(require("read_metrics"))])
def metrics():
    s = collector.summary()
    return MetricsSummary(
        run_id=s.run_id,
        started_at=s.started_at,
        total_submitted=s.total_submitted,
        total_success=s.total_success,
        total_failed=s.total_failed,
        avg_latency_ms=s.avg_latency_ms,
        p95_latency_ms=s.p95_latency_ms,
        p99_latency_ms=s.p99_latency_ms,
        by_operation=s.by_operation,
    )


@app.post("/metrics/export", tags=["system"],
          dependencies=[Depends(require("read_metrics"))])
def export_metrics():
    return {"results_dir": collector.export()}


#  Payments - OPERATOR only

@app.post("/payments", tags=["payments"], status_code=201, response_model=PaymentOut,
          dependencies=[Depends(require("pay"))])
def pay(body: PaymentIn, svc: Service = Depends(get_service)):
    record = _timed("pay", svc.ledger.pay, body.group, body.payer, body.amount)
    return PaymentOut(group=record.group, payer=record.payer, amount=record.amount,
                      pool_balance=svc.ledger.pool_balance())


#  Trees

@app.post("/trees", tags=["trees"], status_code=201, response_model=TreeOut,
          dependencies=[Depends(require("build_tree"))])
def build_tree(body: TreeIn, svc: Service = Depends(get_service)):
    """Build the balance tree and keep it so recipients can fetch proofs.

    The tree is not published by this call; POST /drops does that.
    """
    if not body.balances:
        raise EmptyTreeError("no balances")
    dist = build_distribution(Balance(b.recipient, b.amount) for b in body.balances)
    svc.remember(dist)
    return TreeOut(merkle_root=dist.merkle_root, token_total=dist.token_total,
                   recipients=len(dist.claims), claims=dist.claims)


@app.get("/trees/{root}/claims/{recipient}", tags=["trees"], response_model=ClaimProofOut,
         dependencies=[Depends(require("read_proofs"))])
def get_claim_proof(root: str, recipient: str, svc: Service = Depends(get_service)):
    dist = svc.tree(root)
    if dist is None:
        raise HTTPException(404, detail=f"Tree {root} not found")
    try:
        claim = dist.claim_for(recipient)
    except KeyError:
        raise HTTPException(404, detail=f"Recipient {recipient} not in tree {root}")
    return ClaimProofOut(merkle_root=dist.merkle_root, recipient=normalise_recipient(recipient),
                         amount=claim["amount"], leaf=claim["leaf"], proof=claim["proof"])


#  Drops

@app.post("/drops", tags=["drops"], status_code=201, response_model=DropOut,
          dependencies=[Depends(require("publish_drop"))])
def publish_drop(body: DropIn, svc: Service = Depends(get_service)):
    index = _timed("publish", svc.ledger.publish, body.root, body.cutoff_block, body.total)
    return _drop_out(svc.ledger.drop(index))


@app.get("/drops", tags=["drops"], response_model=list[DropOut],
         dependencies=[Depends(require("read_drops"))])
def list_drops(svc: Service = Depends(get_service)):
    return [_drop_out(d) for d in svc.ledger.drops()]


@app.get("/drops/{drop_index}", tags=["drops"], response_model=DropOut,
         dependencies=[Depends(require("read_drops"))])
def get_drop(drop_index: int, svc: Service = Depends(get_service)):
    return _drop_out(svc.ledger.drop(drop_index))


@app.get("/drops/{drop_index}/claimed/{recipient}", tags=["drops"],
         dependencies=[Depends(require("read_drops"))])
def is_claimed(drop_index: int, recipient: str, svc: Service = Depends(get_service)):
    return {"drop_index": drop_index, "recipient": recipient,
            "claimed": svc.ledger.is_claimed(drop_index, recipient)}


@app.get("/liability", tags=["drops"], response_model=LiabilityOut,
         dependencies=[Depends(require("read_drops"))])
def liability(svc: Service = Depends(get_service)):
    return LiabilityOut(unclaimed_liability=svc.ledger.unclaimed_liability(),
                        pool_balance=svc.ledger.pool_balance(),
                        drop_count=svc.ledger.drop_count())


#  Claims

@app.post("/claims", tags=["claims"], response_model=ClaimOut,
          dependencies=[Depends(require("claim"))])
def claim(body: ClaimIn, svc: Service = Depends(get_service)):
    outcome = _timed("claim", svc.ledger.claim,
                     body.drop_index, body.recipient, body.amount, body.proof)
    return ClaimOut(**_claim_out_dict(outcome, body.drop_index))


@app.post("/claims/batch", tags=["claims"], response_model=list[ClaimOut],
          dependencies=[Depends(require("claim"))])
def multi_claim(body: BatchClaimIn, svc: Service = Depends(get_service)):
    outcomes = _timed("multi_claim", svc.ledger.multi_claim,
                      body.drop_indices, body.recipients, body.amounts, body.proofs)
    return [ClaimOut(**_claim_out_dict(o, d)) for o, d in zip(outcomes, body.drop_indices)]


#  Event index

@app.get("/index/drops/{drop_index}", tags=["index"],
         dependencies=[Depends(require("read_index"))])
def indexed_drop(drop_index: int, svc: Service = Depends(get_service)):
    drop = svc.index.drop(drop_index)
    if drop is None:
        raise DropNotFoundError(f"drop={drop_index}")
    return drop


@app.get("/index/recipients/{recipient}", tags=["index"],
         dependencies=[Depends(require("read_index"))])
def indexed_claims(recipient: str, svc: Service = Depends(get_service)):
    return {"recipient": recipient, "claims": svc.index.claims_for(recipient)}


@app.get("/events", tags=["index"],
         dependencies=[Depends(require("read_index"))])
def list_events(limit: int = Query(100, ge=1, le=500), svc: Service = Depends(get_service)):
    return [event_to_dict(e) for e in svc.ledger.events.all()[-limit:]]

#!/usr/bin/env python3
"""
verify.py - Standalone drop builder and proof verifier.

Runs independently of the drops service:
- Builds a distribution (root, total, proofs) from a balance CSV/JSON
- Verifies every proof in a distribution file against its own root
- Fetches a published drop root from the service and verifies one
  recipient's proof against it

Modes:
  build <balances>                 - write distribution JSON
  proof <distribution> <recipient> - print one recipient's amount + proof
  check <distribution>             - verify every claim offline
  remote <distribution> <drop> <recipient>
                                   - verify against the root the service holds

Output: JSON + CSV to results/verify_<timestamp>.{json,csv} for check/remote.
"""
from __future__ import annotations

import argparse
import csv
import json
import os
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

import requests
from dotenv import load_dotenv

from drops.app.balance_tree import Balance, normalise_recipient, to_hex_leaf
from drops.app.distribution import build_distribution, load_balances
from drops.app.merkle import verify_hex

load_dotenv()

DEFAULT_API = os.getenv("DROPS_API_URL", "http://localhost:8000")


def build_session() -> requests.Session:
    s = requests.Session()
    s.headers["X-Role"] = "auditor"
    return s


def api(session: requests.Session, base_url: str, path: str, **kwargs) -> Any:
    resp = session.get(f"{base_url}{path}", timeout=15, **kwargs)
    resp.raise_for_status()
    return resp.json()


def check_claim(root: str, recipient: str, claim: Dict[str, Any]) -> Dict[str, Any]:
    """Recompute the leaf from (recipient, amount) and fold the proof."""
    leaf = to_hex_leaf(Balance(recipient, int(claim["amount"])))
    leaf_ok = leaf == claim.get("leaf", leaf)
    proof_ok = verify_hex(claim["proof"], root, leaf)
    return {
        "recipient": recipient,
        "amount": int(claim["amount"]),
        "leaf": leaf,
        "leaf_match": leaf_ok,
        "proof_valid": proof_ok,
        "verdict": "PASS" if (leaf_ok and proof_ok) else "FAIL",
    }


def check_distribution(dist: Dict[str, Any]) -> List[Dict[str, Any]]:
    root = dist["merkleRoot"]
    results = [check_claim(root, r, c) for r, c in dist["claims"].items()]
    total = sum(r["amount"] for r in results)
    if total != int(dist["tokenTotal"]):
        results.append({"recipient": "*", "verdict": "FAIL",
                        "reason": f"tokenTotal={dist['tokenTotal']} but claims sum to {total}"})
    return results


def verify_remote(session: requests.Session, base_url: str, dist: Dict[str, Any],
                  drop_index: int, recipient: str) -> Dict[str, Any]:
    """Verify a recipient's proof against the root the ledger published."""
    recipient = normalise_recipient(recipient)
    t0 = time.monotonic()
    resp = session.get(f"{base_url}/drops/{drop_index}", timeout=15)
    if resp.status_code == 404:
        return {"drop_index": drop_index, "recipient": recipient,
                "verdict": "FAIL", "reason": "Drop not found"}
    resp.raise_for_status()
    drop = resp.json()
    claimed = api(session, base_url, f"/drops/{drop_index}/claimed/{recipient}")["claimed"]
    elapsed = (time.monotonic() - t0) * 1000

    claim = dist["claims"].get(recipient)
    if claim is None:
        return {"drop_index": drop_index, "recipient": recipient,
                "verdict": "FAIL", "reason": "Recipient not in distribution"}

    result = check_claim(drop["root"], recipient, claim)
    result.update({
        "drop_index": drop_index,
        "root_on_ledger": drop["root"],
        "root_in_file": dist["merkleRoot"],
        "roots_match": drop["root"].lower() == dist["merkleRoot"].lower(),
        "claimed": claimed,
        "verify_ms": round(elapsed, 2),
    })
    if not result["roots_match"]:
        result["verdict"] = "FAIL"
    return result


def write_outputs(out_dir: Path, ts: str, results: List[Dict[str, Any]], prefix: str = "verify") -> None:
    out_json = out_dir / f"{prefix}_{ts}.json"
    out_json.write_text(json.dumps(results, indent=2))

    if not results:
        print(f"Results -> {out_json}")
        return

    out_csv = out_dir / f"{prefix}_{ts}.csv"
    keys = sorted({k for r in results for k in r})
    with open(out_csv, "w", newline="") as f:
        w = csv.DictWriter(f, fieldnames=keys)
        w.writeheader()
        for r in results:
            w.writerow({k: r.get(k, "") for k in keys})

    passed = sum(1 for r in results if r.get("verdict") == "PASS")
    failed = sum(1 for r in results if r.get("verdict") == "FAIL")
    print(f"\nTotal: {len(results)}  PASS: {passed}  FAIL: {failed}")
    print(f"Results -> {out_json}  {out_csv}")


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Drop Builder and Proof Verifier")
    parser.add_argument("mode", choices=["build", "proof", "check", "remote"], help="Operation")
    parser.add_argument("path", help="Balances file (build) or distribution JSON (other modes)")
    parser.add_argument("args", nargs="*", help="proof: <recipient>; remote: <drop_index> <recipient>")
    parser.add_argument("--api", default=DEFAULT_API, help="Drops service base URL")
    parser.add_argument("--out", default="results", help="Output directory for CSV/JSON")
    args = parser.parse_args(argv)

    if args.mode == "build":
        dist = build_distribution(load_balances(args.path))
        out_dir = Path(args.out)
        out_dir.mkdir(parents=True, exist_ok=True)
        out_path = out_dir / f"distribution_{dist.merkle_root[2:10]}.json"
        out_path.write_text(dist.to_json())
        print(f"Root      : {dist.merkle_root}")
        print(f"Total     : {dist.token_total}")
        print(f"Recipients: {len(dist.claims)}")
        print(f"Saved to  : {out_path}")
        return 0

    dist = json.loads(Path(args.path).read_text())

    if args.mode == "proof":
        if len(args.args) != 1:
            sys.exit("Provide recipient: verify.py proof <distribution> <recipient>")
        recipient = normalise_recipient(args.args[0])
        claim = dist["claims"].get(recipient)
        if claim is None:
            sys.exit(f"{recipient} is not in this distribution")
        print(json.dumps({"merkleRoot": dist["merkleRoot"], "recipient": recipient, **claim}, indent=2))
        return 0

    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    ts = datetime.now().strftime("%Y%m%d_%H%M%S")

    if args.mode == "check":
        results = check_distribution(dist)
        for r in results:
            print(f"  {r['recipient']:42s}  {r['verdict']}")
    else:
        if len(args.args) != 2:
            sys.exit("Provide drop index and recipient: verify.py remote <distribution> <drop> <recipient>")
        session = build_session()
        try:
            h = session.get(f"{args.api}/health", timeout=5).json()
            print(f"Service: {args.api}  backend={h.get('chain_backend')}  block={h.get('block')}")
        except requests.RequestException as exc:
            print(f"Cannot reach service: {exc}", file=sys.stderr)
            return 1
        results = [verify_remote(session, args.api, dist, int(args.args[0]), args.args[1])]
        print(json.dumps(results[0], indent=2))

    write_outputs(out_dir, ts, results, prefix=args.mode)
    return 0 if all(r.get("verdict") == "PASS" for r in results) else 2


if __name__ == "__main__":
    sys.exit(main())

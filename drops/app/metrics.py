"""
Metrics collection for the drops service.

Tracks per-operation latency and outcome (pay, publish, claim, batch claim).
Results are exported to a timestamped CSV in the results/ directory.
"""
import csv
import os
import threading
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


@dataclass
class OperationMetric:
    ts: str
    operation: str
    latency_ms: float
    success: bool
    error: Optional[str] = None


@dataclass
class RunSummary:
    run_id: str
    started_at: str
    ended_at: Optional[str]
    total_submitted: int
    total_success: int
    total_failed: int
    avg_latency_ms: float
    p95_latency_ms: float
    p99_latency_ms: float
    by_operation: dict


class MetricsCollector:
    """Thread-safe collector for service operation metrics."""

    def __init__(self, results_dir: str = "results"):
        self._lock = threading.Lock()
        self._records: list[OperationMetric] = []
        self._started_at = datetime.now(timezone.utc).isoformat(timespec="seconds")
        self._run_id = datetime.now(timezone.utc).strftime("run_%Y%m%d_%H%M%S")
        self._results_dir = Path(results_dir) / self._run_id

    def record(self, operation: str, latency_ms: float, success: bool,
               error: Optional[str] = None):
        metric = OperationMetric(
            ts=datetime.now(timezone.utc).isoformat(timespec="seconds"),
            operation=operation, latency_ms=round(latency_ms, 2),
            success=success, error=error,
        )
        with self._lock:
            self._records.append(metric)

    def summary(self) -> RunSummary:
        with self._lock:
            records = list(self._records)

        latencies = sorted(r.latency_ms for r in records if r.success)
        success_count = sum(1 for r in records if r.success)

        avg = sum(latencies) / len(latencies) if latencies else 0.0
        p95 = latencies[int(len(latencies) * 0.95)] if latencies else 0.0
        p99 = latencies[int(len(latencies) * 0.99)] if latencies else 0.0

        by_operation: dict[str, dict] = {}
        for r in records:
            counts = by_operation.setdefault(r.operation, {"success": 0, "failed": 0})
            counts["success" if r.success else "failed"] += 1

        return RunSummary(
            run_id=self._run_id,
            started_at=self._started_at,
            ended_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
            total_submitted=len(records),
            total_success=success_count,
            total_failed=len(records) - success_count,
            avg_latency_ms=round(avg, 2),
            p95_latency_ms=round(p95, 2),
            p99_latency_ms=round(p99, 2),
            by_operation=by_operation,
        )

    def export(self) -> str:
        """Write operations.csv and metrics.csv to the run directory."""
        with self._lock:
            records = list(self._records)
        self._results_dir.mkdir(parents=True, exist_ok=True)

        if records:
            with open(self._results_dir / "operations.csv", "w", newline="") as f:
                writer = csv.DictWriter(f, fieldnames=asdict(records[0]).keys())
                writer.writeheader()
                for r in records:
                    writer.writerow(asdict(r))

        summary = asdict(self.summary())
        summary["by_operation"] = ";".join(
            f"{op}:{c['success']}/{c['failed']}" for op, c in sorted(summary["by_operation"].items()))
        with open(self._results_dir / "metrics.csv", "w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=summary.keys())
            writer.writeheader()
            writer.writerow(summary)

        return str(self._results_dir)


# Module-level singleton - shared across the service process.
collector = MetricsCollector(results_dir=os.getenv("RESULTS_DIR", "results"))

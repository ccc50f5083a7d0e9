"""
schemas.py - Request/response contracts for the drops service.

Amounts are integers in the smallest unit (wei). Roots, leaves and proof
elements are hex strings; the 0x prefix is optional on input and always
present on output.
"""
import re
from typing import Optional

from pydantic import BaseModel, Field, field_validator

API_VERSION = "1.0"

_HEX32 = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")
_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")


def _check_address(v: str) -> str:
    if not _ADDRESS.match(v):
        raise ValueError("must be a 0x-prefixed 20-byte hex address")
    return v


class BalanceIn(BaseModel):
    recipient: str
    amount:    int = Field(..., ge=0)

    @field_validator("recipient")
    @classmethod
    def validate_recipient(cls, v: str) -> str:
        return _check_address(v)


class PaymentIn(BaseModel):
    group:  str = Field(..., min_length=1, max_length=128,
                        description="Free-form group (split) identifier")
    payer:  str
    amount: int = Field(..., ge=0)

    @field_validator("payer")
    @classmethod
    def validate_payer(cls, v: str) -> str:
        return _check_address(v)


class PaymentOut(BaseModel):
    group:  str
    payer:  str
    amount: int
    pool_balance: int


class TreeIn(BaseModel):
    balances: list[BalanceIn]


class TreeOut(BaseModel):
    merkle_root: str
    token_total: int
    recipients:  int
    claims:      dict


class ClaimProofOut(BaseModel):
    merkle_root: str
    recipient:   str
    amount:      int
    leaf:        str
    proof:       list[str]


class DropIn(BaseModel):
    root:         str
    cutoff_block: int = Field(..., ge=0)
    total:        int = Field(..., ge=0)

    @field_validator("root")
    @classmethod
    def validate_root(cls, v: str) -> str:
        if not _HEX32.match(v):
            raise ValueError("root must be 32 bytes of hex")
        return v


class DropOut(BaseModel):
    index:          int
    root:           str
    cutoff_block:   int
    total:          int
    remaining:      int
    claimed_count:  int


class ClaimIn(BaseModel):
    drop_index: int = Field(..., ge=0)
    recipient:  str
    amount:     int = Field(..., ge=0)
    proof:      list[str]

    @field_validator("recipient")
    @classmethod
    def validate_recipient(cls, v: str) -> str:
        return _check_address(v)


class BatchClaimIn(BaseModel):
    drop_indices: list[int]
    recipients:   list[str]
    amounts:      list[int]
    proofs:       list[list[str]]


class ClaimOut(BaseModel):
    drop_index:    int
    recipient:     str
    amount:        int
    used_fallback: bool
    tx_hash:       Optional[str] = None


class LiabilityOut(BaseModel):
    unclaimed_liability: int
    pool_balance:        int
    drop_count:          int


class MetricsSummary(BaseModel):
    run_id: str
    started_at: str
    total_submitted: int
    total_success: int
    total_failed: int
    avg_latency_ms: float
    p95_latency_ms: float
    p99_latency_ms: float
    by_operation: dict

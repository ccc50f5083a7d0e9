"""
errors.py - Error taxonomy for the drop engine.

Every ledger rejection is raised before any state is touched, so a caller
that catches one of these can assume the ledger is exactly as it was.
The one exception is DispatchFailureError, which is raised after the
ledger has rolled its own commit back.

`reason` strings match the revert messages of the on-chain contract so that
logs from either side read the same.
"""
from typing import Optional


class DropsError(Exception):
    code = "drops_error"
    reason = "Drops error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail
        super().__init__(f"{self.reason}: {detail}" if detail else self.reason)

    def to_dict(self) -> dict:
        out = {"error": self.code, "reason": self.reason}
        if self.detail:
            out["detail"] = self.detail
        return out


class ZeroValueError(DropsError):
    code = "zero_value"
    reason = "Value was 0"


class DropBlockPassedError(DropsError):
    code = "drop_block_passed"
    reason = "Drop block passed"


class DropTooLargeError(DropsError):
    code = "drop_too_large"
    reason = "Drop too large"


class DropNotFoundError(DropsError):
    code = "drop_not_found"
    reason = "Drop doesn't exist"


class AlreadyClaimedError(DropsError):
    code = "already_claimed"
    reason = "Already claimed"


class InvalidProofError(DropsError):
    code = "invalid_proof"
    reason = "Invalid proof"


class DropExhaustedError(DropsError):
    code = "drop_exhausted"
    reason = "Claim exceeds drop remaining"


class ArrayLengthMismatchError(DropsError):
    code = "array_length_mismatch"
    reason = "Input array lengths mismatched"


class EmptyTreeError(DropsError):
    code = "empty_tree"
    reason = "Empty tree"


class LeafNotInTreeError(DropsError, KeyError):
    code = "leaf_not_in_tree"
    reason = "leaf not in tree"

    def __str__(self) -> str:
        return Exception.__str__(self)


class DispatchFailureError(DropsError):
    """Both the direct and the wrapped payout failed.

    `completed` holds the outcomes that were paid before the failure
    (only non-empty for a batch claim).
    """
    code = "dispatch_failure"
    reason = "Payout failed"

    def __init__(self, detail: Optional[str] = None, completed: Optional[list] = None):
        super().__init__(detail)
        self.completed = list(completed or [])


class TransferError(Exception):
    """Raised by a transfer backend when a single transfer attempt fails."""

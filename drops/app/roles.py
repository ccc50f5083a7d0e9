"""
roles.py - Role-based access control.

Roles:
  operator  - pool operator; records payments, builds trees, publishes drops
  claimant  - recipient or relayer; submits claims, reads drops and proofs
  auditor   - read-only; drops, liability, proofs and the event index

Key custody is outside this service. In stub/dev mode the role is passed in
the X-Role header.
"""
from enum import Enum
from typing import Optional
from fastapi import Header, HTTPException


class Role(str, Enum):
    OPERATOR = "operator"
    CLAIMANT = "claimant"
    AUDITOR  = "auditor"


PERMISSIONS: dict[Role, set[str]] = {
    Role.OPERATOR: {"pay", "build_tree", "publish_drop", "claim",
                    "read_drops", "read_proofs", "read_index", "read_metrics"},
    Role.CLAIMANT: {"claim", "read_drops", "read_proofs"},
    Role.AUDITOR:  {"read_drops", "read_proofs", "read_index", "read_metrics"},
}


def resolve_role(x_role: Optional[str]) -> Role:
    try:
        return Role(x_role.lower()) if x_role else Role.AUDITOR
    except ValueError:
        return Role.AUDITOR


def require(operation: str):
    def _dep(x_role: Optional[str] = Header(default=None, alias="X-Role")) -> Role:
        role = resolve_role(x_role)
        if operation not in PERMISSIONS.get(role, set()):
            raise HTTPException(403, detail={
                "error": "access_denied", "operation": operation, "role": role,
                "allowed_roles": [r for r, p in PERMISSIONS.items() if operation in p],
            })
        return role
    return _dep

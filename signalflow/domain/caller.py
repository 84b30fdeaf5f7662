from __future__ import annotations

from dataclasses import dataclass


ROLE_ORDER = {"reader": 1, "editor": 2, "admin": 3}
SUPER_OPERATOR_ROLE = "super_operator"


def normalize_role(role: str | None) -> str:
    # Unknown or missing roles collapse to the least privileged role.
    value = (role or "").strip().lower()
    if value == SUPER_OPERATOR_ROLE or value in ROLE_ORDER:
        return value
    return "reader"


def role_allows(*, role: str, minimum_role: str) -> bool:
    # Super-operators satisfy every tenant role requirement.
    if role == SUPER_OPERATOR_ROLE:
        return True
    if minimum_role == SUPER_OPERATOR_ROLE:
        return False
    return ROLE_ORDER.get(role, 0) >= ROLE_ORDER.get(minimum_role, 0)


@dataclass(frozen=True)
class Caller:
    # Identity resolved from trusted gateway headers (or constructed directly by workers).
    tenant_id: str | None
    actor_id: str | None = None
    role: str = "reader"

    @property
    def is_super_operator(self) -> bool:
        return self.role == SUPER_OPERATOR_ROLE

    def can_access(self, tenant_id: str | None) -> bool:
        # Same-tenant access, or platform-wide access for super-operators.
        if self.is_super_operator:
            return True
        return bool(self.tenant_id) and self.tenant_id == tenant_id

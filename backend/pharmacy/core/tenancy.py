"""
Tenancy: every drug and sale belongs to exactly one pharmacy.

A pharmacy is rooted at the admin account that registered it. Staff accounts
point at that root through `pharmacy_id`; a root account has none and is its
own tenant. The tenant id is resolved once at the auth boundary and passed
explicitly into every service call.
"""
from dataclasses import dataclass

from pharmacy.models.user import User


def resolve_tenant_id(user: User) -> int:
    return user.pharmacy_id or user.id


@dataclass(frozen=True)
class Caller:
    user_id: int
    tenant_id: int
    role: str

    @classmethod
    def from_user(cls, user: User) -> "Caller":
        return cls(user_id=user.id, tenant_id=resolve_tenant_id(user), role=user.role)

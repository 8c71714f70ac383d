# Overview: Caller identity supplied by the upstream authentication gateway.

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Actor:
    """
    Who is calling the core.

    Authentication and tenant resolution happen upstream; the core only
    receives the resolved identity and the supervisor capability.
    """
    user_id: int
    tenant_id: int
    is_supervisor: bool = False

    def owns(self, obj) -> bool:
        return getattr(obj, "user_id", None) == self.user_id

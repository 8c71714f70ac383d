"""
ORM-level append-only enforcement.

Movements and audit events are the evidence every balance is derived from.
Any UPDATE or DELETE issued through the ORM is rejected before SQL reaches
the database. Bulk statements and raw SQL are not covered here.
"""

from __future__ import annotations

from sqlalchemy import event

from .registers import Movement
from .audit import AuditEvent


class ImmutabilityViolationError(RuntimeError):
    """Raised when code tries to modify or delete an append-only row."""


APPEND_ONLY_MODELS = (Movement, AuditEvent)


def _reject_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        f"{type(target).__name__} {target.id} is append-only and cannot be modified"
    )


def _reject_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        f"{type(target).__name__} {target.id} is append-only and cannot be deleted"
    )


def register_immutability_listeners() -> None:
    """Idempotent; called from the models package on import."""
    for model in APPEND_ONLY_MODELS:
        if not event.contains(model, "before_update", _reject_update):
            event.listen(model, "before_update", _reject_update)
        if not event.contains(model, "before_delete", _reject_delete):
            event.listen(model, "before_delete", _reject_delete)

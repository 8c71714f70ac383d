"""
Register Catalog

WHY: Sessions open on a register, so registers must exist first. A register
is identity only (code + name); its history lives in its sessions.

DESIGN PRINCIPLES:
- Registers are never deleted (preserve historical sessions)
- Inactive registers cannot open new sessions
- A register with an OPEN session cannot be deactivated
"""

from __future__ import annotations

from flask import current_app

from ..context import Actor
from ..errors import NotFound, Unauthorized, ValidationError
from ..extensions import db
from ..models import CashRegister
from ..validation import require_text
from .concurrency import entity_lock, lock_for_update, transaction
from .journal_service import find_open_session


REGISTER_LOCK = "cash_register"


def create_register(actor: Actor, code: str, name: str) -> CashRegister:
    """
    Create a new cash register.

    Args:
        code: Unique identifier within the tenant (e.g., "CAJA-01")
        name: Display name
    """
    if not actor.is_supervisor:
        raise Unauthorized("Only supervisors can create registers")

    code = require_text(code, "code", max_length=32).upper()
    name = require_text(name, "name", max_length=128)

    existing = db.session.query(CashRegister).filter_by(
        tenant_id=actor.tenant_id,
        code=code,
    ).first()
    if existing:
        raise ValidationError(f"Register '{code}' already exists", field="code")

    with transaction():
        register = CashRegister(
            tenant_id=actor.tenant_id,
            code=code,
            name=name,
            is_active=True,
        )
        db.session.add(register)

    current_app.logger.info("Register %s created for tenant %s", code, actor.tenant_id)
    return register


def get_register(actor: Actor, register_id: int) -> CashRegister:
    register = db.session.query(CashRegister).filter_by(id=register_id, tenant_id=actor.tenant_id).first()
    if not register:
        raise NotFound(f"Cash register {register_id} not found", cash_register_id=register_id)
    return register


def list_registers(actor: Actor, *, include_inactive: bool = False) -> list[CashRegister]:
    query = db.session.query(CashRegister).filter_by(tenant_id=actor.tenant_id)
    if not include_inactive:
        query = query.filter_by(is_active=True)
    return query.order_by(CashRegister.code).all()


def deactivate_register(actor: Actor, register_id: int) -> CashRegister:
    """
    Deactivate a register (soft delete).

    Runs under the register lock so it cannot interleave with an opening.
    """
    if not actor.is_supervisor:
        raise Unauthorized("Only supervisors can deactivate registers")

    with entity_lock(REGISTER_LOCK, register_id):
        with transaction():
            register = lock_for_update(
                db.session.query(CashRegister).filter_by(id=register_id, tenant_id=actor.tenant_id)
            ).first()
            if not register:
                raise NotFound(f"Cash register {register_id} not found", cash_register_id=register_id)

            open_session = find_open_session(register_id, actor.tenant_id)
            if open_session:
                raise ValidationError(
                    f"Cannot deactivate a register with open session {open_session.id}; close it first",
                    field="cash_register_id",
                )
            register.is_active = False

    current_app.logger.info("Register %s deactivated", register_id)
    return register

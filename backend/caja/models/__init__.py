from .registers import CashRegister, CashSession, Movement
from .sales import Sale, CreditNote, CreditNoteLine
from .customers import Client, AccountReceivable, ReceivablePayment
from .audit import AuditEvent
from .immutability import ImmutabilityViolationError, register_immutability_listeners

register_immutability_listeners()

__all__ = [
    'CashRegister', 'CashSession', 'Movement',
    'Sale', 'CreditNote', 'CreditNoteLine',
    'Client', 'AccountReceivable', 'ReceivablePayment',
    'AuditEvent',
    'ImmutabilityViolationError', 'register_immutability_listeners',
]

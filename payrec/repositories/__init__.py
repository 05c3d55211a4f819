# payrec/repositories/__init__.py

from payrec.repositories.base import (
    AliasRepository,
    AuditSink,
    DuplicateCaseRepository,
    InvoiceOrderRepository,
    PaymentRepository,
    PendingAliasRepository,
    RosterRepository,
)
from payrec.repositories.memory import InMemoryStore

__all__ = [
    "AliasRepository",
    "AuditSink",
    "DuplicateCaseRepository",
    "InvoiceOrderRepository",
    "PaymentRepository",
    "PendingAliasRepository",
    "RosterRepository",
    "InMemoryStore",
]

"""Database infrastructure — engine, ORM models, and repositories."""

from marketplace_escrow.infrastructure.database.engine import (
    build_engine,
    build_session_factory,
    close_db,
    get_async_session,
    init_db,
)
from marketplace_escrow.infrastructure.database.orm_models import (
    Base,
    Dispute,
    EscrowEvent,
    LedgerAccount,
    LedgerTransaction,
    Order,
    WorkProof,
)
from marketplace_escrow.infrastructure.database.repositories import (
    DisputeRepository,
    EventRepository,
    LedgerRepository,
    OrderRepository,
    WorkProofRepository,
)

__all__ = [
    "Base",
    "Dispute",
    "EscrowEvent",
    "LedgerAccount",
    "LedgerTransaction",
    "Order",
    "WorkProof",
    "DisputeRepository",
    "EventRepository",
    "LedgerRepository",
    "OrderRepository",
    "WorkProofRepository",
    "build_engine",
    "build_session_factory",
    "get_async_session",
    "init_db",
    "close_db",
]

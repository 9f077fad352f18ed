"""SQLite persistence for claims, policies, audit records and notifications."""

from claim_settlement.db.database import get_connection, get_db_path, init_db
from claim_settlement.db.repository import (
    AuditRepository,
    ClaimRepository,
    ClaimStore,
    NotificationRepository,
    PerItemResult,
    PolicyRepository,
    PolicyStore,
    generate_claim_id,
)

__all__ = [
    "AuditRepository",
    "ClaimRepository",
    "ClaimStore",
    "NotificationRepository",
    "PerItemResult",
    "PolicyRepository",
    "PolicyStore",
    "generate_claim_id",
    "get_connection",
    "get_db_path",
    "init_db",
]

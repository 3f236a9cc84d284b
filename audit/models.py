"""
audit/models.py -- Domain dataclasses for the audit trail.

Records are append-only: the store inserts and purges, never updates.
"""

from dataclasses import dataclass
from typing import Optional

RESULT_SUCCESS = "success"
RESULT_FAILURE = "failure"


@dataclass
class AuditEntry:
    """One audited action.

    action       -- verb in snake_case: "create_product", "login", "delete_color"
    module       -- functional area: "auth", "users", "products", ...
    description  -- JSON text: {"message": ..., "timestamp": ..., "details": ...}
    actor_id     -- user who acted; None for anonymous actions (failed logins,
                    self-registration, password recovery)

    id is None before the record is written to the database.
    """

    action: str
    module: str
    entity_type: str
    result: str = RESULT_SUCCESS
    actor_id: Optional[int] = None
    entity_id: Optional[str] = None
    description: Optional[str] = None
    error_message: Optional[str] = None
    ip: Optional[str] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    id: Optional[int] = None


@dataclass
class AuditFilter:
    """Query filters for AuditStore.query(). None means "do not filter"."""

    actor_id: Optional[int] = None
    action: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    module: Optional[str] = None
    result: Optional[str] = None
    ip: Optional[str] = None  # substring match
    date_from: Optional[str] = None  # ISO 8601 lower bound, inclusive
    date_to: Optional[str] = None  # ISO 8601 upper bound, exclusive

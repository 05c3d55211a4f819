# payrec/models/audit.py

from datetime import datetime, timezone
from typing import Optional, Literal
from pydantic import BaseModel, Field
import uuid

AuditAction = Literal[
    "import_committed",
    "alias_confirmed",
    "alias_rule_added",
    "alias_removed",
    "payment_confirmed",
    "payments_rematched",
    "duplicate_case_resolved",
]


class AuditEntry(BaseModel):
    """Append-only record of one state-changing operation."""

    id: str
    action: AuditAction
    resource_id: str
    school_id: str
    actor_id: Optional[str] = None
    details: dict = Field(default_factory=dict)
    timestamp: datetime

    @classmethod
    def new(
        cls,
        action: AuditAction,
        resource_id: str,
        school_id: str,
        actor_id: Optional[str] = None,
        details: Optional[dict] = None,
        timestamp: Optional[datetime] = None,
    ) -> "AuditEntry":
        return cls(
            id=str(uuid.uuid4()),
            action=action,
            resource_id=resource_id,
            school_id=school_id,
            actor_id=actor_id,
            details=details or {},
            timestamp=timestamp or datetime.now(timezone.utc),
        )

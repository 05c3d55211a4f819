# payrec/models/account.py

from datetime import datetime
from typing import Optional, Literal
from pydantic import BaseModel, Field

SCHEMA_VERSION = 1

TargetType = Literal["account", "player"]
AliasSource = Literal["manual", "confirmed"]


# ============================================
# Roster
# ============================================

class Account(BaseModel):
    """A billable club/school client, as supplied by the roster."""

    id: str
    school_id: str
    display_name: str
    normalized_name: str = ""
    target_type: TargetType = "account"

    class Config:
        from_attributes = True


# ============================================
# Aliases
# ============================================

class AliasMapping(BaseModel):
    """A trusted payer key -> target binding."""

    schema_version: int = SCHEMA_VERSION
    school_id: str
    payer_key: str = Field(min_length=1)
    target_id: str = Field(min_length=1)
    target_type: TargetType = "account"
    source_raw: str = ""
    source: AliasSource
    created_at: datetime
    created_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None
    pending_id: Optional[str] = None

    class Config:
        from_attributes = True


class PendingAlias(BaseModel):
    """A payer string the matcher could not resolve with confidence."""

    schema_version: int = SCHEMA_VERSION
    id: str
    school_id: str
    payer_raw: str
    payer_key: str
    target_type: TargetType = "account"
    account_raw: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True

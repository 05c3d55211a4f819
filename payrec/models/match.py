# payrec/models/match.py

from typing import Optional, Literal
from pydantic import BaseModel, Field


# ============================================
# Match Classification
# ============================================

MatchStatus = Literal["auto", "review", "conflict", "nomatch"]
MatchTier = Literal["alias", "exact", "fuzzy", "none"]


class Candidate(BaseModel):
    """A roster account scored against a payer."""

    account_id: str
    display_name: str
    ratio: float = Field(ge=0, le=1, description="Token overlap |A & B| / |A | B|")
    intersection: int = Field(ge=0, description="Shared token count")


class MatchResult(BaseModel):
    """Outcome of matching one payer string against the roster."""

    status: MatchStatus
    tier: MatchTier
    payer_key: str
    target_id: Optional[str] = None
    confidence: float = Field(ge=0, le=1)
    candidates: list[Candidate] = Field(default_factory=list)
    explanation: str = ""

    @property
    def resolved(self) -> bool:
        return self.status == "auto" and self.target_id is not None

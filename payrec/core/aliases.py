# payrec/core/aliases.py

"""
Alias Store: trusted payer key -> target bindings.

Automatic matching only ever reads aliases. Writes come from operators, and
rebinding a key to a different target needs an explicit override.
"""

from datetime import datetime, timezone
from typing import Optional
import hashlib
import logging

from payrec.core.errors import ConflictError, NotFoundError, ValidationError
from payrec.core.normalizers import normalize_payer
from payrec.models import AliasMapping, AliasSource, TargetType
from payrec.repositories.base import AliasRepository

logger = logging.getLogger(__name__)


def pending_alias_id(school_id: str, payer_key: str, target_type: TargetType = "account") -> str:
    """Stable id of the pending alias for a payer key (one per key and target type)."""
    digest = hashlib.sha256(f"{school_id}|{target_type}|{payer_key}".encode("utf-8")).hexdigest()
    return f"pa_{digest[:24]}"


class AliasStore:
    """Operations on one school's aliases over an AliasRepository."""

    def __init__(self, repo: AliasRepository):
        self.repo = repo

    def lookup(self, school_id: str, payer: str, target_type: TargetType = "account") -> Optional[AliasMapping]:
        """Exact lookup; `payer` may be raw text or an already normalized key."""
        key = normalize_payer(payer)
        if not key:
            return None
        return self.repo.get(school_id, key, target_type)

    def snapshot(self, school_id: str, target_type: TargetType = "account") -> dict[str, AliasMapping]:
        """Aliases keyed by payer key, as read at call time."""
        return {m.payer_key: m for m in self.repo.list_aliases(school_id, target_type)}

    def list_aliases(self, school_id: str, target_type: Optional[TargetType] = None) -> list[AliasMapping]:
        return self.repo.list_aliases(school_id, target_type)

    def prepare(
        self,
        school_id: str,
        payer: str,
        target_id: str,
        target_type: TargetType,
        source: AliasSource,
        source_raw: Optional[str] = None,
        actor_id: Optional[str] = None,
        override: bool = False,
        pending_id: Optional[str] = None,
    ) -> AliasMapping:
        """
        Build the mapping an upsert would write, without writing it.

        Raises ConflictError if the key is bound to a different target and
        `override` is not set.
        """
        key = normalize_payer(payer)
        if not key:
            raise ValidationError("payer is empty after normalization", details={"payer": payer})
        if not target_id:
            raise ValidationError("target_id is required")

        now = datetime.now(timezone.utc)
        existing = self.repo.get(school_id, key, target_type)

        if existing is None:
            return AliasMapping(
                school_id=school_id,
                payer_key=key,
                target_id=target_id,
                target_type=target_type,
                source_raw=source_raw if source_raw is not None else str(payer),
                source=source,
                created_at=now,
                created_by=actor_id,
                pending_id=pending_id,
            )

        if existing.target_id != target_id and not override:
            raise ConflictError(
                f"payer '{key}' is already bound to {existing.target_id}",
                details={"payer_key": key, "target_id": existing.target_id},
            )

        return existing.model_copy(update={
            "target_id": target_id,
            "source": source,
            "source_raw": source_raw if source_raw is not None else existing.source_raw,
            "updated_at": now,
            "updated_by": actor_id,
            "pending_id": pending_id or existing.pending_id,
        })

    def upsert(
        self,
        school_id: str,
        payer: str,
        target_id: str,
        target_type: TargetType = "account",
        source: AliasSource = "manual",
        source_raw: Optional[str] = None,
        actor_id: Optional[str] = None,
        override: bool = False,
    ) -> AliasMapping:
        """Create or overwrite a binding; see `prepare` for the override rule."""
        mapping = self.prepare(
            school_id, payer, target_id, target_type, source,
            source_raw=source_raw, actor_id=actor_id, override=override,
        )
        self.repo.put(mapping, override=override)
        logger.info(f"Alias '{mapping.payer_key}' -> {target_id} ({source}) in school {school_id}")
        return mapping

    def remove(self, school_id: str, payer: str, target_type: TargetType = "account") -> AliasMapping:
        """Delete a binding; raises NotFoundError if there is none."""
        key = normalize_payer(payer)
        existing = self.repo.get(school_id, key, target_type) if key else None
        if existing is None:
            raise NotFoundError(f"no alias for payer '{key}'", details={"payer_key": key})

        self.repo.delete(school_id, key, target_type)
        logger.info(f"Alias '{key}' removed in school {school_id}")
        return existing

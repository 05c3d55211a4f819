# payrec/core/matching.py

"""
Core payer matching engine.

Resolves a raw payer string to a roster target in trust order:

    alias  -> a persisted, operator-trusted binding (confidence 1.0, auto)
    exact  -> normalized key equals an account's normalized name (0.9, auto)
    fuzzy  -> Jaccard token overlap; always needs a human (review/conflict)
    none   -> nomatch, the importer queues a pending alias

The matcher is a pure function of its inputs: the same roster, the same alias
snapshot and the same policy always give the same MatchResult.
"""

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Sequence, Union

from payrec.config import Settings, get_settings
from payrec.core.normalizers import normalize_and_tokenize, normalize_payer, tokenize
from payrec.models import (
    Account,
    AliasMapping,
    Candidate,
    MatchResult,
    TargetType,
)


# ============================================
# Policy
# ============================================

@dataclass(frozen=True)
class MatchPolicy:
    """Tunable thresholds for the matcher."""

    min_overlap: float = 0.5
    confident_overlap: float = 0.75
    margin: float = 0.1
    alias_confidence: float = 1.0
    exact_confidence: float = 0.9
    max_candidates: int = 5
    stopwords: tuple[str, ...] = ()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "MatchPolicy":
        settings = settings or get_settings()
        return cls(
            min_overlap=settings.fuzzy_min_overlap,
            confident_overlap=settings.fuzzy_confident_overlap,
            margin=settings.fuzzy_margin,
            alias_confidence=settings.alias_confidence,
            exact_confidence=settings.exact_confidence,
            max_candidates=settings.max_candidates,
            stopwords=tuple(settings.payer_stopwords),
        )


# ============================================
# Roster Projection
# ============================================

@dataclass(frozen=True)
class _Entry:
    account: Account
    key: str
    tokens: frozenset[str]


class RosterIndex:
    """
    Normalized view of one school's roster for one target type.

    Built once per import and reused for every row.
    """

    def __init__(self, entries: list[_Entry]):
        self.entries = entries
        self.by_key: dict[str, list[Account]] = {}
        for entry in entries:
            self.by_key.setdefault(entry.key, []).append(entry.account)

    @classmethod
    def build(
        cls,
        accounts: Iterable[Account],
        policy: Optional[MatchPolicy] = None,
        school_id: Optional[str] = None,
        target_type: Optional[TargetType] = None,
    ) -> "RosterIndex":
        policy = policy or MatchPolicy()
        entries = []
        for account in sorted(accounts, key=lambda a: a.id):
            if school_id is not None and account.school_id != school_id:
                continue
            if target_type is not None and account.target_type != target_type:
                continue
            key = normalize_payer(account.normalized_name or account.display_name)
            entries.append(_Entry(account, key, frozenset(tokenize(key, policy.stopwords))))
        return cls(entries)

    def get(self, account_id: str) -> Optional[Account]:
        for entry in self.entries:
            if entry.account.id == account_id:
                return entry.account
        return None

    def __len__(self) -> int:
        return len(self.entries)


# ============================================
# Scoring
# ============================================

def score_tokens(payer_tokens: frozenset[str], account_tokens: frozenset[str]) -> tuple[float, int]:
    """Jaccard ratio and intersection size of two token sets."""
    if not payer_tokens or not account_tokens:
        return 0.0, 0

    shared = len(payer_tokens & account_tokens)
    union = len(payer_tokens | account_tokens)
    return shared / union, shared


def rank_candidates(candidates: list[Candidate]) -> list[Candidate]:
    """Higher ratio first, then larger intersection, then lowest account id."""
    return sorted(candidates, key=lambda c: (-c.ratio, -c.intersection, c.account_id))


def _candidate(account: Account, ratio: float, intersection: int) -> Candidate:
    return Candidate(
        account_id=account.id,
        display_name=account.display_name,
        ratio=round(ratio, 4),
        intersection=intersection,
    )


# ============================================
# Matching
# ============================================

def match_payer(
    school_id: str,
    raw_payer: str,
    target_type: TargetType,
    roster: Union[RosterIndex, Sequence[Account]],
    aliases: Mapping[str, AliasMapping],
    policy: Optional[MatchPolicy] = None,
) -> MatchResult:
    """
    Match one raw payer string.

    Args:
        school_id: Tenant scope; roster accounts and aliases of other schools are ignored
        raw_payer: Payer text as it appears in the source
        target_type: "account" or "player"
        roster: Accounts (or a prebuilt RosterIndex) to match against
        aliases: Alias snapshot keyed by payer key
        policy: Thresholds; defaults to the configured policy

    Returns:
        MatchResult with status, tier, confidence and ranked candidates
    """
    policy = policy or MatchPolicy.from_settings()
    if not isinstance(roster, RosterIndex):
        roster = RosterIndex.build(roster, policy, school_id=school_id, target_type=target_type)

    payer_key, tokens = normalize_and_tokenize(raw_payer, policy.stopwords)

    if not payer_key:
        return MatchResult(
            status="nomatch",
            tier="none",
            payer_key="",
            confidence=0.0,
            explanation="Empty payer",
        )

    # Tier 1: alias
    alias = aliases.get(payer_key)
    if alias is not None and alias.school_id == school_id and alias.target_type == target_type:
        account = roster.get(alias.target_id)
        return MatchResult(
            status="auto",
            tier="alias",
            payer_key=payer_key,
            target_id=alias.target_id,
            confidence=policy.alias_confidence,
            candidates=[_candidate(account, 1.0, len(tokens))] if account else [],
            explanation=f"Alias: '{payer_key}' -> {alias.target_id} ({alias.source})",
        )

    # Tier 2: exact normalized name
    exact = roster.by_key.get(payer_key, [])
    if len(exact) == 1:
        return MatchResult(
            status="auto",
            tier="exact",
            payer_key=payer_key,
            target_id=exact[0].id,
            confidence=policy.exact_confidence,
            candidates=[_candidate(exact[0], 1.0, len(tokens))],
            explanation=f"Exact name match: {exact[0].display_name}",
        )
    if len(exact) > 1:
        return MatchResult(
            status="conflict",
            tier="exact",
            payer_key=payer_key,
            confidence=policy.exact_confidence,
            candidates=rank_candidates([_candidate(a, 1.0, len(tokens)) for a in exact])[: policy.max_candidates],
            explanation=f"{len(exact)} accounts share the name '{payer_key}'",
        )

    # Tier 3: fuzzy token overlap
    payer_tokens = frozenset(tokens)
    scored = []
    for entry in roster.entries:
        ratio, shared = score_tokens(payer_tokens, entry.tokens)
        if shared and ratio >= policy.min_overlap:
            scored.append(_candidate(entry.account, ratio, shared))

    if not scored:
        return MatchResult(
            status="nomatch",
            tier="none",
            payer_key=payer_key,
            confidence=0.0,
            explanation=f"No account reaches overlap {policy.min_overlap:.2f}",
        )

    ranked = rank_candidates(scored)
    top = ranked[0]
    candidates = ranked[: policy.max_candidates]

    if len(ranked) > 1 and round(top.ratio - ranked[1].ratio, 6) < policy.margin:
        runner = ranked[1]
        return MatchResult(
            status="conflict",
            tier="fuzzy",
            payer_key=payer_key,
            confidence=top.ratio,
            candidates=candidates,
            explanation=(
                f"Ambiguous: {top.account_id} ({top.ratio:.2f}) vs "
                f"{runner.account_id} ({runner.ratio:.2f})"
            ),
        )

    confident = top.ratio >= policy.confident_overlap
    return MatchResult(
        status="review",
        tier="fuzzy",
        payer_key=payer_key,
        target_id=top.account_id if confident else None,
        confidence=top.ratio,
        candidates=candidates,
        explanation=(
            f"Fuzzy match {top.display_name} ({top.ratio:.2f})"
            + ("" if confident else ", below confident overlap")
        ),
    )

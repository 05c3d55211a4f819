# tests/test_matching.py

"""
Tests for the core payer matching engine.
"""

import pytest
from datetime import datetime, timezone

from payrec.core.matching import MatchPolicy, RosterIndex, match_payer, score_tokens
from payrec.models import AliasMapping

from conftest import SCHOOL, OTHER_SCHOOL, make_account


# ============================================
# Test Data
# ============================================

def make_alias(payer_key: str, target_id: str, target_type: str = "account") -> AliasMapping:
    return AliasMapping(
        school_id=SCHOOL,
        payer_key=payer_key,
        target_id=target_id,
        target_type=target_type,
        source="confirmed",
        created_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
    )


def match(raw: str, roster: list, aliases: dict = None, policy: MatchPolicy = None, target_type: str = "account"):
    return match_payer(SCHOOL, raw, target_type, roster, aliases or {}, policy or MatchPolicy())


# ============================================
# Tier Tests
# ============================================

class TestExactTier:

    def test_exact_name_match_is_auto(self):
        """JUAN PEREZ against 'Juan Pérez' resolves on the exact tier."""
        result = match("JUAN PEREZ", [make_account("p123", "Juan Pérez")])

        assert result.status == "auto"
        assert result.tier == "exact"
        assert result.target_id == "p123"
        assert result.confidence == 0.9
        assert result.payer_key == "juan perez"

    def test_stored_normalized_name_is_renormalized(self):
        account = make_account("p123", "Juan Pérez").model_copy(update={"normalized_name": "Juan  Pérez"})

        result = match("JUAN PEREZ", [account])

        assert result.status == "auto"
        assert result.tier == "exact"
        assert result.target_id == "p123"

    def test_shared_name_is_conflict(self):
        roster = [make_account("p2", "Juan Perez"), make_account("p1", "Juan Pérez")]

        result = match("juan perez", roster)

        assert result.status == "conflict"
        assert result.tier == "exact"
        assert result.target_id is None
        assert [c.account_id for c in result.candidates] == ["p1", "p2"]


class TestAliasTier:

    def test_alias_resolves_with_full_confidence(self):
        roster = [make_account("p123", "Juan Perez")]
        aliases = {"transf perez j": make_alias("transf perez j", "p123")}

        result = match("TRANSF PEREZ J", roster, aliases)

        assert result.status == "auto"
        assert result.tier == "alias"
        assert result.target_id == "p123"
        assert result.confidence == 1.0

    def test_alias_takes_precedence_over_exact_name(self):
        roster = [make_account("p123", "Juan Perez"), make_account("p200", "Maria Gonzalez")]
        aliases = {"juan perez": make_alias("juan perez", "p200")}

        result = match("Juan Perez", roster, aliases)

        assert result.tier == "alias"
        assert result.target_id == "p200"

    def test_alias_for_other_target_type_is_ignored(self):
        roster = [make_account("p123", "Juan Perez")]
        aliases = {"juan perez": make_alias("juan perez", "j500", target_type="player")}

        result = match("Juan Perez", roster, aliases)

        assert result.tier == "exact"
        assert result.target_id == "p123"

    def test_alias_never_falls_through_to_fuzzy(self):
        """Even when fuzzy scoring would find someone else."""
        roster = [make_account("p300", "Carlos Alberto Ruiz")]
        aliases = {"carlos ruiz": make_alias("carlos ruiz", "p999")}

        result = match("Carlos Ruiz", roster, aliases)

        assert result.tier == "alias"
        assert result.target_id == "p999"
        assert result.candidates == []


class TestFuzzyTier:

    def test_below_min_overlap_is_nomatch(self):
        """TRANSF PEREZ J shares one of three tokens with Juan Perez."""
        result = match("TRANSF PEREZ J", [make_account("p123", "Juan Perez")])

        assert result.status == "nomatch"
        assert result.tier == "none"
        assert result.confidence == 0
        assert result.target_id is None

    def test_single_confident_candidate_needs_review(self):
        result = match("Carlos Alberto Ruiz Diaz", [make_account("p300", "Carlos Alberto Ruiz")])

        assert result.status == "review"
        assert result.tier == "fuzzy"
        assert result.target_id == "p300"
        assert result.confidence == pytest.approx(0.75)

    def test_weak_candidate_needs_review_without_suggestion(self):
        result = match("Carlos Ruiz", [make_account("p300", "Carlos Alberto Ruiz")])

        assert result.status == "review"
        assert result.target_id is None
        assert result.confidence == pytest.approx(2 / 3, abs=1e-4)
        assert result.candidates[0].account_id == "p300"

    def test_tied_candidates_are_conflict(self):
        roster = [make_account("p201", "Maria Lopez"), make_account("p200", "Maria Gonzalez")]

        result = match("Maria Gonzalez Lopez", roster)

        assert result.status == "conflict"
        assert result.target_id is None
        assert [c.account_id for c in result.candidates] == ["p200", "p201"]

    def test_within_margin_is_conflict(self):
        roster = [make_account("p1", "Carlos Alberto Ruiz Diaz"), make_account("p2", "Carlos Ruiz")]

        result = match("Carlos Alberto Ruiz", roster)

        assert result.status == "conflict"
        assert [c.account_id for c in result.candidates] == ["p1", "p2"]

    def test_margin_is_configurable(self):
        roster = [make_account("p1", "Carlos Alberto Ruiz Diaz"), make_account("p2", "Carlos Ruiz")]

        result = match("Carlos Alberto Ruiz", roster, policy=MatchPolicy(margin=0.05))

        assert result.status == "review"
        assert result.target_id == "p1"

    def test_equal_ratio_prefers_larger_intersection(self):
        roster = [
            make_account("a1", "Ana Bel Diaz"),               # 2 / 4
            make_account("z9", "Ana Bel Cruz Diaz Eme Fox"),  # 3 / 6
        ]

        result = match("Ana Bel Cruz", roster)

        assert result.status == "conflict"
        assert [(c.account_id, c.intersection) for c in result.candidates] == [("z9", 3), ("a1", 2)]

    def test_candidates_are_capped(self):
        roster = [make_account(f"p{i}", f"Lucas Martin {suffix}") for i, suffix in enumerate("abcdefg")]

        result = match("Lucas Martin", roster, policy=MatchPolicy(max_candidates=3))

        assert len(result.candidates) == 3
        assert [c.account_id for c in result.candidates] == ["p0", "p1", "p2"]


# ============================================
# Edge Cases
# ============================================

class TestEdgeCases:

    def test_empty_payer_is_nomatch(self):
        result = match("   ", [make_account("p123", "Juan Perez")])

        assert result.status == "nomatch"
        assert result.payer_key == ""

    def test_boilerplate_only_payer_is_nomatch(self):
        result = match("Transferencia", [make_account("p123", "Juan Perez")])

        assert result.status == "nomatch"
        assert result.payer_key == "transferencia"

    def test_other_school_accounts_are_ignored(self):
        roster = [make_account("x900", "Pedro Gomez", school_id=OTHER_SCHOOL)]

        result = match("Pedro Gomez", roster)

        assert result.status == "nomatch"

    def test_matching_is_deterministic(self):
        roster = [make_account("p201", "Maria Lopez"), make_account("p200", "Maria Gonzalez")]

        first = match("Maria Gonzalez Lopez", roster)
        second = match("Maria Gonzalez Lopez", list(reversed(roster)))

        assert first == second

    def test_prebuilt_index_gives_same_result(self):
        roster = [make_account("p300", "Carlos Alberto Ruiz")]
        index = RosterIndex.build(roster, school_id=SCHOOL, target_type="account")

        assert match("Carlos Ruiz", index) == match("Carlos Ruiz", roster)

    def test_score_tokens(self):
        assert score_tokens(frozenset({"a", "b"}), frozenset({"b", "c"})) == (1 / 3, 1)
        assert score_tokens(frozenset(), frozenset({"a"})) == (0.0, 0)

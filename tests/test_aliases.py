# tests/test_aliases.py

"""
Tests for the alias store.
"""

import pytest

from payrec.core.aliases import AliasStore, pending_alias_id
from payrec.core.errors import ConflictError, NotFoundError, ValidationError

from conftest import SCHOOL, OTHER_SCHOOL, OPERATOR


@pytest.fixture
def aliases(store) -> AliasStore:
    return AliasStore(store.aliases)


class TestUpsert:

    def test_stores_normalized_key(self, aliases):
        mapping = aliases.upsert(SCHOOL, "TRANSF. Pérez, J", "p123", actor_id=OPERATOR)

        assert mapping.payer_key == "transf perez j"
        assert mapping.source_raw == "TRANSF. Pérez, J"
        assert mapping.source == "manual"
        assert mapping.created_by == OPERATOR

    def test_lookup_accepts_any_spelling(self, aliases):
        aliases.upsert(SCHOOL, "TRANSF PEREZ J", "p123")

        assert aliases.lookup(SCHOOL, "transf  pérez j").target_id == "p123"
        assert aliases.lookup(SCHOOL, "transf perez j", "player") is None
        assert aliases.lookup(OTHER_SCHOOL, "transf perez j") is None

    def test_same_target_is_not_a_conflict(self, aliases):
        aliases.upsert(SCHOOL, "Juan Perez", "p123")
        again = aliases.upsert(SCHOOL, "JUAN PEREZ", "p123", source="confirmed", actor_id=OPERATOR)

        assert again.target_id == "p123"
        assert again.source == "confirmed"
        assert again.updated_by == OPERATOR

    def test_rebinding_needs_override(self, aliases):
        aliases.upsert(SCHOOL, "Juan Perez", "p123")

        with pytest.raises(ConflictError):
            aliases.upsert(SCHOOL, "Juan Perez", "p200")
        assert aliases.lookup(SCHOOL, "Juan Perez").target_id == "p123"

        rebound = aliases.upsert(SCHOOL, "Juan Perez", "p200", override=True)
        assert rebound.target_id == "p200"
        assert aliases.lookup(SCHOOL, "Juan Perez").target_id == "p200"

    def test_write_rechecks_binding_made_after_prepare(self, aliases, store):
        mapping = aliases.prepare(SCHOOL, "Juan Perez", "p123", "account", "manual")
        aliases.upsert(SCHOOL, "Juan Perez", "p200")

        with pytest.raises(ConflictError):
            store.aliases.put(mapping)
        assert aliases.lookup(SCHOOL, "Juan Perez").target_id == "p200"

        store.aliases.put(mapping, override=True)
        assert aliases.lookup(SCHOOL, "Juan Perez").target_id == "p123"

    def test_empty_payer_is_rejected(self, aliases):
        with pytest.raises(ValidationError):
            aliases.upsert(SCHOOL, " -- ", "p123")

    def test_missing_target_is_rejected(self, aliases):
        with pytest.raises(ValidationError):
            aliases.upsert(SCHOOL, "Juan Perez", "")


class TestRemoveAndList:

    def test_remove_returns_mapping(self, aliases):
        aliases.upsert(SCHOOL, "Juan Perez", "p123")

        removed = aliases.remove(SCHOOL, "juan perez")

        assert removed.target_id == "p123"
        assert aliases.lookup(SCHOOL, "juan perez") is None

    def test_remove_unknown_raises(self, aliases):
        with pytest.raises(NotFoundError):
            aliases.remove(SCHOOL, "nobody")

    def test_snapshot_is_keyed_by_payer_key(self, aliases):
        aliases.upsert(SCHOOL, "Juan Perez", "p123")
        aliases.upsert(SCHOOL, "Sofi R", "j500", target_type="player")

        assert set(aliases.snapshot(SCHOOL)) == {"juan perez"}
        assert set(aliases.snapshot(SCHOOL, "player")) == {"sofi r"}
        assert len(aliases.list_aliases(SCHOOL)) == 2


def test_pending_alias_id_is_stable_per_key_and_type():
    first = pending_alias_id(SCHOOL, "transf perez j")

    assert first == pending_alias_id(SCHOOL, "transf perez j")
    assert first.startswith("pa_")
    assert first != pending_alias_id(SCHOOL, "transf perez j", "player")
    assert first != pending_alias_id(OTHER_SCHOOL, "transf perez j")

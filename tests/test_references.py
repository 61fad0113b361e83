"""Tests garde structurelle is_pattern_reference + helpers d'arbre."""
import pytest

from pattern_hub.patterns.references import (
    contains_pattern_reference, extract_pattern_ids, is_pattern_reference,
    make_pattern_reference, references_to, remove_reference,
)
from conftest import block, ref


# ── is_pattern_reference ──────────────────────────────────────────────────

class TestIsPatternReference:

    def test_valid_reference(self):
        assert is_pattern_reference({"type": "pattern", "ref": "pat-1", "id": "inst-1"})

    def test_empty_strings_still_valid_shape(self):
        assert is_pattern_reference({"type": "pattern", "ref": "", "id": ""})

    def test_extra_keys_allowed(self):
        assert is_pattern_reference({"type": "pattern", "ref": "p", "id": "i", "label": "x"})

    @pytest.mark.parametrize("value", [None, 0, 1.5, "pattern", True, [], ["pattern", "p", "i"]])
    def test_non_objects(self, value):
        assert not is_pattern_reference(value)

    @pytest.mark.parametrize("node", [
        {"ref": "p", "id": "i"},                              # type manquant
        {"type": "block", "ref": "p", "id": "i"},             # mauvais type
        {"type": "Pattern", "ref": "p", "id": "i"},           # casse
        {"type": "pattern", "id": "i"},                       # ref manquant
        {"type": "pattern", "ref": "p"},                      # id manquant
        {"type": "pattern", "ref": 42, "id": "i"},            # ref non str
        {"type": "pattern", "ref": "p", "id": None},          # id non str
        {"type": "pattern", "reference": "p", "id": "i"},     # champ mal nommé
    ])
    def test_malformed_objects(self, node):
        assert not is_pattern_reference(node)

    def test_block_with_pattern_slug_is_not_a_reference(self):
        assert not is_pattern_reference({"id": "b1", "blockSlug": "pattern", "props": {"ref": "p"}})


# ── extract_pattern_ids ───────────────────────────────────────────────────

class TestExtractPatternIds:

    def test_empty(self):
        assert extract_pattern_ids([]) == []
        assert extract_pattern_ids(None) == []

    def test_no_references(self):
        assert extract_pattern_ids([block("b1"), block("b2")]) == []

    def test_dedup_keeps_first_seen_order(self):
        blocks = [ref("p2", "i1"), block("b1"), ref("p1", "i2"), ref("p2", "i3")]
        assert extract_pattern_ids(blocks) == ["p2", "p1"]

    def test_empty_ref_is_kept(self):
        assert extract_pattern_ids([ref("", "i1"), ref("p1", "i2")]) == ["", "p1"]


# ── Helpers ───────────────────────────────────────────────────────────────

def test_contains_pattern_reference():
    assert contains_pattern_reference([block("b1"), ref("p1")])
    assert not contains_pattern_reference([block("b1")])
    assert not contains_pattern_reference("not a list")


def test_make_pattern_reference_generates_instance_id():
    r = make_pattern_reference("p1")
    assert is_pattern_reference(r)
    assert r["ref"] == "p1"
    assert r["id"]


def test_remove_reference_only_removes_matching_instance():
    blocks = [block("inst-1"), ref("p1", "inst-1"), ref("p1", "inst-2")]
    result = remove_reference(blocks, "inst-1")
    assert result == [block("inst-1"), ref("p1", "inst-2")]
    assert len(blocks) == 3


def test_references_to():
    blocks = [ref("p1", "a"), ref("p2", "b"), ref("p1", "c"), block("p1")]
    assert [r["id"] for r in references_to(blocks, "p1")] == ["a", "c"]

"""
Tests for tree building, cycle detection and subtree walks.
"""

import pytest


class TestBuildTree:
    """Tests for assembling forests from parent pointers."""

    def test_nests_and_sorts(self):
        """Children are attached to parents and siblings sorted by sortOrder."""
        from sacred_notes.tree import build_tree

        tree = build_tree([
            {"id": "b", "parentId": "root", "sortOrder": 2},
            {"id": "root", "parentId": None, "sortOrder": 0},
            {"id": "a", "parentId": "root", "sortOrder": 1},
        ])
        assert [n["id"] for n in tree] == ["root"]
        assert [c["id"] for c in tree[0]["children"]] == ["a", "b"]

    def test_missing_parent_becomes_root(self):
        """A node whose parent is absent is promoted to a root."""
        from sacred_notes.tree import build_tree

        tree = build_tree([{"id": "orphan", "parentId": "gone"}, {"id": "r", "parentId": None, "sortOrder": 1}])
        assert {n["id"] for n in tree} == {"orphan", "r"}

    def test_cycle_raises(self):
        """Parent pointers forming a loop are rejected."""
        from sacred_notes.tree import build_tree
        from sacred_notes.utils import TreeIntegrityError

        with pytest.raises(TreeIntegrityError, match="Cycle detected"):
            build_tree([
                {"id": "a", "parentId": "c"},
                {"id": "b", "parentId": "a"},
                {"id": "c", "parentId": "b"},
            ])

    def test_self_parent_is_cycle(self):
        """A node that is its own parent is a cycle."""
        from sacred_notes.tree import find_cycle

        assert find_cycle({"a": "a"}) == ["a"]
        assert find_cycle({"a": None, "b": "a"}) is None

    def test_custom_keys(self):
        """Id and parent keys can be renamed."""
        from sacred_notes.tree import build_tree, count_nodes

        tree = build_tree(
            [{"key": 1, "up": None}, {"key": 2, "up": 1}, {"key": 3, "up": 2}],
            id_key="key",
            parent_key="up",
        )
        assert count_nodes(tree) == 3
        assert tree[0]["children"][0]["children"][0]["key"] == 3


class TestDescendantIds:
    """Tests for subtree walks."""

    def test_root_first_then_descendants(self):
        """The root comes first, followed by every descendant."""
        from sacred_notes.tree import descendant_ids

        pairs = [("a", None), ("b", "a"), ("c", "b"), ("d", None)]
        result = descendant_ids(pairs, "a")
        assert result[0] == "a"
        assert set(result) == {"a", "b", "c"}

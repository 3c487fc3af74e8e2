"""
Tree functions for Sacred Notes.

Builds navigation trees (topics, systematic theology outline) from flat
rows carrying parent pointers, and walks subtrees.
"""

from collections.abc import Callable, Iterable
from typing import Any

from .utils import TreeIntegrityError


def find_cycle(parent_of: dict[str, str | None]) -> list[str] | None:
    """Return the ids forming a parent-pointer cycle, or None if acyclic.

    Parents that are not in the mapping end a chain (they become roots).
    """
    # 1 = on the current chain, 2 = known to reach a root
    state: dict[str, int] = {}

    for start in parent_of:
        chain: list[str] = []
        node: str | None = start
        while node is not None and node in parent_of and state.get(node) != 2:
            if state.get(node) == 1:
                return chain[chain.index(node):]
            state[node] = 1
            chain.append(node)
            node = parent_of[node]
        for visited in chain:
            state[visited] = 2

    return None


def build_tree(
    nodes: Iterable[dict[str, Any]],
    id_key: str = "id",
    parent_key: str = "parentId",
    sort_key: Callable[[dict[str, Any]], Any] | None = None,
) -> list[dict[str, Any]]:
    """Assemble a forest from flat nodes with parent pointers.

    Each node gets a ``children`` list. Nodes whose parent is null or not
    present become roots. Siblings are sorted recursively by ``sort_key``
    (default: the node's ``sortOrder``).

    Raises:
        TreeIntegrityError: If the parent pointers contain a cycle
    """
    sort_key = sort_key or (lambda n: n.get("sortOrder") or 0)

    index: dict[str, dict[str, Any]] = {}
    for node in nodes:
        index[node[id_key]] = {**node, "children": []}

    cycle = find_cycle({node_id: node.get(parent_key) for node_id, node in index.items()})
    if cycle:
        raise TreeIntegrityError(f"Cycle detected in tree: {' -> '.join(cycle)}")

    roots: list[dict[str, Any]] = []
    for node in index.values():
        parent = index.get(node.get(parent_key)) if node.get(parent_key) else None
        if parent is not None:
            parent["children"].append(node)
        else:
            roots.append(node)

    def _sort(level: list[dict[str, Any]]) -> None:
        level.sort(key=sort_key)
        for child in level:
            _sort(child["children"])

    _sort(roots)
    return roots


def descendant_ids(pairs: Iterable[tuple[str, str | None]], root_id: str) -> list[str]:
    """Return ``root_id`` followed by every descendant id, breadth-first.

    Args:
        pairs: (id, parent_id) for every node
        root_id: Subtree root
    """
    children: dict[str, list[str]] = {}
    for node_id, parent_id in pairs:
        if parent_id:
            children.setdefault(parent_id, []).append(node_id)

    result = [root_id]
    visited = {root_id}
    frontier = [root_id]
    while frontier:
        new_frontier: list[str] = []
        for node_id in frontier:
            for child in children.get(node_id, []):
                if child not in visited:
                    visited.add(child)
                    result.append(child)
                    new_frontier.append(child)
        frontier = new_frontier

    return result


def count_nodes(tree: list[dict[str, Any]]) -> int:
    return sum(1 + count_nodes(node["children"]) for node in tree)

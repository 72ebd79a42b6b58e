from __future__ import annotations

from typing import Iterable, Iterator, Optional

from budget_planner.core.model import Node, PlanTree


def children(tree: PlanTree, node_id: str) -> list[Node]:
    node = tree.nodes_by_id[node_id]
    return [tree.nodes_by_id[cid] for cid in node.child_ids]


def parent(tree: PlanTree, node_id: str) -> Optional[Node]:
    pid = tree.nodes_by_id[node_id].parent_id
    return tree.nodes_by_id[pid] if pid is not None else None


def ancestors(tree: PlanTree, node_id: str) -> list[str]:
    """Ids from the node's parent up to its root."""
    out: list[str] = []
    cur = tree.nodes_by_id[node_id].parent_id
    while cur is not None:
        out.append(cur)
        cur = tree.nodes_by_id[cur].parent_id
    return out


class Leaves:
    """Leaves of a subtree in serial order (depth-first, siblings in order).

    Re-walks the tree on every iteration, so it can be consumed repeatedly.
    """

    def __init__(self, tree: PlanTree, subtree_id: Optional[str] = None) -> None:
        self._tree = tree
        self._start = [subtree_id] if subtree_id is not None else list(tree.roots)

    def __iter__(self) -> Iterator[Node]:
        stack = list(reversed(self._start))
        while stack:
            node = self._tree.nodes_by_id[stack.pop()]
            if node.is_leaf:
                yield node
                continue
            stack.extend(reversed(node.child_ids))


def leaves(tree: PlanTree, subtree_id: Optional[str] = None) -> Leaves:
    return Leaves(tree, subtree_id)


def walk(tree: PlanTree) -> Iterator[Node]:
    """Every node, pre-order, siblings in order."""
    stack = list(reversed(tree.roots))
    while stack:
        node = tree.nodes_by_id[stack.pop()]
        yield node
        stack.extend(reversed(node.child_ids))


def post_order(tree: PlanTree) -> list[str]:
    """Node ids with every child before its parent."""
    out = [n.id for n in walk(tree)]
    out.reverse()
    return out


def mark_dirty(tree: PlanTree, changed_ids: Iterable[str]) -> frozenset[str]:
    """First pass of an incremental recompute: changed nodes plus every ancestor."""
    dirty: set[str] = set()
    for nid in changed_ids:
        if nid not in tree.nodes_by_id or nid in dirty:
            continue
        dirty.add(nid)
        for aid in ancestors(tree, nid):
            if aid in dirty:
                break
            dirty.add(aid)
    return frozenset(dirty)

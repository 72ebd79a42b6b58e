from __future__ import annotations

from collections import Counter
from typing import Iterable

from budget_planner.core.errors import IntegrityViolation
from budget_planner.core.model import PlanSnapshot, PlanTree
from budget_planner.core.tree.planning_tree import walk


def validate(snapshot: PlanSnapshot) -> list[IntegrityViolation]:
    """Check the planning-tree invariants.

    Every violation found is reported, never just the first. Nothing is
    repaired; an empty list means the snapshot is safe to roll up.
    """

    errors: list[IntegrityViolation] = []
    roster = snapshot.developers_by_id

    for node in walk(snapshot.tree):
        a = node.assignment

        if not node.is_leaf:
            if node.done:
                errors.append(
                    IntegrityViolation(
                        code="NonLeafHasDoneData",
                        message=f"{node.kind} node has {len(node.child_ids)} children and must not record done effort",
                        node_id=node.id,
                    )
                )
            if a is not None:
                errors.append(
                    IntegrityViolation(
                        code="NonLeafHasAssignment",
                        message=f"{node.kind} node has children and must not carry an assignment (dev, plan or strategy)",
                        node_id=node.id,
                    )
                )
            continue

        if a is None or a.planned_effort is None:
            errors.append(
                IntegrityViolation(
                    code="LeafMissingPlan",
                    message="leaf must have a planned effort",
                    node_id=node.id,
                )
            )

        if a is None or a.developer_id is None:
            errors.append(
                IntegrityViolation(
                    code="LeafMissingDeveloper",
                    message="leaf must be assigned to a developer",
                    node_id=node.id,
                )
            )
        elif a.developer_id not in roster:
            errors.append(
                IntegrityViolation(
                    code="DanglingDeveloperRef",
                    message=f"developer not in roster: {a.developer_id}",
                    node_id=node.id,
                )
            )

    return _sorted(errors)


def summarize_tree(tree: PlanTree) -> str:
    counts = Counter([n.kind for n in tree.nodes_by_id.values()])
    ordered_kinds: list[str] = ["budget_head", "prd", "task"]
    parts = [f"{k}={counts.get(k, 0)}" for k in ordered_kinds]
    leaf_count = sum(1 for n in tree.nodes_by_id.values() if n.is_leaf)
    return (
        f"OK: {len(tree.nodes_by_id)} nodes ("
        + ", ".join(parts)
        + f"), {leaf_count} leaves\nRoots: "
        + ", ".join(tree.roots)
    )


def _sorted(errors: Iterable[IntegrityViolation]) -> list[IntegrityViolation]:
    return sorted(
        list(errors),
        key=lambda e: (
            e.node_id or "",
            e.code,
        ),
    )

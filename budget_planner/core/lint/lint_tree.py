from __future__ import annotations

from budget_planner.core.errors import PlanValidationError
from budget_planner.core.model import PlanSnapshot
from budget_planner.core.tree.planning_tree import leaves, walk


# Planning lint rules. These flag plans that will compute, but probably not
# the way the author meant:
# - L_NON_TASK_LEAF: a budget head or PRD with nothing under it
# - L_TASK_HAS_CHILDREN: a task used as an aggregating node
# - L_KIND_ORDER: a node nested under a node of a lower kind (e.g. PRD under task)
# - L_MISSING_STRATEGY: an assigned, planned leaf with no phasing strategy
# - L_BACKFILL_NO_DEADLINE: backfill without a deadline fills from the horizon end
# - L_SMEAR_NO_RANGE: smear without a range spreads over the whole window
# - L_DONE_IN_FUTURE: actuals recorded at or after the current week
# - L_OVERSPENT: more done than planned
# - L_UNUSED_DEVELOPER: roster entry with no tasks

_KIND_LEVEL: dict[str, int] = {"budget_head": 0, "prd": 1, "task": 2}


def lint_tree(snapshot: PlanSnapshot) -> list[PlanValidationError]:
    """Lint a built snapshot.

    Lint runs *in addition to* `validate`. Its findings never stop a run.
    """

    tree = snapshot.tree
    now_week = snapshot.config.now_week
    errors: list[PlanValidationError] = []

    def add(code: str, message: str, node_id: str) -> None:
        errors.append(PlanValidationError(code=code, message=message, path=f"nodes[{node_id}]", node_id=node_id))

    for node in walk(tree):
        if node.is_leaf and node.kind != "task":
            add("L_NON_TASK_LEAF", f"{node.kind} has no children; only tasks should be leaves", node.id)
        if not node.is_leaf and node.kind == "task":
            add("L_TASK_HAS_CHILDREN", "task has children and only aggregates them", node.id)
        if node.parent_id is not None:
            parent_kind = tree.nodes_by_id[node.parent_id].kind
            if _KIND_LEVEL[node.kind] < _KIND_LEVEL[parent_kind]:
                add("L_KIND_ORDER", f"{node.kind} is nested under a {parent_kind}", node.id)

    used: set[str] = set()
    for leaf in leaves(tree):
        a = leaf.assignment
        if a is not None and a.developer_id is not None:
            used.add(a.developer_id)
            if a.planned_effort is not None and a.strategy is None:
                add("L_MISSING_STRATEGY", "assigned leaf has no phasing strategy", leaf.id)
        if a is not None and a.strategy == "backfill" and a.deadline is None:
            add("L_BACKFILL_NO_DEADLINE", "backfill without a deadline fills from the end of the plan", leaf.id)
        if a is not None and a.strategy == "smear" and a.smear_start is None and a.smear_end is None:
            add("L_SMEAR_NO_RANGE", "smear without smear_start/smear_end spreads over the whole window", leaf.id)

        future = sorted(w for w in leaf.done if w >= now_week)
        if future:
            add("L_DONE_IN_FUTURE", f"done recorded for week(s) {future} at or after now (week {now_week})", leaf.id)

        total_done = sum(leaf.done.values())
        if a is not None and a.planned_effort is not None and total_done > a.planned_effort:
            add("L_OVERSPENT", f"overspent by {total_done - a.planned_effort:g}", leaf.id)

    for did in snapshot.developers_by_id:
        if did not in used:
            errors.append(
                PlanValidationError(
                    code="L_UNUSED_DEVELOPER",
                    message=f"developer has no tasks: {did}",
                    path=f"developers[{did}]",
                )
            )

    return _sorted(errors)


def _sorted(errors: list[PlanValidationError]) -> list[PlanValidationError]:
    return sorted(errors, key=lambda e: (e.file or "", e.path or "", e.code))

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional

from budget_planner.core.errors import RollupRefused
from budget_planner.core.model import UNPHASED, PlanSnapshot, Week, WeeklyFigure, week_order
from budget_planner.core.tree.planning_tree import post_order
from budget_planner.core.validate.validate_tree import validate

logger = logging.getLogger(__name__)

# Figures below this are treated as zero when writing notes.
_EPS = 1e-9


@dataclass(frozen=True)
class NodeSummary:
    node_id: str
    planned: float
    done: float
    done_to_date: float
    left: float
    overflow: float
    notes: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RollupResult:
    figures: dict[tuple[str, Week], WeeklyFigure]
    summaries: dict[str, NodeSummary]

    def weeks_for(self, node_id: str) -> list[WeeklyFigure]:
        out = [f for (nid, _), f in self.figures.items() if nid == node_id]
        return sorted(out, key=lambda f: week_order(f.week))


def rollup(
    snapshot: PlanSnapshot,
    leaf_plan: Mapping[tuple[str, Week], float],
    previous: Optional[RollupResult] = None,
    dirty: Optional[frozenset[str]] = None,
) -> RollupResult:
    """Aggregate per-leaf weekly plan and actuals up to every ancestor.

    `leaf_plan` maps (leaf id, week) to planned effort, UNPHASED included.
    Done effort comes from the leaves' recorded actuals. A parent's figure for
    a week is the sum of its children's figures for that week. Slip is
    cumulative planned minus cumulative done, in week order from week 1.

    With `previous` and `dirty`, only dirty nodes are recomputed; every other
    node keeps its previous figures.

    Raises RollupRefused when the snapshot fails validation.
    """

    violations = validate(snapshot)
    if violations:
        logger.info("rollup refused: %d integrity violation(s)", len(violations))
        raise RollupRefused(violations)

    tree = snapshot.tree
    now_week = snapshot.config.now_week

    by_node_plan: dict[str, dict[Week, float]] = {}
    for (nid, week), v in leaf_plan.items():
        by_node_plan.setdefault(nid, {})
        by_node_plan[nid][week] = by_node_plan[nid].get(week, 0.0) + v

    reusable: dict[str, list[WeeklyFigure]] = {}
    if previous is not None and dirty is not None:
        for (pid, _), f in previous.figures.items():
            reusable.setdefault(pid, []).append(f)

    planned: dict[str, dict[Week, float]] = {}
    done: dict[str, dict[Week, float]] = {}
    figures: dict[tuple[str, Week], WeeklyFigure] = {}
    summaries: dict[str, NodeSummary] = {}
    recomputed = 0

    for nid in post_order(tree):
        node = tree.nodes_by_id[nid]

        if previous is not None and dirty is not None and nid not in dirty and nid in previous.summaries:
            # Clean node: reuse, but keep its per-week sums for the parent.
            planned[nid] = {}
            done[nid] = {}
            for f in reusable.get(nid, []):
                figures[(nid, f.week)] = f
                planned[nid][f.week] = f.planned
                done[nid][f.week] = f.done
            summaries[nid] = previous.summaries[nid]
            continue

        recomputed += 1
        if node.is_leaf:
            planned[nid] = dict(by_node_plan.get(nid, {}))
            done[nid] = {w: v for w, v in node.done.items()}
        else:
            p: dict[Week, float] = {}
            d: dict[Week, float] = {}
            for cid in node.child_ids:
                for w, v in planned[cid].items():
                    p[w] = p.get(w, 0.0) + v
                for w, v in done[cid].items():
                    d[w] = d.get(w, 0.0) + v
            planned[nid] = p
            done[nid] = d

        cum_plan = 0.0
        cum_done = 0.0
        for week in sorted(set(planned[nid]) | set(done[nid]), key=week_order):
            wp = planned[nid].get(week, 0.0)
            wd = done[nid].get(week, 0.0)
            cum_plan += wp
            cum_done += wd
            figures[(nid, week)] = WeeklyFigure(
                node_id=nid,
                week=week,
                planned=wp,
                done=wd,
                slip=cum_plan - cum_done,
            )

        summaries[nid] = _summarize(nid, planned[nid], done[nid], now_week)

    logger.debug("rollup: recomputed %d of %d nodes", recomputed, len(tree.nodes_by_id))
    return RollupResult(figures=figures, summaries=summaries)


def _summarize(nid: str, planned: dict[Week, float], done: dict[Week, float], now_week: int) -> NodeSummary:
    total_plan = sum(planned.values())
    total_done = sum(done.values())
    done_to_date = sum(v for w, v in done.items() if w != UNPHASED and int(w) < now_week)
    overflow = planned.get(UNPHASED, 0.0)

    notes: list[str] = []
    if total_done > total_plan + _EPS:
        notes.append(f"Overspent by {total_done - total_plan:g}")
    if overflow > _EPS:
        notes.append(f"{overflow:g} unallocated")

    return NodeSummary(
        node_id=nid,
        planned=total_plan,
        done=total_done,
        done_to_date=done_to_date,
        left=total_plan - total_done,
        overflow=overflow,
        notes=notes,
    )

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, Optional

from budget_planner.core.errors import InvalidInput, RollupRefused
from budget_planner.core.model import UNPHASED, PlanSnapshot, Week
from budget_planner.core.phasing.phase import PhaseResult, PhasingTask, phase, tasks_for_developer
from budget_planner.core.rollup.rollup import RollupResult, rollup
from budget_planner.core.tree.planning_tree import leaves, mark_dirty
from budget_planner.core.validate.validate_tree import validate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineResult:
    phases: dict[str, PhaseResult]
    errors: list[InvalidInput]
    leaf_plan: dict[tuple[str, Week], float]
    owner_of: dict[str, str]
    rollup: RollupResult


def run(snapshot: PlanSnapshot, workers: Optional[int] = None) -> EngineResult:
    """Validate, phase every developer, then roll up.

    Raises RollupRefused with the full violation list if the snapshot is
    invalid; nothing is phased in that case. A developer whose tasks cannot be
    phased is reported in `errors`; their planned effort is carried as
    UNPHASED so the roll-up totals stay whole.
    """

    _refuse_if_invalid(snapshot)
    tasks = _tasks_by_developer(snapshot)
    phases, errors = _phase_all(snapshot, tasks, workers)
    return _finish(snapshot, tasks, phases, errors, previous=None, dirty=None)


def recompute(
    snapshot: PlanSnapshot,
    previous: EngineResult,
    changed_ids: Iterable[str],
    changed_developers: Iterable[str] = (),
    workers: Optional[int] = None,
) -> EngineResult:
    """Incremental `run` after an edit.

    `changed_ids` must name every node whose data or children changed, and
    `changed_developers` every roster entry that changed. Only developers
    owning a changed leaf (before or after the edit) are re-phased, and only the
    changed nodes and their ancestors are re-rolled. The result equals a full
    `run` over the same snapshot.
    """

    _refuse_if_invalid(snapshot)
    tree = snapshot.tree
    changed = set(changed_ids)

    affected = set(changed_developers)
    for nid in changed:
        if nid in previous.owner_of:
            affected.add(previous.owner_of[nid])
        node = tree.nodes_by_id.get(nid)
        if node is not None and node.is_leaf and node.assignment and node.assignment.developer_id:
            affected.add(node.assignment.developer_id)

    tasks = _tasks_by_developer(snapshot)
    redo = {did: t for did, t in tasks.items() if did in affected}
    phases, errors = _phase_all(snapshot, redo, workers)

    for did in tasks:
        if did in affected:
            continue
        if did in previous.phases:
            phases[did] = previous.phases[did]
        else:
            errors.extend(e for e in previous.errors if e.path == f"developers[{did}]")

    touched = set(changed)
    for nid, did in previous.owner_of.items():
        if did in affected:
            touched.add(nid)
    for did in affected:
        touched.update(t.node_id for t in tasks.get(did, []))

    dirty = mark_dirty(tree, touched)
    logger.debug("recompute: %d developer(s) re-phased, %d dirty node(s)", len(redo), len(dirty))
    return _finish(snapshot, tasks, phases, errors, previous=previous.rollup, dirty=dirty)


def _refuse_if_invalid(snapshot: PlanSnapshot) -> None:
    violations = validate(snapshot)
    if violations:
        logger.info("run refused: %d integrity violation(s)", len(violations))
        raise RollupRefused(violations)


def _tasks_by_developer(snapshot: PlanSnapshot) -> dict[str, list[PhasingTask]]:
    out: dict[str, list[PhasingTask]] = {}
    for did in snapshot.developers_by_id:
        tasks = tasks_for_developer(snapshot.tree, did)
        if tasks:
            out[did] = tasks
    return out


def _phase_all(
    snapshot: PlanSnapshot,
    tasks: dict[str, list[PhasingTask]],
    workers: Optional[int],
) -> tuple[dict[str, PhaseResult], list[InvalidInput]]:
    workers = max(1, workers or snapshot.config.workers)
    phases: dict[str, PhaseResult] = {}
    errors: list[InvalidInput] = []

    def one(did: str) -> PhaseResult:
        return phase(snapshot.developers_by_id[did], tasks[did], snapshot.config)

    ids = list(tasks)
    if workers == 1 or len(ids) <= 1:
        outcomes = []
        for did in ids:
            try:
                outcomes.append((did, one(did), None))
            except InvalidInput as e:
                outcomes.append((did, None, e))
    else:
        with ThreadPoolExecutor(max_workers=workers) as ex:
            futures = {did: ex.submit(one, did) for did in ids}
            outcomes = []
            for did in ids:
                try:
                    outcomes.append((did, futures[did].result(), None))
                except InvalidInput as e:
                    outcomes.append((did, None, e))

    for did, result, err in outcomes:
        if err is not None:
            logger.warning("phasing failed for %s: %s", did, err)
            errors.append(
                InvalidInput(
                    code=err.code,
                    message=err.message,
                    file=err.file,
                    path=f"developers[{did}]",
                    node_id=err.node_id,
                )
            )
        else:
            assert result is not None
            phases[did] = result
    return phases, errors


def _finish(
    snapshot: PlanSnapshot,
    tasks: dict[str, list[PhasingTask]],
    phases: dict[str, PhaseResult],
    errors: list[InvalidInput],
    previous: Optional[RollupResult],
    dirty: Optional[frozenset[str]],
) -> EngineResult:
    leaf_plan: dict[tuple[str, Week], float] = {}
    owner_of: dict[str, str] = {}

    for did, dev_tasks in tasks.items():
        for t in dev_tasks:
            owner_of[t.node_id] = did
        if did in phases:
            leaf_plan.update(phases[did].allocations)
            continue
        # Phasing failed for this developer: the whole plan stays visible, unrounded.
        for t in dev_tasks:
            effort = t.assignment.planned_effort if t.assignment else None
            if effort:
                leaf_plan[(t.node_id, UNPHASED)] = effort

    result = rollup(snapshot, leaf_plan, previous=previous, dirty=dirty)
    logger.debug(
        "run: %d leaves, %d developer(s) phased, %d failed",
        sum(1 for _ in leaves(snapshot.tree)),
        len(phases),
        len(errors),
    )
    return EngineResult(
        phases=phases,
        errors=sorted(errors, key=lambda e: (e.path or "", e.node_id or "")),
        leaf_plan=leaf_plan,
        owner_of=owner_of,
        rollup=result,
    )

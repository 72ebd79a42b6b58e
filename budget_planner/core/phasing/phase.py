from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from budget_planner.core.calendar.capacity import (
    active_weeks,
    capacity_row,
    from_quanta,
    is_whole_quanta,
    to_quanta,
)
from budget_planner.core.errors import InvalidInput
from budget_planner.core.model import (
    UNPHASED,
    Assignment,
    Developer,
    EngineConfig,
    PlanTree,
    Week,
)
from budget_planner.core.phasing import strategies
from budget_planner.core.tree.planning_tree import leaves

logger = logging.getLogger(__name__)


# Order among tasks that share a serial rank. Management never competes: it is
# reserved before anything else. smear_backfill ranks with smear.
PRECEDENCE: dict[str, int] = {
    "frontfill": 0,
    "backfill": 1,
    "smear": 2,
    "smear_backfill": 2,
}


@dataclass(frozen=True)
class PhasingTask:
    node_id: str
    assignment: Optional[Assignment]
    rank: int
    done: dict[int, float] = field(default_factory=dict)


@dataclass(frozen=True)
class PhaseResult:
    developer_id: str
    allocations: dict[tuple[str, Week], float]
    remaining: dict[int, float]
    overflow: dict[str, float]

    def weeks_for(self, task_id: str) -> dict[Week, float]:
        return {w: v for (t, w), v in self.allocations.items() if t == task_id}

    def total(self, task_id: str) -> float:
        return sum(self.weeks_for(task_id).values())


def tasks_for_developer(tree: PlanTree, developer_id: str) -> list[PhasingTask]:
    """The developer's leaves in serial order (depth-first, siblings in order)."""
    out: list[PhasingTask] = []
    for rank, node in enumerate(leaves(tree)):
        a = node.assignment
        if a is not None and a.developer_id == developer_id:
            out.append(PhasingTask(node_id=node.id, assignment=a, rank=rank, done=dict(node.done)))
    return out


def phase(
    developer: Developer,
    ordered_tasks: Sequence[PhasingTask],
    config: Optional[EngineConfig] = None,
) -> PhaseResult:
    """Serially allocate a developer's capacity to their tasks.

    Management reservations are taken first for every active week. Then each
    task takes what it needs from the capacity left by the tasks before it.
    Tasks sharing a rank go Frontfill, then Backfill, then Smear. Effort that
    cannot be placed inside a task's window is reported under UNPHASED.

    Recorded done effort is committed first: it uses up the developer's
    capacity in the week it was done and counts against the task's plan, so
    only the rest of the plan is phased. The allocations of a task always sum
    to its plan.

    Raises InvalidInput for a bad developer, an empty task list or a task that
    cannot be phased (no plan, no strategy, someone else's task, effort that
    is not a whole number of quanta).
    """

    config = config or EngineConfig()
    _check_inputs(developer, ordered_tasks, config)

    free = capacity_row(developer, config)
    for task in ordered_tasks:
        for w, v in task.done.items():
            if w in free:
                free[w] = max(0, free[w] - to_quanta(v, config))

    placed_q: dict[tuple[str, Week], int] = {}
    overflow_q: dict[str, int] = {}

    ordered = sorted(
        enumerate(ordered_tasks),
        key=lambda it: (
            0 if _strategy(it[1]) == "management" else 1,
            it[1].rank,
            PRECEDENCE.get(_strategy(it[1]), 0),
            it[0],
        ),
    )

    for _, task in ordered:
        a = task.assignment
        assert a is not None and a.planned_effort is not None
        committed, quanta = _commit_done(task.done, to_quanta(a.planned_effort, config), config)
        for w, q in committed.items():
            placed_q[(task.node_id, w)] = q
        weeks = _window(developer, a, config)

        if a.strategy == "management":
            per_week = to_quanta(a.per_week, config) if a.per_week is not None else None
            placed, left = strategies.management(free, weeks, quanta, per_week)
        elif a.strategy == "frontfill":
            placed, left = strategies.frontfill(free, weeks, quanta)
        elif a.strategy == "backfill":
            placed, left = strategies.backfill(free, weeks, quanta)
        elif a.strategy == "smear":
            placed, left = strategies.smear(free, _smear_weeks(a, weeks), quanta)
        else:
            placed, left = strategies.smear_backfill(free, weeks, quanta)

        for w, q in placed.items():
            placed_q[(task.node_id, w)] = placed_q.get((task.node_id, w), 0) + q
        if left:
            overflow_q[task.node_id] = left
            placed_q[(task.node_id, UNPHASED)] = left
            logger.warning(
                "%s: %s of %s unphased for %s (%s)",
                developer.id,
                from_quanta(left, config),
                a.planned_effort,
                task.node_id,
                a.strategy,
            )
        else:
            logger.debug("%s: phased %s over %d weeks", task.node_id, a.planned_effort, len(placed))

    return PhaseResult(
        developer_id=developer.id,
        allocations={k: from_quanta(v, config) for k, v in placed_q.items()},
        remaining={w: from_quanta(q, config) for w, q in sorted(free.items())},
        overflow={k: from_quanta(v, config) for k, v in overflow_q.items()},
    )


def _commit_done(done: dict[int, float], quanta: int, config: EngineConfig) -> tuple[dict[int, int], int]:
    """Done effort, in week order, counted against the plan. Returns (committed, left to phase)."""
    committed: dict[int, int] = {}
    left = quanta
    for w in sorted(done):
        take = min(to_quanta(done[w], config), left)
        if take:
            committed[w] = take
            left -= take
    return committed, left


def _strategy(task: PhasingTask) -> str:
    return task.assignment.strategy if task.assignment and task.assignment.strategy else ""


def _window(developer: Developer, a: Assignment, config: EngineConfig) -> list[int]:
    lo = a.earliest_start or 1
    hi = a.deadline if a.deadline is not None else config.horizon_weeks
    return [w for w in active_weeks(developer, config) if lo <= w <= hi]


def _smear_weeks(a: Assignment, window: list[int]) -> list[int]:
    lo = a.smear_start if a.smear_start is not None else 1
    hi = a.smear_end if a.smear_end is not None else max(window, default=0)
    return [w for w in window if lo <= w <= hi]


def _check_inputs(developer: Developer, tasks: Sequence[PhasingTask], config: EngineConfig) -> None:
    if not isinstance(developer, Developer):
        raise InvalidInput(code="E_INVALID_INPUT", message="developer must be a Developer record")
    if developer.weekly_capacity < 0:
        raise InvalidInput(
            code="E_INVALID_INPUT",
            message=f"weekly_capacity must not be negative: {developer.weekly_capacity}",
            path=f"developers[{developer.id}]",
        )
    if not tasks:
        raise InvalidInput(
            code="E_INVALID_INPUT",
            message=f"no tasks to phase for {developer.id}",
            path=f"developers[{developer.id}]",
        )

    seen: set[str] = set()
    for task in tasks:
        a = task.assignment
        if task.node_id in seen:
            raise InvalidInput(code="E_INVALID_INPUT", message="task listed twice", node_id=task.node_id)
        seen.add(task.node_id)

        if a is None:
            raise InvalidInput(code="E_INVALID_INPUT", message="task has no assignment", node_id=task.node_id)
        if a.developer_id != developer.id:
            raise InvalidInput(
                code="E_INVALID_INPUT",
                message=f"task is assigned to {a.developer_id}, not {developer.id}",
                node_id=task.node_id,
            )
        if a.planned_effort is None or a.planned_effort < 0:
            raise InvalidInput(code="E_INVALID_INPUT", message="task has no planned effort", node_id=task.node_id)
        if a.strategy is None:
            raise InvalidInput(code="E_INVALID_INPUT", message="assignment has no strategy", node_id=task.node_id)
        if a.strategy not in PRECEDENCE and a.strategy != "management":
            raise InvalidInput(
                code="E_INVALID_INPUT",
                message=f"unknown strategy: {a.strategy}",
                node_id=task.node_id,
            )

        step = 1 / config.quanta_per_unit
        for label, v in _efforts(task):
            if not is_whole_quanta(v, config):
                raise InvalidInput(
                    code="E_INVALID_INPUT",
                    message=f"{label} {v:g} is not a multiple of {step:g}",
                    node_id=task.node_id,
                )


def _efforts(task: PhasingTask) -> list[tuple[str, float]]:
    a = task.assignment
    assert a is not None and a.planned_effort is not None
    out = [("plan", a.planned_effort)]
    if a.per_week is not None:
        out.append(("per_week", a.per_week))
    out.extend((f"done in week {w}", v) for w, v in sorted(task.done.items()))
    return out

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Literal, Optional, Union


NodeKind = Literal["budget_head", "prd", "task"]
Strategy = Literal["management", "smear", "frontfill", "backfill", "smear_backfill"]
OverheadKind = Literal["bank_holiday", "ramp_up", "hackathon", "eng_conf", "other"]
ViolationKind = Literal[
    "LeafMissingPlan",
    "LeafMissingDeveloper",
    "NonLeafHasDoneData",
    "NonLeafHasAssignment",
    "DanglingDeveloperRef",
]

# Effort that could not be placed in any week is reported against this marker.
UNPHASED = "unphased"

Week = Union[int, str]


def week_order(week: Week) -> tuple[int, int]:
    """Sort key placing integer weeks in order and UNPHASED after all of them."""
    if week == UNPHASED:
        return (1, 0)
    return (0, int(week))


@dataclass(frozen=True)
class EngineConfig:
    horizon_weeks: int = 52
    now_week: int = 1
    start_date: Optional[date] = None
    quanta_per_unit: int = 4
    workers: int = 1


@dataclass(frozen=True)
class Overhead:
    kind: OverheadKind
    first_week: int
    last_week: int
    effort: float

    def covers(self, week: int) -> bool:
        return self.first_week <= week <= self.last_week


@dataclass(frozen=True)
class Developer:
    id: str
    weekly_capacity: float
    overheads: tuple[Overhead, ...] = ()
    start_week: int = 1
    end_week: Optional[int] = None  # None: until the end of the horizon


@dataclass(frozen=True)
class Assignment:
    developer_id: Optional[str] = None
    planned_effort: Optional[float] = None
    strategy: Optional[Strategy] = None

    earliest_start: Optional[int] = None
    deadline: Optional[int] = None
    smear_start: Optional[int] = None
    smear_end: Optional[int] = None
    per_week: Optional[float] = None


@dataclass(frozen=True)
class Node:
    id: str
    kind: NodeKind
    title: str
    parent_id: Optional[str] = None
    child_ids: tuple[str, ...] = ()

    assignment: Optional[Assignment] = None
    done: dict[int, float] = field(default_factory=dict)

    @property
    def is_leaf(self) -> bool:
        return not self.child_ids


@dataclass(frozen=True)
class PlanTree:
    nodes_by_id: dict[str, Node]
    roots: tuple[str, ...]


@dataclass(frozen=True)
class PlanSnapshot:
    """Everything one engine run needs. Never mutated once built."""

    schema_version: str
    tree: PlanTree
    developers_by_id: dict[str, Developer]
    config: EngineConfig = field(default_factory=EngineConfig)


@dataclass(frozen=True)
class WeeklyFigure:
    node_id: str
    week: Week
    planned: float
    done: float
    slip: float  # cumulative planned - cumulative done; negative is gain

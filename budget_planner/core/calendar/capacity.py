from __future__ import annotations

import math
from datetime import date, timedelta
from typing import Optional

from budget_planner.core.model import Developer, EngineConfig

# Float noise allowed when converting effort to quanta.
_QUANTA_EPS = 1e-6


def net_capacity(developer: Developer, week: int) -> float:
    """Effort a developer can give in `week` after overheads.

    Overheads of different kinds add up. Overheads of the same kind covering the
    same week do not: only the largest of that kind is deducted. Weeks outside
    the developer's active range have no capacity. Never negative.
    """

    if week < developer.start_week:
        return 0.0
    if developer.end_week is not None and week > developer.end_week:
        return 0.0

    by_kind: dict[str, float] = {}
    for oh in developer.overheads:
        if not oh.covers(week):
            continue
        by_kind[oh.kind] = max(by_kind.get(oh.kind, 0.0), oh.effort)

    return max(0.0, developer.weekly_capacity - sum(by_kind.values()))


def active_weeks(developer: Developer, config: EngineConfig) -> range:
    first = max(developer.start_week, config.now_week, 1)
    last = config.horizon_weeks
    if developer.end_week is not None:
        last = min(last, developer.end_week)
    return range(first, last + 1)


def capacity_row(developer: Developer, config: EngineConfig) -> dict[int, int]:
    """Per-week capacity in whole quanta for every week of the horizon.

    A fraction of a quantum is not usable capacity and is rounded down.
    """
    return {
        week: math.floor(net_capacity(developer, week) * config.quanta_per_unit + _QUANTA_EPS)
        for week in range(1, config.horizon_weeks + 1)
    }


def is_whole_quanta(effort: float, config: EngineConfig) -> bool:
    scaled = effort * config.quanta_per_unit
    return abs(scaled - round(scaled)) < _QUANTA_EPS


def to_quanta(effort: float, config: EngineConfig) -> int:
    return int(round(effort * config.quanta_per_unit))


def from_quanta(quanta: int, config: EngineConfig) -> float:
    return quanta / config.quanta_per_unit


def week_start(week: int, config: EngineConfig) -> Optional[date]:
    """Calendar date of the first day of `week`, when the plan has a start date."""
    if config.start_date is None:
        return None
    return config.start_date + timedelta(weeks=week - 1)


def week_label(week: int, config: EngineConfig) -> str:
    start = week_start(week, config)
    if start is None:
        return f"w{week}"
    return start.strftime("%d/%m/%y")

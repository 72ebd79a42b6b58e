"""Week-by-week placement rules.

Each rule takes the developer's free quanta per week (mutated in place), the
weeks the task may use in ascending order, and the quanta to place. It returns
what it placed per week and how many quanta it could not place.
"""

from __future__ import annotations

from typing import Optional

Placement = tuple[dict[int, int], int]

# Composite split: this percentage is smeared, the rest backfilled.
SMEAR_BACKFILL_SMEAR_PCT = 20


def frontfill(free: dict[int, int], weeks: list[int], quanta: int) -> Placement:
    placed: dict[int, int] = {}
    left = quanta
    for w in weeks:
        if left == 0:
            break
        take = min(free.get(w, 0), left)
        if take:
            free[w] -= take
            placed[w] = take
            left -= take
    return placed, left


def backfill(free: dict[int, int], weeks: list[int], quanta: int) -> Placement:
    placed, left = frontfill(free, list(reversed(weeks)), quanta)
    return dict(sorted(placed.items())), left


def smear(free: dict[int, int], weeks: list[int], quanta: int) -> Placement:
    """Even spread; a week that cannot meet its target pushes the shortfall onward."""
    placed: dict[int, int] = {}
    n = len(weeks)
    if n == 0:
        return placed, quanta

    carry = 0
    for i, w in enumerate(weeks):
        # Integer split of the plan: the targets sum to exactly `quanta`.
        target = quanta * (i + 1) // n - quanta * i // n
        want = target + carry
        take = min(free.get(w, 0), want)
        if take:
            free[w] -= take
            placed[w] = take
        carry = want - take
    return placed, carry


def management(free: dict[int, int], weeks: list[int], quanta: int, per_week: Optional[int]) -> Placement:
    """Standing weekly reservation, capped by what is left of the plan."""
    placed: dict[int, int] = {}
    if not weeks:
        return placed, quanta
    if per_week is None:
        per_week = -(-quanta // len(weeks))

    left = quanta
    for w in weeks:
        if left == 0:
            break
        take = min(free.get(w, 0), per_week, left)
        if take:
            free[w] -= take
            placed[w] = take
            left -= take
    return placed, left


def smear_backfill(free: dict[int, int], weeks: list[int], quanta: int) -> Placement:
    """Smear a fifth of the plan, then backfill the rest plus any smear shortfall."""
    smeared = quanta * SMEAR_BACKFILL_SMEAR_PCT // 100
    placed, short = smear(free, weeks, smeared)
    back, left = backfill(free, weeks, quanta - smeared + short)
    for w, q in back.items():
        placed[w] = placed.get(w, 0) + q
    return dict(sorted(placed.items())), left

from datetime import date

from budget_planner.core.calendar.capacity import (
    active_weeks,
    capacity_row,
    net_capacity,
    week_label,
    week_start,
)
from budget_planner.core.model import Developer, EngineConfig, Overhead


def _dev(*overheads, capacity=10.0, **kw):
    return Developer(id="d", weekly_capacity=capacity, overheads=tuple(overheads), **kw)


def test_no_overheads_is_nominal():
    assert net_capacity(_dev(), 1) == 10.0


def test_different_kinds_add_up():
    d = _dev(
        Overhead("bank_holiday", 3, 3, 2.0),
        Overhead("hackathon", 2, 4, 3.0),
    )
    assert net_capacity(d, 2) == 7.0
    assert net_capacity(d, 3) == 5.0
    assert net_capacity(d, 5) == 10.0


def test_same_kind_takes_the_largest():
    d = _dev(
        Overhead("ramp_up", 1, 4, 4.0),
        Overhead("ramp_up", 3, 3, 6.0),
        Overhead("ramp_up", 3, 5, 1.0),
    )
    assert net_capacity(d, 1) == 6.0
    assert net_capacity(d, 3) == 4.0
    assert net_capacity(d, 5) == 9.0


def test_never_negative():
    d = _dev(
        Overhead("bank_holiday", 1, 1, 8.0),
        Overhead("eng_conf", 1, 1, 8.0),
        Overhead("other", 1, 1, 8.0),
    )
    assert net_capacity(d, 1) == 0.0


def test_outside_active_range_is_zero():
    d = _dev(start_week=3, end_week=5)
    assert [net_capacity(d, w) for w in range(1, 8)] == [0.0, 0.0, 10.0, 10.0, 10.0, 0.0, 0.0]


def test_adding_overheads_never_raises_capacity():
    candidates = [
        Overhead("bank_holiday", 1, 2, 3.0),
        Overhead("bank_holiday", 2, 2, 1.0),
        Overhead("ramp_up", 1, 6, 2.5),
        Overhead("hackathon", 2, 3, 10.0),
        Overhead("eng_conf", 4, 4, 4.0),
        Overhead("other", 1, 6, 0.5),
        Overhead("ramp_up", 2, 5, 7.0),
    ]
    for week in range(1, 7):
        prev = net_capacity(_dev(), week)
        for i in range(1, len(candidates) + 1):
            cur = net_capacity(_dev(*candidates[:i]), week)
            assert 0.0 <= cur <= prev
            prev = cur


def test_capacity_row_in_quanta():
    cfg = EngineConfig(horizon_weeks=3, quanta_per_unit=4)
    d = _dev(Overhead("bank_holiday", 2, 2, 2.5), capacity=5.0)
    assert capacity_row(d, cfg) == {1: 20, 2: 10, 3: 20}


def test_active_weeks_starts_at_now():
    cfg = EngineConfig(horizon_weeks=10, now_week=4)
    assert list(active_weeks(_dev(start_week=2, end_week=6), cfg)) == [4, 5, 6]
    assert list(active_weeks(_dev(), cfg)) == list(range(4, 11))


def test_week_labels():
    cfg = EngineConfig(start_date=date(2026, 1, 5))
    assert week_start(3, cfg) == date(2026, 1, 19)
    assert week_label(1, cfg) == "05/01/26"
    assert week_label(2, EngineConfig()) == "w2"

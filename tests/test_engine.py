import copy

import pytest

from budget_planner.core import engine
from budget_planner.core.config.engine_config import build_config, load_and_merge, merged_settings
from budget_planner.core.errors import RollupRefused
from budget_planner.core.io.load_plan import load_plan, plan_settings
from budget_planner.core.io.snapshot import build_snapshot
from budget_planner.core.model import UNPHASED


def _basic():
    plan = load_plan("examples/basic-plan.yaml")
    snap, errors = build_snapshot(plan, load_and_merge(None, plan_settings(plan)))
    assert errors == []
    return snap


def _from_doc(doc, **settings):
    snap, errors = build_snapshot(doc, build_config(merged_settings(settings)))
    assert errors == []
    return snap


DOC = {
    "schema_version": "0.1.0",
    "developers": [
        {"id": "alice", "weekly_capacity": 5},
        {"id": "bob", "weekly_capacity": 4},
        {"id": "carol", "weekly_capacity": 3},
    ],
    "nodes": [
        {"id": "BH", "kind": "budget_head"},
        {"id": "PRD-A", "kind": "prd", "parent": "BH"},
        {"id": "T-A1", "kind": "task", "parent": "PRD-A", "dev": "alice", "plan": 12, "strategy": "frontfill"},
        {"id": "T-A2", "kind": "task", "parent": "PRD-A", "dev": "bob", "plan": 6, "strategy": "backfill", "deadline": 6},
        {"id": "PRD-B", "kind": "prd", "parent": "BH"},
        {"id": "T-B1", "kind": "task", "parent": "PRD-B", "dev": "alice", "plan": 7, "strategy": "smear", "smear_start": 2, "smear_end": 5},
        {"id": "T-B2", "kind": "task", "parent": "PRD-B", "dev": "carol", "plan": 5, "strategy": "frontfill"},
    ],
}


def test_run_basic_plan():
    snap = _basic()
    res = engine.run(snap)

    assert res.errors == []
    assert all(not p.overflow for p in res.phases.values())
    assert res.rollup.summaries["BH-PLAT"].planned == 38.0
    assert res.rollup.summaries["BH-RES"].planned == 4.0
    assert res.rollup.summaries["T-SYNC-DESIGN"].done == 5.0
    assert res.owner_of["T-OPS-MGMT"] == "carol"


def test_run_conserves_every_leaf_plan():
    snap = _basic()
    res = engine.run(snap)
    for nid, node in snap.tree.nodes_by_id.items():
        if not node.is_leaf:
            continue
        placed = sum(v for (leaf, _), v in res.leaf_plan.items() if leaf == nid)
        assert placed == node.assignment.planned_effort


def test_run_only_done_effort_is_planned_before_now_week():
    snap = _basic()
    res = engine.run(snap)
    for (nid, w), v in res.leaf_plan.items():
        if w != UNPHASED and w < snap.config.now_week:
            assert v == snap.tree.nodes_by_id[nid].done[w]
    assert res.phases["alice"].weeks_for("T-SYNC-DESIGN") == {1: 2.0, 2: 3.0, 3: 1.0}


def test_done_effort_is_not_phased_again():
    doc = {
        "schema_version": "0.1.0",
        "developers": [{"id": "dana", "weekly_capacity": 2}],
        "nodes": [
            {"id": "BH", "kind": "budget_head"},
            {"id": "T-1", "kind": "task", "parent": "BH", "dev": "dana", "plan": 10, "strategy": "frontfill", "done": {1: 2, 2: 2}},
        ],
    }
    snap = _from_doc(doc, horizon_weeks=10, now_week=3)
    res = engine.run(snap)

    figs = res.rollup.weeks_for("T-1")
    assert [f.week for f in figs] == [1, 2, 3, 4, 5]
    assert [f.slip for f in figs] == [0.0, 0.0, 2.0, 4.0, 6.0]
    s = res.rollup.summaries["T-1"]
    assert s.planned == 10.0
    assert s.left == 6.0
    assert s.left == sum(f.planned for f in figs if f.week >= 3)


def test_run_refuses_before_phasing(monkeypatch):
    doc = copy.deepcopy(DOC)
    doc["nodes"][3]["dev"] = "zed"
    snap = _from_doc(doc)

    def boom(*args, **kwargs):
        raise AssertionError("phase must not run on an invalid tree")

    monkeypatch.setattr(engine, "phase", boom)
    with pytest.raises(RollupRefused) as ei:
        engine.run(snap)
    assert [(v.node_id, v.code) for v in ei.value.violations] == [("T-A2", "DanglingDeveloperRef")]


def test_one_bad_developer_does_not_stop_the_others():
    doc = copy.deepcopy(DOC)
    del doc["nodes"][3]["strategy"]
    snap = _from_doc(doc)

    res = engine.run(snap)
    assert [(e.path, e.node_id) for e in res.errors] == [("developers[bob]", "T-A2")]
    assert "bob" not in res.phases
    assert res.leaf_plan[("T-A2", UNPHASED)] == 6.0
    assert res.rollup.summaries["PRD-A"].overflow == 6.0
    assert res.rollup.summaries["BH"].planned == 30.0
    assert set(res.phases) == {"alice", "carol"}


def test_workers_do_not_change_the_result():
    snap = _from_doc(DOC, horizon_weeks=10)
    one = engine.run(snap, workers=1)
    many = engine.run(snap, workers=3)
    assert one.leaf_plan == many.leaf_plan
    assert one.phases == many.phases
    assert one.rollup.figures == many.rollup.figures


def test_overflow_rolls_up_as_unphased():
    doc = copy.deepcopy(DOC)
    doc["nodes"][2]["plan"] = 32
    snap = _from_doc(doc, horizon_weeks=6)
    res = engine.run(snap)
    # alice has 30 over six weeks; T-A1 takes all of it first
    assert res.phases["alice"].overflow == {"T-A1": 2.0, "T-B1": 7.0}
    assert res.rollup.summaries["BH"].overflow == sum(
        v for (_, w), v in res.leaf_plan.items() if w == UNPHASED
    )
    assert res.rollup.weeks_for("BH")[-1].week == UNPHASED


def test_recompute_matches_full_run():
    before = _from_doc(DOC, horizon_weeks=10)
    first = engine.run(before)

    doc = copy.deepcopy(DOC)
    doc["nodes"][5]["plan"] = 9
    after = _from_doc(doc, horizon_weeks=10)

    inc = engine.recompute(after, first, changed_ids=["T-B1"])
    full = engine.run(after)
    assert inc.leaf_plan == full.leaf_plan
    assert inc.rollup.figures == full.rollup.figures
    assert inc.rollup.summaries == full.rollup.summaries
    # bob and carol own nothing that changed
    assert inc.phases["bob"] is first.phases["bob"]
    assert inc.phases["carol"] is first.phases["carol"]
    assert inc.phases["alice"] is not first.phases["alice"]


def test_recompute_after_reassignment():
    before = _from_doc(DOC, horizon_weeks=10)
    first = engine.run(before)

    doc = copy.deepcopy(DOC)
    doc["nodes"][6]["dev"] = "bob"
    after = _from_doc(doc, horizon_weeks=10)

    inc = engine.recompute(after, first, changed_ids=["T-B2"])
    full = engine.run(after)
    assert inc.leaf_plan == full.leaf_plan
    assert inc.rollup.figures == full.rollup.figures
    assert "carol" not in inc.phases
    assert inc.owner_of["T-B2"] == "bob"

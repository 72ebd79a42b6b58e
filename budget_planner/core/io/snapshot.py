from __future__ import annotations

from typing import Any, Iterable, Optional, cast

from budget_planner.core.calendar.capacity import is_whole_quanta
from budget_planner.core.errors import PlanValidationError
from budget_planner.core.model import (
    Assignment,
    Developer,
    EngineConfig,
    Node,
    NodeKind,
    Overhead,
    OverheadKind,
    PlanSnapshot,
    PlanTree,
    Strategy,
)


ALLOWED_NODE_KINDS: set[str] = {"budget_head", "prd", "task"}
ALLOWED_STRATEGIES: set[str] = {"management", "smear", "frontfill", "backfill", "smear_backfill"}
ALLOWED_OVERHEAD_KINDS: set[str] = {"bank_holiday", "ramp_up", "hackathon", "eng_conf", "other"}

_WEEK_FIELDS = ("earliest_start", "deadline", "smear_start", "smear_end")


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _is_week(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def build_snapshot(
    plan: dict[str, Any], config: Optional[EngineConfig] = None
) -> tuple[Optional[PlanSnapshot], list[PlanValidationError]]:
    """Turn a loaded plan document into an immutable snapshot.

    Only checks shape (types, enums, ids, parent links, week ranges). Tree
    invariants such as a leaf without a developer are left for `validate`,
    so that they are all reported together.

    Returns (snapshot, errors). Snapshot is None when errors exist.
    """

    config = config or EngineConfig()
    file = cast(Optional[str], plan.get("__file__"))
    b = _Builder(file, config)

    schema_version = plan.get("schema_version")
    if not isinstance(schema_version, str) or not schema_version.strip():
        b.err("E_REQUIRED_FIELD", "schema_version is required and must be a non-empty string", "schema_version")

    developers = b.developers(plan.get("developers"))

    nodes = plan.get("nodes")
    if not isinstance(nodes, list):
        b.err("E_REQUIRED_FIELD", "nodes is required and must be an array", "nodes")
        return None, _sorted(b.errors)

    tree = b.tree(nodes)

    if b.errors or tree is None:
        return None, _sorted(b.errors)

    snapshot = PlanSnapshot(
        schema_version=cast(str, schema_version),
        tree=tree,
        developers_by_id=developers,
        config=config,
    )
    return snapshot, []


class _Builder:
    def __init__(self, file: Optional[str], config: EngineConfig) -> None:
        self.file = file
        self.config = config
        self.errors: list[PlanValidationError] = []

    def err(self, code: str, message: str, path: str) -> None:
        self.errors.append(PlanValidationError(code=code, message=message, file=self.file, path=path))

    def quanta_ok(self, v: float, path: str) -> bool:
        if is_whole_quanta(v, self.config):
            return True
        step = 1 / self.config.quanta_per_unit
        self.err("E_INVALID_TYPE", f"effort must be a multiple of {step:g}", path)
        return False

    def week_ok(self, v: Any, path: str) -> bool:
        if not _is_week(v):
            self.err("E_INVALID_TYPE", "week must be an integer", path)
            return False
        if not 1 <= v <= self.config.horizon_weeks:
            self.err(
                "E_WEEK_OUT_OF_RANGE",
                f"week {v} is outside the plan (1..{self.config.horizon_weeks})",
                path,
            )
            return False
        return True

    # Developers

    def developers(self, raw_devs: Any) -> dict[str, Developer]:
        out: dict[str, Developer] = {}
        if raw_devs is None:
            return out
        if not isinstance(raw_devs, list):
            self.err("E_INVALID_TYPE", "developers must be an array", "developers")
            return out

        for i, raw in enumerate(raw_devs):
            dpath = f"developers[{i}]"
            if not isinstance(raw, dict):
                self.err("E_INVALID_TYPE", "developer must be an object", dpath)
                continue

            did = raw.get("id")
            if not isinstance(did, str) or not did.strip():
                self.err("E_REQUIRED_FIELD", "id is required and must be a non-empty string", f"{dpath}.id")
                continue
            if did in out:
                self.err("E_DUPLICATE_ID", f"duplicate developer id: {did}", f"{dpath}.id")
                continue

            capacity = raw.get("weekly_capacity")
            if not _is_number(capacity) or capacity < 0:
                self.err(
                    "E_REQUIRED_FIELD",
                    "weekly_capacity is required and must be a non-negative number",
                    f"{dpath}.weekly_capacity",
                )
                continue

            start_week = raw.get("start_week", 1)
            end_week = raw.get("end_week")
            ok = self.week_ok(start_week, f"{dpath}.start_week")
            if end_week is not None:
                ok = self.week_ok(end_week, f"{dpath}.end_week") and ok
                if ok and end_week < start_week:
                    self.err("E_INVALID_RANGE", "end_week must not be before start_week", f"{dpath}.end_week")
                    ok = False

            overheads = self.overheads(raw.get("overheads"), dpath)
            if not ok or overheads is None:
                continue

            out[did] = Developer(
                id=did,
                weekly_capacity=float(capacity),
                overheads=tuple(overheads),
                start_week=start_week,
                end_week=end_week,
            )
        return out

    def overheads(self, raw_ohs: Any, dpath: str) -> Optional[list[Overhead]]:
        if raw_ohs is None:
            return []
        if not isinstance(raw_ohs, list):
            self.err("E_INVALID_TYPE", "overheads must be an array", f"{dpath}.overheads")
            return None

        out: list[Overhead] = []
        failed = False
        for j, raw in enumerate(raw_ohs):
            opath = f"{dpath}.overheads[{j}]"
            if not isinstance(raw, dict):
                self.err("E_INVALID_TYPE", "overhead must be an object", opath)
                failed = True
                continue

            kind = raw.get("kind")
            if not isinstance(kind, str) or kind not in ALLOWED_OVERHEAD_KINDS:
                self.err("E_INVALID_ENUM", f"kind must be one of {sorted(ALLOWED_OVERHEAD_KINDS)}", f"{opath}.kind")
                failed = True
                continue

            first = raw.get("first_week", raw.get("week"))
            last = raw.get("last_week", first)
            if not (self.week_ok(first, f"{opath}.first_week") and self.week_ok(last, f"{opath}.last_week")):
                failed = True
                continue
            if last < first:
                self.err("E_INVALID_RANGE", "last_week must not be before first_week", f"{opath}.last_week")
                failed = True
                continue

            effort = raw.get("effort")
            if not _is_number(effort) or effort < 0:
                self.err("E_REQUIRED_FIELD", "effort is required and must be a non-negative number", f"{opath}.effort")
                failed = True
                continue

            out.append(Overhead(kind=cast(OverheadKind, kind), first_week=first, last_week=last, effort=float(effort)))

        return None if failed else out

    # Nodes

    def tree(self, nodes: list[Any]) -> Optional[PlanTree]:
        parsed: dict[str, Node] = {}
        order: list[str] = []
        index_of: dict[str, int] = {}

        for i, raw in enumerate(nodes):
            node = self.node(raw, f"nodes[{i}]", parsed)
            if node is None:
                continue
            parsed[node.id] = node
            order.append(node.id)
            index_of[node.id] = i

        if self.errors:
            return None

        # Children in document order.
        child_ids: dict[str, list[str]] = {nid: [] for nid in order}
        roots: list[str] = []
        for nid in order:
            pid = parsed[nid].parent_id
            if pid is None:
                roots.append(nid)
            elif pid not in parsed:
                self.err("E_UNKNOWN_PARENT", f"parent references unknown id: {pid}", f"nodes[{index_of[nid]}].parent")
            else:
                child_ids[pid].append(nid)

        for nid in _parent_cycles(parsed):
            self.err("E_PARENT_CYCLE", f"node is its own ancestor: {nid}", f"nodes[{index_of[nid]}].parent")

        if not roots and parsed:
            self.err("E_NO_ROOTS", "no root nodes found (a root has no parent)", "nodes")

        if self.errors:
            return None

        nodes_by_id = {
            nid: Node(
                id=n.id,
                kind=n.kind,
                title=n.title,
                parent_id=n.parent_id,
                child_ids=tuple(child_ids[nid]),
                assignment=n.assignment,
                done=n.done,
            )
            for nid, n in parsed.items()
        }
        return PlanTree(nodes_by_id=nodes_by_id, roots=tuple(roots))

    def node(self, raw: Any, npath: str, parsed: dict[str, Node]) -> Optional[Node]:
        if not isinstance(raw, dict):
            self.err("E_INVALID_TYPE", "node must be an object", npath)
            return None

        nid = raw.get("id")
        if not isinstance(nid, str) or not nid.strip():
            self.err("E_REQUIRED_FIELD", "id is required and must be a non-empty string", f"{npath}.id")
            return None
        if nid in parsed:
            self.err("E_DUPLICATE_ID", f"duplicate node id: {nid}", f"{npath}.id")
            return None

        kind = raw.get("kind")
        if not isinstance(kind, str) or kind not in ALLOWED_NODE_KINDS:
            self.err("E_INVALID_ENUM", f"kind must be one of {sorted(ALLOWED_NODE_KINDS)}", f"{npath}.kind")
            return None

        title = raw.get("title", nid)
        if not isinstance(title, str):
            self.err("E_INVALID_TYPE", "title must be a string", f"{npath}.title")
            return None

        parent_id = raw.get("parent")
        if parent_id is not None and not isinstance(parent_id, str):
            self.err("E_INVALID_TYPE", "parent must be a string", f"{npath}.parent")
            return None

        assignment = self.assignment(raw, npath)
        done = self.done(raw.get("done"), f"{npath}.done")
        if assignment is False or done is None:
            return None

        return Node(
            id=nid,
            kind=cast(NodeKind, kind),
            title=title,
            parent_id=parent_id,
            assignment=assignment or None,
            done=done,
        )

    def assignment(self, raw: dict[str, Any], npath: str) -> Assignment | None | bool:
        """Returns an Assignment, None when the node has none, or False on error."""
        dev = raw.get("dev")
        plan = raw.get("plan")
        strategy = raw.get("strategy")
        params = {k: raw.get(k) for k in _WEEK_FIELDS}
        per_week = raw.get("per_week")

        if dev is None and plan is None and strategy is None and per_week is None and all(
            v is None for v in params.values()
        ):
            return None

        ok = True
        if dev is not None and (not isinstance(dev, str) or not dev.strip()):
            self.err("E_INVALID_TYPE", "dev must be a non-empty string", f"{npath}.dev")
            ok = False
        if plan is not None and (not _is_number(plan) or plan < 0):
            self.err("E_INVALID_TYPE", "plan must be a non-negative number", f"{npath}.plan")
            ok = False
        elif plan is not None and not self.quanta_ok(plan, f"{npath}.plan"):
            ok = False
        if strategy is not None and (not isinstance(strategy, str) or strategy not in ALLOWED_STRATEGIES):
            self.err("E_INVALID_ENUM", f"strategy must be one of {sorted(ALLOWED_STRATEGIES)}", f"{npath}.strategy")
            ok = False
        if per_week is not None and (not _is_number(per_week) or per_week < 0):
            self.err("E_INVALID_TYPE", "per_week must be a non-negative number", f"{npath}.per_week")
            ok = False
        elif per_week is not None and not self.quanta_ok(per_week, f"{npath}.per_week"):
            ok = False
        for k, v in params.items():
            if v is not None and not self.week_ok(v, f"{npath}.{k}"):
                ok = False

        if ok:
            for lo, hi in (("smear_start", "smear_end"), ("earliest_start", "deadline")):
                if params[lo] is not None and params[hi] is not None and params[hi] < params[lo]:
                    self.err("E_INVALID_RANGE", f"{hi} must not be before {lo}", f"{npath}.{hi}")
                    ok = False

        if not ok:
            return False

        return Assignment(
            developer_id=dev,
            planned_effort=float(plan) if plan is not None else None,
            strategy=cast(Optional[Strategy], strategy),
            earliest_start=params["earliest_start"],
            deadline=params["deadline"],
            smear_start=params["smear_start"],
            smear_end=params["smear_end"],
            per_week=float(per_week) if per_week is not None else None,
        )

    def done(self, raw: Any, path: str) -> Optional[dict[int, float]]:
        if raw is None:
            return {}
        if not isinstance(raw, dict):
            self.err("E_INVALID_TYPE", "done must be a mapping of week -> effort", path)
            return None

        out: dict[int, float] = {}
        ok = True
        for k, v in raw.items():
            week = int(k) if isinstance(k, str) and k.isdigit() else k
            if not self.week_ok(week, f"{path}[{k}]"):
                ok = False
                continue
            if not _is_number(v) or v < 0:
                self.err("E_INVALID_TYPE", "done effort must be a non-negative number", f"{path}[{k}]")
                ok = False
                continue
            if not self.quanta_ok(v, f"{path}[{k}]"):
                ok = False
                continue
            out[week] = out.get(week, 0.0) + float(v)
        return out if ok else None


def _parent_cycles(parsed: dict[str, Node]) -> list[str]:
    out: list[str] = []
    for nid in parsed:
        seen: set[str] = {nid}
        cur = parsed[nid].parent_id
        while cur is not None and cur in parsed:
            if cur == nid:
                out.append(nid)
                break
            if cur in seen:
                break
            seen.add(cur)
            cur = parsed[cur].parent_id
    return out


def _sorted(errors: Iterable[PlanValidationError]) -> list[PlanValidationError]:
    return sorted(
        list(errors),
        key=lambda e: (
            e.file or "",
            e.path or "",
            e.code,
        ),
    )

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable

import yaml

from budget_planner.core.errors import PlanLoadError


_PARSERS: dict[str, tuple[str, Callable[[str], Any], type[Exception]]] = {
    ".yaml": ("E_YAML_PARSE", yaml.safe_load, yaml.YAMLError),
    ".yml": ("E_YAML_PARSE", yaml.safe_load, yaml.YAMLError),
    ".json": ("E_JSON_PARSE", json.loads, ValueError),
}

# Top-level document keys handed on to the snapshot builder.
_PLAN_KEYS = ("schema_version", "nodes", "developers")


def load_plan(path: str) -> dict[str, Any]:
    """Read a plan document (YAML or JSON) into a plain dict.

    The result has schema_version, nodes and developers (any of them may be
    None), `settings` when the document has one, and `__file__`. Nothing is
    type-checked here; `build_snapshot` reports shape problems.
    """

    p = Path(path)
    file = str(p)
    if not p.is_file():
        raise PlanLoadError(code="E_FILE_NOT_FOUND", message="file does not exist", file=file)

    parser = _PARSERS.get(p.suffix.lower())
    if parser is None:
        raise PlanLoadError(
            code="E_UNSUPPORTED_FORMAT",
            message=f"supported formats are {', '.join(sorted(_PARSERS))}",
            file=file,
        )
    parse_code, parse, parse_error = parser

    try:
        text = p.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise PlanLoadError(code="E_FILE_READ", message=str(e), file=file) from e

    try:
        data = parse(text)
    except parse_error as e:
        raise PlanLoadError(code=parse_code, message=str(e), file=file) from e

    if not isinstance(data, dict):
        raise PlanLoadError(
            code="E_INVALID_TOP_LEVEL",
            message="a plan document must be a mapping with nodes and developers",
            file=file,
        )

    plan: dict[str, Any] = {k: data.get(k) for k in _PLAN_KEYS}
    if "settings" in data:
        plan["settings"] = data["settings"]
    plan["__file__"] = file
    return plan


def plan_settings(plan: dict[str, Any]) -> dict[str, Any] | None:
    """The document's own `settings` block, if it has one."""
    settings = plan.get("settings")
    if settings is None or isinstance(settings, dict):
        return settings
    raise PlanLoadError(
        code="E_INVALID_TYPE",
        message="settings must be a mapping",
        file=plan.get("__file__"),
        path="settings",
    )

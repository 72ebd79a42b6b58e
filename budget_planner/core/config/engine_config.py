from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any

import yaml

from budget_planner.core.model import EngineConfig


DEFAULT_SETTINGS: dict[str, Any] = {
    # One year of weekly cells.
    "horizon_weeks": 52,
    "now_week": 1,
    "start_date": None,
    # Quarter-unit resolution, matching quarter-day planning.
    "quanta_per_unit": 4,
    "workers": 1,
}


class EngineConfigError(ValueError):
    pass


def load_settings_file(path: str | Path) -> dict[str, Any]:
    """Load engine settings from a YAML file.

    Format:
      horizon_weeks: 26
      now_week: 5
      start_date: 2026-01-05

    Unknown keys are rejected so typos do not silently fall back to defaults.
    """
    p = Path(path)
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise EngineConfigError(f"settings file is not valid YAML: {e}") from e
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise EngineConfigError("settings file must be a mapping of name -> value")
    return _check_keys(raw)


def merged_settings(*overrides: dict[str, Any] | None) -> dict[str, Any]:
    """Return DEFAULT_SETTINGS with each override applied in turn.

    Later overrides win; None values in an override are ignored.
    """
    merged = dict(DEFAULT_SETTINGS)
    for ov in overrides:
        if not ov:
            continue
        for k, v in _check_keys(ov).items():
            if v is not None:
                merged[k] = v
    return merged


def build_config(settings: dict[str, Any]) -> EngineConfig:
    horizon = _positive_int(settings, "horizon_weeks")
    now_week = _positive_int(settings, "now_week")
    quanta = _positive_int(settings, "quanta_per_unit")
    workers = _positive_int(settings, "workers")

    if now_week > horizon:
        raise EngineConfigError(f"now_week ({now_week}) is beyond horizon_weeks ({horizon})")

    start_date = settings.get("start_date")
    if start_date is not None:
        if isinstance(start_date, str):
            try:
                start_date = date.fromisoformat(start_date)
            except ValueError as e:
                raise EngineConfigError(f"start_date must be an ISO date: {start_date}") from e
        elif not isinstance(start_date, date):
            raise EngineConfigError("start_date must be an ISO date")

    return EngineConfig(
        horizon_weeks=horizon,
        now_week=now_week,
        start_date=start_date,
        quanta_per_unit=quanta,
        workers=workers,
    )


def load_and_merge(settings_file: str | None, plan_settings: dict[str, Any] | None = None) -> EngineConfig:
    if not settings_file:
        return build_config(merged_settings(plan_settings))
    overrides = load_settings_file(settings_file)
    return build_config(merged_settings(plan_settings, overrides))


def _check_keys(raw: dict[Any, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in raw.items():
        if not isinstance(k, str) or k not in DEFAULT_SETTINGS:
            raise EngineConfigError(
                f"unknown setting: {k} (choose from: {', '.join(sorted(DEFAULT_SETTINGS))})"
            )
        out[k] = v
    return out


def _positive_int(settings: dict[str, Any], key: str) -> int:
    v = settings.get(key)
    if isinstance(v, bool) or not isinstance(v, int) or v < 1:
        raise EngineConfigError(f"{key} must be a positive integer")
    return v

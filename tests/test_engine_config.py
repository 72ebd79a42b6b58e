from datetime import date

import pytest

from budget_planner.core.config.engine_config import (
    DEFAULT_SETTINGS,
    EngineConfigError,
    build_config,
    load_and_merge,
    load_settings_file,
    merged_settings,
)


def test_defaults_build():
    cfg = build_config(merged_settings())
    assert cfg.horizon_weeks == DEFAULT_SETTINGS["horizon_weeks"]
    assert cfg.now_week == 1
    assert cfg.quanta_per_unit == 4
    assert cfg.start_date is None


def test_later_overrides_win_and_none_is_ignored():
    s = merged_settings({"horizon_weeks": 20, "now_week": 4}, {"now_week": 6, "start_date": None})
    assert s["horizon_weeks"] == 20
    assert s["now_week"] == 6
    assert s["start_date"] is None


def test_settings_file_overrides_plan_settings():
    cfg = load_and_merge("examples/settings.yaml", {"horizon_weeks": 12, "now_week": 3})
    assert cfg.horizon_weeks == 20
    assert cfg.now_week == 1


def test_plan_settings_alone():
    cfg = load_and_merge(None, {"horizon_weeks": 12, "start_date": "2026-01-05"})
    assert cfg.horizon_weeks == 12
    assert cfg.start_date == date(2026, 1, 5)


def test_unknown_key_is_rejected(tmp_path):
    p = tmp_path / "settings.yaml"
    p.write_text("horizon_week: 10\n", encoding="utf-8")
    with pytest.raises(EngineConfigError) as ei:
        load_settings_file(p)
    assert "horizon_week" in str(ei.value)


def test_settings_file_must_be_a_mapping(tmp_path):
    p = tmp_path / "settings.yaml"
    p.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(EngineConfigError):
        load_settings_file(p)


def test_empty_settings_file(tmp_path):
    p = tmp_path / "settings.yaml"
    p.write_text("", encoding="utf-8")
    assert load_settings_file(p) == {}


def test_missing_settings_file():
    with pytest.raises(FileNotFoundError):
        load_and_merge("examples/no-such-settings.yaml")


@pytest.mark.parametrize(
    "override",
    [
        {"horizon_weeks": 0},
        {"now_week": -1},
        {"quanta_per_unit": 2.5},
        {"workers": True},
        {"horizon_weeks": 4, "now_week": 5},
        {"start_date": "next monday"},
        {"start_date": 20260105},
    ],
)
def test_bad_values(override):
    with pytest.raises(EngineConfigError):
        build_config(merged_settings(override))

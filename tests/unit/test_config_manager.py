from __future__ import annotations

from pathlib import Path
import sys

import pytest
import yaml

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from coverage_tower.config_manager import ConfigManager


def _write_config(tmp_path: Path, *extra_lines: str, session: bool = True) -> Path:
    config_path = tmp_path / "config.yml"
    lines = [
        "paths:",
        f"  data: {tmp_path / 'data'}",
        f"  sessions: {tmp_path / 'sessions'}",
        "chart_name: demo tower",
        "tables:",
        "  limits: limits.csv",
        "  policy_dates:",
        "    path: policy_dates.csv",
    ]
    if session:
        lines += ["session:", f"  path: {tmp_path / 'sessions' / 'demo.yml'}"]
    lines += list(extra_lines)
    config_path.write_text("\n".join(lines), encoding="utf-8")
    return config_path


def test_chart_settings_default_and_parse_booleans(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path,
        "chart:",
        "  annualized: 'yes'",
        "  theme: light",
    )

    config = ConfigManager.from_yaml(config_path)
    settings = config.get_chart_settings()

    assert config.get_chart_name() == "demo tower"
    assert settings["annualized"] is True
    assert settings["availability_split"] is False
    assert settings["use_year_axis"] is True
    assert settings["theme"] == "light"
    assert config.get_table_config("limits") == {"path": "limits.csv"}
    assert config.get_table_config("carriers") == {}


def test_table_config_shorthands(tmp_path: Path) -> None:
    config = ConfigManager(
        {
            "paths": {"sessions": str(tmp_path / "sessions")},
            "chart_name": "demo",
            "tables": {
                "limits": ["limits.csv", "limits_export.csv"],
                "policy_dates": "dates.csv",
                "carriers": 42,
            },
        }
    )

    assert config.get_table_config("limits") == {
        "path": ["limits.csv", "limits_export.csv"]
    }
    assert config.get_table_config("policy_dates") == {"path": "dates.csv"}
    with pytest.raises(ValueError, match="tables.carriers must be a mapping"):
        config.get_table_config("carriers")


def test_invalid_chart_boolean_is_rejected(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path, "chart:", "  annualized: maybe")

    with pytest.raises(ValueError, match="chart.annualized must be boolean"):
        ConfigManager.from_yaml(config_path)


def test_missing_chart_name_and_unknown_table(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="chart_name is not specified"):
        ConfigManager({"paths": {"sessions": str(tmp_path / "sessions")}})
    with pytest.raises(ValueError, match="Unknown table"):
        ConfigManager(
            {
                "paths": {"sessions": str(tmp_path / "sessions")},
                "chart_name": "demo",
                "tables": {"claims": "claims.csv"},
            }
        )


def test_default_session_path_written_back_to_config(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path, session=False)

    config = ConfigManager.from_yaml(config_path)

    assert config.get_session_path() == tmp_path / "sessions" / "demo_tower.yml"
    saved = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    assert saved["session"]["path"] == str(tmp_path / "sessions" / "demo_tower.yml")


def test_save_session_with_version_only_bumps_on_change(tmp_path: Path) -> None:
    config = ConfigManager.from_yaml(_write_config(tmp_path))

    first = config.save_session_with_version({"view": "carrier"})
    unchanged = config.save_session_with_version({"view": "carrier"})
    changed = config.save_session_with_version({"view": "availability"})

    assert (first, unchanged, changed) == (1, 1, 2)
    assert config.get_sync_version() == 2
    session = config.load_session()
    assert session["view"] == "availability"
    assert session["chart_name"] == "demo tower"


def test_corrupt_session_is_moved_aside(tmp_path: Path) -> None:
    config = ConfigManager.from_yaml(_write_config(tmp_path))
    session_path = config.get_session_path()
    session_path.write_text("view: [unterminated", encoding="utf-8")

    assert config.load_session() == {}
    assert not session_path.exists()
    assert list(session_path.parent.glob("demo.yml.corrupt.*"))

from __future__ import annotations

import yaml
import logging
import os
from pathlib import Path
from datetime import datetime, timezone
import re
import threading


TABLE_NAMES = (
    "limits",
    "policy_dates",
    "policies",
    "carriers",
    "carrier_groups",
    "insurance_programs",
    "policy_limit_types",
)

CHART_DEFAULTS = {
    "use_year_axis": True,
    "initial_view": "carrier",
    "theme": "dark",
    "default_policy_limit_type": None,
    "availability_split": False,
    "annualized": False,
    "sir_mode": "off",
}


class ConfigManager:
    _SESSION_LOCK = threading.RLock()

    def __init__(self, config: dict, config_path: Path | None = None):
        if not isinstance(config, dict):
            raise ValueError("Config root must be a mapping.")
        self._config_path = Path(config_path) if config_path else None
        self._config = config
        self._init_paths(config)
        self._init_properties(config)
        self._init_sessions(config)

    @classmethod
    def from_yaml(cls, file_name):
        config = cls._read_yaml(file_name)
        return cls(config, config_path=Path(file_name))

    @staticmethod
    def _read_yaml(file_path):
        if not Path(file_path).exists():
            raise FileNotFoundError(f"Config file {file_path} does not exist.")
        with open(file_path, "r") as f:
            config = yaml.safe_load(f)
        return config or {}

    def _init_paths(self, config):
        paths = config.get("paths") or {}
        if not isinstance(paths, dict):
            raise ValueError("paths must be a mapping")
        self._DATA = str(paths.get("data", "data/"))
        self._SESSIONS = str(paths.get("sessions", "sessions/"))

        if not Path(self._SESSIONS).exists():
            Path(self._SESSIONS).mkdir(parents=True, exist_ok=True)

    def _init_properties(self, config):
        chart_name = str(config.get("chart_name") or "").strip()
        if not chart_name:
            raise ValueError(
                "chart_name is not specified in the config file. Please specify the chart_name in the config file."
            )
        self._chart_name = chart_name

        tables = config.get("tables") or {}
        if not isinstance(tables, dict):
            raise ValueError("tables must be a mapping of table name to settings")
        unknown = sorted(set(tables) - set(TABLE_NAMES))
        if unknown:
            raise ValueError(
                f"Unknown table(s) in tables: {', '.join(unknown)}. "
                f"Expected any of: {', '.join(TABLE_NAMES)}."
            )
        self._tables = tables

        chart = config.get("chart") or {}
        if not isinstance(chart, dict):
            raise ValueError("chart must be a mapping")
        settings = dict(CHART_DEFAULTS)
        settings.update({k: v for k, v in chart.items() if v is not None})
        for flag in ("use_year_axis", "availability_split", "annualized"):
            settings[flag] = _to_bool(settings[flag], key_name=f"chart.{flag}")
        self._chart_settings = settings

    def _init_sessions(self, config):
        session_config = config.get("session") or {}
        session_path = session_config.get("path")
        if session_path:
            self._session_path = Path(session_path)
        else:
            safe_name = re.sub(r"[^A-Za-z0-9_\-]", "_", self._chart_name)
            self._session_path = Path(self._SESSIONS) / f"{safe_name}.yml"
            self._ensure_session_path_in_config()

    def _ensure_session_path_in_config(self):
        if not self._config_path:
            return
        config = self._config.copy()
        config.setdefault("session", {})
        config["session"]["path"] = str(self._session_path)
        with self._config_path.open("w") as f:
            yaml.safe_dump(config, f, sort_keys=False)

    def get_chart_name(self) -> str:
        return self._chart_name

    def get_data_path(self) -> Path:
        return Path(self._DATA)

    def get_table_config(self, name: str) -> dict:
        if name not in TABLE_NAMES:
            raise ValueError(f"Unknown table '{name}'")
        table_cfg = self._tables.get(name) or {}
        if isinstance(table_cfg, str):
            return {"path": table_cfg}
        if isinstance(table_cfg, list):
            return {"path": list(table_cfg)}
        if not isinstance(table_cfg, dict):
            raise ValueError(
                f"tables.{name} must be a mapping, a path string or a list of paths"
            )
        return dict(table_cfg)

    def get_chart_settings(self) -> dict:
        return dict(self._chart_settings)

    def get_session_path(self) -> Path:
        return self._session_path

    def load_session(self) -> dict:
        with self._SESSION_LOCK:
            return self._load_session_unlocked()

    def _load_session_unlocked(self) -> dict:
        session_path = self.get_session_path()
        if not session_path.exists():
            return {}
        try:
            with session_path.open("r") as f:
                payload = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            logging.error("Failed to parse session YAML at %s: %s", session_path, exc)
            timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
            corrupt_path = session_path.with_suffix(
                session_path.suffix + f".corrupt.{timestamp}"
            )
            try:
                session_path.replace(corrupt_path)
                logging.warning(
                    "Moved corrupted session file to %s; starting with defaults",
                    corrupt_path,
                )
            except OSError as move_exc:
                logging.error(
                    "Failed to move corrupted session file %s: %s",
                    session_path,
                    move_exc,
                )
            return {}
        if not isinstance(payload, dict):
            return {}
        return payload

    def _normalize_session_payload(self, payload: dict) -> dict:
        normalized = payload.copy()
        normalized.pop("sync_version", None)
        normalized.pop("updated_at", None)
        normalized.setdefault("chart_name", self._chart_name)
        return normalized

    def get_sync_version(self) -> int:
        with self._SESSION_LOCK:
            session = self._load_session_unlocked()
        raw_version = session.get("sync_version", 0)
        try:
            version = int(raw_version)
        except (TypeError, ValueError):
            return 0
        if version < 0:
            return 0
        return version

    def save_session_with_version(self, data: dict) -> int:
        with self._SESSION_LOCK:
            session = self._load_session_unlocked()
            raw_version = session.get("sync_version", 0)
            try:
                current_version = int(raw_version)
            except (TypeError, ValueError):
                current_version = 0
            if current_version < 0:
                current_version = 0

            normalized_current = self._normalize_session_payload(session)
            normalized_incoming = self._normalize_session_payload(data)
            if normalized_current == normalized_incoming:
                return current_version

            next_version = current_version + 1
            payload = data.copy()
            payload["sync_version"] = next_version
            self._save_session_unlocked(payload)
            return next_version

    def _save_session_unlocked(self, data: dict) -> None:
        session_path = self.get_session_path()
        session_path.parent.mkdir(parents=True, exist_ok=True)
        payload = data.copy()
        payload.setdefault("chart_name", self._chart_name)
        payload["updated_at"] = datetime.now(timezone.utc).isoformat()
        tmp_path = session_path.with_suffix(session_path.suffix + ".tmp")
        with tmp_path.open("w") as f:
            yaml.safe_dump(payload, f, sort_keys=False)
            f.flush()
            os.fsync(f.fileno())
        tmp_path.replace(session_path)


def _to_bool(value: object, *, key_name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"true", "yes", "1", "on"}:
            return True
        if normalized in {"false", "no", "0", "off"}:
            return False
    raise ValueError(f"{key_name} must be boolean")

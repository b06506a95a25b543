from __future__ import annotations

import logging
import time
from pathlib import Path

from coverage_tower.config_manager import TABLE_NAMES, ConfigManager
from coverage_tower.models import CoverageTables
from coverage_tower.table_repository import TableRepository


REQUIRED_TABLES = ("limits", "policy_dates")


def load_tables_from_config(
    config: ConfigManager,
    *,
    repo_root: Path,
) -> CoverageTables:
    started = time.perf_counter()
    rows_by_table: dict[str, list[dict[str, str]]] = {}
    for table_name in TABLE_NAMES:
        table_cfg = config.get_table_config(table_name)
        rows_by_table[table_name] = _load_table_rows(
            config,
            table_cfg,
            table_name=table_name,
            repo_root=repo_root,
        )

    logging.info(
        "Coverage tables loaded in %.0f ms: %s",
        (time.perf_counter() - started) * 1000,
        ", ".join(f"{name}={len(rows)}" for name, rows in rows_by_table.items()),
    )
    return CoverageTables(**rows_by_table)


def _load_table_rows(
    config: ConfigManager,
    table_cfg: dict,
    *,
    table_name: str,
    repo_root: Path,
) -> list[dict[str, str]]:
    path_value = table_cfg.get("path")
    if not path_value:
        if table_name in REQUIRED_TABLES:
            raise ValueError(f"tables.{table_name}.path is required")
        return []

    column_map = _extract_column_map(table_cfg, table_name=table_name)
    candidates = _path_candidates(path_value, table_name=table_name)
    base_dir = _resolve_path(config.get_data_path(), repo_root=repo_root)
    for candidate in candidates:
        csv_path = _resolve_path(Path(candidate), repo_root=base_dir)
        if not csv_path.exists():
            logging.debug("No %s table at %s", table_name, csv_path)
            continue
        repository = TableRepository.from_csv(
            csv_path=csv_path,
            name=table_name,
            column_map=column_map,
        )
        return repository.get_rows()

    if table_name in REQUIRED_TABLES:
        raise FileNotFoundError(
            f"tables.{table_name}.path: none of {', '.join(candidates)} exists under {base_dir}"
        )
    logging.warning(
        "Optional table %s not found (tried %s); continuing without it",
        table_name,
        ", ".join(candidates),
    )
    return []


def _path_candidates(path_value: object, *, table_name: str) -> list[str]:
    if isinstance(path_value, str):
        return [path_value]
    if isinstance(path_value, list) and all(isinstance(v, str) for v in path_value):
        return list(path_value)
    raise ValueError(
        f"tables.{table_name}.path must be a string or a list of fallback paths"
    )


def _extract_column_map(
    table_cfg: dict, *, table_name: str
) -> dict[str, str] | None:
    column_map = table_cfg.get("column_map")
    if column_map is None:
        return None
    if not isinstance(column_map, dict):
        raise ValueError(f"tables.{table_name}.column_map must be a mapping")
    return {str(key): str(value) for key, value in column_map.items()}


def _resolve_path(path: Path, *, repo_root: Path) -> Path:
    if path.is_absolute():
        return path
    return repo_root / path

from __future__ import annotations

import logging
from pathlib import Path
import sys

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from coverage_tower.config_manager import ConfigManager
from coverage_tower.input_loader import load_tables_from_config
from coverage_tower.presentation import plot_coverage_tower
from coverage_tower.services import (
    CoverageChartService,
    EngineContextRegistry,
    SessionSyncService,
)


OUTPUT_DIR = REPO_ROOT / "examples" / "output"


def _load_sample_config() -> ConfigManager:
    config_path = REPO_ROOT / "examples" / "config_sample.yml"
    if not config_path.exists():
        raise FileNotFoundError(f"Sample config not found at {config_path}")
    return ConfigManager.from_yaml(config_path)


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    config = _load_sample_config()
    settings = config.get_chart_settings()

    registry = EngineContextRegistry()
    context = registry.get(config.get_chart_name())
    service = CoverageChartService(
        context=context,
        use_year_axis=settings["use_year_axis"],
        initial_view=settings["initial_view"],
        theme=settings["theme"],
        default_policy_limit_type=settings["default_policy_limit_type"],
        availability_split=settings["availability_split"],
        annualized=settings["annualized"],
        sir_mode=settings["sir_mode"],
    )
    session_sync = SessionSyncService(config=config, context=context)
    session_sync.restore(service)

    payload = service.load(lambda: load_tables_from_config(config, repo_root=REPO_ROOT))
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    for view in ("carrier", "carrier_group", "availability"):
        payload = service.set_view(view)
        figure = plot_coverage_tower(payload, title=f"Coverage Tower by {view}")
        output_path = OUTPUT_DIR / f"coverage_tower_{view}.html"
        figure.write_html(output_path)
        logging.info("Wrote %s (%d series)", output_path, len(payload["series"]))

    payload = service.set_view(settings["initial_view"])
    for year, details in sorted(payload["quota_details"].items()):
        for detail in details.values():
            logging.info(
                "%s quota share: %s (%d participants)",
                year,
                detail["display_label"],
                len(detail["participants"]),
            )

    if payload["series"]:
        selection = service.get_policy_selection(payload["series"][0]["label"], 0)
        logging.info("First bar resolves to policy %s", selection)

    sync_version, _ = session_sync.persist(state=service.filter_state)
    logging.info("Session saved at version %d", sync_version)


if __name__ == "__main__":
    main()

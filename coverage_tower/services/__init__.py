from coverage_tower.services.coverage_chart_service import CoverageChartService
from coverage_tower.services.engine_context import EngineContext, EngineContextRegistry
from coverage_tower.services.filter_service import FilterService, FilterState
from coverage_tower.services.legend_service import (
    LegendEntry,
    LegendVisibility,
    RealSeries,
    SyntheticLabel,
)
from coverage_tower.services.session_sync_service import SessionSyncService

__all__ = [
    "CoverageChartService",
    "EngineContext",
    "EngineContextRegistry",
    "FilterService",
    "FilterState",
    "LegendEntry",
    "LegendVisibility",
    "RealSeries",
    "SessionSyncService",
    "SyntheticLabel",
]

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Optional, Union

import pandas as pd

from coverage_tower.color_assigner import normalize_label
from coverage_tower.layer_stack import (
    SIR_MODE_OFF,
    build_quota_details,
    build_sir_series,
    build_tower_series,
)
from coverage_tower.models import (
    UNAVAILABLE,
    VIEW_AVAILABILITY,
    VIEW_CARRIER,
    VIEW_CARRIER_GROUP,
    CoverageSlice,
    CoverageTables,
    SliceBuild,
    ms_to_datetime,
    slices_to_dataframe,
)
from coverage_tower.quota_share import (
    QUOTA_SHARE_LABEL,
    build_quota_key_set,
    has_explicit_quota_share_evidence,
    quota_group_key,
)
from coverage_tower.record_normalizer import build_slices
from coverage_tower.segmentation import build_layer_segments
from coverage_tower.services.engine_context import EngineContext
from coverage_tower.services.filter_service import FilterService, FilterState
from coverage_tower.services.legend_service import (
    build_legend_entries,
    legend_items,
)
from coverage_tower.services.types import (
    PolicySelection,
    TowerPayload,
    TowerSeries,
)


STATE_IDLE = "idle"
STATE_LOADING = "loading"
STATE_READY = "ready"

TablesSource = Union[CoverageTables, Callable[[], CoverageTables]]


def display_group_for(
    coverage_slice: CoverageSlice,
    *,
    view: str,
    quota_keys: set[str],
) -> str:
    if view == VIEW_AVAILABILITY:
        return coverage_slice.availability
    if quota_keys and quota_group_key(coverage_slice) in quota_keys:
        return QUOTA_SHARE_LABEL
    if coverage_slice.is_unavailable:
        return UNAVAILABLE
    if view == VIEW_CARRIER_GROUP:
        return coverage_slice.carrier_group
    return coverage_slice.carrier


def x_labels_for(slices: list[CoverageSlice], *, use_year_axis: bool) -> list[str]:
    if not slices:
        return []
    if use_year_axis:
        first = min(s.policy_start_year for s in slices)
        last = max(s.policy_end_year for s in slices)
        return [str(year) for year in range(first, last + 1)]
    labels = {s.x_label: s.policy_start_ms for s in slices}
    return sorted(labels, key=lambda label: (labels[label], label))


class CoverageChartService:
    """Recomputes the whole tower from the loaded slices on every call.

    Only the color slots and legend visibility in the EngineContext outlive a
    render; everything else is derived again from the filter state.
    """

    def __init__(
        self,
        *,
        context: EngineContext | None = None,
        use_year_axis: bool = True,
        initial_view: str = VIEW_CARRIER,
        theme: str = "dark",
        default_policy_limit_type: str | None = None,
        availability_split: bool = False,
        annualized: bool = False,
        sir_mode: str = SIR_MODE_OFF,
    ) -> None:
        self._context = context or EngineContext()
        self._use_year_axis = bool(use_year_axis)
        self._default_policy_limit_type = default_policy_limit_type
        self._filters = FilterService(
            FilterState(
                view=FilterService.normalize_view(initial_view),
                theme=FilterService.normalize_theme(theme),
                availability_split=bool(availability_split),
                annualized=bool(annualized),
                sir_mode=FilterService.normalize_sir_mode(sir_mode),
            )
        )
        self._state = STATE_IDLE
        self._build: SliceBuild | None = None
        self._quota_enabled = False
        self._last_payload: TowerPayload = self._empty_payload()

    @property
    def state(self) -> str:
        return self._state

    @property
    def context(self) -> EngineContext:
        return self._context

    @property
    def filter_state(self) -> FilterState:
        return self._filters.state

    @property
    def quota_share_enabled(self) -> bool:
        return self._quota_enabled

    def load(self, source: TablesSource) -> TowerPayload:
        self._state = STATE_LOADING
        started = time.perf_counter()
        try:
            tables = source() if callable(source) else source
            if not isinstance(tables, CoverageTables):
                raise TypeError(
                    f"Expected CoverageTables from loader, got {type(tables).__name__}"
                )
            build = build_slices(tables, use_year_axis=self._use_year_axis)
        except Exception:
            self._state = STATE_IDLE
            raise

        self._build = build
        self._quota_enabled = has_explicit_quota_share_evidence(
            tables.limits, tables.policies
        )
        default_type = self._default_policy_limit_type or FilterService.default_policy_limit_type(
            build.slices
        )
        self._filters.state = self._filters.state.update(
            policy_limit_types=FilterService.normalize_labels(
                [default_type] if default_type else []
            )
        )
        self._state = STATE_READY
        logging.info(
            "Coverage data loaded in %.0f ms: %d slices, quota share %s",
            (time.perf_counter() - started) * 1000,
            len(build.slices),
            "enabled" if self._quota_enabled else "disabled",
        )
        return self.render()

    def _empty_payload(self) -> TowerPayload:
        state = self._filters.state
        return {
            "state": self._state,
            "view": state.view,
            "theme": state.theme,
            "annualized": state.annualized,
            "availability_split": state.availability_split,
            "sir_mode": state.sir_mode,
            "quota_share_enabled": False,
            "series": [],
            "sir_series": None,
            "quota_details": {},
            "legend": [],
            "x_labels": [],
            "x_range": [],
            "slice_count": 0,
            "segment_count": 0,
        }

    def _series_color(self, label: str) -> str:
        state = self._filters.state
        return self._context.colors.series_color(
            label, view=state.view, theme=state.theme
        )

    def render(self) -> TowerPayload:
        if self._state != STATE_READY or self._build is None:
            self._last_payload = self._empty_payload()
            return self._last_payload

        started = time.perf_counter()
        state = self._filters.state
        legend = self._context.legend
        filtered = self._filters.apply(self._build.slices)
        visible = [s for s in filtered if not legend.hides_slice(s, view=state.view)]

        quota_keys: set[str] = set()
        if self._quota_enabled and state.view in (VIEW_CARRIER, VIEW_CARRIER_GROUP):
            quota_keys = build_quota_key_set(visible)

        segments = build_layer_segments(
            visible,
            display_group_of=lambda s: display_group_for(
                s, view=state.view, quota_keys=quota_keys
            ),
            quota_key_of=lambda s: (
                quota_group_key(s) if quota_group_key(s) in quota_keys else ""
            ),
            annualized=state.annualized,
        )
        all_series = build_tower_series(
            segments,
            view=state.view,
            color_for=self._series_color,
            annualized=state.annualized,
            availability_split=state.availability_split,
        )
        entries = build_legend_entries(
            all_series,
            filtered,
            view=state.view,
            color_for=self._series_color,
        )
        series = [
            s for s in all_series if not legend.is_hidden(s["label"], view=state.view)
        ]

        x_labels = x_labels_for(filtered, use_year_axis=self._use_year_axis)
        x_range: list[float] = []
        if x_labels and self._use_year_axis:
            x_range = [int(x_labels[0]) - 0.5, int(x_labels[-1]) + 0.5]

        payload: TowerPayload = {
            "state": self._state,
            "view": state.view,
            "theme": state.theme,
            "annualized": state.annualized,
            "availability_split": state.availability_split,
            "sir_mode": state.sir_mode,
            "quota_share_enabled": self._quota_enabled,
            "series": series,
            "sir_series": build_sir_series(visible, mode=state.sir_mode),
            "quota_details": build_quota_details(segments),
            "legend": legend_items(entries, legend, view=state.view),
            "x_labels": x_labels,
            "x_range": x_range,
            "slice_count": len(visible),
            "segment_count": len(segments),
        }
        self._last_payload = payload
        logging.debug(
            "Coverage tower rendered in %.0f ms: view=%s, %d series, %d segments",
            (time.perf_counter() - started) * 1000,
            state.view,
            len(series),
            len(segments),
        )
        return payload

    @property
    def last_payload(self) -> TowerPayload:
        return self._last_payload

    def _update(self, **changes) -> TowerPayload:
        self._filters.state = self._filters.state.update(**changes)
        return self.render()

    def set_view(self, view: str) -> TowerPayload:
        try:
            resolved = FilterService.normalize_view(view)
        except ValueError as exc:
            logging.warning("Keeping view %r: %s", self._filters.state.view, exc)
            return self.render()
        return self._update(view=resolved)

    def set_entity_filters(
        self,
        *,
        carriers: Iterable[str] | None = None,
        carrier_groups: Iterable[str] | None = None,
    ) -> TowerPayload:
        return self._update(
            carriers=FilterService.normalize_labels(carriers),
            carrier_groups=FilterService.normalize_labels(carrier_groups),
        )

    def reset_entity_filters(self) -> TowerPayload:
        return self._update(carriers=(), carrier_groups=())

    def set_year_range(self, start_year: object, end_year: object) -> TowerPayload:
        return self._update(
            year_range=FilterService.normalize_year_range(start_year, end_year),
            date_range=None,
        )

    def reset_year_range(self) -> TowerPayload:
        return self._update(year_range=None)

    def set_date_range(self, start: object, end: object) -> TowerPayload:
        date_range = FilterService.normalize_date_range(start, end)
        year_range = None
        if date_range is not None:
            year_range = (
                ms_to_datetime(date_range[0]).year,
                ms_to_datetime(date_range[1] - 1).year,
            )
        return self._update(date_range=date_range, year_range=year_range)

    def reset_date_range(self) -> TowerPayload:
        return self._update(date_range=None, year_range=None)

    def set_insurance_program_filter(self, programs: Iterable[str] | None) -> TowerPayload:
        return self._update(insurance_programs=FilterService.normalize_labels(programs))

    def reset_insurance_program_filter(self) -> TowerPayload:
        return self._update(insurance_programs=())

    def set_policy_limit_type_filter(
        self, limit_types: Iterable[str] | None
    ) -> TowerPayload:
        return self._update(
            policy_limit_types=FilterService.normalize_labels(limit_types)
        )

    def reset_policy_limit_type_filter(self) -> TowerPayload:
        default_type = self._default_policy_limit_type
        if default_type is None and self._build is not None:
            default_type = FilterService.default_policy_limit_type(self._build.slices)
        return self._update(
            policy_limit_types=FilterService.normalize_labels(
                [default_type] if default_type else []
            )
        )

    def set_annualized_mode(self, enabled: bool) -> TowerPayload:
        return self._update(annualized=bool(enabled))

    def set_availability_split(self, enabled: bool) -> TowerPayload:
        return self._update(availability_split=bool(enabled))

    def set_sir_mode(self, mode: str) -> TowerPayload:
        try:
            resolved = FilterService.normalize_sir_mode(mode)
        except ValueError as exc:
            logging.warning("Turning the SIR overlay off: %s", exc)
            resolved = SIR_MODE_OFF
        return self._update(sir_mode=resolved)

    def set_theme(self, theme: str) -> TowerPayload:
        try:
            resolved = FilterService.normalize_theme(theme)
        except ValueError as exc:
            logging.warning("Keeping theme %r: %s", self._filters.state.theme, exc)
            return self.render()
        return self._update(theme=resolved)

    def toggle_legend_label(self, label: str) -> TowerPayload:
        hidden = self._context.legend.toggle(label, view=self._filters.state.view)
        logging.debug("Legend label %r %s", label, "hidden" if hidden else "shown")
        return self.render()

    def _all_slices(self) -> list[CoverageSlice]:
        if self._build is None:
            return []
        return list(self._build.slices)

    def get_filter_options(self) -> dict[str, list]:
        slices = self._all_slices()

        def _distinct(values: Iterable[str]) -> list[str]:
            return list(FilterService.normalize_labels(values))

        bounds = self.get_year_bounds()
        years = list(range(bounds[0], bounds[1] + 1)) if bounds else []
        return {
            "carriers": _distinct(s.carrier for s in slices),
            "carrier_groups": _distinct(s.carrier_group for s in slices),
            "insurance_programs": _distinct(s.insurance_program for s in slices),
            "policy_limit_types": _distinct(
                s.policy_limit_type or s.policy_limit_type_id for s in slices
            ),
            "years": years,
        }

    def get_year_bounds(self) -> Optional[tuple[int, int]]:
        slices = self._all_slices()
        if not slices:
            return None
        return (
            min(s.policy_start_year for s in slices),
            max(s.policy_end_year for s in slices),
        )

    def get_filtered_slices(self) -> list[CoverageSlice]:
        if self._state != STATE_READY:
            return []
        return self._filters.apply(self._all_slices())

    def filtered_slices_frame(self) -> pd.DataFrame:
        return slices_to_dataframe(self.get_filtered_slices())

    def get_policy_selection(
        self,
        series_label: str,
        point_index: int,
        *,
        participant_label: str | None = None,
    ) -> PolicySelection | None:
        """Resolve a hit-tested bar back to one policy.

        Quota share bars pick the participant whose carrier (or group) matches
        ``participant_label``; otherwise the participant with the largest limit.
        """
        series = _find_series(self._last_payload.get("series", []), series_label)
        if series is None:
            return None
        points = series["points"]
        if not isinstance(point_index, int) or not 0 <= point_index < len(points):
            return None
        point = points[point_index]
        participants = point.get("participants") or []
        if not participants:
            return None

        chosen = participants[0]
        if point.get("is_quota_share") and participant_label:
            wanted = normalize_label(participant_label)
            for participant in participants:
                if wanted in (
                    normalize_label(participant["carrier"]),
                    normalize_label(participant["carrier_group"]),
                ):
                    chosen = participant
                    break

        return {
            "policy_id": str(chosen["policy_id"]),
            "policy_number": str(chosen["policy_number"]),
            "policy_limit_type": str(chosen["policy_limit_type"]),
            "insurance_program": str(chosen["insurance_program"]),
            "carrier": str(chosen["carrier"]),
            "carrier_group": str(chosen["carrier_group"]),
            "availability": str(chosen["availability"]),
            "policy_start_ms": int(chosen["policy_start_ms"]),
            "policy_end_ms": int(chosen["policy_end_ms"]),
            "segment_start_ms": int(point["segment_start_ms"]),
            "segment_end_ms": int(point["segment_end_ms"]),
            "attach": float(point["attach"]),
            "limit": float(chosen["slice_limit"]),
            "top": float(point["top"]),
            "year_label": str(point["year_label"]),
            "is_quota_share": bool(point.get("is_quota_share")),
            "view": self._filters.state.view,
        }


def _find_series(series: list[TowerSeries], label: str) -> TowerSeries | None:
    wanted = normalize_label(label)
    for item in series:
        if normalize_label(item["label"]) == wanted:
            return item
    return None

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING, Callable, Iterable

from coverage_tower.color_assigner import SIR_COLORS
from coverage_tower.models import (
    AVAILABLE,
    UNAVAILABLE,
    VIEW_AVAILABILITY,
    CoverageSlice,
    LayerSegment,
    Participant,
)
from coverage_tower.quota_share import QUOTA_SHARE_LABEL, quota_layer_label

if TYPE_CHECKING:
    from coverage_tower.services.types import (
        QuotaDetail,
        SirSeries,
        TowerPoint,
        TowerSeries,
    )


SIR_MODE_OFF = "off"
SIR_MODE_PER_OCC = "per_occ"
SIR_MODE_AGGREGATE = "aggregate"
SIR_MODES = (SIR_MODE_OFF, SIR_MODE_PER_OCC, SIR_MODE_AGGREGATE)

SIR_LABELS = {
    SIR_MODE_PER_OCC: "SIR (Per Occ)",
    SIR_MODE_AGGREGATE: "SIR (Aggregate)",
}


def order_participants(participants: Iterable[Participant]) -> list[Participant]:
    """Largest limit first so it sits in the bottom band of a stacked layer."""
    return sorted(
        participants,
        key=lambda p: (-p.slice_limit, p.carrier.lower(), p.policy_id),
    )


def split_availability(segment: LayerSegment) -> tuple[float, float]:
    """Return the (unavailable, available) heights of a segment.

    Each participant contributes ``min(limit, consumed)`` to the unavailable
    band; the rest of the summed limit is available.
    """
    unavailable = 0.0
    for participant in segment.participants:
        limit = max(0.0, participant.slice_limit)
        unavailable += max(0.0, min(limit, participant.consumed))
    total = max(0.0, segment.summed_limit)
    unavailable = min(max(unavailable, 0.0), total)
    available = max(0.0, total - unavailable)
    return unavailable, available


def segment_to_point(segment: LayerSegment, *, annualized: bool = False) -> TowerPoint:
    return {
        "x_start": segment.x_start,
        "x_end": segment.x_end,
        "x_mid": segment.x_mid,
        "segment_start_ms": segment.segment_start_ms,
        "segment_end_ms": segment.segment_end_ms,
        "year_label": segment.year_label,
        "attach": float(segment.attachment_point),
        "top": float(segment.top),
        "summed_limit": float(segment.summed_limit),
        "participants": [p.to_dict() for p in order_participants(segment.participants)],
        "is_quota_share": bool(segment.quota_group_key),
        "quota_group_key": segment.quota_group_key,
        "group": segment.display_group,
        "annualized": annualized,
    }


def _point_sort_key(point: TowerPoint) -> tuple[float, float, float]:
    return (point["x_start"], point["x_end"], point["attach"])


def series_order_key(label: str, *, view: str) -> tuple[int, str]:
    if view == VIEW_AVAILABILITY:
        rank = {AVAILABLE: 0, UNAVAILABLE: 1}.get(label, 2)
        return (rank, label.lower())
    return (0 if label == QUOTA_SHARE_LABEL else 1, label.lower())


def _rerouted_points(
    segment: LayerSegment, *, annualized: bool
) -> list[tuple[str, TowerPoint]]:
    unavailable, available = split_availability(segment)
    routed: list[tuple[str, TowerPoint]] = []
    base = float(segment.attachment_point)
    for band, low, height in (
        (UNAVAILABLE, base, unavailable),
        (AVAILABLE, base + unavailable, available),
    ):
        if height <= 0:
            continue
        point = segment_to_point(segment, annualized=annualized)
        point["attach"] = low
        point["top"] = low + height
        point["summed_limit"] = height
        point["group"] = band
        point["band"] = band
        routed.append((band, point))
    return routed


def build_tower_series(
    segments: Iterable[LayerSegment],
    *,
    view: str,
    color_for: Callable[[str], str],
    annualized: bool = False,
    availability_split: bool = False,
) -> list[TowerSeries]:
    points_by_label: dict[str, list[TowerPoint]] = defaultdict(list)
    for segment in segments:
        if segment.summed_limit <= 0:
            continue
        if availability_split and view == VIEW_AVAILABILITY:
            for band, point in _rerouted_points(segment, annualized=annualized):
                points_by_label[band].append(point)
            continue
        point = segment_to_point(segment, annualized=annualized)
        if availability_split:
            unavailable, available = split_availability(segment)
            point["bands"] = {"unavailable": unavailable, "available": available}
        points_by_label[segment.display_group].append(point)

    series: list[TowerSeries] = []
    for label in sorted(points_by_label, key=lambda item: series_order_key(item, view=view)):
        points = sorted(points_by_label[label], key=_point_sort_key)
        series.append({"label": label, "color": color_for(label), "points": points})
    return series


def build_quota_details(
    segments: Iterable[LayerSegment],
) -> dict[str, dict[str, QuotaDetail]]:
    details: dict[str, dict[str, QuotaDetail]] = {}
    for segment in segments:
        if not segment.quota_group_key or not segment.participants:
            continue
        by_key = details.setdefault(segment.year_label, {})
        if segment.quota_group_key in by_key:
            continue
        participants = order_participants(segment.participants)
        by_key[segment.quota_group_key] = {
            "display_label": quota_layer_label(
                attachment_point=segment.attachment_point,
                summed_limit=segment.summed_limit,
                insurance_program=participants[0].insurance_program,
                year_label=segment.year_label,
            ),
            "participants": [p.to_dict() for p in participants],
        }
    return details


def _sir_year(coverage_slice: CoverageSlice) -> int:
    if coverage_slice.year is not None:
        return coverage_slice.year
    return coverage_slice.policy_start_year


def build_sir_series(
    slices: Iterable[CoverageSlice],
    *,
    mode: str,
) -> SirSeries | None:
    if mode not in SIR_MODES:
        raise ValueError(f"sir_mode must be one of {', '.join(SIR_MODES)}, got {mode!r}")
    if mode == SIR_MODE_OFF:
        return None

    by_year: dict[int, float] = {}
    for coverage_slice in slices:
        value = (
            coverage_slice.sir_per_occ
            if mode == SIR_MODE_PER_OCC
            else coverage_slice.sir_aggregate
        )
        if not value > 0:
            continue
        year = _sir_year(coverage_slice)
        by_year[year] = max(by_year.get(year, 0.0), float(value))
    if not by_year:
        return None

    return {
        "label": SIR_LABELS[mode],
        "color": SIR_COLORS[mode],
        "mode": mode,
        "points": [
            {"year_label": str(year), "x": float(year), "value": by_year[year]}
            for year in sorted(by_year)
        ],
    }

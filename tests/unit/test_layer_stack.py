from __future__ import annotations

from dataclasses import replace
from datetime import date
from pathlib import Path
import sys

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from coverage_tower.layer_stack import (
    build_quota_details,
    build_sir_series,
    build_tower_series,
    split_availability,
)
from coverage_tower.models import AVAILABLE, UNAVAILABLE, CoverageSlice
from coverage_tower.quota_share import QUOTA_SHARE_LABEL, quota_group_key
from coverage_tower.record_normalizer import date_to_ms
from coverage_tower.segmentation import build_layer_segments


def _slice(
    policy_id: str,
    *,
    carrier: str = "Atlas",
    limit: float = 2_000_000.0,
    consumed: float = 0.0,
    availability: str = AVAILABLE,
    year: int = 2020,
    sir_per_occ: float = 0.0,
    sir_aggregate: float = 0.0,
) -> CoverageSlice:
    start_ms = date_to_ms(date(year, 1, 1))
    end_ms = date_to_ms(date(year + 1, 1, 1))
    return CoverageSlice(
        policy_id=policy_id,
        policy_number=f"{policy_id}-1",
        carrier=carrier,
        carrier_group=f"{carrier} Group",
        insurance_program_id="P1",
        insurance_program="Primary",
        named_insured_id="N1",
        policy_limit_type_id="1",
        policy_limit_type="Bodily Injury",
        attachment_point=0,
        slice_limit=limit,
        availability=availability,  # type: ignore[arg-type]
        sir_per_occ=sir_per_occ,
        sir_aggregate=sir_aggregate,
        consumed=consumed,
        policy_start_ms=start_ms,
        policy_end_ms=end_ms,
        policy_start_year=year,
        policy_end_year=year,
        year=year,
        x_label=str(year),
        year_overlap_start_ms=start_ms,
        year_overlap_end_ms=end_ms,
    )


def _segments(slices: list[CoverageSlice], *, group_of=lambda s: s.carrier, quota: bool = False):
    return build_layer_segments(
        slices,
        display_group_of=group_of,
        quota_key_of=quota_group_key if quota else (lambda s: ""),
    )


def _colors(label: str) -> str:
    return f"color:{label}"


def test_split_availability_uses_consumption_for_available_carriers() -> None:
    (segment,) = _segments([_slice("D", consumed=500_000)])

    unavailable, available = split_availability(segment)

    assert unavailable == 500_000
    assert available == 1_500_000
    assert unavailable + available == segment.summed_limit


def test_split_availability_sums_capped_consumption_per_participant() -> None:
    slices = [
        _slice("U", carrier="Quota", limit=1_000_000, availability=UNAVAILABLE),
        _slice("A", carrier="Quota", limit=3_000_000, consumed=5_000_000),
    ]
    (segment,) = _segments(slices)

    assert split_availability(segment) == (3_000_000, 1_000_000)


def test_split_availability_ignores_carrier_solvency() -> None:
    (segment,) = _segments(
        [_slice("D", consumed=500_000, availability=UNAVAILABLE)]
    )

    assert split_availability(segment) == (500_000, 1_500_000)


def test_availability_view_routes_split_points_into_band_series() -> None:
    segments = _segments([_slice("D", consumed=500_000)], group_of=lambda s: s.availability)

    series = build_tower_series(
        segments,
        view="availability",
        color_for=_colors,
        availability_split=True,
    )

    assert [s["label"] for s in series] == ["Available", "Unavailable"]
    (available_point,) = series[0]["points"]
    (unavailable_point,) = series[1]["points"]
    assert (available_point["attach"], available_point["top"]) == (500_000, 2_000_000)
    assert (unavailable_point["attach"], unavailable_point["top"]) == (0, 500_000)
    assert unavailable_point["band"] == UNAVAILABLE
    assert series[0]["color"] == "color:Available"


def test_carrier_view_attaches_bands_when_split_enabled() -> None:
    segments = _segments([_slice("D", consumed=500_000)])

    (series,) = build_tower_series(
        segments, view="carrier", color_for=_colors, availability_split=True
    )

    (point,) = series["points"]
    assert point["bands"] == {"unavailable": 500_000, "available": 1_500_000}
    assert (point["attach"], point["top"]) == (0, 2_000_000)


def test_quota_participants_ordered_by_limit_then_carrier() -> None:
    slices = [
        _slice("Q1", carrier="Beacon", limit=3_000_000),
        _slice("Q2", carrier="Atlas", limit=3_000_000),
        _slice("Q3", carrier="Cedar", limit=4_000_000),
    ]
    segments = _segments(slices, group_of=lambda s: QUOTA_SHARE_LABEL, quota=True)

    (series,) = build_tower_series(segments, view="carrier", color_for=_colors)

    (point,) = series["points"]
    assert point["is_quota_share"] is True
    assert point["summed_limit"] == 10_000_000
    assert [p["carrier"] for p in point["participants"]] == ["Cedar", "Atlas", "Beacon"]


def test_series_order_puts_quota_share_first_then_alphabetical() -> None:
    slices = [
        _slice("Z", carrier="Zeta"),
        _slice("Q", carrier=QUOTA_SHARE_LABEL),
        _slice("A", carrier="alpha"),
    ]

    series = build_tower_series(_segments(slices), view="carrier", color_for=_colors)

    assert [s["label"] for s in series] == [QUOTA_SHARE_LABEL, "alpha", "Zeta"]


def test_points_sorted_by_start_end_and_attachment() -> None:
    slices = [
        _slice("B", year=2021),
        replace(_slice("C", year=2020), attachment_point=5_000_000),
        _slice("A", year=2020),
    ]

    (series,) = build_tower_series(_segments(slices), view="carrier", color_for=_colors)

    assert [(p["year_label"], p["attach"]) for p in series["points"]] == [
        ("2020", 0),
        ("2020", 5_000_000),
        ("2021", 0),
    ]


def test_quota_details_keyed_by_year_and_quota_key() -> None:
    slices = [
        _slice("Q1", carrier="Beacon", limit=5_000_000),
        _slice("Q2", carrier="Atlas", limit=5_000_000),
    ]
    segments = _segments(slices, group_of=lambda s: QUOTA_SHARE_LABEL, quota=True)

    details = build_quota_details(segments)

    key = quota_group_key(slices[0])
    assert list(details) == ["2020"]
    assert details["2020"][key]["display_label"] == "$10M xs $0 • Primary • 2020"
    assert [p["policy_id"] for p in details["2020"][key]["participants"]] == ["Q2", "Q1"]


def test_quota_details_skip_non_quota_segments() -> None:
    assert build_quota_details(_segments([_slice("A")])) == {}


def test_sir_series_takes_max_per_year() -> None:
    slices = [
        _slice("A", sir_per_occ=100_000, sir_aggregate=1_000_000),
        _slice("B", sir_per_occ=250_000),
        _slice("C", year=2021, sir_per_occ=300_000),
    ]

    per_occ = build_sir_series(slices, mode="per_occ")
    aggregate = build_sir_series(slices, mode="aggregate")

    assert per_occ is not None
    assert per_occ["label"] == "SIR (Per Occ)"
    assert [(p["year_label"], p["value"]) for p in per_occ["points"]] == [
        ("2020", 250_000),
        ("2021", 300_000),
    ]
    assert aggregate is not None
    assert [p["value"] for p in aggregate["points"]] == [1_000_000]
    assert build_sir_series(slices, mode="off") is None


def test_sir_series_rejects_unknown_mode() -> None:
    with pytest.raises(ValueError, match="sir_mode must be one of"):
        build_sir_series([], mode="sideways")

from __future__ import annotations

from datetime import date
from pathlib import Path
import sys

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from coverage_tower.formatting import (
    format_compact_money,
    format_full_date_utc,
    format_money,
)
from coverage_tower.models import AVAILABLE, CoverageSlice
from coverage_tower.record_normalizer import date_to_ms
from coverage_tower.services import FilterService, FilterState


def _slice(policy_id: str, *, carrier: str, program: str, limit_type: str, start: date, end: date) -> CoverageSlice:
    return CoverageSlice(
        policy_id=policy_id,
        policy_number="",
        carrier=carrier,
        carrier_group=f"{carrier} Group",
        insurance_program_id=program[:1],
        insurance_program=program,
        named_insured_id="",
        policy_limit_type_id="1",
        policy_limit_type=limit_type,
        attachment_point=0,
        slice_limit=1_000_000.0,
        availability=AVAILABLE,
        sir_per_occ=0.0,
        sir_aggregate=0.0,
        consumed=0.0,
        policy_start_ms=date_to_ms(start),
        policy_end_ms=date_to_ms(end),
        policy_start_year=start.year,
        policy_end_year=end.year,
    )


SLICES = [
    _slice("A", carrier="Atlas", program="Primary", limit_type="Bodily Injury",
           start=date(2019, 7, 1), end=date(2020, 7, 1)),
    _slice("B", carrier="Beacon", program="Umbrella", limit_type="Property Damage",
           start=date(2021, 1, 1), end=date(2022, 1, 1)),
]


def _kept(**state) -> list[str]:
    return [s.policy_id for s in FilterService(FilterState(**state)).apply(SLICES)]


def test_normalize_view_accepts_aliases() -> None:
    assert FilterService.normalize_view("carrierGroup") == "carrier_group"
    assert FilterService.normalize_view("Carrier Group") == "carrier_group"
    assert FilterService.normalize_view(" AVAILABILITY ") == "availability"
    with pytest.raises(ValueError, match="view must be one of"):
        FilterService.normalize_view("")


def test_normalize_modes_and_themes() -> None:
    assert FilterService.normalize_sir_mode("PerOcc") == "per_occ"
    assert FilterService.normalize_theme(" Light ") == "light"
    with pytest.raises(ValueError, match="sir_mode must be one of"):
        FilterService.normalize_sir_mode("weekly")
    with pytest.raises(ValueError, match="theme must be one of"):
        FilterService.normalize_theme("sepia")


def test_normalize_labels_dedupes_case_insensitively() -> None:
    assert FilterService.normalize_labels(["beacon", " Atlas ", "BEACON", ""]) == (
        "Atlas",
        "beacon",
    )
    assert FilterService.normalize_labels("Atlas") == ("Atlas",)
    assert FilterService.normalize_labels(None) == ()


def test_ranges_are_swapped_and_date_end_is_inclusive() -> None:
    assert FilterService.normalize_year_range(2022, "2020") == (2020, 2022)
    assert FilterService.normalize_year_range(None, 2021) == (2021, 2021)
    assert FilterService.normalize_year_range("x", None) is None
    assert FilterService.normalize_date_range("2021-03-31", "2021-03-01") == (
        date_to_ms(date(2021, 3, 1)),
        date_to_ms(date(2021, 4, 1)),
    )


def test_apply_filters_by_entities_program_and_limit_type() -> None:
    assert _kept() == ["A", "B"]
    assert _kept(carriers=("atlas",)) == ["A"]
    assert _kept(carrier_groups=("Beacon Group",)) == ["B"]
    assert _kept(insurance_programs=("U",)) == ["B"]
    assert _kept(policy_limit_types=("bodily injury",)) == ["A"]


def test_date_range_takes_precedence_over_year_range() -> None:
    window = (date_to_ms(date(2020, 7, 1)), date_to_ms(date(2020, 12, 31)))

    assert _kept(year_range=(2020, 2020)) == ["A"]
    assert _kept(year_range=(2020, 2020), date_range=window) == []
    assert _kept(year_range=(2022, 2023)) == []


def test_default_policy_limit_type_prefers_bodily_injury() -> None:
    assert FilterService.default_policy_limit_type(SLICES) == "Bodily Injury"
    assert FilterService.default_policy_limit_type(SLICES[1:]) == "Property Damage"
    assert FilterService.default_policy_limit_type([]) is None


def test_money_and_date_formatting() -> None:
    assert format_compact_money(10_000_000) == "$10M"
    assert format_compact_money(2_500_000) == "$2.5M"
    assert format_compact_money(750) == "$750"
    assert format_compact_money("n/a") == "$0"
    assert format_money(1234567.4) == "$1,234,567"
    assert format_full_date_utc(date_to_ms(date(2020, 12, 31))) == "December 31, 2020"

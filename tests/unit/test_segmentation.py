from __future__ import annotations

from dataclasses import replace
from datetime import date, timedelta
from pathlib import Path
import sys

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from coverage_tower.models import AVAILABLE, CoverageSlice, start_of_year_ms
from coverage_tower.quota_share import QUOTA_SHARE_LABEL, quota_group_key
from coverage_tower.record_normalizer import date_to_ms
from coverage_tower.segmentation import (
    build_layer_segments,
    merge_adjacent_segments,
)


def _slice(
    policy_id: str,
    start: date,
    end: date,
    *,
    limit: float = 1_000_000.0,
    attach: int = 0,
    carrier: str = "Atlas",
) -> CoverageSlice:
    """Whole-policy slice; ``end`` is the first uncovered day."""
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
        attachment_point=attach,
        slice_limit=limit,
        availability=AVAILABLE,
        sir_per_occ=0.0,
        sir_aggregate=0.0,
        consumed=0.0,
        policy_start_ms=date_to_ms(start),
        policy_end_ms=date_to_ms(end),
        policy_start_year=start.year,
        policy_end_year=(end - timedelta(days=1)).year,
        year=start.year,
        x_label=str(start.year),
    )


def _year_slices(policy_id: str, start: date, end: date, **kwargs) -> list[CoverageSlice]:
    whole = _slice(policy_id, start, end, **kwargs)
    slices = []
    for year in range(whole.policy_start_year, whole.policy_end_year + 1):
        overlap_start = max(whole.policy_start_ms, start_of_year_ms(year))
        overlap_end = min(whole.policy_end_ms, start_of_year_ms(year + 1))
        slices.append(
            replace(
                whole,
                year=year,
                x_label=str(year),
                year_overlap_start_ms=overlap_start,
                year_overlap_end_ms=overlap_end,
            )
        )
    return slices


def _by_carrier(slices: list[CoverageSlice], *, annualized: bool = False):
    return build_layer_segments(
        slices,
        display_group_of=lambda s: s.carrier,
        quota_key_of=lambda s: "",
        annualized=annualized,
    )


def _active_limit(slices: list[CoverageSlice], at_ms: int) -> float:
    return sum(
        s.slice_limit
        for s in slices
        if s.slice_limit > 0 and s.span_start_ms <= at_ms < s.span_end_ms
    )


def _ms(year: int, month: int, day: int) -> int:
    return date_to_ms(date(year, month, day))


def test_quota_participants_sum_into_one_segment() -> None:
    slices = [
        _slice("A", date(2020, 1, 1), date(2021, 1, 1), limit=5_000_000),
        _slice("B", date(2020, 1, 1), date(2021, 1, 1), limit=5_000_000, carrier="Beacon"),
    ]

    segments = build_layer_segments(
        slices,
        display_group_of=lambda s: QUOTA_SHARE_LABEL,
        quota_key_of=quota_group_key,
    )

    assert len(segments) == 1
    (segment,) = segments
    assert segment.summed_limit == 10_000_000
    assert segment.top == 10_000_000
    assert segment.quota_group_key == quota_group_key(slices[0])
    assert sorted(p.policy_id for p in segment.participants) == ["A", "B"]
    assert all(p.quota_group_key == segment.quota_group_key for p in segment.participants)


def test_segments_partition_time_and_conserve_limits() -> None:
    slices = [
        _slice("P1", date(2020, 1, 1), date(2021, 1, 1), limit=1_000_000),
        _slice("P2", date(2020, 4, 1), date(2020, 10, 1), limit=2_000_000),
        _slice("P3", date(2020, 10, 1), date(2021, 3, 1), limit=3_000_000),
        _slice("P4", date(2021, 6, 1), date(2021, 9, 1), limit=4_000_000),
    ]

    segments = _by_carrier(slices)

    assert [(s.segment_start_ms, s.segment_end_ms, s.summed_limit) for s in segments] == [
        (_ms(2020, 1, 1), _ms(2020, 4, 1), 1_000_000),
        (_ms(2020, 4, 1), _ms(2020, 10, 1), 3_000_000),
        (_ms(2020, 10, 1), _ms(2021, 1, 1), 4_000_000),
        (_ms(2021, 1, 1), _ms(2021, 3, 1), 3_000_000),
        (_ms(2021, 6, 1), _ms(2021, 9, 1), 4_000_000),
    ]
    for previous, current in zip(segments, segments[1:]):
        assert previous.segment_end_ms <= current.segment_start_ms
    for segment in segments:
        for at_ms in (segment.segment_start_ms, segment.segment_end_ms - 1):
            assert segment.summed_limit == _active_limit(slices, at_ms)


def test_policy_ending_when_another_begins_is_not_concurrent() -> None:
    slices = [
        _slice("A", date(2020, 1, 1), date(2020, 7, 1)),
        _slice("B", date(2020, 7, 1), date(2021, 1, 1)),
    ]

    segments = _by_carrier(slices)

    assert [s.summed_limit for s in segments] == [1_000_000, 1_000_000]
    assert segments[0].segment_end_ms == segments[1].segment_start_ms
    assert [p.policy_id for p in segments[0].participants] == ["A"]
    assert [p.policy_id for p in segments[1].participants] == ["B"]


def test_year_slices_of_one_policy_merge_back_together() -> None:
    slices = _year_slices("C", date(2020, 7, 1), date(2021, 7, 1))

    (segment,) = _by_carrier(slices)

    assert segment.segment_start_ms == _ms(2020, 7, 1)
    assert segment.segment_end_ms == _ms(2021, 7, 1)
    assert segment.summed_limit == 1_000_000
    (participant,) = segment.participants
    assert participant.slice_start_ms == _ms(2020, 7, 1)
    assert participant.slice_end_ms == _ms(2021, 7, 1)


def test_annualized_mode_keeps_one_segment_per_year() -> None:
    slices = _year_slices("C", date(2020, 7, 1), date(2021, 7, 1))

    segments = _by_carrier(slices, annualized=True)

    assert [(s.segment_start_ms, s.segment_end_ms) for s in segments] == [
        (_ms(2020, 7, 1), _ms(2021, 1, 1)),
        (_ms(2021, 1, 1), _ms(2021, 7, 1)),
    ]
    assert [s.year_label for s in segments] == ["2020", "2021"]
    assert all(s.summed_limit == 1_000_000 for s in segments)


def test_annualized_mode_cuts_whole_policy_slices_at_year_start() -> None:
    slices = [_slice("C", date(2020, 7, 1), date(2021, 7, 1))]

    segments = _by_carrier(slices, annualized=True)

    assert [(s.segment_start_ms, s.segment_end_ms) for s in segments] == [
        (_ms(2020, 7, 1), _ms(2021, 1, 1)),
        (_ms(2021, 1, 1), _ms(2021, 7, 1)),
    ]
    assert [
        (p.slice_start_ms, p.slice_end_ms) for s in segments for p in s.participants
    ] == [
        (_ms(2020, 7, 1), _ms(2021, 1, 1)),
        (_ms(2021, 1, 1), _ms(2021, 7, 1)),
    ]
    assert len(_by_carrier(slices)) == 1


def test_merge_is_idempotent_and_deterministic() -> None:
    slices = _year_slices("C", date(2019, 3, 1), date(2022, 3, 1)) + [
        _slice("D", date(2020, 1, 1), date(2021, 1, 1), limit=2_000_000),
    ]

    merged = _by_carrier(slices)

    assert merge_adjacent_segments(merged) == merged
    assert _by_carrier(list(reversed(slices))) == merged


def test_renewal_with_new_policy_id_is_not_merged() -> None:
    slices = [
        _slice("A", date(2020, 1, 1), date(2021, 1, 1)),
        _slice("A2", date(2021, 1, 1), date(2022, 1, 1)),
    ]

    assert len(_by_carrier(slices)) == 2


def test_non_positive_limits_never_produce_segments() -> None:
    slices = [
        _slice("Z", date(2020, 1, 1), date(2021, 1, 1), limit=0),
        _slice("N", date(2020, 1, 1), date(2021, 1, 1), limit=-5),
    ]

    assert _by_carrier(slices) == []
    (segment,) = _by_carrier(slices + [_slice("P", date(2020, 1, 1), date(2021, 1, 1))])
    assert segment.summed_limit == 1_000_000
    assert [p.policy_id for p in segment.participants] == ["P"]


def test_segments_sorted_by_start_then_attachment() -> None:
    slices = [
        _slice("HIGH", date(2020, 1, 1), date(2021, 1, 1), attach=5_000_000),
        _slice("LATE", date(2020, 6, 1), date(2021, 1, 1), carrier="Beacon"),
        _slice("LOW", date(2020, 1, 1), date(2021, 1, 1)),
    ]

    segments = _by_carrier(slices)

    assert [s.participants[0].policy_id for s in segments] == ["LOW", "HIGH", "LATE"]


def test_distinct_display_groups_stay_separate_at_same_attachment() -> None:
    slices = [
        _slice("A", date(2020, 1, 1), date(2021, 1, 1)),
        _slice("B", date(2020, 1, 1), date(2021, 1, 1), carrier="Beacon"),
    ]

    segments = _by_carrier(slices)

    assert sorted(s.display_group for s in segments) == ["Atlas", "Beacon"]
    assert all(s.summed_limit == 1_000_000 for s in segments)

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable

from coverage_tower.models import (
    CoverageSlice,
    LayerSegment,
    Participant,
    ms_to_datetime,
    start_of_year_ms,
)
from coverage_tower.quota_share import quota_group_key


LIMIT_EPSILON = 1e-9


@dataclass
class SegmentBucket:
    display_group: str
    attachment_point: int
    quota_group_key: str
    slices: list[CoverageSlice] = field(default_factory=list)

    @property
    def key(self) -> tuple[str, int, str]:
        return (self.display_group, self.attachment_point, self.quota_group_key)


def bucket_slices(
    slices: Iterable[CoverageSlice],
    *,
    display_group_of: Callable[[CoverageSlice], str],
    quota_key_of: Callable[[CoverageSlice], str],
) -> list[SegmentBucket]:
    buckets: dict[tuple[str, int, str], SegmentBucket] = {}
    for coverage_slice in slices:
        if coverage_slice.span_end_ms <= coverage_slice.span_start_ms:
            continue
        bucket = SegmentBucket(
            display_group=display_group_of(coverage_slice),
            attachment_point=int(coverage_slice.attachment_point),
            quota_group_key=quota_key_of(coverage_slice),
        )
        buckets.setdefault(bucket.key, bucket).slices.append(coverage_slice)
    return list(buckets.values())


def _participant_key(participant: Participant) -> tuple:
    return (
        participant.policy_id,
        participant.slice_start_ms,
        participant.slice_limit,
        participant.quota_group_key,
    )


def segment_bucket(bucket: SegmentBucket) -> list[LayerSegment]:
    """Sweep the bucket's boundaries into constant-state sub-intervals.

    Intervals are left-closed and right-open, so a policy ending exactly when
    another begins is never counted as concurrent.
    """
    bounds = sorted(
        {s.span_start_ms for s in bucket.slices} | {s.span_end_ms for s in bucket.slices}
    )
    segments: list[LayerSegment] = []
    for seg_start, seg_end in zip(bounds[:-1], bounds[1:]):
        if seg_end <= seg_start:
            continue
        participants: list[Participant] = []
        summed_limit = 0.0
        for coverage_slice in bucket.slices:
            if not (
                coverage_slice.span_start_ms < seg_end
                and coverage_slice.span_end_ms > seg_start
            ):
                continue
            limit = float(coverage_slice.slice_limit)
            if not math.isfinite(limit) or limit <= 0:
                continue
            summed_limit += limit
            participants.append(
                Participant.from_slice(
                    coverage_slice,
                    quota_group_key(coverage_slice) if bucket.quota_group_key else "",
                )
            )
        if not participants or not summed_limit > 0:
            continue
        segments.append(
            LayerSegment(
                display_group=bucket.display_group,
                attachment_point=bucket.attachment_point,
                quota_group_key=bucket.quota_group_key,
                segment_start_ms=seg_start,
                segment_end_ms=seg_end,
                summed_limit=summed_limit,
                participants=tuple(sorted(participants, key=_participant_key)),
            )
        )
    return segments


def _widen_participants(
    left: tuple[Participant, ...], right: tuple[Participant, ...]
) -> tuple[Participant, ...]:
    ordered_left = sorted(left, key=_participant_key)
    ordered_right = sorted(right, key=_participant_key)
    return tuple(
        replace(
            a,
            slice_start_ms=min(a.slice_start_ms, b.slice_start_ms),
            slice_end_ms=max(a.slice_end_ms, b.slice_end_ms),
        )
        for a, b in zip(ordered_left, ordered_right)
    )


def can_merge(previous: LayerSegment, current: LayerSegment) -> bool:
    return (
        previous.display_group == current.display_group
        and previous.attachment_point == current.attachment_point
        and previous.quota_group_key == current.quota_group_key
        and previous.segment_end_ms == current.segment_start_ms
        and previous.signature() == current.signature()
        and abs(previous.summed_limit - current.summed_limit) < LIMIT_EPSILON
    )


def merge_adjacent_segments(segments: Iterable[LayerSegment]) -> list[LayerSegment]:
    merged: list[LayerSegment] = []
    for segment in segments:
        if merged and can_merge(merged[-1], segment):
            previous = merged[-1]
            merged[-1] = replace(
                previous,
                segment_end_ms=segment.segment_end_ms,
                participants=_widen_participants(
                    previous.participants, segment.participants
                ),
            )
        else:
            merged.append(segment)
    return merged


def split_at_year_boundaries(segment: LayerSegment) -> list[LayerSegment]:
    """Cut a segment at each Jan 1 it spans; participant spans are clipped."""
    pieces: list[LayerSegment] = []
    piece_start = segment.segment_start_ms
    while piece_start < segment.segment_end_ms:
        next_year = ms_to_datetime(piece_start).year + 1
        piece_end = min(segment.segment_end_ms, start_of_year_ms(next_year))
        pieces.append(
            replace(
                segment,
                segment_start_ms=piece_start,
                segment_end_ms=piece_end,
                participants=tuple(
                    replace(
                        p,
                        slice_start_ms=max(p.slice_start_ms, piece_start),
                        slice_end_ms=min(p.slice_end_ms, piece_end),
                    )
                    for p in segment.participants
                ),
            )
        )
        piece_start = piece_end
    return pieces


def segment_sort_key(segment: LayerSegment) -> tuple:
    return (
        segment.segment_start_ms,
        segment.attachment_point,
        segment.segment_end_ms,
        segment.display_group,
        segment.quota_group_key,
    )


def build_layer_segments(
    slices: Iterable[CoverageSlice],
    *,
    display_group_of: Callable[[CoverageSlice], str],
    quota_key_of: Callable[[CoverageSlice], str],
    annualized: bool = False,
) -> list[LayerSegment]:
    started = time.perf_counter()
    buckets = bucket_slices(
        slices,
        display_group_of=display_group_of,
        quota_key_of=quota_key_of,
    )
    segments: list[LayerSegment] = []
    for bucket in buckets:
        raw_segments = segment_bucket(bucket)
        if annualized:
            for segment in raw_segments:
                segments.extend(split_at_year_boundaries(segment))
        else:
            segments.extend(merge_adjacent_segments(raw_segments))

    segments = [s for s in segments if s.summed_limit > 0]
    segments.sort(key=segment_sort_key)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logging.debug(
        "Segmented %d buckets into %d layer segments in %.0f ms",
        len(buckets),
        len(segments),
        elapsed_ms,
    )
    return segments

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

import pandas as pd


Availability = Literal["Available", "Unavailable"]
AVAILABLE: Availability = "Available"
UNAVAILABLE: Availability = "Unavailable"

UNKNOWN_CARRIER = "(unknown carrier)"
UNKNOWN_GROUP = "(unknown group)"
UNKNOWN_PROGRAM = "(unknown program)"

VIEW_CARRIER = "carrier"
VIEW_CARRIER_GROUP = "carrier_group"
VIEW_AVAILABILITY = "availability"
VIEWS = (VIEW_CARRIER, VIEW_CARRIER_GROUP, VIEW_AVAILABILITY)

MS_PER_DAY = 24 * 60 * 60 * 1000


def start_of_year_ms(year: int) -> int:
    return int(datetime(year, 1, 1, tzinfo=timezone.utc).timestamp() * 1000)


def ms_to_datetime(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def ms_to_year_axis_value(ms: int) -> float:
    """Map a UTC timestamp onto the continuous year axis.

    Each calendar year occupies [year - 0.5, year + 0.5) so that Jan 1 sits at
    the left edge of the year's tick and day-level positions stay exact.
    """
    year = ms_to_datetime(ms).year
    year_start = start_of_year_ms(year)
    span = start_of_year_ms(year + 1) - year_start
    if span <= 0:
        return float(year)
    fraction = min(max((ms - year_start) / span, 0.0), 1.0)
    return year - 0.5 + fraction


def year_label_from_axis_value(value: float) -> str:
    return str(math.floor(value + 0.5))


@dataclass(frozen=True)
class CoverageSlice:
    policy_id: str
    policy_number: str
    carrier: str
    carrier_group: str
    insurance_program_id: str
    insurance_program: str
    named_insured_id: str
    policy_limit_type_id: str
    policy_limit_type: str
    attachment_point: int
    slice_limit: float
    availability: Availability
    sir_per_occ: float
    sir_aggregate: float
    consumed: float
    policy_start_ms: int
    policy_end_ms: int
    policy_start_year: int
    policy_end_year: int
    year: int | None = None
    x_label: str = ""
    year_overlap_start_ms: int | None = None
    year_overlap_end_ms: int | None = None

    @property
    def span_start_ms(self) -> int:
        if self.year_overlap_start_ms is not None:
            return self.year_overlap_start_ms
        return self.policy_start_ms

    @property
    def span_end_ms(self) -> int:
        if self.year_overlap_end_ms is not None:
            return self.year_overlap_end_ms
        return self.policy_end_ms

    @property
    def x_start(self) -> float:
        return ms_to_year_axis_value(self.span_start_ms)

    @property
    def x_end(self) -> float:
        return ms_to_year_axis_value(self.span_end_ms)

    @property
    def is_unavailable(self) -> bool:
        return self.availability == UNAVAILABLE


@dataclass(frozen=True)
class Participant:
    policy_id: str
    policy_number: str
    carrier: str
    carrier_group: str
    insurance_program: str
    policy_limit_type: str
    availability: Availability
    policy_start_ms: int
    policy_end_ms: int
    slice_start_ms: int
    slice_end_ms: int
    slice_limit: float
    consumed: float
    sir_per_occ: float
    sir_aggregate: float
    quota_group_key: str = ""

    @classmethod
    def from_slice(
        cls, coverage_slice: CoverageSlice, quota_group_key: str = ""
    ) -> "Participant":
        return cls(
            policy_id=coverage_slice.policy_id,
            policy_number=coverage_slice.policy_number,
            carrier=coverage_slice.carrier,
            carrier_group=coverage_slice.carrier_group,
            insurance_program=coverage_slice.insurance_program,
            policy_limit_type=coverage_slice.policy_limit_type
            or coverage_slice.policy_limit_type_id,
            availability=coverage_slice.availability,
            policy_start_ms=coverage_slice.policy_start_ms,
            policy_end_ms=coverage_slice.policy_end_ms,
            slice_start_ms=coverage_slice.span_start_ms,
            slice_end_ms=coverage_slice.span_end_ms,
            slice_limit=float(coverage_slice.slice_limit),
            consumed=float(coverage_slice.consumed),
            sir_per_occ=float(coverage_slice.sir_per_occ),
            sir_aggregate=float(coverage_slice.sir_aggregate),
            quota_group_key=quota_group_key,
        )

    def signature(self) -> tuple[str, float, str]:
        return (self.policy_id, self.slice_limit, self.quota_group_key)

    def to_dict(self) -> dict[str, object]:
        return {
            "policy_id": self.policy_id,
            "policy_number": self.policy_number,
            "carrier": self.carrier,
            "carrier_group": self.carrier_group,
            "insurance_program": self.insurance_program,
            "policy_limit_type": self.policy_limit_type,
            "availability": self.availability,
            "policy_start_ms": self.policy_start_ms,
            "policy_end_ms": self.policy_end_ms,
            "slice_start_ms": self.slice_start_ms,
            "slice_end_ms": self.slice_end_ms,
            "slice_limit": self.slice_limit,
            "consumed": self.consumed,
            "sir_per_occ": self.sir_per_occ,
            "sir_aggregate": self.sir_aggregate,
            "quota_group_key": self.quota_group_key,
        }


@dataclass(frozen=True)
class LayerSegment:
    display_group: str
    attachment_point: int
    quota_group_key: str
    segment_start_ms: int
    segment_end_ms: int
    summed_limit: float
    participants: tuple[Participant, ...] = field(default_factory=tuple)

    @property
    def top(self) -> float:
        return self.attachment_point + self.summed_limit

    @property
    def x_start(self) -> float:
        return ms_to_year_axis_value(self.segment_start_ms)

    @property
    def x_end(self) -> float:
        return ms_to_year_axis_value(self.segment_end_ms)

    @property
    def x_mid(self) -> float:
        return (self.x_start + self.x_end) / 2

    @property
    def year_label(self) -> str:
        return year_label_from_axis_value(self.x_mid)

    def signature(self) -> tuple[tuple[str, float, str], ...]:
        return tuple(sorted(p.signature() for p in self.participants))


@dataclass(frozen=True)
class CoverageTables:
    """Raw rows per source table, each row a column-name to string mapping."""

    limits: list[dict[str, str]] = field(default_factory=list)
    policy_dates: list[dict[str, str]] = field(default_factory=list)
    policies: list[dict[str, str]] = field(default_factory=list)
    carriers: list[dict[str, str]] = field(default_factory=list)
    carrier_groups: list[dict[str, str]] = field(default_factory=list)
    insurance_programs: list[dict[str, str]] = field(default_factory=list)
    policy_limit_types: list[dict[str, str]] = field(default_factory=list)


@dataclass(frozen=True)
class SliceBuild:
    slices: list[CoverageSlice]
    x_labels: list[str]
    use_year_axis: bool


def slices_to_dataframe(slices: list[CoverageSlice]) -> pd.DataFrame:
    columns = [
        "Year",
        "InsuranceProgram",
        "PolicyLimitType",
        "Carrier",
        "CarrierGroup",
        "Availability",
        "Attachment",
        "LayerLimit",
        "Consumed",
        "PolicyNumber",
        "PolicyID",
    ]
    rows = [
        {
            "Year": s.year if s.year is not None else s.x_label,
            "InsuranceProgram": s.insurance_program,
            "PolicyLimitType": s.policy_limit_type or s.policy_limit_type_id,
            "Carrier": s.carrier,
            "CarrierGroup": s.carrier_group,
            "Availability": s.availability,
            "Attachment": s.attachment_point,
            "LayerLimit": s.slice_limit,
            "Consumed": s.consumed,
            "PolicyNumber": s.policy_number,
            "PolicyID": s.policy_id,
        }
        for s in slices
    ]
    return pd.DataFrame(rows, columns=columns)

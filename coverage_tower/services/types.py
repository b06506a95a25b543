from __future__ import annotations

from typing import TypedDict


class AvailabilityBands(TypedDict):
    unavailable: float
    available: float


class TowerPoint(TypedDict, total=False):
    x_start: float
    x_end: float
    x_mid: float
    segment_start_ms: int
    segment_end_ms: int
    year_label: str
    attach: float
    top: float
    summed_limit: float
    participants: list[dict[str, object]]
    is_quota_share: bool
    quota_group_key: str
    group: str
    annualized: bool
    bands: AvailabilityBands
    band: str


class TowerSeries(TypedDict):
    label: str
    color: str
    points: list[TowerPoint]


class SirPoint(TypedDict):
    year_label: str
    x: float
    value: float


class SirSeries(TypedDict):
    label: str
    color: str
    mode: str
    points: list[SirPoint]


class QuotaDetail(TypedDict):
    display_label: str
    participants: list[dict[str, object]]


class LegendItem(TypedDict):
    label: str
    color: str
    hidden: bool
    synthetic: bool


class TowerPayload(TypedDict, total=False):
    state: str
    view: str
    theme: str
    annualized: bool
    availability_split: bool
    sir_mode: str
    quota_share_enabled: bool
    series: list[TowerSeries]
    sir_series: SirSeries | None
    quota_details: dict[str, dict[str, QuotaDetail]]
    legend: list[LegendItem]
    x_labels: list[str]
    x_range: list[float]
    slice_count: int
    segment_count: int


class PolicySelection(TypedDict):
    policy_id: str
    policy_number: str
    policy_limit_type: str
    insurance_program: str
    carrier: str
    carrier_group: str
    availability: str
    policy_start_ms: int
    policy_end_ms: int
    segment_start_ms: int
    segment_end_ms: int
    attach: float
    limit: float
    top: float
    year_label: str
    is_quota_share: bool
    view: str

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, Literal, Union

from coverage_tower.color_assigner import normalize_label
from coverage_tower.models import (
    VIEW_CARRIER,
    VIEW_CARRIER_GROUP,
    CoverageSlice,
)
from coverage_tower.quota_share import QUOTA_SHARE_LABEL
from coverage_tower.services.types import LegendItem, TowerSeries


@dataclass(frozen=True)
class RealSeries:
    label: str
    color: str
    point_count: int
    kind: Literal["real"] = "real"


@dataclass(frozen=True)
class SyntheticLabel:
    label: str
    color: str
    dimension: Literal["carrier", "carrier_group"]
    kind: Literal["synthetic"] = "synthetic"


LegendEntry = Union[RealSeries, SyntheticLabel]

_BUCKET_LABELS = {normalize_label(QUOTA_SHARE_LABEL), "unavailable", "available"}


@dataclass
class LegendVisibility:
    """Hide/show state per legend label, kept across filter changes."""

    hidden_carriers: set[str] = field(default_factory=set)
    hidden_carrier_groups: set[str] = field(default_factory=set)
    hidden_buckets: set[str] = field(default_factory=set)

    def _target(self, label: str, view: str) -> set[str]:
        if normalize_label(label) in _BUCKET_LABELS:
            return self.hidden_buckets
        if view == VIEW_CARRIER:
            return self.hidden_carriers
        if view == VIEW_CARRIER_GROUP:
            return self.hidden_carrier_groups
        return self.hidden_buckets

    def is_hidden(self, label: str, *, view: str) -> bool:
        return normalize_label(label) in self._target(label, view)

    def toggle(self, label: str, *, view: str) -> bool:
        target = self._target(label, view)
        key = normalize_label(label)
        if key in target:
            target.discard(key)
            return False
        target.add(key)
        return True

    def hides_slice(self, coverage_slice: CoverageSlice, *, view: str) -> bool:
        if view == VIEW_CARRIER:
            return normalize_label(coverage_slice.carrier) in self.hidden_carriers
        if view == VIEW_CARRIER_GROUP:
            return (
                normalize_label(coverage_slice.carrier_group)
                in self.hidden_carrier_groups
            )
        return False

    def clear(self) -> None:
        self.hidden_carriers.clear()
        self.hidden_carrier_groups.clear()
        self.hidden_buckets.clear()

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "carriers": sorted(self.hidden_carriers),
            "carrier_groups": sorted(self.hidden_carrier_groups),
            "buckets": sorted(self.hidden_buckets),
        }

    @classmethod
    def from_dict(cls, data: object) -> "LegendVisibility":
        if not isinstance(data, dict):
            return cls()

        def _labels(key: str) -> set[str]:
            values = data.get(key) or []
            if not isinstance(values, (list, tuple, set)):
                return set()
            return {normalize_label(v) for v in values if str(v or "").strip()}

        return cls(
            hidden_carriers=_labels("carriers"),
            hidden_carrier_groups=_labels("carrier_groups"),
            hidden_buckets=_labels("buckets"),
        )


def _entity_labels(slices: Iterable[CoverageSlice], view: str) -> list[str]:
    if view == VIEW_CARRIER:
        labels = {s.carrier for s in slices}
    elif view == VIEW_CARRIER_GROUP:
        labels = {s.carrier_group for s in slices}
    else:
        return []
    return sorted(labels, key=lambda label: label.lower())


def build_legend_entries(
    series: Iterable[TowerSeries],
    slices: Iterable[CoverageSlice],
    *,
    view: str,
    color_for: Callable[[str], str],
) -> list[LegendEntry]:
    """Real series first, then a synthetic label for each carrier (or group)
    present in the filtered slices that has no series of its own, e.g. because
    it only appears inside the quota share bucket or is currently hidden."""
    entries: list[LegendEntry] = [
        RealSeries(label=s["label"], color=s["color"], point_count=len(s["points"]))
        for s in series
    ]
    seen = {normalize_label(entry.label) for entry in entries}
    dimension: Literal["carrier", "carrier_group"] = (
        "carrier" if view == VIEW_CARRIER else "carrier_group"
    )
    for label in _entity_labels(slices, view):
        key = normalize_label(label)
        if key in seen:
            continue
        seen.add(key)
        entries.append(
            SyntheticLabel(label=label, color=color_for(label), dimension=dimension)
        )
    return entries


def legend_items(
    entries: Iterable[LegendEntry],
    visibility: LegendVisibility,
    *,
    view: str,
) -> list[LegendItem]:
    return [
        {
            "label": entry.label,
            "color": entry.color,
            "hidden": visibility.is_hidden(entry.label, view=view),
            "synthetic": isinstance(entry, SyntheticLabel),
        }
        for entry in entries
    ]

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Iterable, Optional

from coverage_tower.color_assigner import THEMES, normalize_label
from coverage_tower.layer_stack import SIR_MODE_OFF, SIR_MODES
from coverage_tower.models import (
    MS_PER_DAY,
    VIEW_AVAILABILITY,
    VIEW_CARRIER,
    VIEW_CARRIER_GROUP,
    VIEWS,
    CoverageSlice,
    start_of_year_ms,
)
from coverage_tower.record_normalizer import date_to_ms, parse_date_utc


DEFAULT_POLICY_LIMIT_TYPE = "Bodily Injury"

_VIEW_ALIASES = {
    "carrier": VIEW_CARRIER,
    "carriers": VIEW_CARRIER,
    "carriergroup": VIEW_CARRIER_GROUP,
    "carriergroups": VIEW_CARRIER_GROUP,
    "group": VIEW_CARRIER_GROUP,
    "availability": VIEW_AVAILABILITY,
}

_SIR_ALIASES = {
    "off": "off",
    "none": "off",
    "per_occ": "per_occ",
    "perocc": "per_occ",
    "per occ": "per_occ",
    "aggregate": "aggregate",
    "agg": "aggregate",
}


@dataclass(frozen=True)
class FilterState:
    view: str = VIEW_CARRIER
    carriers: tuple[str, ...] = ()
    carrier_groups: tuple[str, ...] = ()
    insurance_programs: tuple[str, ...] = ()
    policy_limit_types: tuple[str, ...] = ()
    year_range: Optional[tuple[int, int]] = None
    date_range: Optional[tuple[int, int]] = None
    annualized: bool = False
    availability_split: bool = False
    sir_mode: str = SIR_MODE_OFF
    theme: str = "dark"

    def update(self, **changes) -> "FilterState":
        return replace(self, **changes)


@dataclass
class FilterService:
    state: FilterState = field(default_factory=FilterState)

    @staticmethod
    def normalize_view(view: object) -> str:
        key = re.sub(r"[^a-z]", "", str(view or "").lower())
        resolved = _VIEW_ALIASES.get(key)
        if resolved is None:
            raise ValueError(f"view must be one of {', '.join(VIEWS)}, got {view!r}")
        return resolved

    @staticmethod
    def normalize_sir_mode(mode: object) -> str:
        resolved = _SIR_ALIASES.get(str(mode or "").strip().lower())
        if resolved is None:
            raise ValueError(
                f"sir_mode must be one of {', '.join(SIR_MODES)}, got {mode!r}"
            )
        return resolved

    @staticmethod
    def normalize_theme(theme: object) -> str:
        resolved = str(theme or "").strip().lower()
        if resolved not in THEMES:
            raise ValueError(f"theme must be one of {', '.join(THEMES)}, got {theme!r}")
        return resolved

    @staticmethod
    def normalize_labels(values: Iterable[object] | None) -> tuple[str, ...]:
        if values is None:
            return ()
        if isinstance(values, str):
            values = [values]
        seen: dict[str, str] = {}
        for value in values:
            text = str(value if value is not None else "").strip()
            if text:
                seen.setdefault(normalize_label(text), text)
        return tuple(sorted(seen.values(), key=str.lower))

    @staticmethod
    def normalize_year_range(
        start: object, end: object
    ) -> Optional[tuple[int, int]]:
        years = []
        for value in (start, end):
            try:
                years.append(int(value))  # type: ignore[arg-type]
            except (TypeError, ValueError):
                years.append(None)
        first, last = years
        if first is None and last is None:
            return None
        if first is None:
            first = last
        if last is None:
            last = first
        if first > last:
            first, last = last, first
        return (first, last)

    @staticmethod
    def normalize_date_range(
        start: object, end: object
    ) -> Optional[tuple[int, int]]:
        """Return a half-open millisecond window; the end date is inclusive."""
        start_date = parse_date_utc(start)
        end_date = parse_date_utc(end)
        if start_date is None and end_date is None:
            return None
        if start_date is None:
            start_date = end_date
        if end_date is None:
            end_date = start_date
        if start_date > end_date:
            start_date, end_date = end_date, start_date
        return (date_to_ms(start_date), date_to_ms(end_date) + MS_PER_DAY)

    @staticmethod
    def default_policy_limit_type(slices: Iterable[CoverageSlice]) -> Optional[str]:
        names = {
            (s.policy_limit_type or s.policy_limit_type_id).strip()
            for s in slices
        }
        names.discard("")
        if not names:
            return None
        for name in names:
            if normalize_label(name) == normalize_label(DEFAULT_POLICY_LIMIT_TYPE):
                return name
        return sorted(names, key=str.lower)[0]

    def window_ms(self) -> Optional[tuple[int, int]]:
        if self.state.date_range is not None:
            return self.state.date_range
        if self.state.year_range is not None:
            first, last = self.state.year_range
            return (start_of_year_ms(first), start_of_year_ms(last + 1))
        return None

    def apply(self, slices: Iterable[CoverageSlice]) -> list[CoverageSlice]:
        state = self.state
        carriers = {normalize_label(v) for v in state.carriers}
        groups = {normalize_label(v) for v in state.carrier_groups}
        programs = {normalize_label(v) for v in state.insurance_programs}
        limit_types = {normalize_label(v) for v in state.policy_limit_types}
        window = self.window_ms()

        kept: list[CoverageSlice] = []
        for coverage_slice in slices:
            if carriers and normalize_label(coverage_slice.carrier) not in carriers:
                continue
            if groups and normalize_label(coverage_slice.carrier_group) not in groups:
                continue
            if programs and not (
                normalize_label(coverage_slice.insurance_program) in programs
                or normalize_label(coverage_slice.insurance_program_id) in programs
            ):
                continue
            if limit_types and not (
                normalize_label(coverage_slice.policy_limit_type) in limit_types
                or normalize_label(coverage_slice.policy_limit_type_id) in limit_types
            ):
                continue
            # Whole-policy overlap keeps every year slice of a matching policy.
            if window is not None and not (
                coverage_slice.policy_start_ms < window[1]
                and coverage_slice.policy_end_ms > window[0]
            ):
                continue
            kept.append(coverage_slice)
        return kept

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from datetime import MAXYEAR, MINYEAR, date, datetime, timezone
from typing import Callable, Mapping, Optional

import pandas as pd

from coverage_tower.models import (
    AVAILABLE,
    MS_PER_DAY,
    UNAVAILABLE,
    UNKNOWN_CARRIER,
    UNKNOWN_GROUP,
    UNKNOWN_PROGRAM,
    Availability,
    CoverageSlice,
    CoverageTables,
    SliceBuild,
    ms_to_datetime,
    start_of_year_ms,
)


POLICY_ID_ALIASES = ("PolicyID", "Policy Id", "ID")
START_DATE_ALIASES = ("PStartDate", "PolicyStartDate", "StartDate", "Incept")
END_DATE_ALIASES = ("PEndDate", "PolicyEndDate", "EndDate", "Expire")
ATTACHMENT_ALIASES = (
    "Attachment Point",
    "AttachmentPoint",
    "attach",
    "Attatchment Point",
)
LAYER_LIMIT_ALIASES = ("LayerPerOccLimit", "Layer Per Occ Limit", "layerperocclim")
PER_OCC_LIMIT_ALIASES = ("PerOccLimit", "Per Occ Limit", "perocclim")
CONSUMED_ALIASES = ("Consume", "Consumed")
TOTAL_COST_ALIASES = ("TotCost", "Total Cost")
LIMIT_TYPE_ID_ALIASES = (
    "PolicyLimitTypeID",
    "Policy Limit Type ID",
    "Policy Limit ID",
)
LIMIT_TYPE_NAME_ALIASES = (
    "PolicyLimitTypeName",
    "PolicyLimitType",
    "Policy Limit Type",
    "Policy Limity Type",
    "Type",
    "Name",
)

_TRUTHY = {"1", "true", "yes", "y"}
_FALSY = {"0", "false", "no", "n"}
_UNAVAILABLE_HINTS = ("insolv", "bankrupt", "unavail")
_YEAR_PATTERN = re.compile(r"(\d{4})")
# Policies ending in the last representable year are open-ended sentinels.
MAX_POLICY_YEAR = MAXYEAR - 1


def norm_key(key: object) -> str:
    return re.sub(r"[^a-z0-9]", "", str(key if key is not None else "").lower())


def get_by(row: Optional[Mapping[str, object]], *aliases: str) -> str:
    """Return the first non-blank value whose column matches one of ``aliases``.

    Column names are compared case- and punctuation-insensitively, so
    ``"Policy Id"``, ``"policy_id"`` and ``"PolicyID"`` all resolve alike.
    """
    if not row:
        return ""
    normalized = {norm_key(key): value for key, value in row.items()}
    for alias in aliases:
        value = normalized.get(norm_key(alias))
        if value is None:
            continue
        text = str(value).strip()
        if text != "" and text.lower() != "nan":
            return text
    return ""


def to_number(value: object) -> float:
    if value is None:
        return 0.0
    cleaned = re.sub(r"[^0-9.\-]", "", str(value))
    if cleaned == "":
        return 0.0
    try:
        return float(cleaned)
    except ValueError:
        return 0.0


def first_present_number(*values: object) -> float:
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if text == "":
            continue
        return to_number(text)
    return 0.0


def year_of(value: object) -> int | None:
    match = _YEAR_PATTERN.search(str(value if value is not None else ""))
    return int(match.group(1)) if match else None


def parse_date_utc(value: object) -> date | None:
    text = str(value if value is not None else "").strip()
    if not text:
        return None
    if _YEAR_PATTERN.fullmatch(text):
        return None
    parsed = pd.to_datetime(text, errors="coerce", utc=True)
    if pd.isna(parsed):
        return None
    return date(parsed.year, parsed.month, parsed.day)


def date_to_ms(value: date) -> int:
    midnight = datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    return int(midnight.timestamp() * 1000)


def _period_ms(raw: str) -> tuple[int, int] | None:
    """Return the half-open [start, end) covered by one date or bare year."""
    parsed = parse_date_utc(raw)
    if parsed is not None:
        if parsed.year > MAX_POLICY_YEAR:
            return None
        start_ms = date_to_ms(parsed)
        return start_ms, start_ms + MS_PER_DAY
    year = year_of(raw)
    if year is None or not MINYEAR <= year <= MAX_POLICY_YEAR:
        return None
    return start_of_year_ms(year), start_of_year_ms(year + 1)


def resolve_policy_span(start_raw: str, end_raw: str) -> tuple[int, int] | None:
    """Return the half-open [start, end) span in UTC milliseconds.

    The stated end date is covered in full, so the exclusive end is midnight
    of the following day. Bare years cover the whole calendar year, and a
    reversed pair covers the same period as the ordered one. Open-ended
    sentinels such as 9999-12-31 are unplaceable.
    """
    periods = [_period_ms(start_raw), _period_ms(end_raw)]
    if periods[0] is None or periods[1] is None:
        return None
    start_ms = min(period[0] for period in periods)
    end_ms = max(period[1] for period in periods)
    if end_ms <= start_ms:
        return None
    return start_ms, end_ms


@dataclass(frozen=True)
class AvailabilityRule:
    name: str
    source: str
    aliases: tuple[str, ...]
    classify: Callable[[str], Optional[Availability]]


def _classify_solvency(text: str) -> Optional[Availability]:
    value = text.lower()
    if "insolv" in value or "bankrupt" in value or "liquidat" in value:
        return UNAVAILABLE
    if "solvent" in value or "active" in value or "good" in value:
        return AVAILABLE
    if value in _FALSY:
        return UNAVAILABLE
    if value in _TRUTHY:
        return AVAILABLE
    return None


def _classify_collectible(text: str) -> Optional[Availability]:
    value = text.lower()
    if value in _FALSY:
        return UNAVAILABLE
    if value in _TRUTHY:
        return AVAILABLE
    return None


def _classify_insolvent_flag(text: str) -> Optional[Availability]:
    return UNAVAILABLE if text.lower() in _TRUTHY else None


def _classify_status_text(text: str) -> Optional[Availability]:
    value = text.lower()
    if any(hint in value for hint in _UNAVAILABLE_HINTS):
        return UNAVAILABLE
    return None


AVAILABILITY_RULES: tuple[AvailabilityRule, ...] = (
    AvailabilityRule(
        name="carrier_solvency",
        source="carrier",
        aliases=("CarrierSolvency", "Solvency", "SolvencyStatus", "FinancialStatus"),
        classify=_classify_solvency,
    ),
    AvailabilityRule(
        name="policy_collectible",
        source="policy",
        aliases=("Collectible", "IsCollectible", "bcollectible"),
        classify=_classify_collectible,
    ),
    AvailabilityRule(
        name="policy_insolvent",
        source="policy",
        aliases=("Insolvent", "IsInsolvent", "binsolvent"),
        classify=_classify_insolvent_flag,
    ),
    AvailabilityRule(
        name="policy_status",
        source="policy",
        aliases=("Status", "Availability", "AvailStatus"),
        classify=_classify_status_text,
    ),
    AvailabilityRule(
        name="carrier_status",
        source="carrier",
        aliases=("Status", "Availability"),
        classify=_classify_status_text,
    ),
)


def classify_availability(
    policy_row: Optional[Mapping[str, object]],
    carrier_row: Optional[Mapping[str, object]],
    rules: tuple[AvailabilityRule, ...] = AVAILABILITY_RULES,
) -> Availability:
    rows = {"policy": policy_row, "carrier": carrier_row}
    for rule in rules:
        raw = get_by(rows.get(rule.source), *rule.aliases)
        if not raw:
            continue
        result = rule.classify(raw)
        if result is not None:
            return result
    return AVAILABLE


def _name_lookup(
    rows: list[dict[str, str]],
    id_aliases: tuple[str, ...],
    name_aliases: tuple[str, ...],
) -> dict[str, str]:
    lookup: dict[str, str] = {}
    for row in rows or []:
        row_id = get_by(row, *id_aliases)
        if not row_id:
            continue
        name = get_by(row, *name_aliases)
        if name:
            lookup[row_id] = name
    return lookup


@dataclass(frozen=True)
class _PolicyInfo:
    policy_number: str
    carrier: str
    carrier_group: str
    insurance_program_id: str
    insurance_program: str
    named_insured_id: str
    sir_per_occ: float
    sir_aggregate: float
    consumed_raw: str
    availability: Availability


_DEFAULT_POLICY_INFO = _PolicyInfo(
    policy_number="",
    carrier=UNKNOWN_CARRIER,
    carrier_group=UNKNOWN_GROUP,
    insurance_program_id="",
    insurance_program=UNKNOWN_PROGRAM,
    named_insured_id="",
    sir_per_occ=0.0,
    sir_aggregate=0.0,
    consumed_raw="",
    availability=AVAILABLE,
)


def _build_policy_info(tables: CoverageTables) -> dict[str, _PolicyInfo]:
    carrier_row_by_id: dict[str, dict[str, str]] = {}
    for row in tables.carriers:
        carrier_id = get_by(row, "CarrierID", "Carrier Id", "ID")
        if carrier_id:
            carrier_row_by_id[carrier_id] = row
    carrier_name_by_id = _name_lookup(
        tables.carriers,
        ("CarrierID", "Carrier Id", "ID"),
        ("Carrier", "CarrierName", "Name", "Insurer", "Company"),
    )
    group_name_by_id = _name_lookup(
        tables.carrier_groups,
        ("CarrierGroupID", "Carrier Group ID", "ID"),
        ("CarrierGroup", "CarrierGroupName", "Name", "Group"),
    )
    program_name_by_id = _name_lookup(
        tables.insurance_programs,
        ("InsuranceProgramID", "Insurance Program ID", "ID"),
        ("InsuranceProgram", "Program", "Name"),
    )

    info_by_id: dict[str, _PolicyInfo] = {}
    for row in tables.policies:
        policy_id = get_by(row, *POLICY_ID_ALIASES)
        if not policy_id:
            continue

        carrier_id = get_by(row, "CarrierID", "Carrier Id")
        carrier_row = carrier_row_by_id.get(carrier_id) if carrier_id else None
        carrier_group_id = get_by(row, "CarrierGroupID", "Carrier Group ID")
        if not carrier_group_id and carrier_row is not None:
            carrier_group_id = get_by(carrier_row, "CarrierGroupID", "Carrier Group ID")

        carrier = get_by(row, "Carrier", "CarrierName", "Insurer", "Company")
        if not carrier and carrier_id:
            carrier = carrier_name_by_id.get(carrier_id, "")
        carrier_group = get_by(row, "CarrierGroup", "Carrier Group", "CarrierGroupName")
        if not carrier_group and carrier_group_id:
            carrier_group = group_name_by_id.get(carrier_group_id, "")

        program_id = get_by(row, "InsuranceProgramID", "Insurance Program ID")
        program = get_by(row, "InsuranceProgram", "Program", "ProgramName")
        if not program and program_id:
            program = program_name_by_id.get(program_id, "")

        info_by_id[policy_id] = _PolicyInfo(
            policy_number=get_by(
                row, "policy_no", "PolicyNo", "Policy Number", "PolicyNumber", "PolicyNum"
            ),
            carrier=carrier or UNKNOWN_CARRIER,
            carrier_group=carrier_group or UNKNOWN_GROUP,
            insurance_program_id=program_id,
            insurance_program=program or UNKNOWN_PROGRAM,
            named_insured_id=get_by(row, "NamedInsuredID", "Named Insured ID"),
            sir_per_occ=to_number(get_by(row, "SIRPerOcc", "SIR Per Occ", "SIR")),
            sir_aggregate=to_number(get_by(row, "SIRAggregate", "SIR Aggregate")),
            consumed_raw=get_by(row, *CONSUMED_ALIASES) or get_by(row, *TOTAL_COST_ALIASES),
            availability=classify_availability(row, carrier_row),
        )
    return info_by_id


def _policy_date_map(
    rows: list[dict[str, str]],
) -> tuple[dict[str, tuple[str, str]], int | None, int | None]:
    date_map: dict[str, tuple[str, str]] = {}
    min_year: int | None = None
    max_year: int | None = None
    for row in rows:
        policy_id = get_by(row, *POLICY_ID_ALIASES)
        if not policy_id:
            continue
        start = get_by(row, *START_DATE_ALIASES)
        end = get_by(row, *END_DATE_ALIASES)
        date_map[policy_id] = (start, end)
        span = resolve_policy_span(start, end) if start and end else None
        if span is None:
            continue
        first = ms_to_datetime(span[0]).year
        last = ms_to_datetime(span[1] - 1).year
        min_year = first if min_year is None else min(min_year, first)
        max_year = last if max_year is None else max(max_year, last)
    return date_map, min_year, max_year


def build_slices(tables: CoverageTables, use_year_axis: bool = True) -> SliceBuild:
    started = time.perf_counter()
    date_map, min_year, max_year = _policy_date_map(tables.policy_dates)
    info_by_id = _build_policy_info(tables)
    limit_type_name_by_id = _name_lookup(
        tables.policy_limit_types,
        ("PolicyLimitTypeID", "Policy Limit Type ID", "Policy Limit ID", "ID", "Policy ID"),
        LIMIT_TYPE_NAME_ALIASES,
    )

    slices: list[CoverageSlice] = []
    dropped = 0
    for row in tables.limits:
        policy_id = get_by(row, *POLICY_ID_ALIASES)
        dates = date_map.get(policy_id) if policy_id else None
        if dates is None or not dates[0] or not dates[1]:
            dropped += 1
            continue
        span = resolve_policy_span(*dates)
        if span is None:
            dropped += 1
            continue

        slice_limit = first_present_number(
            get_by(row, *LAYER_LIMIT_ALIASES),
            get_by(row, *PER_OCC_LIMIT_ALIASES),
        )
        if slice_limit <= 0:
            dropped += 1
            continue

        policy_start_ms, policy_end_ms = span
        info = info_by_id.get(policy_id, _DEFAULT_POLICY_INFO)
        limit_type_id = get_by(row, *LIMIT_TYPE_ID_ALIASES)
        consumed = first_present_number(
            get_by(row, *CONSUMED_ALIASES),
            get_by(row, *TOTAL_COST_ALIASES),
            info.consumed_raw,
        )
        policy_start_year = ms_to_datetime(policy_start_ms).year
        policy_end_year = ms_to_datetime(policy_end_ms - 1).year

        base = dict(
            policy_id=policy_id,
            policy_number=info.policy_number,
            carrier=info.carrier,
            carrier_group=info.carrier_group,
            insurance_program_id=info.insurance_program_id,
            insurance_program=info.insurance_program,
            named_insured_id=info.named_insured_id,
            policy_limit_type_id=limit_type_id,
            policy_limit_type=limit_type_name_by_id.get(limit_type_id, limit_type_id),
            attachment_point=int(round(first_present_number(get_by(row, *ATTACHMENT_ALIASES)))),
            slice_limit=slice_limit,
            availability=info.availability,
            sir_per_occ=info.sir_per_occ,
            sir_aggregate=info.sir_aggregate,
            consumed=max(consumed, 0.0),
            policy_start_ms=policy_start_ms,
            policy_end_ms=policy_end_ms,
            policy_start_year=policy_start_year,
            policy_end_year=policy_end_year,
        )

        if not use_year_axis:
            slices.append(
                CoverageSlice(
                    **base,
                    year=policy_start_year,
                    x_label=f"{dates[0]} to {dates[1]}",
                )
            )
            continue

        # Every touched year keeps the full limit; only the x-extent shrinks.
        for year in range(policy_start_year, policy_end_year + 1):
            overlap_start = max(policy_start_ms, start_of_year_ms(year))
            overlap_end = min(policy_end_ms, start_of_year_ms(year + 1))
            if overlap_end <= overlap_start:
                continue
            slices.append(
                CoverageSlice(
                    **base,
                    year=year,
                    x_label=str(year),
                    year_overlap_start_ms=overlap_start,
                    year_overlap_end_ms=overlap_end,
                )
            )

    if use_year_axis:
        x_labels = (
            [str(year) for year in range(min_year, max_year + 1)]
            if min_year is not None and max_year is not None
            else []
        )
    else:
        x_labels = sorted({s.x_label for s in slices})

    elapsed_ms = (time.perf_counter() - started) * 1000
    logging.info(
        "Coverage slices built in %.0f ms: %d slices, %d limit rows dropped",
        elapsed_ms,
        len(slices),
        dropped,
    )
    return SliceBuild(slices=slices, x_labels=x_labels, use_year_axis=use_year_axis)

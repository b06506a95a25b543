from __future__ import annotations

import re
from collections import defaultdict
from typing import Iterable, Mapping

from coverage_tower.formatting import format_compact_money
from coverage_tower.models import CoverageSlice


QUOTA_SHARE_LABEL = "Quota share"

_KEY_HINT = re.compile(
    r"(quota|share|coinsur|co-insur|participation|participat|percent|pct)",
    re.IGNORECASE,
)
_VALUE_HINT = re.compile(r"(quota|share|co-?insur)", re.IGNORECASE)
_QUOTA_PHRASE = re.compile(r"quota\s*share", re.IGNORECASE)


def quota_group_key(coverage_slice: CoverageSlice) -> str:
    """Composite key scoping quota share to one program, layer and covered span.

    Two policies only share a layer when they also cover the same date span,
    so sequential half-year policies at one attachment never pair up.
    """
    program = (
        coverage_slice.insurance_program_id or coverage_slice.insurance_program
    ).strip()
    year = (
        str(coverage_slice.year)
        if coverage_slice.year is not None
        else coverage_slice.x_label.strip()
    )
    return "||".join(
        [
            program,
            year,
            str(coverage_slice.attachment_point),
            coverage_slice.policy_limit_type_id.strip(),
            coverage_slice.named_insured_id.strip(),
            str(coverage_slice.span_start_ms),
            str(coverage_slice.span_end_ms),
        ]
    )


def build_quota_key_set(slices: Iterable[CoverageSlice]) -> set[str]:
    policies_by_key: dict[str, set[str]] = defaultdict(set)
    for coverage_slice in slices:
        policies_by_key[quota_group_key(coverage_slice)].add(coverage_slice.policy_id)
    return {key for key, policies in policies_by_key.items() if len(policies) >= 2}


def _looks_like_quota_percent(value: str) -> bool:
    cleaned = re.sub(r"[^0-9.\-]", "", value)
    if not cleaned:
        return False
    try:
        number = float(cleaned)
    except ValueError:
        return False
    return 0 < number <= 100


def has_explicit_quota_share_evidence(
    limits_rows: Iterable[Mapping[str, object]] | None,
    policy_rows: Iterable[Mapping[str, object]] | None,
) -> bool:
    for rows in (limits_rows or [], policy_rows or []):
        for row in rows:
            if not isinstance(row, Mapping):
                continue
            for key, value in row.items():
                text = str(value if value is not None else "").strip()
                if not text:
                    continue
                # Free-text notes can carry the phrase under any column name.
                if _QUOTA_PHRASE.search(text):
                    return True
                if not _KEY_HINT.search(str(key or "")):
                    continue
                if _looks_like_quota_percent(text) or _VALUE_HINT.search(text):
                    return True
    return False


def quota_layer_label(
    *,
    attachment_point: float,
    summed_limit: float,
    insurance_program: str = "",
    year_label: str = "",
) -> str:
    parts = [
        f"{format_compact_money(summed_limit)} xs {format_compact_money(attachment_point)}"
    ]
    if insurance_program:
        parts.append(insurance_program)
    if year_label:
        parts.append(year_label)
    return " • ".join(parts)

from __future__ import annotations

import math
from typing import Mapping

from coverage_tower.models import UNAVAILABLE, VIEW_AVAILABILITY


FNV_OFFSET_BASIS = 2166136261
FNV_PRIME = 16777619
PROBE_STRIDE = 7

THEMES = ("dark", "light")

DARK_PALETTE = (
    "#4E79A7",
    "#F28E2B",
    "#E15759",
    "#76B7B2",
    "#59A14F",
    "#EDC948",
    "#B07AA1",
    "#FF9DA7",
    "#9C755F",
    "#BAB0AC",
    "#2F4B7C",
    "#A05195",
    "#D45087",
    "#FF7C43",
    "#665191",
    "#003F5C",
    "#EF5675",
    "#FFA600",
    "#1F77B4",
    "#17BECF",
    "#9467BD",
    "#8C564B",
    "#BCBD22",
    "#E377C2",
    "#2CA02C",
    "#D62728",
    "#8DD3C7",
    "#FB8072",
    "#80B1D3",
    "#FDB462",
)

# Same slot order as DARK_PALETTE, tuned for a white background.
LIGHT_PALETTE = (
    "#2F5D8A",
    "#A95E16",
    "#B04747",
    "#2E7F7A",
    "#3D7B35",
    "#8D7420",
    "#7A5A86",
    "#B86473",
    "#6F533F",
    "#5F6368",
    "#233A60",
    "#6D3F73",
    "#A13E6A",
    "#B85A2C",
    "#4F3E7A",
    "#1D3852",
    "#A9466A",
    "#B06F00",
    "#215F97",
    "#187A94",
    "#6E55A2",
    "#6D4D3F",
    "#7A7B1E",
    "#9A4D94",
    "#2C7A2C",
    "#A83E3E",
    "#3A8A84",
    "#B05A56",
    "#4E6EA2",
    "#A87739",
)

UNAVAILABLE_BUCKET_COLOR = "#94a3b8"
AVAILABILITY_VIEW_COLORS = {
    "Available": "#22c55e",
    "Unavailable": "#888888",
}
SIR_COLORS = {
    "per_occ": "#facc15",
    "aggregate": "#f97316",
}


def normalize_label(label: object) -> str:
    text = str(label if label is not None else "").strip().lower()
    return text or "(blank)"


def fnv1a_32(text: str) -> int:
    value = FNV_OFFSET_BASIS
    for byte in text.encode("utf-8"):
        value ^= byte
        value = (value * FNV_PRIME) & 0xFFFFFFFF
    return value


def fixed_series_color(label: str, *, view: str) -> str | None:
    """Colors that never come from the palette, or None when the label is free."""
    if view == VIEW_AVAILABILITY:
        return AVAILABILITY_VIEW_COLORS.get(label)
    if label == UNAVAILABLE:
        return UNAVAILABLE_BUCKET_COLOR
    return None


class ColorAssigner:
    """Hash-seeded palette slots that stay reserved once handed out.

    A label keeps its slot for the lifetime of the assigner, whatever order
    other labels are requested in afterwards. Both themes share the slot index.
    """

    def __init__(
        self,
        *,
        dark_palette: tuple[str, ...] = DARK_PALETTE,
        light_palette: tuple[str, ...] = LIGHT_PALETTE,
        stride: int = PROBE_STRIDE,
    ) -> None:
        if not dark_palette:
            raise ValueError("dark_palette must contain at least one color")
        if len(dark_palette) != len(light_palette):
            raise ValueError(
                "dark_palette and light_palette must have the same number of slots"
            )
        if math.gcd(stride, len(dark_palette)) != 1:
            raise ValueError(
                f"stride {stride} must be coprime with palette size {len(dark_palette)}"
            )
        self._palettes = {"dark": tuple(dark_palette), "light": tuple(light_palette)}
        self._stride = stride
        self._slots: dict[str, int] = {}
        self._used: set[int] = set()
        self._overflow: dict[str, int] = {}

    @property
    def palette_size(self) -> int:
        return len(self._palettes["dark"])

    def slot_for(self, label: object) -> int | None:
        key = normalize_label(label)
        if key in self._slots:
            return self._slots[key]
        if key in self._overflow:
            return None

        size = self.palette_size
        seed = fnv1a_32(key)
        start = seed % size
        for attempt in range(size):
            slot = (start + attempt * self._stride) % size
            if slot not in self._used:
                self._used.add(slot)
                self._slots[key] = slot
                return slot

        self._overflow[key] = seed % 360
        return None

    def color_for(self, label: object, *, theme: str = "dark") -> str:
        slot = self.slot_for(label)
        if slot is not None:
            palette = self._palettes["light" if theme == "light" else "dark"]
            return palette[slot]
        hue = self._overflow[normalize_label(label)]
        lightness = 38 if theme == "light" else 52
        return f"hsl({hue}, 62%, {lightness}%)"

    def series_color(self, label: str, *, view: str, theme: str = "dark") -> str:
        fixed = fixed_series_color(label, view=view)
        if fixed is not None:
            return fixed
        return self.color_for(label, theme=theme)

    def assigned_slots(self) -> Mapping[str, int]:
        return dict(self._slots)

    def reset(self) -> None:
        self._slots.clear()
        self._used.clear()
        self._overflow.clear()

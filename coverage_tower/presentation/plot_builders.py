from __future__ import annotations

import plotly.graph_objs as go

from coverage_tower.formatting import format_compact_money, format_full_date_utc
from coverage_tower.services.types import TowerPayload, TowerPoint, TowerSeries


THEME_COLORS = {
    "dark": {
        "text": "#e2e8f0",
        "surface": "#0f172a",
        "border": "#334155",
        "grid": "#1e293b",
    },
    "light": {
        "text": "#1f2937",
        "surface": "#ffffff",
        "border": "#cbd5e1",
        "grid": "#e5e7eb",
    },
}

CONSUMED_BAND_COLOR = "#94a3b8"


def _theme_colors(theme: str) -> dict[str, str]:
    return THEME_COLORS.get(theme, THEME_COLORS["dark"])


def build_empty_tower_figure(
    *,
    title: str,
    message: str = "Coverage data not available.",
    font_family: str = "Arial, sans-serif",
    alert_annotation_font_size: int = 16,
) -> go.Figure:
    return go.Figure(
        layout=go.Layout(
            title=f"{title} - No data available",
            annotations=[
                dict(
                    text=message,
                    x=0.5,
                    y=0.5,
                    xref="paper",
                    yref="paper",
                    showarrow=False,
                    font=dict(
                        color="red",
                        size=alert_annotation_font_size,
                        family=font_family,
                    ),
                )
            ],
        )
    )


def _point_customdata(point: TowerPoint) -> list[str]:
    participants = point.get("participants") or []
    carriers = ", ".join(
        str(p.get("carrier", "")) for p in participants if p.get("carrier")
    )
    return [
        format_compact_money(point["top"] - point["attach"]),
        format_compact_money(point["attach"]),
        format_full_date_utc(point.get("segment_start_ms")),
        format_full_date_utc(int(point.get("segment_end_ms", 0)) - 1),
        carriers,
    ]


def _series_bar(series: TowerSeries, *, color_border: str) -> go.Bar:
    points = series["points"]
    return go.Bar(
        x=[p["x_mid"] for p in points],
        y=[p["top"] - p["attach"] for p in points],
        base=[p["attach"] for p in points],
        width=[p["x_end"] - p["x_start"] for p in points],
        name=series["label"],
        marker=dict(
            color=series["color"],
            line=dict(color=color_border, width=1),
        ),
        customdata=[_point_customdata(p) for p in points],
        hovertemplate=(
            "%{fullData.name}<br>"
            "%{customdata[0]} xs %{customdata[1]}<br>"
            "%{customdata[2]} - %{customdata[3]}<br>"
            "%{customdata[4]}<extra></extra>"
        ),
        showlegend=True,
    )


def _consumed_band_bar(series_list: list[TowerSeries]) -> go.Bar | None:
    x_values: list[float] = []
    heights: list[float] = []
    bases: list[float] = []
    widths: list[float] = []
    for series in series_list:
        for point in series["points"]:
            bands = point.get("bands")
            if not bands or bands["unavailable"] <= 0:
                continue
            width = point["x_end"] - point["x_start"]
            x_values.append(point["x_mid"])
            heights.append(bands["unavailable"])
            bases.append(point["attach"])
            widths.append(width)
    if not x_values:
        return None
    return go.Bar(
        x=x_values,
        y=heights,
        base=bases,
        width=widths,
        name="Consumed / unavailable",
        marker=dict(
            color=CONSUMED_BAND_COLOR,
            opacity=0.75,
            pattern=dict(shape="/"),
        ),
        hoverinfo="skip",
        showlegend=True,
    )


def plot_coverage_tower(
    payload: TowerPayload | None,
    *,
    title: str,
    theme: str | None = None,
    font_family: str = "Arial, sans-serif",
    figure_font_size: int = 12,
    figure_title_font_size: int = 18,
    alert_annotation_font_size: int = 16,
    height: int = 640,
) -> go.Figure:
    series_list = list((payload or {}).get("series") or [])
    if not series_list:
        return build_empty_tower_figure(
            title=title,
            font_family=font_family,
            alert_annotation_font_size=alert_annotation_font_size,
        )

    theme = theme or str(payload.get("theme") or "dark")
    colors = _theme_colors(theme)

    fig = go.Figure()
    for series in series_list:
        fig.add_trace(_series_bar(series, color_border=colors["border"]))

    consumed = _consumed_band_bar(series_list)
    if consumed is not None:
        fig.add_trace(consumed)

    sir_series = payload.get("sir_series")
    if sir_series and sir_series.get("points"):
        fig.add_trace(
            go.Scatter(
                x=[p["x"] for p in sir_series["points"]],
                y=[p["value"] for p in sir_series["points"]],
                mode="lines+markers",
                name=sir_series["label"],
                line=dict(color=sir_series["color"], width=2, dash="dash"),
                customdata=[format_compact_money(p["value"]) for p in sir_series["points"]],
                hovertemplate="%{fullData.name}: %{customdata}<extra></extra>",
            )
        )

    x_labels = list(payload.get("x_labels") or [])
    xaxis = dict(title="Policy Year", showgrid=False)
    if x_labels and all(label.isdigit() for label in x_labels):
        xaxis.update(
            tickmode="array",
            tickvals=[int(label) for label in x_labels],
            ticktext=x_labels,
        )
    x_range = payload.get("x_range") or []
    if len(x_range) == 2:
        xaxis["range"] = list(x_range)

    fig.update_layout(
        title=title,
        barmode="overlay",
        xaxis=xaxis,
        yaxis=dict(
            title="Attachment / Limit",
            tickprefix="$",
            tickformat="~s",
            gridcolor=colors["grid"],
            rangemode="tozero",
        ),
        paper_bgcolor=colors["surface"],
        plot_bgcolor=colors["surface"],
        font=dict(color=colors["text"], size=figure_font_size, family=font_family),
        title_font=dict(
            color=colors["text"],
            size=figure_title_font_size,
            family=font_family,
        ),
        hoverlabel=dict(
            bgcolor=colors["surface"],
            bordercolor=colors["border"],
            font=dict(
                color=colors["text"],
                size=figure_font_size,
                family=font_family,
            ),
        ),
        legend=dict(x=1.02, y=1, xanchor="left", yanchor="top"),
        height=height,
        autosize=True,
        uirevision="static",
    )
    return fig

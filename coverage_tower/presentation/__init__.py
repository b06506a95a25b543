from coverage_tower.presentation.plot_builders import (
    build_empty_tower_figure,
    plot_coverage_tower,
)

__all__ = [
    "build_empty_tower_figure",
    "plot_coverage_tower",
]

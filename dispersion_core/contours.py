"""
Post-processing of concentration grids.

- affected_area_km2: area of cells above a significance threshold
- extract_contours: cells where a concentration level crosses a 2x2 block
- concentration_points: geographic points of significant cells
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, NamedTuple, Tuple

import numpy as np

from dispersion_core.config import DEFAULT_CONTOUR_LEVELS, DEFAULT_SIMULATION_PARAMS
from dispersion_core.data_models import ConcentrationGrid

logger = logging.getLogger(__name__)

SIGNIFICANCE_THRESHOLD = DEFAULT_SIMULATION_PARAMS['significance_threshold']


class ConcentrationPoint(NamedTuple):
    latitude: float
    longitude: float
    concentration: float


@dataclass
class Contour:
    """Points where the field crosses one concentration level."""
    level: float
    label: str
    points: List[Tuple[float, float]] = field(default_factory=list)

    def to_dict(self):
        return {
            'level': self.level,
            'label': self.label,
            'points': [{'latitude': lat, 'longitude': lon} for lat, lon in self.points],
        }


def affected_area_km2(grid: ConcentrationGrid, threshold: float = SIGNIFICANCE_THRESHOLD) -> float:
    """
    Area covered by cells with a concentration above ``threshold``.

    Returns:
        Area in square kilometers
    """
    affected_cells = int(np.count_nonzero(grid.cells > threshold))
    return affected_cells * grid.cell_area / 1_000_000.0


def contour_label(level: float) -> str:
    return f"{float(level)} mg/L"


def extract_contours(grid: ConcentrationGrid,
                     levels: Iterable[float] = DEFAULT_CONTOUR_LEVELS) -> List[Contour]:
    """
    Find the cells where each level crosses the field.

    For every interior cell ``(i, j)`` the 2x2 block with corners
    ``(i-1, j-1)``, ``(i, j-1)``, ``(i-1, j)`` and ``(i, j)`` is tested.
    The block is on the contour when either diagonal straddles the level
    and the corner sum exceeds the level; the point emitted is the
    geographic position of cell ``(i, j)``.

    Args:
        grid: Concentration grid
        levels: Concentration levels in mg/L

    Returns:
        One Contour per level that has at least one point
    """
    levels = list(levels)
    cells = grid.cells
    c00 = cells[:-2, :-2]
    c10 = cells[1:-1, :-2]
    c01 = cells[:-2, 1:-1]
    c11 = cells[1:-1, 1:-1]
    corner_sum = c00 + c10 + c01 + c11

    contours = []
    for level in levels:
        crosses = ((c00 >= level) != (c11 >= level)) | ((c10 >= level) != (c01 >= level))
        crosses &= corner_sum > level

        rows, cols = np.nonzero(crosses)
        if rows.size == 0:
            continue
        points = [grid.index_to_latlon(i + 1, j + 1) for i, j in zip(rows.tolist(), cols.tolist())]
        contours.append(Contour(level=float(level), label=contour_label(level), points=points))

    logger.debug(f"Extracted {len(contours)} contours from {len(levels)} levels")
    return contours


def concentration_points(grid: ConcentrationGrid,
                         threshold: float = SIGNIFICANCE_THRESHOLD) -> List[ConcentrationPoint]:
    """Geographic position and value of every cell above ``threshold``."""
    rows, cols = np.nonzero(grid.cells > threshold)
    points = []
    for i, j in zip(rows.tolist(), cols.tolist()):
        lat, lon = grid.index_to_latlon(i, j)
        points.append(ConcentrationPoint(lat, lon, float(grid.cells[i, j])))
    return points

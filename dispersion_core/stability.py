"""
Atmospheric stability classification.

Maps wind speed to a Pasquill-Gifford style stability class and the
(sigma_y0, sigma_z0) dispersion coefficients used by the plume formula.
"""

from typing import Dict, NamedTuple, Optional, Tuple


# Dispersion coefficients (sigma_y0, sigma_z0) per stability class
STABILITY_COEFFICIENTS: Dict[str, Tuple[float, float]] = {
    'A': (0.32, 0.24),
    'B': (0.24, 0.20),
    'C': (0.20, 0.16),
    'D': (0.16, 0.12),
    'E': (0.12, 0.08),
    'F': (0.08, 0.06),
}

DEFAULT_STABILITY_CLASS = 'D'


class StabilityResult(NamedTuple):
    stability_class: str
    sigma_y0: float
    sigma_z0: float


def stability_parameters(stability_class: str) -> Tuple[float, float]:
    """
    Return the (sigma_y0, sigma_z0) pair for a class.

    Unknown classes get the neutral class D pair.
    """
    return STABILITY_COEFFICIENTS.get(stability_class, STABILITY_COEFFICIENTS[DEFAULT_STABILITY_CLASS])


def classify(wind_speed: float, temperature: Optional[float] = None) -> StabilityResult:
    """
    Classify atmospheric stability from wind speed.

    The branch order is fixed so that the boundary values 2.0, 4.0 and 6.0
    always land in the same class:
    wind < 2.0 -> E, wind < 4.0 -> D, wind > 6.0 -> C, otherwise D.

    Args:
        wind_speed: Wind speed in m/s
        temperature: Accepted for interface compatibility, not used

    Returns:
        StabilityResult with the class and its coefficients
    """
    if wind_speed < 2.0:
        stability_class = 'E'
    elif wind_speed < 4.0:
        stability_class = 'D'
    elif wind_speed > 6.0:
        stability_class = 'C'
    else:
        stability_class = 'D'

    sigma_y0, sigma_z0 = stability_parameters(stability_class)
    return StabilityResult(stability_class, sigma_y0, sigma_z0)

"""
Initial concentration fields for a point release.

Two initial conditions are available:
- closed_form_field: Gaussian plume evaluated at a fixed horizon, with the
  release drifted downwind. Used on its own in 'closed_form' mode.
- seed_gaussian: mass-conserving Gaussian blob on the source cell, the
  starting point of the stepped transport model.

Both write into a ConcentrationGrid and leave it finite and non-negative.
Degenerate inputs (zero wind, zero or negative volume) produce a zero field.
"""

import math
import logging
from typing import Optional, Tuple

import numpy as np

from dispersion_core.config import DEFAULT_SIMULATION_PARAMS
from dispersion_core.data_models import ChemicalProfile, ConcentrationGrid

logger = logging.getLogger(__name__)


def released_mass_kg(volume_liters: float, density: float) -> float:
    """Mass of the release in kg from its volume in liters and density in kg/m^3."""
    mass = volume_liters / 1000.0 * density
    if not math.isfinite(mass) or mass <= 0:
        return 0.0
    return mass


def closed_form_field(grid: ConcentrationGrid, volume_liters: float, density: float,
                      wind_speed: float, wind_direction: float,
                      sigma_y0: float, sigma_z0: float,
                      horizon_seconds: float = 3600.0,
                      release_height: float = DEFAULT_SIMULATION_PARAMS['release_height_m'],
                      concentration_divisor: float = DEFAULT_SIMULATION_PARAMS['concentration_divisor']
                      ) -> ConcentrationGrid:
    """
    Fill the grid with a ground-level Gaussian plume.

    The source is displaced by ``U * t`` along ``theta = radians(wind_direction)``
    (x component ``cos``, y component ``sin``) and the plume is evaluated
    around the displaced source with Pasquill-Gifford style sigmas.

    Args:
        grid: Grid to fill (overwritten)
        volume_liters: Released volume in liters
        density: Chemical density in kg/m^3
        wind_speed: Wind speed in m/s
        wind_direction: Wind direction in degrees
        sigma_y0: Lateral dispersion coefficient for the stability class
        sigma_z0: Vertical dispersion coefficient for the stability class
        horizon_seconds: Time at which the plume is evaluated
        release_height: Effective release height in meters
        concentration_divisor: Converts released kg to the base concentration

    Returns:
        The filled grid
    """
    initial = volume_liters / 1000.0 * density / concentration_divisor
    if wind_speed <= 0 or not math.isfinite(wind_speed) or not math.isfinite(initial) or initial <= 0:
        logger.debug(f"Degenerate plume input (wind={wind_speed}, initial={initial}); zero field")
        grid.cells.fill(0.0)
        return grid

    theta = math.radians(wind_direction)
    drift_x = wind_speed * math.cos(theta) * horizon_seconds
    drift_y = wind_speed * math.sin(theta) * horizon_seconds

    x, y = grid.offset_arrays()
    effective_x = x - drift_x
    effective_y = y - drift_y

    with np.errstate(over='ignore', under='ignore', invalid='ignore', divide='ignore'):
        distance = np.maximum(1.0, np.hypot(effective_x, effective_y))
        sigma_y = np.maximum(1.0, sigma_y0 * (distance / 1000.0) ** 0.9)
        sigma_z = np.maximum(0.5, sigma_z0 * (distance / 1000.0) ** 0.8)

        lateral = np.exp(-0.5 * (effective_y / sigma_y) ** 2)
        vertical = np.exp(-0.5 * (release_height / sigma_z) ** 2)
        concentration = initial / (2 * math.pi * wind_speed * sigma_y * sigma_z) * lateral * vertical

    return grid.fill(concentration)


def tide_influence(tide_height: Optional[float]) -> float:
    """Mixing factor for the tide height, 0.8 at slack water, clipped to [0.5, 1.5]."""
    if tide_height is None or not math.isfinite(tide_height):
        return 1.0
    return min(1.5, max(0.5, 0.8 + tide_height / 10.0 * 0.4))


def environmental_factor(chemical: ChemicalProfile, temperature: float, wind_speed: float,
                         tide_height: Optional[float], horizon_seconds: float,
                         volatility_threshold: float = DEFAULT_SIMULATION_PARAMS['volatility_threshold_pa']
                         ) -> float:
    """
    Combined multiplier of the empirical closed-form corrections.

    Product of decay over the horizon, diffusion enhancement, a volatility
    dependent temperature factor, tidal mixing and wind dilution.
    """
    decay = math.exp(-chemical.decay_rate * horizon_seconds)
    diffusion = 1.0 + chemical.diffusion_coefficient * horizon_seconds / 10000.0

    temperature_factor = 1.0 + (temperature - 20.0) * 0.02
    if chemical.vapor_pressure > volatility_threshold:
        temperature_factor = 1.0 / temperature_factor if temperature_factor > 0 else 0.0
    temperature_factor = max(0.0, temperature_factor)

    wind_dilution = max(0.1, wind_speed / 10.0)
    return decay * diffusion * temperature_factor * tide_influence(tide_height) * wind_dilution


def seed_gaussian(grid: ConcentrationGrid, volume_liters: float, density: float,
                  source: Optional[Tuple[float, float]] = None,
                  sigma_cells: float = DEFAULT_SIMULATION_PARAMS['seed_sigma_cells']) -> ConcentrationGrid:
    """
    Place the released mass on the grid as a Gaussian blob.

    The blob is centred on the cell nearest to ``source`` (latitude,
    longitude), or on the grid centre, with a standard deviation of
    ``sigma_cells`` cells. It is normalised so that
    ``sum(cells) * cell_area`` equals the released mass in kg.

    Args:
        grid: Grid to fill (overwritten)
        volume_liters: Released volume in liters
        density: Chemical density in kg/m^3
        source: Optional (latitude, longitude) of the release
        sigma_cells: Blob standard deviation in cells

    Returns:
        The filled grid
    """
    mass = released_mass_kg(volume_liters, density)
    grid.cells.fill(0.0)
    if mass <= 0:
        logger.debug(f"No releasable mass (volume={volume_liters}, density={density}); zero field")
        return grid

    if source is None:
        si, sj = grid.source_index
    else:
        si, sj = grid.latlon_to_index(*source)
        if not grid.in_bounds(si, sj):
            logger.warning(f"Release point {source} lies outside the grid; seeding at the centre")
            si, sj = grid.source_index

    index = np.arange(grid.size, dtype=np.float64)
    di = (index - si)[:, np.newaxis]
    dj = (index - sj)[np.newaxis, :]
    weights = np.exp(-(di ** 2 + dj ** 2) / (2.0 * sigma_cells ** 2))

    total = weights.sum()
    if total <= 0:
        weights[si, sj] = 1.0
        total = 1.0

    return grid.fill(weights / total * mass / grid.cell_area)

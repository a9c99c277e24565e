"""
Finite-difference transport of a concentration grid.

One call to ``TransportStepper.step`` advances the grid by one time step,
applying in order:
- Advection: first-order upwind, driven by wind drift plus the water current,
  split into sub-steps that respect the Courant limit
- Diffusion: explicit 5-point Laplacian with a CFL-limited sub-step
- Decay: first-order decay multiplier
- Evaporation: mass-transfer multiplier for volatile chemicals

Advection and diffusion update interior cells only; the one-cell border is
left unchanged. Every stage returns finite, non-negative values.
"""

import math
import logging
from typing import Dict, Any, NamedTuple, Optional, Tuple

import numpy as np

from dispersion_core.config import DEFAULT_SIMULATION_PARAMS
from dispersion_core.data_models import ChemicalProfile, ConcentrationGrid, EnvironmentalSample
from dispersion_core.interfaces import celsius_to_kelvin

logger = logging.getLogger(__name__)

GAS_CONSTANT = 8.314  # J/(mol K)


class StepReport(NamedTuple):
    """What a single transport step actually did."""
    dt: float
    diffusion_dt: float
    diffusivity: float
    velocity: Tuple[float, float]
    decay_factor: float
    evaporation_factor: float
    advection_substeps: int = 1

    @property
    def cfl_limited(self) -> bool:
        return self.diffusion_dt < self.dt

    @property
    def advection_dt(self) -> float:
        return self.dt / self.advection_substeps


def _finite_non_negative(values: np.ndarray) -> np.ndarray:
    np.nan_to_num(values, copy=False, nan=0.0, posinf=0.0, neginf=0.0)
    np.maximum(values, 0.0, out=values)
    return values


def advection_velocity(conditions: EnvironmentalSample,
                       drift_factor: float = DEFAULT_SIMULATION_PARAMS['wind_drift_factor']
                       ) -> Tuple[float, float]:
    """
    Combined surface velocity as (east, north) in m/s.

    Wind-driven drift (a fraction of the wind speed, along the direction
    the wind blows toward) plus the ambient current vector.
    """
    wind_east, wind_north = conditions.wind_vector
    current_east, current_north = conditions.current_vector
    return drift_factor * wind_east + current_east, drift_factor * wind_north + current_north


def advect(cells: np.ndarray, u: float, v: float, dt: float, cell_size: float) -> np.ndarray:
    """
    First-order upwind advection of the interior cells.

    Backward differences are used along an axis with positive velocity and
    forward differences otherwise.

    Args:
        cells: N x N concentrations, axis 0 east, axis 1 north
        u: Eastward velocity in m/s
        v: Northward velocity in m/s
        dt: Time step in seconds
        cell_size: Cell edge in meters

    Returns:
        New array with the advected values
    """
    result = cells.copy()
    center = cells[1:-1, 1:-1]

    with np.errstate(over='ignore', invalid='ignore'):
        if u > 0:
            dcdx = (center - cells[:-2, 1:-1]) / cell_size
        else:
            dcdx = (cells[2:, 1:-1] - center) / cell_size

        if v > 0:
            dcdy = (center - cells[1:-1, :-2]) / cell_size
        else:
            dcdy = (cells[1:-1, 2:] - center) / cell_size

        result[1:-1, 1:-1] = center - dt * (dcdx * u + dcdy * v)

    return _finite_non_negative(result)


def advection_substeps(u: float, v: float, dt: float, cell_size: float,
                       courant_limit: float = DEFAULT_SIMULATION_PARAMS['advection_courant_limit']) -> int:
    """
    Number of equal sub-steps that keep upwind advection stable.

    The upwind update stays non-negative and mass-conserving while
    ``(|u| + |v|) * dt / cell_size`` does not exceed ``courant_limit``.
    """
    courant = (abs(u) + abs(v)) * dt / cell_size
    if not math.isfinite(courant) or courant <= courant_limit:
        return 1
    return int(math.ceil(courant / courant_limit))


def turbulent_diffusivity(wind_speed: float, current_speed: float,
                          scale: float = DEFAULT_SIMULATION_PARAMS['diffusivity_scale'],
                          minimum: float = DEFAULT_SIMULATION_PARAMS['min_diffusivity'],
                          stress_coefficient: float = DEFAULT_SIMULATION_PARAMS['wind_stress_coefficient']
                          ) -> float:
    """Horizontal eddy diffusivity in m^2/s from wind stress and current shear."""
    wind_stress = stress_coefficient * wind_speed ** 2
    shear = current_speed / 10.0
    diffusivity = scale * math.sqrt(max(0.0, wind_stress + shear ** 2))
    if not math.isfinite(diffusivity):
        return minimum
    return max(minimum, diffusivity)


def stable_diffusion_dt(diffusivity: float, dt: float, cell_size: float,
                        cfl_limit: float = DEFAULT_SIMULATION_PARAMS['cfl_limit']) -> float:
    """Largest sub-step not exceeding ``dt`` that keeps the explicit scheme stable."""
    if diffusivity <= 0:
        return dt
    if diffusivity * dt / cell_size ** 2 > cfl_limit:
        return cfl_limit * cell_size ** 2 / diffusivity
    return dt


def diffuse(cells: np.ndarray, diffusivity: float, dt: float, cell_size: float) -> np.ndarray:
    """
    Explicit 5-point Laplacian diffusion of the interior cells.

    The caller is responsible for passing a stable ``dt``
    (see :func:`stable_diffusion_dt`).
    """
    result = cells.copy()
    center = cells[1:-1, 1:-1]

    with np.errstate(over='ignore', invalid='ignore'):
        laplacian = (cells[2:, 1:-1] + cells[:-2, 1:-1] +
                     cells[1:-1, 2:] + cells[1:-1, :-2] - 4.0 * center)
        result[1:-1, 1:-1] = center + dt * diffusivity * laplacian / cell_size ** 2

    return _finite_non_negative(result)


def decay_factor(decay_rate: float, dt: float) -> float:
    if decay_rate <= 0:
        return 1.0
    return math.exp(-decay_rate * dt)


def apply_decay(cells: np.ndarray, decay_rate: float, dt: float) -> np.ndarray:
    """Multiply every cell by ``exp(-decay_rate * dt)``."""
    return _finite_non_negative(cells * decay_factor(decay_rate, dt))


def evaporation_factor(chemical: ChemicalProfile, wind_speed: float, temperature: float, dt: float,
                       volatility_threshold: float = DEFAULT_SIMULATION_PARAMS['volatility_threshold_pa'],
                       scaling: float = DEFAULT_SIMULATION_PARAMS['evaporation_scaling']) -> float:
    """
    Fraction of mass remaining after evaporating for ``dt`` seconds.

    Chemicals with a vapor pressure below ``volatility_threshold`` do not
    evaporate. Otherwise a wind-dependent mass-transfer coefficient
    ``k = 0.2 * max(1, U)^0.78 * (Dm / 1e-5)^0.67`` gives the rate
    ``k * Pv / (R * T)``.
    """
    vapor_pressure = chemical.vapor_pressure
    if vapor_pressure < volatility_threshold:
        return 1.0

    kelvin = celsius_to_kelvin(temperature)
    if kelvin <= 0:
        return 1.0

    mass_transfer = (0.2 * max(1.0, wind_speed) ** 0.78 *
                     (chemical.diffusion_coefficient / 1e-5) ** 0.67)
    rate = mass_transfer * vapor_pressure / (GAS_CONSTANT * kelvin)
    factor = math.exp(-rate * dt / scaling)
    return factor if math.isfinite(factor) else 0.0


def apply_evaporation(cells: np.ndarray, chemical: ChemicalProfile, wind_speed: float,
                      temperature: float, dt: float, **kwargs: Any) -> np.ndarray:
    """Multiply every cell by the evaporation factor for this step."""
    return _finite_non_negative(cells * evaporation_factor(chemical, wind_speed, temperature, dt, **kwargs))


class TransportStepper:
    """
    Advances a concentration grid through one time step at a time.

    The stepper holds only configuration; the grid passed to :meth:`step`
    is updated in place.
    """

    def __init__(self, params: Optional[Dict[str, Any]] = None):
        self.params = DEFAULT_SIMULATION_PARAMS.copy()
        if params:
            self.params.update(params)

    def step(self, grid: ConcentrationGrid, conditions: EnvironmentalSample,
             chemical: ChemicalProfile, dt: float) -> StepReport:
        """
        Apply advection, diffusion, decay and evaporation to the grid.

        Args:
            grid: Grid to advance (modified in place)
            conditions: Environmental conditions for this step
            chemical: Chemical being transported
            dt: Step length in seconds

        Returns:
            StepReport describing the step
        """
        params = self.params
        cell_size = grid.cell_size

        u, v = advection_velocity(conditions, params['wind_drift_factor'])
        substeps = advection_substeps(u, v, dt, cell_size, params['advection_courant_limit'])
        if substeps > 1:
            logger.debug(f"Advection split into {substeps} sub-steps (u={u:.2f}, v={v:.2f} m/s)")
        cells = grid.cells
        for _ in range(substeps):
            cells = advect(cells, u, v, dt / substeps, cell_size)

        diffusivity = turbulent_diffusivity(
            conditions.wind_speed, conditions.current_speed,
            scale=params['diffusivity_scale'],
            minimum=params['min_diffusivity'],
            stress_coefficient=params['wind_stress_coefficient']
        )
        diffusion_dt = stable_diffusion_dt(diffusivity, dt, cell_size, params['cfl_limit'])
        if diffusion_dt < dt:
            logger.debug(f"Diffusion sub-step limited to {diffusion_dt:.2f}s (D={diffusivity:.2f} m^2/s)")
        cells = diffuse(cells, diffusivity, diffusion_dt, cell_size)

        decay = decay_factor(chemical.decay_rate, dt)
        evaporation = evaporation_factor(
            chemical, conditions.wind_speed, conditions.temperature, dt,
            volatility_threshold=params['volatility_threshold_pa'],
            scaling=params['evaporation_scaling']
        )
        cells *= decay
        cells *= evaporation

        grid.fill(cells)

        return StepReport(
            dt=dt,
            diffusion_dt=diffusion_dt,
            diffusivity=diffusivity,
            velocity=(u, v),
            decay_factor=decay,
            evaporation_factor=evaporation,
            advection_substeps=substeps
        )

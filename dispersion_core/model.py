"""
Dispersion engine for the Chemical Dispersion Engine.

This module runs a complete simulation for one spill:
- Rate limiting through an injected CooldownTracker
- Chemical profile resolution with a named fallback profile
- Stability classification from the initial conditions
- Initial field (mass-conserving seed or closed-form Gaussian plume)
- Time-stepped transport with per-step environmental conditions
- Cooperative cancellation and progress reporting

The engine is synchronous and CPU-bound. It performs no I/O; forecasts and
chemical profiles are fetched by the caller and passed in as plain values.
"""

import enum
import logging
import math
import threading
import time
from datetime import datetime, timedelta
from typing import Dict, Any, Callable, Optional, Sequence

from dispersion_core import config
from dispersion_core.cooldown import CooldownTracker
from dispersion_core.data_models import (
    ChemicalProfile, ConcentrationGrid, EnvironmentalSample, SimulationResult, SpillSnapshot
)
from dispersion_core.exceptions import NotFoundError, SimulationCancelledError
from dispersion_core.plume import closed_form_field, environmental_factor, released_mass_kg, seed_gaussian
from dispersion_core.preprocess import ConditionSelector
from dispersion_core.stability import classify
from dispersion_core.transport import TransportStepper

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], None]


class EngineState(enum.Enum):
    INITIALIZED = 'initialized'
    RUNNING = 'running'
    COMPLETE = 'complete'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


class DispersionEngine:
    """
    Turns a spill, a chemical and environmental forecasts into a concentration field.

    Args:
        simulation_params: Overrides for ``config.DEFAULT_SIMULATION_PARAMS``
        cooldown: Rate-limit tracker shared by every caller of this engine.
            A private tracker is created when omitted.
        fallback_chemical: Profile used when no chemical is supplied.
            Defaults to the named crude-oil-like profile.
        allow_fallback_chemical: When False a missing chemical is a NotFoundError

    Raises:
        GridConfigurationError: If the configured grid is unusable
    """

    MODES = ('stepped', 'closed_form')

    def __init__(self, simulation_params: Optional[Dict[str, Any]] = None,
                 cooldown: Optional[CooldownTracker] = None,
                 fallback_chemical: Optional[ChemicalProfile] = None,
                 allow_fallback_chemical: bool = True):
        self.params = config.DEFAULT_SIMULATION_PARAMS.copy()
        if simulation_params:
            self.params.update(simulation_params)

        # Fail fast on an unusable grid
        ConcentrationGrid(0.0, 0.0, self.params['grid_size'], self.params['cell_size_m'])

        self.cooldown = cooldown or CooldownTracker(self.params['cooldown_seconds'])
        self.stepper = TransportStepper(self.params)
        self.allow_fallback_chemical = allow_fallback_chemical
        self.fallback_chemical = fallback_chemical or ChemicalProfile.fallback()
        self.state = EngineState.INITIALIZED

    @property
    def dt(self) -> float:
        """Length of one transport step in seconds."""
        return 3600.0 / self.params['steps_per_hour']

    def step_count(self, simulation_hours: float) -> int:
        """Number of transport steps for a simulated duration."""
        if simulation_hours is None or not math.isfinite(simulation_hours) or simulation_hours <= 0:
            return 0
        return int(round(simulation_hours * self.params['steps_per_hour']))

    def run(self, spill: Optional[SpillSnapshot], chemical: Optional[ChemicalProfile],
            wind_series: Sequence[EnvironmentalSample],
            current_series: Optional[Sequence[EnvironmentalSample]] = None,
            simulation_hours: Optional[float] = None,
            mode: Optional[str] = None,
            start_time: Optional[datetime] = None,
            cancel_event: Optional[threading.Event] = None,
            progress_callback: Optional[ProgressCallback] = None) -> SimulationResult:
        """
        Simulate the dispersion of one spill.

        Args:
            spill: Spill to simulate
            chemical: Chemical profile, or None to use the fallback profile
            wind_series: Wind/weather forecast (may be empty)
            current_series: Current/tide forecast; None uses the currents carried
                by the wind samples, an empty list uses the default current
            simulation_hours: Simulated duration. Defaults to ``simulation_hours``
                for stepped runs and ``closed_form_horizon_hours`` for closed-form runs.
            mode: 'stepped' or 'closed_form' (defaults to the configured mode)
            start_time: Time of the first step (defaults to the first wind sample)
            cancel_event: Set by the caller to stop the run between steps
            progress_callback: Called with (progress percent, stage name)

        Returns:
            SimulationResult for the run

        Raises:
            NotFoundError: If the spill is missing, or the chemical is missing
                and no fallback is allowed
            RateLimitedError: If the spill was simulated within the cooldown window
            SimulationCancelledError: If ``cancel_event`` was set during the run
        """
        mode = mode or self.params['mode']
        if mode not in self.MODES:
            raise ValueError(f"Mode must be one of {self.MODES}, got {mode}")

        if spill is None:
            self.state = EngineState.FAILED
            raise NotFoundError("Spill not found", resource='spill')

        self.cooldown.try_acquire(spill.id)

        try:
            result = self._run(spill, chemical, wind_series, current_series, simulation_hours,
                               mode, start_time, cancel_event, progress_callback)
        except SimulationCancelledError:
            self.state = EngineState.CANCELLED
            self.cooldown.release(spill.id)
            logger.info(f"Simulation for spill {spill.id} cancelled")
            raise
        except Exception as e:
            self.state = EngineState.FAILED
            self.cooldown.release(spill.id)
            logger.error(f"Simulation for spill {spill.id} failed: {e}")
            raise

        self.cooldown.mark_complete(spill.id)
        self.state = EngineState.COMPLETE
        return result

    def _resolve_chemical(self, spill: SpillSnapshot,
                          chemical: Optional[ChemicalProfile]) -> ChemicalProfile:
        if chemical is not None:
            return chemical
        if not self.allow_fallback_chemical:
            raise NotFoundError(
                f"Chemical {spill.chemical_type_id!r} not found for spill {spill.id}",
                resource='chemical', identifier=spill.chemical_type_id
            )
        logger.warning(f"No chemical profile for spill {spill.id}; "
                       f"using fallback profile {self.fallback_chemical.name}")
        return self.fallback_chemical

    def _run(self, spill: SpillSnapshot, chemical: Optional[ChemicalProfile],
             wind_series: Sequence[EnvironmentalSample],
             current_series: Optional[Sequence[EnvironmentalSample]],
             simulation_hours: Optional[float], mode: str,
             start_time: Optional[datetime],
             cancel_event: Optional[threading.Event],
             progress_callback: Optional[ProgressCallback]) -> SimulationResult:
        run_started = time.monotonic()
        chemical = self._resolve_chemical(spill, chemical)
        used_default_chemical = chemical.is_fallback

        if simulation_hours is None:
            if mode == 'closed_form':
                simulation_hours = self.params['closed_form_horizon_hours']
            else:
                simulation_hours = self.params['simulation_hours']

        self.state = EngineState.RUNNING
        logger.info(f"Starting {mode} dispersion for spill {spill.id} "
                    f"({spill.volume_liters} L of {chemical.name}, {simulation_hours} h)")
        _notify(progress_callback, 0.0, 'initializing')

        grid = ConcentrationGrid(spill.latitude, spill.longitude,
                                 self.params['grid_size'], self.params['cell_size_m'])
        selector = ConditionSelector(wind_series, current_series)
        start = start_time or selector.start_time
        initial = selector.select(start)
        stability = classify(initial.wind_speed, initial.temperature)
        initial_mass = released_mass_kg(spill.volume_liters, chemical.density)
        logger.debug(f"Stability class {stability.stability_class} "
                     f"(wind {initial.wind_speed:.2f} m/s), initial mass {initial_mass:.2f} kg")

        steps = 0
        if mode == 'closed_form':
            horizon = max(0.0, simulation_hours) * 3600.0
            closed_form_field(
                grid, spill.volume_liters, chemical.density,
                initial.wind_speed, initial.wind_direction,
                stability.sigma_y0, stability.sigma_z0,
                horizon_seconds=horizon,
                release_height=self.params['release_height_m'],
                concentration_divisor=self.params['concentration_divisor']
            )
            if self.params['apply_environmental_factors']:
                factor = environmental_factor(
                    chemical, initial.temperature, initial.wind_speed,
                    initial.tide_height, horizon,
                    volatility_threshold=self.params['volatility_threshold_pa']
                )
                grid.fill(grid.cells * factor)
        else:
            seed_gaussian(grid, spill.volume_liters, chemical.density,
                          sigma_cells=self.params['seed_sigma_cells'])
            _notify(progress_callback, 5.0, 'seeded')

            steps = self.step_count(simulation_hours)
            dt = self.dt
            interval = max(1, int(self.params['progress_interval']))
            for k in range(steps):
                if cancel_event is not None and cancel_event.is_set():
                    raise SimulationCancelledError(spill.id, k, steps)

                conditions = selector.select(start + timedelta(seconds=k * dt))
                if self.params['time_varying_stability']:
                    stability = classify(conditions.wind_speed, conditions.temperature)
                self.stepper.step(grid, conditions, chemical, dt)

                if (k + 1) % interval == 0 or k + 1 == steps:
                    progress = 5.0 + 95.0 * (k + 1) / steps
                    logger.info(f"Step {k + 1}/{steps} - total mass {grid.total_mass():.3f} kg")
                    _notify(progress_callback, progress, 'transport')

        result = SimulationResult(
            spill_id=spill.id,
            grid=grid,
            max_concentration=grid.max_concentration(),
            total_mass=grid.total_mass(),
            initial_mass=initial_mass,
            stability_class=stability.stability_class,
            simulation_hours=simulation_hours,
            steps=steps,
            mode=mode,
            used_default_conditions=selector.used_default_conditions,
            used_default_chemical=used_default_chemical,
            chemical_name=chemical.name,
            completed_at=datetime.now(),
            runtime_seconds=time.monotonic() - run_started
        )
        _notify(progress_callback, 100.0, 'complete')
        logger.info(f"Dispersion for spill {spill.id} complete: max {result.max_concentration:.6f} mg/L, "
                    f"mass {result.total_mass:.3f}/{initial_mass:.3f} kg in {result.runtime_seconds:.2f}s")
        return result


def _notify(callback: Optional[ProgressCallback], progress: float, stage: str) -> None:
    if callback is None:
        return
    try:
        callback(progress, stage)
    except Exception as e:
        logger.error(f"Error in progress callback: {e}")

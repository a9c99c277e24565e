"""
Environmental condition selection for the Chemical Dispersion Engine.

This module turns the externally supplied forecast series into one
EnvironmentalSample per simulation step:
- Wind and current are interpolated as vector components, so that
  directions wrap correctly across north
- Temperature, humidity, pressure and tide height are interpolated linearly
- Requests before the first or after the last sample get the nearest sample
- Empty series are replaced by documented default conditions, and the
  substitution is recorded
"""

import logging
import math
import datetime
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
from scipy.interpolate import interp1d

from dispersion_core.config import DEFAULT_CONDITIONS
from dispersion_core.data_models import EnvironmentalSample
from dispersion_core.interfaces import vector_to_heading, wind_from_to_heading

logger = logging.getLogger(__name__)


def default_sample(timestamp: Optional[datetime.datetime] = None,
                   defaults: Optional[Dict[str, float]] = None) -> EnvironmentalSample:
    """Build the default conditions sample used when forecasts are missing."""
    values = DEFAULT_CONDITIONS.copy()
    if defaults:
        values.update(defaults)
    return EnvironmentalSample(
        timestamp=timestamp or datetime.datetime.now(),
        wind_speed=values['wind_speed'],
        wind_direction=values['wind_direction'],
        current_speed=values['current_speed'],
        current_direction=values['current_direction'],
        temperature=values['temperature'],
        humidity=values.get('humidity'),
        pressure=values.get('pressure'),
        tide_height=values.get('tide_height'),
    )


def _ordered(series: Sequence[EnvironmentalSample]) -> List[EnvironmentalSample]:
    """Sort samples by time, keeping the last sample for duplicate timestamps."""
    by_time = {}
    for sample in series:
        by_time[sample.timestamp.timestamp()] = sample
    return [by_time[key] for key in sorted(by_time)]


def _optional(value: Optional[float]) -> float:
    return np.nan if value is None else float(value)


def _restore(value: float) -> Optional[float]:
    return None if not math.isfinite(value) else float(value)


class _ChannelInterpolator:
    """Linear interpolation of several numeric channels over one time axis."""

    def __init__(self, samples: List[EnvironmentalSample],
                 channels: Callable[[EnvironmentalSample], List[float]]):
        self.samples = samples
        self.times = np.array([s.timestamp.timestamp() for s in samples], dtype=np.float64)
        values = np.array([channels(s) for s in samples], dtype=np.float64)

        if len(samples) > 1:
            self._interp = interp1d(
                self.times, values, axis=0, kind='linear',
                bounds_error=False, fill_value=(values[0], values[-1]),
                assume_sorted=True
            )
        else:
            self._interp = None
        self._values = values

    def exact_sample(self, when: float) -> Optional[EnvironmentalSample]:
        """Return the stored sample for ``when`` if it is at or beyond an end, or an exact match."""
        if when <= self.times[0]:
            return self.samples[0]
        if when >= self.times[-1]:
            return self.samples[-1]
        index = int(np.searchsorted(self.times, when))
        if self.times[index] == when:
            return self.samples[index]
        return None

    def __call__(self, when: float) -> np.ndarray:
        if self._interp is None:
            return self._values[0]
        return np.asarray(self._interp(when), dtype=np.float64)


def _wind_channels(sample: EnvironmentalSample) -> List[float]:
    wind_east, wind_north = sample.wind_vector
    current_east, current_north = sample.current_vector
    return [wind_east, wind_north, current_east, current_north, sample.temperature,
            _optional(sample.humidity), _optional(sample.pressure), _optional(sample.tide_height)]


def _current_channels(sample: EnvironmentalSample) -> List[float]:
    east, north = sample.current_vector
    return [east, north, _optional(sample.tide_height)]


class ConditionSelector:
    """
    Selects the environmental conditions for each simulation step.

    Args:
        wind_series: Ordered or unordered wind/weather forecast
        current_series: Current/tide forecast; None means the current values
            carried by the wind samples are used
        defaults: Overrides for the default conditions

    Attributes:
        used_default_conditions: True when any series was replaced by defaults
    """

    def __init__(self, wind_series: Sequence[EnvironmentalSample],
                 current_series: Optional[Sequence[EnvironmentalSample]] = None,
                 defaults: Optional[Dict[str, float]] = None):
        self.defaults = default_sample(defaults=defaults)
        self.used_default_conditions = False

        wind_samples = _ordered(wind_series or [])
        if not wind_samples:
            logger.warning("Wind series is empty; using default conditions")
            self.used_default_conditions = True
            wind_samples = [self.defaults]
        self._wind = _ChannelInterpolator(wind_samples, _wind_channels)

        self._current = None
        if current_series is not None:
            current_samples = _ordered(current_series)
            if not current_samples:
                logger.warning("Current series is empty; using default current")
                self.used_default_conditions = True
                current_samples = [self.defaults]
            self._current = _ChannelInterpolator(current_samples, _current_channels)

    @property
    def start_time(self) -> datetime.datetime:
        """Timestamp of the earliest wind sample."""
        return self._wind.samples[0].timestamp

    def select(self, timestamp: datetime.datetime) -> EnvironmentalSample:
        """
        Conditions at ``timestamp``.

        Args:
            timestamp: Time of the simulation step

        Returns:
            EnvironmentalSample stamped with ``timestamp``
        """
        when = timestamp.timestamp()
        weather = self._select_weather(when)

        if self._current is None:
            return weather.with_values(timestamp=timestamp)

        current_speed, current_direction, tide_height = self._select_current(when)
        if tide_height is None:
            tide_height = weather.tide_height
        return weather.with_values(
            timestamp=timestamp,
            current_speed=current_speed,
            current_direction=current_direction,
            tide_height=tide_height,
        )

    def series(self, start: datetime.datetime, steps: int, dt: float) -> List[EnvironmentalSample]:
        """Conditions at the start of each of ``steps`` steps of ``dt`` seconds."""
        return [self.select(start + datetime.timedelta(seconds=k * dt)) for k in range(steps)]

    def _select_weather(self, when: float) -> EnvironmentalSample:
        exact = self._wind.exact_sample(when)
        if exact is not None:
            return exact

        (wind_east, wind_north, current_east, current_north,
         temperature, humidity, pressure, tide) = self._wind(when)
        wind_speed, wind_heading = vector_to_heading(wind_east, wind_north)
        current_speed, current_direction = vector_to_heading(current_east, current_north)
        return self._wind.samples[0].with_values(
            wind_speed=wind_speed,
            wind_direction=wind_from_to_heading(wind_heading),
            current_speed=current_speed,
            current_direction=current_direction,
            temperature=float(temperature),
            humidity=_restore(humidity),
            pressure=_restore(pressure),
            tide_height=_restore(tide),
        )

    def _select_current(self, when: float):
        exact = self._current.exact_sample(when)
        if exact is not None:
            return exact.current_speed, exact.current_direction, exact.tide_height

        east, north, tide = self._current(when)
        speed, direction = vector_to_heading(east, north)
        return speed, direction, _restore(tide)


"""
Data models for the Chemical Dispersion Engine.

This module contains the data models used throughout the simulation:
- EnvironmentalSample: One wind/current/weather reading at a timestamp
- ChemicalProfile: Physicochemical properties of the released chemical
- SpillSnapshot: Read-only view of a spill incident
- ConcentrationGrid: Square 2-D concentration field centred on a spill
- SimulationResult: Outcome of one engine run

Inputs are immutable dataclasses that validate themselves on construction.
The grid is the only mutable object and is owned by a single run.
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, List, Tuple, Optional, Any
import json
import datetime
import math

import numpy as np

from dispersion_core.config import DEFAULT_CHEMICAL_PROFILE
from dispersion_core.exceptions import GridConfigurationError
from dispersion_core.interfaces import (
    heading_to_vector, wind_from_to_heading, meters_to_lat_lon, lat_lon_to_meters,
    validate_latitude, validate_longitude, validate_positive, validate_non_negative
)


def _parse_timestamp(value: Any) -> datetime.datetime:
    if isinstance(value, datetime.datetime):
        return value
    return datetime.datetime.fromisoformat(value)


@dataclass(frozen=True)
class EnvironmentalSample:
    """
    Environmental conditions at a single point in time.

    Attributes:
        timestamp: Time of the reading or forecast
        wind_speed: Wind speed in m/s
        wind_direction: Meteorological wind direction in degrees (blowing from)
        current_speed: Water current speed in m/s
        current_direction: Direction the current flows toward, in degrees
        temperature: Air/water temperature in degrees C
        humidity: Relative humidity in percent (carried, unused by the physics)
        pressure: Atmospheric pressure in Pa (carried, unused by the physics)
        tide_height: Tide height in meters
    """

    timestamp: datetime.datetime
    wind_speed: float
    wind_direction: float
    current_speed: float = 0.0
    current_direction: float = 0.0
    temperature: float = 15.0
    humidity: Optional[float] = None
    pressure: Optional[float] = None
    tide_height: Optional[float] = None

    def __post_init__(self):
        self._validate()

    def _validate(self):
        """Validate the sample values."""
        validate_non_negative(self.wind_speed, "Wind speed")
        validate_non_negative(self.current_speed, "Current speed")
        if self.humidity is not None:
            validate_non_negative(self.humidity, "Humidity")

    @property
    def wind_heading(self) -> float:
        """Direction the wind blows toward, in degrees."""
        return wind_from_to_heading(self.wind_direction)

    @property
    def wind_vector(self) -> Tuple[float, float]:
        """Wind as (east, north) components along its direction of travel."""
        return heading_to_vector(self.wind_speed, self.wind_heading)

    @property
    def current_vector(self) -> Tuple[float, float]:
        """Current as (east, north) components."""
        return heading_to_vector(self.current_speed, self.current_direction)

    def with_values(self, **changes: Any) -> 'EnvironmentalSample':
        """Return a copy of this sample with some fields replaced."""
        values = asdict(self)
        values.update(changes)
        return EnvironmentalSample(**values)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the sample to a dictionary."""
        sample_dict = asdict(self)
        sample_dict['timestamp'] = self.timestamp.isoformat()
        return sample_dict

    @classmethod
    def from_dict(cls, sample_dict: Dict[str, Any]) -> 'EnvironmentalSample':
        """Create an EnvironmentalSample from a dictionary."""
        values = dict(sample_dict)
        values['timestamp'] = _parse_timestamp(values['timestamp'])
        return cls(**values)


@dataclass(frozen=True)
class ChemicalProfile:
    """
    Physicochemical properties of a named chemical.

    Attributes:
        name: Chemical name
        density: Density in kg/m^3
        diffusion_coefficient: Molecular diffusion coefficient in m^2/s
        decay_rate: First-order decay rate in 1/s (0 means no decay)
        vapor_pressure: Vapor pressure in Pa
        viscosity: Dynamic viscosity in Pa s
        solubility: Water solubility in mg/L
        cid: PubChem compound identifier
        molecular_formula: Molecular formula
        molecular_weight: Molecular weight in g/mol
        toxicity_level: LOW, MEDIUM, HIGH or EXTREME
        is_fallback: True when this profile stands in for a failed lookup
    """

    name: str
    density: float
    diffusion_coefficient: float
    decay_rate: float
    vapor_pressure: float
    viscosity: float = 0.0
    solubility: float = 0.0
    cid: Optional[int] = None
    molecular_formula: Optional[str] = None
    molecular_weight: Optional[float] = None
    toxicity_level: Optional[str] = None
    is_fallback: bool = False

    # Fields that must be present when building a profile from raw records
    REQUIRED_FIELDS = ('name', 'density', 'diffusion_coefficient', 'decay_rate', 'vapor_pressure')

    VALID_TOXICITY_LEVELS = ['LOW', 'MEDIUM', 'HIGH', 'EXTREME']

    def __post_init__(self):
        self._validate()

    def _validate(self):
        """Validate the chemical properties."""
        if not self.name:
            raise ValueError("Chemical name must not be empty")
        validate_positive(self.density, "Density")
        validate_non_negative(self.diffusion_coefficient, "Diffusion coefficient")
        validate_non_negative(self.decay_rate, "Decay rate")
        validate_non_negative(self.vapor_pressure, "Vapor pressure")
        validate_non_negative(self.viscosity, "Viscosity")
        validate_non_negative(self.solubility, "Solubility")
        if self.toxicity_level is not None and self.toxicity_level not in self.VALID_TOXICITY_LEVELS:
            raise ValueError(
                f"Toxicity level must be one of {self.VALID_TOXICITY_LEVELS}, got {self.toxicity_level}"
            )

    def to_dict(self) -> Dict[str, Any]:
        """Convert the profile to a dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, profile_dict: Dict[str, Any]) -> 'ChemicalProfile':
        """
        Create a ChemicalProfile from a dictionary.

        Missing physical properties are never read as zero: an incomplete
        record is rejected so the caller can fall back to a known profile.

        Raises:
            ValueError: If a required field is missing or None
        """
        missing = [key for key in cls.REQUIRED_FIELDS if profile_dict.get(key) is None]
        if missing:
            raise ValueError(f"Chemical profile missing required fields: {', '.join(missing)}")

        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in profile_dict.items() if k in known})

    @classmethod
    def fallback(cls, **overrides: Any) -> 'ChemicalProfile':
        """Return the named crude-oil-like default profile."""
        values = dict(DEFAULT_CHEMICAL_PROFILE)
        values.update(overrides)
        values['is_fallback'] = True
        return cls(**values)


@dataclass(frozen=True)
class SpillSnapshot:
    """
    Read-only view of a spill incident.

    Only the location and identifier are validated here. Non-physical
    volume or depth values are tolerated by the engine and reported by
    ``validation.validate_spill``.
    """

    id: Any
    latitude: float
    longitude: float
    volume_liters: float
    water_depth_meters: float
    chemical_type_id: Optional[str]
    spill_time: datetime.datetime = field(default_factory=datetime.datetime.now)
    name: Optional[str] = None
    status: str = 'ACTIVE'

    VALID_STATUSES = ['ACTIVE', 'CONTAINED', 'CLEANED_UP']

    def __post_init__(self):
        self._validate()

    def _validate(self):
        if self.id is None:
            raise ValueError("Spill id must not be None")
        validate_latitude(self.latitude)
        validate_longitude(self.longitude)
        if self.status not in self.VALID_STATUSES:
            raise ValueError(f"Status must be one of {self.VALID_STATUSES}, got {self.status}")

    @property
    def location(self) -> Tuple[float, float]:
        return self.latitude, self.longitude

    @property
    def is_active(self) -> bool:
        return self.status == 'ACTIVE'

    @property
    def volume_m3(self) -> float:
        return self.volume_liters / 1000.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert the snapshot to a dictionary."""
        spill_dict = asdict(self)
        spill_dict['spill_time'] = self.spill_time.isoformat()
        return spill_dict

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, spill_dict: Dict[str, Any]) -> 'SpillSnapshot':
        """Create a SpillSnapshot from a dictionary."""
        values = dict(spill_dict)
        if 'spill_time' in values and values['spill_time'] is not None:
            values['spill_time'] = _parse_timestamp(values['spill_time'])
        else:
            values.pop('spill_time', None)
        return cls(**values)


class ConcentrationGrid:
    """
    Square grid of concentrations centred on a geographic point.

    Cell ``(i, j)`` sits at an offset of ``(i - N/2) * cell_size`` meters east
    and ``(j - N/2) * cell_size`` meters north of the centre. Index ``i`` runs
    west to east and ``j`` runs south to north, so ``cells[i, j]`` addresses
    the buffer directly.

    Every public mutation leaves all cells finite and non-negative.
    """

    MIN_SIZE = 3

    def __init__(self, center_lat: float, center_lon: float, size: int = 100,
                 cell_size: float = 100.0, cells: Optional[np.ndarray] = None):
        if not isinstance(size, (int, np.integer)) or size < self.MIN_SIZE:
            raise GridConfigurationError(
                f"Grid size must be an integer >= {self.MIN_SIZE}, got {size}",
                parameter_name='size', parameter_value=size
            )
        if not math.isfinite(cell_size) or cell_size <= 0:
            raise GridConfigurationError(
                f"Cell size must be a positive number of meters, got {cell_size}",
                parameter_name='cell_size', parameter_value=cell_size
            )
        validate_latitude(center_lat)
        validate_longitude(center_lon)

        self.center_lat = float(center_lat)
        self.center_lon = float(center_lon)
        self.size = int(size)
        self.cell_size = float(cell_size)

        if cells is None:
            self.cells = np.zeros((self.size, self.size), dtype=np.float64)
        else:
            cells = np.array(cells, dtype=np.float64)
            if cells.shape != (self.size, self.size):
                raise GridConfigurationError(
                    f"Cell buffer shape {cells.shape} does not match grid size {self.size}",
                    parameter_name='cells', parameter_value=cells.shape
                )
            self.cells = cells
            self.clamp()

    def __repr__(self):
        return (f"ConcentrationGrid(center=({self.center_lat}, {self.center_lon}), "
                f"size={self.size}, cell_size={self.cell_size})")

    @property
    def cell_area(self) -> float:
        """Area of one cell in square meters."""
        return self.cell_size * self.cell_size

    @property
    def source_index(self) -> Tuple[int, int]:
        """Index of the cell holding the grid centre."""
        return self.size // 2, self.size // 2

    def clamp(self) -> 'ConcentrationGrid':
        """Coerce NaN/Inf to zero and negative values to zero, in place."""
        np.nan_to_num(self.cells, copy=False, nan=0.0, posinf=0.0, neginf=0.0)
        np.maximum(self.cells, 0.0, out=self.cells)
        return self

    def fill(self, values: np.ndarray) -> 'ConcentrationGrid':
        """Replace the cell values and clamp them."""
        self.cells[...] = values
        return self.clamp()

    def in_bounds(self, i: int, j: int) -> bool:
        return 0 <= i < self.size and 0 <= j < self.size

    def index_to_offset(self, i: float, j: float) -> Tuple[float, float]:
        """Offset of a cell from the grid centre as (x east, y north) meters."""
        half = self.size / 2.0
        return (i - half) * self.cell_size, (j - half) * self.cell_size

    def offset_arrays(self) -> Tuple[np.ndarray, np.ndarray]:
        """Return the (x, y) offset of every cell as two N x N arrays."""
        half = self.size / 2.0
        axis = (np.arange(self.size, dtype=np.float64) - half) * self.cell_size
        return np.meshgrid(axis, axis, indexing='ij')

    def index_to_latlon(self, i: float, j: float) -> Tuple[float, float]:
        """Geographic coordinates of a cell as (latitude, longitude)."""
        x, y = self.index_to_offset(i, j)
        return meters_to_lat_lon(x, y, self.center_lat, self.center_lon)

    def latlon_to_index(self, lat: float, lon: float) -> Tuple[int, int]:
        """
        Index of the cell nearest to a geographic point.

        The result may fall outside the grid; check with :meth:`in_bounds`.
        """
        x, y = lat_lon_to_meters(lat, lon, self.center_lat, self.center_lon)
        half = self.size / 2.0
        return int(round(x / self.cell_size + half)), int(round(y / self.cell_size + half))

    def total_mass(self) -> float:
        """Integrated mass over the grid (sum of cells times cell area)."""
        return float(self.cells.sum() * self.cell_area)

    def max_concentration(self) -> float:
        return float(self.cells.max())

    def copy(self) -> 'ConcentrationGrid':
        """Return an independent copy of this grid."""
        return ConcentrationGrid(self.center_lat, self.center_lon, self.size,
                                 self.cell_size, cells=self.cells.copy())

    def to_dict(self, include_cells: bool = False) -> Dict[str, Any]:
        """Convert the grid metadata (and optionally the cells) to a dictionary."""
        grid_dict = {
            'center_lat': self.center_lat,
            'center_lon': self.center_lon,
            'size': self.size,
            'cell_size': self.cell_size,
            'total_mass': self.total_mass(),
            'max_concentration': self.max_concentration(),
        }
        if include_cells:
            grid_dict['cells'] = self.cells.tolist()
        return grid_dict

    @classmethod
    def from_dict(cls, grid_dict: Dict[str, Any]) -> 'ConcentrationGrid':
        """Create a ConcentrationGrid from a dictionary."""
        return cls(
            center_lat=grid_dict['center_lat'],
            center_lon=grid_dict['center_lon'],
            size=grid_dict['size'],
            cell_size=grid_dict['cell_size'],
            cells=grid_dict.get('cells')
        )


@dataclass(frozen=True)
class SimulationResult:
    """
    Result of one dispersion run.

    Attributes:
        spill_id: Identifier of the simulated spill
        grid: Final concentration grid (owned by the result)
        max_concentration: Largest cell value
        total_mass: Integrated mass at the end of the run in kg
        initial_mass: Released mass in kg
        stability_class: Atmospheric stability class used by the run
        simulation_hours: Simulated duration in hours
        steps: Number of transport steps taken
        mode: 'stepped' or 'closed_form'
        used_default_conditions: True when default conditions replaced missing series
        used_default_chemical: True when the fallback chemical profile was used
        chemical_name: Name of the chemical profile used
        completed_at: Wall-clock completion time
        runtime_seconds: Wall-clock duration of the run
    """

    spill_id: Any
    grid: ConcentrationGrid
    max_concentration: float
    total_mass: float
    initial_mass: float
    stability_class: str
    simulation_hours: float
    steps: int
    mode: str = 'stepped'
    used_default_conditions: bool = False
    used_default_chemical: bool = False
    chemical_name: Optional[str] = None
    completed_at: datetime.datetime = field(default_factory=datetime.datetime.now)
    runtime_seconds: float = 0.0

    def __post_init__(self):
        # The grid is frozen with the result; use grid.copy() to edit
        self.grid.cells.flags.writeable = False

    @property
    def used_defaults(self) -> bool:
        """True when any documented default replaced missing input."""
        return self.used_default_conditions or self.used_default_chemical

    @property
    def mass_fraction_remaining(self) -> float:
        if self.initial_mass <= 0:
            return 0.0
        return self.total_mass / self.initial_mass

    def get_summary(self) -> Dict[str, Any]:
        """Return the scalar fields of the result."""
        return {
            'spill_id': self.spill_id,
            'max_concentration': self.max_concentration,
            'total_mass': self.total_mass,
            'initial_mass': self.initial_mass,
            'mass_fraction_remaining': self.mass_fraction_remaining,
            'stability_class': self.stability_class,
            'simulation_hours': self.simulation_hours,
            'steps': self.steps,
            'mode': self.mode,
            'used_defaults': self.used_defaults,
            'used_default_conditions': self.used_default_conditions,
            'used_default_chemical': self.used_default_chemical,
            'chemical_name': self.chemical_name,
            'completed_at': self.completed_at.isoformat(),
            'runtime_seconds': self.runtime_seconds,
        }

    def to_dict(self, include_cells: bool = False) -> Dict[str, Any]:
        """Convert the result to a dictionary."""
        result_dict = self.get_summary()
        result_dict['grid'] = self.grid.to_dict(include_cells=include_cells)
        return result_dict

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)

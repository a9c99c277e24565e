"""
Module interfaces and utility functions for the Chemical Dispersion Engine.

This module defines the interfaces between the engine and its external
collaborators and provides utility functions for common operations such as:
- Coordinate transformations (local equirectangular approximation)
- Direction and vector conversions
- Unit conversions
- Data validation

The engine only consumes plain values. Anything that talks to a database,
a web API, or live subscribers implements one of the protocols below.
"""

import math
from typing import Protocol, List, Tuple, Any, TYPE_CHECKING

if TYPE_CHECKING:
    from dispersion_core.data_models import (
        ChemicalProfile, EnvironmentalSample, SimulationResult, SpillSnapshot
    )


# Meters per degree of latitude used by every grid <-> geographic conversion
METERS_PER_DEGREE_LAT = 111320.0


# Protocol classes for external collaborators
class SpillRepository(Protocol):
    """Interface for the spill persistence layer."""

    def get(self, spill_id: Any) -> 'SpillSnapshot':
        """
        Return a read-only snapshot of the spill.

        Raises:
            NotFoundError: If no spill exists with this identifier
        """
        ...

    def active(self) -> List['SpillSnapshot']:
        """Return snapshots of every spill that is still active."""
        ...


class ChemicalProfileProvider(Protocol):
    """Interface for chemical property lookup services."""

    def lookup(self, chemical_type_id: str) -> 'ChemicalProfile':
        """
        Look up the physicochemical profile of a chemical.

        Implementations must return a fully-populated fallback profile
        (with ``is_fallback`` set) when the exact lookup fails.
        """
        ...


class EnvironmentalSeriesProvider(Protocol):
    """Interface for weather and tide forecast services."""

    def forecast(self, latitude: float, longitude: float,
                 hours_ahead: int) -> List['EnvironmentalSample']:
        """
        Return an ordered forecast for the location.

        An empty list signals an upstream failure; the engine substitutes
        default conditions.
        """
        ...


class ResultSubscriber(Protocol):
    """Interface for the notification fan-out that receives fresh results."""

    def __call__(self, result: 'SimulationResult') -> None:
        ...


# Utility functions for coordinate transformations
def meters_per_degree_lon(ref_lat: float) -> float:
    """Meters per degree of longitude at the reference latitude."""
    return METERS_PER_DEGREE_LAT * math.cos(math.radians(ref_lat))


def meters_to_lat_lon(x: float, y: float, ref_lat: float, ref_lon: float) -> Tuple[float, float]:
    """
    Convert an east/north offset in meters to latitude and longitude.

    Args:
        x: Eastward offset in meters from the reference point
        y: Northward offset in meters from the reference point
        ref_lat: Reference latitude in degrees
        ref_lon: Reference longitude in degrees

    Returns:
        Tuple of (latitude, longitude) in degrees
    """
    lat = ref_lat + y / METERS_PER_DEGREE_LAT
    lon = ref_lon + safe_divide(x, meters_per_degree_lon(ref_lat))
    return lat, lon


def lat_lon_to_meters(lat: float, lon: float, ref_lat: float, ref_lon: float) -> Tuple[float, float]:
    """
    Convert latitude and longitude to an east/north offset from a reference point.

    This is the exact inverse of :func:`meters_to_lat_lon`.

    Returns:
        Tuple of (x, y) in meters
    """
    x = (lon - ref_lon) * meters_per_degree_lon(ref_lat)
    y = (lat - ref_lat) * METERS_PER_DEGREE_LAT
    return x, y


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points on the Earth.

    Returns:
        Distance in meters
    """
    earth_radius = 6371000

    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = lat2_rad - lat1_rad
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return earth_radius * c


# Direction conversions
def heading_to_vector(speed: float, heading_deg: float) -> Tuple[float, float]:
    """
    Split a speed along a compass heading (direction of travel) into components.

    Returns:
        Tuple of (east, north) components
    """
    heading_rad = math.radians(heading_deg)
    return speed * math.sin(heading_rad), speed * math.cos(heading_rad)


def vector_to_heading(east: float, north: float) -> Tuple[float, float]:
    """Inverse of :func:`heading_to_vector`; returns (speed, heading in [0, 360))."""
    speed = math.hypot(east, north)
    if speed == 0:
        return 0.0, 0.0
    return speed, math.degrees(math.atan2(east, north)) % 360.0


def wind_from_to_heading(direction_from: float) -> float:
    """Convert a meteorological wind direction (blowing from) to the direction of travel."""
    return (direction_from + 180.0) % 360.0


# Utility functions for unit conversions
def kmh_to_ms(kmh: float) -> float:
    """Convert speed from km/h to m/s."""
    return kmh / 3.6


def celsius_to_kelvin(celsius: float) -> float:
    """Convert temperature from Celsius to Kelvin."""
    return celsius + 273.15


def hpa_to_pa(hpa: float) -> float:
    """Convert pressure from hectopascal to pascal."""
    return hpa * 100.0


# Utility functions for data validation
def validate_in_range(value: float, min_value: float, max_value: float, name: str) -> None:
    """
    Validate that a value is within the specified range.

    Raises:
        ValueError: If the value is outside the allowed range
    """
    if not (min_value <= value <= max_value):
        raise ValueError(f"{name} must be between {min_value} and {max_value}, got {value}")


def validate_positive(value: float, name: str) -> None:
    """
    Validate that a value is positive.

    Raises:
        ValueError: If the value is not positive
    """
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")


def validate_non_negative(value: float, name: str) -> None:
    """
    Validate that a value is non-negative.

    Raises:
        ValueError: If the value is negative
    """
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")


def validate_latitude(lat: float) -> None:
    """Validate that a latitude value is within [-90, 90]."""
    validate_in_range(lat, -90, 90, "Latitude")


def validate_longitude(lon: float) -> None:
    """Validate that a longitude value is within [-180, 180]."""
    validate_in_range(lon, -180, 180, "Longitude")


# Error handling utilities
def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """
    Safely divide two numbers, returning a default value if the denominator is zero.
    """
    return numerator / denominator if denominator != 0 else default

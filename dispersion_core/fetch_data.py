"""
Data acquisition module for the Chemical Dispersion Engine.

This module fetches the inputs of a dispersion run from public services:
- Wind and weather forecasts from Open-Meteo
- Tide predictions from NOAA CO-OPS (nearest major station)
- Chemical identity from PubChem, with physical properties from a built-in table

Every client returns plain EnvironmentalSample / ChemicalProfile values. An
upstream failure gives an empty forecast or a fallback profile, never an
exception, so the engine can substitute its documented defaults.
"""

import math
import time
import logging
import functools
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional, Tuple, List

import requests

from dispersion_core import config
from dispersion_core.data_models import ChemicalProfile, EnvironmentalSample
from dispersion_core.interfaces import (
    ChemicalProfileProvider, EnvironmentalSeriesProvider, haversine_distance, hpa_to_pa, kmh_to_ms
)

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 15  # seconds

SEMI_DIURNAL_PERIOD_HOURS = 12.42

# Physical properties assumed for a chemical known only by its PubChem identity
PUBCHEM_PHYSICAL_DEFAULTS = {
    'density': 1000.0,
    'viscosity': 0.001,
    'solubility': 1000.0,
    'vapor_pressure': 100.0,
    'diffusion_coefficient': 1e-7,
    'decay_rate': 1e-7,
    'toxicity_level': 'MEDIUM',
}


class ApiResponse:
    """Class to standardize API responses across different clients."""

    def __init__(self,
                 success: bool,
                 data: Dict[str, Any] = None,
                 error: str = None,
                 source: str = None,
                 timestamp: datetime = None,
                 cached: bool = False):
        """
        Initialize an API response.

        Args:
            success: Whether the API request was successful
            data: The data returned by the API
            error: Error message if the request failed
            source: Source of the data
            timestamp: Timestamp of the data
            cached: Whether the data was retrieved from cache
        """
        self.success = success
        self.data = data or {}
        self.error = error
        self.source = source
        self.timestamp = timestamp or datetime.now()
        self.cached = cached

    def to_dict(self) -> Dict[str, Any]:
        """Convert the response to a dictionary."""
        return {
            'success': self.success,
            'data': self.data,
            'error': self.error,
            'source': self.source,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
            'cached': self.cached
        }

    @classmethod
    def success_response(cls, data: Dict[str, Any], source: str = None) -> 'ApiResponse':
        """Create a successful API response."""
        return cls(success=True, data=data, source=source)

    @classmethod
    def error_response(cls, error: str, source: str = None) -> 'ApiResponse':
        """Create an error API response."""
        return cls(success=False, error=error, source=source)

    @classmethod
    def cached_response(cls, data: Dict[str, Any], source: str = None, timestamp: datetime = None) -> 'ApiResponse':
        """Create a cached API response."""
        return cls(success=True, data=data, source=source, timestamp=timestamp, cached=True)


def cache_api_response(ttl_seconds: int = 3600):
    """
    Decorator to cache successful API responses in memory, per client.

    Args:
        ttl_seconds: Time-to-live for cached responses in seconds

    Returns:
        Decorated function
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            cache_key = (func.__name__, repr(args), repr(sorted(kwargs.items())))
            now = time.monotonic()

            with self._cache_lock:
                entry = self._cache.get(cache_key)
            if entry is not None and now - entry[0] < ttl_seconds:
                logger.debug(f"Retrieved cached response for {func.__name__}")
                cached = entry[1]
                return ApiResponse.cached_response(cached.data, source=cached.source, timestamp=cached.timestamp)

            response = func(self, *args, **kwargs)

            if response.success:
                with self._cache_lock:
                    self._cache[cache_key] = (now, response)
                logger.debug(f"Cached response for {func.__name__}")

            return response
        return wrapper
    return decorator


def retry(max_attempts: int = 3, delay: float = 1.0):
    """
    Decorator to retry API calls that raise a request exception.

    Args:
        max_attempts: Maximum number of retry attempts
        delay: Initial delay between retries in seconds (doubles with each retry)

    Returns:
        Decorated function
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            attempts = 0
            current_delay = delay
            last_error = None

            while attempts < max_attempts:
                try:
                    return func(self, *args, **kwargs)
                except requests.RequestException as e:
                    attempts += 1
                    last_error = str(e)
                    logger.warning(f"Attempt {attempts}/{max_attempts} failed for {func.__name__}: {e}")

                    if attempts < max_attempts:
                        logger.info(f"Retrying in {current_delay} seconds...")
                        time.sleep(current_delay)
                        current_delay *= 2  # Exponential backoff

            logger.error(f"All {max_attempts} attempts failed for {func.__name__}: {last_error}")
            return ApiResponse.error_response(f"All {max_attempts} attempts failed: {last_error}")
        return wrapper
    return decorator


class ApiClient(ABC):
    """Base class for API clients."""

    source = 'unknown'

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        """
        Initialize the API client.

        Args:
            api_key: API key for authentication
            base_url: Base URL for API requests
            session: HTTP session to use (a new one is created if omitted)
        """
        self.api_key = api_key
        self.base_url = base_url
        self.session = session or requests.Session()
        self._cache = {}
        self._cache_lock = threading.Lock()

    @abstractmethod
    def get_data(self, **kwargs) -> ApiResponse:
        """Get data from the API."""
        pass

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    def validate_response(self, response: requests.Response) -> bool:
        """
        Validate the API response.

        Args:
            response: Response from the API

        Returns:
            True if the response is valid, False otherwise
        """
        return response.status_code == 200

    def handle_error(self, response: requests.Response) -> str:
        """
        Handle API error responses.

        Args:
            response: Response from the API

        Returns:
            Error message
        """
        try:
            error_data = response.json()
        except ValueError:
            return f"API error: {response.status_code} - {response.reason}"
        if isinstance(error_data, dict):
            # Open-Meteo sends {"error": true, "reason": "..."}
            if 'reason' in error_data:
                return str(error_data['reason'])
            error = error_data.get('error')
            if isinstance(error, dict):
                return error.get('message', str(error))
            if error:
                return str(error)
        return f"API error: {response.status_code} - {response.reason}"

    def make_request(self, url: str, method: str = 'GET', params: Dict[str, Any] = None,
                     headers: Dict[str, Any] = None, data: Dict[str, Any] = None) -> requests.Response:
        """
        Make an HTTP request.

        Args:
            url: URL to request
            method: HTTP method (GET, POST, etc.)
            params: Query parameters
            headers: HTTP headers
            data: Request body for POST requests

        Returns:
            Response from the API
        """
        headers = headers or {}
        if self.api_key:
            headers['Authorization'] = f"Bearer {self.api_key}"

        if method.upper() == 'GET':
            return self.session.get(url, params=params, headers=headers, timeout=REQUEST_TIMEOUT)
        elif method.upper() == 'POST':
            return self.session.post(url, params=params, headers=headers, json=data, timeout=REQUEST_TIMEOUT)
        else:
            raise ValueError(f"Unsupported HTTP method: {method}")

    def _get_json(self, url: str, params: Dict[str, Any] = None) -> ApiResponse:
        """GET a JSON document and wrap it in an ApiResponse."""
        response = self.make_request(url, params=params)

        if not self.validate_response(response):
            error_message = self.handle_error(response)
            logger.error(f"{self.source} API error: {error_message}")
            return ApiResponse.error_response(error_message, source=self.source)

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"{self.source} returned invalid JSON: {e}")
            return ApiResponse.error_response(f"Invalid JSON: {e}", source=self.source)

        return ApiResponse.success_response(data, source=self.source)


def _float_or_none(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


class OpenMeteoClient(ApiClient):
    """API client for Open-Meteo weather forecasts."""

    source = 'open_meteo'

    def __init__(self, session: Optional[requests.Session] = None):
        """Initialize the Open-Meteo API client."""
        super().__init__(base_url=config.DATA_SOURCES['wind']['open_meteo'], session=session)

    @cache_api_response(ttl_seconds=3600)  # Cache for 1 hour
    @retry(max_attempts=3)
    def get_data(self, latitude: float, longitude: float, forecast_days: int = 3, **kwargs) -> ApiResponse:
        """
        Get hourly weather data from Open-Meteo.

        Args:
            latitude: Latitude of the location
            longitude: Longitude of the location
            forecast_days: Number of forecast days

        Returns:
            ApiResponse with the raw forecast
        """
        params = {
            'latitude': latitude,
            'longitude': longitude,
            'hourly': 'temperature_2m,relativehumidity_2m,surface_pressure,windspeed_10m,winddirection_10m',
            'timezone': 'GMT',
            'forecast_days': forecast_days
        }
        return self._get_json(self.base_url, params=params)

    def forecast(self, latitude: float, longitude: float, hours_ahead: int) -> List[EnvironmentalSample]:
        """
        Hourly weather forecast as environmental samples.

        Returns:
            Ordered samples, or an empty list when the service is unavailable
        """
        forecast_days = max(1, min(16, math.ceil((hours_ahead + 1) / 24)))
        response = self.get_data(latitude, longitude, forecast_days=forecast_days)
        if not response.success:
            logger.warning(f"No weather forecast for ({latitude}, {longitude}): {response.error}")
            return []
        return self.parse_forecast(response.data, hours_ahead)

    @staticmethod
    def parse_forecast(data: Dict[str, Any], hours_ahead: int) -> List[EnvironmentalSample]:
        """
        Convert an Open-Meteo hourly block to samples.

        Wind speed arrives in km/h and pressure in hPa; hours with no wind
        reading are skipped.
        """
        hourly = data.get('hourly', {})
        times = hourly.get('time', [])
        speeds = hourly.get('windspeed_10m', [])
        directions = hourly.get('winddirection_10m', [])
        temperatures = hourly.get('temperature_2m', [])
        humidities = hourly.get('relativehumidity_2m', [])
        pressures = hourly.get('surface_pressure', [])

        def value_at(values, index):
            return _float_or_none(values[index]) if index < len(values) else None

        samples = []
        for index, time_str in enumerate(times[:hours_ahead + 1]):
            speed = value_at(speeds, index)
            direction = value_at(directions, index)
            if speed is None or direction is None:
                continue

            temperature = value_at(temperatures, index)
            pressure = value_at(pressures, index)
            samples.append(EnvironmentalSample(
                timestamp=datetime.fromisoformat(time_str),
                wind_speed=max(0.0, kmh_to_ms(speed)),
                wind_direction=direction % 360.0,
                temperature=temperature if temperature is not None else config.DEFAULT_CONDITIONS['temperature'],
                humidity=value_at(humidities, index),
                pressure=hpa_to_pa(pressure) if pressure is not None else None,
            ))

        return samples


def tidal_current(hours_since_start: float) -> Tuple[float, float, float]:
    """
    Semi-diurnal tide model.

    Returns:
        Tuple of (water level in m, current speed in m/s, current direction in degrees)
    """
    phase = hours_since_start * 2 * math.pi / SEMI_DIURNAL_PERIOD_HOURS
    water_level = 2.0 * math.sin(phase)
    current_speed = 0.5 + 0.3 * abs(math.cos(phase))
    current_direction = 180.0 + 45.0 * math.sin(phase)
    return water_level, current_speed, current_direction


def synthetic_tide_series(start: datetime, hours_ahead: int) -> List[EnvironmentalSample]:
    """
    Hourly semi-diurnal tide forecast for offline runs.

    Samples carry only current and tide height; wind is zero.
    """
    samples = []
    for hour in range(hours_ahead):
        water_level, current_speed, current_direction = tidal_current(hour)
        samples.append(EnvironmentalSample(
            timestamp=start + timedelta(hours=hour),
            wind_speed=0.0,
            wind_direction=0.0,
            current_speed=current_speed,
            current_direction=current_direction,
            tide_height=water_level,
        ))
    return samples


class NoaaTidesClient(ApiClient):
    """API client for NOAA CO-OPS tide predictions."""

    source = 'noaa_coops'

    def __init__(self, session: Optional[requests.Session] = None,
                 stations: Optional[List[Tuple[str, str, float, float]]] = None):
        """Initialize the NOAA CO-OPS API client."""
        super().__init__(base_url=config.DATA_SOURCES['tides']['noaa_coops'], session=session)
        self.stations = stations or config.TIDE_STATIONS

    def nearest_station(self, latitude: float, longitude: float) -> Tuple[str, str, float, float]:
        """Return the (id, name, lat, lon) of the closest station."""
        return min(self.stations,
                   key=lambda station: haversine_distance(latitude, longitude, station[2], station[3]))

    @cache_api_response(ttl_seconds=7200)  # Cache for 2 hours
    @retry(max_attempts=3)
    def get_data(self, station_id: str, begin: datetime, end: datetime,
                 product: str = 'predictions', **kwargs) -> ApiResponse:
        """
        Get hourly data for a station.

        Args:
            station_id: NOAA station identifier
            begin: Start of the period (UTC)
            end: End of the period (UTC)
            product: NOAA product name

        Returns:
            ApiResponse with the raw NOAA document
        """
        params = {
            'begin_date': begin.strftime('%Y%m%d %H:%M'),
            'end_date': end.strftime('%Y%m%d %H:%M'),
            'station': station_id,
            'product': product,
            'datum': 'MLLW',
            'time_zone': 'gmt',
            'units': 'metric',
            'interval': 'h',
            'format': 'json',
        }
        response = self._get_json(self.base_url, params=params)
        if response.success and 'error' in response.data:
            message = response.data['error'].get('message', 'unknown error')
            logger.error(f"NOAA CO-OPS error for station {station_id}: {message}")
            return ApiResponse.error_response(message, source=self.source)
        return response

    def forecast(self, latitude: float, longitude: float, hours_ahead: int) -> List[EnvironmentalSample]:
        """
        Hourly tide forecast for the nearest station.

        Tide heights come from the station predictions; the current follows
        the semi-diurnal model phased from the first prediction.

        Returns:
            Ordered samples, or an empty list when the service is unavailable
        """
        station_id, station_name, _, _ = self.nearest_station(latitude, longitude)
        begin = datetime.now(timezone.utc).replace(tzinfo=None, minute=0, second=0, microsecond=0)
        end = begin + timedelta(hours=hours_ahead)

        response = self.get_data(station_id, begin, end)
        if not response.success:
            logger.warning(f"No tide forecast from station {station_id} ({station_name}): {response.error}")
            return []
        return self.parse_predictions(response.data)

    @staticmethod
    def parse_predictions(data: Dict[str, Any]) -> List[EnvironmentalSample]:
        """Convert a NOAA predictions document to samples."""
        samples = []
        start = None
        for prediction in data.get('predictions', []):
            level = _float_or_none(prediction.get('v'))
            if level is None or 't' not in prediction:
                continue
            timestamp = datetime.strptime(prediction['t'], '%Y-%m-%d %H:%M')
            if start is None:
                start = timestamp
            _, current_speed, current_direction = tidal_current((timestamp - start).total_seconds() / 3600.0)
            samples.append(EnvironmentalSample(
                timestamp=timestamp,
                wind_speed=0.0,
                wind_direction=0.0,
                current_speed=current_speed,
                current_direction=current_direction,
                tide_height=level,
            ))
        return samples


def normalize_chemical_name(name: str) -> str:
    return name.strip().lower().replace(' ', '_').replace('-', '_')


class StaticChemicalProvider:
    """Chemical profiles from the built-in property table."""

    def __init__(self, library: Optional[Dict[str, Dict[str, Any]]] = None):
        self.library = library if library is not None else config.CHEMICAL_LIBRARY

    def known(self, chemical_type_id: str) -> bool:
        return bool(chemical_type_id) and normalize_chemical_name(chemical_type_id) in self.library

    def lookup(self, chemical_type_id: str) -> ChemicalProfile:
        """
        Look up a chemical by name.

        Returns:
            The tabulated profile, or the fallback profile for unknown names
        """
        if not self.known(chemical_type_id):
            logger.warning(f"Unknown chemical {chemical_type_id!r}; using fallback profile")
            return ChemicalProfile.fallback()
        key = normalize_chemical_name(chemical_type_id)
        return ChemicalProfile.from_dict(dict(self.library[key], name=key))


class PubChemClient(ApiClient):
    """API client for PubChem compound identity."""

    source = 'pubchem'

    def __init__(self, session: Optional[requests.Session] = None,
                 static_provider: Optional[StaticChemicalProvider] = None):
        """Initialize the PubChem API client."""
        super().__init__(base_url=config.DATA_SOURCES['chemicals']['pubchem'], session=session)
        self.static_provider = static_provider or StaticChemicalProvider()

    @cache_api_response(ttl_seconds=86400)  # Cache for 24 hours
    @retry(max_attempts=2)
    def get_data(self, name: str, **kwargs) -> ApiResponse:
        """
        Get compound properties from PubChem.

        Args:
            name: Chemical name

        Returns:
            ApiResponse with the PubChem property table
        """
        url = (f"{self.base_url}/compound/name/{requests.utils.quote(name)}"
               f"/property/MolecularFormula,MolecularWeight,IUPACName,IsomericSMILES/JSON")
        return self._get_json(url)

    def lookup(self, chemical_type_id: str) -> ChemicalProfile:
        """
        Build a profile from PubChem identity and tabulated physical properties.

        Physical properties come from the built-in table when the chemical is
        known, otherwise from generic defaults. When PubChem has no record
        the tabulated profile (or the fallback profile) is returned.
        """
        if not chemical_type_id:
            return ChemicalProfile.fallback()

        response = self.get_data(chemical_type_id.strip())
        identity = self._parse_identity(response)
        if identity is None:
            logger.warning(f"PubChem has no record for {chemical_type_id!r}: {response.error}")
            return self.static_provider.lookup(chemical_type_id)

        key = normalize_chemical_name(chemical_type_id)
        if self.static_provider.known(chemical_type_id):
            physical = dict(self.static_provider.library[key])
        else:
            physical = dict(PUBCHEM_PHYSICAL_DEFAULTS)
        physical.update(identity)
        physical['name'] = key
        return ChemicalProfile.from_dict(physical)

    @staticmethod
    def _parse_identity(response: ApiResponse) -> Optional[Dict[str, Any]]:
        if not response.success:
            return None
        properties = response.data.get('PropertyTable', {}).get('Properties', [])
        if not properties:
            return None
        record = properties[0]
        return {
            'cid': record.get('CID'),
            'molecular_formula': record.get('MolecularFormula'),
            'molecular_weight': _float_or_none(record.get('MolecularWeight')),
        }


class DataFetcher:
    """Facade over the weather, tide and chemical clients."""

    def __init__(self, weather_client: Optional[EnvironmentalSeriesProvider] = None,
                 tide_client: Optional[EnvironmentalSeriesProvider] = None,
                 chemical_provider: Optional[ChemicalProfileProvider] = None,
                 offline: bool = False):
        """
        Initialize the data fetcher.

        Args:
            weather_client: Weather forecast client
            tide_client: Tide forecast client
            chemical_provider: Anything with ``lookup(chemical_type_id)``
            offline: Skip network calls; use the synthetic tide series and
                the built-in chemical table
        """
        self.offline = offline
        self.weather_client = weather_client or OpenMeteoClient()
        self.tide_client = tide_client or NoaaTidesClient()
        if chemical_provider is None:
            chemical_provider = StaticChemicalProvider() if offline else PubChemClient()
        self.chemical_provider = chemical_provider

    def get_wind_series(self, latitude: float, longitude: float, hours_ahead: int) -> List[EnvironmentalSample]:
        """Weather forecast; empty when offline or unavailable."""
        if self.offline:
            return []
        return self.weather_client.forecast(latitude, longitude, hours_ahead)

    def get_current_series(self, latitude: float, longitude: float, hours_ahead: int) -> List[EnvironmentalSample]:
        """Tide/current forecast; synthetic when offline."""
        if self.offline:
            start = datetime.now().replace(minute=0, second=0, microsecond=0)
            return synthetic_tide_series(start, hours_ahead + 1)
        return self.tide_client.forecast(latitude, longitude, hours_ahead)

    def get_chemical(self, chemical_type_id: Optional[str]) -> Optional[ChemicalProfile]:
        """Chemical profile, or None when the spill names no chemical."""
        if not chemical_type_id:
            return None
        return self.chemical_provider.lookup(chemical_type_id)

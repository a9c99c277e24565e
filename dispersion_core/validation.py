"""
Validation utilities for the Chemical Dispersion Engine.

The data models reject values that can never be valid (bad coordinates,
negative densities). The functions here report softer problems as lists of
messages, so callers can warn about non-physical inputs that the engine
still tolerates (a zero volume simply produces an empty field).
"""

from typing import List, Sequence, Tuple
import datetime
import math
import json
import os

import numpy as np

from dispersion_core.data_models import (
    ChemicalProfile, EnvironmentalSample, SimulationResult, SpillSnapshot
)


def validate_spill(spill: SpillSnapshot) -> List[str]:
    """
    Validate a SpillSnapshot and return a list of validation errors.

    Args:
        spill: SpillSnapshot to validate

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []

    if not math.isfinite(spill.volume_liters) or spill.volume_liters <= 0:
        errors.append(f"Volume must be positive, got {spill.volume_liters}")

    if not math.isfinite(spill.water_depth_meters) or spill.water_depth_meters <= 0:
        errors.append(f"Water depth must be positive, got {spill.water_depth_meters}")

    if not spill.chemical_type_id:
        errors.append("Chemical type is not set")

    if spill.spill_time > datetime.datetime.now(spill.spill_time.tzinfo) + datetime.timedelta(hours=1):
        errors.append(f"Spill time is in the future: {spill.spill_time.isoformat()}")

    return errors


def validate_chemical(chemical: ChemicalProfile) -> List[str]:
    """
    Validate a ChemicalProfile against plausible physical ranges.

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []

    if not (1.0 <= chemical.density <= 25000.0):
        errors.append(f"Density must be between 1 and 25000 kg/m^3, got {chemical.density}")

    if chemical.diffusion_coefficient > 1e-3:
        errors.append(f"Diffusion coefficient is implausibly large: {chemical.diffusion_coefficient} m^2/s")

    if chemical.decay_rate > 1.0:
        errors.append(f"Decay rate is implausibly large: {chemical.decay_rate} 1/s")

    if chemical.is_fallback:
        errors.append(f"Profile {chemical.name} is a fallback profile")

    return errors


def validate_samples(samples: Sequence[EnvironmentalSample]) -> List[str]:
    """
    Validate an environmental series.

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []

    if not samples:
        errors.append("Environmental series is empty")
        return errors

    previous = None
    for index, sample in enumerate(samples):
        if not (0 <= sample.wind_direction <= 360):
            errors.append(f"Sample {index}: wind direction must be between 0 and 360, got {sample.wind_direction}")
        if not (0 <= sample.current_direction <= 360):
            errors.append(
                f"Sample {index}: current direction must be between 0 and 360, got {sample.current_direction}"
            )
        if sample.wind_speed > 100:
            errors.append(f"Sample {index}: wind speed is implausibly high: {sample.wind_speed} m/s")
        if not (-60 <= sample.temperature <= 60):
            errors.append(f"Sample {index}: temperature out of range: {sample.temperature} C")
        if previous is not None and sample.timestamp < previous:
            errors.append(f"Sample {index}: timestamps are not in order")
        previous = sample.timestamp

    return errors


def validate_result(result: SimulationResult) -> List[str]:
    """
    Validate a SimulationResult and return a list of validation errors.

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []
    cells = result.grid.cells

    if not np.all(np.isfinite(cells)):
        errors.append("Grid contains non-finite values")
    if np.any(cells < 0):
        errors.append("Grid contains negative concentrations")

    if result.total_mass < 0:
        errors.append(f"Total mass must be non-negative, got {result.total_mass}")
    if result.mode == 'stepped' and result.total_mass > result.initial_mass * 1.05 + 1e-9:
        errors.append(
            f"Total mass {result.total_mass:.3f} kg exceeds the released mass {result.initial_mass:.3f} kg"
        )

    if not math.isclose(result.max_concentration, float(cells.max()), rel_tol=1e-9, abs_tol=1e-12):
        errors.append("Max concentration does not match the grid")

    return errors


def validate_json_file(filepath: str) -> Tuple[bool, List[str]]:
    """
    Validate that a file contains valid JSON.

    Args:
        filepath: Path to the JSON file

    Returns:
        Tuple of (is_valid, error_messages)
    """
    errors = []

    if not os.path.exists(filepath):
        errors.append(f"File does not exist: {filepath}")
        return False, errors

    try:
        with open(filepath, 'r') as f:
            json.load(f)
        return True, []
    except json.JSONDecodeError as e:
        errors.append(f"Invalid JSON: {str(e)}")
        return False, errors


def validate_csv_file(filepath: str, required_columns: List[str]) -> Tuple[bool, List[str]]:
    """
    Validate that a file contains valid CSV with the required columns.

    Returns:
        Tuple of (is_valid, error_messages)
    """
    import csv

    errors = []

    if not os.path.exists(filepath):
        errors.append(f"File does not exist: {filepath}")
        return False, errors

    with open(filepath, 'r', newline='') as f:
        reader = csv.reader(f)
        header = next(reader, None)
        if header is None:
            return False, ["CSV file is empty"]

        for column in required_columns:
            if column not in header:
                errors.append(f"Missing required column: {column}")
        if errors:
            return False, errors

        for i, row in enumerate(reader):
            if len(row) != len(header):
                errors.append(f"Row {i+2} has {len(row)} columns, expected {len(header)}")
                if len(errors) >= 5:
                    errors.append("Too many errors, stopping validation")
                    break

    return len(errors) == 0, errors

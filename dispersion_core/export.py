"""
Export module for the Chemical Dispersion Engine.

This module handles formatting and exporting simulation results:
- Response payloads (concentration points, plume contours, affected area)
- Export to GeoJSON (for mapping)
- Export to JSON (structured response)
- Export to CSV (significant cells and summary)
"""

import os
import json
import csv
import logging
from typing import Dict, Any, Iterable, List, Optional
from datetime import datetime

import geojson

from dispersion_core import config
from dispersion_core.contours import (
    SIGNIFICANCE_THRESHOLD, affected_area_km2, concentration_points, extract_contours
)
from dispersion_core.data_models import SimulationResult

logger = logging.getLogger(__name__)


def build_response(result: SimulationResult,
                   levels: Iterable[float] = config.DEFAULT_CONTOUR_LEVELS,
                   threshold: float = SIGNIFICANCE_THRESHOLD) -> Dict[str, Any]:
    """
    Build the response payload for a simulation result.

    Args:
        result: Result of a dispersion run
        levels: Contour levels in mg/L
        threshold: Minimum concentration for a cell to be reported

    Returns:
        Dictionary ready for JSON serialization
    """
    grid = result.grid
    points = concentration_points(grid, threshold)
    contours = extract_contours(grid, levels)

    return {
        'spill_id': str(result.spill_id),
        'calculation_time': result.completed_at.isoformat(),
        'simulation_hours': result.simulation_hours,
        'center_latitude': grid.center_lat,
        'center_longitude': grid.center_lon,
        'max_concentration': result.max_concentration,
        'affected_area_km2': affected_area_km2(grid, threshold),
        'concentration_grid': [point._asdict() for point in points],
        'plume_contours': [contour.to_dict() for contour in contours],
        'metadata': {
            'total_mass': result.total_mass,
            'initial_mass': result.initial_mass,
            'chemical': result.chemical_name or 'Unknown',
            'grid_resolution': grid.cell_size,
            'grid_size': grid.size,
            'stability_class': result.stability_class,
            'mode': result.mode,
            'steps': result.steps,
            'runtime_seconds': result.runtime_seconds,
            'used_defaults': result.used_defaults,
            'used_default_conditions': result.used_default_conditions,
            'used_default_chemical': result.used_default_chemical,
        },
    }


def to_geojson(result: SimulationResult,
               levels: Iterable[float] = config.DEFAULT_CONTOUR_LEVELS,
               threshold: float = SIGNIFICANCE_THRESHOLD) -> geojson.FeatureCollection:
    """
    Convert a simulation result to a GeoJSON FeatureCollection.

    The collection holds the spill origin, one Point per significant cell
    and one MultiPoint per plume contour.
    """
    grid = result.grid
    features = [
        geojson.Feature(
            geometry=geojson.Point((grid.center_lon, grid.center_lat)),
            properties={
                'type': 'origin',
                'spill_id': str(result.spill_id),
                'chemical': result.chemical_name,
            }
        )
    ]

    for point in concentration_points(grid, threshold):
        features.append(geojson.Feature(
            geometry=geojson.Point((point.longitude, point.latitude)),
            properties={'type': 'concentration', 'concentration': point.concentration}
        ))

    for contour in extract_contours(grid, levels):
        features.append(geojson.Feature(
            geometry=geojson.MultiPoint([(lon, lat) for lat, lon in contour.points]),
            properties={'type': 'contour', 'level': contour.level, 'label': contour.label}
        ))

    return geojson.FeatureCollection(features, properties={
        'spill_id': str(result.spill_id),
        'calculation_time': result.completed_at.isoformat(),
        'max_concentration': result.max_concentration,
        'affected_area_km2': affected_area_km2(grid, threshold),
        'used_defaults': result.used_defaults,
    })


class ResultExporter:
    """Class for exporting simulation results in various formats."""

    def __init__(self, output_dir: Optional[str] = None,
                 levels: Iterable[float] = config.DEFAULT_CONTOUR_LEVELS,
                 threshold: float = SIGNIFICANCE_THRESHOLD):
        """
        Initialize the result exporter.

        Args:
            output_dir: Directory to save output files
                If None, uses the default from config
            levels: Contour levels in mg/L
            threshold: Minimum concentration for a cell to be exported
        """
        if output_dir is None:
            self.output_dir = config.OUTPUT_CONFIG['output_directory']
        else:
            self.output_dir = output_dir
        self.levels = list(levels)
        self.threshold = threshold

        os.makedirs(self.output_dir, exist_ok=True)

    def export_results(self,
                       result: SimulationResult,
                       format_type: str = 'all',
                       filename_base: Optional[str] = None) -> Dict[str, str]:
        """
        Export a simulation result in the specified format.

        Args:
            result: Result of a dispersion run
            format_type: Format to export ('geojson', 'json', 'csv', or 'all')
            filename_base: Base filename without extension
                If None, generates a timestamped filename

        Returns:
            Dictionary mapping format types to output filenames
        """
        if format_type != 'all' and format_type not in config.OUTPUT_CONFIG['available_formats']:
            raise ValueError(
                f"Format must be one of {config.OUTPUT_CONFIG['available_formats']} or 'all', got {format_type}"
            )

        if filename_base is None:
            timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
            filename_base = f"dispersion_{result.spill_id}_{timestamp}"

        output_files = {}

        if format_type in ['geojson', 'all']:
            output_files['geojson'] = self._export_geojson(result, f"{filename_base}.geojson")

        if format_type in ['json', 'all']:
            output_files['json'] = self._export_json(result, f"{filename_base}.json")

        if format_type in ['csv', 'all']:
            output_files['csv'] = self._export_csv(result, f"{filename_base}.csv")

        return output_files

    def _export_geojson(self, result: SimulationResult, filename: str) -> str:
        output_path = os.path.join(self.output_dir, filename)

        with open(output_path, 'w') as f:
            geojson.dump(to_geojson(result, self.levels, self.threshold), f, indent=2)

        logger.info(f"Exported GeoJSON to {output_path}")
        return output_path

    def _export_json(self, result: SimulationResult, filename: str) -> str:
        output_path = os.path.join(self.output_dir, filename)

        with open(output_path, 'w') as f:
            json.dump(build_response(result, self.levels, self.threshold), f, indent=2, default=str)

        logger.info(f"Exported JSON to {output_path}")
        return output_path

    def _export_csv(self, result: SimulationResult, filename: str) -> str:
        """
        Export significant cells as CSV, plus a summary file next to it.

        Returns:
            Full path to the cell CSV file
        """
        output_path = os.path.join(self.output_dir, filename)

        with open(output_path, 'w', newline='') as f:
            writer = csv.writer(f)
            writer.writerow(['latitude', 'longitude', 'concentration_mg_l'])
            for point in concentration_points(result.grid, self.threshold):
                writer.writerow([point.latitude, point.longitude, point.concentration])

        summary_path = os.path.join(self.output_dir, f"{os.path.splitext(filename)[0]}_summary.csv")
        with open(summary_path, 'w', newline='') as f:
            writer = csv.writer(f)
            writer.writerow(['Statistic', 'Value', 'Unit'])
            for key, value in result.get_summary().items():
                writer.writerow([key, value, _unit_for_statistic(key)])

        logger.info(f"Exported CSV to {output_path}")
        return output_path


def _unit_for_statistic(name: str) -> str:
    units = {
        'max_concentration': 'mg/L',
        'total_mass': 'kg',
        'initial_mass': 'kg',
        'simulation_hours': 'h',
        'runtime_seconds': 's',
    }
    return units.get(name, '')

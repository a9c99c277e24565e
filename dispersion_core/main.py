"""
Main orchestration module for the Chemical Dispersion Engine.

This module provides the main entry point and orchestration for the simulation:
- Coordinates the data acquisition, modeling, and export steps
- Provides a simple CLI interface for running simulations
- Handles configuration and parameter management
- Re-runs every active spill on demand for the notification fan-out
"""

import os
import sys
import json
import math
import uuid
import logging
import argparse
import threading
import configparser
from datetime import datetime
from typing import Dict, Any, List, Optional, Callable

from dispersion_core import config, export
from dispersion_core.cooldown import CooldownTracker
from dispersion_core.data_models import SimulationResult, SpillSnapshot
from dispersion_core.exceptions import NotFoundError, RateLimitedError
from dispersion_core.fetch_data import DataFetcher
from dispersion_core.interfaces import ResultSubscriber, SpillRepository
from dispersion_core.model import DispersionEngine
from dispersion_core.validation import validate_chemical, validate_result, validate_samples, validate_spill

logger = logging.getLogger(__name__)


class InMemorySpillRepository:
    """Thread-safe spill store keyed by spill id."""

    def __init__(self, spills: Optional[List[SpillSnapshot]] = None):
        self._spills: Dict[str, SpillSnapshot] = {}
        self._lock = threading.Lock()
        for spill in spills or []:
            self.add(spill)

    def add(self, spill: SpillSnapshot) -> SpillSnapshot:
        with self._lock:
            self._spills[str(spill.id)] = spill
        logger.debug(f"Registered spill {spill.id}")
        return spill

    def get(self, spill_id: Any) -> SpillSnapshot:
        """
        Return the spill with this id.

        Raises:
            NotFoundError: If no spill exists with this identifier
        """
        with self._lock:
            spill = self._spills.get(str(spill_id))
        if spill is None:
            raise NotFoundError(f"Spill not found with id: {spill_id}", resource='spill', identifier=spill_id)
        return spill

    def active(self) -> List[SpillSnapshot]:
        with self._lock:
            return [spill for spill in self._spills.values() if spill.is_active]

    def all(self) -> List[SpillSnapshot]:
        with self._lock:
            return list(self._spills.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._spills)


class SimulationManager:
    """Main class for orchestrating a dispersion simulation."""

    def __init__(self, simulation_params: Optional[Dict[str, Any]] = None,
                 fetcher: Optional[DataFetcher] = None,
                 engine: Optional[DispersionEngine] = None,
                 repository: Optional[SpillRepository] = None):
        """Initialize the simulation manager.

        Args:
            simulation_params: Optional dictionary of simulation parameters
            fetcher: Source of forecasts and chemical profiles
            engine: Dispersion engine (built from ``simulation_params`` if omitted)
            repository: Spill store used by ``run_simulation``
        """
        self.params = simulation_params or {}
        self.fetcher = fetcher or DataFetcher()
        self.engine = engine or DispersionEngine(self.params)
        self.repository = repository or InMemorySpillRepository()

        # Initialize simulation state
        self.simulation_state = {
            'progress': 0.0,
            'current_stage': 'initialized',
            'status': 'initialized'
        }

        self.progress_callback = None
        self._cancel_event = threading.Event()

    def set_progress_callback(self, callback: Optional[Callable[[float, Optional[str]], None]]):
        """
        Set a callback function for progress reporting.

        Args:
            callback: Function that takes progress (float) and stage (str) as arguments
        """
        self.progress_callback = callback

    def cancel(self) -> None:
        """Ask the running simulation to stop at the next step."""
        logger.info("Cancellation requested")
        self._cancel_event.set()

    def _update_progress(self, progress: float, stage: Optional[str] = None):
        """
        Update progress and call the progress callback if set.

        Args:
            progress: Progress value (0-100)
            stage: Current stage of the simulation
        """
        self.simulation_state['progress'] = progress
        if stage:
            self.simulation_state['current_stage'] = stage

        if self.progress_callback:
            try:
                self.progress_callback(progress, stage)
            except Exception as e:
                logger.error(f"Error in progress callback: {e}")

    def run_simulation(self, spill_id: Any, **kwargs) -> Dict[str, Any]:
        """
        Run the simulation for a registered spill.

        Raises:
            NotFoundError: If the spill is not in the repository
        """
        return self.run_for_spill(self.repository.get(spill_id), **kwargs)

    def run_for_spill(self,
                      spill: SpillSnapshot,
                      simulation_hours: Optional[float] = None,
                      mode: Optional[str] = None,
                      output_formats: Optional[List[str]] = None,
                      output_directory: Optional[str] = None,
                      filename_base: Optional[str] = None) -> Dict[str, Any]:
        """Fetch inputs, run the engine and export the result.

        Args:
            spill: Spill to simulate
            simulation_hours: Simulated duration (engine default if None)
            mode: 'stepped' or 'closed_form' (engine default if None)
            output_formats: Formats to write, e.g. ['geojson', 'json', 'csv'].
                An empty list skips file export.
            output_directory: Directory to save output files
            filename_base: Base filename for exported files

        Returns:
            Dictionary with the SimulationResult, the response payload,
            output files and execution time

        Raises:
            RateLimitedError: If the spill was simulated within the cooldown window
            SimulationCancelledError: If ``cancel()`` was called during the run
        """
        if output_formats is None:
            output_formats = ['geojson', 'json', 'csv']

        started = datetime.now()
        self._cancel_event.clear()
        self.simulation_state['status'] = 'running'
        self.simulation_state['start_time'] = started
        self._update_progress(0.0, 'starting')

        for problem in validate_spill(spill):
            logger.warning(f"Spill {spill.id}: {problem}")

        try:
            hours = simulation_hours
            if hours is None:
                hours = self.engine.params['simulation_hours']
            hours_ahead = max(1, int(math.ceil(hours)) + 1) if math.isfinite(hours) else 1

            self._update_progress(2.0, 'fetching_data')
            wind_series = self.fetcher.get_wind_series(spill.latitude, spill.longitude, hours_ahead)
            current_series = self.fetcher.get_current_series(spill.latitude, spill.longitude, hours_ahead)
            chemical = self.fetcher.get_chemical(spill.chemical_type_id)
            logger.info(f"Fetched {len(wind_series)} weather and {len(current_series)} tide samples "
                        f"for spill {spill.id}")
            problems = validate_samples(wind_series) if wind_series else []
            if chemical is not None:
                problems += validate_chemical(chemical)
            for problem in problems:
                logger.warning(f"Spill {spill.id}: {problem}")

            def engine_progress(progress: float, stage: str):
                self._update_progress(10.0 + 0.8 * progress, stage)

            result = self.engine.run(
                spill, chemical, wind_series, current_series,
                simulation_hours=simulation_hours,
                mode=mode,
                cancel_event=self._cancel_event,
                progress_callback=engine_progress
            )
            for problem in validate_result(result):
                logger.warning(f"Result for spill {spill.id}: {problem}")

            output_files = {}
            if output_formats:
                self._update_progress(92.0, 'exporting')
                exporter = export.ResultExporter(output_directory)
                for format_type in output_formats:
                    output_files.update(exporter.export_results(result, format_type, filename_base))

        except Exception:
            self.simulation_state['status'] = 'failed'
            raise

        execution_time = (datetime.now() - started).total_seconds()
        self.simulation_state['status'] = 'completed'
        self._update_progress(100.0, 'complete')

        return {
            'result': result,
            'response': export.build_response(result),
            'output_files': output_files,
            'execution_time': execution_time
        }


class ActiveSpillScheduler:
    """
    Re-runs every active spill and hands fresh results to subscribers.

    Spills still inside their cooldown window are skipped.
    """

    def __init__(self, repository: SpillRepository, manager: SimulationManager,
                 subscribers: Optional[List[ResultSubscriber]] = None,
                 simulation_hours: Optional[float] = None):
        self.repository = repository
        self.manager = manager
        self.subscribers = list(subscribers or [])
        self.simulation_hours = simulation_hours

    def subscribe(self, subscriber: ResultSubscriber) -> None:
        self.subscribers.append(subscriber)

    def run_once(self) -> List[SimulationResult]:
        """Simulate all active spills once and notify subscribers."""
        results = []
        for spill in self.repository.active():
            try:
                outcome = self.manager.run_for_spill(
                    spill, simulation_hours=self.simulation_hours, output_formats=[]
                )
            except RateLimitedError as e:
                logger.info(f"Skipping spill {spill.id}: retry in {e.retry_after:.1f}s")
                continue
            except Exception as e:
                logger.error(f"Scheduled run for spill {spill.id} failed: {e}")
                continue

            result = outcome['result']
            results.append(result)
            for subscriber in self.subscribers:
                try:
                    subscriber(result)
                except Exception as e:
                    logger.error(f"Error in result subscriber: {e}")

        logger.info(f"Scheduled pass complete: {len(results)} spills updated")
        return results

    def run_forever(self, stop_event: threading.Event, interval_seconds: float = 60.0) -> None:
        """Call ``run_once`` every ``interval_seconds`` until ``stop_event`` is set."""
        while not stop_event.is_set():
            self.run_once()
            stop_event.wait(interval_seconds)


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='Chemical Dispersion Engine',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    # Required arguments
    required_group = parser.add_argument_group('Required Arguments')
    required_group.add_argument('--lat', type=float, required=True,
                                help='Latitude of the spill location')
    required_group.add_argument('--lon', type=float, required=True,
                                help='Longitude of the spill location')
    required_group.add_argument('--volume', type=float, required=True,
                                help='Volume of the spill in liters')

    # Simulation parameters
    sim_group = parser.add_argument_group('Simulation Parameters')
    sim_group.add_argument('--chemical', type=str, default='crude_oil',
                           help='Chemical name (looked up in PubChem and the built-in table)')
    sim_group.add_argument('--depth', type=float, default=10.0,
                           help='Water depth at the spill in meters')
    sim_group.add_argument('--duration', type=float, default=None,
                           help='Simulation duration in hours')
    sim_group.add_argument('--mode', type=str, choices=list(DispersionEngine.MODES), default=None,
                           help='Physical model')
    sim_group.add_argument('--steps-per-hour', type=int, default=None,
                           help='Transport steps per simulated hour')
    sim_group.add_argument('--grid-size', type=int, default=None,
                           help='Number of cells per grid side')
    sim_group.add_argument('--cell-size', type=float, default=None,
                           help='Grid cell size in meters')
    sim_group.add_argument('--offline', action='store_true',
                           help='Do not contact external services')

    # Output options
    output_group = parser.add_argument_group('Output Options')
    output_group.add_argument('--output-formats', type=str, nargs='+',
                              choices=config.OUTPUT_CONFIG['available_formats'],
                              default=config.OUTPUT_CONFIG['available_formats'],
                              help='Output formats')
    output_group.add_argument('--output-dir', type=str,
                              default=config.OUTPUT_CONFIG['output_directory'],
                              help='Output directory')
    output_group.add_argument('--output-prefix', type=str,
                              help='Prefix for output filenames')

    # Configuration options
    config_group = parser.add_argument_group('Configuration Options')
    config_group.add_argument('--config-file', type=str,
                              help='Simulation parameter file (JSON, INI, CFG, or CONF format)')
    config_group.add_argument('--save-config', type=str,
                              help='Save current configuration to file')

    # Logging options
    logging_group = parser.add_argument_group('Logging Options')
    logging_group.add_argument('--verbose', action='store_true',
                               help='Enable verbose logging')
    logging_group.add_argument('--quiet', action='store_true',
                               help='Suppress all output except errors')
    logging_group.add_argument('--log-file', type=str,
                               help='Log file path')

    return parser.parse_args(argv)


def load_configuration(filename: str) -> Dict[str, Any]:
    """
    Load simulation parameter overrides from a JSON or INI file.

    INI files are read from the ``[simulation]`` section (or DEFAULT); each
    value is converted to the type of the matching default parameter.

    Raises:
        ValueError: For unknown file formats or parameter names
    """
    file_ext = os.path.splitext(filename)[1].lower()

    if file_ext == '.json':
        with open(filename, 'r') as f:
            overrides = json.load(f)
    elif file_ext in ['.ini', '.cfg', '.conf']:
        config_parser = configparser.ConfigParser()
        config_parser.read(filename)
        section = config_parser['simulation'] if config_parser.has_section('simulation') \
            else config_parser['DEFAULT']
        overrides = {}
        for key in section:
            default = config.DEFAULT_SIMULATION_PARAMS.get(key)
            if isinstance(default, bool):
                overrides[key] = section.getboolean(key)
            elif isinstance(default, int):
                overrides[key] = section.getint(key)
            elif isinstance(default, float):
                overrides[key] = section.getfloat(key)
            else:
                overrides[key] = section.get(key)
    else:
        raise ValueError(f"Unsupported configuration file format: {file_ext}")

    unknown = sorted(set(overrides) - set(config.DEFAULT_SIMULATION_PARAMS))
    if unknown:
        raise ValueError(f"Unknown simulation parameters: {', '.join(unknown)}")

    logger.info(f"Loaded {len(overrides)} simulation parameters from {filename}")
    return overrides


def save_configuration(params: Dict[str, Any], filename: str) -> None:
    """Save simulation parameters to a JSON or INI file."""
    file_ext = os.path.splitext(filename)[1].lower()

    if file_ext == '.json':
        with open(filename, 'w') as f:
            json.dump(params, f, indent=4)
    elif file_ext in ['.ini', '.cfg', '.conf']:
        config_parser = configparser.ConfigParser()
        config_parser['simulation'] = {key: str(value) for key, value in params.items()}
        with open(filename, 'w') as f:
            config_parser.write(f)
    else:
        raise ValueError(f"Unsupported configuration file format: {file_ext}")

    logger.info(f"Configuration saved to {filename}")


def build_simulation_params(args) -> Dict[str, Any]:
    """Merge config-file overrides and command-line options."""
    params = {}
    if args.config_file:
        params.update(load_configuration(args.config_file))

    cli_overrides = {
        'simulation_hours': args.duration,
        'mode': args.mode,
        'steps_per_hour': args.steps_per_hour,
        'grid_size': args.grid_size,
        'cell_size_m': args.cell_size,
    }
    params.update({key: value for key, value in cli_overrides.items() if value is not None})
    return params


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the command line interface."""
    args = parse_arguments(argv)

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    if args.quiet:
        logging.getLogger().setLevel(logging.ERROR)
    elif args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.log_file:
        file_handler = logging.FileHandler(args.log_file)
        file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        logging.getLogger().addHandler(file_handler)

    try:
        simulation_params = build_simulation_params(args)

        if args.save_config:
            save_configuration(simulation_params, args.save_config)

        spill = SpillSnapshot(
            id=str(uuid.uuid4()),
            latitude=args.lat,
            longitude=args.lon,
            volume_liters=args.volume,
            water_depth_meters=args.depth,
            chemical_type_id=args.chemical,
        )

        manager = SimulationManager(
            simulation_params=simulation_params,
            fetcher=DataFetcher(offline=args.offline),
            engine=DispersionEngine(simulation_params, cooldown=CooldownTracker(0.0))
        )
        if not args.quiet:
            manager.set_progress_callback(
                lambda progress, stage: logger.info(f"Progress: {progress:.1f}% ({stage})")
            )

        filename_base = None
        if args.output_prefix:
            filename_base = f"{args.output_prefix}_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

        results = manager.run_for_spill(
            spill,
            simulation_hours=args.duration,
            mode=args.mode,
            output_formats=args.output_formats,
            output_directory=args.output_dir,
            filename_base=filename_base
        )

        if not args.quiet:
            summary = results['result'].get_summary()
            print("\nSimulation completed successfully!")
            print(f"Execution time: {results['execution_time']:.2f} seconds")
            print(f"Max concentration: {summary['max_concentration']:.6f} mg/L")
            print(f"Affected area: {results['response']['affected_area_km2']:.3f} km^2")
            print("Output files:")
            for format_type, filepath in results['output_files'].items():
                print(f"  {format_type}: {filepath}")

        return 0

    except KeyboardInterrupt:
        logger.warning("Simulation interrupted by user")
        return 1

    except (ValueError, OSError, NotFoundError, RateLimitedError) as e:
        logger.error(f"Error: {e}")
        if args.verbose:
            logger.exception(e)
        return 1


if __name__ == '__main__':
    sys.exit(main())

#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
Test script for the main orchestration module of the Chemical Dispersion Engine.

This script tests the functionality of the main.py module, including:
- Spill repository
- Simulation execution, progress reporting and export
- Scheduled re-runs of active spills
- Configuration loading and saving
- Command-line interface
"""

import os
import json
import shutil
import tempfile
import unittest
import configparser
from datetime import datetime
from unittest.mock import MagicMock

from dispersion_core import main
from dispersion_core.cooldown import CooldownTracker
from dispersion_core.data_models import SpillSnapshot
from dispersion_core.exceptions import NotFoundError, RateLimitedError
from dispersion_core.fetch_data import DataFetcher
from dispersion_core.model import DispersionEngine


def make_spill(spill_id='spill-1', status='ACTIVE'):
    return SpillSnapshot(id=spill_id, latitude=29.0, longitude=-94.0, volume_liters=10000.0,
                         water_depth_meters=12.0, chemical_type_id='crude_oil',
                         spill_time=datetime(2024, 6, 1), status=status)


SMALL_GRID = {'grid_size': 21, 'steps_per_hour': 2}


class TestSpillRepository(unittest.TestCase):

    def test_add_and_get(self):
        repository = main.InMemorySpillRepository([make_spill()])
        self.assertEqual(repository.get('spill-1').volume_liters, 10000.0)
        self.assertEqual(len(repository), 1)

    def test_missing_spill(self):
        repository = main.InMemorySpillRepository()
        with self.assertRaises(NotFoundError) as ctx:
            repository.get('spill-9')
        self.assertIn('spill-9', str(ctx.exception))

    def test_active(self):
        repository = main.InMemorySpillRepository([
            make_spill('a'), make_spill('b', status='CONTAINED'), make_spill('c')
        ])
        self.assertEqual(sorted(spill.id for spill in repository.active()), ['a', 'c'])
        self.assertEqual(len(repository.all()), 3)


class TestSimulationManager(unittest.TestCase):
    """Test cases for the simulation manager."""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp(prefix="dispersion_test_")
        self.repository = main.InMemorySpillRepository([make_spill()])
        self.manager = main.SimulationManager(
            fetcher=DataFetcher(offline=True),
            engine=DispersionEngine(SMALL_GRID, cooldown=CooldownTracker(0.0)),
            repository=self.repository
        )

    def tearDown(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_initial_state(self):
        self.assertEqual(self.manager.simulation_state['status'], 'initialized')
        self.assertEqual(self.manager.simulation_state['progress'], 0.0)

    def test_run_simulation(self):
        outcome = self.manager.run_simulation(
            'spill-1', simulation_hours=1, output_formats=['json', 'csv'],
            output_directory=self.test_dir, filename_base='run'
        )

        self.assertEqual(set(outcome['output_files']), {'json', 'csv'})
        self.assertTrue(os.path.exists(os.path.join(self.test_dir, 'run.json')))
        self.assertEqual(outcome['result'].steps, 2)
        self.assertEqual(outcome['response']['spill_id'], 'spill-1')
        self.assertTrue(outcome['result'].used_default_conditions)
        self.assertGreaterEqual(outcome['execution_time'], 0.0)

        self.assertEqual(self.manager.simulation_state['status'], 'completed')
        self.assertEqual(self.manager.simulation_state['progress'], 100.0)

    def test_no_export(self):
        outcome = self.manager.run_simulation('spill-1', simulation_hours=1, output_formats=[],
                                              output_directory=self.test_dir)
        self.assertEqual(outcome['output_files'], {})
        self.assertEqual(os.listdir(self.test_dir), [])

    def test_progress_callback(self):
        updates = []
        self.manager.set_progress_callback(lambda progress, stage: updates.append((progress, stage)))
        self.manager.run_simulation('spill-1', simulation_hours=1, output_formats=[])

        progress_values = [progress for progress, _ in updates]
        self.assertEqual(progress_values[0], 0.0)
        self.assertEqual(updates[-1], (100.0, 'complete'))
        self.assertEqual(progress_values, sorted(progress_values))

    def test_unknown_spill(self):
        with self.assertRaises(NotFoundError):
            self.manager.run_simulation('spill-9', simulation_hours=1)

    def test_failure_marks_state(self):
        self.manager.fetcher = MagicMock()
        self.manager.fetcher.get_wind_series.side_effect = OSError('disk error')

        with self.assertRaises(OSError):
            self.manager.run_simulation('spill-1', simulation_hours=1, output_formats=[])
        self.assertEqual(self.manager.simulation_state['status'], 'failed')


class TestActiveSpillScheduler(unittest.TestCase):
    """Test cases for scheduled re-runs."""

    def setUp(self):
        self.repository = main.InMemorySpillRepository([
            make_spill('a'), make_spill('b', status='CLEANED_UP'), make_spill('c')
        ])
        self.manager = main.SimulationManager(
            fetcher=DataFetcher(offline=True),
            engine=DispersionEngine(SMALL_GRID, cooldown=CooldownTracker(60.0)),
            repository=self.repository
        )

    def test_run_once(self):
        received = []
        scheduler = main.ActiveSpillScheduler(self.repository, self.manager,
                                              subscribers=[received.append], simulation_hours=1)

        results = scheduler.run_once()
        self.assertEqual(sorted(result.spill_id for result in results), ['a', 'c'])
        self.assertEqual(len(received), 2)

        # Both spills are still cooling down
        self.assertEqual(scheduler.run_once(), [])
        self.assertEqual(len(received), 2)

    def test_failing_subscriber(self):
        def broken(result):
            raise RuntimeError('notification failed')

        received = []
        scheduler = main.ActiveSpillScheduler(self.repository, self.manager,
                                              subscribers=[broken], simulation_hours=1)
        scheduler.subscribe(received.append)

        self.assertEqual(len(scheduler.run_once()), 2)
        self.assertEqual(len(received), 2)

    def test_failed_spill_does_not_stop_pass(self):
        manager = MagicMock()
        manager.run_for_spill.side_effect = [RateLimitedError('a', 3.0), RuntimeError('boom')]
        scheduler = main.ActiveSpillScheduler(self.repository, manager, simulation_hours=1)

        self.assertEqual(scheduler.run_once(), [])
        self.assertEqual(manager.run_for_spill.call_count, 2)


class TestConfiguration(unittest.TestCase):
    """Test cases for configuration files."""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp(prefix="dispersion_config_")

    def tearDown(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_json_round_trip(self):
        filename = os.path.join(self.test_dir, 'params.json')
        params = {'grid_size': 50, 'mode': 'closed_form', 'time_varying_stability': True}

        main.save_configuration(params, filename)
        self.assertEqual(main.load_configuration(filename), params)

    def test_ini_values_are_typed(self):
        filename = os.path.join(self.test_dir, 'params.ini')
        parser = configparser.ConfigParser()
        parser['simulation'] = {
            'grid_size': '50',
            'cell_size_m': '25.5',
            'time_varying_stability': 'yes',
            'mode': 'closed_form',
        }
        with open(filename, 'w') as f:
            parser.write(f)

        self.assertEqual(main.load_configuration(filename), {
            'grid_size': 50,
            'cell_size_m': 25.5,
            'time_varying_stability': True,
            'mode': 'closed_form',
        })

    def test_save_ini(self):
        filename = os.path.join(self.test_dir, 'params.cfg')
        main.save_configuration({'steps_per_hour': 6}, filename)
        self.assertEqual(main.load_configuration(filename), {'steps_per_hour': 6})

    def test_unknown_parameter(self):
        filename = os.path.join(self.test_dir, 'params.json')
        with open(filename, 'w') as f:
            json.dump({'particle_count': 100}, f)

        with self.assertRaises(ValueError):
            main.load_configuration(filename)

    def test_unsupported_format(self):
        with self.assertRaises(ValueError):
            main.load_configuration(os.path.join(self.test_dir, 'params.yaml'))
        with self.assertRaises(ValueError):
            main.save_configuration({}, os.path.join(self.test_dir, 'params.yaml'))


class TestCommandLine(unittest.TestCase):
    """Test cases for the command-line interface."""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp(prefix="dispersion_cli_")

    def tearDown(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_parse_arguments(self):
        args = main.parse_arguments(['--lat', '29.0', '--lon', '-94.0', '--volume', '10000',
                                     '--mode', 'closed_form', '--grid-size', '40'])
        self.assertEqual(args.lat, 29.0)
        self.assertEqual(args.chemical, 'crude_oil')
        self.assertEqual(args.output_formats, ['geojson', 'json', 'csv'])

        params = main.build_simulation_params(args)
        self.assertEqual(params, {'mode': 'closed_form', 'grid_size': 40})

    def test_config_file_and_overrides(self):
        filename = os.path.join(self.test_dir, 'params.json')
        main.save_configuration({'grid_size': 30, 'steps_per_hour': 6}, filename)

        args = main.parse_arguments(['--lat', '29.0', '--lon', '-94.0', '--volume', '10000',
                                     '--config-file', filename, '--grid-size', '21'])
        self.assertEqual(main.build_simulation_params(args), {'grid_size': 21, 'steps_per_hour': 6})

    def test_main_offline_run(self):
        exit_code = main.main([
            '--lat', '29.0', '--lon', '-94.0', '--volume', '10000',
            '--offline', '--duration', '1', '--grid-size', '21',
            '--output-dir', self.test_dir, '--output-formats', 'json', '--quiet'
        ])
        self.assertEqual(exit_code, 0)

        files = os.listdir(self.test_dir)
        self.assertEqual(len(files), 1)
        self.assertTrue(files[0].endswith('.json'))

    def test_main_invalid_location(self):
        exit_code = main.main(['--lat', '95.0', '--lon', '-94.0', '--volume', '10000',
                               '--offline', '--quiet'])
        self.assertEqual(exit_code, 1)


if __name__ == '__main__':
    unittest.main()

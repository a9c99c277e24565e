#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
Test script for the Flask API server of the Chemical Dispersion Engine.

This script tests the functionality of the API server, including:
- Registering and listing spills
- Calculating dispersion for a spill
- Rate limiting of repeated calculations
- Model listing and health check
"""

import unittest
from unittest.mock import patch

from dispersion_core import server
from dispersion_core.cooldown import CooldownTracker
from dispersion_core.fetch_data import DataFetcher
from dispersion_core.main import InMemorySpillRepository


class TestAPIServer(unittest.TestCase):
    """Test cases for the Flask API server."""

    def setUp(self):
        """Set up test environment."""
        server.app.config['TESTING'] = True
        self.client = server.app.test_client()

        # Fresh shared state and no network access
        self.patches = [
            patch.object(server, 'repository', InMemorySpillRepository()),
            patch.object(server, 'cooldown', CooldownTracker(5.0)),
            patch.object(server, 'fetcher', DataFetcher(offline=True)),
        ]
        for p in self.patches:
            p.start()

        self.spill_params = {
            'latitude': 29.0,
            'longitude': -94.0,
            'volume': 10000,
            'chemical_type': 'crude_oil',
            'water_depth': 12.0,
            'name': 'Test spill'
        }

    def tearDown(self):
        """Clean up after tests."""
        for p in reversed(self.patches):
            p.stop()

    def _create_spill(self, **overrides):
        params = dict(self.spill_params, **overrides)
        response = self.client.post('/api/v1/spills', json=params)
        self.assertEqual(response.status_code, 201)
        return response.get_json()

    def test_health_check(self):
        """Test the health check endpoint."""
        self._create_spill()
        response = self.client.get('/api/v1/health')
        self.assertEqual(response.status_code, 200)

        data = response.get_json()
        self.assertEqual(data['status'], 'ok')
        self.assertEqual(data['active_spills'], 1)
        self.assertEqual(data['total_spills'], 1)
        self.assertIn('version', data)

    def test_get_models(self):
        """Test listing the available models."""
        response = self.client.get('/api/v1/models')
        self.assertEqual(response.status_code, 200)
        modes = [model['mode'] for model in response.get_json()]
        self.assertEqual(modes, ['stepped', 'closed_form'])

    def test_create_spill(self):
        """Test registering a spill."""
        spill = self._create_spill()
        self.assertEqual(spill['latitude'], 29.0)
        self.assertEqual(spill['volume_liters'], 10000.0)
        self.assertEqual(spill['chemical_type_id'], 'crude_oil')
        self.assertEqual(spill['status'], 'ACTIVE')

        response = self.client.get(f"/api/v1/spills/{spill['id']}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['name'], 'Test spill')

    def test_create_spill_missing_parameter(self):
        """Test registering a spill without a required parameter."""
        params = dict(self.spill_params)
        del params['chemical_type']

        response = self.client.post('/api/v1/spills', json=params)
        self.assertEqual(response.status_code, 400)
        self.assertIn('chemical_type', response.get_json()['message'])

    def test_create_spill_invalid_values(self):
        """Test registering a spill with non-physical values."""
        for overrides in [{'volume': 0}, {'water_depth': -1}, {'latitude': 95.0}, {'volume': 'lots'}]:
            response = self.client.post('/api/v1/spills', json=dict(self.spill_params, **overrides))
            self.assertEqual(response.status_code, 400, overrides)
            self.assertEqual(response.get_json()['error'], 'Bad request')

    def test_create_spill_without_body(self):
        response = self.client.post('/api/v1/spills', data='not json', content_type='text/plain')
        self.assertEqual(response.status_code, 400)

    def test_active_spills(self):
        """Test listing active spills."""
        self._create_spill()
        self._create_spill(status='CONTAINED')

        response = self.client.get('/api/v1/spills/active')
        self.assertEqual(response.status_code, 200)
        spills = response.get_json()
        self.assertEqual(len(spills), 1)
        self.assertEqual(spills[0]['status'], 'ACTIVE')

    def test_get_unknown_spill(self):
        response = self.client.get('/api/v1/spills/unknown')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json()['error'], 'Not found')

    def test_calculate_dispersion(self):
        """Test a dispersion calculation."""
        spill = self._create_spill()

        response = self.client.post('/api/v1/dispersion/calculate',
                                    json={'spill_id': spill['id'], 'simulation_hours': 1})
        self.assertEqual(response.status_code, 200)

        data = response.get_json()
        self.assertEqual(data['spill_id'], spill['id'])
        self.assertGreater(data['max_concentration'], 0.0)
        self.assertGreater(data['affected_area_km2'], 0.0)
        self.assertTrue(data['concentration_grid'])
        self.assertEqual(data['metadata']['mode'], 'stepped')
        self.assertEqual(data['metadata']['chemical'], 'crude_oil')
        self.assertTrue(data['metadata']['used_default_conditions'])
        self.assertFalse(data['metadata']['used_default_chemical'])

    def test_calculate_closed_form_from_query(self):
        spill = self._create_spill()
        response = self.client.post(
            f"/api/v1/dispersion/calculate?spill_id={spill['id']}&mode=closed_form&simulation_hours=1"
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['metadata']['mode'], 'closed_form')

    def test_closed_form_without_hours_uses_engine_horizon(self):
        spill = self._create_spill()
        response = self.client.post('/api/v1/dispersion/calculate',
                                    json={'spill_id': spill['id'], 'mode': 'closed_form'})
        self.assertEqual(response.status_code, 200)
        data = response.get_json()
        self.assertEqual(data['simulation_hours'], 1.0)
        self.assertEqual(data['metadata']['steps'], 0)

    def test_calculate_is_rate_limited(self):
        """Test that an immediate recalculation is rejected."""
        spill = self._create_spill()
        payload = {'spill_id': spill['id'], 'simulation_hours': 1}

        first = self.client.post('/api/v1/dispersion/calculate', json=payload)
        self.assertEqual(first.status_code, 200)

        second = self.client.post('/api/v1/dispersion/calculate', json=payload)
        self.assertEqual(second.status_code, 429)
        self.assertEqual(second.get_json()['error'], 'Too many requests')
        retry_after = int(second.headers['Retry-After'])
        self.assertGreaterEqual(retry_after, 1)
        self.assertLessEqual(retry_after, 5)

    def test_calculate_unknown_spill(self):
        response = self.client.post('/api/v1/dispersion/calculate', json={'spill_id': 'missing'})
        self.assertEqual(response.status_code, 404)

    def test_calculate_missing_spill_id(self):
        response = self.client.post('/api/v1/dispersion/calculate', json={})
        self.assertEqual(response.status_code, 400)

    def test_calculate_invalid_parameters(self):
        spill = self._create_spill()
        for payload in [{'mode': 'particles'}, {'simulation_hours': 0}, {'simulation_hours': 'long'},
                        {'simulation_hours': 'nan'}]:
            payload['spill_id'] = spill['id']
            response = self.client.post('/api/v1/dispersion/calculate', json=payload)
            self.assertEqual(response.status_code, 400, payload)

    @patch('dispersion_core.server.SimulationManager.run_simulation')
    def test_unexpected_error(self, mock_run_simulation):
        mock_run_simulation.side_effect = RuntimeError('boom')
        spill = self._create_spill()

        response = self.client.post('/api/v1/dispersion/calculate', json={'spill_id': spill['id']})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json()['error'], 'Internal server error')

    def test_unknown_route(self):
        response = self.client.get('/api/v1/unknown')
        self.assertEqual(response.status_code, 404)


if __name__ == '__main__':
    unittest.main()

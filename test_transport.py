#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
Tests for the finite-difference transport stages.

This script tests:
- Upwind advection, its Courant-limited sub-steps and the frozen border
- Diffusion and its CFL-limited sub-step
- Decay and evaporation multipliers
- A full TransportStepper step
"""

import math
import unittest
from datetime import datetime

import numpy as np

from dispersion_core.data_models import ChemicalProfile, ConcentrationGrid, EnvironmentalSample
from dispersion_core.transport import (
    GAS_CONSTANT, TransportStepper, advect, advection_substeps, advection_velocity, apply_decay,
    apply_evaporation, decay_factor, diffuse, evaporation_factor, stable_diffusion_dt, turbulent_diffusivity
)


def make_conditions(wind_speed=5.0, wind_direction=270.0, current_speed=0.0,
                    current_direction=0.0, temperature=15.0):
    return EnvironmentalSample(
        timestamp=datetime(2024, 6, 1, 12, 0),
        wind_speed=wind_speed,
        wind_direction=wind_direction,
        current_speed=current_speed,
        current_direction=current_direction,
        temperature=temperature,
    )


CRUDE = ChemicalProfile(name='crude_oil', density=870.0, diffusion_coefficient=1e-7,
                        decay_rate=1e-7, vapor_pressure=1.0)
GASOLINE = ChemicalProfile(name='gasoline', density=750.0, diffusion_coefficient=8e-6,
                           decay_rate=5e-7, vapor_pressure=55000.0)


class TestAdvection(unittest.TestCase):
    """Test cases for first-order upwind advection."""

    def setUp(self):
        self.cells = np.zeros((11, 11))
        self.cells[5, 5] = 1.0

    def test_velocity_combines_wind_drift_and_current(self):
        conditions = make_conditions(wind_speed=5.0, wind_direction=270.0,
                                     current_speed=0.3, current_direction=0.0)
        u, v = advection_velocity(conditions)
        self.assertAlmostEqual(u, 0.15)
        self.assertAlmostEqual(v, 0.3)

    def test_positive_u_moves_east(self):
        result = advect(self.cells, 1.0, 0.0, 50.0, 100.0)
        self.assertAlmostEqual(result[5, 5], 0.5)
        self.assertAlmostEqual(result[6, 5], 0.5)
        self.assertEqual(result[4, 5], 0.0)

    def test_negative_u_moves_west(self):
        result = advect(self.cells, -1.0, 0.0, 50.0, 100.0)
        self.assertAlmostEqual(result[5, 5], 0.5)
        self.assertAlmostEqual(result[4, 5], 0.5)
        self.assertEqual(result[6, 5], 0.0)

    def test_positive_v_moves_north(self):
        result = advect(self.cells, 0.0, 1.0, 50.0, 100.0)
        self.assertAlmostEqual(result[5, 6], 0.5)
        self.assertEqual(result[5, 4], 0.0)

    def test_uniform_interior_is_unchanged(self):
        cells = np.full((6, 6), 2.0)
        result = advect(cells, 0.7, -0.4, 100.0, 100.0)
        np.testing.assert_allclose(result, cells)

    def test_border_is_frozen(self):
        cells = np.random.RandomState(3).rand(8, 8)
        result = advect(cells, 2.0, 2.0, 60.0, 100.0)
        np.testing.assert_array_equal(result[0, :], cells[0, :])
        np.testing.assert_array_equal(result[-1, :], cells[-1, :])
        np.testing.assert_array_equal(result[:, 0], cells[:, 0])
        np.testing.assert_array_equal(result[:, -1], cells[:, -1])

    def test_overshoot_is_clamped(self):
        result = advect(self.cells, 5.0, 5.0, 300.0, 100.0)
        self.assertTrue(np.all(result >= 0))
        self.assertTrue(np.all(np.isfinite(result)))

    def test_substeps(self):
        self.assertEqual(advection_substeps(0.0, 0.0, 300.0, 100.0), 1)
        self.assertEqual(advection_substeps(1.0, 0.0, 100.0, 100.0), 1)
        self.assertEqual(advection_substeps(0.15, -0.5, 300.0, 100.0), 2)
        self.assertEqual(advection_substeps(-0.15, 0.8, 300.0, 100.0), 3)
        self.assertEqual(advection_substeps(0.15, -0.5, 300.0, 100.0, courant_limit=0.5), 4)
        self.assertEqual(advection_substeps(float('nan'), 0.0, 300.0, 100.0), 1)


class TestDiffusion(unittest.TestCase):
    """Test cases for the diffusion closure and stencil."""

    def test_minimum_diffusivity(self):
        self.assertEqual(turbulent_diffusivity(0.0, 0.0), 1.0)

    def test_diffusivity_closure(self):
        self.assertAlmostEqual(turbulent_diffusivity(10.0, 0.0), 100 * math.sqrt(0.13))
        self.assertAlmostEqual(turbulent_diffusivity(10.0, 1.0), 100 * math.sqrt(0.14))

    def test_stable_dt_is_unchanged_when_within_limit(self):
        self.assertEqual(stable_diffusion_dt(1.0, 300.0, 100.0), 300.0)

    def test_stable_dt_shrinks_when_limit_exceeded(self):
        diffusivity = turbulent_diffusivity(20.0, 0.0)
        self.assertAlmostEqual(diffusivity, 100 * math.sqrt(0.52))
        limited = stable_diffusion_dt(diffusivity, 300.0, 10.0)
        self.assertAlmostEqual(limited, 0.25 * 100.0 / diffusivity)
        self.assertLess(limited, 300.0)

    def test_laplacian_spreads_to_neighbours(self):
        cells = np.zeros((9, 9))
        cells[4, 4] = 1.0
        dt = stable_diffusion_dt(1.0, 1e6, 100.0)
        result = diffuse(cells, 1.0, dt, 100.0)
        self.assertAlmostEqual(result[4, 4], 0.0)
        for i, j in [(3, 4), (5, 4), (4, 3), (4, 5)]:
            self.assertAlmostEqual(result[i, j], 0.25)
        self.assertAlmostEqual(result.sum(), 1.0)


class TestDecayAndEvaporation(unittest.TestCase):

    def test_zero_decay_rate(self):
        self.assertEqual(decay_factor(0.0, 300.0), 1.0)

    def test_decay_multiplier(self):
        cells = np.full((4, 4), 2.0)
        result = apply_decay(cells, 1e-4, 300.0)
        np.testing.assert_allclose(result, 2.0 * math.exp(-0.03))

    def test_non_volatile_does_not_evaporate(self):
        self.assertEqual(evaporation_factor(CRUDE, 10.0, 20.0, 300.0), 1.0)

    def test_volatile_evaporation(self):
        mass_transfer = 0.2 * 5.0 ** 0.78 * (8e-6 / 1e-5) ** 0.67
        rate = mass_transfer * 55000.0 / (GAS_CONSTANT * (20.0 + 273.15))
        expected = math.exp(-rate * 300.0 / 1000.0)

        self.assertAlmostEqual(evaporation_factor(GASOLINE, 5.0, 20.0, 300.0), expected)

        cells = np.ones((3, 3))
        np.testing.assert_allclose(apply_evaporation(cells, GASOLINE, 5.0, 20.0, 300.0), expected)

    def test_calm_wind_uses_unit_speed(self):
        self.assertEqual(evaporation_factor(GASOLINE, 0.0, 20.0, 300.0),
                         evaporation_factor(GASOLINE, 1.0, 20.0, 300.0))


class TestTransportStepper(unittest.TestCase):
    """Test cases for a full transport step."""

    def setUp(self):
        self.stepper = TransportStepper()

    def test_step_reports_cfl_limit(self):
        grid = ConcentrationGrid(29.0, -94.0, size=21, cell_size=10.0)
        grid.cells[10, 10] = 1.0
        report = self.stepper.step(grid, make_conditions(wind_speed=20.0), CRUDE, 300.0)

        self.assertEqual(report.dt, 300.0)
        self.assertAlmostEqual(report.diffusivity, 100 * math.sqrt(0.52))
        self.assertAlmostEqual(report.diffusion_dt, 0.25 * 100.0 / report.diffusivity)
        self.assertTrue(report.cfl_limited)

    def test_step_reports_factors(self):
        grid = ConcentrationGrid(29.0, -94.0, size=21, cell_size=100.0)
        report = self.stepper.step(grid, make_conditions(), CRUDE, 300.0)

        self.assertAlmostEqual(report.decay_factor, math.exp(-1e-7 * 300.0))
        self.assertEqual(report.evaporation_factor, 1.0)
        self.assertAlmostEqual(report.velocity[0], 0.15)

    def test_step_keeps_grid_non_negative(self):
        grid = ConcentrationGrid(29.0, -94.0, size=30, cell_size=50.0)
        grid.fill(np.random.RandomState(7).rand(30, 30))
        grid.cells[3, 3] = np.nan
        conditions = make_conditions(wind_speed=30.0, wind_direction=45.0,
                                     current_speed=2.0, current_direction=200.0)

        for _ in range(5):
            self.stepper.step(grid, conditions, GASOLINE, 600.0)

        self.assertTrue(np.all(np.isfinite(grid.cells)))
        self.assertTrue(np.all(grid.cells >= 0))

    def test_fast_current_splits_advection(self):
        grid = ConcentrationGrid(29.0, -94.0, size=21, cell_size=100.0)
        report = self.stepper.step(grid, make_conditions(current_speed=0.5, current_direction=180.0),
                                   CRUDE, 300.0)

        self.assertEqual(report.advection_substeps, 2)
        self.assertAlmostEqual(report.advection_dt, 150.0)

        slow = self.stepper.step(grid, make_conditions(), CRUDE, 300.0)
        self.assertEqual(slow.advection_substeps, 1)
        self.assertEqual(slow.advection_dt, 300.0)

    def test_mass_does_not_grow_under_fast_current(self):
        grid = ConcentrationGrid(29.0, -94.0, size=81, cell_size=100.0)
        grid.cells[38:43, 38:43] = 10.0
        conditions = make_conditions(current_speed=0.8, current_direction=180.0)

        previous = grid.total_mass()
        for _ in range(12):
            self.stepper.step(grid, conditions, CRUDE, 300.0)
            mass = grid.total_mass()
            self.assertLessEqual(mass, previous * (1 + 1e-12))
            previous = mass

        self.assertGreater(grid.max_concentration(), 0.0)
        self.assertLessEqual(grid.max_concentration(), 10.0)

    def test_parameters_override_defaults(self):
        stepper = TransportStepper({'wind_drift_factor': 0.0})
        grid = ConcentrationGrid(29.0, -94.0, size=11, cell_size=100.0)
        report = stepper.step(grid, make_conditions(wind_speed=10.0), CRUDE, 300.0)
        self.assertEqual(report.velocity, (0.0, 0.0))


if __name__ == '__main__':
    unittest.main()

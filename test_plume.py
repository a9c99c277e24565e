#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
Tests for the initial concentration fields.

This script tests:
- Released mass
- Closed-form Gaussian plume, including the zero-wind guard
- Environmental correction factors
- Mass-conserving Gaussian seed
"""

import math
import unittest

import numpy as np

from dispersion_core.data_models import ChemicalProfile, ConcentrationGrid
from dispersion_core.plume import (
    closed_form_field, environmental_factor, released_mass_kg, seed_gaussian, tide_influence
)


class TestReleasedMass(unittest.TestCase):

    def test_mass_from_volume_and_density(self):
        self.assertAlmostEqual(released_mass_kg(10000.0, 870.0), 8700.0)

    def test_non_physical_volume_gives_zero(self):
        self.assertEqual(released_mass_kg(0.0, 870.0), 0.0)
        self.assertEqual(released_mass_kg(-5.0, 870.0), 0.0)
        self.assertEqual(released_mass_kg(float('nan'), 870.0), 0.0)


class TestClosedFormField(unittest.TestCase):
    """Test cases for the closed-form Gaussian plume."""

    def setUp(self):
        # Even size so that row j = 20 sits exactly on y = 0
        self.grid = ConcentrationGrid(29.0, -94.0, size=40, cell_size=100.0)

    def test_zero_wind_gives_zero_field(self):
        self.grid.cells.fill(3.0)
        closed_form_field(self.grid, 10000.0, 870.0, 0.0, 270.0, 0.16, 0.12)
        self.assertEqual(self.grid.max_concentration(), 0.0)

    def test_non_finite_wind_gives_zero_field(self):
        closed_form_field(self.grid, 10000.0, 870.0, float('nan'), 270.0, 0.16, 0.12)
        self.assertEqual(self.grid.max_concentration(), 0.0)

    def test_centerline_value(self):
        """Near the source both sigmas sit on their floors."""
        closed_form_field(self.grid, 10000.0, 870.0, 5.0, 270.0, 0.16, 0.12, horizon_seconds=0.0)

        initial = 10000.0 / 1000.0 * 870.0 / 1000.0
        expected = initial / (2 * math.pi * 5.0 * 1.0 * 0.5) * math.exp(-0.5 * (1.5 / 0.5) ** 2)

        self.assertAlmostEqual(self.grid.cells[20, 20], expected, places=12)
        self.assertAlmostEqual(self.grid.cells[5, 20], expected, places=12)
        self.assertEqual(self.grid.cells[20, 21], 0.0)
        self.assertAlmostEqual(self.grid.max_concentration(), expected, places=12)

    def test_field_is_finite_and_non_negative(self):
        closed_form_field(self.grid, 10000.0, 870.0, 8.0, 0.0, 0.20, 0.16, horizon_seconds=3600.0)
        self.assertTrue(np.all(np.isfinite(self.grid.cells)))
        self.assertTrue(np.all(self.grid.cells >= 0))
        self.assertGreater(self.grid.max_concentration(), 0.0)

    def test_drift_follows_raw_direction(self):
        """theta = radians(direction): 0 degrees drifts along +x, keeping y = 0 on the centerline."""
        closed_form_field(self.grid, 10000.0, 870.0, 5.0, 0.0, 0.16, 0.12, horizon_seconds=3600.0)
        i, j = np.unravel_index(np.argmax(self.grid.cells), self.grid.cells.shape)
        self.assertEqual(j, 20)
        self.assertGreater(i, 20)


class TestEnvironmentalFactor(unittest.TestCase):

    def setUp(self):
        self.crude = ChemicalProfile(name='crude_oil', density=870.0, diffusion_coefficient=1e-7,
                                     decay_rate=1e-7, vapor_pressure=1.0)
        self.volatile = ChemicalProfile(name='gasoline', density=750.0, diffusion_coefficient=8e-6,
                                        decay_rate=0.0, vapor_pressure=55000.0)

    def test_tide_influence(self):
        self.assertEqual(tide_influence(None), 1.0)
        self.assertAlmostEqual(tide_influence(0.0), 0.8)
        self.assertAlmostEqual(tide_influence(10.0), 1.2)
        self.assertEqual(tide_influence(100.0), 1.5)
        self.assertEqual(tide_influence(-100.0), 0.5)

    def test_neutral_conditions(self):
        factor = environmental_factor(self.crude, 20.0, 10.0, None, 0.0)
        self.assertAlmostEqual(factor, 1.0)

    def test_temperature_factor_inverted_for_volatile(self):
        warm = environmental_factor(self.crude, 30.0, 10.0, None, 0.0)
        warm_volatile = environmental_factor(self.volatile, 30.0, 10.0, None, 0.0)
        self.assertAlmostEqual(warm, 1.2)
        self.assertAlmostEqual(warm_volatile, 1.0 / 1.2)

    def test_wind_dilution_floor(self):
        calm = environmental_factor(self.crude, 20.0, 0.0, None, 0.0)
        self.assertAlmostEqual(calm, 0.1)


class TestSeedGaussian(unittest.TestCase):
    """Test cases for the mass-conserving seed."""

    def setUp(self):
        self.grid = ConcentrationGrid(29.0, -94.0, size=41, cell_size=100.0)

    def test_mass_is_conserved(self):
        seed_gaussian(self.grid, 10000.0, 870.0)
        self.assertAlmostEqual(self.grid.total_mass(), 8700.0, delta=8700.0 * 1e-9)

    def test_peak_at_source_cell(self):
        seed_gaussian(self.grid, 10000.0, 870.0)
        peak = np.unravel_index(np.argmax(self.grid.cells), self.grid.cells.shape)
        self.assertEqual(tuple(int(v) for v in peak), self.grid.source_index)

    def test_explicit_source(self):
        source = self.grid.index_to_latlon(10, 30)
        seed_gaussian(self.grid, 1000.0, 1000.0, source=source)
        peak = np.unravel_index(np.argmax(self.grid.cells), self.grid.cells.shape)
        self.assertEqual(tuple(int(v) for v in peak), (10, 30))
        self.assertAlmostEqual(self.grid.total_mass(), 1000.0, delta=1e-6)

    def test_source_outside_grid_uses_center(self):
        seed_gaussian(self.grid, 1000.0, 1000.0, source=(35.0, -94.0))
        peak = np.unravel_index(np.argmax(self.grid.cells), self.grid.cells.shape)
        self.assertEqual(tuple(int(v) for v in peak), self.grid.source_index)

    def test_zero_volume(self):
        self.grid.cells.fill(1.0)
        seed_gaussian(self.grid, 0.0, 870.0)
        self.assertEqual(self.grid.total_mass(), 0.0)


if __name__ == '__main__':
    unittest.main()

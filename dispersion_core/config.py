"""
Configuration settings for the Chemical Dispersion Engine.

This module contains default configuration parameters and settings
for the simulation, fallback environmental data, data sources, and
output formats.
"""

# Default simulation parameters
DEFAULT_SIMULATION_PARAMS = {
    'grid_size': 100,                   # cells per side (grid is N x N)
    'cell_size_m': 100.0,               # square cell edge in meters
    'steps_per_hour': 12,               # 5-minute steps
    'simulation_hours': 24,
    'mode': 'stepped',                  # 'stepped' or 'closed_form'
    'time_varying_stability': False,
    'cooldown_seconds': 5.0,
    'progress_interval': 12,            # log progress every N steps
    # Transport constants
    'wind_drift_factor': 0.03,          # surface drift as a fraction of wind speed
    'cfl_limit': 0.25,
    'advection_courant_limit': 1.0,     # upwind stability bound on (|u|+|v|) dt / dx
    'min_diffusivity': 1.0,             # m^2/s
    'diffusivity_scale': 100.0,
    'wind_stress_coefficient': 0.0013,
    'volatility_threshold_pa': 1000.0,
    'evaporation_scaling': 1000.0,
    # Plume constants
    'release_height_m': 1.5,
    'concentration_divisor': 1000.0,    # kg -> mg/L-equivalent base concentration
    'seed_sigma_cells': 2.0,
    'closed_form_horizon_hours': 1.0,
    'apply_environmental_factors': False,
    # Post-processing
    'significance_threshold': 0.001,
}

# Concentration levels (mg/L) used for plume contours
DEFAULT_CONTOUR_LEVELS = [1.0, 10.0, 100.0, 1000.0]

# Conditions substituted when an environmental series is empty
DEFAULT_CONDITIONS = {
    'wind_speed': 5.0,          # m/s
    'wind_direction': 270.0,    # blowing from due west
    'current_speed': 0.5,       # m/s
    'current_direction': 180.0, # flowing toward the south
    'temperature': 15.0,        # degrees C
    'humidity': 70.0,           # percent
    'pressure': 101325.0,       # Pa
    'tide_height': 0.0,         # m
}

# Fallback chemical used when a lookup fails (crude-oil-like, non-volatile)
DEFAULT_CHEMICAL_PROFILE = {
    'name': 'crude_oil_default',
    'density': 870.0,                   # kg/m^3
    'viscosity': 0.01,                  # Pa s
    'solubility': 0.0,                  # mg/L
    'vapor_pressure': 1.0,              # Pa
    'diffusion_coefficient': 1e-7,      # m^2/s
    'decay_rate': 1e-7,                 # 1/s
    'toxicity_level': 'MEDIUM',
}

# Physical properties for commonly reported chemicals
CHEMICAL_LIBRARY = {
    'crude_oil': {
        'density': 870.0,
        'viscosity': 0.01,
        'solubility': 0.0,
        'vapor_pressure': 1.0,
        'diffusion_coefficient': 1e-7,
        'decay_rate': 1e-7,
        'toxicity_level': 'MEDIUM',
    },
    'diesel': {
        'density': 830.0,
        'viscosity': 0.003,
        'solubility': 5.0,
        'vapor_pressure': 40.0,
        'diffusion_coefficient': 5e-6,
        'decay_rate': 2e-7,
        'toxicity_level': 'MEDIUM',
    },
    'gasoline': {
        'density': 750.0,
        'viscosity': 0.0005,
        'solubility': 100.0,
        'vapor_pressure': 55000.0,
        'diffusion_coefficient': 8e-6,
        'decay_rate': 5e-7,
        'toxicity_level': 'HIGH',
    },
    'benzene': {
        'density': 876.5,
        'viscosity': 0.000604,
        'solubility': 1790.0,
        'vapor_pressure': 12700.0,
        'diffusion_coefficient': 9.3e-6,
        'decay_rate': 1e-6,
        'toxicity_level': 'HIGH',
    },
    'toluene': {
        'density': 867.0,
        'viscosity': 0.00059,
        'solubility': 526.0,
        'vapor_pressure': 3800.0,
        'diffusion_coefficient': 8.5e-6,
        'decay_rate': 8e-7,
        'toxicity_level': 'MEDIUM',
    },
    'methanol': {
        'density': 792.0,
        'viscosity': 0.000544,
        'solubility': 1e6,
        'vapor_pressure': 13000.0,
        'diffusion_coefficient': 1.6e-5,
        'decay_rate': 2e-6,
        'toxicity_level': 'MEDIUM',
    },
    'sulfuric_acid': {
        'density': 1830.0,
        'viscosity': 0.0267,
        'solubility': 1e6,
        'vapor_pressure': 0.008,
        'diffusion_coefficient': 1.7e-9,
        'decay_rate': 0.0,
        'toxicity_level': 'HIGH',
    },
}

# Data source URLs
DATA_SOURCES = {
    'wind': {
        'open_meteo': 'https://api.open-meteo.com/v1/forecast',
    },
    'tides': {
        'noaa_coops': 'https://api.tidesandcurrents.noaa.gov/api/prod/datagetter',
    },
    'chemicals': {
        'pubchem': 'https://pubchem.ncbi.nlm.nih.gov/rest/pug',
    },
}

# Major tide stations (id, name, latitude, longitude)
TIDE_STATIONS = [
    ('8518750', 'The Battery, NY', 40.7000, -74.0142),
    ('9414290', 'San Francisco, CA', 37.8063, -122.4659),
    ('8443970', 'Boston, MA', 42.3548, -71.0502),
    ('8771450', 'Galveston Pier 21, TX', 29.3100, -94.7933),
    ('9447130', 'Seattle, WA', 47.6034, -122.3389),
    ('8545240', 'Philadelphia, PA', 39.9335, -75.1403),
    ('8658120', 'Wilmington, NC', 34.2271, -77.9536),
    ('8724580', 'Key West, FL', 24.5551, -81.8077),
    ('8465705', 'New Haven, CT', 41.2833, -72.9083),
    ('8516945', 'Kings Point, NY', 40.8100, -73.7650),
]

# Output configuration
OUTPUT_CONFIG = {
    'default_format': 'geojson',
    'available_formats': ['geojson', 'json', 'csv'],
    'output_directory': './output',
}

# Flask API configuration
FLASK_CONFIG = {
    'host': '0.0.0.0',
    'port': 5000,
    'debug': False,
    'threaded': True,
}

"""
Flask API server for the Chemical Dispersion Engine.

This module provides a REST API for the engine:
- POST /api/v1/spills -> registers a spill
- GET /api/v1/spills/active -> lists active spills
- GET /api/v1/spills/:id -> returns one spill
- POST /api/v1/dispersion/calculate -> runs a dispersion simulation for a spill
- GET /api/v1/models -> lists the available physical models
- GET /api/v1/health -> health check
"""

import math
import uuid
import logging
from datetime import datetime

from flask import Flask, request, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from dispersion_core import __version__, config
from dispersion_core.cooldown import CooldownTracker
from dispersion_core.data_models import SpillSnapshot
from dispersion_core.exceptions import NotFoundError, RateLimitedError
from dispersion_core.fetch_data import DataFetcher
from dispersion_core.main import InMemorySpillRepository, SimulationManager
from dispersion_core.model import DispersionEngine

logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__)
CORS(app)  # Enable CORS for all routes

# Shared state: one spill store and one cooldown map for every request
repository = InMemorySpillRepository()
cooldown = CooldownTracker(config.DEFAULT_SIMULATION_PARAMS['cooldown_seconds'])
fetcher = DataFetcher()

AVAILABLE_MODELS = [
    {
        'name': 'Advection-Diffusion',
        'mode': 'stepped',
        'description': 'Gaussian seed transported by wind drift and currents with diffusion, decay and evaporation'
    },
    {
        'name': 'Gaussian Plume',
        'mode': 'closed_form',
        'description': 'Standard closed-form Gaussian plume with stability-class dispersion coefficients'
    },
]


def _new_manager() -> SimulationManager:
    """Build a manager for one request; engines share the cooldown map."""
    engine = DispersionEngine(cooldown=cooldown)
    return SimulationManager(fetcher=fetcher, engine=engine, repository=repository)


def _error(message: str, status: int, error: str = None):
    return jsonify({'error': error or message, 'message': message}), status


@app.route('/api/v1/spills', methods=['POST'])
def create_spill():
    """Register a new spill."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _error('Request body must be a JSON object', 400, 'Bad request')

    required_params = ['latitude', 'longitude', 'volume', 'chemical_type', 'water_depth']
    for param in required_params:
        if data.get(param) is None:
            return _error(f'Missing required parameter: {param}', 400, 'Bad request')

    try:
        volume = float(data['volume'])
        water_depth = float(data['water_depth'])
        if not volume > 0:
            raise ValueError("Volume must be positive")
        if not water_depth > 0:
            raise ValueError("Water depth must be positive")

        spill = SpillSnapshot.from_dict({
            'id': str(uuid.uuid4()),
            'latitude': float(data['latitude']),
            'longitude': float(data['longitude']),
            'volume_liters': volume,
            'water_depth_meters': water_depth,
            'chemical_type_id': str(data['chemical_type']),
            'spill_time': data.get('spill_time'),
            'name': data.get('name'),
            'status': data.get('status', 'ACTIVE'),
        })
    except (TypeError, ValueError) as e:
        return _error(str(e), 400, 'Bad request')

    repository.add(spill)
    logger.info(f"Registered spill {spill.id} ({spill.volume_liters} L of {spill.chemical_type_id})")
    return jsonify(spill.to_dict()), 201


@app.route('/api/v1/spills/active', methods=['GET'])
def get_active_spills():
    """List active spills."""
    return jsonify([spill.to_dict() for spill in repository.active()])


@app.route('/api/v1/spills/<spill_id>', methods=['GET'])
def get_spill(spill_id):
    """Get one spill."""
    try:
        spill = repository.get(spill_id)
    except NotFoundError as e:
        return _error(e.message, 404, 'Not found')
    return jsonify(spill.to_dict())


@app.route('/api/v1/dispersion/calculate', methods=['POST'])
def calculate_dispersion():
    """Run a dispersion simulation for a registered spill."""
    data = request.get_json(silent=True) or {}
    spill_id = data.get('spill_id', request.args.get('spill_id'))
    if not spill_id:
        return _error('Missing required parameter: spill_id', 400, 'Bad request')

    # Omitted hours fall back to the engine default for the chosen mode
    simulation_hours = data.get('simulation_hours', request.args.get('simulation_hours'))
    if simulation_hours is not None:
        try:
            simulation_hours = float(simulation_hours)
        except (TypeError, ValueError):
            return _error('simulation_hours must be a number', 400, 'Bad request')
        if not (simulation_hours > 0 and math.isfinite(simulation_hours)):
            return _error('simulation_hours must be a positive number', 400, 'Bad request')

    mode = data.get('mode', request.args.get('mode'))
    if mode is not None and mode not in DispersionEngine.MODES:
        return _error(f'mode must be one of {list(DispersionEngine.MODES)}', 400, 'Bad request')

    try:
        outcome = _new_manager().run_simulation(
            spill_id,
            simulation_hours=simulation_hours,
            mode=mode,
            output_formats=[]
        )
    except NotFoundError as e:
        return _error(e.message, 404, 'Not found')
    except RateLimitedError as e:
        response, status = _error(e.message, 429, 'Too many requests')
        response.headers['Retry-After'] = str(max(1, int(math.ceil(e.retry_after))))
        return response, status

    logger.info(f"Dispersion calculated for spill {spill_id}")
    return jsonify(outcome['response'])


@app.route('/api/v1/models', methods=['GET'])
def get_models():
    """List the available physical models."""
    return jsonify(AVAILABLE_MODELS)


@app.route('/api/v1/health', methods=['GET'])
def health_check():
    """Simple health check endpoint."""
    return jsonify({
        'status': 'ok',
        'version': __version__,
        'active_spills': len(repository.active()),
        'total_spills': len(repository),
        'timestamp': datetime.now().isoformat()
    })


# Error handling
@app.errorhandler(400)
def bad_request(error):
    return jsonify({
        'error': 'Bad request',
        'message': str(error)
    }), 400


@app.errorhandler(404)
def not_found(error):
    return jsonify({
        'error': 'Not found',
        'message': 'The requested resource was not found'
    }), 404


@app.errorhandler(Exception)
def handle_exception(e):
    # Pass through HTTP errors
    if isinstance(e, HTTPException):
        return e

    logger.error(f"Unhandled exception: {e}")
    logger.exception(e)

    return jsonify({
        'error': 'Internal server error',
        'message': 'An unexpected error occurred'
    }), 500


def run_server(host=None, port=None, debug=None):
    """
    Run the Flask server.

    Args:
        host: Host to bind to (default from config)
        port: Port to bind to (default from config)
        debug: Whether to run in debug mode (default from config)
    """
    logging.basicConfig(level=logging.INFO)

    if host is None:
        host = config.FLASK_CONFIG['host']

    if port is None:
        port = config.FLASK_CONFIG['port']

    if debug is None:
        debug = config.FLASK_CONFIG['debug']

    app.run(host=host, port=port, debug=debug, threaded=config.FLASK_CONFIG.get('threaded', True))


if __name__ == '__main__':
    run_server()

"""
Chemical Dispersion Engine.

Models the spread of a chemical released into a water body as a 2-D
concentration grid driven by wind, currents and the chemical's properties.
"""

__version__ = '0.1.0'

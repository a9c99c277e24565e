"""
Exception types for the Chemical Dispersion Engine.

Only a handful of conditions ever leave a simulation run:
- NotFoundError: a referenced spill or chemical is absent
- RateLimitedError: a re-run was requested inside the cooldown window
- SimulationCancelledError: the caller cancelled a run between steps
- GridConfigurationError: grid parameters are invalid at construction time

Numeric edge cases (zero volume, zero wind, NaN) are handled in place and
never raised.
"""

from typing import Any, Optional


class DispersionError(RuntimeError):
    """Base class for errors surfaced by the dispersion engine."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class NotFoundError(DispersionError):
    """A referenced spill, chemical, or environmental series is absent."""

    def __init__(self, message: str, resource: Optional[str] = None,
                 identifier: Any = None):
        super().__init__(message, resource=resource, identifier=identifier)
        self.resource = resource
        self.identifier = identifier


class RateLimitedError(DispersionError):
    """A run was requested too soon after the previous run for the same spill."""

    def __init__(self, spill_id: Any, retry_after: float):
        super().__init__(
            f"Please wait {retry_after:.1f} seconds before recalculating "
            f"dispersion for spill {spill_id}",
            spill_id=spill_id,
            retry_after=retry_after,
        )
        self.spill_id = spill_id
        self.retry_after = retry_after


class SimulationCancelledError(DispersionError):
    """A run was cancelled cooperatively between two steps."""

    def __init__(self, spill_id: Any, completed_steps: int, total_steps: int):
        super().__init__(
            f"Simulation for spill {spill_id} cancelled after "
            f"{completed_steps}/{total_steps} steps",
            spill_id=spill_id,
        )
        self.spill_id = spill_id
        self.completed_steps = completed_steps
        self.total_steps = total_steps


class GridConfigurationError(ValueError):
    """Grid size or cell size is not usable."""

    def __init__(self, message: str, parameter_name: Optional[str] = None,
                 parameter_value: Any = None):
        super().__init__(message)
        self.message = message
        self.parameter_name = parameter_name
        self.parameter_value = parameter_value

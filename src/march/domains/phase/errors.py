"""Error taxonomy for the M.A.R.C.H. phase domain.

The aggregation and scoring core never raises on sparse or malformed samples;
these errors belong to the seams around it (input validation, the sample store,
configuration).
"""

from __future__ import annotations


class MarchError(Exception):
    """Base class for all phase-domain errors."""


class ValidationError(MarchError):
    """Raised when a client id, week, or phase argument is missing or malformed."""


class NotFoundError(MarchError):
    """Raised by strict lookups when a client has no assessment yet."""


class ComputationError(MarchError):
    """Raised if phase scoring produces an impossible result."""


class UpstreamDataError(MarchError):
    """Raised when the sample/assessment store is unavailable or unreadable."""


class ConfigError(MarchError):
    """Raised when a MarchConfig is internally inconsistent."""

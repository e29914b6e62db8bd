"""
Simulator API access: HTTP client, health monitor and train identifiers.
"""

from .client import (
    SimulatorClient,
    SimulatorConfig,
    SimulatorError,
    SimulatorHTTPError,
)

from .connection import SimulatorConnection

from .identifier import (
    common_prefix,
    derive_from_formation,
    normalize_object_class,
)

__all__ = [
    'SimulatorClient',
    'SimulatorConfig',
    'SimulatorError',
    'SimulatorHTTPError',
    'SimulatorConnection',
    'common_prefix',
    'derive_from_formation',
    'normalize_object_class',
]

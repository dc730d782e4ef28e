"""Testing utilities for terminaut.

This package provides mock implementations of the coordinator's
collaborator protocols for unit testing without a terminal engine.
"""

from terminaut.testing.mock_surfaces import (
    MockProjectCatalog,
    MockSurface,
    MockSurfaceFactory,
)

__all__ = [
    "MockSurfaceFactory",
    "MockSurface",
    "MockProjectCatalog",
]

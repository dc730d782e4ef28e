"""Collaborator contracts for the session coordinator.

This module defines protocols (interfaces) for the parts of the shell that
live outside the synchronization core: the terminal engine that hosts the
assistant process, and the project catalog.

The abstraction follows the "ports and adapters" (hexagonal) architecture
pattern: the coordinator depends only on these ports, and the shell (or the
mocks in ``terminaut.testing``) provides the adapters.
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from terminaut.models import Project


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class SurfaceConfig:
    """Configuration for creating a process-backed terminal surface."""

    working_directory: str
    """Directory the shell starts in."""

    initial_input: str
    """Text typed into the surface once it starts (ends with a newline)."""

    environment: dict[str, str] = field(default_factory=dict)
    """Environment variables to set."""

    name: str = ""
    """Display name for the surface."""


# =============================================================================
# Protocols
# =============================================================================


@runtime_checkable
class TerminalSurfaceFactory(Protocol):
    """Protocol for creating and releasing terminal surfaces.

    The factory owns surface lifetime. Sessions only keep the returned id
    and look the surface up through the factory.
    """

    @abstractmethod
    def create_surface(self, config: SurfaceConfig) -> str | None:
        """Create a surface and start its process.

        Args:
            config: Working directory, initial command and environment.

        Returns:
            An opaque surface id, or None if no surface could be created.

        Raises:
            SurfaceCreationError: Implementations may raise instead of
                returning None.
        """
        ...

    @abstractmethod
    def close_surface(self, surface_id: str) -> None:
        """Release a surface and terminate its process.

        Args:
            surface_id: The id returned by ``create_surface``.
        """
        ...


@runtime_checkable
class ProjectCatalog(Protocol):
    """Protocol for the external project catalog."""

    @abstractmethod
    def mark_opened(self, project: Project) -> None:
        """Record that a project was just opened.

        Args:
            project: The project being launched.
        """
        ...

"""Exception types raised while configuring module packaging and publication."""
from __future__ import annotations


class BundlerError(Exception):
    """Base class for failures that abort the configuration of one module."""


class ConfigurationError(BundlerError, ValueError):
    """A module or global setting is missing, empty or malformed."""


class DuplicatePublicationError(BundlerError, RuntimeError):
    """A publication id was registered twice in the same build."""

    def __init__(self, publication_id: str, *, existing: str, incoming: str) -> None:
        super().__init__(
            f"Publication '{publication_id}' is already registered by module '{existing}'; "
            f"module '{incoming}' cannot register it again"
        )
        self.publication_id = publication_id
        self.existing = existing
        self.incoming = incoming


class ArtifactNotReadyError(BundlerError, RuntimeError):
    """An artifact was referenced before its producing step completed."""


__all__ = [
    "ArtifactNotReadyError",
    "BundlerError",
    "ConfigurationError",
    "DuplicatePublicationError",
]

"""Shaded-jar packaging and Maven publication for the modules of a multi-module build."""

from .build import BuildReport, ModuleReport, ModuleStatus, PackagingEngine
from .config_loader import ConfigurationStore, ModuleDefinition
from .errors import ArtifactNotReadyError, BundlerError, ConfigurationError, DuplicatePublicationError
from .models import Artifact, Module, RelocationRule
from .publication import ArtifactRegistry, PublicationCoordinator, PublicationDescriptor, PublishingRegistry
from .repositories import RepositoryResolver
from .shade import DEFAULT_EXCLUSION_POLICY, ArchiveSpec, ExclusionPolicy, ShadeCoordinator
from .cli import main

__all__ = [
    "ArchiveSpec",
    "Artifact",
    "ArtifactNotReadyError",
    "ArtifactRegistry",
    "BuildReport",
    "BundlerError",
    "ConfigurationError",
    "ConfigurationStore",
    "DEFAULT_EXCLUSION_POLICY",
    "DuplicatePublicationError",
    "ExclusionPolicy",
    "Module",
    "ModuleDefinition",
    "ModuleReport",
    "ModuleStatus",
    "PackagingEngine",
    "PublicationCoordinator",
    "PublicationDescriptor",
    "PublishingRegistry",
    "RelocationRule",
    "RepositoryResolver",
    "ShadeCoordinator",
    "main",
]

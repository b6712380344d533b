"""Per-module packaging and publication pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List

from core.archive import ArchiveManager, iter_directory_files, jar_directory, write_jar
from core.command_runner import CommandError, CommandRunner
from core.template import TemplateResolver

from .config_loader import ConfigurationStore, ModuleDefinition
from .console import Console
from .errors import ArtifactNotReadyError, BundlerError, ConfigurationError
from .models import Artifact
from .publication import (
    ArtifactRegistry,
    MavenRepository,
    PomDependency,
    PublicationCoordinator,
    PublicationDescriptor,
    PublishingRegistry,
    create_remote_repository,
    publication_id_for,
)
from .repositories import DependencyResolver, RepositoryResolver
from .shade import DEFAULT_EXCLUSION_POLICY, ExclusionPolicy, ShadeCoordinator


class ModuleStatus(str, Enum):
    PACKAGED = "packaged"
    PUBLISHED = "published"
    PLANNED = "planned"
    FAILED = "failed"


@dataclass(slots=True)
class ModuleReport:
    name: str
    status: ModuleStatus
    archive_name: str | None = None
    artifacts: List[Artifact] = field(default_factory=list)
    publication_id: str | None = None
    error: str | None = None


@dataclass(slots=True)
class BuildReport:
    modules: List[ModuleReport] = field(default_factory=list)
    bundle: Path | None = None

    @property
    def failed(self) -> List[ModuleReport]:
        return [report for report in self.modules if report.status is ModuleStatus.FAILED]

    @property
    def ok(self) -> bool:
        return not self.failed

    def get(self, name: str) -> ModuleReport | None:
        for report in self.modules:
            if report.name == name:
                return report
        return None


def exclusion_policy_for(store: ConfigurationStore) -> ExclusionPolicy:
    base = DEFAULT_EXCLUSION_POLICY if store.shade_policy.use_default_exclusions else ExclusionPolicy()
    return base.extend(store.shade_policy.exclusions)


class PackagingEngine:
    """Runs repositories -> shading -> publication for each module of a store.

    A module whose configuration fails is reported and skipped; its siblings
    still run, except modules that depend on it.
    """

    def __init__(
        self,
        *,
        store: ConfigurationStore,
        console: Console,
        command_runner: CommandRunner,
        registry: ArtifactRegistry | None = None,
        publishing: PublishingRegistry | None = None,
        local_repository: MavenRepository | None = None,
        include_remote: bool = True,
    ) -> None:
        self._store = store
        self._console = console
        self._command_runner = command_runner
        self.registry = registry or ArtifactRegistry()
        self.publishing = publishing or PublishingRegistry()
        self.repositories = RepositoryResolver(store.global_config.repositories)
        self.dependencies = DependencyResolver(self.repositories, console)
        self.shader = ShadeCoordinator(exclusion_policy_for(store), console)

        self._archive_manager = ArchiveManager(console)
        self._local_repository = local_repository
        self._include_remote = include_remote
        self._coordinator: PublicationCoordinator | None = None

    @property
    def dry_run(self) -> bool:
        return self._console.dry_run

    @property
    def coordinator(self) -> PublicationCoordinator:
        if self._coordinator is None:
            settings = self._store.publication
            local = self._local_repository or MavenRepository(
                "maven-local", Path(settings.local_repository).expanduser()
            )
            remote = None
            if self._include_remote and settings.remote is not None:
                remote = create_remote_repository(
                    settings.remote,
                    workspace=self._store.root,
                    archive_manager=self._archive_manager,
                )
            self._coordinator = PublicationCoordinator(
                registry=self.registry,
                publishing=self.publishing,
                settings=settings,
                local_repository=local,
                remote_repository=remote,
                repositories=self.repositories.resolve_repositories(),
                console=self._console,
            )
        return self._coordinator

    def output_dir(self, definition: ModuleDefinition) -> Path:
        output = Path(self._store.global_config.output_dir).expanduser()
        return output if output.is_absolute() else definition.path / output

    def run(self, names: Iterable[str] | None = None, *, publish: bool = False) -> BuildReport:
        report = BuildReport()
        failed: set[str] = set()

        selected = list(names) if names is not None else None
        for stem, error in sorted(self._store.invalid_modules.items()):
            if selected is None or stem in selected:
                self._console.error(f"Module '{stem}': {error}")
                report.modules.append(ModuleReport(name=stem, status=ModuleStatus.FAILED, error=str(error)))
                failed.add(stem)

        valid_names = None if selected is None else [name for name in selected if name not in failed]
        for name in self._store.build_order(valid_names):
            module_report = self._run_module(name, failed=failed, publish=publish)
            report.modules.append(module_report)
            if module_report.status is ModuleStatus.FAILED:
                failed.add(name)

        if publish and not self.dry_run and self._coordinator is not None:
            remote = self._coordinator.remote_repository
            if remote is not None:
                report.bundle = remote.finalize(self._console)
        return report

    def _run_module(self, name: str, *, failed: set[str], publish: bool) -> ModuleReport:
        try:
            definition = self._store.get_module(name)
            blocked = [dep.name for dep in definition.dependencies if dep.name in failed]
            if blocked:
                raise ArtifactNotReadyError(f"Module '{name}' depends on failed module(s): {', '.join(blocked)}")
            for dependency in definition.dependencies:
                if dependency.name not in self._store.modules:
                    raise ConfigurationError(
                        f"Dependency '{dependency.name}' referenced by module '{name}' was not found"
                    )

            archive_name = self.shader.compute_archive_name(definition.module)
            if self.dry_run:
                self._plan_module(definition, archive_name, publish=publish)
                return ModuleReport(name=name, status=ModuleStatus.PLANNED, archive_name=archive_name)

            artifacts = self.package(definition)
            module_report = ModuleReport(
                name=name,
                status=ModuleStatus.PACKAGED,
                archive_name=archive_name,
                artifacts=artifacts,
            )
            if publish:
                descriptor = self.publish(definition, artifacts)
                self.coordinator.deploy(descriptor)
                module_report.status = ModuleStatus.PUBLISHED
                module_report.publication_id = descriptor.publication_id
            return module_report
        except (BundlerError, CommandError, KeyError, OSError) as exc:
            message = exc.args[0] if isinstance(exc, KeyError) and exc.args else str(exc)
            self._console.error(f"Module '{name}': {message}")
            return ModuleReport(name=name, status=ModuleStatus.FAILED, error=str(message))

    def package(self, definition: ModuleDefinition) -> List[Artifact]:
        """Produce the shaded jar plus the sources and javadoc jars that can be built."""

        module = definition.module
        output_dir = self.output_dir(definition)
        embedded = self._embedded_jars(definition)
        artifacts = [
            self.registry.ensure_artifact(
                module,
                "",
                lambda: self._shade(definition, embedded, output_dir),
                step_name=f"{module.name}_shadowJar",
            )
        ]

        if any(directory.is_dir() for directory in definition.source_dirs):
            artifacts.append(
                self.registry.ensure_artifact(
                    module,
                    "sources",
                    lambda: self._sources_jar(definition, output_dir),
                    step_name=f"{module.name}_sourcesJar",
                )
            )
        else:
            self._console.debug(f"No source directories for {module.name}; skipping sources jar")

        if definition.docs_command or definition.docs_dir.is_dir():
            artifacts.append(
                self.registry.ensure_artifact(
                    module,
                    "javadoc",
                    lambda: self._javadoc_jar(definition, output_dir),
                    step_name=f"{module.name}_javadocJar",
                )
            )
        else:
            self._console.debug(f"No documentation for {module.name}; skipping javadoc jar")
        return artifacts

    def publish(self, definition: ModuleDefinition, artifacts: List[Artifact]) -> PublicationDescriptor:
        def customize(descriptor: PublicationDescriptor) -> None:
            if definition.publication_version:
                descriptor.version = definition.publication_version
            if definition.publication_description:
                descriptor.description = definition.publication_description

        dependencies: List[PomDependency] = []
        for dependency in definition.dependencies:
            if dependency.embed:
                continue
            sibling = self._store.get_module(dependency.name)
            published = self.publishing.get(publication_id_for(sibling.module))
            if published is not None:
                dependencies.append(PomDependency(published.group_id, published.artifact_id, published.version))
                continue
            version = sibling.publication_version or sibling.module.version
            dependencies.append(PomDependency(sibling.module.group, sibling.name, version))

        return self.coordinator.publish(definition.module, artifacts, customize, dependencies=dependencies)

    def _embedded_jars(self, definition: ModuleDefinition) -> List[Path]:
        jars = self.dependencies.resolve_all(definition.shade.embed, base_dir=definition.path)
        for dependency in definition.dependencies:
            if not dependency.embed:
                continue
            artifact = self.registry.get(dependency.name, "")
            if artifact is None or not artifact.ready:
                raise ArtifactNotReadyError(
                    f"Module '{definition.name}' embeds '{dependency.name}', which has no packaged jar yet"
                )
            jars.append(artifact.path)
        return jars

    def _shade(self, definition: ModuleDefinition, embedded: List[Path], output_dir: Path) -> Path:
        resolver = TemplateResolver(
            {
                "workspace": str(self._store.root),
                "module": {
                    "name": definition.module.name,
                    "group": definition.module.group,
                    "version": definition.module.version,
                    "description": definition.module.description,
                    "main_class": definition.main_class or "",
                },
            }
        )
        result = self.shader.shade(
            definition,
            embedded=embedded,
            output_dir=output_dir,
            resolver=resolver,
        )
        return result.path

    def _sources_jar(self, definition: ModuleDefinition, output_dir: Path) -> Path:
        target = output_dir / f"{definition.module.name}-{definition.module.version}-sources.jar"
        entries: Dict[str, bytes] = {}
        for directory in definition.source_dirs:
            if not directory.is_dir():
                continue
            for name, path in iter_directory_files(directory):
                entries.setdefault(name, path.read_bytes())
        write_jar(target, sorted(entries.items()))
        self._console.info(f"Packaged sources of {definition.name} into {target.name}")
        return target

    def _javadoc_jar(self, definition: ModuleDefinition, output_dir: Path) -> Path:
        if definition.docs_command:
            self._command_runner.run(
                definition.docs_command,
                cwd=definition.path,
                note=f"Generate documentation for {definition.name}",
            )
        if not definition.docs_dir.is_dir():
            raise ArtifactNotReadyError(
                f"Documentation for module '{definition.name}' not found at {definition.docs_dir}"
            )
        target = output_dir / f"{definition.module.name}-{definition.module.version}-javadoc.jar"
        jar_directory(definition.docs_dir, target)
        self._console.info(f"Packaged documentation of {definition.name} into {target.name}")
        return target

    def _plan_module(self, definition: ModuleDefinition, archive_name: str, *, publish: bool) -> None:
        module = definition.module
        output_dir = self.output_dir(definition)
        rules = self.shader.relocation_rules(definition)
        self._console.dry(f"Would shade {module.name} into {output_dir / archive_name}")
        for rule in rules:
            self._console.dry(f"  relocate {rule.source_prefix} -> {rule.destination_prefix}")
        for entry in definition.shade.embed:
            self._console.dry(f"  embed {entry}")
        for dependency in definition.dependencies:
            if dependency.embed:
                self._console.dry(f"  embed module {dependency.name}")
        if definition.docs_command:
            self._command_runner.run(
                definition.docs_command,
                cwd=definition.path,
                note=f"Generate documentation for {definition.name}",
            )
        if publish:
            version = definition.publication_version or module.version
            self._console.dry(f"Would publish {module.group}:{module.name}:{version} as {module.name}_mavenJava")


__all__ = [
    "BuildReport",
    "ModuleReport",
    "ModuleStatus",
    "PackagingEngine",
    "exclusion_policy_for",
]

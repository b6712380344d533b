"""Auxiliary artifacts, publication descriptors and Maven-layout repository installation."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Sequence
import hashlib
import shutil
import tempfile
import threading
import xml.etree.ElementTree as ET

from core.archive import ArchiveManager
from core.template import TemplateError, TemplateResolver

from .config_loader import PublicationSettings, RemoteRepositorySettings
from .console import Console
from .errors import ArtifactNotReadyError, ConfigurationError, DuplicatePublicationError
from .models import Artifact, Developer, Module, ScmInfo

SourceStep = Callable[[], Path]
Customizer = Callable[["PublicationDescriptor"], None]

_POM_NAMESPACE = "http://maven.apache.org/POM/4.0.0"
_POM_SCHEMA = "http://maven.apache.org/xsd/maven-4.0.0.xsd"


def publication_id_for(module: Module) -> str:
    return f"{module.name}_mavenJava"


class ArtifactRegistry:
    """Artifacts produced during one build, keyed by ``(module name, classifier)``.

    Owned by the build context and passed to whoever needs it. Each key has
    its own guard, so a producing step may read other artifacts while it
    runs and concurrent callers for the same key still run it once.
    """

    def __init__(self) -> None:
        self._artifacts: Dict[tuple[str, str], Artifact] = {}
        self._guards: Dict[tuple[str, str], threading.Lock] = {}
        self._lock = threading.Lock()

    def ensure_artifact(
        self,
        module: Module,
        classifier: str,
        source_step: SourceStep,
        *,
        step_name: str | None = None,
        extension: str = "jar",
    ) -> Artifact:
        """Return the artifact for ``(module, classifier)``, running *source_step* only if it is absent."""
        key = (module.name, classifier)
        with self._lock:
            existing = self._artifacts.get(key)
            if existing is not None:
                return existing
            guard = self._guards.setdefault(key, threading.Lock())

        with guard:
            with self._lock:
                existing = self._artifacts.get(key)
            if existing is not None:
                return existing
            produced = source_step()
            if produced is None:
                label = classifier or "primary"
                raise ArtifactNotReadyError(f"Step for the {label} artifact of '{module.name}' produced no file")
            artifact = Artifact(
                module_name=module.name,
                classifier=classifier,
                producing_step=step_name or _default_step_name(module, classifier),
                path=Path(produced),
                extension=extension,
            )
            with self._lock:
                self._artifacts[key] = artifact
            return artifact

    def get(self, module_name: str, classifier: str) -> Artifact | None:
        with self._lock:
            return self._artifacts.get((module_name, classifier))

    def __contains__(self, artifact: object) -> bool:
        if not isinstance(artifact, Artifact):
            return False
        return self.get(*artifact.key) == artifact


def _default_step_name(module: Module, classifier: str) -> str:
    if not classifier:
        return f"{module.name}_shadowJar"
    return f"{module.name}_{classifier}Jar"


@dataclass(frozen=True, slots=True)
class PomDependency:
    group_id: str
    artifact_id: str
    version: str
    scope: str = "compile"


@dataclass(slots=True)
class PublicationDescriptor:
    """Coordinates, files and POM metadata submitted for one module.

    Mutable until registered so a customization callback can adjust it.
    """

    publication_id: str
    group_id: str
    artifact_id: str
    version: str
    artifacts: List[Artifact]
    name: str
    description: str = ""
    url: str = ""
    developers: List[Developer] = field(default_factory=list)
    scm: ScmInfo = field(default_factory=ScmInfo)
    dependencies: List[PomDependency] = field(default_factory=list)
    repositories: List[str] = field(default_factory=list)
    targets: List["MavenRepository"] = field(default_factory=list)

    @property
    def primary(self) -> Artifact | None:
        for artifact in self.artifacts:
            if artifact.is_primary:
                return artifact
        return None

    def file_name(self, artifact: Artifact) -> str:
        suffix = f"-{artifact.classifier}" if artifact.classifier else ""
        return f"{self.artifact_id}-{self.version}{suffix}.{artifact.extension}"

    @property
    def pom_name(self) -> str:
        return f"{self.artifact_id}-{self.version}.pom"

    def to_pom(self) -> bytes:
        project = ET.Element(
            "project",
            {
                "xmlns": _POM_NAMESPACE,
                "xmlns:xsi": "http://www.w3.org/2001/XMLSchema-instance",
                "xsi:schemaLocation": f"{_POM_NAMESPACE} {_POM_SCHEMA}",
            },
        )
        _text(project, "modelVersion", "4.0.0")
        _text(project, "groupId", self.group_id)
        _text(project, "artifactId", self.artifact_id)
        _text(project, "version", self.version)
        _text(project, "packaging", "jar")
        _text(project, "name", self.name)
        if self.description:
            _text(project, "description", self.description)
        if self.url:
            _text(project, "url", self.url)

        if self.developers:
            developers = ET.SubElement(project, "developers")
            for developer in self.developers:
                node = ET.SubElement(developers, "developer")
                _text(node, "id", developer.id)
                _text(node, "name", developer.name)
                if developer.email:
                    _text(node, "email", developer.email)

        if self.scm.connection or self.scm.developer_connection or self.scm.url:
            scm = ET.SubElement(project, "scm")
            if self.scm.connection:
                _text(scm, "connection", self.scm.connection)
            if self.scm.developer_connection:
                _text(scm, "developerConnection", self.scm.developer_connection)
            if self.scm.url:
                _text(scm, "url", self.scm.url)

        if self.dependencies:
            dependencies = ET.SubElement(project, "dependencies")
            for dependency in self.dependencies:
                node = ET.SubElement(dependencies, "dependency")
                _text(node, "groupId", dependency.group_id)
                _text(node, "artifactId", dependency.artifact_id)
                _text(node, "version", dependency.version)
                _text(node, "scope", dependency.scope)

        remote = [uri for uri in self.repositories if not uri.startswith("file:")]
        if remote:
            repositories = ET.SubElement(project, "repositories")
            for index, uri in enumerate(remote):
                node = ET.SubElement(repositories, "repository")
                _text(node, "id", f"repository-{index}")
                _text(node, "url", uri)

        return _serialize(project)


def _text(parent: ET.Element, tag: str, value: str) -> ET.Element:
    node = ET.SubElement(parent, tag)
    node.text = value
    return node


def _serialize(root: ET.Element) -> bytes:
    ET.indent(root, space="  ")
    return ET.tostring(root, encoding="utf-8", xml_declaration=True) + b"\n"


class PublishingRegistry:
    """Registered publications keyed by publication id; ids are unique per build."""

    def __init__(self) -> None:
        self._publications: Dict[str, tuple[str, PublicationDescriptor]] = {}
        self._lock = threading.Lock()

    def register(self, descriptor: PublicationDescriptor, *, module_name: str) -> None:
        with self._lock:
            existing = self._publications.get(descriptor.publication_id)
            if existing is not None:
                raise DuplicatePublicationError(
                    descriptor.publication_id, existing=existing[0], incoming=module_name
                )
            self._publications[descriptor.publication_id] = (module_name, descriptor)

    def get(self, publication_id: str) -> PublicationDescriptor | None:
        with self._lock:
            entry = self._publications.get(publication_id)
        return entry[1] if entry else None

    def publications(self) -> List[PublicationDescriptor]:
        with self._lock:
            return [descriptor for _, descriptor in self._publications.values()]


class MavenRepository:
    """A filesystem-backed repository using the Maven directory layout."""

    def __init__(
        self,
        name: str,
        root: Path,
        *,
        checksums: bool = False,
        metadata_name: str = "maven-metadata-local.xml",
    ) -> None:
        self.name = name
        self.root = Path(root).expanduser()
        self.checksums = checksums
        self.metadata_name = metadata_name

    def version_dir(self, descriptor: PublicationDescriptor) -> Path:
        return self.root.joinpath(*descriptor.group_id.split("."), descriptor.artifact_id, descriptor.version)

    def install(self, descriptor: PublicationDescriptor, console: Console | None = None) -> List[Path]:
        version_dir = self.version_dir(descriptor)
        version_dir.mkdir(parents=True, exist_ok=True)
        written: List[Path] = []

        pom_path = version_dir / descriptor.pom_name
        pom_path.write_bytes(descriptor.to_pom())
        written.append(pom_path)

        for artifact in descriptor.artifacts:
            if not artifact.ready:
                raise ArtifactNotReadyError(f"Artifact file '{artifact.path}' disappeared before installation")
            destination = version_dir / descriptor.file_name(artifact)
            shutil.copyfile(artifact.path, destination)
            written.append(destination)

        if self.checksums:
            for path in list(written):
                written.extend(_write_checksums(path))

        metadata_path = self._update_metadata(descriptor, version_dir.parent)
        written.append(metadata_path)
        if self.checksums:
            written.extend(_write_checksums(metadata_path))

        if console:
            console.info(
                f"Installed {descriptor.group_id}:{descriptor.artifact_id}:{descriptor.version} into {self.name} ({self.root})"
            )
        return written

    def finalize(self, console: Console | None = None) -> Path | None:
        return None

    def _update_metadata(self, descriptor: PublicationDescriptor, artifact_dir: Path) -> Path:
        metadata_path = artifact_dir / self.metadata_name
        versions: List[str] = []
        if metadata_path.exists():
            try:
                existing = ET.parse(metadata_path).getroot()
                versions = [node.text for node in existing.iter("version") if node.text]
            except ET.ParseError:
                versions = []
        if descriptor.version not in versions:
            versions.append(descriptor.version)

        metadata = ET.Element("metadata")
        _text(metadata, "groupId", descriptor.group_id)
        _text(metadata, "artifactId", descriptor.artifact_id)
        versioning = ET.SubElement(metadata, "versioning")
        _text(versioning, "latest", descriptor.version)
        if not descriptor.version.endswith("-SNAPSHOT"):
            _text(versioning, "release", descriptor.version)
        versions_node = ET.SubElement(versioning, "versions")
        for version in versions:
            _text(versions_node, "version", version)
        _text(versioning, "lastUpdated", datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S"))
        metadata_path.write_bytes(_serialize(metadata))
        return metadata_path


class BundleRepository(MavenRepository):
    """Stages a Maven layout in a temporary directory and archives it on :meth:`finalize`."""

    def __init__(self, name: str, bundle_path: Path, *, archive_manager: ArchiveManager) -> None:
        self._staging = tempfile.TemporaryDirectory(prefix="bundler-staging-")
        super().__init__(name, Path(self._staging.name), checksums=True, metadata_name="maven-metadata.xml")
        self.bundle_path = Path(bundle_path).expanduser()
        self._archive_manager = archive_manager
        self._installed = 0

    def install(self, descriptor: PublicationDescriptor, console: Console | None = None) -> List[Path]:
        written = super().install(descriptor, console)
        self._installed += 1
        return written

    def finalize(self, console: Console | None = None) -> Path | None:
        try:
            if not self._installed:
                return None
            path = self._archive_manager.create_archive(source_dir=self.root, target_path=self.bundle_path)
            if console:
                console.info(f"Wrote publication bundle {path}")
            return path
        finally:
            self._staging.cleanup()


def _write_checksums(path: Path) -> List[Path]:
    payload = path.read_bytes()
    written: List[Path] = []
    for algorithm in ("sha1", "md5"):
        checksum_path = path.with_name(f"{path.name}.{algorithm}")
        checksum_path.write_text(hashlib.new(algorithm, payload).hexdigest(), encoding="ascii")
        written.append(checksum_path)
    return written


def create_remote_repository(
    settings: RemoteRepositorySettings,
    *,
    workspace: Path,
    archive_manager: ArchiveManager,
) -> MavenRepository:
    path = Path(settings.path).expanduser()
    if not path.is_absolute():
        path = workspace / path
    if settings.kind == "bundle":
        return BundleRepository(settings.name, path, archive_manager=archive_manager)
    return MavenRepository(settings.name, path, checksums=True, metadata_name="maven-metadata.xml")


class PublicationCoordinator:
    """Ensures auxiliary artifacts exist and registers one publication per module."""

    def __init__(
        self,
        *,
        registry: ArtifactRegistry,
        publishing: PublishingRegistry,
        settings: PublicationSettings,
        local_repository: MavenRepository,
        remote_repository: MavenRepository | None = None,
        repositories: Sequence[str] = (),
        console: Console | None = None,
    ) -> None:
        self.registry = registry
        self.publishing = publishing
        self.settings = settings
        self.local_repository = local_repository
        self.remote_repository = remote_repository
        self.repositories = list(repositories)
        self._console = console

    def ensure_artifact(self, module: Module, classifier: str, source_step: SourceStep) -> Artifact:
        return self.registry.ensure_artifact(module, classifier, source_step)

    def publish(
        self,
        module: Module,
        artifacts: Iterable[Artifact],
        customize: Customizer | None = None,
        *,
        dependencies: Sequence[PomDependency] = (),
    ) -> PublicationDescriptor:
        module.require("name", "group", "version")
        descriptor = PublicationDescriptor(
            publication_id=publication_id_for(module),
            group_id=module.group,
            artifact_id=module.name,
            version=module.version,
            artifacts=list(artifacts),
            name=module.name,
            description=self._describe(module),
            url=self.settings.url,
            developers=list(self.settings.developers),
            scm=self.settings.scm,
            dependencies=list(dependencies),
            repositories=list(self.repositories),
        )
        if customize is not None:
            customize(descriptor)
        self._validate(module, descriptor)

        descriptor.targets = [self.local_repository]
        if self.remote_repository is not None:
            descriptor.targets.append(self.remote_repository)
        self.publishing.register(descriptor, module_name=module.name)
        if self._console:
            targets = ", ".join(target.name for target in descriptor.targets)
            self._console.debug(f"Registered publication {descriptor.publication_id} -> {targets}")
        return descriptor

    def deploy(self, descriptor: PublicationDescriptor) -> Dict[str, List[Path]]:
        return {target.name: target.install(descriptor, self._console) for target in descriptor.targets}

    def _describe(self, module: Module) -> str:
        if module.description:
            return module.description
        try:
            return TemplateResolver({"module": _module_context(module)}).resolve_text(
                self.settings.description_template
            )
        except TemplateError as exc:
            raise ConfigurationError(f"publication.description_template: {exc}") from exc

    def _validate(self, module: Module, descriptor: PublicationDescriptor) -> None:
        if descriptor.artifact_id != module.name:
            raise ConfigurationError(
                f"Publication artifactId '{descriptor.artifact_id}' must equal module name '{module.name}'"
            )
        for field_name in ("group_id", "version", "publication_id"):
            if not str(getattr(descriptor, field_name) or "").strip():
                raise ConfigurationError(f"Publication for '{module.name}' has an empty {field_name}")
        if descriptor.primary is None:
            raise ArtifactNotReadyError(f"Publication for '{module.name}' lists no primary artifact")
        for artifact in descriptor.artifacts:
            label = artifact.classifier or "primary"
            if artifact.module_name != module.name:
                raise ConfigurationError(
                    f"Publication for '{module.name}' lists the {label} artifact of '{artifact.module_name}'"
                )
            if artifact not in self.registry:
                raise ArtifactNotReadyError(
                    f"The {label} artifact of '{module.name}' was never produced by its step"
                )
            if not artifact.ready:
                raise ArtifactNotReadyError(f"The {label} artifact of '{module.name}' is missing at {artifact.path}")


def _module_context(module: Module) -> Mapping[str, str]:
    return {
        "name": module.name,
        "group": module.group,
        "version": module.version,
        "description": module.description,
    }


__all__ = [
    "ArtifactRegistry",
    "BundleRepository",
    "MavenRepository",
    "PomDependency",
    "PublicationCoordinator",
    "PublicationDescriptor",
    "PublishingRegistry",
    "create_remote_repository",
    "publication_id_for",
]

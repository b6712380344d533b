from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
import hashlib
import tempfile
import threading
import unittest
import xml.etree.ElementTree as ET
import zipfile

from bundler.config_loader import PublicationSettings, RemoteRepositorySettings
from bundler.console import Console
from bundler.errors import ArtifactNotReadyError, ConfigurationError, DuplicatePublicationError
from bundler.models import Developer, Module, ScmInfo
from bundler.publication import (
    ArtifactRegistry,
    BundleRepository,
    MavenRepository,
    PomDependency,
    PublicationCoordinator,
    PublishingRegistry,
    create_remote_repository,
)
from core.archive import ArchiveManager

POM = "{http://maven.apache.org/POM/4.0.0}"


class ArtifactRegistryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.module = Module(name="widgets", group="org.example", version="2.3.0")

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _step(self, calls: list, name: str = "widgets-2.3.0-sources.jar"):
        def step() -> Path:
            calls.append(name)
            path = self.root / name
            path.write_bytes(b"jar")
            return path

        return step

    def test_ensure_artifact_runs_step_once(self) -> None:
        registry = ArtifactRegistry()
        calls: list = []
        first = registry.ensure_artifact(self.module, "sources", self._step(calls))
        second = registry.ensure_artifact(self.module, "sources", self._step(calls))
        self.assertIs(first, second)
        self.assertEqual(len(calls), 1)
        self.assertEqual(first.producing_step, "widgets_sourcesJar")
        self.assertIn(first, registry)

    def test_concurrent_callers_share_one_artifact(self) -> None:
        registry = ArtifactRegistry()
        calls: list = []
        barrier = threading.Barrier(8)

        def request(_):
            barrier.wait()
            return registry.ensure_artifact(self.module, "javadoc", self._step(calls, "widgets-2.3.0-javadoc.jar"))

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(request, range(8)))
        self.assertEqual(len(calls), 1)
        self.assertTrue(all(result is results[0] for result in results))

    def test_step_may_read_other_artifacts(self) -> None:
        registry = ArtifactRegistry()
        nbt = Module(name="nbt", group="org.example", version="1.0.0")
        dependency = registry.ensure_artifact(nbt, "", self._step([], "nbt-1.0.0.jar"))
        seen: list = []

        def shade_step() -> Path:
            seen.append(registry.get("nbt", ""))
            return self._step([], "widgets-2.3.0.jar")()

        results: list = []
        worker = threading.Thread(
            target=lambda: results.append(registry.ensure_artifact(self.module, "", shade_step)),
            daemon=True,
        )
        worker.start()
        worker.join(10)
        self.assertFalse(worker.is_alive())
        self.assertEqual(seen, [dependency])
        self.assertIs(registry.get("widgets", ""), results[0])

    def test_primary_step_name(self) -> None:
        registry = ArtifactRegistry()
        artifact = registry.ensure_artifact(self.module, "", self._step([], "widgets-2.3.0.jar"))
        self.assertTrue(artifact.is_primary)
        self.assertEqual(artifact.producing_step, "widgets_shadowJar")

    def test_step_without_output_is_not_ready(self) -> None:
        registry = ArtifactRegistry()
        with self.assertRaises(ArtifactNotReadyError):
            registry.ensure_artifact(self.module, "sources", lambda: None)
        self.assertIsNone(registry.get("widgets", "sources"))


class PublicationCoordinatorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.settings = PublicationSettings(
            url="https://example.org/widgets",
            developers=[Developer(id="dev", name="Dev Eloper", email="dev@example.org")],
            scm=ScmInfo(
                connection="scm:git:git://example.org/widgets.git",
                developer_connection="scm:git:ssh://example.org/widgets.git",
                url="https://example.org/widgets",
            ),
        )
        self.registry = ArtifactRegistry()
        self.local = MavenRepository("local", self.root / "m2")
        self.remote = MavenRepository("staging", self.root / "remote", checksums=True, metadata_name="maven-metadata.xml")
        self.coordinator = PublicationCoordinator(
            registry=self.registry,
            publishing=PublishingRegistry(),
            settings=self.settings,
            local_repository=self.local,
            remote_repository=self.remote,
            repositories=["https://repo.maven.apache.org/maven2/", (self.root / "repo").as_uri() + "/"],
            console=Console(level="none"),
        )
        self.widgets = Module(name="widgets", group="org.example", version="2.3.0")

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _artifacts(self, module: Module):
        artifacts = []
        for classifier in ("", "sources", "javadoc"):
            suffix = f"-{classifier}" if classifier else ""
            path = self.root / "build" / f"{module.name}-{module.version}{suffix}.jar"
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(f"{module.name}{suffix}".encode())
            artifacts.append(self.coordinator.ensure_artifact(module, classifier, lambda path=path: path))
        return artifacts

    def test_publish_builds_descriptor(self) -> None:
        descriptor = self.coordinator.publish(self.widgets, self._artifacts(self.widgets))
        self.assertEqual(descriptor.publication_id, "widgets_mavenJava")
        self.assertEqual(
            (descriptor.group_id, descriptor.artifact_id, descriptor.version),
            ("org.example", "widgets", "2.3.0"),
        )
        self.assertEqual(descriptor.description, "Description for widgets")
        self.assertEqual([target.name for target in descriptor.targets], ["local", "staging"])
        self.assertIs(self.coordinator.publishing.get("widgets_mavenJava"), descriptor)

    def test_distinct_modules_get_distinct_ids(self) -> None:
        nbt = Module(name="nbt", group="org.example", version="1.0.0")
        first = self.coordinator.publish(self.widgets, self._artifacts(self.widgets))
        second = self.coordinator.publish(nbt, self._artifacts(nbt))
        self.assertNotEqual(first.publication_id, second.publication_id)
        self.assertEqual(len(self.coordinator.publishing.publications()), 2)

    def test_colliding_id_is_rejected(self) -> None:
        nbt = Module(name="nbt", group="org.example", version="1.0.0")
        self.coordinator.publish(self.widgets, self._artifacts(self.widgets))

        def collide(descriptor) -> None:
            descriptor.publication_id = "widgets_mavenJava"

        with self.assertRaises(DuplicatePublicationError) as ctx:
            self.coordinator.publish(nbt, self._artifacts(nbt), collide)
        self.assertEqual(ctx.exception.existing, "widgets")
        self.assertEqual(ctx.exception.incoming, "nbt")

    def test_unregistered_artifact_is_not_ready(self) -> None:
        artifacts = self._artifacts(self.widgets)
        other = ArtifactRegistry().ensure_artifact(self.widgets, "extra", lambda: artifacts[0].path)
        with self.assertRaises(ArtifactNotReadyError):
            self.coordinator.publish(self.widgets, [*artifacts, other])

    def test_missing_file_is_not_ready(self) -> None:
        artifacts = self._artifacts(self.widgets)
        artifacts[1].path.unlink()
        with self.assertRaises(ArtifactNotReadyError):
            self.coordinator.publish(self.widgets, artifacts)
        self.assertIsNone(self.coordinator.publishing.get("widgets_mavenJava"))

    def test_missing_primary_is_not_ready(self) -> None:
        artifacts = self._artifacts(self.widgets)
        with self.assertRaises(ArtifactNotReadyError):
            self.coordinator.publish(self.widgets, artifacts[1:])

    def test_artifact_id_must_match_module(self) -> None:
        def rename(descriptor) -> None:
            descriptor.artifact_id = "gadgets"

        with self.assertRaises(ConfigurationError):
            self.coordinator.publish(self.widgets, self._artifacts(self.widgets), rename)

    def test_publish_requires_version(self) -> None:
        module = Module(name="widgets", group="org.example", version="")
        with self.assertRaises(ConfigurationError):
            self.coordinator.publish(module, [])

    def test_version_override_through_customization(self) -> None:
        def override(descriptor) -> None:
            descriptor.version = "0.107"

        descriptor = self.coordinator.publish(self.widgets, self._artifacts(self.widgets), override)
        self.assertEqual(descriptor.pom_name, "widgets-0.107.pom")
        self.assertEqual(descriptor.file_name(descriptor.primary), "widgets-0.107.jar")

    def test_pom_contents(self) -> None:
        descriptor = self.coordinator.publish(
            self.widgets,
            self._artifacts(self.widgets),
            dependencies=[PomDependency(group_id="org.example", artifact_id="nbt", version="1.0.0")],
        )
        project = ET.fromstring(descriptor.to_pom())
        self.assertEqual(project.tag, f"{POM}project")
        self.assertEqual(project.findtext(f"{POM}groupId"), "org.example")
        self.assertEqual(project.findtext(f"{POM}artifactId"), "widgets")
        self.assertEqual(project.findtext(f"{POM}version"), "2.3.0")
        self.assertEqual(project.findtext(f"{POM}url"), "https://example.org/widgets")
        self.assertEqual(project.findtext(f"{POM}developers/{POM}developer/{POM}id"), "dev")
        self.assertEqual(
            project.findtext(f"{POM}scm/{POM}developerConnection"),
            "scm:git:ssh://example.org/widgets.git",
        )
        self.assertEqual(project.findtext(f"{POM}dependencies/{POM}dependency/{POM}artifactId"), "nbt")
        urls = [node.text for node in project.iter(f"{POM}url") if node.text and "maven2" in node.text]
        self.assertEqual(urls, ["https://repo.maven.apache.org/maven2/"])
        self.assertNotIn("file:", descriptor.to_pom().decode("utf-8"))

    def test_deploy_writes_maven_layout(self) -> None:
        descriptor = self.coordinator.publish(self.widgets, self._artifacts(self.widgets))
        written = self.coordinator.deploy(descriptor)
        self.assertEqual(set(written), {"local", "staging"})

        version_dir = self.root / "m2" / "org" / "example" / "widgets" / "2.3.0"
        for name in ("widgets-2.3.0.pom", "widgets-2.3.0.jar", "widgets-2.3.0-sources.jar", "widgets-2.3.0-javadoc.jar"):
            self.assertTrue((version_dir / name).is_file(), name)
        self.assertFalse((version_dir / "widgets-2.3.0.jar.sha1").exists())
        self.assertTrue((version_dir.parent / "maven-metadata-local.xml").is_file())

        remote_jar = self.root / "remote" / "org" / "example" / "widgets" / "2.3.0" / "widgets-2.3.0.jar"
        expected = hashlib.sha1(remote_jar.read_bytes()).hexdigest()
        self.assertEqual(remote_jar.with_name("widgets-2.3.0.jar.sha1").read_text(), expected)
        self.assertTrue(remote_jar.with_name("widgets-2.3.0.jar.md5").is_file())

    def test_metadata_keeps_previous_versions(self) -> None:
        first = self.coordinator.publish(self.widgets, self._artifacts(self.widgets))
        self.local.install(first)
        newer = Module(name="widgets", group="org.example", version="2.4.0")
        second_registry = ArtifactRegistry()
        coordinator = PublicationCoordinator(
            registry=second_registry,
            publishing=PublishingRegistry(),
            settings=self.settings,
            local_repository=self.local,
        )
        path = self.root / "widgets-2.4.0.jar"
        path.write_bytes(b"jar")
        artifact = coordinator.ensure_artifact(newer, "", lambda: path)
        self.local.install(coordinator.publish(newer, [artifact]))

        metadata = ET.parse(self.root / "m2" / "org" / "example" / "widgets" / "maven-metadata-local.xml").getroot()
        self.assertEqual([node.text for node in metadata.iter("version")], ["2.3.0", "2.4.0"])
        self.assertEqual(metadata.findtext("versioning/latest"), "2.4.0")


class BundleRepositoryTests(unittest.TestCase):
    def test_bundle_archives_staged_layout(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            console = Console(level="none")
            settings = RemoteRepositorySettings(name="bundle", kind="bundle", path="dist/publication.zip")
            repository = create_remote_repository(settings, workspace=root, archive_manager=ArchiveManager(console))
            self.assertIsInstance(repository, BundleRepository)

            registry = ArtifactRegistry()
            coordinator = PublicationCoordinator(
                registry=registry,
                publishing=PublishingRegistry(),
                settings=PublicationSettings(),
                local_repository=MavenRepository("local", root / "m2"),
                remote_repository=repository,
            )
            module = Module(name="nbt", group="org.example", version="1.0.0")
            jar = root / "nbt-1.0.0.jar"
            jar.write_bytes(b"nbt")
            descriptor = coordinator.publish(module, [coordinator.ensure_artifact(module, "", lambda: jar)])
            coordinator.deploy(descriptor)

            bundle = repository.finalize(console)
            self.assertEqual(bundle, root / "dist" / "publication.zip")
            with zipfile.ZipFile(bundle) as archive:
                names = set(archive.namelist())
            self.assertIn("org/example/nbt/1.0.0/nbt-1.0.0.jar", names)
            self.assertIn("org/example/nbt/1.0.0/nbt-1.0.0.pom.sha1", names)
            self.assertIn("org/example/nbt/maven-metadata.xml", names)

    def test_empty_bundle_is_not_written(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            repository = BundleRepository(
                "bundle", root / "publication.tar.zst", archive_manager=ArchiveManager(Console(level="none"))
            )
            self.assertIsNone(repository.finalize())
            self.assertFalse((root / "publication.tar.zst").exists())

    def test_directory_remote(self) -> None:
        settings = RemoteRepositorySettings(name="staging", kind="directory", path="/srv/repo")
        repository = create_remote_repository(
            settings, workspace=Path("/work"), archive_manager=ArchiveManager(Console(level="none"))
        )
        self.assertNotIsInstance(repository, BundleRepository)
        self.assertEqual(repository.root, Path("/srv/repo"))
        self.assertTrue(repository.checksums)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

from __future__ import annotations

from pathlib import Path
import tempfile
import unittest

from bundler.errors import ArtifactNotReadyError, ConfigurationError
from bundler.repositories import (
    DEFAULT_REPOSITORIES,
    MAVEN_CENTRAL,
    Coordinate,
    DependencyResolver,
    RepositoryResolver,
    is_coordinate,
    maven_local_uri,
)


class RepositoryResolverTests(unittest.TestCase):
    def test_defaults_start_with_central_local_and_plugin_portal(self) -> None:
        repositories = RepositoryResolver().resolve_repositories()
        self.assertEqual(repositories[0], MAVEN_CENTRAL)
        self.assertEqual(repositories[1], maven_local_uri())
        self.assertEqual(repositories[2], "https://plugins.gradle.org/m2/")
        self.assertIn("https://jitpack.io/", repositories)
        self.assertEqual(repositories[-1], "https://libraries.minecraft.net/")

    def test_duplicates_keep_first_position(self) -> None:
        repositories = RepositoryResolver().resolve_repositories()
        self.assertEqual(len(repositories), len(set(repositories)))
        self.assertEqual(len(repositories), len(DEFAULT_REPOSITORIES) - 1)

    def test_same_sequence_for_every_call(self) -> None:
        resolver = RepositoryResolver(["https://example.org/maven", "maven-central"])
        self.assertEqual(resolver.resolve_repositories(), resolver.resolve_repositories())
        self.assertEqual(resolver.resolve_repositories(), ("https://example.org/maven/", MAVEN_CENTRAL))

    def test_invalid_entry_raises(self) -> None:
        with self.assertRaises(ConfigurationError):
            RepositoryResolver(["not a repository"])

    def test_splits_file_and_network_repositories(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            uri = Path(temp_dir).as_uri()
            resolver = RepositoryResolver([uri, "maven-central"])
            self.assertEqual(resolver.file_repositories(), [Path(temp_dir)])
            self.assertEqual(resolver.remote_repositories(), [MAVEN_CENTRAL])


class CoordinateTests(unittest.TestCase):
    def test_parse_and_layout(self) -> None:
        coordinate = Coordinate.parse("com.google.code.gson:gson:2.10.1")
        self.assertEqual(coordinate.file_name, "gson-2.10.1.jar")
        self.assertEqual(
            coordinate.relative_path(),
            Path("com", "google", "code", "gson", "gson", "2.10.1", "gson-2.10.1.jar"),
        )
        self.assertEqual(str(coordinate), "com.google.code.gson:gson:2.10.1")

    def test_classifier(self) -> None:
        coordinate = Coordinate.parse("de.tr7zw:item-nbt-api:2.12.0:shaded")
        self.assertEqual(coordinate.file_name, "item-nbt-api-2.12.0-shaded.jar")

    def test_invalid_coordinates(self) -> None:
        for text in ("gson", "a::1", "a:b:c:d:e"):
            with self.subTest(text=text), self.assertRaises(ConfigurationError):
                Coordinate.parse(text)

    def test_is_coordinate(self) -> None:
        self.assertTrue(is_coordinate("com.google.code.gson:gson:2.10.1"))
        self.assertFalse(is_coordinate("libs/helper.jar"))
        self.assertFalse(is_coordinate("C:/libs/helper.jar"))


class DependencyResolverTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.first = self.root / "first"
        self.second = self.root / "second"
        for repo in (self.first, self.second):
            jar_dir = repo / "com" / "google" / "code" / "gson" / "gson" / "2.10.1"
            jar_dir.mkdir(parents=True)
            (jar_dir / "gson-2.10.1.jar").write_bytes(repo.name.encode())
        self.resolver = DependencyResolver(
            RepositoryResolver(["maven-central", self.first.as_uri(), self.second.as_uri()])
        )

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_first_repository_wins(self) -> None:
        path = self.resolver.resolve("com.google.code.gson:gson:2.10.1")
        self.assertEqual(path.read_bytes(), b"first")

    def test_missing_coordinate_is_not_ready(self) -> None:
        with self.assertRaises(ArtifactNotReadyError):
            self.resolver.resolve("org.example:absent:1.0")

    def test_resolve_all_mixes_coordinates_and_paths(self) -> None:
        helper = self.root / "libs" / "helper.jar"
        helper.parent.mkdir()
        helper.write_bytes(b"helper")
        paths = self.resolver.resolve_all(
            ["com.google.code.gson:gson:2.10.1", "libs/helper.jar"],
            base_dir=self.root,
        )
        self.assertEqual(paths[1], helper)
        self.assertEqual(paths[0].read_bytes(), b"first")

    def test_resolve_all_missing_path(self) -> None:
        with self.assertRaises(ArtifactNotReadyError):
            self.resolver.resolve_all(["libs/absent.jar"], base_dir=self.root)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

from __future__ import annotations

from pathlib import Path
import unittest

from bundler.errors import ConfigurationError
from bundler.models import Artifact, Module, RelocationRule


class ModuleTests(unittest.TestCase):
    def test_key_and_require(self) -> None:
        module = Module(name="widgets", group="org.example", version="2.3.0")
        self.assertEqual(module.key, ("org.example", "widgets"))
        module.require("name", "group", "version")

        module.group = "  "
        with self.assertRaises(ConfigurationError) as ctx:
            module.require("name", "group")
        self.assertIn("empty 'group'", str(ctx.exception))

    def test_bump_version(self) -> None:
        module = Module(name="widgets", group="org.example", version="2.3.0")
        module.bump_version(" 2.4.0 ")
        self.assertEqual(module.version, "2.4.0")
        with self.assertRaises(ConfigurationError):
            module.bump_version("")
        self.assertEqual(module.version, "2.4.0")


class RelocationRuleTests(unittest.TestCase):
    def setUp(self) -> None:
        self.rule = RelocationRule("de.tr7zw.nbtapi", "org.example.dependencies.nbt")

    def test_relocate_path(self) -> None:
        self.assertEqual(
            self.rule.relocate_path("de/tr7zw/nbtapi/utils/Reflection.class"),
            "org/example/dependencies/nbt/utils/Reflection.class",
        )
        self.assertIsNone(self.rule.relocate_path("de/tr7zw/nbtapix/Other.class"))

    def test_relocate_name(self) -> None:
        self.assertEqual(self.rule.relocate_name("de.tr7zw.nbtapi"), "org.example.dependencies.nbt")
        self.assertEqual(self.rule.relocate_name("de.tr7zw.nbtapi.Api"), "org.example.dependencies.nbt.Api")
        self.assertIsNone(self.rule.relocate_name("de.tr7zw.nbtapix.Api"))


class ArtifactTests(unittest.TestCase):
    def test_primary_and_ready(self) -> None:
        artifact = Artifact("widgets", "", "widgets_shadowJar", Path("/nonexistent/widgets-2.3.0.jar"))
        self.assertTrue(artifact.is_primary)
        self.assertFalse(artifact.ready)
        self.assertEqual(artifact.key, ("widgets", ""))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

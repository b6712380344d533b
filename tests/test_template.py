from __future__ import annotations

import unittest

from core.template import TemplateError, TemplateResolver, topological_order


class TemplateResolverTests(unittest.TestCase):
    def setUp(self) -> None:
        self.context = {
            "workspace": "/work",
            "module": {"name": "widgets", "group": "org.example", "version": "2.3.0", "threads": 4},
        }
        self.resolver = TemplateResolver(self.context)

    def test_resolve_placeholder(self) -> None:
        result = self.resolver.resolve("{{module.name}}-{{module.version}}.jar")
        self.assertEqual(result, "widgets-2.3.0.jar")

    def test_single_placeholder_keeps_value_type(self) -> None:
        self.assertEqual(self.resolver.resolve("{{module.threads}}"), 4)
        self.assertEqual(self.resolver.resolve_text("{{module.threads}}"), "4")

    def test_nested_variable_resolution(self) -> None:
        context = {
            "module": {
                "name": "demo",
                "path": "{{workspace}}/{{module.name}}",
            },
            "workspace": "/work",
        }
        resolver = TemplateResolver(context)
        self.assertEqual(resolver.resolve("{{module.path}}/build"), "/work/demo/build")

    def test_resolves_containers(self) -> None:
        result = self.resolver.resolve({"archive": ["{{module.name}}", ("{{module.group}}",)]})
        self.assertEqual(result, {"archive": ["widgets", ("org.example",)]})

    def test_unknown_path_raises(self) -> None:
        with self.assertRaises(TemplateError):
            self.resolver.resolve("{{module.missing}}")

    def test_cycle_detection(self) -> None:
        resolver = TemplateResolver({"a": "{{b}}", "b": "{{a}}"})
        with self.assertRaises(TemplateError) as ctx:
            resolver.resolve("{{a}}")
        self.assertIn("Circular", str(ctx.exception))

    def test_text_without_placeholders_is_unchanged(self) -> None:
        self.assertEqual(self.resolver.resolve_text("name: plain"), "name: plain")


class DependencyOrderTests(unittest.TestCase):
    def test_topological_order_puts_dependencies_first(self) -> None:
        order = topological_order({"app": ["widgets", "nbt"], "widgets": [], "nbt": []})
        self.assertEqual(order, ["nbt", "widgets", "app"])

    def test_topological_order_ignores_unknown_nodes(self) -> None:
        self.assertEqual(topological_order({"app": ["missing"]}), ["app"])

    def test_topological_order_reports_cycle(self) -> None:
        with self.assertRaises(TemplateError) as ctx:
            topological_order({"a": ["b"], "b": ["a"]})
        self.assertIn("a -> b -> a", str(ctx.exception))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

"""Shaded jar packaging: archive naming, exclusions and package relocation."""
from __future__ import annotations

from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Sequence
import zipfile
import zlib

from core.archive import iter_directory_files, write_jar
from core.template import TemplateError, TemplateResolver

from .config_loader import ModuleDefinition
from .console import Console
from .errors import ArtifactNotReadyError, ConfigurationError
from .models import Module, RelocationRule

DEFAULT_EXCLUSIONS: tuple[str, ...] = (
    "*exclude.jar",
    "com/github/angeschossen/",
    "org/spigotmc/",
    "org/bukkit/",
    "org/yaml/snakeyaml/",
    "com/google/",
    "net/md_5/bungee/",
    "org/apache/commons/",
    "mojang-translations/",
    "javax/annotation/",
    "org/joml/",
    "org/checkerframework/",
    "META-INF/proguard/",
    "META-INF/versions/",
    "META-INF/maven/com.google.code.findbugs/",
    "META-INF/maven/com.google.code.gson/",
    "META-INF/maven/com.google.errorprone/",
    "META-INF/maven/com.google.guava/",
    "META-INF/maven/net.md-5/",
    "META-INF/maven/org.joml/",
    "META-INF/maven/org.spigotmc/",
    "META-INF/maven/org.yaml/",
)

MANIFEST_NAME = "META-INF/MANIFEST.MF"
SERVICES_PREFIX = "META-INF/services/"
_SIGNATURE_SUFFIXES = (".SF", ".DSA", ".RSA", ".EC")


@dataclass(frozen=True, slots=True)
class ExclusionPolicy:
    """Ordered set of patterns naming entries dropped from merged archives.

    A pattern ending in ``/`` matches every entry under that prefix; any
    other pattern is a case-sensitive glob, also matched against the file
    names of embedded jars so whole jars can be skipped.
    """

    patterns: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        unique: List[str] = []
        for pattern in self.patterns:
            text = pattern.strip()
            if text and text not in unique:
                unique.append(text)
        object.__setattr__(self, "patterns", tuple(unique))

    def extend(self, patterns: Iterable[str]) -> "ExclusionPolicy":
        return ExclusionPolicy((*self.patterns, *patterns))

    def matches(self, entry: str) -> bool:
        for pattern in self.patterns:
            if pattern.endswith("/"):
                if entry.startswith(pattern):
                    return True
            elif fnmatchcase(entry, pattern):
                return True
        return False

    def excludes_jar(self, jar_name: str) -> bool:
        return any(not pattern.endswith("/") and fnmatchcase(jar_name, pattern) for pattern in self.patterns)


DEFAULT_EXCLUSION_POLICY = ExclusionPolicy(DEFAULT_EXCLUSIONS)


@dataclass(slots=True)
class ArchiveSpec:
    """Embedded entries considered for a merged archive, and those marked excluded."""

    entries: List[str] = field(default_factory=list)
    excluded: set[str] = field(default_factory=set)

    def add(self, entry: str) -> None:
        if entry not in self.entries:
            self.entries.append(entry)

    def included(self) -> List[str]:
        return [entry for entry in self.entries if entry not in self.excluded]


@dataclass(slots=True)
class ShadeResult:
    path: Path
    spec: ArchiveSpec
    skipped_jars: List[Path] = field(default_factory=list)
    relocated: Dict[str, str] = field(default_factory=dict)


_EntrySource = tuple[str, Callable[[], bytes]]


class ShadeCoordinator:
    def __init__(self, policy: ExclusionPolicy = DEFAULT_EXCLUSION_POLICY, console: Console | None = None) -> None:
        self.policy = policy
        self._console = console

    def compute_archive_name(self, module: Module) -> str:
        module.require("name", "version")
        return f"{module.name}-{module.version}.jar"

    def compute_relocation_target(self, module: Module, package_name: str) -> str:
        module.require("group")
        if not package_name or not package_name.strip():
            raise ConfigurationError(f"Module '{module.name}' requested relocation of an empty package name")
        return f"{module.group}.dependencies.{package_name.strip()}"

    def apply_exclusions(self, archive_spec: ArchiveSpec, exclusion_policy: ExclusionPolicy | None = None) -> frozenset[str]:
        """Mark entries of *archive_spec* matching the policy as excluded; return the excluded set."""
        policy = exclusion_policy or self.policy
        for entry in archive_spec.entries:
            if policy.matches(entry):
                archive_spec.excluded.add(entry)
        return frozenset(archive_spec.excluded)

    def policy_for(self, definition: ModuleDefinition) -> ExclusionPolicy:
        if not definition.shade.exclusions:
            return self.policy
        return self.policy.extend(definition.shade.exclusions)

    def relocation_rules(self, definition: ModuleDefinition) -> List[RelocationRule]:
        rules: List[RelocationRule] = []
        for setting in definition.shade.relocations:
            destination = setting.destination or self.compute_relocation_target(definition.module, setting.name or "")
            rules.append(RelocationRule(source_prefix=setting.pattern, destination_prefix=destination))
        return rules

    def shade(
        self,
        definition: ModuleDefinition,
        *,
        embedded: Sequence[Path],
        output_dir: Path,
        resolver: TemplateResolver | None = None,
    ) -> ShadeResult:
        """Merge the module's classes, resources and *embedded* jars into one jar."""

        module = definition.module
        archive_name = self.compute_archive_name(module)
        if not definition.classes_dir.is_dir():
            raise ArtifactNotReadyError(
                f"Compiled classes for module '{module.name}' not found at {definition.classes_dir}"
            )

        policy = self.policy_for(definition)
        rules = self.relocation_rules(definition)
        result = ShadeResult(path=output_dir / archive_name, spec=ArchiveSpec())

        own_sources = list(self._module_sources(definition, resolver))
        embedded_sources: List[_EntrySource] = []
        for jar in embedded:
            if policy.excludes_jar(jar.name):
                result.skipped_jars.append(jar)
                if self._console:
                    self._console.debug(f"Skipping excluded jar {jar.name} for {module.name}")
                continue
            for name, loader in self._jar_sources(jar):
                result.spec.add(name)
                embedded_sources.append((name, loader))

        self.apply_exclusions(result.spec, policy)

        entries: Dict[str, bytes] = {MANIFEST_NAME: self._manifest(definition)}
        for name, loader in [*own_sources, *embedded_sources]:
            if name in result.spec.excluded or name.endswith("/") or _is_dropped_meta(name):
                continue
            payload = loader()
            target = _relocate_entry(name, rules)
            if name.startswith(SERVICES_PREFIX):
                payload = _relocate_service_lines(name, payload, rules)
            if target != name:
                result.relocated[name] = target
            existing = entries.get(target)
            if existing is None:
                entries[target] = payload
            elif target.startswith(SERVICES_PREFIX):
                entries[target] = _merge_service_files(target, existing, payload)

        write_jar(result.path, entries.items())
        if self._console:
            self._console.info(
                f"Shaded {module.name} into {result.path.name} "
                f"({len(entries)} entries, {len(result.spec.excluded)} excluded)"
            )
        return result

    def _module_sources(self, definition: ModuleDefinition, resolver: TemplateResolver | None) -> Iterator[_EntrySource]:
        for name, path in iter_directory_files(definition.classes_dir):
            yield name, path.read_bytes
        if not definition.resources_dir.is_dir():
            return
        for name, path in iter_directory_files(definition.resources_dir):
            if _is_filtered(name, definition.filter_resources):
                yield name, _filtered_loader(definition, name, path, resolver)
            else:
                yield name, path.read_bytes

    @staticmethod
    def _jar_sources(jar: Path) -> Iterator[_EntrySource]:
        try:
            with zipfile.ZipFile(jar) as archive:
                contents = [(name, archive.read(name)) for name in archive.namelist()]
        except (zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error) as exc:
            raise ArtifactNotReadyError(f"Embedded jar '{jar}' is not a valid archive") from exc

        for name, payload in contents:
            yield name, (lambda data=payload: data)

    @staticmethod
    def _manifest(definition: ModuleDefinition) -> bytes:
        lines = [
            "Manifest-Version: 1.0",
            "Created-By: bundler",
            f"Implementation-Title: {definition.module.name}",
            f"Implementation-Version: {definition.module.version}",
        ]
        if definition.main_class:
            lines.append(f"Main-Class: {definition.main_class}")
        return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")


def _is_dropped_meta(name: str) -> bool:
    if name == MANIFEST_NAME:
        return True
    return name.startswith("META-INF/") and name.count("/") == 1 and name.upper().endswith(_SIGNATURE_SUFFIXES)


def _is_filtered(name: str, patterns: Sequence[str]) -> bool:
    basename = name.rsplit("/", 1)[-1]
    return any(fnmatchcase(name, pattern) or fnmatchcase(basename, pattern) for pattern in patterns)


def _filtered_loader(
    definition: ModuleDefinition,
    name: str,
    path: Path,
    resolver: TemplateResolver | None,
) -> Callable[[], bytes]:
    def load() -> bytes:
        active = resolver or TemplateResolver(
            {
                "module": {
                    "name": definition.module.name,
                    "group": definition.module.group,
                    "version": definition.module.version,
                    "description": definition.module.description,
                    "main_class": definition.main_class or "",
                }
            }
        )
        try:
            text = active.resolve_text(path.read_text(encoding="utf-8"))
        except UnicodeDecodeError as exc:
            raise ConfigurationError(
                f"Filtered resource '{name}' of module '{definition.name}' is not UTF-8 text"
            ) from exc
        except TemplateError as exc:
            raise ConfigurationError(f"Filtered resource '{name}' of module '{definition.name}': {exc}") from exc
        return text.encode("utf-8")

    return load


def _relocate_entry(name: str, rules: Sequence[RelocationRule]) -> str:
    if name.startswith(SERVICES_PREFIX):
        service = name[len(SERVICES_PREFIX):]
        for rule in rules:
            moved = rule.relocate_name(service)
            if moved is not None:
                return SERVICES_PREFIX + moved
        return name
    for rule in rules:
        moved = rule.relocate_path(name)
        if moved is not None:
            return moved
    return name


def _service_lines(name: str, payload: bytes) -> List[str]:
    try:
        return payload.decode("utf-8").splitlines()
    except UnicodeDecodeError as exc:
        raise ArtifactNotReadyError(f"Service file '{name}' is not UTF-8 text") from exc


def _relocate_service_lines(name: str, payload: bytes, rules: Sequence[RelocationRule]) -> bytes:
    if not rules:
        return payload
    lines: List[str] = []
    for line in _service_lines(name, payload):
        stripped = line.strip()
        for rule in rules:
            moved = rule.relocate_name(stripped)
            if moved is not None:
                line = moved
                break
        lines.append(line)
    return ("\n".join(lines) + "\n").encode("utf-8")


def _merge_service_files(name: str, existing: bytes, incoming: bytes) -> bytes:
    lines = _service_lines(name, existing)
    seen = {line.strip() for line in lines}
    for line in _service_lines(name, incoming):
        if line.strip() and line.strip() not in seen:
            lines.append(line)
            seen.add(line.strip())
    return ("\n".join(lines) + "\n").encode("utf-8")


__all__ = [
    "ArchiveSpec",
    "DEFAULT_EXCLUSIONS",
    "DEFAULT_EXCLUSION_POLICY",
    "ExclusionPolicy",
    "ShadeCoordinator",
    "ShadeResult",
]

"""Configuration loading and validation for the module table."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence
import shlex

from core.config_loader import (
    collect_config_files,
    get_section,
    load_config_file,
    load_layered,
    normalize_string_list,
)
from core.template import TemplateError, TemplateResolver, topological_order

from .errors import ConfigurationError
from .models import Developer, Module, ScmInfo

DEFAULT_CLASSES_DIR = "build/classes/java/main"
DEFAULT_RESOURCES_DIR = "src/main/resources"
DEFAULT_SOURCE_DIRS = ("src/main/java", "src/main/resources")
DEFAULT_DOCS_DIR = "build/docs/javadoc"
DEFAULT_LOCAL_REPOSITORY = "~/.m2/repository"


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_bool(value: Any, default: bool, *, field_name: str) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConfigurationError(f"{field_name} must be true or false, not {value!r}")
    return value


def _inherited_field(section: Mapping[str, Any], key: str, fallback: str | None, *, label: str) -> str:
    """Return ``section[key]``, inheriting *fallback* only when the key is absent.

    A key that is present but empty is an error rather than a silent fallback.
    """
    if key in section:
        value = section.get(key)
        if value is None or not str(value).strip():
            raise ConfigurationError(f"Module '{label}' declares an empty '{key}'")
        return str(value).strip()
    if fallback:
        return fallback
    raise ConfigurationError(f"Module '{label}' has no '{key}' and no [global] default")


@dataclass(slots=True)
class GlobalConfig:
    log_level: str = "info"
    log_file: str | None = None
    group: str | None = None
    version: str | None = None
    output_dir: str = "build/libs"
    repositories: List[str] | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GlobalConfig":
        global_section = get_section(data, "global")
        repositories = None
        if "repositories" in global_section:
            repositories = normalize_string_list(
                global_section.get("repositories"), field_name="global.repositories"
            )
        return cls(
            log_level=str(global_section.get("log_level", "info")),
            log_file=_optional_str(global_section.get("log_file")),
            group=_optional_str(global_section.get("group")),
            version=_optional_str(global_section.get("version")),
            output_dir=str(global_section.get("output_dir") or "build/libs"),
            repositories=repositories,
        )


@dataclass(slots=True)
class ShadePolicyConfig:
    exclusions: List[str] = field(default_factory=list)
    use_default_exclusions: bool = True

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ShadePolicyConfig":
        section = get_section(data, "shade")
        return cls(
            exclusions=normalize_string_list(section.get("exclusions"), field_name="shade.exclusions"),
            use_default_exclusions=_optional_bool(
                section.get("use_default_exclusions"), True, field_name="shade.use_default_exclusions"
            ),
        )


@dataclass(slots=True)
class RemoteRepositorySettings:
    name: str
    kind: str
    path: str

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RemoteRepositorySettings":
        kind = str(data.get("type", "directory")).strip().lower()
        if kind not in {"directory", "bundle"}:
            raise ConfigurationError(
                f"publication.remote.type must be 'directory' or 'bundle', not '{kind}'"
            )
        path = _optional_str(data.get("path"))
        if not path:
            raise ConfigurationError("publication.remote.path is required")
        return cls(name=str(data.get("name") or "remote"), kind=kind, path=path)


@dataclass(slots=True)
class PublicationSettings:
    url: str = ""
    description_template: str = "Description for {{module.name}}"
    developers: List[Developer] = field(default_factory=list)
    scm: ScmInfo = field(default_factory=ScmInfo)
    local_repository: str = DEFAULT_LOCAL_REPOSITORY
    remote: RemoteRepositorySettings | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PublicationSettings":
        section = get_section(data, "publication")
        developers: List[Developer] = []
        raw_developers = section.get("developers") or []
        if not isinstance(raw_developers, Sequence) or isinstance(raw_developers, (str, bytes)):
            raise ConfigurationError("publication.developers must be an array of tables")
        for entry in raw_developers:
            if not isinstance(entry, Mapping):
                raise ConfigurationError("publication.developers entries must be tables")
            developer_id = _optional_str(entry.get("id"))
            name = _optional_str(entry.get("name"))
            if not developer_id or not name:
                raise ConfigurationError("publication.developers entries need 'id' and 'name'")
            developers.append(Developer(id=developer_id, name=name, email=str(entry.get("email") or "")))

        scm_section = get_section(section, "scm")
        url = str(section.get("url") or "")
        scm = ScmInfo(
            connection=str(scm_section.get("connection") or ""),
            developer_connection=str(scm_section.get("developer_connection") or ""),
            url=str(scm_section.get("url") or url),
        )

        remote_section = section.get("remote")
        remote = None
        if remote_section:
            if not isinstance(remote_section, Mapping):
                raise ConfigurationError("[publication.remote] must be a table")
            remote = RemoteRepositorySettings.from_mapping(remote_section)

        return cls(
            url=url,
            description_template=str(section.get("description_template") or "Description for {{module.name}}"),
            developers=developers,
            scm=scm,
            local_repository=str(section.get("local_repository") or DEFAULT_LOCAL_REPOSITORY),
            remote=remote,
        )


@dataclass(slots=True)
class ModuleDependency:
    name: str
    embed: bool = True

    @classmethod
    def from_value(cls, value: Any) -> "ModuleDependency":
        if isinstance(value, str):
            name = value.strip()
            if not name:
                raise ConfigurationError("Dependency entries cannot be empty strings")
            return cls(name=name)
        if isinstance(value, Mapping):
            raw_name = value.get("name") or value.get("module")
            if not raw_name or not str(raw_name).strip():
                raise ConfigurationError("Dependency entries must include a non-empty 'name'")
            name = str(raw_name).strip()
            embed = _optional_bool(value.get("embed"), True, field_name=f"dependencies.{name}.embed")
            return cls(name=name, embed=embed)
        raise ConfigurationError("Dependencies must be specified as strings or tables")


@dataclass(slots=True)
class RelocationSetting:
    """Relocation as configured: an explicit destination or a short name under the module group."""

    pattern: str
    destination: str | None = None
    name: str | None = None

    @classmethod
    def from_value(cls, value: Any) -> "RelocationSetting":
        if isinstance(value, str):
            pattern = value.strip()
            if not pattern:
                raise ConfigurationError("Relocation patterns cannot be empty")
            return cls(pattern=pattern, name=pattern.rsplit(".", 1)[-1])
        if isinstance(value, Mapping):
            pattern = _optional_str(value.get("pattern"))
            if not pattern:
                raise ConfigurationError("Relocation entries must include a non-empty 'pattern'")
            destination = _optional_str(value.get("destination"))
            name = _optional_str(value.get("name"))
            if destination and name:
                raise ConfigurationError(
                    f"Relocation of '{pattern}' sets both 'destination' and 'name'; use one"
                )
            if not destination and not name:
                name = pattern.rsplit(".", 1)[-1]
            return cls(pattern=pattern, destination=destination, name=name)
        raise ConfigurationError("Relocations must be specified as strings or tables")


@dataclass(slots=True)
class ModuleShadeSettings:
    embed: List[str] = field(default_factory=list)
    exclusions: List[str] = field(default_factory=list)
    relocations: List[RelocationSetting] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, section: Mapping[str, Any]) -> "ModuleShadeSettings":
        raw_relocations = section.get("relocations") or []
        if isinstance(raw_relocations, (str, bytes, Mapping)) or not isinstance(raw_relocations, Sequence):
            raise ConfigurationError("shade.relocations must be an array")
        return cls(
            embed=normalize_string_list(section.get("embed"), field_name="shade.embed"),
            exclusions=normalize_string_list(section.get("exclusions"), field_name="shade.exclusions"),
            relocations=[RelocationSetting.from_value(entry) for entry in raw_relocations],
        )


@dataclass(slots=True)
class ModuleDefinition:
    module: Module
    path: Path
    classes_dir: Path
    resources_dir: Path
    source_dirs: List[Path]
    docs_dir: Path
    docs_command: List[str] = field(default_factory=list)
    main_class: str | None = None
    filter_resources: List[str] = field(default_factory=list)
    shade: ModuleShadeSettings = field(default_factory=ModuleShadeSettings)
    dependencies: List[ModuleDependency] = field(default_factory=list)
    publication_version: str | None = None
    publication_description: str | None = None

    @property
    def name(self) -> str:
        return self.module.name

    @classmethod
    def from_mapping(
        cls,
        data: Mapping[str, Any],
        *,
        workspace: Path,
        global_config: GlobalConfig,
    ) -> "ModuleDefinition":
        module_section = data.get("module")
        if not isinstance(module_section, Mapping):
            raise ConfigurationError("[module] section is required in module configuration")
        name = _optional_str(module_section.get("name"))
        if not name:
            raise ConfigurationError("module.name is required")
        group = _inherited_field(module_section, "group", global_config.group, label=name)
        version = _inherited_field(module_section, "version", global_config.version, label=name)

        context: Dict[str, Any] = {
            "workspace": str(workspace),
            "global": {"group": global_config.group or "", "version": global_config.version or ""},
            "module": {"name": name, "group": group, "version": version},
        }
        try:
            resolver = TemplateResolver(context)
            description = str(resolver.resolve(str(module_section.get("description") or "")))
            context["module"]["description"] = description

            module_path = _resolve_path(workspace, resolver.resolve(str(module_section.get("path") or name)))
            context["module"]["path"] = str(module_path)
            resolver = TemplateResolver(context)

            def _dir(key: str, default: str) -> Path:
                return _resolve_path(module_path, resolver.resolve(str(module_section.get(key) or default)))

            classes_dir = _dir("classes_dir", DEFAULT_CLASSES_DIR)
            resources_dir = _dir("resources_dir", DEFAULT_RESOURCES_DIR)
            docs_dir = _dir("docs_dir", DEFAULT_DOCS_DIR)
            raw_sources = module_section.get("source_dirs")
            source_names = (
                normalize_string_list(raw_sources, field_name="module.source_dirs")
                if raw_sources is not None
                else list(DEFAULT_SOURCE_DIRS)
            )
            source_dirs = [_resolve_path(module_path, resolver.resolve(item)) for item in source_names]

            context["module"].update(
                {
                    "classes_dir": str(classes_dir),
                    "resources_dir": str(resources_dir),
                    "docs_dir": str(docs_dir),
                }
            )
            resolver = TemplateResolver(context)
            docs_command = _normalize_command(module_section.get("docs_command"))
            docs_command = [str(resolver.resolve(part)) for part in docs_command]
        except TemplateError as exc:
            raise ConfigurationError(f"Module '{name}': {exc}") from exc

        dependencies_section = data.get("dependencies", [])
        dependencies: List[ModuleDependency] = []
        if dependencies_section:
            if isinstance(dependencies_section, Sequence) and not isinstance(dependencies_section, (str, bytes)):
                dependencies = [ModuleDependency.from_value(entry) for entry in dependencies_section]
            else:
                raise ConfigurationError("dependencies must be an array of tables or strings")

        publication_section = get_section(data, "publication")
        publication_version = None
        if "version" in publication_section:
            publication_version = _optional_str(publication_section.get("version"))
            if not publication_version:
                raise ConfigurationError(f"Module '{name}' declares an empty publication.version")

        return cls(
            module=Module(name=name, group=group, version=version, description=description),
            path=module_path,
            classes_dir=classes_dir,
            resources_dir=resources_dir,
            source_dirs=source_dirs,
            docs_dir=docs_dir,
            docs_command=docs_command,
            main_class=_optional_str(module_section.get("main_class")),
            filter_resources=normalize_string_list(
                module_section.get("filter_resources"), field_name="module.filter_resources"
            ),
            shade=ModuleShadeSettings.from_mapping(get_section(data, "shade")),
            dependencies=dependencies,
            publication_version=publication_version,
            publication_description=_optional_str(publication_section.get("description")),
        )


def _resolve_path(base: Path, value: Any) -> Path:
    path = Path(str(value)).expanduser()
    if not path.is_absolute():
        path = base / path
    return path.resolve()


def _normalize_command(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return shlex.split(value)
    return normalize_string_list(value, field_name="module.docs_command")


@dataclass(slots=True)
class ConfigurationStore:
    root: Path
    global_config: GlobalConfig
    shade_policy: ShadePolicyConfig
    publication: PublicationSettings
    modules: Dict[str, ModuleDefinition]
    invalid_modules: Dict[str, ConfigurationError] = field(default_factory=dict)

    @classmethod
    def from_directory(cls, root: Path) -> "ConfigurationStore":
        config_dir = root / "config"
        if not config_dir.exists():
            raise FileNotFoundError(f"Configuration directory not found: {config_dir}")

        global_data = load_layered(config_dir)
        global_config = GlobalConfig.from_mapping(global_data)
        shade_policy = ShadePolicyConfig.from_mapping(global_data)
        publication = PublicationSettings.from_mapping(global_data)

        modules_dir = config_dir / "modules"
        if not modules_dir.exists():
            raise FileNotFoundError("Directory config/modules does not exist")

        modules: Dict[str, ModuleDefinition] = {}
        invalid: Dict[str, ConfigurationError] = {}
        for stem, path in sorted(collect_config_files(modules_dir).items()):
            try:
                definition = ModuleDefinition.from_mapping(
                    load_config_file(path),
                    workspace=root,
                    global_config=global_config,
                )
            except ConfigurationError as exc:
                invalid[stem] = exc
                continue
            except (OSError, RuntimeError, TypeError, ValueError) as exc:
                invalid[stem] = ConfigurationError(f"{path.name}: {exc}")
                continue
            if definition.name in modules:
                invalid[stem] = ConfigurationError(
                    f"Module '{definition.name}' is defined more than once ({path.name})"
                )
                continue
            modules[definition.name] = definition

        return cls(
            root=root,
            global_config=global_config,
            shade_policy=shade_policy,
            publication=publication,
            modules=modules,
            invalid_modules=invalid,
        )

    def list_modules(self) -> Iterable[str]:
        return self.modules.keys()

    def get_module(self, name: str) -> ModuleDefinition:
        if name not in self.modules:
            available = ", ".join(sorted(self.modules)) or "<none>"
            raise KeyError(f"Module '{name}' not found. Available modules: {available}")
        return self.modules[name]

    def resolve_dependency_chain(self, name: str) -> List[ModuleDefinition]:
        """Return the transitive sibling dependencies of *name*, dependencies first."""

        self.get_module(name)
        visiting: List[str] = []
        visited: set[str] = set()
        order: List[str] = []

        def visit(module_name: str) -> None:
            if module_name in visiting:
                cycle = " -> ".join([*visiting, module_name])
                raise ConfigurationError(f"Dependency cycle detected: {cycle}")
            if module_name in visited:
                return
            visiting.append(module_name)
            for dependency in self.get_module(module_name).dependencies:
                if dependency.name not in self.modules:
                    raise ConfigurationError(
                        f"Dependency '{dependency.name}' referenced by module '{module_name}' was not found"
                    )
                visit(dependency.name)
            visiting.pop()
            visited.add(module_name)
            order.append(module_name)

        visit(name)
        if order and order[-1] == name:
            order.pop()
        return [self.modules[dep_name] for dep_name in order]

    def build_order(self, names: Iterable[str] | None = None) -> List[str]:
        """Order *names* (default: all modules) plus their dependencies so dependencies come first.

        Dependencies on unknown modules are kept as edges so the dependent
        module fails when it is configured, not when the order is computed.
        """

        selected = list(names) if names is not None else list(self.modules)
        closure: Dict[str, List[str]] = {}
        pending = list(selected)
        while pending:
            current = pending.pop()
            if current in closure:
                continue
            definition = self.modules.get(current)
            deps = [dep.name for dep in definition.dependencies] if definition else []
            closure[current] = deps
            pending.extend(dep for dep in deps if dep in self.modules)
        try:
            return topological_order(closure)
        except TemplateError as exc:
            raise ConfigurationError(str(exc)) from exc


__all__ = [
    "ConfigurationStore",
    "GlobalConfig",
    "ModuleDefinition",
    "ModuleDependency",
    "ModuleShadeSettings",
    "PublicationSettings",
    "RelocationSetting",
    "RemoteRepositorySettings",
    "ShadePolicyConfig",
]

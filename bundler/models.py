"""Value types shared by the repository, shade and publication coordinators."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigurationError


@dataclass(slots=True)
class Module:
    """An independently versioned, independently publishable unit."""

    name: str
    group: str
    version: str
    description: str = ""

    @property
    def key(self) -> tuple[str, str]:
        return (self.group, self.name)

    def require(self, *fields: str) -> None:
        """Raise :class:`ConfigurationError` naming the first empty field in *fields*."""
        for field_name in fields:
            value = getattr(self, field_name)
            if value is None or not str(value).strip():
                label = self.name or "<unnamed>"
                raise ConfigurationError(f"Module '{label}' has an empty '{field_name}'")

    def bump_version(self, version: str) -> None:
        if not version or not version.strip():
            raise ConfigurationError(f"Module '{self.name}' cannot be bumped to an empty version")
        self.version = version.strip()


@dataclass(frozen=True, slots=True)
class RelocationRule:
    """Rewrite of a dotted package prefix applied while shading."""

    source_prefix: str
    destination_prefix: str

    @property
    def source_path(self) -> str:
        return self.source_prefix.replace(".", "/") + "/"

    @property
    def destination_path(self) -> str:
        return self.destination_prefix.replace(".", "/") + "/"

    def relocate_path(self, entry: str) -> str | None:
        """Return *entry* moved under the destination, or ``None`` when it does not match."""
        if entry.startswith(self.source_path):
            return self.destination_path + entry[len(self.source_path):]
        return None

    def relocate_name(self, name: str) -> str | None:
        """Return the dotted *name* moved under the destination, or ``None`` when it does not match."""
        if name == self.source_prefix:
            return self.destination_prefix
        if name.startswith(self.source_prefix + "."):
            return self.destination_prefix + name[len(self.source_prefix):]
        return None


@dataclass(frozen=True, slots=True)
class Artifact:
    """A file produced for a module; classifier ``""`` marks the primary jar."""

    module_name: str
    classifier: str
    producing_step: str
    path: Path
    extension: str = "jar"

    @property
    def key(self) -> tuple[str, str]:
        return (self.module_name, self.classifier)

    @property
    def is_primary(self) -> bool:
        return not self.classifier

    @property
    def ready(self) -> bool:
        return self.path.is_file()


@dataclass(frozen=True, slots=True)
class Developer:
    id: str
    name: str
    email: str = ""


@dataclass(frozen=True, slots=True)
class ScmInfo:
    connection: str = ""
    developer_connection: str = ""
    url: str = ""


__all__ = ["Artifact", "Developer", "Module", "RelocationRule", "ScmInfo"]

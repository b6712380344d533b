"""Repository endpoints shared by every module, and coordinate lookup against them."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Sequence
from urllib.parse import unquote, urlparse

from .console import Console
from .errors import ArtifactNotReadyError, ConfigurationError

MAVEN_CENTRAL = "https://repo.maven.apache.org/maven2/"
GRADLE_PLUGIN_PORTAL = "https://plugins.gradle.org/m2/"


def maven_local_uri() -> str:
    return (Path.home() / ".m2" / "repository").as_uri() + "/"


_ALIASES = {
    "maven-central": lambda: MAVEN_CENTRAL,
    "maven-local": maven_local_uri,
    "gradle-plugin-portal": lambda: GRADLE_PLUGIN_PORTAL,
}

DEFAULT_REPOSITORIES: tuple[str, ...] = (
    "maven-central",
    "maven-local",
    "gradle-plugin-portal",
    "https://jitpack.io/",
    "https://repo.codemc.io/repository/maven-public/",
    "https://hub.spigotmc.org/nexus/content/repositories/snapshots/",
    "https://oss.sonatype.org/content/groups/public/",
    "https://oss.sonatype.org/content/repositories/snapshots/",
    "https://repo.maven.apache.org/maven2/",
    "https://libraries.minecraft.net/",
)
"""Entries every module queries, in precedence order."""


def _normalize_entry(entry: str) -> str:
    text = entry.strip()
    alias = _ALIASES.get(text.lower())
    if alias is not None:
        return alias()
    parsed = urlparse(text)
    if parsed.scheme in {"http", "https"} and parsed.netloc:
        return text if text.endswith("/") else text + "/"
    if parsed.scheme == "file":
        return text if text.endswith("/") else text + "/"
    raise ConfigurationError(
        f"Repository '{entry}' is neither a known alias ({', '.join(sorted(_ALIASES))}) nor an http(s)/file URI"
    )


class RepositoryResolver:
    """Supplies the ordered repository URIs used for plugins and dependencies.

    Order is a precedence hint: when several repositories host the same
    coordinate the first one wins. Duplicate entries keep their first position.
    """

    def __init__(self, entries: Sequence[str] | None = None) -> None:
        raw = DEFAULT_REPOSITORIES if entries is None else tuple(entries)
        resolved: List[str] = []
        for entry in raw:
            uri = _normalize_entry(entry)
            if uri not in resolved:
                resolved.append(uri)
        self._repositories = tuple(resolved)

    def resolve_repositories(self) -> tuple[str, ...]:
        return self._repositories

    def file_repositories(self) -> List[Path]:
        return [Path(unquote(urlparse(uri).path)) for uri in self._repositories if uri.startswith("file:")]

    def remote_repositories(self) -> List[str]:
        return [uri for uri in self._repositories if not uri.startswith("file:")]


@dataclass(frozen=True, slots=True)
class Coordinate:
    group: str
    artifact: str
    version: str
    classifier: str = ""
    extension: str = "jar"

    @classmethod
    def parse(cls, text: str) -> "Coordinate":
        parts = [part.strip() for part in text.strip().split(":")]
        if len(parts) not in (3, 4) or not all(parts):
            raise ConfigurationError(
                f"Dependency coordinate '{text}' must look like group:artifact:version[:classifier]"
            )
        classifier = parts[3] if len(parts) == 4 else ""
        return cls(group=parts[0], artifact=parts[1], version=parts[2], classifier=classifier)

    @property
    def file_name(self) -> str:
        suffix = f"-{self.classifier}" if self.classifier else ""
        return f"{self.artifact}-{self.version}{suffix}.{self.extension}"

    def relative_path(self) -> Path:
        return Path(*self.group.split("."), self.artifact, self.version, self.file_name)

    def __str__(self) -> str:
        base = f"{self.group}:{self.artifact}:{self.version}"
        return f"{base}:{self.classifier}" if self.classifier else base


def is_coordinate(text: str) -> bool:
    return text.count(":") in (2, 3) and "/" not in text and "\\" not in text


class DependencyResolver:
    """Locates embedded dependency jars by coordinate in file-backed repositories.

    Network repositories are listed in publication metadata but never
    contacted; a coordinate only available remotely is reported as not ready.
    """

    def __init__(self, repositories: RepositoryResolver, console: Console | None = None) -> None:
        self._repositories = repositories
        self._console = console

    def resolve(self, coordinate: Coordinate | str) -> Path:
        target = Coordinate.parse(coordinate) if isinstance(coordinate, str) else coordinate
        relative = target.relative_path()
        for root in self._repositories.file_repositories():
            candidate = root / relative
            if candidate.is_file():
                if self._console:
                    self._console.debug(f"Resolved {target} from {root}")
                return candidate
        skipped = self._repositories.remote_repositories()
        if skipped and self._console:
            self._console.debug(f"Skipped {len(skipped)} network repositories while resolving {target}")
        searched = ", ".join(str(root) for root in self._repositories.file_repositories()) or "<none>"
        raise ArtifactNotReadyError(f"Dependency {target} was not found in file repositories: {searched}")

    def resolve_all(self, entries: Iterable[str], *, base_dir: Path) -> List[Path]:
        """Resolve coordinates and jar paths (relative to *base_dir*) in order."""
        paths: List[Path] = []
        for entry in entries:
            if is_coordinate(entry):
                paths.append(self.resolve(entry))
                continue
            path = Path(entry).expanduser()
            if not path.is_absolute():
                path = base_dir / path
            if not path.is_file():
                raise ArtifactNotReadyError(f"Embedded jar '{path}' does not exist")
            paths.append(path)
        return paths


__all__ = [
    "Coordinate",
    "DEFAULT_REPOSITORIES",
    "DependencyResolver",
    "GRADLE_PLUGIN_PORTAL",
    "MAVEN_CENTRAL",
    "RepositoryResolver",
    "is_coordinate",
    "maven_local_uri",
]

"""Decoding of TOML/JSON/YAML configuration files and merging of layered config directories."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, IO, List, Mapping, Sequence

import json
import tomllib

try:  # Optional dependency for YAML support
    import yaml
except ModuleNotFoundError:  # pragma: no cover - exercised when PyYAML absent
    yaml = None


Decoder = Callable[[IO[Any]], Any]


def _decode_yaml(stream: IO[str]) -> Any:
    if yaml is None:
        raise RuntimeError(
            "PyYAML is required to read YAML configuration files. Install with `pip install bundler[yaml]`."
        )
    try:
        return yaml.safe_load(stream)
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML document: {exc}") from exc


# suffix -> (open mode, decoder); tomllib only accepts binary streams
DECODERS: Dict[str, tuple[str, Decoder]] = {
    ".toml": ("rb", tomllib.load),
    ".json": ("r", json.load),
    ".yaml": ("r", _decode_yaml),
    ".yml": ("r", _decode_yaml),
}


def load_config_file(path: Path) -> Mapping[str, Any]:
    """Decode *path* into a mapping; an empty document yields ``{}``."""

    suffix = path.suffix.lower()
    if suffix not in DECODERS:
        raise ValueError(
            f"Unsupported configuration file extension: {suffix}. Supported: {', '.join(sorted(DECODERS))}"
        )
    mode, decoder = DECODERS[suffix]
    encoding = None if "b" in mode else "utf-8"
    with path.open(mode, encoding=encoding) as handle:
        data = decoder(handle)

    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise TypeError(f"Configuration file '{path}' must contain a table at the root")
    return data


def collect_config_files(directory: Path) -> Dict[str, Path]:
    """Map file stems to the configuration files directly inside *directory*.

    A stem present in two formats (``nbt.toml`` and ``nbt.json``) is an error.
    """

    found: Dict[str, Path] = {}
    for path in sorted(directory.iterdir()):
        if not path.is_file() or path.suffix.lower() not in DECODERS:
            continue
        previous = found.get(path.stem)
        if previous is not None:
            raise ValueError(
                f"Multiple configuration files found for '{path.stem}': '{previous.name}' and '{path.name}'. "
                "Only one format per configuration entry is allowed."
            )
        found[path.stem] = path
    return found


def merge_mappings(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    """Deep merge; tables merge recursively, any other *overlay* value replaces the base value."""

    merged: Dict[str, Any] = dict(base)
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = merge_mappings(current, value)
        else:
            merged[key] = value
    return merged


def load_layered(directory: Path, *, base_stem: str = "config") -> Dict[str, Any]:
    """Read ``<base_stem>.*`` from *directory*, then merge the other top-level files over it by name."""

    files = collect_config_files(directory)
    base_path = files.pop(base_stem, None)
    merged: Dict[str, Any] = dict(load_config_file(base_path)) if base_path is not None else {}
    for stem in sorted(files):
        merged = merge_mappings(merged, load_config_file(files[stem]))
    return merged


def normalize_string_list(value: Any, *, field_name: str | None = None) -> List[str]:
    """Accept a string or an array of strings; return the non-blank entries stripped."""

    label = f"{field_name} " if field_name else ""
    if value is None:
        return []
    if isinstance(value, (str, bytes)):
        text = str(value).strip()
        return [text] if text else []
    if not isinstance(value, Sequence):
        raise TypeError(f"{label}must be a string or sequence of strings")

    items: List[str] = []
    for item in value:
        if not isinstance(item, (str, bytes)):
            raise TypeError(f"{label}entries must be strings")
        text = str(item).strip()
        if text:
            items.append(text)
    return items


def get_section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    """Return the ``name`` table of ``data``, or an empty mapping when absent."""

    section = data.get(name)
    if section is None:
        return {}
    if not isinstance(section, Mapping):
        raise TypeError(f"[{name}] must be a table")
    return section


__all__ = [
    "DECODERS",
    "collect_config_files",
    "get_section",
    "load_config_file",
    "load_layered",
    "merge_mappings",
    "normalize_string_list",
]

"""Shared core utilities for configuration, archives, commands and templating."""

from .archive import ArchiveConsole, ArchiveManager, iter_directory_files, jar_directory, write_jar
from .template import TemplateError, TemplateResolver, topological_order
from .command_runner import (
    CommandError,
    CommandResult,
    CommandRunner,
    RecordingCommandRunner,
    SubprocessCommandRunner,
)
from .config_loader import (
    DECODERS,
    collect_config_files,
    get_section,
    load_config_file,
    load_layered,
    merge_mappings,
    normalize_string_list,
)

__all__ = [
    "TemplateError",
    "TemplateResolver",
    "topological_order",
    "ArchiveConsole",
    "ArchiveManager",
    "iter_directory_files",
    "jar_directory",
    "write_jar",
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "RecordingCommandRunner",
    "SubprocessCommandRunner",
    "DECODERS",
    "collect_config_files",
    "get_section",
    "load_config_file",
    "load_layered",
    "merge_mappings",
    "normalize_string_list",
]

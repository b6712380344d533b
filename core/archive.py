"""Archive writing utilities: reproducible jars and compressed repository bundles."""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Iterator, Protocol, runtime_checkable
import gzip
import os
import shutil
import tarfile
import tempfile
import zipfile

import zstandard as zstd

JAR_TIMESTAMP = (1980, 2, 1, 0, 0, 0)
"""Fixed entry timestamp so identical inputs always produce identical jars."""

_SUFFIX_FORMATS: list[tuple[str, str]] = [
    (".tar.zst", "zst"),
    (".tzst", "zst"),
    (".tar.gz", "gztar"),
    (".tgz", "gztar"),
    (".zip", "zip"),
]

_FORMAT_ALIASES: dict[str, str] = {
    "zst": "zst",
    "tar.zst": "zst",
    "tzst": "zst",
    "gztar": "gztar",
    "gz": "gztar",
    "tar.gz": "gztar",
    "tgz": "gztar",
    "zip": "zip",
}


@runtime_checkable
class ArchiveConsole(Protocol):
    """Minimal console interface required by :class:`ArchiveManager`."""

    dry_run: bool

    def info(self, message: str) -> None:
        ...

    def error(self, message: str) -> None:
        ...

    def dry(self, message: str) -> None:
        ...


def iter_directory_files(source_dir: Path) -> Iterator[tuple[str, Path]]:
    """Yield ``(posix_relative_name, path)`` for every file below *source_dir* in sorted order."""

    root = Path(source_dir)
    for dirpath, dirnames, filenames in os.walk(root, topdown=True):
        dirnames.sort()
        filenames.sort()
        current_dir = Path(dirpath)
        relative_dir = current_dir.relative_to(root)
        for filename in filenames:
            if relative_dir != Path("."):
                arcname = (relative_dir / filename).as_posix()
            else:
                arcname = filename
            yield arcname, current_dir / filename


def write_jar(target_path: Path, entries: Iterable[tuple[str, bytes]]) -> Path:
    """Write *entries* into a deflated zip at *target_path* with fixed timestamps.

    Directory entries are synthesized for every parent path, as ``jar`` does.
    """

    target_path.parent.mkdir(parents=True, exist_ok=True)
    written_dirs: set[str] = set()

    with zipfile.ZipFile(target_path, mode="w", compression=zipfile.ZIP_DEFLATED, allowZip64=True) as archive:
        for name, payload in entries:
            parts = name.split("/")[:-1]
            for index in range(1, len(parts) + 1):
                directory = "/".join(parts[:index]) + "/"
                if directory in written_dirs:
                    continue
                written_dirs.add(directory)
                dir_info = zipfile.ZipInfo(directory, date_time=JAR_TIMESTAMP)
                dir_info.external_attr = 0o40755 << 16
                archive.writestr(dir_info, b"")
            info = zipfile.ZipInfo(name, date_time=JAR_TIMESTAMP)
            info.compress_type = zipfile.ZIP_DEFLATED
            info.external_attr = 0o644 << 16
            archive.writestr(info, payload)

    return target_path


def jar_directory(source_dir: Path, target_path: Path) -> Path:
    """Package every file of *source_dir* into a reproducible jar."""

    if not source_dir.is_dir():
        raise FileNotFoundError(f"Archive source directory '{source_dir}' does not exist")
    entries = ((name, path.read_bytes()) for name, path in iter_directory_files(source_dir))
    return write_jar(target_path, entries)


class ArchiveManager:
    """Create compressed archives from directories."""

    def __init__(self, console: ArchiveConsole) -> None:
        self._console = console

    @staticmethod
    def _zstd_thread_count(source_size: int) -> int:
        cpu_count = os.cpu_count() or 1
        if cpu_count <= 1:
            return 1

        size_mb = max(1, source_size) / (1024 * 1024)
        desired = 1
        if size_mb >= 32:
            desired = 2
        if size_mb >= 256:
            desired = 4
        if size_mb >= 1024:
            desired = 8

        return max(1, min(desired, cpu_count))

    @classmethod
    def _zstd_compression_params(cls, source_size: int) -> zstd.ZstdCompressionParameters:
        size = max(1, source_size)
        window_log = max(10, min(27, (size - 1).bit_length()))
        return zstd.ZstdCompressionParameters(
            compression_level=19,
            threads=cls._zstd_thread_count(size),
            write_checksum=True,
            write_content_size=True,
            window_log=window_log,
        )

    def create_archive(
        self,
        *,
        source_dir: Path | str,
        target_path: Path | str,
        format_hint: str | None = None,
        overwrite: bool = True,
    ) -> Path:
        """Archive the contents of *source_dir* into *target_path*.

        The format comes from *format_hint* (``"zst"``, ``"gztar"``, ``"zip"``)
        or, when omitted, from the target's suffix.
        """

        target = Path(target_path).expanduser()
        source = Path(source_dir).expanduser()

        if not source.exists():
            raise FileNotFoundError(f"Archive source directory '{source}' does not exist")

        archive_format = self._resolve_archive_format(target=target, format_hint=format_hint)

        if self._console.dry_run:
            self._console.dry(f"Would archive {source.name} to {target}")
            return target

        if target.exists() and not overwrite:
            raise FileExistsError(f"Archive target '{target}' already exists")

        target.parent.mkdir(parents=True, exist_ok=True)

        if archive_format == "zst":
            return self._make_zst_archive(target_path=target, source_dir=source)
        if archive_format == "gztar":
            return self._make_gzip_archive(target_path=target, source_dir=source)
        if archive_format == "zip":
            entries = ((name, path.read_bytes()) for name, path in iter_directory_files(source))
            return write_jar(target, entries)

        raise RuntimeError(f"Unsupported archive format '{archive_format}'")

    @staticmethod
    def _resolve_archive_format(*, target: Path, format_hint: str | None) -> str:
        if format_hint:
            normalized = format_hint.strip().lower()
            if normalized in _FORMAT_ALIASES:
                return _FORMAT_ALIASES[normalized]
            raise ValueError(f"Unsupported archive format hint '{format_hint}'")

        filename = target.name.lower()
        for suffix, fmt in sorted(_SUFFIX_FORMATS, key=lambda item: len(item[0]), reverse=True):
            if filename.endswith(suffix):
                return fmt

        raise ValueError(
            "Unable to determine archive format from target path. "
            "Provide an explicit format_hint or use a supported suffix."
        )

    def _make_zst_archive(self, *, target_path: Path, source_dir: Path) -> Path:
        temp_tar = self._create_pax_tar(root_dir=source_dir, temp_dir=target_path.parent)
        try:
            params = self._zstd_compression_params(temp_tar.stat().st_size)
            compressor = zstd.ZstdCompressor(compression_params=params)
            with temp_tar.open("rb") as src, target_path.open("wb") as dst:
                compressor.copy_stream(src, dst)
        finally:
            temp_tar.unlink(missing_ok=True)
        return target_path

    def _make_gzip_archive(self, *, target_path: Path, source_dir: Path) -> Path:
        temp_tar = self._create_pax_tar(root_dir=source_dir, temp_dir=target_path.parent)
        try:
            with temp_tar.open("rb") as src, gzip.open(target_path, "wb", compresslevel=9, mtime=0) as dst:
                shutil.copyfileobj(src, dst)
        finally:
            temp_tar.unlink(missing_ok=True)
        return target_path

    @staticmethod
    def _create_pax_tar(*, root_dir: Path, temp_dir: Path) -> Path:
        with tempfile.NamedTemporaryFile(dir=temp_dir, suffix=".tar", delete=False) as temp_handle:
            temp_path = Path(temp_handle.name)

        try:
            with tarfile.open(temp_path, mode="w", format=tarfile.PAX_FORMAT) as tar:
                for name, path in iter_directory_files(root_dir):
                    tar.add(path, arcname=name)
        except Exception:
            temp_path.unlink(missing_ok=True)
            raise

        return temp_path


__all__ = [
    "ArchiveConsole",
    "ArchiveManager",
    "JAR_TIMESTAMP",
    "iter_directory_files",
    "jar_directory",
    "write_jar",
]

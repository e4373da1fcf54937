"""Unpacking of source archives for packages that ship as tarballs."""
from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable
import shutil
import tarfile
import tempfile
import zipfile

import zstandard as zstd

_SUFFIX_FORMATS: list[tuple[str, str]] = [
    (".tar.zst", "zst"),
    (".tzst", "zst"),
    (".tar.gz", "gztar"),
    (".tgz", "gztar"),
    (".tar.bz2", "bztar"),
    (".tbz", "bztar"),
    (".tbz2", "bztar"),
    (".tar.xz", "xztar"),
    (".txz", "xztar"),
    (".tar", "tar"),
    (".zip", "zip"),
]

_TAR_MODES: dict[str, str] = {
    "gztar": "r:gz",
    "bztar": "r:bz2",
    "xztar": "r:xz",
    "tar": "r:",
}


@runtime_checkable
class ArchiveConsole(Protocol):
    """Minimal console interface required by :class:`SourceArchive`."""

    dry_run: bool

    def info(self, message: str) -> None:
        ...

    def dry(self, message: str) -> None:
        ...


def archive_format(path: Path) -> str:
    """Infer the archive format of ``path`` from its suffix."""

    filename = path.name.lower()
    for suffix, fmt in sorted(_SUFFIX_FORMATS, key=lambda item: len(item[0]), reverse=True):
        if filename.endswith(suffix):
            return fmt
    raise ValueError(f"Unsupported archive '{path.name}'. Supported suffixes: "
                     + ", ".join(suffix for suffix, _ in _SUFFIX_FORMATS))


class SourceArchive:
    """Extract a package source archive into its source directory.

    Archives conventionally wrap their content in one top-level directory
    (``boost_1_43_0/...``). That wrapper is stripped so the destination holds
    the sources directly.
    """

    def __init__(self, console: ArchiveConsole) -> None:
        self._console = console

    def unpack(self, archive_path: Path | str, destination: Path | str) -> Path:
        archive = Path(archive_path).expanduser()
        dest = Path(destination).expanduser()

        if not archive.exists():
            raise FileNotFoundError(f"Archive '{archive}' does not exist")
        fmt = archive_format(archive)

        if self._console.dry_run:
            self._console.dry(f"Would extract {archive} to {dest}")
            return dest

        if dest.exists():
            raise FileExistsError(f"Refusing to unpack over existing directory '{dest}'")

        dest.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=".unpack-", dir=dest.parent))
        try:
            self._extract(archive, staging, fmt)
            entries = list(staging.iterdir())
            if len(entries) == 1 and entries[0].is_dir():
                entries[0].rename(dest)
            else:
                staging.rename(dest)
        finally:
            if staging.exists():
                shutil.rmtree(staging)

        self._console.info(f"Extracted {archive.name} to {dest}")
        return dest

    @staticmethod
    def _extract(archive: Path, dest: Path, fmt: str) -> None:
        if fmt == "zst":
            dctx = zstd.ZstdDecompressor()
            with archive.open("rb") as ifh, dctx.stream_reader(ifh) as reader:
                with tarfile.open(fileobj=reader, mode="r|") as tar:
                    tar.extractall(path=dest, filter="data")
            return
        if fmt == "zip":
            with zipfile.ZipFile(archive, "r") as zip_ref:
                zip_ref.extractall(dest)
            return
        with tarfile.open(archive, _TAR_MODES[fmt]) as tar:
            tar.extractall(path=dest, filter="data")


__all__ = ["ArchiveConsole", "SourceArchive", "archive_format"]

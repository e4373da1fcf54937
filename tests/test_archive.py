from __future__ import annotations

from contextlib import redirect_stdout
from pathlib import Path
import io
import tarfile
import tempfile
import unittest

import zstandard as zstd

from core.archive import SourceArchive, archive_format
from extbuild.console import Console


class SourceArchiveTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.workspace = Path(self.temp_dir.name)
        self.tree = self.workspace / "tree" / "libpng-1.5.4"
        self.tree.mkdir(parents=True)
        (self.tree / "configure").write_text("#!/bin/sh\n")
        (self.tree / "README").write_text("libpng\n")

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _tarball(self, name: str, mode: str) -> Path:
        path = self.workspace / name
        with tarfile.open(path, mode) as tar:
            tar.add(self.tree, arcname="libpng-1.5.4")
        return path

    def test_archive_format_from_suffix(self) -> None:
        self.assertEqual(archive_format(Path("boost_1_43_0.tar.bz2")), "bztar")
        self.assertEqual(archive_format(Path("libpng-1.5.4.tar.gz")), "gztar")
        self.assertEqual(archive_format(Path("sources.tar.zst")), "zst")
        with self.assertRaises(ValueError):
            archive_format(Path("sources.rar"))

    def test_unpack_strips_top_level_directory(self) -> None:
        archive = self._tarball("libpng-1.5.4.tar.gz", "w:gz")
        destination = self.workspace / "ext" / "sources" / "libpng"

        with redirect_stdout(io.StringIO()):
            SourceArchive(Console("info")).unpack(archive, destination)

        self.assertEqual((destination / "README").read_text(), "libpng\n")
        self.assertTrue((destination / "configure").is_file())
        self.assertEqual([path.name for path in destination.parent.iterdir()], ["libpng"])

    def test_unpack_zstd_tarball(self) -> None:
        plain = self._tarball("libpng-1.5.4.tar", "w")
        archive = self.workspace / "libpng-1.5.4.tar.zst"
        archive.write_bytes(zstd.ZstdCompressor().compress(plain.read_bytes()))
        destination = self.workspace / "sources" / "libpng"

        SourceArchive(Console("none")).unpack(archive, destination)
        self.assertTrue((destination / "README").is_file())

    def test_refuses_existing_destination(self) -> None:
        archive = self._tarball("libpng-1.5.4.tar.gz", "w:gz")
        destination = self.workspace / "existing"
        destination.mkdir()
        with self.assertRaises(FileExistsError):
            SourceArchive(Console("none")).unpack(archive, destination)

    def test_dry_run_only_announces(self) -> None:
        archive = self._tarball("libpng-1.5.4.tar.gz", "w:gz")
        destination = self.workspace / "sources" / "libpng"
        with redirect_stdout(io.StringIO()) as output:
            SourceArchive(Console("none", dry_run=True)).unpack(archive, destination)
        self.assertFalse(destination.exists())
        self.assertIn("Would extract", output.getvalue())

    def test_missing_archive(self) -> None:
        with self.assertRaises(FileNotFoundError):
            SourceArchive(Console("none")).unpack(self.workspace / "absent.tar.gz", self.workspace / "out")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

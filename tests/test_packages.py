from __future__ import annotations

from contextlib import redirect_stdout
from pathlib import Path
import io
import tempfile
import unittest

from core.command_runner import RecordingCommandRunner
from extbuild.console import Console
from extbuild.environment import BuildConfiguration, MergePolicies
from extbuild.errors import BuildStepFailed, ConfigurationError, NoMatchingVariant
from extbuild.packages import PackageDefinition, Variant, split_versioned_name
from extbuild.platforms import Platform


def _platform(name: str = "linux", family: str | None = None, **kwargs) -> Platform:
    return Platform(
        name=name,
        family=family or name.split("_", 1)[0],
        install_prefix=Path("/opt/dream"),
        **kwargs,
    )


class VariantSelectionTests(unittest.TestCase):
    def test_exact_platform_beats_all(self) -> None:
        package = PackageDefinition(
            name="boost_1_43_0",
            source_directory=Path("/src/boost"),
            variants={
                "all": Variant("all", recipe="bjam"),
                "darwin_iphoneos": Variant("darwin_iphoneos", recipe="bjam", match=["darwin_ios"]),
            },
        )
        self.assertEqual(package.select_variant(_platform("darwin_iphoneos")).selector, "darwin_iphoneos")
        self.assertEqual(package.select_variant(_platform("darwin_ios")).selector, "darwin_iphoneos")
        self.assertEqual(package.select_variant(_platform("linux")).selector, "all")

    def test_family_match(self) -> None:
        package = PackageDefinition(
            name="libvorbis-1.3.3",
            source_directory=Path("/src/libvorbis"),
            variants={"all": Variant("all"), "darwin": Variant("darwin")},
        )
        self.assertEqual(package.select_variant(_platform("darwin_osx")).selector, "darwin")
        self.assertEqual(package.select_variant(_platform("android_ndk", family="android")).selector, "all")

    def test_no_matching_variant(self) -> None:
        package = PackageDefinition(
            name="uikit-glue",
            source_directory=Path("/src/glue"),
            variants={"darwin_iphoneos": Variant("darwin_iphoneos")},
        )
        with self.assertRaises(NoMatchingVariant) as ctx:
            package.select_variant(_platform("linux"))
        self.assertEqual(ctx.exception.package, "uikit-glue")
        self.assertEqual(ctx.exception.platform, "linux")

    def test_selector_claimed_twice_is_rejected(self) -> None:
        with self.assertRaises(ConfigurationError):
            PackageDefinition(
                name="freetype-2.4.10",
                source_directory=Path("/src/freetype"),
                variants={"all": Variant("all"), "linux": Variant("linux", match=["all"])},
            )


class PackageDefinitionTests(unittest.TestCase):
    def test_from_mapping(self) -> None:
        package = PackageDefinition.from_mapping(
            "libpng-1.5.4",
            {
                "source_dir": "ext/sources/libpng-1.5.4",
                "archive": "ext/archives/libpng-1.5.4.tar.gz",
                "provides": ["Library/png", "png"],
                "environment": {"CFLAGS": "-DPNG_NO_ASSEMBLER_CODE"},
                "variants": {"all": {"configure_args": ["--enable-static=yes"]}},
            },
            base_dir=Path("/work"),
        )
        self.assertEqual(package.source_directory, Path("/work/ext/sources/libpng-1.5.4"))
        self.assertEqual(package.archive, Path("/work/ext/archives/libpng-1.5.4.tar.gz"))
        self.assertEqual(package.version, "1.5.4")
        self.assertEqual(package.base_name, "libpng")
        self.assertEqual(package.variants["all"].recipe, "autoconf")

    def test_default_variant_and_unknown_keys(self) -> None:
        package = PackageDefinition.from_mapping("zlib", {}, base_dir=Path("/work"))
        self.assertEqual(list(package.variants), ["all"])
        self.assertIsNone(package.version)

        with self.assertRaises(ValueError):
            PackageDefinition.from_mapping("zlib", {"url": "https://zlib.net"}, base_dir=Path("/work"))
        with self.assertRaises(ValueError):
            PackageDefinition.from_mapping("zlib", {"variants": {"all": {"flags": "-O2"}}}, base_dir=Path("/work"))

    def test_split_versioned_name(self) -> None:
        self.assertEqual(split_versioned_name("freetype-2.4.10"), ("freetype", "2.4.10"))
        self.assertEqual(split_versioned_name("boost_1_43_0"), ("boost", "1_43_0"))
        self.assertEqual(split_versioned_name("OpenCV-2.4.2"), ("OpenCV", "2.4.2"))
        self.assertEqual(split_versioned_name("dream"), ("dream", None))

    def test_layer_overlays_variant_on_package(self) -> None:
        package = PackageDefinition(
            name="libvorbis-1.3.3",
            source_directory=Path("/src/libvorbis"),
            variants={
                "all": Variant(
                    "all",
                    environment={"CFLAGS": "-DVARIANT", "CC": "clang"},
                    definitions={"WITH_OGG": "ON"},
                )
            },
            environment={"CFLAGS": "-DPACKAGE", "CC": "gcc"},
        )
        layer = package.layer(package.variants["all"], policies=MergePolicies.defaults())
        self.assertEqual(layer.name, "package:libvorbis-1.3.3")
        self.assertEqual(layer.environment["CFLAGS"], "-DPACKAGE -DVARIANT")
        self.assertEqual(layer.environment["CC"], "clang")
        self.assertEqual(layer.definitions, {"WITH_OGG": "ON"})


class PackageBuildTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.workspace = Path(self.temp_dir.name)
        self.source = self.workspace / "freetype-2.4.10"
        self.source.mkdir()
        self.configuration = BuildConfiguration(
            install_prefix=Path("/opt/dream"),
            environment={"CC": "clang", "CFLAGS": "-O2"},
            extra_configure_args=["--host=arm-eabi"],
        )
        self.console = Console("none")

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _package(self, variant: Variant) -> PackageDefinition:
        return PackageDefinition(
            name="freetype-2.4.10",
            source_directory=self.source,
            variants={variant.selector: variant},
        )

    def test_autoconf_sequence_without_makefile(self) -> None:
        package = self._package(Variant("all", configure_args=["--enable-static=yes"]))
        runner = RecordingCommandRunner()
        package.build(_platform(), self.configuration, runner, console=self.console)

        self.assertEqual(
            [record.command for record in runner.commands],
            [
                ["./configure", "--prefix=/opt/dream", "--enable-static=yes", "--host=arm-eabi"],
                ["make"],
                ["make", "install"],
            ],
        )
        self.assertTrue(all(record.cwd == str(self.source) for record in runner.commands))
        self.assertEqual(runner.commands[0].env, {"CC": "clang", "CFLAGS": "-O2"})

    def test_autoconf_cleans_configured_tree(self) -> None:
        (self.source / "Makefile").write_text("all:\n")
        (self.source / "config.mk").write_text("stale\n")
        package = self._package(Variant("all", clean="distclean", clean_files=["config.mk"]))
        runner = RecordingCommandRunner()
        package.build(_platform(), self.configuration, runner, console=self.console)

        self.assertEqual(runner.commands[0].command, ["make", "distclean"])
        self.assertEqual(runner.commands[1].command[0], "./configure")
        self.assertFalse((self.source / "config.mk").exists())

    def test_failed_step_stops_the_build(self) -> None:
        package = self._package(Variant("all"))
        runner = RecordingCommandRunner({"make": 2})
        with self.assertRaises(BuildStepFailed) as ctx:
            package.build(_platform(), self.configuration, runner, console=self.console)

        self.assertEqual(ctx.exception.package, "freetype-2.4.10")
        self.assertEqual(ctx.exception.step, "compile")
        self.assertEqual(ctx.exception.exit_code, 2)
        self.assertIn("simulated failure", ctx.exception.output)
        self.assertEqual([record.command[0] for record in runner.commands], ["./configure", "make"])

    def test_cmake_recreates_build_directory(self) -> None:
        build_dir = self.source / "build"
        build_dir.mkdir()
        (build_dir / "CMakeCache.txt").write_text("stale\n")
        package = self._package(Variant("all", recipe="cmake"))
        configuration = BuildConfiguration(
            install_prefix=Path("/opt/dream"),
            definitions={"BUILD_SHARED_LIBS": False, "CMAKE_C_COMPILER_WORKS": "TRUE"},
        )
        runner = RecordingCommandRunner()
        package.build(_platform(), configuration, runner, console=self.console)

        self.assertTrue(build_dir.is_dir())
        self.assertFalse((build_dir / "CMakeCache.txt").exists())
        self.assertEqual(
            runner.commands[0].command,
            [
                "cmake",
                "-G",
                "Unix Makefiles",
                "-DCMAKE_INSTALL_PREFIX:PATH=/opt/dream",
                "-DBUILD_SHARED_LIBS=OFF",
                "-DCMAKE_C_COMPILER_WORKS=TRUE",
                "..",
            ],
        )
        self.assertEqual(runner.commands[0].cwd, str(build_dir))
        self.assertEqual([record.command for record in runner.commands[1:]], [["make"], ["make", "install"]])

    def test_bjam_arguments_resolve_platform_placeholders(self) -> None:
        (self.source / "bjam").write_text("")
        package = self._package(
            Variant(
                "all",
                recipe="bjam",
                configure_args=["--user-config={{package.source}}/iphone.jam", "macosx-version=iphone-{{platform.sdk_version}}"],
            )
        )
        runner = RecordingCommandRunner()
        package.build(_platform("darwin_iphoneos", sdk_version="5.0"), self.configuration, runner, console=self.console)

        self.assertEqual(
            [record.command for record in runner.commands],
            [
                [
                    str(self.source / "bjam"),
                    "--prefix=/opt/dream",
                    f"--user-config={self.source}/iphone.jam",
                    "macosx-version=iphone-5.0",
                    "install",
                ]
            ],
        )

    def test_bjam_bootstraps_when_missing(self) -> None:
        package = self._package(Variant("all", recipe="bjam"))
        runner = RecordingCommandRunner()
        package.build(_platform(), self.configuration, runner, console=self.console)
        self.assertEqual(runner.commands[0].command, ["./bootstrap.sh"])

    def test_dry_run_leaves_filesystem_untouched(self) -> None:
        build_dir = self.source / "build"
        build_dir.mkdir()
        (build_dir / "CMakeCache.txt").write_text("stale\n")
        package = self._package(Variant("all", recipe="cmake"))
        runner = RecordingCommandRunner()
        with redirect_stdout(io.StringIO()) as output:
            package.build(_platform(), self.configuration, runner, console=Console("none", dry_run=True))
        self.assertIn("Would remove", output.getvalue())
        self.assertTrue((build_dir / "CMakeCache.txt").exists())
        self.assertEqual(len(runner.commands), 3)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

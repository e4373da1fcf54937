from __future__ import annotations

from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
import io
import json
import tempfile
import textwrap
import unittest

from core.command_runner import RecordingCommandRunner
from extbuild.build import BuildEngine, BuildOptions
from extbuild.config_loader import ConfigurationStore
from extbuild.console import Console
from extbuild.errors import ConfigurationError, ToolchainUnavailable, UnknownPlatform
from extbuild.platforms import HostContext


class BuildEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.workspace = Path(self.temp_dir.name)
        config_dir = self.workspace / "config"
        packages_dir = config_dir / "packages"
        targets_dir = config_dir / "targets"
        packages_dir.mkdir(parents=True)
        targets_dir.mkdir()

        (config_dir / "config.toml").write_text(
            textwrap.dedent(
                """
                [global]
                default_platform = "testbox"

                [global.environment]
                CFLAGS = "-O2"
                """
            )
        )
        (config_dir / "platforms.toml").write_text(
            textwrap.dedent(
                """
                [platforms.testbox]
                cflags = ["-fPIC"]
                configure_args = ["--host=test-eabi"]
                capabilities = { windowing = "x11" }
                provides = ["Language/C++11"]

                [platforms.remote]
                hosts = ["darwin"]
                """
            )
        )
        for name, depends in (("alpha", []), ("beta", ["alpha"]), ("gamma", ["beta", "Language/C++11"])):
            (packages_dir / f"{name}.toml").write_text(
                textwrap.dedent(
                    f"""
                    [package]
                    depends = {json.dumps(depends)}

                    [package.environment]
                    CFLAGS = "-D{name.upper()}"

                    [variants.all]
                    recipe = "make"
                    build_args = ["{name}"]
                    """
                )
            )
        (targets_dir / "dream.toml").write_text(
            textwrap.dedent(
                """
                [target]
                depends = ["gamma"]
                directories = ["source"]

                [target.components]
                "windowing=x11" = ["source/Dream-X11"]
                "windowing=uikit" = ["source/Dream-UIKit"]
                """
            )
        )
        self.store = ConfigurationStore.from_directory(self.workspace)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _engine(self, runner: RecordingCommandRunner, *, dry_run: bool = False) -> BuildEngine:
        return BuildEngine(
            store=self.store,
            command_runner=runner,
            console=Console("none", dry_run=dry_run),
            host=HostContext("linux"),
            probe_runner=RecordingCommandRunner(),
        )

    def test_builds_packages_in_dependency_order(self) -> None:
        runner = RecordingCommandRunner()
        report = self._engine(runner).install("gamma")

        self.assertTrue(report.ok)
        self.assertEqual(report.succeeded, ["alpha", "beta", "gamma"])
        self.assertEqual(
            [record.command for record in runner.commands if record.command[0] == "make" and len(record.command) == 2][:3],
            [["make", "alpha"], ["make", "beta"], ["make", "gamma"]],
        )
        self.assertTrue((self.workspace / "build" / "testbox").is_dir())

    def test_layers_merge_into_command_environment(self) -> None:
        runner = RecordingCommandRunner()
        self._engine(runner).install("alpha")
        self.assertEqual(runner.commands[0].env["CFLAGS"], "-O2 -fPIC -DALPHA")
        self.assertEqual(runner.commands[0].env["LDFLAGS"], "-fPIC")
        self.assertEqual(runner.commands[0].cwd, str(self.workspace / "alpha"))

    def test_failure_stops_and_reports_progress(self) -> None:
        runner = RecordingCommandRunner({"make beta": 2})
        report = self._engine(runner).install("gamma")

        self.assertFalse(report.ok)
        self.assertEqual(report.succeeded, ["alpha"])
        assert report.failure is not None
        self.assertEqual(report.failure.package, "beta")
        self.assertEqual(report.failure.step, "compile")
        self.assertEqual(report.failure.exit_code, 2)
        self.assertNotIn(["make", "gamma"], [record.command for record in runner.commands])

    def test_target_builds_after_packages(self) -> None:
        runner = RecordingCommandRunner()
        engine = self._engine(runner)
        plan = engine.plan(BuildOptions(name="dream"))

        self.assertEqual([entry.package.name for entry in plan.packages], ["alpha", "beta", "gamma"])
        self.assertEqual(plan.target_configuration.extra_configure_args, ["--host=test-eabi"])
        cmake_dirs = [
            Path(step.invocation.working_directory)
            for step in plan.target_steps
            if step.phase == "configure"
        ]
        self.assertEqual(
            cmake_dirs,
            [self.workspace / "source" / "build", self.workspace / "source" / "Dream-X11" / "build"],
        )

        report = engine.execute(plan)
        self.assertEqual(report.succeeded, ["alpha", "beta", "gamma", "dream"])

    def test_dry_run_records_without_touching_disk(self) -> None:
        runner = RecordingCommandRunner()
        report = self._engine(runner, dry_run=True).install("dream")
        self.assertTrue(report.ok)
        self.assertFalse((self.workspace / "build").exists())
        self.assertFalse((self.workspace / "source" / "build").exists())
        self.assertTrue(any(record.command[0] == "cmake" for record in runner.commands))

    def test_prefix_override(self) -> None:
        runner = RecordingCommandRunner()
        plan = self._engine(runner).plan(BuildOptions(name="alpha", prefix="{{workspace}}/stage"))
        self.assertEqual(plan.platform.install_prefix, self.workspace / "stage")
        self.assertIn(f"PREFIX={self.workspace / 'stage'}", plan.packages[0].steps[-1].invocation.arguments)

    def test_serialize_plan(self) -> None:
        engine = self._engine(RecordingCommandRunner())
        data = json.loads(engine.serialize_plan(engine.plan(BuildOptions(name="dream"))))
        self.assertEqual(data["platform"]["name"], "testbox")
        self.assertEqual([entry["name"] for entry in data["packages"]], ["alpha", "beta", "gamma"])
        self.assertEqual(data["packages"][0]["configuration"]["layers"], ["global", "platform:testbox", "package:alpha"])
        self.assertEqual(data["target"]["directories"], ["source", "source/Dream-X11"])

    def test_platform_errors(self) -> None:
        engine = self._engine(RecordingCommandRunner())
        with self.assertRaises(UnknownPlatform):
            engine.plan(BuildOptions(name="alpha", platform="amiga"))
        with self.assertRaises(ToolchainUnavailable):
            engine.plan(BuildOptions(name="alpha", platform="remote"))

    def test_no_platform_available(self) -> None:
        self.store.global_config.default_platform = None
        engine = BuildEngine(
            store=self.store,
            command_runner=RecordingCommandRunner(),
            console=Console("none"),
            host=HostContext("haiku"),
            probe_runner=RecordingCommandRunner(),
        )
        with self.assertRaises(ConfigurationError):
            engine.plan(BuildOptions(name="alpha"))

    def test_console_reports_failure(self) -> None:
        engine = BuildEngine(
            store=self.store,
            command_runner=RecordingCommandRunner({"make alpha": 1}),
            console=Console("info"),
            host=HostContext("linux"),
            probe_runner=RecordingCommandRunner(),
        )
        stdout, stderr = io.StringIO(), io.StringIO()
        with redirect_stdout(stdout), redirect_stderr(stderr):
            report = engine.install("alpha")
        self.assertFalse(report.ok)
        self.assertIn("[INFO] Building alpha [all] for testbox", stdout.getvalue())
        self.assertIn("[ERROR] Package 'alpha' failed during 'compile' (exit code 1)", stderr.getvalue())


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

"""Command line interface for the extbuild orchestrator."""
from __future__ import annotations

from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Iterable, List
import sys

from core.command_runner import RecordingCommandRunner, SubprocessCommandRunner
from core.template import TemplateError

from .build import BuildEngine, BuildOptions, BuildReport
from .config_loader import ConfigurationStore, config_directories
from .console import Console
from .errors import ExtbuildError
from .validation import validate_store_structure


EXIT_OK = 0
EXIT_BUILD_FAILED = 1
EXIT_CONFIGURATION_ERROR = 2


def _make_runner(dry_run: bool, timeout: float | None) -> SubprocessCommandRunner | RecordingCommandRunner:
    return RecordingCommandRunner() if dry_run else SubprocessCommandRunner(timeout=timeout)


def _load_configuration_store(args: Namespace, workspace: Path) -> ConfigurationStore:
    cli_dirs: Iterable[str] = getattr(args, "config_dirs", [])
    return ConfigurationStore.from_directories(workspace, config_directories(workspace, cli_dirs))


def _emit_dry_run_output(runner: RecordingCommandRunner, *, workspace: Path) -> None:
    for line in runner.iter_formatted(workspace=workspace):
        print(line)


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(prog="extbuild", description="Cross-platform dependency build orchestrator")
    parser.add_argument(
        "-C",
        "--config-dir",
        dest="config_dirs",
        action="append",
        default=[],
        metavar="PATH",
        help="Additional configuration directory (repeat or separate with PATH separator)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser = subparsers.add_parser("build", help="Build a target or package with its dependencies")
    build_parser.add_argument("name", help="Target or package name to build")
    build_parser.add_argument("-P", "--platform", help="Platform to build for (defaults to the host platform)")
    build_parser.add_argument("--prefix", help="Override the install prefix")
    build_parser.add_argument("-n", "--dry-run", action="store_true", help="Print commands without executing them")
    build_parser.add_argument("--timeout", type=float, help="Abort any single command after this many seconds")
    build_parser.add_argument("--verbose", action="store_true", help="Enable verbose output")
    build_parser.add_argument("--show-config", action="store_true", help="Print the resolved build plan as JSON")

    list_parser = subparsers.add_parser("list", help="List platforms, packages and targets")
    list_parser.add_argument("--platforms", action="store_true", help="List platforms only")
    list_parser.add_argument("--packages", action="store_true", help="List packages only")
    list_parser.add_argument("--targets", action="store_true", help="List targets only")

    subparsers.add_parser("validate", help="Validate configuration files")

    return parser.parse_args(list(argv))


def main(argv: Iterable[str] | None = None, *, workspace: Path | None = None) -> int:
    args = _parse_arguments(sys.argv[1:] if argv is None else argv)
    workspace = workspace or Path.cwd()

    try:
        if args.command == "build":
            return _handle_build(args, workspace)
        if args.command == "validate":
            return _handle_validate(args, workspace)
        if args.command == "list":
            return _handle_list(args, workspace)
    except (ExtbuildError, TemplateError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_CONFIGURATION_ERROR
    raise ValueError(f"Unknown command: {args.command}")


def _report_failure(report: BuildReport) -> None:
    failure = report.failure
    if failure is None:
        return
    print(f"Build failed in package '{failure.package}' during '{failure.step}' (exit code {failure.exit_code})")
    if report.succeeded:
        print(f"Already installed: {', '.join(report.succeeded)}")
    if failure.output:
        print("Output:")
        print(failure.output.rstrip())


def _handle_build(args: Namespace, workspace: Path) -> int:
    store = _load_configuration_store(args, workspace)
    level = "debug" if args.verbose else store.global_config.log_level
    console = Console(level, dry_run=args.dry_run)
    timeout = args.timeout if args.timeout is not None else store.global_config.command_timeout

    options = BuildOptions(
        name=args.name,
        platform=args.platform,
        prefix=args.prefix,
        dry_run=args.dry_run,
        timeout=timeout,
        verbose=args.verbose,
        show_config=args.show_config,
    )
    runner = _make_runner(args.dry_run, timeout)
    engine = BuildEngine(store=store, command_runner=runner, console=console)

    plan = engine.plan(options)
    if args.show_config:
        print(engine.serialize_plan(plan))

    report = engine.execute(plan)
    if args.dry_run and isinstance(runner, RecordingCommandRunner):
        _emit_dry_run_output(runner, workspace=workspace)

    if not report.ok:
        _report_failure(report)
        return EXIT_BUILD_FAILED

    console.info(f"Installed {', '.join(report.succeeded) or 'nothing'} into {plan.platform.install_prefix}")
    return EXIT_OK


def _handle_validate(args: Namespace, workspace: Path) -> int:
    store = _load_configuration_store(args, workspace)
    errors = validate_store_structure(store)
    if errors:
        print("Validation failed:")
        for message in errors:
            print(f"  {message}")
        return EXIT_BUILD_FAILED

    print("Validation successful")
    return EXIT_OK


def _handle_list(args: Namespace, workspace: Path) -> int:
    store = _load_configuration_store(args, workspace)
    show_all = not (args.platforms or args.packages or args.targets)
    sections: List[tuple[str, List[dict[str, str]]]] = []

    if show_all or args.platforms:
        registry = store.platform_registry()
        rows = []
        for name in registry.names():
            definition = registry.definition(name)
            rows.append(
                {
                    "Platform": name,
                    "Family": definition.family,
                    "Available": "yes" if registry.is_available(name) else "no",
                    "Source": definition.source,
                }
            )
        sections.append(("Platforms", rows))

    if show_all or args.packages:
        rows = []
        for name in sorted(store.packages):
            package = store.packages[name]
            rows.append(
                {
                    "Package": name,
                    "Variants": ", ".join(package.variants),
                    "Depends": ", ".join(package.depends),
                    "Provides": ", ".join(package.provides),
                }
            )
        sections.append(("Packages", rows))

    if show_all or args.targets:
        rows = []
        for name in sorted(store.targets):
            target = store.targets[name]
            rows.append(
                {
                    "Target": name,
                    "Recipe": target.recipe,
                    "Depends": ", ".join(target.dependencies),
                    "Directories": ", ".join(target.directories),
                }
            )
        sections.append(("Targets", rows))

    for index, (title, rows) in enumerate(sections):
        if index:
            print()
        _print_table(title, rows)
    return EXIT_OK


def _print_table(title: str, rows: List[dict[str, str]]) -> None:
    if not rows:
        print(f"No {title.lower()} configured")
        return
    headers = list(rows[0].keys())
    widths = {header: len(header) for header in headers}
    for row in rows:
        for header in headers:
            widths[header] = max(widths[header], len(row.get(header, "")))

    def _format(row: dict[str, str]) -> str:
        return "  ".join(row.get(header, "").ljust(widths[header]) for header in headers).rstrip()

    print(_format({header: header for header in headers}))
    print("  ".join("-" * widths[header] for header in headers))
    for row in rows:
        print(_format(row))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

"""Build planning and execution for targets and packages."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List
import json

from core.command_runner import CommandResult, CommandRunner, SubprocessCommandRunner

from .config_loader import ConfigurationStore
from .console import Console
from .environment import BuildConfiguration, merge
from .errors import BuildStepFailed, ConfigurationError
from .packages import PackageDefinition, Variant
from .platforms import HostContext, Platform
from .recipes import BuildStep, run_steps, steps_to_mapping
from .targets import TargetDefinition


@dataclass(slots=True)
class BuildOptions:
    name: str
    platform: str | None = None
    prefix: str | None = None
    dry_run: bool = False
    timeout: float | None = None
    verbose: bool = False
    show_config: bool = False


@dataclass(slots=True)
class PackagePlan:
    package: PackageDefinition
    variant: Variant
    configuration: BuildConfiguration
    steps: List[BuildStep]


@dataclass(slots=True)
class BuildPlan:
    name: str
    platform: Platform
    packages: List[PackagePlan]
    target: TargetDefinition | None = None
    target_configuration: BuildConfiguration | None = None
    target_steps: List[BuildStep] = field(default_factory=list)
    timeout: float | None = None


@dataclass(slots=True)
class BuildReport:
    """Outcome of one build run; ``succeeded`` lists finished packages in order."""

    succeeded: List[str] = field(default_factory=list)
    failure: BuildStepFailed | None = None
    results: List[CommandResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failure is None


class BuildEngine:
    def __init__(
        self,
        *,
        store: ConfigurationStore,
        command_runner: CommandRunner,
        console: Console,
        host: HostContext | None = None,
        probe_runner: CommandRunner | None = None,
    ) -> None:
        self._store = store
        self._command_runner = command_runner
        self._console = console
        self._host = host
        # Probes always run for real, dry run or not.
        self._probe_runner = probe_runner or SubprocessCommandRunner()

    def _select_platform(self, options: BuildOptions) -> Platform:
        registry = self._store.platform_registry(
            runner=self._probe_runner,
            host=self._host,
            prefix=options.prefix,
        )
        name = options.platform or self._store.global_config.default_platform or registry.host_default()
        if not name:
            raise ConfigurationError(
                f"No platform given and no default platform for host '{registry.host.os_name}'"
            )
        for platform_name, sources in registry.overridden.items():
            self._console.debug(f"Platform '{platform_name}' overrides definitions from: {', '.join(sources)}")
        return registry.select(name)

    def plan(self, options: BuildOptions) -> BuildPlan:
        platform = self._select_platform(options)
        self._console.debug(f"Selected platform {platform.name} (prefix {platform.install_prefix})")

        store = self._store
        graph = store.dependency_graph()
        target = store.targets.get(options.name)
        ordered = graph.resolve_order(target if target is not None else options.name, platform=platform)

        global_layer = store.global_config.layer()
        platform_layer = platform.layer()

        package_plans: List[PackagePlan] = []
        for package in ordered:
            variant = package.select_variant(platform)
            configuration = merge(
                global_layer,
                platform_layer,
                package.layer(variant, policies=store.policies),
                install_prefix=platform.install_prefix,
                policies=store.policies,
                variables=platform.variables,
            )
            package_plans.append(
                PackagePlan(
                    package=package,
                    variant=variant,
                    configuration=configuration,
                    steps=package.steps(platform, configuration, variant=variant),
                )
            )

        plan = BuildPlan(
            name=options.name,
            platform=platform,
            packages=package_plans,
            timeout=options.timeout if options.timeout is not None else store.global_config.command_timeout,
        )
        if target is not None:
            configuration = merge(
                global_layer,
                platform_layer,
                target.layer(),
                install_prefix=platform.install_prefix,
                policies=store.policies,
                variables=platform.variables,
            )
            plan.target = target
            plan.target_configuration = configuration
            plan.target_steps = target.steps(platform, configuration)
        return plan

    def execute(self, plan: BuildPlan) -> BuildReport:
        """Run every package and then the target, stopping at the first failure."""

        report = BuildReport()
        units: List[tuple[str, str, List[BuildStep]]] = [
            (entry.package.name, entry.variant.selector, entry.steps) for entry in plan.packages
        ]
        if plan.target is not None:
            units.append((plan.target.name, plan.target.recipe, plan.target_steps))

        if not self._console.dry_run:
            plan.platform.install_prefix.mkdir(parents=True, exist_ok=True)

        for name, variant, steps in units:
            self._console.info(f"Building {name} [{variant}] for {plan.platform.name}")
            try:
                results = run_steps(
                    name,
                    steps,
                    self._command_runner,
                    console=self._console,
                    stream=not self._console.dry_run,
                    timeout=plan.timeout,
                )
            except BuildStepFailed as exc:
                report.failure = exc
                self._console.error(str(exc))
                return report
            report.results.extend(results)
            report.succeeded.append(name)
        return report

    def install(self, target: str, options: BuildOptions | None = None) -> BuildReport:
        """Build ``target`` (a target or a package) with all of its dependencies."""

        effective = options or BuildOptions(name=target)
        if effective.name != target:
            effective = BuildOptions(
                name=target,
                platform=effective.platform,
                prefix=effective.prefix,
                dry_run=effective.dry_run,
                timeout=effective.timeout,
                verbose=effective.verbose,
                show_config=effective.show_config,
            )
        return self.execute(self.plan(effective))

    def serialize_plan(self, plan: BuildPlan) -> str:
        data: Dict[str, Any] = {
            "name": plan.name,
            "platform": {
                "name": plan.platform.name,
                "family": plan.platform.family,
                "prefix": str(plan.platform.install_prefix),
                "sdk": str(plan.platform.sdk_path) if plan.platform.sdk_path else None,
                "sdk_version": plan.platform.sdk_version,
                "capabilities": dict(plan.platform.capabilities),
            },
            "packages": [
                {
                    "name": entry.package.name,
                    "variant": entry.variant.selector,
                    "recipe": entry.variant.recipe,
                    "configuration": entry.configuration.to_mapping(),
                    "steps": steps_to_mapping(entry.steps),
                }
                for entry in plan.packages
            ],
        }
        if plan.target is not None and plan.target_configuration is not None:
            data["target"] = {
                "name": plan.target.name,
                "recipe": plan.target.recipe,
                "directories": plan.target.build_directories(plan.platform),
                "provides": plan.target.provides,
                "configuration": plan.target_configuration.to_mapping(),
                "steps": steps_to_mapping(plan.target_steps),
            }
        return json.dumps(data, indent=2)


__all__ = [
    "BuildEngine",
    "BuildOptions",
    "BuildPlan",
    "BuildReport",
    "PackagePlan",
]

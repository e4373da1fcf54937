"""First-party targets and dependency ordering."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping

from core.config_loader import normalize_string_list, normalize_string_mapping

from .environment import BuildConfiguration, ConfigLayer
from .errors import ConfigurationError, CyclicDependency, UnknownDependency, UnknownTarget
from .packages import PackageDefinition
from .platforms import Platform
from .recipes import BuildStep, RecipeRequest, generate_steps


PLATFORM_REFERENCE = "platform"


@dataclass(slots=True)
class TargetDefinition:
    """A first-party library built from its own directories after its dependencies."""

    name: str
    root: Path
    dependencies: List[str] = field(default_factory=list)
    provides: Dict[str, List[str]] = field(default_factory=dict)
    directories: List[str] = field(default_factory=list)
    components: Dict[str, List[str]] = field(default_factory=dict)
    recipe: str = "cmake"
    definitions: Dict[str, Any] = field(default_factory=dict)
    configure_args: List[str] = field(default_factory=list)
    environment: Dict[str, Any] = field(default_factory=dict)
    replace: List[str] = field(default_factory=list)
    description: str | None = None
    source: str | None = None

    @classmethod
    def from_mapping(
        cls,
        name: str,
        data: Mapping[str, Any],
        *,
        base_dir: Path,
        source: str | None = None,
    ) -> "TargetDefinition":
        if not isinstance(data, Mapping):
            raise TypeError(f"Target '{name}' definition must be a mapping")

        allowed_keys = {
            "description",
            "root",
            "depends",
            "provides",
            "directories",
            "components",
            "recipe",
            "definitions",
            "configure_args",
            "environment",
            "replace",
        }
        unknown = {str(key) for key in data.keys() if str(key) not in allowed_keys}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ValueError(f"Target '{name}' contains unknown keys: {joined}")

        root = Path(str(data.get("root", "."))).expanduser()
        if not root.is_absolute():
            root = base_dir / root

        provides = {
            key: normalize_string_list(value, field_name=f"{name}.provides.{key}")
            for key, value in normalize_string_mapping(data.get("provides"), field_name=f"{name}.provides").items()
        }
        components: Dict[str, List[str]] = {}
        for key, value in normalize_string_mapping(data.get("components"), field_name=f"{name}.components").items():
            if "=" not in key:
                raise ValueError(f"Target '{name}' component '{key}' must be keyed as '<capability>=<value>'")
            components[key] = normalize_string_list(value, field_name=f"{name}.components.{key}")

        description = data.get("description")
        return cls(
            name=name,
            root=root,
            dependencies=normalize_string_list(data.get("depends"), field_name=f"{name}.depends"),
            provides=provides,
            directories=normalize_string_list(data.get("directories"), field_name=f"{name}.directories"),
            components=components,
            recipe=str(data.get("recipe", "cmake")).strip().lower(),
            definitions=normalize_string_mapping(data.get("definitions"), field_name=f"{name}.definitions"),
            configure_args=normalize_string_list(data.get("configure_args"), field_name=f"{name}.configure_args"),
            environment=normalize_string_mapping(data.get("environment"), field_name=f"{name}.environment"),
            replace=normalize_string_list(data.get("replace"), field_name=f"{name}.replace"),
            description=str(description) if description is not None else None,
            source=source,
        )

    def component_directories(self, platform: Platform) -> List[str]:
        """Directories contributed by components whose capability tag the platform carries."""

        directories: List[str] = []
        for capability, value in platform.capabilities.items():
            directories.extend(self.components.get(f"{capability}={value}", []))
        return directories

    def build_directories(self, platform: Platform) -> List[str]:
        return [*self.directories, *self.component_directories(platform)]

    def layer(self) -> ConfigLayer:
        return ConfigLayer.create(
            f"target:{self.name}",
            environment=self.environment,
            definitions=self.definitions,
            replace=self.replace,
        )

    def steps(self, platform: Platform, configuration: BuildConfiguration) -> List[BuildStep]:
        steps: List[BuildStep] = []
        context = {
            "target": {"name": self.name, "root": str(self.root)},
            "package": {"name": self.name, "base_name": self.name, "version": "", "source": str(self.root)},
        }
        for directory in self.build_directories(platform):
            request = RecipeRequest(
                owner=f"{self.name}/{directory}",
                source_dir=self.root / directory,
                platform=platform,
                configuration=configuration,
                definitions=dict(configuration.definitions),
                configure_args=list(self.configure_args),
                context=context,
            )
            steps.extend(generate_steps(self.recipe, request))
        return steps


class DependencyGraph:
    """Resolves dependency references between packages and targets."""

    def __init__(
        self,
        packages: Mapping[str, PackageDefinition],
        targets: Mapping[str, TargetDefinition] | None = None,
    ) -> None:
        self.packages = dict(packages)
        self.targets = dict(targets or {})
        self._by_base_name: Dict[str, List[PackageDefinition]] = {}
        self._by_provides: Dict[str, List[PackageDefinition]] = {}
        for package in self.packages.values():
            self._by_base_name.setdefault(package.base_name, []).append(package)
            for provided in package.provides:
                self._by_provides.setdefault(provided, []).append(package)

    def lookup(self, reference: str) -> PackageDefinition | None:
        """Find the package satisfying ``reference`` by name, unversioned name or provides."""

        package = self.packages.get(reference)
        if package is not None:
            return package
        for index in (self._by_base_name, self._by_provides):
            candidates = index.get(reference)
            if not candidates:
                continue
            if len(candidates) > 1:
                names = ", ".join(sorted(candidate.name for candidate in candidates))
                raise ConfigurationError(f"Dependency '{reference}' is ambiguous: {names}")
            return candidates[0]
        return None

    def resolve_order(
        self,
        target: TargetDefinition | PackageDefinition | str,
        *,
        platform: Platform | None = None,
    ) -> List[PackageDefinition]:
        """Return packages in build order: every dependency precedes its dependents.

        A package named directly is included as the last entry. References
        satisfied by ``platform`` are skipped.
        """

        root_name, root_package, root_dependencies = self._root(target)
        satisfied = self._platform_references(platform)

        visiting: List[str] = []
        visited: set[str] = set()
        order: List[PackageDefinition] = []

        def visit_references(references: Iterable[str], required_by: str) -> None:
            for reference in references:
                if reference in satisfied:
                    continue
                package = self.lookup(reference)
                if package is None:
                    raise UnknownDependency(reference, required_by=required_by)
                visit(package)

        def visit(package: PackageDefinition) -> None:
            if package.name in visiting:
                start = visiting.index(package.name)
                raise CyclicDependency([*visiting[start:], package.name])
            if package.name in visited:
                return

            visiting.append(package.name)
            visit_references(package.depends, package.name)
            visiting.pop()
            visited.add(package.name)
            order.append(package)

        if root_package is not None:
            visit(root_package)
        else:
            visit_references(root_dependencies, root_name)
        return order

    def _root(
        self, target: TargetDefinition | PackageDefinition | str
    ) -> tuple[str, PackageDefinition | None, List[str]]:
        if isinstance(target, TargetDefinition):
            return target.name, None, list(target.dependencies)
        if isinstance(target, PackageDefinition):
            return target.name, target, list(target.depends)
        if target in self.targets:
            definition = self.targets[target]
            return definition.name, None, list(definition.dependencies)
        if target in self.packages:
            package = self.packages[target]
            return package.name, package, list(package.depends)
        raise UnknownTarget(target, [*self.targets, *self.packages])

    @staticmethod
    def _platform_references(platform: Platform | None) -> set[str]:
        satisfied = {PLATFORM_REFERENCE}
        if platform is not None:
            satisfied.update(platform.provides)
            satisfied.add(platform.name)
        return satisfied


__all__ = ["DependencyGraph", "PLATFORM_REFERENCE", "TargetDefinition"]

"""Loading of configuration directories into platforms, packages and targets."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping
import os

from core.command_runner import CommandRunner
from core.config_loader import (
    ConfigFileError,
    layered_directories,
    load_config_file,
    merge_mappings,
    normalize_string_list,
    normalize_string_mapping,
)

from .console import Console
from .environment import ConfigLayer, MergePolicies
from .errors import ConfigurationError, UnknownPackage, UnknownTarget
from .packages import PackageDefinition
from .platforms import (
    DEFAULT_PREFIX_TEMPLATE,
    HostContext,
    PlatformDefinition,
    PlatformRegistry,
    builtin_definitions,
)
from .targets import DependencyGraph, TargetDefinition


CONFIG_DIR_ENV = "EXTBUILD_CONFIG_DIR"


@dataclass(slots=True)
class GlobalConfig:
    log_level: str = "info"
    default_platform: str | None = None
    prefix: str = DEFAULT_PREFIX_TEMPLATE
    command_timeout: float | None = None
    environment: Dict[str, Any] = field(default_factory=dict)
    replace: List[str] = field(default_factory=list)
    configure_args: List[str] = field(default_factory=list)
    definitions: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GlobalConfig":
        global_section = data.get("global", {}) if isinstance(data, Mapping) else {}
        if not isinstance(global_section, Mapping):
            raise TypeError("[global] must be a table")

        log_level = str(global_section.get("log_level", "info")).strip().lower()
        if log_level not in Console.LEVELS:
            raise ValueError(f"global.log_level '{log_level}' is not one of: {', '.join(Console.LEVELS)}")

        timeout_value = global_section.get("command_timeout")
        timeout: float | None = None
        if timeout_value is not None:
            timeout = float(timeout_value)
            if timeout <= 0:
                raise ValueError("global.command_timeout must be a positive number of seconds")

        default_platform = global_section.get("default_platform")
        return cls(
            log_level=log_level,
            default_platform=str(default_platform).strip() if default_platform else None,
            prefix=str(global_section.get("prefix", DEFAULT_PREFIX_TEMPLATE)),
            command_timeout=timeout,
            environment=normalize_string_mapping(global_section.get("environment"), field_name="global.environment"),
            replace=normalize_string_list(global_section.get("replace"), field_name="global.replace"),
            configure_args=normalize_string_list(
                global_section.get("configure_args"), field_name="global.configure_args"
            ),
            definitions=normalize_string_mapping(global_section.get("definitions"), field_name="global.definitions"),
        )

    def layer(self) -> ConfigLayer:
        return ConfigLayer.create(
            "global",
            environment=self.environment,
            configure_args=self.configure_args,
            definitions=self.definitions,
            replace=self.replace,
        )


def _split_config_values(values: Iterable[str]) -> List[str]:
    parts: List[str] = []
    for value in values:
        if not value:
            continue
        for segment in value.split(os.pathsep):
            trimmed = segment.strip()
            if trimmed:
                parts.append(trimmed)
    return parts


def config_directories(
    workspace: Path,
    cli_values: Iterable[str] = (),
    *,
    environ: Mapping[str, str] | None = None,
) -> List[Path]:
    """Return configuration directories in overlay order: default, environment, command line."""

    env = os.environ if environ is None else environ
    candidates: List[str] = [str(workspace / "config")]
    candidates.extend(_split_config_values([env.get(CONFIG_DIR_ENV, "")]))
    candidates.extend(_split_config_values(cli_values))
    return [Path(value) for value in candidates]


def _parse(factory: Callable[..., Any], name: str, body: Mapping[str, Any], *, root: Path, path: Path) -> Any:
    try:
        return factory(name, body, base_dir=root, source=str(path))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{path}: {exc}") from exc


def _definition_section(
    data: Mapping[str, Any], key: str, path: Path, *, extra: Iterable[str] = ()
) -> tuple[str, Dict[str, Any]]:
    unknown = {str(name) for name in data.keys()} - {key, *extra}
    if unknown:
        raise ConfigurationError(f"{path}: unknown top-level keys: {', '.join(sorted(unknown))}")
    section = data.get(key, {})
    if not isinstance(section, Mapping):
        raise ConfigurationError(f"{path}: [{key}] must be a table")
    body = dict(section)
    name = str(body.pop("name", path.stem)).strip()
    if not name:
        raise ConfigurationError(f"{path}: {key}.name must not be empty")
    for extra_key in extra:
        if extra_key in data:
            body[extra_key] = data[extra_key]
    return name, body


@dataclass(slots=True)
class ConfigurationStore:
    root: Path
    global_config: GlobalConfig
    policies: MergePolicies
    platform_sources: List[List[PlatformDefinition]] = field(default_factory=list)
    packages: Dict[str, PackageDefinition] = field(default_factory=dict)
    targets: Dict[str, TargetDefinition] = field(default_factory=dict)
    config_dirs: tuple[Path, ...] = field(default_factory=tuple)

    @classmethod
    def from_directory(cls, root: Path) -> "ConfigurationStore":
        return cls.from_directories(root, [root / "config"])

    @classmethod
    def from_directories(cls, root: Path, directories: Iterable[Path]) -> "ConfigurationStore":
        layers, missing = layered_directories(root, directories)
        if not layers:
            missing_display = ", ".join(str(path) for path in missing) or "<none>"
            raise ConfigurationError(f"No configuration directories found. Missing: {missing_display}")

        global_data: Mapping[str, Any] = {}
        platform_sources: List[List[PlatformDefinition]] = [builtin_definitions()]
        packages: Dict[str, PackageDefinition] = {}
        targets: Dict[str, TargetDefinition] = {}

        try:
            for layer in layers:
                global_path = layer.top_level("config")
                if global_path is not None:
                    global_data = merge_mappings(global_data, load_config_file(global_path))

                platforms_path = layer.top_level("platforms")
                if platforms_path is not None:
                    platform_sources.append(cls._load_platforms(platforms_path))

                for path in layer.entries("packages"):
                    name, body = _definition_section(load_config_file(path), "package", path, extra=("variants",))
                    packages[name] = _parse(PackageDefinition.from_mapping, name, body, root=root, path=path)

                for path in layer.entries("targets"):
                    name, body = _definition_section(load_config_file(path), "target", path)
                    targets[name] = _parse(TargetDefinition.from_mapping, name, body, root=root, path=path)
        except ConfigFileError as exc:
            raise ConfigurationError(str(exc)) from exc

        try:
            global_config = GlobalConfig.from_mapping(global_data)
            policies = MergePolicies.from_mapping(normalize_string_mapping(global_data.get("merge"), field_name="merge"))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(str(exc)) from exc

        return cls(
            root=root,
            global_config=global_config,
            policies=policies,
            platform_sources=platform_sources,
            packages=packages,
            targets=targets,
            config_dirs=tuple(layer.path for layer in layers),
        )

    @staticmethod
    def _load_platforms(path: Path) -> List[PlatformDefinition]:
        data = load_config_file(path)
        section = data.get("platforms", data)
        if not isinstance(section, Mapping):
            raise ConfigurationError(f"{path}: [platforms] must be a table")
        definitions: List[PlatformDefinition] = []
        for raw_name, raw_value in section.items():
            try:
                definitions.append(PlatformDefinition.from_mapping(str(raw_name), raw_value, source=str(path)))
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(f"{path}: {exc}") from exc
        return definitions

    def platform_registry(
        self,
        *,
        runner: CommandRunner | None = None,
        host: HostContext | None = None,
        prefix: str | None = None,
    ) -> PlatformRegistry:
        """Build a fresh registry for one run; probe results live only as long as it does."""

        registry = PlatformRegistry(
            host=host,
            runner=runner,
            prefix=prefix or self.global_config.prefix,
            workspace=self.root,
        )
        for source in self.platform_sources:
            registry.register_source(source)
        return registry

    def dependency_graph(self) -> DependencyGraph:
        return DependencyGraph(self.packages, self.targets)

    def get_package(self, name: str) -> PackageDefinition:
        if name not in self.packages:
            raise UnknownPackage(name, self.packages)
        return self.packages[name]

    def get_target(self, name: str) -> TargetDefinition:
        if name not in self.targets:
            raise UnknownTarget(name, self.targets)
        return self.targets[name]


__all__ = [
    "CONFIG_DIR_ENV",
    "ConfigurationStore",
    "GlobalConfig",
    "config_directories",
]

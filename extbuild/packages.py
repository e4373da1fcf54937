"""Package definitions and platform-specific build variants."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping
import re
import shlex

from core.command_runner import CommandResult, CommandRunner
from core.config_loader import normalize_string_list, normalize_string_mapping

from .console import Console
from .environment import BuildConfiguration, ConfigLayer, MergePolicies
from .errors import ConfigurationError, NoMatchingVariant
from .platforms import Platform
from .recipes import BuildStep, RecipeRequest, generate_steps, run_steps, unpack_step


ALL_PLATFORMS = "all"
DEFAULT_RECIPE = "autoconf"

_VERSIONED_NAME = re.compile(r"^(?P<base>.+?)[-_](?P<version>\d[\w.]*)$")


def split_versioned_name(name: str) -> tuple[str, str | None]:
    """Split ``freetype-2.4.10`` into ``("freetype", "2.4.10")``."""

    match = _VERSIONED_NAME.match(name)
    if not match:
        return name, None
    return match.group("base"), match.group("version")


def _normalize_commands(value: Any, *, field_name: str) -> List[List[str]]:
    if value is None:
        return []
    if isinstance(value, str):
        return [shlex.split(value)]
    commands: List[List[str]] = []
    for item in value:
        if isinstance(item, str):
            commands.append(shlex.split(item))
        else:
            commands.append(normalize_string_list(item, field_name=field_name))
    return commands


@dataclass(slots=True)
class Variant:
    selector: str
    recipe: str = DEFAULT_RECIPE
    match: List[str] = field(default_factory=list)
    definitions: Dict[str, Any] = field(default_factory=dict)
    configure_args: List[str] = field(default_factory=list)
    build_args: List[str] = field(default_factory=list)
    install_args: List[str] = field(default_factory=list)
    prepare: List[List[str]] = field(default_factory=list)
    clean: str | None = None
    clean_files: List[str] = field(default_factory=list)
    build_directory: str = "build"
    environment: Dict[str, Any] = field(default_factory=dict)
    replace: List[str] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, package: str, selector: str, data: Mapping[str, Any]) -> "Variant":
        if not isinstance(data, Mapping):
            raise TypeError(f"Variant '{selector}' of package '{package}' must be a mapping")

        allowed_keys = {
            "recipe",
            "match",
            "definitions",
            "configure_args",
            "build_args",
            "install_args",
            "prepare",
            "clean",
            "clean_files",
            "build_directory",
            "environment",
            "replace",
        }
        unknown = {str(key) for key in data.keys() if str(key) not in allowed_keys}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ValueError(f"Variant '{selector}' of package '{package}' contains unknown keys: {joined}")

        label = f"{package}.variants.{selector}"
        clean = data.get("clean")
        return cls(
            selector=selector,
            recipe=str(data.get("recipe", DEFAULT_RECIPE)).strip().lower(),
            match=normalize_string_list(data.get("match"), field_name=f"{label}.match"),
            definitions=normalize_string_mapping(data.get("definitions"), field_name=f"{label}.definitions"),
            configure_args=normalize_string_list(data.get("configure_args"), field_name=f"{label}.configure_args"),
            build_args=normalize_string_list(data.get("build_args"), field_name=f"{label}.build_args"),
            install_args=normalize_string_list(data.get("install_args"), field_name=f"{label}.install_args"),
            prepare=_normalize_commands(data.get("prepare"), field_name=f"{label}.prepare"),
            clean=str(clean).strip() if clean is not None else None,
            clean_files=normalize_string_list(data.get("clean_files"), field_name=f"{label}.clean_files"),
            build_directory=str(data.get("build_directory", "build")),
            environment=normalize_string_mapping(data.get("environment"), field_name=f"{label}.environment"),
            replace=normalize_string_list(data.get("replace"), field_name=f"{label}.replace"),
        )

    @property
    def selectors(self) -> List[str]:
        return [self.selector, *self.match]


@dataclass(slots=True)
class PackageDefinition:
    """A third-party library and the variants that build it."""

    name: str
    source_directory: Path
    variants: Dict[str, Variant] = field(default_factory=dict)
    version: str | None = None
    description: str | None = None
    archive: Path | None = None
    depends: List[str] = field(default_factory=list)
    provides: List[str] = field(default_factory=list)
    environment: Dict[str, Any] = field(default_factory=dict)
    replace: List[str] = field(default_factory=list)
    source: str | None = None

    def __post_init__(self) -> None:
        claimed: Dict[str, str] = {}
        for key, variant in self.variants.items():
            for selector in variant.selectors:
                owner = claimed.get(selector)
                if owner is not None:
                    raise ConfigurationError(
                        f"Package '{self.name}': selector '{selector}' is claimed by variants '{owner}' and '{key}'"
                    )
                claimed[selector] = key
        if self.version is None:
            self.version = split_versioned_name(self.name)[1]

    @classmethod
    def from_mapping(
        cls,
        name: str,
        data: Mapping[str, Any],
        *,
        base_dir: Path,
        source: str | None = None,
    ) -> "PackageDefinition":
        if not isinstance(data, Mapping):
            raise TypeError(f"Package '{name}' definition must be a mapping")

        allowed_keys = {
            "description",
            "version",
            "source_dir",
            "archive",
            "depends",
            "provides",
            "environment",
            "replace",
            "variants",
        }
        unknown = {str(key) for key in data.keys() if str(key) not in allowed_keys}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ValueError(f"Package '{name}' contains unknown keys: {joined}")

        source_dir = Path(str(data.get("source_dir", name))).expanduser()
        if not source_dir.is_absolute():
            source_dir = base_dir / source_dir

        archive_value = data.get("archive")
        archive: Path | None = None
        if archive_value:
            archive = Path(str(archive_value)).expanduser()
            if not archive.is_absolute():
                archive = base_dir / archive

        variants_section = data.get("variants")
        if variants_section is None:
            variants_section = {ALL_PLATFORMS: {}}
        if not isinstance(variants_section, Mapping) or not variants_section:
            raise ValueError(f"Package '{name}' must define at least one variant")
        variants = {
            str(selector): Variant.from_mapping(name, str(selector), variant_data or {})
            for selector, variant_data in variants_section.items()
        }

        version = data.get("version")
        description = data.get("description")
        return cls(
            name=name,
            source_directory=source_dir,
            variants=variants,
            version=str(version) if version is not None else None,
            description=str(description) if description is not None else None,
            archive=archive,
            depends=normalize_string_list(data.get("depends"), field_name=f"{name}.depends"),
            provides=normalize_string_list(data.get("provides"), field_name=f"{name}.provides"),
            environment=normalize_string_mapping(data.get("environment"), field_name=f"{name}.environment"),
            replace=normalize_string_list(data.get("replace"), field_name=f"{name}.replace"),
            source=source,
        )

    @property
    def base_name(self) -> str:
        return split_versioned_name(self.name)[0]

    def select_variant(self, platform: Platform) -> Variant:
        """Pick the variant for ``platform``: exact name, then family, then ``all``."""

        for candidate in (platform.name, platform.family, ALL_PLATFORMS):
            for variant in self.variants.values():
                if candidate in variant.selectors:
                    return variant
        raise NoMatchingVariant(self.name, platform.name, self.variants)

    def layer(self, variant: Variant, *, policies: MergePolicies) -> ConfigLayer:
        """Combine package-level and variant-level settings into one layer."""

        package_layer = ConfigLayer.create(
            f"package:{self.name}",
            environment=self.environment,
            replace=self.replace,
        )
        variant_layer = ConfigLayer.create(
            f"variant:{variant.selector}",
            environment=variant.environment,
            definitions=variant.definitions,
            replace=variant.replace,
        )
        return package_layer.overlay(variant_layer, policies=policies, name=f"package:{self.name}")

    def template_context(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "base_name": self.base_name,
            "version": self.version or "",
            "source": str(self.source_directory),
        }

    def steps(
        self,
        platform: Platform,
        configuration: BuildConfiguration,
        *,
        variant: Variant | None = None,
    ) -> List[BuildStep]:
        chosen = variant or self.select_variant(platform)
        request = RecipeRequest(
            owner=self.name,
            source_dir=self.source_directory,
            platform=platform,
            configuration=configuration,
            definitions=dict(configuration.definitions),
            configure_args=list(chosen.configure_args),
            build_args=list(chosen.build_args),
            install_args=list(chosen.install_args),
            prepare=[list(command) for command in chosen.prepare],
            clean_target=chosen.clean,
            clean_files=list(chosen.clean_files),
            build_directory=chosen.build_directory,
            context={"package": self.template_context()},
        )
        steps: List[BuildStep] = []
        if self.archive is not None:
            steps.append(unpack_step(self.archive, self.source_directory))
        steps.extend(generate_steps(chosen.recipe, request))
        return steps

    def build(
        self,
        platform: Platform,
        configuration: BuildConfiguration,
        runner: CommandRunner,
        *,
        console: Console | None = None,
        variant: Variant | None = None,
        stream: bool = False,
        timeout: float | None = None,
    ) -> List[CommandResult]:
        """Clean, configure, compile and install this package for ``platform``.

        Raises :class:`BuildStepFailed` for the first step that exits non-zero.
        """

        return run_steps(
            self.name,
            self.steps(platform, configuration, variant=variant),
            runner,
            console=console or Console(),
            stream=stream,
            timeout=timeout,
        )


__all__ = [
    "ALL_PLATFORMS",
    "PackageDefinition",
    "Variant",
    "split_versioned_name",
]

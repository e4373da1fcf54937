"""Structural validation of a loaded configuration store."""
from __future__ import annotations

from typing import Any, Iterable, List, Set

from core.template import extract_placeholders

from .config_loader import ConfigurationStore
from .errors import ConfigurationError, CyclicDependency, UnknownDependency
from .packages import PackageDefinition
from .recipes import RECIPES
from .targets import PLATFORM_REFERENCE, DependencyGraph, TargetDefinition


TEMPLATE_ROOTS = frozenset({"platform", "package", "target", "config", "env", "source"})


def validate_store_structure(store: ConfigurationStore) -> list[str]:
    """Return every structural problem found across packages, targets and global settings."""

    errors: list[str] = []
    platform_names: Set[str] = set()
    platform_provides: Set[str] = set()
    for source in store.platform_sources:
        for definition in source:
            platform_names.add(definition.name)
            platform_provides.update(definition.provides)

    default_platform = store.global_config.default_platform
    if default_platform and default_platform not in platform_names:
        errors.append(f"global.default_platform '{default_platform}' is not a known platform")

    graph = store.dependency_graph()
    satisfied = {PLATFORM_REFERENCE, *platform_names, *platform_provides}

    for name in sorted(store.packages):
        errors.extend(f"[{name}] {message}" for message in validate_package(store.packages[name]))
    for name in sorted(store.targets):
        errors.extend(f"[{name}] {message}" for message in validate_target(store.targets[name]))

    for name in sorted(store.packages):
        package = store.packages[name]
        errors.extend(
            f"[{name}] {message}" for message in _validate_references(graph, package.depends, satisfied)
        )
    for name in sorted(store.targets):
        target = store.targets[name]
        errors.extend(
            f"[{name}] {message}" for message in _validate_references(graph, target.dependencies, satisfied)
        )

    errors.extend(_validate_cycles(graph, store.packages.values()))
    return errors


def validate_package(package: PackageDefinition) -> list[str]:
    errors: list[str] = []
    for selector, variant in package.variants.items():
        label = f"variant '{selector}'"
        if variant.recipe not in RECIPES:
            errors.append(f"{label} uses unknown recipe '{variant.recipe}'")
        if variant.clean is not None and variant.recipe == "cmake":
            errors.append(f"{label}: 'clean' has no effect with the cmake recipe")
        errors.extend(
            _validate_placeholders(
                [
                    variant.definitions,
                    variant.configure_args,
                    variant.build_args,
                    variant.install_args,
                    variant.prepare,
                    variant.clean_files,
                ],
                label=label,
            )
        )
    return errors


def validate_target(target: TargetDefinition) -> list[str]:
    errors: list[str] = []
    if target.recipe not in RECIPES:
        errors.append(f"uses unknown recipe '{target.recipe}'")
    if not target.directories and not target.components:
        errors.append("defines no directories to build")
    errors.extend(_validate_placeholders([target.definitions, target.configure_args], label="target"))
    return errors


def _validate_placeholders(values: Iterable[Any], *, label: str) -> List[str]:
    errors: List[str] = []
    for value in values:
        for placeholder in sorted(extract_placeholders(value)):
            root = placeholder.split(".", 1)[0]
            if root not in TEMPLATE_ROOTS:
                allowed = ", ".join(sorted(TEMPLATE_ROOTS))
                errors.append(f"{label}: placeholder '{{{{{placeholder}}}}}' must start with one of: {allowed}")
    return errors


def _validate_references(graph: DependencyGraph, references: Iterable[str], satisfied: Set[str]) -> List[str]:
    errors: List[str] = []
    for reference in references:
        if reference in satisfied:
            continue
        try:
            if graph.lookup(reference) is None:
                errors.append(f"dependency '{reference}' is not provided by any package or platform")
        except ConfigurationError as exc:
            errors.append(str(exc))
    return errors


def _validate_cycles(graph: DependencyGraph, packages: Iterable[PackageDefinition]) -> List[str]:
    errors: List[str] = []
    reported: Set[tuple[str, ...]] = set()
    for package in packages:
        try:
            graph.resolve_order(package)
        except CyclicDependency as exc:
            key = tuple(sorted(set(exc.cycle)))
            if key not in reported:
                reported.add(key)
                errors.append(str(exc))
        except (UnknownDependency, ConfigurationError):
            # Already reported per reference.
            continue
    return errors


__all__ = ["validate_package", "validate_store_structure", "validate_target"]

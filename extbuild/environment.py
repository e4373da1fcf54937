"""Layered merging of global, platform and package build settings."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence
import shlex

from core.config_loader import normalize_string_list


class MergePolicy(str, Enum):
    APPEND = "append"
    REPLACE = "replace"


DEFAULT_APPEND_KEYS: tuple[str, ...] = (
    "CFLAGS",
    "CXXFLAGS",
    "CPPFLAGS",
    "OBJCFLAGS",
    "LDFLAGS",
    "LIBS",
)


def split_flags(value: Any) -> List[str]:
    """Split a flag string (or sequence of flag strings) into ordered tokens."""

    if value is None:
        return []
    if isinstance(value, str):
        return shlex.split(value)
    if isinstance(value, Sequence):
        tokens: List[str] = []
        for item in value:
            tokens.extend(split_flags(item) if isinstance(item, str) else [str(item)])
        return tokens
    return [str(value)]


def _flatten(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return " ".join(str(item) for item in value)
    return str(value)


@dataclass(slots=True)
class MergePolicies:
    """Per-key merge policy table; keys not listed use ``default``."""

    overrides: Dict[str, MergePolicy] = field(default_factory=dict)
    default: MergePolicy = MergePolicy.REPLACE

    @classmethod
    def defaults(cls) -> "MergePolicies":
        return cls(overrides={key: MergePolicy.APPEND for key in DEFAULT_APPEND_KEYS})

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "MergePolicies":
        policies = cls.defaults()
        if not data:
            return policies
        unknown = {str(key) for key in data.keys()} - {"append", "replace"}
        if unknown:
            raise ValueError(f"[merge] contains unknown keys: {', '.join(sorted(unknown))}")
        for key in normalize_string_list(data.get("append"), field_name="merge.append"):
            policies.overrides[key] = MergePolicy.APPEND
        for key in normalize_string_list(data.get("replace"), field_name="merge.replace"):
            policies.overrides[key] = MergePolicy.REPLACE
        return policies

    def policy_for(self, key: str) -> MergePolicy:
        return self.overrides.get(key, self.default)


@dataclass(frozen=True, slots=True)
class ConfigLayer:
    """One named contribution to a merged build configuration.

    ``replace`` lists keys this layer overwrites even when their policy is
    :attr:`MergePolicy.APPEND`.
    """

    name: str
    environment: Mapping[str, Any] = field(default_factory=dict)
    configure_args: tuple[str, ...] = ()
    definitions: Mapping[str, Any] = field(default_factory=dict)
    replace: frozenset[str] = frozenset()

    @classmethod
    def create(
        cls,
        name: str,
        *,
        environment: Mapping[str, Any] | None = None,
        configure_args: Iterable[str] = (),
        definitions: Mapping[str, Any] | None = None,
        replace: Iterable[str] = (),
    ) -> "ConfigLayer":
        return cls(
            name=name,
            environment={str(key): value for key, value in (environment or {}).items()},
            configure_args=tuple(str(arg) for arg in configure_args),
            definitions=dict(definitions or {}),
            replace=frozenset(str(key) for key in replace),
        )

    def overlay(self, other: "ConfigLayer", *, policies: MergePolicies, name: str | None = None) -> "ConfigLayer":
        """Return a single layer equivalent to applying ``self`` then ``other``."""

        state: Dict[str, Any] = {}
        _apply_environment(state, self, policies, raw=True)
        _apply_environment(state, other, policies, raw=True)
        definitions = dict(self.definitions)
        definitions.update(other.definitions)
        return ConfigLayer(
            name=name or f"{self.name}+{other.name}",
            environment=state,
            configure_args=self.configure_args + other.configure_args,
            definitions=definitions,
            replace=self.replace | other.replace,
        )


@dataclass(slots=True)
class BuildConfiguration:
    """Resolved configuration for one (package, platform) pair."""

    install_prefix: Path
    environment: Dict[str, str] = field(default_factory=dict)
    extra_configure_args: List[str] = field(default_factory=list)
    definitions: Dict[str, Any] = field(default_factory=dict)
    variables: Dict[str, Any] = field(default_factory=dict)
    layers: List[str] = field(default_factory=list)

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "install_prefix": str(self.install_prefix),
            "environment": dict(self.environment),
            "extra_configure_args": list(self.extra_configure_args),
            "definitions": dict(self.definitions),
            "layers": list(self.layers),
        }


def _apply_environment(
    state: Dict[str, Any],
    layer: ConfigLayer,
    policies: MergePolicies,
    *,
    raw: bool = False,
) -> None:
    for key, value in layer.environment.items():
        if policies.policy_for(key) is MergePolicy.APPEND:
            tokens = split_flags(value)
            if key in state and key not in layer.replace:
                tokens = [*split_flags(state[key]), *tokens]
            # Quoted so a later split_flags yields the same tokens.
            state[key] = shlex.join(tokens)
        else:
            state[key] = value if raw else _flatten(value)


def merge_layers(
    layers: Sequence[ConfigLayer],
    *,
    install_prefix: Path,
    policies: MergePolicies | None = None,
    variables: Mapping[str, Any] | None = None,
) -> BuildConfiguration:
    """Apply ``layers`` in order; later layers win on key collisions.

    Keys keep the position of their first appearance, so the resulting
    environment order is deterministic.
    """

    active = policies or MergePolicies.defaults()
    state: Dict[str, Any] = {}
    configure_args: List[str] = []
    definitions: Dict[str, Any] = {}

    for layer in layers:
        _apply_environment(state, layer, active)
        configure_args.extend(layer.configure_args)
        definitions.update(layer.definitions)

    return BuildConfiguration(
        install_prefix=Path(install_prefix),
        environment={key: _flatten(value) for key, value in state.items()},
        extra_configure_args=configure_args,
        definitions=definitions,
        variables=dict(variables or {}),
        layers=[layer.name for layer in layers],
    )


def merge(
    global_defaults: ConfigLayer,
    platform_overrides: ConfigLayer,
    package_overrides: ConfigLayer,
    *,
    install_prefix: Path,
    policies: MergePolicies | None = None,
    variables: Mapping[str, Any] | None = None,
) -> BuildConfiguration:
    """Merge the three configuration layers in strict global < platform < package order."""

    return merge_layers(
        [global_defaults, platform_overrides, package_overrides],
        install_prefix=install_prefix,
        policies=policies,
        variables=variables,
    )


__all__ = [
    "BuildConfiguration",
    "ConfigLayer",
    "DEFAULT_APPEND_KEYS",
    "MergePolicies",
    "MergePolicy",
    "merge",
    "merge_layers",
    "split_flags",
]

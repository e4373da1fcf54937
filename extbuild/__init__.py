"""Build orchestration for the third-party dependencies of the Dream library."""

from .build import BuildEngine, BuildOptions, BuildPlan, BuildReport
from .config_loader import ConfigurationStore, GlobalConfig
from .console import Console
from .environment import BuildConfiguration, ConfigLayer, MergePolicies, MergePolicy, merge
from .errors import (
    BuildStepFailed,
    ConfigurationError,
    CyclicDependency,
    ExtbuildError,
    NoMatchingVariant,
    ToolchainUnavailable,
    UnknownDependency,
    UnknownPackage,
    UnknownPlatform,
    UnknownTarget,
)
from .packages import PackageDefinition, Variant
from .platforms import CommandProbe, HostContext, Platform, PlatformDefinition, PlatformProfile, PlatformRegistry
from .targets import DependencyGraph, TargetDefinition

__all__ = [
    "BuildConfiguration",
    "BuildEngine",
    "BuildOptions",
    "BuildPlan",
    "BuildReport",
    "BuildStepFailed",
    "CommandProbe",
    "ConfigLayer",
    "ConfigurationError",
    "ConfigurationStore",
    "Console",
    "CyclicDependency",
    "DependencyGraph",
    "ExtbuildError",
    "GlobalConfig",
    "HostContext",
    "MergePolicies",
    "MergePolicy",
    "NoMatchingVariant",
    "PackageDefinition",
    "Platform",
    "PlatformDefinition",
    "PlatformProfile",
    "PlatformRegistry",
    "TargetDefinition",
    "ToolchainUnavailable",
    "UnknownDependency",
    "UnknownPackage",
    "UnknownPlatform",
    "UnknownTarget",
    "Variant",
    "merge",
]

"""Error taxonomy for build-configuration resolution and execution.

Every error is fatal to the current build invocation; nothing is retried.
"""
from __future__ import annotations

from typing import Iterable, Sequence


class ExtbuildError(RuntimeError):
    """Base class for all orchestrator errors."""


class ConfigurationError(ExtbuildError):
    """Raised when declarative definitions are malformed or inconsistent."""


class UnknownPlatform(ExtbuildError):
    def __init__(self, name: str, available: Iterable[str] = ()) -> None:
        choices = ", ".join(sorted(available)) or "<none>"
        super().__init__(f"Unknown platform '{name}'. Available platforms: {choices}")
        self.name = name


class UnknownPackage(ExtbuildError):
    def __init__(self, name: str, available: Iterable[str] = ()) -> None:
        choices = ", ".join(sorted(available)) or "<none>"
        super().__init__(f"Unknown package '{name}'. Available packages: {choices}")
        self.name = name


class UnknownTarget(ExtbuildError):
    def __init__(self, name: str, available: Iterable[str] = ()) -> None:
        choices = ", ".join(sorted(available)) or "<none>"
        super().__init__(f"Unknown target or package '{name}'. Available: {choices}")
        self.name = name


class UnknownDependency(ExtbuildError):
    def __init__(self, reference: str, *, required_by: str) -> None:
        super().__init__(f"Dependency '{reference}' required by '{required_by}' is not provided by any package")
        self.reference = reference
        self.required_by = required_by


class NoMatchingVariant(ExtbuildError):
    def __init__(self, package: str, platform: str, selectors: Iterable[str] = ()) -> None:
        known = ", ".join(sorted(selectors)) or "<none>"
        super().__init__(
            f"Package '{package}' has no variant for platform '{platform}' and no 'all' fallback "
            f"(variants: {known})"
        )
        self.package = package
        self.platform = platform


class CyclicDependency(ExtbuildError):
    def __init__(self, cycle: Sequence[str]) -> None:
        super().__init__(f"Circular dependency detected: {' -> '.join(cycle)}")
        self.cycle = list(cycle)


class ToolchainUnavailable(ExtbuildError):
    def __init__(self, platform: str, reason: str | None = None) -> None:
        message = f"Platform '{platform}' cannot be targeted from this host"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.platform = platform
        self.reason = reason


class BuildStepFailed(ExtbuildError):
    def __init__(self, package: str, step: str, exit_code: int, output: str = "") -> None:
        super().__init__(f"Package '{package}' failed during '{step}' (exit code {exit_code})")
        self.package = package
        self.step = step
        self.exit_code = exit_code
        self.output = output


__all__ = [
    "BuildStepFailed",
    "ConfigurationError",
    "CyclicDependency",
    "ExtbuildError",
    "NoMatchingVariant",
    "ToolchainUnavailable",
    "UnknownDependency",
    "UnknownPackage",
    "UnknownPlatform",
    "UnknownTarget",
]

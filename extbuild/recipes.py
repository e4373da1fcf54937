"""Build recipes: turn a package or target directory into ordered build steps."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Sequence
import shutil
import tarfile
import zipfile

import zstandard as zstd

from core.archive import SourceArchive
from core.command_runner import BuildInvocation, CommandResult, CommandRunner, CommandTimeout
from core.template import TemplateResolver

from .console import Console
from .environment import BuildConfiguration
from .errors import BuildStepFailed, ConfigurationError
from .platforms import Platform


UNPACK_ERRORS = (OSError, ValueError, tarfile.TarError, zipfile.BadZipFile, zstd.ZstdError)
"""Failures of a source archive that end the unpack step."""

PHASES: tuple[str, ...] = (
    "unpack",
    "clean",
    "prepare",
    "bootstrap",
    "configure",
    "compile",
    "install",
)


@dataclass(slots=True)
class BuildStep:
    """One unit of work; a step either runs an invocation or touches the filesystem.

    ``requires`` and ``skip_if_exists`` are evaluated when the step runs, so
    cleaning a tree that was never configured is a no-op.
    """

    phase: str
    description: str
    invocation: BuildInvocation | None = None
    remove_paths: List[Path] = field(default_factory=list)
    create_paths: List[Path] = field(default_factory=list)
    unpack: tuple[Path, Path] | None = None
    requires: Path | None = None
    skip_if_exists: Path | None = None

    def should_run(self) -> bool:
        if self.requires is not None and not self.requires.exists():
            return False
        if self.skip_if_exists is not None and self.skip_if_exists.exists():
            return False
        return True

    def to_mapping(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"phase": self.phase, "description": self.description}
        if self.invocation is not None:
            data["command"] = list(self.invocation.command)
            data["cwd"] = str(self.invocation.working_directory) if self.invocation.working_directory else None
        if self.remove_paths:
            data["remove"] = [str(path) for path in self.remove_paths]
        if self.create_paths:
            data["create"] = [str(path) for path in self.create_paths]
        if self.unpack is not None:
            data["unpack"] = [str(path) for path in self.unpack]
        return data


@dataclass(slots=True)
class RecipeRequest:
    """Everything a recipe needs to generate steps for one source directory."""

    owner: str
    source_dir: Path
    platform: Platform
    configuration: BuildConfiguration
    definitions: Dict[str, Any] = field(default_factory=dict)
    configure_args: List[str] = field(default_factory=list)
    build_args: List[str] = field(default_factory=list)
    install_args: List[str] = field(default_factory=list)
    prepare: List[List[str]] = field(default_factory=list)
    clean_target: str | None = None
    clean_files: List[str] = field(default_factory=list)
    build_directory: str = "build"
    context: Dict[str, Any] = field(default_factory=dict)

    @property
    def prefix(self) -> Path:
        return self.configuration.install_prefix

    def invocation(self, executable: str | Path, arguments: Sequence[str], *, cwd: Path | None = None) -> BuildInvocation:
        return BuildInvocation(
            executable=str(executable),
            arguments=tuple(str(arg) for arg in arguments),
            environment=dict(self.configuration.environment),
            working_directory=cwd or self.source_dir,
        )

    def resolved(self) -> "RecipeRequest":
        """Return a copy with ``{{...}}`` placeholders in every argument list substituted."""

        resolver = TemplateResolver(self.template_context())

        def _args(values: Sequence[str]) -> List[str]:
            resolved: List[str] = []
            for value in values:
                result = resolver.resolve(value)
                if isinstance(result, (list, tuple)):
                    resolved.extend(str(item) for item in result)
                else:
                    resolved.append("" if result is None else str(result))
            return resolved

        return RecipeRequest(
            owner=self.owner,
            source_dir=self.source_dir,
            platform=self.platform,
            configuration=self.configuration,
            definitions={key: resolver.resolve(value) for key, value in self.definitions.items()},
            configure_args=_args(self.configure_args),
            build_args=_args(self.build_args),
            install_args=_args(self.install_args),
            prepare=[_args(command) for command in self.prepare],
            clean_target=self.clean_target,
            clean_files=_args(self.clean_files),
            build_directory=self.build_directory,
            context=self.context,
        )

    def template_context(self) -> Dict[str, Any]:
        context: Dict[str, Any] = {
            "platform": self.platform.template_context(),
            "config": {
                "prefix": str(self.prefix),
                "environment": dict(self.configuration.environment),
                "definitions": dict(self.configuration.definitions),
                "configure_args": list(self.configuration.extra_configure_args),
            },
            "env": dict(self.configuration.environment),
            "source": str(self.source_dir),
        }
        context.update(self.context)
        return context


def _format_definition(name: str, value: Any) -> str:
    if isinstance(value, bool):
        value = "ON" if value else "OFF"
    return f"-D{name}={value}"


def cmake_steps(request: RecipeRequest) -> List[BuildStep]:
    build_dir = request.source_dir / request.build_directory
    arguments: List[str] = [
        "-G",
        "Unix Makefiles",
        f"-DCMAKE_INSTALL_PREFIX:PATH={request.prefix}",
    ]
    for key, value in request.definitions.items():
        arguments.append(_format_definition(key, value))
    arguments.extend(request.configure_args)
    arguments.append("..")

    return [
        BuildStep(
            phase="clean",
            description=f"Recreate {build_dir.name}/ directory",
            remove_paths=[build_dir],
            create_paths=[build_dir],
        ),
        *_prepare_steps(request),
        BuildStep(
            phase="configure",
            description="Configure with cmake",
            invocation=request.invocation("cmake", arguments, cwd=build_dir),
        ),
        BuildStep(
            phase="compile",
            description="Compile",
            invocation=request.invocation("make", request.build_args, cwd=build_dir),
        ),
        BuildStep(
            phase="install",
            description=f"Install into {request.prefix}",
            invocation=request.invocation("make", ["install", *request.install_args], cwd=build_dir),
        ),
    ]


def autoconf_steps(request: RecipeRequest) -> List[BuildStep]:
    source = request.source_dir
    steps: List[BuildStep] = []
    clean_target = request.clean_target or "clean"
    if clean_target != "none":
        steps.append(
            BuildStep(
                phase="clean",
                description=f"make {clean_target}",
                invocation=request.invocation("make", [clean_target]),
                requires=source / "Makefile",
            )
        )
    if request.clean_files:
        steps.append(
            BuildStep(
                phase="clean",
                description="Remove stale files",
                remove_paths=[source / name for name in request.clean_files],
            )
        )
    steps.extend(_prepare_steps(request))

    arguments = [
        f"--prefix={request.prefix}",
        *request.configure_args,
        *request.configuration.extra_configure_args,
    ]
    steps.extend(
        [
            BuildStep(
                phase="configure",
                description="Run ./configure",
                invocation=request.invocation("./configure", arguments),
            ),
            BuildStep(
                phase="compile",
                description="Compile",
                invocation=request.invocation("make", request.build_args),
            ),
            BuildStep(
                phase="install",
                description=f"Install into {request.prefix}",
                invocation=request.invocation("make", ["install", *request.install_args]),
            ),
        ]
    )
    return steps


def bjam_steps(request: RecipeRequest) -> List[BuildStep]:
    source = request.source_dir
    bjam = source / "bjam"
    arguments = [
        f"--prefix={request.prefix}",
        *request.configure_args,
        *request.build_args,
        "install",
        *request.install_args,
    ]
    return [
        *_prepare_steps(request),
        BuildStep(
            phase="bootstrap",
            description="Bootstrap bjam",
            invocation=request.invocation("./bootstrap.sh", []),
            skip_if_exists=bjam,
        ),
        BuildStep(
            phase="install",
            description=f"Build and install into {request.prefix}",
            invocation=request.invocation(bjam, arguments),
        ),
    ]


def make_steps(request: RecipeRequest) -> List[BuildStep]:
    steps = [*_prepare_steps(request)]
    if request.clean_target and request.clean_target != "none":
        steps.insert(
            0,
            BuildStep(
                phase="clean",
                description=f"make {request.clean_target}",
                invocation=request.invocation("make", [request.clean_target]),
                requires=request.source_dir / "Makefile",
            ),
        )
    steps.extend(
        [
            BuildStep(
                phase="compile",
                description="Compile",
                invocation=request.invocation("make", request.build_args),
            ),
            BuildStep(
                phase="install",
                description=f"Install into {request.prefix}",
                invocation=request.invocation(
                    "make", ["install", f"PREFIX={request.prefix}", *request.install_args]
                ),
            ),
        ]
    )
    return steps


def _prepare_steps(request: RecipeRequest) -> List[BuildStep]:
    steps: List[BuildStep] = []
    for command in request.prepare:
        if not command:
            continue
        steps.append(
            BuildStep(
                phase="prepare",
                description=" ".join(command),
                invocation=request.invocation(command[0], command[1:]),
            )
        )
    return steps


Recipe = Callable[[RecipeRequest], List[BuildStep]]

RECIPES: Dict[str, Recipe] = {
    "cmake": cmake_steps,
    "autoconf": autoconf_steps,
    "bjam": bjam_steps,
    "make": make_steps,
}


def generate_steps(recipe: str, request: RecipeRequest) -> List[BuildStep]:
    generator = RECIPES.get(recipe)
    if generator is None:
        available = ", ".join(sorted(RECIPES))
        raise ConfigurationError(f"'{request.owner}' uses unknown recipe '{recipe}' (available: {available})")
    return generator(request.resolved())


def unpack_step(archive: Path, destination: Path) -> BuildStep:
    return BuildStep(
        phase="unpack",
        description=f"Unpack {archive.name}",
        unpack=(archive, destination),
        skip_if_exists=destination,
    )


def run_steps(
    owner: str,
    steps: Sequence[BuildStep],
    runner: CommandRunner,
    *,
    console: Console,
    stream: bool = False,
    timeout: float | None = None,
) -> List[CommandResult]:
    """Execute ``steps`` in order, stopping at the first failure.

    Filesystem steps are only announced when the console is in dry-run mode.
    """

    results: List[CommandResult] = []
    for step in steps:
        if not step.should_run():
            console.debug(f"[{owner}] skip {step.phase}: {step.description}")
            continue

        console.debug(f"[{owner}] {step.phase}: {step.description}")
        if step.unpack is not None:
            archive, destination = step.unpack
            try:
                SourceArchive(console).unpack(archive, destination)
            except UNPACK_ERRORS as exc:
                raise BuildStepFailed(owner, step.phase, 1, str(exc)) from exc

        try:
            _apply_filesystem(owner, step, console)
        except OSError as exc:
            raise BuildStepFailed(owner, step.phase, 1, str(exc)) from exc

        if step.invocation is None:
            continue

        try:
            result = runner.invoke(step.invocation, check=False, note=step.description, stream=stream, timeout=timeout)
        except CommandTimeout as exc:
            raise BuildStepFailed(owner, step.phase, -1, f"{exc}\n{exc.output}".strip()) from exc
        except OSError as exc:
            exit_code = 126 if isinstance(exc, PermissionError) else 127
            raise BuildStepFailed(owner, step.phase, exit_code, str(exc)) from exc
        results.append(result)
        if result.returncode != 0:
            raise BuildStepFailed(owner, step.phase, result.returncode, result.output)
    return results


def _apply_filesystem(owner: str, step: BuildStep, console: Console) -> None:
    for path in step.remove_paths:
        if console.dry_run:
            console.dry(f"[{owner}] Would remove {path}")
            continue
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        elif path.exists() or path.is_symlink():
            path.unlink()
    for path in step.create_paths:
        if console.dry_run:
            console.dry(f"[{owner}] Would create {path}")
            continue
        path.mkdir(parents=True, exist_ok=True)


def steps_to_mapping(steps: Sequence[BuildStep]) -> List[Mapping[str, Any]]:
    return [step.to_mapping() for step in steps]


__all__ = [
    "BuildStep",
    "PHASES",
    "RECIPES",
    "Recipe",
    "RecipeRequest",
    "autoconf_steps",
    "bjam_steps",
    "cmake_steps",
    "generate_steps",
    "make_steps",
    "run_steps",
    "steps_to_mapping",
    "unpack_step",
]

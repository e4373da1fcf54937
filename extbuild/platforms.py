"""Target platform definitions, per-run profiles and the platform registry."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Sequence
import os
import platform as host_platform

from core.command_runner import CommandRunner, SubprocessCommandRunner
from core.config_loader import normalize_string_list, normalize_string_mapping
from core.template import TemplateError, TemplateResolver

from .environment import ConfigLayer
from .errors import ConfigurationError, ToolchainUnavailable, UnknownPlatform


DEFAULT_PREFIX_TEMPLATE = "{{workspace}}/build/{{platform.name}}"

HOST_DEFAULT_PLATFORMS: Dict[str, str] = {
    "linux": "linux",
    "darwin": "darwin_osx",
}

Probe = Callable[[CommandRunner], str]
"""A probe inspects the host (usually by running a command) and returns a string."""


@dataclass(frozen=True, slots=True)
class HostContext:
    """Facts about the machine the orchestrator runs on."""

    os_name: str
    environ: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def current(cls) -> "HostContext":
        return cls(os_name=host_platform.system().lower(), environ=dict(os.environ))


class CommandProbe:
    """Run a command on the host and return its trimmed standard output."""

    def __init__(self, command: Sequence[str]) -> None:
        if not command:
            raise ValueError("Probe command must not be empty")
        self.command = [str(part) for part in command]

    def __call__(self, runner: CommandRunner) -> str:
        result = runner.run(self.command, check=True, note="probe")
        value = result.stdout.strip()
        if not value:
            raise RuntimeError(f"Probe '{' '.join(self.command)}' produced no output")
        return value

    def __repr__(self) -> str:
        return f"CommandProbe({self.command!r})"


@dataclass(frozen=True, slots=True)
class VariableSpec:
    """A platform template variable read from the environment with a fallback.

    ``default`` may be a callable receiving a lookup function for other
    variables of the same platform, for values derived from them.
    """

    default: Any = None
    env: str | None = None
    host_defaults: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_value(cls, name: str, value: Any) -> "VariableSpec":
        if isinstance(value, VariableSpec):
            return value
        if not isinstance(value, Mapping):
            return cls(default=value)
        unknown = {str(key) for key in value.keys()} - {"default", "env", "host_defaults"}
        if unknown:
            raise ValueError(f"Variable '{name}' contains unknown keys: {', '.join(sorted(unknown))}")
        env = value.get("env")
        return cls(
            default=value.get("default"),
            env=str(env) if env else None,
            host_defaults=normalize_string_mapping(value.get("host_defaults"), field_name=f"{name}.host_defaults"),
        )


@dataclass(slots=True)
class PlatformDefinition:
    """Declarative description of a target platform; values may hold templates."""

    name: str
    family: str
    description: str | None = None
    hosts: frozenset[str] = frozenset()
    variables: Dict[str, VariableSpec] = field(default_factory=dict)
    probes: Dict[str, Probe] = field(default_factory=dict)
    requires_paths: List[str] = field(default_factory=list)
    root: str | None = None
    sdk: str | None = None
    toolchain: Dict[str, str] = field(default_factory=dict)
    architecture_flags: List[str] = field(default_factory=list)
    cflags: List[str] = field(default_factory=list)
    cxxflags: List[str] = field(default_factory=list)
    ldflags: List[str] = field(default_factory=list)
    configure_args: List[str] = field(default_factory=list)
    environment: Dict[str, Any] = field(default_factory=dict)
    capabilities: Dict[str, str] = field(default_factory=dict)
    provides: frozenset[str] = frozenset()
    source: str = "builtin"

    @classmethod
    def from_mapping(cls, name: str, data: Mapping[str, Any], *, source: str = "builtin") -> "PlatformDefinition":
        if not isinstance(data, Mapping):
            raise TypeError(f"Platform '{name}' definition must be a mapping")

        allowed_keys = {
            "description",
            "family",
            "hosts",
            "variables",
            "probes",
            "requires_paths",
            "root",
            "sdk",
            "toolchain",
            "architecture_flags",
            "cflags",
            "cxxflags",
            "ldflags",
            "configure_args",
            "environment",
            "capabilities",
            "provides",
        }
        unknown = {str(key) for key in data.keys() if str(key) not in allowed_keys}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ValueError(f"Platform '{name}' contains unknown keys: {joined}")

        family = data.get("family")
        family_name = str(family).strip() if family else name.split("_", 1)[0]

        variables = {
            str(key): VariableSpec.from_value(f"{name}.{key}", value)
            for key, value in normalize_string_mapping(data.get("variables"), field_name=f"{name}.variables").items()
        }

        probes: Dict[str, Probe] = {}
        for probe_name, probe in normalize_string_mapping(data.get("probes"), field_name=f"{name}.probes").items():
            if callable(probe):
                probes[probe_name] = probe
            elif isinstance(probe, str):
                probes[probe_name] = CommandProbe(probe.split())
            else:
                probes[probe_name] = CommandProbe(
                    normalize_string_list(probe, field_name=f"{name}.probes.{probe_name}")
                )

        root = data.get("root")
        sdk = data.get("sdk")
        description = data.get("description")

        return cls(
            name=name,
            family=family_name,
            description=str(description) if description is not None else None,
            hosts=frozenset(
                item.lower() for item in normalize_string_list(data.get("hosts"), field_name=f"{name}.hosts")
            ),
            variables=variables,
            probes=probes,
            requires_paths=normalize_string_list(data.get("requires_paths"), field_name=f"{name}.requires_paths"),
            root=str(root) if root is not None else None,
            sdk=str(sdk) if sdk is not None else None,
            toolchain={
                key: str(value)
                for key, value in normalize_string_mapping(data.get("toolchain"), field_name=f"{name}.toolchain").items()
            },
            architecture_flags=normalize_string_list(
                data.get("architecture_flags"), field_name=f"{name}.architecture_flags"
            ),
            cflags=normalize_string_list(data.get("cflags"), field_name=f"{name}.cflags"),
            cxxflags=normalize_string_list(data.get("cxxflags"), field_name=f"{name}.cxxflags"),
            ldflags=normalize_string_list(data.get("ldflags"), field_name=f"{name}.ldflags"),
            configure_args=normalize_string_list(data.get("configure_args"), field_name=f"{name}.configure_args"),
            environment=normalize_string_mapping(data.get("environment"), field_name=f"{name}.environment"),
            capabilities={
                key: str(value)
                for key, value in normalize_string_mapping(
                    data.get("capabilities"), field_name=f"{name}.capabilities"
                ).items()
            },
            provides=frozenset(normalize_string_list(data.get("provides"), field_name=f"{name}.provides")),
            source=source,
        )

    def supports_host(self, os_name: str) -> bool:
        return not self.hosts or os_name.lower() in self.hosts


@dataclass(frozen=True, slots=True)
class Platform:
    """A fully resolved target platform for one build run."""

    name: str
    family: str
    install_prefix: Path
    root_path: Path | None = None
    sdk_path: Path | None = None
    sdk_version: str | None = None
    toolchain_paths: Mapping[str, str] = field(default_factory=dict)
    architecture_flags: tuple[str, ...] = ()
    compile_flags: tuple[str, ...] = ()
    cxx_flags: tuple[str, ...] = ()
    link_flags: tuple[str, ...] = ()
    configure_args: tuple[str, ...] = ()
    environment_overrides: Mapping[str, str] = field(default_factory=dict)
    capabilities: Mapping[str, str] = field(default_factory=dict)
    provides: frozenset[str] = frozenset()
    variables: Mapping[str, Any] = field(default_factory=dict)

    def has_capability(self, key: str, value: str) -> bool:
        return self.capabilities.get(key) == value

    def layer(self) -> ConfigLayer:
        """Return the platform's contribution to a merged build configuration.

        CFLAGS carry the architecture flags followed by the compile flags;
        CXXFLAGS and LDFLAGS extend that same sequence. Explicit environment
        overrides win over the computed entries.
        """

        environment: Dict[str, Any] = dict(self.toolchain_paths)
        cflags = [*self.architecture_flags, *self.compile_flags]
        if cflags:
            environment["CFLAGS"] = cflags
        if self.cxx_flags:
            environment["CXXFLAGS"] = [*cflags, *self.cxx_flags]
        if cflags or self.link_flags:
            environment["LDFLAGS"] = [*cflags, *self.link_flags]
        environment.update(self.environment_overrides)
        return ConfigLayer.create(
            f"platform:{self.name}",
            environment=environment,
            configure_args=self.configure_args,
        )

    def template_context(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "family": self.family,
            "root": str(self.root_path) if self.root_path else "",
            "sdk": str(self.sdk_path) if self.sdk_path else "",
            "sdk_version": self.sdk_version or "",
            "prefix": str(self.install_prefix),
            "vars": dict(self.variables),
            "capabilities": dict(self.capabilities),
        }


class _LazyMapping(Mapping[str, Any]):
    """Read-only mapping whose values are computed on first access."""

    def __init__(self, keys: Iterable[str], getter: Callable[[str], Any]) -> None:
        self._keys = list(keys)
        self._getter = getter

    def __getitem__(self, key: str) -> Any:
        if key not in self._keys:
            raise KeyError(key)
        return self._getter(key)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __iter__(self) -> Iterator[str]:
        return iter(self._keys)

    def __len__(self) -> int:
        return len(self._keys)


class PlatformProfile:
    """Binds a platform definition to one host for the duration of a run.

    Probe results and the resolved :class:`Platform` are cached on the
    instance, never at module level.
    """

    def __init__(
        self,
        definition: PlatformDefinition,
        *,
        host: HostContext,
        runner: CommandRunner,
        prefix: str = DEFAULT_PREFIX_TEMPLATE,
        workspace: Path | None = None,
    ) -> None:
        self.definition = definition
        self.host = host
        self._runner = runner
        self._prefix = prefix
        self._workspace = workspace or Path.cwd()
        self._probe_results: Dict[str, str] = {}
        self._probe_errors: Dict[str, ToolchainUnavailable] = {}
        self._resolver: TemplateResolver | None = None
        self._platform: Platform | None = None

    @property
    def name(self) -> str:
        return self.definition.name

    def probe(self, name: str) -> str:
        if name in self._probe_results:
            return self._probe_results[name]
        if name in self._probe_errors:
            raise self._probe_errors[name]
        probe = self.definition.probes[name]
        try:
            value = probe(self._runner)
        except Exception as exc:
            error = ToolchainUnavailable(self.name, f"probe '{name}' failed: {exc}")
            self._probe_errors[name] = error
            raise error from exc
        self._probe_results[name] = str(value)
        return self._probe_results[name]

    def variable(self, name: str) -> Any:
        spec = self.definition.variables[name]
        if spec.env and self.host.environ.get(spec.env):
            return self.host.environ[spec.env]
        default = spec.host_defaults.get(self.host.os_name, spec.default)
        if callable(default):
            return default(lambda other: self.resolver().resolve_str(f"{{{{vars.{other}}}}}"))
        return default

    def resolver(self) -> TemplateResolver:
        if self._resolver is None:
            definition = self.definition
            platform_context: Dict[str, Any] = {
                "name": definition.name,
                "family": definition.family,
                "root": definition.root or "",
                "sdk": definition.sdk or "",
                "sdk_version": "{{vars.sdk_version}}" if "sdk_version" in definition.variables else "",
                "prefix": self._prefix,
            }
            self._resolver = TemplateResolver(
                {
                    "workspace": str(self._workspace),
                    "env": dict(self.host.environ),
                    "host": {"os": self.host.os_name},
                    "vars": _LazyMapping(definition.variables.keys(), self.variable),
                    "probe": _LazyMapping(definition.probes.keys(), self.probe),
                    "platform": platform_context,
                }
            )
        return self._resolver

    def is_available(self) -> bool:
        """Return whether the platform can be targeted from this host.

        Never raises: probe failures of any kind count as unavailable.
        """

        if not self.definition.supports_host(self.host.os_name):
            return False
        try:
            for probe_name in self.definition.probes:
                self.probe(probe_name)
            resolver = self.resolver()
            for raw_path in self.definition.requires_paths:
                if not Path(resolver.resolve_str(raw_path)).exists():
                    return False
        except Exception:  # noqa: BLE001
            return False
        return True

    def unavailable_reason(self) -> str | None:
        if not self.definition.supports_host(self.host.os_name):
            hosts = ", ".join(sorted(self.definition.hosts))
            return f"host '{self.host.os_name}' is not one of: {hosts}"
        for probe_name in self.definition.probes:
            try:
                self.probe(probe_name)
            except ToolchainUnavailable as exc:
                return exc.reason
        if not self.is_available():
            return "required SDK paths are missing"
        return None

    def platform(self) -> Platform:
        if self._platform is None:
            try:
                self._platform = self._build_platform()
            except TemplateError as exc:
                raise ToolchainUnavailable(self.name, str(exc)) from exc
        return self._platform

    def _build_platform(self) -> Platform:
        definition = self.definition
        resolver = self.resolver()

        def _strings(values: Iterable[str]) -> tuple[str, ...]:
            return tuple(resolver.resolve_str(value) for value in values)

        def _optional_path(value: str | None) -> Path | None:
            if not value:
                return None
            text = resolver.resolve_str(value)
            return Path(text) if text else None

        variables = {name: resolver.resolve(f"{{{{vars.{name}}}}}") for name in definition.variables}
        sdk_version = variables.get("sdk_version")

        return Platform(
            name=definition.name,
            family=definition.family,
            install_prefix=Path(resolver.resolve_str(self._prefix)),
            root_path=_optional_path(definition.root),
            sdk_path=_optional_path(definition.sdk),
            sdk_version=str(sdk_version) if sdk_version is not None else None,
            toolchain_paths={key: resolver.resolve_str(value) for key, value in definition.toolchain.items()},
            architecture_flags=_strings(definition.architecture_flags),
            compile_flags=_strings(definition.cflags),
            cxx_flags=_strings(definition.cxxflags),
            link_flags=_strings(definition.ldflags),
            configure_args=_strings(definition.configure_args),
            environment_overrides={key: resolver.resolve_str(value) for key, value in definition.environment.items()},
            capabilities=dict(definition.capabilities),
            provides=definition.provides,
            variables=variables,
        )


_XCODE_PROBE = {"xcode": ["xcode-select", "--print-path"]}
_XCODE_TOOLCHAIN_BIN = "{{probe.xcode}}/Toolchains/XcodeDefault.xctoolchain/usr/bin"
_DARWIN_CXXFLAGS = ["-std=c++0x", "-stdlib=libc++", "-Wno-c++11-narrowing"]


def _toolchain_version(lookup: Callable[[str], str]) -> str:
    return lookup("toolchain").rsplit("-", 1)[-1]


def _build_builtin_definitions() -> List[PlatformDefinition]:
    raw: Dict[str, Mapping[str, Any]] = {
        "linux": {
            "description": "Native Linux host",
            "hosts": ["linux"],
            "root": "/",
            "capabilities": {"windowing": "x11", "filesystem": "posix", "graphics": "opengl"},
            "provides": ["Language/C++11"],
        },
        "darwin_osx": {
            "description": "Mac OS X through the Xcode application bundle",
            "hosts": ["darwin"],
            "probes": _XCODE_PROBE,
            "variables": {"sdk_version": {"env": "MACOSX_SDK_VERSION", "default": "10.7"}},
            "root": "{{probe.xcode}}/Platforms/MacOSX.platform",
            "sdk": "{{platform.root}}/Developer/SDKs/MacOSX{{platform.sdk_version}}.sdk",
            "toolchain": {
                "CC": f"{_XCODE_TOOLCHAIN_BIN}/clang",
                "CXX": f"{_XCODE_TOOLCHAIN_BIN}/clang++",
            },
            "architecture_flags": ["-arch", "i386", "-arch", "x86_64"],
            "cflags": ["-isysroot", "{{platform.sdk}}", "-mmacosx-version-min={{platform.sdk_version}}"],
            "cxxflags": _DARWIN_CXXFLAGS,
            "capabilities": {"windowing": "cocoa", "filesystem": "posix", "graphics": "opengl"},
            "provides": ["Language/C++11"],
        },
        "darwin_macosx": {
            "description": "Mac OS X through the legacy /Developer tree",
            "hosts": ["darwin"],
            "variables": {"sdk_version": {"env": "MACOSX_SDK_VERSION", "default": "10.7"}},
            "requires_paths": ["{{platform.sdk}}"],
            "root": "/Developer",
            "sdk": "{{platform.root}}/SDKs/MacOSX{{platform.sdk_version}}.sdk",
            "architecture_flags": ["-arch", "i386", "-arch", "x86_64"],
            "cflags": [
                "-isysroot",
                "{{platform.sdk}}",
                "-mmacosx-version-min={{platform.sdk_version}}",
                "-mdynamic-no-pic",
            ],
            "capabilities": {"windowing": "cocoa", "filesystem": "posix", "graphics": "opengl"},
        },
        "darwin_ios": {
            "description": "iOS devices through the Xcode application bundle",
            "hosts": ["darwin"],
            "probes": _XCODE_PROBE,
            "variables": {"sdk_version": {"env": "IPHONE_SDK_VERSION", "default": "5.1"}},
            "root": "{{probe.xcode}}/Platforms/iPhoneOS.platform",
            "sdk": "{{platform.root}}/Developer/SDKs/iPhoneOS{{platform.sdk_version}}.sdk",
            "toolchain": {
                "CC": f"{_XCODE_TOOLCHAIN_BIN}/clang",
                "CXX": f"{_XCODE_TOOLCHAIN_BIN}/clang++",
                "LD": f"{_XCODE_TOOLCHAIN_BIN}/ld",
            },
            "architecture_flags": ["-arch", "armv7"],
            "cflags": ["-isysroot", "{{platform.sdk}}", "-miphoneos-version-min={{platform.sdk_version}}"],
            "cxxflags": _DARWIN_CXXFLAGS,
            "configure_args": ["--host=arm-apple-darwin"],
            "capabilities": {"windowing": "uikit", "filesystem": "posix", "graphics": "opengles"},
            "provides": ["Language/C++11"],
        },
        "darwin_ios_simulator": {
            "description": "iOS simulator through the Xcode application bundle",
            "hosts": ["darwin"],
            "probes": _XCODE_PROBE,
            "variables": {"sdk_version": {"env": "IPHONE_SDK_VERSION", "default": "5.1"}},
            "root": "{{probe.xcode}}/Platforms/iPhoneSimulator.platform",
            "sdk": "{{platform.root}}/Developer/SDKs/iPhoneSimulator{{platform.sdk_version}}.sdk",
            "toolchain": {
                "CC": f"{_XCODE_TOOLCHAIN_BIN}/clang",
                "CXX": f"{_XCODE_TOOLCHAIN_BIN}/clang++",
                "LD": f"{_XCODE_TOOLCHAIN_BIN}/ld",
            },
            "architecture_flags": ["-arch", "i386"],
            "cflags": [
                "-isysroot",
                "{{platform.sdk}}",
                "-miphoneos-version-min={{platform.sdk_version}}",
                "-mdynamic-no-pic",
            ],
            "cxxflags": _DARWIN_CXXFLAGS,
            "capabilities": {"windowing": "uikit", "filesystem": "posix", "graphics": "opengles"},
            "provides": ["Language/C++11"],
        },
        "darwin_iphoneos": {
            "description": "iOS devices through the legacy /Developer tree",
            "hosts": ["darwin"],
            "variables": {"sdk_version": {"env": "IPHONE_SDK_VERSION", "default": "5.0"}},
            "requires_paths": ["{{platform.sdk}}"],
            "root": "/Developer/Platforms/iPhoneOS.platform",
            "sdk": "{{platform.root}}/Developer/SDKs/iPhoneOS{{platform.sdk_version}}.sdk",
            "toolchain": {
                "CC": "{{platform.root}}/Developer/usr/bin/clang",
                "CXX": "{{platform.root}}/Developer/usr/bin/clang++",
                "LD": "{{platform.root}}/Developer/usr/bin/ld",
            },
            "architecture_flags": ["-arch", "armv7"],
            "cflags": [
                "-isysroot",
                "{{platform.sdk}}",
                "-miphoneos-version-min={{platform.sdk_version}}",
                "-mdynamic-no-pic",
            ],
            "configure_args": ["--host=arm-apple-darwin"],
            "capabilities": {"windowing": "uikit", "filesystem": "posix", "graphics": "opengles"},
        },
        "darwin_iphonesimulator": {
            "description": "iOS simulator through the legacy /Developer tree",
            "hosts": ["darwin"],
            "variables": {"sdk_version": {"env": "IPHONE_SDK_VERSION", "default": "5.0"}},
            "requires_paths": ["{{platform.sdk}}"],
            "root": "/Developer/Platforms/iPhoneSimulator.platform",
            "sdk": "{{platform.root}}/Developer/SDKs/iPhoneSimulator{{platform.sdk_version}}.sdk",
            "toolchain": {
                "CC": "{{platform.root}}/Developer/usr/bin/clang",
                "CXX": "{{platform.root}}/Developer/usr/bin/clang++",
                "LD": "{{platform.root}}/Developer/usr/bin/ld",
            },
            "architecture_flags": ["-arch", "i386"],
            "cflags": [
                "-isysroot",
                "{{platform.sdk}}",
                "-miphoneos-version-min={{platform.sdk_version}}",
                "-mdynamic-no-pic",
            ],
            "capabilities": {"windowing": "uikit", "filesystem": "posix", "graphics": "opengles"},
        },
        "android_ndk": {
            "description": "Android devices through the CrystaX NDK",
            "family": "android",
            "hosts": ["linux", "darwin"],
            "variables": {
                "platforms_path": {"env": "EXTBUILD_PLATFORMS_PATH", "default": "{{workspace}}/platforms"},
                "ndk_platform": {"env": "ANDROID_NDK_PLATFORM", "default": "android-ndk-r7-crystax-4"},
                "ndk_sdk": {"env": "ANDROID_NDK_SDK", "default": "android-14"},
                "toolchain": {"env": "ANDROID_NDK_TOOLCHAIN", "default": "arm-linux-androideabi-4.6.3"},
                "toolchain_version": VariableSpec(default=_toolchain_version),
                "ndk_build": {
                    "env": "ANDROID_NDK_BUILD",
                    "default": "linux-x86",
                    "host_defaults": {"darwin": "darwin-x86"},
                },
                "bin": "{{platform.root}}/toolchains/{{vars.toolchain}}/prebuilt/{{vars.ndk_build}}/bin",
                "crystax_libs": "{{platform.root}}/sources/crystax/libs/armeabi/{{vars.toolchain_version}}",
            },
            "requires_paths": ["{{platform.root}}"],
            "root": "{{vars.platforms_path}}/{{vars.ndk_platform}}",
            "sdk": "{{platform.root}}/platforms/{{vars.ndk_sdk}}/arch-arm",
            "toolchain": {
                "CC": "{{vars.bin}}/arm-linux-androideabi-gcc",
                "CXX": "{{vars.bin}}/arm-linux-androideabi-g++",
                "CPP": "{{vars.bin}}/arm-linux-androideabi-cpp",
                "LD": "{{vars.bin}}/arm-linux-androideabi-ld",
                "AR": "{{vars.bin}}/arm-linux-androideabi-ar",
                "RANLIB": "{{vars.bin}}/arm-linux-androideabi-ranlib",
                "STRIP": "{{vars.bin}}/arm-linux-androideabi-strip",
            },
            "cflags": ["-nostdlib", "-L{{platform.sdk}}/usr/lib", "-L{{vars.crystax_libs}}"],
            "ldflags": ["-Wl,-entry=main,-no-undefined,-rpath-link={{platform.sdk}}/usr/lib"],
            "configure_args": ["--host=arm-eabi"],
            "environment": {
                "CPPFLAGS": "-I{{platform.sdk}}/usr/include",
                "LIBS": "-lc -lcrystax_static -lstdc++ -lm -llog -lgcc -lgcc_eh -ldl",
            },
            "capabilities": {"windowing": "android", "filesystem": "posix", "graphics": "opengles"},
        },
    }

    return [PlatformDefinition.from_mapping(name, data, source="builtin") for name, data in raw.items()]


class PlatformRegistry:
    """Platform definitions known to one build run.

    Definitions from a later source replace earlier ones wholesale; the
    replaced sources are kept in :attr:`overridden`.
    """

    def __init__(
        self,
        definitions: Iterable[PlatformDefinition] = (),
        *,
        host: HostContext | None = None,
        runner: CommandRunner | None = None,
        prefix: str = DEFAULT_PREFIX_TEMPLATE,
        workspace: Path | None = None,
    ) -> None:
        self.host = host or HostContext.current()
        self._runner = runner or SubprocessCommandRunner()
        self._prefix = prefix
        self._workspace = workspace or Path.cwd()
        self._definitions: Dict[str, PlatformDefinition] = {}
        self._profiles: Dict[str, PlatformProfile] = {}
        self.overridden: Dict[str, List[str]] = {}
        self.register_source(definitions)

    @classmethod
    def with_builtins(cls, **kwargs: Any) -> "PlatformRegistry":
        return cls(builtin_definitions(), **kwargs)

    def register_source(self, definitions: Iterable[PlatformDefinition]) -> None:
        """Register all definitions of one source (builtins or one config directory)."""

        seen: Dict[str, PlatformDefinition] = {}
        for definition in definitions:
            if definition.name in seen:
                raise ConfigurationError(
                    f"Platform '{definition.name}' is defined twice in {definition.source}"
                )
            seen[definition.name] = definition
        for name, definition in seen.items():
            existing = self._definitions.get(name)
            if existing is not None:
                self.overridden.setdefault(name, []).append(existing.source)
            self._definitions[name] = definition
            self._profiles.pop(name, None)

    def merge_from_mapping(self, mapping: Mapping[str, Any], *, source: str) -> None:
        section = mapping.get("platforms") if isinstance(mapping.get("platforms"), Mapping) else mapping
        parsed: List[PlatformDefinition] = []
        for raw_name, raw_value in section.items():
            name = str(raw_name).strip()
            if not name:
                continue
            try:
                parsed.append(PlatformDefinition.from_mapping(name, raw_value, source=source))
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(f"{source}: {exc}") from exc
        self.register_source(parsed)

    def names(self) -> List[str]:
        return sorted(self._definitions)

    def definition(self, name: str) -> PlatformDefinition:
        try:
            return self._definitions[name]
        except KeyError:
            raise UnknownPlatform(name, self._definitions) from None

    def profile(self, name: str) -> PlatformProfile:
        definition = self.definition(name)
        profile = self._profiles.get(name)
        if profile is None:
            profile = PlatformProfile(
                definition,
                host=self.host,
                runner=self._runner,
                prefix=self._prefix,
                workspace=self._workspace,
            )
            self._profiles[name] = profile
        return profile

    def resolve(self, name: str) -> Platform:
        return self.profile(name).platform()

    def is_available(self, platform: Platform | str) -> bool:
        name = platform if isinstance(platform, str) else platform.name
        if name not in self._definitions:
            return False
        return self.profile(name).is_available()

    def select(self, name: str) -> Platform:
        """Resolve ``name`` and fail when it cannot be targeted from this host."""

        profile = self.profile(name)
        if not profile.is_available():
            raise ToolchainUnavailable(name, profile.unavailable_reason())
        return profile.platform()

    def host_default(self) -> str | None:
        candidate = HOST_DEFAULT_PLATFORMS.get(self.host.os_name)
        if candidate and candidate in self._definitions:
            return candidate
        return None


def builtin_definitions() -> List[PlatformDefinition]:
    return _build_builtin_definitions()


__all__ = [
    "CommandProbe",
    "DEFAULT_PREFIX_TEMPLATE",
    "HostContext",
    "Platform",
    "PlatformDefinition",
    "PlatformProfile",
    "PlatformRegistry",
    "Probe",
    "VariableSpec",
    "builtin_definitions",
]

"""Reading of layered configuration directories.

A configuration directory holds top-level files (``config.toml``,
``platforms.toml``) and subdirectories with one definition per file
(``packages/``, ``targets/``). Each file may be TOML, JSON or YAML, but a stem
may only appear in one format.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence

import json
import tomllib

import yaml


Parser = Callable[[Any], Any]

PARSERS: Dict[str, tuple[str, Parser]] = {
    ".toml": ("rb", tomllib.load),
    ".json": ("r", json.load),
    ".yaml": ("r", yaml.safe_load),
    ".yml": ("r", yaml.safe_load),
}
"""File suffix to ``(open mode, parser)``."""


class ConfigFileError(ValueError):
    """A configuration file is unreadable, malformed or ambiguous."""

    def __init__(self, path: Path, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


def load_config_file(path: Path) -> Mapping[str, Any]:
    """Parse ``path`` and return its root mapping; an empty file yields ``{}``."""

    suffix = path.suffix.lower()
    if suffix not in PARSERS:
        raise ConfigFileError(path, f"unsupported extension '{suffix}' (use one of {', '.join(sorted(PARSERS))})")
    mode, parser = PARSERS[suffix]

    try:
        if mode == "rb":
            with path.open("rb") as handle:
                data = parser(handle)
        else:
            with path.open("r", encoding="utf-8") as handle:
                data = parser(handle)
    except (tomllib.TOMLDecodeError, json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigFileError(path, f"could not be parsed: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigFileError(path, "must contain a mapping at the root")
    return data


@dataclass(frozen=True, slots=True)
class ConfigDirectory:
    """One directory in the overlay chain."""

    path: Path

    def files(self, subdirectory: str | None = None) -> Dict[str, Path]:
        """Map file stems to config files directly inside ``subdirectory``."""

        directory = self.path / subdirectory if subdirectory else self.path
        found: Dict[str, Path] = {}
        if not directory.is_dir():
            return found
        for candidate in sorted(directory.iterdir()):
            if not candidate.is_file() or candidate.suffix.lower() not in PARSERS:
                continue
            previous = found.get(candidate.stem)
            if previous is not None:
                raise ConfigFileError(
                    candidate,
                    f"'{candidate.stem}' is also defined by '{previous.name}'; keep one format per entry",
                )
            found[candidate.stem] = candidate
        return found

    def top_level(self, stem: str) -> Path | None:
        return self.files().get(stem)

    def entries(self, subdirectory: str) -> List[Path]:
        """Definition files of ``subdirectory`` in stem order."""
        return [path for _, path in sorted(self.files(subdirectory).items())]


def layered_directories(root: Path, directories: Iterable[Path]) -> tuple[List[ConfigDirectory], List[Path]]:
    """Split ``directories`` into existing overlay layers and missing paths.

    Relative paths are taken from ``root``. A directory mentioned twice keeps
    its last position.
    """

    ordered: List[Path] = []
    for raw in directories:
        path = raw if raw.is_absolute() else (root / raw).resolve()
        if path in ordered:
            ordered.remove(path)
        ordered.append(path)
    existing = [ConfigDirectory(path) for path in ordered if path.is_dir()]
    missing = [path for path in ordered if not path.is_dir()]
    return existing, missing


def merge_mappings(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    """Deep merge two mappings; ``overlay`` wins wherever both are not tables."""

    result: Dict[str, Any] = dict(base)
    for key, value in overlay.items():
        current = result.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            result[key] = merge_mappings(current, value)
        else:
            result[key] = value
    return result


def normalize_string_list(value: Any, *, field_name: str | None = None) -> List[str]:
    """Coerce a string or a sequence of strings into trimmed, non-empty strings."""

    label = f"{field_name} " if field_name else ""
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if not isinstance(value, Sequence):
        raise TypeError(f"{label}must be a string or sequence of strings")

    items: List[str] = []
    for item in value:
        if not isinstance(item, str):
            raise TypeError(f"{label}entries must be strings")
        if item.strip():
            items.append(item.strip())
    return items


def normalize_string_mapping(value: Any, *, field_name: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise TypeError(f"{field_name} must be a table/mapping")
    return {str(key): item for key, item in value.items()}


__all__ = [
    "ConfigDirectory",
    "ConfigFileError",
    "PARSERS",
    "layered_directories",
    "load_config_file",
    "merge_mappings",
    "normalize_string_list",
    "normalize_string_mapping",
]

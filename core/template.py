"""Placeholder resolution for declarative build definitions.

Strings may reference values from a nested context with ``{{a.b.c}}``. A string
that consists of a single placeholder resolves to the referenced value itself
(so a list stays a list); otherwise every placeholder is substituted textually,
lists being joined with spaces. Context values may be templates themselves and
are resolved on lookup.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping
import re


_PLACEHOLDER = re.compile(r"\{\{\s*([^{}]*?)\s*\}\}")


class TemplateError(ValueError):
    """Raised when template resolution fails."""


def _render(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return " ".join(_render(item) for item in value)
    return str(value)


def _whole_placeholder(text: str) -> str | None:
    match = _PLACEHOLDER.fullmatch(text.strip())
    return match.group(1) if match else None


@dataclass(slots=True)
class TemplateResolver:
    """Resolves templates against ``context``; resolved paths are memoized."""

    context: Mapping[str, Any]
    _cache: dict[str, Any] = field(default_factory=dict, init=False, repr=False)

    def resolve(self, value: Any) -> Any:
        return self._resolve(value, ())

    def resolve_str(self, value: Any) -> str:
        return _render(self.resolve(value))

    def _resolve(self, value: Any, active: tuple[str, ...]) -> Any:
        if isinstance(value, str):
            path = _whole_placeholder(value)
            if path is not None:
                return self._path(path, active)
            return _PLACEHOLDER.sub(lambda match: _render(self._path(match.group(1), active)), value)
        if isinstance(value, Mapping):
            return {key: self._resolve(item, active) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return type(value)(self._resolve(item, active) for item in value)
        return value

    def _path(self, path: str, active: tuple[str, ...]) -> Any:
        try:
            return self._cache[path]
        except KeyError:
            pass
        if path in active:
            raise TemplateError("Circular reference detected: " + " -> ".join((*active, path)))
        resolved = self._resolve(self._lookup_raw(path), (*active, path))
        self._cache[path] = resolved
        return resolved

    def _lookup_raw(self, path: str) -> Any:
        node: Any = self.context
        for key in path.split("."):
            if isinstance(node, Mapping):
                if key not in node:
                    raise TemplateError(f"Cannot resolve path '{path}' in template context")
                node = node[key]
            elif isinstance(node, (list, tuple)):
                if not key.isdigit() or int(key) >= len(node):
                    raise TemplateError(f"Invalid list index '{key}' in path '{path}'")
                node = node[int(key)]
            else:
                raise TemplateError(f"Cannot resolve path '{path}' in template context")
        return node


def _strings(value: Any) -> Iterator[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from _strings(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _strings(item)


def extract_placeholders(value: Any) -> set[str]:
    """Every placeholder path referenced anywhere inside ``value``."""

    return {
        match.group(1)
        for text in _strings(value)
        for match in _PLACEHOLDER.finditer(text)
        if match.group(1)
    }


__all__ = ["TemplateError", "TemplateResolver", "extract_placeholders"]

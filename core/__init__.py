"""Shared core utilities for build orchestration and templating."""

from .archive import ArchiveConsole, SourceArchive
from .template import TemplateError, TemplateResolver, extract_placeholders
from .command_runner import (
    BuildInvocation,
    CommandError,
    CommandResult,
    CommandRunner,
    CommandTimeout,
    RecordingCommandRunner,
    SubprocessCommandRunner,
    working_directory,
)

__all__ = [
    "ArchiveConsole",
    "BuildInvocation",
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "CommandTimeout",
    "RecordingCommandRunner",
    "SourceArchive",
    "SubprocessCommandRunner",
    "TemplateError",
    "TemplateResolver",
    "extract_placeholders",
    "working_directory",
]

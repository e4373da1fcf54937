"""Utilities for executing external build tools with optional dry-run support."""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Sequence
import os
import shlex
import subprocess
import sys
import threading


def _quote(command: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(part)) for part in command)


@dataclass(frozen=True, slots=True)
class BuildInvocation:
    """A single external-process execution request."""

    executable: str
    arguments: tuple[str, ...] = ()
    environment: Mapping[str, str] = field(default_factory=dict)
    working_directory: Path | None = None

    @property
    def command(self) -> List[str]:
        return [self.executable, *self.arguments]


@dataclass
class CommandResult:
    """Represents the outcome of an executed command."""

    command: Sequence[str]
    returncode: int
    stdout: str
    stderr: str
    streamed: bool = False

    @property
    def output(self) -> str:
        if self.stderr and self.stdout:
            return f"{self.stdout}\n{self.stderr}"
        return self.stdout or self.stderr


class CommandError(RuntimeError):
    """A command exited non-zero while its caller required success."""

    def __init__(self, result: CommandResult) -> None:
        lines = [f"'{_quote(result.command)}' exited with status {result.returncode}"]
        if not result.streamed and result.output:
            lines.append(result.output.rstrip())
        super().__init__("\n".join(lines))
        self.result = result


class CommandTimeout(RuntimeError):
    """Raised when a command exceeds its allotted run time."""

    def __init__(self, command: Sequence[str], timeout: float, output: str = "") -> None:
        super().__init__(
            f"Command timed out after {timeout:g}s: {_quote(command)}"
        )
        self.command = list(command)
        self.timeout = timeout
        self.output = output


@contextmanager
def working_directory(path: Path | str) -> Iterator[Path]:
    """Temporarily change the process working directory to ``path``.

    The previous directory is restored on every exit path, including when the
    body raises.
    """

    previous = Path.cwd()
    target = Path(path)
    os.chdir(target)
    try:
        yield target
    finally:
        os.chdir(previous)


class CommandRunner:
    """Abstract command runner interface."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
        timeout: float | None = None,
    ) -> CommandResult:
        raise NotImplementedError

    def invoke(
        self,
        invocation: BuildInvocation,
        *,
        check: bool = False,
        note: str | None = None,
        stream: bool = False,
        timeout: float | None = None,
    ) -> CommandResult:
        return self.run(
            invocation.command,
            cwd=invocation.working_directory,
            env=invocation.environment,
            check=check,
            note=note,
            stream=stream,
            timeout=timeout,
        )


class SubprocessCommandRunner(CommandRunner):
    """Command runner that executes commands via :mod:`subprocess`."""

    def __init__(self, *, timeout: float | None = None) -> None:
        self._default_timeout = timeout

    @staticmethod
    def _terminate(process: subprocess.Popen[str]) -> None:
        if process.poll() is not None:
            return
        process.terminate()
        try:
            process.wait(timeout=10)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
        timeout: float | None = None,
    ) -> CommandResult:
        effective_timeout = timeout if timeout is not None else self._default_timeout
        args = [str(part) for part in command]

        process = subprocess.Popen(
            args,
            cwd=str(cwd) if cwd else None,
            env={**os.environ, **env} if env is not None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT if stream else subprocess.PIPE,
            text=True,
        )

        try:
            if stream:
                stdout, stderr = self._stream_output(process, effective_timeout)
            else:
                stdout, stderr = process.communicate(timeout=effective_timeout)
        except subprocess.TimeoutExpired as exc:
            self._terminate(process)
            partial = exc.output if isinstance(exc.output, str) else ""
            raise CommandTimeout(args, float(effective_timeout or 0), partial) from exc
        except KeyboardInterrupt:
            self._terminate(process)
            raise

        result = CommandResult(
            command=args,
            returncode=process.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            streamed=stream,
        )
        if check and result.returncode != 0:
            raise CommandError(result)
        return result

    @staticmethod
    def _stream_output(process: subprocess.Popen[str], timeout: float | None) -> tuple[str, str]:
        captured: List[str] = []
        assert process.stdout is not None
        pipe = process.stdout

        def pump() -> None:
            for line in pipe:
                sys.stdout.write(line)
                captured.append(line)

        reader = threading.Thread(target=pump, name="command-output", daemon=True)
        reader.start()
        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired as exc:
            exc.output = "".join(captured)
            raise
        reader.join()
        return "".join(captured), ""


@dataclass(frozen=True, slots=True)
class RecordedCommand:
    """One invocation captured by :class:`RecordingCommandRunner`."""

    command: List[str]
    cwd: str | None
    env: Dict[str, str]
    note: str | None
    stream: bool
    returncode: int = 0

    def describe(self, default_cwd: str | None = None) -> str:
        parts = ["[dry-run]"]
        if self.note:
            parts.append(self.note)
        cwd = self.cwd or default_cwd
        if cwd:
            parts.append(f"(cwd={cwd})")
        parts.append(_quote(self.command))
        return " ".join(parts)


class RecordingCommandRunner(CommandRunner):
    """Records commands instead of executing them.

    ``returncodes`` maps an executable, or a whole formatted command, to the
    exit status reported for it, so failing tools can be simulated.
    """

    def __init__(self, returncodes: Mapping[str, int] | None = None) -> None:
        self.commands: List[RecordedCommand] = []
        self._returncodes: Dict[str, int] = dict(returncodes or {})

    def _status(self, argv: List[str]) -> int:
        for key in (_quote(argv), argv[0] if argv else ""):
            if key in self._returncodes:
                return self._returncodes[key]
        return 0

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
        timeout: float | None = None,
    ) -> CommandResult:
        argv = [str(part) for part in command]
        status = self._status(argv)
        self.commands.append(
            RecordedCommand(
                command=argv,
                cwd=str(cwd) if cwd else None,
                env=dict(env or {}),
                note=note,
                stream=stream,
                returncode=status,
            )
        )
        result = CommandResult(
            command=argv,
            returncode=status,
            stdout=f"{argv[0]}: simulated failure" if status else "",
            stderr="",
        )
        if check and status:
            raise CommandError(result)
        return result

    def iter_formatted(self, *, workspace: Path | None = None) -> Iterator[str]:
        default_cwd = str(workspace) if workspace else None
        return (record.describe(default_cwd) for record in self.commands)


__all__ = [
    "BuildInvocation",
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "CommandTimeout",
    "RecordedCommand",
    "RecordingCommandRunner",
    "SubprocessCommandRunner",
    "working_directory",
]

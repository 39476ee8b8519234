r"""Utilities for running plumbum command invocations.

This module provides :func:`run_cmd`, the single entry point the pipeline
uses to launch external tools. Each invocation is echoed before execution to
aid debugging in CI logs or local terminals, with any secrets replaced by
asterisks. Standard output and standard error are drained concurrently while
the process runs, and the invocation honours a :class:`CancelToken`.

Examples
--------
Capture the output of a command::

    >>> from plumbum import local
    >>> result = run_cmd(local["echo"]["hello"], cancel=CancelToken())
    $ echo hello
    hello
    >>> result.stdout
    'hello\n'

Hide an API key from the echoed command line::

    >>> run_cmd(local["echo"]["secret"], cancel=CancelToken(), secrets=["secret"])
    $ echo ******
    secret
"""

from __future__ import annotations

import collections.abc as cabc
import subprocess
import threading
import typing as typ

import typer

from .cancellation import CancelToken
from .errors import PipelineCancelled

__all__ = ["RunResult", "SupportsPopen", "format_command", "run_cmd"]

_POLL_INTERVAL = 0.05

LineSink = cabc.Callable[[str], None]


class RunResult(typ.NamedTuple):
    """Exit status and captured output of a finished command."""

    returncode: int
    stdout: str
    stderr: str


@typ.runtime_checkable
class SupportsPopen(typ.Protocol):
    """Plumbum commands that expose ``formulate`` and ``popen``."""

    def formulate(self) -> cabc.Sequence[str]:  # pragma: no cover - protocol
        ...

    def popen(
        self, *args: object, **kwargs: object
    ) -> subprocess.Popen[bytes]:  # pragma: no cover - protocol
        ...


def _ensure_text(value: str | bytes | None) -> str:
    """Return ``value`` as a decoded ``str`` replacing undecodable bytes."""
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    return value.decode("utf-8", errors="replace")


def _quote(value: str) -> str:
    if not value:
        return '""'
    if value.startswith('"') and value.endswith('"') and len(value) > 1:
        return value
    escaped = value.replace('"', '\\"')
    if any(char.isspace() for char in value):
        if escaped.endswith("\\"):
            escaped = f"{escaped}\\"
        return f'"{escaped}"'
    return escaped


def format_command(
    cmd: SupportsPopen, *, secrets: cabc.Iterable[str] = ()
) -> str:
    """Render ``cmd`` for display, masking every value listed in ``secrets``."""
    masked = {secret: "*" * len(secret) for secret in secrets if secret}
    parts = [masked.get(str(part), str(part)) for part in cmd.formulate()]
    return " ".join(_quote(part) for part in parts)


def _pump(
    stream: typ.IO[bytes] | None,
    captured: list[str],
    sink: LineSink | None,
) -> None:
    if stream is None:
        return
    with stream:
        for raw in iter(stream.readline, b""):
            line = _ensure_text(raw)
            captured.append(line)
            if sink is not None:
                sink(line.rstrip("\r\n"))


def _echo_stdout(line: str) -> None:
    typer.echo(line)


def _echo_stderr(line: str) -> None:
    typer.echo(line, err=True)


def run_cmd(
    cmd: object,
    *,
    cancel: CancelToken,
    secrets: cabc.Iterable[str] = (),
    echo_output: bool = True,
    on_stdout: LineSink | None = None,
) -> RunResult:
    """Execute ``cmd`` after echoing it and return its :class:`RunResult`.

    Parameters
    ----------
    cmd
        Bound plumbum command to run.
    cancel
        Token checked while the process runs; a cancelled token kills the
        process and raises :class:`PipelineCancelled`.
    secrets
        Values to mask when echoing the command line.
    echo_output
        When ``True``, forward the tool's output to the console as it arrives.
    on_stdout
        Optional callback receiving each stdout line (without its newline).

    Returns
    -------
    RunResult
        The exit status and the captured output. A non-zero status is
        returned, not raised; callers decide how to react.
    """
    if not isinstance(cmd, SupportsPopen):
        msg = "run_cmd requires a plumbum command invocation"
        raise TypeError(msg)

    cancel.raise_if_cancelled()
    typer.echo(f"$ {format_command(cmd, secrets=secrets)}")

    stdout_lines: list[str] = []
    stderr_lines: list[str] = []
    stdout_sinks = [
        sink
        for sink in (_echo_stdout if echo_output else None, on_stdout)
        if sink is not None
    ]

    def stdout_sink(line: str) -> None:
        for sink in stdout_sinks:
            sink(line)

    proc = cmd.popen(stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    readers = [
        threading.Thread(
            target=_pump,
            args=(proc.stdout, stdout_lines, stdout_sink if stdout_sinks else None),
            daemon=True,
        ),
        threading.Thread(
            target=_pump,
            args=(proc.stderr, stderr_lines, _echo_stderr if echo_output else None),
            daemon=True,
        ),
    ]
    for reader in readers:
        reader.start()

    try:
        while proc.poll() is None:
            if cancel.wait(_POLL_INTERVAL):
                proc.kill()
                proc.wait()
                raise PipelineCancelled
    finally:
        for reader in readers:
            reader.join()

    return RunResult(int(proc.returncode), "".join(stdout_lines), "".join(stderr_lines))

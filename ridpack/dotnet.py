"""Capability object wrapping the ``dotnet`` command line."""

from __future__ import annotations

import collections.abc as cabc
import logging
import typing as typ

from plumbum import local
from plumbum.commands import CommandNotFound

from .cmd_utils import RunResult, run_cmd
from .errors import ConfigurationError, ToolFailure

if typ.TYPE_CHECKING:
    from pathlib import Path

    from .cancellation import CancelToken

__all__ = ["DotnetCli"]

logger = logging.getLogger(__name__)


class DotnetCli:
    """Run ``dotnet`` sub-commands for a single pipeline invocation.

    The instance is created once per command-line invocation and passed to
    every component that launches the tool, so tests can substitute a double
    with the same interface.
    """

    def __init__(
        self,
        cancel: CancelToken,
        *,
        executable: str | Path = "dotnet",
        no_logo: bool = False,
    ) -> None:
        self.cancel = cancel
        self.executable = str(executable)
        self.no_logo = no_logo

    def _command(self, argv: cabc.Sequence[str]) -> object:
        try:
            tool = local[self.executable]
        except CommandNotFound as exc:
            msg = f"'{self.executable}' was not found on PATH."
            raise ConfigurationError(msg) from exc
        return tool[list(argv)]

    def _common_args(
        self,
        config: str | None,
        *,
        no_restore: bool,
        properties: cabc.Sequence[str],
        no_logo: bool | None = None,
    ) -> list[str]:
        args: list[str] = []
        if config is not None:
            args.extend(["-c", config])
        if no_restore:
            args.append("--no-restore")
        if self.no_logo if no_logo is None else no_logo:
            args.append("--nologo")
        args.extend(f"/p:{prop}" for prop in properties)
        return args

    def _run(
        self,
        label: str,
        argv: list[str],
        *,
        secrets: cabc.Iterable[str] = (),
    ) -> int:
        result = run_cmd(self._command(argv), cancel=self.cancel, secrets=secrets)
        logger.debug(
            "dotnet %s finished with exit code %d.", label, result.returncode
        )
        return result.returncode

    def build(
        self,
        project: Path,
        *,
        config: str | None,
        defines: cabc.Sequence[str] = (),
        no_restore: bool = False,
        properties: cabc.Sequence[str] = (),
    ) -> int:
        """Run ``dotnet build`` for ``project`` and return the exit code."""
        argv = ["build", str(project)]
        if defines:
            argv.append(f"/p:DefineConstants={';'.join(defines)}")
        argv += self._common_args(
            config, no_restore=no_restore, properties=properties
        )
        return self._run("build", argv)

    def clean(
        self,
        project: Path,
        *,
        config: str | None,
        no_restore: bool = False,
        properties: cabc.Sequence[str] = (),
    ) -> int:
        """Run ``dotnet clean`` for ``project`` and return the exit code."""
        argv = [
            "clean",
            str(project),
            *self._common_args(config, no_restore=no_restore, properties=properties),
        ]
        return self._run("clean", argv)

    def pack(
        self,
        project: Path,
        output_dir: Path,
        *,
        config: str | None,
        defines: cabc.Sequence[str] = (),
        include_symbols: bool = False,
        no_build: bool = False,
        no_restore: bool = False,
        properties: cabc.Sequence[str] = (),
    ) -> int:
        """Run ``dotnet pack`` writing packages to ``output_dir``."""
        argv = ["pack", str(project), "-o", str(output_dir)]
        if no_build:
            argv.append("--no-build")
        if defines:
            argv.append(f"/p:DefineConstants={';'.join(defines)}")
        if include_symbols:
            argv += ["-p:IncludeSymbols=true", "-p:SymbolPackageFormat=snupkg"]
        argv += self._common_args(
            config, no_restore=no_restore, properties=properties
        )
        return self._run("pack", argv)

    def push(self, package: Path, *, api_key: str, source: str) -> int:
        """Push ``package`` to ``source``; the API key is masked in the echo."""
        # "dotnet nuget" rejects --nologo.
        argv = [
            "nuget",
            "push",
            str(package),
            "--api-key",
            api_key,
            "--source",
            source,
            "--skip-duplicate",
        ]
        return self._run("nuget push", argv, secrets=[api_key])

    def list_watched_files(self, project: Path) -> list[str]:
        """Return the source files ``dotnet watch --list`` reports for ``project``.

        Raises
        ------
        ToolFailure
            If ``dotnet watch`` exits with a non-zero status.
        """
        argv = ["watch", "--list", "--project", str(project)]
        result: RunResult = run_cmd(
            self._command(argv), cancel=self.cancel, echo_output=False
        )
        if result.returncode != 0:
            raise ToolFailure("dotnet watch --list", result.returncode)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

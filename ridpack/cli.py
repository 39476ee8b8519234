"""Command-line entry point exposing ``build``, ``clean``, ``pack`` and ``push``.

Every option may also be supplied through a ``RIDPACK_`` environment variable
(for example ``RIDPACK_API_KEY``) or the ``make.json`` configuration file.
"""

from __future__ import annotations

import contextlib
import logging
import shutil
import signal
import threading
import typing as typ
from pathlib import Path

import cyclopts
import httpx
import typer
from cyclopts import App, Parameter

from . import __version__
from .archive import RuntimeArchiveProvider
from .cancellation import CancelToken
from .config import (
    DEFAULT_NUGET_SOURCE,
    ConfigFile,
    Directories,
    PackOptions,
    PushOptions,
    load_config_file,
    resolve_project,
)
from .dotnet import DotnetCli
from .errors import RidpackError, ToolFailure
from .packer import PipelineServices, run_pack
from .push import PushPipeline
from .targets import split_list_values

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import types

__all__ = ["app", "run"]

logger = logging.getLogger(__name__)

app = App(name="ridpack", version=__version__)
_env_config = cyclopts.config.Env("RIDPACK_", command=False)
existing_config = getattr(app, "config", ()) or ()
app.config = (*tuple(existing_config), _env_config)

_HTTP_TIMEOUT = httpx.Timeout(30.0)

Flag = typ.Annotated[bool | None, Parameter(negative=())]
ConfigPath = typ.Annotated[Path | None, Parameter(name="CONFIG_PATH")]
Configuration = typ.Annotated[
    str | None, Parameter(name=["--configuration", "-c"])
]


class _EchoHandler(logging.Handler):
    """Forward log records to the console through :func:`typer.echo`."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            typer.echo(self.format(record), err=True)
        except Exception:  # noqa: BLE001
            self.handleError(record)


def _configure_logging(*, verbose: bool) -> None:
    package_logger = logging.getLogger(__package__)
    package_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if not any(isinstance(h, _EchoHandler) for h in package_logger.handlers):
        handler = _EchoHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        package_logger.addHandler(handler)


def _print_logo(config: ConfigFile, no_logo: bool | None) -> bool:
    """Print the banner unless suppressed; return the effective ``no_logo``."""
    suppressed = config.pick_bool(no_logo, "noLogo", default=False)
    if not suppressed:
        typer.echo(f"ridpack {__version__}")
    return suppressed


@contextlib.contextmanager
def _pipeline_services(
    cache_dir: Path, *, no_logo: bool
) -> cabc.Iterator[PipelineServices]:
    """Create the per-invocation capabilities and route Ctrl+C to cancellation."""
    cancel = CancelToken()
    previous: typ.Any = None

    def _on_interrupt(signum: int, frame: types.FrameType | None) -> None:
        logger.warning("Cancellation requested.")
        cancel.cancel()

    if threading.current_thread() is threading.main_thread():
        previous = signal.signal(signal.SIGINT, _on_interrupt)
    try:
        with httpx.Client(timeout=_HTTP_TIMEOUT) as client:
            yield PipelineServices(
                dotnet=DotnetCli(cancel, no_logo=no_logo),
                archives=RuntimeArchiveProvider(client, cache_dir, cancel),
                cancel=cancel,
            )
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)


def _guarded(action: cabc.Callable[[], int]) -> int:
    """Run ``action`` and map pipeline errors onto an exit code."""
    try:
        return action()
    except RidpackError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        return exc.exit_code


def _list_option(values: list[str] | None) -> tuple[str, ...] | None:
    return None if values is None else tuple(split_list_values(values))


def _pack_options(
    config: ConfigFile,
    *,
    project: Path,
    directories: Directories,
    configuration: str | None,
    define: list[str] | None,
    prop: list[str] | None,
    targets: list[str] | None,
    strict: bool | None,
    no_symbols: bool | None,
    no_restore: bool | None,
    runtimes_version: str | None,
    runtimes_url: str | None,
    runtimes_license_spdx: str | None,
    runtimes_license_file_url: str | None,
    runtimes_license_spdx_file_url: str | None,
    force_runtimes_download: bool | None,
) -> PackOptions:
    return PackOptions(
        project=project,
        directories=directories,
        config=configuration or "Release",
        targets=_list_option(targets) or (),
        strict=bool(strict),
        defines=_list_option(define) or (),
        properties=tuple(prop or ()),
        no_symbols=bool(no_symbols),
        no_restore=bool(no_restore),
        runtimes_version=config.pick_optional_str(runtimes_version, "runtimesVersion"),
        runtimes=config.runtimes_source(
            runtimes_url,
            runtimes_license_spdx,
            runtimes_license_file_url,
            runtimes_license_spdx_file_url,
        ),
        force_runtimes_download=bool(force_runtimes_download),
    )


@app.command
def build(
    config_path: ConfigPath = None,
    /,
    *,
    project: Path | None = None,
    configuration: Configuration = None,
    define: list[str] | None = None,
    no_restore: Flag = None,
    prop: typ.Annotated[list[str] | None, Parameter(name="--property")] = None,
    verbose: Flag = None,
    no_logo: Flag = None,
) -> int:
    """Build the core project with ``dotnet build``.

    Parameters
    ----------
    config_path
        ``make.json`` or a directory containing it.
    project
        The ``.csproj`` file or a directory containing it.
    configuration
        Build configuration; defaults to ``Debug``.
    define
        Preprocessor symbols, comma or semicolon separated.
    no_restore
        Skip the implicit restore.
    prop
        Extra MSBuild properties as ``Name=Value``.
    verbose
        Emit diagnostic output.
    no_logo
        Suppress the banner.
    """
    _configure_logging(verbose=bool(verbose))

    def action() -> int:
        config = load_config_file(config_path)
        suppressed = _print_logo(config, no_logo)
        project_file = resolve_project(project, config)
        cancel = CancelToken()
        dotnet = DotnetCli(cancel, no_logo=suppressed)
        logger.info("Building '%s'...", project_file.name)
        exit_code = dotnet.build(
            project_file,
            config=configuration or "Debug",
            defines=_list_option(define) or (),
            no_restore=bool(no_restore),
            properties=tuple(prop or ()),
        )
        if exit_code != 0:
            raise ToolFailure("dotnet build", exit_code)
        return 0

    return _guarded(action)


def _remove_dir(path: Path) -> int:
    if not path.exists():
        return 0
    try:
        shutil.rmtree(path)
    except OSError as exc:
        typer.secho(
            f"Failed to delete '{path}': [{type(exc).__name__}]: {exc}",
            fg=typer.colors.RED,
            err=True,
        )
        return 1
    logger.debug("Deleted '%s'.", path)
    return 0


@app.command
def clean(
    config_path: ConfigPath = None,
    /,
    *,
    project: Path | None = None,
    configuration: Configuration = None,
    no_restore: Flag = None,
    prop: typ.Annotated[list[str] | None, Parameter(name="--property")] = None,
    output_dir: str | None = None,
    cache_dir: str | None = None,
    temp_dir: str | None = None,
    verbose: Flag = None,
    no_logo: Flag = None,
) -> int:
    """Run ``dotnet clean`` and delete the output, cache and temp directories."""
    _configure_logging(verbose=bool(verbose))

    def action() -> int:
        config = load_config_file(config_path)
        suppressed = _print_logo(config, no_logo)
        project_file = resolve_project(project, config)
        directories = config.directories(output_dir, cache_dir, temp_dir)
        dotnet = DotnetCli(CancelToken(), no_logo=suppressed)
        codes = [
            dotnet.clean(
                project_file,
                config=configuration,
                no_restore=bool(no_restore),
                properties=tuple(prop or ()),
            )
        ]
        if codes[0] != 0:
            typer.secho(
                f"'dotnet clean' finished with exit code {codes[0]}.",
                fg=typer.colors.RED,
                err=True,
            )
        codes.extend(
            _remove_dir(path)
            for path in (
                directories.output_dir,
                directories.cache_dir,
                directories.temp_dir,
            )
        )
        return next((code for code in codes if code != 0), 0)

    return _guarded(action)


@app.command
def pack(
    config_path: ConfigPath = None,
    /,
    *,
    project: Path | None = None,
    configuration: Configuration = None,
    define: list[str] | None = None,
    no_restore: Flag = None,
    prop: typ.Annotated[list[str] | None, Parameter(name="--property")] = None,
    output_dir: str | None = None,
    cache_dir: str | None = None,
    temp_dir: str | None = None,
    runtimes_version: str | None = None,
    runtimes_url: str | None = None,
    runtimes_license_spdx: str | None = None,
    runtimes_license_file_url: str | None = None,
    runtimes_license_spdx_file_url: str | None = None,
    force_runtimes_download: Flag = None,
    targets: list[str] | None = None,
    strict: Flag = None,
    no_symbols: Flag = None,
    verbose: Flag = None,
    no_logo: Flag = None,
) -> int:
    """Pack the core, RID and meta packages and record them in the cache.

    Parameters
    ----------
    config_path
        ``make.json`` or a directory containing it.
    runtimes_version
        Version of the native runtimes archive.
    runtimes_url
        Archive URL; ``{0}`` is replaced with the runtimes version.
    targets
        ``all``, ``core``, ``meta`` or RIDs, comma or semicolon separated.
    strict
        Fail when a requested RID or its native binary is missing.
    no_symbols
        Do not produce a symbols package for core.
    """
    _configure_logging(verbose=bool(verbose))

    def action() -> int:
        config = load_config_file(config_path)
        suppressed = _print_logo(config, no_logo)
        directories = config.directories(output_dir, cache_dir, temp_dir)
        options = _pack_options(
            config,
            project=resolve_project(project, config),
            directories=directories,
            configuration=configuration,
            define=define,
            prop=prop,
            targets=targets,
            strict=strict,
            no_symbols=no_symbols,
            no_restore=no_restore,
            runtimes_version=runtimes_version,
            runtimes_url=runtimes_url,
            runtimes_license_spdx=runtimes_license_spdx,
            runtimes_license_file_url=runtimes_license_file_url,
            runtimes_license_spdx_file_url=runtimes_license_spdx_file_url,
            force_runtimes_download=force_runtimes_download,
        )
        with _pipeline_services(directories.cache_dir, no_logo=suppressed) as services:
            run_pack(options, services)
        return 0

    return _guarded(action)


@app.command
def push(
    config_path: ConfigPath = None,
    /,
    *,
    api_key: typ.Annotated[str, Parameter(required=True)],
    project: Path | None = None,
    configuration: Configuration = None,
    define: list[str] | None = None,
    no_restore: Flag = None,
    prop: typ.Annotated[list[str] | None, Parameter(name="--property")] = None,
    output_dir: str | None = None,
    cache_dir: str | None = None,
    temp_dir: str | None = None,
    runtimes_version: str | None = None,
    runtimes_url: str | None = None,
    runtimes_license_spdx: str | None = None,
    runtimes_license_file_url: str | None = None,
    runtimes_license_spdx_file_url: str | None = None,
    force_runtimes_download: Flag = None,
    targets: list[str] | None = None,
    strict: Flag = None,
    no_symbols: Flag = None,
    nuget_source: str | None = None,
    no_pack: Flag = None,
    fail_stale: Flag = None,
    verbose: Flag = None,
    no_logo: Flag = None,
) -> int:
    """Push the cached packages, repacking once when the cache is stale.

    Parameters
    ----------
    api_key
        API key for the package feed; masked in all output.
    nuget_source
        Feed to push to.
    no_pack
        Push whatever is recorded or found without repacking.
    fail_stale
        Fail instead of repacking when the cache is stale.
    """
    _configure_logging(verbose=bool(verbose))

    def action() -> int:
        config = load_config_file(config_path)
        suppressed = _print_logo(config, no_logo)
        project_file = resolve_project(project, config)
        directories = config.directories(output_dir, cache_dir, temp_dir)
        pack_options = _pack_options(
            config,
            project=project_file,
            directories=directories,
            configuration=configuration,
            define=define,
            prop=prop,
            targets=targets,
            strict=strict,
            no_symbols=no_symbols,
            no_restore=no_restore,
            runtimes_version=runtimes_version,
            runtimes_url=runtimes_url,
            runtimes_license_spdx=runtimes_license_spdx,
            runtimes_license_file_url=runtimes_license_file_url,
            runtimes_license_spdx_file_url=runtimes_license_spdx_file_url,
            force_runtimes_download=force_runtimes_download,
        )
        options = PushOptions(
            project=project_file,
            directories=directories,
            api_key=api_key,
            pack=pack_options,
            source=config.pick_str(nuget_source, "nugetSource", DEFAULT_NUGET_SOURCE),
            targets=pack_options.targets,
            no_pack=bool(no_pack),
            fail_stale=bool(fail_stale),
            config=configuration,
            defines=_list_option(define),
            properties=None if prop is None else tuple(prop),
            no_symbols=no_symbols,
            runtimes_version=pack_options.runtimes_version,
            runtimes_url=pack_options.runtimes.url,
        )
        with _pipeline_services(directories.cache_dir, no_logo=suppressed) as services:
            result = PushPipeline(options, services).run()
        typer.echo(f"Successfully pushed {result.count} package(s).")
        return 0

    return _guarded(action)


def run() -> None:
    """Entry point for script execution."""
    raise SystemExit(app() or 0)


if __name__ == "__main__":
    run()

"""Configuration models and loader for the release pipeline.

Values are layered: command-line options win over the JSON config file
(``make.json``), which wins over built-in defaults.
"""

from __future__ import annotations

import dataclasses
import json
import typing as typ
from pathlib import Path

from .archive import RuntimesSource
from .errors import ConfigurationError
from .ledger import CACHE_FILE_NAME

__all__ = [
    "DEFAULT_CONFIG_FILE_NAME",
    "DEFAULT_NUGET_SOURCE",
    "ConfigFile",
    "Directories",
    "PackOptions",
    "PushOptions",
    "load_config_file",
    "resolve_project",
]

DEFAULT_CONFIG_FILE_NAME = "make.json"
DEFAULT_PROJECT_DIR = "src"
DEFAULT_NUGET_SOURCE = "https://api.nuget.org/v3/index.json"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


@dataclasses.dataclass(frozen=True, slots=True)
class Directories:
    """Output, cache and temp directories owned by one pipeline run."""

    output_dir: Path = Path("output")
    cache_dir: Path = Path("cache")
    temp_dir: Path = Path("temp")

    @property
    def cache_file(self) -> Path:
        """Return the path of the cache ledger."""
        return self.cache_dir / CACHE_FILE_NAME


@dataclasses.dataclass(frozen=True, slots=True)
class PackOptions:
    """Inputs of a pack run."""

    project: Path
    directories: Directories
    config: str = "Release"
    targets: tuple[str, ...] = ()
    strict: bool = False
    defines: tuple[str, ...] = ()
    properties: tuple[str, ...] = ()
    no_symbols: bool = False
    no_restore: bool = False
    runtimes_version: str | None = None
    runtimes: RuntimesSource = RuntimesSource()
    force_runtimes_download: bool = False


@dataclasses.dataclass(frozen=True, slots=True)
class PushOptions:
    """Inputs of a push run.

    ``config``, ``defines``, ``properties``, ``no_symbols`` and the runtimes
    inputs are ``None`` when the caller left them unset; the staleness check
    then falls back to the cached values.
    """

    project: Path
    directories: Directories
    api_key: str
    pack: PackOptions
    source: str = DEFAULT_NUGET_SOURCE
    targets: tuple[str, ...] = ()
    no_pack: bool = False
    fail_stale: bool = False
    config: str | None = None
    defines: tuple[str, ...] | None = None
    properties: tuple[str, ...] | None = None
    no_symbols: bool | None = None
    runtimes_version: str | None = None
    runtimes_url: str | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class ConfigFile:
    """Parsed ``make.json`` contents with typed accessors."""

    path: Path | None = None
    values: dict[str, typ.Any] = dataclasses.field(default_factory=dict)

    def get_str(self, key: str) -> str | None:
        """Return the string stored under ``key``."""
        value = self.values.get(key)
        if value is None:
            return None
        if not isinstance(value, str):
            msg = f"'{key}' in {self.path} must be a string"
            raise ConfigurationError(msg)
        return value

    def get_bool(self, key: str) -> bool | None:
        """Return the boolean stored under ``key``, accepting string spellings."""
        value = self.values.get(key)
        if value is None or isinstance(value, bool):
            return value
        if isinstance(value, str):
            normalised = value.strip().lower()
            if normalised in _TRUTHY:
                return True
            if normalised in _FALSY:
                return False
        msg = f"Cannot interpret {key}={value!r} in {self.path} as boolean"
        raise ConfigurationError(msg)

    def pick_str(self, option: str | None, key: str, default: str) -> str:
        """Return ``option`` if given, else the config value, else ``default``."""
        if option is not None:
            return option
        value = self.get_str(key)
        return default if value is None else value

    def pick_optional_str(self, option: str | None, key: str) -> str | None:
        """Return ``option`` if given, else the config value."""
        return option if option is not None else self.get_str(key)

    def pick_bool(self, option: bool | None, key: str, *, default: bool) -> bool:
        """Return ``option`` if given, else the config value, else ``default``."""
        if option is not None:
            return option
        value = self.get_bool(key)
        return default if value is None else value

    def directories(
        self,
        output_dir: str | None = None,
        cache_dir: str | None = None,
        temp_dir: str | None = None,
    ) -> Directories:
        """Resolve the run directories from options and config."""
        return Directories(
            output_dir=Path(self.pick_str(output_dir, "outputDir", "./output")),
            cache_dir=Path(self.pick_str(cache_dir, "cacheDir", "./cache")),
            temp_dir=Path(self.pick_str(temp_dir, "tempDir", "./temp")),
        )

    def runtimes_source(
        self,
        url: str | None = None,
        license_spdx: str | None = None,
        license_file_url: str | None = None,
        license_spdx_file_url: str | None = None,
    ) -> RuntimesSource:
        """Resolve the runtimes archive source from options and config."""
        return RuntimesSource(
            url=self.pick_optional_str(url, "runtimesUrl"),
            license_spdx=self.pick_optional_str(license_spdx, "runtimesLicenseSpdx"),
            license_file_url=self.pick_optional_str(
                license_file_url, "runtimesLicenseFileUrl"
            ),
            license_spdx_file_url=self.pick_optional_str(
                license_spdx_file_url, "runtimesLicenseSpdxFileUrl"
            ),
        )


def _locate_config_file(config_path: Path | None, cwd: Path) -> Path | None:
    if config_path is None:
        candidate = cwd / DEFAULT_CONFIG_FILE_NAME
        return candidate if candidate.is_file() else None
    if config_path.is_file():
        return config_path
    if config_path.is_dir():
        candidate = config_path / DEFAULT_CONFIG_FILE_NAME
        if candidate.is_file():
            return candidate
        msg = (
            f"No configuration file named '{DEFAULT_CONFIG_FILE_NAME}' found in "
            f"directory '{config_path.resolve()}'."
        )
        raise ConfigurationError(msg)
    msg = f"The specified configuration path '{config_path.resolve()}' does not exist."
    raise ConfigurationError(msg)


def load_config_file(
    config_path: Path | None, *, cwd: Path | None = None
) -> ConfigFile:
    """Load ``make.json`` from ``config_path`` or the working directory.

    Parameters
    ----------
    config_path
        A config file, a directory containing ``make.json``, or ``None`` to
        look for ``make.json`` in ``cwd``.
    cwd
        Directory used when ``config_path`` is ``None``. Defaults to the
        process working directory.

    Returns
    -------
    ConfigFile
        The parsed values, or an empty config when no file was found and
        none was requested.

    Raises
    ------
    ConfigurationError
        If a requested path does not exist, a directory lacks ``make.json``,
        or the file is not a JSON object.
    """
    path = _locate_config_file(config_path, cwd or Path.cwd())
    if path is None:
        return ConfigFile()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        msg = f"The configuration file '{path.resolve()}' contains invalid JSON."
        raise ConfigurationError(msg) from exc
    except OSError as exc:
        msg = (
            f"Failed to read configuration file '{path.resolve()}': "
            f"[{type(exc).__name__}]: {exc}"
        )
        raise ConfigurationError(msg) from exc
    if not isinstance(data, dict):
        msg = f"The configuration file '{path.resolve()}' must contain a JSON object."
        raise ConfigurationError(msg)
    return ConfigFile(path, data)


def _first_project(directory: Path) -> Path | None:
    return next(iter(sorted(directory.glob("*.csproj"))), None)


def resolve_project(
    option: Path | None, config: ConfigFile, *, cwd: Path | None = None
) -> Path:
    """Return the ``.csproj`` to build from the option, config or ``./src``.

    Raises
    ------
    ConfigurationError
        If the project cannot be resolved.
    """
    base = cwd or Path.cwd()
    configured = config.get_str("project")
    candidate = option if option is not None else (
        Path(configured) if configured is not None else None
    )

    if candidate is None:
        default_dir = base / DEFAULT_PROJECT_DIR
        if default_dir.is_dir() and (project := _first_project(default_dir)):
            return project.resolve()
        msg = (
            "No project file could be resolved. Provide --project, set 'project' "
            f"in the config, or place a .csproj in './{DEFAULT_PROJECT_DIR}'."
        )
        raise ConfigurationError(msg)

    if not candidate.is_absolute():
        candidate = base / candidate
    if candidate.is_file():
        return candidate.resolve()
    if candidate.is_dir():
        if project := _first_project(candidate):
            return project.resolve()
        msg = f"No project file (*.csproj) found in directory '{candidate.resolve()}'."
        raise ConfigurationError(msg)
    msg = f"The specified project path '{candidate.resolve()}' does not exist."
    raise ConfigurationError(msg)

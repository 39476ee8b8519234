"""Persisted record of the inputs and packages produced by a pack run.

The ledger is the single source of truth consumed by ``push``. It is written
once at the end of a successful pack run, replacing any previous file, and
deleted at the start of every pack run so that an interrupted run never
leaves a plausible but stale record behind.
"""

from __future__ import annotations

import collections.abc as cabc
import contextlib
import dataclasses
import json
import logging
import os
import typing as typ
from importlib import metadata

from .errors import ArchiveError, RidpackError

if typ.TYPE_CHECKING:
    from pathlib import Path

__all__ = [
    "CACHE_FILE_NAME",
    "BuildCacheLedger",
    "CacheRecord",
    "InputsFingerprint",
    "LedgerCorrupt",
    "LedgerUnavailable",
    "tool_version",
]

logger = logging.getLogger(__name__)

CACHE_FILE_NAME = "cache.json"


class LedgerUnavailable(RidpackError):
    """Raised when no cache file exists."""


class LedgerCorrupt(RidpackError):
    """Raised when the cache file cannot be parsed."""


def tool_version() -> str:
    """Return the installed version of this tool."""
    try:
        return metadata.version("ridpack")
    except metadata.PackageNotFoundError:
        from . import __version__

        return __version__


@dataclasses.dataclass(frozen=True, slots=True)
class InputsFingerprint:
    """Inputs that determine whether previously packed packages are reusable.

    ``defines`` and ``properties`` are sets, so two fingerprints compare
    equal regardless of the order the values were supplied in.
    """

    runtimes_version: str
    runtimes_url: str
    config: str
    no_symbols: bool
    defines: frozenset[str] = frozenset()
    properties: frozenset[str] = frozenset()

    @classmethod
    def create(
        cls,
        *,
        runtimes_version: str | None,
        runtimes_url: str | None,
        config: str,
        no_symbols: bool,
        defines: cabc.Iterable[str] = (),
        properties: cabc.Iterable[str] = (),
    ) -> InputsFingerprint:
        """Build a fingerprint, mapping unset runtimes inputs to ``""``."""
        return cls(
            runtimes_version=runtimes_version or "",
            runtimes_url=runtimes_url or "",
            config=config,
            no_symbols=no_symbols,
            defines=frozenset(defines),
            properties=frozenset(properties),
        )

    def to_json(self) -> dict[str, typ.Any]:
        """Return the JSON object stored under ``inputs``."""
        return {
            "runtimesVersion": self.runtimes_version,
            "runtimesUrl": self.runtimes_url,
            "config": self.config,
            "noSymbols": self.no_symbols,
            "defines": sorted(self.defines),
            "properties": sorted(self.properties),
        }

    @classmethod
    def from_json(cls, data: object) -> InputsFingerprint:
        """Parse the ``inputs`` object, raising ``ValueError`` when malformed."""
        mapping = _require_mapping(data, "inputs")
        return cls(
            runtimes_version=_require_str(mapping, "runtimesVersion"),
            runtimes_url=_require_str(mapping, "runtimesUrl"),
            config=_require_str(mapping, "config"),
            no_symbols=_require_bool(mapping, "noSymbols"),
            defines=frozenset(_require_str_list(mapping, "defines")),
            properties=frozenset(_require_str_list(mapping, "properties")),
        )


@dataclasses.dataclass(frozen=True, slots=True)
class CacheRecord:
    """Contents of the cache file."""

    tool_version: str
    inputs: InputsFingerprint
    targets: dict[str, str]

    def __post_init__(self) -> None:
        object.__setattr__(self, "targets", dict(sorted(self.targets.items())))

    def to_json(self) -> dict[str, typ.Any]:
        """Return the JSON document written to disk."""
        return {
            "version": self.tool_version,
            "inputs": self.inputs.to_json(),
            "targets": dict(self.targets),
        }

    @classmethod
    def from_json(cls, data: object) -> CacheRecord:
        """Parse a cache document, raising ``ValueError`` when malformed."""
        mapping = _require_mapping(data, "cache")
        targets = _require_mapping(mapping.get("targets"), "targets")
        for key, value in targets.items():
            if not isinstance(value, str):
                msg = f"target '{key}' must map to a string path"
                raise ValueError(msg)  # noqa: TRY004
        return cls(
            tool_version=_require_str(mapping, "version"),
            inputs=InputsFingerprint.from_json(mapping.get("inputs")),
            targets=typ.cast("dict[str, str]", dict(targets)),
        )


class BuildCacheLedger:
    """Read and write the cache file at ``path``."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def read(self) -> CacheRecord:
        """Return the stored record.

        Raises
        ------
        LedgerUnavailable
            If the cache file does not exist.
        LedgerCorrupt
            If the file cannot be read or does not describe a cache record.
        """
        if not self.path.is_file():
            msg = "Cache file not found."
            raise LedgerUnavailable(msg)
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return CacheRecord.from_json(data)
        except (OSError, ValueError) as exc:
            msg = f"Cache file invalid or corrupt: {exc}"
            raise LedgerCorrupt(msg) from exc

    def write(self, record: CacheRecord) -> None:
        """Replace the cache file with ``record``.

        Raises
        ------
        ArchiveError
            If the file cannot be written.
        """
        staging = self.path.with_name(f"{self.path.name}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            staging.write_text(
                json.dumps(record.to_json(), indent=2) + "\n", encoding="utf-8"
            )
            os.replace(staging, self.path)
        except OSError as exc:
            with contextlib.suppress(OSError):
                staging.unlink(missing_ok=True)
            msg = (
                f"Failed to serialize cache file to '{self.path}': "
                f"[{type(exc).__name__}]: {exc}"
            )
            raise ArchiveError(msg) from exc
        logger.debug("Wrote cache file '%s'.", self.path)

    def delete(self) -> None:
        """Remove the cache file if it exists."""
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            msg = f"Failed to delete '{self.path}': [{type(exc).__name__}]: {exc}"
            raise ArchiveError(msg) from exc


def _require_mapping(value: object, label: str) -> dict[str, object]:
    if not isinstance(value, dict):
        msg = f"'{label}' must be a JSON object"
        raise ValueError(msg)  # noqa: TRY004
    return typ.cast("dict[str, object]", value)


def _require_str(mapping: dict[str, object], key: str) -> str:
    value = mapping.get(key)
    if not isinstance(value, str):
        msg = f"'{key}' must be a string"
        raise ValueError(msg)  # noqa: TRY004
    return value


def _require_bool(mapping: dict[str, object], key: str) -> bool:
    value = mapping.get(key)
    if not isinstance(value, bool):
        msg = f"'{key}' must be a boolean"
        raise ValueError(msg)  # noqa: TRY004
    return value


def _require_str_list(mapping: dict[str, object], key: str) -> list[str]:
    value = mapping.get(key)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        msg = f"'{key}' must be a list of strings"
        raise ValueError(msg)
    return typ.cast("list[str]", value)

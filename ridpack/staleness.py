"""Decide whether the packages recorded in the cache ledger can be pushed as-is.

The check compares the inputs of the current invocation against the cached
fingerprint, verifies every recorded package still exists and makes sure no
tracked source file is newer than the oldest package.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses
import datetime as dt
import enum
import logging
import typing as typ
from pathlib import Path

from .ledger import LedgerCorrupt, LedgerUnavailable
from .nupkg import symbols_path
from .targets import ALL_TARGETS, CORE_KEY, is_pack_all

if typ.TYPE_CHECKING:
    from .dotnet import DotnetCli
    from .ledger import BuildCacheLedger, CacheRecord, InputsFingerprint

__all__ = [
    "CacheCheck",
    "CacheRequest",
    "CacheState",
    "check_cache",
    "merge_fingerprint",
    "merge_targets",
    "newest_mtime",
    "watched_sources_mtime",
]

logger = logging.getLogger(__name__)

SourceTimes = cabc.Callable[[], float | None]


class CacheState(enum.Enum):
    """States of the push pipeline."""

    CHECK_CACHE = "check-cache"
    CACHE_STALE = "cache-stale"
    CACHE_OKAY = "cache-okay"


@dataclasses.dataclass(frozen=True, slots=True)
class CacheRequest:
    """Inputs of a push invocation; ``None`` means "use the cached value"."""

    targets: tuple[str, ...] = ()
    config: str | None = None
    defines: tuple[str, ...] | None = None
    properties: tuple[str, ...] | None = None
    no_symbols: bool | None = None
    runtimes_version: str | None = None
    runtimes_url: str | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class CacheCheck:
    """Outcome of :func:`check_cache`.

    ``targets`` is the merged flavor to package path map; it is empty when
    no ledger could be read. ``no_symbols`` is the effective symbols setting
    for the push.
    """

    state: CacheState
    reason: str | None
    targets: dict[str, str]
    no_symbols: bool

    @property
    def is_stale(self) -> bool:
        return self.state is CacheState.CACHE_STALE


def merge_fingerprint(
    request: CacheRequest, cached: InputsFingerprint
) -> InputsFingerprint:
    """Return ``cached`` with every input the caller set explicitly replaced."""
    return dataclasses.replace(
        cached,
        runtimes_version=(
            request.runtimes_version
            if request.runtimes_version is not None
            else cached.runtimes_version
        ),
        runtimes_url=(
            request.runtimes_url
            if request.runtimes_url is not None
            else cached.runtimes_url
        ),
        config=request.config if request.config is not None else cached.config,
        no_symbols=(
            request.no_symbols
            if request.no_symbols is not None
            else cached.no_symbols
        ),
        defines=(
            frozenset(request.defines)
            if request.defines is not None
            else cached.defines
        ),
        properties=(
            frozenset(request.properties)
            if request.properties is not None
            else cached.properties
        ),
    )


def merge_targets(
    requested: cabc.Sequence[str], cached: cabc.Mapping[str, str]
) -> dict[str, str]:
    """Map the targets of this push to the packages recorded in ``cached``.

    For an empty or ``all`` request the cached flavors are kept and every
    other requested token is added. Otherwise exactly the requested targets
    are mapped. Targets absent from the cache map to ``""``.
    """
    if is_pack_all(requested):
        keys = [*cached, *(t for t in requested if t != ALL_TARGETS)]
    else:
        keys = list(requested)
    return {
        key: str(Path(cached[key]).absolute()) if cached.get(key) else ""
        for key in sorted(set(keys))
    }


def newest_mtime(paths: cabc.Iterable[str | Path]) -> float | None:
    """Return the newest modification time among the existing ``paths``."""
    times = [Path(p).stat().st_mtime for p in paths if Path(p).is_file()]
    return max(times, default=None)


def watched_sources_mtime(dotnet: DotnetCli, project: Path) -> SourceTimes:
    """Return a callable reporting the newest source file time of ``project``.

    The source files are enumerated with ``dotnet watch --list`` each time the
    callable is invoked.
    """

    def newest() -> float | None:
        return newest_mtime(dotnet.list_watched_files(project))

    return newest


def _iso(timestamp: float) -> str:
    return dt.datetime.fromtimestamp(timestamp, tz=dt.UTC).isoformat()


def _stale(
    reason: str, targets: dict[str, str] | None = None, *, no_symbols: bool
) -> CacheCheck:
    return CacheCheck(CacheState.CACHE_STALE, reason, targets or {}, no_symbols)


def _read(ledger: BuildCacheLedger) -> tuple[CacheRecord | None, str | None]:
    try:
        return ledger.read(), None
    except LedgerUnavailable:
        return None, "Cache file not found."
    except LedgerCorrupt:
        return None, "Cache file invalid or corrupt."


def check_cache(
    request: CacheRequest,
    ledger: BuildCacheLedger,
    source_times: SourceTimes,
) -> CacheCheck:
    """Compare the ledger against the current inputs, packages and sources.

    Parameters
    ----------
    request
        Inputs of the push invocation.
    ledger
        Ledger holding the record written by the last pack run.
    source_times
        Callable returning the newest modification time of the tracked
        source files, or ``None`` when there are none.

    Returns
    -------
    CacheCheck
        ``CACHE_OKAY`` when every recorded package can be pushed unchanged,
        ``CACHE_STALE`` with the reason otherwise.

    Raises
    ------
    ToolFailure
        If enumerating the source files fails.
    """
    caller_no_symbols = bool(request.no_symbols)
    record, problem = _read(ledger)
    if record is None:
        return _stale(
            f"{problem} Treating cache as stale.", no_symbols=caller_no_symbols
        )

    current = merge_fingerprint(request, record.inputs)
    targets = merge_targets(request.targets, record.targets)
    no_symbols = current.no_symbols

    if current != record.inputs:
        return _stale(
            "Current inputs differ from cached inputs.",
            targets,
            no_symbols=no_symbols,
        )

    artefacts: list[Path] = []
    for flavor, package in targets.items():
        logger.debug("Checking package file: %s", package)
        if not package.strip() or not Path(package).is_file():
            return _stale(
                f"Expected package '{package}' for '{flavor}' not found.",
                targets,
                no_symbols=no_symbols,
            )
        artefacts.append(Path(package))

    core = targets.get(CORE_KEY)
    if core and not no_symbols:
        symbols = symbols_path(Path(core))
        logger.debug("Checking symbols package file: %s", symbols)
        if not symbols.is_file():
            return _stale(
                f"Expected symbols package '{symbols}' not found.",
                targets,
                no_symbols=no_symbols,
            )
        artefacts.append(symbols)

    newest_source = source_times()
    oldest_package = min(
        (path.stat().st_mtime for path in artefacts), default=None
    )
    if (
        newest_source is not None
        and oldest_package is not None
        and newest_source > oldest_package
    ):
        return _stale(
            f"Newest input ({_iso(newest_source)}) is newer than the oldest "
            f"package ({_iso(oldest_package)}).",
            targets,
            no_symbols=no_symbols,
        )

    return CacheCheck(CacheState.CACHE_OKAY, None, targets, no_symbols)

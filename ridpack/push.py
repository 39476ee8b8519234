"""Push packed packages to a NuGet feed, repacking once when the cache is stale."""

from __future__ import annotations

import dataclasses
import logging
import typing as typ
from pathlib import Path

from .errors import ConfigurationError, IntegrityError, StaleCacheError, ToolFailure
from .ledger import BuildCacheLedger
from .nupkg import PACKAGE_SUFFIX, symbols_path
from .packer import run_pack
from .staleness import (
    CacheCheck,
    CacheRequest,
    CacheState,
    SourceTimes,
    check_cache,
    watched_sources_mtime,
)
from .targets import CORE_KEY, META_KEY, is_pack_all, normalize_targets

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .config import PackOptions, PushOptions
    from .packer import PackResult, PipelineServices

    Repack = cabc.Callable[[PackOptions, PipelineServices], PackResult]

__all__ = [
    "MAX_REPACK_ATTEMPTS",
    "PushPipeline",
    "PushResult",
    "assemble_push_list",
]

logger = logging.getLogger(__name__)

MAX_REPACK_ATTEMPTS = 1


@dataclasses.dataclass(frozen=True, slots=True)
class PushResult:
    """Packages pushed by :meth:`PushPipeline.run`, in push order."""

    pushed: list[Path]
    repacks: int

    @property
    def count(self) -> int:
        return len(self.pushed)


def assemble_push_list(
    targets: cabc.Mapping[str, str],
    requested: cabc.Sequence[str],
    output_dir: Path,
) -> list[Path]:
    """Return the packages to push in the fixed push order.

    With a target map the order is core, the RIDs sorted ordinally, then
    meta. Without one every package in ``output_dir`` is pushed in ordinal
    order, which is only allowed when all targets were requested.

    Raises
    ------
    IntegrityError
        If a mapped target has an empty package path.
    ConfigurationError
        If specific targets were requested without a target map, or no
        packages can be found.
    """
    if targets:
        for flavor, package in targets.items():
            if not package.strip():
                msg = (
                    f"Invalid cache mapping: target '{flavor}' has an empty "
                    "package path."
                )
                raise IntegrityError(msg)
        rids = sorted(k for k in targets if k not in {CORE_KEY, META_KEY})
        ordered = [
            *([CORE_KEY] if CORE_KEY in targets else []),
            *rids,
            *([META_KEY] if META_KEY in targets else []),
        ]
        return [Path(targets[key]) for key in ordered]

    if not is_pack_all(requested):
        msg = (
            "Cannot map the requested targets to package files without a cache. "
            "Run 'pack' first or omit '--no-pack'."
        )
        raise ConfigurationError(msg)
    if not output_dir.is_dir():
        msg = f"Output directory '{output_dir}' does not exist."
        raise ConfigurationError(msg)
    packages = sorted(
        (p for p in output_dir.glob(f"*{PACKAGE_SUFFIX}") if p.is_file()),
        key=lambda p: p.name,
    )
    if not packages:
        msg = f"No packages found in '{output_dir}'. Consider running 'pack' first."
        raise ConfigurationError(msg)
    return packages


class PushPipeline:
    """Validate the build cache and push its packages in a fixed order.

    The pipeline is a loop over :class:`CacheState`. A stale cache is rebuilt
    at most :data:`MAX_REPACK_ATTEMPTS` times per invocation.
    """

    def __init__(
        self,
        options: PushOptions,
        services: PipelineServices,
        *,
        repack: Repack = run_pack,
        source_times: SourceTimes | None = None,
    ) -> None:
        self.options = options
        self.services = services
        self.repack = repack
        self.source_times = source_times or watched_sources_mtime(
            services.dotnet, options.project
        )
        self.ledger = BuildCacheLedger(options.directories.cache_file)

    @property
    def requested(self) -> list[str]:
        return normalize_targets(self.options.targets)

    def _request(self) -> CacheRequest:
        options = self.options
        return CacheRequest(
            targets=tuple(self.requested),
            config=options.config,
            defines=options.defines,
            properties=options.properties,
            no_symbols=options.no_symbols,
            runtimes_version=options.runtimes_version,
            runtimes_url=options.runtimes_url,
        )

    def run(self) -> PushResult:
        """Check the cache, repack when needed and push every package.

        Raises
        ------
        ConfigurationError
            If ``no_pack`` and ``fail_stale`` are both set, or the push list
            cannot be assembled.
        StaleCacheError
            If the cache is stale and may not be rebuilt, or it is still
            stale after the permitted repack.
        ToolFailure
            If a pack or push invocation fails.
        """
        options = self.options
        if options.no_pack and options.fail_stale:
            msg = "Options '--no-pack' and '--fail-stale' cannot be used together."
            raise ConfigurationError(msg)

        logger.debug("NuGet source: %s", options.source)
        logger.debug(
            "NoPack: %s, NoSymbols: %s, FailStale: %s",
            options.no_pack,
            "depends on cache" if options.no_symbols is None else options.no_symbols,
            options.fail_stale,
        )

        request = self._request()
        check = CacheCheck(
            CacheState.CHECK_CACHE, None, {}, no_symbols=bool(options.no_symbols)
        )
        state = check.state
        repacks = 0
        while state is not CacheState.CACHE_OKAY:
            self.services.cancel.raise_if_cancelled()
            if state is CacheState.CHECK_CACHE:
                check = check_cache(request, self.ledger, self.source_times)
                state = check.state
                continue

            logger.warning("Cache is stale: %s", check.reason)
            if options.fail_stale:
                msg = "Cache is stale and '--fail-stale' was specified."
                raise StaleCacheError(msg)
            if options.no_pack:
                logger.info(
                    "Cache is stale; proceeding without repacking due to "
                    "'--no-pack'."
                )
                state = CacheState.CACHE_OKAY
                continue
            if repacks >= MAX_REPACK_ATTEMPTS:
                msg = "Cache is stale and repack attempt limit reached."
                raise StaleCacheError(msg)
            repacks += 1
            logger.info("Cache is stale; running 'pack' before push.")
            self.repack(options.pack, self.services)
            state = CacheState.CHECK_CACHE

        packages = assemble_push_list(
            check.targets, self.requested, options.directories.output_dir
        )
        logger.debug(
            "Packages to push: %s (%d)",
            ", ".join(f"'{p}'" for p in packages),
            len(packages),
        )
        pushed = self._push_all(packages, push_symbols=not check.no_symbols)
        logger.info("Pushed %d package(s).", len(pushed))
        return PushResult(pushed, repacks)

    def _push_all(
        self, packages: cabc.Sequence[Path], *, push_symbols: bool
    ) -> list[Path]:
        pushed: list[Path] = []
        for package in packages:
            self._push_one(package, kind="package")
            pushed.append(package)
            symbols = symbols_path(package)
            if push_symbols and symbols.is_file():
                self._push_one(symbols, kind="symbols package")
                pushed.append(symbols)
        return pushed

    def _push_one(self, package: Path, *, kind: str) -> None:
        logger.info(
            "Pushing %s '%s' to '%s'...", kind, package.name, self.options.source
        )
        exit_code = self.services.dotnet.push(
            package, api_key=self.options.api_key, source=self.options.source
        )
        if exit_code != 0:
            raise ToolFailure("dotnet nuget push", exit_code)
        logger.debug("%s '%s' pushed successfully.", kind.capitalize(), package.name)

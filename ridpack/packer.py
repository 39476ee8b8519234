"""Pack the core, RID and meta packages and record them in the ledger."""

from __future__ import annotations

import dataclasses
import logging
import shutil
import typing as typ

from .archive import RuntimeInventory, RuntimesDownload, extract_runtimes
from .descriptors import (
    PackageReference,
    meta_dependencies,
    render_meta_project,
    render_rid_project,
)
from .errors import ArchiveError, ConfigurationError, IntegrityError, ToolFailure
from .ledger import BuildCacheLedger, CacheRecord, InputsFingerprint, tool_version
from .nupkg import PACKAGE_SUFFIX, SYMBOLS_SUFFIX, read_package_identity
from .targets import (
    Flavor,
    FlavorKind,
    normalize_targets,
    requests_rids,
    resolve_targets,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

    from .archive import RuntimeArchiveProvider
    from .cancellation import CancelToken
    from .config import PackOptions
    from .dotnet import DotnetCli

__all__ = [
    "FlavorPackager",
    "PackResult",
    "PackedArtifact",
    "PipelineServices",
    "find_new_artifact",
    "fingerprint_for",
    "run_pack",
]

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True, slots=True)
class PackedArtifact:
    """A package produced by one packaging step."""

    flavor: Flavor
    path: Path
    package_id: str
    version: str

    @property
    def reference(self) -> PackageReference:
        """Return a dependency reference on this package."""
        return PackageReference(self.package_id, self.version)


@dataclasses.dataclass(frozen=True, slots=True)
class PackResult:
    """Outcome of :func:`run_pack`."""

    artifacts: list[PackedArtifact]
    record: CacheRecord


@dataclasses.dataclass(frozen=True, slots=True)
class PipelineServices:
    """Capabilities shared by the pack and push paths of one invocation."""

    dotnet: DotnetCli
    archives: RuntimeArchiveProvider
    cancel: CancelToken


def find_new_artifact(
    output_dir: Path, packed: cabc.Sequence[PackedArtifact]
) -> Path:
    """Return the package in ``output_dir`` not yet recorded in ``packed``.

    Raises
    ------
    IntegrityError
        If no such package exists.
    """
    known = {artefact.path.resolve() for artefact in packed}
    fresh = [
        path
        for path in sorted(output_dir.glob(f"*{PACKAGE_SUFFIX}"))
        if path.resolve() not in known
    ]
    if not fresh:
        msg = "Failed to find newly created package file."
        raise IntegrityError(msg)
    if len(fresh) > 1:
        logger.debug(
            "Several new package files found, using '%s': %s",
            fresh[0],
            ", ".join(path.name for path in fresh),
        )
    return fresh[0].resolve()


def fingerprint_for(options: PackOptions) -> InputsFingerprint:
    """Return the fingerprint describing the inputs of a pack run."""
    return InputsFingerprint.create(
        runtimes_version=options.runtimes_version,
        runtimes_url=options.runtimes.url,
        config=options.config,
        no_symbols=options.no_symbols,
        defines=options.defines,
        properties=options.properties,
    )


class FlavorPackager:
    """Invoke ``dotnet pack`` once per flavor and identify the result."""

    def __init__(self, dotnet: DotnetCli, options: PackOptions) -> None:
        self.dotnet = dotnet
        self.options = options

    @property
    def output_dir(self) -> Path:
        return self.options.directories.output_dir

    @property
    def temp_dir(self) -> Path:
        return self.options.directories.temp_dir

    def pack_flavor(
        self,
        flavor: Flavor,
        packed: cabc.Sequence[PackedArtifact],
        *,
        inventory: RuntimeInventory | None = None,
        runtimes: RuntimesDownload | None = None,
    ) -> PackedArtifact | None:
        """Pack ``flavor`` and return the produced artefact.

        ``packed`` holds the artefacts produced earlier in this run. ``None``
        is returned when a RID is skipped because its native binary is
        missing and the run is not strict.

        Raises
        ------
        ToolFailure
            If ``dotnet pack`` exits with a non-zero status.
        IntegrityError
            If the produced package cannot be located or identified.
        """
        if flavor.kind is FlavorKind.CORE:
            logger.info("Packing Core package...")
            return self._pack(
                flavor,
                self.options.project,
                packed,
                defines=self.options.defines,
                include_symbols=not self.options.no_symbols,
            )
        if flavor.kind is FlavorKind.META:
            logger.info("Packing Meta package...")
            project = self._write_descriptor(
                "meta", render_meta_project(meta_dependencies(packed))
            )
            return self._pack(flavor, project, packed, no_build=True)
        return self._pack_rid(flavor, packed, inventory, runtimes)

    def _pack_rid(
        self,
        flavor: Flavor,
        packed: cabc.Sequence[PackedArtifact],
        inventory: RuntimeInventory | None,
        runtimes: RuntimesDownload | None,
    ) -> PackedArtifact | None:
        rid = flavor.key
        native_binary = inventory.native_binary(rid) if inventory else None
        if native_binary is None:
            message = f"Missing native binary for {rid}"
            if self.options.strict:
                raise ConfigurationError(message)
            logger.warning(message)
            if inventory is not None:
                logger.debug(
                    "Native binary path checked: '%s'", inventory.native_dir(rid)
                )
            return None

        core = next(
            (a.reference for a in packed if a.flavor.kind is FlavorKind.CORE), None
        )
        descriptor = render_rid_project(
            rid,
            native_binary,
            core=core,
            license_spdx=runtimes.license_spdx if runtimes else None,
            license_file=runtimes.license_file if runtimes else None,
        )
        project = self._write_descriptor(rid, descriptor)
        logger.info("Packing %s package...", rid)
        return self._pack(flavor, project, packed, no_build=True)

    def _write_descriptor(self, name: str, content: str) -> Path:
        path = self.temp_dir / f"{name}.csproj"
        try:
            path.write_text(content, encoding="utf-8")
        except OSError as exc:
            msg = f"Failed to write '{path}': [{type(exc).__name__}]: {exc}"
            raise ArchiveError(msg) from exc
        return path

    def _pack(
        self,
        flavor: Flavor,
        project: Path,
        packed: cabc.Sequence[PackedArtifact],
        *,
        defines: cabc.Sequence[str] = (),
        include_symbols: bool = False,
        no_build: bool = False,
    ) -> PackedArtifact:
        logger.debug("Project path: '%s'", project)
        exit_code = self.dotnet.pack(
            project,
            self.output_dir,
            config=self.options.config,
            defines=defines,
            include_symbols=include_symbols,
            no_build=no_build,
            no_restore=self.options.no_restore,
            properties=self.options.properties,
        )
        if exit_code != 0:
            raise ToolFailure("dotnet pack", exit_code)

        path = find_new_artifact(self.output_dir, packed)
        identity = read_package_identity(path)
        logger.debug("%s package successfully packed as '%s'.", flavor, path)
        return PackedArtifact(flavor, path, identity.id, identity.version)


def _recreate_dir(path: Path) -> None:
    try:
        if path.exists():
            shutil.rmtree(path)
        path.mkdir(parents=True)
    except OSError as exc:
        msg = f"Failed to prepare '{path}': [{type(exc).__name__}]: {exc}"
        raise ArchiveError(msg) from exc


def _remove_temp_dir(path: Path) -> None:
    try:
        if path.exists():
            shutil.rmtree(path)
    except OSError as exc:
        logger.warning("Failed to remove temp directory '%s': %s", path, exc)


def _delete_previous_packages(output_dir: Path) -> None:
    for suffix in (PACKAGE_SUFFIX, SYMBOLS_SUFFIX):
        for package in sorted(output_dir.glob(f"*{suffix}")):
            logger.debug("Deleting '%s'.", package)
            try:
                package.unlink()
            except OSError as exc:
                msg = f"Failed to delete '{package}': [{type(exc).__name__}]: {exc}"
                raise ArchiveError(msg) from exc


def _prepare_runtimes(
    options: PackOptions, services: PipelineServices
) -> tuple[RuntimeInventory, RuntimesDownload]:
    version = (options.runtimes_version or "").strip()
    if not version:
        msg = (
            "No runtimes version specified. Provide --runtimes-version or set "
            "'runtimesVersion' in the config."
        )
        raise ConfigurationError(msg)

    logger.info("Using runtimes version: %s", version)
    download = services.archives.fetch(
        version, options.runtimes, force=options.force_runtimes_download
    )
    if download.license_file is not None and download.license_spdx is not None:
        logger.warning(
            "Runtimes license SPDX identifier and license file are both set. "
            "The SPDX identifier is used for the RID packages license; the "
            "license file is still included in the RID packages."
        )
    inventory = extract_runtimes(
        download.archive_path,
        options.directories.temp_dir / f"runtimes.{version}",
        services.cancel,
    )
    return inventory, download


def run_pack(options: PackOptions, services: PipelineServices) -> PackResult:
    """Pack every requested flavor and write the cache ledger.

    The cache file and previously packed packages are deleted first, and the
    temp directory is recreated for the run and removed on every exit path.

    Raises
    ------
    RidpackError
        Any configuration, download, archive, tool or integrity failure.
    """
    directories = options.directories
    ledger = BuildCacheLedger(directories.cache_file)
    try:
        directories.output_dir.mkdir(parents=True, exist_ok=True)
        directories.cache_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        msg = f"Failed to create run directories: [{type(exc).__name__}]: {exc}"
        raise ArchiveError(msg) from exc
    _recreate_dir(directories.temp_dir)

    try:
        ledger.delete()
        _delete_previous_packages(directories.output_dir)

        targets = normalize_targets(options.targets)
        logger.debug("Targets: %s", ", ".join(targets) if targets else "All")
        logger.debug(
            "Configuration: %s, NoSymbols: %s, NoRestore: %s, Strict: %s",
            options.config,
            options.no_symbols,
            options.no_restore,
            options.strict,
        )

        inventory: RuntimeInventory | None = None
        runtimes: RuntimesDownload | None = None
        if requests_rids(targets):
            inventory, runtimes = _prepare_runtimes(options, services)
        plan = resolve_targets(
            targets, inventory.rids if inventory else (), strict=options.strict
        )

        packager = FlavorPackager(services.dotnet, options)
        packed: list[PackedArtifact] = []
        for flavor in plan.flavors:
            services.cancel.raise_if_cancelled()
            artefact = packager.pack_flavor(
                flavor, packed, inventory=inventory, runtimes=runtimes
            )
            if artefact is not None:
                packed.append(artefact)

        record = CacheRecord(
            tool_version=tool_version(),
            inputs=fingerprint_for(options),
            targets={a.flavor.key: str(a.path) for a in packed},
        )
        ledger.write(record)
    finally:
        _remove_temp_dir(directories.temp_dir)

    logger.info("Packaging complete.")
    logger.debug(
        "Packed: %s (%d), Output location: %s",
        ", ".join(f"{a.flavor}={a.path.name}" for a in packed),
        len(packed),
        directories.output_dir.resolve(),
    )
    return PackResult(packed, record)

"""Download, cache and extract the versioned native runtimes archive.

The archive is a zip file laid out as ``runtimes/<rid>/native/<file>``. It
is stored in the cache directory as ``runtimes.<version>`` and reused on
later runs unless a fresh download is forced. License artefacts are only
fetched together with a fresh archive download.
"""

from __future__ import annotations

import dataclasses
import logging
import shutil
import typing as typ
import zipfile
from pathlib import Path, PurePosixPath

import httpx

from .errors import ArchiveError, ConfigurationError, DownloadError

if typ.TYPE_CHECKING:
    from .cancellation import CancelToken

__all__ = [
    "RuntimeArchiveProvider",
    "RuntimeInventory",
    "RuntimesDownload",
    "RuntimesSource",
    "discover_runtimes",
    "extract_runtimes",
    "format_url",
]

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024
_DEFAULT_LICENSE_NAME = "LICENSE"


@dataclasses.dataclass(frozen=True, slots=True)
class RuntimesSource:
    """Where the runtimes archive and its license artefacts come from."""

    url: str | None = None
    license_spdx: str | None = None
    license_file_url: str | None = None
    license_spdx_file_url: str | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class RuntimesDownload:
    """Local artefacts produced by :meth:`RuntimeArchiveProvider.fetch`."""

    archive_path: Path
    license_file: Path | None = None
    license_spdx: str | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class RuntimeInventory:
    """RIDs found in an extracted archive and their native binaries."""

    root: Path
    binaries: dict[str, Path | None]

    @property
    def rids(self) -> tuple[str, ...]:
        """Return the discovered RIDs in discovery order."""
        return tuple(self.binaries)

    def native_binary(self, rid: str) -> Path | None:
        """Return the native binary shipped for ``rid``, if any."""
        return self.binaries.get(rid.lower())

    def native_dir(self, rid: str) -> Path:
        """Return the directory searched for the native binary of ``rid``."""
        return self.root / "runtimes" / rid.lower() / "native"


def format_url(template: str, version: str) -> str:
    """Render ``template`` with ``version`` and require an absolute HTTP(S) URL.

    Examples
    --------
    >>> format_url("https://example.test/runtimes-{0}.zip", "1.2.3")
    'https://example.test/runtimes-1.2.3.zip'
    """
    try:
        rendered = template.format(version)
    except (IndexError, KeyError, ValueError) as exc:
        msg = f'"{template}" is not a valid URL format string: {exc}'
        raise ConfigurationError(msg) from exc
    try:
        url = httpx.URL(rendered)
    except httpx.InvalidURL as exc:
        msg = f'"{rendered}" is not a valid absolute URL.'
        raise ConfigurationError(msg) from exc
    if url.scheme not in {"http", "https"} or not url.host:
        msg = f'"{rendered}" is not a valid absolute URL.'
        raise ConfigurationError(msg)
    return rendered


class RuntimeArchiveProvider:
    """Obtain the runtimes archive, reusing the cached copy when allowed."""

    def __init__(
        self, client: httpx.Client, cache_dir: Path, cancel: CancelToken
    ) -> None:
        self.client = client
        self.cache_dir = cache_dir
        self.cancel = cancel

    def archive_path(self, version: str) -> Path:
        """Return the cache location of the archive for ``version``."""
        return self.cache_dir / f"runtimes.{version}"

    def fetch(
        self, version: str, source: RuntimesSource, *, force: bool = False
    ) -> RuntimesDownload:
        """Return the archive for ``version``, downloading it when needed.

        Raises
        ------
        ConfigurationError
            If a download is required but no URL template is configured, or a
            rendered URL is not absolute.
        DownloadError
            If the server cannot be reached or returns an error status.
        """
        archive_path = self.archive_path(version)
        if archive_path.is_file() and not force:
            logger.debug("Cached runtimes found under '%s'.", archive_path)
            return RuntimesDownload(archive_path, None, source.license_spdx)

        if not force:
            logger.debug("No cached runtimes found under '%s'.", archive_path)
        if not source.url or not source.url.strip():
            msg = (
                "No runtimes URL specified. Provide --runtimes-url or set "
                "'runtimesUrl' in the config. It may be a format string "
                "containing '{0}' for the version."
            )
            raise ConfigurationError(msg)

        url = format_url(source.url, version)
        logger.debug("Using runtimes URL: %s", url)
        logger.info("Downloading runtimes archive...")
        self._download(url, archive_path)
        logger.info("Download complete.")
        logger.debug(
            "Saved runtimes archive to '%s' (%d bytes).",
            archive_path,
            archive_path.stat().st_size,
        )

        license_file = None
        if source.license_file_url is not None:
            license_url = format_url(source.license_file_url, version)
            license_file = self.cache_dir / _license_file_name(license_url)
            logger.debug("Using license file URL: %s", license_url)
            logger.info("Downloading license file...")
            self._download(license_url, license_file)
            logger.info("Download complete.")

        license_spdx = source.license_spdx
        if license_spdx is None and source.license_spdx_file_url is not None:
            spdx_url = format_url(source.license_spdx_file_url, version)
            logger.debug("Using license SPDX file URL: %s", spdx_url)
            logger.info("Downloading license SPDX file...")
            license_spdx = self._read_text(spdx_url).strip()
            logger.debug("Read license SPDX identifier: %s.", license_spdx)

        return RuntimesDownload(archive_path, license_file, license_spdx)

    def _download(self, url: str, destination: Path) -> None:
        """Stream ``url`` into ``destination``, removing partial files."""
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            with (
                self.client.stream("GET", url, follow_redirects=True) as response,
                destination.open("wb") as handle,
            ):
                response.raise_for_status()
                for chunk in response.iter_bytes(_CHUNK_SIZE):
                    self.cancel.raise_if_cancelled()
                    handle.write(chunk)
        except httpx.HTTPStatusError as exc:
            destination.unlink(missing_ok=True)
            msg = f"Download of {url} failed with status {exc.response.status_code}."
            raise DownloadError(msg) from exc
        except httpx.RequestError as exc:
            destination.unlink(missing_ok=True)
            msg = f"Download of {url} failed: {exc}"
            raise DownloadError(msg) from exc
        except BaseException:
            destination.unlink(missing_ok=True)
            raise

    def _read_text(self, url: str) -> str:
        self.cancel.raise_if_cancelled()
        try:
            response = self.client.get(url, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            msg = f"Download of {url} failed with status {exc.response.status_code}."
            raise DownloadError(msg) from exc
        except httpx.RequestError as exc:
            msg = f"Download of {url} failed: {exc}"
            raise DownloadError(msg) from exc
        return response.text


def _license_file_name(url: str) -> str:
    name = PurePosixPath(httpx.URL(url).path).name
    return name.strip() or _DEFAULT_LICENSE_NAME


def extract_runtimes(
    archive_path: Path, destination: Path, cancel: CancelToken
) -> RuntimeInventory:
    """Extract ``archive_path`` into ``destination`` and inventory its RIDs.

    Raises
    ------
    ArchiveError
        If the archive is missing, corrupt or cannot be written out.
    """
    try:
        if destination.exists():
            shutil.rmtree(destination)
        destination.mkdir(parents=True)
        with zipfile.ZipFile(archive_path) as archive:
            for member in archive.infolist():
                cancel.raise_if_cancelled()
                archive.extract(member, destination)
    except (OSError, zipfile.BadZipFile) as exc:
        msg = (
            f"Failed to extract runtimes archive '{archive_path}' to "
            f"'{destination}': [{type(exc).__name__}]: {exc}"
        )
        raise ArchiveError(msg) from exc
    logger.debug("Extracted runtimes to '%s'.", destination)
    return discover_runtimes(destination)


def discover_runtimes(root: Path) -> RuntimeInventory:
    """Return the RIDs below ``root/runtimes`` and their native binaries."""
    runtimes_dir = root / "runtimes"
    binaries: dict[str, Path | None] = {}
    if runtimes_dir.is_dir():
        for entry in sorted(runtimes_dir.iterdir(), key=lambda p: p.name.lower()):
            rid = entry.name.strip().lower()
            if not entry.is_dir() or not rid or rid in binaries:
                continue
            native_dir = entry / "native"
            files = (
                sorted(p for p in native_dir.iterdir() if p.is_file())
                if native_dir.is_dir()
                else []
            )
            binaries[rid] = files[0] if files else None
    logger.debug(
        "Available RIDs: %s",
        ", ".join(binaries) if binaries else "None",
    )
    return RuntimeInventory(root, binaries)

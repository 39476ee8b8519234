"""Read package identity from ``.nupkg`` archives."""

from __future__ import annotations

import re
import typing as typ
import zipfile

from lxml import etree

from .errors import IntegrityError

if typ.TYPE_CHECKING:
    from pathlib import Path

__all__ = [
    "PACKAGE_SUFFIX",
    "SYMBOLS_SUFFIX",
    "PackageIdentity",
    "normalize_version",
    "read_package_identity",
    "symbols_path",
]

PACKAGE_SUFFIX = ".nupkg"
SYMBOLS_SUFFIX = ".snupkg"

_VERSION_RE = re.compile(
    r"^(?P<numbers>\d+(?:\.\d+){0,3})"
    r"(?:-(?P<release>[0-9A-Za-z.-]+))?"
    r"(?:\+(?P<metadata>[0-9A-Za-z.-]+))?$"
)


class PackageIdentity(typ.NamedTuple):
    """Package id and normalized version read from a nuspec."""

    id: str
    version: str


def normalize_version(value: str) -> str:
    """Return the NuGet normalized form of ``value``.

    Leading zeros are dropped from numeric parts, the version is padded to
    three parts, a zero fourth part is omitted, and build metadata is
    removed.

    Examples
    --------
    >>> normalize_version("1.02")
    '1.2.0'
    >>> normalize_version("1.0.0.0-beta+sha.1")
    '1.0.0-beta'

    Raises
    ------
    ValueError
        If ``value`` is not a NuGet version.
    """
    match = _VERSION_RE.match(value.strip())
    if match is None:
        msg = f"Invalid package version: {value!r}"
        raise ValueError(msg)
    numbers = [int(part) for part in match["numbers"].split(".")]
    numbers += [0] * (3 - len(numbers))
    if len(numbers) == 4 and numbers[3] == 0:
        numbers.pop()
    normalized = ".".join(str(number) for number in numbers)
    if release := match["release"]:
        normalized = f"{normalized}-{release}"
    return normalized


def symbols_path(package: Path) -> Path:
    """Return the symbols package that sits next to ``package``."""
    return package.with_suffix(SYMBOLS_SUFFIX)


def _read_nuspec(package: Path) -> bytes:
    with zipfile.ZipFile(package) as archive:
        nuspecs = sorted(
            name
            for name in archive.namelist()
            if "/" not in name and name.lower().endswith(".nuspec")
        )
        if not nuspecs:
            msg = "no nuspec at the archive root"
            raise ValueError(msg)
        return archive.read(nuspecs[0])


def read_package_identity(package: Path) -> PackageIdentity:
    """Return the id and normalized version stored in ``package``'s nuspec.

    Raises
    ------
    IntegrityError
        If the archive or its nuspec cannot be read or lacks an id or version.
    """
    try:
        root = etree.fromstring(_read_nuspec(package))
        metadata = root.find("{*}metadata")
        if metadata is None:
            metadata = root.find("metadata")
        package_id = _child_text(metadata, "id")
        raw_version = _child_text(metadata, "version")
        if not package_id or not raw_version:
            msg = "nuspec lacks an id or version"
            raise ValueError(msg)
        return PackageIdentity(package_id, normalize_version(raw_version))
    except (OSError, ValueError, zipfile.BadZipFile, etree.XMLSyntaxError) as exc:
        msg = (
            "Failed to get the identity of the newly created package file "
            f"'{package}': {exc}"
        )
        raise IntegrityError(msg) from exc


def _child_text(parent: etree._Element | None, tag: str) -> str | None:
    if parent is None:
        return None
    child = parent.find(f"{{*}}{tag}")
    if child is None:
        child = parent.find(tag)
    if child is None or child.text is None:
        return None
    return child.text.strip()

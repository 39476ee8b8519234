"""Tests for :mod:`ridpack.nupkg`."""

from __future__ import annotations

import typing as typ
import zipfile

import pytest

from ridpack.errors import IntegrityError
from ridpack.nupkg import normalize_version, read_package_identity, symbols_path
from test_support.doubles import make_nupkg

if typ.TYPE_CHECKING:
    from pathlib import Path


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("1.2.3", "1.2.3"),
        ("1.2", "1.2.0"),
        ("01.002.3", "1.2.3"),
        ("1.2.3.0", "1.2.3"),
        ("1.2.3.4", "1.2.3.4"),
        ("1.0.0-beta.2", "1.0.0-beta.2"),
        ("1.0.0-rc1+build.5", "1.0.0-rc1"),
    ],
)
def test_normalize_version(raw: str, expected: str) -> None:
    """Versions follow NuGet normalisation rules."""
    assert normalize_version(raw) == expected


def test_normalize_version_rejects_garbage() -> None:
    """Non-version strings raise ValueError."""
    with pytest.raises(ValueError, match="Invalid package version"):
        normalize_version("latest")


def test_symbols_path_swaps_extension(tmp_path: Path) -> None:
    """The symbols package sits next to the package."""
    package = tmp_path / "Contoso.1.0.0.nupkg"
    assert symbols_path(package) == tmp_path / "Contoso.1.0.0.snupkg"


class TestReadPackageIdentity:
    """Reading id and version back from a package."""

    def test_reads_namespaced_nuspec(self, tmp_path: Path) -> None:
        """Id and normalized version come from the root nuspec."""
        package = make_nupkg(tmp_path / "pkg.nupkg", "Contoso.Native", "1.2")
        identity = read_package_identity(package)
        assert identity.id == "Contoso.Native"
        assert identity.version == "1.2.0"

    def test_reads_nuspec_without_namespace(self, tmp_path: Path) -> None:
        """Nuspec files without an XML namespace are accepted."""
        package = tmp_path / "pkg.nupkg"
        with zipfile.ZipFile(package, "w") as archive:
            archive.writestr(
                "pkg.nuspec",
                "<package><metadata><id>Plain</id><version>3.0.0</version>"
                "</metadata></package>",
            )
        assert tuple(read_package_identity(package)) == ("Plain", "3.0.0")

    def test_missing_nuspec_is_integrity_error(self, tmp_path: Path) -> None:
        """An archive without a root nuspec cannot be identified."""
        package = tmp_path / "pkg.nupkg"
        with zipfile.ZipFile(package, "w") as archive:
            archive.writestr("nested/pkg.nuspec", "<package />")
        with pytest.raises(IntegrityError, match="identity"):
            read_package_identity(package)

    def test_non_zip_is_integrity_error(self, tmp_path: Path) -> None:
        """A corrupt archive cannot be identified."""
        package = tmp_path / "pkg.nupkg"
        package.write_bytes(b"not a zip")
        with pytest.raises(IntegrityError):
            read_package_identity(package)

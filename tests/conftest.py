"""Fixtures for the ridpack tests."""

from __future__ import annotations

import typing as typ

import pytest

from ridpack.archive import RuntimesSource
from ridpack.config import Directories, PackOptions
from test_support.doubles import (
    RUNTIMES_URL,
    RUNTIMES_VERSION,
    FakeDotnet,
    PackOptionsFactory,
    make_runtimes_zip,
    make_services,
)

if typ.TYPE_CHECKING:
    from pathlib import Path

    from ridpack.packer import PipelineServices


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Return a core project file under ``src``."""
    path = tmp_path / "src" / "Contoso.csproj"
    path.parent.mkdir(parents=True)
    path.write_text('<Project Sdk="Microsoft.NET.Sdk" />\n', encoding="utf-8")
    return path


@pytest.fixture
def directories(tmp_path: Path) -> Directories:
    """Return run directories rooted in ``tmp_path``."""
    return Directories(
        output_dir=tmp_path / "output",
        cache_dir=tmp_path / "cache",
        temp_dir=tmp_path / "temp",
    )


@pytest.fixture
def dotnet() -> FakeDotnet:
    """Return a dotnet double that writes real package files."""
    return FakeDotnet()


@pytest.fixture
def cached_runtimes(directories: Directories) -> Path:
    """Seed the cache with a runtimes archive for two RIDs."""
    return make_runtimes_zip(
        directories.cache_dir / f"runtimes.{RUNTIMES_VERSION}",
        {"win-x64": ["contoso.dll"], "linux-x64": ["libcontoso.so"]},
    )


@pytest.fixture
def services(dotnet: FakeDotnet, directories: Directories) -> PipelineServices:
    """Return pipeline services around the dotnet double."""
    return make_services(dotnet, directories.cache_dir)


@pytest.fixture
def pack_options(project: Path, directories: Directories) -> PackOptionsFactory:
    """Return a factory for pack options using the cached runtimes version."""

    def factory(**overrides: object) -> PackOptions:
        values: dict[str, typ.Any] = {
            "project": project,
            "directories": directories,
            "runtimes_version": RUNTIMES_VERSION,
            "runtimes": RuntimesSource(url=RUNTIMES_URL),
        }
        values.update(overrides)
        return PackOptions(**values)

    return factory

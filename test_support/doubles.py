"""Test doubles and archive builders shared by the ridpack tests."""

from __future__ import annotations

import collections.abc as cabc
import dataclasses
import typing as typ
import zipfile
from pathlib import Path

import httpx

from ridpack.archive import RuntimeArchiveProvider
from ridpack.cancellation import CancelToken
from ridpack.packer import PipelineServices

if typ.TYPE_CHECKING:
    from ridpack.config import PackOptions

__all__ = [
    "RUNTIMES_URL",
    "RUNTIMES_VERSION",
    "FakeDotnet",
    "PackOptionsFactory",
    "make_nupkg",
    "make_runtimes_zip",
    "make_services",
    "offline_client",
]

RUNTIMES_VERSION = "2.0.1"
RUNTIMES_URL = "https://downloads.example.test/runtimes-{0}.zip"


class PackOptionsFactory(typ.Protocol):
    """Callable building pack options from keyword overrides."""

    def __call__(self, **overrides: object) -> PackOptions: ...


_NUSPEC = """\
<?xml version="1.0" encoding="utf-8"?>
<package xmlns="http://schemas.microsoft.com/packaging/2013/05/nuspec.xsd">
  <metadata>
    <id>{id}</id>
    <version>{version}</version>
  </metadata>
</package>
"""


def make_nupkg(path: Path, package_id: str, version: str) -> Path:
    """Write a minimal ``.nupkg`` carrying a root nuspec."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr(
            f"{package_id}.nuspec", _NUSPEC.format(id=package_id, version=version)
        )
        archive.writestr("lib/netstandard2.0/_._", "")
    return path


def make_runtimes_zip(
    path: Path, layout: cabc.Mapping[str, cabc.Sequence[str]]
) -> Path:
    """Write a runtimes archive with ``runtimes/<rid>/native/<file>`` entries.

    A RID mapped to an empty sequence gets an empty ``native`` directory.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as archive:
        for rid, files in layout.items():
            if not files:
                archive.writestr(f"runtimes/{rid}/native/", "")
            for name in files:
                archive.writestr(f"runtimes/{rid}/native/{name}", f"{rid}:{name}")
    return path


@dataclasses.dataclass
class FakeDotnet:
    """Stand-in for :class:`ridpack.dotnet.DotnetCli` writing real packages.

    The core project produces ``<package_id>.<version>.nupkg``; generated
    descriptors produce ``<package_id>.<descriptor stem>.<version>.nupkg``.
    """

    package_id: str = "Contoso.Native"
    version: str = "1.2.0"
    pack_exit_codes: dict[str, int] = dataclasses.field(default_factory=dict)
    push_exit_codes: dict[str, int] = dataclasses.field(default_factory=dict)
    watched_files: list[str] = dataclasses.field(default_factory=list)
    calls: list[tuple[str, str]] = dataclasses.field(default_factory=list)
    pack_kwargs: list[dict[str, typ.Any]] = dataclasses.field(default_factory=list)
    descriptors: dict[str, str] = dataclasses.field(default_factory=dict)
    pushed: list[Path] = dataclasses.field(default_factory=list)
    core_project_stem: str = "Contoso"

    def _is_core(self, project: Path) -> bool:
        return project.stem == self.core_project_stem

    def pack(
        self,
        project: Path,
        output_dir: Path,
        *,
        config: str | None,
        defines: cabc.Sequence[str] = (),
        include_symbols: bool = False,
        no_build: bool = False,
        no_restore: bool = False,
        properties: cabc.Sequence[str] = (),
    ) -> int:
        self.calls.append(("pack", project.stem))
        self.pack_kwargs.append(
            {
                "config": config,
                "defines": tuple(defines),
                "include_symbols": include_symbols,
                "no_build": no_build,
                "no_restore": no_restore,
                "properties": tuple(properties),
            }
        )
        if code := self.pack_exit_codes.get(project.stem, 0):
            return code

        if self._is_core(project):
            package_id = self.package_id
        else:
            self.descriptors[project.stem] = project.read_text(encoding="utf-8")
            package_id = f"{self.package_id}.{project.stem}"
        package = make_nupkg(
            output_dir / f"{package_id}.{self.version}.nupkg",
            package_id,
            self.version,
        )
        if include_symbols:
            package.with_suffix(".snupkg").write_bytes(b"symbols")
        return 0

    def push(self, package: Path, *, api_key: str, source: str) -> int:
        self.calls.append(("push", package.name))
        if code := self.push_exit_codes.get(package.name, 0):
            return code
        self.pushed.append(package)
        return 0

    def build(self, project: Path, **_: object) -> int:
        self.calls.append(("build", project.stem))
        return 0

    def clean(self, project: Path, **_: object) -> int:
        self.calls.append(("clean", project.stem))
        return 0

    def list_watched_files(self, project: Path) -> list[str]:
        self.calls.append(("watch", project.stem))
        return list(self.watched_files)


def _refuse(request: httpx.Request) -> httpx.Response:
    msg = f"unexpected request to {request.url}"
    raise AssertionError(msg)


def offline_client(
    handler: cabc.Callable[[httpx.Request], httpx.Response] | None = None,
) -> httpx.Client:
    """Return a client served by ``handler``; by default any request fails."""
    return httpx.Client(transport=httpx.MockTransport(handler or _refuse))


def make_services(
    dotnet: FakeDotnet,
    cache_dir: Path,
    *,
    client: httpx.Client | None = None,
    cancel: CancelToken | None = None,
) -> PipelineServices:
    """Bundle ``dotnet`` with a runtimes provider rooted at ``cache_dir``."""
    token = cancel or CancelToken()
    return PipelineServices(
        dotnet=typ.cast("typ.Any", dotnet),
        archives=RuntimeArchiveProvider(client or offline_client(), cache_dir, token),
        cancel=token,
    )

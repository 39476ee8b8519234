"""Render the ephemeral project files used to pack RID and meta packages.

Both descriptors set ``MakeFlavor`` (``rid`` or ``meta``) and RID descriptors
also set ``MakeFlavorRid``, so ``Directory.Build.targets`` in the consuming
repository can branch on them with
``Condition="'$(MakeFlavor)' == 'rid'"``.
"""

from __future__ import annotations

import logging
import typing as typ
from pathlib import Path

from jinja2 import Environment, StrictUndefined, select_autoescape

from .targets import FlavorKind

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .packer import PackedArtifact

__all__ = [
    "PackageReference",
    "meta_dependencies",
    "render_meta_project",
    "render_rid_project",
]

logger = logging.getLogger(__name__)

_env = Environment(
    autoescape=select_autoescape(default_for_string=True),
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)


def render(jinja_template_string: str, /, **context: object) -> str:
    """Render ``jinja_template_string`` with the shared environment."""
    return _env.from_string(jinja_template_string).render(**context)


_RID_TEMPLATE = """\
<!-- Auto-generated by ridpack. Do not edit manually. -->
<Project Sdk="Microsoft.NET.Sdk">
  <PropertyGroup>
    <IsPackable>true</IsPackable>
    <IncludeBuildOutput>false</IncludeBuildOutput>
    <NoBuild>true</NoBuild>
    <!-- use Condition="'$(MakeFlavor)' == 'rid'" in your Directory.Build.targets -->
    <MakeFlavor>rid</MakeFlavor>
    <!-- use Condition="'$(MakeFlavorRid)' == '{{ rid }}'" in your Directory.Build.targets -->
    <MakeFlavorRid>{{ rid }}</MakeFlavorRid>
    {% if license_spdx %}
    <PackageLicenseExpression>{{ license_spdx }}</PackageLicenseExpression>
    {% elif license_name %}
    <PackageLicenseFile>{{ license_name }}</PackageLicenseFile>
    {% endif %}
  </PropertyGroup>
  <ItemGroup>
    {% if core %}
    <PackageReference Include="{{ core.id }}" Version="{{ core.version }}" PrivateAssets="all" />
    {% endif %}
    <None Include="{{ native_binary }}" Pack="true" PackagePath="runtimes/{{ rid }}/native" />
    {% if license_path %}
    <None Include="{{ license_path }}" Pack="true" PackagePath="{{ license_name }}" />
    {% endif %}
  </ItemGroup>
</Project>
"""

_META_TEMPLATE = """\
<!-- Auto-generated by ridpack. Do not edit manually. -->
<Project Sdk="Microsoft.NET.Sdk">
  <PropertyGroup>
    <IsPackable>true</IsPackable>
    <IncludeBuildOutput>false</IncludeBuildOutput>
    <NoBuild>true</NoBuild>
    <!-- use Condition="'$(MakeFlavor)' == 'meta'" in your Directory.Build.targets -->
    <MakeFlavor>meta</MakeFlavor>
  </PropertyGroup>
  <ItemGroup>
    {% for dependency in dependencies %}
    <PackageReference Include="{{ dependency.id }}" Version="{{ dependency.version }}" PrivateAssets="all" />
    {% endfor %}
  </ItemGroup>
</Project>
"""


class PackageReference(typ.NamedTuple):
    """A private package dependency declared by a generated descriptor."""

    id: str
    version: str


def _msbuild_path(path: Path) -> str:
    return str(path.resolve()).replace("\\", "/")


def render_rid_project(
    rid: str,
    native_binary: Path,
    *,
    core: PackageReference | None = None,
    license_spdx: str | None = None,
    license_file: Path | None = None,
) -> str:
    """Return the project file packing ``native_binary`` for ``rid``.

    ``license_spdx`` takes precedence for the license expression; a
    ``license_file`` is still bundled as package content when both are set.
    """
    return render(
        _RID_TEMPLATE,
        rid=rid,
        native_binary=_msbuild_path(native_binary),
        core=core,
        license_spdx=license_spdx,
        license_name=license_file.name if license_file else None,
        license_path=_msbuild_path(license_file) if license_file else None,
    )


def meta_dependencies(packed: cabc.Sequence[PackedArtifact]) -> list[PackageReference]:
    """Return the packages the meta package depends on.

    When the core package is the only one produced the meta package depends
    on it directly; otherwise it depends on every RID package, which already
    carry a private dependency on core.
    """
    if not packed:
        logger.warning("Meta package will have no dependencies.")
        return []
    if len(packed) == 1 and packed[0].flavor.kind is FlavorKind.CORE:
        return [packed[0].reference]
    return [
        artefact.reference
        for artefact in packed
        if artefact.flavor.kind is FlavorKind.RID
    ]


def render_meta_project(dependencies: cabc.Iterable[PackageReference]) -> str:
    """Return the project file for the meta package."""
    return render(_META_TEMPLATE, dependencies=list(dependencies))

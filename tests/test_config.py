"""Tests for :mod:`ridpack.config`."""

from __future__ import annotations

import json
import typing as typ
from pathlib import Path

import pytest

from ridpack.config import (
    ConfigFile,
    Directories,
    load_config_file,
    resolve_project,
)
from ridpack.errors import ConfigurationError

if typ.TYPE_CHECKING:
    import collections.abc as cabc


def _write_config(directory: Path, values: cabc.Mapping[str, object]) -> Path:
    path = directory / "make.json"
    path.write_text(json.dumps(values), encoding="utf-8")
    return path


class TestLoadConfigFile:
    """Locating and parsing ``make.json``."""

    def test_defaults_to_working_directory(self, tmp_path: Path) -> None:
        """Without a path the file is looked up in the working directory."""
        _write_config(tmp_path, {"runtimesVersion": "1.0.0"})
        config = load_config_file(None, cwd=tmp_path)
        assert config.get_str("runtimesVersion") == "1.0.0"

    def test_missing_default_file_is_empty(self, tmp_path: Path) -> None:
        """An absent default config is not an error."""
        assert load_config_file(None, cwd=tmp_path) == ConfigFile()

    def test_directory_path(self, tmp_path: Path) -> None:
        """A directory is searched for ``make.json``."""
        path = _write_config(tmp_path, {"project": "src"})
        assert load_config_file(tmp_path).path == path

    def test_directory_without_file(self, tmp_path: Path) -> None:
        """A directory lacking ``make.json`` is a configuration error."""
        with pytest.raises(ConfigurationError, match="No configuration file"):
            load_config_file(tmp_path)

    def test_missing_path(self, tmp_path: Path) -> None:
        """A path that does not exist is a configuration error."""
        with pytest.raises(ConfigurationError, match="does not exist"):
            load_config_file(tmp_path / "other.json")

    @pytest.mark.parametrize("content", ["{", "[1, 2]"])
    def test_rejects_invalid_documents(self, tmp_path: Path, content: str) -> None:
        """Malformed JSON and non-object documents are rejected."""
        path = tmp_path / "make.json"
        path.write_text(content, encoding="utf-8")
        with pytest.raises(ConfigurationError, match="configuration file"):
            load_config_file(path)


class TestConfigFileAccessors:
    """Layering of options over config values and defaults."""

    def test_option_wins_over_config(self) -> None:
        """Explicit options take precedence."""
        config = ConfigFile(values={"nugetSource": "https://config.test"})
        picked = config.pick_str("https://cli.test", "nugetSource", "x")
        assert picked == "https://cli.test"
        assert config.pick_str(None, "nugetSource", "x") == "https://config.test"
        assert config.pick_str(None, "missing", "x") == "x"

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [(True, True), ("yes", True), ("OFF", False), ("0", False)],
    )
    def test_bool_spellings(self, raw: object, *, expected: bool) -> None:
        """Booleans may be spelled as strings."""
        config = ConfigFile(values={"noLogo": raw})
        assert config.pick_bool(None, "noLogo", default=not expected) is expected

    def test_bool_rejects_garbage(self) -> None:
        """Unrecognised boolean spellings are configuration errors."""
        config = ConfigFile(values={"noLogo": "maybe"})
        with pytest.raises(ConfigurationError, match="as boolean"):
            config.get_bool("noLogo")

    def test_string_type_is_checked(self) -> None:
        """Non-string values for string keys are rejected."""
        config = ConfigFile(values={"runtimesVersion": 2})
        with pytest.raises(ConfigurationError, match="must be a string"):
            config.get_str("runtimesVersion")

    def test_directories(self) -> None:
        """Run directories fall back to the working-directory defaults."""
        config = ConfigFile(values={"cacheDir": "/var/cache/ridpack"})
        assert config.directories(output_dir="out") == Directories(
            output_dir=Path("out"),
            cache_dir=Path("/var/cache/ridpack"),
            temp_dir=Path("./temp"),
        )

    def test_runtimes_source(self) -> None:
        """Runtimes settings are read from the config when not given."""
        config = ConfigFile(
            values={"runtimesUrl": "https://a.test/{0}", "runtimesLicenseSpdx": "MIT"}
        )
        source = config.runtimes_source(license_spdx="Apache-2.0")
        assert source.url == "https://a.test/{0}"
        assert source.license_spdx == "Apache-2.0"
        assert source.license_file_url is None


class TestResolveProject:
    """Resolving the core project file."""

    @pytest.fixture
    def project(self, tmp_path: Path) -> Path:
        path = tmp_path / "src" / "Contoso.csproj"
        path.parent.mkdir()
        path.write_text("<Project />", encoding="utf-8")
        return path

    def test_defaults_to_src(self, tmp_path: Path, project: Path) -> None:
        """The first project in ``./src`` is used by default."""
        assert resolve_project(None, ConfigFile(), cwd=tmp_path) == project.resolve()

    def test_config_directory(self, tmp_path: Path, project: Path) -> None:
        """A configured directory is searched for a project."""
        config = ConfigFile(values={"project": "src"})
        assert resolve_project(None, config, cwd=tmp_path) == project.resolve()

    def test_option_file(self, tmp_path: Path, project: Path) -> None:
        """An explicit file wins over the config."""
        config = ConfigFile(values={"project": "elsewhere"})
        resolved = resolve_project(Path("src/Contoso.csproj"), config, cwd=tmp_path)
        assert resolved == project.resolve()

    def test_directory_without_project(self, tmp_path: Path) -> None:
        """A directory with no project file is reported."""
        (tmp_path / "empty").mkdir()
        with pytest.raises(ConfigurationError, match="No project file"):
            resolve_project(Path("empty"), ConfigFile(), cwd=tmp_path)

    def test_nothing_to_resolve(self, tmp_path: Path) -> None:
        """Without option, config or ``./src`` the project cannot be found."""
        with pytest.raises(ConfigurationError, match="could be resolved"):
            resolve_project(None, ConfigFile(), cwd=tmp_path)

    def test_missing_path(self, tmp_path: Path) -> None:
        """A path that does not exist is reported."""
        with pytest.raises(ConfigurationError, match="does not exist"):
            resolve_project(Path("nope.csproj"), ConfigFile(), cwd=tmp_path)

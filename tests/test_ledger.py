"""Tests for :mod:`ridpack.ledger`."""

from __future__ import annotations

import json
import os
import pathlib
import typing as typ

import pytest

from ridpack.errors import ArchiveError
from ridpack.ledger import (
    BuildCacheLedger,
    CacheRecord,
    InputsFingerprint,
    LedgerCorrupt,
    LedgerUnavailable,
    tool_version,
)

if typ.TYPE_CHECKING:
    from pathlib import Path


def _fingerprint(**overrides: typ.Any) -> InputsFingerprint:
    values: dict[str, typ.Any] = {
        "runtimes_version": "2.0.1",
        "runtimes_url": "https://example.test/{0}.zip",
        "config": "Release",
        "no_symbols": False,
        "defines": ["TRACE", "NATIVE"],
        "properties": ["A=1", "B=2"],
    }
    values.update(overrides)
    return InputsFingerprint.create(**values)


class TestInputsFingerprint:
    """Structural comparison of fingerprints."""

    def test_set_order_is_irrelevant(self) -> None:
        """Fingerprints differing only in set order are equal."""
        first = _fingerprint(defines=["TRACE", "NATIVE"], properties=["A=1", "B=2"])
        second = _fingerprint(defines=["NATIVE", "TRACE"], properties=["B=2", "A=1"])
        assert first == second

    @pytest.mark.parametrize(
        "override",
        [
            {"runtimes_version": "2.0.2"},
            {"config": "Debug"},
            {"no_symbols": True},
            {"defines": ["TRACE"]},
            {"properties": ["A=1"]},
        ],
    )
    def test_any_field_change_breaks_equality(
        self, override: dict[str, object]
    ) -> None:
        """Scalar and set changes are both detected."""
        assert _fingerprint() != _fingerprint(**override)

    def test_unset_runtimes_inputs_become_empty(self) -> None:
        """Missing runtimes inputs are stored as empty strings."""
        fingerprint = _fingerprint(runtimes_version=None, runtimes_url=None)
        assert fingerprint.runtimes_version == ""
        assert fingerprint.runtimes_url == ""

    def test_json_sorts_sets(self) -> None:
        """Set-valued fields serialise sorted."""
        data = _fingerprint(defines=["Z", "A"]).to_json()
        assert data["defines"] == ["A", "Z"]
        assert data["noSymbols"] is False


class TestBuildCacheLedger:
    """Reading, writing and deleting the cache file."""

    def test_write_then_read(self, tmp_path: Path) -> None:
        """A written record reads back equal, with sorted target keys."""
        ledger = BuildCacheLedger(tmp_path / "cache" / "cache.json")
        record = CacheRecord(
            tool_version="0.1.0",
            inputs=_fingerprint(),
            targets={"win-x64": "/out/w.nupkg", "core": "/out/c.nupkg"},
        )
        ledger.write(record)

        document = json.loads(ledger.path.read_text(encoding="utf-8"))
        assert list(document) == ["version", "inputs", "targets"]
        assert list(document["targets"]) == ["core", "win-x64"]
        assert ledger.read() == record
        assert not ledger.path.with_name("cache.json.tmp").exists()

    def test_write_replaces_previous_record(self, tmp_path: Path) -> None:
        """Writing overwrites the whole file."""
        ledger = BuildCacheLedger(tmp_path / "cache.json")
        ledger.write(CacheRecord("0.1.0", _fingerprint(), {"core": "/a", "meta": "/b"}))
        ledger.write(CacheRecord("0.1.0", _fingerprint(), {"meta": "/c"}))
        assert ledger.read().targets == {"meta": "/c"}

    def test_missing_file_is_unavailable(self, tmp_path: Path) -> None:
        """An absent cache file raises LedgerUnavailable."""
        with pytest.raises(LedgerUnavailable):
            BuildCacheLedger(tmp_path / "cache.json").read()

    @pytest.mark.parametrize(
        "content",
        [
            "not json",
            "[]",
            '{"version": "1", "inputs": {}, "targets": {}}',
            '{"version": "1", "inputs": {"runtimesVersion": "", "runtimesUrl": "",'
            ' "config": "Release", "noSymbols": false, "defines": [],'
            ' "properties": []}, "targets": {"core": 3}}',
        ],
    )
    def test_malformed_file_is_corrupt(self, tmp_path: Path, content: str) -> None:
        """Unparseable or incomplete documents raise LedgerCorrupt."""
        path = tmp_path / "cache.json"
        path.write_text(content, encoding="utf-8")
        with pytest.raises(LedgerCorrupt):
            BuildCacheLedger(path).read()

    def test_delete_is_idempotent(self, tmp_path: Path) -> None:
        """Deleting a missing cache file is not an error."""
        ledger = BuildCacheLedger(tmp_path / "cache.json")
        ledger.write(CacheRecord("0.1.0", _fingerprint(), {}))
        ledger.delete()
        ledger.delete()
        assert not ledger.path.exists()

    def test_write_failure_is_archive_error(self, tmp_path: Path) -> None:
        """A cache path that cannot be written raises ArchiveError."""
        blocker = tmp_path / "blocker"
        blocker.write_text("", encoding="utf-8")
        ledger = BuildCacheLedger(blocker / "cache.json")
        with pytest.raises(ArchiveError, match="Failed to serialize cache file"):
            ledger.write(CacheRecord("0.1.0", _fingerprint(), {}))

    def test_cleanup_failure_still_raises_archive_error(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A staging file that cannot be removed does not mask the write error."""

        def fail(*_args: object, **_kwargs: object) -> None:
            msg = "denied"
            raise PermissionError(msg)

        monkeypatch.setattr(os, "replace", fail)
        monkeypatch.setattr(pathlib.Path, "unlink", fail)
        ledger = BuildCacheLedger(tmp_path / "cache.json")
        with pytest.raises(ArchiveError, match="denied"):
            ledger.write(CacheRecord("0.1.0", _fingerprint(), {}))

def test_tool_version_is_reported() -> None:
    """The tool version is a non-empty string."""
    assert tool_version()

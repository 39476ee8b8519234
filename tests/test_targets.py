"""Tests for :mod:`ridpack.targets`."""

from __future__ import annotations

import pytest

from ridpack.errors import ConfigurationError
from ridpack.targets import (
    Flavor,
    FlavorKind,
    normalize_targets,
    requests_rids,
    resolve_targets,
    split_list_values,
)


class TestFlavor:
    """Flavor parsing and ordering."""

    def test_parse_maps_fixed_kinds(self) -> None:
        """core and meta map to their kinds regardless of case."""
        assert Flavor.parse(" CORE ") == Flavor.core()
        assert Flavor.parse("Meta") == Flavor.meta()
        assert Flavor.parse("Win-X64") == Flavor(FlavorKind.RID, "win-x64")

    def test_keys(self) -> None:
        """Ledger keys use the fixed names or the RID."""
        flavors = (Flavor.core(), Flavor.for_rid("osx-arm64"), Flavor.meta())
        assert [f.key for f in flavors] == ["core", "osx-arm64", "meta"]

    def test_sort_key_orders_core_rids_meta(self) -> None:
        """Sorting places core first, RIDs ordinally, and meta last."""
        flavors = [
            Flavor.meta(),
            Flavor.for_rid("win-x64"),
            Flavor.core(),
            Flavor.for_rid("linux-x64"),
        ]
        ordered = sorted(flavors, key=lambda f: f.sort_key)
        assert [str(f) for f in ordered] == ["core", "linux-x64", "win-x64", "meta"]

    def test_rid_flavor_requires_rid(self) -> None:
        """A RID flavor without a RID is rejected."""
        with pytest.raises(ValueError, match="requires a RID"):
            Flavor(FlavorKind.RID)


def test_split_list_values_accepts_commas_and_semicolons() -> None:
    """Option values are split on both separators and trimmed."""
    assert split_list_values(["a, b;c", " ", "d"]) == ["a", "b", "c", "d"]
    assert split_list_values(None) == []


def test_normalize_targets_deduplicates_case_insensitively() -> None:
    """Tokens are lower-cased and de-duplicated in first-seen order."""
    assert normalize_targets(["Win-X64", "core", "win-x64", ""]) == ["win-x64", "core"]


@pytest.mark.parametrize(
    ("targets", "expected"),
    [
        ([], True),
        (["all"], True),
        (["core"], False),
        (["core", "meta"], False),
        (["linux-x64"], True),
    ],
)
def test_requests_rids(targets: list[str], *, expected: bool) -> None:
    """Only requests that may select a RID need the runtimes archive."""
    assert requests_rids(targets) is expected


class TestResolveTargets:
    """Target resolution against the discovered RIDs."""

    def test_all_packs_everything(self) -> None:
        """The 'all' token selects core, every RID and meta."""
        plan = resolve_targets(["all"], ["linux-x64", "win-x64"], strict=True)
        assert plan.pack_core
        assert plan.pack_meta
        assert plan.rids == ("linux-x64", "win-x64")
        assert [f.key for f in plan.flavors] == ["core", "linux-x64", "win-x64", "meta"]

    def test_empty_request_packs_everything(self) -> None:
        """An empty request behaves like 'all'."""
        plan = resolve_targets([], ["osx-arm64"], strict=False)
        assert [f.key for f in plan.flavors] == ["core", "osx-arm64", "meta"]

    def test_specific_targets_intersect_available(self) -> None:
        """Requested RIDs keep discovery order and matching is case-insensitive."""
        plan = resolve_targets(
            ["WIN-X64", "core", "linux-x64"], ["linux-x64", "win-x64"], strict=True
        )
        assert plan.pack_core
        assert not plan.pack_meta
        assert plan.rids == ("linux-x64", "win-x64")

    def test_unknown_rid_is_fatal_when_strict(self) -> None:
        """Strict resolution rejects a RID missing from the archive."""
        with pytest.raises(ConfigurationError, match="osx-arm64"):
            resolve_targets(["osx-arm64"], ["linux-x64"], strict=True)

    def test_unknown_rid_warns_when_lenient(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Lenient resolution ignores the RID and records a warning."""
        plan = resolve_targets(["osx-arm64", "meta"], ["linux-x64"], strict=False)
        assert plan.rids == ()
        assert plan.pack_meta
        assert len(plan.warnings) == 1
        assert "osx-arm64" in caplog.text

    def test_unknown_rid_beside_all_is_fatal_when_strict(self) -> None:
        """'all' does not excuse an unknown RID under strict resolution."""
        with pytest.raises(ConfigurationError, match="bogus-x64"):
            resolve_targets(["all", "bogus-x64"], ["linux-x64"], strict=True)

    def test_unknown_rid_beside_all_warns_when_lenient(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Lenient 'all' still packs everything and reports the unknown RID."""
        plan = resolve_targets(["all", "bogus-x64"], ["linux-x64"], strict=False)
        assert [f.key for f in plan.flavors] == ["core", "linux-x64", "meta"]
        assert len(plan.warnings) == 1
        assert "bogus-x64" in caplog.text

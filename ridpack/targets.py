"""Resolve requested pack targets into concrete package flavors."""

from __future__ import annotations

import collections.abc as cabc
import dataclasses
import enum
import logging
import typing as typ

from .errors import ConfigurationError

__all__ = [
    "ALL_TARGETS",
    "Flavor",
    "FlavorKind",
    "TargetPlan",
    "is_pack_all",
    "normalize_targets",
    "requests_rids",
    "resolve_targets",
    "split_list_values",
]

logger = logging.getLogger(__name__)

ALL_TARGETS = "all"
CORE_KEY = "core"
META_KEY = "meta"


class FlavorKind(enum.IntEnum):
    """Kind of package produced by one packaging step, in pack order."""

    CORE = 0
    RID = 1
    META = 2


@dataclasses.dataclass(frozen=True, slots=True)
class Flavor:
    """A packaging unit: the core package, one RID package or the meta package."""

    kind: FlavorKind
    rid: str | None = None

    def __post_init__(self) -> None:
        if (self.kind is FlavorKind.RID) != bool(self.rid):
            msg = "a RID flavor requires a RID and other flavors must not carry one"
            raise ValueError(msg)

    @classmethod
    def core(cls) -> Flavor:
        """Return the core flavor."""
        return cls(FlavorKind.CORE)

    @classmethod
    def meta(cls) -> Flavor:
        """Return the meta flavor."""
        return cls(FlavorKind.META)

    @classmethod
    def for_rid(cls, rid: str) -> Flavor:
        """Return the flavor packaging the native binary for ``rid``."""
        return cls(FlavorKind.RID, rid.strip().lower())

    @classmethod
    def parse(cls, key: str) -> Flavor:
        """Map a ledger key or target token to its flavor."""
        token = key.strip().lower()
        if token == CORE_KEY:
            return cls.core()
        if token == META_KEY:
            return cls.meta()
        return cls.for_rid(token)

    @property
    def key(self) -> str:
        """String used for this flavor in target lists and the cache file."""
        if self.kind is FlavorKind.CORE:
            return CORE_KEY
        if self.kind is FlavorKind.META:
            return META_KEY
        return typ.cast("str", self.rid)

    @property
    def sort_key(self) -> tuple[int, str]:
        """Order core first, then RIDs by ordinal comparison, then meta."""
        return (int(self.kind), self.rid or "")

    def __str__(self) -> str:
        return self.key


def split_list_values(values: cabc.Iterable[str] | None) -> list[str]:
    """Split comma or semicolon separated option values into tokens."""
    if values is None:
        return []
    tokens: list[str] = []
    for value in values:
        for part in value.replace(";", ",").split(","):
            if part := part.strip():
                tokens.append(part)
    return tokens


def normalize_targets(tokens: cabc.Iterable[str]) -> list[str]:
    """Lower-case, trim and de-duplicate target tokens preserving their order."""
    return list(dict.fromkeys(t.strip().lower() for t in tokens if t.strip()))


def is_pack_all(targets: cabc.Collection[str]) -> bool:
    """Return ``True`` when ``targets`` requests every flavor."""
    return not targets or ALL_TARGETS in targets


@dataclasses.dataclass(frozen=True, slots=True)
class TargetPlan:
    """Flavors a pack run produces, in pack order."""

    pack_core: bool
    pack_meta: bool
    rids: tuple[str, ...]
    warnings: tuple[str, ...] = ()

    @property
    def flavors(self) -> list[Flavor]:
        """Return the flavors in the order they must be packed."""
        flavors = [Flavor.core()] if self.pack_core else []
        flavors.extend(Flavor.for_rid(rid) for rid in self.rids)
        if self.pack_meta:
            flavors.append(Flavor.meta())
        return flavors


def requests_rids(targets: cabc.Collection[str]) -> bool:
    """Return ``True`` when ``targets`` may select at least one RID package."""
    return is_pack_all(targets) or any(
        t not in {CORE_KEY, META_KEY} for t in targets
    )


def resolve_targets(
    requested: cabc.Iterable[str],
    available_rids: cabc.Iterable[str],
    *,
    strict: bool,
) -> TargetPlan:
    """Compute the flavors to pack from ``requested`` and ``available_rids``.

    Parameters
    ----------
    requested
        Target tokens from the caller: ``all``, ``core``, ``meta`` or RIDs.
        An empty request packs everything.
    available_rids
        RIDs discovered in the extracted runtimes archive, in discovery order.
    strict
        When ``True`` an unknown token aborts the run; otherwise it is
        reported as a warning and ignored.

    Returns
    -------
    TargetPlan
        The resolved plan. RIDs keep the order of ``available_rids``.

    Raises
    ------
    ConfigurationError
        Raised under ``strict`` when a token names no available RID.
    """
    targets = normalize_targets(requested)
    available = normalize_targets(available_rids)

    known = {CORE_KEY, META_KEY, ALL_TARGETS, *available}
    warnings: list[str] = []
    for token in targets:
        if token in known:
            continue
        message = f"Requested RID {token} not found in native runtime binaries."
        if strict:
            raise ConfigurationError(message)
        logger.warning(message)
        warnings.append(message)

    if is_pack_all(targets):
        return TargetPlan(
            pack_core=True,
            pack_meta=True,
            rids=tuple(available),
            warnings=tuple(warnings),
        )

    return TargetPlan(
        pack_core=CORE_KEY in targets,
        pack_meta=META_KEY in targets,
        rids=tuple(rid for rid in available if rid in targets),
        warnings=tuple(warnings),
    )

"""
Per-unit declaration registries and the store that publishes them.

A registry is written only while its own unit compiles (:class:`DraftRegistry`)
and is read-only afterwards (:class:`Registry`). Extensions read the finalized
registry of their base from a :class:`RegistryStore`.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum, auto
from types import MappingProxyType
from typing import TYPE_CHECKING, Final, final

from inherit.errors import FinalizedRegistryError, UnresolvedBaseError
from inherit.syntax import Expr, Pattern, RoutineKey

if TYPE_CHECKING:
    from inherit.unit import Hook

logger = logging.getLogger(__name__)


class Origin(Enum):
    NATIVE = auto()
    """Declared by the unit itself."""

    COPIED = auto()
    """Inherited with the base's body re-emitted in the unit."""

    DELEGATED = auto()
    """Inherited as a forwarding call to the base, which keeps the body."""


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class RoutineRecord:
    params: tuple[Pattern, ...]
    guards: tuple[Expr, ...]
    body: Expr
    origin: Origin
    override_permitted: bool = False

    @property
    def inherited(self) -> bool:
        return self.origin is not Origin.NATIVE


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True, eq=False)
class Registry:
    """
    The finalized declarations of one unit.

    Instances are immutable: mappings are read-only views and sets are
    frozensets. Registries compare by identity.
    """

    unit: str
    base: str | None
    routines: Mapping[RoutineKey, RoutineRecord]
    """Inheritable routines, in declaration order."""

    private_names: frozenset[RoutineKey]
    withheld: frozenset[RoutineKey]
    field_defaults: Mapping[str, object]
    dependencies: frozenset[str]
    imports: Mapping[RoutineKey, str]
    pre_hook: Hook | None = None
    post_hook: Hook | None = None


@final
@dataclass(kw_only=True, slots=True, weakref_slot=True, eq=False)
class DraftRegistry:
    """
    The registry of a unit that is still compiling.

    Mutable until :meth:`finalize`; every write after that raises
    :class:`FinalizedRegistryError`.
    """

    unit: Final[str]
    base: Final[str | None] = None
    routines: dict[RoutineKey, RoutineRecord] = field(default_factory=dict)
    private_names: set[RoutineKey] = field(default_factory=set)
    withheld: set[RoutineKey] = field(default_factory=set)
    field_defaults: dict[str, object] = field(default_factory=dict)
    dependencies: set[str] = field(default_factory=set)
    imports: dict[RoutineKey, str] = field(default_factory=dict)
    pre_hook: Hook | None = None
    post_hook: Hook | None = None
    finalized: bool = field(default=False, init=False)

    def _ensure_open(self) -> None:
        if self.finalized:
            raise FinalizedRegistryError(f"registry of {self.unit!r} is finalized")

    def record(self, key: RoutineKey, routine: RoutineRecord) -> None:
        self._ensure_open()
        self.routines[key] = routine

    def discard(self, key: RoutineKey) -> RoutineRecord | None:
        self._ensure_open()
        return self.routines.pop(key, None)

    def add_private(self, key: RoutineKey) -> None:
        self._ensure_open()
        self.private_names.add(key)

    def add_withheld(self, key: RoutineKey) -> None:
        self._ensure_open()
        self.withheld.add(key)

    def add_dependencies(self, units: Iterable[str]) -> None:
        self._ensure_open()
        self.dependencies.update(unit for unit in units if unit != self.unit)

    def add_import(self, key: RoutineKey, unit: str) -> None:
        self._ensure_open()
        self.imports[key] = unit

    def set_hooks(self, *, pre: Hook | None, post: Hook | None) -> None:
        self._ensure_open()
        self.pre_hook = pre
        self.post_hook = post

    def finalize(self) -> Registry:
        """Close the draft and return its read-only counterpart."""
        self._ensure_open()
        assert self.withheld.isdisjoint(self.routines), "withheld routine recorded"
        self.finalized = True
        return Registry(
            unit=self.unit,
            base=self.base,
            routines=MappingProxyType(dict(self.routines)),
            private_names=frozenset(self.private_names),
            withheld=frozenset(self.withheld),
            field_defaults=MappingProxyType(dict(self.field_defaults)),
            dependencies=frozenset(self.dependencies),
            imports=MappingProxyType(dict(self.imports)),
            pre_hook=self.pre_hook,
            post_hook=self.post_hook,
        )


@final
@dataclass(kw_only=True, slots=True, weakref_slot=True, eq=False)
class RegistryStore(Mapping[str, Registry]):
    """
    Finalize-once store of registries, keyed by unit identity.

    Publishing is the only synchronized step; published registries are
    immutable, so readers never lock.
    """

    _published: dict[str, Registry] = field(
        default_factory=dict, init=False, repr=False
    )
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False
    )

    def __getitem__(self, unit: str) -> Registry:
        return self._published[unit]

    def __iter__(self) -> Iterator[str]:
        return iter(tuple(self._published))

    def __len__(self) -> int:
        return len(self._published)

    def require(self, unit: str, *, by: str) -> Registry:
        """
        Get the registry of ``unit`` on behalf of the compiling unit ``by``.

        :raises UnresolvedBaseError: If ``unit`` has not been finalized.
        """
        registry = self.get(unit)
        if registry is None:
            raise UnresolvedBaseError(by, unit)
        return registry

    def finalize(self, unit: str, registry: Registry) -> None:
        """
        Publish the registry of ``unit``. Allowed exactly once per unit.

        :raises FinalizedRegistryError: If ``unit`` was already published.
        """
        if registry.unit != unit:
            raise ValueError(
                f"registry of {registry.unit!r} cannot be published as {unit!r}"
            )
        with self._lock:
            if unit in self._published:
                raise FinalizedRegistryError(f"{unit!r} is already finalized")
            self._published[unit] = registry
        logger.info("Finalized registry of %s", unit)

    def lineage(self, unit: str) -> Iterator[Registry]:
        """Yield the registry of ``unit``, then of its base, and so on to the root."""
        current = self.get(unit)
        while current is not None:
            yield current
            current = None if current.base is None else self.get(current.base)

"""
The inheritance resolution pass.

:func:`resolve` runs once when a unit declares itself an extension of a base.
It reads the base's finalized :class:`~inherit.registry.Registry` and produces
the extension's pre-populated draft registry together with the list of
emissions that materialize the inherited routines.

Each base routine is classified:

- A routine that calls none of the base's private (or withheld) routines is
  **copied**: its guards and body are re-emitted in the extension, so calls
  inside it resolve against the extension and observe the extension's
  overrides.
- Any other routine is **delegated**: the extension gets a forwarding routine
  that calls the base's implementation by qualified name, keeping the private
  helper encapsulated in the base.

Resolving against the immediate base is enough for a whole chain, because
the base's registry was itself produced by this pass and already holds the
flattened routines of every ancestor.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Set
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeAlias, final

from inherit.config import DEFAULT_CONFIG, ResolutionConfig
from inherit.errors import AmbiguousPrivateSetError
from inherit.normalizer import forwarding_arguments, normalize
from inherit.registry import DraftRegistry, Origin, Registry, RoutineRecord
from inherit.rewriter import rewrite_remote_references
from inherit.scanner import scan, scan_routine
from inherit.syntax import Expr, Pattern, RemoteCall, RoutineKey

if TYPE_CHECKING:
    from inherit.unit import Hook

logger = logging.getLogger(__name__)

FieldList: TypeAlias = Mapping[str, object] | Iterable[tuple[str, object]]


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class RoutineEmission:
    """One routine handed to the host's emission sink."""

    name: str
    arity: int
    params: tuple[Pattern, ...]
    guards: tuple[Expr, ...]
    body: Expr
    origin: Origin
    override_permitted: bool = False
    private: bool = False

    @property
    def key(self) -> RoutineKey:
        return (self.name, self.arity)

    @staticmethod
    def of(key: RoutineKey, routine: RoutineRecord) -> RoutineEmission:
        name, arity = key
        return RoutineEmission(
            name=name,
            arity=arity,
            params=routine.params,
            guards=routine.guards,
            body=routine.body,
            origin=routine.origin,
            override_permitted=routine.override_permitted,
        )


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class EmissionList:
    pre_hooks: tuple[Hook, ...]
    """Spliced before all routine emissions."""

    routines: tuple[RoutineEmission, ...]
    """In the insertion order of the base's registry."""

    post_hooks: tuple[Hook, ...]
    """Spliced after all routine emissions."""

    requires: tuple[str, ...]
    """Units that must be resolvable wherever the routines are emitted."""


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class Resolution:
    registry: DraftRegistry
    emissions: EmissionList


def merge_fields(
    defaults: Mapping[str, object], new_fields: FieldList
) -> dict[str, object]:
    """
    Merge an extension's fields into its base's defaults.

    Keys already present keep their position with the new default; new keys
    are appended in the order given.
    """
    merged = dict(defaults)
    items = new_fields.items() if isinstance(new_fields, Mapping) else new_fields
    for name, default in items:
        merged[name] = default
    return merged


def _copy(
    routine: RoutineRecord, base: Registry, config: ResolutionConfig
) -> tuple[RoutineRecord, frozenset[str]]:
    body, units = rewrite_remote_references(routine.body, base.imports)
    guards: list[Expr] = []
    for guard in routine.guards:
        rewritten, guard_units = rewrite_remote_references(guard, base.imports)
        guards.append(rewritten)
        units |= guard_units
    copied = RoutineRecord(
        params=normalize(routine.params, routine.guards, prefix=config.synthetic_prefix),
        guards=tuple(guards),
        body=body,
        origin=Origin.COPIED,
        override_permitted=routine.override_permitted,
    )
    return copied, units


def _delegate(
    key: RoutineKey,
    routine: RoutineRecord,
    base: Registry,
    triggers: Set[RoutineKey],
    config: ResolutionConfig,
) -> RoutineRecord:
    name, _ = key
    params = normalize(routine.params, routine.guards, prefix=config.synthetic_prefix)
    # Guards that call a base-only routine cannot run here; the base re-checks
    # them when the forwarded call arrives.
    guards = tuple(guard for guard in routine.guards if not scan(guard, triggers))
    return RoutineRecord(
        params=params,
        guards=guards,
        body=RemoteCall(unit=base.unit, name=name, args=forwarding_arguments(params)),
        origin=Origin.DELEGATED,
        override_permitted=routine.override_permitted,
    )


def resolve(
    base: Registry | DraftRegistry,
    new_fields: FieldList = (),
    *,
    unit: str,
    config: ResolutionConfig = DEFAULT_CONFIG,
) -> Resolution:
    """
    Compute everything ``unit`` inherits from ``base``.

    :param base: The finalized registry of the base unit.
    :param new_fields: Field defaults declared by the extension.
    :param unit: Identity of the extension.
    :param config: Resolution options.
    :return: The extension's draft registry, pre-populated with the inherited
        fields, routines, dependencies and hooks, and the emissions that
        materialize them.
    :raises AmbiguousPrivateSetError: If ``base`` is still a draft.
    """
    if not isinstance(base, Registry):
        raise AmbiguousPrivateSetError(base.unit)

    registry = DraftRegistry(
        unit=unit,
        base=base.unit,
        field_defaults=merge_fields(base.field_defaults, new_fields),
        withheld=set(base.withheld),
        pre_hook=base.pre_hook,
        post_hook=base.post_hook,
    )
    registry.add_dependencies(base.dependencies)

    delegation_triggers = (
        base.private_names | base.withheld
        if config.delegate_withheld
        else base.private_names
    )
    emissions: list[RoutineEmission] = []
    for key, routine in base.routines.items():
        if key in base.withheld:
            continue
        if scan_routine(
            routine.params, routine.guards, routine.body, delegation_triggers
        ):
            inherited = _delegate(key, routine, base, delegation_triggers, config)
            registry.add_dependencies((base.unit,))
            logger.debug("%s delegates %s/%d to %s", unit, *key, base.unit)
        else:
            inherited, units = _copy(routine, base, config)
            registry.add_dependencies(units)
            logger.debug("%s copies %s/%d from %s", unit, *key, base.unit)
        registry.record(key, inherited)
        emissions.append(RoutineEmission.of(key, inherited))

    logger.info(
        "Resolved %s against %s: %d routines inherited", unit, base.unit, len(emissions)
    )
    return Resolution(
        registry=registry,
        emissions=EmissionList(
            pre_hooks=() if base.pre_hook is None else (base.pre_hook,),
            routines=tuple(emissions),
            post_hooks=() if base.post_hook is None else (base.post_hook,),
            requires=tuple(sorted(registry.dependencies)),
        ),
    )

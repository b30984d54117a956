"""
Override permissions, withholding, and precedence of declarations.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum, auto
from typing import final

from inherit.config import DEFAULT_CONFIG, InertOverridePolicy, ResolutionConfig
from inherit.errors import InertOverrideError, InertOverrideWarning, UnknownRoutineError
from inherit.registry import DraftRegistry, Origin, RoutineRecord
from inherit.syntax import Expr, Pattern, RoutineKey

logger = logging.getLogger(__name__)


class Admission(Enum):
    """How a unit's own declaration at some key is treated."""

    RECORD = auto()
    """The key is new; the declaration is recorded."""

    REPLACE = auto()
    """
    The declaration replaces the recorded routine: either the unit redeclares
    its own routine, or the inherited routine permits overriding.
    """

    INERT = auto()
    """
    The inherited routine forbids overriding. The declaration is accepted but
    never reached; the inherited entry stays in effect.
    """

    LOCAL = auto()
    """
    The key is withheld. The declaration is emitted for the unit itself but
    never recorded, so no descendant inherits it.
    """


@final
@dataclass(kw_only=True, slots=True, weakref_slot=True, eq=False)
class Ledger:
    """
    Tracks and enforces override permission and withholding for one unit.

    ``inherited_permissions`` snapshots the permissions the unit inherited.
    Admission of the unit's own declarations always consults the snapshot, so
    a unit that grants permission on an inherited routine passes the
    permission on to its descendants without unlocking the routine for itself.
    """

    registry: DraftRegistry
    config: ResolutionConfig = DEFAULT_CONFIG
    inherited_permissions: Mapping[RoutineKey, bool] = field(default_factory=dict)

    @classmethod
    def for_registry(
        cls, registry: DraftRegistry, config: ResolutionConfig = DEFAULT_CONFIG
    ) -> Ledger:
        return cls(
            registry=registry,
            config=config,
            inherited_permissions={
                key: routine.override_permitted
                for key, routine in registry.routines.items()
                if routine.inherited
            },
        )

    def grant(self, name: str, arity: int) -> None:
        """
        Permit descendants to override ``name/arity``.

        :raises UnknownRoutineError: If the unit records no such routine.
        """
        key = (name, arity)
        routine = self.registry.routines.get(key)
        if routine is None:
            raise UnknownRoutineError(self.registry.unit, name, arity)
        self.registry.record(key, replace(routine, override_permitted=True))
        logger.debug("%s grants override of %s/%d", self.registry.unit, name, arity)

    def withhold(self, name: str, arity: int) -> None:
        """Exclude ``name/arity`` from every descendant of the unit."""
        key = (name, arity)
        self.registry.discard(key)
        self.registry.add_withheld(key)
        logger.debug("%s withholds %s/%d", self.registry.unit, name, arity)

    def admit(
        self, key: RoutineKey, *, spliced: bool = False, stacklevel: int = 2
    ) -> Admission:
        """
        Decide how a declaration of ``key`` by the unit itself is treated.

        :param spliced: Whether the declaration comes from a base's hook rather
            than from the unit's own source. A spliced declaration at a locked
            key is inert without a diagnostic: the author of the extension did
            not write it.
        :param stacklevel: Frame the warning is attributed to, counted from
            this method as in :func:`warnings.warn`; 2 is the direct caller.
        :raises InertOverrideError: Under :attr:`InertOverridePolicy.ERROR`,
            instead of returning :attr:`Admission.INERT`.
        """
        if key in self.registry.withheld:
            return Admission.LOCAL
        existing = self.registry.routines.get(key)
        if existing is None:
            return Admission.RECORD
        if not existing.inherited:
            return Admission.REPLACE
        if self.inherited_permissions.get(key, existing.override_permitted):
            logger.debug("%s overrides %s/%d", self.registry.unit, *key)
            return Admission.REPLACE
        if spliced:
            return Admission.INERT

        name, arity = key
        message = (
            f"{self.registry.unit}.{name}/{arity} is inherited without override "
            f"permission; this declaration will never be called"
        )
        match self.config.inert_override:
            case InertOverridePolicy.ERROR:
                raise InertOverrideError(message)
            case InertOverridePolicy.WARN:
                warnings.warn(message, InertOverrideWarning, stacklevel=stacklevel)
        return Admission.INERT

    def declare(
        self,
        key: RoutineKey,
        *,
        params: tuple[Pattern, ...],
        guards: tuple[Expr, ...],
        body: Expr,
        spliced: bool = False,
        stacklevel: int = 2,
    ) -> Admission:
        """Admit a declaration and record it when admission allows."""
        admission = self.admit(key, spliced=spliced, stacklevel=stacklevel + 1)
        if admission in (Admission.RECORD, Admission.REPLACE):
            self.registry.record(
                key,
                RoutineRecord(
                    params=params, guards=guards, body=body, origin=Origin.NATIVE
                ),
            )
        return admission

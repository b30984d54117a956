"""
Exceptions and warnings raised while resolving and running inherited units.

Every error derives from :class:`InheritError` and from the closest builtin
exception, so callers may catch either ``InheritError`` or e.g. ``LookupError``.
"""

from __future__ import annotations


class InheritError(Exception):
    """Base class for all errors raised by this package."""


class UnresolvedBaseError(InheritError, LookupError):
    """
    The declared base unit has no finalized registry.

    Raised when an extension is opened before its base finished compiling,
    or when the base was never compiled at all.
    """

    def __init__(self, unit: str, base: str) -> None:
        super().__init__(
            f"cannot extend {base!r} from {unit!r}: "
            f"{base!r} has no finalized registry"
        )
        self.unit = unit
        self.base = base


class AmbiguousPrivateSetError(InheritError, ValueError):
    """
    A routine was classified against a registry whose private set may still grow.
    """

    def __init__(self, unit: str) -> None:
        super().__init__(
            f"registry of {unit!r} is still being compiled; "
            f"its private routines are not known yet"
        )
        self.unit = unit


class FinalizedRegistryError(InheritError, TypeError):
    """A finalized registry was written to, or finalized a second time."""


class UnknownRoutineError(InheritError, KeyError):
    """A ledger operation named a routine that the unit does not record."""

    def __init__(self, unit: str, name: str, arity: int) -> None:
        super().__init__(f"{unit!r} has no routine {name}/{arity}")
        self.unit = unit
        self.name = name
        self.arity = arity

    def __str__(self) -> str:
        return str(self.args[0])


class SuperCallError(InheritError, ValueError):
    """A body calls ``super`` or its base where nothing is inherited."""


class VisibilityConflictError(InheritError, ValueError):
    """A private routine was declared at a key that is already public."""


class InertOverrideError(InheritError, ValueError):
    """
    A unit declared a routine whose inherited permission forbids overriding.

    Only raised under :attr:`InertOverridePolicy.ERROR`; the default policy
    emits :class:`InertOverrideWarning` instead.
    """


class InertOverrideWarning(UserWarning):
    """
    A declaration was accepted but will never be reached.

    The inherited routine at the same key was not granted override
    permission by its declaring unit, so the inherited entry stays in effect.
    """


class UndefinedRoutineError(InheritError, LookupError):
    """No routine with the given name and arity is callable on a unit."""

    def __init__(self, unit: str, name: str, arity: int) -> None:
        super().__init__(f"no such routine {unit}.{name}/{arity}")
        self.unit = unit
        self.name = name
        self.arity = arity


class WithheldAccessError(UndefinedRoutineError):
    """The routine exists in an ancestor but was withheld from descendants."""

    def __init__(self, unit: str, name: str, arity: int) -> None:
        super().__init__(unit, name, arity)
        self.args = (f"no such routine {unit}.{name}/{arity} (withheld by an ancestor)",)


class GuardClauseError(InheritError, ValueError):
    """A routine was called with arguments that its patterns or guards reject."""


class UnresolvedDependencyError(InheritError, LookupError):
    """A unit requires another unit that is not available to the host."""


class InheritanceCycleError(InheritError, ValueError):
    """Unit definitions extend or import each other in a cycle."""


class UnitFileError(InheritError, ValueError):
    """A unit definition file is malformed."""

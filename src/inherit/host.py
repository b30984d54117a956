"""
A reference host: an emission sink that can run what it was given.

:class:`Program` collects the routines emitted for each unit and evaluates
routine bodies directly, so inherited behaviour can be observed without a
real code generator.
"""

from __future__ import annotations

import copy
import logging
import operator
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import final

from inherit.engine import RoutineEmission
from inherit.errors import (
    GuardClauseError,
    UndefinedRoutineError,
    UnresolvedDependencyError,
    WithheldAccessError,
)
from inherit.registry import Registry
from inherit.syntax import (
    As,
    BaseCall,
    Bind,
    Call,
    CurrentUnit,
    Default,
    Expr,
    FieldAccess,
    If,
    ListExpr,
    ListPattern,
    Literal,
    Match,
    Pattern,
    Primitive,
    RemoteCall,
    RoutineKey,
    SuperCall,
    TupleExpr,
    TuplePattern,
    Var,
    Wildcard,
)
from inherit.unit import EmissionSink

logger = logging.getLogger(__name__)


def _is_integer(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


PRIMITIVES: Mapping[str, Callable[..., object]] = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": operator.truediv,
    "div": operator.floordiv,
    "rem": operator.mod,
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "and": lambda left, right: left and right,
    "or": lambda left, right: left or right,
    "not": operator.not_,
    "++": lambda left, right: [*left, *right],
    "<>": operator.concat,
    "merge": lambda left, right: {**left, **right},
    "length": len,
    "elem": operator.getitem,
    "to_string": str,
    "is_integer": _is_integer,
    "is_binary": lambda value: isinstance(value, str),
    "is_list": lambda value: isinstance(value, list),
    "is_tuple": lambda value: isinstance(value, tuple),
    "is_map": lambda value: isinstance(value, Mapping),
}
"""Operations available to :class:`~inherit.syntax.Primitive` nodes."""


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class Struct(Mapping[str, object]):
    """An instance of a unit's aggregate record type."""

    unit: str
    fields: Mapping[str, object]

    def __getitem__(self, key: str) -> object:
        return self.fields[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self.fields)

    def __len__(self) -> int:
        return len(self.fields)


@final
@dataclass(kw_only=True, slots=True, weakref_slot=True, eq=False)
class _UnitImage:
    base: str | None
    fields: Mapping[str, object]
    routines: dict[RoutineKey, RoutineEmission] = field(default_factory=dict)
    requires: set[str] = field(default_factory=set)
    withheld: frozenset[RoutineKey] = frozenset()
    closed: bool = False


@final
@dataclass(kw_only=True, slots=True, weakref_slot=True, eq=False)
class Program(EmissionSink):
    """
    Holds every emitted unit and evaluates calls against them.

    A later emission for the same ``(name, arity)`` replaces the earlier one;
    declarations that must not take effect are never emitted.
    """

    _units: dict[str, _UnitImage] = field(default_factory=dict, init=False, repr=False)

    def open_unit(
        self, unit: str, *, base: str | None, fields: Mapping[str, object]
    ) -> None:
        if unit in self._units:
            raise ValueError(f"Unit {unit!r} is already loaded")
        self._units[unit] = _UnitImage(base=base, fields=dict(fields))

    def emit_routine(self, unit: str, emission: RoutineEmission) -> None:
        image = self._image(unit)
        image.routines[emission.key] = emission
        logger.debug(
            "Emitted %s.%s/%d (%s)",
            unit,
            emission.name,
            emission.arity,
            emission.origin.name.lower(),
        )

    def require(self, unit: str, dependencies: Iterable[str]) -> None:
        self._image(unit).requires.update(
            dependency for dependency in dependencies if dependency != unit
        )

    def close_unit(self, unit: str, registry: Registry) -> None:
        image = self._image(unit)
        missing = sorted(
            dependency for dependency in image.requires if dependency not in self._units
        )
        if missing:
            raise UnresolvedDependencyError(
                f"{unit!r} requires units that are not loaded: {', '.join(missing)}"
            )
        image.withheld = registry.withheld
        image.closed = True

    def _image(self, unit: str) -> _UnitImage:
        try:
            return self._units[unit]
        except KeyError as e:
            raise UnresolvedDependencyError(f"Unit {unit!r} is not loaded") from e

    def __contains__(self, unit: object) -> bool:
        return unit in self._units

    def parent(self, unit: str) -> str | None:
        """The base of ``unit``, or None for a root unit."""
        return self._image(unit).base

    def routines(self, unit: str) -> Mapping[RoutineKey, RoutineEmission]:
        """The routines callable on ``unit``, private ones included."""
        return dict(self._image(unit).routines)

    def new(self, unit: str, **overrides: object) -> Struct:
        """
        Create a record of ``unit`` from its field defaults.

        :raises KeyError: If an override names a field the unit does not define.
        """
        defaults = self._image(unit).fields
        unknown = [name for name in overrides if name not in defaults]
        if unknown:
            raise KeyError(f"{unit} has no field {unknown[0]!r}")
        return Struct(unit=unit, fields={**defaults, **overrides})

    def call(self, unit: str, name: str, *args: object) -> object:
        """Invoke ``name/len(args)`` on ``unit`` from outside any unit."""
        return self._invoke(unit, name, args, caller=None)

    def _invoke(
        self, unit: str, name: str, args: tuple[object, ...], *, caller: str | None
    ) -> object:
        image = self._image(unit)
        key = (name, len(args))
        routine = image.routines.get(key)
        if routine is None or (routine.private and caller != unit):
            if routine is None and key in image.withheld:
                raise WithheldAccessError(unit, name, len(args))
            raise UndefinedRoutineError(unit, name, len(args))

        env: dict[str, object] = {}
        for pattern, value in zip(routine.params, args):
            if not _match(pattern, value, env):
                raise GuardClauseError(
                    f"no clause of {unit}.{name}/{len(args)} matches {args!r}"
                )
        for guard in routine.guards:
            if not self._evaluate(guard, env, unit):
                raise GuardClauseError(
                    f"guards of {unit}.{name}/{len(args)} reject {args!r}"
                )
        return self._evaluate(routine.body, env, unit)

    def _evaluate(self, expr: Expr, env: Mapping[str, object], unit: str) -> object:
        def evaluate_all(items: tuple[Expr, ...]) -> tuple[object, ...]:
            return tuple(self._evaluate(item, env, unit) for item in items)

        match expr:
            case Literal(value=value):
                # Callers must not reach the recorded tree through the result.
                return copy.deepcopy(value)
            case Var(name=name):
                try:
                    return env[name]
                except KeyError as e:
                    raise NameError(f"unbound variable {name!r} in {unit}") from e
            case Call(name=name, args=args):
                return self._invoke(unit, name, evaluate_all(args), caller=unit)
            case RemoteCall(unit=target, name=name, args=args):
                return self._invoke(target, name, evaluate_all(args), caller=unit)
            case CurrentUnit():
                return unit
            case Primitive(op=op, args=args):
                try:
                    function = PRIMITIVES[op]
                except KeyError as e:
                    raise ValueError(f"unknown primitive {op!r}") from e
                return function(*evaluate_all(args))
            case FieldAccess(subject=subject, field=field_name):
                record = self._evaluate(subject, env, unit)
                if not isinstance(record, Mapping):
                    raise TypeError(f"cannot read field {field_name!r} of {record!r}")
                return record[field_name]
            case TupleExpr(items=items):
                return evaluate_all(items)
            case ListExpr(items=items):
                return list(evaluate_all(items))
            case If(condition=condition, then=then, otherwise=otherwise):
                if self._evaluate(condition, env, unit):
                    return self._evaluate(then, env, unit)
                return self._evaluate(otherwise, env, unit)
            case SuperCall() | BaseCall():
                raise TypeError(f"unbound base reference in {unit}: {expr!r}")
            case _:
                raise TypeError(f"not an expression: {expr!r}")


def _match(pattern: Pattern, value: object, env: dict[str, object]) -> bool:
    match pattern:
        case Bind(name=name):
            if name in env:
                return env[name] == value
            env[name] = value
            return True
        case Wildcard():
            return True
        case Match(value=expected):
            return type(value) is type(expected) and value == expected
        case TuplePattern(items=items):
            return (
                isinstance(value, tuple)
                and len(value) == len(items)
                and all(_match(item, element, env) for item, element in zip(items, value))
            )
        case ListPattern(items=items):
            return (
                isinstance(value, list)
                and len(value) == len(items)
                and all(_match(item, element, env) for item, element in zip(items, value))
            )
        case As(pattern=inner, name=name):
            return _match(inner, value, env) and _match(Bind(name=name), value, env)
        case Default(pattern=inner):
            return _match(inner, value, env)
        case _:
            raise TypeError(f"not a pattern: {pattern!r}")

"""
Immutable syntax trees for routine bodies, guards and parameter patterns.

Trees are built from frozen dataclasses, so a body recorded in one unit's
registry can be re-emitted in another unit without copying. Rewriting passes
return new trees via :func:`map_children`.

Example::

    >>> from inherit.syntax import Call, call, prim, var, walk
    >>> body = prim("+", call("helper", var("x")), 1)
    >>> [node.name for node in walk(body) if isinstance(node, Call)]
    ['helper']
"""

from __future__ import annotations

from abc import ABC
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import TypeAlias, final


class Expr(ABC):
    """Base class of expression nodes."""

    __slots__ = ()


class Pattern(ABC):
    """Base class of parameter pattern nodes."""

    __slots__ = ()


RoutineKey: TypeAlias = tuple[str, int]
"""A routine's identity within a unit: its name and its arity."""


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class Literal(Expr):
    value: object


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class Var(Expr):
    name: str


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class Call(Expr):
    """An unqualified call, resolved in the unit executing the body."""

    name: str
    args: tuple[Expr, ...] = ()

    @property
    def key(self) -> RoutineKey:
        return (self.name, len(self.args))


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class RemoteCall(Expr):
    """A call qualified with the identity of the unit that must answer it."""

    unit: str
    name: str
    args: tuple[Expr, ...] = ()


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class SuperCall(Expr):
    """
    Call the implementation that the enclosing routine replaces.

    Bound to a :class:`RemoteCall` on the base unit when the routine is
    declared; it never survives into a registry.
    """

    args: tuple[Expr, ...] = ()


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class BaseCall(Expr):
    """Call a routine on the immediate base unit. Bound like :class:`SuperCall`."""

    name: str
    args: tuple[Expr, ...] = ()


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class CurrentUnit(Expr):
    """Evaluates to the identity of the unit executing the body."""


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class Primitive(Expr):
    """A host primitive operation such as ``+`` or ``++``."""

    op: str
    args: tuple[Expr, ...] = ()


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class FieldAccess(Expr):
    subject: Expr
    field: str


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class TupleExpr(Expr):
    items: tuple[Expr, ...] = ()


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class ListExpr(Expr):
    items: tuple[Expr, ...] = ()


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class If(Expr):
    condition: Expr
    then: Expr
    otherwise: Expr


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class Bind(Pattern):
    name: str


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class Wildcard(Pattern):
    """Matches anything without binding. ``name`` is kept for readability only."""

    name: str = "_"


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class Match(Pattern):
    """Matches a value equal to ``value``."""

    value: object


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class TuplePattern(Pattern):
    items: tuple[Pattern, ...] = ()


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class ListPattern(Pattern):
    items: tuple[Pattern, ...] = ()


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class As(Pattern):
    """Matches ``pattern`` and also binds the whole value to ``name``."""

    pattern: Pattern
    name: str


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class Default(Pattern):
    """A parameter that may be omitted, in which case ``value`` is passed."""

    pattern: Pattern
    value: Expr


Node: TypeAlias = Expr | Pattern


def iter_children(node: Node) -> Iterator[Node]:
    """Yield the direct children of ``node`` in source order."""
    match node:
        case Call(args=args) | RemoteCall(args=args) | SuperCall(args=args):
            yield from args
        case BaseCall(args=args) | Primitive(args=args):
            yield from args
        case TupleExpr(items=items) | ListExpr(items=items):
            yield from items
        case TuplePattern(items=pattern_items) | ListPattern(items=pattern_items):
            yield from pattern_items
        case FieldAccess(subject=subject):
            yield subject
        case If(condition=condition, then=then, otherwise=otherwise):
            yield condition
            yield then
            yield otherwise
        case As(pattern=pattern):
            yield pattern
        case Default(pattern=pattern, value=value):
            yield pattern
            yield value
        case _:
            return


def walk(node: Node) -> Iterator[Node]:
    """Yield ``node`` and all of its descendants, depth-first, pre-order."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(tuple(iter_children(current))))


def map_children(node: Node, function: Callable[[Node], Node]) -> Node:
    """Rebuild ``node`` with ``function`` applied to each direct child."""

    def each(children: tuple) -> tuple:
        return tuple(function(child) for child in children)

    match node:
        case Call(name=name, args=args):
            return Call(name=name, args=each(args))
        case RemoteCall(unit=unit, name=name, args=args):
            return RemoteCall(unit=unit, name=name, args=each(args))
        case SuperCall(args=args):
            return SuperCall(args=each(args))
        case BaseCall(name=name, args=args):
            return BaseCall(name=name, args=each(args))
        case Primitive(op=op, args=args):
            return Primitive(op=op, args=each(args))
        case TupleExpr(items=items):
            return TupleExpr(items=each(items))
        case ListExpr(items=items):
            return ListExpr(items=each(items))
        case FieldAccess(subject=subject, field=field_name):
            return FieldAccess(subject=function(subject), field=field_name)
        case If(condition=condition, then=then, otherwise=otherwise):
            return If(
                condition=function(condition),
                then=function(then),
                otherwise=function(otherwise),
            )
        case TuplePattern(items=pattern_items):
            return TuplePattern(items=each(pattern_items))
        case ListPattern(items=pattern_items):
            return ListPattern(items=each(pattern_items))
        case As(pattern=pattern, name=name):
            return As(pattern=function(pattern), name=name)
        case Default(pattern=pattern, value=value):
            return Default(pattern=function(pattern), value=function(value))
        case _:
            return node


def transform(node: Node, function: Callable[[Node], Node]) -> Node:
    """Apply ``function`` bottom-up to every node of the tree."""
    return function(map_children(node, lambda child: transform(child, function)))


def pattern_bindings(pattern: Pattern) -> Iterator[str]:
    """Yield the names bound by ``pattern``, in source order."""
    for node in walk(pattern):
        match node:
            case Bind(name=name) | As(name=name):
                yield name


def referenced_names(expr: Expr) -> Iterator[str]:
    """Yield the variable names referenced anywhere in ``expr``."""
    for node in walk(expr):
        if isinstance(node, Var):
            yield node.name


# Short constructors, mostly for tests and hand-written units.


def lit(value: object) -> Literal:
    return Literal(value=value)


def var(name: str) -> Var:
    return Var(name=name)


def _expr(value: Expr | object) -> Expr:
    return value if isinstance(value, Expr) else Literal(value=value)


def call(name: str, *args: Expr | object) -> Call:
    return Call(name=name, args=tuple(_expr(arg) for arg in args))


def remote(unit: str, name: str, *args: Expr | object) -> RemoteCall:
    return RemoteCall(unit=unit, name=name, args=tuple(_expr(arg) for arg in args))


def super_call(*args: Expr | object) -> SuperCall:
    return SuperCall(args=tuple(_expr(arg) for arg in args))


def base_call(name: str, *args: Expr | object) -> BaseCall:
    return BaseCall(name=name, args=tuple(_expr(arg) for arg in args))


def prim(op: str, *args: Expr | object) -> Primitive:
    return Primitive(op=op, args=tuple(_expr(arg) for arg in args))


def field(subject: Expr, name: str) -> FieldAccess:
    return FieldAccess(subject=subject, field=name)


def tuple_of(*items: Expr | object) -> TupleExpr:
    return TupleExpr(items=tuple(_expr(item) for item in items))


def list_of(*items: Expr | object) -> ListExpr:
    return ListExpr(items=tuple(_expr(item) for item in items))


def params(*names: str | Pattern) -> tuple[Pattern, ...]:
    """
    Build a parameter list; plain strings become bindings.

    A string starting with ``_`` becomes a :class:`Wildcard`.
    """

    def one(item: str | Pattern) -> Pattern:
        if isinstance(item, Pattern):
            return item
        if item.startswith("_"):
            return Wildcard(name=item)
        return Bind(name=item)

    return tuple(one(item) for item in names)

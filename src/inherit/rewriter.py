"""
Qualification of references that leave the unit a body is emitted in.
"""

from __future__ import annotations

from collections.abc import Mapping

from inherit.errors import SuperCallError
from inherit.syntax import (
    BaseCall,
    Call,
    Expr,
    Node,
    RemoteCall,
    RoutineKey,
    SuperCall,
    transform,
)


def rewrite_remote_references(
    body: Expr, imports: Mapping[RoutineKey, str]
) -> tuple[Expr, frozenset[str]]:
    """
    Qualify bare calls to imported routines and collect the units a body needs.

    A bare :class:`Call` whose ``(name, arity)`` is in ``imports`` becomes a
    :class:`RemoteCall` on the importing source, so the body keeps resolving
    after it is copied into a unit that does not share the import.

    :param body: The tree to rewrite.
    :param imports: ``(name, arity) -> unit`` for the emitting unit's imports.
    :return: The rewritten tree and every unit it calls by qualified name,
        including those that were already qualified.
    """
    units: set[str] = set()

    def rewrite(node: Node) -> Node:
        match node:
            case Call(name=name, args=args) if (name, len(args)) in imports:
                unit = imports[(name, len(args))]
                units.add(unit)
                return RemoteCall(unit=unit, name=name, args=args)
            case RemoteCall(unit=unit):
                units.add(unit)
        return node

    rewritten = transform(body, rewrite)
    assert isinstance(rewritten, Expr)
    return rewritten, frozenset(units)


def bind_base_references(body: Expr, *, name: str, base: str | None) -> Expr:
    """
    Turn ``super`` and base calls into qualified calls on ``base``.

    The binding is static: the resulting :class:`RemoteCall` keeps reaching
    ``base`` wherever the body is later copied.

    :param name: Name of the routine the body belongs to; the target of
        :class:`SuperCall`.
    :param base: Identity of the immediate base, or None for a root unit.
    :raises SuperCallError: If the body refers to a base but there is none.
    """

    def bind(node: Node) -> Node:
        match node:
            case SuperCall(args=args):
                target = name
            case BaseCall(name=target, args=args):
                pass
            case _:
                return node
        if base is None:
            raise SuperCallError(
                f"{target}/{len(args)} refers to a base, but the unit has none"
            )
        return RemoteCall(unit=base, name=target, args=args)

    bound = transform(body, bind)
    assert isinstance(bound, Expr)
    return bound

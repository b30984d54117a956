"""
Private-dependency analysis of routine bodies.

A base routine whose body calls one of the base's private routines cannot be
copied into an extension: the private helper is not emitted there. Such a
routine is delegated instead, see :mod:`inherit.engine`.
"""

from __future__ import annotations

from collections.abc import Iterable, Set

from inherit.syntax import Call, Default, Expr, Pattern, RoutineKey, walk


def scan(body: Expr, private_names: Set[RoutineKey]) -> bool:
    """
    Report whether ``body`` calls any routine in ``private_names``.

    Only bare calls count: a qualified :class:`~inherit.syntax.RemoteCall`
    names another unit and never reaches this unit's private routines.

    :param body: The routine body to inspect.
    :param private_names: ``(name, arity)`` pairs of private routines.
    :return: True as soon as a matching call is found.
    """
    if not private_names:
        return False
    return any(
        isinstance(node, Call) and (node.name, len(node.args)) in private_names
        for node in walk(body)
    )


def scan_routine(
    params: Iterable[Pattern],
    guards: Iterable[Expr],
    body: Expr,
    private_names: Set[RoutineKey],
) -> bool:
    """
    Like :func:`scan`, but also inspects guards and default-value expressions.

    Recorded routines carry no :class:`~inherit.syntax.Default` parameters,
    since defaults are expanded into per-arity routines before recording, so
    :func:`~inherit.engine.resolve` only reaches the guards and body. The
    default-value check serves callers that classify a declaration as written.
    """
    if not private_names:
        return False
    if scan(body, private_names):
        return True
    if any(scan(guard, private_names) for guard in guards):
        return True
    return any(
        scan(node.value, private_names)
        for param in params
        for node in walk(param)
        if isinstance(node, Default)
    )

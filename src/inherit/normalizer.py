"""
Canonical parameter lists for re-emitted routines.

A forwarding routine needs a flat, ordered list of argument names, while a
declaration may use wildcards, destructuring patterns and default values.
:func:`normalize` keeps every binding a copied body refers to and gives every
other parameter a synthetic positional name; :func:`expand_defaults` turns
default-value sugar into one routine per arity.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import final

from inherit.syntax import (
    As,
    Bind,
    Call,
    Default,
    Expr,
    Pattern,
    Var,
    Wildcard,
    pattern_bindings,
    referenced_names,
)


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class ArityVariant:
    """One ``(name, arity)`` routine produced from a declaration."""

    arity: int
    params: tuple[Pattern, ...]
    guards: tuple[Expr, ...]
    body: Expr


def _taken_names(params: Iterable[Pattern], guards: Iterable[Expr]) -> set[str]:
    taken: set[str] = set()
    for param in params:
        taken.update(pattern_bindings(param))
    for guard in guards:
        taken.update(referenced_names(guard))
    return taken


def _strip_default(param: Pattern) -> Pattern:
    return param.pattern if isinstance(param, Default) else param


def normalize(
    params: Sequence[Pattern],
    guards: Sequence[Expr] = (),
    *,
    prefix: str = "arg_",
) -> tuple[Pattern, ...]:
    """
    Produce a parameter list whose every entry has a flat name.

    - :class:`Bind` and :class:`As` parameters are kept unchanged, since a
      copied body refers to their names.
    - :class:`Wildcard` parameters become bindings of a synthetic name.
    - Any other pattern is wrapped in :class:`As` with a synthetic name.
    - :class:`Default` sugar is stripped.

    Synthetic names are ``prefix`` followed by the 1-based position, suffixed
    with underscores until they clash with no name bound by the parameters or
    referenced by the guards.
    """
    taken = _taken_names(params, guards)

    def fresh(position: int) -> str:
        name = f"{prefix}{position}"
        while name in taken:
            name += "_"
        taken.add(name)
        return name

    def one(position: int, param: Pattern) -> Pattern:
        match _strip_default(param):
            case Bind() | As() as kept:
                return kept
            case Wildcard():
                return Bind(name=fresh(position))
            case pattern:
                return As(pattern=pattern, name=fresh(position))

    return tuple(one(position, param) for position, param in enumerate(params, 1))


def forwarding_arguments(params: Sequence[Pattern]) -> tuple[Var, ...]:
    """
    The argument list that passes every parameter on, in order.

    :param params: A parameter list returned by :func:`normalize`.
    :raises ValueError: If a parameter has no flat name.
    """

    def one(param: Pattern) -> Var:
        match param:
            case Bind(name=name) | As(name=name):
                return Var(name=name)
            case _:
                raise ValueError(f"Parameter is not normalized: {param!r}")

    return tuple(one(param) for param in params)


def arity_range(params: Sequence[Pattern]) -> range:
    """The arities a declaration with these parameters answers to."""
    defaults = sum(1 for param in params if isinstance(param, Default))
    return range(len(params) - defaults, len(params) + 1)


def expand_defaults(
    name: str,
    params: Sequence[Pattern],
    guards: Sequence[Expr],
    body: Expr,
    *,
    prefix: str = "arg_",
) -> tuple[ArityVariant, ...]:
    """
    Expand a declaration into one routine per arity, lowest arity first.

    The full-arity variant keeps the guards and body. Each shorter variant
    calls the full-arity routine, filling omitted parameters with their
    default values; supplied arguments go to defaulted parameters from left
    to right.
    """
    arities = arity_range(params)
    full = ArityVariant(
        arity=len(params),
        params=tuple(_strip_default(param) for param in params),
        guards=tuple(guards),
        body=body,
    )
    if len(arities) == 1:
        return (full,)

    required = arities.start
    variants: list[ArityVariant] = []
    for arity in arities[:-1]:
        remaining_defaults = arity - required
        supplied: list[Pattern] = []
        plan: list[Expr | None] = []
        for param in params:
            if isinstance(param, Default):
                if remaining_defaults > 0:
                    remaining_defaults -= 1
                    supplied.append(param.pattern)
                    plan.append(None)
                else:
                    plan.append(param.value)
            else:
                supplied.append(param)
                plan.append(None)

        variant_params = normalize(supplied, prefix=prefix)
        forwarded = iter(forwarding_arguments(variant_params))
        args = tuple(next(forwarded) if slot is None else slot for slot in plan)
        variants.append(
            ArityVariant(
                arity=arity,
                params=variant_params,
                guards=(),
                body=Call(name=name, args=args),
            )
        )
    variants.append(full)
    return tuple(variants)

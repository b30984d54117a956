"""
Compile sessions: one unit's declarations, from opening to finalization.

A unit opts in either as a root (:func:`open_root`) or as the extension of a
finalized base (:func:`open_extension`). The returned :class:`UnitCompiler`
accepts the unit's own declarations, feeds every routine to an
:class:`EmissionSink`, and finally publishes the unit's registry.

Example::

    store = RegistryStore()
    program = Program()

    animal = open_root("Animal", {"alive": True}, store=store, sink=program)
    animal.define("sound", (), lit("..."))
    animal.grant("sound", 0)
    animal.finalize()

    dog = open_extension("Dog", "Animal", {"mobile": True}, store=store, sink=program)
    dog.define("sound", (), lit("woof"))
    dog.finalize()

    program.call("Dog", "sound")  # "woof"
    program.new("Dog")  # {alive: True, mobile: True}
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TypeAlias, final

from inherit.config import DEFAULT_CONFIG, ResolutionConfig
from inherit.engine import EmissionList, FieldList, RoutineEmission, merge_fields, resolve
from inherit.errors import SuperCallError, UnknownRoutineError, VisibilityConflictError
from inherit.ledger import Admission, Ledger
from inherit.normalizer import arity_range, expand_defaults
from inherit.registry import DraftRegistry, Origin, Registry, RegistryStore
from inherit.rewriter import bind_base_references, rewrite_remote_references
from inherit.syntax import Expr, Pattern, RoutineKey, SuperCall, walk

logger = logging.getLogger(__name__)


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class Define:
    """Declare a routine; ``overridable`` also grants override permission."""

    name: str
    params: tuple[Pattern, ...] = ()
    body: Expr
    guards: tuple[Expr, ...] = ()
    private: bool = False
    overridable: bool = False


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class Grant:
    name: str
    arity: int


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class Withhold:
    name: str
    arity: int


Statement: TypeAlias = Define | Grant | Withhold


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class Hook:
    """
    Statements a base splices into every unit that extends it.

    The resolution pass carries hooks forward without looking inside; they
    run in the extending unit as if the unit had declared them itself.
    """

    statements: tuple[Statement, ...] = ()


class EmissionSink(ABC):
    """The host facility that makes emitted routines callable."""

    __slots__ = ()

    @abstractmethod
    def open_unit(
        self, unit: str, *, base: str | None, fields: Mapping[str, object]
    ) -> None: ...

    @abstractmethod
    def emit_routine(self, unit: str, emission: RoutineEmission) -> None: ...

    @abstractmethod
    def require(self, unit: str, dependencies: Iterable[str]) -> None: ...

    @abstractmethod
    def close_unit(self, unit: str, registry: Registry) -> None: ...


@final
@dataclass(kw_only=True, slots=True, weakref_slot=True, eq=False)
class UnitCompiler:
    registry: DraftRegistry
    ledger: Ledger
    store: RegistryStore
    sink: EmissionSink
    config: ResolutionConfig = DEFAULT_CONFIG
    inert_declarations: list[RoutineEmission] = field(default_factory=list)
    """Declarations that were accepted but will never be reached."""

    @property
    def unit(self) -> str:
        return self.registry.unit

    def _check_super_calls(self, name: str, body: Expr) -> None:
        base = self.registry.base
        for node in walk(body):
            if not isinstance(node, SuperCall):
                continue
            key = (name, len(node.args))
            if base is None:
                raise SuperCallError(
                    f"{self.unit}.{name}/{key[1]} calls super, but {self.unit} has no base"
                )
            if key not in self.store.require(base, by=self.unit).routines:
                raise SuperCallError(
                    f"{self.unit}.{name}/{key[1]} calls super, but {base} "
                    f"passes on no {name}/{key[1]}"
                )

    def _prepare(self, name: str, expr: Expr) -> tuple[Expr, frozenset[str]]:
        self._check_super_calls(name, expr)
        bound = bind_base_references(expr, name=name, base=self.registry.base)
        return rewrite_remote_references(bound, self.registry.imports)

    def define(
        self,
        name: str,
        params: Sequence[Pattern],
        body: Expr,
        *,
        guards: Sequence[Expr] = (),
        private: bool = False,
    ) -> tuple[Admission, ...]:
        """
        Declare a routine in this unit.

        A declaration with default values declares one routine per arity.
        ``super`` and base calls are bound to the base unit, and calls to
        imported routines are qualified, before anything is recorded.

        :return: The admission of each declared arity, lowest arity first.
        :raises VisibilityConflictError: If a private routine would shadow a
            public one, or the reverse.
        """
        return self._define(
            name, params, body, guards=guards, private=private, stacklevel=3
        )

    def _define(
        self,
        name: str,
        params: Sequence[Pattern],
        body: Expr,
        *,
        guards: Sequence[Expr],
        private: bool,
        spliced: bool = False,
        stacklevel: int = 2,
    ) -> tuple[Admission, ...]:
        body, units = self._prepare(name, body)
        prepared_guards: list[Expr] = []
        for guard in guards:
            prepared, guard_units = self._prepare(name, guard)
            prepared_guards.append(prepared)
            units |= guard_units

        admissions: list[Admission] = []
        for variant in expand_defaults(
            name, tuple(params), prepared_guards, body, prefix=self.config.synthetic_prefix
        ):
            key = (name, variant.arity)
            emission = RoutineEmission(
                name=name,
                arity=variant.arity,
                params=variant.params,
                guards=variant.guards,
                body=variant.body,
                origin=Origin.NATIVE,
                private=private,
            )
            if private:
                if key in self.registry.routines:
                    raise VisibilityConflictError(
                        f"{self.unit}.{name}/{variant.arity} is public; "
                        f"it cannot be redeclared as private"
                    )
                self.registry.add_private(key)
                admission = Admission.LOCAL
            else:
                if key in self.registry.private_names:
                    raise VisibilityConflictError(
                        f"{self.unit}.{name}/{variant.arity} is private; "
                        f"it cannot be redeclared as public"
                    )
                admission = self.ledger.declare(
                    key,
                    params=variant.params,
                    guards=variant.guards,
                    body=variant.body,
                    spliced=spliced,
                    stacklevel=stacklevel + 1,
                )
                if admission in (Admission.RECORD, Admission.REPLACE):
                    self.registry.add_dependencies(units)

            if admission is Admission.INERT:
                self.inert_declarations.append(emission)
            else:
                self.sink.emit_routine(self.unit, emission)
            admissions.append(admission)

        if units:
            self.sink.require(self.unit, units)
        return tuple(admissions)

    def grant(self, name: str, arity: int) -> None:
        self.ledger.grant(name, arity)

    def withhold(self, name: str, arity: int) -> None:
        self.ledger.withhold(name, arity)

    def import_routines(
        self, source: str, keys: Iterable[RoutineKey] | None = None
    ) -> None:
        """
        Make routines of the finalized unit ``source`` callable by bare name.

        :param keys: ``(name, arity)`` pairs to import; all of the source's
            inheritable routines when None.
        :raises UnknownRoutineError: If ``source`` records no such routine.
        """
        source_registry = self.store.require(source, by=self.unit)
        for key in source_registry.routines if keys is None else keys:
            if key not in source_registry.routines:
                raise UnknownRoutineError(source, *key)
            self.registry.add_import(key, source)

    def set_hooks(self, *, pre: Hook | None = None, post: Hook | None = None) -> None:
        """Set the hooks spliced into every unit that extends this one."""
        self.registry.set_hooks(pre=pre, post=post)

    def run(self, statement: Statement, *, spliced: bool = False) -> None:
        """
        Execute one statement.

        :param spliced: The statement comes from a base's hook; a declaration
            at a key the base locked is then dropped without a diagnostic.
        """
        match statement:
            case Define(name=name, params=params, body=body, guards=guards) as declaration:
                admissions = self._define(
                    name,
                    params,
                    body,
                    guards=guards,
                    private=declaration.private,
                    spliced=spliced,
                    stacklevel=3,
                )
                if declaration.overridable:
                    for arity, admission in zip(arity_range(params), admissions):
                        if admission in (Admission.RECORD, Admission.REPLACE):
                            self.grant(name, arity)
            case Grant(name=name, arity=arity):
                self.grant(name, arity)
            case Withhold(name=name, arity=arity):
                self.withhold(name, arity)

    def _splice(self, hooks: Iterable[Hook]) -> None:
        for hook in hooks:
            for statement in hook.statements:
                self.run(statement, spliced=True)

    def _materialize(self, emissions: EmissionList) -> None:
        self._splice(emissions.pre_hooks)
        for emission in emissions.routines:
            current = self.registry.routines.get(emission.key)
            if current is not None and current.origin is Origin.NATIVE:
                # Replaced by a pre-hook declaration.
                continue
            self.sink.emit_routine(self.unit, emission)
        self.sink.require(self.unit, emissions.requires)
        self._splice(emissions.post_hooks)

    def finalize(self) -> Registry:
        """Publish the unit's registry. No declaration is accepted afterwards."""
        registry = self.registry.finalize()
        self.sink.close_unit(self.unit, registry)
        self.store.finalize(self.unit, registry)
        return registry


def open_root(
    unit: str,
    fields: FieldList = (),
    *,
    store: RegistryStore,
    sink: EmissionSink,
    config: ResolutionConfig = DEFAULT_CONFIG,
) -> UnitCompiler:
    """Start compiling ``unit`` as a root of inheritance."""
    registry = DraftRegistry(unit=unit, field_defaults=merge_fields({}, fields))
    sink.open_unit(unit, base=None, fields=registry.field_defaults)
    logger.info("Opened root unit %s", unit)
    return UnitCompiler(
        registry=registry,
        ledger=Ledger.for_registry(registry, config),
        store=store,
        sink=sink,
        config=config,
    )


def open_extension(
    unit: str,
    base: str,
    fields: FieldList = (),
    *,
    store: RegistryStore,
    sink: EmissionSink,
    config: ResolutionConfig = DEFAULT_CONFIG,
) -> UnitCompiler:
    """
    Start compiling ``unit`` as an extension of ``base``.

    The inherited fields, routines and hooks are materialized before this
    returns, so the unit's own declarations are weighed against them.

    :raises UnresolvedBaseError: If ``base`` has not been finalized.
    """
    resolution = resolve(
        store.require(base, by=unit), fields, unit=unit, config=config
    )
    registry = resolution.registry
    sink.open_unit(unit, base=base, fields=registry.field_defaults)
    logger.info("Opened unit %s extending %s", unit, base)
    compiler = UnitCompiler(
        registry=registry,
        ledger=Ledger.for_registry(registry, config),
        store=store,
        sink=sink,
        config=config,
    )
    compiler._materialize(resolution.emissions)
    return compiler

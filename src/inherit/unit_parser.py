"""
Parser for unit definition files (YAML/JSON/TOML).

A file maps unit names to unit definitions::

    Animal:
      fields: {alive: true}
      declarations:
        - name: sound
          body: [lit, "..."]
          overridable: true
        - name: describe
          params: [animal]
          body: ["<>", [call, sound], [lit, " and alive"]]

    Dog:
      base: Animal
      fields: {mobile: true}
      declarations:
        - name: sound
          body: [lit, woof]

Expressions are written as follows:

- numbers, booleans and null are literals; mappings are literal data;
- a string is a variable reference;
- a list is a form ``[head, ...]``: ``[lit, value]``, ``[call, name, *args]``,
  ``[remote, unit, name, *args]``, ``[super, *args]``, ``[base, name, *args]``,
  ``[unit]``, ``[field, subject, name]``, ``[tuple, *items]``,
  ``[list, *items]``, ``[if, condition, then, otherwise]``, or a primitive
  operation such as ``["+", left, right]``.

Parameter patterns: a string binds a name (a leading ``_`` makes it a
wildcard), a scalar matches an equal value, and the forms ``[tuple, ...]``,
``[list, ...]``, ``[lit, value]``, ``[as, pattern, name]`` and
``[default, pattern, expression]`` build composite patterns.
"""

from __future__ import annotations

import json
import tomllib
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TypeAlias, final

import yaml

from inherit.config import DEFAULT_CONFIG, ResolutionConfig
from inherit.errors import UnitFileError
from inherit.host import PRIMITIVES
from inherit.registry import Registry, RegistryStore
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
from inherit.unit import (
    Define,
    EmissionSink,
    Grant,
    Hook,
    Statement,
    Withhold,
    open_extension,
    open_root,
)

# JSON-compatible type aliases
JsonScalar: TypeAlias = str | int | float | bool | None
JsonValue: TypeAlias = JsonScalar | list["JsonValue"] | dict[str, "JsonValue"]

UNIT_FILE_EXTENSIONS = (".unit.yaml", ".unit.yml", ".unit.json", ".unit.toml")


@final
@dataclass(frozen=True, kw_only=True, slots=True, weakref_slot=True)
class UnitDefinition:
    """A unit parsed from a unit definition file."""

    name: str
    base: str | None
    fields: Mapping[str, object]
    imports: Mapping[str, tuple[RoutineKey, ...] | None]
    """Source unit to imported keys; None imports every inheritable routine."""

    statements: tuple[Statement, ...]
    pre_hook: Hook | None
    post_hook: Hook | None
    source_file: Path
    """Path to the source file for error reporting."""

    def compile(
        self,
        *,
        store: RegistryStore,
        sink: EmissionSink,
        config: ResolutionConfig = DEFAULT_CONFIG,
    ) -> Registry:
        """Compile the unit against ``store`` and publish its registry."""
        if self.base is None:
            compiler = open_root(
                self.name, self.fields, store=store, sink=sink, config=config
            )
        else:
            compiler = open_extension(
                self.name, self.base, self.fields, store=store, sink=sink, config=config
            )
        for source, keys in self.imports.items():
            compiler.import_routines(source, keys)
        if self.pre_hook is not None or self.post_hook is not None:
            compiler.set_hooks(pre=self.pre_hook, post=self.post_hook)
        for statement in self.statements:
            compiler.run(statement)
        return compiler.finalize()


def _arguments(items: Sequence[JsonValue]) -> tuple[Expr, ...]:
    return tuple(parse_expression(item) for item in items)


def _name(value: JsonValue, what: str) -> str:
    if not isinstance(value, str):
        raise UnitFileError(f"{what} must be a string, got {type(value).__name__}: {value!r}")
    return value


def parse_expression(value: JsonValue) -> Expr:
    """
    Parse one expression.

    :raises UnitFileError: If the value is not a valid expression.
    """
    if isinstance(value, str):
        return Var(name=value)
    if isinstance(value, bool | int | float) or value is None:
        return Literal(value=value)
    if isinstance(value, dict):
        return Literal(value=value)
    if not value:
        raise UnitFileError("Expression form must not be empty")

    head, *rest = value
    match head:
        case "lit" if len(rest) == 1:
            return Literal(value=rest[0])
        case "call" if rest:
            return Call(name=_name(rest[0], "Routine name"), args=_arguments(rest[1:]))
        case "remote" if len(rest) >= 2:
            return RemoteCall(
                unit=_name(rest[0], "Unit name"),
                name=_name(rest[1], "Routine name"),
                args=_arguments(rest[2:]),
            )
        case "super":
            return SuperCall(args=_arguments(rest))
        case "base" if rest:
            return BaseCall(name=_name(rest[0], "Routine name"), args=_arguments(rest[1:]))
        case "unit" if not rest:
            return CurrentUnit()
        case "field" if len(rest) == 2:
            return FieldAccess(
                subject=parse_expression(rest[0]), field=_name(rest[1], "Field name")
            )
        case "tuple":
            return TupleExpr(items=_arguments(rest))
        case "list":
            return ListExpr(items=_arguments(rest))
        case "if" if len(rest) == 3:
            condition, then, otherwise = _arguments(rest)
            return If(condition=condition, then=then, otherwise=otherwise)
        case str() if head in PRIMITIVES:
            return Primitive(op=head, args=_arguments(rest))
        case _:
            raise UnitFileError(f"Unrecognized expression form: {value!r}")


def parse_pattern(value: JsonValue) -> Pattern:
    """
    Parse one parameter pattern.

    :raises UnitFileError: If the value is not a valid pattern.
    """
    if isinstance(value, str):
        return Wildcard(name=value) if value.startswith("_") else Bind(name=value)
    if isinstance(value, bool | int | float) or value is None:
        return Match(value=value)
    if not isinstance(value, list) or not value:
        raise UnitFileError(f"Unrecognized pattern: {value!r}")

    head, *rest = value
    match head:
        case "tuple":
            return TuplePattern(items=tuple(parse_pattern(item) for item in rest))
        case "list":
            return ListPattern(items=tuple(parse_pattern(item) for item in rest))
        case "lit" if len(rest) == 1:
            return Match(value=rest[0])
        case "as" if len(rest) == 2:
            return As(pattern=parse_pattern(rest[0]), name=_name(rest[1], "Alias"))
        case "default" if len(rest) == 2:
            return Default(pattern=parse_pattern(rest[0]), value=parse_expression(rest[1]))
        case _:
            raise UnitFileError(f"Unrecognized pattern form: {value!r}")


def _parse_key(value: JsonValue) -> RoutineKey:
    if (
        not isinstance(value, list)
        or len(value) != 2
        or not isinstance(value[0], str)
        or not isinstance(value[1], int)
    ):
        raise UnitFileError(f"Routine key must be [name, arity], got {value!r}")
    return (value[0], value[1])


def parse_statement(value: JsonValue) -> Statement:
    """
    Parse one declaration.

    A mapping with ``name`` declares a routine; ``{grant: [name, arity]}`` and
    ``{withhold: [name, arity]}`` grant override permission and withhold.
    """
    if not isinstance(value, dict):
        raise UnitFileError(f"Declaration must be a mapping, got {type(value).__name__}")
    if "grant" in value:
        name, arity = _parse_key(value["grant"])
        return Grant(name=name, arity=arity)
    if "withhold" in value:
        name, arity = _parse_key(value["withhold"])
        return Withhold(name=name, arity=arity)
    if "body" not in value:
        raise UnitFileError(f"Routine declaration needs a body: {value!r}")

    params = value.get("params") or []
    guards = value.get("guards") or []
    if not isinstance(params, list) or not isinstance(guards, list):
        raise UnitFileError(f"params and guards must be lists: {value!r}")
    return Define(
        name=_name(value.get("name"), "Routine name"),
        params=tuple(parse_pattern(param) for param in params),
        body=parse_expression(value["body"]),
        guards=tuple(parse_expression(guard) for guard in guards),
        private=bool(value.get("private", False)),
        overridable=bool(value.get("overridable", False)),
    )


def _parse_hook(value: JsonValue) -> Hook | None:
    if value is None:
        return None
    if not isinstance(value, list):
        raise UnitFileError(f"Hook must be a list of declarations, got {value!r}")
    return Hook(statements=tuple(parse_statement(item) for item in value))


def _parse_imports(value: JsonValue) -> Mapping[str, tuple[RoutineKey, ...] | None]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise UnitFileError(f"imports must be a mapping, got {type(value).__name__}")
    imports: dict[str, tuple[RoutineKey, ...] | None] = {}
    for source, keys in value.items():
        if keys is None or keys == "all":
            imports[source] = None
        elif isinstance(keys, list):
            imports[source] = tuple(_parse_key(key) for key in keys)
        else:
            raise UnitFileError(f"Imports from {source!r} must be a list of keys")
    return imports


def parse_unit_value(name: str, value: JsonValue, source_file: Path) -> UnitDefinition:
    """Parse the definition of unit ``name``."""
    if value is None:
        value = {}
    if not isinstance(value, dict):
        raise UnitFileError(
            f"{source_file.name}: unit {name!r} must be a mapping, "
            f"got {type(value).__name__}"
        )
    fields = value.get("fields") or {}
    declarations = value.get("declarations") or []
    base = value.get("base")
    if not isinstance(fields, dict):
        raise UnitFileError(f"{source_file.name}: fields of {name!r} must be a mapping")
    if not isinstance(declarations, list):
        raise UnitFileError(f"{source_file.name}: declarations of {name!r} must be a list")
    try:
        return UnitDefinition(
            name=name,
            base=None if base is None else _name(base, "Base"),
            fields=dict(fields),
            imports=_parse_imports(value.get("imports")),
            statements=tuple(parse_statement(item) for item in declarations),
            pre_hook=_parse_hook(value.get("pre_hook")),
            post_hook=_parse_hook(value.get("post_hook")),
            source_file=source_file,
        )
    except UnitFileError as e:
        raise UnitFileError(f"{source_file.name}: unit {name!r}: {e}") from e


def parse_unit_file(file_path: Path) -> Mapping[str, UnitDefinition]:
    """
    Parse a unit definition file (YAML/JSON/TOML).

    :param file_path: Path to the unit file.
    :return: Mapping of unit names to their definitions, in file order.
    :raises UnitFileError: If the file format is not recognized or parsing fails.
    """
    content = file_path.read_text(encoding="utf-8")

    name = file_path.name.lower()
    if name.endswith(".unit.yaml") or name.endswith(".unit.yml"):
        data = yaml.safe_load(content)
    elif name.endswith(".unit.json"):
        data = json.loads(content)
    elif name.endswith(".unit.toml"):
        data = tomllib.loads(content)
    else:
        raise UnitFileError(
            f"Unrecognized unit file format: {file_path.name}. "
            f"Expected one of {', '.join(UNIT_FILE_EXTENSIONS)}"
        )

    if not isinstance(data, dict):
        raise UnitFileError(
            f"Unit file must contain a mapping at top level, got {type(data).__name__}"
        )

    result: dict[str, UnitDefinition] = {}
    for unit_name, unit_value in data.items():
        if not isinstance(unit_name, str):
            raise UnitFileError(f"Unit name must be a string, got {type(unit_name).__name__}")
        result[unit_name] = parse_unit_value(unit_name, unit_value, file_path)
    return result

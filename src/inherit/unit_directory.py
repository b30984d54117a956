"""
Directory-based unit file discovery and compilation.

Units defined across a directory tree are compiled in dependency order: a
unit's base, the units it imports from and the units its bodies call by
qualified name are always finalized before the unit itself.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from graphlib import CycleError, TopologicalSorter
from pathlib import Path

from inherit.config import DEFAULT_CONFIG, ResolutionConfig
from inherit.errors import InheritanceCycleError, UnitFileError, UnresolvedBaseError
from inherit.host import Program
from inherit.registry import Registry, RegistryStore
from inherit.syntax import RemoteCall, walk
from inherit.unit import Define, EmissionSink, Statement
from inherit.unit_parser import UNIT_FILE_EXTENSIONS, UnitDefinition, parse_unit_file

logger = logging.getLogger(__name__)


def discover_unit_files(directory: Path) -> Iterator[Path]:
    """Yield unit files under ``directory``, skipping hidden subdirectories."""
    for entry in sorted(directory.iterdir()):
        if entry.is_dir():
            if not entry.name.startswith("."):
                yield from discover_unit_files(entry)
        elif entry.is_file() and entry.name.lower().endswith(UNIT_FILE_EXTENSIONS):
            yield entry


def load_unit_directory(directory: Path) -> Mapping[str, UnitDefinition]:
    """
    Parse every unit file under ``directory``.

    :raises ValueError: If the path is not a directory.
    :raises UnitFileError: If two files define a unit with the same name.
    """
    if not directory.is_dir():
        raise ValueError(f"Path is not a directory: {directory}")

    definitions: dict[str, UnitDefinition] = {}
    for file_path in discover_unit_files(directory):
        for name, definition in parse_unit_file(file_path).items():
            if name in definitions:
                raise UnitFileError(
                    f"Unit {name!r} is defined in both "
                    f"{definitions[name].source_file} and {file_path}"
                )
            definitions[name] = definition
    return definitions


def _statements(definition: UnitDefinition) -> Iterator[Statement]:
    yield from definition.statements
    for hook in (definition.pre_hook, definition.post_hook):
        if hook is not None:
            yield from hook.statements


def _requirements(definition: UnitDefinition) -> Iterator[str]:
    if definition.base is not None:
        yield definition.base
    yield from definition.imports
    for statement in _statements(definition):
        if not isinstance(statement, Define):
            continue
        for expr in (statement.body, *statement.guards):
            for node in walk(expr):
                if isinstance(node, RemoteCall):
                    yield node.unit


def compilation_order(
    definitions: Mapping[str, UnitDefinition], *, store: RegistryStore
) -> tuple[str, ...]:
    """
    Order ``definitions`` so that every unit follows the units it needs.

    Units already finalized in ``store`` satisfy a requirement without being
    compiled again.

    :raises UnresolvedBaseError: If a base is neither defined nor finalized.
    :raises InheritanceCycleError: If units depend on each other in a cycle.
    """
    sorter: TopologicalSorter[str] = TopologicalSorter()
    for name in sorted(definitions):
        definition = definitions[name]
        if (
            definition.base is not None
            and definition.base not in definitions
            and definition.base not in store
        ):
            raise UnresolvedBaseError(name, definition.base)
        sorter.add(
            name,
            *(
                requirement
                for requirement in _requirements(definition)
                if requirement in definitions and requirement != name
            ),
        )
    try:
        return tuple(sorter.static_order())
    except CycleError as e:
        raise InheritanceCycleError(
            f"Units depend on each other in a cycle: {' -> '.join(e.args[1])}"
        ) from e


def compile_units(
    definitions: Mapping[str, UnitDefinition],
    *,
    store: RegistryStore,
    sink: EmissionSink,
    config: ResolutionConfig = DEFAULT_CONFIG,
) -> Mapping[str, Registry]:
    """Compile every definition in dependency order and publish the registries."""
    registries: dict[str, Registry] = {}
    for name in compilation_order(definitions, store=store):
        logger.info("Compiling unit %s", name)
        registries[name] = definitions[name].compile(
            store=store, sink=sink, config=config
        )
    return registries


def evaluate_unit_directory(
    directory: Path, *, config: ResolutionConfig = DEFAULT_CONFIG
) -> Program:
    """
    Compile the unit files under ``directory`` into a runnable program.

    :param directory: Path to the directory containing unit files.
    :return: A :class:`Program` with every unit loaded.
    """
    program = Program()
    compile_units(
        load_unit_directory(directory),
        store=RegistryStore(),
        sink=program,
        config=config,
    )
    return program

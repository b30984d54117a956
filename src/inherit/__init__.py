"""
inherit: build-time declaration inheritance.

One unit (the extension) acquires the routines and record fields of another
unit (the base) once, while it compiles, instead of delegating at run time.
The base decides per routine whether extensions may replace it.

## Core Design Principle: Resolve Once, Against the Immediate Base

When a unit names a base, the base's finalized registry is resolved into the
extension:

- fields are merged (extension defaults override, new fields are appended);
- every routine the base did not withhold is either *copied* (its body
  re-emitted in the extension) or, when it calls a private helper of the
  base, *delegated* (a forwarding routine calls the base by qualified name);
- override permissions travel with the routines.

The base's registry already holds the flattened result of its own
resolution, so a chain of any depth needs no further walk.

## Example

```python
from inherit import Program, RegistryStore, open_extension, open_root
from inherit.syntax import lit, params, prim, super_call, var

store = RegistryStore()
program = Program()

level1 = open_root("Level1", store=store, sink=program)
level1.define("f", params("x"), var("x"))
level1.grant("f", 1)
level1.define("g", (), lit("base"))  # no grant: extensions cannot replace g/0
level1.finalize()

level2 = open_extension("Level2", "Level1", store=store, sink=program)
level2.define("f", params("x"), prim("+", super_call(var("x")), 30))
level2.grant("f", 1)
level2.define("g", (), lit("child"))  # InertOverrideWarning, never called
level2.finalize()

program.call("Level2", "f", 50)  # 80
program.call("Level2", "g")  # "base"
```
"""

from __future__ import annotations

from inherit.config import DEFAULT_CONFIG as DEFAULT_CONFIG
from inherit.config import InertOverridePolicy as InertOverridePolicy
from inherit.config import ResolutionConfig as ResolutionConfig
from inherit.engine import EmissionList as EmissionList
from inherit.engine import Resolution as Resolution
from inherit.engine import RoutineEmission as RoutineEmission
from inherit.engine import merge_fields as merge_fields
from inherit.engine import resolve as resolve
from inherit.errors import AmbiguousPrivateSetError as AmbiguousPrivateSetError
from inherit.errors import FinalizedRegistryError as FinalizedRegistryError
from inherit.errors import GuardClauseError as GuardClauseError
from inherit.errors import InertOverrideError as InertOverrideError
from inherit.errors import InertOverrideWarning as InertOverrideWarning
from inherit.errors import InheritanceCycleError as InheritanceCycleError
from inherit.errors import InheritError as InheritError
from inherit.errors import SuperCallError as SuperCallError
from inherit.errors import UndefinedRoutineError as UndefinedRoutineError
from inherit.errors import UnitFileError as UnitFileError
from inherit.errors import UnknownRoutineError as UnknownRoutineError
from inherit.errors import UnresolvedBaseError as UnresolvedBaseError
from inherit.errors import UnresolvedDependencyError as UnresolvedDependencyError
from inherit.errors import VisibilityConflictError as VisibilityConflictError
from inherit.errors import WithheldAccessError as WithheldAccessError
from inherit.host import Program as Program
from inherit.host import Struct as Struct
from inherit.ledger import Admission as Admission
from inherit.ledger import Ledger as Ledger
from inherit.normalizer import expand_defaults as expand_defaults
from inherit.normalizer import normalize as normalize
from inherit.registry import DraftRegistry as DraftRegistry
from inherit.registry import Origin as Origin
from inherit.registry import Registry as Registry
from inherit.registry import RegistryStore as RegistryStore
from inherit.registry import RoutineRecord as RoutineRecord
from inherit.rewriter import rewrite_remote_references as rewrite_remote_references
from inherit.scanner import scan as scan
from inherit.unit import Define as Define
from inherit.unit import EmissionSink as EmissionSink
from inherit.unit import Grant as Grant
from inherit.unit import Hook as Hook
from inherit.unit import UnitCompiler as UnitCompiler
from inherit.unit import Withhold as Withhold
from inherit.unit import open_extension as open_extension
from inherit.unit import open_root as open_root
from inherit.unit_directory import compile_units as compile_units
from inherit.unit_directory import evaluate_unit_directory as evaluate_unit_directory
from inherit.unit_parser import parse_unit_file as parse_unit_file

"""Tests for compile sessions, run end to end on the reference host."""

import warnings

import pytest

from inherit import (
    Admission,
    Define,
    FinalizedRegistryError,
    GuardClauseError,
    Hook,
    InertOverrideError,
    InertOverridePolicy,
    InertOverrideWarning,
    Origin,
    Program,
    RegistryStore,
    ResolutionConfig,
    SuperCallError,
    UndefinedRoutineError,
    UnknownRoutineError,
    UnresolvedBaseError,
    UnresolvedDependencyError,
    VisibilityConflictError,
    WithheldAccessError,
    open_extension,
    open_root,
)
from inherit.syntax import (
    As,
    Bind,
    CurrentUnit,
    Default,
    Match,
    TuplePattern,
    base_call,
    call,
    field,
    lit,
    params,
    prim,
    remote,
    super_call,
    var,
)


@pytest.fixture
def store() -> RegistryStore:
    return RegistryStore()


@pytest.fixture
def program() -> Program:
    return Program()


class TestFields:
    """Aggregate record fields."""

    def test_extension_overrides_and_appends(
        self, store: RegistryStore, program: Program
    ) -> None:
        open_root("A", {"a": 1, "b": 2}, store=store, sink=program).finalize()
        open_extension(
            "B", "A", [("b", 3), ("c", 4)], store=store, sink=program
        ).finalize()

        assert dict(program.new("B")) == {"a": 1, "b": 3, "c": 4}
        assert list(program.new("B")) == ["a", "b", "c"]
        assert dict(program.new("A")) == {"a": 1, "b": 2}

    def test_new_with_overrides(self, store: RegistryStore, program: Program) -> None:
        open_root("A", {"a": 1}, store=store, sink=program).finalize()
        record = program.new("A", a=5)
        assert record["a"] == 5
        assert record.unit == "A"
        with pytest.raises(KeyError, match="no field"):
            program.new("A", z=0)

    def test_field_access_in_body(self, store: RegistryStore, program: Program) -> None:
        root = open_root("A", {"size": 3}, store=store, sink=program)
        root.define("size_of", params("record"), field(var("record"), "size"))
        root.finalize()
        assert program.call("A", "size_of", program.new("A")) == 3


class TestCopying:
    """Inherited routines resolve their calls in the extension."""

    def test_copied_body_observes_override(
        self, store: RegistryStore, program: Program
    ) -> None:
        root = open_root("A", store=store, sink=program)
        root.define("f", params("x"), prim("*", var("x"), 2))
        root.grant("f", 1)
        root.define("g", params("x"), call("f", var("x")))
        root.finalize()

        child = open_extension("B", "A", store=store, sink=program)
        child.define("f", params("x"), prim("*", var("x"), 10))
        child.finalize()

        assert program.call("A", "g", 3) == 6
        assert program.call("B", "g", 3) == 30
        assert store["B"].routines[("g", 1)].origin is Origin.COPIED
        assert store["B"].routines[("f", 1)].origin is Origin.NATIVE

    def test_inherited_routine_is_callable(
        self, store: RegistryStore, program: Program
    ) -> None:
        root = open_root("A", store=store, sink=program)
        root.define("add", params("a", "b"), prim("+", var("a"), var("b")))
        root.finalize()
        open_extension("B", "A", store=store, sink=program).finalize()

        assert program.call("B", "add", 1, 2) == 3
        assert program.parent("B") == "A"
        assert program.parent("A") is None

    def test_long_chain(self, store: RegistryStore, program: Program) -> None:
        """Each unit resolves against its immediate base only."""
        root = open_root("U0", store=store, sink=program)
        root.define("f", params("x"), prim("+", var("x"), 1))
        root.finalize()
        for level in range(1, 100):
            open_extension(
                f"U{level}", f"U{level - 1}", store=store, sink=program
            ).finalize()

        assert program.call("U99", "f", 1) == 2
        assert len(list(store.lineage("U99"))) == 100


class TestDelegation:
    """Routines that call private helpers are delegated."""

    def test_delegated_routine_reaches_private_helper(
        self, store: RegistryStore, program: Program
    ) -> None:
        root = open_root("A", store=store, sink=program)
        root.define("helper", params("x"), prim("+", var("x"), 1), private=True)
        root.define("pub", params("x"), call("helper", var("x")))
        root.finalize()
        open_extension("B", "A", store=store, sink=program).finalize()

        assert program.call("A", "pub", 1) == 2
        assert program.call("B", "pub", 1) == 2
        assert store["B"].routines[("pub", 1)].origin is Origin.DELEGATED
        assert "A" in store["B"].dependencies

    def test_private_routine_is_not_callable_from_outside(
        self, store: RegistryStore, program: Program
    ) -> None:
        root = open_root("A", store=store, sink=program)
        root.define("helper", params("x"), var("x"), private=True)
        root.finalize()
        open_extension("B", "A", store=store, sink=program).finalize()

        with pytest.raises(UndefinedRoutineError):
            program.call("A", "helper", 1)
        with pytest.raises(UndefinedRoutineError):
            program.call("B", "helper", 1)
        assert ("helper", 1) not in store["A"].routines
        assert ("helper", 1) in store["A"].private_names

    def test_delegation_equals_copy(self, store: RegistryStore, program: Program) -> None:
        """A delegated routine answers exactly what the base answers."""
        root = open_root("A", store=store, sink=program)
        root.define("helper", params("x"), prim("*", var("x"), 3), private=True)
        pair = TuplePattern(items=(Bind(name="a"), Bind(name="b")))
        root.define(
            "sum_pair",
            (pair, Bind(name="scale")),
            call("helper", prim("*", prim("+", var("a"), var("b")), var("scale"))),
        )
        root.finalize()
        open_extension("B", "A", store=store, sink=program).finalize()

        for args in [((1, 2), 1), ((0, 0), 5), ((-4, 2), 2)]:
            assert program.call("B", "sum_pair", *args) == program.call(
                "A", "sum_pair", *args
            )
        delegated = store["B"].routines[("sum_pair", 2)]
        assert delegated.params[0] == As(pattern=pair, name="arg_1")

    def test_guard_calling_private_helper(
        self, store: RegistryStore, program: Program
    ) -> None:
        """The forwarder leaves base-only guards to the base."""
        root = open_root("A", store=store, sink=program)
        root.define("ok", params("x"), prim(">", var("x"), 0), private=True)
        in_range = prim("<", var("x"), 100)
        root.define(
            "pos", params("x"), lit("yes"), guards=(call("ok", var("x")), in_range)
        )
        root.finalize()
        open_extension("B", "A", store=store, sink=program).finalize()

        assert program.call("A", "pos", 5) == "yes"
        assert program.call("B", "pos", 5) == "yes"
        with pytest.raises(GuardClauseError):
            program.call("B", "pos", -1)
        with pytest.raises(GuardClauseError):
            program.call("B", "pos", 100)
        assert store["B"].routines[("pos", 1)].guards == (in_range,)

    def test_guard_calling_withheld_routine(
        self, store: RegistryStore, program: Program
    ) -> None:
        root = open_root("A", store=store, sink=program)
        root.define("ok", params("x"), prim(">", var("x"), 0))
        root.withhold("ok", 1)
        root.define("pos", params("x"), lit("yes"), guards=(call("ok", var("x")),))
        root.finalize()
        open_extension("B", "A", store=store, sink=program).finalize()

        assert program.call("B", "pos", 5) == "yes"
        with pytest.raises(GuardClauseError):
            program.call("B", "pos", -1)


class TestOverridePermission:
    """Permission controls whether a descendant's declaration takes effect."""

    def test_locked_override_is_inert(
        self, store: RegistryStore, program: Program
    ) -> None:
        root = open_root("A", store=store, sink=program)
        root.define("g", (), lit("base"))
        root.finalize()

        child = open_extension("B", "A", store=store, sink=program)
        with pytest.warns(InertOverrideWarning, match="B.g/0") as record:
            assert child.define("g", (), lit("child")) == (Admission.INERT,)
        assert record[0].filename == __file__
        child.finalize()

        assert program.call("B", "g") == "base"
        assert [emission.key for emission in child.inert_declarations] == [("g", 0)]

    def test_locked_override_under_error_policy(
        self, store: RegistryStore, program: Program
    ) -> None:
        config = ResolutionConfig(inert_override=InertOverridePolicy.ERROR)
        root = open_root("A", store=store, sink=program, config=config)
        root.define("g", (), lit("base"))
        root.finalize()

        child = open_extension("B", "A", store=store, sink=program, config=config)
        with pytest.raises(InertOverrideError):
            child.define("g", (), lit("child"))

    def test_super_call(self, store: RegistryStore, program: Program) -> None:
        root = open_root("Level1", store=store, sink=program)
        root.define("f", params("x"), var("x"))
        root.grant("f", 1)
        root.finalize()

        child = open_extension("Level2", "Level1", store=store, sink=program)
        child.define("f", params("x"), prim("+", super_call(var("x")), 30))
        child.finalize()

        assert program.call("Level2", "f", 50) == 80
        assert "Level1" in store["Level2"].dependencies

    def test_transitive_chain(self, store: RegistryStore, program: Program) -> None:
        root = open_root("Level1", store=store, sink=program)
        root.define("f", params("x"), var("x"))
        root.grant("f", 1)
        root.finalize()

        for unit, base, step in [("Level2", "Level1", 30), ("Level3", "Level2", 20)]:
            compiler = open_extension(unit, base, store=store, sink=program)
            compiler.define("f", params("x"), prim("+", super_call(var("x")), step))
            compiler.grant("f", 1)
            compiler.finalize()

        assert program.call("Level1", "f", 50) == 50
        assert program.call("Level2", "f", 50) == 80
        assert program.call("Level3", "f", 50) == 100

    def test_base_call(self, store: RegistryStore, program: Program) -> None:
        root = open_root("A", store=store, sink=program)
        root.define("name", (), lit("a"))
        root.finalize()

        child = open_extension("B", "A", store=store, sink=program)
        child.define("both", (), prim("<>", base_call("name"), lit("b")))
        child.finalize()

        assert program.call("B", "both") == "ab"

    def test_permission_is_inherited(
        self, store: RegistryStore, program: Program
    ) -> None:
        """A grant stays in effect down the chain until a unit redeclares."""
        root = open_root("A", store=store, sink=program)
        root.define("f", (), lit("a"))
        root.grant("f", 0)
        root.finalize()
        open_extension("B", "A", store=store, sink=program).finalize()

        grandchild = open_extension("C", "B", store=store, sink=program)
        assert grandchild.define("f", (), lit("c")) == (Admission.REPLACE,)
        grandchild.finalize()

        assert program.call("B", "f") == "a"
        assert program.call("C", "f") == "c"
        assert not store["C"].routines[("f", 0)].override_permitted

    def test_grant_on_inherited_routine_unlocks_descendants(
        self, store: RegistryStore, program: Program
    ) -> None:
        root = open_root("A", store=store, sink=program)
        root.define("h", (), lit("a"))
        root.finalize()

        child = open_extension("B", "A", store=store, sink=program)
        child.grant("h", 0)
        with pytest.warns(InertOverrideWarning):
            child.define("h", (), lit("b"))
        child.finalize()

        grandchild = open_extension("C", "B", store=store, sink=program)
        grandchild.define("h", (), lit("c"))
        grandchild.finalize()

        assert program.call("B", "h") == "a"
        assert program.call("C", "h") == "c"

    def test_overridable_statement(self, store: RegistryStore, program: Program) -> None:
        root = open_root("A", store=store, sink=program)
        root.run(Define(name="f", body=lit("a"), overridable=True))
        root.finalize()
        assert store["A"].routines[("f", 0)].override_permitted

    def test_grant_unknown_routine(self, store: RegistryStore, program: Program) -> None:
        root = open_root("A", store=store, sink=program)
        with pytest.raises(UnknownRoutineError):
            root.grant("missing", 0)


class TestWithholding:
    """Withheld routines stop at the withholding unit."""

    def test_withheld_routine_is_not_inherited(
        self, store: RegistryStore, program: Program
    ) -> None:
        root = open_root("A", store=store, sink=program)
        root.define("secret", (), lit(42))
        root.withhold("secret", 0)
        root.define("uses_secret", (), call("secret"))
        root.finalize()
        open_extension("B", "A", store=store, sink=program).finalize()

        assert program.call("A", "secret") == 42
        assert program.call("B", "uses_secret") == 42
        with pytest.raises(WithheldAccessError, match="withheld"):
            program.call("B", "secret")
        assert ("secret", 0) in store["B"].withheld

    def test_descendant_may_define_withheld_key_locally(
        self, store: RegistryStore, program: Program
    ) -> None:
        root = open_root("A", store=store, sink=program)
        root.define("secret", (), lit("a"))
        root.withhold("secret", 0)
        root.finalize()
        open_extension("B", "A", store=store, sink=program).finalize()

        grandchild = open_extension("C", "B", store=store, sink=program)
        assert grandchild.define("secret", (), lit("c")) == (Admission.LOCAL,)
        grandchild.finalize()
        open_extension("D", "C", store=store, sink=program).finalize()

        assert program.call("C", "secret") == "c"
        with pytest.raises(WithheldAccessError):
            program.call("D", "secret")


class TestDeclarations:
    """Declaration forms and their validation."""

    def test_default_values_declare_one_routine_per_arity(
        self, store: RegistryStore, program: Program
    ) -> None:
        root = open_root("A", store=store, sink=program)
        admissions = root.define(
            "greet",
            (
                Bind(name="name"),
                Default(pattern=Bind(name="greeting"), value=lit("hello ")),
            ),
            prim("<>", var("greeting"), var("name")),
        )
        root.finalize()

        assert admissions == (Admission.RECORD, Admission.RECORD)
        assert program.call("A", "greet", "bob") == "hello bob"
        assert program.call("A", "greet", "bob", "hi ") == "hi bob"
        assert set(store["A"].routines) == {("greet", 1), ("greet", 2)}

    def test_guards_and_match_patterns(
        self, store: RegistryStore, program: Program
    ) -> None:
        root = open_root("A", store=store, sink=program)
        root.define(
            "positive", params("x"), lit(True), guards=(prim(">", var("x"), 0),)
        )
        root.define("zero", (Match(value=0),), lit("zero"))
        root.finalize()

        assert program.call("A", "positive", 5) is True
        with pytest.raises(GuardClauseError):
            program.call("A", "positive", -1)
        assert program.call("A", "zero", 0) == "zero"
        with pytest.raises(GuardClauseError):
            program.call("A", "zero", 1)
        with pytest.raises(GuardClauseError):
            program.call("A", "zero", False)

    def test_private_shadowing_public(
        self, store: RegistryStore, program: Program
    ) -> None:
        root = open_root("A", store=store, sink=program)
        root.define("f", (), lit(1))
        with pytest.raises(VisibilityConflictError):
            root.define("f", (), lit(2), private=True)
        root.define("g", (), lit(1), private=True)
        with pytest.raises(VisibilityConflictError):
            root.define("g", (), lit(2))

    def test_super_without_base(self, store: RegistryStore, program: Program) -> None:
        root = open_root("A", store=store, sink=program)
        with pytest.raises(SuperCallError, match="has no base"):
            root.define("f", params("x"), super_call(var("x")))

    def test_super_without_inherited_routine(
        self, store: RegistryStore, program: Program
    ) -> None:
        open_root("A", store=store, sink=program).finalize()
        child = open_extension("B", "A", store=store, sink=program)
        with pytest.raises(SuperCallError, match="passes on no f/1"):
            child.define("f", params("x"), super_call(var("x")))

    def test_declaration_after_finalize(
        self, store: RegistryStore, program: Program
    ) -> None:
        root = open_root("A", store=store, sink=program)
        root.finalize()
        with pytest.raises(FinalizedRegistryError):
            root.define("f", (), lit(1))


class TestHooks:
    """Hooks run in every extending unit."""

    def test_post_hook_runs_in_extension(
        self, store: RegistryStore, program: Program
    ) -> None:
        root = open_root("A", store=store, sink=program)
        root.set_hooks(
            post=Hook(statements=(Define(name="whoami", body=CurrentUnit()),))
        )
        root.finalize()
        open_extension("B", "A", store=store, sink=program).finalize()

        with warnings.catch_warnings():
            warnings.simplefilter("error")
            open_extension("C", "B", store=store, sink=program).finalize()

        assert ("whoami", 0) not in program.routines("A")
        assert program.call("B", "whoami") == "B"
        assert program.call("C", "whoami") == "C"

    def test_pre_hook_declaration_is_overridable_by_unit(
        self, store: RegistryStore, program: Program
    ) -> None:
        hook = Hook(
            statements=(Define(name="label", body=lit("default"), overridable=True),)
        )
        root = open_root("A", store=store, sink=program)
        root.set_hooks(pre=hook)
        root.finalize()

        child = open_extension("B", "A", store=store, sink=program)
        assert child.define("label", (), lit("custom")) == (Admission.REPLACE,)
        child.finalize()

        assert program.call("B", "label") == "custom"


class TestDependencies:
    """Imports and qualified calls make units depend on each other."""

    def test_imported_routine_is_qualified(
        self, store: RegistryStore, program: Program
    ) -> None:
        utils = open_root("Utils", store=store, sink=program)
        utils.define("shout", params("s"), prim("<>", var("s"), lit("!")))
        utils.finalize()

        root = open_root("A", store=store, sink=program)
        root.import_routines("Utils", [("shout", 1)])
        root.define("greet", params("name"), call("shout", var("name")))
        root.finalize()
        open_extension("B", "A", store=store, sink=program).finalize()

        assert program.call("A", "greet", "hi") == "hi!"
        assert program.call("B", "greet", "hi") == "hi!"
        assert "Utils" in store["A"].dependencies
        assert "Utils" in store["B"].dependencies

    def test_import_unknown_routine(self, store: RegistryStore, program: Program) -> None:
        open_root("Utils", store=store, sink=program).finalize()
        root = open_root("A", store=store, sink=program)
        with pytest.raises(UnknownRoutineError):
            root.import_routines("Utils", [("shout", 1)])

    def test_unresolved_base(self, store: RegistryStore, program: Program) -> None:
        with pytest.raises(UnresolvedBaseError):
            open_extension("B", "Missing", store=store, sink=program)
        assert "B" not in program

    def test_unresolved_dependency(
        self, store: RegistryStore, program: Program
    ) -> None:
        root = open_root("A", store=store, sink=program)
        root.define("f", (), remote("Nowhere", "g"))
        with pytest.raises(UnresolvedDependencyError, match="Nowhere"):
            root.finalize()
        assert "A" not in store

"""Tests for override permissions and precedence."""

import warnings

import pytest

from inherit.config import InertOverridePolicy, ResolutionConfig
from inherit.errors import InertOverrideError, InertOverrideWarning, UnknownRoutineError
from inherit.ledger import Admission, Ledger
from inherit.registry import DraftRegistry, Origin, RoutineRecord
from inherit.syntax import lit


def _draft() -> DraftRegistry:
    draft = DraftRegistry(unit="B", base="A")
    draft.record(
        ("open", 0),
        RoutineRecord(
            params=(),
            guards=(),
            body=lit("base"),
            origin=Origin.COPIED,
            override_permitted=True,
        ),
    )
    draft.record(
        ("locked", 0),
        RoutineRecord(params=(), guards=(), body=lit("base"), origin=Origin.COPIED),
    )
    draft.add_withheld(("secret", 0))
    return draft


class TestAdmit:
    """Tests for Ledger.admit."""

    def test_new_key_is_recorded(self) -> None:
        assert Ledger.for_registry(_draft()).admit(("fresh", 0)) is Admission.RECORD

    def test_permitted_inherited_key_is_replaced(self) -> None:
        assert Ledger.for_registry(_draft()).admit(("open", 0)) is Admission.REPLACE

    def test_withheld_key_is_local(self) -> None:
        assert Ledger.for_registry(_draft()).admit(("secret", 0)) is Admission.LOCAL

    def test_locked_key_warns(self) -> None:
        ledger = Ledger.for_registry(_draft())
        with pytest.warns(InertOverrideWarning, match="B.locked/0"):
            assert ledger.admit(("locked", 0)) is Admission.INERT

    def test_warning_points_at_caller(self) -> None:
        """The diagnostic names the frame that made the declaration."""
        ledger = Ledger.for_registry(_draft())
        with pytest.warns(InertOverrideWarning) as record:
            ledger.admit(("locked", 0))
        with pytest.warns(InertOverrideWarning) as declared:
            ledger.declare(("locked", 0), params=(), guards=(), body=lit(None))
        assert record[0].filename == __file__
        assert declared[0].filename == __file__

    def test_locked_key_errors_under_error_policy(self) -> None:
        config = ResolutionConfig(inert_override=InertOverridePolicy.ERROR)
        ledger = Ledger.for_registry(_draft(), config)
        with pytest.raises(InertOverrideError):
            ledger.admit(("locked", 0))

    def test_spliced_declaration_is_silent(self) -> None:
        """Hook declarations at locked keys are inert without a diagnostic."""
        config = ResolutionConfig(inert_override=InertOverridePolicy.ERROR)
        ledger = Ledger.for_registry(_draft(), config)
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            assert ledger.admit(("locked", 0), spliced=True) is Admission.INERT

    def test_own_routine_is_replaced(self) -> None:
        ledger = Ledger.for_registry(_draft())
        ledger.declare(("fresh", 0), params=(), guards=(), body=lit(1))
        assert ledger.admit(("fresh", 0)) is Admission.REPLACE


class TestGrantAndWithhold:
    """Tests for Ledger.grant and Ledger.withhold."""

    def test_grant_unknown_routine(self) -> None:
        with pytest.raises(UnknownRoutineError, match="no routine missing/0"):
            Ledger.for_registry(_draft()).grant("missing", 0)

    def test_grant_on_inherited_routine_does_not_unlock_it_locally(self) -> None:
        """The grant is recorded for descendants; admission uses the inherited snapshot."""
        draft = _draft()
        ledger = Ledger.for_registry(draft)
        ledger.grant("locked", 0)

        assert draft.routines[("locked", 0)].override_permitted
        assert draft.routines[("locked", 0)].origin is Origin.COPIED
        with pytest.warns(InertOverrideWarning):
            assert ledger.admit(("locked", 0)) is Admission.INERT

    def test_withhold_removes_routine(self) -> None:
        draft = _draft()
        Ledger.for_registry(draft).withhold("open", 0)
        assert ("open", 0) not in draft.routines
        assert ("open", 0) in draft.withheld

    def test_declare_records_native(self) -> None:
        draft = _draft()
        admission = Ledger.for_registry(draft).declare(
            ("open", 0), params=(), guards=(), body=lit("child")
        )
        assert admission is Admission.REPLACE
        assert draft.routines[("open", 0)].origin is Origin.NATIVE
        assert draft.routines[("open", 0)].body == lit("child")
        assert not draft.routines[("open", 0)].override_permitted

    def test_inert_declaration_is_not_recorded(self) -> None:
        draft = _draft()
        with pytest.warns(InertOverrideWarning):
            Ledger.for_registry(draft).declare(
                ("locked", 0), params=(), guards=(), body=lit("child")
            )
        assert draft.routines[("locked", 0)].body == lit("base")

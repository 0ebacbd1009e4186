"""
Tests for src/cases/machine.py - Case stage machine and case mutations.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from src.cases import machine
from src.cases.machine import (
    CaseValidationError,
    InvalidTransition,
    TerminalStateViolation,
)
from src.cases.models import ActionStatus, DocumentType, Priority, Program, Stage


T0 = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def draft():
    return machine.new_case("case-1", "client-1", "consultant-1", "expressEntry", now=T0)


def walk(case, *stages, start=T0):
    """Apply transitions one day apart."""
    for i, stage in enumerate(stages, 1):
        case = machine.transition(case, stage, "consultant-1", now=start + timedelta(days=i))
    return case


class TestNewCase:
    """Tests for new_case."""

    def test_starts_in_draft(self, draft):
        assert draft.current_stage == Stage.DRAFT
        assert draft.program == Program.EXPRESS_ENTRY
        assert draft.timeline == ()
        assert draft.fees.total_due == Decimal("0")
        assert [a.title for a in draft.next_steps] == ["Complete client profile"]

    def test_unknown_program(self):
        with pytest.raises(CaseValidationError, match="Unknown program"):
            machine.new_case("c", "client", "consultant", "lottery", now=T0)

    def test_empty_identifier(self):
        with pytest.raises(CaseValidationError, match="client_id"):
            machine.new_case("c", " ", "consultant", "pnp", now=T0)


class TestTransition:
    """Tests for transition."""

    def test_skip_stage_rejected(self, draft):
        with pytest.raises(InvalidTransition) as exc:
            machine.transition(draft, Stage.INVITED, "consultant-1", now=T0)
        assert exc.value.case is draft

    def test_unknown_stage_rejected(self, draft):
        with pytest.raises(InvalidTransition, match="Unknown stage"):
            machine.transition(draft, "withdrawn", "consultant-1", now=T0)

    def test_happy_path(self, draft):
        case = walk(draft, "submitted", "invited", "applied", "approved")
        assert case.current_stage == Stage.APPROVED
        assert case.is_terminal
        assert [e.stage for e in case.timeline] == [
            Stage.SUBMITTED, Stage.INVITED, Stage.APPLIED, Stage.APPROVED,
        ]

    def test_rejection_timeline(self, draft):
        case = walk(draft, "submitted", "invited", "rejected")

        assert [e.stage for e in case.timeline] == [Stage.SUBMITTED, Stage.INVITED, Stage.REJECTED]
        assert [e.from_stage for e in case.timeline] == [Stage.DRAFT, Stage.SUBMITTED, Stage.INVITED]
        dates = [e.date for e in case.timeline]
        assert dates == sorted(dates)
        assert case.next_steps == ()

    def test_terminal_stage_is_final(self, draft):
        rejected = walk(draft, "submitted", "rejected")
        with pytest.raises(TerminalStateViolation) as exc:
            machine.transition(rejected, Stage.INVITED, "consultant-1", now=T0 + timedelta(days=9))

        assert exc.value.case is rejected
        assert rejected.current_stage == Stage.REJECTED
        assert len(rejected.timeline) == 2

    def test_terminal_checked_before_target(self, draft):
        approved = walk(draft, "submitted", "invited", "applied", "approved")
        with pytest.raises(TerminalStateViolation):
            machine.transition(approved, Stage.DRAFT, "consultant-1")

    def test_input_case_unchanged(self, draft):
        machine.transition(draft, Stage.SUBMITTED, "consultant-1", now=T0)
        assert draft.current_stage == Stage.DRAFT
        assert draft.timeline == ()

    def test_invited_gets_default_action(self, draft):
        case = walk(draft, "submitted", "invited")
        invited_at = case.timeline[-1].date

        assert len(case.next_steps) == 1
        action = case.next_steps[0]
        assert action.title == "Submit application"
        assert action.due_date == invited_at + timedelta(days=60)
        assert action.priority == Priority.HIGH

    def test_explicit_next_steps(self, draft):
        case = machine.transition(
            draft, Stage.SUBMITTED, "consultant-1", now=T0,
            next_steps=[{"title": "Call client", "priority": "urgent"}],
        )
        assert [a.title for a in case.next_steps] == ["Call client"]
        assert case.next_steps[0].priority == Priority.URGENT

    def test_next_step_due_date_parsed(self, draft):
        case = machine.transition(
            draft, Stage.SUBMITTED, "consultant-1", now=T0,
            next_steps=[{"title": "Call client", "due_date": "2025-01-10T00:00:00+00:00"},
                        {"title": "Send invoice", "due_date": "2025-01-20T12:00:00"}],
        )

        assert case.next_steps[0].due_date == datetime(2025, 1, 10, tzinfo=timezone.utc)
        assert case.next_steps[1].due_date == datetime(2025, 1, 20, 12, tzinfo=timezone.utc)
        assert case.to_dict()["next_steps"][0]["due_date"] == "2025-01-10T00:00:00+00:00"
        overdue = machine.overdue_action_items(case, now=datetime(2025, 1, 15, tzinfo=timezone.utc))
        assert [a.title for a in overdue] == ["Call client"]

    @pytest.mark.parametrize("due_date", ["next tuesday", 20250110, ["2025-01-10"]])
    def test_bad_next_step_due_date(self, draft, due_date):
        with pytest.raises(CaseValidationError, match="due_date"):
            machine.transition(draft, Stage.SUBMITTED, "consultant-1", now=T0,
                               next_steps=[{"title": "Call client", "due_date": due_date}])

    def test_malformed_next_step(self, draft):
        with pytest.raises(CaseValidationError, match="Invalid action item"):
            machine.transition(draft, Stage.SUBMITTED, "consultant-1", now=T0, next_steps=[{}])

    def test_empty_actor(self, draft):
        with pytest.raises(CaseValidationError, match="actor"):
            machine.transition(draft, Stage.SUBMITTED, "", now=T0)

    def test_timestamps_never_go_backwards(self, draft):
        case = machine.transition(draft, Stage.SUBMITTED, "a", now=T0 + timedelta(days=5))
        case = machine.transition(case, Stage.INVITED, "a", now=T0)
        assert case.timeline[1].date == case.timeline[0].date

    def test_default_description(self, draft):
        case = machine.transition(draft, Stage.SUBMITTED, "consultant-1", now=T0)
        assert case.timeline[0].description == "Moved to submitted"
        assert case.timeline[0].actor == "consultant-1"


class TestCorrectStage:
    """Tests for correct_stage."""

    def test_steps_back(self, draft):
        case = walk(draft, "submitted", "invited")
        corrected = machine.correct_stage(case, "consultant-1", "Invitation entered on wrong case",
                                          now=T0 + timedelta(days=3))

        assert corrected.current_stage == Stage.SUBMITTED
        assert len(corrected.timeline) == 3
        assert corrected.timeline[-1].kind == "correction"
        assert corrected.timeline[-1].from_stage == Stage.INVITED

    def test_draft_cannot_be_corrected(self, draft):
        with pytest.raises(InvalidTransition):
            machine.correct_stage(draft, "consultant-1", "oops")

    def test_terminal_cannot_be_corrected(self, draft):
        rejected = walk(draft, "submitted", "rejected")
        with pytest.raises(TerminalStateViolation):
            machine.correct_stage(rejected, "consultant-1", "appeal")

    def test_consecutive_corrections_step_back(self, draft):
        case = walk(draft, "submitted", "invited", "applied")
        case = machine.correct_stage(case, "consultant-1", "Applied by mistake", now=T0 + timedelta(days=4))
        assert case.current_stage == Stage.INVITED

        case = machine.correct_stage(case, "consultant-1", "Invitation was for another profile",
                                     now=T0 + timedelta(days=5))
        assert case.current_stage == Stage.SUBMITTED
        assert [e.kind for e in case.timeline[-2:]] == ["correction", "correction"]

        case = machine.correct_stage(case, "consultant-1", "Not yet submitted", now=T0 + timedelta(days=6))
        assert case.current_stage == Stage.DRAFT

    def test_transition_after_correction(self, draft):
        case = walk(draft, "submitted", "invited")
        case = machine.correct_stage(case, "consultant-1", "Wrong case", now=T0 + timedelta(days=3))

        with pytest.raises(InvalidTransition):
            machine.transition(case, Stage.APPLIED, "consultant-1", now=T0 + timedelta(days=4))

        case = machine.transition(case, Stage.INVITED, "consultant-1", now=T0 + timedelta(days=4))
        case = machine.correct_stage(case, "consultant-1", "Wrong case again", now=T0 + timedelta(days=5))
        assert case.current_stage == Stage.SUBMITTED

    def test_reason_required(self, draft):
        case = walk(draft, "submitted")
        with pytest.raises(CaseValidationError, match="reason"):
            machine.correct_stage(case, "consultant-1", "")


class TestFees:
    """Tests for add_fee and add_payment."""

    def test_payment_reduces_due(self, draft):
        case = machine.add_fee(draft, "consultant", 1200)
        assert case.fees.total_due == Decimal("1200")

        paid = machine.add_payment(case, 500, method="card", now=T0)
        assert paid.fees.total_due == Decimal("700")
        assert paid.fees.total_paid == case.fees.total_paid + Decimal("500")

    def test_due_never_negative(self, draft):
        case = machine.add_fee(draft, "government", "850", "Processing fee")
        case = machine.add_payment(case, 1000, now=T0)
        assert case.fees.total_due == Decimal("0")
        assert case.fees.total_paid == Decimal("1000")

    def test_fee_categories(self, draft):
        case = machine.add_fee(draft, "government", 850, "Processing fee")
        case = machine.add_fee(case, "government", 515, "Right of permanent residence fee")
        case = machine.add_fee(case, "optional_service", "150.50", "Translation")
        case = machine.add_fee(case, "consultant", 1000)
        case = machine.add_fee(case, "consultant", 1200)

        assert case.fees.consultant_base_fee == Decimal("1200")
        assert len(case.fees.government_fees) == 2
        assert case.fees.total_fees == Decimal("2715.50")

    @pytest.mark.parametrize("amount", [-1, "abc", "NaN", None])
    def test_invalid_amount(self, draft, amount):
        with pytest.raises(CaseValidationError):
            machine.add_payment(draft, amount)

    def test_unknown_category(self, draft):
        with pytest.raises(CaseValidationError, match="fee category"):
            machine.add_fee(draft, "bribe", 10)

    def test_fees_allowed_on_terminal_case(self, draft):
        rejected = walk(draft, "submitted", "rejected")
        case = machine.add_payment(machine.add_fee(rejected, "consultant", 300), 300, now=T0)
        assert case.fees.total_due == Decimal("0")


class TestDocumentsAndNotes:
    """Tests for add_document and add_note."""

    def test_add_document(self, draft):
        case = machine.add_document(draft, "passport", "docs/passport.pdf", "client-1", now=T0)
        assert case.present_documents == frozenset({DocumentType.PASSPORT})

    def test_unknown_document_type(self, draft):
        with pytest.raises(CaseValidationError, match="document type"):
            machine.add_document(draft, "libraryCard", "x", "client-1")

    def test_add_note(self, draft):
        case = machine.add_note(draft, "consultant-1", "Client prefers email", is_private=True, now=T0)
        assert case.notes[0].is_private is True
        assert case.timeline == ()

    def test_empty_note(self, draft):
        with pytest.raises(CaseValidationError, match="content"):
            machine.add_note(draft, "consultant-1", "   ")


class TestActionItems:
    """Tests for action item status and queries."""

    def test_complete_action(self, draft):
        case = machine.set_action_status(draft, 0, "completed")
        assert case.next_steps[0].status == ActionStatus.COMPLETED
        assert machine.open_action_items(case) == []

    def test_final_status_cannot_change(self, draft):
        case = machine.set_action_status(draft, 0, ActionStatus.CANCELLED)
        with pytest.raises(CaseValidationError, match="already cancelled"):
            machine.set_action_status(case, 0, ActionStatus.IN_PROGRESS)

    def test_bad_index(self, draft):
        with pytest.raises(CaseValidationError, match="index 3"):
            machine.set_action_status(draft, 3, "completed")

    def test_overdue(self, draft):
        # draft action is due 14 days after creation
        assert machine.overdue_action_items(draft, now=T0 + timedelta(days=13)) == []
        assert len(machine.overdue_action_items(draft, now=T0 + timedelta(days=15))) == 1

        done = machine.set_action_status(draft, 0, "completed")
        assert machine.overdue_action_items(done, now=T0 + timedelta(days=15)) == []


class TestProgress:
    """Tests for stage_progress and allowed_targets."""

    def test_progress(self, draft):
        assert machine.stage_progress(draft) == 0
        assert machine.stage_progress(walk(draft, "submitted")) == 25
        assert machine.stage_progress(walk(draft, "submitted", "invited")) == 50
        assert machine.stage_progress(walk(draft, "submitted", "invited", "applied")) == 75
        assert machine.stage_progress(walk(draft, "submitted", "rejected")) == 100

    def test_allowed_targets(self):
        assert machine.allowed_targets(Stage.SUBMITTED) == [Stage.INVITED, Stage.REJECTED]
        assert machine.allowed_targets(Stage.APPROVED) == []

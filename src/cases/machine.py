"""
Case stage machine.

Pure functions over immutable Case snapshots. Every accepted mutation returns
a new Case; rejected mutations raise a CaseError carrying the unchanged case.
Stage changes happen only through ``transition`` and ``correct_stage``, each
appending exactly one timeline event.

Allowed transitions:
    draft     -> submitted
    submitted -> invited | rejected
    invited   -> applied | rejected
    applied   -> approved | rejected
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Union

from dateutil import parser as date_parser

from .models import (
    FINAL_ACTION_STATUSES,
    HAPPY_PATH,
    TERMINAL_STAGES,
    ActionItem,
    ActionStatus,
    Case,
    CaseDocument,
    DocumentType,
    FeeCategory,
    FeeItem,
    Note,
    Payment,
    Priority,
    Program,
    Stage,
    TimelineEvent,
)
from .policy import CasePolicy

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS = {
    Stage.DRAFT: frozenset({Stage.SUBMITTED}),
    Stage.SUBMITTED: frozenset({Stage.INVITED, Stage.REJECTED}),
    Stage.INVITED: frozenset({Stage.APPLIED, Stage.REJECTED}),
    Stage.APPLIED: frozenset({Stage.APPROVED, Stage.REJECTED}),
    Stage.APPROVED: frozenset(),
    Stage.REJECTED: frozenset(),
}


class CaseError(Exception):
    """Base class for rejected case mutations; carries the current case."""

    def __init__(self, message: str, case: Optional[Case] = None):
        super().__init__(message)
        self.case = case


class InvalidTransition(CaseError):
    """Raised when the target stage is not reachable from the current stage."""
    pass


class TerminalStateViolation(CaseError):
    """Raised when a stage change is attempted on an approved or rejected case."""
    pass


class CaseValidationError(CaseError):
    """Raised when a fee, payment, document, note or action update is malformed."""
    pass


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def allowed_targets(stage: Stage) -> List[Stage]:
    return sorted(ALLOWED_TRANSITIONS[stage], key=lambda s: list(Stage).index(s))


def _event_time(case: Case, now: Optional[datetime]) -> datetime:
    """Event timestamps never go backwards even if the clock does."""
    now = now or utc_now()
    if case.timeline and now < case.timeline[-1].date:
        return case.timeline[-1].date
    return now


def _coerce_stage(case: Case, target: Union[Stage, str]) -> Stage:
    try:
        return Stage(target)
    except ValueError:
        raise InvalidTransition(f"Unknown stage: {target!r}", case)


def _coerce_action(item: Union[ActionItem, Dict[str, Any]], case: Case) -> ActionItem:
    if isinstance(item, ActionItem):
        return item
    try:
        return ActionItem(
            title=item["title"],
            description=item.get("description", ""),
            due_date=_parse_due_date(item.get("due_date"), case),
            assigned_to=item.get("assigned_to"),
            status=ActionStatus(item.get("status", ActionStatus.PENDING.value)),
            priority=Priority(item.get("priority", Priority.MEDIUM.value)),
        )
    except (KeyError, ValueError) as e:
        raise CaseValidationError(f"Invalid action item: {e}", case)


def _parse_due_date(value: Any, case: Case) -> Optional[datetime]:
    """Accept a datetime or an ISO 8601 string; naive values are taken as UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = date_parser.isoparse(value)
        except ValueError:
            raise CaseValidationError(f"Invalid due_date: {value!r}", case)
    if not isinstance(value, datetime):
        raise CaseValidationError(f"due_date must be a datetime, got {value!r}", case)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _require_text(value: Optional[str], name: str, case: Case) -> str:
    if value is None or not str(value).strip():
        raise CaseValidationError(f"{name} must not be empty", case)
    return str(value).strip()


def _parse_amount(value: Any, case: Case) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise CaseValidationError(f"Invalid amount: {value!r}", case)
    if not amount.is_finite() or amount < 0:
        raise CaseValidationError(f"Amount must be a non-negative number, got {value!r}", case)
    return amount


def new_case(
    case_id: str,
    client_id: str,
    consultant_id: str,
    program: Any,
    now: Optional[datetime] = None,
    policy: Optional[CasePolicy] = None,
) -> Case:
    """
    Create a case in the draft stage.

    The timeline starts empty; draft action items come from the policy.

    Raises:
        CaseValidationError: If an identifier is empty or the program is unknown
    """
    now = now or utc_now()
    policy = policy or CasePolicy.default()
    try:
        program = Program(program)
    except ValueError:
        raise CaseValidationError(f"Unknown program: {program!r}")
    for name, value in (("case_id", case_id), ("client_id", client_id), ("consultant_id", consultant_id)):
        if not value or not str(value).strip():
            raise CaseValidationError(f"{name} must not be empty")

    return Case(
        case_id=case_id,
        client_id=client_id,
        consultant_id=consultant_id,
        program=program,
        created_at=now,
        updated_at=now,
        next_steps=policy.actions_for(Stage.DRAFT, now),
    )


def transition(
    case: Case,
    target_stage: Union[Stage, str],
    actor: str,
    description: str = "",
    next_steps: Optional[Iterable[Union[ActionItem, Dict[str, Any]]]] = None,
    now: Optional[datetime] = None,
    policy: Optional[CasePolicy] = None,
) -> Case:
    """
    Move a case to a new stage.

    Args:
        case: Current case
        target_stage: Stage to move to
        actor: Who performed the transition
        description: Timeline description (default: "Moved to <stage>")
        next_steps: Action items replacing the current ones (default: policy items for the stage)
        now: Transition time (default: current UTC time)
        policy: Case policy for default action items

    Returns:
        New Case with one more timeline event

    Raises:
        TerminalStateViolation: If the case is approved or rejected
        InvalidTransition: If the target is not allowed from the current stage
        CaseValidationError: If actor is empty or an action item is malformed
    """
    target = _coerce_stage(case, target_stage)
    current = case.current_stage

    if current in TERMINAL_STAGES:
        raise TerminalStateViolation(
            f"Case {case.case_id} is {current.value}; no further transitions allowed", case
        )
    if target not in ALLOWED_TRANSITIONS[current]:
        allowed = ", ".join(s.value for s in allowed_targets(current))
        raise InvalidTransition(
            f"Cannot move case {case.case_id} from {current.value} to {target.value} "
            f"(allowed: {allowed})", case
        )
    actor = _require_text(actor, "actor", case)

    at = _event_time(case, now)
    policy = policy or CasePolicy.default()
    if next_steps is None:
        steps = policy.actions_for(target, at)
    else:
        steps = tuple(_coerce_action(item, case) for item in next_steps)

    event = TimelineEvent(
        date=at,
        stage=target,
        description=description or f"Moved to {target.value}",
        actor=actor,
        kind="transition",
        from_stage=current,
    )
    return replace(
        case,
        current_stage=target,
        timeline=case.timeline + (event,),
        next_steps=steps,
        updated_at=at,
    )


def correct_stage(
    case: Case,
    actor: str,
    reason: str,
    now: Optional[datetime] = None,
    policy: Optional[CasePolicy] = None,
) -> Case:
    """
    Step a case back to the stage it was in before its current one.

    For recording mistakes (e.g. a transition entered on the wrong case).
    Terminal outcomes are never corrected.

    Raises:
        TerminalStateViolation: If the case is approved or rejected
        InvalidTransition: If the case is still in draft
        CaseValidationError: If actor or reason is empty
    """
    current = case.current_stage
    if current in TERMINAL_STAGES:
        raise TerminalStateViolation(f"Case {case.case_id} is {current.value}; cannot correct", case)
    if current == Stage.DRAFT:
        raise InvalidTransition(f"Case {case.case_id} is in draft; nothing to correct", case)
    actor = _require_text(actor, "actor", case)
    reason = _require_text(reason, "reason", case)

    previous = _previous_stage(case)
    at = _event_time(case, now)
    policy = policy or CasePolicy.default()

    event = TimelineEvent(
        date=at,
        stage=previous,
        description=reason,
        actor=actor,
        kind="correction",
        from_stage=current,
    )
    logger.info(f"Case {case.case_id}: corrected {current.value} -> {previous.value}")
    return replace(
        case,
        current_stage=previous,
        timeline=case.timeline + (event,),
        next_steps=policy.actions_for(previous, at),
        updated_at=at,
    )


def _previous_stage(case: Case) -> Stage:
    """Stage the case was in when its current stage was last entered forward."""
    for event in reversed(case.timeline):
        if event.kind == "correction":
            continue
        if event.stage == case.current_stage and event.from_stage is not None:
            return event.from_stage
    return HAPPY_PATH[HAPPY_PATH.index(case.current_stage) - 1]


def add_fee(
    case: Case,
    category: Union[FeeCategory, str],
    amount: Any,
    description: str = "",
) -> Case:
    """
    Record a fee. A consultant fee replaces the base fee; government and
    optional service fees are itemized.

    Raises:
        CaseValidationError: If the category is unknown or the amount is negative
    """
    try:
        category = FeeCategory(category)
    except ValueError:
        raise CaseValidationError(f"Unknown fee category: {category!r}", case)
    value = _parse_amount(amount, case)

    fees = case.fees
    if category == FeeCategory.CONSULTANT:
        fees = replace(fees, consultant_base_fee=value)
    else:
        item = FeeItem(category=category, description=description or category.value, amount=value)
        if category == FeeCategory.GOVERNMENT:
            fees = replace(fees, government_fees=fees.government_fees + (item,))
        else:
            fees = replace(fees, optional_services=fees.optional_services + (item,))
    return replace(case, fees=fees)


def add_payment(
    case: Case,
    amount: Any,
    method: str = "",
    reference: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Case:
    """
    Record a payment; total_due drops by the amount and never below zero.

    Raises:
        CaseValidationError: If the amount is negative or not a number
    """
    value = _parse_amount(amount, case)
    payment = Payment(amount=value, date=now or utc_now(), method=method, reference=reference)
    return replace(case, fees=replace(case.fees, payments=case.fees.payments + (payment,)))


def add_document(
    case: Case,
    document_type: Union[DocumentType, str],
    reference: str,
    added_by: str,
    now: Optional[datetime] = None,
) -> Case:
    try:
        doc_type = DocumentType(document_type)
    except ValueError:
        raise CaseValidationError(f"Unknown document type: {document_type!r}", case)
    document = CaseDocument(
        document_type=doc_type,
        reference=_require_text(reference, "reference", case),
        added_at=now or utc_now(),
        added_by=_require_text(added_by, "added_by", case),
    )
    return replace(case, documents=case.documents + (document,))


def add_note(
    case: Case,
    author: str,
    content: str,
    is_private: bool = False,
    now: Optional[datetime] = None,
) -> Case:
    note = Note(
        date=now or utc_now(),
        author=_require_text(author, "author", case),
        content=_require_text(content, "content", case),
        is_private=bool(is_private),
    )
    return replace(case, notes=case.notes + (note,))


def set_action_status(case: Case, index: int, status: Union[ActionStatus, str]) -> Case:
    """
    Update one action item's status. Completed and cancelled items are final.

    Raises:
        CaseValidationError: If the index or status is invalid, or the item is final
    """
    try:
        status = ActionStatus(status)
    except ValueError:
        raise CaseValidationError(f"Unknown action status: {status!r}", case)
    if not 0 <= index < len(case.next_steps):
        raise CaseValidationError(f"No action item at index {index}", case)

    item = case.next_steps[index]
    if item.status in FINAL_ACTION_STATUSES:
        raise CaseValidationError(f"Action '{item.title}' is already {item.status.value}", case)

    steps = list(case.next_steps)
    steps[index] = replace(item, status=status)
    return replace(case, next_steps=tuple(steps))


def stage_progress(case: Case) -> int:
    """Percent along draft -> approved; a rejected case reports 100 (closed)."""
    if case.current_stage in TERMINAL_STAGES:
        return 100
    return round(100 * HAPPY_PATH.index(case.current_stage) / (len(HAPPY_PATH) - 1))


def open_action_items(case: Case) -> List[ActionItem]:
    return [item for item in case.next_steps if item.is_open]


def overdue_action_items(case: Case, now: Optional[datetime] = None) -> List[ActionItem]:
    now = now or utc_now()
    return [
        item for item in open_action_items(case)
        if item.due_date is not None and item.due_date < now
    ]

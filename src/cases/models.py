"""
Case data models.

A Case is an immutable snapshot; every mutation in ``machine`` returns a new
Case. Money is held as Decimal so fee totals never drift.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple


class Stage(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    INVITED = "invited"
    APPLIED = "applied"
    APPROVED = "approved"
    REJECTED = "rejected"


TERMINAL_STAGES = frozenset({Stage.APPROVED, Stage.REJECTED})

# Stages a case passes through when nothing goes wrong
HAPPY_PATH = (Stage.DRAFT, Stage.SUBMITTED, Stage.INVITED, Stage.APPLIED, Stage.APPROVED)


class Program(str, Enum):
    EXPRESS_ENTRY = "expressEntry"
    PNP = "pnp"
    FAMILY_SPONSORSHIP = "familySponsorship"
    BUSINESS_IMMIGRATION = "businessImmigration"
    TEMPORARY_RESIDENCE = "temporaryResidence"
    REFUGEE = "refugee"


class DocumentType(str, Enum):
    PASSPORT = "passport"
    EDUCATION_CREDENTIAL = "educationCredential"
    LANGUAGE_TEST = "languageTest"
    EMPLOYMENT_REFERENCE = "employmentReference"
    POLICE_CHECK = "policeCheck"
    MEDICAL_EXAM = "medicalExam"
    BIRTH_CERTIFICATE = "birthCertificate"
    MARRIAGE_CERTIFICATE = "marriageCertificate"
    PROOF_OF_FUNDS = "proofOfFunds"
    PHOTO_ID = "photoID"


class ActionStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "inProgress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


FINAL_ACTION_STATUSES = frozenset({ActionStatus.COMPLETED, ActionStatus.CANCELLED})


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class FeeCategory(str, Enum):
    GOVERNMENT = "government"
    CONSULTANT = "consultant"
    OPTIONAL_SERVICE = "optional_service"


@dataclass(frozen=True)
class TimelineEvent:
    date: datetime
    stage: Stage
    description: str
    actor: str
    kind: str = "transition"
    from_stage: Optional[Stage] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "stage": self.stage.value,
            "from_stage": self.from_stage.value if self.from_stage else None,
            "description": self.description,
            "actor": self.actor,
            "kind": self.kind,
        }


@dataclass(frozen=True)
class Note:
    date: datetime
    author: str
    content: str
    is_private: bool = False


@dataclass(frozen=True)
class CaseDocument:
    document_type: DocumentType
    reference: str
    added_at: datetime
    added_by: str


@dataclass(frozen=True)
class FeeItem:
    category: FeeCategory
    description: str
    amount: Decimal


@dataclass(frozen=True)
class Payment:
    amount: Decimal
    date: datetime
    method: str = ""
    reference: Optional[str] = None


@dataclass(frozen=True)
class Fees:
    government_fees: Tuple[FeeItem, ...] = ()
    consultant_base_fee: Decimal = Decimal("0")
    optional_services: Tuple[FeeItem, ...] = ()
    payments: Tuple[Payment, ...] = ()

    @property
    def total_fees(self) -> Decimal:
        return (
            sum((f.amount for f in self.government_fees), Decimal("0"))
            + self.consultant_base_fee
            + sum((f.amount for f in self.optional_services), Decimal("0"))
        )

    @property
    def total_paid(self) -> Decimal:
        return sum((p.amount for p in self.payments), Decimal("0"))

    @property
    def total_due(self) -> Decimal:
        """Outstanding balance, never negative."""
        return max(Decimal("0"), self.total_fees - self.total_paid)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "government_fees": [
                {"description": f.description, "amount": str(f.amount)} for f in self.government_fees
            ],
            "consultant_base_fee": str(self.consultant_base_fee),
            "optional_services": [
                {"description": f.description, "amount": str(f.amount)} for f in self.optional_services
            ],
            "payments": [
                {"amount": str(p.amount), "date": p.date.isoformat(), "method": p.method,
                 "reference": p.reference}
                for p in self.payments
            ],
            "total_paid": str(self.total_paid),
            "total_due": str(self.total_due),
        }


@dataclass(frozen=True)
class ActionItem:
    title: str
    description: str = ""
    due_date: Optional[datetime] = None
    assigned_to: Optional[str] = None
    status: ActionStatus = ActionStatus.PENDING
    priority: Priority = Priority.MEDIUM

    @property
    def is_open(self) -> bool:
        return self.status not in FINAL_ACTION_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "assigned_to": self.assigned_to,
            "status": self.status.value,
            "priority": self.priority.value,
        }


@dataclass(frozen=True)
class Case:
    case_id: str
    client_id: str
    consultant_id: str
    program: Program
    created_at: datetime
    current_stage: Stage = Stage.DRAFT
    version: int = 0
    updated_at: Optional[datetime] = None
    timeline: Tuple[TimelineEvent, ...] = ()
    documents: Tuple[CaseDocument, ...] = ()
    notes: Tuple[Note, ...] = ()
    fees: Fees = field(default_factory=Fees)
    next_steps: Tuple[ActionItem, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.current_stage in TERMINAL_STAGES

    @property
    def present_documents(self) -> FrozenSet[DocumentType]:
        return frozenset(d.document_type for d in self.documents)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "case_id": self.case_id,
            "client_id": self.client_id,
            "consultant_id": self.consultant_id,
            "program": self.program.value,
            "current_stage": self.current_stage.value,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "timeline": [e.to_dict() for e in self.timeline],
            "documents": [
                {"document_type": d.document_type.value, "reference": d.reference,
                 "added_at": d.added_at.isoformat(), "added_by": d.added_by}
                for d in self.documents
            ],
            "notes": [
                {"date": n.date.isoformat(), "author": n.author, "content": n.content,
                 "is_private": n.is_private}
                for n in self.notes
            ],
            "fees": self.fees.to_dict(),
            "next_steps": [a.to_dict() for a in self.next_steps],
        }

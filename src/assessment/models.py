"""
Assessment data models: normalized applicant profile, score breakdown,
and eligibility verdict.

All models are frozen so a normalized profile or a published result can be
shared between threads without copying.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple


SKILLS = ("listening", "reading", "writing", "speaking")


class EducationLevel(str, Enum):
    HIGH_SCHOOL = "highSchool"
    ONE_YEAR_DIPLOMA = "oneYearDiploma"
    TWO_YEAR_DIPLOMA = "twoYearDiploma"
    BACHELORS = "bachelors"
    TWO_OR_MORE_DEGREES = "twoOrMoreDegrees"
    MASTERS = "masters"
    PHD = "phd"

    @property
    def rank(self) -> int:
        return EDUCATION_ORDER.index(self)


EDUCATION_ORDER = [
    EducationLevel.HIGH_SCHOOL,
    EducationLevel.ONE_YEAR_DIPLOMA,
    EducationLevel.TWO_YEAR_DIPLOMA,
    EducationLevel.BACHELORS,
    EducationLevel.TWO_OR_MORE_DEGREES,
    EducationLevel.MASTERS,
    EducationLevel.PHD,
]


class MaritalStatus(str, Enum):
    SINGLE = "single"
    MARRIED = "married"
    COMMON_LAW = "commonLaw"
    DIVORCED = "divorced"
    SEPARATED = "separated"
    WIDOWED = "widowed"


PARTNERED_STATUSES = {MaritalStatus.MARRIED, MaritalStatus.COMMON_LAW}


class Language(str, Enum):
    ENGLISH = "english"
    FRENCH = "french"


class LanguageTest(str, Enum):
    IELTS = "IELTS"
    CELPIP = "CELPIP"
    TEF = "TEF"
    TCF = "TCF"


class CredentialStatus(str, Enum):
    DOMESTIC = "domestic"
    VERIFIED = "verified"
    UNVERIFIED = "unverified"


@dataclass(frozen=True)
class LanguageProficiency:
    language: Language
    test: LanguageTest
    clb: Tuple[Tuple[str, Optional[int]], ...]
    is_first_official: bool = False

    def clb_for(self, skill: str) -> Optional[int]:
        return dict(self.clb).get(skill)

    @property
    def min_clb(self) -> Optional[int]:
        """Lowest CLB across the four skills, or None if any skill is unknown."""
        levels = [level for _, level in self.clb]
        if len(levels) < len(SKILLS) or any(level is None for level in levels):
            return None
        return min(levels)


@dataclass(frozen=True)
class Education:
    level: EducationLevel
    field_of_study: Optional[str] = None
    country: Optional[str] = None
    is_domestic: bool = False
    has_equivalency_assessment: bool = False

    @property
    def status(self) -> CredentialStatus:
        if self.is_domestic:
            return CredentialStatus.DOMESTIC
        if self.has_equivalency_assessment:
            return CredentialStatus.VERIFIED
        return CredentialStatus.UNVERIFIED

    @property
    def is_verified(self) -> bool:
        return self.status != CredentialStatus.UNVERIFIED


FULL_TIME_HOURS = 30
PART_TIME_HOURS = 15


@dataclass(frozen=True)
class WorkExperience:
    occupation_code: Optional[str]
    country: Optional[str]
    is_domestic: bool
    duration_months: int
    hours_per_week: Optional[float] = None
    employer: Optional[str] = None
    teer: Optional[int] = None

    @property
    def is_skilled(self) -> Optional[bool]:
        """TEER 0-3 counts as skilled; None when the TEER is unknown."""
        if self.teer is None:
            return None
        return self.teer <= 3

    @property
    def full_time_months(self) -> float:
        """Full-time equivalent months (30 h/week full, 15 h/week half)."""
        hours = FULL_TIME_HOURS if self.hours_per_week is None else self.hours_per_week
        if hours >= FULL_TIME_HOURS:
            return float(self.duration_months)
        if hours >= PART_TIME_HOURS:
            return self.duration_months / 2
        return 0.0


@dataclass(frozen=True)
class SpouseProfile:
    education_level: Optional[EducationLevel] = None
    clb: Tuple[Tuple[str, Optional[int]], ...] = ()
    domestic_work_months: int = 0

    def clb_for(self, skill: str) -> Optional[int]:
        return dict(self.clb).get(skill)


@dataclass(frozen=True)
class NormalizedProfile:
    """Canonical applicant snapshot consumed by scoring and eligibility.

    ``None`` on an optional field means the applicant has not answered;
    scoring treats it as zero points and gates treat it as indeterminate.
    """
    age: Optional[int] = None
    marital_status: Optional[MaritalStatus] = None
    has_accompanying_spouse: bool = False
    languages: Tuple[LanguageProficiency, ...] = ()
    education: Tuple[Education, ...] = ()
    work_experience: Tuple[WorkExperience, ...] = ()
    has_job_offer: Optional[bool] = None
    job_offer_teer: Optional[int] = None
    has_provincial_nomination: Optional[bool] = None
    has_sibling_in_country: Optional[bool] = None
    settlement_funds: Optional[float] = None
    family_size: int = 1
    documents: Optional[FrozenSet[str]] = None
    spouse: Optional[SpouseProfile] = None
    target_country: str = "Canada"

    @property
    def first_language(self) -> Optional[LanguageProficiency]:
        for lang in self.languages:
            if lang.is_first_official:
                return lang
        return None

    @property
    def second_language(self) -> Optional[LanguageProficiency]:
        first = self.first_language
        if first is None:
            return None
        for lang in self.languages:
            if lang.language != first.language:
                return lang
        return None

    def language(self, language: Language) -> Optional[LanguageProficiency]:
        for lang in self.languages:
            if lang.language == language:
                return lang
        return None

    def highest_education(self, verified_only: bool = False) -> Optional[Education]:
        candidates = [e for e in self.education if e.is_verified or not verified_only]
        if not candidates:
            return None
        return max(candidates, key=lambda e: e.level.rank)


@dataclass(frozen=True)
class CriterionScore:
    criterion_id: str
    points_awarded: int
    max_points: int
    raw_points: Optional[int] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "criterion_id": self.criterion_id,
            "points_awarded": self.points_awarded,
            "max_points": self.max_points,
        }


@dataclass(frozen=True)
class ScoreBreakdown:
    program: str
    criteria: Tuple[CriterionScore, ...]
    total_score: int
    catalog_version: str = ""

    def points_for(self, criterion_id: str) -> Optional[int]:
        for item in self.criteria:
            if item.criterion_id == criterion_id:
                return item.points_awarded
        return None

    def to_dict(self) -> Dict[str, object]:
        return {
            "program": self.program,
            "catalog_version": self.catalog_version,
            "total_score": self.total_score,
            "criteria": [c.to_dict() for c in self.criteria],
        }


class GateStatus(str, Enum):
    SATISFIED = "satisfied"
    FAILED = "failed"
    INDETERMINATE = "indeterminate"


class Verdict(str, Enum):
    ELIGIBLE = "eligible"
    INELIGIBLE = "ineligible"
    CONDITIONAL = "conditional"


@dataclass(frozen=True)
class GateResult:
    gate_id: str
    description: str
    status: GateStatus
    is_hard: bool
    reason: str = ""

    def to_dict(self) -> Dict[str, object]:
        return {
            "gate_id": self.gate_id,
            "description": self.description,
            "status": self.status.value,
            "is_hard": self.is_hard,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class EligibilityVerdict:
    program: str
    verdict: Verdict
    gates: Tuple[GateResult, ...] = field(default_factory=tuple)

    def _select(self, status: GateStatus, hard: Optional[bool] = True) -> List[GateResult]:
        return [
            g for g in self.gates
            if g.status == status and (hard is None or g.is_hard == hard)
        ]

    @property
    def failed_gates(self) -> List[GateResult]:
        return self._select(GateStatus.FAILED)

    @property
    def indeterminate_gates(self) -> List[GateResult]:
        return self._select(GateStatus.INDETERMINATE)

    @property
    def satisfied_gates(self) -> List[GateResult]:
        return self._select(GateStatus.SATISFIED, hard=None)

    @property
    def informational_gates(self) -> List[GateResult]:
        return [g for g in self.gates if not g.is_hard]

    @property
    def reasons(self) -> List[str]:
        """Human-readable reasons for every hard gate that is not satisfied."""
        return [f"{g.gate_id}: {g.reason}" for g in self.failed_gates + self.indeterminate_gates]

    def to_dict(self) -> Dict[str, object]:
        return {
            "program": self.program,
            "verdict": self.verdict.value,
            "failed": [g.gate_id for g in self.failed_gates],
            "indeterminate": [g.gate_id for g in self.indeterminate_gates],
            "satisfied": [g.gate_id for g in self.satisfied_gates],
            "gates": [g.to_dict() for g in self.gates],
        }

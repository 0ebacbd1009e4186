"""
Combined assessment: normalize a raw profile, score it, evaluate eligibility
and compare the result with the program's pass mark and latest draw cutoff.
"""

import logging
from concurrent.futures import Executor
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from .catalog import RuleCatalogEntry
from .eligibility import evaluate
from .models import (
    PARTNERED_STATUSES,
    EligibilityVerdict,
    NormalizedProfile,
    ScoreBreakdown,
    Verdict,
)
from .normalizer import normalize
from .scorer import score

logger = logging.getLogger(__name__)


MARRIAGE_CERTIFICATE = "marriageCertificate"


@dataclass(frozen=True)
class ChecklistItem:
    document_type: str
    is_present: Optional[bool]


@dataclass(frozen=True)
class AssessmentResult:
    profile: NormalizedProfile
    breakdown: ScoreBreakdown
    eligibility: EligibilityVerdict
    pass_mark: Optional[int] = None
    recent_cutoff: Optional[int] = None
    checklist: Tuple[ChecklistItem, ...] = ()

    @property
    def total_score(self) -> int:
        return self.breakdown.total_score

    @property
    def verdict(self) -> Verdict:
        return self.eligibility.verdict

    @property
    def meets_pass_mark(self) -> Optional[bool]:
        if self.pass_mark is None:
            return None
        return self.total_score >= self.pass_mark

    @property
    def draw_gap(self) -> Optional[int]:
        """Points still needed to reach the latest draw cutoff (negative when above it)."""
        if self.recent_cutoff is None:
            return None
        return self.recent_cutoff - self.total_score

    @property
    def missing_documents(self) -> List[str]:
        return [item.document_type for item in self.checklist if item.is_present is not True]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "program": self.breakdown.program,
            "catalog_version": self.breakdown.catalog_version,
            "total_score": self.total_score,
            "verdict": self.verdict.value,
            "pass_mark": self.pass_mark,
            "meets_pass_mark": self.meets_pass_mark,
            "recent_cutoff": self.recent_cutoff,
            "draw_gap": self.draw_gap,
            "breakdown": self.breakdown.to_dict()["criteria"],
            "eligibility": self.eligibility.to_dict(),
            "reasons": self.eligibility.reasons,
            "checklist": [
                {"document_type": i.document_type, "is_present": i.is_present}
                for i in self.checklist
            ],
        }


def document_checklist(profile: NormalizedProfile, rules: RuleCatalogEntry) -> Tuple[ChecklistItem, ...]:
    """
    Documents the applicant must provide for a program.

    Partnered applicants also need a marriage certificate. ``is_present`` is
    None when the profile does not report documents.
    """
    required = list(rules.required_documents)
    if profile.marital_status in PARTNERED_STATUSES and MARRIAGE_CERTIFICATE not in required:
        required.append(MARRIAGE_CERTIFICATE)

    return tuple(
        ChecklistItem(doc, None if profile.documents is None else doc in profile.documents)
        for doc in required
    )


def assess(
    raw_profile: Dict[str, Any],
    rules: RuleCatalogEntry,
    as_of: Optional[date] = None,
    executor: Optional[Executor] = None,
) -> AssessmentResult:
    """
    Run a full assessment of a raw profile against one program.

    Args:
        raw_profile: Raw applicant profile
        rules: Catalog entry for the program
        as_of: Reference date for age and open-ended employment
        executor: Optional thread executor passed to the scoring engine

    Returns:
        AssessmentResult

    Raises:
        UnsupportedLanguageTest: If the profile names an unknown language test
    """
    profile = normalize(raw_profile, target_country=rules.country, as_of=as_of)
    breakdown = score(profile, rules, executor=executor)
    eligibility = evaluate(profile, rules)

    result = AssessmentResult(
        profile=profile,
        breakdown=breakdown,
        eligibility=eligibility,
        pass_mark=rules.pass_mark,
        recent_cutoff=rules.recent_cutoff,
        checklist=document_checklist(profile, rules),
    )
    logger.info(
        f"Assessed {rules.program}: score {result.total_score}, verdict {result.verdict.value}"
    )
    return result

"""
Criterion evaluators and gate predicates.

Catalog criteria and gates name a ``kind`` from a closed set; each kind maps
to one function here through CRITERION_EVALUATORS / GATE_PREDICATES. The
catalog supplies the numbers (point tables, thresholds) as params, so a new
program is a catalog change, not a code change.

Criterion evaluators return points or None when the profile lacks the data
the criterion needs. Gate predicates return (GateStatus, reason).
"""

import math
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .models import (
    SKILLS,
    EducationLevel,
    GateStatus,
    Language,
    LanguageProficiency,
    NormalizedProfile,
    WorkExperience,
)


class CriterionKind(str, Enum):
    AGE_TABLE = "age_table"
    EDUCATION_TABLE = "education_table"
    LANGUAGE_PER_SKILL = "language_per_skill"
    WORK_EXPERIENCE_TABLE = "work_experience_table"
    SPOUSE_FACTORS = "spouse_factors"
    SKILL_TRANSFERABILITY = "skill_transferability"
    JOB_OFFER = "job_offer"
    FLAG = "flag"
    DOMESTIC_EDUCATION = "domestic_education"
    FRENCH_BONUS = "french_bonus"
    ADAPTABILITY = "adaptability"


class GateKind(str, Enum):
    AGE_RANGE = "age_range"
    MIN_LANGUAGE = "min_language"
    MIN_EDUCATION = "min_education"
    EDUCATION_VERIFIED = "education_verified"
    MIN_WORK_EXPERIENCE = "min_work_experience"
    FLAG_REQUIRED = "flag_required"
    SETTLEMENT_FUNDS = "settlement_funds"
    REQUIRED_DOCUMENTS = "required_documents"


PROFILE_FLAGS = ("has_job_offer", "has_provincial_nomination", "has_sibling_in_country")

Params = Mapping[str, Any]
CriterionEvaluator = Callable[[NormalizedProfile, Params], Optional[int]]
GatePredicate = Callable[[NormalizedProfile, Params], Tuple[GateStatus, str]]


# =============================================================================
# Table helpers
# =============================================================================

def step_lookup(thresholds: Sequence[Sequence[float]], value: Optional[float]) -> int:
    """Points for the first [threshold, points] row (descending) that value reaches."""
    if value is None:
        return 0
    for threshold, points in thresholds:
        if value >= threshold:
            return int(points)
    return 0


def range_lookup(rows: Sequence[Sequence[int]], value: Optional[int]) -> Optional[int]:
    """Points for the inclusive [low, high, points] row containing value."""
    if value is None:
        return None
    for low, high, points in rows:
        if low <= value <= high:
            return int(points)
    return 0


def spouse_params(profile: NormalizedProfile, params: Params) -> Params:
    """Use the ``with_spouse`` column when the applicant has an accompanying spouse."""
    if profile.has_accompanying_spouse and "with_spouse" in params:
        merged = dict(params)
        merged.update(params["with_spouse"])
        return merged
    return params


def select_language(profile: NormalizedProfile, params: Params) -> Optional[LanguageProficiency]:
    if "language" in params:
        return profile.language(Language(params["language"]))
    if params.get("rank", "first") == "second":
        return profile.second_language
    return profile.first_language


def experience_months(
    experiences: Sequence[WorkExperience],
    scope: str = "any",
    skilled_only: bool = True,
    include_unknown_teer: bool = True,
) -> float:
    """Full-time equivalent months for experience within scope."""
    total = 0.0
    for exp in experiences:
        if scope == "domestic" and not exp.is_domestic:
            continue
        if scope == "foreign" and exp.is_domestic:
            continue
        if skilled_only:
            if exp.is_skilled is False:
                continue
            if exp.is_skilled is None and not include_unknown_teer:
                continue
        total += exp.full_time_months
    return total


def experience_years(profile: NormalizedProfile, scope: str, skilled_only: bool = True) -> int:
    return int(math.floor(experience_months(profile.work_experience, scope, skilled_only) / 12))


def _education_points(level: EducationLevel, table: Mapping[str, Any]) -> int:
    return int(table.get(level.value, 0))


# =============================================================================
# Criterion evaluators
# =============================================================================

def evaluate_age_table(profile: NormalizedProfile, params: Params) -> Optional[int]:
    params = spouse_params(profile, params)
    return range_lookup(params["rows"], profile.age)


def evaluate_education_table(profile: NormalizedProfile, params: Params) -> Optional[int]:
    """Highest-scoring credential; unverified foreign credentials are capped at the ceiling level."""
    params = spouse_params(profile, params)
    if not profile.education:
        return None

    ceiling = params.get("unverified_ceiling")
    ceiling_level = EducationLevel(ceiling) if ceiling else None

    best = 0
    for edu in profile.education:
        level = edu.level
        if not edu.is_verified:
            if ceiling_level is None:
                continue
            if level.rank > ceiling_level.rank:
                level = ceiling_level
        best = max(best, _education_points(level, params["points"]))
    return best


def evaluate_language_per_skill(profile: NormalizedProfile, params: Params) -> Optional[int]:
    params = spouse_params(profile, params)
    lang = select_language(profile, params)
    if lang is None:
        return None

    if "all_skills_min" in params:
        min_clb = lang.min_clb
        if min_clb is None:
            return None
        return int(params["all_skills_points"]) if min_clb >= params["all_skills_min"] else 0

    points = sum(step_lookup(params["thresholds"], lang.clb_for(skill)) for skill in SKILLS)
    return min(points, int(params.get("cap", points)))


def evaluate_work_experience_table(profile: NormalizedProfile, params: Params) -> Optional[int]:
    params = spouse_params(profile, params)
    if not profile.work_experience:
        return None
    years = experience_years(profile, params.get("scope", "any"), params.get("skilled_only", True))
    return step_lookup(params["thresholds"], years)


def evaluate_spouse_factors(profile: NormalizedProfile, params: Params) -> Optional[int]:
    spouse = profile.spouse
    if not profile.has_accompanying_spouse or spouse is None:
        return None

    points = 0
    if spouse.education_level is not None:
        points += _education_points(spouse.education_level, params["education"])
    points += sum(
        step_lookup(params["language_thresholds"], spouse.clb_for(skill)) for skill in SKILLS
    )
    points += step_lookup(params["work_thresholds"], spouse.domestic_work_months // 12)
    return points


def evaluate_skill_transferability(profile: NormalizedProfile, params: Params) -> Optional[int]:
    """
    Combination points: education with language or domestic work, and foreign
    work with language or domestic work. Each group is capped separately.
    """
    cap = int(params.get("group_cap", 50))
    tiers = params["education_tiers"]

    highest = profile.highest_education(verified_only=True)
    tier = str(tiers.get(highest.level.value, 0)) if highest else "0"

    first = profile.first_language
    clb = first.min_clb if first else None
    domestic_years = experience_years(profile, "domestic")
    foreign_years = experience_years(profile, "foreign")

    education_points = 0
    if tier != "0":
        education_points += step_lookup(params["education_language"].get(tier, ()), clb)
        education_points += step_lookup(params["education_domestic_work"].get(tier, ()), domestic_years)

    foreign_points = 0
    foreign_points += _nested_lookup(params["foreign_work_language"], foreign_years, clb)
    foreign_points += _nested_lookup(params["foreign_domestic_work"], foreign_years, domestic_years)

    return min(cap, education_points) + min(cap, foreign_points)


def _nested_lookup(rows: Sequence[Any], outer: int, inner: Optional[float]) -> int:
    for threshold, inner_rows in rows:
        if outer >= threshold:
            return step_lookup(inner_rows, inner)
    return 0


def evaluate_job_offer(profile: NormalizedProfile, params: Params) -> Optional[int]:
    if profile.has_job_offer is None:
        return None
    if not profile.has_job_offer:
        return 0
    if profile.job_offer_teer is None:
        return None
    return int(params["points_by_teer"].get(str(profile.job_offer_teer), 0))


def evaluate_flag(profile: NormalizedProfile, params: Params) -> Optional[int]:
    value = getattr(profile, params["flag"])
    if value is None:
        return None
    return int(params["points"]) if value else 0


def evaluate_domestic_education(profile: NormalizedProfile, params: Params) -> Optional[int]:
    if not profile.education:
        return None
    domestic = [e for e in profile.education if e.is_domestic]
    return max((_education_points(e.level, params["points"]) for e in domestic), default=0)


def evaluate_french_bonus(profile: NormalizedProfile, params: Params) -> Optional[int]:
    french = profile.language(Language.FRENCH)
    if french is None or french.min_clb is None:
        return None
    if french.min_clb < params["min_french_clb"]:
        return 0
    english = profile.language(Language.ENGLISH)
    english_clb = english.min_clb if english else None
    if english_clb is not None and english_clb >= params["english_threshold"]:
        return int(params["points_with_english"])
    return int(params["points_without_english"])


def evaluate_adaptability(profile: NormalizedProfile, params: Params) -> Optional[int]:
    items = params["items"]
    points = 0

    spouse = profile.spouse
    if "spouse_language" in items and profile.has_accompanying_spouse and spouse is not None:
        levels = [spouse.clb_for(skill) for skill in SKILLS]
        if levels and all(lvl is not None and lvl >= params.get("spouse_language_min_clb", 4) for lvl in levels):
            points += int(items["spouse_language"])

    if "domestic_study" in items and any(e.is_domestic for e in profile.education):
        points += int(items["domestic_study"])

    if "domestic_work" in items:
        months = experience_months(profile.work_experience, "domestic")
        if months >= params.get("domestic_work_months", 12):
            points += int(items["domestic_work"])

    if "arranged_employment" in items and profile.has_job_offer:
        points += int(items["arranged_employment"])

    if "relative_in_country" in items and profile.has_sibling_in_country:
        points += int(items["relative_in_country"])

    return min(points, int(params.get("cap", points)))


CRITERION_EVALUATORS: Dict[CriterionKind, CriterionEvaluator] = {
    CriterionKind.AGE_TABLE: evaluate_age_table,
    CriterionKind.EDUCATION_TABLE: evaluate_education_table,
    CriterionKind.LANGUAGE_PER_SKILL: evaluate_language_per_skill,
    CriterionKind.WORK_EXPERIENCE_TABLE: evaluate_work_experience_table,
    CriterionKind.SPOUSE_FACTORS: evaluate_spouse_factors,
    CriterionKind.SKILL_TRANSFERABILITY: evaluate_skill_transferability,
    CriterionKind.JOB_OFFER: evaluate_job_offer,
    CriterionKind.FLAG: evaluate_flag,
    CriterionKind.DOMESTIC_EDUCATION: evaluate_domestic_education,
    CriterionKind.FRENCH_BONUS: evaluate_french_bonus,
    CriterionKind.ADAPTABILITY: evaluate_adaptability,
}


# =============================================================================
# Gate predicates
# =============================================================================

def gate_age_range(profile: NormalizedProfile, params: Params) -> Tuple[GateStatus, str]:
    low, high = params.get("min"), params.get("max")
    if profile.age is None:
        return GateStatus.INDETERMINATE, "age not provided"
    if low is not None and profile.age < low:
        return GateStatus.FAILED, f"age {profile.age} is below minimum {low}"
    if high is not None and profile.age > high:
        return GateStatus.FAILED, f"age {profile.age} is above maximum {high}"
    return GateStatus.SATISFIED, f"age {profile.age} within range"


def gate_min_language(profile: NormalizedProfile, params: Params) -> Tuple[GateStatus, str]:
    required = params["min_clb"]
    lang = select_language(profile, params)
    if lang is None:
        return GateStatus.INDETERMINATE, "no language test results"

    known = [(skill, lang.clb_for(skill)) for skill in SKILLS if lang.clb_for(skill) is not None]
    below = [skill for skill, level in known if level < required]
    if below:
        return GateStatus.FAILED, f"CLB below {required} in {', '.join(below)}"
    if len(known) < len(SKILLS):
        return GateStatus.INDETERMINATE, "language results incomplete"
    return GateStatus.SATISFIED, f"CLB {lang.min_clb} meets minimum {required}"


def gate_min_education(profile: NormalizedProfile, params: Params) -> Tuple[GateStatus, str]:
    required = EducationLevel(params["min_level"])
    if not profile.education:
        return GateStatus.INDETERMINATE, "no education history"
    highest = profile.highest_education(verified_only=params.get("verified_only", False))
    if highest is None:
        return GateStatus.INDETERMINATE, "no verified credential"
    if highest.level.rank < required.rank:
        return GateStatus.FAILED, f"highest credential {highest.level.value} is below {required.value}"
    return GateStatus.SATISFIED, f"{highest.level.value} meets {required.value}"


def gate_education_verified(profile: NormalizedProfile, params: Params) -> Tuple[GateStatus, str]:
    if not profile.education:
        return GateStatus.INDETERMINATE, "no education history"
    if any(e.is_verified for e in profile.education):
        return GateStatus.SATISFIED, "credential is domestic or has an equivalency assessment"
    return GateStatus.INDETERMINATE, "foreign credential awaiting equivalency assessment"


def gate_min_work_experience(profile: NormalizedProfile, params: Params) -> Tuple[GateStatus, str]:
    required = params["min_months"]
    scope = params.get("scope", "any")
    skilled_only = params.get("skilled_only", True)
    if not profile.work_experience:
        return GateStatus.INDETERMINATE, "no work history"

    confirmed = experience_months(profile.work_experience, scope, skilled_only, include_unknown_teer=False)
    possible = experience_months(profile.work_experience, scope, skilled_only, include_unknown_teer=True)
    if confirmed >= required:
        return GateStatus.SATISFIED, f"{confirmed:g} qualifying months"
    if possible >= required:
        return GateStatus.INDETERMINATE, "occupation skill level unknown for some experience"
    return GateStatus.FAILED, f"{possible:g} qualifying months, {required} required"


def gate_flag_required(profile: NormalizedProfile, params: Params) -> Tuple[GateStatus, str]:
    flag = params["flag"]
    value = getattr(profile, flag)
    if value is None:
        return GateStatus.INDETERMINATE, f"{flag} not answered"
    if not value:
        return GateStatus.FAILED, f"{flag} is required"
    return GateStatus.SATISFIED, f"{flag} confirmed"


def required_funds(params: Params, family_size: int) -> float:
    table: List[Sequence[float]] = list(params["table"])
    for size, amount in table:
        if int(size) == family_size:
            return float(amount)
    largest_size, largest_amount = max(table, key=lambda row: row[0])
    extra = max(0, family_size - int(largest_size))
    return float(largest_amount) + extra * float(params.get("per_additional_member", 0))


def gate_settlement_funds(profile: NormalizedProfile, params: Params) -> Tuple[GateStatus, str]:
    if params.get("waived_by_job_offer") and profile.has_job_offer:
        return GateStatus.SATISFIED, "waived by valid job offer"
    if profile.settlement_funds is None:
        return GateStatus.INDETERMINATE, "settlement funds not provided"
    needed = required_funds(params, profile.family_size)
    if profile.settlement_funds < needed:
        return GateStatus.FAILED, f"funds {profile.settlement_funds:,.0f} below required {needed:,.0f}"
    return GateStatus.SATISFIED, f"funds meet required {needed:,.0f}"


def gate_required_documents(profile: NormalizedProfile, params: Params) -> Tuple[GateStatus, str]:
    required = list(params["documents"])
    if profile.documents is None:
        return GateStatus.INDETERMINATE, "documents not reported"
    missing = [d for d in required if d not in profile.documents]
    if missing:
        return GateStatus.FAILED, f"missing documents: {', '.join(missing)}"
    return GateStatus.SATISFIED, "all required documents present"


GATE_PREDICATES: Dict[GateKind, GatePredicate] = {
    GateKind.AGE_RANGE: gate_age_range,
    GateKind.MIN_LANGUAGE: gate_min_language,
    GateKind.MIN_EDUCATION: gate_min_education,
    GateKind.EDUCATION_VERIFIED: gate_education_verified,
    GateKind.MIN_WORK_EXPERIENCE: gate_min_work_experience,
    GateKind.FLAG_REQUIRED: gate_flag_required,
    GateKind.SETTLEMENT_FUNDS: gate_settlement_funds,
    GateKind.REQUIRED_DOCUMENTS: gate_required_documents,
}

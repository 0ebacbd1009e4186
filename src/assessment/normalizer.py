"""
Profile normalization.

Converts a raw applicant profile (a JSON-like dict, possibly incomplete)
into a NormalizedProfile: CLB levels per skill, ordinal education levels
with credential verification status, and work experience with overlapping
periods at the same job merged.

Raw profile keys (all optional):
    age, date_of_birth, marital_status, spouse_accompanying,
    languages: [{language, test, scores: {listening, reading, writing, speaking},
                 is_first_official}],
    education: [{level, field, country, has_eca}],
    work_experience: [{occupation_code, teer, employer, country, start_date,
                       end_date, is_current, hours_per_week, duration_months}],
    has_job_offer, job_offer_noc, job_offer_teer, has_provincial_nomination,
    has_sibling_in_country, settlement_funds, family_size, documents,
    spouse: {education_level, language: {test, scores}, domestic_work_months}
"""

import logging
import re
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

from . import clb
from .models import (
    SKILLS,
    PARTNERED_STATUSES,
    Education,
    EducationLevel,
    Language,
    LanguageProficiency,
    LanguageTest,
    MaritalStatus,
    NormalizedProfile,
    SpouseProfile,
    WorkExperience,
)

logger = logging.getLogger(__name__)


class UnsupportedLanguageTest(Exception):
    """Raised when a language test type has no CLB conversion table."""

    def __init__(self, test_name: str):
        self.test_name = test_name
        super().__init__(f"Unsupported language test: {test_name!r}")


COUNTRY_ALIASES = {
    "canada": {"canada", "ca", "can"},
}

EDUCATION_ALIASES = {
    "highschool": EducationLevel.HIGH_SCHOOL,
    "secondary": EducationLevel.HIGH_SCHOOL,
    "secondaryschool": EducationLevel.HIGH_SCHOOL,
    "oneyeardiploma": EducationLevel.ONE_YEAR_DIPLOMA,
    "oneyear": EducationLevel.ONE_YEAR_DIPLOMA,
    "diploma": EducationLevel.ONE_YEAR_DIPLOMA,
    "certificate": EducationLevel.ONE_YEAR_DIPLOMA,
    "twoyeardiploma": EducationLevel.TWO_YEAR_DIPLOMA,
    "twoyear": EducationLevel.TWO_YEAR_DIPLOMA,
    "bachelors": EducationLevel.BACHELORS,
    "bachelor": EducationLevel.BACHELORS,
    "bachelorsdegree": EducationLevel.BACHELORS,
    "twoormoredegrees": EducationLevel.TWO_OR_MORE_DEGREES,
    "twoormore": EducationLevel.TWO_OR_MORE_DEGREES,
    "masters": EducationLevel.MASTERS,
    "master": EducationLevel.MASTERS,
    "mastersdegree": EducationLevel.MASTERS,
    "professional": EducationLevel.MASTERS,
    "phd": EducationLevel.PHD,
    "doctorate": EducationLevel.PHD,
    "doctoral": EducationLevel.PHD,
}

TEST_LANGUAGE = {
    LanguageTest.IELTS: Language.ENGLISH,
    LanguageTest.CELPIP: Language.ENGLISH,
    LanguageTest.TEF: Language.FRENCH,
    LanguageTest.TCF: Language.FRENCH,
}


def normalize(
    raw_profile: Dict[str, Any],
    target_country: str = "Canada",
    as_of: Optional[date] = None,
) -> NormalizedProfile:
    """
    Derive a NormalizedProfile from a raw profile.

    Pure function: the input dict is never modified.

    Args:
        raw_profile: Raw applicant profile
        target_country: Country the application targets
        as_of: Reference date for age and open-ended employment (default: today)

    Returns:
        NormalizedProfile

    Raises:
        UnsupportedLanguageTest: If a language entry names an unknown test
    """
    as_of = as_of or date.today()
    raw = raw_profile or {}

    marital_status = _parse_enum(MaritalStatus, raw.get("marital_status"))
    accompanying = _optional_bool(raw.get("spouse_accompanying"))
    if accompanying is None:
        accompanying = marital_status in PARTNERED_STATUSES
    else:
        accompanying = bool(accompanying) and marital_status in PARTNERED_STATUSES

    job_offer_teer = raw.get("job_offer_teer")
    if job_offer_teer is None:
        job_offer_teer = teer_from_noc(raw.get("job_offer_noc"))

    documents = raw.get("documents")

    return NormalizedProfile(
        age=_resolve_age(raw, as_of),
        marital_status=marital_status,
        has_accompanying_spouse=accompanying,
        languages=normalize_languages(raw.get("languages") or []),
        education=normalize_education(raw.get("education") or [], target_country),
        work_experience=normalize_work_experience(
            raw.get("work_experience") or [], target_country, as_of
        ),
        has_job_offer=_optional_bool(raw.get("has_job_offer")),
        job_offer_teer=_optional_int(job_offer_teer),
        has_provincial_nomination=_optional_bool(raw.get("has_provincial_nomination")),
        has_sibling_in_country=_optional_bool(raw.get("has_sibling_in_country")),
        settlement_funds=_optional_float(raw.get("settlement_funds")),
        family_size=max(1, _optional_int(raw.get("family_size")) or 1),
        documents=frozenset(str(d) for d in documents) if documents is not None else None,
        spouse=_normalize_spouse(raw.get("spouse")) if accompanying else None,
        target_country=target_country,
    )


def normalize_languages(entries: Iterable[Dict[str, Any]]) -> Tuple[LanguageProficiency, ...]:
    """
    Resolve language test results to CLB levels and pick the first official language.

    The entry flagged ``is_first_official`` wins; otherwise the entry with the
    highest minimum CLB (earliest on ties).
    """
    resolved: List[LanguageProficiency] = []
    flagged_index: Optional[int] = None

    for entry in entries:
        proficiency = _resolve_language(entry)
        if proficiency is None:
            continue
        if _optional_bool(entry.get("is_first_official")) and flagged_index is None:
            flagged_index = len(resolved)
        resolved.append(proficiency)

    if not resolved:
        return ()

    if flagged_index is None:
        flagged_index = max(
            range(len(resolved)),
            key=lambda i: (resolved[i].min_clb if resolved[i].min_clb is not None else -1, -i),
        )

    return tuple(
        LanguageProficiency(
            language=p.language,
            test=p.test,
            clb=p.clb,
            is_first_official=(i == flagged_index),
        )
        for i, p in enumerate(resolved)
    )


def _resolve_language(entry: Dict[str, Any]) -> Optional[LanguageProficiency]:
    test_name = entry.get("test")
    if not test_name:
        logger.info("Skipping language entry without a test type")
        return None

    test = clb.resolve_test(test_name)
    if test is None:
        raise UnsupportedLanguageTest(str(test_name))

    language = _parse_enum(Language, entry.get("language")) or TEST_LANGUAGE[test]
    scores = entry.get("scores") or {}
    levels = tuple((skill, clb.score_to_clb(test, skill, scores.get(skill))) for skill in SKILLS)

    return LanguageProficiency(language=language, test=test, clb=levels)


def normalize_education_level(value: Any) -> Optional[EducationLevel]:
    """Map a free-form education level onto the ordinal scale."""
    if value is None:
        return None
    if isinstance(value, EducationLevel):
        return value
    key = re.sub(r"[^a-z]", "", str(value).lower())
    return EDUCATION_ALIASES.get(key)


def normalize_education(
    entries: Iterable[Dict[str, Any]],
    target_country: str = "Canada",
) -> Tuple[Education, ...]:
    """
    Normalize education credentials.

    Foreign credentials without an equivalency assessment are kept and
    marked unverified; unknown levels are dropped.
    """
    result = []
    for entry in entries:
        level = normalize_education_level(entry.get("level"))
        if level is None:
            logger.warning(f"Dropping education entry with unknown level: {entry.get('level')!r}")
            continue

        country = entry.get("country")
        is_domestic = _optional_bool(entry.get("is_domestic"))
        if is_domestic is None:
            is_domestic = is_same_country(country, target_country)

        has_eca = _optional_bool(entry.get("has_eca", entry.get("has_equivalency_assessment")))

        result.append(Education(
            level=level,
            field_of_study=entry.get("field"),
            country=country,
            is_domestic=bool(is_domestic),
            has_equivalency_assessment=bool(has_eca),
        ))
    return tuple(result)


def normalize_work_experience(
    entries: Iterable[Dict[str, Any]],
    target_country: str = "Canada",
    as_of: Optional[date] = None,
) -> Tuple[WorkExperience, ...]:
    """
    Normalize work history into per-job experience records.

    Dated entries sharing (occupation code, employer) have overlapping or
    adjacent periods merged before months are counted, so double-reported
    periods are not counted twice. Different occupations are never merged.
    Undated entries with ``duration_months`` are taken as reported.
    """
    as_of = as_of or date.today()
    groups: Dict[Tuple[Any, ...], List[Dict[str, Any]]] = {}
    undated: List[WorkExperience] = []

    for index, entry in enumerate(entries):
        occupation = _clean_code(entry.get("occupation_code"))
        employer = entry.get("employer")
        start = _parse_date(entry.get("start_date"))

        if start is None:
            months = _optional_int(entry.get("duration_months"))
            if months is None:
                logger.info(f"Skipping work entry {index} without dates or duration")
                continue
            undated.append(_build_experience(entry, occupation, target_country, max(0, months)))
            continue

        end = None if _optional_bool(entry.get("is_current")) else _parse_date(entry.get("end_date"))
        end = min(end or as_of, as_of)
        if end < start:
            logger.warning(f"Skipping work entry {index}: end date precedes start date")
            continue

        key = (occupation, employer) if (occupation or employer) else ("entry", index)
        groups.setdefault(key, []).append(dict(entry, _start=start, _end=end))

    result = []
    for (occupation, _), group in groups.items():
        intervals = merge_intervals([(g["_start"], g["_end"]) for g in group])
        months = sum(months_between(s, e) for s, e in intervals)
        hours = [g.get("hours_per_week") for g in group if g.get("hours_per_week") is not None]
        merged = dict(group[0], hours_per_week=max(hours) if hours else None)
        result.append(_build_experience(merged, _clean_code(group[0].get("occupation_code")),
                                        target_country, months))

    return tuple(result) + tuple(undated)


def merge_intervals(intervals: List[Tuple[date, date]]) -> List[Tuple[date, date]]:
    """Merge overlapping or adjacent inclusive [start, end] date intervals."""
    merged: List[Tuple[date, date]] = []
    for start, end in sorted(intervals):
        if merged and start <= merged[-1][1] + timedelta(days=1):
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def months_between(start: date, end: date) -> int:
    """Whole calendar months covered by the inclusive period start..end."""
    delta = relativedelta(end + timedelta(days=1), start)
    return delta.years * 12 + delta.months


def teer_from_noc(code: Any) -> Optional[int]:
    """TEER category of a NOC 2021 code (second digit of the five-digit code)."""
    code = _clean_code(code)
    if not code or len(code) != 5 or not code.isdigit():
        return None
    return int(code[1])


def is_same_country(country: Optional[str], target_country: str) -> bool:
    if not country:
        return False
    target = target_country.strip().lower()
    aliases = COUNTRY_ALIASES.get(target, {target})
    return country.strip().lower() in aliases


def _build_experience(
    entry: Dict[str, Any],
    occupation: Optional[str],
    target_country: str,
    months: int,
) -> WorkExperience:
    country = entry.get("country")
    is_domestic = _optional_bool(entry.get("is_domestic"))
    if is_domestic is None:
        is_domestic = is_same_country(country, target_country)

    teer = _optional_int(entry.get("teer"))
    if teer is None:
        teer = teer_from_noc(occupation)

    return WorkExperience(
        occupation_code=occupation,
        country=country,
        is_domestic=bool(is_domestic),
        duration_months=months,
        hours_per_week=_optional_float(entry.get("hours_per_week")),
        employer=entry.get("employer"),
        teer=teer,
    )


def _normalize_spouse(raw: Optional[Dict[str, Any]]) -> Optional[SpouseProfile]:
    if not raw:
        return None

    levels: Tuple[Tuple[str, Optional[int]], ...] = ()
    language = raw.get("language")
    if language:
        proficiency = _resolve_language(language)
        if proficiency is not None:
            levels = proficiency.clb

    return SpouseProfile(
        education_level=normalize_education_level(raw.get("education_level")),
        clb=levels,
        domestic_work_months=max(0, _optional_int(raw.get("domestic_work_months")) or 0),
    )


def _resolve_age(raw: Dict[str, Any], as_of: date) -> Optional[int]:
    age = _optional_int(raw.get("age"))
    if age is not None:
        return age
    dob = _parse_date(raw.get("date_of_birth"))
    if dob is None:
        return None
    return relativedelta(as_of, dob).years


def _parse_enum(enum_cls, value):
    if value is None or value == "":
        return None
    if isinstance(value, enum_cls):
        return value
    for member in enum_cls:
        if str(value).lower() == member.value.lower():
            return member
    logger.warning(f"Unknown {enum_cls.__name__} value: {value!r}")
    return None


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date_parser.isoparse(str(value)).date()
    except ValueError:
        logger.warning(f"Unparseable date: {value!r}")
        return None


def _clean_code(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


TRUE_STRINGS = {"true", "yes", "y", "1"}
FALSE_STRINGS = {"false", "no", "n", "0"}


def _optional_bool(value: Any) -> Optional[bool]:
    """Booleans pass through; common yes/no spellings are parsed; anything else is unknown."""
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in TRUE_STRINGS:
        return True
    if text in FALSE_STRINGS:
        return False
    logger.warning(f"Unrecognized yes/no value treated as unknown: {value!r}")
    return None


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None

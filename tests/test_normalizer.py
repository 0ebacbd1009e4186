"""
Tests for src/assessment/normalizer.py - Raw profile normalization.
"""

import logging
from datetime import date

import pytest

from src.assessment import normalizer
from src.assessment.models import (
    CredentialStatus,
    EducationLevel,
    Language,
    LanguageTest,
    MaritalStatus,
)
from src.assessment.normalizer import UnsupportedLanguageTest


AS_OF = date(2025, 6, 1)


class TestNormalize:
    """Tests for the normalize entry point."""

    def test_reference_profile(self, reference_profile):
        profile = normalizer.normalize(reference_profile, as_of=AS_OF)

        assert profile.age == 30
        assert profile.marital_status == MaritalStatus.SINGLE
        assert profile.has_accompanying_spouse is False
        assert profile.first_language.min_clb == 9
        assert profile.first_language.test == LanguageTest.IELTS
        assert profile.education[0].status == CredentialStatus.VERIFIED
        assert len(profile.work_experience) == 1
        assert profile.work_experience[0].duration_months == 36
        assert profile.work_experience[0].teer == 1
        assert profile.work_experience[0].is_domestic is False

    def test_input_not_modified(self, reference_profile):
        snapshot = repr(reference_profile)
        normalizer.normalize(reference_profile, as_of=AS_OF)
        assert repr(reference_profile) == snapshot

    def test_empty_profile(self):
        """Missing optional fields become unknown instead of failing."""
        profile = normalizer.normalize({}, as_of=AS_OF)

        assert profile.age is None
        assert profile.languages == ()
        assert profile.education == ()
        assert profile.has_job_offer is None
        assert profile.has_provincial_nomination is None
        assert profile.documents is None
        assert profile.family_size == 1

    def test_age_from_date_of_birth(self):
        profile = normalizer.normalize({"date_of_birth": "1995-06-02"}, as_of=AS_OF)
        assert profile.age == 29

    def test_spouse_only_when_partnered(self):
        raw = {
            "marital_status": "married",
            "spouse": {"education_level": "masters", "domestic_work_months": 14},
        }
        profile = normalizer.normalize(raw, as_of=AS_OF)
        assert profile.has_accompanying_spouse is True
        assert profile.spouse.education_level == EducationLevel.MASTERS

        raw["marital_status"] = "single"
        assert normalizer.normalize(raw, as_of=AS_OF).spouse is None

    def test_non_accompanying_spouse(self):
        raw = {"marital_status": "commonLaw", "spouse_accompanying": False}
        profile = normalizer.normalize(raw, as_of=AS_OF)
        assert profile.has_accompanying_spouse is False


class TestLanguages:
    """Tests for normalize_languages."""

    def test_unsupported_test_raises(self):
        with pytest.raises(UnsupportedLanguageTest, match="TOEFL"):
            normalizer.normalize_languages([{"test": "TOEFL", "scores": {"reading": 100}}])

    def test_missing_skill_is_none(self):
        langs = normalizer.normalize_languages([
            {"test": "CELPIP", "scores": {"listening": 9, "reading": 9, "writing": 9}}
        ])
        assert langs[0].clb_for("speaking") is None
        assert langs[0].min_clb is None

    def test_highest_min_clb_is_first_official(self):
        langs = normalizer.normalize_languages([
            {"test": "TEF", "scores": {"listening": 300, "reading": 250, "writing": 380, "speaking": 380}},
            {"test": "IELTS", "scores": {"listening": 6.0, "reading": 6.0, "writing": 6.0, "speaking": 6.0}},
        ])
        first = [lang for lang in langs if lang.is_first_official]
        assert len(first) == 1
        assert first[0].language == Language.FRENCH

    def test_flag_wins(self):
        langs = normalizer.normalize_languages([
            {"test": "CELPIP", "scores": {"listening": 10, "reading": 10, "writing": 10, "speaking": 10}},
            {"test": "TCF", "is_first_official": True,
             "scores": {"listening": 400, "reading": 410, "writing": 7, "speaking": 7}},
        ])
        assert langs[1].is_first_official is True
        assert langs[0].is_first_official is False

    def test_non_numeric_score_degrades_to_unknown(self, caplog):
        with caplog.at_level(logging.WARNING):
            profile = normalizer.normalize(
                {"languages": [{"test": "IELTS", "scores": {"listening": "eight", "reading": 7.0}}]},
                as_of=AS_OF,
            )

        language = profile.languages[0]
        assert language.clb_for("listening") is None
        assert language.clb_for("reading") == 9
        assert language.min_clb is None
        assert "eight" in caplog.text

    def test_entry_without_test_skipped(self):
        assert normalizer.normalize_languages([{"language": "english"}]) == ()


class TestEducation:
    """Tests for education normalization."""

    @pytest.mark.parametrize("raw,expected", [
        ("Bachelor's Degree", EducationLevel.BACHELORS),
        ("PhD", EducationLevel.PHD),
        ("two-year diploma", EducationLevel.TWO_YEAR_DIPLOMA),
        ("secondary", EducationLevel.HIGH_SCHOOL),
    ])
    def test_level_aliases(self, raw, expected):
        assert normalizer.normalize_education_level(raw) == expected

    def test_unknown_level_dropped_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING):
            result = normalizer.normalize_education([{"level": "kindergarten"}])
        assert result == ()
        assert "unknown level" in caplog.text

    def test_foreign_without_eca_is_unverified(self):
        result = normalizer.normalize_education([{"level": "masters", "country": "Brazil"}])
        assert result[0].status == CredentialStatus.UNVERIFIED
        assert result[0].is_verified is False

    def test_domestic_credential(self):
        result = normalizer.normalize_education([{"level": "bachelors", "country": "CA"}])
        assert result[0].status == CredentialStatus.DOMESTIC


class TestWorkExperience:
    """Tests for work experience merging."""

    def test_overlapping_same_job_merged(self):
        entries = [
            {"occupation_code": "21231", "employer": "Acme", "start_date": "2020-01-01", "end_date": "2021-06-30"},
            {"occupation_code": "21231", "employer": "Acme", "start_date": "2021-01-01", "end_date": "2021-12-31"},
        ]
        result = normalizer.normalize_work_experience(entries, as_of=AS_OF)
        assert len(result) == 1
        assert result[0].duration_months == 24

    def test_adjacent_periods_merged(self):
        entries = [
            {"occupation_code": "21231", "employer": "Acme", "start_date": "2020-01-01", "end_date": "2020-12-31"},
            {"occupation_code": "21231", "employer": "Acme", "start_date": "2021-01-01", "end_date": "2021-12-31"},
        ]
        result = normalizer.normalize_work_experience(entries, as_of=AS_OF)
        assert result[0].duration_months == 24

    def test_distinct_occupations_not_merged(self):
        entries = [
            {"occupation_code": "21231", "employer": "Acme", "start_date": "2020-01-01", "end_date": "2020-12-31"},
            {"occupation_code": "64100", "employer": "Shop", "start_date": "2020-01-01", "end_date": "2020-12-31"},
        ]
        result = normalizer.normalize_work_experience(entries, as_of=AS_OF)
        assert len(result) == 2
        assert sorted(w.teer for w in result) == [1, 4]

    def test_current_job_runs_to_as_of(self):
        entries = [{"occupation_code": "21231", "start_date": "2024-06-01", "is_current": True}]
        result = normalizer.normalize_work_experience(entries, as_of=date(2025, 6, 1))
        assert result[0].duration_months == 12

    def test_duration_only_entry(self):
        result = normalizer.normalize_work_experience([{"duration_months": 18, "teer": 2}], as_of=AS_OF)
        assert result[0].duration_months == 18
        assert result[0].is_skilled is True

    def test_unknown_teer(self):
        result = normalizer.normalize_work_experience([{"duration_months": 18}], as_of=AS_OF)
        assert result[0].teer is None
        assert result[0].is_skilled is None

    def test_end_before_start_skipped(self):
        entries = [{"start_date": "2022-01-01", "end_date": "2021-01-01", "occupation_code": "21231"}]
        assert normalizer.normalize_work_experience(entries, as_of=AS_OF) == ()


class TestHelpers:
    """Tests for small helper functions."""

    def test_teer_from_noc(self):
        assert normalizer.teer_from_noc("21231") == 1
        assert normalizer.teer_from_noc("00010") == 0
        assert normalizer.teer_from_noc("2123") is None
        assert normalizer.teer_from_noc(None) is None

    def test_merge_intervals(self):
        merged = normalizer.merge_intervals([
            (date(2020, 1, 1), date(2020, 6, 30)),
            (date(2021, 1, 1), date(2021, 3, 31)),
            (date(2020, 6, 1), date(2020, 9, 30)),
        ])
        assert merged == [
            (date(2020, 1, 1), date(2020, 9, 30)),
            (date(2021, 1, 1), date(2021, 3, 31)),
        ]

    def test_part_time_counts_half(self):
        result = normalizer.normalize_work_experience(
            [{"duration_months": 24, "hours_per_week": 15, "teer": 1}], as_of=AS_OF
        )
        assert result[0].full_time_months == 12


class TestFlags:
    """Yes/no fields given as strings."""

    @pytest.mark.parametrize("value,expected", [
        (True, True),
        (False, False),
        ("false", False),
        ("No", False),
        ("0", False),
        ("yes", True),
        ("TRUE", True),
        (1, True),
        (0, False),
        ("maybe", None),
        (None, None),
    ])
    def test_job_offer_spellings(self, value, expected):
        profile = normalizer.normalize({"has_job_offer": value}, as_of=AS_OF)
        assert profile.has_job_offer is expected

    def test_eca_string_false(self):
        result = normalizer.normalize_education(
            [{"level": "masters", "country": "Brazil", "has_eca": "false"}]
        )
        assert result[0].status == CredentialStatus.UNVERIFIED

    def test_spouse_not_accompanying_string(self):
        raw = {"marital_status": "married", "spouse_accompanying": "no"}
        assert normalizer.normalize(raw, as_of=AS_OF).has_accompanying_spouse is False

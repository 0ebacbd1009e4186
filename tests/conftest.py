"""Shared fixtures: the published rule catalog and a reference applicant."""

import copy
from datetime import date
from pathlib import Path

import pytest

from src.assessment.catalog import RuleCatalog


REPO_ROOT = Path(__file__).resolve().parent.parent
CATALOG_PATH = REPO_ROOT / "config" / "rule_catalog.json"
SCHEMA_PATH = REPO_ROOT / "config" / "schemas" / "rule_catalog.schema.json"
POLICY_PATH = REPO_ROOT / "config" / "case_policy.yaml"

AS_OF = date(2025, 6, 1)

# Age 30, CLB 9 in every ability, bachelor's degree with an ECA,
# three years of foreign TEER 1 work, single, no job offer or nomination.
REFERENCE_PROFILE = {
    "age": 30,
    "marital_status": "single",
    "languages": [
        {
            "test": "IELTS",
            "scores": {"listening": 8.0, "reading": 7.0, "writing": 7.0, "speaking": 7.0},
        }
    ],
    "education": [
        {"level": "bachelors", "field": "Computer Science", "country": "India", "has_eca": True}
    ],
    "work_experience": [
        {
            "occupation_code": "21231",
            "employer": "Infosys",
            "country": "India",
            "start_date": "2021-01-01",
            "end_date": "2023-12-31",
            "hours_per_week": 40,
        }
    ],
    "has_job_offer": False,
    "has_provincial_nomination": False,
    "has_sibling_in_country": False,
    "settlement_funds": 20000,
    "family_size": 1,
    "documents": ["passport", "languageTest", "educationCredential", "employmentReference", "proofOfFunds"],
}


@pytest.fixture(scope="session")
def rule_catalog():
    return RuleCatalog.load(CATALOG_PATH, SCHEMA_PATH)


@pytest.fixture
def crs_entry(rule_catalog):
    return rule_catalog.get_entry("express_entry_crs", "Canada", AS_OF)


@pytest.fixture
def fsw_entry(rule_catalog):
    return rule_catalog.get_entry("federal_skilled_worker", "Canada", AS_OF)


@pytest.fixture
def ontario_entry(rule_catalog):
    return rule_catalog.get_entry("ontario_human_capital_priorities", "Canada", AS_OF)


@pytest.fixture
def reference_profile():
    """Fresh copy of the reference raw profile for each test."""
    return copy.deepcopy(REFERENCE_PROFILE)


@pytest.fixture
def as_of():
    return AS_OF


@pytest.fixture
def policy_path():
    return POLICY_PATH


@pytest.fixture
def schema_path():
    return SCHEMA_PATH


@pytest.fixture
def catalog_path():
    return CATALOG_PATH

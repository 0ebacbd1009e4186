"""
Tests for src/assessment/eligibility.py and the gate predicates.
"""

from datetime import date

import pytest

from src.assessment import eligibility, normalizer
from src.assessment.catalog import RuleCatalog
from src.assessment.models import GateStatus, Verdict


AS_OF = date(2025, 6, 1)


def evaluate_raw(raw, entry):
    return eligibility.evaluate(normalizer.normalize(raw, as_of=AS_OF), entry)


def gate(verdict, gate_id):
    return next(g for g in verdict.gates if g.gate_id == gate_id)


class TestVerdicts:
    """Verdict derivation from hard gates."""

    def test_reference_profile_eligible_everywhere(self, reference_profile, rule_catalog):
        for entry in rule_catalog.entries:
            verdict = evaluate_raw(reference_profile, entry)
            assert verdict.verdict == Verdict.ELIGIBLE, entry.program
            assert verdict.failed_gates == []

    def test_failed_hard_gates_all_reported(self, reference_profile, fsw_entry):
        reference_profile["languages"][0]["scores"] = {
            "listening": 5.0, "reading": 5.0, "writing": 5.0, "speaking": 5.0,
        }
        reference_profile["settlement_funds"] = 1000
        verdict = evaluate_raw(reference_profile, fsw_entry)

        assert verdict.verdict == Verdict.INELIGIBLE
        assert {g.gate_id for g in verdict.failed_gates} == {"language_minimum", "settlement_funds"}
        assert len(verdict.reasons) == 2

    def test_failure_beats_indeterminate(self, reference_profile, fsw_entry):
        reference_profile["settlement_funds"] = None
        reference_profile["work_experience"] = [{"duration_months": 6, "teer": 1}]
        verdict = evaluate_raw(reference_profile, fsw_entry)

        assert verdict.verdict == Verdict.INELIGIBLE
        assert [g.gate_id for g in verdict.indeterminate_gates] == ["settlement_funds"]

    def test_indeterminate_gives_conditional(self, reference_profile, fsw_entry):
        reference_profile["education"][0]["has_eca"] = False
        verdict = evaluate_raw(reference_profile, fsw_entry)

        assert verdict.verdict == Verdict.CONDITIONAL
        assert [g.gate_id for g in verdict.indeterminate_gates] == ["credential_assessment"]

    def test_non_hard_gate_never_affects_verdict(self, reference_profile, crs_entry):
        reference_profile["settlement_funds"] = 10
        reference_profile["education"][0]["has_eca"] = False
        verdict = evaluate_raw(reference_profile, crs_entry)

        assert verdict.verdict == Verdict.ELIGIBLE
        assert gate(verdict, "settlement_funds").status == GateStatus.FAILED
        assert gate(verdict, "settlement_funds").is_hard is False
        assert len(verdict.informational_gates) == 2

    def test_empty_profile_is_conditional(self, crs_entry):
        verdict = evaluate_raw({}, crs_entry)
        assert verdict.verdict == Verdict.CONDITIONAL
        assert verdict.failed_gates == []

    def test_to_dict(self, reference_profile, ontario_entry):
        data = evaluate_raw(reference_profile, ontario_entry).to_dict()
        assert data["verdict"] == "eligible"
        assert data["failed"] == []
        assert len(data["gates"]) == len(ontario_entry.gates)


class TestGates:
    """Individual gate predicates through the published entries."""

    @pytest.mark.parametrize("age,status", [
        (20, GateStatus.FAILED),
        (21, GateStatus.SATISFIED),
        (55, GateStatus.SATISFIED),
        (56, GateStatus.FAILED),
    ])
    def test_age_window(self, reference_profile, ontario_entry, age, status):
        reference_profile["age"] = age
        assert gate(evaluate_raw(reference_profile, ontario_entry), "age_window").status == status

    def test_post_secondary_required(self, reference_profile, ontario_entry):
        reference_profile["education"] = [{"level": "highSchool", "country": "India", "has_eca": True}]
        result = gate(evaluate_raw(reference_profile, ontario_entry), "post_secondary")
        assert result.status == GateStatus.FAILED
        assert "highSchool" in result.reason

    def test_partial_language_results(self, reference_profile, fsw_entry):
        del reference_profile["languages"][0]["scores"]["speaking"]
        result = gate(evaluate_raw(reference_profile, fsw_entry), "language_minimum")
        assert result.status == GateStatus.INDETERMINATE

    def test_partial_language_with_low_skill_fails(self, reference_profile, fsw_entry):
        reference_profile["languages"][0]["scores"] = {"listening": 5.0, "reading": 8.0}
        result = gate(evaluate_raw(reference_profile, fsw_entry), "language_minimum")
        assert result.status == GateStatus.FAILED
        assert "listening" in result.reason

    def test_unknown_teer_is_indeterminate(self, reference_profile, fsw_entry):
        reference_profile["work_experience"] = [{"duration_months": 24}]
        result = gate(evaluate_raw(reference_profile, fsw_entry), "skilled_experience")
        assert result.status == GateStatus.INDETERMINATE

    def test_unskilled_work_fails(self, reference_profile, fsw_entry):
        reference_profile["work_experience"] = [{"duration_months": 48, "teer": 5}]
        result = gate(evaluate_raw(reference_profile, fsw_entry), "skilled_experience")
        assert result.status == GateStatus.FAILED

    def test_funds_scale_with_family(self, reference_profile, fsw_entry):
        reference_profile["family_size"] = 3
        assert gate(evaluate_raw(reference_profile, fsw_entry), "settlement_funds").status == GateStatus.FAILED

        reference_profile["family_size"] = 9
        reference_profile["settlement_funds"] = 46791
        assert gate(evaluate_raw(reference_profile, fsw_entry), "settlement_funds").status == GateStatus.SATISFIED

    def test_funds_waived_by_job_offer(self, reference_profile, fsw_entry):
        reference_profile["settlement_funds"] = 0
        reference_profile["has_job_offer"] = True
        assert gate(evaluate_raw(reference_profile, fsw_entry), "settlement_funds").status == GateStatus.SATISFIED

    def test_missing_documents(self, reference_profile, ontario_entry):
        reference_profile["documents"] = ["passport"]
        verdict = evaluate_raw(reference_profile, ontario_entry)
        result = gate(verdict, "documents")

        assert verdict.verdict == Verdict.INELIGIBLE
        assert "languageTest" in result.reason
        assert "educationCredential" in result.reason

    def test_flag_required(self):
        rules = RuleCatalog.from_dict({
            "catalog_version": "1.0.0",
            "entries": [{
                "program": "employer_stream",
                "country": "Canada",
                "category": "provincial",
                "effective_from": "2024-01-01",
                "criteria": [],
                "gates": [{"id": "offer", "kind": "flag_required", "params": {"flag": "has_job_offer"}}],
            }],
        }, schema_path=None)
        entry = rules.get_entry("employer_stream", "Canada", AS_OF)

        assert evaluate_raw({"has_job_offer": True}, entry).verdict == Verdict.ELIGIBLE
        assert evaluate_raw({"has_job_offer": False}, entry).verdict == Verdict.INELIGIBLE
        assert evaluate_raw({}, entry).verdict == Verdict.CONDITIONAL

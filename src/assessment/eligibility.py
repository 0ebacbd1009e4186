"""
Eligibility evaluator.

Runs every gate of a catalog entry against a normalized profile. Hard gates
decide the verdict; informational (non-hard) gates are only reported.
"""

import logging

from .catalog import EligibilityGate, RuleCatalogEntry
from .evaluators import GATE_PREDICATES
from .models import EligibilityVerdict, GateResult, GateStatus, NormalizedProfile, Verdict

logger = logging.getLogger(__name__)


def check_gate(profile: NormalizedProfile, gate: EligibilityGate) -> GateResult:
    predicate = GATE_PREDICATES[gate.kind]
    status, reason = predicate(profile, gate.params)
    return GateResult(
        gate_id=gate.id,
        description=gate.description,
        status=status,
        is_hard=gate.is_hard,
        reason=reason,
    )


def evaluate(profile: NormalizedProfile, rules: RuleCatalogEntry) -> EligibilityVerdict:
    """
    Evaluate eligibility gates for a program.

    Any failed hard gate makes the applicant ineligible. With no failures,
    an indeterminate hard gate makes the verdict conditional. Otherwise the
    applicant is eligible.

    Args:
        profile: Normalized applicant profile
        rules: Catalog entry for the program

    Returns:
        EligibilityVerdict with one GateResult per gate in catalog order
    """
    results = tuple(check_gate(profile, gate) for gate in rules.gates)
    hard = [r for r in results if r.is_hard]

    if any(r.status == GateStatus.FAILED for r in hard):
        verdict = Verdict.INELIGIBLE
    elif any(r.status == GateStatus.INDETERMINATE for r in hard):
        verdict = Verdict.CONDITIONAL
    else:
        verdict = Verdict.ELIGIBLE

    logger.debug(f"Eligibility for {rules.program}: {verdict.value}")
    return EligibilityVerdict(program=rules.program, verdict=verdict, gates=results)

"""
Scoring engine.

Applies each criterion of a catalog entry to a normalized profile and
assembles a ScoreBreakdown. Criteria are independent, so they may be
evaluated on a thread executor; the breakdown always follows catalog order.
"""

import logging
from concurrent.futures import Executor
from typing import List, Optional

from .catalog import Criterion, RuleCatalogEntry
from .evaluators import CRITERION_EVALUATORS
from .models import CriterionScore, NormalizedProfile, ScoreBreakdown

logger = logging.getLogger(__name__)


def score_criterion(profile: NormalizedProfile, criterion: Criterion) -> CriterionScore:
    """
    Score one criterion, clamping the evaluator result into [0, max_points].

    Args:
        profile: Normalized applicant profile
        criterion: Catalog criterion

    Returns:
        CriterionScore; missing input scores 0
    """
    evaluator = CRITERION_EVALUATORS[criterion.kind]
    raw = evaluator(profile, criterion.params)
    if raw is None:
        return CriterionScore(criterion.id, 0, criterion.max_points, None)

    awarded = max(0, min(int(raw), criterion.max_points))
    if awarded != raw:
        logger.warning(
            f"Criterion {criterion.id}: clamped {raw} points to {awarded} "
            f"(max {criterion.max_points})"
        )
    return CriterionScore(criterion.id, awarded, criterion.max_points, int(raw))


def score(
    profile: NormalizedProfile,
    rules: RuleCatalogEntry,
    executor: Optional[Executor] = None,
) -> ScoreBreakdown:
    """
    Score a profile against a catalog entry.

    Args:
        profile: Normalized applicant profile
        rules: Catalog entry for the program
        executor: Optional thread executor for evaluating criteria in parallel

    Returns:
        ScoreBreakdown with total_score == sum of awarded points
    """
    if executor is None:
        results: List[CriterionScore] = [score_criterion(profile, c) for c in rules.criteria]
    else:
        # map preserves input order
        results = list(executor.map(lambda c: score_criterion(profile, c), rules.criteria))

    total = sum(r.points_awarded for r in results)
    logger.debug(f"Scored {rules.program}: {total} points over {len(results)} criteria")
    return ScoreBreakdown(
        program=rules.program,
        criteria=tuple(results),
        total_score=total,
        catalog_version=rules.version,
    )

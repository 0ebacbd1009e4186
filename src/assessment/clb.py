"""
Language test score to Canadian Language Benchmark (CLB/NCLC) conversion.

Tables list (minimum test score, CLB level) pairs from highest to lowest
level, per test and skill, following the IRCC equivalency charts. Scores
below the CLB 4 threshold resolve to CLB 0.
"""

import logging
import math
from typing import Any, Dict, List, Optional, Tuple

from .models import LanguageTest

logger = logging.getLogger(__name__)


Table = List[Tuple[float, int]]


IELTS_GENERAL: Dict[str, Table] = {
    "listening": [(8.5, 10), (8.0, 9), (7.5, 8), (6.0, 7), (5.5, 6), (5.0, 5), (4.5, 4)],
    "reading": [(8.0, 10), (7.0, 9), (6.5, 8), (6.0, 7), (5.0, 6), (4.0, 5), (3.5, 4)],
    "writing": [(7.5, 10), (7.0, 9), (6.5, 8), (6.0, 7), (5.5, 6), (5.0, 5), (4.0, 4)],
    "speaking": [(7.5, 10), (7.0, 9), (6.5, 8), (6.0, 7), (5.5, 6), (5.0, 5), (4.0, 4)],
}

TEF_CANADA: Dict[str, Table] = {
    "listening": [(316, 10), (298, 9), (280, 8), (249, 7), (217, 6), (181, 5), (145, 4)],
    "reading": [(263, 10), (248, 9), (233, 8), (207, 7), (181, 6), (151, 5), (121, 4)],
    "writing": [(393, 10), (371, 9), (349, 8), (310, 7), (271, 6), (226, 5), (181, 4)],
    "speaking": [(393, 10), (371, 9), (349, 8), (310, 7), (271, 6), (226, 5), (181, 4)],
}

TCF_CANADA: Dict[str, Table] = {
    "listening": [(549, 10), (523, 9), (503, 8), (458, 7), (398, 6), (369, 5), (331, 4)],
    "reading": [(549, 10), (524, 9), (499, 8), (453, 7), (406, 6), (375, 5), (342, 4)],
    "writing": [(16, 10), (14, 9), (12, 8), (10, 7), (7, 6), (6, 5), (4, 4)],
    "speaking": [(16, 10), (14, 9), (12, 8), (10, 7), (7, 6), (6, 5), (4, 4)],
}

# CELPIP levels map one-to-one onto CLB levels.
CELPIP_MAX_LEVEL = 12

CONVERSION_TABLES: Dict[LanguageTest, Dict[str, Table]] = {
    LanguageTest.IELTS: IELTS_GENERAL,
    LanguageTest.TEF: TEF_CANADA,
    LanguageTest.TCF: TCF_CANADA,
}

TEST_ALIASES: Dict[str, LanguageTest] = {
    "IELTS": LanguageTest.IELTS,
    "IELTS_GENERAL": LanguageTest.IELTS,
    "IELTS_GENERAL_TRAINING": LanguageTest.IELTS,
    "CELPIP": LanguageTest.CELPIP,
    "CELPIP_GENERAL": LanguageTest.CELPIP,
    "TEF": LanguageTest.TEF,
    "TEF_CANADA": LanguageTest.TEF,
    "TCF": LanguageTest.TCF,
    "TCF_CANADA": LanguageTest.TCF,
}


def resolve_test(name: Optional[str]) -> Optional[LanguageTest]:
    """
    Map a free-form test name to a supported test.

    Args:
        name: Test name such as "IELTS", "ielts_general" or "TEF Canada"

    Returns:
        LanguageTest, or None if the name is not recognized
    """
    if not name:
        return None
    key = str(name).strip().upper().replace(" ", "_").replace("-", "_")
    return TEST_ALIASES.get(key)


def score_to_clb(test: LanguageTest, skill: str, score: Any) -> Optional[int]:
    """
    Convert one skill score to its CLB level.

    Args:
        test: Supported language test
        skill: "listening", "reading", "writing" or "speaking"
        score: Raw test score, or None if not reported

    Returns:
        CLB level (0 when below CLB 4), or None when the score is missing
        or not a number
    """
    if score is None:
        return None
    try:
        value = float(score)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-numeric {test.value} {skill} score: {score!r}")
        return None
    if math.isnan(value):
        return None

    if test == LanguageTest.CELPIP:
        if value < 1:
            return 0
        return min(int(value), CELPIP_MAX_LEVEL)

    for threshold, level in CONVERSION_TABLES[test][skill]:
        if value >= threshold:
            return level
    return 0

"""
Assessment Engine - Program Scoring and Eligibility.

Turns a free-form applicant profile into a deterministic score and an
eligibility verdict for a program defined in the rule catalog.

Modules:
    models - Normalized profile, score breakdown and verdict types
    clb - Language test score to CLB conversion tables
    normalizer - Raw profile normalization
    evaluators - Criterion evaluators and gate predicates by kind
    catalog - Rule catalog loading, validation and lookup
    scorer - Point-grid scoring
    eligibility - Hard and informational eligibility gates
    assessment - Combined score, verdict, draw gap and checklist
    cli - Command-line interface entrypoints
"""

from . import models
from . import clb
from . import normalizer
from . import evaluators
from . import catalog
from . import scorer
from . import eligibility
from . import assessment

__version__ = "1.2.0"

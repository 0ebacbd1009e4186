"""
Case Timeline - Stage Machine and Versioned Store.

Tracks an immigration case through draft, submitted, invited, applied and
a terminal approved/rejected outcome with an append-only timeline.

Modules:
    models - Case, timeline, fees, documents, notes and action items
    policy - Per-stage default action items, timeout and retry settings
    machine - Pure stage transitions and case mutations
    store - Per-case locked, versioned mutation with conflict retry
    ledger - Append-only JSONL journal of committed mutations
"""

from . import models
from . import policy
from . import machine
from . import ledger
from . import store

__version__ = "1.2.0"

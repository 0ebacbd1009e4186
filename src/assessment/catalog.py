"""
Rule catalog loading and validation.

The catalog is a JSON document of program entries (criteria, point grids and
eligibility gates) validated against config/schemas/rule_catalog.schema.json.
Published entries are frozen: params become read-only mappings and tuples so
scoring calls can share one entry across threads.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

import jsonschema

from .evaluators import CriterionKind, GateKind, PROFILE_FLAGS
from .models import EducationLevel

logger = logging.getLogger(__name__)


# src/assessment/catalog.py -> repo root
REPO_ROOT = Path(__file__).resolve().parent.parent.parent
DEFAULT_CATALOG_PATH = REPO_ROOT / "config" / "rule_catalog.json"
DEFAULT_SCHEMA_PATH = REPO_ROOT / "config" / "schemas" / "rule_catalog.schema.json"

VALID_CATEGORIES = {"federal", "provincial", "business", "family", "refugee"}

# Params each kind cannot be evaluated without
REQUIRED_CRITERION_PARAMS = {
    CriterionKind.AGE_TABLE: ("rows",),
    CriterionKind.EDUCATION_TABLE: ("points",),
    CriterionKind.LANGUAGE_PER_SKILL: (),
    CriterionKind.WORK_EXPERIENCE_TABLE: ("thresholds",),
    CriterionKind.SPOUSE_FACTORS: ("education", "language_thresholds", "work_thresholds"),
    CriterionKind.SKILL_TRANSFERABILITY: (
        "education_tiers", "education_language", "education_domestic_work",
        "foreign_work_language", "foreign_domestic_work",
    ),
    CriterionKind.JOB_OFFER: ("points_by_teer",),
    CriterionKind.FLAG: ("flag", "points"),
    CriterionKind.DOMESTIC_EDUCATION: ("points",),
    CriterionKind.FRENCH_BONUS: (
        "min_french_clb", "english_threshold", "points_with_english", "points_without_english",
    ),
    CriterionKind.ADAPTABILITY: ("items",),
}

REQUIRED_GATE_PARAMS = {
    GateKind.AGE_RANGE: (),
    GateKind.MIN_LANGUAGE: ("min_clb",),
    GateKind.MIN_EDUCATION: ("min_level",),
    GateKind.EDUCATION_VERIFIED: (),
    GateKind.MIN_WORK_EXPERIENCE: ("min_months",),
    GateKind.FLAG_REQUIRED: ("flag",),
    GateKind.SETTLEMENT_FUNDS: ("table",),
    GateKind.REQUIRED_DOCUMENTS: ("documents",),
}


class CatalogValidationError(Exception):
    """Raised when catalog validation fails."""
    pass


class NotFound(LookupError):
    """Raised when no catalog entry matches a program, country and date."""

    def __init__(self, program: str, country: str, version_date: Optional[date]):
        self.program = program
        self.country = country
        self.version_date = version_date
        super().__init__(
            f"No catalog entry for program '{program}' in {country} "
            f"effective {version_date.isoformat() if version_date else 'today'}"
        )


def freeze(value: Any) -> Any:
    """Recursively convert dicts to read-only mappings and lists to tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    return value


@dataclass(frozen=True)
class Criterion:
    id: str
    description: str
    max_points: int
    kind: CriterionKind
    params: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class EligibilityGate:
    id: str
    description: str
    kind: GateKind
    params: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    is_hard: bool = True


@dataclass(frozen=True)
class RuleCatalogEntry:
    program: str
    country: str
    category: str
    title: str
    effective_from: date
    criteria: Tuple[Criterion, ...]
    gates: Tuple[EligibilityGate, ...]
    effective_to: Optional[date] = None
    pass_mark: Optional[int] = None
    recent_cutoff: Optional[int] = None
    required_documents: Tuple[str, ...] = ()

    @property
    def version(self) -> str:
        return f"{self.program}@{self.effective_from.isoformat()}"

    @property
    def max_total(self) -> int:
        return sum(c.max_points for c in self.criteria)

    def is_effective(self, on: date) -> bool:
        if on < self.effective_from:
            return False
        return self.effective_to is None or on <= self.effective_to


def load_catalog(path: Path = DEFAULT_CATALOG_PATH) -> Dict[str, Any]:
    """
    Load rule catalog from JSON file.

    Args:
        path: Path to rule_catalog.json

    Returns:
        Parsed catalog dictionary

    Raises:
        FileNotFoundError: If catalog file doesn't exist
        json.JSONDecodeError: If catalog is invalid JSON
    """
    with open(path, 'r') as f:
        return json.load(f)


def validate_catalog(
    catalog: Dict[str, Any],
    schema_path: Optional[Path] = DEFAULT_SCHEMA_PATH
) -> bool:
    """
    Validate catalog against schema and internal consistency rules.

    Beyond the JSON Schema the following are checked:
    1. Criterion and gate kinds belong to the supported set
    2. Each kind carries the params it needs
    3. Criterion and gate ids are unique within an entry
    4. Flag params name a known profile flag, education levels are known
    5. effective_to does not precede effective_from
    6. Two entries for the same program and country do not overlap in time

    Args:
        catalog: Parsed catalog dictionary
        schema_path: Path to JSON schema (None skips schema validation)

    Returns:
        True if valid

    Raises:
        CatalogValidationError: If validation fails
    """
    if schema_path is not None and not Path(schema_path).exists():
        logger.warning(f"Schema {schema_path} not found; skipping JSON Schema validation")
    elif schema_path is not None:
        with open(schema_path) as f:
            schema = json.load(f)
        try:
            jsonschema.validate(catalog, schema)
        except jsonschema.ValidationError as e:
            path = ".".join(str(p) for p in e.absolute_path)
            location = f" at {path}" if path else ""
            raise CatalogValidationError(f"Schema validation failed{location}: {e.message}")

    entries = catalog.get("entries")
    if not isinstance(entries, list):
        raise CatalogValidationError("'entries' must be a list")

    windows: Dict[Tuple[str, str], List[Tuple[date, Optional[date]]]] = {}
    for i, entry in enumerate(entries):
        for required in ("program", "country", "effective_from", "criteria", "gates"):
            if required not in entry:
                raise CatalogValidationError(f"Entry {i} missing required field: {required}")
        label = entry["program"]

        category = entry.get("category", "federal")
        if category not in VALID_CATEGORIES:
            raise CatalogValidationError(f"Entry {label}: invalid category '{category}'")

        start = _parse_date(entry["effective_from"], label)
        end = _parse_date(entry["effective_to"], label) if entry.get("effective_to") else None
        if end is not None and end < start:
            raise CatalogValidationError(f"Entry {label}: effective_to precedes effective_from")

        _validate_criteria(label, entry["criteria"])
        _validate_gates(label, entry["gates"])

        key = (entry["program"], entry["country"])
        for other_start, other_end in windows.get(key, []):
            if _overlaps(start, end, other_start, other_end):
                raise CatalogValidationError(
                    f"Entry {label}: effective period overlaps another {label} entry"
                )
        windows.setdefault(key, []).append((start, end))

    return True


def _validate_criteria(label: str, criteria: List[Dict[str, Any]]) -> None:
    seen = set()
    for criterion in criteria:
        cid = criterion.get("id")
        if cid in seen:
            raise CatalogValidationError(f"Entry {label}: duplicate criterion id: {cid}")
        seen.add(cid)

        try:
            kind = CriterionKind(criterion.get("kind"))
        except ValueError:
            raise CatalogValidationError(
                f"Entry {label}: criterion {cid} has unknown kind '{criterion.get('kind')}'"
            )

        max_points = criterion.get("max_points")
        if not isinstance(max_points, int) or max_points < 0:
            raise CatalogValidationError(
                f"Entry {label}: criterion {cid} max_points must be a non-negative integer"
            )

        params = criterion.get("params", {})
        _require_params(label, cid, params, REQUIRED_CRITERION_PARAMS[kind])
        if kind == CriterionKind.LANGUAGE_PER_SKILL and "thresholds" not in params:
            _require_params(label, cid, params, ("all_skills_min", "all_skills_points"))
        if kind == CriterionKind.FLAG and params["flag"] not in PROFILE_FLAGS:
            raise CatalogValidationError(f"Entry {label}: criterion {cid} flag '{params['flag']}' unknown")
        if kind in (CriterionKind.EDUCATION_TABLE, CriterionKind.DOMESTIC_EDUCATION):
            _check_levels(label, cid, params["points"].keys())
            ceiling = params.get("unverified_ceiling")
            if ceiling:
                _check_levels(label, cid, [ceiling])


def _validate_gates(label: str, gates: List[Dict[str, Any]]) -> None:
    seen = set()
    for gate in gates:
        gid = gate.get("id")
        if gid in seen:
            raise CatalogValidationError(f"Entry {label}: duplicate gate id: {gid}")
        seen.add(gid)

        try:
            kind = GateKind(gate.get("kind"))
        except ValueError:
            raise CatalogValidationError(
                f"Entry {label}: gate {gid} has unknown kind '{gate.get('kind')}'"
            )

        if "is_hard" in gate and not isinstance(gate["is_hard"], bool):
            raise CatalogValidationError(f"Entry {label}: gate {gid} 'is_hard' must be a boolean")

        params = gate.get("params", {})
        _require_params(label, gid, params, REQUIRED_GATE_PARAMS[kind])
        if kind == GateKind.FLAG_REQUIRED and params["flag"] not in PROFILE_FLAGS:
            raise CatalogValidationError(f"Entry {label}: gate {gid} flag '{params['flag']}' unknown")
        if kind == GateKind.MIN_EDUCATION:
            _check_levels(label, gid, [params["min_level"]])


def _require_params(label: str, item_id: str, params: Dict[str, Any], names: Tuple[str, ...]) -> None:
    missing = [n for n in names if n not in params]
    if missing:
        raise CatalogValidationError(
            f"Entry {label}: {item_id} missing params: {', '.join(missing)}"
        )


def _check_levels(label: str, item_id: str, levels) -> None:
    known = {lvl.value for lvl in EducationLevel}
    unknown = sorted(set(levels) - known)
    if unknown:
        raise CatalogValidationError(
            f"Entry {label}: {item_id} references unknown education levels {unknown}"
        )


def _parse_date(value: str, label: str) -> date:
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise CatalogValidationError(f"Entry {label}: invalid date '{value}'")


def _overlaps(a_start: date, a_end: Optional[date], b_start: date, b_end: Optional[date]) -> bool:
    a_end = a_end or date.max
    b_end = b_end or date.max
    return a_start <= b_end and b_start <= a_end


def build_entry(entry: Dict[str, Any]) -> RuleCatalogEntry:
    """Build a frozen RuleCatalogEntry from a validated catalog dictionary entry."""
    criteria = tuple(
        Criterion(
            id=c["id"],
            description=c.get("description", ""),
            max_points=int(c["max_points"]),
            kind=CriterionKind(c["kind"]),
            params=freeze(c.get("params", {})),
        )
        for c in entry["criteria"]
    )
    gates = tuple(
        EligibilityGate(
            id=g["id"],
            description=g.get("description", ""),
            kind=GateKind(g["kind"]),
            params=freeze(g.get("params", {})),
            is_hard=g.get("is_hard", True),
        )
        for g in entry["gates"]
    )
    return RuleCatalogEntry(
        program=entry["program"],
        country=entry["country"],
        category=entry.get("category", "federal"),
        title=entry.get("title", entry["program"]),
        effective_from=date.fromisoformat(entry["effective_from"]),
        effective_to=date.fromisoformat(entry["effective_to"]) if entry.get("effective_to") else None,
        criteria=criteria,
        gates=gates,
        pass_mark=entry.get("pass_mark"),
        recent_cutoff=entry.get("recent_cutoff"),
        required_documents=tuple(entry.get("required_documents", ())),
    )


class RuleCatalog:
    """Read-only collection of published catalog entries."""

    def __init__(self, entries: List[RuleCatalogEntry], catalog_version: str = "1.0.0"):
        self._entries = tuple(entries)
        self.catalog_version = catalog_version

    @classmethod
    def from_dict(cls, catalog: Dict[str, Any], schema_path: Optional[Path] = DEFAULT_SCHEMA_PATH) -> "RuleCatalog":
        validate_catalog(catalog, schema_path)
        entries = [build_entry(e) for e in catalog["entries"]]
        return cls(entries, catalog.get("catalog_version", "1.0.0"))

    @classmethod
    def load(cls, path: Path = DEFAULT_CATALOG_PATH, schema_path: Optional[Path] = DEFAULT_SCHEMA_PATH) -> "RuleCatalog":
        catalog = cls.from_dict(load_catalog(path), schema_path)
        logger.info(f"Loaded rule catalog {catalog.catalog_version} from {path} ({len(catalog)} entries)")
        return catalog

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> Tuple[RuleCatalogEntry, ...]:
        return self._entries

    def get_entry(self, program: str, country: str = "Canada", version_date: Optional[date] = None) -> RuleCatalogEntry:
        """
        Get the entry in force for a program on a date.

        Args:
            program: Program identifier, e.g. "express_entry_crs"
            country: Destination country
            version_date: Date the rules must be effective on (default: today)

        Returns:
            The matching entry with the latest effective_from

        Raises:
            NotFound: If no entry is effective on that date
        """
        on = version_date or date.today()
        matches = [
            e for e in self._entries
            if e.program == program and e.country.lower() == country.lower() and e.is_effective(on)
        ]
        if not matches:
            raise NotFound(program, country, version_date)
        return max(matches, key=lambda e: e.effective_from)

    def list_entries(self, country: Optional[str] = None, category: Optional[str] = None) -> List[RuleCatalogEntry]:
        """
        List entries, optionally filtered by country and category.

        Args:
            country: Optional country filter
            category: Optional category filter (e.g., "federal", "provincial")

        Returns:
            List of matching entries in catalog order
        """
        entries = list(self._entries)
        if country is not None:
            entries = [e for e in entries if e.country.lower() == country.lower()]
        if category is not None:
            entries = [e for e in entries if e.category == category]
        return entries

"""
Append-only JSONL journal for case mutations.

Each committed mutation is written as one record (case id, version,
operation, actor, timestamp and the resulting case snapshot) before the
new version becomes visible in the store.
"""

import json
import os
import fcntl
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .models import Case


JOURNAL_DIR = Path("cases/journal")
EVENTS_FILE = "case_events.jsonl"


class LedgerError(Exception):
    """Raised when the case journal cannot be written, read or parsed."""
    pass


def ensure_journal_dir(journal_dir: Path = JOURNAL_DIR) -> None:
    """Create journal directory if it doesn't exist."""
    journal_dir.mkdir(parents=True, exist_ok=True)


def append_record(file_path: Path, record: Dict[str, Any]) -> None:
    """
    Append one journal record as a JSON line.

    The record is serialized before the file is opened, so an unserializable
    case snapshot never leaves a partial line behind. Writers on the same
    journal are serialized with an exclusive flock and the line is fsynced
    before returning.

    Raises:
        LedgerError: If the snapshot cannot be serialized or the journal
            cannot be written
    """
    try:
        line = json.dumps(record, ensure_ascii=False, sort_keys=True) + "\n"
    except (TypeError, ValueError) as e:
        raise LedgerError(f"Cannot serialize journal record for {record.get('case_id', '?')}: {e}")

    try:
        ensure_journal_dir(file_path.parent)
        with open(file_path, "a") as journal:
            fcntl.flock(journal.fileno(), fcntl.LOCK_EX)
            try:
                journal.write(line)
                journal.flush()
                os.fsync(journal.fileno())
            finally:
                fcntl.flock(journal.fileno(), fcntl.LOCK_UN)
    except OSError as e:
        raise LedgerError(f"Cannot write case journal {file_path}: {e}")


def read_records(
    file_path: Path,
    filter_fn: Optional[Callable[[Dict[str, Any]], bool]] = None
) -> List[Dict[str, Any]]:
    """
    Replay a case journal in write order.

    A missing journal means nothing has been committed yet and yields an
    empty list. Blank lines are skipped; any other unparsable line means the
    journal is corrupt and replay stops.

    Raises:
        LedgerError: If the journal cannot be read or a line is not JSON
    """
    if not file_path.exists():
        return []

    try:
        with open(file_path) as journal:
            lines = journal.readlines()
    except OSError as e:
        raise LedgerError(f"Cannot read case journal {file_path}: {e}")

    records = []
    for line_num, line in enumerate(lines, 1):
        if not line.strip():
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError as e:
            raise LedgerError(f"Corrupt case journal {file_path} at line {line_num}: {e}")
        if filter_fn is None or filter_fn(record):
            records.append(record)
    return records



def append_case_event(
    case: Case,
    operation: str,
    actor: Optional[str] = None,
    journal_dir: Path = JOURNAL_DIR,
    recorded_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Journal a committed case mutation.

    Args:
        case: Case as it will be after the mutation
        operation: Mutation name, e.g. "transition" or "add_payment"
        actor: Who performed it, when known
        journal_dir: Directory containing journal files
        recorded_at: Record timestamp (default: now, UTC)

    Returns:
        The record written
    """
    record = {
        "record_type": "case_event",
        "case_id": case.case_id,
        "version": case.version,
        "operation": operation,
        "actor": actor,
        "stage": case.current_stage.value,
        "recorded_at": (recorded_at or datetime.now(timezone.utc)).isoformat(),
        "case": case.to_dict(),
    }
    append_record(journal_dir / EVENTS_FILE, record)
    return record


def get_case_events(
    journal_dir: Path = JOURNAL_DIR,
    case_id: Optional[str] = None,
    operation: Optional[str] = None
) -> List[Dict[str, Any]]:
    """
    Get journaled case events in write order, optionally filtered.

    Args:
        journal_dir: Directory containing journal files
        case_id: Optional case ID filter
        operation: Optional operation filter

    Returns:
        List of matching records
    """
    def filter_fn(r: Dict[str, Any]) -> bool:
        if case_id and r.get("case_id") != case_id:
            return False
        if operation and r.get("operation") != operation:
            return False
        return True

    return read_records(journal_dir / EVENTS_FILE, filter_fn)


def get_latest_snapshot(case_id: str, journal_dir: Path = JOURNAL_DIR) -> Optional[Dict[str, Any]]:
    """
    Get the most recent journaled snapshot of a case.

    Args:
        case_id: Case identifier
        journal_dir: Directory containing journal files

    Returns:
        Case dictionary of the highest version, or None if never journaled
    """
    events = get_case_events(journal_dir, case_id=case_id)
    if not events:
        return None
    return max(events, key=lambda r: r.get("version", 0))["case"]

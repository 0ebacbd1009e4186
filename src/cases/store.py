"""
In-memory case store with per-case serialized mutation.

Each case has its own lock, so mutations of different cases proceed in
parallel while mutations of one case are applied one at a time. Callers pass
the version they last read; a stale version is rejected with
ConcurrentModification carrying the authoritative case, and
``retry_on_conflict`` re-runs an operation against it.
"""

import logging
import threading
import time
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

from . import ledger
from . import machine
from .machine import CaseError, CaseValidationError, utc_now
from .models import Case, Stage
from .policy import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_INITIAL_BACKOFF_SECONDS,
    DEFAULT_MAX_RETRIES,
    CasePolicy,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConcurrentModification(CaseError):
    """Raised when expected_version does not match the stored version."""
    pass


class MutationTimeout(CaseError):
    """Raised when a mutation cannot complete within its timeout; nothing is stored."""
    pass


class CaseNotFoundError(CaseError):
    """Raised when a case id is not in the store."""
    pass


class CaseStore:
    """
    Versioned case storage.

    Args:
        policy: Case policy (default action items, lock timeout)
        journal_dir: When set, every commit is journaled here before it is visible
        clock: Callable returning the current aware datetime
        timer: Monotonic timer used for mutation deadlines
    """

    def __init__(
        self,
        policy: Optional[CasePolicy] = None,
        journal_dir: Optional[Path] = None,
        clock: Optional[Callable[[], Any]] = None,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.policy = policy or CasePolicy.default()
        self.journal_dir = Path(journal_dir) if journal_dir else None
        self._clock = clock or utc_now
        self._timer = timer
        self._cases: Dict[str, Case] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    # ==================== Reads ====================

    def get(self, case_id: str) -> Case:
        case = self._cases.get(case_id)
        if case is None:
            raise CaseNotFoundError(f"Case not found: {case_id}")
        return case

    def list_cases(
        self,
        stage: Optional[Stage] = None,
        consultant_id: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> List[Case]:
        cases = list(self._cases.values())
        if stage is not None:
            cases = [c for c in cases if c.current_stage == Stage(stage)]
        if consultant_id is not None:
            cases = [c for c in cases if c.consultant_id == consultant_id]
        if client_id is not None:
            cases = [c for c in cases if c.client_id == client_id]
        return sorted(cases, key=lambda c: c.created_at)

    def __len__(self) -> int:
        return len(self._cases)

    # ==================== Writes ====================

    def create_case(
        self,
        client_id: str,
        consultant_id: str,
        program: Any,
        case_id: Optional[str] = None,
    ) -> Case:
        """
        Create a draft case at version 1.

        Raises:
            CaseValidationError: If an identifier is empty, the program is
                unknown, or the case id is already taken
        """
        case_id = case_id or uuid.uuid4().hex
        case = machine.new_case(case_id, client_id, consultant_id, program,
                                now=self._clock(), policy=self.policy)
        case = replace(case, version=1)

        with self._registry_lock:
            if case_id in self._cases:
                raise CaseValidationError(f"Case already exists: {case_id}", self._cases[case_id])
            if self.journal_dir is not None:
                ledger.append_case_event(case, "create", consultant_id, self.journal_dir)
            self._locks[case_id] = threading.Lock()
            self._cases[case_id] = case

        logger.info(f"Created case {case_id} ({case.program.value}) for client {client_id}")
        return case

    def transition(
        self,
        case_id: str,
        target: Any,
        actor: str,
        description: str = "",
        expected_version: Optional[int] = None,
        next_steps: Optional[List[Any]] = None,
        timeout: Optional[float] = None,
    ) -> Case:
        return self._mutate(
            case_id, expected_version, "transition", actor, timeout,
            lambda c: machine.transition(c, target, actor, description, next_steps,
                                         now=self._clock(), policy=self.policy),
        )

    def correct_stage(
        self,
        case_id: str,
        actor: str,
        reason: str,
        expected_version: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> Case:
        return self._mutate(
            case_id, expected_version, "correct_stage", actor, timeout,
            lambda c: machine.correct_stage(c, actor, reason, now=self._clock(), policy=self.policy),
        )

    def add_fee(self, case_id: str, payload: Dict[str, Any],
                expected_version: Optional[int] = None, timeout: Optional[float] = None) -> Case:
        """Payload: category, amount, optional description."""
        def apply(c: Case) -> Case:
            _require_keys(payload, ("category", "amount"), c)
            return machine.add_fee(c, payload["category"], payload["amount"], payload.get("description", ""))
        return self._mutate(case_id, expected_version, "add_fee", payload.get("actor"), timeout, apply)

    def add_payment(self, case_id: str, payload: Dict[str, Any],
                    expected_version: Optional[int] = None, timeout: Optional[float] = None) -> Case:
        """Payload: amount, optional method and reference."""
        def apply(c: Case) -> Case:
            _require_keys(payload, ("amount",), c)
            return machine.add_payment(c, payload["amount"], payload.get("method", ""),
                                       payload.get("reference"), now=self._clock())
        return self._mutate(case_id, expected_version, "add_payment", payload.get("actor"), timeout, apply)

    def add_document(self, case_id: str, payload: Dict[str, Any],
                     expected_version: Optional[int] = None, timeout: Optional[float] = None) -> Case:
        """Payload: document_type, reference, added_by."""
        def apply(c: Case) -> Case:
            _require_keys(payload, ("document_type", "reference", "added_by"), c)
            return machine.add_document(c, payload["document_type"], payload["reference"],
                                        payload["added_by"], now=self._clock())
        return self._mutate(case_id, expected_version, "add_document", payload.get("added_by"), timeout, apply)

    def add_note(self, case_id: str, payload: Dict[str, Any],
                 expected_version: Optional[int] = None, timeout: Optional[float] = None) -> Case:
        """Payload: author, content, optional is_private."""
        def apply(c: Case) -> Case:
            _require_keys(payload, ("author", "content"), c)
            return machine.add_note(c, payload["author"], payload["content"],
                                    payload.get("is_private", False), now=self._clock())
        return self._mutate(case_id, expected_version, "add_note", payload.get("author"), timeout, apply)

    def set_action_status(self, case_id: str, index: int, status: Any, actor: Optional[str] = None,
                          expected_version: Optional[int] = None, timeout: Optional[float] = None) -> Case:
        return self._mutate(
            case_id, expected_version, "set_action_status", actor, timeout,
            lambda c: machine.set_action_status(c, index, status),
        )

    def retry_on_conflict(self, operation: Callable[[Case], T], case: Case,
                          sleep: Callable[[float], None] = time.sleep) -> T:
        """
        Run ``operation(case)`` with conflict retries configured by this
        store's policy (max_retries, initial_backoff_seconds, backoff_multiplier).
        """
        return retry_on_conflict(
            operation,
            case,
            attempts=self.policy.max_retries,
            initial_backoff=self.policy.initial_backoff_seconds,
            multiplier=self.policy.backoff_multiplier,
            sleep=sleep,
        )

    # ==================== Internals ====================

    def _lock_for(self, case_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(case_id)
        if lock is None:
            raise CaseNotFoundError(f"Case not found: {case_id}")
        return lock

    def _mutate(
        self,
        case_id: str,
        expected_version: Optional[int],
        operation: str,
        actor: Optional[str],
        timeout: Optional[float],
        apply: Callable[[Case], Case],
    ) -> Case:
        """
        Apply one mutation under the case lock.

        The version check, the mutation and the journal write all happen
        while holding the lock; the new version is stored last.

        Raises:
            CaseNotFoundError: Unknown case id
            MutationTimeout: Lock not acquired, or deadline passed before commit
            ConcurrentModification: expected_version is stale
            CaseError: Any rejection from the stage machine
        """
        lock = self._lock_for(case_id)
        timeout = self.policy.lock_timeout_seconds if timeout is None else max(0.0, timeout)
        deadline = self._timer() + timeout

        if not lock.acquire(timeout=timeout):
            logger.warning(f"Case {case_id}: {operation} timed out waiting for lock after {timeout}s")
            raise MutationTimeout(
                f"Timed out after {timeout}s waiting for case {case_id}", self._cases[case_id]
            )
        try:
            current = self._cases[case_id]
            if expected_version is not None and expected_version != current.version:
                logger.info(
                    f"Case {case_id}: {operation} rejected, expected version "
                    f"{expected_version} but found {current.version}"
                )
                raise ConcurrentModification(
                    f"Case {case_id} is at version {current.version}, not {expected_version}", current
                )

            updated = replace(apply(current), version=current.version + 1)

            if self._timer() > deadline:
                logger.warning(f"Case {case_id}: {operation} passed its deadline, not committed")
                raise MutationTimeout(f"Deadline passed before committing {operation} on {case_id}", current)

            if self.journal_dir is not None:
                ledger.append_case_event(updated, operation, actor, self.journal_dir)
            self._cases[case_id] = updated
        finally:
            lock.release()

        logger.info(f"Case {case_id}: {operation} committed at version {updated.version} "
                    f"(stage {updated.current_stage.value})")
        return updated


def _require_keys(payload: Dict[str, Any], keys, case: Case) -> None:
    missing = [k for k in keys if k not in payload]
    if missing:
        raise CaseValidationError(f"Payload missing fields: {', '.join(missing)}", case)


def retry_on_conflict(
    operation: Callable[[Case], T],
    case: Case,
    attempts: int = DEFAULT_MAX_RETRIES,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF_SECONDS,
    multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run ``operation(case)``, re-running it with the authoritative case after
    a ConcurrentModification, with exponential backoff.

    Args:
        operation: Callable that mutates using ``case.version`` as expected_version
        case: Snapshot the caller last read
        attempts: Total attempts including the first
        initial_backoff: Seconds before the first retry
        multiplier: Backoff growth per retry
        sleep: Sleep function

    Returns:
        Whatever the operation returns

    Raises:
        ConcurrentModification: If every attempt conflicts
    """
    backoff = initial_backoff
    for attempt in range(1, attempts + 1):
        try:
            return operation(case)
        except ConcurrentModification as e:
            if attempt >= attempts:
                raise
            logger.warning(
                f"Retry {attempt}/{attempts - 1} for case {e.case.case_id} in {backoff}s: {e}"
            )
            case = e.case
            sleep(backoff)
            backoff *= multiplier
    raise ValueError("attempts must be at least 1")

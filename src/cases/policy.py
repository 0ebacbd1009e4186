"""
Case policy: default action items per stage plus timeout and retry settings.

Built-in defaults apply when no policy file is given; config/case_policy.yaml
overrides them stage by stage.
"""

import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from ..config import settings
from .models import ActionItem, Priority, Stage


DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_BACKOFF_SECONDS = 0.05
DEFAULT_BACKOFF_MULTIPLIER = 2


@dataclass(frozen=True)
class ActionTemplate:
    title: str
    description: str = ""
    due_in_days: Optional[int] = None
    priority: Priority = Priority.MEDIUM
    assigned_to: Optional[str] = None

    def instantiate(self, now: datetime) -> ActionItem:
        due = now + timedelta(days=self.due_in_days) if self.due_in_days is not None else None
        return ActionItem(
            title=self.title,
            description=self.description,
            due_date=due,
            assigned_to=self.assigned_to,
            priority=self.priority,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActionTemplate":
        return cls(
            title=data["title"],
            description=data.get("description", ""),
            due_in_days=data.get("due_in_days"),
            priority=Priority(data.get("priority", Priority.MEDIUM.value)),
            assigned_to=data.get("assigned_to"),
        )


DEFAULT_STAGE_ACTIONS: Dict[Stage, Tuple[ActionTemplate, ...]] = {
    Stage.DRAFT: (
        ActionTemplate("Complete client profile", "Collect personal details, language results, "
                       "education and work history", 14, Priority.MEDIUM, "consultant"),
    ),
    Stage.SUBMITTED: (
        ActionTemplate("Monitor invitation rounds", "Track draws and notify the client if the "
                       "profile is invited", 90, Priority.MEDIUM, "consultant"),
    ),
    Stage.INVITED: (
        ActionTemplate("Submit application", "Upload all supporting documents and submit the "
                       "permanent residence application", 60, Priority.HIGH, "consultant"),
    ),
    Stage.APPLIED: (
        ActionTemplate("Provide biometrics", "Book and attend the biometrics appointment",
                       30, Priority.HIGH, "client"),
        ActionTemplate("Complete medical exam", "Attend an exam with a panel physician",
                       30, Priority.HIGH, "client"),
    ),
    Stage.APPROVED: (
        ActionTemplate("Prepare for landing", "Review confirmation of permanent residence and "
                       "plan arrival", 90, Priority.MEDIUM, "client"),
    ),
    Stage.REJECTED: (),
}


@dataclass(frozen=True)
class CasePolicy:
    stage_actions: Mapping[Stage, Tuple[ActionTemplate, ...]]
    lock_timeout_seconds: float = settings.DEFAULT_LOCK_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    initial_backoff_seconds: float = DEFAULT_INITIAL_BACKOFF_SECONDS
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER

    def actions_for(self, stage: Stage, now: datetime) -> Tuple[ActionItem, ...]:
        """Default action items for a stage, due relative to ``now``."""
        return tuple(t.instantiate(now) for t in self.stage_actions.get(stage, ()))

    @classmethod
    def default(cls) -> "CasePolicy":
        return cls(stage_actions=MappingProxyType(dict(DEFAULT_STAGE_ACTIONS)))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CasePolicy":
        """
        Build a policy from a parsed case_policy.yaml.

        Stages missing from the file keep the built-in defaults.
        """
        actions = dict(DEFAULT_STAGE_ACTIONS)
        for stage_name, templates in (data.get("stages") or {}).items():
            actions[Stage(stage_name)] = tuple(
                ActionTemplate.from_dict(t) for t in (templates or [])
            )

        retry = data.get("retry") or {}
        return cls(
            stage_actions=MappingProxyType(actions),
            lock_timeout_seconds=float(data.get("lock_timeout_seconds", settings.DEFAULT_LOCK_TIMEOUT_SECONDS)),
            max_retries=int(retry.get("max_attempts", DEFAULT_MAX_RETRIES)),
            initial_backoff_seconds=float(retry.get("initial_backoff_seconds", DEFAULT_INITIAL_BACKOFF_SECONDS)),
            backoff_multiplier=float(retry.get("backoff_multiplier", DEFAULT_BACKOFF_MULTIPLIER)),
        )


def load_policy(path: Optional[Path] = None) -> CasePolicy:
    """
    Load the case policy, with environment overrides for timeout and retries.

    Args:
        path: Policy YAML (default: IMMIGRATION_CASE_POLICY_PATH or config/case_policy.yaml)

    Returns:
        CasePolicy

    Raises:
        FileNotFoundError: If the policy file doesn't exist
        ConfigError: If the file or an environment override is malformed
    """
    data = settings.load_case_policy(path)
    if os.environ.get("CASE_LOCK_TIMEOUT_SECONDS"):
        data["lock_timeout_seconds"] = settings.get_lock_timeout()
    if os.environ.get("CASE_RETRY_ATTEMPTS"):
        data.setdefault("retry", {})["max_attempts"] = settings.get_retry_attempts()
    return CasePolicy.from_dict(data)

"""
Runtime settings for the assessment core.

Usage:
    from src.config.settings import get_catalog_path, load_case_policy

    catalog_path = get_catalog_path()
    policy = load_case_policy()

Environment variables (read from .env when present):
    IMMIGRATION_CATALOG_PATH      - rule catalog JSON
    IMMIGRATION_CASE_POLICY_PATH  - case policy YAML
    CASE_LOCK_TIMEOUT_SECONDS     - default case mutation timeout
    CASE_RETRY_ATTEMPTS           - default retry_on_conflict attempts
    IMMIGRATION_LOG_LEVEL         - root log level for CLI entry points

CLI check:
    python -m src.config.settings --check
"""

import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

# Find .env file - walk up from this file to repo root
_repo_root = Path(__file__).resolve().parent.parent.parent  # src/config/settings.py -> repo root
_env_path = _repo_root / ".env"

if _env_path.exists():
    load_dotenv(_env_path)
else:
    load_dotenv()


DEFAULT_CATALOG_PATH = _repo_root / "config" / "rule_catalog.json"
DEFAULT_CASE_POLICY_PATH = _repo_root / "config" / "case_policy.yaml"
DEFAULT_LOCK_TIMEOUT_SECONDS = 5.0
DEFAULT_RETRY_ATTEMPTS = 3


class ConfigError(Exception):
    """Raised when a setting is present but malformed."""
    pass


def get_catalog_path() -> Path:
    value = os.environ.get("IMMIGRATION_CATALOG_PATH", "").strip()
    return Path(value) if value else DEFAULT_CATALOG_PATH


def get_case_policy_path() -> Path:
    value = os.environ.get("IMMIGRATION_CASE_POLICY_PATH", "").strip()
    return Path(value) if value else DEFAULT_CASE_POLICY_PATH


def get_log_level() -> str:
    return os.environ.get("IMMIGRATION_LOG_LEVEL", "").strip() or "INFO"


def get_lock_timeout() -> float:
    """
    Default timeout for case mutations.

    Returns:
        float: Seconds to wait for a case lock

    Raises:
        ConfigError: If CASE_LOCK_TIMEOUT_SECONDS is not a positive number
    """
    return _positive_number("CASE_LOCK_TIMEOUT_SECONDS", DEFAULT_LOCK_TIMEOUT_SECONDS, float)


def get_retry_attempts() -> int:
    return int(_positive_number("CASE_RETRY_ATTEMPTS", DEFAULT_RETRY_ATTEMPTS, int))


def _positive_number(name: str, default, cast):
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {raw!r}")
    return value


def load_case_policy(path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load the case policy YAML (per-stage default action items, timeouts, retry).

    Args:
        path: Policy file (default: IMMIGRATION_CASE_POLICY_PATH or config/case_policy.yaml)

    Returns:
        Parsed policy dictionary

    Raises:
        FileNotFoundError: If the policy file doesn't exist
        ConfigError: If the file is not a YAML mapping
    """
    path = Path(path) if path else get_case_policy_path()
    with open(path) as f:
        policy = yaml.safe_load(f) or {}
    if not isinstance(policy, dict):
        raise ConfigError(f"Case policy {path} must be a mapping")
    return policy


def check_settings() -> Dict[str, str]:
    """
    Check which settings resolve.

    Returns:
        dict: Status of each setting ("OK", "MISSING" or an error message)
    """
    status = {}
    status["IMMIGRATION_CATALOG_PATH"] = "OK" if get_catalog_path().exists() else "MISSING"
    status["IMMIGRATION_CASE_POLICY_PATH"] = "OK" if get_case_policy_path().exists() else "MISSING"
    for name, getter in (("CASE_LOCK_TIMEOUT_SECONDS", get_lock_timeout),
                         ("CASE_RETRY_ATTEMPTS", get_retry_attempts)):
        try:
            getter()
            status[name] = "OK"
        except ConfigError as e:
            status[name] = str(e)
    return status


def _cli_check():
    """CLI entry point for --check flag."""
    status = check_settings()
    all_ok = True

    for name, setting_status in status.items():
        print(f"{name}: {setting_status}")
        if setting_status != "OK":
            all_ok = False

    if not all_ok:
        print("\nCopy .env.example to .env and point the paths at existing files.")
        sys.exit(1)
    else:
        print("\nAll settings resolved.")
        sys.exit(0)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(
        description="Check assessment core configuration"
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Check if settings resolve"
    )

    args = parser.parse_args()

    if args.check:
        _cli_check()
    else:
        parser.print_help()

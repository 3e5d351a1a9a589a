"""
Configuration module for the Weekly Meal Plan Refresh Engine
============================================================

This module centralizes all configuration for the meal plan service that
integrates:
- OpenRouter API (cloud LLM that writes the weekly/daily meal schedule)
- huey (background task queue running plan generation)
- SQLite (plan records with refresh/job bookkeeping)

CONFIGURATION:
- config.yaml: Tunable settings (LLM model, timeouts, refresh windows)
- data/secrets.yaml: Credentials (openrouter API key)

Usage:
    from config import CHAT_MODEL, PLAN_DB_PATH, get_config_value

    timeout = get_config_value("llm", "request_timeout", 25)

SETUP REQUIRED:
    1. Copy config.yaml.example to data/config.yaml (done automatically on first run)
    2. Set OPENROUTER_API_KEY (env var or data/secrets.yaml)
"""

import os
import logging
import logging.handlers
from pathlib import Path
from typing import Tuple, Optional, Dict, Any

import yaml


# =============================================================================
# USER CONFIGURATION LOADING
# =============================================================================

# Project root directory (where this file lives)
PROJECT_ROOT = Path(__file__).parent

# Data directory - THE canonical location for all runtime data.
# MEAL_PLANNER_DATA_DIR overrides it (containers, test runs).
DATA_DIR = Path(os.getenv("MEAL_PLANNER_DATA_DIR", str(PROJECT_ROOT / "data")))

CONFIG_PATH = DATA_DIR / "config.yaml"
SECRETS_PATH = DATA_DIR / "secrets.yaml"
EXAMPLE_CONFIG_PATH = PROJECT_ROOT / "config.yaml.example"


def _load_user_config() -> Dict[str, Any]:
    """
    Load user configuration from data/config.yaml.

    A missing config.yaml is created from config.yaml.example so a fresh
    checkout can boot. Anything else that is wrong fails immediately.

    Returns:
        Dict containing user configuration

    Raises:
        FileNotFoundError: If neither config.yaml nor the example exist
        ValueError: If YAML is invalid or missing required fields
    """
    config_path = CONFIG_PATH

    if not config_path.exists():
        if EXAMPLE_CONFIG_PATH.exists():
            import shutil
            DATA_DIR.mkdir(parents=True, exist_ok=True)
            shutil.copy2(EXAMPLE_CONFIG_PATH, config_path)
            print(f"[config] Created {config_path} from config.yaml.example")
        else:
            raise FileNotFoundError(
                f"\n{'='*60}\n"
                f"ERROR: config.yaml not found\n"
                f"{'='*60}\n"
                f"Expected location: {config_path}\n"
                f"Also missing: {EXAMPLE_CONFIG_PATH}\n"
                f"Please reinstall or restore config.yaml.example.\n"
                f"{'='*60}"
            )

    try:
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(
            f"\n{'='*60}\n"
            f"ERROR: config.yaml has invalid YAML syntax\n"
            f"{'='*60}\n"
            f"File: {config_path}\n"
            f"Error: {e}\n"
            f"{'='*60}"
        ) from e

    if config is None:
        raise ValueError(
            f"\n{'='*60}\n"
            f"ERROR: config.yaml is empty\n"
            f"{'='*60}\n"
            f"File: {config_path}\n"
            f"Please copy config.yaml.example and customize it.\n"
            f"{'='*60}"
        )

    required_sections = ["llm", "planner"]
    missing_sections = [s for s in required_sections if s not in config]
    if missing_sections:
        raise ValueError(
            f"\n{'='*60}\n"
            f"ERROR: config.yaml missing required sections\n"
            f"{'='*60}\n"
            f"Missing: {missing_sections}\n"
            f"Required sections: {required_sections}\n"
            f"{'='*60}"
        )

    required_fields = [
        ("llm", "chat_model"),
    ]

    missing_fields = []
    for section, field in required_fields:
        if field not in (config.get(section) or {}):
            missing_fields.append(f"{section}.{field}")

    if missing_fields:
        raise ValueError(
            f"\n{'='*60}\n"
            f"ERROR: config.yaml missing required fields\n"
            f"{'='*60}\n"
            f"Missing: {missing_fields}\n"
            f"{'='*60}"
        )

    return config


# Load user config at module initialization (FAIL FAST)
USER_CONFIG = _load_user_config()

# Use standard logging for config.py (foundational module)
logger = logging.getLogger(__name__)


def get_config_value(section: str, key: str, default=None):
    """
    Read a single value from USER_CONFIG with a fallback.

    Args:
        section: Top-level section name (e.g. "llm")
        key: Key inside the section
        default: Returned when the section or key is missing

    Returns:
        The configured value or default
    """
    section_data = USER_CONFIG.get(section) or {}
    if not isinstance(section_data, dict):
        return default
    value = section_data.get(key)
    return default if value is None else value


# =============================================================================
# UNIFIED SECRETS MANAGEMENT
# =============================================================================
"""
Centralized credential storage in data/secrets.yaml.
Environment variables take priority over file-based secrets.
"""


def load_secrets() -> Dict[str, Any]:
    """
    Load secrets from data/secrets.yaml.

    Returns:
        dict with key 'openrouter_api_key' (may be None)
        Returns empty dict if file doesn't exist
    """
    if not SECRETS_PATH.exists():
        return {}

    try:
        with open(SECRETS_PATH, 'r') as f:
            data = yaml.safe_load(f) or {}

        return {
            'openrouter_api_key': (data.get('openrouter') or {}).get('api_key'),
        }
    except Exception as e:
        logger.warning(f"⚠️ Failed to load secrets from {SECRETS_PATH}: {e}")
        return {}


def save_secrets(openrouter_api_key: str = None) -> None:
    """
    Save secrets to data/secrets.yaml.

    Only updates the provided values, preserving existing ones.

    Args:
        openrouter_api_key: OpenRouter API key (optional)
    """
    DATA_DIR.mkdir(parents=True, exist_ok=True)

    existing = {}
    if SECRETS_PATH.exists():
        with open(SECRETS_PATH, 'r') as f:
            existing = yaml.safe_load(f) or {}

    if 'openrouter' not in existing:
        existing['openrouter'] = {}

    if openrouter_api_key is not None:
        existing['openrouter']['api_key'] = openrouter_api_key

    with open(SECRETS_PATH, 'w') as f:
        yaml.safe_dump(existing, f, default_flow_style=False)

    logger.info(f"✅ Secrets saved to {SECRETS_PATH}")


def get_credential_status() -> Dict[str, Dict[str, Any]]:
    """
    Get status of configured credentials.

    Returns:
        {'openrouter_api_key': {'configured': bool, 'source': 'env'|'file'|None, 'preview': str|None}}
    """
    secrets = load_secrets()

    env_value = os.getenv("OPENROUTER_API_KEY", "").strip()
    file_value = secrets.get('openrouter_api_key')

    if env_value:
        status = {
            'configured': True,
            'source': 'env',
            'preview': f"••••••••{env_value[-5:]}" if len(env_value) >= 5 else "••••••••"
        }
    elif file_value:
        status = {
            'configured': True,
            'source': 'file',
            'preview': f"••••••••{file_value[-5:]}" if len(file_value) >= 5 else "••••••••"
        }
    else:
        status = {'configured': False, 'source': None, 'preview': None}

    return {'openrouter_api_key': status}


# =============================================================================
# CHAT LLM CONFIGURATION
# =============================================================================
"""
OpenRouter provides cloud LLM inference for meal plan generation,
through its OpenAI-compatible chat completions endpoint.
"""

CHAT_API_URL = os.getenv("CHAT_API_URL", "https://openrouter.ai/api/v1")
CHAT_MODEL = USER_CONFIG["llm"]["chat_model"]


def load_chat_api_key() -> Optional[str]:
    """
    Load OpenRouter API key from environment variable or secrets file.

    Priority order (ENV VAR IS SOURCE OF TRUTH):
    1. Environment variable OPENROUTER_API_KEY (preferred)
    2. File: data/secrets.yaml (fallback)

    Read on every call so a key added at runtime is picked up by the
    worker without a restart.

    Returns:
        str: The API key if found, None otherwise
    """
    env_key = os.getenv("OPENROUTER_API_KEY", "").strip()
    if env_key:
        logger.debug("🔑 Using OPENROUTER_API_KEY from env var")
        return env_key

    secrets = load_secrets()
    file_key = (secrets.get('openrouter_api_key') or "").strip()
    if file_key:
        logger.debug(f"🔑 Using OPENROUTER_API_KEY from {SECRETS_PATH}")
        return file_key

    logger.warning("⚠️ No OPENROUTER_API_KEY found in env var or data/secrets.yaml")
    return None


def get_llm_timeouts() -> Tuple[float, float]:
    """(connect, read) timeouts for the plan generation request, in seconds."""
    return (
        float(get_config_value("llm", "connect_timeout", 8)),
        float(get_config_value("llm", "request_timeout", 25)),
    )


# =============================================================================
# PLANNING CONFIGURATION
# =============================================================================

# Day labels expected by the mobile client, Monday first
DAY_KEYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
MEAL_SLOTS = ["breakfast", "lunch", "dinner"]

DEFAULT_DIET = "No Preference"
DEFAULT_GOAL = "Eat Healthier"
DEFAULT_PORTION = "medium"

WEEK_LENGTH_DAYS = 7

# SQLite database holding plan records
PLAN_DB_PATH = DATA_DIR / "meal_plans.db"

# SQLite database used by the huey task queue
HUEY_DB_PATH = DATA_DIR / "huey.db"


def get_daily_refresh_hours() -> float:
    """Age after which today's slots are refreshed even if the date matches."""
    return float(get_config_value("planner", "daily_refresh_hours", 24))


def get_stale_job_minutes() -> float:
    """Age after which a pending/running stamp stops blocking a redispatch."""
    return float(get_config_value("planner", "stale_job_minutes", 30))


def get_refresh_batch_size() -> int:
    """Chunk size for the batch refresh command."""
    return int(get_config_value("planner", "refresh_batch_size", 50))


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================
"""Centralized logging configuration for all modules."""
LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        },
        "detailed": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s"
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "level": "INFO",
            "formatter": "standard",
            "stream": "ext://sys.stdout"
        },
        "file": {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "DEBUG",
            "formatter": "detailed",
            "filename": str(DATA_DIR / "logs" / "meal_planner.log"),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5
        }
    },
    "root": {
        "level": "DEBUG",
        "handlers": ["console", "file"]
    }
}


def print_config_summary() -> None:
    """Print a summary of current configuration."""
    status = get_credential_status()['openrouter_api_key']
    connect_timeout, request_timeout = get_llm_timeouts()
    print("=" * 60)
    print("MEAL PLAN SERVICE CONFIGURATION")
    print("=" * 60)
    print(f"Data directory:      {DATA_DIR}")
    print(f"Plan database:       {PLAN_DB_PATH}")
    print(f"Chat API:            {CHAT_API_URL}")
    print(f"Chat model:          {CHAT_MODEL}")
    print(f"API key:             {status['preview'] or 'NOT CONFIGURED'} ({status['source'] or '-'})")
    print(f"Timeouts:            connect={connect_timeout}s request={request_timeout}s")
    print(f"Daily refresh after: {get_daily_refresh_hours()}h")
    print(f"Stale job after:     {get_stale_job_minutes()}min")
    print("=" * 60)


if __name__ == "__main__":
    print_config_summary()

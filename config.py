"""
Configuration module for the FitPlan Generation Service
=======================================================

This module centralizes all configuration for the plan generation pipeline:
- OpenAI-compatible chat completion endpoint (workout, meal and ingredient prompts)
- Plan generation stage tuning (time estimates, stale-run cutoff)
- Ingredient extraction retry/backoff policy
- SQLite stores for generation progress and huey tasks

CONFIGURATION:
- data/config.yaml: Deployment settings (LLM model, retry policy, admins)
- data/secrets.yaml: Credentials (LLM API key)

Usage:
    from config import CHAT_MODEL, USER_CONFIG, get_config_value

    max_retries = get_config_value("extraction", "meal_max_retries", 3)

SETUP REQUIRED:
    1. Copy config.yaml.example to data/config.yaml (done automatically on first import)
    2. Edit config.yaml with your model and admin user ids
    3. Set OPENAI_API_KEY (env var or data/secrets.yaml)
"""

import os
import logging
from pathlib import Path
from typing import Dict, Any, Optional, List

import yaml


# =============================================================================
# USER CONFIGURATION LOADING (STRICT - NO FALLBACKS)
# =============================================================================

# Project root directory (where this file lives)
PROJECT_ROOT = Path(__file__).parent

# Data directory - THE canonical location for all runtime data
DATA_DIR = Path(os.getenv("FITPLAN_DATA_DIR", str(PROJECT_ROOT / "data")))

CONFIG_PATH = DATA_DIR / "config.yaml"

SECRETS_PATH = DATA_DIR / "secrets.yaml"


def _load_user_config() -> Dict[str, Any]:
    """
    Load deployment configuration from data/config.yaml.

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
        example_path = PROJECT_ROOT / "config.yaml.example"
        if example_path.exists():
            import shutil
            DATA_DIR.mkdir(parents=True, exist_ok=True)
            shutil.copy2(example_path, config_path)
            print(f"[config] Created {config_path} from config.yaml.example")
        else:
            raise FileNotFoundError(
                f"\n{'='*60}\n"
                f"ERROR: config.yaml not found\n"
                f"{'='*60}\n"
                f"Expected location: {config_path}\n"
                f"Also missing: {example_path}\n"
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

    required_sections = ["llm", "generation", "extraction"]
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
        ("llm", "api_url"),
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

    admin_ids = (config.get("admin") or {}).get("user_ids", [])
    if not isinstance(admin_ids, list):
        raise ValueError(
            f"\n{'='*60}\n"
            f"ERROR: config.yaml admin.user_ids must be a list\n"
            f"{'='*60}"
        )

    return config


# Load user config at module initialization (FAIL FAST)
USER_CONFIG = _load_user_config()

# Use standard logging for config.py (foundational module)
logger = logging.getLogger(__name__)


# =============================================================================
# SECRETS MANAGEMENT
# =============================================================================
"""
Credential storage in data/secrets.yaml.
Environment variables take priority over file-based secrets.
"""


def load_secrets() -> Dict[str, Any]:
    """
    Load secrets from data/secrets.yaml.

    Returns:
        dict with key 'llm_api_key' (may be None)
        Returns empty dict if file doesn't exist
    """
    if not SECRETS_PATH.exists():
        return {}

    try:
        with open(SECRETS_PATH, 'r') as f:
            data = yaml.safe_load(f) or {}

        return {
            'llm_api_key': (data.get('llm') or {}).get('api_key'),
        }
    except Exception as e:
        logger.warning(f"⚠️ Failed to load secrets from {SECRETS_PATH}: {e}")
        return {}


# =============================================================================
# CHAT LLM CONFIGURATION (Canonical: CHAT_*)
# =============================================================================

CHAT_API_URL = os.getenv("CHAT_API_URL", USER_CONFIG["llm"]["api_url"]).rstrip("/")
CHAT_MODEL = USER_CONFIG["llm"]["chat_model"]


def load_chat_api_key() -> Optional[str]:
    """
    Load the chat API key from environment variable or secrets file.

    Priority order (ENV VAR IS SOURCE OF TRUTH):
    1. Environment variable OPENAI_API_KEY
    2. File: data/secrets.yaml

    Returns:
        str: The API key if found, None otherwise
    """
    env_key = os.getenv("OPENAI_API_KEY", "").strip()
    if env_key:
        logger.debug("🔑 Using OPENAI_API_KEY from env var")
        return env_key

    secrets = load_secrets()
    file_key = secrets.get('llm_api_key')
    if file_key:
        logger.debug(f"🔑 Using LLM API key from {SECRETS_PATH}")
        return file_key

    logger.warning("⚠️ No OPENAI_API_KEY found in env var or data/secrets.yaml")
    return None


# =============================================================================
# PIPELINE CONFIGURATION
# =============================================================================
"""
Tunables for the plan generation pipeline. Values in data/config.yaml
override the defaults below.
"""

LLM_CONFIG = {
    "timeout_seconds": USER_CONFIG["llm"].get("timeout_seconds", 120),
    "temperature": USER_CONFIG["llm"].get("temperature", 0.3),
    "max_tokens": USER_CONFIG["llm"].get("max_tokens", 4000),
}

# Ingredient extraction retry policy
EXTRACTION_CONFIG = {
    "meal_max_retries": 3,          # 4 calls in total before the fallback parser
    "meal_backoff_base": 1.0,       # 1s, 2s, 4s
    "day_max_retries": 3,           # rate limits only
    "day_backoff_base": 5.0,        # 5s, 10s, 20s
    "inter_day_delay": 5.0,         # fixed pause between sequential days
    **(USER_CONFIG.get("extraction") or {}),
}

# Stage time estimates (seconds) keyed by stage name
GENERATION_CONFIG = {
    "stage_estimates": {
        "INITIALIZE": 5,
        "NUTRITION_CALCULATION": 15,
        "WORKOUT_PLAN": 60,
        "MEAL_PLAN": 90,
        "EXTRACT_INGREDIENTS": 45,
        "SHOPPING_LIST": 30,
        "COMPLETE": 0,
    },
    "stale_run_minutes": 15,        # running rows older than this are reset
    "default_currency": "GBP",
    **(USER_CONFIG.get("generation") or {}),
}

STORE_CONFIG = {
    "plans_db": str(DATA_DIR / "fitplan.db"),
    "huey_db": str(DATA_DIR / "huey.db"),
    **(USER_CONFIG.get("store") or {}),
}

ADMIN_CONFIG = {
    "user_ids": [],
    **(USER_CONFIG.get("admin") or {}),
}

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
            "filename": str(DATA_DIR / "logs" / "fitplan.log"),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5
        }
    },
    "root": {
        "level": "DEBUG",
        "handlers": ["console", "file"]
    }
}


def get_pipeline_config() -> dict:
    """
    Get complete pipeline configuration as a dictionary.

    Returns:
        dict: Complete configuration for the pipeline
    """
    return {
        "llm": LLM_CONFIG,
        "extraction": EXTRACTION_CONFIG,
        "generation": GENERATION_CONFIG,
        "store": STORE_CONFIG,
        "admin": ADMIN_CONFIG,
    }


def get_config_value(section: str, key: str, default=None):
    """
    Get a configuration value by section and key with graceful degradation.

    Args:
        section: Configuration section name
        key: Configuration key name
        default: Default value if not found

    Returns:
        Configuration value or default
    """
    try:
        config = get_pipeline_config()
        section_config = config.get(section, {})
        return section_config.get(key, default)
    except Exception as e:
        logger.warning(f"⚠️  Configuration access failed for {section}.{key}: {e}")
        logger.warning(f"   Using default value: {default}")
        return default


def get_admin_user_ids() -> List[str]:
    """Admin user ids from config, normalized to strings."""
    return [str(uid) for uid in ADMIN_CONFIG.get("user_ids") or []]


def print_config_summary() -> None:
    """Print a short summary of the active configuration."""
    print("=" * 60)
    print("FitPlan configuration")
    print("=" * 60)
    print(f"Config file:   {CONFIG_PATH}")
    print(f"Chat API:      {CHAT_API_URL}")
    print(f"Chat model:    {CHAT_MODEL}")
    print(f"Plans DB:      {STORE_CONFIG['plans_db']}")
    print(f"Meal retries:  {EXTRACTION_CONFIG['meal_max_retries']}")
    print(f"Day retries:   {EXTRACTION_CONFIG['day_max_retries']}")
    print(f"Admins:        {len(get_admin_user_ids())}")
    print("=" * 60)


if __name__ == "__main__":
    print_config_summary()

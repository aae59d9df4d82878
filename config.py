"""
Application configuration management.

Loads non-sensitive configuration from JSON and sensitive values
(Gemini and scraping API keys) from environment variables or secret files.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("matcher_config.json")
DEFAULT_STORE_FILENAME = "matcher_store.json"
DEFAULT_SCRAPE_BASE_URL = "https://api.firecrawl.dev"
DEFAULT_PRIMARY_MODEL = "gemini-1.5-pro"
DEFAULT_FALLBACK_MODEL = "gemini-1.5-flash"


@dataclass(frozen=True)
class Settings:
    """Container for application configuration."""

    store_path: Optional[Path]
    gemini_api_key: str
    scrape_api_key: str
    scrape_base_url: str = DEFAULT_SCRAPE_BASE_URL
    primary_model: str = DEFAULT_PRIMARY_MODEL
    fallback_model: str = DEFAULT_FALLBACK_MODEL
    request_timeout: float = 60.0
    backoff_base_seconds: float = 1.0
    max_workers: int = 2
    stale_after_minutes: int = 15
    log_file: Optional[Path] = None
    log_format: Optional[str] = None
    log_date_format: Optional[str] = None
    debug: bool = False


def _read_json(path: Path) -> Dict[str, Any]:
    """Read a JSON file into a dictionary."""
    try:
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)
    except FileNotFoundError:
        raise FileNotFoundError(f"Configuration file missing: {path}") from None
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in configuration file: {path}") from exc


def _resolve_path(base: Path, value: Optional[str]) -> Optional[Path]:
    """Resolve a possibly relative path against a base directory."""
    if not value:
        return None
    candidate = Path(value)
    return candidate if candidate.is_absolute() else (base / candidate).resolve()


def _load_secret(base: Path, key_path: Optional[str], env_var: str) -> str:
    """
    Load an API key from a secret file, falling back to an environment variable.

    Args:
        base: Directory used to resolve a relative secret path.
        key_path: Optional path to a text file holding the key.
        env_var: Environment variable consulted when the file is absent.

    Returns:
        The key, or an empty string when neither source provides one.
    """
    if key_path:
        secret_file = _resolve_path(base, key_path)
        if secret_file and secret_file.exists():
            return secret_file.read_text(encoding="utf-8").strip()
        LOGGER.warning("Secret file %s not found; falling back to %s", secret_file, env_var)
    return os.environ.get(env_var, "").strip()


def load_settings(config_path: Path = DEFAULT_CONFIG_PATH) -> Settings:
    """
    Load application settings from config file and environment variables.

    Args:
        config_path: Path to the JSON configuration file.

    Returns:
        Settings dataclass populated with configuration values.
    """
    config_path = config_path.resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    config = _read_json(config_path)
    base_dir = config_path.parent

    store_path = _resolve_path(base_dir, config.get("store_path") or DEFAULT_STORE_FILENAME)

    gemini_api_key = _load_secret(base_dir, config.get("gemini_api_key_file"), "GEMINI_API_KEY")
    if not gemini_api_key:
        raise ValueError(
            "Gemini API key missing. Set GEMINI_API_KEY env or provide gemini_api_key_file."
        )

    scrape_api_key = _load_secret(base_dir, config.get("scrape_api_key_file"), "FIRECRAWL_API_KEY")
    if not scrape_api_key:
        raise ValueError(
            "Scraping API key missing. Set FIRECRAWL_API_KEY env or provide scrape_api_key_file."
        )

    request_timeout = float(config.get("request_timeout", 60))
    if request_timeout <= 0:
        raise ValueError("Config 'request_timeout' must be > 0.")

    backoff_base_seconds = float(config.get("backoff_base_seconds", 1.0))
    if backoff_base_seconds < 0:
        raise ValueError("Config 'backoff_base_seconds' must be >= 0.")

    max_workers = int(config.get("max_workers", 2))
    if max_workers <= 0:
        raise ValueError("Config 'max_workers' must be > 0.")

    stale_after_minutes = int(config.get("stale_after_minutes", 15))
    if stale_after_minutes <= 0:
        raise ValueError("Config 'stale_after_minutes' must be > 0.")

    log_file_str = config.get("log_file")
    if log_file_str:
        # Replace timestamp placeholder if present
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file_str = log_file_str.replace("YYYYMMDD_HHMMSS", timestamp)
        log_file = _resolve_path(base_dir, log_file_str)
        log_file.parent.mkdir(parents=True, exist_ok=True)
    else:
        log_file = None

    return Settings(
        store_path=store_path,
        gemini_api_key=gemini_api_key,
        scrape_api_key=scrape_api_key,
        scrape_base_url=config.get("scrape_base_url", DEFAULT_SCRAPE_BASE_URL).rstrip("/"),
        primary_model=config.get("primary_model", DEFAULT_PRIMARY_MODEL),
        fallback_model=config.get("fallback_model", DEFAULT_FALLBACK_MODEL),
        request_timeout=request_timeout,
        backoff_base_seconds=backoff_base_seconds,
        max_workers=max_workers,
        stale_after_minutes=stale_after_minutes,
        log_file=log_file,
        log_format=config.get("log_format"),
        log_date_format=config.get("log_date_format"),
        debug=bool(config.get("debug", False)),
    )

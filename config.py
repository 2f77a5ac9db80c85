#!/usr/bin/env python3
"""
Configuration management for the issue feed worker.

This module centralizes all configuration loading, validation, and management.
It handles environment variables (including GitHub Actions ``INPUT_*`` inputs),
validation, and provides an immutable settings object that is handed to each
component explicitly.
"""

from os import environ, path, access, R_OK
from typing import Dict, Any, NamedTuple, Optional
from logging import getLogger, basicConfig, StreamHandler, INFO, DEBUG, WARNING, ERROR
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import sys
import yaml
from dotenv import load_dotenv

DEFAULT_DATE_FORMAT = "YYYY-MM-DD HH:mm:ss"
DEFAULT_USER_AGENT = "issue-feed-worker/1.0 (+https://github.com/features/actions)"


def _setup_global_logger():
    """Setup a single global logger for the entire application.

    Environment Variables:
        LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR) - defaults to INFO
        LOG_TIMESTAMPS: Enable/disable timestamps in logs (true/false) - defaults to true

    The logger outputs to stdout with line buffering so that workflow logs
    stream in real time. All modules should use get_logger() to create
    module-specific loggers that inherit this configuration.
    """
    level_str = environ.get("LOG_LEVEL", "INFO").upper()
    level_map = {
        "DEBUG": DEBUG,
        "INFO": INFO,
        "WARNING": WARNING,
        "ERROR": ERROR
    }
    level = level_map.get(level_str, INFO)

    show_timestamps = environ.get("LOG_TIMESTAMPS", "true").lower() != "false"

    if show_timestamps:
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    else:
        log_format = '%(name)s - %(levelname)s - %(message)s'

    basicConfig(
        level=level,
        format=log_format,
        handlers=[StreamHandler(sys.stdout)],
        force=True
    )

    try:
        sys.stdout.reconfigure(line_buffering=True)
        sys.stderr.reconfigure(line_buffering=True)
    except AttributeError:
        # Captured streams under test runners do not support reconfigure()
        pass

    # aiohttp access/client logs are noisy at INFO
    getLogger("aiohttp").setLevel(max(level, WARNING))

    return getLogger("IssueFeedWorker")


def get_logger(name: str):
    """Get a module-specific logger with the unified configuration.

    Args:
        name: The logger name (e.g., "feeds", "directives", "processor")

    Returns:
        A logger named "IssueFeedWorker.{name}"
    """
    return getLogger(f"IssueFeedWorker.{name}")


logger = _setup_global_logger()


class WorkerSettings(NamedTuple):
    """Immutable tunables consumed by the core components."""
    retry_attempts: int = 3
    max_posts_per_feed: int = 2
    date_format: str = DEFAULT_DATE_FORMAT
    concurrency_limit: int = 10
    fetch_timeout: float = 5.0
    retry_delay_base: float = 0.0
    date_timezone: str = "UTC"
    user_agent: str = DEFAULT_USER_AGENT


class Config:
    """Configuration manager for the issue feed worker.

    Values are loaded from, in order of precedence:
    1. Environment variables (``NAME`` first, then the Actions input ``INPUT_NAME``)
    2. YAML secrets file (if SECRETS_FILE environment variable is set)
    3. .env file next to this module (if present)

    Example secrets.yaml format:
    ```yaml
    GITHUB_TOKEN: "ghp_..."
    GITHUB_REPOSITORY: "owner/repo"
    ```
    """

    def __init__(self):
        """Initialize configuration with environment variables and validation."""
        self._load_environment()
        self._validate_and_set_config()

    def _load_environment(self):
        """Load environment variables from .env file and secrets file if present."""
        dotenv_path = path.join(path.dirname(path.abspath(__file__)), '.env')
        if path.exists(dotenv_path):
            load_dotenv(dotenv_path)
            logger.info(f"Loaded environment variables from {dotenv_path}")

        self._load_secrets_file()

    def _get_raw(self, name: str) -> Optional[str]:
        """Read a setting from the environment, falling back to its Actions input form."""
        value = environ.get(name)
        if value is None or not value.strip():
            value = environ.get(f"INPUT_{name}")
        if value is None or not value.strip():
            return None
        return value.strip()

    def _validate_int(self, env_var: str, default: int, min_val: int = 1) -> int:
        """Validate and parse an integer setting with a lower bound."""
        raw = self._get_raw(env_var)
        if raw is None:
            return default
        try:
            value = int(raw)
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value '{raw}', using default {default}")
            return default

    def _validate_float(self, env_var: str, default: float, min_val: float = 0.0, exclusive: bool = False) -> float:
        """Validate and parse a float setting with a lower bound."""
        raw = self._get_raw(env_var)
        if raw is None:
            return default
        try:
            value = float(raw)
            too_small = value <= min_val if exclusive else value < min_val
            if too_small:
                bound = "greater than" if exclusive else "at least"
                logger.warning(f"{env_var} must be {bound} {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value '{raw}', using default {default}")
            return default

    def _validate_timezone(self, env_var: str, default: str) -> str:
        raw = self._get_raw(env_var)
        if raw is None:
            return default
        try:
            ZoneInfo(raw)
            return raw
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone '{raw}' in {env_var}, using default {default}")
            return default

    def _validate_and_set_config(self):
        """Validate and set all configuration values."""
        # Feed resolution
        self.RETRY_TIMES = self._validate_int("RETRY_TIMES", 3, 1)
        self.POSTS_COUNT = self._validate_int("POSTS_COUNT", 2, 0)
        self.DATE_FORMAT = self._get_raw("DATE_FORMAT") or DEFAULT_DATE_FORMAT
        self.DATE_TIMEZONE = self._validate_timezone("DATE_TIMEZONE", "UTC")
        self.FEED_TIMEOUT = self._validate_float("FEED_TIMEOUT", 5.0, 0.0, exclusive=True)
        self.RETRY_DELAY_BASE = self._validate_float("RETRY_DELAY_BASE", 0.0, 0.0)

        # Task pool
        self.CONCURRENCY_LIMIT = self._validate_int("CONCURRENCY_LIMIT", 10, 1)

        # HTTP identity
        self.USER_AGENT = self._get_raw("USER_AGENT") or DEFAULT_USER_AGENT

        # GitHub access (provided by the Actions runner when running as a workflow step)
        self.GITHUB_TOKEN = self._get_raw("GITHUB_TOKEN")
        self.GITHUB_REPOSITORY = self._get_raw("GITHUB_REPOSITORY")
        self.GITHUB_API_URL = (self._get_raw("GITHUB_API_URL") or "https://api.github.com").rstrip("/")
        self.ISSUE_STATE = (self._get_raw("ISSUE_STATE") or "open").lower()
        if self.ISSUE_STATE not in ("open", "closed", "all"):
            logger.warning(f"ISSUE_STATE must be open, closed or all; using default open (got {self.ISSUE_STATE})")
            self.ISSUE_STATE = "open"

    def _load_secrets_file(self):
        """Load environment variable overrides from a YAML secrets file.

        If SECRETS_FILE is set, the file is read and each key is exported as an
        environment variable. Both formats are accepted:

        ```yaml
        # Preferred: top-level mapping
        GITHUB_TOKEN: "ghp_..."

        # Backward-compatible: nested under `environment`
        # environment:
        #   GITHUB_TOKEN: "ghp_..."
        ```
        """
        secrets_file_path = environ.get("SECRETS_FILE")
        if not secrets_file_path:
            logger.debug("SECRETS_FILE not set; relying on environment/.env for secrets")
            return

        secrets_config = self._safe_read_yaml(secrets_file_path, 2 * 1024 * 1024, 'secrets')
        if secrets_config is None:
            return

        if not isinstance(secrets_config, dict):
            logger.warning(f"Secrets file {secrets_file_path} must be a YAML mapping at the top level")
            return
        if isinstance(secrets_config.get('environment'), dict):
            env_vars = secrets_config['environment']
        else:
            env_vars = secrets_config

        secrets_loaded = 0
        for key, value in env_vars.items():
            if isinstance(key, str) and value is not None:
                environ[key] = str(value)
                secrets_loaded += 1
            else:
                logger.warning(f"Skipping invalid environment variable in secrets file: {key}")

        logger.info(f"Loaded {secrets_loaded} environment variables from secrets file {secrets_file_path}")

    def _safe_read_yaml(self, file_path: str, max_size: int, kind: str) -> Any | None:
        """Safely read a YAML file with consistent validation.

        Returns:
            Parsed YAML or None on failure.
        """
        try:
            if not path.isfile(file_path):
                logger.warning(f"{kind.capitalize()} file not found at {file_path}")
                return None
            if not access(file_path, R_OK):
                logger.error(f"No read permission for {kind} file at {file_path}")
                return None
            size = path.getsize(file_path)
            if size > max_size:
                logger.error(f"{kind.capitalize()} file too large: {size} bytes (limit: {max_size} bytes)")
                return None
            with open(file_path, 'r') as f:
                data = yaml.safe_load(f)
            if not data:
                logger.warning(f"Empty or invalid YAML in {kind} file {file_path}")
                return None
            return data
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML in {kind} file {file_path}: {e}")
        except OSError as e:
            logger.error(f"Error loading {kind} file {file_path}: {e}")
        return None

    def worker_settings(self) -> WorkerSettings:
        """Snapshot the validated values into an immutable settings object."""
        return WorkerSettings(
            retry_attempts=self.RETRY_TIMES,
            max_posts_per_feed=self.POSTS_COUNT,
            date_format=self.DATE_FORMAT,
            concurrency_limit=self.CONCURRENCY_LIMIT,
            fetch_timeout=self.FEED_TIMEOUT,
            retry_delay_base=self.RETRY_DELAY_BASE,
            date_timezone=self.DATE_TIMEZONE,
            user_agent=self.USER_AGENT,
        )

    def get_config_summary(self) -> Dict[str, Any]:
        """Get a summary of current configuration for logging/debugging."""
        return {
            "retry_times": self.RETRY_TIMES,
            "posts_count": self.POSTS_COUNT,
            "date_format": self.DATE_FORMAT,
            "date_timezone": self.DATE_TIMEZONE,
            "feed_timeout": self.FEED_TIMEOUT,
            "retry_delay_base": self.RETRY_DELAY_BASE,
            "concurrency_limit": self.CONCURRENCY_LIMIT,
            "issue_state": self.ISSUE_STATE,
            "repository": self.GITHUB_REPOSITORY,
            "github_api_url": self.GITHUB_API_URL,
            "has_github_token": bool(self.GITHUB_TOKEN),
            "secrets_file_configured": bool(environ.get("SECRETS_FILE")),
        }


# Global configuration instance
config = Config()

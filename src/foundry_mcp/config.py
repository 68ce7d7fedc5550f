"""Configuration and settings module for Foundry MCP.

Two configuration objects live here:

- :class:`FoundryConfig` -- settings for the reconciliation engine itself
  (log level, strict mode, retry policy).  Resolved in priority order:

  1. **Environment variables** (highest priority) -- ``FOUNDRY_*``
  2. **Config file** -- ``<project_root>/.foundry/config.json``
  3. **Defaults** (lowest priority) -- sensible built-in values

- :class:`LinearConfig` -- connection settings for the Linear adapter.  These
  come from the environment only and the variable names are part of the
  external contract (``LINEAR_GRAPHQL_ENDPOINT``, ``LINEAR_API_TOKEN`` /
  ``LINEAR_API_KEY``, ``LINEAR_HTTP_TIMEOUT_SECS``).

Typical usage::

    config = FoundryConfig.load()                     # auto-detect project root
    config = FoundryConfig.load("/path/to/project")   # explicit project root
    linear = LinearConfig.from_env()                  # raises if no credential

    policy = config.retry_policy()
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel, Field, model_validator

if TYPE_CHECKING:
    from foundry_mcp.reconcile.applier import RetryPolicy

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Directory holding the config file, placed at the project root.
DEFAULT_CONFIG_DIR_NAME = ".foundry"

# Config file name inside the config directory.
CONFIG_FILE_NAME = "config.json"

# Environment variable prefix for engine settings.  For example,
# ``FOUNDRY_RETRY_MAX_ATTEMPTS=3``.
ENV_PREFIX = "FOUNDRY_"

# Sentinel files used to detect a project root directory.  The search walks
# upward from the current working directory until one of these is found.
PROJECT_ROOT_MARKERS = (
    ".git",
    "pyproject.toml",
    "setup.py",
    "setup.cfg",
    "package.json",
    ".foundry",
)

# Linear adapter environment contract.
LINEAR_ENDPOINT_ENV = "LINEAR_GRAPHQL_ENDPOINT"
LINEAR_TOKEN_ENV = "LINEAR_API_TOKEN"
LINEAR_KEY_ENV = "LINEAR_API_KEY"
LINEAR_TIMEOUT_ENV = "LINEAR_HTTP_TIMEOUT_SECS"

DEFAULT_LINEAR_ENDPOINT = "https://api.linear.app/graphql"
DEFAULT_HTTP_TIMEOUT_SECS = 30

_TRUTHY = ("true", "1", "yes")


class ConfigurationError(RuntimeError):
    """Raised when required configuration (such as a credential) is missing."""


# ---------------------------------------------------------------------------
# Engine configuration
# ---------------------------------------------------------------------------


class FoundryConfig(BaseModel):
    """Centralised configuration for the reconciliation engine.

    Every field has a sensible default.  Fields can be overridden by a
    ``config.json`` file or by environment variables (see module docstring).

    Attributes
    ----------
    log_level:
        Python logging level name.  One of ``DEBUG``, ``INFO``, ``WARNING``,
        ``ERROR``, ``CRITICAL``.
    strict:
        When *True*, the applier stops after the first permanent failure
        instead of continuing with the remaining operations.
    retry_max_attempts:
        Total attempts per tracker mutation, including the first one.
    retry_base_delay_ms:
        Delay before the second attempt, in milliseconds.
    retry_multiplier:
        Growth factor applied to the delay after each failed attempt.
    retry_jitter:
        Relative jitter applied to each delay (0.2 means +/-20%).
    project_root:
        The detected or configured project root path.
    config_dir:
        Directory holding ``config.json``.  Derived from ``project_root``
        when not set explicitly.
    """

    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL.",
    )
    strict: bool = Field(
        default=False,
        description="Abort apply after the first permanent failure.",
    )
    retry_max_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Max attempts per tracker mutation (1-20).",
    )
    retry_base_delay_ms: int = Field(
        default=250,
        ge=0,
        description="Base backoff delay in milliseconds.",
    )
    retry_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        description="Exponential backoff multiplier.",
    )
    retry_jitter: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Relative jitter applied to each backoff delay.",
    )
    project_root: Optional[str] = Field(
        default=None,
        description="Detected or configured project root path.",
    )
    config_dir: Optional[str] = Field(
        default=None,
        description="Directory holding config.json.",
    )

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def resolve_paths(self) -> "FoundryConfig":
        """Resolve ``project_root`` and ``config_dir`` to absolute paths."""
        if self.project_root is not None:
            self.project_root = str(Path(self.project_root).resolve())
        else:
            detected = _detect_project_root()
            self.project_root = str(detected if detected is not None else Path.cwd())

        if self.config_dir is not None:
            self.config_dir = str(Path(self.config_dir).resolve())
        else:
            self.config_dir = str(Path(self.project_root) / DEFAULT_CONFIG_DIR_NAME)

        return self

    @model_validator(mode="after")
    def validate_log_level(self) -> "FoundryConfig":
        """Normalise and validate the log level string."""
        normalised = self.log_level.upper().strip()
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if normalised not in valid_levels:
            raise ValueError(
                f"Invalid log_level '{self.log_level}'. "
                f"Must be one of: {', '.join(sorted(valid_levels))}."
            )
        self.log_level = normalised
        return self

    # ------------------------------------------------------------------
    # Factory: load from file + environment
    # ------------------------------------------------------------------

    @classmethod
    def load(
        cls,
        project_root: Optional[str] = None,
        config_path: Optional[str] = None,
    ) -> "FoundryConfig":
        """Load configuration with full resolution: file -> env -> defaults.

        Parameters
        ----------
        project_root:
            Explicit project root.  When *None*, auto-detection is used.
        config_path:
            Explicit path to a ``config.json`` file.  When *None*, the
            config file is looked up at ``<project_root>/.foundry/config.json``.
        """
        if project_root is not None:
            resolved_root = str(Path(project_root).resolve())
        else:
            detected = _detect_project_root()
            resolved_root = str(detected if detected is not None else Path.cwd())

        file_values = _load_config_file(resolved_root, config_path)
        env_values = _load_env_overrides()

        merged: dict = {}
        merged.update(file_values)
        merged.update(env_values)
        merged["project_root"] = resolved_root

        return cls.model_validate(merged)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, config_path: Optional[str] = None) -> Path:
        """Save the user-facing settings to a JSON file and return its path."""
        if config_path is not None:
            target = Path(config_path).resolve()
        else:
            target = Path(self.config_dir) / CONFIG_FILE_NAME

        target.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "log_level": self.log_level,
            "strict": self.strict,
            "retry_max_attempts": self.retry_max_attempts,
            "retry_base_delay_ms": self.retry_base_delay_ms,
            "retry_multiplier": self.retry_multiplier,
            "retry_jitter": self.retry_jitter,
        }

        with open(target, "w", encoding="utf-8") as fp:
            json.dump(data, fp, indent=2, ensure_ascii=False)
            fp.write("\n")

        logger.info("Saved configuration to %s", target)
        return target

    # ------------------------------------------------------------------
    # Utility
    # ------------------------------------------------------------------

    def retry_policy(self) -> "RetryPolicy":
        """Build the applier's retry policy from the configured values."""
        from foundry_mcp.reconcile.applier import RetryPolicy

        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay=self.retry_base_delay_ms / 1000.0,
            multiplier=self.retry_multiplier,
            jitter=self.retry_jitter,
        )

    def configure_logging(self) -> None:
        """Apply the configured log level to the ``foundry_mcp`` logger.

        Idempotent: a stream handler is only attached the first time.
        """
        pkg_logger = logging.getLogger("foundry_mcp")
        pkg_logger.setLevel(self.log_level)

        if not pkg_logger.handlers:
            handler = logging.StreamHandler()
            handler.setLevel(self.log_level)
            formatter = logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
            handler.setFormatter(formatter)
            pkg_logger.addHandler(handler)

    def to_dict(self) -> dict:
        """Return all configuration values as a plain dictionary."""
        return self.model_dump()


# ---------------------------------------------------------------------------
# Linear adapter configuration
# ---------------------------------------------------------------------------


class LinearConfig(BaseModel):
    """Connection settings for the Linear GraphQL adapter.

    The credential is captured once, at construction, and handed to the
    tracker.  Nothing reads the environment at call time.
    """

    endpoint: str = Field(
        default=DEFAULT_LINEAR_ENDPOINT,
        min_length=1,
        description="Linear GraphQL endpoint URL.",
    )
    token: str = Field(
        ...,
        min_length=1,
        repr=False,
        description="Linear API key or OAuth token.",
    )
    timeout_secs: int = Field(
        default=DEFAULT_HTTP_TIMEOUT_SECS,
        ge=1,
        description="Per-request HTTP timeout in seconds.",
    )
    user_agent: str = Field(
        default="",
        description="User-Agent header sent with every request.",
    )

    @model_validator(mode="after")
    def default_user_agent(self) -> "LinearConfig":
        if not self.user_agent:
            from foundry_mcp import __version__

            self.user_agent = f"foundry-mcp-linear/{__version__}"
        return self

    @classmethod
    def from_env(cls) -> "LinearConfig":
        """Build a LinearConfig from the ``LINEAR_*`` environment variables.

        Raises
        ------
        ConfigurationError
            If neither ``LINEAR_API_TOKEN`` nor ``LINEAR_API_KEY`` is set.
        """
        endpoint = os.environ.get(LINEAR_ENDPOINT_ENV) or DEFAULT_LINEAR_ENDPOINT

        token = os.environ.get(LINEAR_TOKEN_ENV) or os.environ.get(LINEAR_KEY_ENV)
        if not token or not token.strip():
            raise ConfigurationError(
                f"Missing {LINEAR_TOKEN_ENV} or {LINEAR_KEY_ENV} in environment."
            )

        timeout_secs = DEFAULT_HTTP_TIMEOUT_SECS
        raw_timeout = os.environ.get(LINEAR_TIMEOUT_ENV)
        if raw_timeout is not None:
            try:
                timeout_secs = int(raw_timeout)
                if timeout_secs < 1:
                    raise ValueError(raw_timeout)
            except ValueError:
                logger.warning(
                    "Invalid %s value: %r. Must be a positive integer. Using %d.",
                    LINEAR_TIMEOUT_ENV,
                    raw_timeout,
                    DEFAULT_HTTP_TIMEOUT_SECS,
                )
                timeout_secs = DEFAULT_HTTP_TIMEOUT_SECS

        return cls(endpoint=endpoint, token=token.strip(), timeout_secs=timeout_secs)


def linear_credentials_present() -> bool:
    """Return True if a Linear credential is present in the environment."""
    return bool(
        (os.environ.get(LINEAR_TOKEN_ENV) or "").strip()
        or (os.environ.get(LINEAR_KEY_ENV) or "").strip()
    )


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _detect_project_root(start_path: Optional[Path] = None) -> Optional[Path]:
    """Walk upward from *start_path* to the first directory holding a marker.

    Returns *None* when the filesystem root is reached without a match.
    """
    current = (start_path or Path.cwd()).resolve()

    max_depth = 50
    for _ in range(max_depth):
        for marker in PROJECT_ROOT_MARKERS:
            if (current / marker).exists():
                return current

        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def _load_config_file(
    project_root: str,
    config_path: Optional[str] = None,
) -> dict:
    """Read a ``config.json`` file and return its contents as a dict.

    Returns an empty dict if the file does not exist or is malformed.
    """
    if config_path is not None:
        path = Path(config_path).resolve()
    else:
        path = Path(project_root) / DEFAULT_CONFIG_DIR_NAME / CONFIG_FILE_NAME

    if not path.is_file():
        logger.debug("No config file at %s. Using defaults.", path)
        return {}

    try:
        with open(path, "r", encoding="utf-8") as fp:
            data = json.load(fp)
        if not isinstance(data, dict):
            logger.warning(
                "Config file %s does not contain a JSON object. Ignoring.",
                path,
            )
            return {}
        logger.info("Loaded configuration from %s", path)
        return data
    except json.JSONDecodeError:
        logger.warning(
            "Config file %s contains invalid JSON. Ignoring.",
            path,
            exc_info=True,
        )
        return {}
    except OSError:
        logger.warning(
            "Could not read config file %s. Ignoring.",
            path,
            exc_info=True,
        )
        return {}


def _load_env_overrides() -> dict:
    """Read ``FOUNDRY_*`` environment variables and return overrides.

    Supported variables:

    - ``FOUNDRY_LOG_LEVEL`` -- override log_level
    - ``FOUNDRY_STRICT`` -- override strict (``true``/``false``)
    - ``FOUNDRY_RETRY_MAX_ATTEMPTS`` -- integer
    - ``FOUNDRY_RETRY_BASE_DELAY_MS`` -- integer
    - ``FOUNDRY_RETRY_MULTIPLIER`` -- number
    - ``FOUNDRY_RETRY_JITTER`` -- number
    """
    overrides: dict = {}

    log_level = os.environ.get(f"{ENV_PREFIX}LOG_LEVEL")
    if log_level is not None:
        overrides["log_level"] = log_level

    strict = os.environ.get(f"{ENV_PREFIX}STRICT")
    if strict is not None:
        overrides["strict"] = strict.lower() in _TRUTHY

    _int_keys = {
        "RETRY_MAX_ATTEMPTS": "retry_max_attempts",
        "RETRY_BASE_DELAY_MS": "retry_base_delay_ms",
    }
    for env_key, field_name in _int_keys.items():
        val = os.environ.get(f"{ENV_PREFIX}{env_key}")
        if val is not None:
            try:
                overrides[field_name] = int(val)
            except ValueError:
                logger.warning(
                    "Invalid %s%s value: %r. Must be an integer. Ignoring.",
                    ENV_PREFIX, env_key, val,
                )

    _float_keys = {
        "RETRY_MULTIPLIER": "retry_multiplier",
        "RETRY_JITTER": "retry_jitter",
    }
    for env_key, field_name in _float_keys.items():
        val = os.environ.get(f"{ENV_PREFIX}{env_key}")
        if val is not None:
            try:
                overrides[field_name] = float(val)
            except ValueError:
                logger.warning(
                    "Invalid %s%s value: %r. Must be a number. Ignoring.",
                    ENV_PREFIX, env_key, val,
                )

    if overrides:
        logger.info(
            "Environment overrides applied: %s",
            ", ".join(overrides.keys()),
        )

    return overrides

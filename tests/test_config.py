"""Tests for FoundryConfig and LinearConfig -- configuration and settings module.

All tests use real files in temporary directories, real environment variables,
and real config.json files.
"""

import json
import logging
import os
from pathlib import Path

import pytest

from foundry_mcp.config import (
    CONFIG_FILE_NAME,
    DEFAULT_CONFIG_DIR_NAME,
    DEFAULT_HTTP_TIMEOUT_SECS,
    DEFAULT_LINEAR_ENDPOINT,
    ENV_PREFIX,
    PROJECT_ROOT_MARKERS,
    ConfigurationError,
    FoundryConfig,
    LinearConfig,
    _detect_project_root,
    _load_config_file,
    _load_env_overrides,
    linear_credentials_present,
)
from foundry_mcp.reconcile.applier import RetryPolicy


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def config_file(project_dir: Path) -> Path:
    """Create a config.json inside the project's .foundry/ directory."""
    config_dir = project_dir / DEFAULT_CONFIG_DIR_NAME
    config_dir.mkdir()
    config_path = config_dir / CONFIG_FILE_NAME
    config_path.write_text(
        json.dumps(
            {
                "log_level": "DEBUG",
                "strict": True,
                "retry_max_attempts": 3,
                "retry_base_delay_ms": 100,
            },
            indent=2,
        ),
        encoding="utf-8",
    )
    return config_path


# ---------------------------------------------------------------------------
# Default construction
# ---------------------------------------------------------------------------


class TestDefaultConstruction:
    """FoundryConfig with only a project root uses sensible defaults."""

    def test_defaults(self, project_dir: Path) -> None:
        config = FoundryConfig(project_root=str(project_dir))
        assert config.log_level == "INFO"
        assert config.strict is False
        assert config.retry_max_attempts == 5
        assert config.retry_base_delay_ms == 250
        assert config.retry_multiplier == 2.0
        assert config.retry_jitter == 0.2

    def test_config_dir_derived_from_project_root(self, project_dir: Path) -> None:
        config = FoundryConfig(project_root=str(project_dir))
        assert config.config_dir == str(project_dir.resolve() / DEFAULT_CONFIG_DIR_NAME)

    def test_explicit_config_dir_resolved(self, project_dir: Path) -> None:
        config = FoundryConfig(project_root=str(project_dir), config_dir=str(project_dir / "x"))
        assert config.config_dir == str((project_dir / "x").resolve())

    def test_log_level_normalised(self, project_dir: Path) -> None:
        config = FoundryConfig(project_root=str(project_dir), log_level=" debug ")
        assert config.log_level == "DEBUG"

    def test_invalid_log_level_rejected(self, project_dir: Path) -> None:
        with pytest.raises(ValueError, match="Invalid log_level"):
            FoundryConfig(project_root=str(project_dir), log_level="LOUD")

    @pytest.mark.parametrize(
        "field,value",
        [
            ("retry_max_attempts", 0),
            ("retry_max_attempts", 21),
            ("retry_base_delay_ms", -1),
            ("retry_multiplier", 0.5),
            ("retry_jitter", 1.5),
        ],
    )
    def test_out_of_range_retry_values_rejected(self, project_dir, field, value) -> None:
        with pytest.raises(ValueError):
            FoundryConfig(project_root=str(project_dir), **{field: value})


# ---------------------------------------------------------------------------
# Loading: file and environment
# ---------------------------------------------------------------------------


class TestLoad:
    """FoundryConfig.load() merges file and environment over defaults."""

    def test_load_without_file_uses_defaults(self, project_dir: Path) -> None:
        config = FoundryConfig.load(project_root=str(project_dir))
        assert config.project_root == str(project_dir.resolve())
        assert config.retry_max_attempts == 5

    def test_load_reads_config_file(self, project_dir: Path, config_file: Path) -> None:
        config = FoundryConfig.load(project_root=str(project_dir))
        assert config.log_level == "DEBUG"
        assert config.strict is True
        assert config.retry_max_attempts == 3
        assert config.retry_base_delay_ms == 100

    def test_env_overrides_file(self, project_dir: Path, config_file: Path) -> None:
        os.environ[f"{ENV_PREFIX}RETRY_MAX_ATTEMPTS"] = "7"
        os.environ[f"{ENV_PREFIX}STRICT"] = "false"
        config = FoundryConfig.load(project_root=str(project_dir))
        assert config.retry_max_attempts == 7
        assert config.strict is False
        assert config.log_level == "DEBUG"

    def test_explicit_config_path(self, project_dir: Path, tmp_path: Path) -> None:
        other = tmp_path / "elsewhere.json"
        other.write_text(json.dumps({"retry_jitter": 0.0}), encoding="utf-8")
        config = FoundryConfig.load(project_root=str(project_dir), config_path=str(other))
        assert config.retry_jitter == 0.0

    def test_malformed_file_ignored(self, project_dir: Path) -> None:
        config_dir = project_dir / DEFAULT_CONFIG_DIR_NAME
        config_dir.mkdir()
        (config_dir / CONFIG_FILE_NAME).write_text("{not json", encoding="utf-8")
        config = FoundryConfig.load(project_root=str(project_dir))
        assert config.retry_max_attempts == 5


class TestLoadConfigFile:
    def test_missing_file_returns_empty(self, project_dir: Path) -> None:
        assert _load_config_file(str(project_dir)) == {}

    def test_non_object_returns_empty(self, project_dir: Path) -> None:
        config_dir = project_dir / DEFAULT_CONFIG_DIR_NAME
        config_dir.mkdir()
        (config_dir / CONFIG_FILE_NAME).write_text("[1, 2]", encoding="utf-8")
        assert _load_config_file(str(project_dir)) == {}


class TestEnvOverrides:
    def test_no_env_no_overrides(self) -> None:
        assert _load_env_overrides() == {}

    def test_all_supported_variables(self) -> None:
        os.environ[f"{ENV_PREFIX}LOG_LEVEL"] = "warning"
        os.environ[f"{ENV_PREFIX}STRICT"] = "yes"
        os.environ[f"{ENV_PREFIX}RETRY_MAX_ATTEMPTS"] = "2"
        os.environ[f"{ENV_PREFIX}RETRY_BASE_DELAY_MS"] = "10"
        os.environ[f"{ENV_PREFIX}RETRY_MULTIPLIER"] = "1.5"
        os.environ[f"{ENV_PREFIX}RETRY_JITTER"] = "0"
        assert _load_env_overrides() == {
            "log_level": "warning",
            "strict": True,
            "retry_max_attempts": 2,
            "retry_base_delay_ms": 10,
            "retry_multiplier": 1.5,
            "retry_jitter": 0.0,
        }

    def test_invalid_numbers_ignored_with_warning(self, caplog) -> None:
        os.environ[f"{ENV_PREFIX}RETRY_MAX_ATTEMPTS"] = "lots"
        os.environ[f"{ENV_PREFIX}RETRY_JITTER"] = "some"
        with caplog.at_level(logging.WARNING, logger="foundry_mcp.config"):
            overrides = _load_env_overrides()
        assert overrides == {}
        assert "RETRY_MAX_ATTEMPTS" in caplog.text
        assert "RETRY_JITTER" in caplog.text


# ---------------------------------------------------------------------------
# Project root detection
# ---------------------------------------------------------------------------


class TestDetectProjectRoot:
    def test_finds_marker_in_start_dir(self, project_dir: Path) -> None:
        assert _detect_project_root(project_dir) == project_dir.resolve()

    def test_walks_upward(self, project_dir: Path) -> None:
        nested = project_dir / "a" / "b"
        nested.mkdir(parents=True)
        assert _detect_project_root(nested) == project_dir.resolve()

    def test_foundry_dir_is_a_marker(self) -> None:
        assert ".foundry" in PROJECT_ROOT_MARKERS


# ---------------------------------------------------------------------------
# Persistence, retry policy and logging
# ---------------------------------------------------------------------------


class TestSaveAndPolicy:
    def test_save_round_trips(self, project_dir: Path) -> None:
        config = FoundryConfig(project_root=str(project_dir), strict=True, retry_jitter=0.1)
        path = config.save()
        assert path == project_dir.resolve() / DEFAULT_CONFIG_DIR_NAME / CONFIG_FILE_NAME
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["strict"] is True
        assert data["retry_jitter"] == 0.1
        assert "project_root" not in data

        reloaded = FoundryConfig.load(project_root=str(project_dir))
        assert reloaded.strict is True
        assert reloaded.retry_jitter == 0.1

    def test_retry_policy(self, project_dir: Path) -> None:
        config = FoundryConfig(
            project_root=str(project_dir),
            retry_max_attempts=4,
            retry_base_delay_ms=500,
            retry_multiplier=3.0,
            retry_jitter=0.0,
        )
        policy = config.retry_policy()
        assert isinstance(policy, RetryPolicy)
        assert policy.max_attempts == 4
        assert policy.base_delay == 0.5
        assert policy.multiplier == 3.0
        assert policy.jitter == 0.0

    def test_configure_logging_is_idempotent(self, project_dir: Path) -> None:
        config = FoundryConfig(project_root=str(project_dir), log_level="DEBUG")
        config.configure_logging()
        config.configure_logging()
        pkg_logger = logging.getLogger("foundry_mcp")
        assert len(pkg_logger.handlers) == 1
        assert pkg_logger.level == logging.DEBUG


# ---------------------------------------------------------------------------
# LinearConfig
# ---------------------------------------------------------------------------


class TestLinearConfig:
    def test_missing_credential_raises(self) -> None:
        with pytest.raises(ConfigurationError, match="LINEAR_API_TOKEN"):
            LinearConfig.from_env()

    def test_blank_credential_raises(self) -> None:
        os.environ["LINEAR_API_TOKEN"] = "   "
        with pytest.raises(ConfigurationError):
            LinearConfig.from_env()

    def test_defaults_from_env(self) -> None:
        os.environ["LINEAR_API_KEY"] = "lin_api_abc"
        config = LinearConfig.from_env()
        assert config.token == "lin_api_abc"
        assert config.endpoint == DEFAULT_LINEAR_ENDPOINT
        assert config.timeout_secs == DEFAULT_HTTP_TIMEOUT_SECS
        assert config.user_agent.startswith("foundry-mcp-linear/")

    def test_token_preferred_over_key(self) -> None:
        os.environ["LINEAR_API_TOKEN"] = "token-value"
        os.environ["LINEAR_API_KEY"] = "key-value"
        assert LinearConfig.from_env().token == "token-value"

    def test_endpoint_and_timeout_from_env(self) -> None:
        os.environ["LINEAR_API_TOKEN"] = "t"
        os.environ["LINEAR_GRAPHQL_ENDPOINT"] = "http://localhost:9/graphql"
        os.environ["LINEAR_HTTP_TIMEOUT_SECS"] = "7"
        config = LinearConfig.from_env()
        assert config.endpoint == "http://localhost:9/graphql"
        assert config.timeout_secs == 7

    @pytest.mark.parametrize("raw", ["soon", "0", "-3"])
    def test_invalid_timeout_falls_back(self, raw, caplog) -> None:
        os.environ["LINEAR_API_TOKEN"] = "t"
        os.environ["LINEAR_HTTP_TIMEOUT_SECS"] = raw
        with caplog.at_level(logging.WARNING, logger="foundry_mcp.config"):
            config = LinearConfig.from_env()
        assert config.timeout_secs == DEFAULT_HTTP_TIMEOUT_SECS
        assert "LINEAR_HTTP_TIMEOUT_SECS" in caplog.text

    def test_repr_hides_token(self) -> None:
        config = LinearConfig(token="lin_api_secret")
        assert "lin_api_secret" not in repr(config)
        assert "lin_api_secret" not in str(config)

    def test_credentials_present(self) -> None:
        assert linear_credentials_present() is False
        os.environ["LINEAR_API_KEY"] = "k"
        assert linear_credentials_present() is True

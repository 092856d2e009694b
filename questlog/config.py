"""
Configuration for the suggestion pipeline.

Provides PipelineConfig dataclass with settings for:
- Oracle endpoint, model, credentials and timeout
- Concurrency bound on in-flight oracle calls
- Thresholds and retry budgets for the analysis paths
- State directory for the goal store and log files
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_STATE_DIR = Path.home() / ".local" / "state" / "questlog"
DEFAULT_ORACLE_URL = "http://localhost:8000"
DEFAULT_ORACLE_MODEL = "llama31-8b-instruct"


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    """Parse boolean from environment variable string."""
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


def _parse_int(value: Optional[str], default: int) -> int:
    """Parse integer from environment variable string."""
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float(value: Optional[str], default: float) -> float:
    """Parse float from environment variable string."""
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def resolve_state_dir(base_dir: Optional[Path] = None) -> Path:
    """Resolve the base state directory.

    Handles both ~ and $VAR expansion so paths from systemd EnvironmentFile
    and shell scripts behave the same.
    """
    if base_dir is not None:
        return Path(os.path.expandvars(str(base_dir))).expanduser()
    env_dir = os.getenv("STATE_DIR") or os.getenv("QUESTLOG_STATE_DIR")
    if env_dir:
        return Path(os.path.expandvars(env_dir)).expanduser()
    return DEFAULT_STATE_DIR


@dataclass
class PipelineConfig:
    """
    Configuration for the suggestion pipeline.

    Attributes:
        oracle_url: Base URL of the OpenAI-compatible completion API.
        oracle_model: Model name sent with every request.
        oracle_api_key: Optional bearer token.
        oracle_timeout: Per-call timeout in seconds. A timeout is treated
            the same as a validation failure by callers.
        max_concurrent_calls: Upper bound on in-flight oracle calls shared
            by all analysis paths.
        status_confidence_floor: Status changes need confidence strictly
            above this value.
        relevance_attempts: Full-prompt attempts per goal in the relevance
            matcher.
        max_extra_subtasks: Maximum generated sub-tasks added when a task
            suggestion is upgraded to a goal suggestion.
        enable_status_updates: If False, the status-detection path is skipped.
        state_dir: Directory holding goal files and logs.
    """

    oracle_url: str = DEFAULT_ORACLE_URL
    oracle_model: str = DEFAULT_ORACLE_MODEL
    oracle_api_key: Optional[str] = None
    oracle_timeout: float = 60.0
    max_concurrent_calls: int = 4
    status_confidence_floor: float = 0.88
    relevance_attempts: int = 2
    max_extra_subtasks: int = 3
    enable_status_updates: bool = True
    state_dir: Path = DEFAULT_STATE_DIR

    @classmethod
    def from_env(cls, dotenv_path: Optional[Path] = None) -> "PipelineConfig":
        """
        Load configuration from environment variables.

        Values from a ``.env`` file are loaded first (without overriding
        variables already set in the process environment).

        Environment variables:
            LLM_API_URL: Oracle base URL
            LLM_MODEL / OLLAMA_MODEL: Oracle model name
            LLM_API_KEY / VLLM_API_KEY: Bearer token
            QUESTLOG_ORACLE_TIMEOUT: Per-call timeout in seconds (default: 60)
            QUESTLOG_MAX_CONCURRENT_CALLS: In-flight call bound (default: 4)
            QUESTLOG_STATUS_CONFIDENCE_FLOOR: Status change floor (default: 0.88)
            QUESTLOG_RELEVANCE_ATTEMPTS: Attempts per goal (default: 2)
            QUESTLOG_MAX_EXTRA_SUBTASKS: Upgrade sub-task cap (default: 3)
            QUESTLOG_ENABLE_STATUS_UPDATES: Run status detection (default: true)
            STATE_DIR / QUESTLOG_STATE_DIR: State directory

        Returns:
            PipelineConfig instance with values from environment.
        """
        load_dotenv(dotenv_path=dotenv_path)
        return cls(
            oracle_url=os.getenv("LLM_API_URL", DEFAULT_ORACLE_URL).rstrip("/"),
            oracle_model=(
                os.getenv("LLM_MODEL")
                or os.getenv("OLLAMA_MODEL")
                or DEFAULT_ORACLE_MODEL
            ),
            oracle_api_key=os.getenv("LLM_API_KEY") or os.getenv("VLLM_API_KEY"),
            oracle_timeout=_parse_float(
                os.getenv("QUESTLOG_ORACLE_TIMEOUT"), default=60.0
            ),
            max_concurrent_calls=_parse_int(
                os.getenv("QUESTLOG_MAX_CONCURRENT_CALLS"), default=4
            ),
            status_confidence_floor=_parse_float(
                os.getenv("QUESTLOG_STATUS_CONFIDENCE_FLOOR"), default=0.88
            ),
            relevance_attempts=_parse_int(
                os.getenv("QUESTLOG_RELEVANCE_ATTEMPTS"), default=2
            ),
            max_extra_subtasks=_parse_int(
                os.getenv("QUESTLOG_MAX_EXTRA_SUBTASKS"), default=3
            ),
            enable_status_updates=_parse_bool(
                os.getenv("QUESTLOG_ENABLE_STATUS_UPDATES"), default=True
            ),
            state_dir=resolve_state_dir(),
        )

    def validate(self) -> list[str]:
        """
        Validate configuration values.

        Returns:
            List of validation error messages (empty if valid).
        """
        errors: list[str] = []

        if self.oracle_timeout <= 0:
            errors.append("oracle_timeout must be positive")
        if self.max_concurrent_calls < 1:
            errors.append("max_concurrent_calls must be at least 1")
        if not (0.0 <= self.status_confidence_floor < 1.0):
            errors.append("status_confidence_floor must be in [0, 1)")
        if self.relevance_attempts < 1:
            errors.append("relevance_attempts must be at least 1")
        if not (1 <= self.max_extra_subtasks <= 3):
            errors.append("max_extra_subtasks must be between 1 and 3")

        return errors

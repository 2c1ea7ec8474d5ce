"""
Configuration management for the execution engine.

Handles environment variables, defaults, optional YAML/JSON config files
and configuration validation for all engine components.
"""

import json
import os
from typing import Optional, Dict, Any, Union
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml

ENV_PREFIX = "EXECUTION_ENGINE_"

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARN", "ERROR"]
VALID_LOG_FORMATS = ["text", "json"]


@dataclass
class Config:
    """Configuration class for the execution engine with environment variable support."""

    # Environment detection
    ci_mode: bool = field(default=False)

    # Browser settings
    headless_mode: Optional[bool] = field(default=None)

    # Logging configuration
    log_level: str = field(default="INFO")
    log_format: str = field(default="text")

    # Step retry settings
    step_max_attempts: int = field(default=3)
    step_initial_delay_ms: int = field(default=1000)
    step_max_delay_ms: int = field(default=8000)

    # Driver and transport timeouts
    navigation_timeout_ms: int = field(default=30000)
    action_timeout_ms: int = field(default=10000)
    api_timeout_ms: int = field(default=30000)

    # Time budget
    time_buffer_ms: int = field(default=30000)
    min_work_window_ms: int = field(default=60000)
    timeout_marker_threshold_ms: int = field(default=5000)
    task_timeout_seconds: int = field(default=900)

    # Failure detection
    suite_check_delay_ms: int = field(default=1000)
    consecutive_failure_window: int = field(default=3)
    suite_failure_threshold: float = field(default=50.0)

    # Event delivery
    event_webhook_url: Optional[str] = field(default=None)

    # Directory paths
    artifacts_dir: Path = field(default_factory=lambda: Path.cwd() / "artifacts")
    logs_dir: Path = field(default_factory=lambda: Path.cwd() / "logs")
    store_dir: Path = field(default_factory=lambda: Path.cwd() / "executions")

    def __post_init__(self):
        """Post-initialization normalisation and environment overrides."""
        ci_env = os.getenv("CI", "").lower() == "true"
        if ci_env and self.ci_mode is False:
            self.ci_mode = True

        headless_env = os.getenv(f"{ENV_PREFIX}HEADLESS")
        if headless_env is not None:
            self.headless_mode = headless_env.lower() == "true"

        log_env = os.getenv(f"{ENV_PREFIX}LOG_LEVEL")
        if log_env:
            self.log_level = log_env
        if self.log_level.upper() not in VALID_LOG_LEVELS:
            self.log_level = "INFO"
        else:
            self.log_level = self.log_level.upper()

        # CI output is machine-read
        if self.ci_mode and self.log_format == "text":
            self.log_format = "json"

        webhook_env = os.getenv(f"{ENV_PREFIX}EVENT_WEBHOOK_URL")
        if webhook_env:
            self.event_webhook_url = webhook_env

        for name in (
            "task_timeout_seconds",
            "suite_check_delay_ms",
            "step_max_attempts",
        ):
            value = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if value is None:
                continue
            try:
                setattr(self, name, int(value))
            except ValueError:
                pass

        for name in ("artifacts_dir", "logs_dir", "store_dir"):
            value = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if value:
                setattr(self, name, Path(value))
            else:
                setattr(self, name, Path(getattr(self, name)))

    @property
    def is_ci_mode(self) -> bool:
        """Check if running in CI environment."""
        return self.ci_mode

    @property
    def debug_enabled(self) -> bool:
        """Check if debug logging is enabled."""
        return self.log_level == "DEBUG"

    def get_effective_headless_mode(self) -> bool:
        """Headless unless explicitly disabled; test hosts have no display."""
        if self.headless_mode is not None:
            return self.headless_mode
        return True

    def get_log_file_path(self) -> Path:
        """Get the main log file path."""
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        return self.logs_dir / "execution-engine.log"

    def get_debug_log_dir(self) -> Path:
        """Get the debug log directory path."""
        debug_dir = self.logs_dir / "debug"
        debug_dir.mkdir(parents=True, exist_ok=True)
        return debug_dir

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for logging."""
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            data[f.name] = str(value) if isinstance(value, Path) else value
        return data

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables."""
        ci = os.getenv("CI", "").lower() == "true"
        return cls(
            ci_mode=ci,
            log_level=os.getenv(f"{ENV_PREFIX}LOG_LEVEL", "INFO").upper(),
            log_format="json" if ci else "text",
        )

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Config":
        """
        Create configuration from a YAML or JSON file.

        Environment variables still override values read from the file.

        Args:
            path: Path to a .yaml/.yml or .json file

        Returns:
            Loaded configuration
        """
        from .exceptions import ValidationError

        config_path = Path(path)
        if not config_path.exists():
            raise ValidationError(
                f"Configuration file not found: {config_path}",
                validation_type="config_file",
            )

        text = config_path.read_text(encoding="utf-8")
        try:
            if config_path.suffix.lower() == ".json":
                data = json.loads(text)
            else:
                data = yaml.safe_load(text)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise ValidationError(
                f"Invalid configuration file {config_path}: {e}",
                validation_type="config_file",
            )

        data = data or {}
        if not isinstance(data, dict):
            raise ValidationError(
                f"Configuration file must contain a mapping: {config_path}",
                validation_type="config_file",
            )

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValidationError(
                f"Unknown configuration keys: {', '.join(unknown)}",
                validation_type="config_file",
                violations=unknown,
            )

        return cls(**data)

    def validate(self) -> None:
        """Validate configuration and raise ValidationError if invalid."""
        from .exceptions import ValidationError

        errors = []

        if self.log_level not in VALID_LOG_LEVELS:
            errors.append(
                f"Invalid log level: {self.log_level}. Must be one of {VALID_LOG_LEVELS}"
            )

        if self.log_format not in VALID_LOG_FORMATS:
            errors.append(
                f"Invalid log format: {self.log_format}. Must be one of {VALID_LOG_FORMATS}"
            )

        if self.step_max_attempts < 1:
            errors.append("step_max_attempts must be at least 1")

        if self.step_initial_delay_ms < 0 or self.step_max_delay_ms < 0:
            errors.append("Retry delays must not be negative")

        if self.time_buffer_ms < 0 or self.min_work_window_ms < 0:
            errors.append("Time budget settings must not be negative")

        if self.consecutive_failure_window < 1:
            errors.append("consecutive_failure_window must be at least 1")

        if not 0 <= self.suite_failure_threshold <= 100:
            errors.append("suite_failure_threshold must be between 0 and 100")

        if errors:
            message = "Configuration validation failed: " + "; ".join(errors)
            raise ValidationError(
                message,
                validation_type="config",
                violations=errors,
            )

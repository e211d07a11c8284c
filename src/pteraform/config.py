"""Configuration management with validation.

All bounds are checked when the configuration is constructed so that a bad
environment fails before any terraform process is started.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import PurePath


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_TERRAFORM_BINARY = "terraform"
DEFAULT_STATE_FILENAME = "terraform.tfstate"

DEFAULT_INIT_TIMEOUT_SECONDS = 600
DEFAULT_APPLY_TIMEOUT_SECONDS = 3600
MAX_PHASE_TIMEOUT_SECONDS = 86400  # 24h

DEFAULT_TERMINATE_GRACE_SECONDS = 10
MAX_TERMINATE_GRACE_SECONDS = 300

DEFAULT_LOG_LEVEL = "INFO"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Config:
    """Provider configuration loaded from environment variables.

    A timeout of 0 disables the deadline for that phase; cancellation of the
    calling task still terminates the child process.
    """

    terraform_binary: str = DEFAULT_TERRAFORM_BINARY
    state_filename: str = DEFAULT_STATE_FILENAME

    # Timing
    init_timeout_seconds: int = DEFAULT_INIT_TIMEOUT_SECONDS
    apply_timeout_seconds: int = DEFAULT_APPLY_TIMEOUT_SECONDS
    terminate_grace_seconds: int = DEFAULT_TERMINATE_GRACE_SECONDS

    # Logging
    log_level: str = DEFAULT_LOG_LEVEL
    json_logging: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.terraform_binary.strip():
            errors.append("TERRAFORM_BINARY must not be empty")

        # The state artifact always lives inside the working directory
        state_path = PurePath(self.state_filename)
        if not self.state_filename.strip():
            errors.append("TERRAFORM_STATE_FILE must not be empty")
        elif state_path.is_absolute():
            errors.append(f"TERRAFORM_STATE_FILE must be relative: {self.state_filename}")
        elif ".." in state_path.parts:
            errors.append(
                f"TERRAFORM_STATE_FILE must not leave the working directory: "
                f"{self.state_filename}"
            )

        for key, value in (
            ("INIT_TIMEOUT", self.init_timeout_seconds),
            ("APPLY_TIMEOUT", self.apply_timeout_seconds),
        ):
            if not (0 <= value <= MAX_PHASE_TIMEOUT_SECONDS):
                errors.append(
                    f"{key} must be between 0 and {MAX_PHASE_TIMEOUT_SECONDS} seconds"
                )

        if not (0 <= self.terminate_grace_seconds <= MAX_TERMINATE_GRACE_SECONDS):
            errors.append(
                f"TERMINATE_GRACE_PERIOD must be between 0 and "
                f"{MAX_TERMINATE_GRACE_SECONDS} seconds"
            )

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def init_timeout(self) -> float | None:
        """Deadline for the init phase, None when disabled."""
        return float(self.init_timeout_seconds) if self.init_timeout_seconds else None

    @property
    def apply_timeout(self) -> float | None:
        """Deadline for the apply phase, None when disabled."""
        return float(self.apply_timeout_seconds) if self.apply_timeout_seconds else None

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level.upper())

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            TERRAFORM_BINARY: Executable name or path (default: terraform)
            TERRAFORM_STATE_FILE: State artifact path relative to the working
                directory (default: terraform.tfstate)
            INIT_TIMEOUT: Deadline for `terraform init` in seconds, 0 disables
                (default: 600)
            APPLY_TIMEOUT: Deadline for `terraform apply` in seconds, 0 disables
                (default: 3600)
            TERMINATE_GRACE_PERIOD: Seconds between SIGTERM and SIGKILL when a
                phase is cancelled (default: 10)
            LOG_LEVEL: Root log level (default: INFO)
            ENABLE_JSON_LOGGING: Emit JSON log lines (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            terraform_binary=os.environ.get("TERRAFORM_BINARY", DEFAULT_TERRAFORM_BINARY),
            state_filename=os.environ.get("TERRAFORM_STATE_FILE", DEFAULT_STATE_FILENAME),
            init_timeout_seconds=get_int("INIT_TIMEOUT", DEFAULT_INIT_TIMEOUT_SECONDS),
            apply_timeout_seconds=get_int("APPLY_TIMEOUT", DEFAULT_APPLY_TIMEOUT_SECONDS),
            terminate_grace_seconds=get_int(
                "TERMINATE_GRACE_PERIOD", DEFAULT_TERMINATE_GRACE_SECONDS
            ),
            log_level=os.environ.get("LOG_LEVEL", DEFAULT_LOG_LEVEL),
            json_logging=get_bool("ENABLE_JSON_LOGGING", True),
        )

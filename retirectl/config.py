"""Configuration management for the retirectl application.

Configuration is resolved once per run with the following precedence:
1. Explicitly passed parameters (CLI options)
2. Environment variables (RETIRE_*, optionally from a .env file)
3. Configuration file
4. Default values
"""
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .modules.models import BATCH_ID_PATTERN, RetryPolicy

# Load environment variables from .env file if it exists
load_dotenv()

logger = logging.getLogger("config")

DEFAULT_CONFIG_PATHS = [
    Path("/etc/retirectl/config.yaml"),
    Path("~/.config/retirectl/config.yaml"),
    Path("retirectl.yaml"),
]

# Applies to every cluster call that must eventually succeed.
RETRY_POLICY = RetryPolicy(max_attempts=12, delay=8.0)


class ConfigError(ValueError):
    """Raised when the run configuration is missing or invalid."""


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(f"RETIRE_{name}", default)


def _env_number(name: str, cast: Callable[[str], Any] = float, default: Any = None) -> Any:
    value = _env(name)
    if value in (None, ""):
        return default
    try:
        return cast(value)
    except ValueError:
        raise ConfigError(f"Invalid configuration: RETIRE_{name} must be a number, got {value!r}") from None


class SSHConfig(BaseModel):
    """SSH connection settings for reboot and agent checks."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    user: Optional[str] = Field(
        default_factory=lambda: _env("SSH_USER"),
        description="Remote username (ssh client default when unset)"
    )
    key_path: Optional[str] = Field(
        default_factory=lambda: _env("SSH_KEY_PATH"),
        description="Path to SSH private key"
    )
    port: int = Field(
        default_factory=lambda: _env_number("SSH_PORT", int, 22),
        description="SSH port number"
    )
    connect_timeout: int = Field(
        default_factory=lambda: _env_number("SSH_CONNECT_TIMEOUT", int, 10),
        description="SSH connection timeout in seconds"
    )
    command_timeout: int = Field(
        default_factory=lambda: _env_number("SSH_CMD_TIMEOUT", int, 60),
        description="SSH command execution timeout in seconds"
    )

    @field_validator('key_path')
    @classmethod
    def expand_key_path(cls, v: Optional[str]) -> Optional[str]:
        """Expand the user home directory in the key path."""
        return os.path.expanduser(v) if v else v


class PollConfig(BaseModel):
    """Polling intervals, and optional deadlines, for the blocking waits.

    A deadline of None waits forever.
    """
    model_config = ConfigDict(frozen=True, extra="ignore")

    selection_interval: float = 1
    detach_interval: float = 1
    agent_interval: float = 15
    ready_interval: float = 10
    drain_interval: float = 5
    detach_timeout: Optional[float] = Field(default_factory=lambda: _env_number("DETACH_TIMEOUT"))
    agent_timeout: Optional[float] = Field(default_factory=lambda: _env_number("AGENT_TIMEOUT"))
    ready_timeout: Optional[float] = Field(default_factory=lambda: _env_number("READY_TIMEOUT"))


class LoggingConfig(BaseModel):
    """Logging configuration."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    level: str = Field(default_factory=lambda: _env("LOG_LEVEL", "INFO").upper())
    file: Optional[str] = Field(
        default_factory=lambda: _env("LOG_FILE"),
        description="Path to log file (if None, logs to stderr only)"
    )
    max_size_mb: int = 100
    backup_count: int = 5


class RetireConfig(BaseModel):
    """Everything a retirement run needs, captured once and never mutated."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    context: str = Field(description="Kubeconfig context of the target cluster")
    role: str = Field(description="Value of the role label selecting the node pool")
    drain_timeout: float = Field(default=300, description="Seconds a single drain may block")
    proxy: Optional[str] = Field(default=None, description="HTTP proxy for control-plane calls")
    resume: Optional[str] = Field(default=None, description="Batch id of an interrupted run")
    kubeconfig: Optional[str] = Field(default_factory=lambda: _env("KUBECONFIG"))
    agent_service: str = Field(default_factory=lambda: _env("AGENT_SERVICE", "kubelet"))
    role_label: str = "role"
    batch_label: str = "retiring"
    ssh: SSHConfig = Field(default_factory=SSHConfig)
    polling: PollConfig = Field(default_factory=PollConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator('context', 'role')
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator('drain_timeout')
    @classmethod
    def positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @field_validator('resume')
    @classmethod
    def valid_batch_id(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not BATCH_ID_PATTERN.match(v):
            raise ValueError(f"'{v}' is not a batch id of the form YYYY-MM-DDTHH-MM-SSZ")
        return v

    @property
    def retry_policy(self) -> RetryPolicy:
        return RETRY_POLICY

    @classmethod
    def load(cls, config_path: Optional[Union[str, Path]] = None, **overrides: Any) -> 'RetireConfig':
        """Build the configuration from file, environment and explicit overrides.

        Overrides whose value is None are ignored so unset CLI options don't
        mask file or environment values.
        """
        config_data: Dict[str, Any] = {}

        if config_path:
            path = Path(config_path).expanduser().absolute()
            if not path.exists():
                raise ConfigError(f"Config file not found: {path}")
            config_data = cls._load_config_file(path)
        else:
            for path in DEFAULT_CONFIG_PATHS:
                path = path.expanduser().absolute()
                if path.exists():
                    config_data = cls._load_config_file(path)
                    break

        env_values = {
            "context": _env("CONTEXT"),
            "role": _env("ROLE"),
            "drain_timeout": _env("DRAIN_TIMEOUT"),
            "proxy": _env("PROXY"),
        }
        config_data.update({k: v for k, v in env_values.items() if v is not None})
        config_data.update({k: v for k, v in overrides.items() if v is not None})

        try:
            return cls(**config_data)
        except ConfigError:
            raise
        except (ValidationError, ValueError) as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    @classmethod
    def _load_config_file(cls, path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML file."""
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config from {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Invalid config format in {path}: expected mapping, got {type(data).__name__}")
        logger.debug(f"Loaded config from {path}")
        return data

    def describe(self) -> List[str]:
        """Human-readable summary lines for the start of a run."""
        return [
            f"context={self.context}",
            f"role={self.role}",
            f"drain_timeout={self.drain_timeout:g}s",
            f"proxy={self.proxy or '-'}",
            f"resume={self.resume or '-'}",
            f"agent_service={self.agent_service}",
        ]

"""
GCProbe: Configuration System

All configuration is Pydantic-validated and loaded from:
1. A YAML (or JSON) config file
2. Environment variables (overrides, and the only sane place for secrets)

A missing or malformed required value is a startup error: ``load_config``
raises ConfigurationError before any stage runs.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from gcprobe.diagnostics.types import DeadlineSpec, Stage


class ConfigurationError(ValueError):
    """Startup configuration is missing or malformed. No run is attempted."""

    def __init__(self, message: str, fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.fields = fields or []


EXAMPLE_CONFIG: dict[str, Any] = {
    "account": {
        "username": "your_steam_username",
        "password": "your_steam_password",
        "shared_secret": "your_shared_secret_from_mafile",
        "target_id": "76561199556731347",
    },
}

# ─── Sub-configs ──────────────────────────────────────────────────


class AccountConfig(BaseModel):
    username: str = ""
    password: str = ""
    shared_secret: str = ""  # base64, as found in a mobile authenticator export
    target_id: str = ""  # 64-bit id of the profile the data-plane probe asks for

    @model_validator(mode="after")
    def _strip(self) -> AccountConfig:
        # Secret managers like to append \r\n to injected values
        for name in ("username", "password", "shared_secret", "target_id"):
            value = getattr(self, name)
            if value:
                object.__setattr__(self, name, value.strip())
        return self

    def missing_fields(self) -> list[str]:
        return [
            f"account.{name}"
            for name in ("username", "password", "shared_secret", "target_id")
            if not getattr(self, name)
        ]

    @field_validator("target_id")
    @classmethod
    def _target_is_numeric(cls, value: str) -> str:
        value = value.strip()
        if value and (not value.isdigit() or int(value) >= 2**64):
            raise ValueError("target_id must be a decimal 64-bit id")
        return value


class TimeoutConfig(BaseModel):
    authenticate_ms: int = Field(default=60_000, gt=0)
    establish_session_ms: int = Field(default=60_000, gt=0)
    handshake_subsystem_ms: int = Field(default=120_000, gt=0)
    data_plane_request_ms: int = Field(default=30_000, gt=0)
    global_ms: int = Field(default=300_000, gt=0)

    @property
    def global_s(self) -> float:
        return self.global_ms / 1000.0

    def deadline_specs(self) -> list[DeadlineSpec]:
        return [
            DeadlineSpec(stage, getattr(self, f"{stage.value}_ms") / 1000.0)
            for stage in Stage.ordered()
        ]


class ScenarioStep(BaseModel):
    """How the simulated remote answers one stage."""

    delay_ms: int = Field(default=100, ge=0)
    # "succeed" | "fail" | "silent" | "empty" (data plane only)
    outcome: str = "succeed"
    result_code: int | None = None  # login failures only
    reason: str = ""

    @field_validator("outcome")
    @classmethod
    def _known_outcome(cls, value: str) -> str:
        if value not in ("succeed", "fail", "silent", "empty"):
            raise ValueError(f"unknown outcome {value!r}")
        return value


class BackendConfig(BaseModel):
    provider: str = "simulated"  # "simulated" | "import"
    factory: str = ""  # "package.module:callable" when provider == "import"
    time_scale: float = Field(default=1.0, gt=0)  # simulated only; 0.001 runs at 1000x speed
    scenario: dict[Stage, ScenarioStep] = Field(default_factory=dict)
    profile: dict[str, Any] = Field(
        default_factory=lambda: {
            "account_id": 1596465619,
            "medals": {"display_items_defidx": [874, 4551]},
            "commendation": {"cmd_friendly": 3, "cmd_teaching": 2, "cmd_leader": 1},
            "player_level": 12,
        }
    )

    @field_validator("provider")
    @classmethod
    def _known_provider(cls, value: str) -> str:
        if value not in ("simulated", "import"):
            raise ValueError(f"unknown backend provider {value!r}")
        return value

    @model_validator(mode="after")
    def _factory_required_for_import(self) -> BackendConfig:
        if self.provider == "import" and ":" not in self.factory:
            raise ValueError("backend.factory must be 'module:callable' when provider is 'import'")
        return self


class ReportConfig(BaseModel):
    format: str = "text"  # "text" | "json"

    @field_validator("format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        if value not in ("text", "json"):
            raise ValueError(f"unknown report format {value!r}")
        return value


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "console"  # "console" | "json"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {value!r}")
        return value

    @field_validator("format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        if value not in ("console", "json"):
            raise ValueError(f"unknown log format {value!r}")
        return value


# ─── Root Configuration ──────────────────────────────────────────


class GCProbeConfig(BaseSettings):
    """
    Root configuration. Loads from YAML, overridable by env vars.
    """

    model_config = SettingsConfigDict(
        env_prefix="GCPROBE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: str = "development"
    shutdown_grace_ms: int = Field(default=1000, ge=0)

    account: AccountConfig = Field(default_factory=AccountConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    report: ReportConfig = Field(default_factory=ReportConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(config_path: str | Path | None = None) -> GCProbeConfig:
    """
    Load configuration from a YAML/JSON file, then apply environment overrides.

    Raises ConfigurationError when the file is unreadable, a value fails
    validation, or one of the four account values is missing.
    """
    raw: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            try:
                with open(path) as f:
                    raw = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as exc:
                raise ConfigurationError(f"Error reading {path}: {exc}") from exc
            if not isinstance(raw, dict):
                raise ConfigurationError(f"{path} must contain a mapping at the top level")

    # Inject secrets from environment
    env_account: dict[str, Any] = {}
    if username := os.environ.get("GCPROBE_USERNAME"):
        env_account["username"] = username
    if password := os.environ.get("GCPROBE_PASSWORD"):
        env_account["password"] = password
    if shared_secret := os.environ.get("GCPROBE_SHARED_SECRET"):
        env_account["shared_secret"] = shared_secret
    if target_id := os.environ.get("GCPROBE_TARGET_ID"):
        env_account["target_id"] = target_id
    if env_account:
        raw = _deep_merge(raw, {"account": env_account})

    try:
        config = GCProbeConfig(**raw)
    except ValidationError as exc:
        fields = [".".join(str(part) for part in err["loc"]) for err in exc.errors()]
        raise ConfigurationError(
            f"Invalid configuration: {exc.error_count()} error(s) in {', '.join(fields)}",
            fields=fields,
        ) from exc

    missing = config.account.missing_fields()
    if missing:
        raise ConfigurationError(
            f"Missing required configuration: {', '.join(missing)}",
            fields=missing,
        )
    return config

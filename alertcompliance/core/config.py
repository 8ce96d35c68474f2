"""
Configuration for the compliance tester.

Values come from the YAML config file (`settings`, `auth` and `test_cases`
sections). `ALERTGEN_*` environment variables fill in values the file leaves out.
"""
from functools import lru_cache
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings

from alertcompliance.core.exceptions import SetupError


class AuthConfig(BaseModel):
    """Basic auth credentials for one endpoint."""

    basic_auth_user: str = ""
    basic_auth_pass: str = ""

    @model_validator(mode="after")
    def validate_pass_when_user_set(self) -> "AuthConfig":
        if self.basic_auth_user and not self.basic_auth_pass:
            raise ValueError("basic_auth_pass is missing while basic_auth_user is set")
        return self

    @property
    def credentials(self) -> Optional[tuple[str, str]]:
        """(user, pass) tuple for httpx, or None when auth is not configured."""
        if not self.basic_auth_user:
            return None
        return (self.basic_auth_user, self.basic_auth_pass)


class AuthSettings(BaseModel):
    """Per-endpoint authentication."""

    remote_write: AuthConfig = Field(default_factory=AuthConfig)
    rules_and_alerts_api: AuthConfig = Field(default_factory=AuthConfig)
    query: AuthConfig = Field(default_factory=AuthConfig)


class Settings(BaseSettings):
    """Compliance tester settings."""

    remote_write_url: str = Field(
        ...,
        description="URL to remote write samples to"
    )
    query_base_url: str = Field(
        ...,
        description="Base URL for GET <base>/api/v1/query"
    )
    rules_and_alerts_api_base_url: str = Field(
        ...,
        description="Base URL for GET <base>/api/v1/rules and <base>/api/v1/alerts"
    )
    alert_reception_server_port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Port of the alert receiving server"
    )

    disable_rules_api_check: bool = Field(default=False)
    disable_alerts_api_check: bool = Field(default=False)
    disable_alerts_metrics_check: bool = Field(default=False)
    disable_alerts_reception_check: bool = Field(default=False)

    alert_message_parser: str = Field(
        default="default",
        description="Name of the parser for received alert notifications"
    )

    auth: AuthSettings = Field(default_factory=AuthSettings)

    test_cases: List[str] = Field(
        default_factory=list,
        description="Rule group test cases to run, all when empty"
    )

    log_level: str = Field(
        default="INFO",
        description="Log level for the process"
    )

    @field_validator("remote_write_url", "query_base_url", "rules_and_alerts_api_base_url")
    @classmethod
    def validate_url_set(cls, v: str, info) -> str:
        v = v.strip()
        if not v:
            raise ValueError(f"{info.field_name} is not set")
        return v

    @field_validator("alert_message_parser", mode="before")
    @classmethod
    def default_parser_name(cls, v: Optional[str]) -> str:
        if v is None or not str(v).strip():
            return "default"
        return str(v).strip()

    @property
    def all_checks_disabled(self) -> bool:
        return (
            self.disable_alerts_api_check
            and self.disable_rules_api_check
            and self.disable_alerts_metrics_check
            and self.disable_alerts_reception_check
        )

    class Config:
        env_prefix = "ALERTGEN_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_nested_delimiter = "__"


def _flatten_config(raw: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(raw) - {"settings", "auth", "test_cases"}
    if unknown:
        raise SetupError(f"unknown config sections: {', '.join(sorted(unknown))}")
    values: Dict[str, Any] = dict(raw.get("settings") or {})
    if raw.get("auth"):
        values["auth"] = raw["auth"]
    if raw.get("test_cases"):
        values["test_cases"] = raw["test_cases"]
    return values


def load_settings(path: str) -> Settings:
    """Parse and validate the YAML config file at `path`."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except OSError as e:
        raise SetupError(f"reading config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise SetupError(f"parsing YAML file {path}: {e}") from e

    if not isinstance(raw, dict):
        raise SetupError(f"parsing YAML file {path}: top level must be a mapping")

    try:
        return Settings(**_flatten_config(raw))
    except ValidationError as e:
        raise SetupError(f"invalid config file {path}: {e}") from e


@lru_cache()
def get_settings(config_file: str) -> Settings:
    """Get cached settings for a config file."""
    return load_settings(config_file)

"""
Settings models for the MCP Conductor framework.
"""

import enum
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from mcp_conductor.errors import ConfigError

DEFAULT_CONFIG_FILENAME = "mcp_conductor.config.yaml"
ENV_PREFIX = "CONDUCTOR_"


class ServerDescriptor(BaseModel):
    """How to launch or attach to one MCP server. Immutable once loaded."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: Optional[str] = None
    transport: str = "stdio"
    command: Optional[str] = None
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    url: Optional[str] = None
    encoding_error_handler: Literal["strict", "ignore", "replace"] = Field(
        default="strict",
        validation_alias=AliasChoices("encoding_error_handler", "encodingErrorHandler"),
    )
    read_timeout_seconds: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("read_timeout_seconds", "readTimeoutSeconds"),
    )
    connect_timeout_seconds: float = Field(
        default=30.0,
        validation_alias=AliasChoices("connect_timeout_seconds", "connectTimeoutSeconds"),
    )
    max_retries: int = Field(
        default=0, ge=0, validation_alias=AliasChoices("max_retries", "maxRetries")
    )
    retry_backoff_seconds: float = Field(
        default=0.5,
        ge=0,
        validation_alias=AliasChoices("retry_backoff_seconds", "retryBackoffSeconds"),
    )

    @field_validator("args", mode="before")
    @classmethod
    def _none_args(cls, value):
        return value or []

    @field_validator("env", mode="before")
    @classmethod
    def _expand_env(cls, value):
        if not value:
            return {}
        return {str(k): os.path.expandvars(str(v)) for k, v in value.items()}

    @model_validator(mode="after")
    def _check_transport(self) -> "ServerDescriptor":
        if self.transport == "stdio" and not self.command:
            raise ValueError(f"Command is required for stdio transport: {self.name}")
        if self.transport == "sse" and not self.url:
            raise ValueError(f"URL is required for SSE transport: {self.name}")
        return self


class AgentMapping(BaseModel):
    """Which servers and specialties a role prefers."""

    model_config = ConfigDict(populate_by_name=True)

    preferred_servers: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices(
            "preferred_servers", "preferredServers", "preferredTools"
        ),
    )
    specialties: List[str] = Field(default_factory=list)


class SelectionFallback(str, enum.Enum):
    """What tool selection does when nothing matches the task."""

    FIRST_TOOL = "first_tool"
    NONE = "none"

    def __str__(self) -> str:
        return self.value


def _default_keyword_routes() -> Dict[str, List[str]]:
    return {
        "filesystem": ["file", "project", "code"],
        "sqlite": ["data", "store", "save"],
        "brave-search": ["search", "find", "research"],
    }


class DispatchSettings(BaseModel):
    """Settings for tool selection and dispatch."""

    fallback: SelectionFallback = SelectionFallback.FIRST_TOOL
    max_tools: int = Field(default=3, ge=1)
    parallel: bool = False
    keyword_routes: Dict[str, List[str]] = Field(default_factory=_default_keyword_routes)


class MCPSettings(BaseModel):
    """Settings for MCP configuration."""

    servers: Dict[str, ServerDescriptor] = Field(default_factory=dict)
    request_timeout_seconds: float = Field(default=30.0, gt=0)

    @model_validator(mode="before")
    @classmethod
    def _name_servers(cls, data: Any) -> Any:
        # Descriptor names come from their mapping keys.
        if isinstance(data, dict) and isinstance(data.get("servers"), dict):
            servers = {}
            for key, value in data["servers"].items():
                if isinstance(value, dict):
                    value = {**value, "name": key}
                elif isinstance(value, ServerDescriptor):
                    value = value.model_copy(update={"name": key})
                servers[key] = value
            data = {**data, "servers": servers}
        return data


class LoggingSettings(BaseModel):
    """Settings for logging configuration."""

    level: str = "info"
    file_path: Optional[str] = None


class Settings(BaseModel):
    """Root settings object for the MCP Conductor framework."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    mcp: MCPSettings = Field(default_factory=MCPSettings)
    agents: Dict[str, AgentMapping] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("agents", "agentMappings", "agent_mappings"),
    )
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @model_validator(mode="before")
    @classmethod
    def _accept_mcp_servers_layout(cls, data: Any) -> Any:
        # The JSON layout used by other MCP hosts: {"mcpServers": {...}}
        if isinstance(data, dict) and "mcpServers" in data:
            data = dict(data)
            mcp = dict(data.get("mcp") or {})
            mcp.setdefault("servers", data.pop("mcpServers") or {})
            data["mcp"] = mcp
        return data


def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load and validate the configuration from a YAML or JSON file.

    Args:
        config_path: Path to the configuration file.
            If None, look for 'mcp_conductor.config.yaml' in the current directory.

    Returns:
        Settings: Validated configuration object.

    Raises:
        ConfigError: If the file cannot be parsed or fails validation.
    """
    if config_path is None:
        config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILENAME)

    config_data: Dict[str, Any] = {}

    if os.path.exists(config_path):
        config_data = _read_mapping(config_path)

    # Load secrets if they exist
    secrets_path = Path(config_path).with_suffix(".secrets.yaml")
    if secrets_path.exists():
        _merge_dicts(config_data, _read_mapping(str(secrets_path)))

    dotenv_path = Path(config_path).parent / ".env"
    if dotenv_path.exists():
        load_dotenv(dotenv_path=dotenv_path)

    # Environment variables override file settings
    env_config = _load_from_env()
    if env_config:
        _merge_dicts(config_data, env_config)

    try:
        return Settings.model_validate(config_data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in {config_path}: {exc}") from exc


def _read_mapping(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Could not read configuration {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration {path} must contain a mapping at the top level")
    return data


def _load_from_env() -> Dict[str, Any]:
    """
    Load configuration from environment variables.

    Returns:
        Dict with configuration loaded from environment variables.
    """
    config: Dict[str, Any] = {}

    _set_nested_dict(config, ["logging", "level"], os.environ.get("LOG_LEVEL"))
    _set_nested_dict(config, ["logging", "file_path"], os.environ.get("LOG_FILE"))

    # CONDUCTOR_SECTION__KEY -> section.key
    for key, value in os.environ.items():
        if key.startswith(ENV_PREFIX):
            path = [part for part in key[len(ENV_PREFIX):].lower().split("__") if part]
            if path:
                _set_nested_dict(config, path, value)

    return config


def _set_nested_dict(d: Dict[str, Any], path: List[str], value: Any) -> None:
    """
    Set a value in a nested dictionary based on a path.

    Args:
        d: Dictionary to set value in.
        path: List of keys defining the path.
        value: Value to set.
    """
    if value is None:
        return

    if len(path) == 1:
        d[path[0]] = value
        return

    if not isinstance(d.get(path[0]), dict):
        d[path[0]] = {}

    _set_nested_dict(d[path[0]], path[1:], value)


def _merge_dicts(target: Dict, source: Dict) -> None:
    """
    Recursively merge source dictionary into target dictionary.
    Values in source will override values in target.
    """
    for key, value in source.items():
        if key in target and isinstance(target[key], dict) and isinstance(value, dict):
            _merge_dicts(target[key], value)
        else:
            target[key] = value

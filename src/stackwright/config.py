"""Configuration management for Stackwright.

This module defines the configuration schema using Pydantic settings,
supporting TOML files, environment variables, and programmatic overrides.

Configuration loading priority (highest to lowest):
1. Environment variables (STACKWRIGHT_* prefix)
2. TOML configuration file or programmatic values (constructor arguments)
3. Default values defined in this module

Example TOML configuration:
    container-cli = "podman"
    compose-cli = "podman compose"

    [orchestrator]
    ready_timeout_seconds = 300

Example environment variable override:
    STACKWRIGHT_TOOLS__ORCHESTRATOR_CLI="microk8s kubectl"
    STACKWRIGHT_COMPILE__BASE_PORT=9000
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import tomli
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


class ToolsConfig(BaseSettings):
    """External tool invocation names.

    Attributes:
        container_cli: Container CLI binary (docker, podman)
        compose_cli: Compose invocation, may contain a subcommand
        orchestrator_cli: Kubernetes CLI invocation
        inherit_output: Stream tool output to the terminal instead of capturing it
    """

    model_config = SettingsConfigDict(
        env_prefix="STACKWRIGHT_TOOLS__",
        extra="forbid",
    )

    container_cli: str = Field(default="docker")
    compose_cli: str = Field(default="docker compose")
    orchestrator_cli: str = Field(default="kubectl")
    inherit_output: bool = Field(default=False)


class PathsConfig(BaseSettings):
    """Filesystem locations.

    Attributes:
        source_folder: Directory holding diagram sources
        output_dir: Directory receiving generated stack artifacts
        manifest_dir: Manifest registry root (None uses the bundled manifests)
        diagram_suffix: File suffix appended to a diagram identifier
    """

    model_config = SettingsConfigDict(
        env_prefix="STACKWRIGHT_PATHS__",
        extra="forbid",
    )

    source_folder: Path = Field(default=Path("scenarios"))
    output_dir: Path = Field(default=Path("build"))
    manifest_dir: Path | None = Field(default=None)
    diagram_suffix: str = Field(default=".puml")


class CompileConfig(BaseSettings):
    """Compile pipeline settings.

    Attributes:
        base_port: First host port handed out to published service ports
    """

    model_config = SettingsConfigDict(
        env_prefix="STACKWRIGHT_COMPILE__",
        extra="forbid",
    )

    base_port: int = Field(default=8080, ge=1, le=65535)


class OrchestratorConfig(BaseSettings):
    """Kubernetes target settings.

    Attributes:
        namespace: Namespace override (None derives it from the diagram id)
        ready_timeout_seconds: Rollout wait per deployment
        failure_phrase: stderr phrase that marks a broken port-forward
        stop_grace_seconds: Time between SIGTERM and SIGKILL on tunnel shutdown
    """

    model_config = SettingsConfigDict(
        env_prefix="STACKWRIGHT_ORCHESTRATOR__",
        extra="forbid",
    )

    namespace: str | None = Field(default=None)
    ready_timeout_seconds: int = Field(default=180, ge=1, le=3600)
    failure_phrase: str = Field(default="error forwarding port")
    stop_grace_seconds: float = Field(default=5.0, ge=0.0, le=60.0)


class ChecksConfig(BaseSettings):
    """Post-deployment check settings.

    Attributes:
        timeout_seconds: Total time a service may take to answer
        interval_seconds: Delay between probes of the same service
        request_timeout_seconds: Timeout of a single HTTP probe
    """

    model_config = SettingsConfigDict(
        env_prefix="STACKWRIGHT_CHECKS__",
        extra="forbid",
    )

    timeout_seconds: float = Field(default=120.0, gt=0.0)
    interval_seconds: float = Field(default=2.0, gt=0.0)
    request_timeout_seconds: float = Field(default=5.0, gt=0.0)


class LoggingConfig(BaseSettings):
    """Logging configuration.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Log format (json or console)
        file: Optional log file path (None for stderr only)
        rotation_size_mb: Log file rotation size in megabytes
        retention_count: Number of rotated log files to keep
    """

    model_config = SettingsConfigDict(
        env_prefix="STACKWRIGHT_LOGGING__",
        extra="forbid",
    )

    level: str = Field(default="WARNING")
    format: str = Field(default="console")
    file: Path | None = Field(default=None)
    rotation_size_mb: int = Field(default=10, ge=1, le=1000)
    retention_count: int = Field(default=3, ge=1, le=100)

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level is recognized."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format is recognized."""
        valid_formats = {"json", "console"}
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Invalid log format: {v}. Must be one of {valid_formats}")
        return v_lower


class StackwrightConfig(BaseSettings):
    """Root configuration for Stackwright.

    Aggregates all section configurations. Built once at process start and
    passed explicitly to the components that need it.

    Environment variable format for nested config:
        STACKWRIGHT_<SECTION>__<KEY>=value
    """

    model_config = SettingsConfigDict(
        env_prefix="STACKWRIGHT_",
        env_nested_delimiter="__",
        extra="forbid",
    )

    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    compile: CompileConfig = Field(default_factory=CompileConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    checks: ChecksConfig = Field(default_factory=ChecksConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # TOML values arrive as constructor arguments, environment must win over them
        return env_settings, init_settings, dotenv_settings, file_secret_settings


def _fold_flat_tool_keys(data: dict[str, Any]) -> dict[str, Any]:
    """Move flat top-level tool keys into the ``tools`` section.

    Accepts both ``container-cli`` and ``container_cli`` spellings. Keys already
    present under ``[tools]`` take precedence over flat ones.
    """
    tool_fields = set(ToolsConfig.model_fields)
    folded: dict[str, Any] = {}
    tools: dict[str, Any] = {}

    for key, value in data.items():
        normalized = key.replace("-", "_")
        if normalized in tool_fields and not isinstance(value, dict):
            tools[normalized] = value
        else:
            folded[key] = value

    if tools:
        section = dict(folded.get("tools", {}))
        folded["tools"] = {**tools, **section}
    return folded


def load_config(config_path: Path | None = None) -> StackwrightConfig:
    """Load configuration from a TOML file with environment variable overrides.

    Configuration search order (first found is used):
    1. config_path if explicitly provided
    2. ./stackwright.toml (current directory)

    Args:
        config_path: Explicit path to TOML config file. If None, searches
                    the current directory.

    Returns:
        StackwrightConfig: Fully resolved configuration instance.

    Raises:
        FileNotFoundError: If config_path is explicitly provided but doesn't exist.
        ValueError: If the TOML file is unparsable or contains invalid configuration.
    """
    toml_data: dict[str, Any] = {}

    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        selected_path: Path | None = config_path
    else:
        default_path = Path.cwd() / "stackwright.toml"
        selected_path = default_path if default_path.exists() else None

    if selected_path is not None:
        try:
            with open(selected_path, "rb") as f:
                toml_data = tomli.load(f)
        except tomli.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {selected_path}: {e}") from e

    try:
        return StackwrightConfig(**_fold_flat_tool_keys(toml_data))
    except Exception as e:
        if selected_path:
            raise ValueError(f"Invalid configuration in {selected_path}: {e}") from e
        raise ValueError(f"Invalid configuration: {e}") from e

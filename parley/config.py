"""Configuration management for Parley."""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Paths
DEFAULT_CONFIG_PATH = Path("~/.parley/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"

DEFAULT_BASE_URL = "https://thinkai.lat/api"

ResponseMode = Literal["general", "code"]


class TransportConfig(BaseModel):
    """Remote service endpoint and retry configuration."""

    base_url: str = DEFAULT_BASE_URL
    timeout: float = 30.0
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0


class AgentConfig(BaseModel):
    """Turn orchestration configuration."""

    working_dir: str = ""
    user_memory: str = ""
    full_context: bool = False
    default_mode: ResponseMode = "code"
    planner_history_turns: int = 8
    mode_history_turns: int = 3
    tool_timeout: float = 30.0
    # Scan conversational replies for code blocks and write them to disk.
    implicit_file_writes: bool = False


class ShellToolConfig(BaseModel):
    """Shell tool configuration."""

    timeout: int = 30
    blocked: list[str] = [
        "rm -rf /",
        "mkfs",
        ":(){:|:&};:",
    ]


class ToolsConfig(BaseModel):
    """Tools configuration."""

    enabled: list[str] = [
        "write_file",
        "read_file",
        "run_shell_command",
        "list_directory",
    ]
    shell: ShellToolConfig = Field(default_factory=ShellToolConfig)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for Parley."""

    transport: TransportConfig = Field(default_factory=TransportConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="PARLEY_",
        env_file=".env",
        env_nested_delimiter="__",
        frozen=True,
    )

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Config":
        """Load configuration; YAML values win over PARLEY_* env vars."""
        return cls.from_yaml(path)

    def resolved_working_dir(self) -> Path:
        """Resolve the working directory, falling back to cwd."""
        raw = (self.agent.working_dir or "").strip()
        if not raw:
            return Path.cwd().resolve()
        return Path(raw).expanduser().resolve()


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config

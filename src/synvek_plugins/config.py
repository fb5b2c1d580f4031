"""
Synvek Plugin Runtime Configuration.

Sections:
- LoggingConfig: console / rotating file logging
- SandboxConfig: limits applied to every guest interpreter
- ServicesConfig: agent server used to answer plugin requests
- ToolsConfig: out-of-process tool plugin execution
"""
import os
from typing import Tuple, Callable, Type, Optional, List
from pathlib import Path

from pydantic import BaseModel

from pydantic_settings import (
    BaseSettings,
    SettingsConfigDict,
    TomlConfigSettingsSource,
    InitSettingsSource,
    EnvSettingsSource,
    DotEnvSettingsSource,
    SecretsSettingsSource,
)

# Default config file lives at the repository root; SYNVEK_PLUGINS_CONFIG overrides it.
BASE_DIR = Path(__file__).resolve().parent.parent.parent
TOML_PATH = Path(os.environ.get("SYNVEK_PLUGINS_CONFIG", BASE_DIR / "synvek_plugins.toml"))


class LoggingConfig(BaseModel):
    level: str = "INFO"
    guest_level: Optional[str] = None  # Level for relayed guest stderr; None follows `level`
    log_to_file: bool = False
    log_file: str = "synvek_plugins.log"
    rotation_size_mb: int = 10
    rotation_backup_count: int = 5
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class SandboxConfig(BaseModel):
    """
    Guest process settings.

    The guest is a child Python interpreter; these limits are applied inside
    it before any plugin code runs.
    """

    python_executable: Optional[str] = None  # Default: the host interpreter
    ready_timeout_seconds: float = 5.0  # PLUGIN_READY must arrive within this window
    shutdown_timeout_seconds: float = 2.0  # Grace period before the guest is killed

    cpu_time_seconds: int = 30
    memory_bytes: int = 512 * 1024 * 1024
    max_open_files: int = 64
    max_frame_bytes: int = 16 * 1024 * 1024

    allow_network: bool = False
    allow_subprocesses: bool = False


class ServicesConfig(BaseModel):
    """Agent server that backs speech, chat and image requests."""

    agent_server_url: str = "http://127.0.0.1:12001"
    request_timeout_seconds: float = 120.0
    default_model: Optional[str] = None

    speech_format: str = "wav"  # "wav" | "pcm"
    speech_speed: float = 1.0

    image_count: int = 1
    image_width: int = 256
    image_height: int = 256


class ToolsConfig(BaseModel):
    plugin_dir: Optional[str] = None  # Extra directory of <name>/plugin.json plugins
    execution_timeout_seconds: float = 15.0
    activated_plugins: List[str] = ["math-function-tools"]  # Seeds activatedToolPlugins for the CLI


class AppSettings(BaseSettings):
    """
    Main settings class that loads configuration from various sources.
    Uses defaults if the file or keys are missing.
    """

    logging: LoggingConfig = LoggingConfig()
    sandbox: SandboxConfig = SandboxConfig()
    services: ServicesConfig = ServicesConfig()
    tools: ToolsConfig = ToolsConfig()

    model_config = SettingsConfigDict(
        extra="forbid",
        env_prefix="SYNVEK_",
        env_nested_delimiter="__",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: InitSettingsSource,
        env_settings: EnvSettingsSource,
        dotenv_settings: DotEnvSettingsSource,
        file_secret_settings: SecretsSettingsSource,
    ) -> Tuple[Callable, ...]:
        """
        Define the priority order for loading settings sources.
        Our TOML file is inserted with high priority.
        """
        return (
            init_settings,
            TomlConfigSettingsSource(settings_cls, toml_file=TOML_PATH),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )


# Singleton used throughout the package.
settings = AppSettings()

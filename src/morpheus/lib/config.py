"""
Configuration management and validation for Morpheus.

Provides configuration loading, validation, and management for the router,
the sandboxed capability agents and the HTTP server.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError


class ObservabilityConfig(BaseModel):
    """Configuration for observability settings."""
    enabled: bool = False
    service_name: str = "morpheus"
    service_version: str = "1.0.0"
    environment: str = "development"
    otlp_endpoint: str = "http://localhost:4317"
    trace_sampling_ratio: float = Field(default=1.0, ge=0.0, le=1.0)
    export_timeout: int = Field(default=30, gt=0)
    resource_attributes: Dict[str, str] = Field(default_factory=dict)


class LoggingConfig(BaseModel):
    """Configuration for logging settings."""
    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    format: str = Field(default="structured", pattern="^(structured|simple)$")
    directory: str = "~/.morpheus/logs"
    max_file_size: int = Field(default=10 * 1024 * 1024, gt=0)  # 10MB
    backup_count: int = Field(default=5, ge=1)
    include_trace: bool = True
    environment: str = "development"


class ServerConfig(BaseModel):
    """Configuration for the HTTP/websocket server."""
    host: str = "localhost"
    port: int = Field(default=8000, ge=1, le=65535)
    workers: int = Field(default=1, ge=1)
    enable_cors: bool = False
    cors_origins: List[str] = Field(default_factory=list)


class RouterConfig(BaseModel):
    """Configuration for the supervisor router."""
    history_window: int = Field(default=10, ge=1, le=200)
    min_confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class CompletionConfig(BaseModel):
    """Configuration for the language-model completion service."""
    provider: str = Field(default="anthropic", pattern="^(anthropic)$")
    model: str = "claude-3-5-sonnet-latest"
    api_key_env: str = "ANTHROPIC_API_KEY"
    max_tokens: int = Field(default=1024, gt=0)
    temperature: float = Field(default=0.2, ge=0.0, le=1.0)
    timeout: float = Field(default=60.0, gt=0)


class TerminalConfig(BaseModel):
    """Configuration for the command-exec sandbox."""
    sandbox_root: str = "./sandbox"
    timeout_seconds: float = Field(default=10.0, gt=0)


class EditorConfig(BaseModel):
    """Configuration for the file-edit sandbox."""
    sandbox_root: str = "./sandbox"


class WebConfig(BaseModel):
    """Configuration for the browser sandbox."""
    headless: bool = True
    screenshot_dir: str = "./screenshots"
    navigation_timeout_ms: int = Field(default=30000, gt=0)


class ToolConfig(BaseModel):
    """Configuration for the external tool invoker."""
    request_timeout: float = Field(default=30.0, gt=0)
    builtin_tools: bool = True
    credentials: Dict[str, str] = Field(default_factory=dict)


class MorpheusConfig(BaseModel):
    """Main Morpheus configuration."""
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    router: RouterConfig = Field(default_factory=RouterConfig)
    completion: CompletionConfig = Field(default_factory=CompletionConfig)
    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    editor: EditorConfig = Field(default_factory=EditorConfig)
    web: WebConfig = Field(default_factory=WebConfig)
    tool: ToolConfig = Field(default_factory=ToolConfig)

    # Global settings
    debug: bool = False
    config_file_path: Optional[str] = None


class ConfigurationManager:
    """Manages Morpheus configuration loading and validation."""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or self._get_default_config_path()
        self.config: Optional[MorpheusConfig] = None

    def _get_default_config_path(self) -> str:
        """Get the default configuration file path."""
        if "MORPHEUS_CONFIG_PATH" in os.environ:
            return os.environ["MORPHEUS_CONFIG_PATH"]

        candidates = [
            "~/.morpheus/config/config.yaml",
            "./config/config.yaml",
            "./config.yaml"
        ]

        for candidate in candidates:
            path = Path(candidate).expanduser()
            if path.exists():
                return str(path)

        return "~/.morpheus/config/config.yaml"

    def load_config(self, config_path: Optional[str] = None) -> MorpheusConfig:
        """Load and validate configuration from file."""
        if config_path:
            self.config_path = config_path

        config_file = Path(self.config_path).expanduser()

        if not config_file.exists():
            self._create_default_config(config_file)

        try:
            with open(config_file, 'r') as f:
                config_data = yaml.safe_load(f) or {}

            if not isinstance(config_data, dict):
                raise ConfigurationError(f"Config file {config_file} must contain a mapping")

            config_data = self._merge_environment_config(config_data)

            self.config = MorpheusConfig(**config_data)
            self.config.config_file_path = str(config_file)

            return self.config

        except ConfigurationError:
            raise
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file {config_file}: {e}")
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed: {e}")
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Error loading configuration: {e}")

    def _create_default_config(self, config_file: Path) -> None:
        """Create a default configuration file."""
        config_file.parent.mkdir(parents=True, exist_ok=True)

        default_config = {
            "observability": {
                "service_name": "morpheus",
                "environment": "development",
                "otlp_endpoint": os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
            },
            "logging": {
                "level": os.getenv("MORPHEUS_LOG_LEVEL", "INFO"),
                "directory": "~/.morpheus/logs"
            },
            "server": {
                "host": os.getenv("MORPHEUS_HOST", "localhost"),
                "port": int(os.getenv("MORPHEUS_PORT", "8000"))
            },
            "router": {
                "history_window": 10,
                "min_confidence": 0.0
            },
            "completion": {
                "provider": "anthropic",
                "api_key_env": "ANTHROPIC_API_KEY"
            },
            "terminal": {
                "sandbox_root": "./sandbox",
                "timeout_seconds": 10
            },
            "editor": {
                "sandbox_root": "./sandbox"
            },
            "web": {
                "headless": True,
                "screenshot_dir": "./screenshots"
            },
            "tool": {
                "builtin_tools": True
            }
        }

        with open(config_file, 'w') as f:
            yaml.dump(default_config, f, default_flow_style=False, indent=2)

    def _merge_environment_config(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Merge configuration with environment variables."""
        env_mappings = {
            "MORPHEUS_LOG_LEVEL": ["logging", "level"],
            "MORPHEUS_HOST": ["server", "host"],
            "MORPHEUS_PORT": ["server", "port"],
            "MORPHEUS_DEBUG": ["debug"],
            "OTEL_EXPORTER_OTLP_ENDPOINT": ["observability", "otlp_endpoint"]
        }

        for env_var, config_path in env_mappings.items():
            if env_var in os.environ:
                value = os.environ[env_var]

                if env_var == "MORPHEUS_PORT":
                    value = int(value)
                elif env_var == "MORPHEUS_DEBUG":
                    value = value.lower() in ("true", "1", "yes")

                current = config_data
                for key in config_path[:-1]:
                    current = current.setdefault(key, {})
                current[config_path[-1]] = value

        return config_data

    def get_config(self) -> MorpheusConfig:
        """Get the loaded configuration."""
        if self.config is None:
            raise ConfigurationError("Configuration not loaded. Call load_config() first.")
        return self.config

    def validate_config(self) -> List[str]:
        """Validate the current configuration and return any warnings."""
        warnings = []
        config = self.get_config()

        if config.debug and config.observability.environment == "production":
            warnings.append("Debug mode enabled in production environment")

        if config.observability.trace_sampling_ratio < 1.0 and config.observability.environment == "development":
            warnings.append("Trace sampling ratio less than 1.0 in development environment")

        if not os.environ.get(config.completion.api_key_env):
            warnings.append(
                f"Completion API key variable {config.completion.api_key_env} is not set; "
                "routing will rely on fallback rules"
            )

        if Path(config.terminal.sandbox_root).expanduser().resolve() == Path("/"):
            warnings.append("Terminal sandbox root is the filesystem root")

        if Path(config.editor.sandbox_root).expanduser().resolve() == Path("/"):
            warnings.append("Editor sandbox root is the filesystem root")

        if config.router.min_confidence > 0.8:
            warnings.append("Router min_confidence above 0.8 discards most fallback decisions")

        return warnings


class ConfigurationError(Exception):
    """Exception raised for configuration-related errors."""
    pass


_config_manager: Optional[ConfigurationManager] = None


def initialize_config(config_path: Optional[str] = None) -> ConfigurationManager:
    """Initialize global configuration manager."""
    global _config_manager
    _config_manager = ConfigurationManager(config_path)
    _config_manager.load_config()
    return _config_manager


def get_config_manager() -> ConfigurationManager:
    """Get the global configuration manager instance."""
    if _config_manager is None:
        raise ConfigurationError("Configuration not initialized. Call initialize_config() first.")
    return _config_manager


def get_config() -> MorpheusConfig:
    """Get the global configuration."""
    return get_config_manager().get_config()

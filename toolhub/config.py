import json
import os
import threading
import time
import tomllib
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from toolhub.schema import ServerConfig, parse_server_config


def get_project_root() -> Path:
    """Get the project root directory"""
    return Path(__file__).resolve().parent.parent


PROJECT_ROOT = get_project_root()
CONFIG_DIR = PROJECT_ROOT / "config"

NETWORK_ONLY_ENV = "TOOLHUB_MCP_NETWORK_ONLY"


class LogLevel(str, Enum):
    """Supported log levels"""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ConfigurationChangeHandler(FileSystemEventHandler):
    """File system event handler for configuration changes"""

    def __init__(self, config_instance):
        self.config_instance = config_instance
        self.last_modified = {}

    def on_modified(self, event):
        if event.is_directory:
            return

        file_path = Path(event.src_path)
        if file_path.suffix in [".toml", ".json"]:
            # Debounce rapid file changes
            current_time = time.time()
            if file_path in self.last_modified:
                if current_time - self.last_modified[file_path] < 1.0:
                    return

            self.last_modified[file_path] = current_time
            self.config_instance._handle_config_change(file_path)


class LogSettings(BaseModel):
    print_level: LogLevel = Field(LogLevel.INFO, description="Level printed to stderr")
    logfile_level: LogLevel = Field(
        LogLevel.DEBUG, description="Level written to the log file"
    )
    name: Optional[str] = Field(None, description="Log file name prefix")


class MCPSettings(BaseModel):
    """Configuration for MCP (Model Context Protocol) clients"""

    client_name: str = Field("toolhub", description="Client name sent in handshakes")
    client_version: str = Field("1.0.0", description="Client version sent in handshakes")
    network_only: bool = Field(
        False, description="Refuse stdio servers and allow network transports only"
    )
    auto_disconnect_seconds: Optional[float] = Field(
        None, description="Disconnect idle servers after this many seconds"
    )
    servers: Dict[str, ServerConfig] = Field(
        default_factory=dict, description="MCP server configurations"
    )

    @field_validator("auto_disconnect_seconds")
    @classmethod
    def validate_auto_disconnect_seconds(cls, v):
        if v is not None and v <= 0:
            raise ValueError("auto_disconnect_seconds must be positive")
        return v

    @classmethod
    def load_server_config(cls, config_dir: Path = CONFIG_DIR) -> Dict[str, ServerConfig]:
        """Load MCP server configuration from JSON file"""
        config_path = config_dir / "mcp.json"
        if not config_path.exists():
            return {}

        try:
            with config_path.open() as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ValueError(f"Failed to load MCP server config: {e}") from e

        return {
            name: parse_server_config(server_config)
            for name, server_config in data.get("mcpServers", {}).items()
        }


class AppConfig(BaseModel):
    log: LogSettings = Field(default_factory=LogSettings)
    mcp: MCPSettings = Field(default_factory=MCPSettings)


def _env_flag(name: str) -> Optional[bool]:
    value = os.environ.get(name)
    if value is None:
        return None
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    _instance = None
    _lock = threading.Lock()
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not self._initialized:
            with self._lock:
                if not self._initialized:
                    self._config: Optional[AppConfig] = None
                    self._config_dir = CONFIG_DIR
                    self._change_callbacks: List[Callable[[str, Optional[Path]], Any]] = []
                    self._file_observer = None
                    self._hot_reload_enabled = False
                    self._config = self._parse_config(self._load_config())
                    self._initialized = True

    def _get_config_path(self) -> Optional[Path]:
        config_path = self._config_dir / "config.toml"
        if config_path.exists():
            return config_path
        example_path = self._config_dir / "config.example.toml"
        if example_path.exists():
            return example_path
        return None

    def _load_config(self) -> dict:
        config_path = self._get_config_path()
        if config_path is None:
            return {}
        with config_path.open("rb") as f:
            return tomllib.load(f)

    def _parse_config(self, raw_config: dict) -> AppConfig:
        """Parse raw configuration into AppConfig object"""
        log_settings = LogSettings(**raw_config.get("log", {}))

        mcp_config = dict(raw_config.get("mcp", {}))
        mcp_config["servers"] = MCPSettings.load_server_config(self._config_dir)
        network_only = _env_flag(NETWORK_ONLY_ENV)
        if network_only is not None:
            mcp_config["network_only"] = network_only

        return AppConfig(log=log_settings, mcp=MCPSettings(**mcp_config))

    def _setup_hot_reload(self):
        """Set up file system monitoring for configuration hot reloading"""
        if not self._config_dir.exists():
            return
        self._file_observer = Observer()
        self._file_observer.schedule(
            ConfigurationChangeHandler(self), str(self._config_dir), recursive=False
        )
        self._file_observer.start()
        self._hot_reload_enabled = True

    def _handle_config_change(self, file_path: Path):
        """Handle configuration file changes"""
        if not self._hot_reload_enabled:
            return

        if self._reload_configuration():
            self._notify_change_callbacks("config_reloaded", file_path)

    def _reload_configuration(self) -> bool:
        """Reload configuration from files, keeping the current one on failure"""
        try:
            new_config = self._parse_config(self._load_config())
        except Exception as e:
            print(f"Configuration reload failed, keeping current configuration: {e}")
            return False

        self._config = new_config
        return True

    def register_change_callback(self, callback: Callable[[str, Optional[Path]], Any]):
        """Register a callback invoked after every successful reload"""
        self._change_callbacks.append(callback)

    def unregister_change_callback(self, callback: Callable[[str, Optional[Path]], Any]):
        if callback in self._change_callbacks:
            self._change_callbacks.remove(callback)

    def _notify_change_callbacks(self, event_type: str, file_path: Optional[Path]):
        for callback in list(self._change_callbacks):
            try:
                callback(event_type, file_path)
            except Exception as e:
                print(f"Error in configuration change callback: {e}")

    def enable_hot_reload(self):
        """Start watching the config directory for changes"""
        if not self._hot_reload_enabled:
            self._setup_hot_reload()

    def disable_hot_reload(self):
        """Stop watching the config directory"""
        self._hot_reload_enabled = False
        if self._file_observer:
            self._file_observer.stop()
            self._file_observer.join()
            self._file_observer = None

    def force_reload(self) -> bool:
        """Force reload configuration from files"""
        if self._reload_configuration():
            self._notify_change_callbacks("config_reloaded", None)
            return True
        return False

    def __del__(self):
        """Cleanup when Config instance is destroyed"""
        if getattr(self, "_file_observer", None):
            try:
                self._file_observer.stop()
                self._file_observer.join()
            except RuntimeError:
                pass

    @property
    def log_config(self) -> LogSettings:
        return self._config.log

    @property
    def mcp_config(self) -> MCPSettings:
        """Get the MCP configuration"""
        return self._config.mcp

    @property
    def config_dir(self) -> Path:
        return self._config_dir

    @property
    def root_path(self) -> Path:
        """Get the root path of the application"""
        return PROJECT_ROOT


config = Config()

"""
Server Configuration
Loads settings from defaults, an optional YAML file and DUMPY_* environment
variables (in increasing order of precedence).
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATH = "config/dumpy.yaml"


class ServerConfig(BaseModel):
    """Configuration model for the connection server."""

    server_name: str = Field(default="dumpy-connect")
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=3001, ge=1, le=65535)
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = None
    audit_file: Optional[str] = None
    console_logging: bool = True
    audit_connections: bool = True
    reaper_interval_seconds: float = Field(default=60.0, gt=0)
    connect_timeout_seconds: float = Field(default=5.0, gt=0)
    cors_origins: List[str] = Field(default_factory=lambda: [
        "http://localhost:3000",
        "http://localhost:5172",
        "http://localhost:5174",
    ])


def _as_bool(value: Any) -> bool:
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _read_yaml(config_path: Path) -> Dict[str, Any]:
    if not config_path.exists():
        return {}
    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def load_config(
    config_path: Optional[Path] = None,
    env_file: Optional[Path] = None,
    **overrides: Any
) -> ServerConfig:
    """
    Build a ServerConfig.

    Args:
        config_path: YAML file; defaults to $DUMPY_CONFIG_PATH or config/dumpy.yaml
        env_file: .env file to load before reading the environment
        **overrides: Values that win over every other source (CLI flags)

    Returns:
        The merged configuration
    """
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()

    config_path = config_path or Path(os.getenv("DUMPY_CONFIG_PATH", DEFAULT_CONFIG_PATH))
    yaml_config = _read_yaml(config_path)
    server = yaml_config.get("server", {})
    logging_section = yaml_config.get("logging", {})
    pool = yaml_config.get("pool", {})

    values: Dict[str, Any] = {
        "server_name": os.getenv("DUMPY_SERVER_NAME", server.get("name", "dumpy-connect")),
        "host": os.getenv("DUMPY_HOST", server.get("host", "127.0.0.1")),
        "port": int(os.getenv("DUMPY_PORT", os.getenv("PORT", server.get("port", 3001)))),
        "log_level": os.getenv("DUMPY_LOG_LEVEL", logging_section.get("level", "INFO")),
        "log_file": os.getenv("DUMPY_LOG_FILE", logging_section.get("file")),
        "audit_file": os.getenv("DUMPY_AUDIT_FILE", logging_section.get("audit_file")),
        "console_logging": _as_bool(
            os.getenv("DUMPY_CONSOLE_LOGGING", logging_section.get("console", True))
        ),
        "audit_connections": _as_bool(
            os.getenv("DUMPY_AUDIT_CONNECTIONS", logging_section.get("audit_connections", True))
        ),
        "reaper_interval_seconds": float(
            os.getenv("DUMPY_REAPER_INTERVAL_SECONDS", pool.get("reaper_interval_seconds", 60))
        ),
        "connect_timeout_seconds": float(
            os.getenv("DUMPY_CONNECT_TIMEOUT_SECONDS", pool.get("connect_timeout_seconds", 5))
        ),
    }

    origins = os.getenv("DUMPY_CORS_ORIGINS")
    if origins:
        values["cors_origins"] = [o.strip() for o in origins.split(",") if o.strip()]
    elif server.get("cors_origins"):
        values["cors_origins"] = list(server["cors_origins"])

    values.update({k: v for k, v in overrides.items() if v is not None})
    return ServerConfig(**values)

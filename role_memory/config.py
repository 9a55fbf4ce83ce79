import os
from dataclasses import dataclass

import yaml

CONFIG_ENV_KEY = "CONFIG_PATH"
TOKEN_ENV_KEY = "DISCORD_TOKEN"
PORT_ENV_KEY = "PORT"
DEFAULT_CONFIG_PATH = "config.yml"
DEFAULT_HEALTH_PORT = 3000


@dataclass
class BotConfig:
    token: str
    log_level: str
    database_path: str
    health_host: str = "0.0.0.0"
    health_port: int = DEFAULT_HEALTH_PORT
    maintenance_endpoint: bool = False


def _read_yaml(config_path: str) -> dict:
    if not os.path.exists(config_path):
        return {}
    with open(config_path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file '{config_path}' must contain a mapping")
    return data


def load_config(path: str | None = None) -> BotConfig:
    config_path = path or os.environ.get(CONFIG_ENV_KEY, DEFAULT_CONFIG_PATH)
    data = _read_yaml(config_path)

    token = (os.environ.get(TOKEN_ENV_KEY) or str(data.get("token") or "")).strip()
    if not token:
        raise ValueError(f"Config missing 'token' (or {TOKEN_ENV_KEY} env)")

    log_level = str(data.get("log_level") or "INFO").upper()
    valid_levels = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
    if log_level not in valid_levels:
        raise ValueError(
            f"Invalid log_level '{log_level}'. Must be one of {sorted(valid_levels)}"
        )

    database_path = str(data.get("database_path") or "role_memory.db")

    health_host = str(data.get("health_host") or "0.0.0.0")
    raw_port = os.environ.get(PORT_ENV_KEY) or data.get("health_port")
    try:
        health_port = int(raw_port) if raw_port else DEFAULT_HEALTH_PORT
    except (TypeError, ValueError):
        raise ValueError(f"Invalid health_port '{raw_port}'") from None
    if not 0 < health_port < 65536:
        raise ValueError(f"Invalid health_port '{health_port}'")

    maintenance_endpoint = data.get("maintenance_endpoint", False)
    if not isinstance(maintenance_endpoint, bool):
        raise ValueError("'maintenance_endpoint' must be true or false")

    return BotConfig(
        token=token,
        log_level=log_level,
        database_path=database_path,
        health_host=health_host,
        health_port=health_port,
        maintenance_endpoint=maintenance_endpoint,
    )

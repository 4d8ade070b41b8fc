from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any

DEFAULT_OPTIONS_PATH = "/data/options.json"
DEFAULT_CREDENTIALS_PATH = "/data/credentials.json"

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000
DEFAULT_HUB_TIMEOUT_S = 30.0
DEFAULT_DIM_MIN = 0
DEFAULT_DIM_MAX = 15


@dataclass(frozen=True)
class ServerConfig:
    host: str
    port: int


@dataclass(frozen=True)
class HubConfig:
    factory: str
    timeout_s: float | None  # None: hub calls are not bounded
    dim_min: int
    dim_max: int


@dataclass(frozen=True)
class Settings:
    server: ServerConfig
    hub: HubConfig
    credentials_path: str
    debug: bool


def read_options() -> dict[str, Any]:
    path = os.environ.get("ICS_GATEWAY_OPTIONS", DEFAULT_OPTIONS_PATH)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: options must be a JSON object")
    return data


def load_settings(options: dict[str, Any]) -> Settings:
    def _read_float(raw: dict[str, Any], key: str, default: float) -> float:
        try:
            v = raw.get(key)
            if v is None:
                return float(default)
            return float(v)
        except (TypeError, ValueError):
            return float(default)

    def _read_int(raw: dict[str, Any], key: str, default: int) -> int:
        try:
            v = raw.get(key)
            if v is None or isinstance(v, bool):
                return int(default)
            return int(v)
        except (TypeError, ValueError):
            return int(default)

    server_raw = options.get("server") or {}
    host = str(server_raw.get("host") or DEFAULT_HOST).strip() or DEFAULT_HOST
    port = _read_int(server_raw, "port", DEFAULT_PORT)
    if not 0 < port < 65536:
        port = DEFAULT_PORT

    hub_raw = options.get("hub") or {}
    timeout_s: float | None = max(0.0, _read_float(hub_raw, "timeout_s", DEFAULT_HUB_TIMEOUT_S))
    if not timeout_s:
        timeout_s = None

    dim_min = _read_int(hub_raw, "dim_min", DEFAULT_DIM_MIN)
    dim_max = _read_int(hub_raw, "dim_max", DEFAULT_DIM_MAX)
    if dim_min > dim_max:
        dim_min, dim_max = DEFAULT_DIM_MIN, DEFAULT_DIM_MAX

    credentials_path = (
        os.environ.get("ICS_GATEWAY_CREDENTIALS")
        or str(options.get("credentials_path") or "").strip()
        or DEFAULT_CREDENTIALS_PATH
    )

    return Settings(
        server=ServerConfig(host=host, port=port),
        hub=HubConfig(
            factory=str(hub_raw.get("factory") or "").strip(),
            timeout_s=timeout_s,
            dim_min=dim_min,
            dim_max=dim_max,
        ),
        credentials_path=credentials_path,
        debug=bool(options.get("debug") or False),
    )

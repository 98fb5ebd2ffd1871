"""Configuration loader and validation for p1_mqtt_bridge."""

import logging
from enum import Enum
from pathlib import Path
from typing import NamedTuple
from urllib.parse import urlsplit

import yaml
from pydantic import BaseModel, field_validator, model_validator

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# scheme -> (default port, use TLS)
BROKER_SCHEMES = {
    "tcp": (1883, False),
    "mqtt": (1883, False),
    "ssl": (8883, True),
    "tls": (8883, True),
    "mqtts": (8883, True),
}


class Role(str, Enum):
    PUBLISHER = "publisher"
    SUBSCRIBER = "subscriber"


class BrokerAddress(NamedTuple):
    host: str
    port: int
    tls: bool


def parse_broker_uri(uri: str) -> BrokerAddress:
    """Split a broker URI such as ``tcp://localhost:1883`` into host, port and TLS flag."""
    if "://" not in uri:
        uri = f"tcp://{uri}"
    parts = urlsplit(uri)
    scheme = parts.scheme.lower()
    if scheme not in BROKER_SCHEMES:
        raise ValueError(f"Unsupported broker scheme '{parts.scheme}'. Must be one of {sorted(BROKER_SCHEMES)}")
    if not parts.hostname:
        raise ValueError(f"Broker URI '{uri}' has no host")
    default_port, tls = BROKER_SCHEMES[scheme]
    return BrokerAddress(parts.hostname, parts.port or default_port, tls)


class BridgeConfig(BaseModel):
    host: str
    port: int
    connect_timeout: float = 10.0


class MqttConfig(BaseModel):
    broker: str
    client_id: str
    topic: str
    qos: int = 0
    retain: bool = False
    username: str | None = None
    password: str | None = None
    keepalive: int = 60
    connect_timeout: float = 10.0
    publish_timeout: float | None = 10.0

    @field_validator("broker")
    @classmethod
    def validate_broker(cls, v: str) -> str:
        parse_broker_uri(v)
        return v

    @field_validator("qos")
    @classmethod
    def validate_qos(cls, v: int) -> int:
        if v not in (0, 1, 2):
            raise ValueError(f"Invalid qos {v}. Must be 0, 1 or 2")
        return v

    @property
    def address(self) -> BrokerAddress:
        return parse_broker_uri(self.broker)


class BackupConfig(BaseModel):
    path: str = ""


class FramerConfig(BaseModel):
    max_telegram_size: int | None = None


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: str | None = None

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"Invalid log level '{v}'. Must be one of {allowed}")
        return v_upper


class AppConfig(BaseModel):
    role: Role = Role.PUBLISHER
    verbose: bool = False
    bridge: BridgeConfig | None = None
    mqtt: MqttConfig
    backup: BackupConfig = BackupConfig()
    framer: FramerConfig = FramerConfig()
    logging: LoggingConfig = LoggingConfig()

    @field_validator("role", mode="before")
    @classmethod
    def default_role(cls, v):
        if v is None or v == "":
            return Role.PUBLISHER
        return v

    @model_validator(mode="after")
    def validate_role_sections(self) -> "AppConfig":
        if self.role is Role.SUBSCRIBER and not self.backup.path:
            raise ValueError("backup.path is required when role is 'subscriber'")
        if self.role is Role.PUBLISHER and self.bridge is None:
            raise ValueError("bridge section is required when role is 'publisher'")
        return self

    @property
    def log_level(self) -> str:
        return "DEBUG" if self.verbose else self.logging.level


def load_config(config_path: Path | None = None) -> AppConfig:
    if config_path is None:
        config_path = PROJECT_ROOT / "config.yaml"
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    with config_path.open() as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Configuration file {config_path} must contain a mapping, got {type(raw).__name__}")
    return AppConfig(**raw)

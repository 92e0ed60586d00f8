"""
Configuration for packctl.

Supports:
- Environment variable configuration
- YAML file configuration
- Explicit CLI overrides (highest precedence)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class PackSignConfig:
    """Defaults for signing and verification.

    All fields are optional; CLI flags always win over these values.
    """

    private_key_path: Path | None = None
    public_key_path: Path | None = None
    key_id: str | None = None
    allow_unsigned: bool = False
    log_level: str = "WARNING"

    def __post_init__(self):
        """Validate configuration after initialization."""
        self.log_level = self.log_level.upper()
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {self.log_level}")
        if self.private_key_path is not None:
            self.private_key_path = Path(self.private_key_path)
        if self.public_key_path is not None:
            self.public_key_path = Path(self.public_key_path)

    @property
    def logging_level(self) -> int:
        return getattr(logging, self.log_level)

    @classmethod
    def from_env(cls) -> PackSignConfig:
        """
        Create configuration from environment variables.

        Environment variables:
            PACKSIGN_PRIVATE_KEY: Path to the private key PEM
            PACKSIGN_PUBLIC_KEY: Path to the public key PEM
            PACKSIGN_KEY_ID: Key identifier override for signing
            PACKSIGN_ALLOW_UNSIGNED: Accept unsigned packs (true/false)
            PACKSIGN_LOG_LEVEL: Logging level name
        """
        private_key = os.getenv("PACKSIGN_PRIVATE_KEY")
        public_key = os.getenv("PACKSIGN_PUBLIC_KEY")

        return cls(
            private_key_path=Path(private_key) if private_key else None,
            public_key_path=Path(public_key) if public_key else None,
            key_id=os.getenv("PACKSIGN_KEY_ID") or None,
            allow_unsigned=_parse_bool(os.getenv("PACKSIGN_ALLOW_UNSIGNED", "false")),
            log_level=os.getenv("PACKSIGN_LOG_LEVEL", "WARNING"),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PackSignConfig:
        """Create configuration from dictionary (e.g., YAML)."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")

        allow_unsigned = data.get("allow_unsigned", False)
        if isinstance(allow_unsigned, str):
            allow_unsigned = _parse_bool(allow_unsigned)

        return cls(
            private_key_path=data.get("private_key_path"),
            public_key_path=data.get("public_key_path"),
            key_id=data.get("key_id"),
            allow_unsigned=bool(allow_unsigned),
            log_level=data.get("log_level", "WARNING"),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> PackSignConfig:
        """Load configuration from a YAML file."""
        return cls.from_dict(read_config_file(path))

    def merged(self, data: dict[str, Any]) -> PackSignConfig:
        """Overlay the keys present in ``data``; absent keys keep this config's values."""
        overlay = PackSignConfig.from_dict(data)
        return replace(self, **{key: getattr(overlay, key) for key in data})

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "private_key_path": str(self.private_key_path) if self.private_key_path else None,
            "public_key_path": str(self.public_key_path) if self.public_key_path else None,
            "key_id": self.key_id,
            "allow_unsigned": self.allow_unsigned,
            "log_level": self.log_level,
        }


def read_config_file(path: Path) -> dict[str, Any]:
    """Read the raw YAML mapping, resolving relative key paths against the file's directory."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping")

    base = Path(path).parent
    for key in ("private_key_path", "public_key_path"):
        value = data.get(key)
        if value and not Path(value).is_absolute():
            data[key] = base / value
    return data


def load_config(config_file: Path | None = None) -> PackSignConfig:
    """Environment configuration, overlaid with the keys set in ``config_file``."""
    config = PackSignConfig.from_env()
    if config_file is not None:
        config = config.merged(read_config_file(config_file))
    return config

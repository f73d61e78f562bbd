"""
Configuration loading for kvorchestra clients.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml


DEFAULT_API_ENDPOINT = "https://datastore.googleapis.com"


@dataclass
class ClientConfig:
    """Connection and default request settings for a Datastore client."""
    project_id: Optional[str] = None
    database_id: Optional[str] = None
    namespace: Optional[str] = None
    api_endpoint: str = DEFAULT_API_ENDPOINT
    timeout: float = 30.0
    access_token: Optional[str] = None
    wrap_numbers: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClientConfig":
        """Create config from dictionary."""
        return cls(
            project_id=data.get("project_id"),
            database_id=data.get("database_id"),
            namespace=data.get("namespace"),
            api_endpoint=data.get("api_endpoint", DEFAULT_API_ENDPOINT),
            timeout=float(data.get("timeout", 30.0)),
            access_token=data.get("access_token"),
            wrap_numbers=bool(data.get("wrap_numbers", False)),
        )

    @classmethod
    def from_env(cls, base: Optional["ClientConfig"] = None) -> "ClientConfig":
        """
        Overlay environment variables on a config.

        DATASTORE_EMULATOR_HOST points the client at a local emulator over
        plain HTTP.
        """
        config = base or cls()
        config.project_id = os.getenv("DATASTORE_PROJECT_ID", config.project_id)
        config.database_id = os.getenv("DATASTORE_DATABASE_ID", config.database_id)
        config.namespace = os.getenv("DATASTORE_NAMESPACE", config.namespace)

        emulator_host = os.getenv("DATASTORE_EMULATOR_HOST")
        if emulator_host:
            if "://" not in emulator_host:
                emulator_host = f"http://{emulator_host}"
            config.api_endpoint = emulator_host
        return config

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary for YAML serialization."""
        data = {
            "project_id": self.project_id,
            "database_id": self.database_id,
            "namespace": self.namespace,
            "api_endpoint": self.api_endpoint,
            "timeout": self.timeout,
            "wrap_numbers": self.wrap_numbers,
        }
        return {k: v for k, v in data.items() if v is not None}

    def save(self, path: Path | str = "kvorchestra.yaml") -> None:
        """Save configuration to YAML file (the access token is never written)."""
        path = Path(path)
        content = yaml.dump(self.to_dict(), default_flow_style=False, sort_keys=False)
        path.write_text(content)


def load_config(path: Path | str = "kvorchestra.yaml") -> ClientConfig | None:
    """Load configuration from YAML file."""
    path = Path(path)
    if not path.exists():
        return None

    data = yaml.safe_load(path.read_text()) or {}
    return ClientConfig.from_dict(data)

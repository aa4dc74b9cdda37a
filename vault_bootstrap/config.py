"""
Bootstrap Configuration — validated settings read from the environment.

Every setting maps to a ``VAULT_*`` environment variable; the CLI may
override any of them. Settings never hold key material.
"""
import os
import logging
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger("vault_bootstrap.config")

_ENV_FIELDS = {
    "VAULT_ADDR": "address",
    "VAULT_PEER_ADDRS": "peer_addresses",
    "VAULT_KEY_SHARES": "key_shares",
    "VAULT_KEY_THRESHOLD": "key_threshold",
    "VAULT_KEYS_BACKEND": "keys_backend",
    "VAULT_KEYS_DIR": "keys_dir",
    "VAULT_KEYS_SECRET": "keys_secret",
    "VAULT_KEYS_NAMESPACE": "keys_namespace",
    "VAULT_AUDIT_LOG_PATH": "audit_log_path",
    "VAULT_KV_MOUNT": "kv_mount",
    "VAULT_AUTH_METHOD": "auth_method",
    "VAULT_READY_TIMEOUT": "ready_timeout",
    "VAULT_READY_INITIAL_DELAY": "ready_initial_delay",
    "VAULT_READY_MAX_DELAY": "ready_max_delay",
    "VAULT_STRICT": "strict",
    "VAULT_REQUEST_TIMEOUT": "request_timeout",
}


class BootstrapSettings(BaseModel):
    """Validated bootstrap configuration."""

    address: str = Field(default="http://127.0.0.1:8200")
    peer_addresses: list[str] = Field(default_factory=list)
    key_shares: int = Field(default=5, ge=1, le=255)
    key_threshold: int = Field(default=3, ge=1, le=255)
    keys_backend: str = Field(default="file")
    keys_dir: Path = Field(default=Path("/vault/keys"))
    keys_secret: str = Field(default="vault-init")
    keys_namespace: str = Field(default="default")
    audit_log_path: str = Field(default="/vault/logs/audit.log")
    kv_mount: str = Field(default="secret")
    auth_method: str = Field(default="kubernetes")
    ready_timeout: float = Field(default=60.0, gt=0)
    ready_initial_delay: float = Field(default=1.0, gt=0)
    ready_max_delay: float = Field(default=10.0, gt=0)
    strict: bool = False
    request_timeout: int = Field(default=10, ge=1)

    @field_validator("peer_addresses", mode="before")
    @classmethod
    def split_peers(cls, v):
        """Accept a comma-separated string as well as a list."""
        if isinstance(v, str):
            return [p.strip() for p in v.split(",") if p.strip()]
        return v

    @field_validator("keys_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        if v not in ("file", "kubernetes"):
            raise ValueError(f"Unsupported key material backend: {v}")
        return v

    @field_validator("kv_mount")
    @classmethod
    def strip_mount(cls, v: str) -> str:
        v = v.strip("/")
        if not v:
            raise ValueError("kv_mount must not be empty")
        return v

    @model_validator(mode="after")
    def validate_threshold(self) -> "BootstrapSettings":
        """Ensure 1 <= key_threshold <= key_shares."""
        if self.key_threshold > self.key_shares:
            raise ValueError(
                f"key_threshold {self.key_threshold} exceeds "
                f"key_shares {self.key_shares}"
            )
        if self.ready_initial_delay > self.ready_max_delay:
            raise ValueError("ready_initial_delay exceeds ready_max_delay")
        return self

    @classmethod
    def from_env(cls, **overrides) -> "BootstrapSettings":
        """Create settings from ``VAULT_*`` variables.

        Args:
            **overrides: Explicit values (e.g. CLI options); ``None`` values
                are ignored so unset options fall through to the environment.

        Returns:
            Populated BootstrapSettings instance.
        """
        values = {}
        for env_name, field_name in _ENV_FIELDS.items():
            raw = os.environ.get(env_name)
            if raw is not None and raw != "":
                values[field_name] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        settings = cls(**values)
        logger.debug(
            "Loaded settings: address=%s peers=%d backend=%s",
            settings.address, len(settings.peer_addresses), settings.keys_backend,
        )
        return settings

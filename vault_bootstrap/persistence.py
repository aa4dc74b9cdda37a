"""
Key material persistence — durable, write-once storage for unseal key shares
and the root credential.

Two backends share the ``KeyMaterialStore`` interface:

- ``FileKeyMaterialStore`` keeps ``unseal_keys.txt`` (newline-delimited
  shares) and ``root_token.txt`` in a mounted volume.
- ``KubernetesSecretKeyMaterialStore`` keeps both records in one Opaque
  Secret with keys ``unseal_keys`` and ``root_token``.

Records are never overwritten; ``save`` raises ``KeyMaterialExists`` instead.

Security Note:
    Never log key material. Only log paths, secret names and share counts.
"""
import os
import base64
import logging
from contextlib import suppress
from pathlib import Path
from typing import Protocol

from kubernetes import client, config as k8s_config
from kubernetes.client.rest import ApiException
from pydantic import SecretStr

from .exceptions import KeyMaterialExists, KeyMaterialUnavailable
from .models import KeyShareSet

logger = logging.getLogger("vault_bootstrap.persistence")

UNSEAL_KEYS_FILE = "unseal_keys.txt"
ROOT_TOKEN_FILE = "root_token.txt"

_LEGACY_TOKEN_PREFIX = "root_token:"


def parse_shares(text: str) -> list[str]:
    """Split a newline-delimited shares record.

    Blank lines and legacy ``root_token:`` lines are skipped.
    """
    shares = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith(_LEGACY_TOKEN_PREFIX):
            continue
        shares.append(line)
    return shares


class KeyMaterialStore(Protocol):
    location: str

    def load_shares(self, threshold: int) -> KeyShareSet | None: ...

    def has_root_token(self) -> bool: ...

    def save(self, shares: KeyShareSet, root_token: SecretStr) -> None: ...


def _write_private(path: Path, payload: str) -> None:
    """Write ``payload`` to ``path`` atomically with mode 0600."""
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
    except Exception:
        with suppress(FileNotFoundError):
            os.unlink(tmp_path)
        raise
    tmp_path.replace(path)


class FileKeyMaterialStore:
    """Key material kept as two files in a directory (usually a volume)."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.shares_path = self.directory / UNSEAL_KEYS_FILE
        self.token_path = self.directory / ROOT_TOKEN_FILE

    @property
    def location(self) -> str:
        return str(self.directory)

    def load_shares(self, threshold: int) -> KeyShareSet | None:
        if not self.shares_path.is_file():
            return None
        shares = parse_shares(self.shares_path.read_text(encoding="utf-8"))
        if not shares:
            logger.warning("%s exists but holds no key shares", self.shares_path)
            return None
        logger.debug("Read %d key share(s) from %s", len(shares), self.shares_path)
        return KeyShareSet.from_strings(shares, min(threshold, len(shares)))

    def has_root_token(self) -> bool:
        return self.token_path.is_file()

    def save(self, shares: KeyShareSet, root_token: SecretStr) -> None:
        for path in (self.shares_path, self.token_path):
            if path.exists():
                raise KeyMaterialExists(f"{path} already exists")
        self.directory.mkdir(parents=True, exist_ok=True)
        _write_private(self.shares_path, shares.serialize())
        _write_private(self.token_path, root_token.get_secret_value() + "\n")
        logger.info("Saved %d key share(s) and root token to %s", shares.total, self.directory)


def _load_kube_config() -> None:
    try:
        k8s_config.load_incluster_config()
    except k8s_config.ConfigException:
        k8s_config.load_kube_config()


class KubernetesSecretKeyMaterialStore:
    """Key material kept in a single Kubernetes Secret."""

    def __init__(self, name: str, namespace: str, api=None):
        self.name = name
        self.namespace = namespace
        if api is None:
            _load_kube_config()
            api = client.CoreV1Api()
        self.api = api

    @property
    def location(self) -> str:
        return f"secret/{self.namespace}/{self.name}"

    def _read(self) -> dict[str, str] | None:
        try:
            secret = self.api.read_namespaced_secret(name=self.name, namespace=self.namespace)
        except ApiException as exc:
            if exc.status == 404:
                return None
            raise
        return {
            k: base64.b64decode(v).decode("utf-8") for k, v in (secret.data or {}).items()
        }

    def load_shares(self, threshold: int) -> KeyShareSet | None:
        data = self._read()
        if data is None:
            return None
        shares = parse_shares(data.get("unseal_keys", ""))
        if not shares:
            logger.warning("Secret %s holds no key shares", self.location)
            return None
        return KeyShareSet.from_strings(shares, min(threshold, len(shares)))

    def has_root_token(self) -> bool:
        data = self._read()
        return bool(data and data.get("root_token"))

    def save(self, shares: KeyShareSet, root_token: SecretStr) -> None:
        body = client.V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=client.V1ObjectMeta(
                name=self.name,
                namespace=self.namespace,
                labels={"app.kubernetes.io/managed-by": "vault-bootstrap"},
            ),
            type="Opaque",
            data={
                k: base64.b64encode(v.encode()).decode()
                for k, v in (
                    ("unseal_keys", shares.serialize()),
                    ("root_token", root_token.get_secret_value()),
                )
            },
        )
        try:
            self.api.create_namespaced_secret(namespace=self.namespace, body=body)
        except ApiException as exc:
            if exc.status == 409:
                raise KeyMaterialExists(f"{self.location} already exists") from exc
            raise
        logger.info("Saved %d key share(s) and root token to %s", shares.total, self.location)


def key_material_store(settings) -> KeyMaterialStore:
    """Build the backend selected by ``settings.keys_backend``."""
    if settings.keys_backend == "kubernetes":
        try:
            return KubernetesSecretKeyMaterialStore(settings.keys_secret, settings.keys_namespace)
        except k8s_config.ConfigException as exc:
            raise KeyMaterialUnavailable(f"no Kubernetes configuration available: {exc}") from exc
    return FileKeyMaterialStore(settings.keys_dir)

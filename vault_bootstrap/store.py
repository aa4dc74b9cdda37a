"""Secret store client: the administrative calls the controller drives.

``SecretStore`` is the seam the controller depends on; ``HvacSecretStore``
implements it against a real Vault server through hvac. Transport failures
become ``StoreUnavailable`` and error responses become ``StoreRequestError``
so callers never see hvac or requests types.
"""
import logging
from contextlib import contextmanager
from typing import Protocol

import hvac
import hvac.exceptions
import requests

from .exceptions import StoreRequestError, StoreUnavailable
from .models import InitResponse, SealStatus

logger = logging.getLogger("vault_bootstrap.store")


class SecretStore(Protocol):
    address: str

    def status(self) -> SealStatus: ...

    def init(self, key_shares: int, key_threshold: int) -> InitResponse: ...

    def unseal(self, share: str) -> SealStatus: ...

    def authenticate(self, token: str | None) -> None: ...

    def enable_audit_device(self, path: str) -> None: ...

    def enable_secret_engine(self, mount_path: str, kind: str = "kv-v2") -> None: ...

    def enable_auth_method(self, kind: str) -> None: ...

    def write_policy(self, name: str, rules: str) -> None: ...

    def write_secret(self, mount_path: str, path: str, data: dict[str, str]) -> None: ...

    def join_raft(self, leader_address: str) -> None: ...


@contextmanager
def _translate_errors(address: str, operation: str):
    try:
        yield
    except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as exc:
        raise StoreUnavailable(f"{address} unreachable during {operation}: {exc}") from exc
    except (
        hvac.exceptions.VaultDown,
        hvac.exceptions.BadGateway,
        hvac.exceptions.InternalServerError,
    ) as exc:
        raise StoreUnavailable(f"{address} not serving during {operation}: {exc}") from exc
    except hvac.exceptions.VaultError as exc:
        raise StoreRequestError(f"{operation} rejected by {address}: {exc}") from exc


def _already_enabled(exc: hvac.exceptions.VaultError) -> bool:
    return isinstance(exc, hvac.exceptions.InvalidRequest) and "already in use" in str(exc)


class HvacSecretStore:
    """SecretStore backed by ``hvac.Client``."""

    def __init__(self, address: str, timeout: int = 10, client: hvac.Client | None = None):
        self.address = address
        self.timeout = timeout
        self.client = client or hvac.Client(url=address, timeout=timeout)

    def peer(self, address: str) -> "HvacSecretStore":
        return HvacSecretStore(address, timeout=self.timeout)

    def status(self) -> SealStatus:
        with _translate_errors(self.address, "status"):
            return SealStatus.model_validate(self.client.sys.read_seal_status())

    def init(self, key_shares: int, key_threshold: int) -> InitResponse:
        with _translate_errors(self.address, "init"):
            response = self.client.sys.initialize(
                secret_shares=key_shares, secret_threshold=key_threshold,
            )
        return InitResponse.model_validate(response)

    def unseal(self, share: str) -> SealStatus:
        with _translate_errors(self.address, "unseal"):
            return SealStatus.model_validate(self.client.sys.submit_unseal_key(key=share))

    def authenticate(self, token: str | None) -> None:
        self.client.token = token

    def enable_audit_device(self, path: str) -> None:
        with _translate_errors(self.address, "enable audit device"):
            try:
                self.client.sys.enable_audit_device(
                    device_type="file", options={"file_path": path},
                )
            except hvac.exceptions.VaultError as exc:
                if not _already_enabled(exc):
                    raise
                logger.info("Audit device already enabled on %s", self.address)

    def enable_secret_engine(self, mount_path: str, kind: str = "kv-v2") -> None:
        if kind == "kv-v2":
            backend_type, options = "kv", {"version": "2"}
        else:
            backend_type, options = kind, None
        with _translate_errors(self.address, "enable secret engine"):
            try:
                self.client.sys.enable_secrets_engine(
                    backend_type=backend_type, path=mount_path, options=options,
                )
            except hvac.exceptions.VaultError as exc:
                if not _already_enabled(exc):
                    raise
                logger.info("Secret engine already mounted at %s/", mount_path)

    def enable_auth_method(self, kind: str) -> None:
        with _translate_errors(self.address, "enable auth method"):
            try:
                self.client.sys.enable_auth_method(method_type=kind)
            except hvac.exceptions.VaultError as exc:
                if not _already_enabled(exc):
                    raise
                logger.info("Auth method %s already enabled", kind)

    def write_policy(self, name: str, rules: str) -> None:
        with _translate_errors(self.address, "write policy"):
            self.client.sys.create_or_update_policy(name=name, policy=rules)

    def write_secret(self, mount_path: str, path: str, data: dict[str, str]) -> None:
        with _translate_errors(self.address, "write secret"):
            self.client.secrets.kv.v2.create_or_update_secret(
                path=path, secret=data, mount_point=mount_path,
            )

    def join_raft(self, leader_address: str) -> None:
        with _translate_errors(self.address, "raft join"):
            self.client.sys.join_raft_cluster(leader_api_addr=leader_address)

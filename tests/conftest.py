"""Shared fixtures: an in-memory Vault stand-in and key material store."""
import itertools

import pytest
from pydantic import SecretStr

from vault_bootstrap.config import BootstrapSettings
from vault_bootstrap.controller import BootstrapController
from vault_bootstrap.exceptions import (
    KeyMaterialExists,
    StoreRequestError,
    StoreUnavailable,
)
from vault_bootstrap.models import InitResponse, KeyShareSet, SealStatus

_counter = itertools.count(1)


class FakeSecretStore:
    """Vault-like store with threshold unseal semantics.

    Unseal progress is tracked per seal cycle; a share already submitted in
    the current cycle, or one that was never issued, is rejected.
    """

    def __init__(self, address: str = "http://vault-0:8200", leader=None):
        self.address = address
        self.leader = leader
        self.initialized = False
        self.sealed = True
        self.threshold = 0
        self.valid_shares: list[str] = []
        self.submitted: list[str] = []
        self.root_token: str | None = None
        self.token: str | None = None
        self.audit_devices: list[str] = []
        self.secret_engines: dict[str, str] = {}
        self.auth_methods: list[str] = []
        self.policies: dict[str, str] = {}
        self.secrets: dict[tuple[str, str], dict[str, str]] = {}
        self.calls: list[str] = []
        self.failures: dict[str, Exception] = {}
        self.unreachable = 0
        self.init_race = False

    # -- helpers for tests -----------------------------------------------

    def seal(self) -> None:
        self.sealed = True
        self.submitted.clear()

    def _fail(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.failures:
            raise self.failures[operation]

    def _status(self) -> SealStatus:
        return SealStatus(
            initialized=self.initialized,
            sealed=self.sealed,
            threshold=self.threshold,
            shares=len(self.valid_shares),
            progress=len(self.submitted),
        )

    def _require_root(self, operation: str) -> None:
        self._fail(operation)
        if self.sealed:
            raise StoreRequestError(f"{operation}: Vault is sealed")
        if self.token is None or self.token != self.root_token:
            raise StoreRequestError(f"{operation}: permission denied")

    # -- SecretStore -----------------------------------------------------

    def peer(self, address: str) -> "FakeSecretStore":
        return FakeSecretStore(address, leader=self)

    def status(self) -> SealStatus:
        if self.unreachable:
            self.unreachable -= 1
            raise StoreUnavailable(f"{self.address} connection refused")
        self._fail("status")
        return self._status()

    def init(self, key_shares: int, key_threshold: int) -> InitResponse:
        self._fail("init")
        if self.init_race:
            self._initialize(key_shares, key_threshold)
            raise StoreRequestError("Vault is already initialized")
        if self.initialized:
            raise StoreRequestError("Vault is already initialized")
        root = self._initialize(key_shares, key_threshold)
        return InitResponse(keys_base64=list(self.valid_shares), root_token=root)

    def _initialize(self, key_shares: int, key_threshold: int) -> str:
        n = next(_counter)
        self.valid_shares = [f"share-{n}-{i}" for i in range(key_shares)]
        self.threshold = key_threshold
        self.root_token = f"hvs.root-{n}"
        self.initialized = True
        self.sealed = True
        return self.root_token

    def unseal(self, share: str) -> SealStatus:
        self._fail("unseal")
        if not self.initialized:
            raise StoreRequestError("Vault is not initialized")
        if not self.sealed:
            return self._status()
        if share not in self.valid_shares:
            raise StoreRequestError("invalid key")
        if share in self.submitted:
            raise StoreRequestError("key already submitted in this unseal cycle")
        self.submitted.append(share)
        if len(self.submitted) >= self.threshold:
            self.sealed = False
            self.submitted.clear()
        return self._status()

    def authenticate(self, token: str | None) -> None:
        self.token = token

    def enable_audit_device(self, path: str) -> None:
        self._require_root("audit")
        self.audit_devices.append(path)

    def enable_secret_engine(self, mount_path: str, kind: str = "kv-v2") -> None:
        self._require_root("secret_engine")
        self.secret_engines[mount_path] = kind

    def enable_auth_method(self, kind: str) -> None:
        self._require_root("auth_method")
        if kind not in self.auth_methods:
            self.auth_methods.append(kind)

    def write_policy(self, name: str, rules: str) -> None:
        self._require_root("policy")
        self.policies[name] = rules

    def write_secret(self, mount_path: str, path: str, data: dict[str, str]) -> None:
        self._require_root("secret")
        if mount_path not in self.secret_engines:
            raise StoreRequestError(f"no handler for route '{mount_path}/'")
        self.secrets[(mount_path, path)] = dict(data)

    def join_raft(self, leader_address: str) -> None:
        self._fail("join")
        if self.leader is None or self.leader.address != leader_address:
            raise StoreRequestError(f"cannot reach leader {leader_address}")
        self.valid_shares = list(self.leader.valid_shares)
        self.threshold = self.leader.threshold
        self.root_token = self.leader.root_token
        self.initialized = True
        self.sealed = True


class InMemoryKeyStore:
    """Write-once key material store kept in memory."""

    location = "memory://keys"

    def __init__(self):
        self.shares: list[str] | None = None
        self.root_token: str | None = None
        self.save_calls = 0
        self.error: Exception | None = None

    def load_shares(self, threshold: int) -> KeyShareSet | None:
        if not self.shares:
            return None
        return KeyShareSet.from_strings(self.shares, min(threshold, len(self.shares)))

    def has_root_token(self) -> bool:
        return self.root_token is not None

    def save(self, shares: KeyShareSet, root_token: SecretStr) -> None:
        self.save_calls += 1
        if self.error is not None:
            raise self.error
        if self.shares is not None or self.root_token is not None:
            raise KeyMaterialExists(self.location)
        self.shares = [s.get_secret_value() for s in shares.shares]
        self.root_token = root_token.get_secret_value()


class FakeClock:
    """Monotonic clock advanced only by ``sleep``."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def store():
    return FakeSecretStore()


@pytest.fixture
def key_store():
    return InMemoryKeyStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return BootstrapSettings(
        ready_timeout=10, ready_initial_delay=1, ready_max_delay=4,
    )


@pytest.fixture
def make_controller(store, key_store, settings, clock):
    """Build a controller wired to the fakes; keyword args override."""
    def _make(**kwargs):
        params = dict(
            store=store, key_store=key_store, settings=settings,
            sleep=clock.sleep, clock=clock,
        )
        params.update(kwargs)
        return BootstrapController(**params)
    return _make

"""
Bootstrap Controller — drives a secret store from first start to a
configured, unsealed state.

Run once per process. On an uninitialized store it initializes, persists the
key material, unseals with the first T shares and applies the baseline
configuration. On an initialized store it only unseals from persisted shares.
When several controllers race, the store's init call decides the winner; a
loser sees the store initialized and takes the unseal-only path.

Security Note:
    The root credential lives only for the duration of ``bootstrap()`` and is
    cleared from the store client afterwards. Key shares are never logged.
"""
import time
import logging
from typing import Callable, Iterable, Sequence

from pydantic import SecretStr

from .config import BootstrapSettings
from .exceptions import (
    BootstrapError,
    ConfigurationStepFailed,
    CriticalPersistenceFailure,
    InitFailed,
    KeyMaterialUnavailable,
    StoreRequestError,
    StoreUnavailable,
    UnsealRejected,
)
from .models import (
    BootstrapOutcome,
    BootstrapResult,
    KeyShareSet,
    SealState,
    SealStatus,
    demo_app_policy,
    demo_app_seed,
)
from .persistence import KeyMaterialStore
from .store import SecretStore

logger = logging.getLogger("vault_bootstrap.controller")


def wait_until_ready(
    store: SecretStore,
    timeout: float,
    initial_delay: float = 1.0,
    max_delay: float = 10.0,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> SealStatus:
    """Poll ``store.status()`` with exponential backoff.

    Returns:
        The first status the store answers with.

    Raises:
        StoreUnavailable: If the store does not answer before ``timeout``.
    """
    deadline = clock() + timeout
    delay = initial_delay
    attempt = 0
    while True:
        attempt += 1
        try:
            return store.status()
        except StoreUnavailable as exc:
            remaining = deadline - clock()
            if remaining <= 0:
                raise StoreUnavailable(
                    f"{store.address} not ready after {attempt} attempt(s) "
                    f"in {timeout:g}s: {exc}"
                ) from exc
            logger.info("Vault not ready yet (attempt %d), retrying in %.1fs", attempt, delay)
            sleep(min(delay, remaining))
            delay = min(delay * 2, max_delay)


def unseal(store: SecretStore, shares: Iterable[SecretStr]) -> SealState:
    """Submit shares one at a time until the store reports unsealed.

    Rejected shares are logged and skipped. Returns the final seal state.
    """
    status = store.status()
    if not status.sealed:
        logger.info("%s is already unsealed", store.address)
        return status.state
    for index, share in enumerate(shares, start=1):
        try:
            status = _submit_share(store, share, index)
        except UnsealRejected as exc:
            logger.warning("%s", exc)
            continue
        if not status.sealed:
            logger.info("%s unsealed after %d share(s)", store.address, index)
            return SealState.UNSEALED
        logger.info(
            "Key share %d accepted by %s, progress %d/%d",
            index, store.address, status.progress, status.threshold,
        )
    return store.status().state


def _submit_share(store: SecretStore, share: SecretStr, index: int) -> SealStatus:
    try:
        return store.unseal(share.get_secret_value())
    except StoreRequestError as exc:
        raise UnsealRejected(f"Key share {index} rejected: {exc}") from exc


class BootstrapController:
    """Initializes, unseals and configures one secret store."""

    def __init__(
        self,
        store: SecretStore,
        key_store: KeyMaterialStore,
        settings: BootstrapSettings | None = None,
        peers: Sequence[SecretStore] = (),
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.key_store = key_store
        self.settings = settings or BootstrapSettings()
        self.peers = list(peers)
        self._sleep = sleep
        self._clock = clock

    def bootstrap(self) -> BootstrapOutcome:
        s = self.settings
        status = wait_until_ready(
            self.store,
            timeout=s.ready_timeout,
            initial_delay=s.ready_initial_delay,
            max_delay=s.ready_max_delay,
            sleep=self._sleep,
            clock=self._clock,
        )
        if status.initialized:
            logger.info("Vault is already initialized")
            return self._resume(status)

        has_token = self._read_key_material(self.key_store.has_root_token)
        if has_token or self._load_shares() is not None:
            raise InitFailed(
                f"{self.store.address} is uninitialized but {self.key_store.location} "
                "already holds key material; refusing to generate new keys"
            )

        logger.info("Initializing Vault with %d shares, threshold %d", s.key_shares, s.key_threshold)
        try:
            response = self.store.init(s.key_shares, s.key_threshold)
        except StoreRequestError as exc:
            status = self.store.status()
            if status.initialized:
                logger.warning("Vault was initialized by another run, falling back to unseal")
                return self._resume(status)
            raise InitFailed(f"init failed on uninitialized {self.store.address}: {exc}") from exc

        shares = response.key_shares(s.key_threshold)
        root_token = response.root_token
        del response
        self._persist(shares, root_token)

        state = unseal(self.store, shares.quorum())
        if state is not SealState.UNSEALED:
            raise InitFailed(
                f"{self.store.address} still sealed after {shares.threshold} fresh key shares"
            )

        warnings: list[str] = []
        try:
            self.store.authenticate(root_token.get_secret_value())
            self._configure(warnings)
        finally:
            self.store.authenticate(None)
            del root_token
        warnings.extend(self._bring_up_peers(shares))

        logger.info("Vault setup completed, key material is in %s", self.key_store.location)
        return BootstrapOutcome(BootstrapResult.INITIALIZED, SealState.UNSEALED, warnings)

    def _persist(self, shares: KeyShareSet, root_token: SecretStr) -> None:
        try:
            self.key_store.save(shares, root_token)
        except Exception as exc:
            logger.critical(
                "Vault is initialized but its key material could not be saved to %s; "
                "the unseal keys and root token may be lost: %s",
                self.key_store.location, exc,
            )
            raise CriticalPersistenceFailure(
                f"failed to persist key material to {self.key_store.location}: {exc}"
            ) from exc

    def _read_key_material(self, read):
        try:
            return read()
        except Exception as exc:
            logger.error("Could not read key material from %s: %s", self.key_store.location, exc)
            raise KeyMaterialUnavailable(
                f"failed to read key material from {self.key_store.location}: {exc}"
            ) from exc

    def _load_shares(self) -> KeyShareSet | None:
        return self._read_key_material(
            lambda: self.key_store.load_shares(self.settings.key_threshold)
        )

    def _resume(self, status: SealStatus) -> BootstrapOutcome:
        shares = self._load_shares()
        if status.sealed:
            if shares is None:
                logger.warning(
                    "Vault is initialized but no unseal keys were found in %s; "
                    "you will need to unseal Vault manually",
                    self.key_store.location,
                )
                return BootstrapOutcome(BootstrapResult.MANUAL_UNSEAL_REQUIRED, SealState.SEALED)
            logger.info("Unsealing Vault with %d persisted key share(s)", shares.total)
            if unseal(self.store, shares.shares) is not SealState.UNSEALED:
                logger.warning("Vault is still sealed after submitting every persisted key share")
                return BootstrapOutcome(
                    BootstrapResult.MANUAL_UNSEAL_REQUIRED,
                    SealState.SEALED,
                    ["persisted key shares did not unseal the store"],
                )
        warnings = self._bring_up_peers(shares) if shares is not None else []
        if shares is None and self.peers:
            warnings.append("no persisted key shares, peers left untouched")
        return BootstrapOutcome(BootstrapResult.ALREADY_INITIALIZED, SealState.UNSEALED, warnings)

    def _configure(self, warnings: list[str]) -> None:
        s = self.settings
        policy = demo_app_policy(s.kv_mount)
        seed = demo_app_seed(s.kv_mount)

        self._step("audit device", lambda: self.store.enable_audit_device(s.audit_log_path),
                   warnings)
        engine_ok = self._step("secret engine",
                               lambda: self.store.enable_secret_engine(s.kv_mount, "kv-v2"),
                               warnings, fatal=True)
        # Trust configuration (cluster CA, API host) is applied later by the operator.
        self._step("auth method", lambda: self.store.enable_auth_method(s.auth_method), warnings)
        self._step("policy", lambda: self.store.write_policy(policy.name, policy.render()),
                   warnings)
        if engine_ok:
            self._step("seed secret",
                       lambda: self.store.write_secret(seed.mount, seed.path, seed.data),
                       warnings)

    def _step(self, name: str, call: Callable[[], None], warnings: list[str],
              fatal: bool = False) -> bool:
        try:
            call()
        except StoreRequestError as exc:
            failure = ConfigurationStepFailed(name, str(exc))
            if fatal or self.settings.strict:
                logger.error("Configuration step failed: %s", failure)
                raise failure from exc
            logger.warning("Configuration step failed, continuing: %s", failure)
            warnings.append(str(failure))
            return False
        logger.info("Configured %s", name)
        return True

    def _bring_up_peers(self, shares: KeyShareSet) -> list[str]:
        """Join each peer to the leader's raft cluster and unseal it."""
        warnings = []
        for peer in self.peers:
            try:
                if not peer.status().initialized:
                    logger.info("Joining %s to leader %s", peer.address, self.store.address)
                    peer.join_raft(self.store.address)
                if unseal(peer, shares.quorum()) is not SealState.UNSEALED:
                    warnings.append(f"peer {peer.address} is still sealed")
            except BootstrapError as exc:
                logger.warning("Could not bring up peer %s: %s", peer.address, exc)
                warnings.append(f"peer {peer.address}: {exc}")
        return warnings

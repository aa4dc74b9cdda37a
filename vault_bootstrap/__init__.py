"""Vault Bootstrap — one-shot initialization, unseal and baseline
configuration of a Vault server.

Security Note:
    Unseal key shares and the root token are written to the configured key
    material backend exactly once and are never logged.
"""

from .config import BootstrapSettings
from .controller import BootstrapController, unseal, wait_until_ready
from .models import BootstrapOutcome, BootstrapResult, KeyShareSet, SealState
from .persistence import FileKeyMaterialStore, KubernetesSecretKeyMaterialStore
from .store import HvacSecretStore, SecretStore
from .version import __version__

__all__ = [
    "BootstrapController",
    "BootstrapOutcome",
    "BootstrapResult",
    "BootstrapSettings",
    "FileKeyMaterialStore",
    "HvacSecretStore",
    "KeyShareSet",
    "KubernetesSecretKeyMaterialStore",
    "SealState",
    "SecretStore",
    "unseal",
    "wait_until_ready",
    "__version__",
]

"""Structured types exchanged between the controller, the store and persistence.

Key shares and the root credential are wrapped in ``SecretStr`` so they never
show up in reprs, tracebacks or log records.
"""
import enum
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator


class SealState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    SEALED = "sealed"
    UNSEALED = "unsealed"


class BootstrapResult(str, enum.Enum):
    INITIALIZED = "initialized"
    ALREADY_INITIALIZED = "already_initialized"
    MANUAL_UNSEAL_REQUIRED = "manual_unseal_required"


class SealStatus(BaseModel):
    """Response of the store's seal-status endpoint."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    initialized: bool
    sealed: bool
    threshold: int = Field(default=0, alias="t")
    shares: int = Field(default=0, alias="n")
    progress: int = 0

    @property
    def state(self) -> SealState:
        if not self.initialized:
            return SealState.UNINITIALIZED
        if self.sealed:
            return SealState.SEALED
        return SealState.UNSEALED


class KeyShareSet(BaseModel):
    """Ordered unseal key shares plus the (N, T) split parameters."""

    model_config = ConfigDict(frozen=True)

    shares: tuple[SecretStr, ...]
    threshold: int = Field(ge=1)

    @property
    def total(self) -> int:
        return len(self.shares)

    @model_validator(mode="after")
    def check_threshold(self) -> "KeyShareSet":
        if self.threshold > len(self.shares):
            raise ValueError(
                f"threshold {self.threshold} exceeds share count {len(self.shares)}"
            )
        return self

    @classmethod
    def from_strings(cls, shares: list[str], threshold: int) -> "KeyShareSet":
        return cls(shares=tuple(SecretStr(s) for s in shares), threshold=threshold)

    def quorum(self) -> tuple[SecretStr, ...]:
        """First T shares, the subset submitted during bootstrap."""
        return self.shares[:self.threshold]

    def serialize(self) -> str:
        """Newline-delimited shares, the on-disk record format."""
        return "".join(f"{s.get_secret_value()}\n" for s in self.shares)


class InitResponse(BaseModel):
    """Response of the store's init endpoint."""

    model_config = ConfigDict(extra="ignore")

    keys_base64: list[str]
    root_token: SecretStr

    def key_shares(self, threshold: int) -> KeyShareSet:
        return KeyShareSet.from_strings(self.keys_base64, threshold)


@dataclass(frozen=True)
class PolicyDocument:
    """A named access policy rendered to HCL rules."""

    name: str
    paths: dict[str, tuple[str, ...]]

    def render(self) -> str:
        blocks = []
        for path, capabilities in self.paths.items():
            caps = ", ".join(f'"{c}"' for c in capabilities)
            blocks.append(f'path "{path}" {{\n  capabilities = [{caps}]\n}}\n')
        return "\n".join(blocks)


@dataclass(frozen=True)
class SeedSecret:
    mount: str
    path: str
    data: dict[str, str]


def demo_app_policy(mount: str = "secret") -> PolicyDocument:
    return PolicyDocument(
        name="demo-app-policy",
        paths={
            f"{mount}/data/demo-app/*": ("read",),
            f"{mount}/data/demo-app": ("read",),
            "auth/token/lookup-self": ("read",),
            "auth/token/renew-self": ("update",),
        },
    )


def demo_app_seed(mount: str = "secret") -> SeedSecret:
    return SeedSecret(
        mount=mount,
        path="demo-app",
        data={
            "message": "Hello from Production Vault!",
            "db.password": "production-secret-password",
            "db.username": "demo_user",
            "api.key": "prod-api-key-12345",
        },
    )


@dataclass
class BootstrapOutcome:
    """What a bootstrap run did, reported by the CLI."""

    result: BootstrapResult
    final_state: SealState
    warnings: list[str] = field(default_factory=list)

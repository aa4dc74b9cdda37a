"""Bootstrap error taxonomy.

Each error carries the process exit code the CLI reports for it.
"""


class BootstrapError(Exception):
    """Base class for every bootstrap failure."""

    exit_code = 1


class StoreUnavailable(BootstrapError):
    """The secret store could not be reached. Retry the whole process."""

    exit_code = 3


class InitFailed(BootstrapError):
    """Initialization of an uninitialized store failed. Needs investigation."""

    exit_code = 4


class UnsealRejected(BootstrapError):
    """A single key share was refused by the store."""

    exit_code = 1


class CriticalPersistenceFailure(BootstrapError):
    """Key material was generated but could not be persisted."""

    exit_code = 5


class KeyMaterialUnavailable(BootstrapError):
    """The key material backend could not be read or set up."""

    exit_code = 6


class ConfigurationStepFailed(BootstrapError):
    """A baseline configuration call failed."""

    exit_code = 1

    def __init__(self, step: str, message: str):
        super().__init__(f"{step}: {message}")
        self.step = step


class KeyMaterialExists(Exception):
    """Raised when a write-once key material record is already present."""


class StoreRequestError(BootstrapError):
    """The store answered a request with an error."""

"""
vault-bootstrap - initialize, unseal and configure a Vault server

Commands:
- vault-bootstrap run     - one bootstrap pass (the Job entry point)
- vault-bootstrap status  - print the current seal state
"""
import logging
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from .config import BootstrapSettings
from .controller import BootstrapController, wait_until_ready
from .exceptions import BootstrapError
from .persistence import key_material_store
from .store import HvacSecretStore
from .version import __version__

app = typer.Typer(
    name="vault-bootstrap",
    help="Initialize, unseal and configure a Vault server",
    no_args_is_help=True,
    add_completion=False,
)
logger = logging.getLogger("vault_bootstrap")

USAGE_EXIT = 2


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_settings(**overrides) -> BootstrapSettings:
    try:
        return BootstrapSettings.from_env(**overrides)
    except ValidationError as exc:
        typer.echo(f"Invalid settings:\n{exc}", err=True)
        raise typer.Exit(USAGE_EXIT)


@app.callback(invoke_without_command=True)
def _root(
    version: bool = typer.Option(False, "--version", help="Show version and exit"),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level"),
):
    if version:
        typer.echo(f"vault-bootstrap {__version__}")
        raise typer.Exit(0)
    _configure_logging(log_level)


@app.command()
def run(
    addr: Optional[str] = typer.Option(None, "--addr", help="Vault address (VAULT_ADDR)"),
    peers: Optional[str] = typer.Option(
        None, "--peers", help="Comma-separated replica addresses to join and unseal"
    ),
    backend: Optional[str] = typer.Option(
        None, "--backend", help="Key material backend: file or kubernetes"
    ),
    keys_dir: Optional[Path] = typer.Option(None, "--keys-dir", help="Directory for key files"),
    secret_name: Optional[str] = typer.Option(None, "--secret-name", help="Kubernetes Secret name"),
    namespace: Optional[str] = typer.Option(None, "--namespace", help="Kubernetes namespace"),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait for Vault to answer"
    ),
    strict: Optional[bool] = typer.Option(
        None, "--strict/--no-strict", help="Treat every configuration failure as fatal"
    ),
):
    """Run one bootstrap pass and exit with its status code."""
    settings = _load_settings(
        address=addr,
        peer_addresses=peers,
        keys_backend=backend,
        keys_dir=keys_dir,
        keys_secret=secret_name,
        keys_namespace=namespace,
        ready_timeout=timeout,
        strict=strict,
    )
    store = HvacSecretStore(settings.address, timeout=settings.request_timeout)
    try:
        controller = BootstrapController(
            store,
            key_material_store(settings),
            settings,
            peers=[store.peer(address) for address in settings.peer_addresses],
        )
        outcome = controller.bootstrap()
    except BootstrapError as exc:
        logger.error("Bootstrap failed (%s): %s", type(exc).__name__, exc)
        raise typer.Exit(exc.exit_code)

    for warning in outcome.warnings:
        typer.echo(f"warning: {warning}", err=True)
    typer.echo(f"{outcome.result.value}: vault is {outcome.final_state.value}")


@app.command()
def status(
    addr: Optional[str] = typer.Option(None, "--addr", help="Vault address (VAULT_ADDR)"),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait for Vault to answer"
    ),
):
    """Print the store's seal state."""
    settings = _load_settings(address=addr, ready_timeout=timeout)
    store = HvacSecretStore(settings.address, timeout=settings.request_timeout)
    try:
        seal = wait_until_ready(
            store,
            timeout=settings.ready_timeout,
            initial_delay=settings.ready_initial_delay,
            max_delay=settings.ready_max_delay,
        )
    except BootstrapError as exc:
        logger.error("%s", exc)
        raise typer.Exit(exc.exit_code)
    progress = f" ({seal.progress}/{seal.threshold})" if seal.sealed and seal.initialized else ""
    typer.echo(f"{settings.address}: {seal.state.value}{progress}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()

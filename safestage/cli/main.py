"""Main CLI entry point for safestage."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

import click
from pydantic import ValidationError

from safestage import __version__
from safestage.utils.config import StagingSettings, load_settings, render_settings


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _resolve_settings(ctx: click.Context, **overrides: Any) -> StagingSettings:
    try:
        return load_settings(ctx.obj.get("config_path"), overrides=overrides)
    except (ValidationError, ValueError, OSError) as exc:
        click.echo(f"Error: invalid configuration: {exc}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="safestage")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML settings file (environment variables and options override it)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_path: Path | None) -> None:
    """Stage partially-signed Safe transactions until they are ready to execute."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_path"] = config_path


@cli.command()
@click.option("--host", help="Interface to bind (default 0.0.0.0)")
@click.option("--port", "-p", type=int, help="Port to listen on (default 3000, env PORT)")
@click.option(
    "--rpc-url",
    "rpc_urls",
    multiple=True,
    help="JSON-RPC endpoint to register (repeatable; env RPC_URLS, comma separated)",
)
@click.option(
    "--no-default-rpcs",
    is_flag=True,
    default=False,
    help="Only use explicitly registered RPC endpoints",
)
@click.option("--max-staged", type=int, help="Staged transactions allowed per Safe")
@click.option("--max-signatures", type=int, help="Signatures allowed per transaction")
@click.option("--oracle-timeout", type=float, help="Seconds to wait on each chain call")
@click.pass_context
def serve(
    ctx: click.Context,
    host: str | None,
    port: int | None,
    rpc_urls: tuple[str, ...],
    no_default_rpcs: bool,
    max_staged: int | None,
    max_signatures: int | None,
    oracle_timeout: float | None,
) -> None:
    """Run the staging relay HTTP server."""
    from safestage.cli.serve import run_serve

    _configure_logging(ctx.obj.get("verbose", False))
    settings = _resolve_settings(
        ctx,
        host=host,
        port=port,
        rpc_urls=list(rpc_urls) or None,
        use_default_rpcs=False if no_default_rpcs else None,
        max_staged=max_staged,
        max_signatures=max_signatures,
        oracle_timeout=oracle_timeout,
    )
    run_serve(settings)


@cli.command("config")
@click.pass_context
def config_cmd(ctx: click.Context) -> None:
    """Print the effective settings as YAML."""
    click.echo(render_settings(_resolve_settings(ctx)), nl=False)


def main() -> None:
    """Console script entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()

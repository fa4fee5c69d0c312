"""Click-based CLI entrypoint for git-rest."""

from __future__ import annotations

import sys

import click

from git_rest import __version__
from git_rest.constants import DEFAULT_HOST, DEFAULT_PORT
from git_rest.errors import GitRestError


@click.group(invoke_without_command=True)
@click.pass_context
def cli(ctx: click.Context) -> None:
    """git-rest - git repositories over HTTP."""
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.option("--host", default=DEFAULT_HOST, show_default=True, help="Bind address")
@click.option("--port", default=DEFAULT_PORT, show_default=True, type=int, help="TCP port")
@click.option("--root", "root_dir", default=None, help="Directory holding the workspaces")
@click.option("--prefix", default=None, help="URL prefix for every route")
@click.option(
    "--config", "config_path", default=None,
    type=click.Path(exists=True, dir_okay=False), help="YAML settings file",
)
@click.option("--verbose", is_flag=True, default=None, help="Log response bodies")
def serve(
    host: str,
    port: int,
    root_dir: str | None,
    prefix: str | None,
    config_path: str | None,
    verbose: bool | None,
) -> None:
    """Run the HTTP server."""
    from git_rest.api import create_app, run_server
    from git_rest.config import load_settings
    from git_rest.logging_config import setup_logging

    try:
        settings = load_settings(
            config_path, root_dir=root_dir, prefix=prefix, verbose=verbose,
        )
    except GitRestError as exc:
        raise click.ClickException(str(exc))

    setup_logging(level=settings.log_level, format_type=settings.log_format)
    try:
        app = create_app(settings)
    except GitRestError as exc:
        raise click.ClickException(str(exc))
    run_server(app, host=host, port=port)


@cli.command()
def version() -> None:
    """Print the git-rest and git versions."""
    from git_rest.executor import GitExecutor

    click.echo(f"git-rest {__version__}")
    try:
        click.echo(GitExecutor().version())
    except GitRestError as exc:
        click.echo(f"git: {exc}", err=True)
        sys.exit(1)


def main() -> None:
    """Entry point for the ``git-rest`` console script."""
    cli()


if __name__ == "__main__":
    main()

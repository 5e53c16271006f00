"""CLI commands for statelog."""

from __future__ import annotations

import click
from sqlalchemy import create_engine

from .bootstrap import init_statelog
from .config import configure_logging, get_settings
from .core.naming import TableRef, resolve_target
from .errors import StatelogError
from .installer import associations, install
from .persistence.codegen import codegen as render


def _database_url(ctx: click.Context) -> str:
    url = ctx.obj["database_url"]
    if not url:
        raise click.UsageError("Set --database-url or STATELOG_DATABASE_URL")
    return url


@click.group()
@click.option("--database-url", default=None, help="SQLAlchemy database URL.")
@click.option("--namespace", default=None, help="Schema holding the shared log objects.")
@click.option("--log-level", default=None)
@click.pass_context
def cli(ctx, database_url, namespace, log_level):
    """Give tables an append-only state log."""
    settings = get_settings()
    configure_logging(log_level or settings.log_level)
    ctx.obj = {
        "settings": settings,
        "database_url": database_url or settings.database_url,
        "namespace": namespace or settings.namespace,
    }


@cli.command()
@click.argument("table")
@click.option("--schema", "state_schema", default=None, help="Schema of the state table.")
@click.option("--name", "state_tab", default=None, help="Name of the state table.")
@click.option("--with-old", is_flag=True, help="Also keep the before-image.")
@click.pass_context
def codegen(ctx, table, state_schema, state_tab, with_old):
    """Print the DDL that would instrument TABLE (schema.name, default public)."""
    try:
        target = resolve_target(
            TableRef.parse(table).with_namespace("public"), state_schema, state_tab, with_old
        )
    except StatelogError as e:
        raise click.ClickException(str(e))
    click.echo(render(target, ctx.obj["namespace"]), nl=False)


@cli.command()
@click.pass_context
def bootstrap(ctx):
    """Install the shared parent table, trigger function and view."""
    engine = create_engine(_database_url(ctx))
    if init_statelog(engine, ctx.obj["namespace"]):
        click.echo("✓ Installed.")
    else:
        click.echo("Nothing to do.")


@cli.command("install")
@click.argument("table")
@click.option("--schema", "state_schema", default=None)
@click.option("--name", "state_tab", default=None)
@click.option("--with-old", is_flag=True)
@click.pass_context
def install_cmd(ctx, table, state_schema, state_tab, with_old):
    """Create the state table and hook for TABLE."""
    engine = create_engine(_database_url(ctx))
    try:
        with engine.begin() as conn:
            state = install(
                conn, table, state_schema, state_tab, with_old,
                namespace=ctx.obj["namespace"],
            )
    except StatelogError as e:
        raise click.ClickException(str(e))
    click.echo(f"✓ {table} ➜ {state}")


@cli.command()
@click.pass_context
def logged(ctx):
    """List every base table and its state table."""
    engine = create_engine(_database_url(ctx))
    with engine.connect() as conn:
        for assoc in associations(conn, namespace=ctx.obj["namespace"]):
            click.echo(f"{assoc.base}\t{assoc.state}")


@cli.command()
@click.option("--name", default="statelog", help="DBOS application name.")
@click.pass_context
def serve(ctx, name):
    """Run the HTTP façade."""
    import uvicorn

    from .runtime import Statelog

    settings = ctx.obj["settings"]
    app = Statelog.create_app(
        name, db_url=_database_url(ctx), namespace=ctx.obj["namespace"]
    )
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    cli()

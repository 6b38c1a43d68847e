"""``apprun show-config``: print a resolved configuration."""

from __future__ import annotations

import json

import click
from pydantic import TypeAdapter
from rich.console import Console
from rich.markup import escape

from apprun.app.config import ConfigResolver
from apprun.errors import ConfigError

from .loader import import_object, instantiate_defaults

console = Console()


@click.command("show-config")
@click.argument("config_ref")
@click.option("--name", "app_name", envvar="APP_NAME", default="", help="Application name.")
@click.option("--sources", is_flag=True, help="List the sources in the order they apply.")
@click.pass_context
def show_config(ctx: click.Context, config_ref: str, app_name: str, sources: bool) -> None:
    """Resolve CONFIG_REF (MODULE:CLASS) as the runner would and print it."""
    config_cls = import_object(config_ref)
    base = instantiate_defaults(config_cls)
    resolver: ConfigResolver = ConfigResolver(app_name)

    if sources:
        for source in resolver.sources():
            location = source.path if source.path is not None else f"{source.prefix}_*"
            console.print(f"[bold]{source.kind.value}[/bold] {escape(str(location))}", soft_wrap=True)

    try:
        resolved = resolver.resolve(base)
    except ConfigError as exc:
        console.print(f"[red]Configuration failed: {escape(str(exc))}[/red]")
        ctx.exit(1)

    payload = TypeAdapter(config_cls).dump_python(resolved, mode="json")
    console.print_json(json.dumps(payload))

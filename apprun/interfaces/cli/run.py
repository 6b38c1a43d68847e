"""``apprun run``: start an application factory from the command line."""

from __future__ import annotations

from typing import Any

import click

from apprun.services.runner import Runner

from .loader import import_object, instantiate_defaults


def _build_config(factory: Any, config_ref: str | None) -> Any:
    config_cls = (
        import_object(config_ref) if config_ref else getattr(factory, "config_class", None)
    )
    if config_cls is None:
        raise click.UsageError(
            "no configuration class; pass --config-class or set "
            "`config_class` on the factory"
        )
    return instantiate_defaults(config_cls)


@click.command(
    "run",
    context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False},
)
@click.argument("target")
@click.option(
    "--config-class",
    "config_ref",
    default=None,
    help="MODULE:CLASS of the configuration, instantiated with its defaults.",
)
@click.option("--name", "app_name", default="", help="Application name (default: $APP_NAME).")
@click.option(
    "--app-version", default="", help="Application version (default: $APP_VERSION)."
)
@click.option(
    "--http/--no-http",
    "http",
    default=False,
    help="Serve the auxiliary HTTP server on $APP_HTTP_SERVER_ADDR or :9000.",
)
@click.option("--http-addr", default=None, help="Serve the auxiliary HTTP server on ADDR.")
@click.option("--metrics", is_flag=True, help="Expose /metrics (implies --http).")
@click.argument("app_args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def run(
    ctx: click.Context,
    target: str,
    config_ref: str | None,
    app_name: str,
    app_version: str,
    http: bool,
    http_addr: str | None,
    metrics: bool,
    app_args: tuple[str, ...],
) -> None:
    """Run the application built by TARGET (MODULE:FACTORY).

    Arguments after TARGET are handed to the application as ``context.args``.
    """
    factory = import_object(target)
    config = _build_config(factory, config_ref)

    runner = Runner(
        factory,
        config,
        app_name=app_name,
        app_version=app_version,
        args=app_args,
    )
    try:
        if http_addr:
            runner.with_http_server(http_addr)
        elif http or metrics:
            runner.with_default_http_server()
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--http-addr") from exc
    if metrics:
        runner.with_metrics_handler()

    ctx.exit(runner.run())

"""Click CLI for running and administering the Waydroid control API."""

from __future__ import annotations

import json

import click

from waydroid_api.auth.token import TokenStore
from waydroid_api.config import Settings, configure_logging
from waydroid_api.ratelimit.limiter import PolicyError, load_policy
from waydroid_api.webhook.store import WebhookStore


@click.group()
@click.option("--token-file", default=None, help="API token file path.")
@click.option("--webhooks-file", default=None, help="Webhook registry JSON path.")
@click.option("--rate-limits", default=None, help="Rate limit policy JSON path.")
@click.pass_context
def cli(
    ctx: click.Context,
    token_file: str | None,
    webhooks_file: str | None,
    rate_limits: str | None,
) -> None:
    """Waydroid control-plane API."""
    ctx.ensure_object(dict)
    settings = Settings.from_env()
    overrides = {
        "token_file": token_file,
        "webhooks_file": webhooks_file,
        "rate_limits_file": rate_limits,
    }
    ctx.obj["settings"] = settings.model_copy(
        update={k: v for k, v in overrides.items() if v is not None},
    )


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address.")
@click.option("--port", default=8080, show_default=True, type=int, help="Listen port.")
@click.option("--no-token", is_flag=True, help="Do not generate a token (disables auth).")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int, no_token: bool) -> None:
    """Run the API server."""
    import uvicorn

    from waydroid_api.api.app import create_app_from_settings

    settings: Settings = ctx.obj["settings"]
    configure_logging(settings.log_level, settings.log_file)
    if not no_token:
        token, created = TokenStore(settings.token_file).ensure()
        if created:
            click.echo(f"API Token: {token}")
            click.echo(f"Token saved to: {settings.token_file}")
    try:
        app = create_app_from_settings(settings)
    except PolicyError as exc:
        raise click.ClickException(str(exc)) from exc
    uvicorn.run(app, host=host, port=port, log_config=None)


@cli.group("token")
def token_group() -> None:
    """Manage the API token."""


@token_group.command("show")
@click.pass_context
def token_show(ctx: click.Context) -> None:
    """Print the current token."""
    store = TokenStore(ctx.obj["settings"].token_file)
    token = store.read()
    if not token:
        raise click.ClickException(f"No token at {store.path}")
    click.echo(token)


@token_group.command("rotate")
@click.option("--yes", is_flag=True, help="Confirm that existing clients will be locked out.")
@click.pass_context
def token_rotate(ctx: click.Context, yes: bool) -> None:
    """Replace the token with a new random one."""
    if not yes:
        raise click.ClickException("Refusing to rotate without --yes")
    store = TokenStore(ctx.obj["settings"].token_file)
    click.echo(store.rotate())


@cli.group("webhooks")
def webhooks_group() -> None:
    """Inspect registered webhooks."""


@webhooks_group.command("list")
@click.pass_context
def webhooks_list(ctx: click.Context) -> None:
    """List registered webhooks with secrets redacted."""
    store = WebhookStore(ctx.obj["settings"].webhooks_file)
    click.echo(json.dumps([h.redacted() for h in store.list()], indent=2))


@cli.command("check-config")
@click.pass_context
def check_config(ctx: click.Context) -> None:
    """Validate the rate limit policy file."""
    path = ctx.obj["settings"].rate_limits_file
    try:
        policy = load_policy(path)
    except PolicyError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(policy.model_dump_json(indent=2))

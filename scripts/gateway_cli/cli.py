#!/usr/bin/env python3
"""
Gateway CLI - operate and smoke-test the x402 media gateway.

Commands:
    health      Check gateway health
    info        List paid endpoints and prices
    generate    Request an artifact from a route
    routes      Validate an endpoints file offline
    db          Database migrations
    serve       Run the gateway server
"""
import json
import os
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from gateway_cli.api import (
    api_request as _api_request,
    get_url,
    APIError,
    ConnectionError,
)

# Initialize Typer apps
app = typer.Typer(
    name="gateway",
    help="x402 media gateway CLI",
    no_args_is_help=True,
)
routes_app = typer.Typer(help="Endpoint table tools")
db_app = typer.Typer(help="Database migrations")

app.add_typer(routes_app, name="routes")
app.add_typer(db_app, name="db")

# Rich console for colored output
console = Console()
err_console = Console(stderr=True)


def api_request(endpoint: str, params: dict = None, headers: dict = None, timeout: int = 30):
    """Make API request with CLI error handling."""
    try:
        return _api_request(endpoint, params=params, headers=headers, timeout=timeout)
    except APIError as e:
        err_console.print(f"[red]Error {e.status_code}:[/red] {e.detail}")
        raise typer.Exit(1)
    except ConnectionError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


# =============================================================================
# Service Commands
# =============================================================================

@app.command("health")
def health(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show full response"),
):
    """Check gateway health.

    Example: gateway health
    """
    result = api_request("/health", timeout=10)

    status = result.get("status", "unknown")
    service = result.get("service", "gateway")
    version = result.get("version", "?")

    if status == "healthy":
        console.print(f"[green]✓[/green] {service} v{version}: [green]{status}[/green]")
    else:
        console.print(f"[yellow]⚠[/yellow] {service} v{version}: [yellow]{status}[/yellow]")

    if verbose:
        console.print(json.dumps(result, indent=2))


@app.command("info")
def info(
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List paid endpoints, qualities, and prices.

    Example: gateway info
    """
    result = api_request("/")

    if as_json:
        console.print(json.dumps(result, indent=2))
        return

    console.print(
        f"[bold]{result.get('service', 'gateway')}[/bold] "
        f"on {result.get('network', '?')} paying in {result.get('token_symbol', '?')}\n"
    )

    table = Table()
    table.add_column("Route", style="cyan")
    table.add_column("Quality")
    table.add_column("Type")
    table.add_column("Cost", justify="right")
    table.add_column("Description", style="dim")

    for endpoint in result.get("endpoints", []):
        default_quality = endpoint.get("default_quality")
        for variant in endpoint.get("qualities", []):
            quality = variant.get("quality", "")
            if quality == default_quality:
                quality = f"{quality} (default)"
            table.add_row(
                endpoint.get("path", ""),
                quality,
                variant.get("type", ""),
                variant.get("cost", ""),
                variant.get("description", ""),
            )

    console.print(table)


@app.command("generate")
def generate(
    prompt: str = typer.Argument(
        "a cyberpunk cat furiously coding on a laptop with a background like The Matrix",
        help="Prompt to send",
    ),
    route: str = typer.Option("/generate_image", "--route", "-r", help="Route path"),
    quality: Optional[str] = typer.Option(None, "--quality", "-q", help="Quality tier (default: route default)"),
    payment: Optional[str] = typer.Option(
        None, "--payment", "-p", envvar="X_PAYMENT", help="Base64 X-PAYMENT header value"
    ),
):
    """Request an artifact from a paid route.

    Without --payment this shows the 402 payment challenge.

    Example: gateway generate "a red fox" --route /generate_image -q high
    """
    console.print(f"Server: [cyan]{get_url()}[/cyan]")
    console.print(f"Route:  [cyan]{route}[/cyan]")
    console.print(f"Prompt: {prompt}\n")

    headers = {"X-PAYMENT": payment} if payment else {}
    try:
        result = _api_request(
            route, params={"prompt": prompt, "quality": quality}, headers=headers, timeout=300
        )
    except APIError as e:
        if e.status_code == 402 and isinstance(e.body, dict):
            console.print("[yellow]402 Payment Required[/yellow]")
            if e.body.get("error"):
                console.print(f"  Reason: {e.body['error']}")
            for req in e.body.get("accepts", []):
                console.print(f"  Amount:  {req.get('maxAmountRequired')} (raw units)")
                console.print(f"  Asset:   {req.get('asset')}")
                console.print(f"  Network: {req.get('network')}")
                console.print(f"  Pay to:  {req.get('payTo')}")
            raise typer.Exit(2)
        err_console.print(f"[red]Error {e.status_code}:[/red] {e.detail}")
        raise typer.Exit(1)
    except ConnectionError as e:
        err_console.print(f"[red]Request failed - is the server running?[/red] {e}")
        raise typer.Exit(1)

    cached = " [dim](cached)[/dim]" if result.get("cached") else ""
    console.print(f"[green]✓[/green] {result.get('type')} ({result.get('quality')}){cached}")
    console.print(f"  {result.get('url')}")


@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default: HOST)"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port (default: PORT or 3402)"),
):
    """Run the gateway server (requires the server environment).

    Example: gateway serve --port 3402
    """
    import uvicorn

    from app.config import settings

    uvicorn.run(
        "app.main:app",
        host=host or settings.DEFAULT_HOST,
        port=port or settings.DEFAULT_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


@app.command("version")
def version():
    """Show CLI version."""
    console.print("gateway-cli [cyan]v0.1.0[/cyan] (Typer)")


# =============================================================================
# Routes Commands
# =============================================================================

@routes_app.command("validate")
def routes_validate(
    path: str = typer.Argument("endpoints.yaml", help="Endpoints YAML file"),
    decimals: int = typer.Option(
        int(os.environ.get("PAYMENT_TOKEN_DECIMALS", "18")),
        "--decimals",
        "-d",
        help="Payment token decimals used to check costs",
    ),
):
    """Validate an endpoints file the same way the server does at startup.

    Example: gateway routes validate endpoints.yaml --decimals 6
    """
    from app.errors import ConfigError
    from app.services.route_registry import RouteRegistry, load_routes

    try:
        registry = RouteRegistry(load_routes(path), decimals)
    except ConfigError as e:
        err_console.print(f"[red]Invalid:[/red] {e.message}")
        raise typer.Exit(1)

    table = Table()
    table.add_column("Route", style="cyan")
    table.add_column("Quality")
    table.add_column("Model")
    table.add_column("Raw amount", justify="right")

    for route, qualities in registry.routes.items():
        for definition in qualities.values():
            quality = f"{definition.quality}*" if definition.default else definition.quality
            table.add_row(
                route, quality, definition.model, str(definition.price_minor_units(decimals))
            )

    console.print(table)
    console.print(
        f"[green]✓[/green] {len(registry.definitions)} variants across {len(registry)} routes"
    )


# =============================================================================
# DB Commands
# =============================================================================

@db_app.command("migrate")
def db_migrate(
    config: str = typer.Option("alembic.ini", "--config", "-c", help="Alembic config file"),
    revision: str = typer.Option("head", "--revision", help="Target revision"),
):
    """Apply database migrations (requires DATABASE_URL).

    Example: gateway db migrate
    """
    from alembic import command
    from alembic.config import Config

    console.print("Running migrations...")
    command.upgrade(Config(config), revision)
    console.print("[green]✓[/green] Migrations completed successfully")


# =============================================================================
# Main
# =============================================================================

def main():
    app()


if __name__ == "__main__":
    main()

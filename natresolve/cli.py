"""
natresolve CLI - inspect which address a peer should be given.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn

from .config import ConfigurationStore, DEFAULT_DATA_DIR, KNOWN_KEYS
from .errors import PropertyVetoError
from .network.gate import StunConfigGate
from .network.local import list_interface_addresses
from .network.models import to_ip
from .network.resolver import AddressResolver, GATED_KEYS

console = Console()


def setup_logging(verbose: bool = False):
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler()]
    )


def _parse_ip(value: str):
    try:
        return to_ip(value)
    except ValueError:
        raise click.BadParameter(f"{value} is not an IP address")


def _load_config(ctx) -> ConfigurationStore:
    return ConfigurationStore.load(ctx.obj['data_dir'])


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--data-dir', type=click.Path(), help='Configuration directory')
@click.pass_context
def main(ctx, verbose, data_dir):
    """natresolve - public and local address resolution"""
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    ctx.obj['data_dir'] = Path(data_dir) if data_dir else DEFAULT_DATA_DIR
    setup_logging(verbose)


@main.command('local-host')
@click.argument('destination')
@click.pass_context
def local_host(ctx, destination: str):
    """Show the local address used to reach DESTINATION."""
    dst = _parse_ip(destination)
    with AddressResolver(_load_config(ctx)) as resolver:
        address = resolver.get_local_host(dst)

    console.print(f"{dst} -> [cyan]{address}[/cyan]")
    if address.is_unspecified:
        console.print("[yellow]⚠️  No usable local address found (wildcard returned)[/yellow]")


@main.command()
@click.option('--port', '-p', required=True, type=click.IntRange(1, 65535), help='Local port to map')
@click.option('--destination', '-d', help='Peer address (defaults to the STUN server)')
@click.pass_context
def resolve(ctx, port: int, destination: Optional[str]):
    """Show the address/port to advertise for a local port."""
    dst = _parse_ip(destination) if destination else None

    with AddressResolver(_load_config(ctx)) as resolver:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            progress.add_task("Resolving...", total=None)
            if dst is None:
                endpoint = resolver.get_public_address_for_port(port)
            else:
                endpoint = resolver.get_public_address_for(dst, port)

        table = Table(show_header=False, box=None)
        table.add_column("Key", style="dim")
        table.add_column("Value")

        table.add_row("Local Port", str(port))
        if resolver.stun_enabled:
            table.add_row("STUN Server", f"[green]{resolver.stun_server}[/green]")
        else:
            table.add_row("STUN Server", "[yellow]disabled[/yellow]")
        table.add_row("Advertise", f"[cyan]{endpoint}[/cyan]")
        if endpoint.is_public:
            table.add_row("Public", "[green]Yes[/green]")
        else:
            table.add_row("Public", "[yellow]No[/yellow] (private or local range)")

    console.print(table)


@main.command()
def interfaces():
    """List interface addresses."""
    table = Table(title="Interface Addresses")
    table.add_column("Interface")
    table.add_column("Address")
    table.add_column("Scope")

    for iface in list_interface_addresses():
        if iface.ip.is_loopback:
            scope = "loopback"
        elif iface.is_link_local:
            scope = "link-local"
        elif iface.is_private:
            scope = "private"
        else:
            scope = "[green]global[/green]"
        table.add_row(iface.name, str(iface.ip), scope)

    console.print(table)


@main.group()
def config():
    """Show or change settings."""
    pass


@config.command('show')
@click.pass_context
def config_show(ctx):
    """Show current settings."""
    store = _load_config(ctx)

    table = Table(show_header=False, box=None)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    for key in KNOWN_KEYS:
        value = store.get_string(key)
        table.add_row(key, value if value is not None else "[dim]unset[/dim]")

    console.print(table)
    console.print(f"\n[dim]{store.config_path}[/dim]")


def _commit(ctx, key: str, value: Optional[str]):
    store = _load_config(ctx)
    gate = StunConfigGate()
    for gated in GATED_KEYS:
        store.add_vetoable_change_listener(gated, gate)

    try:
        store.set_property(key, value)
    except PropertyVetoError as e:
        console.print(f"[red]✗ {key} not changed: {e}[/red]")
        sys.exit(1)

    store.save()
    if value is None:
        console.print(f"[green]✓[/green] {key} unset")
    else:
        console.print(f"[green]✓[/green] {key} = {value}")


@config.command('set')
@click.argument('key', type=click.Choice(KNOWN_KEYS))
@click.argument('value')
@click.pass_context
def config_set(ctx, key: str, value: str):
    """Set KEY to VALUE (STUN settings are validated first)."""
    _commit(ctx, key, value)


@config.command('unset')
@click.argument('key', type=click.Choice(KNOWN_KEYS))
@click.pass_context
def config_unset(ctx, key: str):
    """Remove KEY (unsetting a STUN setting disables STUN)."""
    _commit(ctx, key, None)


@main.command()
@click.option('--host', '-h', default='127.0.0.1', help='Host to bind to')
@click.option('--port', '-p', default=11478, type=int, help='Port to bind to')
@click.pass_context
def serve(ctx, host: str, port: int):
    """Start the HTTP API."""
    from .api.server import run_server

    console.print(f"\n[bold blue]natresolve API[/bold blue] on http://{host}:{port}\n")
    run_server(host=host, port=port, resolver=AddressResolver(_load_config(ctx)))


if __name__ == "__main__":
    main()

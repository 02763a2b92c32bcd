#!/usr/bin/env python3
"""
Hashdrop CLI

Command-line interface for sending and receiving files.

Usage:
    hashdrop serve                 # Receive files into ./uploads
    hashdrop send FILE [FILE...]   # Send files, one connection each
    hashdrop send                  # Prompt for file paths
    hashdrop config                # Show effective configuration
"""

import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table
from rich.progress import (
    Progress, TextColumn, BarColumn, DownloadColumn, TransferSpeedColumn
)
from rich.panel import Panel
from rich.logging import RichHandler

from .config import ConfigError, load_config
from .node import ReceiverNode
from .transfer import FileSender, SendResult

console = Console()


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False),
              help='JSON config file')
@click.pass_context
def cli(ctx, verbose, config_path):
    """Hashdrop - verified single-file transfer."""
    try:
        config = load_config(Path(config_path) if config_path else None)
    except (ConfigError, ValueError) as e:
        console.print(f"[red]Invalid configuration: {e}[/red]")
        ctx.exit(2)

    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


def _apply_overrides(ctx, **overrides):
    config = ctx.obj['config']
    for key, value in overrides.items():
        if value is not None:
            setattr(config, key, value)
    try:
        return config.validate()
    except ConfigError as e:
        console.print(f"[red]Invalid option: {e}[/red]")
        ctx.exit(2)


@cli.command()
@click.option('--host', help='Listen address')
@click.option('--port', type=int, help='Listen port')
@click.option('--upload-dir', type=click.Path(file_okay=False), help='Upload directory')
@click.option('--max-clients', type=int, help='Maximum concurrent transfers')
@click.option('--max-file-size', type=int, help='Largest accepted file, in bytes')
@click.pass_context
def serve(ctx, host, port, upload_dir, max_clients, max_file_size):
    """Receive files."""
    config = _apply_overrides(
        ctx,
        host=host,
        port=port,
        upload_dir=Path(upload_dir) if upload_dir else None,
        max_concurrent_clients=max_clients,
        max_file_size=max_file_size,
    )

    async def run():
        node = ReceiverNode(config)
        await node.start()

        console.print(Panel.fit(
            f"[bold green]Receiver Started[/bold green]\n\n"
            f"Port: [yellow]{node.port}[/yellow]\n"
            f"Upload Dir: [blue]{node.upload_dir.resolve()}[/blue]\n"
            f"Max File Size: [yellow]{format_size(config.max_file_size)}[/yellow]\n"
            f"Max Clients: [yellow]{config.max_concurrent_clients}[/yellow]",
            title="Hashdrop"
        ))
        console.print("\n[dim]Press Ctrl+C to stop[/dim]\n")

        await node.run()

        stats = node.get_stats()['server']
        console.print(
            f"[green]Receiver stopped.[/green] "
            f"{stats['files_received']} file(s), {format_size(stats['bytes_received'])}"
        )

    try:
        asyncio.run(run())
    except OSError as e:
        console.print(f"[red]Could not start receiver: {e}[/red]")
        ctx.exit(1)


@cli.command()
@click.argument('files', nargs=-1, type=click.Path())
@click.option('--host', help='Receiver address')
@click.option('--port', type=int, help='Receiver port')
@click.pass_context
def send(ctx, files, host, port):
    """Send FILES to a receiver (prompts for paths when none are given)."""
    config = _apply_overrides(ctx, server_host=host, port=port)
    sender = FileSender.from_config(config)

    if files:
        results = [_send_one(sender, Path(f)) for f in files]
    else:
        results = []
        while True:
            entry = click.prompt(
                "File path to send (empty to quit)", default='', show_default=False
            ).strip()
            if not entry:
                break
            results.append(_send_one(sender, Path(entry).expanduser()))

    if len(results) > 1:
        _print_summary(results)

    if any(not r.succeeded for r in results):
        ctx.exit(1)


def _send_one(sender: FileSender, path: Path) -> SendResult:
    """Send a single file with a progress bar."""
    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task(f"Sending {path.name}", total=None)

        def update_progress(done: int, total: int):
            progress.update(task, completed=done, total=total)

        result = asyncio.run(sender.send(path, update_progress))

    if result.succeeded:
        console.print(
            f"[green]✓ {path.name}[/green] {format_size(result.file_size)} "
            f"[dim]sha256 {result.checksum[:16]}...[/dim]"
        )
    else:
        console.print(f"[red]✗ {path.name}: {result.describe()}[/red]")
    return result


def _print_summary(results):
    table = Table(title="Transfers")
    table.add_column("File", style="cyan")
    table.add_column("Size", justify="right", style="yellow")
    table.add_column("Result")

    for r in results:
        status = "[green]OK[/green]" if r.succeeded else f"[red]{r.describe()}[/red]"
        table.add_row(r.file_path.name, format_size(r.file_size), status)

    console.print(table)


@cli.command('config')
@click.pass_context
def show_config(ctx):
    """Show the effective configuration."""
    console.print_json(data=ctx.obj['config'].to_dict())


def format_size(bytes_count: int) -> str:
    """Format bytes as human-readable size."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


if __name__ == '__main__':
    cli()

"""Command-line interface for LanProbe."""

import asyncio
import json
import logging
import sys
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.table import Table

from lanprobe import __version__
from lanprobe.classifier import DeviceClassifier
from lanprobe.config import ScanConfig, parse_ports
from lanprobe.models import Device, RangeResult, StabilitySample
from lanprobe.scanner import (
    COMMON_PORTS,
    DISCOVERY_PORTS,
    HostScanned,
    HostScanner,
    ScanComplete,
    ScannerSession,
    ScanScheduler,
    StabilityAssessor,
    resolve_cidr,
    resolve_octet_range,
)


console = Console()


def setup_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")


def load_config(
    config_file: Optional[str],
    ports: Optional[str],
    timeout: Optional[int],
    concurrency: Optional[int],
    provider: Optional[str],
    model: Optional[str],
) -> ScanConfig:
    """Build the scan config from an optional file plus CLI overrides."""
    try:
        config = ScanConfig.from_file(config_file) if config_file else ScanConfig()
        if ports:
            config.ports = parse_ports(ports)
        if timeout is not None:
            config.timeout_ms = timeout
        if concurrency is not None:
            config.concurrency = concurrency
        if provider:
            config.provider = provider
        if model:
            config.model = model
        config.validate()
    except (OSError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    return config


def print_devices(devices: list[Device], title: str) -> None:
    """Print discovered devices as a table."""
    if not devices:
        console.print("[yellow]No devices found[/yellow]")
        return

    table = Table(title=title)
    table.add_column("IP", style="cyan")
    table.add_column("Status")
    table.add_column("Category", style="bold")
    table.add_column("Open Ports")
    table.add_column("Services")
    table.add_column("Conflict")

    for device in devices:
        if device.is_analyzing:
            category = "[dim]analyzing...[/dim]"
        elif device.category == "Error":
            category = "[red]Error[/red]"
        else:
            category = device.category

        conflict = "-"
        if device.conflict:
            conflict = f"[yellow]was {device.conflict.previous_category}[/yellow]"

        table.add_row(
            device.ip,
            f"[green]{device.status.value}[/green]",
            category,
            ", ".join(str(p) for p in device.open_ports),
            ", ".join(s.service_name for s in device.services) or "-",
            conflict,
        )

    console.print(table)

    conflicts = [d for d in devices if d.conflict]
    if conflicts:
        console.print()
        console.print(f"[bold yellow]{len(conflicts)} possible IP reassignment(s):[/bold yellow]")
        for device in conflicts:
            console.print(
                f"  {device.ip}: previously [bold]{device.conflict.previous_category}[/bold], "
                f"now [bold]{device.category}[/bold]"
            )


def print_stability(host: str, port: Optional[int], sample: StabilitySample) -> None:
    if sample.error:
        console.print(f"[red]Error:[/red] {sample.error}")
        return

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Target", f"{host}:{port}")
    table.add_row("Success", f"{sample.success_count}/{sample.total_pings} ({sample.success_rate:.0%})")
    table.add_row("Avg latency", f"{sample.avg_latency_ms:.1f} ms")
    table.add_row("Jitter", f"{sample.jitter_ms:.1f} ms")
    console.print(Panel(table, title="Stability", border_style="blue"))


async def _run_passes(
    scheduler: ScanScheduler,
    session: ScannerSession,
    hosts: list[str],
    config: ScanConfig,
    passes: int,
    quiet: bool,
) -> None:
    for number in range(1, passes + 1):
        events = (
            scheduler.run(session, hosts, config.timeout_ms)
            if number == 1
            else scheduler.rerun(session)
        )

        with Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TextColumn("[dim]{task.fields[label]}"),
            console=console,
            disable=quiet,
        ) as progress:
            task = progress.add_task(f"Pass {number}/{passes}", total=len(hosts), label="")
            async for event in events:
                if isinstance(event, HostScanned):
                    progress.update(
                        task,
                        completed=event.progress.completed,
                        label=f"checked {event.progress.current_label} | found {event.progress.found_count}",
                    )
                elif isinstance(event, ScanComplete):
                    progress.update(task, completed=event.progress.total, label="complete")

        if session.pending_classifications:
            if quiet:
                await session.wait_for_classification()
            else:
                with console.status(f"[bold blue]Classifying {session.pending_classifications} device(s)..."):
                    await session.wait_for_classification()


def run_scan(result: RangeResult, target: str, config: ScanConfig, passes: int, output_format: str) -> None:
    if not result.success:
        console.print(f"[red]Error:[/red] {result.error}")
        sys.exit(1)

    scheduler = ScanScheduler(
        host_scanner=HostScanner(ports=config.ports),
        classifier=DeviceClassifier(provider=config.provider, model=config.model),
        concurrency=config.concurrency,
        classifier_timeout=config.classifier_timeout_s,
    )
    session = ScannerSession()
    quiet = output_format == "json"

    if not quiet:
        console.print(Panel.fit(
            f"[bold cyan]LAN SCAN[/bold cyan]\n"
            f"[dim]Target: {target} ({len(result.hosts)} hosts)[/dim]\n"
            f"[dim]Ports: {len(config.ports)} | Timeout: {config.timeout_ms}ms | Workers: {config.concurrency}[/dim]\n"
            f"[dim]AI: {config.provider}/{config.model or 'default'}[/dim]",
            border_style="cyan",
        ))

    async def scan_all() -> None:
        try:
            await _run_passes(scheduler, session, result.hosts, config, passes, quiet)
        finally:
            await session.aclose()

    try:
        asyncio.run(scan_all())
    except KeyboardInterrupt:
        console.print("\n[yellow]Scan interrupted[/yellow]")
        sys.exit(130)

    if output_format == "json":
        data = {
            "target": target,
            "generation": session.generation,
            "progress": session.progress.model_dump(),
            "devices": [d.to_dict() for d in session.devices],
        }
        console.print_json(json.dumps(data))
        return

    print_devices(
        session.devices,
        f"Discovered Devices ({session.progress.found_count}/{session.progress.total} online)",
    )


_scan_options = [
    click.option("--ports", default=None, help="Comma-separated ports to probe"),
    click.option("-t", "--timeout", default=None, type=int, help="Probe timeout in ms (100-5000)"),
    click.option("-w", "--concurrency", default=None, type=int, help="Concurrent hosts (default: 20)"),
    click.option("-p", "--provider", default=None,
                 type=click.Choice(["anthropic", "openai", "gemini", "ollama"]),
                 help="LLM provider for classification (default: ollama)"),
    click.option("-m", "--model", default=None, help="Model name override"),
    click.option("-n", "--passes", default=1, type=click.IntRange(min=1),
                 help="Repeat the scan N times to surface identity conflicts"),
    click.option("-o", "--output", "output_format", default="pretty",
                 type=click.Choice(["pretty", "json"]), help="Output format (default: pretty)"),
    click.option("-c", "--config", "config_file", type=click.Path(exists=True),
                 help="YAML config file"),
    click.option("-v", "--verbose", is_flag=True, help="Verbose logging"),
]


def scan_options(func):
    for option in reversed(_scan_options):
        func = option(func)
    return func


@click.group()
@click.version_option(version=__version__, prog_name="lanprobe")
def main():
    """LanProbe - find and characterize devices on your LAN.

    Discovers hosts with TCP handshakes only, no raw sockets or root needed.
    """
    pass


@main.command()
@click.argument("target")
@scan_options
def scan(
    target: str,
    ports: Optional[str],
    timeout: Optional[int],
    concurrency: Optional[int],
    provider: Optional[str],
    model: Optional[str],
    passes: int,
    output_format: str,
    config_file: Optional[str],
    verbose: bool,
):
    """Scan a CIDR block for live hosts.

    Examples:

        lanprobe scan 192.168.1.0/24

        lanprobe scan 10.0.0.0/28 --ports 22,80,443 -t 500

        lanprobe scan 192.168.1.0/24 -n 2 -p anthropic
    """
    setup_logging(verbose)
    config = load_config(config_file, ports, timeout, concurrency, provider, model)
    result = resolve_cidr(target, max_hosts=config.max_hosts)
    run_scan(result, target, config, passes, output_format)


@main.command(name="range")
@click.argument("subnet")
@click.argument("start", type=int)
@click.argument("end", type=int)
@scan_options
def scan_range(
    subnet: str,
    start: int,
    end: int,
    ports: Optional[str],
    timeout: Optional[int],
    concurrency: Optional[int],
    provider: Optional[str],
    model: Optional[str],
    passes: int,
    output_format: str,
    config_file: Optional[str],
    verbose: bool,
):
    """Scan SUBNET.START through SUBNET.END.

    Examples:

        lanprobe range 192.168.1 1 254
    """
    setup_logging(verbose)
    config = load_config(config_file, ports, timeout, concurrency, provider, model)
    result = resolve_octet_range(subnet, start, end)
    run_scan(result, f"{subnet}.{start}-{end}", config, passes, output_format)


@main.command()
@click.argument("host")
@click.option("--port", default=None, type=int, help="Open port to test (default: lowest open port)")
@click.option("--pings", default=20, type=click.IntRange(min=1), help="Number of pings (default: 20)")
@click.option("-t", "--timeout", default=500, type=click.IntRange(100, 5000), help="Per-ping timeout in ms")
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
def stability(host: str, port: Optional[int], pings: int, timeout: int, verbose: bool):
    """Measure latency and jitter to a host.

    Without --port the host is scanned first and its lowest open port is used.

    Examples:

        lanprobe stability 192.168.1.1

        lanprobe stability 192.168.1.10 --port 22 --pings 50
    """
    setup_logging(verbose)
    assessor = StabilityAssessor()

    async def measure() -> tuple[Optional[int], StabilitySample]:
        target_port = port
        if target_port is None:
            found = await HostScanner().scan(host, timeout)
            target_port = found.open_ports[0] if found.open_ports else None
        return target_port, await assessor.assess(host, target_port, ping_count=pings, timeout_ms=timeout)

    with console.status(f"[bold blue]Pinging {host}..."):
        target_port, sample = asyncio.run(measure())

    print_stability(host, target_port, sample)
    if sample.error:
        sys.exit(1)


@main.command()
def ports():
    """List the default and discovery port sets."""
    table = Table(title="Ports")
    table.add_column("Port", style="cyan")
    table.add_column("Stage")

    for port in sorted(set(COMMON_PORTS) | set(DISCOVERY_PORTS)):
        stage = "discovery" if port in DISCOVERY_PORTS else "full scan"
        table.add_row(str(port), stage)

    console.print(table)


if __name__ == "__main__":
    main()

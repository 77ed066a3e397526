"""
UART Bootloader CLI

Command-line front end for erasing, flashing and inspecting the target.
"""

import sys
import time
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.progress import Progress, BarColumn, TextColumn, TimeElapsedColumn, TimeRemainingColumn

from uart_bootloader.config import DEFAULT_TIMINGS, UserSettings
from uart_bootloader.core.parsing import (
    parse_address as _parse_address_core,
    parse_length as _parse_length_core,
    parse_baudrate as _parse_baudrate_core,
)
from uart_bootloader.core.pipeline import WriteJob, ImageTooLarge
from uart_bootloader.core.results import OperationResult
from uart_bootloader.core.safety import (
    CONFIRMATION_TOKEN,
    WritePermissionError,
    create_cli_safety_context,
    require_write_permission,
)
from uart_bootloader.engine import BootloaderEngine
from uart_bootloader.models import DEFAULT_FLASH_REGION, FlashRegion
from uart_bootloader.protocol import BootloaderConnectionError

logger = logging.getLogger("uart_bootloader")

console = Console()

app = typer.Typer(help="UART bootloader host - erase, flash and inspect MCU flash")


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )
    # Device log lines are printed by the CLI itself
    logging.getLogger("uart_bootloader.device").propagate = verbose


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show wire traffic and debug logs"),
) -> None:
    setup_logging(verbose)


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    console.print(f"⚠️  {text}", style="yellow", markup=False)


def print_error(text: str) -> None:
    console.print(f"❌ {text}", style="red", markup=False)


def print_device_log(text: str) -> None:
    console.print(f"[LOG] {text}", style="dim cyan", markup=False, highlight=False)


def parse_address(value: str) -> int:
    """
    CLI wrapper around core.parsing.parse_address that converts
    ValueError to typer.BadParameter for proper CLI error handling.
    """
    try:
        return _parse_address_core(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def parse_length(value: str) -> int:
    try:
        return _parse_length_core(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def resolve_connection(port: Optional[str], baud: Optional[int], settings: UserSettings) -> tuple:
    """Fill port/baud from saved settings when not given on the command line."""
    port = port or settings.last_port
    if not port:
        raise typer.BadParameter("No port given and none remembered. Use --port (see 'ports').")
    try:
        baud = _parse_baudrate_core(baud or settings.last_baudrate)
    except ValueError as e:
        raise typer.BadParameter(str(e))
    return port, baud


def build_region(app_start: Optional[str]) -> FlashRegion:
    if app_start is None:
        return DEFAULT_FLASH_REGION
    try:
        return DEFAULT_FLASH_REGION.with_app_start(_parse_address_core(app_start))
    except ValueError as e:
        raise typer.BadParameter(str(e))


@contextmanager
def open_engine(
    port: Optional[str],
    baud: Optional[int],
    region: FlashRegion = DEFAULT_FLASH_REGION,
    **callbacks,
) -> Iterator[BootloaderEngine]:
    """Connect an engine, remember the port on success, always close it."""
    settings = UserSettings.load()
    port, baud = resolve_connection(port, baud, settings)
    callbacks.setdefault("on_log", print_device_log)

    engine = BootloaderEngine(region=region, **callbacks)
    try:
        try:
            engine.connect(port, baud)
        except BootloaderConnectionError as e:
            print_error(str(e))
            sys.exit(1)
        console.print(f"Connected to [cyan]{port}[/cyan] @ {baud} baud")
        settings.last_port = port
        settings.last_baudrate = baud
        settings.save()
        yield engine
    finally:
        engine.close()


def report(result: OperationResult, success_text: str) -> None:
    """Print outcome; exit 1 on failure."""
    for warning in result.warnings:
        print_warning(warning)
    if result.ok:
        print_success(f"{success_text} ({result.elapsed:.2f}s)")
        return
    print_error(result.to_summary())
    if result.disconnected:
        console.print("[dim]The connection was lost. Check the cable and reconnect.[/dim]")
    sys.exit(1)


def confirm_write(
    operation: str,
    write_flag: bool,
    port: str,
    target_region: str,
    bytes_length: int,
    confirm_token: Optional[str],
) -> None:
    """
    Require --write and a typed (or --confirm) token before touching flash.

    Raises:
        typer.Abort: If confirmation fails or write not permitted
    """
    def show_details(details: dict) -> None:
        console.print(Panel(
            f"[bold yellow]⚠️  WRITE CONFIRMATION REQUIRED[/bold yellow]\n\n"
            f"Operation:     {details['operation']}\n"
            f"Port:          {details['port']}\n"
            f"Target:        {details['target_region']}\n"
            f"Bytes:         {details['bytes_length']:,}\n"
            f"\n[bold]Type '{CONFIRMATION_TOKEN}' to proceed, or anything else to abort:[/bold]",
            title="Flash Write Operation",
            expand=False,
        ))

    ctx = create_cli_safety_context(
        write_flag,
        port=port,
        confirmation_token=confirm_token,
        prompt_confirmation=lambda text: typer.prompt("Confirm"),
        show_details=show_details,
    )
    try:
        require_write_permission(ctx, operation, target_region, bytes_length)
    except WritePermissionError as e:
        print_error(e.reason)
        if not write_flag:
            console.print("This is a safety measure against accidental erases.")
            console.print(f"Re-run with [bold]--write[/bold] (scripts: --write --confirm {CONFIRMATION_TOKEN}).")
        raise typer.Abort()


def format_hexdump(data: bytes, address: int) -> str:
    lines = []
    for offset in range(0, len(data), 16):
        row = data[offset:offset + 16]
        hex_part = " ".join(f"{b:02X}" for b in row)
        ascii_part = "".join(chr(b) if 32 <= b < 127 else "." for b in row)
        lines.append(f"{address + offset:08X}  {hex_part:<47}  {ascii_part}")
    return "\n".join(lines)


@app.command()
def ports() -> None:
    """List available serial ports."""
    print_header("Available Serial Ports")

    ports_list = BootloaderEngine.list_ports()
    if not ports_list:
        print_warning("No serial ports found")
        return

    table = Table(title="Serial Ports")
    table.add_column("Port", style="cyan")
    table.add_column("Description", style="green")
    for device, description in ports_list:
        table.add_row(device, description)
    console.print(table)


@app.command()
def erase(
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Serial port (e.g., /dev/ttyUSB0, COM3)"),
    baud: Optional[int] = typer.Option(None, "--baud", "-b", help="Baud rate (default: last used or 115200)"),
    write: bool = typer.Option(False, "--write", help="Allow modifying flash"),
    confirm: Optional[str] = typer.Option(None, "--confirm", help=f"Non-interactive confirmation token ({CONFIRMATION_TOKEN})"),
) -> None:
    """Erase the application region."""
    print_header("Erase Application")

    port, baud = resolve_connection(port, baud, UserSettings.load())
    confirm_write("erase", write, port, DEFAULT_FLASH_REGION.describe(), DEFAULT_FLASH_REGION.app_size, confirm)

    with open_engine(port, baud) as engine:
        with console.status("Erasing..."):
            result = engine.erase_application()
        report(result, "Erase complete")


@app.command()
def flash(
    firmware: Path = typer.Argument(..., exists=True, dir_okay=False, help="Raw firmware image (.bin)"),
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Serial port"),
    baud: Optional[int] = typer.Option(None, "--baud", "-b", help="Baud rate"),
    app_start: Optional[str] = typer.Option(None, "--app-start", help="Application start address (default 0x08008000)"),
    no_erase: bool = typer.Option(False, "--no-erase", help="Skip the erase step"),
    verify: bool = typer.Option(False, "--verify", help="Read the image back after writing"),
    no_jump: bool = typer.Option(False, "--no-jump", help="Stay in the bootloader afterwards"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the block plan without touching the device"),
    write: bool = typer.Option(False, "--write", help="Allow modifying flash"),
    confirm: Optional[str] = typer.Option(None, "--confirm", help=f"Non-interactive confirmation token ({CONFIRMATION_TOKEN})"),
) -> None:
    """Erase, write, optionally verify, then start the application."""
    print_header("Flash Firmware")

    region = build_region(app_start)
    image = firmware.read_bytes()
    try:
        job = WriteJob(image, region=region, chunk_size=DEFAULT_TIMINGS.chunk_size)
    except (ValueError, ImageTooLarge) as e:
        print_error(str(e))
        sys.exit(1)

    target = f"0x{region.app_start:08X}-0x{job.end_address:08X}"
    console.print(f"File: {firmware} ({len(image):,} bytes, {len(job.blocks)} blocks)")

    if dry_run:
        table = Table(title="Write Plan")
        table.add_column("Block", justify="right")
        table.add_column("Address", style="cyan")
        table.add_column("Bytes", justify="right", style="green")
        shown = job.blocks if len(job.blocks) <= 8 else job.blocks[:4] + job.blocks[-4:]
        for block in shown:
            if block.index == len(job.blocks) - 4 and len(job.blocks) > 8:
                table.add_row("...", "...", "...")
            table.add_row(str(block.index), f"0x{block.address:08X}", str(len(block.data)))
        console.print(table)
        print_warning("Dry run: nothing was sent. Add --write to flash.")
        return

    port, baud = resolve_connection(port, baud, UserSettings.load())
    confirm_write("flash", write, port, target, job.total_bytes, confirm)

    settings = UserSettings.load()
    settings.last_file = str(firmware.resolve())
    settings.save()

    with Progress(
        TextColumn("[{task.description}]"),
        BarColumn(),
        TextColumn("[{task.percentage:.0f}%]"),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Writing", total=job.total_bytes)

        def on_progress(written: int, total: int) -> None:
            progress.update(task, completed=written, description=f"Writing 0x{region.app_start + written:08X}")

        with open_engine(port, baud, region=region, on_progress=on_progress) as engine:
            result = engine.flash(image, erase=not no_erase, verify=verify, jump=not no_jump)

    if result.ok and "bytes_per_sec" in result.metadata:
        console.print(f"Write speed: {result.metadata['bytes_per_sec']:,} bytes/sec")
    report(result, "Flashing complete" + ("" if no_jump else ", application started"))


@app.command()
def read(
    address: str = typer.Argument(..., help="Start address (e.g., 0x08008000)"),
    length: str = typer.Argument(..., help="Number of bytes (e.g., 256 or 0x100)"),
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Serial port"),
    baud: Optional[int] = typer.Option(None, "--baud", "-b", help="Baud rate"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Save to file instead of printing"),
) -> None:
    """Read flash memory and print a hexdump or save it."""
    start = parse_address(address)
    count = parse_length(length)

    with open_engine(port, baud) as engine:
        with console.status(f"Reading {count:,} bytes at 0x{start:08X}..."):
            result = engine.read_memory(start, count)

    if not result.ok:
        report(result, "")
    for warning in result.warnings:
        print_warning(warning)

    if output:
        output.write_bytes(result.data)
        print_success(f"Saved {len(result.data):,} bytes to {output}")
    else:
        console.print(format_hexdump(result.data, start), markup=False, highlight=False)


@app.command()
def jump(
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Serial port"),
    baud: Optional[int] = typer.Option(None, "--baud", "-b", help="Baud rate"),
) -> None:
    """Leave the bootloader and start the application."""
    with open_engine(port, baud) as engine:
        report(engine.jump_to_application(), "Jump command sent")


@app.command("jump-bootloader")
def jump_bootloader(
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Serial port"),
    baud: Optional[int] = typer.Option(None, "--baud", "-b", help="Baud rate"),
) -> None:
    """Ask the running application to reset into the bootloader."""
    with open_engine(port, baud) as engine:
        report(engine.jump_to_bootloader(), "Jump-to-bootloader command sent")


@app.command()
def monitor(
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Serial port"),
    baud: Optional[int] = typer.Option(None, "--baud", "-b", help="Baud rate"),
    duration: Optional[float] = typer.Option(None, "--duration", "-d", help="Stop after N seconds"),
) -> None:
    """Print everything the device sends until Ctrl-C."""
    def on_monitor(text: str) -> None:
        console.out(text, end="", highlight=False)

    with open_engine(port, baud, on_monitor=on_monitor) as engine:
        engine.start_monitor()
        console.print("[dim]Monitoring... press Ctrl-C to stop[/dim]")
        deadline = None if duration is None else time.monotonic() + duration
        try:
            while engine.monitor_running:
                if deadline is not None and time.monotonic() >= deadline:
                    break
                time.sleep(0.1)
        except KeyboardInterrupt:
            pass
        engine.stop_monitor()
        engine.telemetry.flush(timeout=1.0)
        if not engine.is_connected:
            print_error("Connection lost")
            sys.exit(1)
    console.print()


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        console.print(f"\n[red bold]Fatal error:[/red bold] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

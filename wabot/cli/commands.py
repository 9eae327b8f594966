"""CLI commands for wabot."""

import asyncio
import json
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from wabot import __brand__, __logo__, __version__

app = typer.Typer(
    name="wabot",
    help=f"{__logo__} {__brand__} - WhatsApp sales conversation bot",
    no_args_is_help=True,
)

console = Console()


def _cli_fail(cause: str, fix: str | None = None, *, exit_code: int = 1) -> None:
    """Print a consistent CLI error block and exit."""
    console.print(f"[red]{cause}[/red]")
    if fix:
        console.print(f"[dim]Fix: {fix}[/dim]")
    raise typer.Exit(exit_code)


def _configure_logging(verbose: bool) -> None:
    from loguru import logger

    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


def _check(flag: bool) -> str:
    return "[green]✓[/green]" if flag else "[red]✗[/red]"


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} {__brand__} v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(None, "--version", "-v", callback=version_callback, is_eager=True),
):
    """wabot - WhatsApp sales conversation bot."""
    pass


@app.command("version")
def version_command():
    """Show wabot version."""
    console.print(f"{__logo__} {__brand__} v{__version__}")


@app.command()
def onboard(
    operator: str = typer.Option("", "--operator", help="Phone number the bridge is logged in as"),
):
    """Initialize wabot configuration and workspace."""
    from wabot.agent.context import DEFAULT_PROMPT, PROMPT_FILE
    from wabot.config.loader import (
        convert_keys,
        convert_to_camel,
        deep_merge_config,
        get_config_path,
        load_config,
        save_config,
    )
    from wabot.config.schema import Config
    from wabot.utils.helpers import get_workspace_path

    config_path = get_config_path()

    if config_path.exists():
        existing_data = convert_to_camel(load_config().model_dump())
        default_data = convert_to_camel(Config().model_dump())
        config = Config.model_validate(convert_keys(deep_merge_config(existing_data, default_data)))
        message = f"Merged config at {config_path} (existing values preserved)"
    else:
        config = Config()
        message = f"Created config at {config_path}"

    if operator:
        config.channels.whatsapp.operator_number = operator
    save_config(config)
    console.print(f"[green]✓[/green] {message}")

    workspace = get_workspace_path(config.agents.defaults.workspace)
    console.print(f"[green]✓[/green] Workspace at {workspace}")

    prompt_path = workspace / PROMPT_FILE
    if not prompt_path.exists():
        prompt_path.write_text(DEFAULT_PROMPT + "\n", encoding="utf-8")
        console.print(f"  [dim]Created {PROMPT_FILE}[/dim]")

    console.print(f"\n{__logo__} {__brand__} is ready!")
    console.print(f"\n  Edit the sales prompt: [cyan]{prompt_path}[/cyan]")
    console.print("  Start: [cyan]wabot gateway[/cyan]")


@app.command()
def gateway(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Start the WhatsApp channel and the conversation orchestrator."""
    from wabot.agent.context import PromptBuilder
    from wabot.agent.generator import ReplyGenerator
    from wabot.bus.queue import MessageBus
    from wabot.channels.manager import ChannelManager
    from wabot.config.loader import get_config_path, load_config
    from wabot.conversation.orchestrator import ConversationOrchestrator
    from wabot.observability.metrics import MetricsStore, metrics_path
    from wabot.providers.factory import build_provider
    from wabot.storage.conversations import ConversationStore
    from wabot.storage.orders import OrderStore
    from wabot.utils.helpers import get_workspace_path

    _configure_logging(verbose)
    config = load_config()

    route = config.resolve_model_route()
    if not route.api_key and route.provider != "vllm":
        _cli_fail(
            f"No API key configured for provider '{route.provider}'.",
            f"Set providers.<name>.apiKey in {get_config_path()}",
        )

    bus = MessageBus()
    channels = ChannelManager(config, bus)
    channel = channels.get_channel("whatsapp")
    if channel is None:
        _cli_fail("WhatsApp channel is disabled.", "Set channels.whatsapp.enabled=true")

    workspace = get_workspace_path(config.agents.defaults.workspace)
    defaults = config.agents.defaults
    generator = ReplyGenerator(
        build_provider(config, route),
        PromptBuilder(workspace),
        model=route.model,
        max_tokens=defaults.max_tokens,
        temperature=defaults.temperature,
    )
    metrics = MetricsStore(metrics_path(workspace))
    orchestrator = ConversationOrchestrator(
        bus=bus,
        channel=channel,
        generator=generator,
        conversations=ConversationStore(workspace, max_turns=config.conversation.history_max_turns),
        orders=OrderStore(workspace),
        settings=config.conversation,
        operator_number=config.channels.whatsapp.operator_number,
        metrics=metrics,
    )

    console.print(f"{__logo__} Starting {__brand__} gateway...")
    console.print(f"[green]✓[/green] Model: {route.model} via {route.provider}")
    console.print(f"[green]✓[/green] Bridge: {config.channels.whatsapp.bridge_url}")
    console.print(
        f"[green]✓[/green] Quiet window {config.conversation.quiet_window_s:g}s, "
        f"pause TTL {config.conversation.pause_ttl_s / 3600:g}h"
    )

    async def run():
        try:
            await asyncio.gather(orchestrator.run(), channels.start_all())
        except KeyboardInterrupt:
            console.print("\nShutting down...")
        finally:
            await orchestrator.shutdown()
            await channels.stop_all()

    asyncio.run(run())


@app.command()
def status():
    """Show wabot status."""
    from wabot.config.loader import get_config_path, get_data_dir, load_config
    from wabot.observability.metrics import metrics_path
    from wabot.storage.orders import OrderStore

    data_dir = get_data_dir()
    config_path = get_config_path()
    config = load_config()
    workspace = config.workspace_path

    console.print(f"{__logo__} {__brand__} Status\n")
    console.print(f"Data dir: {data_dir} {_check(data_dir.exists())}")
    console.print(f"Config: {config_path} {_check(config_path.exists())}")
    console.print(f"Workspace: {workspace} {_check(workspace.exists())}")

    prompt_path = workspace / "PROMPT.md"
    console.print(f"Prompt: {prompt_path if prompt_path.exists() else '[dim]built-in default[/dim]'}")

    route = config.resolve_model_route()
    console.print(f"Model: {route.model} (provider={route.provider}, key={'set' if route.api_key else 'not set'})")

    wa = config.channels.whatsapp
    console.print(f"WhatsApp: {'enabled' if wa.enabled else '[dim]disabled[/dim]'} ({wa.bridge_url})")
    console.print(f"Operator number: {wa.operator_number or '[dim]not set[/dim]'}")

    if workspace.exists():
        orders_path = OrderStore(workspace).path
        console.print(f"Orders: {orders_path} {_check(orders_path.exists())}")
        events = metrics_path(workspace)
        console.print(f"Metrics: {events} {_check(events.exists())}")


@app.command()
def orders(
    limit: int = typer.Option(20, "--limit", "-n", help="How many recent orders to show"),
):
    """List the most recent logged orders."""
    from wabot.config.loader import load_config
    from wabot.storage.orders import OrderStore

    config = load_config()
    records = OrderStore(config.workspace_path).list_recent(limit)
    if not records:
        console.print("No orders logged yet.")
        return

    table = Table(title="Orders")
    table.add_column("When", style="cyan")
    table.add_column("Contact")
    table.add_column("Name")
    table.add_column("Product")
    table.add_column("Qty", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("City")
    for record in records:
        table.add_row(
            str(record.get("createdAt", "")),
            str(record.get("contact", "")),
            str(record.get("name", "")),
            str(record.get("product", "")),
            str(record.get("quantity", "")),
            str(record.get("totalRaw") or record.get("total", "")),
            str(record.get("city", "")),
        )
    console.print(table)


@app.command("metrics")
def metrics_cmd(
    hours: int = typer.Option(24, "--hours", "-w", help="Metrics window in hours"),
    as_json: bool = typer.Option(False, "--json", help="Output JSON snapshot"),
):
    """Show conversation metrics for a recent window."""
    from wabot.config.loader import load_config
    from wabot.observability.metrics import MetricsStore, metrics_path

    config = load_config()
    snapshot = MetricsStore(metrics_path(config.workspace_path)).snapshot(hours=hours)
    if as_json:
        console.print_json(json.dumps(snapshot))
        return

    turns = snapshot["turns"]
    deliveries = snapshot["deliveries"]
    table = Table(title=f"Metrics (last {snapshot['window_hours']}h)")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Turns", str(turns["count"]))
    for outcome, count in sorted(turns["outcomes"].items()):
        table.add_row(f"  {outcome}", str(count))
    table.add_row("Contacts", str(turns["contacts"]))
    table.add_row("Turn latency p95 (ms)", str(turns["latency_ms_p95"]))
    table.add_row("Deliveries", str(deliveries["count"]))
    table.add_row("Delivery success %", str(deliveries["success_rate"]))
    table.add_row("Inline media fallbacks", str(deliveries["inline_fallbacks"]))
    table.add_row("Orders", str(snapshot["orders"]["count"]))
    console.print(table)


@app.command()
def history(
    contact: str = typer.Argument(..., help="Contact phone number"),
    limit: int = typer.Option(10, "--limit", "-n", help="How many turns to show"),
):
    """Show the stored conversation with one contact."""
    from wabot.config.loader import load_config
    from wabot.conversation.contacts import contact_key
    from wabot.storage.conversations import ConversationStore

    config = load_config()
    key = contact_key(contact)
    turns = ConversationStore(Path(config.workspace_path)).recent(key, limit)
    if not turns:
        console.print(f"No conversation stored for {key}.")
        return

    for turn in turns:
        console.print(f"[dim]{turn.get('createdAt', '')}[/dim]")
        console.print(f"[cyan]{key}:[/cyan] {turn.get('userText', '')}")
        for media in turn.get("aiMedia") or []:
            console.print(f"[green]bot:[/green] [image] {media.get('url', '')}")
        console.print(f"[green]bot:[/green] {turn.get('aiText', '')}\n")

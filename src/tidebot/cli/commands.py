"""
CLI commands for tidebot.

Uses Typer for command-line interface.
"""

import asyncio
import logging
import signal
from typing import Optional

import typer

from tidebot import __version__
from tidebot.agent.loop import AgentLoop
from tidebot.bus import MessageBus
from tidebot.channels import ChannelManager
from tidebot.config import Config, load_config
from tidebot.config.loader import DATA_DIR
from tidebot.cron.service import CronService
from tidebot.health import HealthServer
from tidebot.heartbeat.service import HeartbeatService
from tidebot.pairing import PairingStore
from tidebot.providers import OpenAIProvider

CRON_STORE_PATH = DATA_DIR / "cron" / "jobs.json"
EXIT_COMMANDS = {"exit", "quit", "/exit", "/quit", ":q"}

app = typer.Typer(name="tidebot", help="tidebot - personal AI assistant")
pairing_app = typer.Typer(help="Approve or reject pending sender pairings")
cron_app = typer.Typer(help="Inspect scheduled jobs")
app.add_typer(pairing_app, name="pairing")
app.add_typer(cron_app, name="cron")

logger = logging.getLogger("tidebot")


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _make_provider(config: Config) -> OpenAIProvider:
    return OpenAIProvider(
        api_key=config.provider.api_key,
        api_base=config.provider.api_base,
        default_model=config.agent.model,
        timeout_s=config.provider.timeout_s,
    )


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"tidebot {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version and exit"
    ),
):
    """tidebot - personal AI assistant."""


@app.command()
def agent(
    message: Optional[str] = typer.Option(None, "-m", "--message", help="Single message to process"),
    session: str = typer.Option("cli:direct", "-s", "--session", help="Session key"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
):
    """
    Talk to the agent from the terminal.

    With -m: process a single message and exit.
    Without -m: interactive REPL (type "exit" to leave).
    """
    if verbose:
        _setup_logging(verbose)
    config = load_config()
    asyncio.run(_run_agent(config, message, session))


async def _run_agent(config: Config, message: str | None, session_key: str) -> None:
    bus = MessageBus(capacity=config.bus.capacity).start()
    provider = _make_provider(config)
    cron = CronService(bus, store_path=CRON_STORE_PATH)
    agent_loop = AgentLoop.from_config(config, bus, provider, cron_service=cron)

    try:
        if message:
            response = await agent_loop.process_direct(message, session_key=session_key)
            typer.echo(f"\n{response}")
            return

        typer.echo("tidebot interactive mode (type 'exit' to quit)\n")
        while True:
            try:
                user_input = await asyncio.to_thread(input, "You: ")
            except (EOFError, KeyboardInterrupt):
                break
            text = user_input.strip()
            if not text:
                continue
            if text.lower() in EXIT_COMMANDS:
                break
            response = await agent_loop.process_direct(text, session_key=session_key)
            typer.echo(f"\ntidebot: {response}\n")
    finally:
        await provider.aclose()
        await bus.stop()
        typer.echo("Goodbye!")


@app.command()
def gateway(
    port: Optional[int] = typer.Option(None, "-p", "--port", help="Health endpoint port"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
):
    """
    Start the full gateway.

    This runs:
    - Message bus for routing
    - Agent loop processing inbound messages
    - All enabled channels (Telegram)
    - Cron scheduler and heartbeat
    - Health endpoint
    """
    _setup_logging(verbose)
    config = load_config()
    if port is not None:
        config.gateway.port = port

    logger.info("Starting tidebot gateway (workspace: %s)", config.workspace)
    asyncio.run(_run_gateway(config))


async def _run_gateway(config: Config) -> None:
    from tidebot.channels.telegram import TelegramChannel

    bus = MessageBus(capacity=config.bus.capacity).start()
    provider = _make_provider(config)
    cron = CronService(bus, store_path=CRON_STORE_PATH, interval_s=config.gateway.cron_interval_s)
    agent_loop = AgentLoop.from_config(config, bus, provider, cron_service=cron)
    heartbeat = HeartbeatService(agent_loop, interval_s=config.gateway.heartbeat_interval_s)

    channels = ChannelManager(bus, pairing=PairingStore())
    tg_config = config.channels.telegram.model_dump()
    tg_config["workspace"] = str(config.workspace)
    channels.init_channel("telegram", TelegramChannel, tg_config)

    health = HealthServer(
        bus=bus,
        channels=channels,
        subagents=agent_loop.subagents,
        host=config.gateway.host,
        port=config.gateway.port,
    )

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown_event.set)

    await cron.start()
    await heartbeat.start()
    await channels.start_all()
    await health.start()
    agent_task = asyncio.create_task(agent_loop.run())
    typer.echo("Gateway running (Ctrl+C to stop)")

    try:
        await shutdown_event.wait()
    finally:
        typer.echo("\nShutting down...")
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)

        agent_loop.stop()
        await cron.stop()
        await heartbeat.stop()
        await health.stop()
        await channels.stop_all()
        await bus.stop()
        await asyncio.gather(agent_task, return_exceptions=True)
        await provider.aclose()
        typer.echo("Goodbye!")


@app.command()
def status():
    """Show configuration and status."""
    config = load_config()

    typer.echo("\n=== tidebot status ===")
    typer.echo(f"Workspace: {config.workspace}")
    typer.echo(f"Model: {config.agent.model}")
    typer.echo(f"Provider: {config.provider.api_base}")
    typer.echo(f"API key: {'set' if config.provider.api_key else 'not set'}")
    typer.echo(f"Health endpoint: http://{config.gateway.host}:{config.gateway.port}/health")

    typer.echo("\nChannels:")
    for name, channel_config in config.channels.model_dump().items():
        state = "enabled" if channel_config.get("enabled", False) else "disabled"
        typer.echo(f"  {name}: {state}")

    cron = CronService(MessageBus(), store_path=CRON_STORE_PATH)
    typer.echo(f"\nScheduled jobs: {len(cron.list_jobs())}")
    typer.echo("")


@app.command()
def heartbeat():
    """
    Run a single heartbeat tick.

    This checks HEARTBEAT.md and has the agent process any tasks.
    """
    config = load_config()
    asyncio.run(_heartbeat_tick(config))


async def _heartbeat_tick(config: Config) -> None:
    bus = MessageBus(capacity=config.bus.capacity).start()
    provider = _make_provider(config)
    agent_loop = AgentLoop.from_config(config, bus, provider)
    service = HeartbeatService(agent_loop, interval_s=1)

    try:
        response = await service.tick()
    finally:
        await provider.aclose()
        await bus.stop()

    if response is None:
        typer.echo("HEARTBEAT.md has no actionable content")
    else:
        typer.echo(response)


# -- pairing -------------------------------------------------------------------


@pairing_app.command("list")
def pairing_list():
    """List pending pairing requests."""
    pending = PairingStore().list_pending()
    if not pending:
        typer.echo("No pending pairing requests")
        return
    for p in pending:
        typer.echo(f"{p.channel}\t{p.code}\tsender={p.sender_id}\tchat={p.chat_id}\trequests={p.request_count}")


@pairing_app.command("approve")
def pairing_approve(
    channel: str = typer.Argument(..., help="Channel name, e.g. telegram"),
    code: str = typer.Argument(..., help="Pairing code"),
):
    """Approve a pairing code and add the sender to the channel allow-list."""
    try:
        approved = PairingStore().approve(channel, code)
    except (KeyError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Approved {approved.sender_id} on {channel}")


@pairing_app.command("reject")
def pairing_reject(
    channel: str = typer.Argument(..., help="Channel name, e.g. telegram"),
    code: str = typer.Argument(..., help="Pairing code"),
):
    """Reject a pending pairing code."""
    if not PairingStore().reject(channel, code):
        typer.echo(f"No pending pairing {code} on {channel}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Rejected {code} on {channel}")


# -- cron ----------------------------------------------------------------------


@cron_app.command("list")
def cron_list(
    all_jobs: bool = typer.Option(False, "-a", "--all", help="Include disabled jobs"),
):
    """List scheduled jobs."""
    cron = CronService(MessageBus(), store_path=CRON_STORE_PATH)
    jobs = cron.list_jobs(include_disabled=all_jobs)
    if not jobs:
        typer.echo("No scheduled jobs")
        return
    for job in jobs:
        next_run = job.next_run_at.isoformat(timespec="seconds") if job.next_run_at else "-"
        typer.echo(
            f"{job.id}\t{job.schedule_type}={job.schedule_value}\tnext={next_run}\t"
            f"{job.channel}:{job.chat_id}\t{job.name}"
        )


@cron_app.command("remove")
def cron_remove(job_id: str = typer.Argument(..., help="Job id")):
    """Remove a scheduled job."""
    cron = CronService(MessageBus(), store_path=CRON_STORE_PATH)
    if not asyncio.run(cron.remove_job(job_id)):
        typer.echo(f"Job {job_id} not found", err=True)
        raise typer.Exit(1)
    typer.echo(f"Removed job {job_id}")


def main() -> None:
    """Entry point for CLI."""
    app()

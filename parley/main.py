"""Console entry point."""

import asyncio

import typer
from rich.console import Console

from parley.agent import create_agent
from parley.cancellation import CancellationToken
from parley.config import Config, set_config
from parley.logging import configure_logging, log

app = typer.Typer(help="Parley - chat with a remote model that can act on your machine")
console = Console()

EXIT_COMMANDS = {"exit", "quit", "/exit", "/quit"}


async def _repl(config: Config) -> None:
    agent = create_agent(config)
    await agent.initialize()
    console.print(f"[dim]session {agent.session_id} in {agent.working_dir}[/dim]")
    try:
        while True:
            try:
                utterance = await asyncio.to_thread(console.input, "[bold cyan]> [/bold cyan]")
            except EOFError:
                break
            if utterance.strip().lower() in EXIT_COMMANDS:
                break
            async for event in agent.run_turn(utterance, CancellationToken()):
                if event.type == "error":
                    console.print(f"[red]Error:[/red] {event.value}")
                elif event.type == "progress":
                    console.print(event.value, style="dim", end="")
                else:
                    console.print(event.value, end="", markup=False, highlight=False)
            console.print()
    finally:
        await agent.close()
        log.info("Session closed", session_id=agent.session_id)


@app.command()
def run(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    base_url: str = typer.Option("", "--base-url", help="Override service base URL"),
    implicit_writes: bool = typer.Option(
        False, "--implicit-writes", help="Write code blocks from replies to files"
    ),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Start an interactive session."""
    cfg = Config.load(config or None)
    updates: dict = {}
    if base_url:
        updates["transport"] = cfg.transport.model_copy(update={"base_url": base_url})
    if implicit_writes:
        updates["agent"] = cfg.agent.model_copy(update={"implicit_file_writes": True})
    if verbose:
        updates["logging"] = cfg.logging.model_copy(update={"level": "DEBUG"})
    if updates:
        cfg = cfg.model_copy(update=updates)
    set_config(cfg)
    configure_logging(cfg)
    try:
        asyncio.run(_repl(cfg))
    except KeyboardInterrupt:
        log.info("Shutting down...")
        raise typer.Exit(0)


@app.command()
def version() -> None:
    """Show version information."""
    from parley import __version__
    console.print(f"Parley v{__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()

"""Click CLI: wires config, credentials, the request layer and one conversation session."""

import asyncio
import logging
import signal
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from config.config_loader import AppConfig, load_config
from src.attachments import build_attached_context, parse_topic_file
from src.credentials import CredentialRotator
from src.errors import ConfigurationError
from src.healthcheck import run_key_checks
from src.output import print_event, print_result_footer, save_to_file
from src.personas import BUILTIN_PERSONAS, SYNTHESIZER_ID, PersonaRegistry
from src.providers.openai_compat import OpenAICompatibleClient
from src.requester import ResilientRequester
from src.session import ConversationSession, SessionStore, session_factory

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_CLI_CALLER_ID = "cli"


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _parse_personas(personas_arg: str) -> list[str]:
    """'analytical, creative,analytical' -> ['analytical', 'creative', 'analytical']."""
    return [p.strip() for p in personas_arg.split(",") if p.strip()]


def _effective_options(cli: dict, meta: dict) -> dict:
    """Per-run options. Precedence: CLI flag > topic-file frontmatter > config default (None)."""
    merged: dict = {}
    for key in ("iterations", "personas", "model", "language", "temperature", "max_tokens"):
        if cli.get(key) is not None:
            merged[key] = cli[key]
        elif key in meta:
            merged[key] = meta[key]
        else:
            merged[key] = None
    return merged


def _apply_options(session: ConversationSession, options: dict) -> None:
    """Apply run options through the session's validating setters."""
    if options["model"] is not None:
        session.set_model(str(options["model"]))
    if options["language"] is not None:
        session.set_language(str(options["language"]))
    if options["iterations"] is not None:
        session.set_iteration_count(int(options["iterations"]))
    if options["temperature"] is not None:
        session.set_temperature(float(options["temperature"]))
    if options["max_tokens"] is not None:
        session.set_max_tokens(int(options["max_tokens"]))
    if options["personas"] is not None:
        personas = options["personas"]
        ids = _parse_personas(personas) if isinstance(personas, str) else [str(p) for p in personas]
        session.settings.enabled_persona_order.clear()
        for persona_id in ids:
            session.enable_persona(persona_id)


def _build_store(config: AppConfig, rotator: CredentialRotator, client: OpenAICompatibleClient) -> SessionStore:
    registry = PersonaRegistry(max_custom=config.defaults.max_custom_personas)
    requester = ResilientRequester(
        client=client,
        rotator=rotator,
        registry=registry,
        models=config.models,
        fallback_model=config.fallback_model,
        retry=config.retry,
        prompts=config.prompts,
    )
    return SessionStore(session_factory(config, requester, registry, lambda _caller: print_event))


def _print_personas() -> None:
    table = Table(title="Built-in personas")
    table.add_column("id", style="bold")
    table.add_column("name")
    table.add_column("system prompt", overflow="fold")
    for persona in BUILTIN_PERSONAS.values():
        label = persona.id + (" (synthesis only)" if persona.id == SYNTHESIZER_ID else "")
        table.add_row(label, persona.name, persona.system_prompt)
    console.print(table)


def _check_and_filter_keys(
    client: OpenAICompatibleClient,
    rotator: CredentialRotator,
    model: str,
    fallback_model: str | None = None,
) -> None:
    """Ping every key, print results, and drop failing keys after confirmation.

    Exits if no key works or the user declines to continue.
    """
    console.print("\n[bold]Checking API keys...[/bold]")
    results = asyncio.run(run_key_checks(client, rotator.keys(), model, fallback_model))

    failed: set[int] = set()
    for index in sorted(results):
        ok, err = results[index]
        if ok:
            console.print(f"  [green]OK  [/green] key #{index + 1}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] key #{index + 1}: {short_err}")
            failed.add(index)

    if not failed:
        console.print()
        return

    if len(failed) == len(results):
        console.print("\n[bold red]Error:[/bold red] No API key passed the health check.")
        sys.exit(1)

    if not click.confirm(f"{len(failed)} key(s) failed. Continue with the working keys only?", default=True):
        sys.exit(0)

    rotator.remove(failed)
    console.print()


async def _run_discussion(session: ConversationSession, topic: str, attached_context: str | None):
    """Run one discussion; Ctrl+C requests a cooperative stop instead of killing the loop."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, session.stop)
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers unavailable; Ctrl+C will abort immediately")
    try:
        return await session.start_collaboration(topic, attached_context)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


@click.command()
@click.argument("topic", required=False)
@click.option("--file", "topic_file", type=click.Path(exists=True, dir_okay=False),
              help="Read the topic from a .md file (frontmatter may set iterations, personas, language, model)")
@click.option("--attach", "attachments", multiple=True, type=click.Path(exists=True, dir_okay=False),
              help="Text file to prepend to the first iteration's prompts (repeatable)")
@click.option("--iterations", default=None, type=int, help="Number of iterations (default: from config)")
@click.option("--personas", default=None, help="Comma-separated persona ids in speaking order; repeats allowed")
@click.option("--model", default=None, help="Model name from the config's models table")
@click.option("--language", default=None, help="Language every persona must answer in")
@click.option("--temperature", default=None, type=float, help="Sampling temperature (0-2)")
@click.option("--max-tokens", "max_tokens", default=None, type=int, help="Default response token budget")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--list-personas", is_flag=True, default=False, help="Show the built-in personas and exit")
@click.option("--skip-key-check", is_flag=True, default=False, help="Skip the API key check at startup")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def main(
    topic: str | None,
    topic_file: str | None,
    attachments: tuple[str, ...],
    iterations: int | None,
    personas: str | None,
    model: str | None,
    language: str | None,
    temperature: float | None,
    max_tokens: int | None,
    output_path: str | None,
    list_personas: bool,
    skip_key_check: bool,
    verbose: bool,
) -> None:
    """Neural Council -- multi-persona discussion with voting and a final report.

    \b
    Examples:
      python -m src.cli "Pros and cons of remote work"
      python -m src.cli "Four-day work week?" --iterations 3 --personas analytical,ethics,contrarian
      python -m src.cli "City transport plan" --language Russian --attach notes.txt
      python -m src.cli --file topic.md
      python -m src.cli --list-personas
    """
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    if list_personas:
        _print_personas()
        return

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except FileNotFoundError as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    meta: dict = {}
    slug: str | None = None
    if topic_file:
        topic_text, meta = parse_topic_file(Path(topic_file))
        slug = Path(topic_file).stem
    elif topic:
        topic_text = topic
    else:
        console.print("[bold red]Error:[/bold red] Provide a TOPIC argument or --file.")
        sys.exit(1)

    if not config.api_keys:
        console.print(
            "[bold red]Error:[/bold red] No API keys available. "
            f"Set one of {', '.join(config.provider.api_key_envs)} in .env."
        )
        sys.exit(1)

    rotator = CredentialRotator(config.api_keys)
    client = OpenAICompatibleClient(config.provider)
    store = _build_store(config, rotator, client)
    session = store.get(_CLI_CALLER_ID)

    options = _effective_options(
        {
            "iterations": iterations,
            "personas": personas,
            "model": model,
            "language": language,
            "temperature": temperature,
            "max_tokens": max_tokens,
        },
        meta,
    )
    try:
        _apply_options(session, options)
    except (ConfigurationError, ValueError) as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)

    if not skip_key_check:
        model_id = config.models.get(session.settings.model, session.settings.model)
        _check_and_filter_keys(client, rotator, model_id, config.fallback_model)

    attached_context = build_attached_context([Path(p) for p in attachments]) if attachments else None

    console.print(
        f"\n[bold cyan]Neural Council[/bold cyan]: {len(session.settings.enabled_persona_order)} personas, "
        f"{session.settings.iteration_count} iterations, model {session.settings.model}, "
        f"{len(rotator)} key(s)"
    )

    result = asyncio.run(_run_discussion(session, topic_text, attached_context))
    if result is None:
        sys.exit(1)

    print_result_footer(result)
    output_dir = Path(output_path) if output_path else config.defaults.output_dir
    saved_path = save_to_file(result, output_dir, slug_override=slug)
    console.print(f"\n[dim]Saved to: {saved_path}[/dim]")
    if result.status == "failed":
        sys.exit(1)


if __name__ == "__main__":
    main()

"""CLI commands for relaybot."""

import asyncio
import sys
from typing import Any

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from relaybot import __brand__, __logo__, __version__

app = typer.Typer(
    name="relaybot",
    help=f"{__logo__} {__brand__} - LLM chat relay for Telegram, WhatsApp and Messenger",
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
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


def _load() -> Any:
    from relaybot.config.loader import load_config

    return load_config()


def _store(config: Any) -> Any:
    from relaybot.store.json_store import JsonFileStore

    return JsonFileStore(config.data_path)


def _owner(config: Any, owner: str | None) -> str:
    return owner or config.gateway.owner_id


def _short(text: str, limit: int = 60) -> str:
    text = " ".join((text or "").split())
    return text if len(text) <= limit else text[: limit - 3] + "..."


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} {__brand__} v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(None, "--version", "-v", callback=version_callback, is_eager=True),
):
    """relaybot - LLM chat relay."""
    pass


@app.command("version")
def version_command():
    """Show relaybot version."""
    console.print(f"{__logo__} {__brand__} v{__version__}")


# ============================================================================
# Onboard / Setup
# ============================================================================


@app.command()
def onboard():
    """Create (or refresh) the configuration file and data directory."""
    from relaybot.config.loader import get_config_path, load_config, save_config
    from relaybot.config.schema import Config
    from relaybot.utils.helpers import ensure_dir

    config_path = get_config_path()
    if config_path.exists():
        config = load_config(config_path)
        save_config(config, config_path)
        console.print(f"[green]✓[/green] Refreshed config at {config_path} (existing values preserved)")
    else:
        config = Config()
        save_config(config, config_path)
        console.print(f"[green]✓[/green] Created config at {config_path}")

    ensure_dir(config.data_path)
    console.print(f"[green]✓[/green] Record store at {config.data_path}")

    console.print(f"\n{__logo__} {__brand__} is ready!")
    console.print("\nNext steps:")
    console.print("  1. Add an API key: [cyan]relaybot keys add <key>[/cyan]")
    console.print("  2. Try it:         [cyan]relaybot chat -m \"Hello!\"[/cyan]")
    console.print("  3. Connect a bot:  [cyan]relaybot integrations add telegram --bot-token ...[/cyan]")


# ============================================================================
# Gateway / Chat
# ============================================================================


@app.command()
def gateway(
    host: str = typer.Option(None, "--host", help="Bind host (default from config)"),
    port: int = typer.Option(None, "--port", "-p", help="Gateway port (default from config)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Start the webhook and playground gateway."""
    from relaybot.gateway.runtime import Runtime

    _configure_logging(verbose)
    config = _load()
    if host:
        config.gateway.host = host
    if port is not None:
        config.gateway.port = port

    runtime = Runtime.from_config(config)
    owner_id = config.gateway.owner_id
    key_count = sum(
        1 for cred in runtime.key_pool.list_credentials(owner_id) if cred.status == "active"
    )
    if key_count == 0:
        console.print(
            f"[yellow]No active API keys for owner '{owner_id}'. "
            "Add one with `relaybot keys add`.[/yellow]"
        )
    else:
        console.print(f"[green]✓[/green] API keys: {key_count} active")

    active = [i for i in runtime.integrations.list_integrations() if i.status == "active"]
    if active:
        console.print(
            f"[green]✓[/green] Integrations: {', '.join(f'{i.platform}:{i.id}' for i in active)}"
        )
    else:
        console.print("[yellow]No active integrations; only the playground API is served.[/yellow]")

    server = runtime.gateway_server()

    async def run():
        start_error = ""
        try:
            await server.start()
            console.print(
                f"{__logo__} {__brand__} gateway on http://{server.host}:{server.bound_port}"
            )
            await asyncio.Event().wait()
        except OSError as e:
            start_error = str(e)
        finally:
            await server.stop()
            if start_error:
                console.print(f"[red]Gateway startup failed:[/red] {start_error}")
                raise typer.Exit(1)

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\nShutting down...")


@app.command()
def chat(
    message: str = typer.Option(None, "--message", "-m", help="Message to send"),
    chat_id: str = typer.Option("cli", "--chat-id", "-c", help="Conversation id"),
    owner: str = typer.Option(None, "--owner", help="Owner id (default from config)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Chat with the bot from the terminal (playground conversation)."""
    from relaybot.agent.errors import RelayError
    from relaybot.gateway.runtime import Runtime

    _configure_logging(verbose)
    config = _load()
    runtime = Runtime.from_config(config)
    owner_id = _owner(config, owner)

    async def ask(text: str) -> None:
        runtime.context.save_playground_message(chat_id, "user", text, owner_id)
        try:
            result = await runtime.engine.complete(owner_id, chat_id, text)
        except RelayError as e:
            _cli_fail(str(e), "Check `relaybot keys list` and `relaybot logs`.")
        runtime.context.save_playground_message(chat_id, "assistant", result.reply_text, owner_id)
        console.print(f"\n{__logo__} {result.reply_text}")
        console.print(f"[dim]key: {result.credential_id_used}[/dim]")

    if message:
        asyncio.run(ask(message))
        return

    console.print(f"{__logo__} Interactive mode (type [bold]exit[/bold] or Ctrl+C to quit)\n")
    while True:
        try:
            text = typer.prompt("You", prompt_suffix=": ").strip()
        except (KeyboardInterrupt, EOFError, typer.Abort):
            console.print("\nGoodbye!")
            break
        if not text:
            continue
        if text.lower() in {"exit", "quit", "/exit", "/quit"}:
            console.print("Goodbye!")
            break
        asyncio.run(ask(text))


@app.command()
def logs(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of entries"),
    owner: str = typer.Option(None, "--owner", help="Owner id (default from config)"),
):
    """Show recent completions from the audit log."""
    from relaybot.agent.memory import ContextStore

    config = _load()
    entries = ContextStore(_store(config)).list_audit(_owner(config, owner), limit=limit)
    if not entries:
        console.print("No log entries.")
        return

    table = Table(title="Recent Completions")
    table.add_column("Time", style="cyan")
    table.add_column("Key")
    table.add_column("Chat")
    table.add_column("Prompt")
    table.add_column("Response")
    for entry in entries:
        table.add_row(
            entry.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            entry.credential_id_used,
            str(entry.request_payload.get("chat_key", "")),
            _short(str(entry.request_payload.get("prompt", "")), 40),
            _short(entry.response_payload, 50),
        )
    console.print(table)


# ============================================================================
# API keys
# ============================================================================


keys_app = typer.Typer(help="Manage provider API keys")
app.add_typer(keys_app, name="keys")


@keys_app.callback(invoke_without_command=True)
def keys_main(ctx: typer.Context):
    """Manage provider API keys."""
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(0)


def _key_pool(config: Any) -> Any:
    from relaybot.agent.keys import KeyPoolManager

    return KeyPoolManager(_store(config))


@keys_app.command("add")
def keys_add(
    secret: str = typer.Argument(..., help="Provider API key"),
    owner: str = typer.Option(None, "--owner", help="Owner id (default from config)"),
):
    """Add an API key to the rotation pool."""
    config = _load()
    try:
        credential = _key_pool(config).add(_owner(config, owner), secret)
    except ValueError as e:
        _cli_fail(str(e))
    console.print(f"[green]✓[/green] Added key {credential.id} ({credential.masked})")


@keys_app.command("list")
def keys_list(
    owner: str = typer.Option(None, "--owner", help="Owner id (default from config)"),
):
    """List API keys in rotation order data."""
    config = _load()
    credentials = _key_pool(config).list_credentials(_owner(config, owner))
    if not credentials:
        console.print("No API keys. Add one with `relaybot keys add <key>`.")
        return

    table = Table(title="API Keys")
    table.add_column("ID", style="cyan")
    table.add_column("Key")
    table.add_column("Status")
    table.add_column("Last Used")
    styles = {"active": "green", "exhausted": "yellow", "revoked": "red"}
    for cred in credentials:
        style = styles.get(cred.status, "white")
        last_used = cred.last_used_at.strftime("%Y-%m-%d %H:%M:%S") if cred.last_used_at else "never"
        table.add_row(cred.id, cred.masked, f"[{style}]{cred.status}[/{style}]", last_used)
    console.print(table)


def _set_key_status(credential_id: str, status: str) -> None:
    config = _load()
    try:
        _key_pool(config).set_status(credential_id, status)
    except KeyError:
        _cli_fail(f"Key {credential_id} not found.", "Run `relaybot keys list` to find valid IDs.")
    console.print(f"[green]✓[/green] Key {credential_id} is now {status}")


@keys_app.command("revoke")
def keys_revoke(credential_id: str = typer.Argument(..., help="Key ID")):
    """Take a key out of rotation."""
    _set_key_status(credential_id, "revoked")


@keys_app.command("activate")
def keys_activate(credential_id: str = typer.Argument(..., help="Key ID")):
    """Put a key back into rotation."""
    _set_key_status(credential_id, "active")


@keys_app.command("remove")
def keys_remove(credential_id: str = typer.Argument(..., help="Key ID")):
    """Delete a key."""
    config = _load()
    if _key_pool(config).remove(credential_id):
        console.print(f"[green]✓[/green] Removed key {credential_id}")
    else:
        _cli_fail(f"Key {credential_id} not found.", "Run `relaybot keys list` to find valid IDs.")


# ============================================================================
# Personas
# ============================================================================


persona_app = typer.Typer(help="Manage personas (system prompts)")
app.add_typer(persona_app, name="persona")


@persona_app.callback(invoke_without_command=True)
def persona_main(ctx: typer.Context):
    """Manage personas (system prompts)."""
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(0)


def _personas(config: Any) -> Any:
    from relaybot.agent.personas import PersonaResolver

    return PersonaResolver(_store(config), config.persona.default_system_prompt)


@persona_app.command("add")
def persona_add(
    name: str = typer.Option(..., "--name", "-n", help="Persona name"),
    prompt: str = typer.Option(..., "--prompt", "-p", help="System prompt"),
    activate: bool = typer.Option(False, "--activate", "-a", help="Make it the active persona"),
    owner: str = typer.Option(None, "--owner", help="Owner id (default from config)"),
):
    """Create a persona."""
    config = _load()
    persona = _personas(config).create(_owner(config, owner), name, prompt, activate=activate)
    suffix = " (active)" if persona.is_active else ""
    console.print(f"[green]✓[/green] Added persona '{persona.name}' ({persona.id}){suffix}")


@persona_app.command("list")
def persona_list(
    owner: str = typer.Option(None, "--owner", help="Owner id (default from config)"),
):
    """List personas."""
    config = _load()
    personas = _personas(config).list_personas(_owner(config, owner))
    if not personas:
        console.print("No personas. The default system prompt is used.")
        return

    table = Table(title="Personas")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Active")
    table.add_column("System Prompt")
    for persona in personas:
        table.add_row(
            persona.id,
            persona.name,
            "[green]✓[/green]" if persona.is_active else "",
            _short(persona.system_prompt),
        )
    console.print(table)


@persona_app.command("activate")
def persona_activate(
    persona_id: str = typer.Argument(..., help="Persona ID"),
    owner: str = typer.Option(None, "--owner", help="Owner id (default from config)"),
):
    """Make a persona the active one."""
    config = _load()
    try:
        persona = _personas(config).activate(_owner(config, owner), persona_id)
    except KeyError:
        _cli_fail(f"Persona {persona_id} not found.", "Run `relaybot persona list` to find valid IDs.")
    console.print(f"[green]✓[/green] Activated persona '{persona.name}'")


@persona_app.command("remove")
def persona_remove(persona_id: str = typer.Argument(..., help="Persona ID")):
    """Delete a persona."""
    config = _load()
    if _personas(config).delete(persona_id):
        console.print(f"[green]✓[/green] Removed persona {persona_id}")
    else:
        _cli_fail(f"Persona {persona_id} not found.", "Run `relaybot persona list` to find valid IDs.")


# ============================================================================
# Platform integrations
# ============================================================================


integrations_app = typer.Typer(help="Manage platform integrations")
app.add_typer(integrations_app, name="integrations")


@integrations_app.callback(invoke_without_command=True)
def integrations_main(ctx: typer.Context):
    """Manage platform integrations."""
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(0)


def _integrations(config: Any) -> Any:
    from relaybot.channels.integrations import IntegrationManager

    return IntegrationManager(_store(config))


@integrations_app.command("add")
def integrations_add(
    platform: str = typer.Argument(..., help="telegram|whatsapp|messenger"),
    name: str = typer.Option("", "--name", "-n", help="Display name"),
    bot_token: str = typer.Option("", "--bot-token", help="Telegram bot token"),
    access_token: str = typer.Option("", "--access-token", help="WhatsApp/Messenger access token"),
    phone_number_id: str = typer.Option("", "--phone-number-id", help="WhatsApp phone number id"),
    page_id: str = typer.Option("", "--page-id", help="Messenger page id"),
    app_secret: str = typer.Option(
        "", "--app-secret", help="Meta app secret, or Telegram webhook secret token"
    ),
    verify_token: str = typer.Option("", "--verify-token", help="Webhook verify token (Meta)"),
    typing_min: int = typer.Option(500, "--typing-min", help="Minimum typing delay (ms)"),
    typing_max: int = typer.Option(2000, "--typing-max", help="Maximum typing delay (ms)"),
    user_agent: str = typer.Option("", "--user-agent", help="Pinned User-Agent header"),
    webhook_base: str = typer.Option(
        "", "--webhook-base", help="Public gateway URL; registers the Telegram webhook"
    ),
    owner: str = typer.Option(None, "--owner", help="Owner id (default from config)"),
):
    """Connect a bot on a chat platform."""
    from relaybot.agent.errors import UnknownPlatformError

    config = _load()
    try:
        integration = _integrations(config).add(
            platform.strip().lower(),
            _owner(config, owner),
            name=name,
            bot_token=bot_token,
            access_token=access_token,
            phone_number_id=phone_number_id,
            page_id=page_id,
            app_secret=app_secret,
            verify_token=verify_token,
            typing_delay_min=typing_min,
            typing_delay_max=typing_max,
            user_agent=user_agent,
        )
    except UnknownPlatformError as e:
        _cli_fail(str(e), "Use one of: telegram, whatsapp, messenger")
    except ValueError as e:
        _cli_fail(str(e))

    path = f"/api/webhooks/{integration.platform}/{integration.id}"
    console.print(f"[green]✓[/green] Added {integration.platform} integration {integration.id}")
    console.print(f"  Webhook path: [cyan]{path}[/cyan]")

    if webhook_base and integration.platform == "telegram":
        import httpx

        from relaybot.channels.telegram import TelegramAdapter

        url = webhook_base.rstrip("/") + path
        try:
            result = asyncio.run(
                TelegramAdapter().set_webhook(
                    integration.bot_token, url, secret_token=integration.app_secret or None
                )
            )
        except httpx.HTTPError as e:
            _cli_fail(f"Telegram setWebhook failed: {e}", "Check the bot token and network access.")
        if result.get("ok"):
            console.print(f"[green]✓[/green] Telegram webhook set to {url}")
        else:
            _cli_fail(f"Telegram setWebhook failed: {result.get('description', result)}")


@integrations_app.command("list")
def integrations_list(
    owner: str = typer.Option(None, "--owner", help="Owner id (default from config)"),
):
    """List platform integrations."""
    config = _load()
    integrations = _integrations(config).list_integrations(owner_id=_owner(config, owner))
    if not integrations:
        console.print("No integrations.")
        return

    table = Table(title="Integrations")
    table.add_column("ID", style="cyan")
    table.add_column("Platform")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Typing Delay")
    table.add_column("Signed")
    styles = {"active": "green", "inactive": "dim", "error": "red"}
    for item in integrations:
        style = styles.get(item.status, "white")
        table.add_row(
            item.id,
            item.platform,
            item.name or "-",
            f"[{style}]{item.status}[/{style}]",
            f"{item.typing_delay_min}-{item.typing_delay_max} ms",
            "✓" if item.app_secret else "✗",
        )
    console.print(table)


@integrations_app.command("toggle")
def integrations_toggle(integration_id: str = typer.Argument(..., help="Integration ID")):
    """Switch an integration between active and inactive."""
    config = _load()
    try:
        integration = _integrations(config).toggle(integration_id)
    except KeyError:
        _cli_fail(
            f"Integration {integration_id} not found.",
            "Run `relaybot integrations list` to find valid IDs.",
        )
    console.print(f"[green]✓[/green] Integration {integration_id} is now {integration.status}")


@integrations_app.command("remove")
def integrations_remove(integration_id: str = typer.Argument(..., help="Integration ID")):
    """Delete an integration."""
    config = _load()
    if _integrations(config).remove(integration_id):
        console.print(f"[green]✓[/green] Removed integration {integration_id}")
    else:
        _cli_fail(
            f"Integration {integration_id} not found.",
            "Run `relaybot integrations list` to find valid IDs.",
        )


# ============================================================================
# Memory
# ============================================================================


memory_app = typer.Typer(help="Manage conversation memory")
app.add_typer(memory_app, name="memory")


@memory_app.callback(invoke_without_command=True)
def memory_main(ctx: typer.Context):
    """Manage conversation memory."""
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(0)


@memory_app.command("clear")
def memory_clear(
    chat_key: str = typer.Argument(..., help="Chat key, e.g. telegram-12345 or a playground chat id"),
    owner: str = typer.Option(None, "--owner", help="Owner id (default from config)"),
):
    """Forget a conversation's history."""
    from relaybot.agent.memory import ContextStore

    config = _load()
    if ContextStore(_store(config)).clear_memory(_owner(config, owner), chat_key):
        console.print(f"[green]✓[/green] Cleared memory for {chat_key}")
    else:
        console.print(f"No memory stored for {chat_key}.")

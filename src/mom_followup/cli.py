"""CLI entry point for the MOM follow-up generator."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import typer
import uvicorn

from .config import ConfigError, DispatcherConfig, GatewayConfig
from .dispatcher import RequestDispatcher
from .errors import GenerationError
from .models import Provider
from .prompts import (
    DEFAULT_PROMPTS,
    MeetingDetails,
    compose_user_query,
    select_system_prompt,
    whatsapp_link,
)
from .server import create_app
from .stores import (
    ContactStore,
    HistoryStore,
    InMemoryStore,
    KeyValueStore,
    PromptStore,
    Settings,
    SettingsStore,
    SnippetStore,
    create_store,
)

app = typer.Typer(help="Turn meeting notes into WhatsApp follow-ups.")
snippets_app = typer.Typer(help="Manage reusable service snippets.")
contacts_app = typer.Typer(help="Manage saved contacts.")
history_app = typer.Typer(help="Browse and prune meeting logs.")
prompts_app = typer.Typer(help="Customise system prompts.")
app.add_typer(snippets_app, name="snippets")
app.add_typer(contacts_app, name="contacts")
app.add_typer(history_app, name="history")
app.add_typer(prompts_app, name="prompts")

T = TypeVar("T")


def _load_gateway_config() -> GatewayConfig:
    try:
        return GatewayConfig.from_env()
    except ConfigError as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc


def _load_dispatcher_config() -> DispatcherConfig:
    try:
        return DispatcherConfig.from_env()
    except ConfigError as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc


def _fail(exc: GenerationError) -> None:
    typer.secho(f"Error: {exc.message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1) from exc


async def _close_store(store) -> None:
    if hasattr(store, "aclose"):
        await store.aclose()


def _load_store_config() -> DispatcherConfig:
    config = _load_dispatcher_config()
    if config.store_url is None:
        typer.secho(
            "Configuration error: MOM_STORE_URL is required to manage saved data",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=2)
    return config


def _with_store(config: DispatcherConfig, operation: Callable[[KeyValueStore], Awaitable[T]]) -> T:
    async def _runner() -> T:
        store = create_store(config.store_url, config.store_prefix)
        try:
            return await operation(store)
        finally:
            await _close_store(store)

    return asyncio.run(_runner())


def _check_message_type(message_type: str) -> None:
    if message_type not in DEFAULT_PROMPTS:
        typer.secho(f"Error: unknown message type {message_type!r}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)


def _not_found(message: str) -> None:
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


@app.command()
def serve() -> None:
    """Run the provider gateway HTTP server."""
    config = _load_gateway_config()
    uvicorn.run(
        create_app(config=config),
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )


@app.command()
def generate(
    notes_file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    recipient: str = typer.Option(..., "--recipient", help="Recipient's name"),
    phone: str = typer.Option(..., "--phone", help="Recipient's WhatsApp number"),
    message_type: str = typer.Option("mom", "--type", help="mom or sales"),
    company: str = typer.Option("", "--company"),
    address: str = typer.Option("", "--address"),
    location: str = typer.Option("", "--location"),
    participants: str = typer.Option("", "--participants"),
    provider: Optional[str] = typer.Option(None, "--provider"),
    model: Optional[str] = typer.Option(None, "--model"),
    api_key: Optional[str] = typer.Option(None, "--api-key", envvar="MOM_API_KEY"),
) -> None:
    """Generate a follow-up message from a notes file."""
    config = _load_dispatcher_config()
    _check_message_type(message_type)
    raw_notes = notes_file.read_text(encoding="utf-8").strip()
    if not raw_notes:
        typer.secho("Error: notes file is empty", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    async def _runner():
        store = create_store(config.store_url, config.store_prefix)
        try:
            return await _generate(store)
        finally:
            await _close_store(store)

    async def _generate(store):
        settings = await SettingsStore(store).get()
        overrides = {
            key: value
            for key, value in {"provider": provider, "model": model, "api_key": api_key}.items()
            if value
        }
        # Flags apply to this run only and are never written back.
        active = SettingsStore(InMemoryStore())
        await active.set(replace(settings, **overrides))

        snippet = await SnippetStore(store).resolve(raw_notes)
        meeting = MeetingDetails(
            recipient_name=recipient,
            raw_notes=raw_notes,
            company_name=company,
            company_address=address,
            meeting_location=location,
            participants=participants,
        )
        query = compose_user_query(meeting, snippet.content if snippet else None)
        system_prompt = select_system_prompt(message_type, await PromptStore(store).get(message_type))

        dispatcher = RequestDispatcher(config=config, settings=active)
        try:
            result = await dispatcher.generate(query, system_prompt)
        finally:
            await dispatcher.aclose()

        await ContactStore(store).save(recipient, phone)
        await HistoryStore(store).add(
            {
                "recipientName": recipient,
                "recipientPhone": phone,
                "companyName": company,
                "companyAddress": address,
                "meetingLocation": location,
                "participants": participants,
                "messageType": message_type,
                "rawNotes": raw_notes,
                "generatedMessage": result.whatsapp_message,
                "actionItems": result.action_items,
            }
        )
        return result

    try:
        result = asyncio.run(_runner())
    except GenerationError as exc:
        _fail(exc)

    typer.echo(result.whatsapp_message)
    typer.echo("")
    typer.secho("Your action items:", bold=True)
    if result.action_items:
        for item in result.action_items:
            typer.echo(f"- {item}")
    else:
        typer.echo("No action items for you.")
    typer.echo("")
    typer.echo(whatsapp_link(phone, result.whatsapp_message))


@app.command()
def models(
    provider: str = typer.Argument(..., help="gemini or openrouter"),
    api_key: Optional[str] = typer.Option(None, "--api-key", envvar="MOM_API_KEY"),
) -> None:
    """List models available for a provider through the gateway."""
    config = _load_dispatcher_config()

    async def _runner():
        dispatcher = RequestDispatcher(config=config, settings=SettingsStore(InMemoryStore()))
        try:
            return await dispatcher.list_models(provider, api_key)
        finally:
            await dispatcher.aclose()

    try:
        found = asyncio.run(_runner())
    except GenerationError as exc:
        _fail(exc)

    typer.echo(f"{len(found)} available")
    for model in found:
        typer.echo(f"{model.id}\t{model.display_name}")


@app.command()
def configure(
    provider: str = typer.Option(..., "--provider", help="gemini or openrouter"),
    model: str = typer.Option(..., "--model"),
    api_key: str = typer.Option("", "--api-key", envvar="MOM_API_KEY"),
) -> None:
    """Save the active provider, model and API key to the settings store."""
    config = _load_store_config()
    if provider not in {item.value for item in Provider}:
        typer.secho(f"Error: Unsupported provider: {provider}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)

    settings = Settings(provider=provider, model=model, api_key=api_key)
    _with_store(config, lambda store: SettingsStore(store).set(settings))
    typer.secho(f"Settings saved: provider={provider} model={model}", fg=typer.colors.GREEN)


@snippets_app.command("list")
def snippets_list() -> None:
    """Show saved snippets with the index used by ``delete``."""
    found = _with_store(_load_store_config(), lambda store: SnippetStore(store).all())
    if not found:
        typer.echo("No snippets saved.")
        return
    for index, snippet in enumerate(found):
        typer.echo(f"{index}\t{snippet.name}\t{snippet.content}")


@snippets_app.command("add")
def snippets_add(
    name: str = typer.Argument(..., help="Name used in [USE_SNIPPET: name]"),
    content: str = typer.Argument(..., help="Snippet text"),
) -> None:
    """Save a reusable snippet."""
    added = _with_store(_load_store_config(), lambda store: SnippetStore(store).add(name, content))
    if not added:
        typer.secho("Error: snippet name and content are required", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    typer.secho(f"Snippet saved: {name.strip()}", fg=typer.colors.GREEN)


@snippets_app.command("delete")
def snippets_delete(index: int = typer.Argument(..., help="Index shown by 'snippets list'")) -> None:
    """Delete a snippet by index."""
    if not _with_store(_load_store_config(), lambda store: SnippetStore(store).delete(index)):
        _not_found(f"no snippet at index {index}")
    typer.echo(f"Snippet {index} deleted")


@contacts_app.command("list")
def contacts_list() -> None:
    """Show saved contacts."""
    found = _with_store(_load_store_config(), lambda store: ContactStore(store).all())
    if not found:
        typer.echo("No contacts saved.")
        return
    for name, phone in sorted(found.items()):
        typer.echo(f"{name}\t{phone}")


@contacts_app.command("delete")
def contacts_delete(name: str = typer.Argument(...)) -> None:
    """Delete a saved contact."""
    if not _with_store(_load_store_config(), lambda store: ContactStore(store).delete(name)):
        _not_found(f"no contact named {name!r}")
    typer.echo(f"Contact {name} deleted")


@history_app.command("list")
def history_list() -> None:
    """Show meeting logs, most recent first."""
    found = _with_store(_load_store_config(), lambda store: HistoryStore(store).all())
    if not found:
        typer.echo("No meeting logs found.")
        return
    for record in found:
        company = record.get("companyName") or "No Company"
        typer.echo(f"{record.get('id')}\t{record.get('timestamp')}\t{record.get('recipientName')}\t{company}")


@history_app.command("show")
def history_show(meeting_id: str = typer.Argument(..., help="Id shown by 'history list'")) -> None:
    """Print one meeting log with the message that was generated."""
    record = _with_store(_load_store_config(), lambda store: HistoryStore(store).get(meeting_id))
    if record is None:
        _not_found(f"no meeting log with id {meeting_id}")
    typer.secho(record.get("recipientName", ""), bold=True)
    typer.echo(record.get("companyName") or "No Company")
    typer.echo(record.get("timestamp", ""))
    typer.echo("")
    typer.echo("Message Sent:")
    typer.echo(record.get("generatedMessage", ""))
    items = record.get("actionItems") or []
    if items:
        typer.echo("")
        typer.echo("Action items:")
        for item in items:
            typer.echo(f"- {item}")


@history_app.command("delete")
def history_delete(meeting_id: str = typer.Argument(...)) -> None:
    """Delete one meeting log."""
    if not _with_store(_load_store_config(), lambda store: HistoryStore(store).delete(meeting_id)):
        _not_found(f"no meeting log with id {meeting_id}")
    typer.echo(f"Meeting log {meeting_id} deleted")


@history_app.command("clear")
def history_clear() -> None:
    """Delete all meeting logs."""
    _with_store(_load_store_config(), lambda store: HistoryStore(store).clear())
    typer.echo("Meeting history cleared")


@prompts_app.command("show")
def prompts_show(message_type: str = typer.Argument(..., help="mom or sales")) -> None:
    """Print the system prompt in effect for a message type."""
    _check_message_type(message_type)
    custom = _with_store(_load_store_config(), lambda store: PromptStore(store).get(message_type))
    typer.echo(select_system_prompt(message_type, custom))


@prompts_app.command("set")
def prompts_set(
    message_type: str = typer.Argument(..., help="mom or sales"),
    prompt_file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
) -> None:
    """Replace the system prompt for a message type with a file's contents."""
    _check_message_type(message_type)
    prompt = prompt_file.read_text(encoding="utf-8").strip()
    if not prompt:
        typer.secho("Error: prompt file is empty", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    _with_store(_load_store_config(), lambda store: PromptStore(store).set(message_type, prompt))
    typer.secho(f"Custom {message_type} prompt saved", fg=typer.colors.GREEN)


@prompts_app.command("reset")
def prompts_reset(message_type: str = typer.Argument(..., help="mom or sales")) -> None:
    """Go back to the default system prompt for a message type."""
    _check_message_type(message_type)
    _with_store(_load_store_config(), lambda store: PromptStore(store).reset(message_type))
    typer.echo(f"{message_type} prompt reset to default")


@app.command()
def healthcheck() -> None:
    """Check that the gateway is reachable."""
    config = _load_dispatcher_config()

    async def _runner() -> bool:
        dispatcher = RequestDispatcher(config=config, settings=SettingsStore(InMemoryStore()))
        try:
            return await dispatcher.healthcheck()
        finally:
            await dispatcher.aclose()

    healthy = asyncio.run(_runner())
    if not healthy:
        typer.secho("Gateway is unhealthy", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.secho("Gateway is healthy", fg=typer.colors.GREEN)


def main() -> None:
    """Entry point for console script."""
    app()


if __name__ == "__main__":
    main()

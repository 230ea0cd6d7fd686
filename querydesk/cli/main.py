"""QueryDesk CLI.

Usage:
    querydesk serve                              Start the API server
    querydesk ask "top 5 customers" -p abcxyz    Ask a question in-process
    querydesk credentials set-password abcxyz    Store a project password
    querydesk config show                        Show resolved configuration
"""

import asyncio
import logging
import os
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape

from querydesk.cli.output import render_event
from querydesk.config import QueryDeskConfig, load_config, reset_config
from querydesk.errors import QueryDeskError
from querydesk.services.credential_store import CredentialStore, create_credential_store

_log = logging.getLogger(__name__)

app = typer.Typer(
    name="querydesk",
    help="Ask questions about your Postgres data in plain language",
    no_args_is_help=True,
)
credentials_app = typer.Typer(help="Manage stored credentials")
config_app = typer.Typer(help="Configuration management")

app.add_typer(credentials_app, name="credentials")
app.add_typer(config_app, name="config")

console = Console()

# --- Global state ---
_config_path: str | None = None


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to querydesk.yaml config file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """QueryDesk CLI."""
    global _config_path
    _config_path = config
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)


def _load() -> QueryDeskConfig:
    try:
        cfg = load_config(config_path=_config_path)
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    reset_config(cfg)
    return cfg


def _store(cfg: QueryDeskConfig) -> CredentialStore:
    return create_credential_store(cfg.credentials)


# --- Server ---


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
):
    """Start the QueryDesk API server."""
    import uvicorn

    cfg = _load()
    final_host = host or cfg.server.host
    final_port = port or cfg.server.port

    # Propagate config path so the API loads the same config as the CLI.
    if _config_path:
        os.environ["QUERYDESK_CONFIG_PATH"] = str(_config_path)

    console.print(f"[bold]Starting QueryDesk API on {final_host}:{final_port}[/bold]")
    uvicorn.run(
        "querydesk.api.main:app",
        host=final_host,
        port=final_port,
        workers=1,
        log_level=cfg.server.log_level,
        lifespan="on",
    )


# --- Ask ---


@app.command()
def ask(
    question: str = typer.Argument(..., help="Question about your data"),
    project: str = typer.Option(..., "--project", "-p", help="Supabase project reference"),
    access_token: Optional[str] = typer.Option(
        None, "--access-token", envvar="SUPABASE_ACCESS_TOKEN",
        help="Supabase access token",
    ),
    api_key: Optional[str] = typer.Option(
        None, "--api-key", envvar="ANTHROPIC_API_KEY",
        help="Anthropic API key (defaults to the stored key)",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print events as JSON"),
):
    """Ask one question and stream the answer to the terminal."""
    from querydesk.orchestrator.loop import OrchestrationLoop
    from querydesk.services.management_client import ManagementClient

    cfg = _load()
    store = _store(cfg)
    key = api_key or store.get_api_key()
    if not key:
        console.print("[red]No API key. Pass --api-key or run 'querydesk credentials set-api-key'.[/red]")
        raise typer.Exit(1)

    loop = OrchestrationLoop(cfg, store, ManagementClient(cfg.management))
    payload = {
        "messages": [{"role": "user", "content": question}],
        "apiKey": key,
        "projectRef": project,
    }

    async def _run() -> bool:
        ctx = await loop.prepare(payload, access_token)
        ok = True
        async for event in loop.run(ctx):
            render_event(event, as_json=as_json)
            if event.type == "error":
                ok = False
        return ok

    try:
        ok = asyncio.run(_run())
    except QueryDeskError as e:
        console.print(f"[red]Error ({e.code}):[/red] {escape(e.message)}")
        if e.remediation:
            console.print(f"[dim]{e.remediation}[/dim]")
        raise typer.Exit(1)
    if not ok:
        raise typer.Exit(1)


# --- Credentials ---


@credentials_app.command("set-api-key")
def credentials_set_api_key(
    key: str = typer.Option(..., prompt=True, hide_input=True, help="Anthropic API key"),
):
    """Store the Anthropic API key."""
    from querydesk.api.schemas import API_KEY_PREFIX

    key = key.strip()
    if not key.startswith(API_KEY_PREFIX):
        console.print(f"[red]The API key must start with '{API_KEY_PREFIX}'[/red]")
        raise typer.Exit(1)
    _store(_load()).set_api_key(key)
    console.print("[green]API key stored.[/green]")


@credentials_app.command("set-password")
def credentials_set_password(
    project: str = typer.Argument(..., help="Supabase project reference"),
    password: str = typer.Option(..., prompt=True, hide_input=True, help="Database password"),
):
    """Store the database password for a project."""
    if not password:
        console.print("[red]Password must not be empty.[/red]")
        raise typer.Exit(1)
    _store(_load()).set_password(project, password)
    console.print(f"[green]Password stored for {project}.[/green]")


@credentials_app.command("has-password")
def credentials_has_password(
    project: str = typer.Argument(..., help="Supabase project reference"),
):
    """Check whether a password is stored for a project (exit 1 when not)."""
    if _store(_load()).has_password(project):
        console.print(f"[green]A password is stored for {project}.[/green]")
    else:
        console.print(f"[yellow]No password stored for {project}.[/yellow]")
        raise typer.Exit(1)


@credentials_app.command("list")
def credentials_list():
    """List projects with a stored password."""
    store = _store(_load())
    console.print(f"API key: {'[green]set[/green]' if store.has_api_key() else '[yellow]not set[/yellow]'}")
    refs = store.instance_refs()
    if not refs:
        console.print("No project passwords stored.")
        return
    for ref in refs:
        console.print(f"  {ref}")


@credentials_app.command("reset")
def credentials_reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Forget the API key and every stored password."""
    if not yes and not typer.confirm("Remove all stored credentials?"):
        raise typer.Exit(1)
    _store(_load()).reset()
    console.print("[green]Credentials cleared.[/green]")


# --- Config ---


@config_app.command("show")
def config_show():
    """Display resolved configuration (secrets masked)."""
    cfg = _load()

    console.print("[bold]Server:[/bold]")
    console.print(f"  host: {cfg.server.host}")
    console.print(f"  port: {cfg.server.port}")
    console.print(f"  log_level: {cfg.server.log_level}")
    console.print(f"  session_cookie: {cfg.server.session_cookie}")

    console.print("\n[bold]Agent:[/bold]")
    console.print(f"  model: {cfg.agent.model}")
    console.print(f"  max_steps: {cfg.agent.max_steps}")
    console.print(f"  max_tokens: {cfg.agent.max_tokens}")
    console.print(f"  temperature: {cfg.agent.temperature}")

    console.print("\n[bold]Gateway:[/bold]")
    console.print(f"  command: {cfg.gateway.command}")
    console.print(f"  package: {cfg.gateway.package}")
    console.print(f"  read_only_guard: {cfg.gateway.read_only_guard}")

    console.print("\n[bold]Pooler:[/bold]")
    console.print(f"  host: {cfg.pooler.region_host}.{cfg.pooler.domain}")

    console.print("\n[bold]Credentials:[/bold]")
    console.print(f"  backend: {cfg.credentials.backend}")
    console.print("  app_secret: ****")
    if cfg.credentials.file_path:
        console.print(f"  file_path: {cfg.credentials.file_path}")

    console.print("\n[bold]Management API:[/bold]")
    console.print(f"  base_url: {cfg.management.base_url}")


if __name__ == "__main__":
    app()

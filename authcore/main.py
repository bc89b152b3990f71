"""
Auth Core CLI Application.

Command-line interface for running the service and maintaining the user directory.
"""

import asyncio
import logging

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from authcore.auth.passwords import PasswordHasher
from authcore.auth.resolver import normalize_email
from authcore.auth.service import EMAIL_PATTERN, MIN_PASSWORD_LENGTH
from authcore.config import AuthSettings, get_config_path
from authcore.db import Role, UserDirectory, UserRecord, create_directory
from authcore.db.directory import generate_record_id
from authcore.db.migrations import BACKFILL_BATCH_LIMIT, normalize_stored_emails, summarize_hash_formats
from authcore.db.models import utcnow
from authcore.logging_utils import install_log_safety

# Initialize CLI app
app = typer.Typer(
    name="authcore",
    help="Auth Core - session tokens, password verification and recovery",
    add_completion=False,
)

# Sub-command groups
users_app = typer.Typer(help="User directory maintenance")
config_app = typer.Typer(help="Configuration commands")

app.add_typer(users_app, name="users")
app.add_typer(config_app, name="config")

console = Console()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
try:
    install_log_safety()
except Exception:
    # Logging should never prevent app startup.
    pass


def init() -> tuple[AuthSettings, UserDirectory]:
    """Load settings and prepare the directory."""
    settings = AuthSettings.from_env()
    directory = create_directory(settings)
    asyncio.run(directory.init())
    return settings, directory


# ==================== USER COMMANDS ====================


async def _create_admin(
    settings: AuthSettings, directory: UserDirectory, email: str, password: str, name: str
) -> tuple[UserRecord, bool]:
    password_hash = await PasswordHasher(settings).hash(password)
    existing = await directory.list({"email": email}, order_by="updated_at", limit=1)
    now = utcnow()
    if existing:
        user = existing[0]
        await directory.update(
            user.id,
            {"role": Role.ADMIN.value, "status": "approved", "password_hash": password_hash, "updated_at": now},
        )
        return user, False

    user = await directory.create(
        UserRecord(
            id=generate_record_id("user"),
            email=email,
            display_name=name or email.split("@")[0],
            role=Role.ADMIN,
            status="approved",
            password_hash=password_hash,
            created_at=now,
            updated_at=now,
        )
    )
    return user, True


@users_app.command("create-admin")
def users_create_admin(
    email: str = typer.Option(..., "--email", "-e", help="Admin email address"),
    password: str = typer.Option(
        ..., "--password", "-p", prompt=True, hide_input=True, confirmation_prompt=True
    ),
    name: str = typer.Option("", "--name", "-n", help="Display name"),
):
    """Create an admin account, or promote an existing one and reset its password."""
    email = normalize_email(email)
    if not EMAIL_PATTERN.match(email):
        console.print(f"[red]Invalid email: {email}[/red]")
        raise typer.Exit(1)
    if len(password) < MIN_PASSWORD_LENGTH:
        console.print(f"[red]Password must be at least {MIN_PASSWORD_LENGTH} characters long[/red]")
        raise typer.Exit(1)

    settings, directory = init()
    user, created = asyncio.run(_create_admin(settings, directory, email, password, name))
    if created:
        console.print(f"[green]Created admin {user.email} ({user.id})[/green]")
    else:
        console.print(f"[green]Promoted {user.email} ({user.id}) to admin and set a new password[/green]")


@users_app.command("normalize-emails")
def users_normalize_emails(
    dry_run: bool = typer.Option(False, "--dry-run", help="Report changes without writing"),
):
    """Rewrite stored emails to lower-case, trimmed form."""
    _, directory = init()
    report = asyncio.run(normalize_stored_emails(directory, dry_run=dry_run))

    verb = "Would update" if dry_run else "Updated"
    console.print(f"[bold]Scanned {report.scanned} users[/bold]")
    console.print(f"  {verb}: [green]{len(report.updated)}[/green]")

    if report.conflicts:
        table = Table(title="Email collisions (merge manually)")
        table.add_column("Normalized email", style="cyan")
        table.add_column("User ids")
        for normalized, ids in sorted(report.conflicts.items()):
            table.add_row(normalized, ", ".join(ids))
        console.print(table)
    if report.failed:
        console.print(f"  [red]Failed: {', '.join(report.failed)}[/red]")

    if report.clean and not dry_run:
        console.print("\n[dim]💡 All emails are normalized; LEGACY_EMAIL_FALLBACK=false is now safe[/dim]")


@users_app.command("audit-hashes")
def users_audit_hashes():
    """Count users per stored password-hash format."""
    _, directory = init()
    users = asyncio.run(directory.list(order_by="created_at", limit=BACKFILL_BATCH_LIMIT))
    counts = summarize_hash_formats(users)

    table = Table(title=f"Password hash formats ({len(users)} users)")
    table.add_column("Format", style="cyan")
    table.add_column("Users", justify="right")
    for scheme in ("pbkdf2", "bcrypt", "sha256", "none"):
        table.add_row(scheme, str(counts.get(scheme, 0)))
    console.print(table)

    legacy = counts.get("bcrypt", 0) + counts.get("sha256", 0)
    if legacy:
        console.print(f"\n[yellow]{legacy} user(s) still on legacy formats[/yellow]")


# ==================== CONFIG COMMANDS ====================


@config_app.command("show")
def config_show():
    """Show the effective configuration (secrets masked)."""
    settings = AuthSettings.from_env()

    console.print(Panel("[bold]Auth Core Configuration[/bold]", border_style="blue"))
    console.print(f"  Config file: [green]{get_config_path()}[/green]")
    console.print("  Env vars:    .env\n")

    table = Table(show_header=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in settings.describe().items():
        if value == "MISSING":
            value = "[red]MISSING[/red]"
        table.add_row(key, str(value))
    console.print(table)


# ==================== WEB SERVER ====================


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Host to bind to"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Start the authentication endpoint."""
    settings = AuthSettings.from_env()
    if not settings.is_configured:
        console.print("[red]JWT_SECRET is not configured. Refusing to start.[/red]")
        raise typer.Exit(1)

    console.print(
        Panel(
            f"[bold]🔐 Auth Core[/bold]\n\n"
            f"Listening on: [cyan]http://{host}:{port}/[/cyan]\n"
            f"Directory:    {settings.directory_backend}\n\n"
            f"Press Ctrl+C to stop the server",
            title="Web Server",
            border_style="green",
        )
    )

    from authcore.web.server import run_server

    run_server(host=host, port=port, reload=reload)


# ==================== MAIN ====================


@app.callback()
def main():
    """
    Auth Core

    Stateless session tokens, multi-format password verification and
    enumeration-safe password recovery.

    QUICK START:

    1. Set JWT_SECRET in .env
    2. Start the endpoint: authcore serve
    3. Bootstrap an admin: authcore users create-admin --email you@example.com
    """
    pass


if __name__ == "__main__":
    app()

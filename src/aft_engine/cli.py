"""Typer CLI for AFT-Engine."""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(name="aft", help="AFT-Engine: Assured File Transfer request lifecycle")
console = Console()


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind host"),
    port: int = typer.Option(8080, help="Bind port"),
):
    """Start the AFT-Engine API server."""
    import uvicorn
    from aft_engine.app import create_app

    console.print(f"[bold green]Starting AFT-Engine on {host}:{port}[/bold green]")
    uvicorn.run(create_app(), host=host, port=port)


@app.command("init-db")
def init_db():
    """Create all tables in the configured database."""
    from aft_engine.deps import get_db

    async def _run():
        db = get_db()
        await db.init()
        try:
            await db.create_all()
        finally:
            await db.close()

    asyncio.run(_run())
    console.print("[bold green]Database initialized[/bold green]")


@app.command()
def transitions():
    """Print the request transition table."""
    from aft_engine.workflow.authorization import roles_for
    from aft_engine.workflow.transitions import TRANSITIONS

    table = Table(title="AFT request transitions")
    table.add_column("Action", style="bold")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Roles")
    table.add_column("Condition")
    for t in TRANSITIONS.values():
        table.add_row(
            t.action.value,
            ", ".join(sorted(s.value for s in t.sources)),
            t.target.value,
            ", ".join(r.value for r in roles_for(t.action)),
            t.condition,
        )
    console.print(table)


@app.command("create-user")
def create_user(
    email: str = typer.Argument(..., help="User email"),
    first_name: str = typer.Option(..., help="First name"),
    last_name: str = typer.Option(..., help="Last name"),
    role: str = typer.Option("requestor", help="Primary role"),
    extra_role: list[str] = typer.Option([], help="Additional role (repeatable)"),
    organization: str = typer.Option("", help="Organization"),
):
    """Create a user directly in the database."""
    from aft_engine.common.exceptions import AFTError
    from aft_engine.deps import get_db, get_user_service

    async def _run():
        db = get_db()
        await db.init()
        try:
            await db.create_all()
            async with db.get_session() as session:
                return await get_user_service().create_user(
                    session, email=email, first_name=first_name, last_name=last_name,
                    primary_role=role, additional_roles=extra_role,
                    organization=organization,
                )
        finally:
            await db.close()

    try:
        user = asyncio.run(_run())
    except AFTError as e:
        console.print(f"[bold red]{e.code}[/bold red] — {e.message}")
        raise typer.Exit(1)
    console.print(f"[bold]{user.id}[/bold] {user.email} ({user.primary_role})")


@app.command("verify-audit")
def verify_audit(
    request_id: str = typer.Argument(..., help="AFT request id"),
):
    """Verify a request's audit hash chain."""
    from aft_engine.deps import get_audit_service, get_db

    async def _run():
        db = get_db()
        await db.init()
        try:
            async with db.get_session() as session:
                return await get_audit_service().verify_chain(session, request_id)
        finally:
            await db.close()

    result = asyncio.run(_run())
    if result["valid"]:
        console.print(
            f"[bold green]VALID[/bold green] — {result['entries_checked']} entries checked"
        )
    else:
        console.print(
            f"[bold red]BROKEN[/bold red] at entry {result['break_at']} "
            f"after {result['entries_checked']} valid entries"
        )
        raise typer.Exit(1)


@app.command()
def health(
    url: str = typer.Option("http://localhost:8080", help="Server URL"),
):
    """Check AFT-Engine server health."""
    import httpx

    try:
        resp = httpx.get(f"{url}/health", timeout=5)
        data = resp.json()
        console.print(f"[bold green]{data['status']}[/bold green] — v{data['version']}")
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()

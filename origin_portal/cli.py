"""CLI for the certificate portal.

Operator commands: schema creation, admin accounts and manual payment
reconciliation.
"""

import asyncio
from datetime import timedelta
from typing import Any, Awaitable, Callable, TypeVar

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy.ext.asyncio import AsyncSession

from origin_portal.core.applications import ApplicationStore
from origin_portal.core.payments import PaymentReconciliation
from origin_portal.database.connection import close_db, get_session_factory, init_db
from origin_portal.monitoring.logging import bind_command_context, setup_logging

T = TypeVar("T")

app = typer.Typer(
    name="origin-portal",
    help="State of Origin certificate portal - operator commands",
    add_completion=False,
)

console = Console()


def run_with_session(operation: Callable[[AsyncSession], Awaitable[T]]) -> T:
    """Run ``operation`` with a fresh session and dispose of the engine afterwards."""

    async def _run() -> T:
        try:
            async with get_session_factory()() as db:
                return await operation(db)
        finally:
            await close_db()

    return asyncio.run(_run())


@app.callback()
def main(ctx: typer.Context) -> None:
    setup_logging()
    if ctx.invoked_subcommand:
        bind_command_context(ctx.invoked_subcommand)


@app.command("init-db")
def init_db_command() -> None:
    """Create database tables."""

    async def _run() -> None:
        try:
            await init_db()
        finally:
            await close_db()

    asyncio.run(_run())
    console.print("[green]Database tables created.[/green]")


@app.command("create-admin")
def create_admin(
    email: str = typer.Option(..., "--email", "-e", help="Admin e-mail address"),
    first_name: str = typer.Option("Portal", "--first-name", help="First name"),
    last_name: str = typer.Option("Admin", "--last-name", help="Last name"),
    password: str = typer.Option(
        ...,
        "--password",
        prompt=True,
        hide_input=True,
        confirmation_prompt=True,
        help="Admin password",
    ),
) -> None:
    """Create an administrator account."""
    store = ApplicationStore()
    result = run_with_session(
        lambda db: store.create_admin(db, email, password, first_name, last_name)
    )

    if not result.ok:
        console.print(f"[red]Error:[/red] {result.error.message}")
        raise typer.Exit(1)

    console.print(f"[green]Admin created:[/green] {result.value.email} ({result.value.id})")


@app.command("verify-payment")
def verify_payment(
    reference: str = typer.Argument(..., help="Payment reference (SOO-...)"),
) -> None:
    """Verify one payment with the gateway and reconcile its application."""

    async def _verify(db: AsyncSession) -> Any:
        payments = PaymentReconciliation()
        try:
            return await payments.verify(db, reference)
        finally:
            await payments.gateway.close()

    result = run_with_session(_verify)

    if result.ok:
        console.print(f"[green]Payment {reference} verified:[/green] {result.value.status}")
        return

    console.print(f"[red]{result.error.code.value}:[/red] {result.error.message}")
    raise typer.Exit(1)


@app.command("reconcile-pending")
def reconcile_pending(
    older_than_minutes: int = typer.Option(
        30,
        "--older-than-minutes",
        "-m",
        min=0,
        help="Only verify PENDING transactions older than this",
    ),
) -> None:
    """Verify every stale PENDING transaction against the gateway."""

    async def _reconcile(db: AsyncSession) -> Any:
        payments = PaymentReconciliation()
        try:
            return await payments.reconcile_pending(db, timedelta(minutes=older_than_minutes))
        finally:
            await payments.gateway.close()

    counts = run_with_session(_reconcile)

    table = Table(title="Pending payment reconciliation")
    table.add_column("Outcome", style="cyan")
    table.add_column("Transactions", justify="right")
    for outcome in ("checked", "success", "failed", "error"):
        table.add_row(outcome, str(counts[outcome]))
    console.print(table)

    if counts["error"]:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()

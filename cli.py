# File: cli.py (operator commands)

import asyncio
from datetime import timedelta
from typing import Optional
from uuid import UUID

import typer

from auth.jwt_handler import create_access_token
from config import settings
from crud.auth_crud import create_user, get_user_by_id
from database import async_session
from exceptions import SeatShareError
from models import UserRole
from services.container import build_services

app = typer.Typer(name="seatshare", help="SeatShare operator commands")

@app.command("create-user")
def create_user_command(
    role: UserRole = typer.Option(..., help="passenger or driver"),
    name: Optional[str] = typer.Option(None, help="Full name shown to other users"),
    email: Optional[str] = typer.Option(None, help="Email used for route-match notifications"),
):
    """Register the local projection of an identity-provider user"""

    async def run_create_user():
        async with async_session() as session, session.begin():
            return await create_user(session, role=role, full_name=name, email=email)

    try:
        user = asyncio.run(run_create_user())
    except SeatShareError as e:
        typer.echo(f"❌ Error creating user: {e.detail}", err=True)
        raise typer.Exit(1)

    typer.echo("✅ User created")
    typer.echo(f"🆔 ID: {user.id}")
    typer.echo(f"🔑 Role: {user.role.value}")
    if user.email:
        typer.echo(f"📧 Email: {user.email}")

@app.command("issue-token")
def issue_token(
    user_id: UUID = typer.Argument(..., help="User id to mint a token for"),
    minutes: int = typer.Option(settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES, help="Token lifetime in minutes"),
):
    """Mint a development bearer token"""
    if settings.is_production:
        typer.echo("❌ Tokens are issued by the identity provider in production.", err=True)
        raise typer.Exit(1)

    async def run_lookup():
        async with async_session() as session:
            return await get_user_by_id(session, user_id)

    if asyncio.run(run_lookup()) is None:
        typer.echo(f"❌ No user with id {user_id}", err=True)
        raise typer.Exit(1)

    typer.echo(create_access_token(user_id, expires_delta=timedelta(minutes=minutes)))

@app.command("rematch")
def rematch(
    trip_id: UUID = typer.Argument(..., help="Trip to announce again"),
):
    """Re-run route matching and notifications for an existing trip"""

    async def run_rematch():
        services = build_services(settings, async_session)
        trip = await services.trips.get_trip(trip_id)
        return await services.publisher.announce(trip)

    try:
        report = asyncio.run(run_rematch())
    except SeatShareError as e:
        typer.echo(f"❌ {e.detail}", err=True)
        raise typer.Exit(1)

    typer.echo(f"📬 Trip {report.trip_id}")
    typer.echo(f"   matched: {report.matched}  skipped: {report.skipped}")
    typer.echo(f"   attempted: {report.attempted}  delivered: {report.delivered}")
    for attempt in report.attempts:
        line = f"   - {attempt.passenger_email:35} {attempt.outcome.value}"
        if attempt.error_class:
            line += f" ({attempt.error_class})"
        typer.echo(line)

if __name__ == "__main__":
    app()

# Usage examples:
# python cli.py create-user --role driver --name "Ana Gómez" --email ana@example.com
# python cli.py issue-token 2b7c1f0e-5d0a-4c4e-9a55-0d6b7f3c2a11
# python cli.py rematch 7e1d9c44-31a2-4b8e-8f6d-5a0c2e9b7d13

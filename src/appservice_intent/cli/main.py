import asyncio
from pathlib import Path

import typer
from loguru import logger

from appservice_intent.core.logging import configure_logging
from appservice_intent.core.types import Membership
from appservice_intent.matrix.errors import MatrixRequestError
from appservice_intent.services.appservice import AppService
from appservice_intent.store.base import StateStoreError
from appservice_intent.store.flatfile import FlatFileStateStore

app = typer.Typer(help="Application service intent tooling")


@app.callback()
def main() -> None:
    configure_logging()


@app.command()
def show_state(
    path: Path = typer.Argument(..., help="Path to a flat-file state snapshot"),
) -> None:
    """
    Print a summary of a saved state store.
    """
    if not path.exists():
        typer.echo(f"No state file at {path}")
        raise typer.Exit(code=1)
    try:
        store = FlatFileStateStore(path)
    except StateStoreError as e:
        logger.error(f"Failed to load state: {e}")
        raise typer.Exit(code=1)

    snapshot = store.snapshot()
    typer.echo(f"Registered users: {len(snapshot.registrations)}")
    for room_id, members in sorted(snapshot.members.items()):
        joined = [uid for uid, m in members.items() if m.membership == Membership.JOIN]
        typer.echo(f"{room_id}: {len(joined)} joined / {len(members)} known")
    typer.echo(f"Rooms with cached power levels: {len(snapshot.power_levels)}")


@app.command()
def send_text(
    localpart: str = typer.Argument(..., help="Puppet localpart to send as"),
    room: str = typer.Argument(..., help="Room ID or alias"),
    text: str = typer.Argument(..., help="Message body"),
) -> None:
    """
    Send a text message as a puppet, registering and joining it if needed.
    """
    async def _run() -> str:
        appservice = AppService()
        try:
            resp = await appservice.intent(localpart).send_text(room, text)
            return resp.event_id
        finally:
            await appservice.stop()

    try:
        event_id = asyncio.run(_run())
    except MatrixRequestError as e:
        logger.error(f"Homeserver rejected request: {e}")
        raise typer.Exit(code=1)
    typer.echo(event_id)


if __name__ == "__main__":
    app()

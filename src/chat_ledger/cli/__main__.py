"""Command line interface for chat-ledger.

    python -m chat_ledger.cli messages --conversation 42
"""

import sys
from datetime import datetime

import click

from chat_ledger.config import load_config
from chat_ledger.logging import setup_logging
from chat_ledger.models import MessageRecord, RosterEntry
from chat_ledger.secrets import CredentialsMissingError, SecretStore
from chat_ledger.service import ChatLedger, login as login_bot
from chat_ledger.source.telegram import SourceError
from chat_ledger.store.github import StoreError
from chat_ledger.sync.dispatcher import DispatchError
from chat_ledger.sync.__main__ import main as run_daemon
from chat_ledger.sync.engine import SyncResult


def format_time(ts: datetime) -> str:
    return ts.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def print_message(record: MessageRecord) -> None:
    """Print one log record."""
    click.echo(
        f"\033[36m[{format_time(record.observed_at)}]\033[0m #{record.id} "
        f"\033[32m{record.sender_name}\033[0m ({record.direction.value}) "
        f"chat={record.conversation_id}"
    )
    click.echo(f"  {record.text}")


def print_entry(entry: RosterEntry) -> None:
    """Print one roster entry."""
    handle = f" @{entry.handle}" if entry.handle else ""
    click.echo(
        f"\033[1m{entry.display_name or entry.conversation_id}\033[0m{handle} "
        f"(chat={entry.conversation_id})"
    )
    click.echo(f"  Last: [{format_time(entry.last_message_at)}] {entry.last_message_text}")


def report(result: SyncResult) -> None:
    """Print persist failures and exit non-zero if any occurred."""
    if result.ok:
        return
    for error in result.errors:
        click.echo(f"Persist failed: {error}", err=True)
    sys.exit(1)


def open_ledger() -> ChatLedger:
    try:
        return ChatLedger.from_config(load_config())
    except CredentialsMissingError as e:
        click.echo(f"{e}; run 'chat-ledger login TOKEN' first", err=True)
        sys.exit(1)


@click.group()
def cli() -> None:
    """Sync a Telegram bot's chats with a GitHub-hosted log."""
    setup_logging("cli", console=False)


@cli.command()
@click.argument("token")
def login(token: str) -> None:
    """Validate and store a bot token."""
    config = load_config()
    try:
        me = login_bot(token, SecretStore(config.secrets_path), config.source)
    except SourceError as e:
        click.echo(f"Login failed: {e}", err=True)
        sys.exit(1)
    click.echo(f"Logged in as @{me.get('username', 'unknown')}")


@cli.command()
def logout() -> None:
    """Forget the stored bot token."""
    SecretStore(load_config().secrets_path).clear()
    click.echo("Logged out")


@cli.command()
def poll() -> None:
    """Fetch and store new messages once."""
    with open_ledger() as ledger:
        try:
            result = ledger.sync_once()
        except (SourceError, StoreError) as e:
            click.echo(f"Poll failed: {e}", err=True)
            sys.exit(1)
    for record in result.appended:
        print_message(record)
    click.echo(f"{len(result.appended)} new messages, {len(result.messages)} total")
    report(result)


@cli.command()
def sync() -> None:
    """Poll continuously until interrupted."""
    run_daemon()


@cli.command()
@click.option("--conversation", "-c", type=int, help="Only show one conversation")
def messages(conversation: int | None) -> None:
    """List stored messages."""
    with open_ledger() as ledger:
        try:
            records = ledger.get_messages(conversation)
        except StoreError as e:
            click.echo(f"Error reading messages: {e}", err=True)
            sys.exit(1)
    for record in records:
        print_message(record)


@cli.command()
def roster() -> None:
    """List known conversations."""
    with open_ledger() as ledger:
        try:
            entries = ledger.get_roster()
        except StoreError as e:
            click.echo(f"Error reading roster: {e}", err=True)
            sys.exit(1)
    for entry in entries:
        print_entry(entry)


@cli.command()
@click.argument("target", type=int)
@click.argument("text")
def send(target: int, text: str) -> None:
    """Send TEXT to conversation TARGET."""
    with open_ledger() as ledger:
        try:
            result = ledger.append_outbound(target, text)
        except (DispatchError, ValueError) as e:
            click.echo(f"Send failed: {e}", err=True)
            sys.exit(1)
    for record in result.appended:
        print_message(record)
    report(result)


@cli.command()
@click.argument("message_id", type=int)
def delete(message_id: int) -> None:
    """Delete message MESSAGE_ID."""
    with open_ledger() as ledger:
        try:
            result = ledger.delete_message(message_id)
        except (LookupError, StoreError) as e:
            click.echo(f"Delete failed: {e}", err=True)
            sys.exit(1)
    report(result)
    click.echo(f"Deleted message #{message_id}")


@cli.command("add-contact")
@click.argument("ref")
def add_contact(ref: str) -> None:
    """Start a chat with @username or a numeric user id."""
    with open_ledger() as ledger:
        try:
            result = ledger.add_contact(ref)
        except SourceError as e:
            click.echo(f"Could not find {ref}: {e}", err=True)
            sys.exit(1)
    report(result)
    chat_id = result.appended[0].conversation_id
    for entry in result.roster:
        if entry.conversation_id == chat_id:
            print_entry(entry)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()

"""
CLI entry point for the authorization record service.
"""

import asyncio
import json
import sys

import click

from authz_records import __version__
from authz_records.application.authorization_service import AuthorizationService
from authz_records.core.database import db_manager
from authz_records.core.redis import RedisClient
from authz_records.exceptions import RecordServiceError
from authz_records.messaging.transport import RecordsClient
from authz_records.storage.sql import SqlRecordStore
from authz_records.worker import RecordWorker, configure_logging


@click.group()
@click.version_option(version=__version__)
@click.option("--log-level", default=None, help="Override AUTHZ_RECORDS_LOG_LEVEL")
def cli(log_level):
    """Authorization record service - stores (user, resource, role) grants behind a message bus."""
    configure_logging(log_level.upper() if log_level else None)


@cli.command()
def serve():
    """Consume get/find/set/del requests until interrupted."""
    worker = RecordWorker()
    try:
        asyncio.run(worker.run_forever())
    except KeyboardInterrupt:
        pass


@cli.command("init-db")
def init_db():
    """Create the authorizations table on the configured database."""

    async def _run():
        try:
            await SqlRecordStore().create_schema()
        finally:
            await db_manager.dispose()

    try:
        asyncio.run(_run())
        click.echo(click.style("✓ Schema ready", fg="green"))
    except RecordServiceError as e:
        click.echo(click.style(f"✗ Error: {e.message}", fg="red"), err=True)
        sys.exit(1)
    except Exception as e:
        click.echo(click.style(f"✗ Error: {e}", fg="red"), err=True)
        sys.exit(1)


@cli.command()
@click.option("--id", "record_id", required=True, type=click.IntRange(min=1), help="Record id to remove")
@click.confirmation_option(prompt="Permanently delete this authorization?")
def purge(record_id: int):
    """Hard-delete one record, live or soft-deleted. Not reachable over the bus."""

    async def _run():
        try:
            await AuthorizationService(SqlRecordStore()).purge(record_id)
        finally:
            await db_manager.dispose()

    try:
        asyncio.run(_run())
        click.echo(f"Purged authorization {record_id}")
    except RecordServiceError as e:
        click.echo(click.style(f"✗ Error: {e.message}", fg="red"), err=True)
        sys.exit(1)
    except Exception as e:
        click.echo(click.style(f"✗ Error: {e}", fg="red"), err=True)
        sys.exit(1)


@cli.command()
@click.argument("subject")
@click.argument("payload", default="{}")
@click.option("--timeout", default=None, type=float, help="Seconds to wait for the reply")
@click.option("--indent", default=2, type=int, help="JSON indentation level")
def request(subject: str, payload: str, timeout: float, indent: int):
    """Send one request (e.g. `find '{"resource_type": "doc"}'`) and print the reply."""

    async def _run():
        try:
            return await RecordsClient().request(subject, payload, timeout=timeout)
        finally:
            await RedisClient.close()

    try:
        reply = asyncio.run(_run())
    except RecordServiceError as e:
        click.echo(f"Error: {e.message}", err=True)
        if e.details:
            click.echo(json.dumps(e.details, indent=indent, default=str), err=True)
        sys.exit(1)
    click.echo(json.dumps(reply, indent=indent, ensure_ascii=False))


if __name__ == "__main__":
    cli()

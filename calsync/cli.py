#!/usr/bin/env python3
"""
calsync CLI - Command Line Interface for the sync queue
"""

import asyncio
import json
from datetime import timedelta

import click

from calsync.config.config_loader import load_config
from calsync.core.exceptions import SyncQueueError
from calsync.core.logging_manager import setup_logging
from calsync.core.models import QueueOperation, parse_payload
from calsync.core.sync_service import CalendarSyncService


def _run(ctx: click.Context, action):
    """Build the sync service, run one async action against it, then close it"""

    async def runner():
        service = CalendarSyncService(ctx.obj['config'])
        try:
            await service.initialize()
            return await action(service)
        finally:
            await service.close()

    try:
        return asyncio.run(runner())
    except SyncQueueError as e:
        click.echo(f"Error: {e}", err=True)
        raise click.Abort()


@click.group()
@click.option('--config', 'config_path', default=None, help='Path to calsync.yaml')
@click.pass_context
def cli(ctx: click.Context, config_path):
    """calsync - calendar sync queue"""
    config = load_config(config_path)
    setup_logging(config)
    ctx.obj = {'config': config}


@cli.command()
@click.option('--batch-size', type=int, default=None, help='Items to claim in this pass')
@click.option('--max-retries', type=int, default=None, help='Only claim items below this retry count')
@click.option('--recover/--no-recover', default=True, help='Recover stale processing claims first')
@click.pass_context
def process(ctx: click.Context, batch_size, max_retries, recover):
    """Run one queue processing pass"""

    async def action(service: CalendarSyncService):
        if recover:
            await service.processor.recover_stale()
        return await service.processor.process_queue(batch_size=batch_size, max_retries=max_retries)

    stats = _run(ctx, action)
    click.echo(
        f"Processed {stats.processed}: {stats.succeeded} succeeded, "
        f"{stats.retried} retried, {stats.failed} failed"
    )


@cli.command()
@click.option('--json', 'as_json', is_flag=True, help='Print as JSON')
@click.pass_context
def stats(ctx: click.Context, as_json):
    """Show queue counts per status"""

    async def action(service: CalendarSyncService):
        return await service.processor.get_queue_stats()

    queue_stats = _run(ctx, action)

    if as_json:
        click.echo(json.dumps(queue_stats.to_dict(), indent=2))
        return

    click.echo("Sync Queue Status:")
    click.echo("=" * 30)
    for status, count in queue_stats.counts_by_status.items():
        click.echo(f"{status:<12} {count}")
    if queue_stats.oldest_pending_age_ms is not None:
        click.echo(f"\nOldest pending item: {queue_stats.oldest_pending_age_ms / 1000:.0f}s old")


@cli.command()
@click.option('--older-than', type=int, default=None, help='Age in days (default: queue.purge_after_days)')
@click.option('--status', 'statuses', multiple=True, help='Terminal status to purge (repeatable)')
@click.pass_context
def purge(ctx: click.Context, older_than, statuses):
    """Delete old completed, failed or cancelled items"""

    async def action(service: CalendarSyncService):
        return await service.processor.purge_old(older_than_days=older_than, statuses=list(statuses) or None)

    result = _run(ctx, action)
    click.echo(f"Deleted {result['deleted_count']} queue item(s)")


@cli.command()
@click.argument('operation', type=click.Choice([op.value for op in QueueOperation]))
@click.option('--payload', default='{}', help='Payload as JSON')
@click.option('--integration-id', default=None)
@click.option('--event-id', default=None)
@click.option('--priority', type=int, default=None)
@click.option('--max-retries', type=int, default=None)
@click.pass_context
def enqueue(ctx: click.Context, operation, payload, integration_id, event_id, priority, max_retries):
    """Add an item to the sync queue"""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"Invalid JSON: {e}", param_hint='--payload')

    queue_operation = QueueOperation(operation)

    async def action(service: CalendarSyncService):
        typed = parse_payload(queue_operation, data)
        return await service.processor.enqueue(
            queue_operation,
            typed,
            integration_id=integration_id,
            event_id=event_id,
            priority=priority,
            max_retries=max_retries
        )

    item = _run(ctx, action)
    click.echo(f"Queued {item.operation} as {item.id}")


@cli.command()
@click.option('--minutes', type=int, default=None, help='Staleness threshold (default: queue.stale_after_minutes)')
@click.pass_context
def recover(ctx: click.Context, minutes):
    """Return items stuck in processing to pending"""
    async def action(service: CalendarSyncService):
        return await service.processor.recover_stale(timedelta(minutes=minutes) if minutes else None)

    recovered = _run(ctx, action)
    click.echo(f"Recovered {recovered} stale item(s)")


if __name__ == '__main__':
    cli()

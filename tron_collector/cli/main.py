"""Command-line interface for the TRON block collector."""

import asyncio
import json
import signal
import sys
from typing import Optional
import click
import structlog

from tron_collector.models.config import CollectorConfig
from tron_collector.core.collector import TronCollector
from tron_collector.core.trongrid_client import TronGridError
from tron_collector.utils.logging import setup_logging

logger = structlog.get_logger(__name__)


@click.group()
@click.option('--config-file', '-c', type=click.Path(exists=True),
              help='Path to configuration file')
@click.option('--log-level', '-l', default='INFO',
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']),
              help='Logging level')
@click.pass_context
def cli(ctx, config_file: Optional[str], log_level: str):
    """TRON Block Collector CLI."""
    ctx.ensure_object(dict)

    try:
        if config_file:
            config = CollectorConfig(_env_file=config_file)
        else:
            config = CollectorConfig()

        config.log_level = log_level
        setup_logging(config, service="tron-collector")

        ctx.obj['config'] = config

    except Exception as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        sys.exit(1)


async def _with_store(config: CollectorConfig, action):
    """Run ``action(collector)`` with the store probed, then close everything."""
    collector = TronCollector.build(config)
    try:
        await collector.prepare()
        return await action(collector)
    finally:
        await collector.stop()


@cli.command()
@click.option('--host', default=None, help='Bind host (default from TRON_API_HOST)')
@click.option('--port', type=int, default=None, help='Bind port (default from TRON_API_PORT)')
@click.option('--no-collector', is_flag=True, help='Serve stored blocks without running the collector')
@click.pass_context
def serve(ctx, host: Optional[str], port: Optional[int], no_collector: bool):
    """Run the HTTP/WebSocket API with the collector."""
    import uvicorn
    from tron_api.app.main import create_app
    from tron_api.config.settings import APISettings

    config = ctx.obj['config']
    settings = APISettings()
    if no_collector:
        settings.start_collector = False

    app = create_app(settings, TronCollector.build(config))

    click.echo(f"🚀 Serving on {host or settings.host}:{port or settings.port}")
    uvicorn.run(
        app,
        host=host or settings.host,
        port=port or settings.port,
        ws_ping_interval=settings.ws_ping_interval,
        log_config=None,
    )


@cli.command()
@click.pass_context
def collect(ctx):
    """Run the collector without the API until interrupted."""
    config = ctx.obj['config']

    if not config.alchemy_api_key:
        click.echo("❌ TRON_ALCHEMY_API_KEY is not set", err=True)
        sys.exit(1)

    async def run():
        collector = TronCollector.build(config)
        stop_event = asyncio.Event()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        await collector.start()
        click.echo("🔄 Collecting blocks. Press Ctrl+C to stop...")

        try:
            await stop_event.wait()
        finally:
            click.echo("\n🛑 Shutting down...")
            await collector.stop()

    asyncio.run(run())


@cli.command()
@click.option('--json-output', '-j', is_flag=True, help='Print raw JSON')
@click.pass_context
def status(ctx, json_output: bool):
    """Compare the store with the chain head."""
    config = ctx.obj['config']

    async def action(collector: TronCollector):
        stats = await collector.router.stats()
        try:
            head = await collector.client.get_chain_head()
        except TronGridError as e:
            logger.warning("Chain head unavailable", error=str(e))
            head = None
        return stats, head

    try:
        stats, head = asyncio.run(_with_store(config, action))
    except Exception as e:
        click.echo(f"❌ Status check failed: {e}", err=True)
        sys.exit(1)

    result = stats.to_dict()
    result['chain_head'] = head
    result['blocks_behind'] = head - stats.latest_height if head is not None and stats.latest_height else None

    if json_output:
        click.echo(json.dumps(result, indent=2))
        return

    click.echo(f"📊 Backend: {result['backend']}")
    click.echo(f"📊 Stored blocks: {result['total_blocks']}")
    click.echo(f"📊 Latest stored height: {result['latest_height']}")
    click.echo(f"📊 Chain head: {head if head is not None else 'unavailable'}")
    if result['blocks_behind'] is not None:
        click.echo(f"📊 Blocks behind: {result['blocks_behind']}")


@cli.command('scan-gaps')
@click.pass_context
def scan_gaps(ctx):
    """List internal gaps in the stored heights."""
    config = ctx.obj['config']

    try:
        gaps = asyncio.run(_with_store(config, lambda c: c.reconciler.scan()))
    except Exception as e:
        click.echo(f"❌ Gap scan failed: {e}", err=True)
        sys.exit(1)

    if not gaps:
        click.echo("✅ No gaps found")
        return

    click.echo(f"⚠️  {len(gaps)} gaps, {sum(g.count for g in gaps)} missing blocks:")
    for gap in gaps:
        click.echo(f"  {gap.start} - {gap.end} ({gap.count})")


@cli.command()
@click.argument('start', type=int)
@click.argument('end', type=int)
@click.pass_context
def backfill(ctx, start: int, end: int):
    """Fetch and store heights START..END, newest first."""
    config = ctx.obj['config']

    if start > end:
        click.echo("❌ START must not be greater than END", err=True)
        sys.exit(1)

    click.echo(f"🔄 Backfilling {start} - {end} ({end - start + 1} blocks)...")
    try:
        result = asyncio.run(_with_store(config, lambda c: c.engine.run_large(start, end)))
    except Exception as e:
        click.echo(f"❌ Backfill failed: {e}", err=True)
        sys.exit(1)

    click.echo(f"✅ Succeeded: {result.succeeded}, failed: {result.failed}")
    if result.failed:
        sys.exit(1)


@cli.command()
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def clear(ctx, yes: bool):
    """Delete every stored block."""
    config = ctx.obj['config']

    if not yes:
        click.confirm("Delete all stored blocks?", abort=True)

    try:
        asyncio.run(_with_store(config, lambda c: c.router.clear_all()))
    except Exception as e:
        click.echo(f"❌ Clear failed: {e}", err=True)
        sys.exit(1)

    click.echo("✅ All blocks cleared")


def main():
    cli(obj={})


if __name__ == '__main__':
    main()

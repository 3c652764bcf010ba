"""
InvEX CLI commands

This module provides command-line interface for InvEX operations.
"""

import asyncio
import json
import logging

import click

from invex.config.invex_config import InvexConfig
from invex.db.connection import Database
from invex.jobs.worker import Worker, WorkerConfig
from invex.logging_config import setup_logging
from invex.processors.invoice.cleanup import TempFileCleaner
from invex.services.invoice_service import InvoiceService
from invex.storage.filesystem_storage import TempStorage

logger = logging.getLogger(__name__)


@click.group()
@click.option('--config', 'config_path', type=click.Path(exists=True), help='Path to configuration file')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']), help='Logging level')
@click.pass_context
def cli(ctx, config_path, log_level):
    """InvEX command-line interface"""
    config = InvexConfig.from_file(config_path) if config_path else InvexConfig.default()
    setup_logging(config, level=log_level)
    ctx.obj = config


def _service(config: InvexConfig) -> InvoiceService:
    return InvoiceService(config)


@cli.command('init-db')
@click.pass_obj
def init_db(config):
    """Create the database tables"""
    try:
        db = Database(config)
        db.create_tables()
        click.echo(f"✅ Database initialized: {db.url}")
    except Exception as e:
        click.echo(f"❌ Error initializing database: {str(e)}", err=True)
        raise click.Abort()


@cli.command()
@click.argument('pdf', type=click.Path(exists=True, dir_okay=False))
@click.option('--user-id', type=int, required=True, help='Owner of the invoice')
@click.option('--name', 'original_filename', help='Original file name to record (default: file name)')
@click.option('--now', 'process_now', is_flag=True, help='Run the pipeline immediately instead of leaving it to the worker')
@click.pass_obj
def submit(config, pdf, user_id, original_filename, process_now):
    """Upload a PDF invoice"""
    try:
        service = _service(config)
        invoice_id = service.create_invoice(user_id, pdf, original_filename)
        click.echo(f"✅ Invoice created: {invoice_id} (pending)")

        if process_now:
            result = asyncio.run(service.process(invoice_id))
            _echo_result(result)
    except Exception as e:
        click.echo(f"❌ Error: {str(e)}", err=True)
        raise click.Abort()


@cli.command()
@click.argument('invoice_id', type=int)
@click.pass_obj
def process(config, invoice_id):
    """Run the pipeline for one invoice"""
    try:
        result = asyncio.run(_service(config).process(invoice_id))
        _echo_result(result)
    except Exception as e:
        click.echo(f"❌ Error: {str(e)}", err=True)
        raise click.Abort()


@cli.command()
@click.argument('invoice_id', type=int)
@click.option('--details', is_flag=True, help='Show extracted fields and line items')
@click.pass_obj
def status(config, invoice_id, details):
    """Show the status of an invoice"""
    try:
        service = _service(config)
        data = service.get_invoice(invoice_id) if details else service.get_status(invoice_id)
        click.echo(json.dumps(data, indent=2, default=str))
    except Exception as e:
        click.echo(f"❌ Error: {str(e)}", err=True)
        raise click.Abort()


@cli.command()
@click.option('--max-concurrent', type=int, help='Maximum invoices processed at once')
@click.option('--once', is_flag=True, help='Process pending invoices once and exit')
@click.pass_obj
def worker(config, max_concurrent, once):
    """Run the invoice worker"""
    worker_config = WorkerConfig.from_config(config)
    if max_concurrent:
        worker_config.max_concurrent = max_concurrent

    service = _service(config)
    pool = Worker(service.pipeline, worker_config)

    try:
        if once:
            results = asyncio.run(pool.run_once())
            for result in results:
                _echo_result(result)
            click.echo(f"📊 Total processed: {len(results)}")
        else:
            click.echo(f"🚀 Worker started (max concurrent: {worker_config.max_concurrent})")
            asyncio.run(pool.run())
    except Exception as e:
        click.echo(f"❌ Error: {str(e)}", err=True)
        logger.exception("Worker failed")
        raise click.Abort()


@cli.command()
@click.argument('invoice_id', type=int)
@click.pass_obj
def cleanup(config, invoice_id):
    """Delete temp files left behind by an invoice's runs"""
    storage = TempStorage(config.get('storage.temp_path', 'storage/temp'))
    deleted = TempFileCleaner(storage).cleanup(invoice_id)
    click.echo(f"✅ {deleted} files deleted")


def _echo_result(result):
    if result.success:
        click.echo(f"✅ Invoice {result.invoice_id} completed ({result.line_items} line items)")
    else:
        click.echo(
            f"❌ Invoice {result.invoice_id} {result.status.value} at {result.error_stage}: {result.error}",
            err=True
        )


if __name__ == '__main__':
    cli()

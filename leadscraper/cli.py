import json
import signal
import threading

import click

from leadscraper.db import get_engine, init_db
from leadscraper.errors import LeadScraperError
from leadscraper.fetcher import PageFetcher
from leadscraper.job_store import JobStore
from leadscraper.lead_store import LeadStore
from leadscraper.logging_config import configure_logging
from leadscraper.reconcile import reconcile_stale_jobs
from leadscraper.settings import settings
from leadscraper.status import StatusService
from leadscraper.transport import build_queue
from leadscraper.worker import ExtractionWorker


@click.group()
@click.option("--log-level", default=None, help="Overrides LOG_LEVEL")
def cli(log_level):
    """leadscraper - lead scrape job pipeline"""
    configure_logging(log_level or settings.LOG_LEVEL)


@cli.command("init-db")
def init_db_cmd():
    """Create the job, lead and queue tables"""
    init_db(get_engine())
    click.echo(f"Schema ready on {settings.DATABASE_URL}")


@cli.command()
@click.option("--once", is_flag=True, help="Handle one receive batch and exit")
@click.option("--max-messages", default=1, show_default=True, type=int)
def worker(once, max_messages):
    """Consume scrape jobs from the queue"""
    engine = get_engine()
    fetcher = PageFetcher(timeout=settings.FETCH_TIMEOUT_S, user_agent=settings.USER_AGENT)
    w = ExtractionWorker(
        JobStore(engine),
        build_queue(settings, engine),
        fetcher,
        LeadStore(engine, max_contacts=settings.MAX_CONTACTS_PER_LEAD),
        settings,
    )
    try:
        if once:
            handled = w.run_once(max_messages)
            click.echo(f"Handled {handled} message(s)")
            return

        stop = threading.Event()
        signal.signal(signal.SIGINT, lambda *_: stop.set())
        signal.signal(signal.SIGTERM, lambda *_: stop.set())
        w.run_forever(stop)
    finally:
        fetcher.close()


@cli.command()
def reconcile():
    """Re-enqueue or fail queued jobs no worker has picked up"""
    engine = get_engine()
    counts = reconcile_stale_jobs(JobStore(engine), build_queue(settings, engine), settings)
    click.echo(json.dumps(counts))


@cli.command()
@click.argument("job_id")
def status(job_id):
    """Show a job's status"""
    try:
        view = StatusService(JobStore(get_engine())).get_status(job_id)
    except LeadScraperError as e:
        raise click.ClickException(str(e))
    click.echo(json.dumps(view, indent=2))


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
def serve(host, port):
    """Run the HTTP API"""
    import uvicorn

    uvicorn.run("leadscraper.main:app", host=host, port=port)


if __name__ == "__main__":
    cli()

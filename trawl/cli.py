"""Trawl CLI: run scraping batches and manage settings.

Usage:
    trawl run maps "pizza roma, sushi milano"      # Business listings
    trawl run dns "example.com, example.org" --wayback
    trawl run faq "mutuo casa" --scrape-type ask --scrape-type related
    trawl run backup https://example.com/sitemap.xml --media
    trawl settings show                           # Print stored settings
    trawl settings set base_output_folder ~/out   # Change one setting
    trawl serve                                   # Start the web API
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Any

import click

from trawl.common.exceptions import EngineBusyError, InputError
from trawl.common.options import DNS_RECORD_TYPES, BatchOptions, FaqScrapeType
from trawl.common.status import StatusEvent, StatusKind
from trawl.config import Settings
from trawl.data_types import ScrapeMode, ScrapeReport
from trawl.driver.engine import ScrapingEngine

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_settings(settings_file: str | None) -> Settings:
    try:
        return Settings.load(Path(settings_file) if settings_file else None)
    except InputError as e:
        raise click.ClickException(e.message) from e


def _wait_for_enter(
    loop: asyncio.AbstractEventLoop, engine: ScrapingEngine
) -> None:
    sys.stdin.readline()
    try:
        loop.call_soon_threadsafe(engine.confirm_captcha_resolved)
    except RuntimeError:
        # loop already closed: the batch ended while we were waiting
        pass


def console_listener(engine: ScrapingEngine) -> Any:
    """Print status events; on a CAPTCHA, wait for Enter to resume."""

    def listener(event: StatusEvent) -> None:
        if event.kind is StatusKind.RESET_LOGS:
            return
        if event.kind is StatusKind.USER_ACTION_REQUIRED:
            click.secho(event.message, fg="yellow", err=True)
            click.echo("Press Enter once the CAPTCHA is solved.", err=True)
            threading.Thread(
                target=_wait_for_enter,
                args=(asyncio.get_running_loop(), engine),
                daemon=True,
            ).start()
            return
        click.echo(event.message)

    return listener


@click.group()
@click.version_option(package_name="trawl")
def cli() -> None:
    """Trawl: browser-driven scraping batches."""


@cli.command()
@click.argument(
    "mode", type=click.Choice([mode.value for mode in ScrapeMode])
)
@click.argument("targets")
@click.option(
    "--output",
    "output_folder",
    type=click.Path(file_okay=False),
    default=None,
    help="Write the report here instead of <base>/<mode>.",
)
@click.option(
    "--headless/--headed",
    default=None,
    help="Run the browser without a window (default from settings).",
)
@click.option("--proxy", default=None, help="Proxy server for the browser.")
@click.option(
    "--max-results", type=int, default=None, help="Maps: listings per query."
)
@click.option(
    "--no-enrich", is_flag=True, help="Maps: skip listing websites."
)
@click.option("--no-vat", is_flag=True, help="Maps: skip VIES lookups.")
@click.option(
    "--record-type",
    "record_types",
    multiple=True,
    type=click.Choice(DNS_RECORD_TYPES, case_sensitive=False),
    help="DNS: record type to resolve (repeatable).",
)
@click.option("--no-mail-a", is_flag=True, help="DNS: skip mail.<domain>.")
@click.option("--lighthouse", is_flag=True, help="DNS: Lighthouse scores.")
@click.option("--wayback", is_flag=True, help="DNS: Wayback history.")
@click.option(
    "--scrape-type",
    "scrape_types",
    multiple=True,
    type=click.Choice([t.value for t in FaqScrapeType]),
    help="FAQ: what to extract (repeatable).",
)
@click.option(
    "--max-questions",
    type=click.IntRange(1, 100),
    default=None,
    help="FAQ: questions per query.",
)
@click.option(
    "--audit-only", is_flag=True, help="Backup: only the global report."
)
@click.option("--media", is_flag=True, help="Backup: download media.")
@click.option("--text", is_flag=True, help="Backup: export visible text.")
@click.option(
    "--text-only", is_flag=True, help="Backup: only the text exports."
)
@click.option(
    "--settings-file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Settings file to use instead of the user default.",
)
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging.")
def run(
    mode: str,
    targets: str,
    output_folder: str | None,
    headless: bool | None,
    proxy: str | None,
    max_results: int | None,
    no_enrich: bool,
    no_vat: bool,
    record_types: tuple[str, ...],
    no_mail_a: bool,
    lighthouse: bool,
    wayback: bool,
    scrape_types: tuple[str, ...],
    max_questions: int | None,
    audit_only: bool,
    media: bool,
    text: bool,
    text_only: bool,
    settings_file: str | None,
    verbose: bool,
) -> None:
    """Run one batch.

    MODE is one of maps, dns, faq or backup. TARGETS is a comma-separated
    list of queries, domains or URLs, or a single sitemap URL for backup.

    \b
    Press Ctrl+C to stop; whatever was collected is still saved.
    """
    _configure_logging(verbose)
    settings = _load_settings(settings_file)

    options: dict[str, Any] = settings.batch_defaults()
    options.update(
        enrich_websites=not no_enrich,
        verify_vat=not no_vat,
        check_mail_a=not no_mail_a,
        run_lighthouse=lighthouse,
        run_wayback=wayback,
        full_backup=not audit_only,
        download_media=media,
        download_text=text,
        text_only=text_only,
    )
    if headless is not None:
        options["headless"] = headless
    if proxy:
        options["use_proxy"] = True
        options["custom_proxy"] = proxy
    if output_folder:
        options["output_folder"] = output_folder
    if max_results is not None:
        options["max_results"] = max_results
    if record_types:
        options["dns_record_types"] = list(record_types)
    if scrape_types:
        options["scrape_types"] = list(scrape_types)
    if max_questions is not None:
        options["max_questions"] = max_questions

    try:
        batch_options = BatchOptions.from_mapping(options)
    except InputError as e:
        raise click.ClickException(e.message) from e

    engine = ScrapingEngine(settings.base_output_folder)
    engine.reporter.add_listener(console_listener(engine))

    def handle_signal(signum: int, frame: Any) -> None:
        logger.info(f"Received {signal.Signals(signum).name}, stopping...")
        engine.stop()

    signal.signal(signal.SIGINT, handle_signal)
    try:
        report = asyncio.run(engine.start(targets, mode, batch_options))
    except (InputError, EngineBusyError) as e:
        raise click.ClickException(e.message) from e
    finally:
        signal.signal(signal.SIGINT, signal.SIG_DFL)

    _print_summary(report)


def _print_summary(report: ScrapeReport) -> None:
    state = "interrupted" if report.interrupted else "finished"
    click.echo(
        f"{report.mode.value} batch {state}: {len(report.records)} records, "
        f"{report.duplicates_removed} duplicates removed, "
        f"{report.elapsed_seconds:.1f}s"
    )
    if report.output_path is not None:
        click.echo(f"Report: {report.output_path}")


@cli.group()
def settings() -> None:
    """Show or change stored settings."""


@settings.command("show")
@click.option(
    "--settings-file", type=click.Path(dir_okay=False), default=None
)
def settings_show(settings_file: str | None) -> None:
    """Print the current settings as JSON."""
    current = _load_settings(settings_file)
    click.echo(json.dumps(current.model_dump(mode="json"), indent=2))


@settings.command("set")
@click.argument("key")
@click.argument("value")
@click.option(
    "--settings-file", type=click.Path(dir_okay=False), default=None
)
def settings_set(key: str, value: str, settings_file: str | None) -> None:
    """Change one setting.

    VALUE is parsed as JSON when possible (true, false, numbers), otherwise
    taken as a string.
    """
    path = Path(settings_file) if settings_file else None
    current = _load_settings(settings_file)
    try:
        parsed: Any = json.loads(value)
    except json.JSONDecodeError:
        parsed = value
    try:
        updated = current.update(key, parsed)
    except InputError as e:
        raise click.ClickException(e.message) from e
    saved = updated.save(path)
    click.echo(f"{key} = {getattr(updated, key)} ({saved})")


@cli.command()
@click.option(
    "--host",
    default="127.0.0.1",
    show_default=True,
    help="Host to bind the server to.",
)
@click.option(
    "--port",
    default=8000,
    show_default=True,
    type=int,
    help="Port to bind the server to.",
)
@click.option(
    "--settings-file", type=click.Path(dir_okay=False), default=None
)
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging.")
def serve(
    host: str, port: int, settings_file: str | None, verbose: bool
) -> None:
    """Start the web API."""
    try:
        import uvicorn

        from trawl.web.app import create_app
    except ImportError as e:
        raise click.ClickException(
            f"Missing dependency: {e}. "
            "Install the 'web' extra: pip install trawl[web]"
        ) from e

    current = _load_settings(settings_file)
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = create_app(settings=current)
    click.echo(f"Starting web server at http://{host}:{port}")
    click.echo(f"Output folder: {current.base_output_folder.absolute()}")

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info" if verbose else "warning",
    )


def main() -> None:
    """Entry point for the ``trawl`` console script."""
    cli()

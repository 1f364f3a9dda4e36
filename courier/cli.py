"""CLI entry point for Courier.

Commands:
    courier watch   - archive new reports and lab messages as they arrive
    courier status  - summarise recent status events
"""

import asyncio
import logging
import signal
import sys
from collections import Counter
from pathlib import Path

import click

from courier.config import (
    COOLDOWN_SECONDS,
    DOCUMENT_SOURCE_DIR,
    DOCUMENT_TARGET_DIR,
    MESSAGE_SOURCE_DIR,
    MESSAGE_TARGET_DIR,
    RECORDS_API_TOKEN,
    RECORDS_BASE_URL,
    RECORDS_INGEST_PATH,
    RECORDS_REGISTER_PATH,
    STATUS_LOG_PATH,
)

logger = logging.getLogger("courier")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Courier: verified archiving of clinical result files."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


# ------------------------------------------------------------------
# courier watch
# ------------------------------------------------------------------


def _validate_watch_config(dirs: dict[str, str]) -> None:
    """Fail loudly if a root is unset or its drive is not mapped."""
    unset = [option for option, value in dirs.items() if not value]
    if unset:
        click.echo(f"Error: Missing required directories: {', '.join(unset)}", err=True)
        click.echo("Set these in secrets/internal.env or pass them as options.", err=True)
        sys.exit(1)

    missing = [value for value in dirs.values() if not Path(value).is_dir()]
    if missing:
        plural = "s" if len(missing) > 1 else ""
        click.echo(
            f"Error: Drive{plural} {' and '.join(missing)} do not exist.",
            err=True,
        )
        sys.exit(1)

    if not RECORDS_BASE_URL:
        click.echo("Error: RECORDS_BASE_URL is required for notifications.", err=True)
        sys.exit(1)


@cli.command()
@click.option("--document-source", default=DOCUMENT_SOURCE_DIR, show_default=True,
              help="Inbound directory for report PDFs.")
@click.option("--document-target", default=DOCUMENT_TARGET_DIR, show_default=True,
              help="Archive root for report PDFs.")
@click.option("--message-source", default=MESSAGE_SOURCE_DIR, show_default=True,
              help="Inbound directory for HL7 lab messages.")
@click.option("--message-target", default=MESSAGE_TARGET_DIR, show_default=True,
              help="Archive root for HL7 lab messages.")
@click.option("--cooldown", default=COOLDOWN_SECONDS, show_default=True, type=float,
              help="Seconds to wait between files of one root.")
@click.option("--once", is_flag=True, help="Archive existing files and exit (no continuous watch).")
def watch(
    document_source: str,
    document_target: str,
    message_source: str,
    message_target: str,
    cooldown: float,
    once: bool,
) -> None:
    """Watch both inbound roots and archive new files."""
    _validate_watch_config(
        {
            "--document-source": document_source,
            "--document-target": document_target,
            "--message-source": message_source,
            "--message-target": message_target,
        }
    )
    try:
        asyncio.run(
            _watch_async(
                document_source, document_target, message_source, message_target, cooldown, once
            )
        )
    except KeyboardInterrupt:
        click.echo("Stopped.")


async def _watch_async(
    document_source: str,
    document_target: str,
    message_source: str,
    message_target: str,
    cooldown: float,
    once: bool,
) -> None:
    from courier.integrations.records import RecordsClient
    from courier.pipeline.events import FanoutPublisher, StatusLog, StatusReporter
    from courier.pipeline.service import build_pipelines
    from courier.pipeline.supervisor import Supervisor
    from courier.schemas.pipeline import JobState, PipelinePolicy, RootPair

    policy = PipelinePolicy(cooldown=cooldown)
    reporter = StatusReporter(FanoutPublisher(StatusLog(STATUS_LOG_PATH)))

    async with RecordsClient(
        RECORDS_BASE_URL,
        RECORDS_API_TOKEN,
        register_path=RECORDS_REGISTER_PATH,
        ingest_path=RECORDS_INGEST_PATH,
    ) as records:
        pipelines = build_pipelines(
            document_pair=RootPair(
                source_root=Path(document_source), destination_root=Path(document_target)
            ),
            message_pair=RootPair(
                source_root=Path(message_source), destination_root=Path(message_target)
            ),
            registrar=records,
            ingestor=records,
            reporter=reporter,
            policy=policy,
        )
        supervisor = Supervisor(pipelines, reporter, policy=policy)

        if once:
            click.echo("Archiving existing files (once mode)…")
            await supervisor.run_once()
            states = sum((p.dispatcher.totals for p in pipelines), Counter())
            click.echo(
                f"Done. Files: {sum(states.values())}, "
                f"Archived: {states[JobState.DONE]}, "
                f"Unstable: {states[JobState.DROPPED_UNSTABLE]}, "
                f"Mismatched: {states[JobState.DROPPED_MISMATCH]}, "
                f"Failed: {states[JobState.FAILED_IO]}"
            )
            return

        _install_signal_handlers(supervisor)
        click.echo("Watching for new files (Ctrl+C to stop)…")
        for pipeline in pipelines:
            click.echo(f"  {pipeline.name}: {pipeline.pair.source_root} -> "
                       f"{pipeline.pair.destination_root}")
        await supervisor.run_forever()


def _install_signal_handlers(supervisor) -> None:
    """SIGUSR1 pings, SIGHUP restarts. Not available on Windows."""
    loop = asyncio.get_running_loop()
    for name, handler in (("SIGUSR1", supervisor.ping), ("SIGHUP", supervisor.request_restart)):
        signum = getattr(signal, name, None)
        if signum is None:
            continue
        try:
            loop.add_signal_handler(signum, handler)
        except NotImplementedError:
            logger.debug("Signal handlers unsupported on this platform")
            return


# ------------------------------------------------------------------
# courier status
# ------------------------------------------------------------------


@cli.command()
@click.option("--hours", default=24, show_default=True, help="Look-back window in hours.")
@click.option("--errors", "show_errors", default=5, show_default=True,
              help="Number of recent errors to list.")
def status(hours: int, show_errors: int) -> None:
    """Quick overview of recent pipeline activity."""
    from datetime import UTC, datetime, timedelta

    from courier.pipeline.events import StatusLog
    from courier.schemas.pipeline import Severity

    status_log = StatusLog(STATUS_LOG_PATH)
    since = datetime.now(UTC) - timedelta(hours=hours)
    entries = status_log.read_entries(since=since)

    by_severity = Counter(e.severity for e in entries)
    by_pipeline = Counter(e.pipeline or "supervisor" for e in entries)

    click.echo(f"Courier Status (last {hours}h)")
    click.echo(f"  Events:    {len(entries)}")
    for severity in Severity:
        click.echo(f"  {severity.value.capitalize() + ':':<10} {by_severity[severity]}")
    for pipeline, count in sorted(by_pipeline.items()):
        click.echo(f"  [{pipeline}] {count} event(s)")

    errors = [e for e in entries if e.severity == Severity.ERROR][-show_errors:]
    if errors and show_errors > 0:
        click.echo("Recent errors:")
        for event in errors:
            click.echo(f"  {event.timestamp:%Y-%m-%d %H:%M:%S} {event.message}")

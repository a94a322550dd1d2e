import asyncio
import logging
import signal

import click

from powa_sentinel import __version__
from powa_sentinel.config import Config, ConfigError, load_config
from powa_sentinel.core import AnalysisPipeline
from powa_sentinel.engine import AnalysisEngine
from powa_sentinel.notifier import build_notifier
from powa_sentinel.reader import PowaReader, ReaderError
from powa_sentinel.scheduler import AnalysisScheduler, RunOutcome
from powa_sentinel.server import HealthServer, HealthServerError

logger = logging.getLogger(__name__)

STARTUP_PING_TIMEOUT = 10.0
SHUTDOWN_TIMEOUT = 30.0

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def build_scheduler(config: Config, reader: PowaReader) -> AnalysisScheduler:
    pipeline = AnalysisPipeline(
        reader,
        AnalysisEngine(config.rules),
        config.analysis,
        database_name=config.database.dbname,
    )
    notifier = build_notifier(config.notifier)
    logger.info("Notifier initialized: %s", notifier.name)

    scheduler = AnalysisScheduler(pipeline, notifier, config.schedule.location)
    scheduler.set_analysis_timeout(config.analysis.run_timeout)
    return scheduler


async def _connect(config: Config) -> PowaReader | None:
    reader = PowaReader(config.database)
    try:
        await reader.connect()
        await asyncio.wait_for(reader.ping(), timeout=STARTUP_PING_TIMEOUT)
    except (ReaderError, TimeoutError) as exc:
        logger.error("Failed to connect to database: %s", exc)
        await reader.close()
        return None
    logger.info("Database connection established")
    return reader


async def run_once(config: Config) -> int:
    """Run one analysis and notification, returning the process exit code."""
    reader = await _connect(config)
    if reader is None:
        return 1

    async with reader:
        logger.info("Running single analysis (--once mode)")
        outcome = await build_scheduler(config, reader).run_now()

    if outcome is not RunOutcome.COMPLETED:
        logger.error("Single analysis did not complete: %s", outcome)
        return 1
    logger.info("Analysis complete, exiting")
    return 0


async def serve(config: Config) -> int:
    """Run the scheduler and health server until SIGINT or SIGTERM."""
    reader = await _connect(config)
    if reader is None:
        return 1

    async with reader:
        scheduler = build_scheduler(config, reader)
        try:
            scheduler.schedule(config.schedule.cron)
        except ValueError as exc:
            logger.error("Failed to schedule job: %s", exc)
            return 1

        health_server = HealthServer(config.server, reader)
        try:
            await health_server.start()
        except HealthServerError as exc:
            logger.error("%s", exc)
            return 1

        scheduler.start()
        logger.info(
            "Scheduler started with cron: %s (timezone: %s)",
            config.schedule.cron,
            config.schedule.timezone,
        )

        received: list[signal.Signals] = []
        stop_requested = asyncio.Event()

        def request_stop(sig: signal.Signals) -> None:
            received.append(sig)
            stop_requested.set()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, request_stop, sig)

        await stop_requested.wait()
        logger.info("Received signal %s, shutting down...", received[0].name)

        try:
            await asyncio.wait_for(scheduler.stop(), timeout=SHUTDOWN_TIMEOUT)
        except TimeoutError:
            logger.warning("In-flight analysis cancelled at the shutdown deadline")
        await health_server.stop()

    logger.info("Shutdown complete")
    return 0


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--config",
    "config_path",
    default="config.yaml",
    show_default=True,
    type=click.Path(dir_okay=False),
    help="Path to configuration file",
)
@click.option("--once", is_flag=True, help="Run analysis once and exit (skip scheduler)")
@click.option(
    "--log-level",
    default="INFO",
    show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
)
@click.version_option(__version__, prog_name="powa-sentinel")
def main(config_path: str, once: bool, log_level: str) -> None:
    """Analyze PoWA statistics on a schedule and push performance alerts."""
    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT)

    try:
        config = load_config(config_path)
        config.validate()
    except ConfigError as exc:
        raise click.ClickException(f"Invalid configuration: {exc}") from exc

    logger.info("powa-sentinel %s starting...", __version__)
    exit_code = asyncio.run(run_once(config) if once else serve(config))
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()

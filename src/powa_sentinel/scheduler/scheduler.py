import asyncio
import logging
from datetime import UTC, datetime, timedelta, tzinfo
from enum import StrEnum
from typing import Protocol, runtime_checkable

from croniter import CroniterBadDateError, croniter

from powa_sentinel.domain import AlertContext
from powa_sentinel.notifier import Notifier
from powa_sentinel.scheduler.gate import SingleFlightGate

logger = logging.getLogger(__name__)

DEFAULT_ANALYSIS_TIMEOUT = timedelta(minutes=5)


class RunOutcome(StrEnum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@runtime_checkable
class AnalysisRunner(Protocol):
    """Anything producing one AlertContext per call."""

    async def run(self) -> AlertContext:
        ...


def parse_cron(expression: str, start: datetime) -> croniter:
    """Build an iterator for ``expression``; six fields are read seconds-first."""
    try:
        return croniter(expression, start, second_at_beginning=True)
    except (ValueError, KeyError) as exc:
        raise ValueError(f"invalid cron expression {expression!r}: {exc}") from exc


def first_fire_time(expression: str, start: datetime) -> datetime:
    """Return the first fire time after ``start``.

    Raises:
        ValueError: If the expression is malformed or can never fire,
            e.g. ``0 0 0 31 2 *``.
    """
    schedule = parse_cron(expression, start)
    try:
        return schedule.get_next(datetime)
    except CroniterBadDateError as exc:
        raise ValueError(f"cron expression {expression!r} never fires: {exc}") from exc


def next_fire_after(schedule: croniter, now: datetime) -> tuple[datetime, int]:
    """Advance ``schedule`` to its first fire time after ``now``.

    Returns that time and the number of fire times passed over on the way.
    """
    missed = 0
    fire_at = schedule.get_next(datetime)
    while fire_at <= now:
        missed += 1
        fire_at = schedule.get_next(datetime)
    return fire_at, missed


class AnalysisScheduler:
    """Cron-driven trigger for analysis runs followed by notification.

    The run-state (``is_running``) only tracks whether cron drivers are
    active. Every attempt, scheduled or via ``run_now``, passes through the
    same single-flight gate and per-run timeout; an attempt arriving while
    another run is in flight is skipped, not queued.

    Usage:
        scheduler = AnalysisScheduler(pipeline, notifier, config.schedule.location)
        scheduler.schedule("0 0 9 * * 1")
        scheduler.start()
        ...
        await asyncio.wait_for(scheduler.stop(), timeout=30)
    """

    def __init__(
        self,
        runner: AnalysisRunner,
        notifier: Notifier,
        timezone: tzinfo | None = None,
    ) -> None:
        self._runner = runner
        self._notifier = notifier
        self._timezone = timezone or UTC
        self._analysis_timeout = DEFAULT_ANALYSIS_TIMEOUT
        self._gate = SingleFlightGate()
        self._expressions: list[str] = []
        self._drivers: list[asyncio.Task[None]] = []
        self._runs: set[asyncio.Task[RunOutcome]] = set()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_analyzing(self) -> bool:
        return self._gate.busy

    @property
    def analysis_timeout(self) -> timedelta:
        return self._analysis_timeout

    @property
    def expressions(self) -> tuple[str, ...]:
        return tuple(self._expressions)

    def set_analysis_timeout(self, timeout: timedelta) -> None:
        if timeout <= timedelta(0):
            raise ValueError("analysis timeout must be positive")
        self._analysis_timeout = timeout

    def schedule(self, cron_expr: str) -> None:
        first_fire_time(cron_expr, datetime.now(self._timezone))
        self._expressions.append(cron_expr)
        if self._running:
            self._start_driver(cron_expr)

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        for expression in self._expressions:
            self._start_driver(expression)
        logger.info("Scheduler started with %d job(s)", len(self._expressions))

    def stop(self) -> asyncio.Future[None]:
        """Stop firing ticks and return a future that resolves once in-flight runs finish.

        Runs already executing are not interrupted. Cancelling the returned
        future, for example through ``asyncio.wait_for`` hitting a shutdown
        deadline, cancels them.
        """
        loop = asyncio.get_running_loop()
        if not self._running:
            done: asyncio.Future[None] = loop.create_future()
            done.set_result(None)
            return done

        self._running = False
        for driver in self._drivers:
            driver.cancel()
        self._drivers.clear()
        logger.info("Scheduler stopped")
        return loop.create_task(self._drain(tuple(self._runs)))

    async def run_now(self) -> RunOutcome:
        return await self._attempt()

    async def _drain(self, runs: tuple[asyncio.Task[RunOutcome], ...]) -> None:
        if runs:
            await asyncio.gather(*runs, return_exceptions=True)

    def _start_driver(self, expression: str) -> None:
        driver = asyncio.create_task(self._drive(expression))
        driver.add_done_callback(self._on_driver_done)
        self._drivers.append(driver)

    @staticmethod
    def _on_driver_done(driver: asyncio.Task[None]) -> None:
        if driver.cancelled():
            return
        exc = driver.exception()
        if exc is not None:
            logger.error("Cron driver stopped unexpectedly: %s", exc, exc_info=exc)

    async def _drive(self, expression: str) -> None:
        schedule = parse_cron(expression, datetime.now(self._timezone))
        while True:
            now = datetime.now(self._timezone)
            fire_at, missed = next_fire_after(schedule, now)
            if missed:
                logger.warning("Skipped %d missed cron tick(s) for %s", missed, expression)
            delay = (fire_at - now).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)
            self._spawn()

    def _spawn(self) -> None:
        task = asyncio.create_task(self._attempt())
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)

    async def _attempt(self) -> RunOutcome:
        if not self._gate.try_acquire():
            logger.info("Analysis already in progress, skipping this run")
            return RunOutcome.SKIPPED
        try:
            return await self._execute()
        finally:
            self._gate.release()

    async def _execute(self) -> RunOutcome:
        notifying = False
        logger.info("Starting scheduled analysis...")
        try:
            async with asyncio.timeout(self._analysis_timeout.total_seconds()):
                alert = await self._runner.run()
                logger.info(
                    "Analysis complete: %d slow queries, %d regressions, %d suggestions",
                    len(alert.top_slow_sql),
                    len(alert.regressions),
                    len(alert.suggestions),
                )
                notifying = True
                await self._notifier.send(alert)
        except TimeoutError:
            if notifying:
                logger.error("Notification timed out after %s", self._analysis_timeout)
            else:
                logger.error("Analysis timed out after %s", self._analysis_timeout)
            return RunOutcome.TIMED_OUT
        except Exception as exc:
            if notifying:
                logger.error("Notification failed: %s", exc)
            else:
                logger.error("Analysis failed: %s", exc)
            return RunOutcome.FAILED

        logger.info("Notification sent via %s", self._notifier.name)
        return RunOutcome.COMPLETED

"""Scheduler for periodic mailbox polling"""

from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from mailbridge.utils.config import FeaturesConfig
from mailbridge.utils.errors import ConfigurationError, MailBridgeError, ValidationError
from mailbridge.utils.logging import get_logger, log_call

VALID_INTERVAL_UNITS = ["seconds", "minutes", "hours", "days", "weeks"]

logger = get_logger(__name__)

SyncJob = Callable[[], Awaitable[object]]


def _validate_interval(job_name: str, interval: Tuple[int, str]) -> bool:
    """Validate interval tuple format (value, unit)."""
    if not isinstance(interval, tuple) or len(interval) != 2:
        raise ValidationError(f"Invalid interval format for {job_name}: {interval} (must be tuple of (value, unit))")

    value, unit = interval

    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ValidationError(f"Invalid interval value for {job_name}: {value} (must be positive integer)")

    if unit not in VALID_INTERVAL_UNITS:
        raise ValidationError(f"Invalid interval unit for {job_name}: {unit} (must be one of {VALID_INTERVAL_UNITS})")

    return True


class SyncScheduler:
    """Runs the auto-sync job on the server's event loop when enabled."""

    def __init__(
        self,
        features: FeaturesConfig,
        sync_job: SyncJob,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.features = features
        self.sync_job = sync_job
        self.scheduler = scheduler or AsyncIOScheduler()

    def _build_jobs_registry(self) -> Dict[str, Dict]:
        return {
            "auto_sync": {
                "enabled": self.features.auto_sync,
                "interval": (self.features.sync_interval, "minutes"),
                "func": self._run_sync,
                "id": "auto_sync",
            }
        }

    async def _run_sync(self) -> None:
        try:
            await self.sync_job()
        except MailBridgeError as e:
            logger.warning(f"Automatic sync failed: {e.message}", extra={"data": e.details})
        except Exception as e:
            logger.exception(f"Automatic sync failed: {e}")

    def _add_job_if_enabled(self, job_name: str, config: Dict) -> bool:
        if not config["enabled"]:
            return False

        try:
            _validate_interval(job_name, config["interval"])
        except ValidationError as e:
            logger.warning(f"Skipping job {job_name}: {e.message}")
            return False

        value, unit = config["interval"]
        try:
            self.scheduler.add_job(
                config["func"],
                "interval",
                **{unit: value},
                id=config["id"],
                replace_existing=True,
            )
        except Exception as e:
            raise ConfigurationError(f"Failed to add job {job_name}: {e}") from e

        logger.info(f"Added job: {job_name} (interval: {value} {unit})")
        return True

    @log_call
    def start(self) -> List[str]:
        """Add enabled jobs and start the scheduler; returns the enabled job names.

        The scheduler is not started at all when no job is enabled.
        """
        enabled = [
            name for name, config in self._build_jobs_registry().items()
            if self._add_job_if_enabled(name, config)
        ]

        if not enabled:
            logger.debug("No scheduled jobs enabled")
            return enabled

        if not self.scheduler.running:
            self.scheduler.start()
            logger.info(f"Scheduler started with {len(enabled)} job(s)")
        return enabled

    @log_call
    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    @property
    def running(self) -> bool:
        return self.scheduler.running

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from ledger import find_drifted_sources
from services import prune_stale_predictions


logger = logging.getLogger(__name__)


class SchedulerManager:
    """Maintenance jobs that run beside the API; none of them move money."""

    def __init__(self) -> None:
        self.settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)

    def expire_predictions(self, source: str = "manual") -> int:
        with session_scope() as session:
            count = prune_stale_predictions(
                session, self.settings.prediction_retention_days
            )
        logger.info(f"prediction_expiry: source={source} expired={count}")
        return count

    def audit_balances(self, source: str = "manual") -> int:
        with session_scope() as session:
            drifted = find_drifted_sources(session)
            for record, diff in drifted:
                logger.warning(
                    f"balance_drift: source_id={record.id} user={record.user_id} "
                    f"balance={record.balance_cents} diff={diff}"
                )
        logger.info(f"balance_audit: source={source} drifted={len(drifted)}")
        return len(drifted)

    def start(self) -> None:
        self.scheduler.add_job(
            self.expire_predictions,
            CronTrigger(hour=3, minute=15),
            args=["daily_03:15"],
            id="prediction_expiry_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )
        self.scheduler.add_job(
            self.audit_balances,
            IntervalTrigger(hours=1),
            args=["hourly"],
            id="balance_audit_hourly",
            replace_existing=True,
            misfire_grace_time=300,
        )
        self.scheduler.start()
        logger.info("Scheduler started with daily prediction expiry and hourly audit")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

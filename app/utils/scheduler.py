"""Background scheduler for the periodic grant sweep and audit-log retention"""
from apscheduler.schedulers.background import BackgroundScheduler
import logging

logger = logging.getLogger(__name__)


class GrantSweeper:
    """Owns one BackgroundScheduler running the grant sweep on a fixed interval.

    Built once in ``create_app``; call ``start()`` to schedule and ``stop()``
    to shut down. ``run_once()`` runs a single cycle synchronously.
    """

    JOB_ID = 'sweep_grants'
    AUDIT_JOB_ID = 'purge_audit_logs'

    def __init__(self, app, sweep, interval_hours=24, audit_retention_days=None):
        self.app = app
        self.sweep = sweep
        self.interval_hours = interval_hours
        self.audit_retention_days = audit_retention_days
        self._scheduler = None

    @property
    def running(self):
        return self._scheduler is not None and self._scheduler.running

    def start(self):
        if self.running:
            return  # Already started

        scheduler = BackgroundScheduler()
        scheduler.configure(
            jobstores={'default': {'type': 'memory'}},
            job_defaults={'coalesce': True, 'max_instances': 1}
        )

        scheduler.add_job(
            self.run_once,
            'interval',
            hours=self.interval_hours,
            id=self.JOB_ID,
            name='Sweep expired and retired grants',
            replace_existing=True
        )

        if self.audit_retention_days:
            # daily at 3:00 AM
            scheduler.add_job(
                self.purge_audit_logs,
                'cron',
                hour=3,
                minute=0,
                id=self.AUDIT_JOB_ID,
                name='Cleanup old audit log files',
                replace_existing=True
            )

        scheduler.start()
        self._scheduler = scheduler
        logger.info(f"GrantSweeper: Started, sweeping every {self.interval_hours}h")

    def stop(self):
        if self.running:
            self._scheduler.shutdown(wait=False)
            logger.info("GrantSweeper: Stopped")
        self._scheduler = None

    def run_once(self):
        """One sweep cycle. Errors are logged so the next cycle still runs.

        Returns the number of deleted grants, or None when the cycle failed.
        """
        with self.app.app_context():
            try:
                result = self.sweep()
            except Exception as e:
                logger.exception(f"GrantSweeper: Sweep cycle failed: {e}")
                return None

            if not result.ok:
                logger.error(f"GrantSweeper: Sweep cycle failed ({result.kind}): {result.message}")
                return None

            deleted = result.data.get('deleted_count', 0)
            logger.info(f"GrantSweeper: Cleanup complete: Deleted {deleted} grants")
            return deleted

    def purge_audit_logs(self):
        from app.utils.audit_log import purge_audit_logs

        with self.app.app_context():
            try:
                return purge_audit_logs(self.audit_retention_days)
            except Exception as e:
                logger.error(f"GrantSweeper: Error during audit log retention: {e}")
                return None

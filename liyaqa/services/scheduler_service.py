"""
Liyaqa - Background Scheduler
In-process job scheduling with APScheduler: campaign step delivery,
daily trigger matching and housekeeping
"""
import logging
from datetime import datetime

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = None


def init_scheduler(app):
    """Initialize the background scheduler with the Flask app context"""
    global scheduler

    if scheduler is not None:
        logger.info("Scheduler already initialized")
        return scheduler

    scheduler = BackgroundScheduler(
        timezone=app.config.get('DEFAULT_TIMEZONE', 'Asia/Riyadh'),
        job_defaults={
            'coalesce': True,
            'max_instances': 1,
            'misfire_grace_time': 3600
        }
    )
    scheduler.app = app

    _add_scheduled_jobs(app)

    scheduler.start()
    logger.info("Background scheduler started")

    return scheduler


def shutdown_scheduler():
    global scheduler
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Background scheduler stopped")
    scheduler = None


def _add_scheduled_jobs(app):
    """Add all scheduled jobs"""

    scheduler.add_job(
        func=process_campaign_steps,
        trigger=IntervalTrigger(minutes=5),
        id='process_campaign_steps',
        name='Process Due Campaign Steps',
        replace_existing=True,
        kwargs={'app': app}
    )

    # Daily triggers run early morning Riyadh time, before members are awake
    scheduler.add_job(
        func=run_daily_triggers,
        trigger=CronTrigger(hour=6, minute=0),
        id='daily_campaign_triggers',
        name='Daily Campaign Triggers',
        replace_existing=True,
        kwargs={'app': app}
    )

    scheduler.add_job(
        func=run_daily_housekeeping,
        trigger=CronTrigger(hour=1, minute=0),
        id='daily_housekeeping',
        name='Daily Housekeeping',
        replace_existing=True,
        kwargs={'app': app}
    )

    scheduler.add_job(
        func=run_segment_triggers,
        trigger=IntervalTrigger(hours=1),
        id='hourly_segment_triggers',
        name='Hourly Segment Refresh',
        replace_existing=True,
        kwargs={'app': app}
    )

    scheduler.add_job(
        func=retry_zatca_reports,
        trigger=IntervalTrigger(hours=1),
        id='hourly_zatca_retry',
        name='Hourly ZATCA Report Retry',
        replace_existing=True,
        kwargs={'app': app}
    )

    scheduler.add_job(
        func=expire_impersonation_sessions,
        trigger=IntervalTrigger(minutes=5),
        id='expire_impersonation_sessions',
        name='Expire Impersonation Sessions',
        replace_existing=True,
        kwargs={'app': app}
    )

    logger.info(f"Scheduled {len(scheduler.get_jobs())} jobs")


def process_campaign_steps(app):
    """Send every campaign step that has come due"""
    with app.app_context():
        from liyaqa.services.marketing import execution_service

        results = execution_service.process_due_steps()
        if results['due']:
            logger.info(f"Campaign steps processed: {results}")
        return results


def run_daily_triggers(app):
    """Match members against day-based campaign triggers"""
    with app.app_context():
        from liyaqa.services.marketing import trigger_service

        logger.info("Starting daily campaign triggers...")
        return trigger_service.run_daily_triggers()


def run_segment_triggers(app):
    with app.app_context():
        from liyaqa.services.marketing import trigger_service

        results = trigger_service.run_segment_triggers()
        logger.info(f"Segment refresh complete: {results}")
        return results


def expire_impersonation_sessions(app):
    with app.app_context():
        from liyaqa.services.impersonation_service import impersonation_service

        return impersonation_service.expire_sessions()


def retry_zatca_reports(app):
    with app.app_context():
        from liyaqa.services.zatca_service import zatca_service

        results = zatca_service.retry_pending_reports()
        if results:
            logger.info(f"ZATCA report retry: {results}")
        return results


def run_daily_housekeeping(app):
    """
    Expire subscriptions, mark overdue invoices, expire invites and prune
    old audit logs. Each task runs independently so one failure does not
    skip the rest.
    """
    with app.app_context():
        from liyaqa.database import db
        from liyaqa.services.membership_service import membership_service
        from liyaqa.services.invoice_service import invoice_service
        from liyaqa.services.team_service import team_service
        from liyaqa.services.audit_service import audit_service

        tasks = [
            ('expired_subscriptions', membership_service.expire_subscriptions),
            ('overdue_invoices', invoice_service.mark_overdue),
            ('expired_invites', team_service.expire_invites),
            ('pruned_audit_logs', lambda: audit_service.cleanup_old_logs(
                days=app.config.get('AUDIT_RETENTION_DAYS', 365))),
        ]
        results = {}
        for name, task in tasks:
            try:
                results[name] = task()
            except Exception as e:
                db.session.rollback()
                logger.error(f"Housekeeping task {name} failed: {e}")
                results[name] = None

        logger.info(f"Daily housekeeping complete: {results}")
        return results


def get_scheduler_status():
    """Get current scheduler status and job list"""
    if scheduler is None:
        return {'status': 'not_initialized', 'jobs': []}

    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
            'trigger': str(job.trigger)
        })

    return {
        'status': 'running' if scheduler.running else 'stopped',
        'jobs': jobs
    }


def run_job_now(job_id):
    """Manually trigger a job to run immediately"""
    if scheduler is None:
        return {'error': 'Scheduler not initialized'}

    job = scheduler.get_job(job_id)
    if job:
        job.modify(next_run_time=datetime.now(scheduler.timezone))
        return {'success': True, 'message': f'Job {job_id} triggered'}
    return {'error': f'Job {job_id} not found'}

"""
Celery task scheduler for the Geo-Grid Rank Tracking Platform.

Runs the recurring geo-grid scans for every active campaign and on-demand
scans for a single campaign.

Usage:
    Start the worker:
        celery -A rank_platform.scheduler.celery_app worker \
            --loglevel=info -Q tracking

    Start the beat scheduler:
        celery -A rank_platform.scheduler.celery_app beat \
            --loglevel=info

    Start both (development only):
        celery -A rank_platform.scheduler.celery_app worker \
            --beat --loglevel=info -Q tracking
"""

import traceback

from celery import Celery
from celery.schedules import crontab
from loguru import logger

from rank_platform.config.settings import (
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
    SCHEDULE,
)
from rank_platform.exceptions import GeoGridError, ProviderConfigurationError, ProviderError

# ---------------------------------------------------------------------------
# Celery application
# ---------------------------------------------------------------------------

app = Celery("rank_platform")

app.conf.update(
    # Broker & backend
    broker_url=CELERY_BROKER_URL,
    result_backend=CELERY_RESULT_BACKEND,

    # Serialization
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],

    # Timezone
    timezone="America/New_York",
    enable_utc=True,

    # Retry policy -- exponential backoff defaults for all tasks
    task_default_retry_delay=60,          # 1 minute initial delay
    task_max_retries=3,
    task_acks_late=True,
    worker_prefetch_multiplier=1,

    task_queues={
        "tracking": {
            "exchange": "tracking",
            "routing_key": "tracking",
            "queue_arguments": {"x-max-priority": 5},
        },
    },
    task_default_queue="tracking",

    task_routes={
        "rank_platform.scheduler.celery_app.scan_all_campaigns": {"queue": "tracking"},
        "rank_platform.scheduler.celery_app.run_campaign_scan": {"queue": "tracking"},
    },

    # Result expiration -- keep results for 24 hours
    result_expires=86400,
)

# ---------------------------------------------------------------------------
# Beat schedule
# ---------------------------------------------------------------------------

app.conf.beat_schedule = {
    # Geo-grid scan for every active campaign -- daily
    "scan-geogrid-daily": {
        "task": "rank_platform.scheduler.celery_app.scan_all_campaigns",
        "schedule": crontab(
            hour=SCHEDULE["geogrid_scan_hour"],
            minute=SCHEDULE["geogrid_scan_minute"],
        ),
        "options": {"queue": "tracking", "priority": 5},
    },
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _store_task_result(task_name: str, status: str, result_data: dict) -> None:
    """Log a task outcome; failures are also recorded as alerts."""
    from rank_platform.database.store import CampaignStore

    try:
        if status == "success":
            logger.info(
                "Task '{}' completed successfully | result_keys={}",
                task_name,
                list(result_data.keys()) if isinstance(result_data, dict) else "N/A",
            )
        else:
            CampaignStore().record_alert(
                alert_type="task_failure",
                severity="critical",
                title=f"Scheduled task failed: {task_name}",
                message=result_data.get("error", "Unknown error"),
                data=result_data,
                campaign_id=result_data.get("campaign_id"),
            )
            logger.error("Task '{}' FAILED -- alert created | error={}", task_name, result_data.get("error"))
    except Exception:
        logger.exception("Failed to store task result for '{}'", task_name)


def _is_permanent(exc: Exception) -> bool:
    """Failures a retry cannot fix: configuration, grid parameters, unknown campaign."""
    if isinstance(exc, ProviderConfigurationError):
        return True
    return isinstance(exc, GeoGridError) and not isinstance(exc, ProviderError)


def _build_tracker():
    from rank_platform.database.store import CampaignStore
    from rank_platform.modules.geogrid_tracker import GeoGridTracker

    return GeoGridTracker(CampaignStore())


# ---------------------------------------------------------------------------
# Task definitions
# ---------------------------------------------------------------------------

@app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
)
def run_campaign_scan(self, campaign_id: int):
    """Run one geo-grid scan for a single campaign."""
    task_name = "run_campaign_scan"
    logger.info("Starting scheduled task: {} (campaign {})", task_name, campaign_id)
    try:
        tracker = _build_tracker()
        scan = tracker.scan(campaign_id)
        result = {
            "campaign_id": campaign_id,
            "run_id": scan.run_id,
            "summary": scan.aggregate.summary.as_dict(),
            "failed_lookups": scan.failed_lookups,
            "alerts": len(scan.alerts),
        }
        _store_task_result(task_name, "success", result)
        return {"status": "success", "task": task_name, "result": result}
    except Exception as exc:
        logger.exception("Task '{}' raised an exception", task_name)
        _store_task_result(task_name, "failure", {
            "campaign_id": campaign_id,
            "error": str(exc),
            "traceback": traceback.format_exc(),
        })
        if _is_permanent(exc):
            raise
        raise self.retry(exc=exc)


@app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
)
def scan_all_campaigns(self):
    """Scan every active campaign."""
    task_name = "scan_all_campaigns"
    logger.info("Starting scheduled task: {}", task_name)
    try:
        tracker = _build_tracker()
        result = tracker.scan_all()
        _store_task_result(task_name, "success", result or {})
        return {"status": "success", "task": task_name, "result": result}
    except Exception as exc:
        logger.exception("Task '{}' raised an exception", task_name)
        _store_task_result(task_name, "failure", {
            "error": str(exc),
            "traceback": traceback.format_exc(),
        })
        if _is_permanent(exc):
            raise
        raise self.retry(exc=exc)

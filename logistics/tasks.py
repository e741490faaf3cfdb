"""
LOGISTICS App - Celery Tasks

Periodic maintenance of courier location data.
"""

from celery import shared_task
import logging

logger = logging.getLogger(__name__)


@shared_task(name='logistics.tasks.prune_location_history')
def prune_location_history(retention_days=None):
    """
    Drop courier location pings past the retention window.

    Scheduled nightly by Celery beat. The current-position slots are
    never touched.
    """
    from logistics.services.tracking import prune_history

    deleted = prune_history(retention_days=retention_days)
    logger.info(f"[TRACKING TASK] Pruned {deleted} location pings")
    return deleted

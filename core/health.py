"""
Monitoring & Health Check Endpoints
===================================

Provides:
1. /health/ - Liveness check, with the live dispatch counters
2. /health/ready/ - Readiness check (database, cache, channel layer)

The channel layer carries every realtime push and counts as a hard
dependency.
"""

import time
import logging
from datetime import timedelta

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.http import JsonResponse
from django.db import connection
from django.core.cache import cache
from django.views.decorators.http import require_GET
from django.views.decorators.csrf import csrf_exempt
from django.utils import timezone

logger = logging.getLogger(__name__)

SERVICE_NAME = 'courier-dispatch'
ONLINE_WINDOW_MINUTES = 5


def _elapsed_ms(start):
    return round((time.time() - start) * 1000, 2)


def check_database():
    start = time.time()
    with connection.cursor() as cursor:
        cursor.execute("SELECT 1")
        cursor.fetchone()
    return {'response_time_ms': _elapsed_ms(start), 'vendor': connection.vendor}


def check_cache():
    """The location-history gate lives in the cache."""
    start = time.time()
    cache.set('_healthcheck_ping', 'pong', 10)
    if cache.get('_healthcheck_ping') != 'pong':
        raise RuntimeError("Cache read/write mismatch")
    return {'response_time_ms': _elapsed_ms(start)}


def check_channel_layer():
    channel_layer = get_channel_layer()
    if channel_layer is None:
        raise RuntimeError("No channel layer configured")
    start = time.time()
    # Nobody listens on this group; the send only proves the layer answers
    async_to_sync(channel_layer.group_send)('healthcheck', {'type': 'healthcheck.ping'})
    return {'response_time_ms': _elapsed_ms(start), 'backend': type(channel_layer).__name__}


READINESS_CHECKS = (
    ('database', check_database),
    ('cache', check_cache),
    ('channel_layer', check_channel_layer),
)


def dispatch_counters():
    """Open deliveries by status and couriers seen recently."""
    from logistics.models import CourierLocation, Delivery, DeliveryStatus

    cutoff = timezone.now() - timedelta(minutes=ONLINE_WINDOW_MINUTES)
    return {
        'posted': Delivery.objects.filter(status=DeliveryStatus.POSTED).count(),
        'in_progress': Delivery.objects.filter(
            status__in=[DeliveryStatus.ACCEPTED, DeliveryStatus.PICKED_UP]
        ).count(),
        'couriers_online': CourierLocation.objects.filter(updated_at__gte=cutoff).count(),
    }


@csrf_exempt
@require_GET
def health_check(request):
    """
    Liveness probe.
    Returns 200 while the process answers; the counters are best effort.
    """
    body = {
        'status': 'ok',
        'service': SERVICE_NAME,
        'timestamp': timezone.now().isoformat(),
    }
    try:
        body['dispatch'] = dispatch_counters()
    except Exception as e:
        logger.warning(f"[HEALTH] Dispatch counters unavailable: {e}")
    return JsonResponse(body)


@csrf_exempt
@require_GET
def readiness_check(request):
    """
    Readiness probe.
    Returns 200 only if every dependency answers, 503 otherwise.
    """
    checks = {}
    all_healthy = True

    for name, check in READINESS_CHECKS:
        try:
            checks[name] = {'status': 'healthy', **check()}
        except Exception as e:
            checks[name] = {'status': 'unhealthy', 'error': str(e)}
            all_healthy = False
            logger.error(f"[HEALTH] {name} unhealthy: {e}")

    return JsonResponse({
        'status': 'healthy' if all_healthy else 'unhealthy',
        'service': SERVICE_NAME,
        'timestamp': timezone.now().isoformat(),
        'checks': checks,
    }, status=200 if all_healthy else 503)

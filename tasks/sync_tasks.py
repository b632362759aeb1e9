# tasks/sync_tasks.py

from typing import Dict, Any

from celery_worker import celery
from app import create_app
from logging_config import get_logger
from utils.datetime_utils import utc_now

logger = get_logger(__name__)


@celery.task(name='tasks.sync_tasks.sync_scheduling_providers')
def sync_scheduling_providers() -> Dict[str, Any]:
    """Sync Square customers and bookings for integrations whose interval has elapsed"""
    try:
        app = create_app()
        with app.app_context():
            sync_service = app.services.get('scheduling_sync')
            summary = sync_service.sync_due_integrations()

            if summary['synced'] or summary['failed']:
                logger.info("Scheduling provider sync complete", **summary)
            return {
                'success': True,
                'stats': summary,
                'timestamp': utc_now().isoformat()
            }

    except Exception as e:
        logger.error("Scheduling provider sync failed", error=str(e))
        return {
            'success': False,
            'error': str(e),
            'timestamp': utc_now().isoformat()
        }


@celery.task(name='tasks.sync_tasks.sync_business_task', bind=True, max_retries=3, acks_late=True)
def sync_business_task(self, business_id: int) -> Dict[str, Any]:
    """Run a full Square sync for one business, on demand"""
    try:
        app = create_app()
        with app.app_context():
            result = app.services.get('scheduling_sync').sync_business(business_id)
    except Exception as e:
        logger.error("Square sync failed", business_id=business_id, error=str(e))
        raise self.retry(exc=e, countdown=60 * (2 ** self.request.retries))

    return {
        'success': result.is_success,
        'business_id': business_id,
        'results': result.data if result.is_success else result.metadata,
        'error': result.error,
        'timestamp': utc_now().isoformat()
    }


@celery.task(name='tasks.sync_tasks.handle_square_webhook', bind=True, max_retries=3)
def handle_square_webhook(self, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Process a Square webhook event off the request path"""
    try:
        app = create_app()
        with app.app_context():
            result = app.services.get('scheduling_sync').handle_booking_created(payload)
    except Exception as e:
        logger.error("Square webhook processing failed", event_type=payload.get('type'), error=str(e))
        raise self.retry(exc=e, countdown=30 * (2 ** self.request.retries))

    if result.is_failure:
        logger.warning("Square webhook rejected", error=result.error, code=result.error_code)
        return {
            'success': False,
            'error': result.error,
            'code': result.error_code,
            'timestamp': utc_now().isoformat()
        }

    appointment = result.unwrap()
    return {
        'success': True,
        'handled': not isinstance(appointment, dict),
        'appointment_id': getattr(appointment, 'id', None),
        'timestamp': utc_now().isoformat()
    }

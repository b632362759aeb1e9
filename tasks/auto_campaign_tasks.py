"""
Auto-campaign Celery tasks
Keeps every business's upcoming auto-campaign slots filled
"""

from typing import Dict, Any

from celery_worker import celery
from app import create_app
from logging_config import get_logger
from utils.datetime_utils import utc_now

logger = get_logger(__name__)


@celery.task(name='tasks.auto_campaign_tasks.generate_auto_campaigns_for_all')
def generate_auto_campaigns_for_all() -> Dict[str, Any]:
    """Fill upcoming auto-campaign slots for every active business (runs daily)"""
    try:
        app = create_app()
        with app.app_context():
            auto_campaign_service = app.services.get('auto_campaign')
            summary = auto_campaign_service.generate_for_all_businesses()

            logger.info("Auto-campaign generation complete",
                        businesses=summary['businesses'],
                        campaigns_created=summary['campaigns_created'],
                        profile_incomplete=summary['profile_incomplete'],
                        errors=len(summary['errors']))
            return {
                'success': True,
                **summary,
                'timestamp': utc_now().isoformat()
            }

    except Exception as e:
        logger.error("Auto-campaign generation failed", error=str(e))
        return {
            'success': False,
            'error': str(e),
            'campaigns_created': 0
        }


@celery.task(name='tasks.auto_campaign_tasks.generate_auto_campaigns_for_business', bind=True, max_retries=3)
def generate_auto_campaigns_for_business(self, business_id: int) -> Dict[str, Any]:
    """
    Fill upcoming auto-campaign slots for one business.

    Queued after a profile is completed so the first campaigns appear
    without waiting for the daily run.
    """
    try:
        app = create_app()
        with app.app_context():
            auto_campaign_service = app.services.get('auto_campaign')
            result = auto_campaign_service.generate_auto_campaigns(business_id)

            if result.is_failure:
                return {
                    'success': False,
                    'business_id': business_id,
                    'error': result.error,
                    'code': result.error_code,
                    'timestamp': utc_now().isoformat()
                }

            return {
                'success': True,
                'business_id': business_id,
                'campaigns_created': result.data['campaigns_created'],
                'campaign_ids': [campaign.id for campaign in result.data['campaigns']],
                'skipped': len(result.data['skipped']),
                'failed': len(result.data['failed']),
                'timestamp': utc_now().isoformat()
            }

    except Exception as e:
        logger.error("Auto-campaign generation failed", business_id=business_id, error=str(e))
        raise self.retry(exc=e, countdown=60 * (2 ** self.request.retries))

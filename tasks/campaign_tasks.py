"""
Celery tasks for campaign delivery
Handles scheduled dispatch and background sends
"""

from utils.datetime_utils import utc_now
from celery_worker import celery
from app import create_app
from logging_config import get_logger

logger = get_logger(__name__)


@celery.task(name='tasks.campaign_tasks.dispatch_scheduled_campaigns', bind=True)
def dispatch_scheduled_campaigns(self):
    """Send every scheduled campaign whose time has passed (runs every minute)"""
    app = create_app()

    with app.app_context():
        try:
            campaign_service = app.services.get('campaign')
            summary = campaign_service.dispatch_due_campaigns()

            if summary['due']:
                logger.info("Scheduled campaigns dispatched", **summary)

            return {
                'success': True,
                'timestamp': utc_now().isoformat(),
                'stats': summary
            }

        except Exception as e:
            logger.error("Scheduled campaign dispatch failed", error=str(e))
            return {
                'success': False,
                'error': str(e),
                'timestamp': utc_now().isoformat()
            }


@celery.task(name='tasks.campaign_tasks.send_campaign_task', bind=True, max_retries=3)
def send_campaign_task(self, business_id: int, campaign_id: int):
    """
    Send one campaign in the background.

    A campaign that is already sent or needs a reconnected mail account is
    reported, not retried; only unexpected errors are retried.
    """
    app = create_app()

    with app.app_context():
        try:
            campaign_service = app.services.get('campaign')
            result = campaign_service.send_campaign(business_id, campaign_id)
        except Exception as e:
            logger.error("Campaign send failed", business_id=business_id, campaign_id=campaign_id, error=str(e))
            raise self.retry(exc=e, countdown=60 * (2 ** self.request.retries))

        if result.is_failure:
            logger.warning("Campaign not sent", business_id=business_id, campaign_id=campaign_id,
                           error=result.error, code=result.error_code)
            return {
                'success': False,
                'campaign_id': campaign_id,
                'error': result.error,
                'code': result.error_code,
                'timestamp': utc_now().isoformat()
            }

        report = result.unwrap()
        return {
            'success': True,
            'campaign_id': campaign_id,
            'recipient_count': report.recipient_count,
            'sent': report.sent,
            'failed': report.failed,
            'timestamp': utc_now().isoformat()
        }

"""
CampaignService - email campaign lifecycle
Campaigns move draft -> (scheduled) -> sending -> sent. Nothing leaves sent.
"""

from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Dict, Optional, Any, Callable

from logging_config import get_logger
from repositories.business_profile_repository import BusinessProfileRepository
from repositories.campaign_recipient_repository import CampaignRecipientRepository
from repositories.campaign_repository import CampaignRepository
from repositories.client_repository import ClientRepository
from repositories.integration_repository import IntegrationRepository
from services.ai_service import ContentRequest
from services.business_profile_service import BusinessProfileService
from services.common.errors import (
    PromoPalError, ValidationError, NotFound, IntegrationTokenExpired, ExternalServiceError
)
from services.common.integration_settings import settings_from_dict
from services.common.result import Result
from services.enums import CampaignStatus, IntegrationProvider, RecipientOutcome
from services.gmail_service import MailMessage
from services.segmentation_service import AudienceSelector
from utils.datetime_utils import utc_now, ensure_utc

logger = get_logger(__name__)

EDITABLE_FIELDS = ('name', 'subject', 'body', 'audience')

# Campaign types offered by the campaign editor
CAMPAIGN_TYPES = [
    'promotional',
    'reminder',
    'seasonal',
    'win-back',
    'loyalty',
    'welcome',
    'newsletter',
]


@dataclass
class DeliveryResult:
    """Outcome of one recipient's delivery attempt"""
    client_id: int
    email: str
    success: bool
    provider_message_id: Optional[str] = None
    error: Optional[str] = None

    def to_ledger_row(self) -> Dict[str, Any]:
        return {
            'client_id': self.client_id,
            'email': self.email,
            'outcome': (RecipientOutcome.SENT if self.success else RecipientOutcome.FAILED).value,
            'error': self.error,
            'provider_message_id': self.provider_message_id,
        }


@dataclass
class SendReport:
    campaign_id: int
    recipient_count: int
    sent: int = 0
    failed: int = 0
    results: List[DeliveryResult] = field(default_factory=list)

    @property
    def failures(self) -> List[DeliveryResult]:
        return [result for result in self.results if not result.success]


class CampaignService:
    """Service for creating, generating and sending email campaigns"""

    def __init__(self,
                 campaign_repository: CampaignRepository,
                 client_repository: ClientRepository,
                 recipient_repository: CampaignRecipientRepository,
                 integration_repository: IntegrationRepository,
                 profile_repository: BusinessProfileRepository,
                 segmentation_service,
                 token_lifecycle_service,
                 gmail_service,
                 ai_service,
                 max_workers: int = 8,
                 send_timeout: float = 10.0,
                 clock: Callable[[], datetime] = utc_now):
        """
        Args:
            campaign_repository: Campaign data access
            client_repository: Client roster access
            recipient_repository: Per-recipient delivery ledger
            integration_repository: Credential store, for the mail integration
            profile_repository: Business profile, used as prompt context
            segmentation_service: Resolves stored audiences to clients
            token_lifecycle_service: Hands out valid mail access tokens
            gmail_service: Mail-send client
            ai_service: Content generation client
            max_workers: Size of the delivery thread pool
            send_timeout: Timeout in seconds for each Gmail send call
        """
        self.campaign_repository = campaign_repository
        self.client_repository = client_repository
        self.recipient_repository = recipient_repository
        self.integration_repository = integration_repository
        self.profile_repository = profile_repository
        self.segmentation_service = segmentation_service
        self.token_lifecycle_service = token_lifecycle_service
        self.gmail_service = gmail_service
        self.ai_service = ai_service
        self.max_workers = max_workers
        self.send_timeout = send_timeout
        self.clock = clock

    # CRUD

    def _get_owned(self, business_id: int, campaign_id: int):
        campaign = self.campaign_repository.get_owned(campaign_id, business_id)
        if campaign is None:
            raise NotFound(f"Campaign {campaign_id} not found")
        return campaign

    def _normalize_audience(self, audience) -> Dict[str, Any]:
        return self.segmentation_service.validate_selector(AudienceSelector.from_dict(audience)).to_dict()

    def create_campaign(self,
                        business_id: int,
                        name: str,
                        audience: Any = None,
                        subject: Optional[str] = None,
                        body: Optional[str] = None) -> Result:
        """Create a draft campaign with no recipients yet"""
        try:
            name = (name or '').strip()
            if not name:
                raise ValidationError("Campaign name is required")
            campaign = self.campaign_repository.create(
                user_id=business_id,
                name=name,
                subject=subject,
                body=body,
                audience=self._normalize_audience(audience),
                status=CampaignStatus.DRAFT.value,
                recipient_count=0,
            )
            self.campaign_repository.commit()
        except ValidationError as e:
            return Result.from_error(e)

        logger.info("Campaign created", business_id=business_id, campaign_id=campaign.id)
        return Result.success(campaign)

    def update_campaign(self, business_id: int, campaign_id: int, data: Dict[str, Any]) -> Result:
        try:
            campaign = self._get_owned(business_id, campaign_id)
            if campaign.status in (CampaignStatus.SENDING.value, CampaignStatus.SENT.value):
                return Result.failure(f"Cannot edit a campaign that is {campaign.status}",
                                      code='INVALID_STATE')

            updates = {key: data[key] for key in EDITABLE_FIELDS if key in data}
            if 'name' in updates:
                updates['name'] = (updates['name'] or '').strip()
                if not updates['name']:
                    raise ValidationError("Campaign name is required")
            if 'audience' in updates:
                updates['audience'] = self._normalize_audience(updates['audience'])
            if updates:
                updates['updated_at'] = utc_now()
                self.campaign_repository.update(campaign, **updates)
                self.campaign_repository.commit()
        except PromoPalError as e:
            return Result.from_error(e)
        return Result.success(campaign)

    def get_campaign(self, business_id: int, campaign_id: int) -> Result:
        try:
            return Result.success(self._get_owned(business_id, campaign_id))
        except NotFound as e:
            return Result.from_error(e)

    def list_campaigns(self, business_id: int, status: Optional[str] = None) -> Result:
        return Result.success(self.campaign_repository.find_by_business(business_id, status=status))

    def delete_campaign(self, business_id: int, campaign_id: int, confirm: bool = False) -> Result:
        """
        Delete a campaign and its delivery ledger.

        Sent campaigns are only deleted with ``confirm=True`` since their
        delivery history goes with them.
        """
        try:
            campaign = self._get_owned(business_id, campaign_id)
        except NotFound as e:
            return Result.from_error(e)

        if campaign.status == CampaignStatus.SENDING.value:
            return Result.failure("Cannot delete a campaign while it is sending", code='INVALID_STATE')
        if campaign.status == CampaignStatus.SENT.value:
            if not confirm:
                return Result.failure("Deleting a sent campaign discards its delivery history; confirm to proceed",
                                      code='CONFIRMATION_REQUIRED')
            logger.warning("Deleting sent campaign", business_id=business_id, campaign_id=campaign_id,
                           recipient_count=campaign.recipient_count)

        if not self.campaign_repository.delete(campaign):
            return Result.failure(f"Campaign {campaign_id} could not be deleted", code='DELETE_FAILED')
        self.campaign_repository.commit()
        logger.info("Campaign deleted", business_id=business_id, campaign_id=campaign_id)
        return Result.success(True)

    def get_recipient_ledger(self, business_id: int, campaign_id: int) -> Result:
        try:
            campaign = self._get_owned(business_id, campaign_id)
        except NotFound as e:
            return Result.from_error(e)
        return Result.success(self.recipient_repository.find_by_campaign(campaign.id), metadata={
            'counts': self.recipient_repository.count_by_outcome(campaign.id),
        })

    # Content

    def build_content_request(self, business_id: int, options: Dict[str, Any],
                              audience: Any = None) -> ContentRequest:
        profile = self.profile_repository.find_by_user(business_id)
        profile_context = BusinessProfileService.to_prompt_context(profile)

        target_audience = options.get('target_audience')
        if not target_audience:
            target_audience = self.segmentation_service.describe(
                audience if audience is not None else options.get('audience')
            )

        business_type = options.get('business_type') or profile_context.get('business_category')
        if not business_type:
            raise ValidationError("Business type is required")
        campaign_type = options.get('campaign_type')
        if not campaign_type:
            raise ValidationError("Campaign type is required")

        return ContentRequest(
            business_type=business_type,
            campaign_type=campaign_type,
            target_audience=target_audience,
            seasonal_theme=options.get('seasonal_theme'),
            focus_keywords=options.get('focus_keywords'),
            custom_prompt=options.get('custom_prompt'),
            additional_instructions=options.get('additional_instructions'),
            business_profile=profile_context,
        )

    def generate_content(self, business_id: int, options: Dict[str, Any],
                         campaign_id: Optional[int] = None) -> Result:
        """
        Generate subject and body with the AI service.

        With ``campaign_id`` the content is stored on that campaign, which
        stays a draft. Without it the content is only returned as a preview.
        A failed generation leaves any existing content untouched.

        Returns:
            Result with {'subject', 'body'}
        """
        try:
            campaign = self._get_owned(business_id, campaign_id) if campaign_id is not None else None
            if campaign is not None and campaign.status not in (CampaignStatus.DRAFT.value,
                                                                CampaignStatus.SCHEDULED.value):
                return Result.failure(f"Cannot regenerate content for a campaign that is {campaign.status}",
                                      code='INVALID_STATE')

            request = self.build_content_request(
                business_id, options, audience=campaign.audience if campaign is not None else None
            )
            content = self.ai_service.generate_campaign_content(request)
        except ExternalServiceError as e:
            logger.error("Campaign content generation failed", business_id=business_id,
                         campaign_id=campaign_id, error=str(e))
            return Result.from_error(e)
        except PromoPalError as e:
            return Result.from_error(e)

        if campaign is not None:
            self.campaign_repository.update(campaign, subject=content['subject'], body=content['body'],
                                            updated_at=utc_now())
            self.campaign_repository.commit()
            logger.info("Campaign content stored", business_id=business_id, campaign_id=campaign.id)

        return Result.success(content)

    # Scheduling

    def schedule_campaign(self, business_id: int, campaign_id: int, scheduled_at: datetime) -> Result:
        try:
            campaign = self._get_owned(business_id, campaign_id)
        except NotFound as e:
            return Result.from_error(e)

        if campaign.status != CampaignStatus.DRAFT.value:
            return Result.failure(f"Only draft campaigns can be scheduled (status is {campaign.status})",
                                  code='INVALID_STATE')
        scheduled_at = ensure_utc(scheduled_at)
        if scheduled_at is None or scheduled_at <= self.clock():
            return Result.from_error(ValidationError("Scheduled time must be in the future"))
        if not campaign.subject or not campaign.body:
            return Result.from_error(ValidationError("Generate content before scheduling"))

        self.campaign_repository.update(campaign, status=CampaignStatus.SCHEDULED.value,
                                        scheduled_at=scheduled_at, updated_at=utc_now())
        self.campaign_repository.commit()
        logger.info("Campaign scheduled", business_id=business_id, campaign_id=campaign_id,
                    scheduled_at=scheduled_at.isoformat())
        return Result.success(campaign)

    # Sending

    def _deliver_all(self, access_token: str, sender: Optional[str], campaign,
                     recipients: List) -> List[DeliveryResult]:
        """
        Send to every recipient concurrently and wait for all of them.

        Each attempt is independent and bounded by ``send_timeout`` on the
        Gmail call itself, so a slow call comes back as a failure from its
        worker. Workers touch no database state; the caller persists
        outcomes after every attempt has settled.
        """
        if not recipients:
            return []

        # Read ORM state here; worker threads must not touch the session
        subject, body = campaign.subject, campaign.body
        outbox = [
            (recipient.id, MailMessage(to=recipient.email, to_name=recipient.name, subject=subject,
                                       body_html=body, sender=sender))
            for recipient in recipients
        ]

        def deliver(client_id: int, message: MailMessage) -> DeliveryResult:
            try:
                success, detail = self.gmail_service.send_email(access_token, message,
                                                                timeout=self.send_timeout)
            except Exception as e:
                return DeliveryResult(client_id, message.to, False, error=str(e))
            return DeliveryResult(
                client_id=client_id,
                email=message.to,
                success=success,
                provider_message_id=detail if success else None,
                error=None if success else detail,
            )

        workers = max(1, min(self.max_workers, len(outbox)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(deliver, client_id, message) for client_id, message in outbox]
            wait(futures)
        return [future.result() for future in futures]

    def send_campaign(self, business_id: int, campaign_id: int) -> Result:
        """
        Send a campaign to its resolved audience.

        Delivery is best-effort per recipient. The campaign moves to sent
        with recipient_count equal to the audience size once every attempt
        has settled, however many failed. A mail credential that cannot be
        refreshed leaves the campaign unchanged.

        Returns:
            Result with a SendReport
        """
        try:
            campaign = self._get_owned(business_id, campaign_id)
        except NotFound as e:
            return Result.from_error(e)

        if campaign.status not in (CampaignStatus.DRAFT.value, CampaignStatus.SCHEDULED.value):
            return Result.failure(f"Campaign is already {campaign.status}", code='INVALID_STATE')
        if not campaign.subject or not campaign.body:
            return Result.from_error(ValidationError("Campaign needs a subject and body before sending"))

        now = self.clock()
        try:
            roster = self.client_repository.find_by_business(business_id)
            recipients = self.segmentation_service.resolve(campaign.audience, roster, now)

            integration = self.integration_repository.find_active(business_id, IntegrationProvider.GMAIL.value)
            if integration is None:
                raise IntegrationTokenExpired(IntegrationProvider.GMAIL.value,
                                              "No Gmail account connected, connect one to send campaigns")
            access_token = self.token_lifecycle_service.get_valid_access_token(integration)
        except IntegrationTokenExpired as e:
            logger.warning("Campaign send blocked, reconnect required", business_id=business_id,
                           campaign_id=campaign_id, provider=e.provider)
            return Result.from_error(e)
        except ValidationError as e:
            return Result.from_error(e)

        sender = settings_from_dict(integration.provider, integration.settings).email_address
        previous_status = campaign.status

        self.campaign_repository.update(campaign, status=CampaignStatus.SENDING.value, updated_at=utc_now())
        self.campaign_repository.commit()
        logger.info("Campaign sending", business_id=business_id, campaign_id=campaign_id,
                    recipient_count=len(recipients))

        results = None
        try:
            results = self._deliver_all(access_token, sender, campaign, recipients)
            self.recipient_repository.record_attempts(campaign.id,
                                                      [result.to_ledger_row() for result in results])
            self._mark_sent(campaign, len(recipients))
            self.campaign_repository.commit()
        except Exception as e:
            return self._recover_interrupted_send(campaign, previous_status, results, len(recipients), e)

        report = SendReport(
            campaign_id=campaign.id,
            recipient_count=len(recipients),
            sent=sum(1 for result in results if result.success),
            failed=sum(1 for result in results if not result.success),
            results=results,
        )
        logger.info("Campaign sent", business_id=business_id, campaign_id=campaign_id,
                    sent=report.sent, failed=report.failed)
        return Result.success(report)

    def _mark_sent(self, campaign, recipient_count: int) -> None:
        self.campaign_repository.update(
            campaign,
            status=CampaignStatus.SENT.value,
            sent_at=self.clock(),
            recipient_count=recipient_count,
            updated_at=utc_now(),
        )

    def _recover_interrupted_send(self, campaign, previous_status: str, results: Optional[List[DeliveryResult]],
                                  recipient_count: int, error: Exception) -> Result:
        """
        Move a campaign out of sending after an unexpected error.

        Once deliveries have gone out the campaign is still marked sent so it
        is never mailed twice, and the attempts are logged since the ledger
        write was lost. Otherwise it returns to its previous status.
        """
        self.campaign_repository.rollback()
        campaign_id = campaign.id
        if results is None:
            logger.error("Campaign send failed before delivery", campaign_id=campaign_id,
                         restored_status=previous_status, error=str(error))
            self.campaign_repository.update(campaign, status=previous_status, updated_at=utc_now())
        else:
            logger.error("Campaign delivered but its outcome could not be recorded", campaign_id=campaign_id,
                         sent=[r.email for r in results if r.success],
                         failed=[r.email for r in results if not r.success], error=str(error))
            self._mark_sent(campaign, recipient_count)
        self.campaign_repository.commit()
        return Result.failure(f"Campaign send did not complete: {error}", code='SEND_INCOMPLETE',
                              metadata={'delivered': results is not None,
                                        'status': campaign.status})

    def dispatch_due_campaigns(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Send every scheduled campaign whose time has come.

        One campaign failing never stops the others.
        """
        now = ensure_utc(now) if now else self.clock()
        due = self.campaign_repository.find_due_scheduled(now)

        summary = {'due': len(due), 'sent': 0, 'failed': 0, 'errors': []}
        for campaign in due:
            result = self.send_campaign(campaign.user_id, campaign.id)
            if result.is_success:
                summary['sent'] += 1
            else:
                summary['failed'] += 1
                summary['errors'].append({'campaign_id': campaign.id, 'error': result.error,
                                          'code': result.error_code})
                logger.warning("Scheduled campaign not sent", campaign_id=campaign.id,
                               business_id=campaign.user_id, error=result.error)
        return summary

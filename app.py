# app.py

from flask import Flask, g, request, jsonify
from config import get_config
from extensions import db, migrate
import os
import uuid
from werkzeug.middleware.proxy_fix import ProxyFix
from logging_config import setup_logging, get_logger

# Configure logging as early as possible
setup_logging(app_name="promopal", log_level=os.environ.get('LOG_LEVEL', 'INFO'))
logger = get_logger(__name__)


def init_sentry():
    """Initialize Sentry error tracking in production."""
    sentry_dsn = os.environ.get('SENTRY_DSN')
    if sentry_dsn and os.environ.get('FLASK_ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
        from sentry_sdk.integrations.celery import CeleryIntegration

        sentry_sdk.init(
            dsn=sentry_dsn,
            integrations=[
                FlaskIntegration(transaction_style='endpoint'),
                SqlalchemyIntegration(),
                CeleryIntegration()
            ],
            traces_sample_rate=0.1,
            environment=os.environ.get('FLASK_ENV', 'development'),
            release=os.environ.get('GIT_SHA', 'unknown'),
            send_default_pii=False,
        )
        logger.info("Sentry error tracking initialized")


init_sentry()


def create_app(config_name=None, test_config=None):
    """Create and configure an instance of the Flask application."""
    app = Flask(__name__)

    config_class = get_config(config_name)
    app.config.from_object(config_class)
    config_class.init_app(app)

    if test_config:
        app.config.update(test_config)

    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    db.init_app(app)
    migrate.init_app(app, db)

    app.services = _build_registry(app.config)

    errors = app.services.validate_dependencies()
    if errors:
        for error in errors:
            logger.error(f"Service dependency error: {error}")
        if app.config.get('FLASK_ENV') == 'production':
            raise RuntimeError(f"Service dependency errors: {errors}")

    if app.debug:
        logger.debug(f"Service initialization order: {app.services.get_initialization_order()}")

    if app.config.get('FLASK_ENV') == 'production':
        app.services.warmup(['gmail', 'square', 'ai', 'segmentation'])

    @app.before_request
    def before_request():
        g.request_id = request.headers.get('X-Request-ID') or str(uuid.uuid4())
        logger.info("Request started", method=request.method, path=request.path)

    @app.after_request
    def after_request(response):
        response.headers['X-Request-ID'] = getattr(g, 'request_id', '')
        logger.info("Request completed", status_code=response.status_code)
        return response

    @app.route('/health')
    def health_check():
        """Health check endpoint for monitoring"""
        from sqlalchemy import text
        health_status = {'status': 'healthy', 'service': 'promopal'}
        try:
            db.session.execute(text('SELECT 1'))
            health_status['database'] = 'connected'
        except Exception as e:
            health_status['database'] = 'error'
            health_status['status'] = 'degraded'
            logger.error(f"Health check database error: {e}")
        return jsonify(health_status), 200 if health_status['status'] == 'healthy' else 503

    return app


def _build_registry(config):
    """Register repositories, provider clients and services with their dependencies"""
    from services.registry import ServiceRegistry, ServiceLifecycle
    registry = ServiceRegistry()

    registry.register_factory(
        'db_session',
        lambda: db.session,
        lifecycle=ServiceLifecycle.SCOPED
    )

    # Repositories
    for name, create in (
        ('user_repository', _create_user_repository),
        ('business_profile_repository', _create_business_profile_repository),
        ('client_repository', _create_client_repository),
        ('campaign_repository', _create_campaign_repository),
        ('campaign_recipient_repository', _create_campaign_recipient_repository),
        ('appointment_repository', _create_appointment_repository),
        ('integration_repository', _create_integration_repository),
    ):
        registry.register_factory(name, create, dependencies=['db_session'])

    # External provider clients
    registry.register_singleton('gmail', lambda: _create_gmail_service(config))
    registry.register_singleton('square', lambda: _create_square_service(config))
    registry.register_singleton('ai', lambda: _create_ai_service(config))
    registry.register_singleton(
        'segmentation',
        lambda: _create_segmentation_service(config)
    )

    # Core services
    registry.register_factory(
        'token_lifecycle',
        lambda integration_repository, gmail, square: _create_token_lifecycle_service(
            integration_repository, gmail, square
        ),
        dependencies=['integration_repository', 'gmail', 'square']
    )
    registry.register_factory(
        'business_profile',
        lambda business_profile_repository: _create_business_profile_service(business_profile_repository),
        dependencies=['business_profile_repository']
    )
    registry.register_factory(
        'client',
        lambda client_repository, ai: _create_client_service(client_repository, ai),
        dependencies=['client_repository', 'ai']
    )
    registry.register_factory(
        'campaign',
        lambda campaign_repository, client_repository, campaign_recipient_repository,
        integration_repository, business_profile_repository, segmentation, token_lifecycle,
        gmail, ai: _create_campaign_service(
            config, campaign_repository, client_repository, campaign_recipient_repository,
            integration_repository, business_profile_repository, segmentation, token_lifecycle, gmail, ai
        ),
        dependencies=['campaign_repository', 'client_repository', 'campaign_recipient_repository',
                      'integration_repository', 'business_profile_repository', 'segmentation',
                      'token_lifecycle', 'gmail', 'ai']
    )
    registry.register_factory(
        'auto_campaign',
        lambda campaign_repository, client_repository, business_profile_repository, user_repository,
        segmentation, ai: _create_auto_campaign_service(
            config, campaign_repository, client_repository, business_profile_repository,
            user_repository, segmentation, ai
        ),
        dependencies=['campaign_repository', 'client_repository', 'business_profile_repository',
                      'user_repository', 'segmentation', 'ai']
    )
    registry.register_factory(
        'appointment',
        lambda appointment_repository, campaign_repository, client_repository: _create_appointment_service(
            appointment_repository, campaign_repository, client_repository
        ),
        dependencies=['appointment_repository', 'campaign_repository', 'client_repository']
    )
    registry.register_factory(
        'scheduling_sync',
        lambda integration_repository, client_repository, appointment_repository, square,
        token_lifecycle, appointment: _create_scheduling_sync_service(
            integration_repository, client_repository, appointment_repository, square,
            token_lifecycle, appointment
        ),
        dependencies=['integration_repository', 'client_repository', 'appointment_repository',
                      'square', 'token_lifecycle', 'appointment']
    )
    registry.register_factory(
        'integration',
        lambda integration_repository, gmail, square, scheduling_sync: _create_integration_service(
            config, integration_repository, gmail, square, scheduling_sync
        ),
        dependencies=['integration_repository', 'gmail', 'square', 'scheduling_sync']
    )
    registry.register_factory(
        'dashboard',
        lambda appointment_repository, campaign_repository, client_repository, segmentation: (
            _create_dashboard_service(appointment_repository, campaign_repository, client_repository,
                                      segmentation)
        ),
        dependencies=['appointment_repository', 'campaign_repository', 'client_repository', 'segmentation']
    )

    return registry


# Repository factories

def _create_user_repository(db_session):
    from repositories.user_repository import UserRepository
    return UserRepository(session=db_session)


def _create_business_profile_repository(db_session):
    from repositories.business_profile_repository import BusinessProfileRepository
    return BusinessProfileRepository(session=db_session)


def _create_client_repository(db_session):
    from repositories.client_repository import ClientRepository
    return ClientRepository(session=db_session)


def _create_campaign_repository(db_session):
    from repositories.campaign_repository import CampaignRepository
    return CampaignRepository(session=db_session)


def _create_campaign_recipient_repository(db_session):
    from repositories.campaign_recipient_repository import CampaignRecipientRepository
    return CampaignRecipientRepository(session=db_session)


def _create_appointment_repository(db_session):
    from repositories.appointment_repository import AppointmentRepository
    return AppointmentRepository(session=db_session)


def _create_integration_repository(db_session):
    from repositories.integration_repository import IntegrationRepository
    return IntegrationRepository(session=db_session)


# Provider client factories

def _create_gmail_service(config):
    """Create GmailService instance"""
    from services.gmail_service import GmailService
    logger.info("Initializing GmailService")
    return GmailService(
        client_id=config.get('GOOGLE_CLIENT_ID'),
        client_secret=config.get('GOOGLE_CLIENT_SECRET'),
        redirect_uri=config.get('GOOGLE_REDIRECT_URI'),
        default_sender=config.get('MAIL_DEFAULT_SENDER'),
        timeout=config.get('EXTERNAL_CALL_TIMEOUT'),
    )


def _create_square_service(config):
    """Create SquareService instance"""
    from services.square_service import SquareService
    logger.info("Initializing SquareService", environment=config.get('SQUARE_ENVIRONMENT'))
    return SquareService(
        client_id=config.get('SQUARE_CLIENT_ID'),
        client_secret=config.get('SQUARE_CLIENT_SECRET'),
        redirect_uri=config.get('SQUARE_REDIRECT_URI'),
        environment=config.get('SQUARE_ENVIRONMENT'),
        api_version=config.get('SQUARE_API_VERSION'),
        timeout=config.get('EXTERNAL_CALL_TIMEOUT'),
    )


def _create_ai_service(config):
    """Create AIService instance"""
    from services.ai_service import AIService
    logger.info("Initializing AIService")
    return AIService(
        api_key=config.get('GEMINI_API_KEY'),
        model_name=config.get('GEMINI_MODEL'),
        cleaning_model_name=config.get('GEMINI_CLEANING_MODEL'),
        timeout=config.get('AI_CALL_TIMEOUT'),
    )


def _create_segmentation_service(config):
    from services.segmentation_service import SegmentationService
    return SegmentationService(strict=config.get('SEGMENT_STRICT_MODE', False))


# Service factories

def _create_token_lifecycle_service(integration_repository, gmail, square):
    from services.token_lifecycle_service import (
        TokenLifecycleService, TokenProvider, absolute_expiry_grant, relative_expiry_grant
    )
    from services.enums import IntegrationProvider
    providers = {
        IntegrationProvider.GMAIL.value: TokenProvider(
            name=IntegrationProvider.GMAIL.value,
            refresh=gmail.refresh_access_token,
            normalize=absolute_expiry_grant,
        ),
        IntegrationProvider.SQUARE.value: TokenProvider(
            name=IntegrationProvider.SQUARE.value,
            refresh=square.refresh_access_token,
            normalize=relative_expiry_grant,
        ),
    }
    return TokenLifecycleService(integration_repository=integration_repository, providers=providers)


def _create_business_profile_service(business_profile_repository):
    from services.business_profile_service import BusinessProfileService
    return BusinessProfileService(profile_repository=business_profile_repository)


def _create_client_service(client_repository, ai):
    from services.client_service import ClientService
    return ClientService(client_repository=client_repository, ai_service=ai)


def _create_campaign_service(config, campaign_repository, client_repository, campaign_recipient_repository,
                             integration_repository, business_profile_repository, segmentation,
                             token_lifecycle, gmail, ai):
    from services.campaign_service import CampaignService
    return CampaignService(
        campaign_repository=campaign_repository,
        client_repository=client_repository,
        recipient_repository=campaign_recipient_repository,
        integration_repository=integration_repository,
        profile_repository=business_profile_repository,
        segmentation_service=segmentation,
        token_lifecycle_service=token_lifecycle,
        gmail_service=gmail,
        ai_service=ai,
        max_workers=config.get('SEND_MAX_WORKERS'),
        send_timeout=config.get('EXTERNAL_CALL_TIMEOUT'),
    )


def _create_auto_campaign_service(config, campaign_repository, client_repository, business_profile_repository,
                                  user_repository, segmentation, ai):
    from services.auto_campaign_service import AutoCampaignService
    return AutoCampaignService(
        campaign_repository=campaign_repository,
        client_repository=client_repository,
        profile_repository=business_profile_repository,
        user_repository=user_repository,
        segmentation_service=segmentation,
        ai_service=ai,
        interval_days=config.get('AUTO_CAMPAIGN_INTERVAL_DAYS'),
        horizon=config.get('AUTO_CAMPAIGN_HORIZON'),
        send_hour=config.get('AUTO_CAMPAIGN_SEND_HOUR'),
    )


def _create_appointment_service(appointment_repository, campaign_repository, client_repository):
    from services.appointment_service import AppointmentService
    return AppointmentService(
        appointment_repository=appointment_repository,
        campaign_repository=campaign_repository,
        client_repository=client_repository,
    )


def _create_scheduling_sync_service(integration_repository, client_repository, appointment_repository,
                                    square, token_lifecycle, appointment):
    from services.scheduling_sync_service import SchedulingSyncService
    return SchedulingSyncService(
        integration_repository=integration_repository,
        client_repository=client_repository,
        appointment_repository=appointment_repository,
        square_service=square,
        token_lifecycle_service=token_lifecycle,
        appointment_service=appointment,
    )


def _create_integration_service(config, integration_repository, gmail, square, scheduling_sync):
    from services.integration_service import IntegrationService
    return IntegrationService(
        integration_repository=integration_repository,
        gmail_service=gmail,
        square_service=square,
        secret_key=config['SECRET_KEY'],
        state_max_age=config.get('OAUTH_STATE_MAX_AGE'),
        scheduling_sync_service=scheduling_sync,
    )


def _create_dashboard_service(appointment_repository, campaign_repository, client_repository, segmentation):
    from services.dashboard_service import DashboardService
    return DashboardService(
        appointment_repository=appointment_repository,
        campaign_repository=campaign_repository,
        client_repository=client_repository,
        segmentation_service=segmentation,
    )


if __name__ == '__main__':
    app = create_app()
    app.run(debug=True)

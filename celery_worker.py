# celery_worker.py
from app import create_app
from celery_config import create_celery_app
from celery.schedules import crontab

# Create Celery instance with shared configuration
celery = create_celery_app(__name__)

# Flask app providing the context tasks run in
flask_app = create_app()


class ContextTask(celery.Task):
    def __call__(self, *args, **kwargs):
        with flask_app.app_context():
            return self.run(*args, **kwargs)


celery.Task = ContextTask

# --- Celery Beat Schedule ---
celery.conf.beat_schedule = {
    'generate-auto-campaigns': {
        'task': 'tasks.auto_campaign_tasks.generate_auto_campaigns_for_all',
        # Daily at 6 AM UTC, well before the slot send hour
        'schedule': crontab(hour=6, minute=0),
    },
    'dispatch-scheduled-campaigns': {
        'task': 'tasks.campaign_tasks.dispatch_scheduled_campaigns',
        # Every minute; sends campaigns whose scheduled time has passed
        'schedule': 60.0,
    },
    'sync-scheduling-providers': {
        'task': 'tasks.sync_tasks.sync_scheduling_providers',
        # Hourly check; each integration syncs on its own interval
        'schedule': 3600.0,
    },
}
celery.conf.timezone = 'UTC'

# Register tasks once the app exists
with flask_app.app_context():
    import tasks.auto_campaign_tasks  # noqa: E402,F401
    import tasks.campaign_tasks  # noqa: E402,F401
    import tasks.sync_tasks  # noqa: E402,F401

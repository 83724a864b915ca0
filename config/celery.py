# config/celery.py
import logging
import os

from celery import Celery
from celery.signals import task_failure

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

logger = logging.getLogger(__name__)

app = Celery('ghanamarket')

# CELERY_* keys from Django settings (beat schedule included)
app.config_from_object('django.conf:settings', namespace='CELERY')

# orders.tasks, notifications.tasks
app.autodiscover_tasks()


@task_failure.connect
def log_task_failure(sender=None, task_id=None, exception=None, **kwargs):
    # Fires once retries are exhausted
    logger.error(f"Task {getattr(sender, 'name', sender)} [{task_id}] failed: {exception!r}")

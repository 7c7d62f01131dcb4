"""
Celery configuration for the Jan Seva platform.

Token change broadcasts run as background tasks so that scheduler
operations never wait on the channel layer.
"""

import logging
import os

from celery import Celery
from celery.signals import task_failure, task_retry

logger = logging.getLogger(__name__)

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "jansewa.settings.production")

app = Celery("jansewa")

# Using a string here means the worker doesn't have to serialize
# the configuration object to child processes.
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()

# Route queue broadcasts to their own worker queue
app.conf.task_routes = {
    "apps.tokenapp.tasks.*": {"queue": "queues"},
}


@task_failure.connect
def task_failure_handler(sender=None, exception=None, **kwargs):
    logger.error(f"Task {sender.name} failed: {exception}")


@task_retry.connect
def task_retry_handler(sender=None, reason=None, **kwargs):
    logger.warning(f"Task {sender.name} retrying: {reason}")

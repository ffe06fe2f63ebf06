"""
Celery application configuration.

This is the main Celery app for the ClientLedger backend.
It runs scheduled billing jobs (overdue sweep) and other background work.

Usage:
    # Start worker
    celery -A clientledger_backend worker -l INFO

    # Start beat scheduler (for periodic tasks)
    celery -A clientledger_backend beat -l INFO

    # Start both (development only)
    celery -A clientledger_backend worker -B -l INFO
"""
import os

from celery import Celery

# Set default Django settings
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "clientledger_backend.settings")

# Create Celery app
app = Celery("clientledger_backend")

# Load config from Django settings
app.config_from_object("django.conf:settings", namespace="CELERY")

# Auto-discover tasks from all installed apps
app.autodiscover_tasks()

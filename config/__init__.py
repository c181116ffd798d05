"""Top-level package for Django configuration.

This package exposes configuration for the booking engine. It contains
settings modules for different environments and the Celery application.
"""

# Import the Celery application as soon as Django starts. Without this
# the shared task registry will not be populated.
from .celery import app as celery_app  # noqa: F401

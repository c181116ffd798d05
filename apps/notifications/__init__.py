"""Notifications app package.

Fire-and-forget delivery of booking events (creation, every status
change, computed refunds) to an external webhook through Celery.
"""

"""
Celery tasks package.

Task modules are registered by the worker through ``celery_app.conf.imports``:
- ``session_tasks``: reminders, expiry checks, meeting lifecycle, reschedules
- ``transcript_tasks``: recording processing and transcript reconciliation
- ``balance_tasks``: mentor balance release

Services send tasks by name (see ``names``), so importing this package
never imports the services.
"""

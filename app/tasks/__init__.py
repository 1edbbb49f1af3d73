"""
Celery tasks package.

- workflow_tasks: durable CV extraction workflow (retrieve, summarize, grade, finalize)
"""

from app.tasks import workflow_tasks

__all__ = ["workflow_tasks"]

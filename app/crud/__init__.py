"""
CRUD operations (Create, Read, Update, Delete) for database models.

This layer provides a clean separation between API routes and database operations,
following the Repository pattern.
"""

from app.crud import candidate, workflow_run

__all__ = ["candidate", "workflow_run"]

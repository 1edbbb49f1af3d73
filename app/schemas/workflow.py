"""
Pydantic schemas for workflow and rescan responses.
"""

from pydantic import BaseModel


class RescanResponse(BaseModel):
    message: str
    count: int

"""
Pydantic schemas for the card store API.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"]
    database: bool
    tables: int
    save_pending: bool


class VisitorCountResponse(BaseModel):
    count: int

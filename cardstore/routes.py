"""
HTTP routes for the card store API.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from cardstore.db import Store
from cardstore.dependencies import get_store
from cardstore.schemas import HealthResponse, VisitorCountResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
def health(store: Store = Depends(get_store)):
    database_ok = store.prepare("SELECT 1 AS ok").get() is not None
    return HealthResponse(
        status="ok" if database_ok else "degraded",
        database=database_ok,
        tables=len(store.table_names()),
        save_pending=store.save_pending,
    )


@router.get("/visitors", response_model=VisitorCountResponse)
def get_visitor_count(store: Store = Depends(get_store)):
    row = store.prepare("SELECT count FROM visitors WHERE id = 1").get()
    return VisitorCountResponse(count=row["count"] if row else 0)


@router.post("/visitors/increment", response_model=VisitorCountResponse)
def increment_visitor_count(store: Store = Depends(get_store)):
    try:
        store.prepare(
            """
            INSERT INTO visitors (id, count) VALUES (1, 1)
            ON CONFLICT(id) DO UPDATE
            SET count = count + 1, last_updated = CURRENT_TIMESTAMP
            """
        ).run()
    except Exception as exc:
        logger.exception("Failed to increment visitor count")
        raise HTTPException(
            status_code=500, detail="Failed to update visitor count"
        ) from exc
    row = store.prepare("SELECT count FROM visitors WHERE id = 1").get()
    return VisitorCountResponse(count=row["count"] if row else 0)

"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from cardstore.db import Store


def get_store(request: Request) -> Store:
    """
    Return the store opened by the app lifespan.

    Requests only reach the routes once the lifespan has finished
    bootstrapping, so a missing store means the app is shutting down.
    """
    store = getattr(request.app.state, "store", None)
    if store is None or store.closed:
        raise HTTPException(status_code=503, detail="Database is not available")
    return store

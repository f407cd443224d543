"""Memo store maintenance: stats and the operator flush."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from glyphsight.dependencies import get_store
from glyphsight.engine.errors import MemoStoreError
from glyphsight.memo.store import MemoStore
from glyphsight.models.responses import CacheFlushResponse, CacheStatsResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cache")


@router.get("/stats", response_model=CacheStatsResponse)
async def stats(store: MemoStore = Depends(get_store)) -> CacheStatsResponse:
    try:
        return CacheStatsResponse(stats=store.stats())
    except MemoStoreError as e:
        logger.warning("Cache stats failed: %s", e)
        raise HTTPException(status_code=503, detail=str(e)) from e


@router.post("/flush", response_model=CacheFlushResponse)
async def flush(store: MemoStore = Depends(get_store)) -> CacheFlushResponse:
    try:
        store.flush()
    except MemoStoreError as e:
        logger.warning("Cache flush failed: %s", e)
        raise HTTPException(status_code=503, detail=str(e)) from e
    return CacheFlushResponse(flushed=True)

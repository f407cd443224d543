"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from glyphsight.config import Settings
from glyphsight.dependencies import get_model, get_settings
from glyphsight.models.responses import HealthResponse
from glyphsight.nn.model import Model

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(
    cfg: Settings = Depends(get_settings),
    model: Model | None = Depends(get_model),
) -> HealthResponse:
    return HealthResponse(
        status="ok",
        version="0.1.0",
        cache_enabled=cfg.cache_enabled,
        nn_loaded=model is not None,
    )
